import re

from setuptools import setup

with open("couchbind.py", "r") as infile:
    version = re.search(r'^__version__ = "([^"]+)"', infile.read(), re.M).group(1)


setup(name="CouchBind",
      version=version,
      description="CouchDB-style document database client in a single module.",
      long_description=open("README.md", "r").read(),
      long_description_content_type="text/markdown",
      license="MIT",
      python_requires=">= 3.6",
      py_modules=["couchbind"],
      install_requires=[
          "requests>=2",
      ],
      extras_require={
          "test": ["pytest"],
      },
      entry_points={
          "console_scripts": ["couchbind=couchbind:main"]
      },
      classifiers=[
          "License :: OSI Approved :: MIT License",
          "Intended Audience :: Developers",
          "Natural Language :: English",
          "Development Status :: 3 - Alpha",
          "Programming Language :: Python :: 3 :: Only",
          "Programming Language :: Python :: 3.6",
          "Operating System :: OS Independent",
          "Environment :: Console",
          "Topic :: Database :: Front-Ends",
          "Topic :: Software Development :: Libraries :: Python Modules"
      ],
)
