"""CouchDB-style document database client in a single module.
Also a command line tool.

Saving, bulk saving, finding and removing documents, querying views,
lists and full-text indexes, and managing attachments, all as plain
HTTP round-trips to the database server.

Relies on 'requests': http://docs.python-requests.org/en/master/
"""

__version__ = "0.4.0"

# Standard packages
import argparse
import collections
import copy
import getpass
import gzip
import io
import json
import logging
import mimetypes
import os
import os.path
import sys
import urllib.parse
import uuid

# Third-party package: https://docs.python-requests.org/en/master/
import requests

JSON_MIME = "application/json"
BIN_MIME = "application/octet-stream"
CHUNK_SIZE = 100

# Query options whose values are always sent as JSON.
JSON_OPTIONS = frozenset(["key", "startkey", "endkey", "start_key", "end_key"])

logger = logging.getLogger("couchbind")


class Server:
    "An instance of the class is a connection to the database server."

    def __init__(self, href="http://localhost:5984/",
                 username=None, password=None, use_session=True,
                 ca_file=None, timeout=None):
        """An instance of the class is a connection to the database server.

        - `href` is the URL to the server itself.
        - `username` and `password` specify the user account to use.
        - If `use_session` is `True`, then an authenticated session is used
          transparently. Otherwise, the values of `username` and `password` are
          sent with each request.
        - `ca_file` is a path to a file or a directory containing CAs if
          you need to access databases in HTTPS.
        - `timeout` is the number of seconds to wait for the server on
          each request; `None` waits forever.
        """
        self.href = href.rstrip("/") + "/"
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Accept": JSON_MIME})
        if ca_file is not None:
            self._session.verify = ca_file
        if username and password:
            if use_session:
                self._POST("_session",
                           data={"name": username, "password": password})
            else:
                self._session.auth = (username, password)

    @property
    def version(self):
        "Returns the version of the server software."
        try:
            return self._version
        except AttributeError:
            self._version = self._GET().json()["version"]
            return self._version

    @property
    def user_context(self):
        "Returns the user context of the connection."
        response = self._GET("_session")
        return response.json()

    def __str__(self):
        return f"CouchDB {self.version} {self.href}"

    def __len__(self):
        "Returns the number of user-defined databases."
        data = self._GET("_all_dbs").json()
        return len([n for n in data if not n.startswith("_")])

    def __iter__(self):
        "Returns an iterator over all user-defined databases on the server."
        data = self._GET("_all_dbs").json()
        return iter([Database(self, n, check=False)
                     for n in data if not n.startswith("_")])

    def __getitem__(self, name):
        return Database(self, name, check=True)

    def __contains__(self, name):
        "Does the named database exist?"
        response = self._HEAD(name, errors={404: None})
        return response.status_code == 200

    def __call__(self):
        "Returns meta information about the server."
        response = self._GET()
        return response.json()

    def __del__(self):
        try:
            self._session.close()
        except AttributeError:
            pass

    def get(self, name, check=True):
        """Gets the named database. Returns an instance of class `Database`.

        Raises `NotFoundError` if `check` is `True` and the database
        does not exist.
        """
        return Database(self, name, check=check)

    def create(self, name, n=None, q=None):
        """Creates the named database. Raises `CreationError` if it
        already exists.

        - `n`: The number of replicas; server default if not given.
        - `q`: The number of shards; server default if not given.
        """
        db = Database(self, name, check=False)
        return db.create(n=n, q=q)

    def uuid(self):
        "Returns a new identifier for a document."
        return uuid.uuid4().hex

    def _HEAD(self, *segments, **kwargs):
        "HTTP HEAD request to the server, and check the response."
        return self._request("head", segments, kwargs, "headers")

    def _GET(self, *segments, **kwargs):
        "HTTP GET request to the server, and check the response."
        return self._request("get", segments, kwargs, "headers", "params")

    def _PUT(self, *segments, **kwargs):
        "HTTP PUT request to the server, and check the response."
        return self._request("put", segments, kwargs,
                             "json", "data", "headers", "params")

    def _POST(self, *segments, **kwargs):
        "HTTP POST request to the server, and check the response."
        return self._request("post", segments, kwargs,
                             "json", "data", "headers", "params")

    def _DELETE(self, *segments, **kwargs):
        """HTTP DELETE request to the server, and check the response.
        Pass parameters in the keyword argument 'params'.
        """
        return self._request("delete", segments, kwargs, "headers", "params")

    def _request(self, method, segments, kwargs, *keys):
        "Send the request using the session, log it and check the response."
        url = self._href(segments)
        kw = self._kwargs(kwargs, *keys)
        logger.debug("%s %s", method.upper(), url)
        response = getattr(self._session, method)(url, timeout=self.timeout,
                                                  **kw)
        logger.debug("%s %s: %s %s", method.upper(), url,
                     response.status_code, response.reason)
        self._check(response, errors=kwargs.get("errors", {}))
        return response

    def _href(self, segments):
        "Return the complete URL."
        return self.href + "/".join([_quote(s) for s in segments])

    def _kwargs(self, kwargs, *keys):
        "Return the kwargs for the specified keys."
        result = {}
        for key in keys:
            try:
                result[key] = kwargs[key]
            except KeyError:
                pass
        return result

    def _check(self, response, errors={}):
        "Raise an exception if the response status code indicates an error."
        try:
            error = errors[response.status_code]
        except KeyError:
            error = _ERRORS.get(response.status_code, DatabaseError)
        if error is not None:
            raise error(f"{response.status_code} {response.reason}",
                        status=response.status_code)


class Database:
    "An instance of the class is an interface to a database on the server."

    def __init__(self, server, name, check=True):
        self.server = server
        self.name = name
        if check:
            self.check()

    def __str__(self):
        return self.name

    def __len__(self):
        "Returns the number of documents in the database."
        return self.server._GET(self.name).json()["doc_count"]

    def __contains__(self, id):
        "Does a document with the given identifier exist in the database?"
        response = self.server._HEAD(self.name, id, errors={404: None})
        return response.status_code in (200, 304)

    def __iter__(self):
        "Returns an iterator over all documents in the database."
        return _DatabaseIterator(self)

    def __getitem__(self, id):
        "Returns the document with the given id."
        result = self.get(id)
        if result is None:
            raise NotFoundError("no such document", status=404)
        else:
            return result

    def exists(self):
        "Does the database exist? Return a boolean."
        response = self.server._HEAD(self.name, errors={404: None})
        return response.status_code == 200

    def check(self):
        "Raises 'NotFoundError' if the database does not exist."
        if not self.exists():
            raise NotFoundError(f"Database '{self}' does not exist.",
                                status=404)

    def create(self, n=None, q=None):
        "Creates the database. Raises 'CreationError' if it already exists."
        self.server._PUT(self.name, params=encode_options({"n": n, "q": q}))
        return self

    def destroy(self):
        "Deletes the database and all its contents."
        self.server._DELETE(self.name)

    def get_info(self):
        "Returns a dictionary with information about the database."
        response = self.server._GET(self.name)
        return response.json()

    def get(self, id, default=None, rev=None, revs_info=False, conflicts=False):
        """Returns the document with the given identifier,
        or the `default` value if not found.

        - `rev`: Retrieves document of specified revision, if specified.
        - `revs_info`: Whether to include detailed information for all known
          document revisions.
        - `conflicts`: Whether to include information about conflicts in
          the document in the `_conflicts` attribute.
        """
        params = {}
        if rev is not None:
            params["rev"] = rev
        if revs_info:
            params["revs_info"] = _jsons(True)
        if conflicts:
            params["conflicts"] = _jsons(True)
        response = self.server._GET(self.name, id,
                                    errors={404: None},
                                    params=params)
        if response.status_code == 404:
            return default
        return response.json()

    def find(self, id_or_ids):
        """Finds a document given its identifier, or several documents
        given a list of identifiers.

        A single identifier returns the document, or None if not found.

        A list of identifiers returns the `_all_docs` response for those
        keys, including the documents; a dictionary with the item `rows`.
        Each row for an unknown identifier carries an `error` item instead
        of a document. Returns None if the database is not found.
        """
        if isinstance(id_or_ids, str):
            return self.get(id_or_ids)
        response = self.server._POST(self.name, "_all_docs",
                                     params=encode_options({"include_docs": True}),
                                     json={"keys": list(id_or_ids)},
                                     errors={404: None})
        if response.status_code == 404:
            return None
        return response.json()

    def all_docs(self, **options):
        """Returns the rows of the `_all_docs` index of the database.

        The keyword arguments are sent as query options. `include_docs`
        defaults to `False`; if `True`, each row contains the document
        in its `doc` item.
        """
        options.setdefault("include_docs", False)
        response = self.server._GET(self.name, "_all_docs",
                                    params=encode_options(options))
        return response.json().get("rows") or []

    def ids(self):
        "Returns an iterator over all document identifiers."
        return _DatabaseIterator(self, include_docs=False)

    def save(self, doc, raise_error=False):
        """Inserts or updates the document.

        If the document is already in the database, the `_rev` item must
        be present in the document, and it will be updated.

        If the document does not contain an item `_id`, it is added
        having a UUID4 hex value. The `_rev` item is also added.

        Returns True if saved. If the save fails, then False is returned,
        unless `raise_error` is True, in which case the error is raised.
        """
        if "_id" not in doc:
            doc["_id"] = self.server.uuid()
        try:
            response = self.server._PUT(self.name, doc["_id"], json=doc)
        except (CouchBindException, IOError) as error:
            if raise_error:
                raise
            logger.warning("Could not save document '%s' in '%s': %s",
                           doc["_id"], self, error)
            return False
        data = response.json()
        doc["_id"] = data["id"]
        doc["_rev"] = data["rev"]
        return True

    def bulk_save(self, docs, raise_error=False):
        """Saves the given documents using a single HTTP request.

        Each document lacking an `_id` item is given one. The `_rev` item
        of each document is updated from the result, for those documents
        that were saved.

        Failure to save an individual document is logged, but does not
        change the return value; only failure of the request as a whole
        does. Returns True if the request succeeded. If it fails, then
        False is returned, unless `raise_error` is True, in which case
        the error is raised.
        """
        docs = list(docs)
        for doc in docs:
            if "_id" not in doc:
                doc["_id"] = self.server.uuid()
        try:
            response = self.server._POST(self.name, "_bulk_docs",
                                         json={"docs": docs})
        except (CouchBindException, IOError) as error:
            if raise_error:
                raise
            logger.warning("Could not bulk save %s documents in '%s': %s",
                           len(docs), self, error)
            return False
        for result in response.json():
            if "error" in result:
                logger.warning("Document '%s' not saved in '%s': %s %s",
                               result.get("id"), self, result["error"],
                               result.get("reason", ""))
                continue
            if "rev" not in result:
                continue
            matches = [d for d in docs if d["_id"] == result.get("id")]
            if len(matches) == 1:
                matches[0]["_rev"] = result["rev"]
        return True

    def remove(self, doc):
        """Deletes the document, which must contain the _id and _rev items.

        Returns True if deleted, False if the server refused.
        """
        if "_id" not in doc:
            raise NotFoundError("missing '_id' item in the document")
        if "_rev" not in doc:
            raise RevisionError("missing '_rev' item in the document")
        try:
            self.server._DELETE(self.name, doc["_id"],
                                params={"rev": doc["_rev"]})
        except (CouchBindException, IOError) as error:
            logger.warning("Could not remove document '%s' from '%s': %s",
                           doc["_id"], self, error)
            return False
        return True

    def get_design(self, designname):
        "Gets the named design document."
        response = self.server._GET(self.name, "_design/" + designname)
        return response.json()

    def put_design(self, designname, doc, rebuild=True):
        """Inserts or updates the design document under the given name.

        If the existing design document is identical, no action is taken and
        False is returned, else the document is updated and True is returned.

        If `rebuild` is True, force view indexes to be rebuilt after update
        by accessing the view. This may take some time.

        Example of doc:
        ```
          {"views":
            {"name":
              {"map": "function (doc) {emit(doc.name, null);}"},
             "name_count":
              {"map": "function (doc) {emit(doc.name, null);}",
               "reduce": "_count"}
            },
           "lists":
            {"names":
              "function (head, req) {...}"
            }
          }
        ```
        """
        response = self.server._GET(self.name, "_design/" + designname,
                                    errors={404: None})
        if response.status_code == 200:
            current_doc = response.json()
            doc["_id"] = current_doc["_id"]
            doc["_rev"] = current_doc["_rev"]
            if doc == current_doc:
                return False
        response = self.server._PUT(self.name, "_design/" + designname,
                                    json=doc)
        doc["_rev"] = response.json()["rev"]
        if rebuild:
            for view in doc.get("views", {}):
                self.view(designname, view, limit=1)
        return True

    def view(self, designname, viewname, etag=None, keys=None, **options):
        """Query a view index to obtain data and/or documents.

        - `designname`: Name of the design document; a leading `_design/`
          is allowed.
        - `etag`: The ETag of a previous result of the same query. If the
          result has not changed, the server responds with status 304 and
          no rows.
        - `keys`: Return only rows where the key matches one of those
          specified as a list. The query is then sent as a POST.

        All other keyword arguments are query options; see `encode_options`.
        Commonly used: `key`, `startkey`, `endkey`, `skip`, `limit`,
        `descending`, `group`, `group_level`, `reduce`, `include_docs`.
        If `include_docs` is true, `reduce` defaults to `False`.

        Returns a ViewResult instance, containing the following attributes:

        - `rows`: the list of Row instances.
        - `offset`: the offset used for the set of rows.
        - `total_rows`: the total number of rows selected.
        - `status`: the HTTP status code of the response.
        - `etag`: the ETag of the response, if any.

        A Row object contains the following attributes:

        - `id`: the identifier of the document, if any.
        - `key`: the key for the index row.
        - `value`: the value for the index row.
        - `doc`: the document, if any.
        """
        if designname.startswith("_design/"):
            designname = designname[len("_design/"):]
        if options.get("include_docs"):
            options.setdefault("reduce", False)
        headers = {}
        if etag is not None:
            headers["If-None-Match"] = etag
        segments = (self.name, "_design/" + designname, "_view", viewname)
        params = encode_options(options)
        if keys is None:
            response = self.server._GET(*segments,
                                        params=params, headers=headers)
        else:
            response = self.server._POST(*segments,
                                         params=params, headers=headers,
                                         json={"keys": keys})
        if response.status_code == 304:
            data = {}
        else:
            data = response.json()
        return ViewResult([Row(r.get("id"), r.get("key"), r.get("value"),
                               r.get("doc")) for r in data.get("rows", [])],
                          data.get("offset"),
                          data.get("total_rows"),
                          status=response.status_code,
                          etag=response.headers.get("ETag"))

    def list(self, designname, listname, viewname, keys=None, **options):
        """Query a view through a list function of the design document.

        - `designname`: Name of the design document; a leading `_design/`
          is allowed.
        - `keys`: Pass only rows where the key matches one of those
          specified as a list. The query is then sent as a POST.

        All other keyword arguments are query options; see `encode_options`.

        Returns the output of the list function; decoded if JSON,
        else as text.
        """
        if designname.startswith("_design/"):
            designname = designname[len("_design/"):]
        segments = (self.name, "_design/" + designname, "_list",
                    listname, viewname)
        params = encode_options(options)
        if keys is None:
            response = self.server._GET(*segments, params=params)
        else:
            response = self.server._POST(*segments, params=params,
                                         json={"keys": keys})
        try:
            return response.json()
        except ValueError:
            return response.text

    def full_text_search(self, designname, indexname, query=None,
                         operator="OR", **options):
        """Query a full-text index of the database via the `_fti` endpoint.

        - `query`: A query string, or a dictionary of field names and
          values which are combined into `field:value` terms joined by
          the `operator`.
        - `include_docs`: Include the documents in the result; default False.

        All other keyword arguments are query options; see `encode_options`.

        Returns the search result as given by the server.
        """
        options = copy.deepcopy(options)
        if not options.get("include_docs"):
            options["include_docs"] = False
        if query:
            if isinstance(query, str):
                options["q"] = query
            else:
                joiner = f" {operator} "
                options["q"] = joiner.join([f"{key}:{value}"
                                            for key, value in query.items()])
        response = self.server._GET(self.name, "_fti", designname, indexname,
                                    params=encode_options(options))
        return response.json()

    def get_attachment(self, doc, filename):
        "Returns a file-like object containing the content of the attachment."
        if not filename:
            raise ValueError("attachment filename is required")
        response = self.server._GET(self.name, doc["_id"],
                                    *filename.split("/"),
                                    params={"rev": doc["_rev"]})
        return io.BytesIO(response.content)

    def put_attachment(self, doc, content, filename=None, content_type=None):
        """Adds or updates the given content as an attachment to
        the given document in the database.

        - `content` is bytes, a string or a file-like object.
        - If `filename` is not provided, then the base name of the
          `content` object's name is used. If this fails, `ValueError`
          is raised.
        - If `content_type` is not provided, then an attempt to guess it from
          the filename extension is made. If that does not work, it is
          set to `"application/octet-stream"`

        The document must have a `_rev` item. Returns True and updates
        the `_rev` item of the document if the server accepted the
        attachment, else returns False. Raises `DatabaseError` if the
        request fails.
        """
        if "_rev" not in doc:
            raise RevisionError("the document must have a '_rev' item"
                                " in order to add attachments")
        if filename is None:
            try:
                filename = os.path.basename(content.name)
            except (AttributeError, TypeError):
                raise ValueError("could not figure out filename")
        if not filename:
            raise ValueError("attachment filename is required")
        if not content_type:
            (content_type, enc) = mimetypes.guess_type(filename, strict=False)
            if not content_type: content_type = BIN_MIME
        if isinstance(content, str):
            content = content.encode("utf-8")
        try:
            response = self.server._PUT(self.name, doc["_id"],
                                        *filename.split("/"),
                                        data=content,
                                        params={"rev": doc["_rev"]},
                                        headers={"Content-Type": content_type})
        except CouchBindException as error:
            raise DatabaseError("Failed to add attachment",
                                status=error.status) from error
        data = response.json()
        if not data.get("ok"):
            return False
        doc["_rev"] = data["rev"]
        return True

    def delete_attachment(self, doc, filename):
        """Deletes the attachment from the document, which must contain
        the `_id` and `_rev` items.

        Returns True and updates the `_rev` item of the document if the
        server accepted the deletion, else returns False. Raises
        `DatabaseError` if the request fails.
        """
        if "_id" not in doc:
            raise NotFoundError("cannot delete attachments from a document"
                                " that has no '_id' item")
        if "_rev" not in doc:
            raise RevisionError("cannot delete attachments from a document"
                                " that has no '_rev' item")
        if not filename:
            raise ValueError("attachment filename is required")
        try:
            response = self.server._DELETE(self.name, doc["_id"],
                                           *filename.split("/"),
                                           params={"rev": doc["_rev"]})
        except CouchBindException as error:
            raise DatabaseError(f"Failed to delete attachment: {error.status}",
                                status=error.status) from error
        data = response.json()
        if not data.get("ok"):
            return False
        doc["_rev"] = data["rev"]
        return True


class _DatabaseIterator(object):
    "Iterator over all documents, or all document identifiers, in a database."

    def __init__(self, db, limit=CHUNK_SIZE, include_docs=True):
        self.db = db
        self.options = {"include_docs": bool(include_docs),
                        "limit": int(limit),
                        "skip": 0}
        self.chunk = []

    def __iter__(self):
        return self

    def __next__(self):
        try:
            return self.chunk.pop()
        except IndexError:
            response = self.db.server._GET(self.db.name,
                                           "_all_docs",
                                           params=encode_options(self.options))
            data = response.json()
            rows = data["rows"]
            if len(rows) == 0:
                raise StopIteration
            if self.options["include_docs"]:
                self.chunk = [r["doc"] for r in rows]
            else:
                self.chunk = [r["id"] for r in rows]
            self.chunk.reverse()
            self.options["skip"] = data["offset"] + len(self.chunk)
            return self.chunk.pop()


class ViewResult(object):
    """Result of view query; contains rows, offset, total_rows,
    and the status and etag of the response.
    Instances of this class are not supposed to be created by client software.
    """

    def __init__(self, rows, offset, total_rows, status=None, etag=None):
        self.rows = rows
        self.offset = offset
        self.total_rows = total_rows
        self.status = status
        self.etag = etag

    def __len__(self):
        return len(self.rows)

    def __getitem__(self, i):
        return self.rows[i]

    def __iter__(self):
        return iter(self.rows)

    def json(self):
        "Return data in a JSON-like representation."
        result = dict()
        result["total_rows"] = self.total_rows
        result["offset"] = self.offset
        result["rows"] = [row._asdict() for row in self.rows]
        if self.etag is not None:
            result["etag"] = self.etag
        return result


Row = collections.namedtuple("Row", ["id", "key", "value", "doc"])


class CouchBindException(Exception):
    "Base CouchBind exception. The HTTP status code, if any, is in `status`."

    def __init__(self, message="", status=None):
        super().__init__(message)
        self.status = status


class NotFoundError(CouchBindException):
    "No such entity exists."


class BadRequestError(CouchBindException):
    "Invalid request; bad name, body or headers."


class CreationError(CouchBindException):
    "Could not create the entity; it exists already."


class RevisionError(CouchBindException):
    "Wrong or missing '_rev' item in the document."


class AuthorizationError(CouchBindException):
    "Current user not authorized to perform the operation."


class ContentTypeError(CouchBindException):
    "Bad 'Content-Type' value in the request."


class ServerError(CouchBindException):
    "Internal server error."


class DatabaseError(CouchBindException):
    "Unexpected response status, or failed attachment operation."


_ERRORS = {200: None,
           201: None,
           202: None,
           304: None,
           400: BadRequestError,
           401: AuthorizationError,
           403: AuthorizationError,
           404: NotFoundError,
           409: RevisionError,
           412: CreationError,
           415: ContentTypeError,
           500: ServerError}


def encode_options(options):
    """Convert query options into query parameters for the request.

    The values of `key`, `startkey`, `endkey` and their underscored
    variants are always JSON-encoded, so that e.g. a string key is quoted.
    Other string values are used as is, and any other value is
    JSON-encoded. Options having the value None are skipped.
    """
    params = {}
    for name, value in options.items():
        if value is None:
            continue
        if name in JSON_OPTIONS or not isinstance(value, str):
            value = _jsons(value)
        params[name] = value
    return params


def _jsons(data, indent=None):
    "Convert data into JSON string."
    return json.dumps(data, ensure_ascii=False, indent=indent)


def _quote(segment):
    "Percent-encode a URL path segment, keeping a design or local prefix."
    for prefix in ("_design/", "_local/"):
        if segment.startswith(prefix):
            return prefix + urllib.parse.quote(segment[len(prefix):], safe="")
    return urllib.parse.quote(segment, safe="")


def _get_parser():
    "Get the parser for the command line tool."
    p = argparse.ArgumentParser(prog="couchbind", usage="%(prog)s [options]",
                                description="Command line tool for a CouchDB"
                                            " server, leveraging Python module"
                                            " CouchBind.")
    p.add_argument("--settings", metavar="FILEPATH",
                   help="settings file in JSON format")
    p.add_argument("-S", "--server",
                   help="server URL, including port number")
    p.add_argument("-d", "--database", help="database to operate on")
    p.add_argument("-u", "--username", help="user account name")
    x01 = p.add_mutually_exclusive_group()
    x01.add_argument("-p", "--password", help="user account password")
    x01.add_argument("-q", "--password_question", action="store_true",
                     help="ask for the password by interactive input")
    p.add_argument("--ca_file", metavar="FILEORDIRPATH",
                   help="file or directory containing CAs")
    p.add_argument("-o", "--output", metavar="FILEPATH",
                   help="write output to the given file (JSON format)")
    p.add_argument("--indent", type=int, metavar="INT",
                   help="indentation level for JSON format output file")
    p.add_argument("-y", "--yes", action="store_true",
                   help="do not ask for confirmation (delete, destroy)")
    x02 = p.add_mutually_exclusive_group()
    x02.add_argument("-v", "--verbose", action="store_true",
                     help="print more information, and log requests")
    x02.add_argument("-s", "--silent", action="store_true",
                     help="print no information")

    g0 = p.add_argument_group("server operations")
    g0.add_argument("-V", "--version", action="store_true",
                    help="output server version")
    g0.add_argument("--list", action="store_true",
                    help="output a list of the databases on the server")

    g1 = p.add_argument_group("database operations")
    x11 = g1.add_mutually_exclusive_group()
    x11.add_argument("--create", action="store_true",
                     help="create the database")
    x11.add_argument("--destroy", action="store_true",
                     help="delete the database and all its contents")
    g1.add_argument("--info", action="store_true",
                    help="output information about the database")
    g1.add_argument("--all_docs", action="store_true",
                    help="output the rows of all documents in the database")

    g2 = p.add_argument_group("document operations")
    x2 = g2.add_mutually_exclusive_group()
    x2.add_argument("-G", "--get", metavar="DOCID",
                    help="output the document with the given identifier")
    x2.add_argument("-P", "--put", metavar="FILEPATH",
                    help="store the document; arg is literal doc or filepath")
    x2.add_argument("--delete", metavar="DOCID",
                    help="delete the document with the given identifier")
    x2.add_argument("--find", nargs="+", metavar="DOCID",
                    help="output the documents with the given identifiers")
    x2.add_argument("--bulk", metavar="FILEPATH",
                    help="store all documents in the JSON list in the file")

    g3 = p.add_argument_group("attachments to document")
    x3 = g3.add_mutually_exclusive_group()
    x3.add_argument("--attach", nargs=2, metavar=("DOCID", "FILEPATH"),
                    help="attach the specified file to the given document")
    x3.add_argument("--detach", nargs=2, metavar=("DOCID", "FILENAME"),
                    help="remove the attached file from the given document")
    x3.add_argument("--get_attach", nargs=2, metavar=("DOCID", "FILENAME"),
                    help="get the attached file from the given document;"
                         " write to same filepath or that given by '-o'")

    g4 = p.add_argument_group("query a design view or list")
    x40 = g4.add_mutually_exclusive_group()
    x40.add_argument("--view", metavar="SPEC",
                     help="design view '{design}/{view}' to query")
    x40.add_argument("--list_fn", metavar="SPEC",
                     help="design list '{design}/{list}/{view}' to query")
    x41 = g4.add_mutually_exclusive_group()
    x41.add_argument("--key", metavar="KEY",
                     help="key value selecting view rows")
    x41.add_argument("--startkey", metavar="KEY",
                     help="start key value selecting range of view rows")
    x41.add_argument("--keys", nargs="+", metavar="KEY",
                     help="key values selecting view rows")
    g4.add_argument("--endkey", metavar="KEY",
                    help="end key value selecting range of view rows")
    g4.add_argument("--startkey_docid", metavar="DOCID",
                    help="return rows starting with the specified document")
    g4.add_argument("--endkey_docid", metavar="DOCID",
                    help="stop returning rows when specified document reached")
    g4.add_argument("--group", action="store_true",
                    help="group the results using the 'reduce' function")
    g4.add_argument("--group_level", type=int, metavar="INT",
                    help="specify the group level to use")
    g4.add_argument("--noreduce", action="store_true",
                    help="do not use the 'reduce' function of the view")
    g4.add_argument("--limit", type=int, metavar="INT",
                    help="limit the number of returned rows")
    g4.add_argument("--skip", type=int, metavar="INT",
                    help="skip this number of rows before returning result")
    g4.add_argument("--descending", action="store_true",
                    help="sort rows in descending order (swap start/end keys!)")
    g4.add_argument("--include_docs", action="store_true",
                    help="include documents in result")

    g5 = p.add_argument_group("full-text search")
    g5.add_argument("--search", metavar="SPEC",
                    help="full-text index '{design}/{index}' to query")
    g5.add_argument("--query", metavar="QUERY",
                    help="full-text query string")
    return p


def _get_settings(pargs):
    """Get the settings lookup for the command line tool.
    1) Initialize with DEFAULT_SETTINGS
    2) Update with values in JSON file in DEFAULT_SETTINGS_FILEPATHS, if any.
    3) Update with values in the explicitly given settings file, if any.
    4) Update from environment variables.
    5) Update from command line arguments.
    """
    settings = DEFAULT_SETTINGS.copy()
    filepaths = DEFAULT_SETTINGS_FILEPATHS[:]
    if pargs.settings:
        filepaths.append(pargs.settings)
    for filepath in filepaths:
        try:
            settings = read_settings(filepath, settings=settings)
            _verbose(pargs, "Settings read from file", filepath)
        except IOError:
            _verbose(pargs, "Warning: no settings file", filepath)
        except (ValueError, TypeError):
            sys.exit(f"Error: bad settings file {filepath}")
    for key in DEFAULT_SETTINGS:
        try:
            settings[key] = os.environ[key]
        except KeyError:
            pass
    if pargs.server:
        settings["SERVER"] = pargs.server
    if pargs.database:
        settings["DATABASE"] = pargs.database
    if pargs.username:
        settings["USERNAME"] = pargs.username
    if pargs.password:
        settings["PASSWORD"] = pargs.password
    if pargs.verbose:
        s = dict()
        for key in ["SERVER", "DATABASE", "USERNAME", "TIMEOUT"]:
            s[key] = settings[key]
        if settings["PASSWORD"] is None:
            s["PASSWORD"] = None
        else:
            s["PASSWORD"] = "***"
        print("Settings:", _jsons(s, indent=2))
    return settings


DEFAULT_SETTINGS = {"SERVER": "http://localhost:5984",
                    "DATABASE": None,
                    "USERNAME": None,
                    "PASSWORD": None,
                    "TIMEOUT": None}

DEFAULT_SETTINGS_FILEPATHS = ["~/.couchbind", "settings.json"]


def read_settings(filepath, settings=None):
    """Read the settings lookup from a JSON format file.
    If `settings` is given, then return an updated copy of it,
    else copy the default settings, update, and return.
    """
    if settings:
        result = settings.copy()
    else:
        result = DEFAULT_SETTINGS.copy()
    with open(os.path.expanduser(filepath), "rb") as infile:
        data = json.load(infile)
        for key in DEFAULT_SETTINGS:
            for prefix in ["", "COUCHDB_", "COUCHBIND_"]:
                try:
                    result[key] = data[prefix + key]
                except KeyError:
                    pass
    return result


def _get_database(server, settings):
    "Get the database defined in the settings."
    if not settings["DATABASE"]:
        sys.exit("Error: no database defined")
    return server[settings["DATABASE"]]

def _message(pargs, *args):
    "Unless flag '--silent' was used, print the arguments."
    if pargs.silent: return
    print(*args)

def _verbose(pargs, *args):
    "If flag '--verbose' was used, then print the arguments."
    if not pargs.verbose: return
    print(*args)

def _json_output(pargs, data, else_print=False):
    """If `--output` was used, write the data in JSON format to the file.
    The indentation level is set by `--indent`.
    If the filepath ends in `.gz`. then a gzipped file is produced.

    If `--output` was not used and `else_print` is True,
    then use `print()` for indented JSON output.

    Return True if `--output` was used, else False.
    """
    if pargs.output:
        js = json.dumps(data, ensure_ascii=False, indent=pargs.indent)
        if pargs.output.endswith(".gz"):
            with gzip.open(pargs.output, "w") as outfile:
                outfile.write(js.encode("utf-8"))
        else:
            with io.open(pargs.output, "w", encoding="utf-8") as outfile:
                outfile.write(js)
        _verbose(pargs, "Wrote JSON to file", pargs.output)
    elif else_print:
        print(_jsons(data, indent=2))
    return bool(pargs.output)

def json_input(filepath):
    "Read the JSON document file."
    try:
        with open(filepath, "r") as infile:
            return json.load(infile)
    except (IOError, ValueError, TypeError) as error:
        sys.exit(f"Error: {error}")

def _json_arg(value):
    "Interpret a command line value as JSON if possible, else as a string."
    try:
        return json.loads(value)
    except ValueError:
        return value

def _timeout(settings):
    "Get the request timeout in seconds from the settings, if any."
    if settings["TIMEOUT"] in (None, ""):
        return None
    try:
        return float(settings["TIMEOUT"])
    except (ValueError, TypeError):
        sys.exit(f"Error: bad timeout value {settings['TIMEOUT']}")

def _execute(pargs, settings):
    "Execution of the CouchBind command line tool."
    server = Server(href=settings["SERVER"],
                    username=settings["USERNAME"],
                    password=settings["PASSWORD"],
                    ca_file=pargs.ca_file,
                    timeout=_timeout(settings))
    if pargs.verbose and server.user_context:
        print("User context:", _jsons(server.user_context, indent=2))
    if pargs.version:
        if not _json_output(pargs, server.version):
            print(server.version)
    if pargs.list:
        dbs = list(server)
        if not _json_output(pargs, [str(db) for db in dbs]):
            for db in dbs:
                print(db)

    if pargs.create:
        db = server.create(settings["DATABASE"])
        _message(pargs, "Created database", db)
    elif pargs.destroy:
        db = _get_database(server, settings)
        if not pargs.yes:
            answer = input(f"Really destroy database '{db}' [n] ? ")
            if answer and answer.lower()[0] in ("y", "t"):
                pargs.yes = True
        if pargs.yes:
            db.destroy()
            _message(pargs, f"Destroyed database '{db}'.")

    if pargs.info:
        db = _get_database(server, settings)
        _json_output(pargs, db.get_info(), else_print=True)
    if pargs.all_docs:
        db = _get_database(server, settings)
        rows = db.all_docs(include_docs=pargs.include_docs)
        _json_output(pargs, rows, else_print=True)

    if pargs.get:
        doc = _get_database(server, settings)[pargs.get]
        _json_output(pargs, doc, else_print=True)
    elif pargs.put:
        try:  # Attempt to interpret arg as explicit doc
            doc = json.loads(pargs.put)
        except (ValueError, TypeError):  # Arg is filepath to doc
            doc = json_input(pargs.put)
        _get_database(server, settings).save(doc, raise_error=True)
        _message(pargs, "Stored doc", doc["_id"])
    elif pargs.delete:
        db = _get_database(server, settings)
        doc = db[pargs.delete]
        if not db.remove(doc):
            sys.exit(f"Error: could not delete doc {doc['_id']}")
        _message(pargs, "Deleted doc", doc["_id"])
    elif pargs.find:
        result = _get_database(server, settings).find(pargs.find)
        _json_output(pargs, result, else_print=True)
    elif pargs.bulk:
        docs = json_input(pargs.bulk)
        if not isinstance(docs, list):
            sys.exit("Error: bulk file must contain a JSON list of documents")
        _get_database(server, settings).bulk_save(docs, raise_error=True)
        _message(pargs, f"Stored {len(docs)} docs")

    if pargs.attach:
        db = _get_database(server, settings)
        doc = db[pargs.attach[0]]
        with open(pargs.attach[1], "rb") as infile:
            db.put_attachment(doc, infile)
        _message(pargs, "Attached file '{1}' to doc '{0}'".format(*pargs.attach))
    elif pargs.detach:
        db = _get_database(server, settings)
        doc = db[pargs.detach[0]]
        db.delete_attachment(doc, pargs.detach[1])
        _message(pargs,
                "Detached file '{1}' from doc '{0}'".format(*pargs.detach))
    elif pargs.get_attach:
        db = _get_database(server, settings)
        doc = db[pargs.get_attach[0]]
        filepath = pargs.output or pargs.get_attach[1]
        with open(filepath, "wb") as outfile:
            outfile.write(db.get_attachment(doc, pargs.get_attach[1]).read())
        _message(pargs,
                 "Wrote file '{0}' from doc '{1}' attachment '{2}'".format(
                     filepath, *pargs.get_attach))

    if pargs.view or pargs.list_fn:
        kwargs = {}
        for key in ("startkey_docid", "endkey_docid", "group_level",
                    "limit", "skip"):
            value = getattr(pargs, key)
            if value is not None:
                kwargs[key] = value
        for key in ("key", "startkey", "endkey"):
            value = getattr(pargs, key)
            if value is not None:
                kwargs[key] = _json_arg(value)
        for key in ("group", "descending", "include_docs"):
            if getattr(pargs, key):
                kwargs[key] = True
        if pargs.keys:
            kwargs["keys"] = [_json_arg(k) for k in pargs.keys]
        if pargs.noreduce:
            kwargs["reduce"] = False
        db = _get_database(server, settings)
        if pargs.view:
            try:
                design, view = pargs.view.split("/")
            except ValueError:
                sys.exit("Error: invalid view specification")
            result = db.view(design, view, **kwargs)
            _json_output(pargs, result.json(), else_print=True)
        else:
            try:
                design, listname, view = pargs.list_fn.split("/")
            except ValueError:
                sys.exit("Error: invalid list specification")
            result = db.list(design, listname, view, **kwargs)
            if isinstance(result, str):
                print(result)
            else:
                _json_output(pargs, result, else_print=True)

    if pargs.search:
        try:
            design, index = pargs.search.split("/")
        except ValueError:
            sys.exit("Error: invalid full-text index specification")
        db = _get_database(server, settings)
        result = db.full_text_search(design, index, query=pargs.query,
                                     include_docs=pargs.include_docs,
                                     limit=pargs.limit, skip=pargs.skip)
        _json_output(pargs, result, else_print=True)


def main():
    "Entry point for the CouchBind command line tool."
    try:
        parser = _get_parser()
        pargs = parser.parse_args()
        if len(sys.argv) == 1:
            parser.print_usage()
        if pargs.verbose:
            logging.basicConfig(level=logging.DEBUG,
                                format="%(name)s %(levelname)s %(message)s")
        settings = _get_settings(pargs)
        if pargs.password_question:
            settings["PASSWORD"] = getpass.getpass("password > ")
        _execute(pargs, settings)
    except (CouchBindException, requests.RequestException) as error:
        sys.exit(f"Error: {error}")


if __name__ == "__main__":
    main()
