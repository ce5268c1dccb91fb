"""
This module implements the static file responder: a coroutine function
that maps a (config, request) pair to a (status, headers, body) response,
serving files from the configured root directory.

The responder takes care of:

* Resolving the request path safely. The resolved path can never be outside
  the root directory, no matter what ``..``, backslashes or symlinks
  are involved.
* Serving the index document for directories, and redirecting directory
  paths without a trailing slash.
* Setting the content-type, content-length, cache-control, last-modified
  and etag headers.
* Conditional requests (``if-none-match`` and ``if-modified-since``),
  resulting in a 304 response.
* Streaming the file contents in chunks.
"""

import os
import stat
import mimetypes
from collections import namedtuple
from datetime import timezone
from email.utils import parsedate_to_datetime
from urllib.parse import quote
from wsgiref.handlers import format_date_time

from ._compat import sleep
from ._logging import logger


FileInfo = namedtuple(
    "FileInfo", ["path", "size", "mtime", "content_type", "etag", "last_modified"]
)

SNIFF_SIZE = 512


class StaticFileError(Exception):
    """ Base error for requests that cannot be served. The ``status``
    attribute is the corresponding HTTP status code.
    """

    status = 500


class PathTraversalError(StaticFileError):
    """ Raised when a request path points outside the root directory.
    """

    status = 403


class NotFoundError(StaticFileError):
    """ Raised when a request path does not map to a servable file.
    """

    status = 404


def resolve_path(root, request_path, dotfiles=False):
    """ Resolve the given request path to an absolute path inside ``root``.
    The root must be an absolute canonical path (as in ``Config.root``).
    The file is not required to exist.

    The request path is the percent-decoded path of the ASGI scope. The
    server has already split off the query string, so a "?" or "#" in it
    is part of a file name.

    Raises ``PathTraversalError`` if the path would escape the root, and
    ``NotFoundError`` if it refers to a dotfile while dotfiles are not
    allowed.
    """
    if "\x00" in request_path:
        raise PathTraversalError(f"Invalid path: {request_path!r}")

    # Collapse the path, but never allow climbing above the root
    parts = []
    for part in request_path.replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        elif part == "..":
            if not parts:
                raise PathTraversalError(f"Path escapes root: {request_path!r}")
            parts.pop()
        elif os.path.isabs(part) or os.path.splitdrive(part)[0]:
            raise PathTraversalError(f"Invalid path: {request_path!r}")
        else:
            parts.append(part)

    if not dotfiles:
        for part in parts:
            if part.startswith("."):
                raise NotFoundError(f"Not serving dotfile: {request_path!r}")

    # Follow symlinks, and check that we are still inside the root
    resolved = os.path.realpath(os.path.join(root, *parts))
    if os.path.commonpath([root, resolved]) != root:
        raise PathTraversalError(f"Path escapes root: {request_path!r}")
    return resolved


def guess_content_type_from_head(head):
    """ Guess the content-type based on the first bytes of a file.

    * "text/html" for data starting with ``<!DOCTYPE html>`` or ``<html>``.
    * "text/plain" for other data that is valid UTF-8.
    * "application/octet-stream" otherwise.
    """
    start = head.lstrip()[:15].lower()
    if start.startswith((b"<!doctype html", b"<html")):
        return "text/html"
    try:
        head.decode()
    except UnicodeDecodeError as err:
        # The head may cut a multibyte char in half
        if err.start < len(head) - 3:
            return "application/octet-stream"
    if b"\x00" in head:
        return "application/octet-stream"
    return "text/plain"


def get_file_info(path):
    """ Get a FileInfo for the file at the given path. Raises NotFoundError
    if it is not a regular file, and OSError if it cannot be accessed.
    """
    st = os.stat(path)
    if not stat.S_ISREG(st.st_mode):
        raise NotFoundError(f"Not a regular file: {path!r}")
    content_type, _ = mimetypes.guess_type(path)
    if not content_type:
        with open(path, "rb") as f:
            content_type = guess_content_type_from_head(f.read(SNIFF_SIZE))
    mtime_ms = st.st_mtime_ns // 1_000_000
    etag = f'W/"{st.st_size:x}-{mtime_ms:x}"'
    last_modified = format_date_time(st.st_mtime)
    return FileInfo(path, st.st_size, st.st_mtime, content_type, etag, last_modified)


def is_not_modified(info, headers):
    """ Get whether the client's cached copy (as described by the
    conditional request headers) is still up-to-date.
    If ``if-none-match`` is present, ``if-modified-since`` is ignored.
    """
    if_none_match = headers.get("if-none-match")
    if if_none_match is not None:
        if if_none_match.strip() == "*":
            return True
        etag = _strip_weak(info.etag)
        tags = [_strip_weak(tag.strip()) for tag in if_none_match.split(",")]
        return etag in tags

    if_modified_since = headers.get("if-modified-since")
    if if_modified_since:
        try:
            since = parsedate_to_datetime(if_modified_since)
        except (TypeError, ValueError, IndexError):
            return False  # Ignore invalid dates
        if since is None:
            return False
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        # Last-modified has a resolution of one second
        return int(info.mtime) <= since.timestamp()

    return False


def _strip_weak(tag):
    return tag[2:] if tag.startswith("W/") else tag


async def iter_file(f, chunk_size):
    """ Async generator that yields the contents of the given (open)
    file in chunks. The file is closed when the generator is
    exhausted or closed.
    """
    with f:
        while True:
            await sleep(0)  # Let other tasks run, e.g. the disconnect watcher
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield chunk


async def respond(config, request):
    """ Serve the file that the given request asks for, from the root
    directory of the given Config. Returns a tuple (status, headers, body),
    where body is bytes or an async generator of bytes.

    The ``request`` must have ``method``, ``path``, ``query_string`` and
    ``headers`` attributes (e.g. an ``HttpRequest``).
    """
    if request.method not in ("GET", "HEAD"):
        return 405, {"allow": "GET, HEAD"}, "Method not allowed"

    try:
        path = resolve_path(config.root, request.path, config.dotfiles)
        if os.path.isdir(path):
            if not request.path.endswith("/") and config.redirect:
                return _redirect_to_dir(request)
            if not config.index:
                raise NotFoundError(f"Directory has no index: {request.path!r}")
            path = os.path.join(path, config.index)
        info = get_file_info(path)
    except PathTraversalError:
        return 403, {}, "Forbidden"
    except (NotFoundError, FileNotFoundError, NotADirectoryError):
        return _respond_not_found(config, request)
    except OSError as err:
        return _respond_error(request, err)

    headers = {
        "content-type": info.content_type,
        "cache-control": f"public, must-revalidate, max-age={config.max_age:d}",
        "last-modified": info.last_modified,
        "etag": info.etag,
    }

    # If client already has the exact file, send confirmation now
    if is_not_modified(info, request.headers):
        headers.pop("content-type")
        return 304, headers, b""

    headers["content-length"] = str(info.size)

    # The response to a head request should not include a body
    if request.method == "HEAD" or info.size == 0:
        return 200, headers, b""

    try:
        f = open(info.path, "rb")
    except OSError as err:
        return _respond_error(request, err)
    return 200, headers, iter_file(f, config.chunk_size)


def _redirect_to_dir(request):
    # Collapse leading slashes, "//host/" would point to another site
    location = quote("/" + request.path.lstrip("/") + "/")
    if request.query_string:
        location += "?" + request.query_string
    headers = {"location": location, "content-type": "text/plain"}
    return 301, headers, f"Redirecting to {location}"


def _respond_not_found(config, request):
    if not config.fallback:
        return 404, {}, "File not found"
    # Serve the fallback document as the 404 body
    try:
        path = resolve_path(config.root, config.fallback, config.dotfiles)
        info = get_file_info(path)
        if request.method == "HEAD":
            body = b""
        else:
            with open(path, "rb") as f:
                body = f.read()
    except (StaticFileError, FileNotFoundError, NotADirectoryError):
        logger.warning(f"Fallback document not found: {config.fallback!r}")
        return 404, {}, "File not found"
    except OSError as err:
        return _respond_error(request, err)
    headers = {"content-type": info.content_type, "cache-control": "no-cache"}
    size = info.size if request.method == "HEAD" else len(body)
    headers["content-length"] = str(size)
    return 404, headers, body


def _respond_error(request, err):
    logger.error(f"Could not serve {request.path!r}: {type(err).__name__}: {err}")
    return 500, {}, "Internal server error"
