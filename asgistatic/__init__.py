"""
asgistatic - A static file server on ASGI

Serves the files in a single root directory over HTTP, with safe path
resolution, HTTP caching (etag, last-modified and conditional requests)
and streamed responses. Run it with ``python -m asgistatic --root=site``.
"""

from ._config import Config
from ._request import HttpRequest, DisconnectedError
from ._responder import respond, resolve_path, get_file_info, FileInfo
from ._responder import StaticFileError, PathTraversalError, NotFoundError
from ._app import to_asgi, make_app
from ._run import run, serve


__all__ = [
    "Config",
    "HttpRequest",
    "DisconnectedError",
    "respond",
    "resolve_path",
    "get_file_info",
    "FileInfo",
    "StaticFileError",
    "PathTraversalError",
    "NotFoundError",
    "to_asgi",
    "make_app",
    "run",
    "serve",
]


__version__ = "0.1.0"
