"""
This module implements the Config class: the single object that holds all
settings of a static file server. It is created once at startup and passed
explicitly to the responder and the server runner.
"""

import os


ENV_PREFIX = "ASGISTATIC_"

SERVERS = ("uvicorn", "hypercorn")

LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


class Config:
    """ The configuration of a static file server. All settings are
    validated on construction and are read-only afterwards.

    Arguments:

    * ``root (str)``: The directory to serve files from. Default "client".
      Stored as an absolute canonical path (symlinks resolved).
    * ``host (str)``: The host to bind to. Default "localhost".
    * ``port (int)``: The TCP port to listen on. Default 8080.
    * ``index (str)``: The document to serve for a directory. Default
      "index.html". Set to None to disable index documents.
    * ``fallback (str)``: A document (relative to the root) to serve as the
      body of 404 responses. Default None.
    * ``max_age (int)``: The max-age for the cache-control header, in seconds.
      Default 0.
    * ``chunk_size (int)``: The number of bytes to read per chunk when
      streaming a file. Default 64 KiB.
    * ``dotfiles (bool)``: Whether to serve files and directories whose name
      starts with a dot. Default False.
    * ``redirect (bool)``: Whether to redirect directory paths that lack a
      trailing slash. Default True.
    * ``server (str)``: The ASGI server to run with, "uvicorn" or "hypercorn".
    * ``log_level (str)``: The log level passed to the ASGI server.
    """

    __slots__ = (
        "_root",
        "_host",
        "_port",
        "_index",
        "_fallback",
        "_max_age",
        "_chunk_size",
        "_dotfiles",
        "_redirect",
        "_server",
        "_log_level",
    )

    def __init__(
        self,
        root="client",
        *,
        host="localhost",
        port=8080,
        index="index.html",
        fallback=None,
        max_age=0,
        chunk_size=64 * 2 ** 10,
        dotfiles=False,
        redirect=True,
        server="uvicorn",
        log_level="warning",
    ):
        if not isinstance(root, (str, os.PathLike)):
            raise TypeError("Config root must be a str or path.")
        root = os.path.realpath(os.path.abspath(os.fspath(root)))
        if not os.path.isdir(root):
            raise ValueError(f"Config root is not a directory: {root!r}")

        if not (isinstance(host, str) and host):
            raise TypeError("Config host must be a nonempty str.")
        if not isinstance(port, int) or isinstance(port, bool):
            raise TypeError("Config port must be an int.")
        if not 0 <= port <= 65535:
            raise ValueError(f"Config port out of range: {port}")

        for name, value in [("index", index), ("fallback", fallback)]:
            if value is None:
                continue
            if not (isinstance(value, str) and value.strip("/")):
                raise TypeError(f"Config {name} must be None or a nonempty str.")

        if not (isinstance(max_age, int) and max_age >= 0):
            raise ValueError("Config max_age must be a positive int.")
        if not (isinstance(chunk_size, int) and chunk_size > 0):
            raise ValueError("Config chunk_size must be a positive int.")

        if not isinstance(server, str) or server.lower() not in SERVERS:
            raise ValueError(f"Invalid server specified: {server!r}")
        if not isinstance(log_level, str) or log_level.lower() not in LOG_LEVELS:
            raise ValueError(f"Invalid log level specified: {log_level!r}")

        self._root = root
        self._host = host
        self._port = port
        self._index = index
        self._fallback = fallback
        self._max_age = max_age
        self._chunk_size = chunk_size
        self._dotfiles = bool(dotfiles)
        self._redirect = bool(redirect)
        self._server = server.lower()
        self._log_level = log_level.lower()

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """ Create a Config from environment variables (``ASGISTATIC_ROOT``,
        ``ASGISTATIC_PORT``, etc.). Keyword arguments that are not None
        take precedence over the environment.
        """
        environ = os.environ if environ is None else environ
        kwargs = {}
        for key in ("root", "host", "index", "fallback", "server", "log_level"):
            value = environ.get(ENV_PREFIX + key.upper(), "")
            if value:
                kwargs[key] = value
        for key in ("port", "max_age", "chunk_size"):
            value = environ.get(ENV_PREFIX + key.upper(), "")
            if value:
                kwargs[key] = _parse_int(key, value)
        for key in ("dotfiles", "redirect"):
            value = environ.get(ENV_PREFIX + key.upper(), "")
            if value:
                kwargs[key] = _parse_bool(key, value)
        kwargs.update((k, v) for k, v in overrides.items() if v is not None)
        return cls(**kwargs)

    def __repr__(self):
        return f"<Config root={self._root!r} bind={self.bind!r}>"

    @property
    def root(self):
        """ The absolute path of the directory being served.
        """
        return self._root

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def bind(self):
        """ The address as "host:port".
        """
        return f"{self._host}:{self._port}"

    @property
    def index(self):
        return self._index

    @property
    def fallback(self):
        return self._fallback

    @property
    def max_age(self):
        return self._max_age

    @property
    def chunk_size(self):
        return self._chunk_size

    @property
    def dotfiles(self):
        return self._dotfiles

    @property
    def redirect(self):
        return self._redirect

    @property
    def server(self):
        return self._server

    @property
    def log_level(self):
        return self._log_level


def _parse_int(key, value):
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Config {key} must be an integer, got {value!r}")


def _parse_bool(key, value):
    value = value.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    elif value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Config {key} must be a boolean, got {value!r}")
