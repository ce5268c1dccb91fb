"""
CLI to start a static file server. Usage:

    python -m asgistatic [ROOT] [--key=value ...]

Options (also accepted as ``--key value``):

    --root        The directory to serve (default "client").
    --host        The host to bind to (default "localhost").
    --port        The port to listen on (default 8080).
    --bind        The host and port as "host:port".
    --server      The ASGI server to use, "uvicorn" or "hypercorn".
    --index       The index document for directories (default "index.html").
    --fallback    A document to serve as the body of 404 responses.
    --max-age     The max-age for the cache-control header (default 0).
    --chunk-size  The number of bytes per chunk when streaming files.
    --log-level   The log level of the ASGI server (default "warning").
    --dotfiles    Serve files whose name starts with a dot.
    --no-redirect Do not redirect directories to a path with a trailing slash.

Options that are not given are taken from ASGISTATIC_XX environment variables.
"""

import sys

from ._config import Config, _parse_int
from ._logging import logger
from ._run import serve


OPTIONS = (
    "root",
    "host",
    "port",
    "bind",
    "server",
    "index",
    "fallback",
    "max-age",
    "chunk-size",
    "log-level",
)

FLAGS = {"dotfiles": ("dotfiles", True), "no-redirect": ("redirect", False)}


def parse_args(argv):
    """ Parse CLI arguments into a dict of keyword arguments for Config.
    Raises ValueError for invalid arguments.
    """
    kwargs = {}
    positional = []
    argv = list(argv)
    while argv:
        arg = argv.pop(0)
        if not arg.startswith("--"):
            positional.append(arg)
            continue
        key, eq, val = arg[2:].partition("=")
        if key in FLAGS:
            if eq:
                raise ValueError(f"Option --{key} does not take a value")
            name, value = FLAGS[key]
            kwargs[name] = value
        elif key in OPTIONS:
            if not eq:
                if not argv:
                    raise ValueError(f"Option --{key} needs a value")
                val = argv.pop(0)
            kwargs[key.replace("-", "_")] = val
        else:
            raise ValueError(f"Unknown option --{key}")

    # The root can also be given as a positional argument
    if len(positional) > 1:
        raise ValueError(f"Expected at most one positional argument, got {positional}")
    elif positional:
        if "root" in kwargs:
            raise ValueError("The root is given twice")
        kwargs["root"] = positional[0]

    # Convert values
    if "bind" in kwargs:
        bind = kwargs.pop("bind")
        host, _, port = bind.rpartition(":")
        if not host:
            raise ValueError(f"Option --bind must be 'host:port', got {bind!r}")
        kwargs["host"] = host
        kwargs["port"] = port
    for key in ("port", "max_age", "chunk_size"):
        if key in kwargs:
            kwargs[key] = _parse_int(key, kwargs[key])

    return kwargs


def main(argv=None):
    """ Start a static file server from the given CLI arguments (default
    ``sys.argv[1:]``). Returns the exit code: 0 on graceful shutdown,
    1 if the server could not start, 2 for invalid arguments.
    """
    argv = sys.argv[1:] if argv is None else argv
    if "--help" in argv or "-h" in argv:
        print(__doc__.strip())
        return 0

    try:
        config = Config.from_env(**parse_args(argv))
    except (TypeError, ValueError) as err:
        logger.error(f"Invalid configuration: {err}")
        return 2

    try:
        serve(config)
    except KeyboardInterrupt:
        pass
    except OSError as err:
        logger.error(f"Could not start server on {config.bind}: {err}")
        return 1
    return 0


def cli():
    """ Entry point for the ``asgistatic`` command.
    """
    sys.exit(main())


if __name__ == "__main__":
    cli()
