"""
This module implements a ``run()`` function to start an ASGI server of choice,
and a ``serve()`` function to start a static file server for a Config.
"""

from ._app import make_app


def run(app, server, bind="localhost:8080", **kwargs):
    """ Run the given ASGI app with the given ASGI server. (This works for
    any ASGI app, not just asgistatic apps.)

    Arguments:

    * ``app`` (required): The ASGI application object, or a string
      ``"module.path:appname"``.
    * ``server`` (required): The name of the server to use, "uvicorn" or "hypercorn".
    * ``bind``: The address to listen on, as "host:port".
    * ``kwargs``: additional arguments to pass to the underlying server.
    """

    # Compose application name
    if isinstance(app, str):
        appname = app
        if ":" not in appname:
            raise ValueError("If specifying an app by name, give its full path!")
    else:
        appname = app.__module__ + ":" + app.__name__

    # Check server and bind
    assert isinstance(server, str), "asgistatic.run() server arg must be a string."
    assert isinstance(bind, str), "asgistatic.run() bind arg must be a string."
    assert ":" in bind, "asgistatic.run() bind arg must be 'host:port'"
    bind = bind.replace("localhost", "127.0.0.1")

    # Select server function
    try:
        func = SERVERS[server.lower()]
    except KeyError:
        raise ValueError(f"Invalid server specified: {server!r}")

    # Delegate
    return func(appname, bind, **kwargs)


def serve(config, **kwargs):
    """ Serve the files in the root directory of the given Config, using the
    server, host and port that it specifies. Blocks until the server stops.
    Raises ``OSError`` if the port cannot be bound (Uvicorn exits with
    code 1 instead).
    """
    app = make_app(config)
    try:
        func = SERVE_FUNCS[config.server]
    except KeyError:  # pragma: no cover - Config validates the server
        raise ValueError(f"Invalid server specified: {config.server!r}")
    return func(app, config, **kwargs)


def _run_hypercorn(appname, bind, **kwargs):
    from hypercorn.__main__ import main

    # Hypercorn docs say: "Hypercorn has two loggers, an access logger and an error logger.
    # By default neither will actively log." So we dont need to do anything.

    kwargs["bind"] = bind

    args = [f"--{key.replace('_', '-')}={str(val)}" for key, val in kwargs.items()]
    return main(args + [appname])


def _run_uvicorn(appname, bind, **kwargs):
    from uvicorn.main import main

    host, _, port = bind.partition(":")
    kwargs["host"] = host
    kwargs["port"] = port

    # Default to an error log_level, otherwise uvicorn is quite verbose
    kwargs.setdefault("log_level", "warning")

    args = [f"--{key.replace('_', '-')}={str(val)}" for key, val in kwargs.items()]
    return main(args + [appname])


def _serve_hypercorn(app, config, **kwargs):
    import asyncio
    from hypercorn.config import Config as HypercornConfig
    from hypercorn.asyncio import serve as hypercorn_serve

    hconfig = HypercornConfig()
    hconfig.bind = [config.bind.replace("localhost", "127.0.0.1")]
    log_level = "debug" if config.log_level == "trace" else config.log_level
    hconfig.loglevel = log_level.upper()
    for key, val in kwargs.items():
        setattr(hconfig, key, val)

    return asyncio.run(hypercorn_serve(app, hconfig))


def _serve_uvicorn(app, config, **kwargs):
    import uvicorn

    kwargs.setdefault("log_level", config.log_level)
    return uvicorn.run(app, host=config.host, port=config.port, **kwargs)


SERVERS = {"hypercorn": _run_hypercorn, "uvicorn": _run_uvicorn}

SERVE_FUNCS = {"hypercorn": _serve_hypercorn, "uvicorn": _serve_uvicorn}
