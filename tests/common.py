"""
Common utilities used in our test scripts.
"""

import os
import sys
import asyncio
import logging

from asgistatic import HttpRequest
from asgistatic.testutils import ProcessTestServer, MockTestServer


THIS_DIR = os.path.dirname(os.path.abspath(__file__))

SITE_DIR = os.path.join(THIS_DIR, "site")


def get_backend():
    return os.environ.get("ASGI_SERVER", "mock").lower()


def set_backend_from_argv():
    for arg in sys.argv:
        if arg.upper().startswith("--ASGI_SERVER="):
            os.environ["ASGI_SERVER"] = arg.split("=")[1].strip().lower()


def run_tests(scope):
    for func in list(scope.values()):
        if callable(func) and func.__name__.startswith("test_"):
            print(f"Running {func.__name__} ...")
            func()
    print("Done")


def filter_lines(lines):
    # Overloadable line filter
    skip = (
        "Running on http",  # older hypercorn
        "Running on 127.",  # older hypercorn
        "Task was destroyed but",
        "task: <Task pending coro",
        "[INFO ",
        "Aborted!",
    )
    return [line for line in lines if line and not line.startswith(skip)]


def make_server(app):
    servername = get_backend()
    if servername.lower() == "mock":
        server = MockTestServer(app)
    else:
        server = ProcessTestServer(app, servername)
    server.filter_lines = filter_lines
    return server


def make_request(method, path, headers=None, query_string=""):
    """ Create an HttpRequest for the given method and path, without
    a connection behind it.
    """
    headers = headers or {}
    scope = {
        "type": "http",
        "method": method,
        "scheme": "http",
        "path": path,
        "query_string": query_string.encode(),
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "server": ["127.0.0.1", 8080],
    }
    return HttpRequest(scope, None, None)


def run_coro(co):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(co)
    finally:
        loop.close()


async def collect_body(body):
    """ Get the bytes of a response body (bytes, str or async generator).
    """
    if isinstance(body, bytes):
        return body
    elif isinstance(body, str):
        return body.encode()
    chunks = []
    async for chunk in body:
        chunks.append(chunk)
    return b"".join(chunks)


class LogCapturer(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())

    def __enter__(self):
        logger = logging.getLogger("asgistatic")
        logger.addHandler(self)
        return self

    def __exit__(self, *args, **kwargs):
        logger = logging.getLogger("asgistatic")
        logger.removeHandler(self)
