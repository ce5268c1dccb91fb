"""
asgistatic test utilities. A test server wraps something to serve, which
can be a ``Config``, an async handler or an ASGI application, and makes
requests to it.

* ``MockTestServer`` calls the ASGI application in-process.
* ``ProcessTestServer`` runs a real ASGI server in a subprocess. For a
  Config, this runs the ``python -m asgistatic`` command line interface.
"""

import os
import sys
import time
import signal
import asyncio
import subprocess
from collections import namedtuple
from wsgiref.handlers import format_date_time
from urllib.parse import unquote, urlsplit

import requests

from ._app import to_asgi, make_app
from ._config import Config


Response = namedtuple("Response", ["status", "headers", "body"])

PORT = 49152 + os.getpid() % 16383  # hash pid to ephimeral port number
URL = f"http://127.0.0.1:{PORT}"


class BaseTestServer:
    """ Base class for test servers. The server is started and stopped by
    using it as a context manager. When the server has stopped, the ``out``
    attribute contains the server output (stdout and stderr).

    Only one instance (per process) should be in use at any given time.
    """

    def __init__(self, app, server_description):
        self._app = app
        self._server = server_description
        self._loop = asyncio.new_event_loop()
        self._out = ""
        # The mock server hijacks stdout, so keep the original funcs
        self._stdout_write = sys.stdout.write
        self._stdout_flush = sys.stdout.flush

    @property
    def app(self):
        """ The Config, handler or application that is being served.
        """
        return self._app

    @property
    def url(self):
        """ The url at which the server is listening.
        """
        return URL

    @property
    def out(self):
        """ The filtered server output, available once the server has stopped.
        """
        return self._out

    def __enter__(self):
        self.log(f"  Start {self._server} server .. ", end="")
        t0 = time.time()
        self._start_server()
        self.log(f"{time.time() - t0:0.1f}s ", end="")
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        out = self._stop_server()
        self._out = "\n".join(self.filter_lines(out.splitlines()))
        if exc_value is not None:
            self.log("Server output:")
            self.log(self._out)
        else:
            self.log("stopped")

    def get(self, path, headers=None, **kwargs):
        """ Send a GET request. See ``request()``.
        """
        return self.request("GET", path, headers=headers, **kwargs)

    def head(self, path, headers=None, **kwargs):
        """ Send a HEAD request. See ``request()``.
        """
        return self.request("HEAD", path, headers=headers, **kwargs)

    def request(self, method, path, data=None, headers=None, **kwargs):
        """ Send a request and return a ``Response(status, headers, body)``.
        The ``path`` can also be a full url. Redirects are not followed.
        Extra keyword arguments are passed to ``requests``.
        """
        co = self._co_request(method, self._make_url(path), data, headers, **kwargs)
        return Response(*self._loop.run_until_complete(co))

    def request_many(self, method, paths, headers=None):
        """ Send requests for the given paths concurrently. Returns a list
        of responses, in the order of the given paths.
        """
        cos = [
            self._co_request(method, self._make_url(path), None, headers)
            for path in paths
        ]
        results = self._loop.run_until_complete(asyncio.gather(*cos))
        return [Response(*result) for result in results]

    def _make_url(self, path):
        if path.startswith("http"):
            return path
        return self.url + "/" + path.lstrip("/")

    def log(self, *messages, sep=" ", end="\n"):
        """ Log a progress message. Overloadable. Default write to stdout.
        """
        self._stdout_write(sep.join(str(m) for m in messages) + end)
        self._stdout_flush()

    def filter_lines(self, lines):
        """ Overloadable line filter for the server output.
        """
        return lines


SCRIPT = """
import sys
import importlib.util

import asgistatic

sys.path.insert(0, {dirname!r})
spec = importlib.util.spec_from_file_location({modname!r}, {filename!r})
module = importlib.util.module_from_spec(spec)
sys.modules[{modname!r}] = module
spec.loader.exec_module(module)

app = module.{name}
if not hasattr(app, "asgistatic_handler") and app.__code__.co_argcount == 1:
    app = asgistatic.to_asgi(app)

asgistatic.run("__main__:app", {server!r}, "127.0.0.1:{port}")
"""


def config_to_args(config):
    """ Get the command line arguments for ``python -m asgistatic`` that
    reproduce the given Config, except for host and port.
    """
    if config.index is None:
        raise ValueError("The CLI cannot serve a Config without index document.")
    args = [
        config.root,
        f"--index={config.index}",
        f"--max-age={config.max_age}",
        f"--chunk-size={config.chunk_size}",
        f"--log-level={config.log_level}",
    ]
    if config.fallback:
        args.append(f"--fallback={config.fallback}")
    if config.dotfiles:
        args.append("--dotfiles")
    if not config.redirect:
        args.append("--no-redirect")
    return args


class ProcessTestServer(BaseTestServer):
    """ Test server that runs an actual ASGI server in a subprocess. The
    ``server`` argument must be "uvicorn" or "hypercorn".

    A Config is served via the command line interface. A handler or
    application must be defined at module level, so that the subprocess
    can import it. Starting and stopping costs about a second, so this is
    best suited for integration tests.
    """

    def __init__(self, app, server):
        super().__init__(app, server)
        if isinstance(app, Config):
            self._args = ["-m", "asgistatic"] + config_to_args(app)
            self._args += ["--host=127.0.0.1", f"--port={PORT}", f"--server={server}"]
        else:
            self._args = ["-c", self._get_script(app, server)]

    def _get_script(self, app, server):
        handler = getattr(app, "asgistatic_handler", app)
        module = sys.modules.get(handler.__module__)
        name = app.__name__
        if module is None or getattr(module, name, None) not in (app, handler):
            raise ValueError("ProcessTestServer needs an app defined at module level.")
        modname = "_main_" if module.__name__ == "__main__" else module.__name__
        filename = os.path.abspath(module.__file__)
        return SCRIPT.format(
            dirname=os.path.dirname(filename),
            modname=modname,
            filename=filename,
            name=name,
            server=server,
            port=PORT,
        )

    def _start_server(self):
        # Don't use stdin; it breaks multiprocessing somehow!
        self._p = subprocess.Popen(
            [sys.executable] + self._args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        # Wait until the server responds, or the process dies
        while self._p.poll() is None:
            time.sleep(0.02)
            try:
                requests.head(URL + "/", timeout=0.1)
                return
            except (requests.ConnectionError, requests.Timeout):
                pass
        raise RuntimeError(
            "Process failed to start!\n" + self._p.stdout.read().decode()
        )

    def _stop_server(self):
        # Stop like Ctrl-C would, so that the server shuts down gracefully
        if self._p.poll() is None:
            if os.name == "posix":
                self._p.send_signal(signal.SIGINT)
            else:  # pragma: no cover
                self._p.terminate()
        try:
            self._p.wait(timeout=10)
        except subprocess.TimeoutExpired:
            self._p.kill()
            self._p.wait()
            self.log("Runaway server process had to be killed!")
        if self._p.returncode:
            self.log(f"nonzero exit code {self._p.returncode}")
        return self._p.stdout.read().decode(errors="ignore")

    async def _co_request(self, method, url, data=None, headers=None, **kwargs):
        # Run in a thread, so that concurrent requests are concurrent
        loop = asyncio.get_running_loop()
        kwargs.setdefault("allow_redirects", False)
        r = await loop.run_in_executor(
            None,
            lambda: requests.request(method, url, data=data, headers=headers, **kwargs),
        )
        return r.status_code, r.headers, r.content


class MockTestServer(BaseTestServer):
    """ Test server that mocks an ASGI server and calls the application
    in-process. Faster than a real server, and it allows measuring test
    coverage, so it's suited for unit tests. Requests *must* be done via
    the methods of this object.
    """

    def __init__(self, app):
        super().__init__(app, "mock")
        if isinstance(app, Config):
            self._asgi_app = make_app(app)
        elif app.__code__.co_argcount == 3:
            self._asgi_app = app
        else:
            self._asgi_app = to_asgi(app)
        self._writes = []

    def _start_server(self):
        self._writes = []
        self._ori_writes = sys.stdout.write, sys.stderr.write
        sys.stdout.write = sys.stderr.write = self._writes.append
        try:
            self._loop.run_until_complete(self._lifespan("startup"))
        except Exception:
            self._restore_streams()
            raise

    def _stop_server(self):
        try:
            self._loop.run_until_complete(self._lifespan("shutdown"))
        finally:
            self._restore_streams()
        return "".join(self._writes)

    def _restore_streams(self):
        sys.stdout.write, sys.stderr.write = self._ori_writes

    async def _lifespan(self, what, timeout=5):
        if what == "startup":
            self._lifespan_in = asyncio.Queue()
            self._lifespan_out = asyncio.Queue()
            scope = {"type": "lifespan"}
            self._lifespan_task = asyncio.ensure_future(
                self._asgi_app(scope, self._lifespan_in.get, self._lifespan_out.put)
            )

        await self._lifespan_in.put({"type": f"lifespan.{what}"})
        getter = asyncio.ensure_future(self._lifespan_out.get())
        await asyncio.wait(
            [getter, self._lifespan_task],
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if not getter.done():
            getter.cancel()
            raise RuntimeError(f"Lifespan {what} did not complete")
        message = getter.result()
        if message["type"] != f"lifespan.{what}.complete":
            raise RuntimeError(f"Unexpected lifespan message {message['type']}")
        if what == "shutdown":
            await self._lifespan_task

    def _make_scope(self, prepared):
        parts = urlsplit(prepared.url)
        if parts.scheme not in ("http", "https"):
            raise RuntimeError(f"Unknown scheme: {parts.scheme}")
        port = parts.port or {"http": 80, "https": 443}[parts.scheme]
        headers = [(b"host", parts.netloc.encode())]
        headers += [
            (key.lower().encode(), value.encode())
            for key, value in prepared.headers.items()
            if key.lower() != "host"
        ]
        return {
            "type": "http",
            "http_version": "1.1",
            "method": prepared.method,
            "scheme": parts.scheme,
            "path": unquote(parts.path),
            "raw_path": parts.path.encode(),
            "root_path": "",
            "query_string": parts.query.encode(),
            "headers": headers,
            "client": ["testclient", 50000],
            "server": [parts.hostname, port],
        }

    async def _co_request(self, method, url, data=None, headers=None, **kwargs):
        prepared = requests.Request(method, url, data=data, headers=headers).prepare()
        prepared.headers.setdefault("user-agent", "asgi_mock_server")
        scope = self._make_scope(prepared)

        body = prepared.body or b""
        if isinstance(body, str):
            body = body.encode()
        incoming = [{"type": "http.request", "body": body, "more_body": False}]
        start = {}
        chunks = []

        async def receive():
            if incoming:
                return incoming.pop(0)
            # Mimic a client that keeps the connection open
            await asyncio.sleep(9999)

        async def send(message):
            if message["type"] == "http.response.start":
                start["status"] = message["status"]
                start["headers"] = headers = {
                    key.decode(): value.decode() for key, value in message["headers"]
                }
                headers.setdefault("date", format_date_time(time.time()))
                headers.setdefault("server", "asgistatic_mock_server")
            elif message["type"] == "http.response.body":
                chunks.append(message["body"])

        await self._asgi_app(scope, receive, send)
        return start.get("status", 9999), start.get("headers", {}), b"".join(chunks)
