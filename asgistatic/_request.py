"""
This module implements the HttpRequest class that is passed as an
argument into the handler function (e.g. the static file responder).
"""


CONNECTING = 0
CONNECTED = 1
DONE = 2
DISCONNECTED = 3


class DisconnectedError(IOError):
    """ An error raised when the connection is disconnected by the client.
    Subclass of IOError. You don't need to catch these - it is considered
    ok for a handler to exit by this.
    """


class HttpRequest:
    """ Class to represent an HTTP request, providing access to the request
    metadata and a way to send the response.
    """

    __slots__ = (
        "_scope",
        "_headers",
        "_receive",
        "_send",
        "_client_state",
        "_app_state",
    )

    def __init__(self, scope, receive, send):
        self._scope = scope
        self._headers = None
        self._receive = receive
        self._send = send
        self._client_state = CONNECTED  # CONNECTED -> DONE -> DISCONNECTED
        self._app_state = CONNECTING  # CONNECTING -> CONNECTED -> DONE

    @property
    def scope(self):
        """ A dict representing the raw ASGI scope. See the
        `ASGI reference <https://asgi.readthedocs.io/en/latest/specs/www.html#connection-scope>`_
        for details.
        """
        return self._scope

    @property
    def method(self):
        """ The HTTP method (string). E.g. 'HEAD', 'GET'.
        """
        return self._scope["method"]

    @property
    def headers(self):
        """ A dictionary representing the headers. Keys are lowercase strings.
        """
        if self._headers is None:
            self._headers = dict(
                (key.decode().lower(), val.decode("latin-1"))
                for key, val in self._scope["headers"]
            )
        return self._headers

    @property
    def path(self):
        """ The path part of the URL (a string, with percent escapes decoded).
        """
        return self._scope["path"]

    @property
    def query_string(self):
        """ The raw query string (not percent decoded), without the "?".
        """
        return self._scope.get("query_string", b"").decode("latin-1")

    async def accept(self, status=200, headers={}):
        """ Accept this http request. Sends the status code and headers.
        After this, ``send()`` is used to send the body.
        """
        # Check status
        if self._app_state != CONNECTING:
            raise IOError("Cannot accept an already accepted connection.")
        # Check and convert input
        status = int(status)
        try:
            rawheaders = [(k.encode(), v.encode()) for k, v in headers.items()]
        except Exception:
            raise TypeError("Header keys and values must all be strings.")
        # Send our first message
        self._app_state = CONNECTED
        msg = {"type": "http.response.start", "status": status, "headers": rawheaders}
        await self._send(msg)

    async def _receive_chunk(self):
        """ Receive a chunk of data, returning a bytes object.
        Raises ``DisconnectedError`` when the connection is closed.
        """
        # Check status
        if self._client_state == DISCONNECTED:
            raise IOError("Cannot receive from connection that already disconnected.")
        # Receive
        message = await self._receive()
        mt = "http.disconnect" if message is None else message["type"]
        if mt == "http.request":
            data = bytes(message.get("body", b""))  # some servers return bytearray
            if not message.get("more_body", False):
                self._client_state = DONE
            return data
        elif mt == "http.disconnect":
            self._client_state = DISCONNECTED
            raise DisconnectedError()
        else:  # pragma: no cover
            raise IOError(f"Unexpected message type: {mt}")

    async def _receive_until_disconnect(self):
        """ Keep receiving until the client disconnects. Any request body
        is dropped.
        """
        while True:
            try:
                await self._receive_chunk()
            except DisconnectedError:
                break

    async def send(self, data, more=True):
        """ Send (a chunk of) data, representing the response. Note that
        ``accept()`` must be called first.
        """
        # Compose message
        more = bool(more)
        if isinstance(data, str):
            data = data.encode()
        elif not isinstance(data, bytes):
            raise TypeError(f"Can only send bytes/str over http, not {type(data)}.")
        message = {"type": "http.response.body", "body": data, "more_body": more}
        # Send
        if self._app_state == CONNECTED:
            if not more:
                self._app_state = DONE
            await self._send(message)
        elif self._app_state == CONNECTING:
            raise IOError("Cannot send before calling accept.")
        else:
            raise IOError("Cannot send to a closed connection.")
