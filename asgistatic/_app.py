"""
This module implements the ASGI application that forms the adapter
between a handler function (like the static file responder) and the
ASGI server.
"""

import inspect

from . import _request
from ._request import HttpRequest, DisconnectedError
from ._compat import wait_for_any_then_cancel_the_rest
from ._logging import logger
from ._responder import respond

BODYLESS_STATUSES = 204, 304


def normalize_response(response):
    """ Normalize the given response, by always returning a 3-element tuple
    (status, headers, body). The body is not "resolved"; it is safe
    to call this function multiple times on the same response.
    """
    # Get status, headers and body from the response
    if isinstance(response, tuple):
        if len(response) == 3:
            status, headers, body = response
        elif len(response) == 2:
            status = 200
            headers, body = response
        elif len(response) == 1:
            status, headers, body = 200, {}, response[0]
        else:
            raise ValueError(f"Handler returned {len(response)}-tuple.")
    else:
        status, headers, body = 200, {}, response

    # Validate status and headers
    if not isinstance(status, int):
        raise ValueError(f"Status code must be an int, not {type(status)}")
    if not isinstance(headers, dict):
        raise ValueError(f"Headers must be a dict, not {type(headers)}")

    return status, headers, body


def guess_content_type_from_body(body):
    """ Guess the content-type based of the body.

    * "text/html" for str bodies starting with ``<!DOCTYPE html>`` or ``<html>``.
    * "text/plain" for other str bodies.
    * "application/octet-stream" otherwise.
    """
    if isinstance(body, str):
        if body.startswith(("<!DOCTYPE html>", "<!doctype html>", "<html>")):
            return "text/html"
        else:
            return "text/plain"
    else:
        return "application/octet-stream"


def to_asgi(handler, config=None):
    """ Convert a request handler (a coroutine function) to an ASGI
    application, which can be served with an ASGI server, such as
    Uvicorn or Hypercorn. If a Config is given, it is used to report
    what is being served when the server starts.
    """

    if not inspect.iscoroutinefunction(handler):
        raise TypeError(
            "asgistatic.to_asgi() handler function must be a coroutine function."
        )

    async def application_wrapper(scope, receive, send):
        return await asgistatic_application(handler, config, scope, receive, send)

    application_wrapper.__module__ = handler.__module__
    application_wrapper.__name__ = handler.__name__
    application_wrapper.__doc__ = handler.__doc__
    application_wrapper.asgistatic_handler = handler
    return application_wrapper


def make_app(config):
    """ Create an ASGI application that serves the files in the root
    directory of the given Config.
    """

    async def static_handler(request):
        return await respond(config, request)

    return to_asgi(static_handler, config)


async def asgistatic_application(handler, config, scope, receive, send):

    if scope["type"] == "http":
        request = HttpRequest(scope, receive, send)
        await _handle_http(handler, request)
    elif scope["type"] == "lifespan":
        await _handle_lifespan(config, receive, send)
    else:
        logger.warning(f"Unknown ASGI type {scope['type']}")


async def _handle_lifespan(config, receive, send):
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            if config is None:
                logger.info("Server is starting up")
            else:
                logger.info(
                    f"Server is starting up, serving {config.root} "
                    f"at http://{config.bind}"
                )
            await send({"type": "lifespan.startup.complete"})
        elif message["type"] == "lifespan.shutdown":
            logger.info("Server is shutting down")
            await send({"type": "lifespan.shutdown.complete"})
            return
        else:
            logger.warning(f"Unknown lifespan message {message['type']}")


async def _handle_http(handler, request):

    try:

        # Call request handler to get the result
        where = "request handler"
        result = await handler(request)

        # Process the handler output
        where = "processing handler output"
        status, headers, body = normalize_response(result)
        bodyless = status in BODYLESS_STATUSES
        # Make sure that there is a content type
        if "content-type" not in headers and not bodyless:
            headers["content-type"] = guess_content_type_from_body(body)
        # Convert the body
        if isinstance(body, bytes):
            pass
        elif isinstance(body, str):
            body = body.encode()
        elif not inspect.isasyncgen(body):
            if inspect.isgenerator(body):
                raise ValueError(
                    "Body cannot be a regular generator, use an async generator."
                )
            elif inspect.iscoroutine(body):
                raise ValueError("Body cannot be a coroutine, forgot await?")
            else:
                raise ValueError(f"Body cannot be {type(body)}.")
        # Send response. Note that per the ASGI spec, if we do not specify
        # the content-length, the server sets Transfer-Encoding to chunked.
        if isinstance(body, bytes):
            where = "sending response"
            if not bodyless:
                headers.setdefault("content-length", str(len(body)))
            await request.accept(status, headers)
            await request.send(body, more=False)
        else:
            where = "sending streamed response"
            stream_task, _ = await wait_for_any_then_cancel_the_rest(
                _send_chunks(request, status, headers, body),
                request._receive_until_disconnect(),
            )
            if stream_task.cancelled():
                raise DisconnectedError()
            stream_task.result()  # Raises if streaming failed

        # Mark end of data, if needed
        if request._app_state == _request.CONNECTED:
            where = "finalizing response"
            await request.send(b"", more=False)

    except DisconnectedError:
        logger.debug(f"Client disconnected from {request.path!r}")

    except Exception as err:
        # Process errors. We log them, and if possible send a 500
        error_text = f"{type(err).__name__} in {where}: {str(err)}"
        logger.error(error_text, exc_info=err)
        if request._app_state == _request.CONNECTING:
            await request.accept(500, {})
            await request.send("Internal server error", more=False)
        elif request._app_state == _request.CONNECTED:
            await request.send(b"", more=False)  # At least close it


async def _send_chunks(request, status, headers, body):
    """ Send the chunks produced by an async generator. The generator is
    closed in all cases, so that it can release its resources.
    """
    try:
        async for chunk in body:
            if not isinstance(chunk, (bytes, str)):
                raise ValueError("Response chunks must be bytes or str.")
            if request._app_state == _request.CONNECTING:
                await request.accept(status, headers)
            await request.send(chunk)
    finally:
        await body.aclose()
    if request._app_state == _request.CONNECTING:
        await request.accept(status, headers)
