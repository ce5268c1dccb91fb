"""
Serve the directory next to this script (or the one given as the first
argument) at http://localhost:8080.

The ``respond()`` function takes care of safe path resolution, content
types, and HTTP caching (using etag, last-modified and cache-control headers).
It can be called from your own handler, e.g. to add a header as done here.
"""

import os
import sys

import asgistatic


root = sys.argv[1] if len(sys.argv) > 1 else os.path.dirname(os.path.abspath(__file__))
config = asgistatic.Config(root, max_age=100)


@asgistatic.to_asgi
async def main(request):
    status, headers, body = await asgistatic.respond(config, request)
    headers["x-served-by"] = "asgistatic"
    return status, headers, body


if __name__ == "__main__":
    asgistatic.run(main, "uvicorn", "localhost:8080")
