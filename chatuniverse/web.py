# chatuniverse/web.py
# Plain HTTP responses served on the hub's port before any WebSocket handshake.
# - GET /api/users/check?name=<name>  -> {"exists": true|false}
# - GET /hub?name=<name>              -> handed on to the WebSocket handshake.
# - Any other GET path                -> a file from the static client directory (/ -> index.html).

import asyncio                                        # For reading static files in a worker thread.
import json                                           # For the presence check response body.
import logging                                        # For DEBUG-level request logging.
import mimetypes                                      # For Content-Type of static files.
import os                                             # For resolving and validating static file paths.
from http import HTTPStatus                           # Status codes and reason phrases.
from urllib.parse import parse_qs, unquote, urlsplit  # For request paths and query strings.

from websockets.datastructures import Headers         # Response headers for process_request.
from websockets.http11 import Response                # Complete HTTP response returned instead of a handshake.

from . import config                                  # Static directory, hub and presence check paths, DEBUG.


def query_param(path, key):
    """First value of a query-string parameter in a request path, or None."""
    # parse_qs drops blank values, so "?name=" reads as missing.
    values = parse_qs(urlsplit(path).query).get(key)
    return values[0] if values else None


def make_response(status, body, content_type):
    """Build a complete HTTP response for websockets' process_request hook."""
    # Handlers pass HTTPStatus members or plain ints.
    status = HTTPStatus(status)
    if isinstance(body, str):
        body = body.encode("utf-8")
    headers = Headers([
        ("Content-Type", content_type),
        ("Content-Length", str(len(body))),
        # One response per connection; these requests never turn into a WebSocket.
        ("Connection", "close"),
    ])
    return Response(status.value, status.phrase, headers, body)


def json_response(status, data):
    return make_response(status, json.dumps(data), "application/json; charset=utf-8")


def user_check_response(registry, path):
    """Answer a presence check. The reserved roster-check name is never reported as online."""
    name = query_param(path, "name")
    # No name to look up.
    if not name:
        return json_response(HTTPStatus.BAD_REQUEST, {"error": "Query parameter 'name' is required."})
    return json_response(HTTPStatus.OK, {"exists": registry.is_online(name)})


def _read_file(file_path):
    with open(file_path, "rb") as f:
        return f.read()


async def static_file_response(static_dir, path):
    """
    Serve a file from the static client directory.
    The file is read in a worker thread, off the event loop.

    Args:
        static_dir (str): Root directory of the client files.
        path (str): Request path (query string ignored).

    Returns:
        Response: 200 with the file contents, or 404 for unknown files and paths outside static_dir.
    """
    # Query string dropped, %-escapes decoded, empty path mapped to the index page.
    relative = unquote(urlsplit(path).path).lstrip("/") or "index.html"
    root = os.path.realpath(static_dir)
    file_path = os.path.realpath(os.path.join(root, relative))
    if os.path.isdir(file_path):
        file_path = os.path.join(file_path, "index.html")
    # Reject anything that resolves outside the static directory (e.g. '../').
    if not file_path.startswith(root + os.sep) or not os.path.isfile(file_path):
        if config.DEBUG:
            logging.info(f"Static file not found: {path}")
        return make_response(HTTPStatus.NOT_FOUND, "Not Found", "text/plain; charset=utf-8")
    body = await asyncio.to_thread(_read_file, file_path)
    content_type = mimetypes.guess_type(file_path)[0] or "application/octet-stream"
    return make_response(HTTPStatus.OK, body, content_type)


def make_process_request(registry, static_dir=config.STATIC_DIR,
                         hub_path=config.HUB_PATH, user_check_path=config.USER_CHECK_PATH):
    """
    Build the process_request hook passed to websockets.serve().

    Returns:
        coroutine function: (connection, request) -> Response | None. None lets the WebSocket handshake proceed.
    """
    async def process_request(connection, request):
        # Routing ignores the query string.
        route = urlsplit(request.path).path
        # The hub path is the only one that upgrades to WebSocket.
        if route == hub_path:
            return None
        if route == user_check_path:
            return user_check_response(registry, request.path)
        return await static_file_response(static_dir, request.path)

    return process_request
