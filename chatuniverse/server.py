# chatuniverse/server.py
# Transport layer of the ChatUniverse server.
# Responsibilities include:
# - Optionally limiting connection attempts per IP address (off by default).
# - Reading the requested display name from the connect request and handing the connection to the hub.
# - Receiving, parsing and routing frames for the lifetime of each connection.
# - Guaranteeing disconnect cleanup however a connection ends.
# - Setting up SSL and starting websockets.serve() with the HTTP endpoints attached.

import asyncio          # For the event loop and the run-forever future.
import functools        # For binding the hub to the connection handler.
import logging          # For logging server events, warnings, and errors.
import ssl              # For creating SSL contexts for WSS.
import time             # For timestamping in connection rate limiting.

import websockets       # The WebSocket library used for the server implementation.

from . import config
from .hub import ChatHub, POLICY_VIOLATION
from .presence import PresenceRegistry
from .protocol import parse_message
from .web import make_process_request, query_param

# --- Connection Rate Limiting State ---
# CONNECTION_ATTEMPTS: Recent connection timestamps per IP address.
# Structure: { 'ip_address' (string): [timestamp1 (float), timestamp2, ...], ... }
CONNECTION_ATTEMPTS = {}


def allow_connection(client_ip, now=None):
    """
    Record a connection attempt from an IP and decide whether it may proceed.
    Attempts older than CONNECTION_WINDOW_SECONDS are forgotten on every call, and an IP
    left with no recent attempts is removed from CONNECTION_ATTEMPTS.

    Args:
        client_ip (str): The remote IP address.
        now (float | None): Current time; defaults to time.time().

    Returns:
        bool: False if MAX_CONNECTIONS_PER_IP attempts were already made inside the window.
              Always True while the limit is disabled (None).
    """
    # Disabled limit: nothing is recorded.
    if config.MAX_CONNECTIONS_PER_IP is None:
        return True

    current_time = time.time() if now is None else now

    # Sweep every tracked IP so addresses that stopped connecting do not stay in memory.
    for ip in list(CONNECTION_ATTEMPTS):
        recent = [t for t in CONNECTION_ATTEMPTS[ip] if current_time - t < config.CONNECTION_WINDOW_SECONDS]
        if recent:
            CONNECTION_ATTEMPTS[ip] = recent
        else:
            del CONNECTION_ATTEMPTS[ip]

    valid_attempts = CONNECTION_ATTEMPTS.get(client_ip, [])
    if len(valid_attempts) >= config.MAX_CONNECTIONS_PER_IP:
        # Refused attempts are not recorded, so the window is not extended.
        return False
    valid_attempts.append(current_time)
    CONNECTION_ATTEMPTS[client_ip] = valid_attempts
    return True


# --- Main Connection Handler ---
async def connection_handler(websocket, hub):
    """
    Handle one client's WebSocket connection from handshake to close.
    1. Connection rate limiting based on client IP (only when MAX_CONNECTIONS_PER_IP is set).
    2. Connect: the `name` query parameter is passed to the hub, which admits, answers a roster check or aborts.
    3. Receive loop: each frame is parsed and dispatched to the hub.
    4. Cleanup: the hub is always told about the disconnect.

    Args:
        websocket (websockets.asyncio.server.ServerConnection): The client's connection.
        hub (ChatHub): The chat hub shared by all connections.
    """
    # remote_address is (host, port) for TCP; fall back when the transport cannot say.
    address = websocket.remote_address
    client_ip = address[0] if address else "unknown"
    logging.info(f"Client attempting connection from {address}")

    # --- Connection Rate Limiting ---
    # Always passes while MAX_CONNECTIONS_PER_IP is None.
    if not allow_connection(client_ip):
        logging.warning(f"Connection rate limit exceeded for IP {client_ip}. Closing connection.")
        await websocket.close(code=POLICY_VIOLATION, reason="Connection rate limit exceeded")
        return

    try:
        # --- Connect ---
        # The display name travels in the handshake URL: /hub?name=<display name>.
        name = query_param(websocket.request.path, "name")
        session = await hub.connect(websocket, name)
        if session is None:
            # Aborted or roster-check connection: the hub has already closed it.
            return

        # --- Message Receiving Loop ---
        # Frames from one connection are handled one at a time, in arrival order.
        async for message in websocket:
            if config.DEBUG:
                logging.info(f"Raw message received from {address} ({session.display_name}): {message}")
            parsed = parse_message(message)
            if parsed is None:
                continue
            message_type, payload = parsed
            # Unknown types and missing fields are answered by the hub with a private error frame.
            await hub.dispatch(websocket, message_type, payload)

    # --- Connection Closed Handling ---
    except websockets.exceptions.ConnectionClosedOK:
        logging.info(f"Client {address} disconnected gracefully.")
    except websockets.exceptions.ConnectionClosedError as e:
        logging.info(f"Client {address} disconnected with error: {e}")
    except Exception:
        logging.exception(f"An unexpected error occurred handling client {address}")
    finally:
        # Runs however the handler exits; a connection that never became Active leaves nothing behind.
        await hub.disconnect(websocket)
        logging.info(f"Connection closed for {address}")


def create_ssl_context():
    """Build a TLS server context from CERT_FILE/KEY_FILE, or return None to fall back to plain WS."""
    try:
        logging.info(f"Attempting to load SSL cert: {config.CERT_FILE}")
        logging.info(f"Attempting to load SSL key: {config.KEY_FILE}")
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(config.CERT_FILE, config.KEY_FILE)
        logging.info("SSL context created successfully. Server will use WSS.")
        return ssl_context
    except FileNotFoundError:
        logging.error(f"SSL Error: Certificate or Key file not found (Cert: '{config.CERT_FILE}', Key: '{config.KEY_FILE}'). Disabling SSL, falling back to WS.")
    except (ssl.SSLError, OSError):
        logging.exception("SSL Error: Failed to create SSL context. Disabling SSL, falling back to WS.")
    return None


# --- Server Startup Function ---
async def start_server(host, port, hub=None):
    """
    Start the chat server and run it until the process is stopped.

    Args:
        host (str): The hostname or IP address to bind to.
        port (int): The port number to bind to.
        hub (ChatHub | None): Hub to serve; a new one with an empty registry is built when omitted.
    """
    # One registry and one hub per server process.
    if hub is None:
        hub = ChatHub(PresenceRegistry())

    # None serves plain WS/HTTP.
    ssl_context = create_ssl_context() if config.ENABLE_SSL else None
    effective_protocol = "wss" if ssl_context else "ws"

    logging.info(f"Starting server on {effective_protocol}://{host}:{port}{config.HUB_PATH}")
    if config.MAX_CONNECTIONS_PER_IP is None:
        logging.info("Connection Rate Limit: DISABLED")
    else:
        logging.info(f"Connection Rate Limit: {config.MAX_CONNECTIONS_PER_IP} per {config.CONNECTION_WINDOW_SECONDS}s per IP")
    logging.info(f"Spam Protection: {hub.max_messages} messages per {hub.window_seconds}s, "
                 f"{hub.repeat_count} repeats, {hub.cooldown_seconds}s cooldown")
    logging.info(f"Maximum WebSocket message size: {config.MAX_MESSAGE_SIZE or 'unlimited'}")
    logging.info(f"Server Debug Logging: {'ENABLED' if config.DEBUG else 'DISABLED'}")

    try:
        async with websockets.serve(
            functools.partial(connection_handler, hub=hub),
            host,
            port,
            ssl=ssl_context,
            max_size=config.MAX_MESSAGE_SIZE,
            process_request=make_process_request(hub.registry),  # Presence check and static files on the same port.
        ):
            # Runs until the process is interrupted.
            await asyncio.Future()
    except OSError:
        logging.exception(f"OSError starting server on {host}:{port} - Is the port already in use?")
        raise
    finally:
        # Let queued deliveries finish before the loop shuts down.
        await hub.drain()
