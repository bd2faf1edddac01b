# chatuniverse/main.py
# Entry point for starting the ChatUniverse server.
# Sets up logging, applies command-line overrides on top of the config module,
# and runs the asynchronous server startup defined in chatuniverse/server.py.
#
# Usage: python -m chatuniverse.main [--host HOST] [--port PORT] [--no-ssl] [--max-connections-per-ip N] [--debug]

import argparse  # For command-line overrides of config values.
import asyncio   # Provides the event loop that runs the server.
import logging   # Standard Python logging for server events and errors.

from . import config  # Server configuration (HOST, PORT, SSL settings, spam limits, etc.).
from . import server  # Connection handler and start_server().


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="ChatUniverse real-time group chat server.")
    parser.add_argument("--host", default=config.HOST, help=f"Interface to bind (default: {config.HOST})")
    parser.add_argument("--port", type=int, default=config.PORT, help=f"Port to bind (default: {config.PORT})")
    parser.add_argument("--ssl", dest="ssl", action="store_true", default=config.ENABLE_SSL,
                        help="Serve WSS/HTTPS using CERT_FILE and KEY_FILE")
    parser.add_argument("--no-ssl", dest="ssl", action="store_false", help="Serve plain WS/HTTP")
    parser.add_argument("--max-connections-per-ip", type=int, default=config.MAX_CONNECTIONS_PER_IP,
                        help="Limit new connections per IP per CONNECTION_WINDOW_SECONDS (default: no limit)")
    parser.add_argument("--debug", action="store_true", default=config.DEBUG,
                        help="Log message contents and outgoing frames")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config.ENABLE_SSL = args.ssl
    config.DEBUG = args.debug
    config.MAX_CONNECTIONS_PER_IP = args.max_connections_per_ip

    # Timestamp, level and message; DEBUG only widens what is logged, not the level.
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    logging.info("Attempting to start server from main.py...")
    try:
        logging.info(f"Using HOST={args.host}, PORT={args.port}")
        asyncio.run(server.start_server(args.host, args.port))
    except KeyboardInterrupt:
        logging.info("Server stopped manually via KeyboardInterrupt.")
    except Exception:
        # Port already in use, bad certificates, or a crash in the server loop.
        logging.exception("Server failed to start or crashed in main.py")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
