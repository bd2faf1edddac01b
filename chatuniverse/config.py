# chatuniverse/config.py
# This file centralizes configuration settings for the ChatUniverse WebSocket chat server.

import os # Import the 'os' module to help construct file paths reliably across different operating systems.

# --- Network Configuration ---

# HOST: The IP address the server should listen on.
# - '0.0.0.0': Listen on all available network interfaces.
# - '127.0.0.1' or 'localhost': Listen only on the local machine.
HOST = '0.0.0.0'

# PORT: The TCP port number shared by the WebSocket hub and the HTTP endpoints.
PORT = 5000

# HUB_PATH: Request path of the chat hub. Clients connect to ws(s)://HOST:PORT/hub?name=<display name>.
HUB_PATH = '/hub'

# USER_CHECK_PATH: Request path of the HTTP presence check (GET /api/users/check?name=<name> -> {"exists": bool}).
USER_CHECK_PATH = '/api/users/check'

# STATIC_DIR: Directory holding the browser client files served for any other GET path.
# Calculated relative to this config file's location (chatuniverse/ -> ../wwwroot/).
STATIC_DIR = os.path.join(os.path.dirname(__file__), '..', 'wwwroot')

# --- SSL Configuration ---

# CERT_DIR: The directory where SSL certificate files (cert.pem, key.pem) are expected to be located.
CERT_DIR = os.path.join(os.path.dirname(__file__), '..', 'certs')
CERT_FILE = os.path.join(CERT_DIR, 'cert.pem')
KEY_FILE = os.path.join(CERT_DIR, 'key.pem')

# ENABLE_SSL: Serve WSS/HTTPS when True (falls back to WS/HTTP if the files above are missing).
ENABLE_SSL = False

# --- Connection Admission ---
# MAX_CONNECTIONS_PER_IP: Maximum number of new connection attempts allowed from a single IP address
# within CONNECTION_WINDOW_SECONDS. Further attempts are closed before any name handling.
# None disables the limit: only a missing or taken name may refuse a connection.
# Set a number to enable it (users sharing one NAT address share one allowance).
MAX_CONNECTIONS_PER_IP = None
CONNECTION_WINDOW_SECONDS = 60

# --- Spam Protection (text messages only) ---
# A text send is rejected and a cooldown started when the last SPAM_REPEAT_COUNT recorded messages
# equal the new one, or when SPAM_MAX_MESSAGES were already sent in the last SPAM_WINDOW_SECONDS.
SPAM_MAX_MESSAGES = 3
SPAM_WINDOW_SECONDS = 10
SPAM_REPEAT_COUNT = 3
SPAM_COOLDOWN_SECONDS = 10

# MESSAGE_HISTORY_SECONDS: Records older than this are pruned from a connection's tracker on every insert.
MESSAGE_HISTORY_SECONDS = 30

# --- Presence ---
# ROSTER_CHECK_NAME: Reserved display name. A connection using it only receives the current roster;
# it never joins the chat and triggers no broadcast.
ROSTER_CHECK_NAME = '__temp_checker__'

# --- Transport Limits ---
# MAX_MESSAGE_SIZE: Maximum incoming WebSocket message size in bytes. None disables the limit
# (image/file references can carry large data URLs).
MAX_MESSAGE_SIZE = None

# --- Debugging Configuration ---

# DEBUG: Set to True to log message contents and outgoing frames.
# Connections, joins, leaves, rejections and errors are logged regardless of this flag.
DEBUG = False
