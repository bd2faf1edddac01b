# chatuniverse/protocol.py
# Wire format shared by the hub and the transport layer.
# Every frame in either direction is a JSON object: {"type": <string>, "payload": {...}}.

import json          # For parsing and serializing frames.
import logging       # For logging malformed frames and delivery failures.

import websockets    # For the ConnectionClosed exception family.

from . import config # DEBUG flag for logging outgoing frames.

# --- Client -> Server message types ---
SEND_TEXT = "send_text"           # The only type subject to spam protection.
SEND_IMAGE = "send_image"
SEND_YOUTUBE = "send_youtube"
SEND_FILE = "send_file"
SEND_VIDEO = "send_video"
DELETE_MESSAGE = "delete_message" # Broadcast to everyone, no ownership check.
UPDATE_MESSAGE = "update_message"

# --- Server -> Client message types ---
UPDATE_STATUS = "update_status"      # Roster change: count, announcement, names.
RECEIVE_TEXT = "receive_text"
RECEIVE_IMAGE = "receive_image"
RECEIVE_YOUTUBE = "receive_youtube"
RECEIVE_FILE = "receive_file"
RECEIVE_VIDEO = "receive_video"
SPAM_PROTECTION = "spam_protection"  # Private notice: text rejected, remaining cooldown seconds.
MESSAGE_DELETED = "message_deleted"  # Delete notice, sent to every session.
MESSAGE_UPDATED = "message_updated"  # Edit notice, sent to every session.
ERROR = "error"                      # Private notice: malformed or unknown frame.

# Audience tags attached to delivered chat content.
# The sender receives CALLER, every other session receives OTHERS.
CALLER = "caller"
OTHERS = "others"

# REQUIRED_FIELDS: Payload keys each client message type must carry. All values must be strings.
REQUIRED_FIELDS = {
    SEND_TEXT: ("name", "message"),
    SEND_IMAGE: ("name", "url"),
    SEND_YOUTUBE: ("name", "videoId"),
    SEND_FILE: ("name", "url", "filename"),
    SEND_VIDEO: ("name", "url", "filename"),
    DELETE_MESSAGE: ("messageId",),
    UPDATE_MESSAGE: ("messageId", "newText"),
}


def encode(message_type, payload):
    """Serialize a frame to its JSON text form."""
    return json.dumps({"type": message_type, "payload": payload})


def parse_message(raw):
    """
    Parse and structurally validate an incoming frame.
    Invalid frames are logged and reported as None; they never raise.

    Args:
        raw (str | bytes): The frame as received from the WebSocket.

    Returns:
        tuple | None: (message_type, payload) for a well-formed frame, otherwise None.
    """
    # Text and binary frames are both accepted; json.loads decodes UTF-8 bytes itself.
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logging.warning("Invalid JSON received. Ignoring.")
        return None

    # Basic structure validation: a dictionary carrying a string 'type' and a dictionary 'payload'.
    if not isinstance(data, dict):
        logging.warning(f"Received non-dictionary data. Ignoring: {data}")
        return None
    message_type = data.get("type")
    payload = data.get("payload")
    if not isinstance(message_type, str) or not message_type:
        logging.warning(f"Missing or invalid 'type' in message. Ignoring: {data}")
        return None
    if not isinstance(payload, dict):
        logging.warning(f"Missing or invalid 'payload' in message. Ignoring: {data}")
        return None
    return message_type, payload


def invalid_fields(message_type, payload):
    """Names of required fields that are missing or not strings for this message type."""
    # Unknown types have no required fields; the hub reports them separately.
    return [field for field in REQUIRED_FIELDS.get(message_type, ())
            if not isinstance(payload.get(field), str)]


async def send_json(websocket, message_type, payload):
    """
    Format a message as JSON and send it over one WebSocket connection.
    A connection that is already closed is logged and skipped; delivery failures never propagate.

    Args:
        websocket: The recipient's connection (anything with an async send()).
        message_type (str): One of the server -> client types above.
        payload (dict): The message data.
    """
    # Used only for log lines.
    address = getattr(websocket, "remote_address", None)
    try:
        message = encode(message_type, payload)
        if config.DEBUG:
            logging.info(f"Sending to {address}: {message}")
        await websocket.send(message)
    except websockets.exceptions.ConnectionClosed:
        # Expected when a client disconnects while a broadcast is in flight.
        logging.warning(f"Failed to send '{message_type}' to {address} because connection is closed.")
    except Exception:
        # Any other failure is logged with a traceback and not re-raised.
        logging.exception(f"Unexpected error sending '{message_type}' to {address}")
