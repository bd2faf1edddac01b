# chatuniverse/hub.py
# The chat hub: coordinates every connection's lifecycle against the shared presence registry.
# Responsibilities include:
# - Admitting a connection under its requested display name, or aborting it (missing or taken name).
# - Answering roster checks from connections that use the reserved roster-check name.
# - Applying spam protection to text messages before they are accepted.
# - Fanning out chat content, edits and deletions to every active session.
# - Announcing joins and departures with an updated roster.
#
# Per connection: Connecting -> Active -> Disconnected. A connection is Active exactly
# while the registry holds a session for its id.
#
# Every frame the hub sends after admission (broadcasts, echoes and private replies alike)
# goes through _schedule(), so each connection receives its frames in the order they were produced.

import asyncio          # For scheduling one delivery task per recipient.
import logging          # For logging joins, leaves, rejections and routing problems.
import time             # For the timestamp part of message ids.

from . import config    # Spam thresholds, roster-check name and DEBUG flag.
from . import protocol  # Message type constants and the required-field table.
from .errors import InvalidName, NameTaken, RateLimited
from .protocol import send_json

# WebSocket close code used for connect-time rejections (policy violation).
POLICY_VIOLATION = 1008


def connection_id(websocket):
    """Opaque per-connection token assigned by the transport (the websockets connection UUID)."""
    return str(websocket.id)


class ChatHub:
    """
    Session-facing coordinator for a single chat room.

    Args:
        registry (PresenceRegistry): Authoritative roster; also owns each session's MessageTracker.
        roster_check_name (str): Reserved name that fetches the roster without joining.
        max_messages (int): Text messages allowed per `window_seconds` before a cooldown starts.
        window_seconds (float): Rate-limit window.
        repeat_count (int): Identical consecutive messages that trigger a cooldown.
        cooldown_seconds (float): Length of an imposed cooldown.
    """

    def __init__(self, registry, roster_check_name=config.ROSTER_CHECK_NAME,
                 max_messages=config.SPAM_MAX_MESSAGES, window_seconds=config.SPAM_WINDOW_SECONDS,
                 repeat_count=config.SPAM_REPEAT_COUNT, cooldown_seconds=config.SPAM_COOLDOWN_SECONDS):
        self.registry = registry
        self.roster_check_name = roster_check_name
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self.repeat_count = repeat_count
        self.cooldown_seconds = cooldown_seconds
        # CONNECTIONS: connection id -> WebSocket for Active sessions. Updated together with the registry.
        self._connections = {}
        # Delivery tasks still in flight. Holding references keeps them from being garbage collected.
        self._pending = set()
        # Timestamp part of the last generated message id.
        self._last_stamp = 0
        # Client message type -> handler. Payload fields are passed positionally, in REQUIRED_FIELDS order.
        self._handlers = {
            protocol.SEND_TEXT: self.send_text,
            protocol.SEND_IMAGE: self.send_image,
            protocol.SEND_YOUTUBE: self.send_youtube,
            protocol.SEND_FILE: self.send_file,
            protocol.SEND_VIDEO: self.send_video,
            protocol.DELETE_MESSAGE: self.delete_message,
            protocol.UPDATE_MESSAGE: self.update_message,
        }

    # --- Connection Lifecycle ---

    def admit(self, websocket, name):
        """
        Register a connection as an Active session.

        Raises:
            InvalidName: The name is missing or empty.
            NameTaken: An active session already uses the name (case-insensitive).
        """
        if not name:
            raise InvalidName(name)
        # Raises NameTaken before anything is stored.
        session = self.registry.try_add(connection_id(websocket), name)
        # No await between the registry insert and this line, so other handlers never see one without the other.
        self._connections[session.connection_id] = websocket
        return session

    async def connect(self, websocket, name):
        """
        Handle a new connection's requested display name.
        Rejected connections are closed; a roster-check connection receives the roster and is closed normally.

        Args:
            websocket: The client's connection.
            name (str | None): The `name` query parameter of the connect request.

        Returns:
            Session | None: The admitted session, or None if the connection did not become Active.
        """
        address = getattr(websocket, "remote_address", None)

        # --- Roster Check ---
        # Answer the caller only. No session, no broadcast.
        if self.roster_check_name and name == self.roster_check_name:
            if config.DEBUG:
                logging.info(f"Roster check from {address}")
            names = self.registry.snapshot_names()
            # Sent directly: nothing else is ever queued for a roster check, and the close must follow the roster.
            await send_json(websocket, protocol.UPDATE_STATUS,
                            {"count": len(names), "message": "Fetched user list", "users": names})
            await websocket.close()
            return None

        # --- Admission ---
        # Close reasons stay fixed: a control frame cannot carry an arbitrarily long name.
        try:
            session = self.admit(websocket, name)
        except InvalidName:
            # Always log rejected connections.
            logging.warning(f"Connection from {address} supplied no name. Aborting.")
            await websocket.close(code=POLICY_VIOLATION, reason="Name required")
            return None
        except NameTaken:
            logging.warning(f"Name '{name}' already taken. Aborting connection from {address}.")
            await websocket.close(code=POLICY_VIOLATION, reason="Name taken")
            return None

        # Log successful joins (important event, not wrapped in DEBUG).
        logging.info(f"'{session.display_name}' joined the chat from {address}")
        # The new session is already in the registry, so it receives its own join announcement.
        self._broadcast_status(f"{session.display_name} joined the chat")
        return session

    async def disconnect(self, websocket):
        """
        Clean up after a closed connection. Sessions that were Active are removed together
        with their tracker and the departure is announced; other connections leave no trace.

        Returns:
            Session | None: The removed session, if the connection was Active.
        """
        cid = connection_id(websocket)
        # Drop the connection first so the departure broadcast below skips it.
        self._connections.pop(cid, None)
        # Removes the session and frees its MessageTracker.
        session = self.registry.remove(cid)
        if session is None:
            # Aborted, roster-check, or rate-limited connection: nothing to announce.
            if config.DEBUG:
                logging.info(f"Connection {cid} closed without an active session.")
            return None
        logging.info(f"'{session.display_name}' left the chat")
        self._broadcast_status(f"{session.display_name} left the chat")
        return session

    def is_active(self, websocket):
        return connection_id(websocket) in self._connections

    # --- Message Routing ---

    async def dispatch(self, websocket, message_type, payload):
        """
        Route a parsed client frame to its handler.
        Frames from connections that are not Active, unknown types and frames with missing
        fields are ignored (the latter two with a private error notice).

        Returns:
            bool: True if a handler ran.
        """
        # Only Active sessions may chat.
        if not self.is_active(websocket):
            logging.warning(f"Received '{message_type}' from inactive connection {connection_id(websocket)}. Ignoring.")
            return False
        # Look up the handler for this message type.
        handler = self._handlers.get(message_type)
        if handler is None:
            logging.warning(f"Unknown message type '{message_type}' from {connection_id(websocket)}. Ignoring.")
            self._schedule(websocket, protocol.ERROR, {"error": f"Unknown message type '{message_type}'."})
            return False
        # Every required field must be present and a string.
        bad_fields = protocol.invalid_fields(message_type, payload)
        if bad_fields:
            logging.warning(f"Invalid '{message_type}' payload from {connection_id(websocket)} (fields: {bad_fields}). Ignoring.")
            self._schedule(websocket, protocol.ERROR,
                           {"error": f"Missing or invalid fields: {', '.join(bad_fields)}."})
            return False
        # Unpack the payload into the handler's positional arguments.
        args = [payload[field] for field in protocol.REQUIRED_FIELDS[message_type]]
        await handler(websocket, *args)
        return True

    # --- Spam Protection ---

    def check_spam(self, cid, message):
        """
        Apply the spam rules to a text message that has not been recorded yet.

        Raises:
            RateLimited: The connection is cooling down, is repeating itself, or is sending too fast.
                A new cooldown starts only for the latter two; a running one is never extended.
        """
        tracker = self.registry.tracker_for(cid)
        if tracker is None:
            return
        # Still cooling down from an earlier rejection.
        if tracker.is_in_cooldown():
            raise RateLimited(max(1, tracker.remaining_cooldown_seconds()))
        # Same text as the last `repeat_count` messages, or too many messages inside the window.
        if (tracker.check_repeated_message(message, self.repeat_count)
                or tracker.check_rate_limit(self.max_messages, self.window_seconds)):
            tracker.start_cooldown(self.cooldown_seconds)
            raise RateLimited(tracker.remaining_cooldown_seconds())

    # --- Client Operations ---

    async def send_text(self, websocket, name, message):
        """Broadcast a text message after spam checks. Returns its message id, or None if rejected."""
        cid = connection_id(websocket)
        try:
            self.check_spam(cid, message)
        except RateLimited as e:
            # Always log spam rejections. The rejected text is not recorded.
            logging.warning(f"Spam protection: text from '{name}' ({cid}) rejected, {e.remaining_seconds}s remaining.")
            # Private notice, queued behind any frames already produced for this sender.
            self._schedule(websocket, protocol.SPAM_PROTECTION, {"remainingSeconds": e.remaining_seconds})
            return None

        # Record before broadcasting so the next check sees this message.
        tracker = self.registry.tracker_for(cid)
        if tracker is not None:
            tracker.record_message(message)
        # Log message content only if DEBUG is enabled.
        if config.DEBUG:
            logging.info(f"Text from '{name}': {message}")
        return self._deliver(websocket, protocol.RECEIVE_TEXT, {"name": name, "message": message})

    # Media references are relayed like text but are never rate limited.

    async def send_image(self, websocket, name, url):
        return self._deliver(websocket, protocol.RECEIVE_IMAGE, {"name": name, "url": url})

    async def send_youtube(self, websocket, name, video_id):
        return self._deliver(websocket, protocol.RECEIVE_YOUTUBE, {"name": name, "videoId": video_id})

    async def send_file(self, websocket, name, url, filename):
        return self._deliver(websocket, protocol.RECEIVE_FILE, {"name": name, "url": url, "filename": filename})

    async def send_video(self, websocket, name, url, filename):
        return self._deliver(websocket, protocol.RECEIVE_VIDEO, {"name": name, "url": url, "filename": filename})

    async def delete_message(self, websocket, message_id):
        # Any participant may delete any message id; nothing checks who sent it.
        self._broadcast(protocol.MESSAGE_DELETED, {"messageId": message_id})

    async def update_message(self, websocket, message_id, new_text):
        # Same as delete: broadcast to everyone, sender included, without an ownership check.
        self._broadcast(protocol.MESSAGE_UPDATED, {"messageId": message_id, "newText": new_text})

    def generate_message_id(self, cid):
        """`<connection id>-<timestamp>` where the timestamp part strictly increases across calls."""
        # Two ids generated within the same nanosecond still differ.
        stamp = max(time.time_ns(), self._last_stamp + 1)
        self._last_stamp = stamp
        return f"{cid}-{stamp}"

    # --- Fan-out ---

    def _deliver(self, websocket, message_type, payload):
        # Same content to everyone, tagged so the sender's client can render its own echo differently.
        message_id = self.generate_message_id(connection_id(websocket))
        # Echo to the sender ("caller")...
        self._schedule(websocket, message_type, {**payload, "audience": protocol.CALLER, "messageId": message_id})
        # ...and to every other session ("others").
        self._broadcast(message_type, {**payload, "audience": protocol.OTHERS, "messageId": message_id},
                        exclude=connection_id(websocket))
        return message_id

    def _broadcast_status(self, announcement):
        # Count and names come from one snapshot so they always agree.
        names = self.registry.snapshot_names()
        self._broadcast(protocol.UPDATE_STATUS, {"count": len(names), "message": announcement, "users": names})

    def _broadcast(self, message_type, payload, exclude=None):
        """Schedule delivery to every session in a snapshot of the roster, optionally skipping one connection."""
        for session in self.registry.snapshot_sessions():
            # Skip the excluded connection (the sender, for "others" deliveries).
            if session.connection_id == exclude:
                continue
            # A session removed after the snapshot simply has no connection left to send to.
            websocket = self._connections.get(session.connection_id)
            if websocket is not None:
                self._schedule(websocket, message_type, payload)

    def _schedule(self, websocket, message_type, payload):
        # One task per frame. Tasks start in creation order and each writes its frame before
        # its first suspension, so frames for one connection go out in the order scheduled.
        # A slow or closed connection cannot hold up the others or the sender.
        task = asyncio.create_task(send_json(websocket, message_type, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self):
        """Wait until every scheduled delivery has finished."""
        # Loop because finishing tasks may have been joined by new ones in the meantime.
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
