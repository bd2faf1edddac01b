# chatuniverse/presence.py
# The authoritative record of who is online.
# Responsibilities include:
# - Admitting sessions under a display name that is unique case-insensitively.
# - Owning the per-connection MessageTracker that lives exactly as long as the session.
# - Answering presence checks and producing roster snapshots for broadcasts.
#
# Every read and write goes through one lock so that connect/disconnect handlers
# and presence checks running elsewhere never see a half-updated roster.

import logging                      # For DEBUG-level admission logging.
import threading                    # The lock around the shared maps.
from dataclasses import dataclass   # For the Session value type.

from . import config                # DEBUG flag.
from .errors import NameTaken       # Raised when a display name is already online.
from .tracker import MessageTracker # Default per-session tracker factory.


@dataclass(frozen=True)
class Session:
    """An admitted chat participant."""
    connection_id: str
    display_name: str


def _name_key(name):
    # Per-character lower-casing: "Straße" and "STRASSE" stay distinct names.
    return name.lower()


class PresenceRegistry:
    """Online sessions keyed by connection id and by display name.

    Args:
        tracker_factory (callable): Builds the MessageTracker allocated to each admitted session.
    """

    def __init__(self, tracker_factory=MessageTracker):
        self._tracker_factory = tracker_factory
        self._lock = threading.Lock()
        # SESSIONS: connection id -> Session, in admission order (this order is the roster order).
        self._sessions = {}
        # NAMES: lower-cased display name -> connection id. Reverse lookup for uniqueness checks.
        self._names = {}
        # TRACKERS: connection id -> MessageTracker, allocated on admit and freed on remove.
        self._trackers = {}

    def try_add(self, connection_id, name):
        """Admit a session, or raise NameTaken if the name is in use.

        Args:
            connection_id (str): Transport-assigned connection token.
            name (str): Requested display name.

        Returns:
            Session: The newly stored session.
        """
        key = _name_key(name)
        with self._lock:
            # Check and insert under one lock so two connects racing for one name cannot both win.
            if key in self._names:
                raise NameTaken(name)
            session = Session(connection_id=connection_id, display_name=name)
            self._sessions[connection_id] = session
            self._names[key] = connection_id
            # Fresh tracker: spam history never carries over from an earlier session.
            self._trackers[connection_id] = self._tracker_factory()
        if config.DEBUG:
            logging.info(f"Session '{name}' admitted for connection {connection_id}")
        return session

    def remove(self, connection_id):
        """Remove the session (and its tracker) for a connection. Returns the Session or None."""
        with self._lock:
            session = self._sessions.pop(connection_id, None)
            self._trackers.pop(connection_id, None)
            # Unknown ids (rejected or roster-only connections) fall through and return None.
            if session is not None:
                self._names.pop(_name_key(session.display_name), None)
        return session

    def get(self, connection_id):
        with self._lock:
            return self._sessions.get(connection_id)

    def tracker_for(self, connection_id):
        with self._lock:
            return self._trackers.get(connection_id)

    def is_online(self, name):
        """Case-insensitive check whether a display name belongs to an active session."""
        # Empty or missing names are never online.
        if not name:
            return False
        with self._lock:
            return _name_key(name) in self._names

    def snapshot_names(self):
        """Current roster in admission order."""
        # A new list each call; callers may keep it after the lock is released.
        with self._lock:
            return [session.display_name for session in self._sessions.values()]

    def snapshot_sessions(self):
        """Point-in-time copy of the active sessions, used for fan-out."""
        with self._lock:
            return list(self._sessions.values())

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def __contains__(self, connection_id):
        with self._lock:
            return connection_id in self._sessions
