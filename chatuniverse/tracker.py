# chatuniverse/tracker.py
# Per-connection spam tracking: a sliding window of recently sent text messages
# plus an optional cooldown deadline.
#
# Cooldowns are passive. Nothing fires when a deadline passes; every query simply
# compares the current clock value against the stored deadline.

import math                         # For rounding remaining cooldown time up to whole seconds.
import time                         # Default clock (time.monotonic).
from dataclasses import dataclass   # For the MessageRecord value type.
from operator import attrgetter     # Sort key for newest-first record ordering.

from . import config                # Default retention window (MESSAGE_HISTORY_SECONDS).


@dataclass
class MessageRecord:
    """A text message accepted from one connection."""
    content: str
    timestamp: float


class MessageTracker:
    """Sliding-window message history and cooldown state for a single connection.

    Args:
        retention_seconds (float): Records older than this are dropped on every insert.
        clock (callable): Returns the current time in seconds. Defaults to time.monotonic.
    """

    def __init__(self, retention_seconds=config.MESSAGE_HISTORY_SECONDS, clock=time.monotonic):
        self.retention_seconds = retention_seconds
        # Time source: time.monotonic by default, a fake clock in tests.
        self._clock = clock
        self._history = []  # MessageRecord objects, oldest first.
        # Clock value at which the current cooldown ends; None when no cooldown was ever started.
        self._cooldown_until = None

    @property
    def history(self):
        """Copy of the retained records, oldest first."""
        return list(self._history)

    @property
    def cooldown_until(self):
        return self._cooldown_until

    def record_message(self, content):
        """Append a record stamped with the current time, then prune records past the retention window."""
        now = self._clock()
        self._history.append(MessageRecord(content=content, timestamp=now))
        # Prune on insert only; nothing else ever shrinks the history.
        cutoff = now - self.retention_seconds
        self._history = [record for record in self._history if record.timestamp >= cutoff]

    def is_in_cooldown(self):
        # Expired deadlines are left in place; they simply compare as past.
        return self._cooldown_until is not None and self._clock() < self._cooldown_until

    def start_cooldown(self, seconds):
        """Block text sends for `seconds` from now. Replaces any running cooldown."""
        self._cooldown_until = self._clock() + seconds

    def remaining_cooldown_seconds(self):
        """Whole seconds left in the cooldown, rounded up. 0 when no cooldown is running."""
        now = self._clock()
        if self._cooldown_until is None or now >= self._cooldown_until:
            return 0
        return math.ceil(self._cooldown_until - now)

    def check_repeated_message(self, content, count):
        """True if the `count` most recent records all have exactly `content`."""
        # Fewer records than the repeat threshold can never be a repeat.
        if len(self._history) < count:
            return False
        # Newest first; reversing before the stable sort keeps later inserts ahead on equal timestamps.
        recent = sorted(reversed(self._history), key=attrgetter("timestamp"), reverse=True)[:count]
        return all(record.content == content for record in recent)

    def check_rate_limit(self, max_messages, window_seconds):
        """True if `max_messages` or more records fall inside the last `window_seconds`.

        Called before the current message is recorded, so True means accepting one
        more message would exceed the limit.
        """
        # Records exactly on the window boundary still count.
        cutoff = self._clock() - window_seconds
        recent_count = sum(1 for record in self._history if record.timestamp >= cutoff)
        return recent_count >= max_messages
