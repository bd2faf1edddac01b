# chatuniverse/errors.py
# Exceptions raised by the presence registry and the chat hub.


class ChatError(Exception):
    """Base class for chat hub errors."""


class InvalidName(ChatError):
    """The connecting client supplied no display name."""

    def __init__(self, name=None):
        super().__init__("A display name is required.")
        self.name = name


class NameTaken(ChatError):
    """Another active session already uses the display name (compared case-insensitively)."""

    def __init__(self, name):
        super().__init__(f"Display name '{name}' is already taken.")
        self.name = name


class RateLimited(ChatError):
    """A text message was rejected by spam protection.

    Recoverable: the sender may retry once ``remaining_seconds`` have elapsed.
    """

    def __init__(self, remaining_seconds):
        super().__init__(f"Spam protection active, retry in {remaining_seconds}s.")
        self.remaining_seconds = remaining_seconds
