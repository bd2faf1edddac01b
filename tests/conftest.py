"""
Shared test fixtures: a controllable clock, an in-memory stand-in for a
websockets server connection, and registry/hub instances wired to them.
"""

import json
import uuid
from types import SimpleNamespace

import pytest
import websockets

from chatuniverse.hub import ChatHub
from chatuniverse.presence import PresenceRegistry
from chatuniverse.tracker import MessageTracker


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeWebSocket:
    """Records frames sent by the server and replays queued incoming frames."""

    def __init__(self, name=None, path=None, incoming=(), fail_sends=False, address=("127.0.0.1", 50000)):
        self.id = uuid.uuid4()
        self.remote_address = address
        if path is None:
            path = "/hub" if name is None else f"/hub?name={name}"
        self.request = SimpleNamespace(path=path)
        self.incoming = list(incoming)
        self.fail_sends = fail_sends
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = None

    async def send(self, message):
        if self.fail_sends:
            raise websockets.exceptions.ConnectionClosedError(None, None)
        self.sent.append(message)

    async def close(self, code=1000, reason=""):
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.incoming:
            yield message

    @property
    def frames(self):
        return [json.loads(message) for message in self.sent]

    def frames_of(self, message_type):
        return [frame["payload"] for frame in self.frames if frame["type"] == message_type]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return MessageTracker(clock=clock)


@pytest.fixture
def registry(clock):
    return PresenceRegistry(tracker_factory=lambda: MessageTracker(clock=clock))


@pytest.fixture
def hub(registry):
    return ChatHub(registry)


@pytest.fixture
def make_ws():
    return FakeWebSocket
