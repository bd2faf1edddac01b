"""
Tests for the transport layer: per-IP admission and the per-connection handler loop.
"""

import json

import pytest

from chatuniverse import config, protocol, server
from chatuniverse.hub import POLICY_VIOLATION
from chatuniverse.main import parse_args


@pytest.fixture(autouse=True)
def clear_connection_attempts():
    server.CONNECTION_ATTEMPTS.clear()
    yield
    server.CONNECTION_ATTEMPTS.clear()


class TestAllowConnection:

    def test_disabled_by_default(self):
        assert config.MAX_CONNECTIONS_PER_IP is None
        # Many users behind one address are never refused, and nothing is tracked.
        for i in range(50):
            assert server.allow_connection("10.0.0.1", now=100.0 + i) is True
        assert server.CONNECTION_ATTEMPTS == {}

    def test_limit_per_ip(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_CONNECTIONS_PER_IP", 2)
        assert server.allow_connection("10.0.0.1", now=100.0) is True
        assert server.allow_connection("10.0.0.1", now=101.0) is True
        assert server.allow_connection("10.0.0.1", now=102.0) is False
        # Other addresses are counted separately.
        assert server.allow_connection("10.0.0.2", now=102.0) is True

    def test_window_expires(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_CONNECTIONS_PER_IP", 1)
        monkeypatch.setattr(config, "CONNECTION_WINDOW_SECONDS", 60)
        assert server.allow_connection("10.0.0.1", now=0.0) is True
        assert server.allow_connection("10.0.0.1", now=30.0) is False
        assert server.allow_connection("10.0.0.1", now=61.0) is True

    def test_stale_addresses_are_evicted(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_CONNECTIONS_PER_IP", 5)
        monkeypatch.setattr(config, "CONNECTION_WINDOW_SECONDS", 60)
        for i in range(1000):
            server.allow_connection(f"10.{i // 256}.{i % 256}.1", now=0.0)
        assert len(server.CONNECTION_ATTEMPTS) == 1000

        assert server.allow_connection("192.168.1.1", now=10000.0) is True

        assert server.CONNECTION_ATTEMPTS == {"192.168.1.1": [10000.0]}

    def test_refused_attempts_are_not_recorded(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_CONNECTIONS_PER_IP", 1)
        assert server.allow_connection("10.0.0.1", now=0.0) is True
        assert server.allow_connection("10.0.0.1", now=30.0) is False
        assert server.CONNECTION_ATTEMPTS["10.0.0.1"] == [0.0]


class TestConnectionHandler:

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, hub, registry, make_ws):
        watcher = make_ws("Watcher")
        await hub.connect(watcher, "Watcher")
        frames = [
            "not json",
            json.dumps({"type": "send_text", "payload": {"name": "Alice", "message": "hello"}}),
            json.dumps({"type": "delete_message", "payload": {"messageId": "m-1"}}),
        ]
        alice = make_ws("Alice", incoming=frames)

        await server.connection_handler(alice, hub)
        await hub.drain()

        # Alice joined, chatted and was removed when her frames ran out.
        assert registry.snapshot_names() == ["Watcher"]
        statuses = watcher.frames_of(protocol.UPDATE_STATUS)
        assert [s["message"] for s in statuses] == [
            "Watcher joined the chat", "Alice joined the chat", "Alice left the chat"
        ]
        assert watcher.frames_of(protocol.RECEIVE_TEXT)[0]["audience"] == "others"
        assert alice.frames_of(protocol.RECEIVE_TEXT)[0]["audience"] == "caller"
        assert watcher.frames_of(protocol.MESSAGE_DELETED) == [{"messageId": "m-1"}]

    @pytest.mark.asyncio
    async def test_taken_name_never_enters_loop(self, hub, registry, make_ws):
        await hub.connect(make_ws("Alice"), "Alice")
        frames = [json.dumps({"type": "send_text", "payload": {"name": "x", "message": "hi"}})]
        impostor = make_ws("alice", incoming=frames)

        await server.connection_handler(impostor, hub)
        await hub.drain()

        assert impostor.close_code == POLICY_VIOLATION
        assert impostor.sent == []
        assert registry.snapshot_names() == ["Alice"]

    @pytest.mark.asyncio
    async def test_many_connections_from_one_address_are_admitted(self, hub, make_ws):
        watcher = make_ws("Watcher")
        await hub.connect(watcher, "Watcher")

        for i in range(15):
            ws = make_ws(f"User{i}", address=("203.0.113.7", 40000 + i))
            await server.connection_handler(ws, hub)
            assert ws.close_code is None
        await hub.drain()

        joins = [s["message"] for s in watcher.frames_of(protocol.UPDATE_STATUS) if s["message"].endswith("joined the chat")]
        assert len(joins) == 16

    @pytest.mark.asyncio
    async def test_connection_rate_limit_closes_before_connect(self, hub, registry, make_ws, monkeypatch):
        monkeypatch.setattr(config, "MAX_CONNECTIONS_PER_IP", 0)
        ws = make_ws("Alice")

        await server.connection_handler(ws, hub)

        assert ws.close_code == POLICY_VIOLATION
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_roster_check_connection(self, hub, registry, make_ws):
        await hub.connect(make_ws("Alice"), "Alice")
        checker = make_ws("__temp_checker__")

        await server.connection_handler(checker, hub)

        assert checker.frames_of(protocol.UPDATE_STATUS)[0]["users"] == ["Alice"]
        assert checker.closed
        assert registry.snapshot_names() == ["Alice"]


def test_cli_overrides():
    args = parse_args(["--host", "127.0.0.1", "--port", "6000", "--no-ssl", "--debug"])
    assert args.host == "127.0.0.1"
    assert args.port == 6000
    assert args.ssl is False
    assert args.debug is True


def test_cli_defaults():
    args = parse_args([])
    assert args.host == config.HOST
    assert args.port == config.PORT
    assert args.ssl == config.ENABLE_SSL


def test_cli_enables_connection_limit():
    assert parse_args([]).max_connections_per_ip is None
    assert parse_args(["--max-connections-per-ip", "10"]).max_connections_per_ip == 10
