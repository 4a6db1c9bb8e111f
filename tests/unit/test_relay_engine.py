"""
Unit Tests: Relay Engine

Tests the client registry and the forwarding policy between the bus and
sessions.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from relay import RelayEngine, WebSocketSession
from relay.protocols import BUS_SENDER, Frame


# =============================================================================
# Registry Tests
# =============================================================================

@pytest.mark.unit
class TestRegistry:
    """Test session registration and removal."""

    def test_tags_are_distinct(self, session_factory):
        sessions = [session_factory("ws") for _ in range(3)] + [session_factory("tcp") for _ in range(3)]
        tags = [s.sender_tag for s in sessions]
        assert len(set(tags)) == len(tags)

    def test_tags_carry_transport_kind(self, session_factory):
        ws = session_factory("ws")
        tcp = session_factory("tcp")
        assert ws.sender_tag.startswith("ws")
        assert tcp.sender_tag.startswith("tcp")

    def test_register_counts(self, engine, session_factory):
        a = session_factory()
        b = session_factory("tcp")
        assert engine.get_client_count() == 2
        assert engine.get_client_tags() == [a.sender_tag, b.sender_tag]

    def test_register_twice_keeps_one_entry(self, engine, session_factory):
        a = session_factory()
        engine.register_client(a)
        assert engine.get_client_count() == 1

    def test_remove_is_idempotent(self, engine, session_factory):
        a = session_factory()
        assert engine.remove_client(a) is True
        assert engine.remove_client(a) is False
        assert engine.get_client_count() == 0

    def test_clients_gauge(self, engine, metrics, session_factory):
        a = session_factory("ws")
        session_factory("tcp")
        assert metrics['clients'].get(kind="ws") == 1
        assert metrics['clients'].get(kind="tcp") == 1

        engine.remove_client(a)
        engine.remove_client(a)
        assert metrics['clients'].get(kind="ws") == 0

    def test_snapshot_is_a_copy(self, engine, session_factory):
        a = session_factory()
        snap = engine.snapshot()
        engine.remove_client(a)
        assert snap == [a]


# =============================================================================
# Bus -> Client Tests
# =============================================================================

@pytest.mark.unit
class TestBusToClient:
    """Test fan-out of bus frames."""

    @pytest.mark.asyncio
    async def test_bus_frame_reaches_every_session(self, engine, session_factory):
        sessions = [session_factory("ws"), session_factory("tcp"), session_factory("ws")]

        delivered = await engine.on_bus_frame(Frame(b"\x01\x02", BUS_SENDER))

        assert delivered == 3
        for session in sessions:
            assert session.frames == [b"\x01\x02"]

    @pytest.mark.asyncio
    async def test_sender_does_not_get_its_own_frame(self, engine, session_factory):
        a = session_factory()
        b = session_factory()
        c = session_factory("tcp")

        delivered = await engine.on_bus_frame(Frame(b"\xaa", a.sender_tag))

        assert delivered == 2
        assert a.frames == []
        assert b.frames == [b"\xaa"]
        assert c.frames == [b"\xaa"]

    @pytest.mark.asyncio
    async def test_failed_send_removes_only_that_session(self, engine, metrics, session_factory):
        a = session_factory()
        dead = session_factory(fail=True)
        c = session_factory()

        delivered = await engine.on_bus_frame(Frame(b"\x05"))

        assert delivered == 2
        assert a.frames == [b"\x05"]
        assert c.frames == [b"\x05"]
        assert engine.snapshot() == [a, c]
        assert metrics['send_failures_total'].get(kind="ws") == 1
        assert dead.closed
        assert not a.closed

    @pytest.mark.asyncio
    async def test_send_exception_counts_as_failure(self, engine, session_factory):
        a = session_factory()

        async def boom(message):
            raise RuntimeError("socket gone")

        a.send = boom
        await engine.on_bus_frame(Frame(b"\x05"))

        assert engine.get_client_count() == 0
        assert a.closed

    @pytest.mark.asyncio
    async def test_failed_websocket_send_closes_socket(self, engine):
        ws = AsyncMock()
        ws.send_bytes.side_effect = RuntimeError("connection lost")
        engine.register_client(WebSocketSession(ws))

        await engine.on_bus_frame(Frame(b"\x01"))

        assert engine.get_client_count() == 0
        ws.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stalled_websocket_send_closes_socket(self, engine, monkeypatch):
        monkeypatch.setattr("relay.sessions.WS_SEND_TIMEOUT", 0.01)

        async def stall(data):
            await asyncio.sleep(1)

        ws = AsyncMock()
        ws.send_bytes = stall
        healthy = engine.register_client(WebSocketSession(AsyncMock()))
        engine.register_client(WebSocketSession(ws))

        delivered = await engine.on_bus_frame(Frame(b"\x02"))

        assert delivered == 1
        assert engine.snapshot() == [healthy]
        ws.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_removal_during_relay(self, engine, session_factory):
        """A session removed mid-relay does not disturb delivery to the others."""
        a = session_factory()
        b = session_factory()
        c = session_factory()
        original_send = a.send

        async def send_and_drop_b(message):
            engine.remove_client(b)
            return await original_send(message)

        a.send = send_and_drop_b
        await engine.on_bus_frame(Frame(b"\x07"))

        assert a.frames == [b"\x07"]
        assert c.frames == [b"\x07"]
        assert engine.snapshot() == [a, c]

    @pytest.mark.asyncio
    async def test_no_sessions(self, engine):
        assert await engine.on_bus_frame(Frame(b"\x01")) == 0


# =============================================================================
# Client -> Bus Tests
# =============================================================================

@pytest.mark.unit
class TestClientToBus:
    """Test client frames submitted to the loopback bus."""

    @pytest.mark.asyncio
    async def test_client_frame_is_not_echoed(self, engine, session_factory):
        a = session_factory()
        b = session_factory("tcp")

        await engine.on_client_frame(b"\x10\x20", a.sender_tag)

        assert a.frames == []
        assert b.frames == [b"\x10\x20"]

    @pytest.mark.asyncio
    async def test_frame_counters(self, engine, metrics, session_factory):
        a = session_factory()
        session_factory()

        await engine.on_client_frame(b"\x01", a.sender_tag)

        assert metrics['frames_total'].get(direction="client_to_bus") == 1
        assert metrics['frames_total'].get(direction="bus_to_client") == 1

    @pytest.mark.asyncio
    async def test_bus_failure_is_logged(self, bus, metrics, session_factory):
        class FailingBus(type(bus)):
            async def send_frame(self, frame):
                raise ConnectionError("bus offline")

        engine = RelayEngine(FailingBus(), metrics)
        await engine.on_client_frame(b"\x01", "ws1")

        assert metrics['frames_total'].get(direction="client_to_bus") == 1

    @pytest.mark.asyncio
    async def test_stopped_bus_drops_frames(self, bus, engine, session_factory):
        a = session_factory()
        b = session_factory()
        await bus.stop()

        await engine.on_client_frame(b"\x01", a.sender_tag)

        assert b.frames == []


# =============================================================================
# Shutdown Tests
# =============================================================================

@pytest.mark.unit
class TestCleanup:
    """Test shutdown cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_all_closes_sessions(self, engine, session_factory):
        sessions = [session_factory(), session_factory("tcp")]

        await engine.cleanup_all()

        assert engine.get_client_count() == 0
        assert all(s.closed for s in sessions)
