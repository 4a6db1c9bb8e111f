"""
Unit Tests: Side-Channel Router

Tests JSON control message dispatch, broadcast opt-in and error replies.
"""

import json

import pytest

from relay.protocols import parse_side_message


def _errors(session):
    return [json.loads(t) for t in session.texts if json.loads(t).get("type") == "error"]


# =============================================================================
# Broadcast Tests
# =============================================================================

@pytest.mark.unit
class TestBroadcast:
    """Test enableBCast opt-in and bcast forwarding."""

    @pytest.mark.asyncio
    async def test_only_opted_in_others_receive(self, engine, session_factory):
        a = session_factory()
        b = session_factory()
        c = session_factory()

        await engine.handle_text(a, json.dumps({"type": "enableBCast"}))
        await engine.handle_text(b, json.dumps({"type": "enableBCast"}))
        text = json.dumps({"type": "selection", "bcast": True, "deviceId": "abc"})
        await engine.handle_text(a, text)

        assert b.texts == [text]
        assert a.texts == []
        assert c.texts == []

    @pytest.mark.asyncio
    async def test_broadcast_is_verbatim(self, engine, session_factory):
        a = session_factory()
        b = session_factory()
        await engine.handle_text(b, '{"type":"enableBCast"}')

        text = '{ "type" : "custom",  "bcast": true, "n": [1,2] }'
        await engine.handle_text(a, text)

        assert b.texts == [text]

    @pytest.mark.asyncio
    async def test_unknown_type_with_bcast_has_no_error(self, engine, session_factory):
        a = session_factory()
        await engine.handle_text(a, json.dumps({"type": "custom", "bcast": True}))
        assert a.texts == []

    @pytest.mark.asyncio
    async def test_enable_broadcast_sets_flag(self, engine, session_factory):
        a = session_factory()
        assert a.wants_broadcast is False
        await engine.handle_text(a, json.dumps({"type": "enableBCast"}))
        assert a.wants_broadcast is True
        assert a.texts == []

    @pytest.mark.asyncio
    async def test_sessions_not_opted_in_are_skipped(self, engine, session_factory):
        """Broadcast skips sessions that never opted in, whatever their transport."""
        a = session_factory()
        tcp = session_factory("tcp")
        await engine.handle_text(a, json.dumps({"type": "x", "bcast": True}))
        assert tcp.sent == []

    @pytest.mark.asyncio
    async def test_failed_broadcast_removes_session(self, engine, session_factory):
        a = session_factory()
        dead = session_factory(fail=True)
        dead.wants_broadcast = True

        await engine.handle_text(a, json.dumps({"type": "x", "bcast": True}))

        assert engine.snapshot() == [a]
        assert dead.closed


# =============================================================================
# Dispatch Tests
# =============================================================================

@pytest.mark.unit
class TestDispatch:
    """Test handler dispatch and error replies."""

    @pytest.mark.asyncio
    async def test_unknown_type_replies_once(self, engine, session_factory):
        a = session_factory()
        b = session_factory()

        await engine.handle_text(a, json.dumps({"type": "bogus"}))

        errors = _errors(a)
        assert len(errors) == 1
        assert errors[0]["message"] == "unknown msg type: bogus"
        assert "stack" not in errors[0]
        assert b.texts == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [
        "not json",
        "{",
        "[1, 2]",
        "42",
        '"enableBCast"',
        "{}",
        '{"type": 5}',
        '{"type": null}',
    ])
    async def test_malformed_messages_are_ignored(self, engine, session_factory, text):
        a = session_factory()
        await engine.handle_text(a, text)
        assert a.sent == []
        assert engine.get_client_count() == 1

    @pytest.mark.asyncio
    async def test_registered_handler_receives_message(self, engine, session_factory):
        a = session_factory()
        seen = []

        async def handler(message, sender):
            seen.append((message.type, getattr(message, "value", None), sender))

        engine.router.register("ping", handler)
        await engine.handle_text(a, json.dumps({"type": "ping", "value": 3}))

        assert seen == [("ping", 3, a)]
        assert a.texts == []

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_reply(self, engine, session_factory):
        a = session_factory()

        async def handler(message, sender):
            raise RuntimeError("kaput")

        engine.router.register("explode", handler)
        await engine.handle_text(a, json.dumps({"type": "explode"}))

        errors = _errors(a)
        assert len(errors) == 1
        assert errors[0]["message"] == "kaput"
        assert "RuntimeError" in errors[0]["stack"]
        assert engine.get_client_count() == 1

    @pytest.mark.asyncio
    async def test_handler_and_bcast_both_run(self, engine, session_factory):
        a = session_factory()
        b = session_factory()
        await engine.handle_text(b, json.dumps({"type": "enableBCast"}))
        calls = []

        async def handler(message, sender):
            calls.append(sender)

        engine.router.register("note", handler)
        text = json.dumps({"type": "note", "bcast": True})
        await engine.handle_text(a, text)

        assert calls == [a]
        assert b.texts == [text]

    def test_extra_fields_are_kept(self):
        message = parse_side_message(json.dumps({"type": "selection", "deviceId": "abc", "bcast": True}))

        assert message.type == "selection"
        assert message.bcast is True
        assert message.model_extra == {"deviceId": "abc"}
        assert message.deviceId == "abc"
