"""Tests for ChatSession operations and the LRU SessionStore."""

import pytest

from parley.api.runner import ExchangeOutcome, ExchangeRunner
from parley.chat.schemas import Persona, Role
from parley.chat.session import ChatSession, SessionBusyError, SessionStore
from tests.conftest import ScriptedTransport, text


def _session(settings, dispatcher, transport=None, persona=None) -> ChatSession:
    transport = transport or ScriptedTransport()
    return ChatSession(settings, ExchangeRunner(transport, dispatcher), persona=persona)


class TestSend:
    @pytest.mark.asyncio
    async def test_send_appends_user_and_reply(self, settings, dispatcher):
        session = _session(settings, dispatcher)
        result = await session.send("  hello  ")
        assert result.outcome == ExchangeOutcome.DONE
        assert [(t.role, t.content) for t in session.turns] == [
            (Role.USER, "hello"),
            (Role.ASSISTANT, "ok"),
        ]
        assert session.last_result is result

    @pytest.mark.asyncio
    async def test_empty_send_on_empty_history_is_noop(self, settings, dispatcher):
        transport = ScriptedTransport()
        session = _session(settings, dispatcher, transport)
        assert await session.send("") is None
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_empty_send_regenerates_from_history(self, settings, dispatcher):
        transport = ScriptedTransport([[text("first")], [text("second")]])
        session = _session(settings, dispatcher, transport)
        await session.send("q")
        await session.send("")
        assert [t.content for t in session.turns] == ["q", "first", "second"]
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_images_only(self, settings, dispatcher):
        transport = ScriptedTransport()
        session = _session(settings, dispatcher, transport)
        await session.send("", images=[b"png"])
        assert session.turns[0].images == [b"png"]
        assert transport.requests[0].messages[-1].images == [b"png"]


class TestParams:
    def test_session_overrides_win(self, settings, dispatcher):
        persona = Persona(model="persona-model", system_prompt=" persona prompt ", tool_overrides={"echo": False})
        session = _session(settings, dispatcher, persona=persona)
        params = session.params()
        assert params.model_id == "persona-model"
        assert params.system_prompt == "persona prompt"
        assert params.tool_overrides == {"echo": False}

        session.model = "session-model"
        session.tool_overrides = {"fail": False}
        params = session.params()
        assert params.model_id == "session-model"
        assert params.tool_overrides == {"fail": False}

    def test_settings_fallback(self, settings, dispatcher):
        params = _session(settings, dispatcher).params()
        assert params.model_id == settings.model
        assert params.max_attempts == settings.max_tool_attempts


class TestHistoryEditing:
    @pytest.mark.asyncio
    async def test_edit_and_regenerate(self, settings, dispatcher):
        transport = ScriptedTransport([[text("a1")], [text("a2")], [text("a2b")]])
        session = _session(settings, dispatcher, transport)
        await session.send("q1")
        await session.send("q2")
        q1 = session.turns[0]

        await session.edit_and_regenerate(q1.id, "q1 edited")
        assert [t.content for t in session.turns] == ["q1 edited", "a2b"]
        assert session.turns[0] is q1
        assert session.turns[0].content == "q1 edited"
        assert transport.requests[-1].messages[-1].content == "q1 edited"

    @pytest.mark.asyncio
    async def test_edit_rejects_assistant_turn(self, settings, dispatcher):
        session = _session(settings, dispatcher)
        await session.send("q")
        with pytest.raises(ValueError):
            await session.edit_and_regenerate(session.turns[1].id, "x")

    @pytest.mark.asyncio
    async def test_regenerate_assistant_turn(self, settings, dispatcher):
        transport = ScriptedTransport([[text("bad")], [text("good")]])
        session = _session(settings, dispatcher, transport)
        await session.send("q")
        await session.regenerate(session.turns[1].id)
        assert [t.content for t in session.turns] == ["q", "good"]

    @pytest.mark.asyncio
    async def test_regenerate_rejects_user_turn(self, settings, dispatcher):
        session = _session(settings, dispatcher)
        await session.send("q")
        with pytest.raises(ValueError):
            await session.regenerate(session.turns[0].id)

    @pytest.mark.asyncio
    async def test_delete_turn_truncates(self, settings, dispatcher):
        session = _session(settings, dispatcher)
        await session.send("q1")
        await session.send("q2")
        session.delete_turn(session.turns[2].id)
        assert [t.content for t in session.turns] == ["q1", "ok"]

    def test_unknown_turn(self, settings, dispatcher):
        with pytest.raises(KeyError):
            _session(settings, dispatcher).delete_turn("missing")


class TestBackgroundExchange:
    @pytest.mark.asyncio
    async def test_busy_while_streaming(self, settings, dispatcher):
        transport = ScriptedTransport([[text("partial")]], hang_after=1)
        session = _session(settings, dispatcher, transport)
        session.start("q")
        await transport.started.wait()

        assert session.is_streaming
        with pytest.raises(SessionBusyError):
            await session.send("again")
        with pytest.raises(SessionBusyError):
            session.delete_turn(session.turns[0].id)

        await session.stop()
        assert not session.is_streaming
        assert session.turns[-1].content == "partial"

    @pytest.mark.asyncio
    async def test_start_returns_result(self, settings, dispatcher):
        session = _session(settings, dispatcher)
        result = await session.start("q")
        assert result.outcome == ExchangeOutcome.DONE

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, settings, dispatcher):
        await _session(settings, dispatcher).stop()


class TestSessionStore:
    def test_get_or_create_reuses(self, settings, dispatcher):
        store = SessionStore(settings, ScriptedTransport(), dispatcher)
        session = store.get_or_create("s1")
        assert store.get_or_create("s1") is session
        assert "s1" in store
        assert store.get("missing") is None

    def test_generates_id(self, settings, dispatcher):
        store = SessionStore(settings, ScriptedTransport(), dispatcher)
        session = store.get_or_create()
        assert session.id in store

    def test_lru_eviction(self, settings, dispatcher):
        settings.max_sessions = 2
        store = SessionStore(settings, ScriptedTransport(), dispatcher)
        store.get_or_create("a")
        store.get_or_create("b")
        store.get("a")
        store.get_or_create("c")
        assert "a" in store
        assert "b" not in store
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_delete_stops_running_exchange(self, settings, dispatcher):
        transport = ScriptedTransport([[text("x")]], hang_after=1)
        store = SessionStore(settings, transport, dispatcher)
        session = store.get_or_create("s")
        task = session.start("q")
        await transport.started.wait()

        assert await store.delete("s") is True
        assert task.cancelled()
        assert await store.delete("s") is False

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_history(self, settings, dispatcher):
        store = SessionStore(settings, ScriptedTransport(), dispatcher)
        await store.get_or_create("a").send("one")
        assert store.get_or_create("b").turns == []
