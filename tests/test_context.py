"""Tests for ContextComposer -- projection and budget pruning."""

from parley.chat.context import ContextComposer
from parley.chat.schemas import Role, ToolCall, Turn


def _user(text: str) -> Turn:
    return Turn(role=Role.USER, content=text)


def _assistant(text: str = "", calls: list[ToolCall] | None = None) -> Turn:
    return Turn(role=Role.ASSISTANT, content=text, tool_calls=calls or [])


def _tool(text: str, call_id: str) -> Turn:
    return Turn(role=Role.TOOL, content=text, tool_call_id=call_id)


class TestProjection:
    def test_system_prompt_first(self):
        messages = ContextComposer().compose([_user("hi")], "be nice", 10_000)
        assert [m.role for m in messages] == [Role.SYSTEM, Role.USER]
        assert messages[0].content == "be nice"

    def test_no_system_message_when_prompt_empty(self):
        messages = ContextComposer().compose([_user("hi")], "", 10_000)
        assert [m.role for m in messages] == [Role.USER]

    def test_trailing_blank_assistant_omitted(self):
        turns = [_user("hi"), _assistant()]
        messages = ContextComposer().compose(turns, "", 10_000)
        assert [m.role for m in messages] == [Role.USER]

    def test_blank_assistant_in_middle_skipped_with_warning(self, caplog):
        turns = [_user("a"), _assistant(), _user("b"), _assistant("reply"), _user("c")]
        messages = ContextComposer().compose(turns, "", 10_000)
        assert [m.content for m in messages] == ["a", "b", "reply", "c"]
        assert "Skipping empty assistant message at index 1" in caplog.text

    def test_thinking_not_sent(self):
        turn = _assistant("answer")
        turn.thinking = "secret reasoning"
        messages = ContextComposer().compose([_user("q"), turn], "", 10_000)
        assert all("secret" not in (m.content or "") for m in messages)

    def test_assistant_with_tool_calls_and_no_text(self):
        call = ToolCall(id="call_1", name="echo", arguments='{"value":"x"}')
        turns = [_user("q"), _assistant(calls=[call]), _tool("echo:x", "call_1")]
        messages = ContextComposer().compose(turns, "", 10_000)
        assert messages[1].content is None
        assert messages[1].tool_calls == [call]
        assert messages[2].to_wire() == {"role": "tool", "content": "echo:x", "tool_call_id": "call_1"}

    def test_user_images_become_multipart(self):
        turn = Turn(role=Role.USER, content="look", images=[b"\x89PNG"])
        wire = ContextComposer().compose([turn], "", 10_000)[0].to_wire()
        assert wire["content"][0] == {"type": "text", "text": "look"}
        assert wire["content"][1]["image_url"]["url"].startswith("data:image/png;base64,")


class TestPruning:
    def test_within_budget_keeps_everything(self):
        turns = [_user("a" * 40), _assistant("b" * 40), _user("c" * 40)]
        messages = ContextComposer().compose(turns, "sys", 1_000)
        assert len(messages) == 4

    def test_oldest_dropped_first(self):
        turns = [_user("a" * 400), _assistant("b" * 400), _user("c" * 400)]
        messages = ContextComposer().compose(turns, "sys", 210)
        assert [m.content[0] for m in messages] == ["s", "b", "c"]

    def test_system_message_never_pruned(self):
        turns = [_user("a" * 400), _user("b" * 400)]
        messages = ContextComposer().compose(turns, "s" * 4000, 10)
        assert messages[0].role == Role.SYSTEM
        assert messages[-1].content == "b" * 400

    def test_newest_message_survives_even_if_over_budget(self):
        turns = [_user("a" * 40), _user("z" * 4000)]
        messages = ContextComposer().compose(turns, "", 5)
        assert [m.content for m in messages] == ["z" * 4000]

    def test_leading_orphan_tool_message_removed(self):
        call = ToolCall(id="call_1", name="echo", arguments="{}")
        turns = [
            _user("q" * 400),
            _assistant(calls=[call]),
            _tool("r" * 40, "call_1"),
            _assistant("after tool"),
            _user("next"),
        ]
        # Budget forces the user message and the tool call out, leaving the tool result first
        messages = ContextComposer().compose(turns, "", 20)
        assert messages[0].role != Role.TOOL
        assert messages[-1].content == "next"

    def test_orphan_tool_dropped_even_when_newest(self):
        turns = [_user("q" * 400), _tool("r" * 400, "call_1")]
        messages = ContextComposer().compose(turns, "sys", 5)
        assert [m.role for m in messages] == [Role.SYSTEM]

    def test_orphan_tool_dropped_without_system(self):
        turns = [_user("q" * 400), _tool("r" * 400, "call_1")]
        assert ContextComposer().compose(turns, "", 5) == []

    def test_tool_call_json_counts_toward_estimate(self):
        composer = ContextComposer()
        call = ToolCall(id="call_1", name="echo", arguments='{"value": "' + "x" * 400 + '"}')
        messages = composer.compose([_assistant(calls=[call])], "", 10_000)
        assert composer._estimate_tokens(messages[0]) > 100
