"""Shared fixtures: settings, a scripted completion transport, a tool dispatcher."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from parley.api.tools import ToolDispatcher, ToolError
from parley.api.transport import CompletionRequest, StreamEvent, ToolInvocation
from parley.chat.schemas import ExchangeParams
from parley.config import Settings

# ---------------------------------------------------------------------------
# Stream event helpers
# ---------------------------------------------------------------------------


def text(fragment: str) -> StreamEvent:
    return StreamEvent(type="text_delta", text=fragment)


def tool(name: str, arguments: str = "{}", call_id: str | None = None) -> StreamEvent:
    return StreamEvent(
        type="tool_call",
        invocation=ToolInvocation(tool_name=name, arguments=arguments, call_id=call_id),
    )


# ---------------------------------------------------------------------------
# Scripted transport
# ---------------------------------------------------------------------------


class ScriptedTransport:
    """Plays back one scripted round per stream() call and records requests.

    A round is a list of StreamEvents; an Exception inside the list is raised
    at that point. When the script runs out, rounds repeat ``default``
    (None = a plain "ok" text reply).
    """

    def __init__(
        self,
        rounds: list[list] | None = None,
        default: list | None = None,
        hang_after: int | None = None,
    ) -> None:
        self.rounds = list(rounds or [])
        self.default = default if default is not None else [text("ok")]
        self.requests: list[CompletionRequest] = []
        self.hang_after = hang_after  # block forever after this many events of a round
        self.started = asyncio.Event()

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        events = self.rounds.pop(0) if self.rounds else list(self.default)
        for i, item in enumerate(events):
            if self.hang_after is not None and i == self.hang_after:
                self.started.set()
                await asyncio.Event().wait()
            if isinstance(item, Exception):
                raise item
            yield item
        if self.hang_after is not None and self.hang_after >= len(events):
            self.started.set()
            await asyncio.Event().wait()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment's .env file."""
    return Settings(_env_file=None, api_key="test-key", workspace_dir=str(tmp_path))


@pytest.fixture
def params() -> ExchangeParams:
    return ExchangeParams(model_id="test-model", system_prompt="You are helpful.")


@pytest.fixture
def dispatcher() -> ToolDispatcher:
    """Dispatcher with an echo tool, a failing tool and a disabled tool."""
    d = ToolDispatcher()

    async def echo(value: str = "") -> str:
        return f"echo:{value}"

    async def fail() -> str:
        raise ToolError("nope")

    async def secret() -> str:
        return "classified"

    d.register("echo", echo, {"type": "object", "description": "Echo a value",
                              "properties": {"value": {"type": "string"}}})
    d.register("fail", fail, {"type": "object", "description": "Always fails", "properties": {}})
    d.register("secret", secret, {"type": "object", "description": "Disabled", "properties": {}},
               enabled=False)
    return d
