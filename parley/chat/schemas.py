"""Conversation data model and the DTOs that cross component boundaries.

Turns are mutable runtime objects (assistant turns are filled in while
streaming). Everything that is built fresh per request -- outgoing
messages, parameter bundles, budgets -- is an immutable pydantic model.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool call issued by an assistant turn (OpenAI function-call shape)."""

    id: str
    name: str
    arguments: str  # raw JSON string, forwarded verbatim

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class Turn:
    """One message in conversation history."""

    role: Role
    content: str = ""
    thinking: str = ""  # reasoning text, assistant only
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: dict[str, str] = field(default_factory=dict)  # call id -> result
    tool_call_id: str | None = None  # tool turns only
    images: list[bytes] = field(default_factory=list)  # PNG data, user only
    id: str = field(default_factory=lambda: str(uuid4()))

    def append_content(self, text: str) -> None:
        if text:
            self.content += text

    def append_thinking(self, text: str) -> None:
        if text:
            self.thinking += text

    @property
    def is_blank(self) -> bool:
        """True for an assistant placeholder that never received anything."""
        return not self.content and not self.thinking and not self.tool_calls

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe view of the turn for observers (images are counted, not sent)."""
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
        }
        if self.thinking:
            data["thinking"] = self.thinking
        if self.tool_calls:
            data["tool_calls"] = [c.to_wire() for c in self.tool_calls]
        if self.tool_results:
            data["tool_results"] = dict(self.tool_results)
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.images:
            data["image_count"] = len(self.images)
        return data


class OutgoingMessage(BaseModel):
    """Wire-shaped projection of a Turn for one request. Never persisted."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    images: list[bytes] | None = None

    @model_validator(mode="after")
    def _assistant_not_empty(self) -> "OutgoingMessage":
        if self.role == Role.ASSISTANT and not self.content and not self.tool_calls:
            raise ValueError("assistant message needs text or tool calls")
        return self

    def to_wire(self) -> dict[str, Any]:
        """Serialize to an OpenAI chat-completions message dict."""
        msg: dict[str, Any] = {"role": self.role.value}
        if self.images:
            parts: list[dict[str, Any]] = []
            if self.content:
                parts.append({"type": "text", "text": self.content})
            for image in self.images:
                encoded = base64.b64encode(image).decode("ascii")
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{encoded}"},
                })
            msg["content"] = parts
        else:
            msg["content"] = self.content
        if self.tool_calls:
            msg["tool_calls"] = [c.to_wire() for c in self.tool_calls]
        if self.tool_call_id is not None:
            msg["tool_call_id"] = self.tool_call_id
        return msg


class ToolResult(BaseModel):
    """Record of one tool execution during an exchange."""

    tool_name: str
    call_id: str
    arguments: str = ""
    result: str | None = None
    error: str | None = None
    duration_ms: int | None = None


class Persona(BaseModel):
    """Persona-level defaults. Unset fields fall back to Settings."""

    id: str = "default"
    name: str = "Default"
    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    tool_overrides: dict[str, bool] = Field(default_factory=dict)


class SessionBudget(BaseModel):
    """Token numbers for one request attempt."""

    model_config = ConfigDict(frozen=True)

    context_length: int
    reserved_response_tokens: int
    available_context_tokens: int


class ExchangeParams(BaseModel):
    """Everything one exchange needs, resolved once at exchange start."""

    model_config = ConfigDict(frozen=True)

    model_id: str
    system_prompt: str = ""
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None  # explicit max response tokens
    default_max_tokens: int = 16384
    context_length: int = 128_000
    default_reserve_tokens: int = 4096
    min_context_tokens: int = 2048
    max_attempts: int = 15
    tool_overrides: dict[str, bool] = Field(default_factory=dict)
    open_marker: str = "<think>"
    close_marker: str = "</think>"

    @field_validator("system_prompt")
    @classmethod
    def _trim_prompt(cls, value: str) -> str:
        return value.strip()

    @field_validator("max_attempts")
    @classmethod
    def _floor_attempts(cls, value: int) -> int:
        return max(value, 1)

    @property
    def response_tokens(self) -> int:
        """max_tokens sent with each request."""
        return self.max_tokens if self.max_tokens is not None else self.default_max_tokens

    def budget(self) -> SessionBudget:
        reserve = self.max_tokens if self.max_tokens is not None else self.default_reserve_tokens
        return SessionBudget(
            context_length=self.context_length,
            reserved_response_tokens=reserve,
            available_context_tokens=max(self.min_context_tokens, self.context_length - reserve),
        )
