"""Completion transport -- streams chat completions from an OpenAI-compatible API.

Yields text fragments as they arrive. When the model asks for a tool the
stream ends with a single terminal ``tool_call`` event carrying the
reassembled call. Failures raise TransportError.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict

from parley.chat.schemas import OutgoingMessage
from parley.config import Settings

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Network or protocol failure during a completion request."""


@dataclass
class ToolInvocation:
    """The model wants to call a tool instead of continuing to emit text."""

    tool_name: str
    arguments: str  # raw JSON
    call_id: str | None = None  # provider-supplied id, used verbatim when present


@dataclass
class StreamEvent:
    """A single event from a completion stream."""

    type: str  # text_delta, tool_call
    text: str = ""
    invocation: ToolInvocation | None = None


class CompletionRequest(BaseModel):
    """One streaming completion request."""

    model_config = ConfigDict(frozen=True)

    model_id: str
    messages: list[OutgoingMessage]
    temperature: float | None = None
    top_p: float | None = None
    max_response_tokens: int
    tools: list[dict[str, Any]] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Chat-completions request body. Tool fields are omitted when no tools are enabled."""
        payload: dict[str, Any] = {
            "model": self.model_id,
            "messages": [m.to_wire() for m in self.messages],
            "max_tokens": self.max_response_tokens,
            "stream": True,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.top_p is not None:
            payload["top_p"] = self.top_p
        if self.tools:
            payload["tools"] = self.tools
            payload["tool_choice"] = "auto"
        return payload


class CompletionTransport(Protocol):
    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]: ...


@dataclass
class _ToolCallAccumulator:
    """Tool-call deltas for one index, merged across chunks."""

    call_id: str | None = None
    name: str | None = None
    argument_parts: list[str] = field(default_factory=list)

    def merge(self, delta: dict[str, Any]) -> None:
        if delta.get("id"):
            self.call_id = delta["id"]
        function = delta.get("function") or {}
        if function.get("name"):
            self.name = function["name"]
        if function.get("arguments"):
            self.argument_parts.append(function["arguments"])

    def to_invocation(self) -> ToolInvocation:
        return ToolInvocation(
            tool_name=self.name or "",
            arguments="".join(self.argument_parts) or "{}",
            call_id=self.call_id,
        )


class ToolCallCollector:
    """Accumulates streamed tool-call deltas keyed by index."""

    def __init__(self) -> None:
        self._calls: dict[int, _ToolCallAccumulator] = {}

    def __bool__(self) -> bool:
        return any(acc.name for acc in self._calls.values())

    def add(self, deltas: list[dict[str, Any]]) -> None:
        for delta in deltas:
            index = delta.get("index", 0)
            self._calls.setdefault(index, _ToolCallAccumulator()).merge(delta)

    def first(self) -> ToolInvocation | None:
        """The lowest-index named call. Only one call is executed per round."""
        for index in sorted(self._calls):
            acc = self._calls[index]
            if acc.name:
                if len(self._calls) > 1:
                    logger.debug("Model requested %d tool calls; using index %d", len(self._calls), index)
                return acc.to_invocation()
        return None


def parse_sse_chunk(data: dict[str, Any]) -> tuple[str, list[dict[str, Any]], str | None]:
    """Split one chat.completion.chunk into (text, tool_call deltas, finish_reason).

    Raises TransportError for in-stream error objects (HTTP 200 with an
    error body).
    """
    if "error" in data:
        error = data["error"]
        if isinstance(error, dict):
            message = error.get("message") or json.dumps(error)
        else:
            message = str(error)
        raise TransportError(f"Stream error: {message}")

    choices = data.get("choices") or []
    if not choices:
        return "", [], None
    choice = choices[0]
    delta = choice.get("delta") or {}
    return (
        delta.get("content") or "",
        delta.get("tool_calls") or [],
        choice.get("finish_reason"),
    )


class OpenAITransport:
    """Streams /chat/completions over a shared httpx.AsyncClient."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = client

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        if self._http is not None:
            return
        settings = self._settings
        headers = {"content-type": "application/json"}
        if settings.api_key:
            headers["authorization"] = f"Bearer {settings.api_key}"
        else:
            logger.warning("PARLEY_API_KEY is not set -- sending unauthenticated requests")

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
        logger.info("httpx client initialized (base_url: %s)", settings.api_base_url)

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Yield text_delta events, then at most one terminal tool_call event."""
        if not self._http:
            raise TransportError("httpx client not initialized -- call start() first")

        payload = request.to_payload()
        logger.debug(
            "POST chat/completions model=%s messages=%d tools=%d",
            request.model_id,
            len(request.messages),
            len(request.tools or []),
        )
        collector = ToolCallCollector()

        try:
            async with self._http.stream("POST", "chat/completions", json=payload) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    raise TransportError(
                        f"HTTP {response.status_code}: {body.decode(errors='replace')[:500]}"
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data_text = line[5:].strip()
                    if data_text == "[DONE]":
                        break
                    try:
                        data = json.loads(data_text)
                    except json.JSONDecodeError:
                        logger.warning("Skipping undecodable stream chunk: %s", data_text[:200])
                        continue

                    text, tool_deltas, finish_reason = parse_sse_chunk(data)
                    if text:
                        yield StreamEvent(type="text_delta", text=text)
                    if tool_deltas:
                        collector.add(tool_deltas)
                    if finish_reason and collector:
                        logger.debug("finish_reason=%s with pending tool call", finish_reason)
                        break
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}") from e

        invocation = collector.first()
        if invocation is not None:
            yield StreamEvent(type="tool_call", invocation=invocation)
