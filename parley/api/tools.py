"""Tool dispatcher -- the tool executor behind the tool loop.

Registers tool handlers with their JSON schemas, publishes OpenAI tool
specs for the enabled subset, and executes calls by name with raw JSON
arguments. Every failure surfaces as ToolError so the caller can turn it
into a rejected tool result.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

# Handler: async callable taking the tool arguments as keyword arguments.
# Returns plain text or an MCP-format {"content": [{"type": "text", "text": ...}]}.
ToolHandler = Callable[..., Awaitable[Any]]


class ToolError(Exception):
    """A tool call could not be executed or failed while running."""


class ToolDispatcher:
    """Registers tool handlers and dispatches tool calls from the model.

    Enablement is three-state per call: an explicit True/False in the
    override map wins, a missing entry falls back to the tool's registered
    default.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._schemas: dict[str, dict[str, Any]] = {}
        self._defaults: dict[str, bool] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        schema: dict[str, Any],
        *,
        enabled: bool = True,
    ) -> None:
        """Register a tool handler with its JSON schema and default enablement."""
        self._handlers[name] = handler
        self._schemas[name] = schema
        self._defaults[name] = enabled

    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    def is_enabled(self, name: str, overrides: dict[str, bool] | None = None) -> bool:
        if name not in self._handlers:
            return False
        if overrides and name in overrides:
            return overrides[name]
        return self._defaults[name]

    def specs(self, overrides: dict[str, bool] | None = None) -> list[dict[str, Any]]:
        """OpenAI-format tool definitions for every enabled tool."""
        return [
            self._spec(name)
            for name in self.names
            if self.is_enabled(name, overrides)
        ]

    def list_tools(self, overrides: dict[str, bool] | None = None) -> list[dict[str, Any]]:
        """All registered tools with their effective enabled state."""
        return [
            {
                "name": name,
                "description": self._schemas[name].get("description", ""),
                "enabled": self.is_enabled(name, overrides),
            }
            for name in self.names
        ]

    async def execute(
        self,
        name: str,
        arguments_json: str,
        overrides: dict[str, bool] | None = None,
    ) -> str:
        """Run a tool and return its text result. Raises ToolError on any failure."""
        handler = self._handlers.get(name)
        if handler is None:
            raise ToolError(f"Unknown tool: {name}")
        if not self.is_enabled(name, overrides):
            raise ToolError(f"Tool is disabled: {name}")

        try:
            args = json.loads(arguments_json) if arguments_json.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolError(f"Invalid arguments for {name}: {e}") from e
        if not isinstance(args, dict):
            raise ToolError(f"Invalid arguments for {name}: expected a JSON object")

        try:
            inspect.signature(handler).bind(**args)
        except TypeError as e:
            raise ToolError(f"Invalid arguments for {name}: {e}") from e

        try:
            result = await handler(**args)
        except ToolError:
            raise
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            raise ToolError(f"{name} failed: {e}") from e
        return _result_text(result)

    def _spec(self, name: str) -> dict[str, Any]:
        schema = self._schemas[name]
        parameters = {k: v for k, v in schema.items() if k != "description"}
        return {
            "type": "function",
            "function": {
                "name": name,
                "description": schema.get("description", ""),
                "parameters": parameters,
            },
        }


def _result_text(result: Any) -> str:
    """Extract plain text from a handler result (string or MCP-format dict)."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and "content" in result:
        parts = [
            block.get("text", "")
            for block in result["content"]
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "\n".join(parts)
    return json.dumps(result)
