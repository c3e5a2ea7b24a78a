"""Chat module -- conversation model, parameter resolution and context composition.

Public API:
    ContextComposer - Turns + system prompt + budget -> outgoing messages
    resolve_params  - Settings/persona/session -> ExchangeParams

Schemas:
    Turn, ToolCall, Role, OutgoingMessage, ToolResult, Persona,
    SessionBudget, ExchangeParams

Sessions live in parley.chat.session (it depends on parley.api).
"""

from parley.chat.context import ContextComposer
from parley.chat.params import effective_tool_overrides, resolve_params
from parley.chat.schemas import (
    ExchangeParams,
    OutgoingMessage,
    Persona,
    Role,
    SessionBudget,
    ToolCall,
    ToolResult,
    Turn,
)

__all__ = [
    "ContextComposer",
    "effective_tool_overrides",
    "resolve_params",
    "ExchangeParams",
    "OutgoingMessage",
    "Persona",
    "Role",
    "SessionBudget",
    "ToolCall",
    "ToolResult",
    "Turn",
]
