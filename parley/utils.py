"""Shared utility functions for Parley."""

from __future__ import annotations

from uuid import uuid4

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Cheap token estimate: ~4 characters per token, never below 1.

    Only used for budget decisions. Not a tokenizer.
    """
    return max(1, len(text) // CHARS_PER_TOKEN)


def new_call_id() -> str:
    """Generate an OpenAI-style tool call id (``call_`` + 24 hex chars)."""
    return "call_" + uuid4().hex[:24]
