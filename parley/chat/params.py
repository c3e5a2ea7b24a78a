"""Effective parameter resolution: session override > persona > settings."""

from __future__ import annotations

from parley.chat.schemas import ExchangeParams, Persona
from parley.config import Settings


def effective_tool_overrides(
    settings: Settings,
    persona: Persona | None = None,
    session_overrides: dict[str, bool] | None = None,
) -> dict[str, bool]:
    """Pick the override map for an exchange.

    A non-empty session map wins wholesale, then the persona's map, then
    the global settings map. Tools absent from the chosen map fall back to
    their registered default inside the dispatcher.
    """
    if session_overrides:
        return dict(session_overrides)
    if persona and persona.tool_overrides:
        return dict(persona.tool_overrides)
    return dict(settings.tool_overrides)


def resolve_params(
    settings: Settings,
    persona: Persona | None = None,
    *,
    model: str | None = None,
    session_overrides: dict[str, bool] | None = None,
) -> ExchangeParams:
    """Build the immutable parameter bundle handed to the runner."""
    persona = persona or Persona()

    system_prompt = persona.system_prompt if persona.system_prompt is not None else settings.system_prompt
    temperature = persona.temperature if persona.temperature is not None else settings.temperature
    max_tokens = persona.max_tokens if persona.max_tokens is not None else settings.max_tokens

    return ExchangeParams(
        model_id=model or persona.model or settings.model,
        system_prompt=system_prompt,
        temperature=temperature,
        top_p=settings.top_p,
        max_tokens=max_tokens,
        default_max_tokens=settings.default_max_tokens,
        context_length=settings.context_length,
        default_reserve_tokens=settings.response_reserve_tokens,
        min_context_tokens=settings.min_context_tokens,
        max_attempts=settings.max_tool_attempts,
        tool_overrides=effective_tool_overrides(settings, persona, session_overrides),
        open_marker=settings.reasoning_open_marker,
        close_marker=settings.reasoning_close_marker,
    )
