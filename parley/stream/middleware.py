"""Model-specific fragment rewriting applied before classification.

Middleware is stateful; create one per streaming session.
"""

from __future__ import annotations

from typing import Protocol


class StreamMiddleware(Protocol):
    def process(self, fragment: str) -> str: ...


class PrependOpenMarker:
    """Prepends the open marker to the first non-empty fragment.

    For models that start reasoning immediately and only ever emit the
    close marker.
    """

    def __init__(self, open_marker: str = "<think>") -> None:
        self._open_marker = open_marker
        self._fired = False

    def process(self, fragment: str) -> str:
        if self._fired or not fragment:
            return fragment
        self._fired = True
        return self._open_marker + fragment


def resolve_middleware(model_id: str, open_marker: str = "<think>") -> StreamMiddleware | None:
    """Return the middleware a model needs, or None."""
    lower = model_id.lower()
    if "glm" in lower and "flash" in lower:
        return PrependOpenMarker(open_marker)
    return None
