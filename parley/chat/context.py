"""Context composer -- builds the outgoing message list within a token budget.

Projects turn history onto wire messages, then prunes the oldest
non-system messages until the estimated total fits the budget.
"""

from __future__ import annotations

import json
import logging

from parley.chat.schemas import OutgoingMessage, Role, Turn
from parley.utils import estimate_tokens

logger = logging.getLogger(__name__)


class ContextComposer:
    """Turns + system prompt + budget -> ordered OutgoingMessage list."""

    def compose(
        self,
        turns: list[Turn],
        system_prompt: str,
        budget: int,
    ) -> list[OutgoingMessage]:
        """Build the exact message list for one request.

        The system message (if any) is never pruned. The newest message
        survives even when it alone exceeds the budget, unless it is a tool
        message whose call was pruned away.
        """
        messages: list[OutgoingMessage] = []
        if system_prompt:
            messages.append(OutgoingMessage(role=Role.SYSTEM, content=system_prompt))

        last_assistant = self._last_assistant_index(turns)
        for index, turn in enumerate(turns):
            message = self._project(turn, index, index == last_assistant)
            if message is not None:
                messages.append(message)

        return self._prune(messages, budget, has_system=bool(system_prompt))

    def _project(self, turn: Turn, index: int, is_last_assistant: bool) -> OutgoingMessage | None:
        if turn.role == Role.ASSISTANT:
            if not turn.content and not turn.tool_calls:
                if not is_last_assistant:
                    # Completion APIs reject assistant messages with neither field
                    logger.warning("Skipping empty assistant message at index %d", index)
                return None
            return OutgoingMessage(
                role=Role.ASSISTANT,
                content=turn.content or None,
                tool_calls=list(turn.tool_calls) or None,
            )

        if turn.role == Role.TOOL:
            return OutgoingMessage(
                role=Role.TOOL,
                content=turn.content,
                tool_call_id=turn.tool_call_id,
            )

        if turn.role == Role.USER and turn.images:
            return OutgoingMessage(role=Role.USER, content=turn.content, images=list(turn.images))

        return OutgoingMessage(role=turn.role, content=turn.content)

    def _prune(
        self,
        messages: list[OutgoingMessage],
        budget: int,
        has_system: bool,
    ) -> list[OutgoingMessage]:
        start = 1 if has_system else 0
        total = sum(self._estimate_tokens(m) for m in messages)
        pruned = 0

        while total > budget and len(messages) > start + 1:
            removed = messages.pop(start)
            total -= self._estimate_tokens(removed)
            pruned += 1

        # The assistant call behind a leading tool message may have just been pruned
        while len(messages) > start and messages[start].role == Role.TOOL:
            removed = messages.pop(start)
            total -= self._estimate_tokens(removed)
            pruned += 1

        if pruned:
            logger.debug(
                "Pruned %d message(s) to fit budget %d (estimated %d tokens, %d kept)",
                pruned, budget, total, len(messages),
            )
        return messages

    def _estimate_tokens(self, message: OutgoingMessage) -> int:
        """Rough char/4 estimate over text content and tool-call JSON."""
        text = message.content or ""
        if message.tool_calls:
            text += json.dumps([c.to_wire() for c in message.tool_calls])
        return estimate_tokens(text)

    @staticmethod
    def _last_assistant_index(turns: list[Turn]) -> int:
        for index in range(len(turns) - 1, -1, -1):
            if turns[index].role == Role.ASSISTANT:
                return index
        return -1
