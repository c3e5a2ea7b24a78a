"""Chat sessions -- conversation history plus the operations a UI drives.

A ChatSession owns its turn list and runs at most one exchange at a time.
SessionStore keeps sessions in memory with LRU eviction.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from uuid import uuid4

from parley.api.runner import ExchangeResult, ExchangeRunner
from parley.api.tools import ToolDispatcher
from parley.api.transport import CompletionTransport
from parley.chat.params import resolve_params
from parley.chat.schemas import ExchangeParams, Persona, Role, Turn
from parley.config import Settings
from parley.stream.processor import CommitCallback

logger = logging.getLogger(__name__)


class SessionBusyError(RuntimeError):
    """An exchange is already running on this session."""


class ChatSession:
    """One conversation: history, per-session overrides and the exchange task."""

    def __init__(
        self,
        settings: Settings,
        runner: ExchangeRunner,
        *,
        session_id: str | None = None,
        persona: Persona | None = None,
    ) -> None:
        self.id = session_id or str(uuid4())
        self.settings = settings
        self.runner = runner
        self.persona = persona
        self.model: str | None = None
        self.tool_overrides: dict[str, bool] = {}
        self.turns: list[Turn] = []
        self.last_result: ExchangeResult | None = None
        self._task: asyncio.Task[ExchangeResult | None] | None = None
        self._busy = False

    @property
    def is_streaming(self) -> bool:
        return self._busy

    def params(self) -> ExchangeParams:
        """Parameters for the next exchange: session > persona > settings."""
        return resolve_params(
            self.settings,
            self.persona,
            model=self.model,
            session_overrides=self.tool_overrides,
        )

    async def send(
        self,
        text: str = "",
        images: list[bytes] | None = None,
        on_commit: CommitCallback | None = None,
    ) -> ExchangeResult | None:
        """Append a user turn and run an exchange.

        With no text and no images the existing history is re-run instead
        (regeneration). Returns None when there is nothing to run.
        """
        self._check_idle()
        return await self._send(text, images, on_commit)

    def start(
        self,
        text: str = "",
        images: list[bytes] | None = None,
        on_commit: CommitCallback | None = None,
    ) -> asyncio.Task[ExchangeResult | None]:
        """Run send() in a background task that stop() can cancel."""
        self._check_idle()
        self._task = asyncio.create_task(self._send(text, images, on_commit))
        return self._task

    def cancel(self) -> None:
        """Request cancellation of a background exchange without waiting."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def stop(self) -> None:
        """Cancel the running exchange and wait until its final commit is done."""
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})
        logger.info("Session %s: exchange stopped", self.id)

    async def edit_and_regenerate(
        self,
        turn_id: str,
        text: str,
        on_commit: CommitCallback | None = None,
    ) -> ExchangeResult | None:
        """Replace a user turn's text, drop everything after it and regenerate."""
        self._check_idle()
        index = self._index_of(turn_id)
        turn = self.turns[index]
        if turn.role != Role.USER:
            raise ValueError(f"Turn {turn_id} is not a user turn")
        turn.content = text
        del self.turns[index + 1:]
        return await self._run_exchange(on_commit)

    async def regenerate(
        self,
        turn_id: str,
        on_commit: CommitCallback | None = None,
    ) -> ExchangeResult | None:
        """Drop an assistant turn and everything after it, then re-run."""
        self._check_idle()
        index = self._index_of(turn_id)
        if self.turns[index].role != Role.ASSISTANT:
            raise ValueError(f"Turn {turn_id} is not an assistant turn")
        del self.turns[index:]
        if not self.turns:
            return None
        return await self._run_exchange(on_commit)

    def delete_turn(self, turn_id: str) -> None:
        """Remove a turn and everything after it."""
        self._check_idle()
        del self.turns[self._index_of(turn_id):]

    def snapshot(self) -> dict:
        return {
            "session_id": self.id,
            "streaming": self.is_streaming,
            "turns": [t.snapshot() for t in self.turns],
        }

    async def _send(
        self,
        text: str,
        images: list[bytes] | None,
        on_commit: CommitCallback | None,
    ) -> ExchangeResult | None:
        text = text.strip()
        if text or images:
            self.turns.append(Turn(role=Role.USER, content=text, images=list(images or [])))
        elif not self.turns:
            return None
        return await self._run_exchange(on_commit)

    async def _run_exchange(self, on_commit: CommitCallback | None) -> ExchangeResult:
        self._busy = True
        try:
            self.last_result = await self.runner.run_exchange(self.turns, self.params(), on_commit)
        finally:
            self._busy = False
        logger.debug(
            "Session %s: exchange %s after %d attempt(s)",
            self.id, self.last_result.outcome, self.last_result.attempts,
        )
        return self.last_result

    def _check_idle(self) -> None:
        if self._busy or (self._task is not None and not self._task.done()):
            raise SessionBusyError(f"Session {self.id} is already streaming")

    def _index_of(self, turn_id: str) -> int:
        for index, turn in enumerate(self.turns):
            if turn.id == turn_id:
                return index
        raise KeyError(turn_id)


class SessionStore:
    """In-memory sessions, least recently used evicted past max_sessions."""

    def __init__(
        self,
        settings: Settings,
        transport: CompletionTransport,
        dispatcher: ToolDispatcher,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._dispatcher = dispatcher
        self._sessions: OrderedDict[str, ChatSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> ChatSession | None:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
        return session

    def get_or_create(self, session_id: str | None = None, persona: Persona | None = None) -> ChatSession:
        if session_id is not None:
            session = self.get(session_id)
            if session is not None:
                return session

        session = ChatSession(
            self._settings,
            ExchangeRunner(self._transport, self._dispatcher),
            session_id=session_id,
            persona=persona,
        )
        self._sessions[session.id] = session

        while len(self._sessions) > self._settings.max_sessions:
            evicted_id, evicted = self._sessions.popitem(last=False)
            evicted.cancel()
            logger.debug("Evicted session %s (LRU, max=%d)", evicted_id, self._settings.max_sessions)

        return session

    async def delete(self, session_id: str) -> bool:
        """Stop and forget a session. Returns False if it did not exist."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.stop()
        return True
