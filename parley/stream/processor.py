"""Per-session streaming pipeline: middleware -> classifier -> buffer -> commit.

Each fragment is classified as soon as it arrives; the resulting runs are
buffered and committed to the assistant turn in batches chosen by the
FlushScheduler. A commit appends the buffered runs to the turn and then
awaits the observer callback, so the measured commit cost includes the
observer's own work.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from parley.chat.schemas import Turn
from parley.stream.classifier import Channel, DeltaClassifier, Emission
from parley.stream.flush import FlushScheduler
from parley.stream.middleware import StreamMiddleware

logger = logging.getLogger(__name__)

# Observer: awaited after each commit with the turn that changed
CommitCallback = Callable[[Turn], Awaitable[None]]


class StreamProcessor:
    """Routes one streaming session's fragments into an assistant turn."""

    def __init__(
        self,
        turn: Turn,
        on_commit: CommitCallback | None = None,
        *,
        classifier: DeltaClassifier | None = None,
        scheduler: FlushScheduler | None = None,
        middleware: StreamMiddleware | None = None,
    ) -> None:
        self.turn = turn
        self._on_commit = on_commit
        self.classifier = classifier or DeltaClassifier()
        self.scheduler = scheduler or FlushScheduler()
        self._middleware = middleware
        self._pending: list[Emission] = []
        self._pending_chars = 0
        self.fragment_count = 0
        self.commit_count = 0
        self._finalized = False

    @property
    def buffered_chars(self) -> int:
        return self._pending_chars

    async def receive(self, fragment: str) -> bool:
        """Classify a fragment and commit if the scheduler says so.

        Returns True when this fragment triggered a commit.
        """
        if not fragment:
            return False
        self.fragment_count += 1
        if self._middleware is not None:
            fragment = self._middleware.process(fragment)

        for emission in self.classifier.feed(fragment):
            self._hold(emission)

        if self.scheduler.should_commit(self._pending_chars):
            await self.commit()
            return True
        return False

    async def commit(self) -> None:
        """Unconditionally commit whatever is buffered."""
        if not self._pending:
            return
        started = self.scheduler.now()
        pending, self._pending, self._pending_chars = self._pending, [], 0
        for emission in pending:
            if emission.channel == Channel.REASONING:
                self.turn.append_thinking(emission.text)
            else:
                self.turn.append_content(emission.text)
        self.commit_count += 1
        if self._on_commit is not None:
            await self._on_commit(self.turn)
        self.scheduler.record_commit(started)

    async def finalize(self) -> None:
        """End of session: release held-back marker text and force a commit.

        Safe to call more than once; only the first call drains the classifier.
        """
        if not self._finalized:
            self._finalized = True
            for emission in self.classifier.finish():
                self._hold(emission)
        await self.commit()
        logger.debug(
            "Stream session closed: %d fragments, %d commits, content=%d thinking=%d",
            self.fragment_count,
            self.commit_count,
            len(self.turn.content),
            len(self.turn.thinking),
        )

    def _hold(self, emission: Emission) -> None:
        self._pending.append(emission)
        self._pending_chars += len(emission.text)
        self.scheduler.note_output(len(emission.text))
