"""Exchange runner -- drives one user-initiated exchange through the tool loop.

Each round composes the context, streams a completion through the
classify/flush pipeline into the current assistant turn, and, if the
model asked for a tool, executes it, appends the result turn, opens a new
assistant turn and goes again. Bounded by ExchangeParams.max_attempts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum

from parley.api.tools import ToolDispatcher, ToolError
from parley.api.transport import CompletionRequest, CompletionTransport, ToolInvocation, TransportError
from parley.chat.context import ContextComposer
from parley.chat.schemas import ExchangeParams, Role, ToolCall, ToolResult, Turn
from parley.stream.classifier import DeltaClassifier
from parley.stream.flush import FlushScheduler
from parley.stream.middleware import resolve_middleware
from parley.stream.processor import CommitCallback, StreamProcessor
from parley.utils import new_call_id

logger = logging.getLogger(__name__)

REJECTED_PREFIX = "[REJECTED]"


class ExchangePhase(StrEnum):
    COMPOSING = "composing"
    STREAMING = "streaming"
    TOOL_REQUESTED = "tool_requested"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"


class ExchangeOutcome(StrEnum):
    DONE = "done"  # stream ended without a tool call
    REJECTED = "rejected"  # a tool call failed; loop stopped
    FAILED = "failed"  # transport error
    EXHAUSTED = "exhausted"  # attempt cap reached while still calling tools


@dataclass
class ExchangeResult:
    """What happened during one exchange."""

    outcome: ExchangeOutcome = ExchangeOutcome.EXHAUSTED
    attempts: int = 0  # transport requests issued
    tool_results: list[ToolResult] = field(default_factory=list)
    error: str | None = None


class ExchangeRunner:
    """Runs exchanges against a completion transport and a tool dispatcher.

    Holds no per-exchange state besides ``phase``; the turn list passed to
    run_exchange is owned and mutated by the runner until it returns.
    """

    def __init__(
        self,
        transport: CompletionTransport,
        dispatcher: ToolDispatcher,
        composer: ContextComposer | None = None,
    ) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self._composer = composer or ContextComposer()
        self.phase = ExchangePhase.DONE

    async def run_exchange(
        self,
        turns: list[Turn],
        params: ExchangeParams,
        on_commit: CommitCallback | None = None,
    ) -> ExchangeResult:
        """Run the tool loop until done, rejected, failed or out of attempts.

        Appends to ``turns`` in place. Cancellation propagates after the
        current assistant turn has received every fragment streamed so far.
        """
        result = ExchangeResult()
        assistant = Turn(role=Role.ASSISTANT)
        turns.append(assistant)

        tool_specs = self._dispatcher.specs(params.tool_overrides)
        budget = params.budget()

        try:
            while result.attempts < params.max_attempts:
                result.attempts += 1
                self.phase = ExchangePhase.COMPOSING
                messages = self._composer.compose(
                    turns, params.system_prompt, budget.available_context_tokens
                )
                request = CompletionRequest(
                    model_id=params.model_id,
                    messages=messages,
                    temperature=params.temperature,
                    top_p=params.top_p,
                    max_response_tokens=params.response_tokens,
                    tools=tool_specs or None,
                )
                logger.debug(
                    "Attempt %d/%d: %d messages, budget %d tokens",
                    result.attempts, params.max_attempts, len(messages),
                    budget.available_context_tokens,
                )

                self.phase = ExchangePhase.STREAMING
                invocation = await self._stream_round(request, assistant, params, on_commit)
                if invocation is None:
                    result.outcome = ExchangeOutcome.DONE
                    self.phase = ExchangePhase.DONE
                    break

                self.phase = ExchangePhase.TOOL_REQUESTED
                call_id = invocation.call_id or new_call_id()
                assistant.tool_calls.append(
                    ToolCall(id=call_id, name=invocation.tool_name, arguments=invocation.arguments)
                )

                self.phase = ExchangePhase.EXECUTING
                try:
                    tool_result = await self._execute_tool(invocation, call_id, params)
                except asyncio.CancelledError:
                    # Every recorded call needs a matching tool message in history
                    self._record_tool_result(
                        turns, assistant, result,
                        ToolResult(
                            tool_name=invocation.tool_name,
                            call_id=call_id,
                            arguments=invocation.arguments,
                            error=f"{REJECTED_PREFIX} cancelled",
                        ),
                    )
                    raise
                self._record_tool_result(turns, assistant, result, tool_result)
                await self._notify(on_commit, assistant)

                if tool_result.error is not None:
                    result.outcome = ExchangeOutcome.REJECTED
                    self.phase = ExchangePhase.DONE
                    break

                # Text after the tool result goes to a new assistant turn
                assistant = Turn(role=Role.ASSISTANT)
                turns.append(assistant)
            else:
                logger.warning("Tool loop reached max_attempts=%d", params.max_attempts)
                self.phase = ExchangePhase.DONE

        except TransportError as e:
            logger.error("Exchange failed on attempt %d: %s", result.attempts, e)
            self.phase = ExchangePhase.FAILED
            result.outcome = ExchangeOutcome.FAILED
            result.error = str(e)
            assistant.content = f"Error: {e}"
            await self._notify(on_commit, assistant)

        finally:
            # Drop the placeholder opened for text that never came
            if turns and turns[-1].role == Role.ASSISTANT and turns[-1].is_blank:
                turns.pop()

        return result

    async def _stream_round(
        self,
        request: CompletionRequest,
        assistant: Turn,
        params: ExchangeParams,
        on_commit: CommitCallback | None,
    ) -> ToolInvocation | None:
        """Stream one completion into ``assistant``. Returns the tool call, if any."""
        processor = StreamProcessor(
            assistant,
            on_commit,
            classifier=DeltaClassifier(params.open_marker, params.close_marker),
            scheduler=FlushScheduler(),
            middleware=resolve_middleware(params.model_id, params.open_marker),
        )
        started = time.monotonic()
        invocation: ToolInvocation | None = None
        try:
            async for event in self._transport.stream(request):
                if event.type == "text_delta":
                    await processor.receive(event.text)
                elif event.type == "tool_call":
                    invocation = event.invocation
                    break
        finally:
            # Runs on normal end, tool call, transport error and cancellation alike
            await processor.finalize()

        logger.debug(
            "Stream round finished in %.2fs: %d fragments, tool_call=%s",
            time.monotonic() - started,
            processor.fragment_count,
            invocation.tool_name if invocation else None,
        )
        return invocation

    async def _execute_tool(
        self,
        invocation: ToolInvocation,
        call_id: str,
        params: ExchangeParams,
    ) -> ToolResult:
        args_preview = invocation.arguments[:200]
        logger.info(
            "Executing tool %s with args: %s%s",
            invocation.tool_name, args_preview,
            "..." if len(invocation.arguments) > 200 else "",
        )
        start_time = time.monotonic()
        try:
            result_text = await self._dispatcher.execute(
                invocation.tool_name, invocation.arguments, params.tool_overrides
            )
        except ToolError as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.warning("Tool %s rejected: %s", invocation.tool_name, e)
            return ToolResult(
                tool_name=invocation.tool_name,
                call_id=call_id,
                arguments=invocation.arguments,
                error=f"{REJECTED_PREFIX} {e}",
                duration_ms=duration_ms,
            )

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "Tool %s returned %d chars in %dms: %s%s",
            invocation.tool_name, len(result_text), duration_ms,
            result_text[:500], "..." if len(result_text) > 500 else "",
        )
        return ToolResult(
            tool_name=invocation.tool_name,
            call_id=call_id,
            arguments=invocation.arguments,
            result=result_text,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _record_tool_result(
        turns: list[Turn],
        assistant: Turn,
        result: ExchangeResult,
        tool_result: ToolResult,
    ) -> None:
        text = tool_result.result if tool_result.error is None else tool_result.error
        result.tool_results.append(tool_result)
        assistant.tool_results[tool_result.call_id] = text or ""
        turns.append(Turn(role=Role.TOOL, content=text or "", tool_call_id=tool_result.call_id))

    @staticmethod
    async def _notify(on_commit: CommitCallback | None, turn: Turn) -> None:
        if on_commit is not None:
            await on_commit(turn)

