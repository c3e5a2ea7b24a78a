"""REST API for Parley.

Endpoints:
  POST   /chat                   - Run one exchange, return the resulting turns
  POST   /chat/stream            - SSE stream of commits, then done/error
  GET    /chat/{session_id}      - Session history
  POST   /chat/{session_id}/stop - Cancel the running exchange
  DELETE /chat/{session_id}      - End a conversation
  GET    /tools                  - Registered tools and their enabled state
  GET    /health                 - Health check
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from parley.api.runner import ExchangeResult
from parley.api.tools import ToolDispatcher
from parley.chat.schemas import Turn
from parley.chat.session import ChatSession, SessionBusyError, SessionStore
from parley.config import Settings

logger = logging.getLogger(__name__)


class _BadRequest(Exception):
    pass


def _result_json(result: ExchangeResult | None) -> dict[str, Any]:
    if result is None:
        return {"status": "noop", "attempts": 0, "error": None, "tool_results": []}
    return {
        "status": result.outcome.value,
        "attempts": result.attempts,
        "error": result.error,
        "tool_results": [r.model_dump(mode="json") for r in result.tool_results],
    }


def _sse(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def _read_chat_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except Exception as e:
        raise _BadRequest("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise _BadRequest("Invalid JSON body")

    message = body.get("message") or ""
    if not isinstance(message, str):
        raise _BadRequest("Field 'message' must be a string")

    images: list[bytes] = []
    for encoded in body.get("images") or []:
        try:
            images.append(base64.b64decode(encoded, validate=True))
        except (binascii.Error, TypeError, ValueError) as e:
            raise _BadRequest("Field 'images' must hold base64 PNG data") from e

    overrides = body.get("tool_overrides") or {}
    if not isinstance(overrides, dict) or not all(isinstance(v, bool) for v in overrides.values()):
        raise _BadRequest("Field 'tool_overrides' must map tool names to booleans")

    return {
        "message": message,
        "images": images,
        "session_id": body.get("session_id"),
        "model": body.get("model"),
        "tool_overrides": overrides,
    }


def create_app(
    store: SessionStore,
    dispatcher: ToolDispatcher,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    def _prepare_session(fields: dict[str, Any]) -> ChatSession:
        session = store.get_or_create(fields["session_id"])
        if fields["model"]:
            session.model = fields["model"]
        if fields["tool_overrides"]:
            session.tool_overrides = fields["tool_overrides"]
        return session

    async def chat(request: Request) -> JSONResponse:
        """POST /chat - Run one exchange and return the session's turns."""
        try:
            fields = await _read_chat_body(request)
        except _BadRequest as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        session = _prepare_session(fields)
        try:
            result = await session.send(fields["message"], fields["images"])
        except SessionBusyError as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        except Exception as e:
            logger.error("Chat error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

        return JSONResponse({
            "session_id": session.id,
            **_result_json(result),
            "turns": [t.snapshot() for t in session.turns],
        })

    async def chat_stream(request: Request) -> StreamingResponse | JSONResponse:
        """POST /chat/stream - SSE streaming chat."""
        try:
            fields = await _read_chat_body(request)
        except _BadRequest as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        session = _prepare_session(fields)
        queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

        async def on_commit(turn: Turn) -> None:
            await queue.put({"type": "commit", "session_id": session.id, "turn": turn.snapshot()})

        try:
            task = session.start(fields["message"], fields["images"], on_commit)
        except SessionBusyError as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        task.add_done_callback(lambda _: queue.put_nowait(None))

        async def event_generator():
            try:
                while (event := await queue.get()) is not None:
                    yield _sse(event)

                if task.cancelled():
                    yield _sse({"type": "done", "session_id": session.id, "status": "stopped"})
                elif task.exception() is not None:
                    error = task.exception()
                    logger.error("Stream error: %s", error)
                    yield _sse({"type": "error", "session_id": session.id, "text": str(error)})
                else:
                    yield _sse({"type": "done", "session_id": session.id, **_result_json(task.result())})
            finally:
                # Client went away mid-stream
                if not task.done():
                    logger.info("Client disconnected, stopping session %s", session.id)
                    await session.stop()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    async def get_chat(request: Request) -> JSONResponse:
        """GET /chat/{session_id} - Session history."""
        session = store.get(request.path_params["session_id"])
        if session is None:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return JSONResponse(session.snapshot())

    async def stop_chat(request: Request) -> JSONResponse:
        """POST /chat/{session_id}/stop - Cancel the running exchange."""
        session_id = request.path_params["session_id"]
        session = store.get(session_id)
        if session is None:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        was_streaming = session.is_streaming
        await session.stop()
        return JSONResponse({"status": "stopped" if was_streaming else "idle", "session_id": session_id})

    async def end_chat(request: Request) -> JSONResponse:
        """DELETE /chat/{session_id} - End a conversation."""
        session_id = request.path_params["session_id"]
        if not await store.delete(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return JSONResponse({"status": "ended", "session_id": session_id})

    async def list_tools(request: Request) -> JSONResponse:
        """GET /tools - Registered tools with their default enabled state."""
        return JSONResponse({"tools": dispatcher.list_tools(settings.tool_overrides)})

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        return JSONResponse({"status": "healthy", "sessions": len(store), "model": settings.model})

    routes = [
        Route("/chat", chat, methods=["POST"]),
        Route("/chat/stream", chat_stream, methods=["POST"]),
        Route("/chat/{session_id}", get_chat, methods=["GET"]),
        Route("/chat/{session_id}", end_chat, methods=["DELETE"]),
        Route("/chat/{session_id}/stop", stop_chat, methods=["POST"]),
        Route("/tools", list_tools),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
