"""Built-in workspace tools: read_file, write_file, list_dir.

All paths are confined to settings.workspace_dir. Handlers return
MCP-format responses and raise ToolError on failure so the tool loop
records a rejection.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from parley.api.tools import ToolDispatcher, ToolError
from parley.config import Settings

logger = logging.getLogger(__name__)

_MAX_FILE_SIZE = 1 * 1024 * 1024  # 1MB
_MAX_LIST_ENTRIES = 500


def _mcp_response(text: str) -> dict[str, Any]:
    """Build MCP-format response."""
    return {"content": [{"type": "text", "text": text}]}


def _validate_path(path_str: str, workspace_dir: str) -> Path:
    """Resolve path_str inside workspace_dir. Raises ToolError if it escapes."""
    workspace = Path(workspace_dir).resolve()
    target = Path(path_str)
    target = target.resolve() if target.is_absolute() else (workspace / target).resolve()

    if not target.is_relative_to(workspace):
        raise ToolError(
            f"Path '{path_str}' is outside workspace '{workspace_dir}'. "
            "Only paths within the workspace directory are allowed."
        )
    return target


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def read_file_tool(
    path: str,
    offset: int = 0,
    limit: int = 0,
    *,
    _workspace_dir: str,
) -> dict[str, Any]:
    """Read a text file, optionally a line window (offset is 0-indexed, limit 0 = all)."""
    target = _validate_path(path, _workspace_dir)
    if not target.exists():
        raise ToolError(f"File not found: {path}")
    if not target.is_file():
        raise ToolError(f"Not a file: {path}")

    file_size = target.stat().st_size
    if file_size > _MAX_FILE_SIZE:
        raise ToolError(
            f"File too large: {file_size:,} bytes (limit: {_MAX_FILE_SIZE:,} bytes)"
        )

    content = await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
    if offset > 0 or limit > 0:
        lines = content.splitlines(keepends=True)
        if offset > 0:
            lines = lines[offset:]
        if limit > 0:
            lines = lines[:limit]
        content = "".join(lines)

    return _mcp_response(content if content else "(empty file)")


async def write_file_tool(
    path: str,
    content: str,
    *,
    _workspace_dir: str,
) -> dict[str, Any]:
    """Write content to a file, creating parent directories."""
    target = _validate_path(path, _workspace_dir)
    await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
    await asyncio.to_thread(target.write_text, content, encoding="utf-8")
    return _mcp_response(
        f"File written successfully: {target}\n"
        f"Size: {len(content):,} bytes"
    )


async def list_dir_tool(
    path: str = ".",
    *,
    _workspace_dir: str,
) -> dict[str, Any]:
    """List a directory; directories get a trailing slash."""
    target = _validate_path(path, _workspace_dir)
    if not target.exists():
        raise ToolError(f"Directory not found: {path}")
    if not target.is_dir():
        raise ToolError(f"Not a directory: {path}")

    entries = await asyncio.to_thread(lambda: sorted(target.iterdir(), key=lambda p: p.name))
    lines = [f"{p.name}/" if p.is_dir() else p.name for p in entries[:_MAX_LIST_ENTRIES]]
    if len(entries) > _MAX_LIST_ENTRIES:
        lines.append(f"... ({len(entries) - _MAX_LIST_ENTRIES} more)")
    return _mcp_response("\n".join(lines) if lines else "(empty directory)")


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

_READ_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Read a text file from the workspace directory",
    "properties": {
        "path": {"type": "string", "description": "File path (relative or absolute within workspace)"},
        "offset": {
            "type": "integer",
            "description": "Line offset to start reading from (0-indexed)",
            "default": 0,
            "minimum": 0,
        },
        "limit": {
            "type": "integer",
            "description": "Number of lines to read (0 = all)",
            "default": 0,
            "minimum": 0,
        },
    },
    "required": ["path"],
}

_WRITE_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Write content to a file in the workspace directory",
    "properties": {
        "path": {"type": "string", "description": "File path (relative or absolute within workspace)"},
        "content": {"type": "string", "description": "Content to write to the file"},
    },
    "required": ["path", "content"],
}

_LIST_DIR_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "List entries of a directory in the workspace",
    "properties": {
        "path": {"type": "string", "description": "Directory path (default: workspace root)", "default": "."},
    },
    "required": [],
}


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_builtin_tools(dispatcher: ToolDispatcher, settings: Settings) -> None:
    """Register read_file, list_dir (enabled) and write_file (disabled by default)."""
    workspace = settings.workspace_dir

    async def _read_file(path: str, offset: int = 0, limit: int = 0) -> dict[str, Any]:
        return await read_file_tool(path, offset, limit, _workspace_dir=workspace)

    async def _write_file(path: str, content: str) -> dict[str, Any]:
        return await write_file_tool(path, content, _workspace_dir=workspace)

    async def _list_dir(path: str = ".") -> dict[str, Any]:
        return await list_dir_tool(path, _workspace_dir=workspace)

    dispatcher.register("read_file", _read_file, _READ_FILE_SCHEMA)
    dispatcher.register("list_dir", _list_dir, _LIST_DIR_SCHEMA)
    dispatcher.register("write_file", _write_file, _WRITE_FILE_SCHEMA, enabled=False)
    logger.debug("Registered built-in tools (workspace: %s)", workspace)
