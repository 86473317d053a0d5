"""
Built-in coding tools

read_file, write_file, list_files and run_terminal_command, all confined to
a working directory. Paths that resolve outside cwd are rejected.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

import aiofiles

from ..errors import ToolExecutionError
from .base import SessionTool

logger = logging.getLogger(__name__)

DEFAULT_MAX_READ_CHARS = 50_000
DEFAULT_MAX_LIST_ENTRIES = 500
DEFAULT_COMMAND_TIMEOUT_S = 120


def resolve_in_cwd(file_path: str, cwd: str, tool_name: str) -> Path:
    """Resolve a path relative to cwd, refusing anything that escapes it"""
    root = Path(cwd).resolve()
    expanded = os.path.expanduser(os.path.expandvars(file_path or "."))
    candidate = Path(expanded)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and root not in resolved.parents:
        raise ToolExecutionError(tool_name, f"Path is outside the working directory: {file_path}")
    return resolved


def create_read_file_tool(cwd: str) -> SessionTool:
    async def read_file(params: dict[str, Any]) -> str:
        path = resolve_in_cwd(params.get("path", ""), cwd, "read_file")
        if not path.is_file():
            raise ToolExecutionError("read_file", f"File not found: {params.get('path')}")

        async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
            content = await f.read()

        offset = params.get("offset")
        limit = params.get("limit")
        if offset or limit:
            lines = content.split("\n")
            start = max(0, int(offset or 1) - 1)
            end = start + int(limit) if limit else len(lines)
            content = "\n".join(lines[start:end])

        if len(content) > DEFAULT_MAX_READ_CHARS:
            omitted = len(content) - DEFAULT_MAX_READ_CHARS
            content = content[:DEFAULT_MAX_READ_CHARS] + f"\n\n[{omitted} more chars. Use offset/limit to continue.]"
        return content

    return SessionTool(
        name="read_file",
        label="Read File",
        description=(
            "Read a text file relative to the working directory. "
            "Use offset/limit (1-indexed lines) for large files."
        ),
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to read"},
                "offset": {"type": "integer", "description": "Starting line number (1-indexed, optional)"},
                "limit": {"type": "integer", "description": "Maximum number of lines to read (optional)"},
            },
            "required": ["path"],
        },
        handler=read_file,
    )


def create_write_file_tool(cwd: str) -> SessionTool:
    async def write_file(params: dict[str, Any]) -> str:
        path = resolve_in_cwd(params.get("path", ""), cwd, "write_file")
        content = params.get("content", "")
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)
        return f"Successfully wrote {len(content)} chars to {params.get('path')}"

    return SessionTool(
        name="write_file",
        label="Write File",
        description=(
            "Write content to a file relative to the working directory. "
            "Creates the file if it doesn't exist, overwrites if it does."
        ),
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to write"},
                "content": {"type": "string", "description": "Content to write"},
            },
            "required": ["path", "content"],
        },
        handler=write_file,
    )


def create_list_files_tool(cwd: str) -> SessionTool:
    async def list_files(params: dict[str, Any]) -> str:
        path = resolve_in_cwd(params.get("path", "."), cwd, "list_files")
        if not path.is_dir():
            raise ToolExecutionError("list_files", f"Not a directory: {params.get('path', '.')}")

        entries = sorted(path.iterdir(), key=lambda p: p.name)
        lines = [f"{entry.name}/" if entry.is_dir() else entry.name for entry in entries]
        if not lines:
            return "(empty directory)"
        if len(lines) > DEFAULT_MAX_LIST_ENTRIES:
            extra = len(lines) - DEFAULT_MAX_LIST_ENTRIES
            lines = lines[:DEFAULT_MAX_LIST_ENTRIES] + [f"[{extra} more entries]"]
        return "\n".join(lines)

    return SessionTool(
        name="list_files",
        label="List Files",
        description="List the entries of a directory relative to the working directory.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory to list (default: working directory)"},
            },
        },
        handler=list_files,
    )


def create_terminal_tool(cwd: str) -> SessionTool:
    async def run_terminal_command(params: dict[str, Any]) -> str:
        command = params.get("command", "")
        if not command.strip():
            raise ToolExecutionError("run_terminal_command", "command is required")
        timeout = params.get("timeout") or DEFAULT_COMMAND_TIMEOUT_S

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=cwd,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ToolExecutionError(
                "run_terminal_command", f"Command timed out after {timeout} seconds"
            )

        output = stdout.decode("utf-8", errors="replace") or "(no output)"
        if process.returncode != 0:
            raise ToolExecutionError(
                "run_terminal_command",
                f"{output}\n\nCommand exited with code {process.returncode}",
            )
        return output

    return SessionTool(
        name="run_terminal_command",
        label="Terminal",
        description=(
            "Execute a shell command in the working directory. "
            "Returns combined stdout and stderr."
        ),
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to execute"},
                "timeout": {"type": "number", "description": "Timeout in seconds (optional)"},
            },
            "required": ["command"],
        },
        handler=run_terminal_command,
    )


def create_coding_tools(cwd: str | None = None) -> list[SessionTool]:
    """
    Built-in tool set offered when AgentConfig.tools == "builtin".

    Args:
        cwd: Working directory the tools are confined to (defaults to os.getcwd())

    Returns:
        List of SessionTool
    """
    root = cwd or os.getcwd()
    return [
        create_read_file_tool(root),
        create_write_file_tool(root),
        create_list_files_tool(root),
        create_terminal_tool(root),
    ]
