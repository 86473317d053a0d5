"""Agent tools"""
from .base import (
    SessionTool,
    convert_tool,
    convert_tools,
    invoke_tool,
    normalize_tool_output,
    to_json_schema,
)
from .coding import create_coding_tools

__all__ = [
    "SessionTool",
    "convert_tool",
    "convert_tools",
    "create_coding_tools",
    "invoke_tool",
    "normalize_tool_output",
    "to_json_schema",
]
