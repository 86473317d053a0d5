"""
Tool bridge - converts ToolDefinition into the uniform tool shape sessions use

A SessionTool carries a JSON schema and an async ``execute(params)``. Custom
tools run their in-process callable, or POST ``{"tool": name, "params": ...}``
to their endpoint when no callable is given.
"""
from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..errors import ToolExecutionError
from ..session_compaction import safe_serialize
from ..types import ToolDefinition

logger = logging.getLogger(__name__)

ENDPOINT_TIMEOUT_S = 30.0


@dataclass
class SessionTool:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: Callable[[dict[str, Any]], Awaitable[Any]] | None = None
    label: str | None = None

    async def execute(self, params: dict[str, Any]) -> Any:
        if self.handler is None:
            raise ToolExecutionError(self.name, f'Tool "{self.name}" has no handler')
        return await self.handler(params)

    def to_function_spec(self) -> dict[str, Any]:
        """OpenAI-style function declaration"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def to_json_schema(tool: ToolDefinition) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for name, param in tool.parameters.items():
        prop: dict[str, Any] = {"type": param.type}
        if param.description:
            prop["description"] = param.description
        if param.default is not None:
            prop["default"] = param.default
        properties[name] = prop
        if param.required:
            required.append(name)
    return {"type": "object", "properties": properties, "required": required}


async def invoke_tool(
    tool: ToolDefinition,
    params: dict[str, Any],
    client: httpx.AsyncClient | None = None,
) -> Any:
    """Run a custom tool through its callable or its HTTP endpoint"""
    if tool.execute is not None:
        result = tool.execute(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    if tool.endpoint:
        owns_client = client is None
        http = client or httpx.AsyncClient(timeout=ENDPOINT_TIMEOUT_S)
        try:
            response = await http.post(tool.endpoint, json={"tool": tool.name, "params": params})
        finally:
            if owns_client:
                await http.aclose()

        if response.is_error:
            raise ToolExecutionError(
                tool.name,
                f'Tool "{tool.name}" endpoint failed ({response.status_code}): {response.text}',
            )
        if not response.text:
            return {"ok": True}
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text

    raise ToolExecutionError(
        tool.name,
        f'Tool "{tool.name}" is missing an executor. Provide either execute or endpoint.',
    )


def normalize_tool_output(result: Any) -> str:
    """Text the model sees for a tool result"""
    if result is None:
        return "Done."
    return safe_serialize(result)


def convert_tool(tool: ToolDefinition) -> SessionTool:
    async def handler(params: dict[str, Any]) -> Any:
        return await invoke_tool(tool, params)

    return SessionTool(
        name=tool.name,
        label=tool.name,
        description=tool.description,
        parameters=to_json_schema(tool),
        handler=handler,
    )


def convert_tools(tools: list[ToolDefinition]) -> list[SessionTool]:
    return [convert_tool(tool) for tool in tools]
