"""
Plugin registry - tools and services shared by future runtimes

Registered tools are merged into every runtime created afterwards (runtime
config tools win on name clashes). Services get start/stop lifecycle hooks
around a runtime's lifetime.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, Union

from .types import ToolDefinition

logger = logging.getLogger(__name__)

ServiceCleanup = Optional[Callable[[], Union[Awaitable[None], None]]]


@dataclass
class PluginContext:
    session_id: str
    cwd: str
    runtime: str
    get_provider: Callable[[], str]
    get_model: Callable[[], str]
    emit_event: Optional[Callable[[str, Optional[dict[str, Any]]], Awaitable[None]]] = None


@dataclass
class PluginService:
    name: str
    start: Optional[Callable[[PluginContext], Any]] = None
    stop: Optional[Callable[[PluginContext], Any]] = None


def _normalize_name(name: str) -> str:
    return name.strip().lower()


class PluginRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._services: dict[str, PluginService] = {}

    def register_tool(self, tool: ToolDefinition) -> Callable[[], None]:
        """Register a tool; returns a callable that unregisters it"""
        key = _normalize_name(tool.name)
        if not key:
            raise ValueError("Tool name is required for register_tool()")
        self._tools[key] = tool.model_copy()
        logger.debug(f"Registered plugin tool: {tool.name}")
        return lambda: self.unregister_tool(tool.name)

    def unregister_tool(self, name: str) -> None:
        self._tools.pop(_normalize_name(name), None)

    def list_tools(self) -> list[ToolDefinition]:
        return [tool.model_copy() for tool in self._tools.values()]

    def clear_tools(self) -> None:
        self._tools.clear()

    def register_service(self, service: PluginService) -> Callable[[], None]:
        """Register a service; returns a callable that unregisters it"""
        key = _normalize_name(service.name)
        if not key:
            raise ValueError("Service name is required for register_service()")
        self._services[key] = service
        logger.debug(f"Registered plugin service: {service.name}")
        return lambda: self.unregister_service(service.name)

    def unregister_service(self, name: str) -> None:
        self._services.pop(_normalize_name(name), None)

    def list_services(self) -> list[PluginService]:
        return list(self._services.values())

    def clear_services(self) -> None:
        self._services.clear()


default_registry = PluginRegistry()


def register_tool(tool: ToolDefinition) -> Callable[[], None]:
    return default_registry.register_tool(tool)


def unregister_tool(name: str) -> None:
    default_registry.unregister_tool(name)


def list_registered_tools() -> list[ToolDefinition]:
    return default_registry.list_tools()


def clear_registered_tools() -> None:
    default_registry.clear_tools()


def register_service(service: PluginService) -> Callable[[], None]:
    return default_registry.register_service(service)


def unregister_service(name: str) -> None:
    default_registry.unregister_service(name)


def list_registered_services() -> list[PluginService]:
    return default_registry.list_services()


def clear_registered_services() -> None:
    default_registry.clear_services()
