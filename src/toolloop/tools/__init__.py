"""Tool plugin system for the agentic loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import requests
from pydantic import BaseModel

from toolloop.config import RuntimeLimits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: dict[str, Any]
    args_model: type[BaseModel]
    execute: Callable[[Any], dict[str, Any]]
    retry_transient: bool = False

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(self.name, self.description, self.parameters)


class ToolRegistry:
    """Ordered tool catalog. Registration order is the exposure order."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"tool `{tool.name}` is already registered")
        self._tools[tool.name] = tool

    def register_many(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_all(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def to_openai_tools(definitions: list[ToolDefinition]) -> list[dict[str, Any]]:
    result = []
    for tool in definitions:
        result.append(
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
        )
    return result


def build_tool_registry(
    limits: RuntimeLimits,
    session_factory: Callable[[], requests.Session] | None = None,
) -> ToolRegistry:
    """Create the registry with the built-in tools bound to the given limits."""
    from toolloop.tools.fetch_tool import create_fetch_tools
    from toolloop.tools.notes_tools import create_notes_tools
    from toolloop.tools.policy import PolicyEngine

    engine = PolicyEngine(limits.policy)
    search_notes, save_note = create_notes_tools(engine)
    registry = ToolRegistry()
    registry.register(search_notes)
    registry.register_many(create_fetch_tools(engine, limits.tool_timeout_s, session_factory))
    registry.register(save_note)
    logger.debug("Registered tools: %s", ", ".join(registry.names()))
    return registry
