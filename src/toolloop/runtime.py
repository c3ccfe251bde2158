"""Process-wide wiring shared by every transport."""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable

import requests

from toolloop.agents.agent_loop import AgentLoop, StepCallback
from toolloop.config import ModelConfig, RuntimeLimits, Settings, load_settings
from toolloop.services.llm_service import ModelProviderClient, create_model_client
from toolloop.tools import ToolRegistry, build_tool_registry
from toolloop.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

ModelClientFactory = Callable[[ModelConfig], ModelProviderClient]


class AgentRuntime:
    """Immutable limits, tool registry, model config and model client, built once at startup.

    ``new_loop()`` hands out an AgentLoop per turn (or per session). Loops share
    the model client, which holds no per-turn state, and nothing mutable.
    """

    def __init__(
        self,
        settings: Settings,
        limits: RuntimeLimits | None = None,
        model_client_factory: ModelClientFactory | None = None,
        session_factory: Callable[[], requests.Session] | None = None,
        model: ModelProviderClient | None = None,
    ) -> None:
        self.settings = settings
        self.limits = limits or RuntimeLimits.from_settings(settings)
        self.model_config = ModelConfig.from_settings(settings)
        self._session_factory = session_factory
        self.registry: ToolRegistry = build_tool_registry(self.limits, session_factory)
        self.model = model or (model_client_factory or create_model_client)(self.model_config)
        logger.debug(
            "Runtime ready: provider=%s model=%s tools=%s",
            self.model_config.provider, self.model_config.model, ", ".join(self.registry.names()),
        )

    def new_loop(self, callback: StepCallback | None = None) -> AgentLoop:
        dispatcher = ToolDispatcher(self.registry, self.limits)
        return AgentLoop(model=self.model, dispatcher=dispatcher, limits=self.limits, callback=callback)

    def with_notes_dir(self, notes_dir: Path) -> AgentRuntime:
        """Copy of this runtime whose notes tools point at ``notes_dir``."""
        limits = replace(self.limits, policy=replace(self.limits.policy, notes_dir=notes_dir))
        return AgentRuntime(
            self.settings,
            limits=limits,
            session_factory=self._session_factory,
            model=self.model,
        )


def create_runtime(**overrides) -> AgentRuntime:
    """Load settings from the environment and build a runtime. Raises ConfigError."""
    return AgentRuntime(load_settings(**overrides))
