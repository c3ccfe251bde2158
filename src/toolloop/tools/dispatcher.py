"""Validate, police, and execute a single tool call."""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from pydantic import BaseModel, ValidationError

from toolloop.config import RuntimeLimits
from toolloop.errors import (
    AgentError,
    InvalidArgsError,
    ToolExecutionError,
    TransientToolError,
    UnknownToolError,
    UpstreamFailureError,
)
from toolloop.models.agent_schemas import ToolCall, ToolResult
from toolloop.tools import Tool, ToolRegistry
from toolloop.tools.policy import PolicyEngine

logger = logging.getLogger(__name__)


def decode_arguments(tool_name: str, raw: Any) -> dict[str, Any]:
    """Turn the provider's raw argument payload into a JSON object."""
    if raw is None or raw == "":
        raw = {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidArgsError(tool_name, f"arguments are not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidArgsError(tool_name, f"arguments must be a JSON object, got {type(raw).__name__}")
    return raw


def parse_arguments(tool: Tool, raw: Any) -> BaseModel:
    payload = decode_arguments(tool.name, raw)
    try:
        return tool.args_model.model_validate(payload)
    except ValidationError as e:
        raise InvalidArgsError(tool.name, _format_validation_error(e)) from e


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)


class ToolDispatcher:
    """Runs tool calls through lookup -> strict parse -> policy -> execute.

    Only tools flagged ``retry_transient`` get a second attempt, and only for
    TransientToolError (including timeouts). Everything else fails on first sight.
    """

    def __init__(self, registry: ToolRegistry, limits: RuntimeLimits) -> None:
        self.registry = registry
        self.timeout_s = limits.tool_timeout_s
        self.policy = PolicyEngine(limits.policy)

    def dispatch(self, call: ToolCall) -> ToolResult:
        tool = self.registry.get(call.name)
        if tool is None:
            raise UnknownToolError(call.name)

        args = parse_arguments(tool, call.arguments)
        self.policy.check(args)

        started = time.monotonic()
        attempts = 2 if tool.retry_transient else 1
        for attempt in range(1, attempts + 1):
            try:
                output = self._execute_with_timeout(tool, args)
                break
            except TransientToolError as e:
                if attempt < attempts:
                    logger.warning("Tool '%s' transient failure, retrying once: %s", tool.name, e.reason)
                    continue
                if tool.retry_transient:
                    raise UpstreamFailureError(
                        tool.name, f"failed after {attempts} attempts: {e.reason}"
                    ) from e
                raise ToolExecutionError(tool.name, e.reason) from e

        latency_ms = (time.monotonic() - started) * 1000
        return ToolResult(tool_name=tool.name, output=output, latency_ms=latency_ms)

    def _execute_with_timeout(self, tool: Tool, args: BaseModel) -> dict[str, Any]:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tool-{tool.name}")
        try:
            future = executor.submit(tool.execute, args)
            try:
                return future.result(timeout=self.timeout_s)
            except FutureTimeoutError:
                future.cancel()
                raise TransientToolError(
                    tool.name, f"timed out after {self.timeout_s:g}s"
                ) from None
            except AgentError:
                raise
            except Exception as e:
                logger.error("Tool '%s' failed: %s", tool.name, e)
                raise ToolExecutionError(tool.name, f"{type(e).__name__}: {e}") from e
        finally:
            # Do not wait for an abandoned worker.
            executor.shutdown(wait=False)
