"""Error taxonomy shared by the agent loop and every transport.

Each failure is tagged with exactly one ``ErrorCategory`` at the point where it
is first detected. Transports decide status codes and exit codes from the
category alone, never from the message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    POLICY = "policy"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


HTTP_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.POLICY: 400,
    ErrorCategory.UPSTREAM: 502,
    ErrorCategory.INTERNAL: 500,
}

EXIT_CODE_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 2,
    ErrorCategory.POLICY: 3,
    ErrorCategory.UPSTREAM: 4,
    ErrorCategory.INTERNAL: 1,
}


class AgentError(Exception):
    """Base class for categorized failures."""

    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ConfigError(AgentError):
    """Raised when settings cannot be loaded or validated."""

    category = ErrorCategory.VALIDATION


# --- Turn guardrails ---


class InputTooLongError(AgentError):
    category = ErrorCategory.VALIDATION


class OutputTooLongError(AgentError):
    category = ErrorCategory.VALIDATION


class ToolBudgetExceededError(AgentError):
    category = ErrorCategory.VALIDATION


class MaxStepsError(AgentError):
    """Raised when the agent exceeds the maximum number of steps."""


class LoopProtectionError(AgentError):
    """Raised when the model keeps requesting tools without answering."""


# --- Provider ---


class ModelProviderError(AgentError):
    category = ErrorCategory.UPSTREAM

    def __init__(self, reason: str, retryable: bool = False) -> None:
        super().__init__(reason)
        self.retryable = retryable


# --- Tool dispatch ---


class ToolDispatchError(AgentError):
    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(reason)
        self.tool_name = tool_name

    def __str__(self) -> str:
        return f"tool `{self.tool_name}`: {self.reason}"


class UnknownToolError(ToolDispatchError):
    category = ErrorCategory.VALIDATION

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, "unknown tool")


class InvalidArgsError(ToolDispatchError):
    category = ErrorCategory.VALIDATION


class PolicyBlockedError(ToolDispatchError):
    category = ErrorCategory.POLICY


class UpstreamFailureError(ToolDispatchError):
    category = ErrorCategory.UPSTREAM


class TransientToolError(ToolDispatchError):
    """A tool failure worth one more attempt (network blip, timeout, 5xx)."""

    category = ErrorCategory.UPSTREAM


class ToolExecutionError(ToolDispatchError):
    category = ErrorCategory.INTERNAL


def classify(error: BaseException) -> ErrorCategory:
    if isinstance(error, AgentError):
        return error.category
    return ErrorCategory.INTERNAL


def http_status_for(category: ErrorCategory) -> int:
    return HTTP_STATUS_BY_CATEGORY[category]


def exit_code_for(category: ErrorCategory) -> int:
    return EXIT_CODE_BY_CATEGORY[category]
