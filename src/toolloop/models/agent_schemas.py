"""Models for the agentic loop."""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field

from toolloop.errors import ErrorCategory


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    id: str
    name: str
    # Raw provider payload: a JSON string or an already-decoded object.
    arguments: Any = None


class Message(BaseModel):
    role: Role
    content: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: list[ToolCall] = []

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, content: str, tool_call_id: str, tool_name: str) -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, tool_name=tool_name)


class FinalText(BaseModel):
    text: str


class ToolCalls(BaseModel):
    calls: list[ToolCall]
    assistant_content: str | None = None


ChatResponse = Union[FinalText, ToolCalls]


class ToolResult(BaseModel):
    tool_name: str
    output: dict[str, Any]
    latency_ms: float


class ExecutedToolCall(BaseModel):
    id: str
    tool_name: str
    arguments: dict[str, Any]
    output: str
    latency_ms: float


class TurnTrace(BaseModel):
    steps: int = 0
    tool_calls_total: int = 0
    dispatch_attempts: int = 0
    model_latency_ms: float = 0.0
    tool_latency_ms: float = 0.0
    turn_latency_ms: float = 0.0
    tools_used: list[str] = []
    format_reprompted: bool = False


class TurnError(BaseModel):
    category: ErrorCategory
    reason: str


class TurnOutcome(BaseModel):
    ok: bool
    final_text: str = ""
    trace: TurnTrace = Field(default_factory=TurnTrace)
    tool_calls: list[ExecutedToolCall] = []
    history: list[Message] = []
    error: TurnError | None = None
