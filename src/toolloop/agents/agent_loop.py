"""Bounded tool-calling loop for a single conversational turn.

One call to ``AgentLoop.run_turn`` walks the states

    BuildRequest -> AwaitModel -> FinalText | ToolCallsReceived -> ExecuteTools -> BuildRequest ...

until the model produces a final answer (success) or a guardrail, policy
block, provider failure or unexpected error ends the turn (failure). A failed
tool call is never turned into text for the model to work around; it ends the
turn with the category it was raised with.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from toolloop.answer_format import AnswerFormat, format_problem
from toolloop.config import RuntimeLimits
from toolloop.errors import (
    AgentError,
    InputTooLongError,
    LoopProtectionError,
    MaxStepsError,
    ModelProviderError,
    OutputTooLongError,
    ToolBudgetExceededError,
    classify,
)
from toolloop.models.agent_schemas import (
    ChatResponse,
    ExecutedToolCall,
    FinalText,
    Message,
    ToolCalls,
    TurnError,
    TurnOutcome,
    TurnTrace,
)
from toolloop.prompts.prompt_layer import format_reprompt, system_prompt
from toolloop.services.llm_service import ModelProviderClient
from toolloop.tools import ToolDefinition
from toolloop.tools.dispatcher import ToolDispatcher, decode_arguments

logger = logging.getLogger(__name__)


class StepCallback(Protocol):
    def on_step_start(self, step: int, max_steps: int) -> None: ...
    def on_thinking(self, text: str) -> None: ...
    def on_tool_call(self, name: str, args: dict[str, Any]) -> None: ...
    def on_tool_result(self, name: str, result: str) -> None: ...
    def on_finish(self, text: str, steps: int, tool_calls: int) -> None: ...
    def on_failure(self, error: TurnError) -> None: ...


class NullCallback:
    def on_step_start(self, step: int, max_steps: int) -> None: ...
    def on_thinking(self, text: str) -> None: ...
    def on_tool_call(self, name: str, args: dict[str, Any]) -> None: ...
    def on_tool_result(self, name: str, result: str) -> None: ...
    def on_finish(self, text: str, steps: int, tool_calls: int) -> None: ...
    def on_failure(self, error: TurnError) -> None: ...


@dataclass
class TurnState:
    """Mutable bookkeeping for one turn. Never shared between turns."""

    history: list[Message]
    step: int = 0
    tool_calls_total: int = 0
    consecutive_tool_steps: int = 0
    dispatch_attempts: int = 0
    model_latency_ms: float = 0.0
    tool_latency_ms: float = 0.0
    format_reprompted: bool = False
    executed: list[ExecutedToolCall] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)


def _preview_args(raw: Any) -> dict[str, Any]:
    try:
        return decode_arguments("", raw)
    except AgentError:
        return {"raw": str(raw)}


class AgentLoop:
    def __init__(
        self,
        model: ModelProviderClient,
        dispatcher: ToolDispatcher,
        limits: RuntimeLimits,
        callback: StepCallback | None = None,
    ) -> None:
        self.model = model
        self.dispatcher = dispatcher
        self.limits = limits
        self.tools: list[ToolDefinition] = dispatcher.registry.definitions()
        self.cb: StepCallback = callback or NullCallback()

    def run_turn(
        self,
        message: str,
        history: list[Message] | None = None,
        answer_format: AnswerFormat | None = None,
    ) -> TurnOutcome:
        started = time.monotonic()
        state = TurnState(history=list(history or []))
        try:
            text = self._run(message, state, answer_format)
        except Exception as e:  # noqa: BLE001 - every failure must leave as a categorized outcome
            if isinstance(e, AgentError):
                reason = str(e)
                logger.warning("Turn failed (%s): %s", e.category.value, reason)
            else:
                reason = f"unexpected error: {type(e).__name__}: {e}"
                logger.exception("Turn failed with an unexpected error")
            error = TurnError(category=classify(e), reason=reason)
            self.cb.on_failure(error)
            return TurnOutcome(
                ok=False,
                trace=self._trace(state, started),
                tool_calls=state.executed,
                history=state.history,
                error=error,
            )

        trace = self._trace(state, started)
        self.cb.on_finish(text, trace.steps, trace.tool_calls_total)
        return TurnOutcome(
            ok=True,
            final_text=text,
            trace=trace,
            tool_calls=state.executed,
            history=state.history,
        )

    # ------------------------------------------------------------------

    def _run(self, message: str, state: TurnState, answer_format: AnswerFormat | None) -> str:
        limits = self.limits
        if len(message) > limits.max_input_chars:
            raise InputTooLongError(
                f"user input exceeded AGENT_MAX_INPUT_CHARS limit: "
                f"{len(message)} chars (max {limits.max_input_chars})"
            )

        if not state.history:
            state.history.append(Message.system(system_prompt([t.name for t in self.tools])))
        state.history.append(Message.user(message))

        while True:
            state.step += 1
            if state.step > limits.max_steps:
                raise MaxStepsError(f"max steps reached ({limits.max_steps}) without a final answer")
            self.cb.on_step_start(state.step, limits.max_steps)

            response = self._complete(state, state.history, self.tools)
            if isinstance(response, FinalText):
                text = self._accept_final_text(response.text, state, answer_format)
                state.consecutive_tool_steps = 0
                state.history.append(Message.assistant(text))
                return text
            self._run_tool_step(response, state)

    def _complete(
        self, state: TurnState, history: list[Message], tools: list[ToolDefinition]
    ) -> ChatResponse:
        started = time.monotonic()
        try:
            return self.model.complete(history, tools)
        finally:
            state.model_latency_ms += (time.monotonic() - started) * 1000

    def _check_output(self, text: str) -> None:
        if len(text) > self.limits.max_output_chars:
            raise OutputTooLongError(
                f"model output exceeded AGENT_MAX_OUTPUT_CHARS limit: "
                f"{len(text)} chars (max {self.limits.max_output_chars})"
            )

    def _accept_final_text(
        self, text: str, state: TurnState, answer_format: AnswerFormat | None
    ) -> str:
        self._check_output(text)
        if answer_format is None:
            return text
        problem = format_problem(answer_format, text)
        if problem is None:
            return text

        # One best-effort re-prompt; whatever comes back is final.
        logger.info("Answer does not match %s (%s); re-prompting once", answer_format.value, problem)
        state.format_reprompted = True
        reprompt_history = [
            *state.history,
            Message.assistant(text),
            Message.user(format_reprompt(answer_format, problem)),
        ]
        try:
            response = self._complete(state, reprompt_history, [])
        except ModelProviderError as e:
            logger.warning("Format re-prompt failed, keeping first answer: %s", e)
            return text
        if not isinstance(response, FinalText):
            logger.warning("Format re-prompt returned tool calls, keeping first answer")
            return text
        if len(response.text) > self.limits.max_output_chars:
            logger.warning("Format re-prompt answer exceeds output limit, keeping first answer")
            return text
        return response.text

    def _run_tool_step(self, response: ToolCalls, state: TurnState) -> None:
        limits = self.limits
        calls = response.calls
        batch = len(calls)

        if batch > limits.max_tool_calls_per_step:
            raise ToolBudgetExceededError(
                f"tool call budget exceeded: {batch} calls in one step "
                f"(AGENT_MAX_TOOL_CALLS_PER_STEP={limits.max_tool_calls_per_step})"
            )
        if state.tool_calls_total + batch > limits.max_tool_calls:
            raise ToolBudgetExceededError(
                f"tool call budget exceeded: {state.tool_calls_total} used + {batch} requested "
                f"(AGENT_MAX_TOOL_CALLS={limits.max_tool_calls})"
            )
        state.consecutive_tool_steps += 1
        if state.consecutive_tool_steps > limits.max_consecutive_tool_steps:
            raise LoopProtectionError(
                f"loop protection: {state.consecutive_tool_steps} consecutive tool-only steps "
                f"(AGENT_MAX_CONSECUTIVE_TOOL_STEPS={limits.max_consecutive_tool_steps})"
            )

        if response.assistant_content:
            self.cb.on_thinking(response.assistant_content)
        state.history.append(Message.assistant(response.assistant_content or "", calls))

        for call in calls:
            args = _preview_args(call.arguments)
            self.cb.on_tool_call(call.name, args)
            state.dispatch_attempts += 1
            result = self.dispatcher.dispatch(call)

            content = json.dumps(result.output, ensure_ascii=False)
            state.tool_latency_ms += result.latency_ms
            state.history.append(Message.tool(content, call.id, call.name))
            state.executed.append(
                ExecutedToolCall(
                    id=call.id,
                    tool_name=call.name,
                    arguments=args,
                    output=content,
                    latency_ms=result.latency_ms,
                )
            )
            state.tool_calls_total += 1
            if call.name not in state.tools_used:
                state.tools_used.append(call.name)
            self.cb.on_tool_result(call.name, content)

    def _trace(self, state: TurnState, started: float) -> TurnTrace:
        return TurnTrace(
            steps=min(state.step, self.limits.max_steps),
            tool_calls_total=state.tool_calls_total,
            dispatch_attempts=state.dispatch_attempts,
            model_latency_ms=round(state.model_latency_ms, 3),
            tool_latency_ms=round(state.tool_latency_ms, 3),
            turn_latency_ms=round((time.monotonic() - started) * 1000, 3),
            tools_used=list(state.tools_used),
            format_reprompted=state.format_reprompted,
        )
