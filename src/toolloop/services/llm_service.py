"""Model provider client.

Each provider adapter turns the shared ``Message`` history into its own wire
format and maps the reply back to ``FinalText`` or ``ToolCalls``. Transient
failures are retried here, so callers only ever see a result or a terminal
``ModelProviderError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import openai
import requests
from openai import OpenAI
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from toolloop.config import ModelConfig
from toolloop.errors import ModelProviderError
from toolloop.models.agent_schemas import (
    ChatResponse,
    FinalText,
    Message,
    Role,
    ToolCall,
    ToolCalls,
)
from toolloop.tools import ToolDefinition, to_openai_tools

logger = logging.getLogger(__name__)

RETRY_BASE_DELAY_S = 0.25
RETRY_MAX_DELAY_S = 8.0


class ModelProviderClient(Protocol):
    def complete(self, history: list[Message], tools: list[ToolDefinition]) -> ChatResponse: ...


class ProviderAdapter(Protocol):
    name: str

    def chat(self, messages: list[Message], tools: list[ToolDefinition]) -> ChatResponse: ...


def _normalize_text(content: Any) -> str | None:
    if isinstance(content, list):
        content = "\n".join(
            part.get("text", "") if isinstance(part, dict) else str(getattr(part, "text", ""))
            for part in content
        )
    if not isinstance(content, str):
        return None
    text = content.strip()
    return text or None


def _arguments_as_json(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments if arguments is not None else {})


def _arguments_as_object(arguments: Any) -> Any:
    if isinstance(arguments, str):
        try:
            return json.loads(arguments)
        except json.JSONDecodeError:
            return arguments
    return arguments if arguments is not None else {}


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------


def _openai_message(message: Message) -> dict[str, Any]:
    result: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.role == Role.TOOL:
        result["tool_call_id"] = message.tool_call_id
    if message.tool_calls:
        if not message.content.strip():
            result["content"] = None
        result["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": _arguments_as_json(call.arguments)},
            }
            for call in message.tool_calls
        ]
    return result


def parse_openai_response(response: Any) -> ChatResponse:
    if not response.choices:
        raise ModelProviderError("openai response has no choices")
    message = response.choices[0].message
    if message.tool_calls:
        calls = [
            ToolCall(
                id=tc.id or f"openai-tool-call-{i}",
                name=tc.function.name,
                arguments=tc.function.arguments,
            )
            for i, tc in enumerate(message.tool_calls, 1)
        ]
        return ToolCalls(calls=calls, assistant_content=_normalize_text(message.content))
    text = _normalize_text(message.content)
    if text is None:
        raise ModelProviderError("unable to extract assistant content from openai response")
    return FinalText(text=text)


class OpenAIAdapter:
    name = "openai"

    def __init__(self, config: ModelConfig, client: OpenAI | None = None) -> None:
        self._config = config
        # Retries are owned by LLMService, so the SDK's own retry loop is disabled.
        self.client = client or OpenAI(
            api_key=config.api_key,
            base_url=config.base_url or None,
            timeout=config.timeout_s,
            max_retries=0,
        )

    def chat(self, messages: list[Message], tools: list[ToolDefinition]) -> ChatResponse:
        kwargs: dict = {
            "model": self._config.model,
            "messages": [_openai_message(m) for m in messages],
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature

        logger.debug(
            "Sending chat request to openai (model=%s, messages=%d, tools=%d)",
            self._config.model, len(messages), len(tools),
        )
        try:
            response = self.client.chat.completions.create(**kwargs)
        except (openai.APIConnectionError, openai.RateLimitError) as e:
            raise ModelProviderError(f"openai request failed: {e}", retryable=True) from e
        except openai.APIStatusError as e:
            raise ModelProviderError(
                f"openai returned HTTP {e.status_code}: {e.message}",
                retryable=e.status_code >= 500,
            ) from e
        except openai.OpenAIError as e:
            raise ModelProviderError(f"openai request failed: {e}") from e
        return parse_openai_response(response)


# ---------------------------------------------------------------------------
# Ollama native /api/chat
# ---------------------------------------------------------------------------


def _ollama_message(message: Message) -> dict[str, Any]:
    result: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.role == Role.TOOL and message.tool_name:
        result["tool_name"] = message.tool_name
    if message.tool_calls:
        result["tool_calls"] = [
            {"function": {"name": call.name, "arguments": _arguments_as_object(call.arguments)}}
            for call in message.tool_calls
        ]
    return result


def parse_ollama_response(payload: dict[str, Any]) -> ChatResponse:
    if payload.get("error"):
        raise ModelProviderError(f"ollama error: {payload['error']}")
    message = payload.get("message")
    if not isinstance(message, dict):
        raise ModelProviderError("ollama response missing field: message")

    raw_calls = message.get("tool_calls") or []
    if raw_calls:
        calls = []
        for i, raw in enumerate(raw_calls, 1):
            function = raw.get("function") or {}
            if not function.get("name"):
                raise ModelProviderError("ollama tool call missing function name")
            calls.append(
                ToolCall(
                    id=raw.get("id") or f"ollama-tool-call-{i}",
                    name=function["name"],
                    arguments=function.get("arguments"),
                )
            )
        return ToolCalls(calls=calls, assistant_content=_normalize_text(message.get("content")))

    text = _normalize_text(message.get("content"))
    if text is None:
        raise ModelProviderError("ollama response missing field: message.content")
    return FinalText(text=text)


class OllamaAdapter:
    name = "ollama"

    def __init__(self, config: ModelConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self.session = session or requests.Session()
        self.url = f"{config.base_url.rstrip('/')}/api/chat"

    def chat(self, messages: list[Message], tools: list[ToolDefinition]) -> ChatResponse:
        body: dict = {
            "model": self._config.model,
            "messages": [_ollama_message(m) for m in messages],
            "stream": False,
        }
        if tools:
            body["tools"] = to_openai_tools(tools)
        if self._config.temperature is not None:
            body["options"] = {"temperature": self._config.temperature}

        logger.debug(
            "Sending chat request to ollama at %s (model=%s, messages=%d, tools=%d)",
            self.url, self._config.model, len(messages), len(tools),
        )
        try:
            response = self.session.post(self.url, json=body, timeout=self._config.timeout_s)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ModelProviderError(f"ollama request failed: {e}", retryable=True) from e
        except requests.RequestException as e:
            raise ModelProviderError(f"ollama request failed: {e}") from e

        if response.status_code >= 400:
            raise ModelProviderError(
                f"ollama returned HTTP {response.status_code}: {response.text[:500]}",
                retryable=response.status_code == 429 or response.status_code >= 500,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise ModelProviderError(f"ollama returned invalid JSON: {e}") from e
        return parse_ollama_response(payload)


PROVIDER_ADAPTERS = {
    OpenAIAdapter.name: OpenAIAdapter,
    OllamaAdapter.name: OllamaAdapter,
}


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ModelProviderError) and error.retryable


class LLMService:
    """ModelProviderClient implementation wrapping one provider adapter."""

    def __init__(
        self,
        config: ModelConfig,
        adapter: ProviderAdapter | None = None,
        wait: wait_base | None = None,
    ) -> None:
        self._config = config
        if adapter is None:
            try:
                adapter_cls = PROVIDER_ADAPTERS[config.provider]
            except KeyError:
                raise ValueError(f"unknown model provider `{config.provider}`") from None
            adapter = adapter_cls(config)
        self.adapter = adapter
        self._wait = wait or wait_exponential(multiplier=RETRY_BASE_DELAY_S, max=RETRY_MAX_DELAY_S)

    @property
    def provider(self) -> str:
        return self.adapter.name

    @property
    def model(self) -> str:
        return self._config.model

    def complete(self, history: list[Message], tools: list[ToolDefinition]) -> ChatResponse:
        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self.adapter.chat(history, tools)
        raise ModelProviderError("model call produced no result")  # pragma: no cover


def create_model_client(config: ModelConfig) -> LLMService:
    return LLMService(config)
