from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, StrictStr

from toolloop.errors import ErrorCategory, http_status_for
from toolloop.models.agent_schemas import ExecutedToolCall, TurnTrace
from toolloop.runtime import AgentRuntime

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: StrictStr


class ChatReply(BaseModel):
    final_text: str
    trace: TurnTrace
    tool_calls: list[ExecutedToolCall]


class ErrorReply(BaseModel):
    category: ErrorCategory
    reason: str


def _error_response(category: ErrorCategory, reason: str) -> JSONResponse:
    body = ErrorReply(category=category, reason=reason)
    return JSONResponse(status_code=http_status_for(category), content=body.model_dump(mode="json"))


def _describe_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "invalid request body: " + ("; ".join(parts) or "malformed JSON")


def create_app(runtime: AgentRuntime) -> FastAPI:
    """Build the HTTP app around an already configured runtime.

    Each request gets its own AgentLoop. Endpoints are plain ``def`` so FastAPI
    runs concurrent turns in its worker threadpool.
    """
    app = FastAPI(title="toolloop chat server")
    app.state.runtime = runtime

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        reason = _describe_validation_error(exc)
        logger.info("Rejected /chat request: %s", reason)
        return _error_response(ErrorCategory.VALIDATION, reason)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post(
        "/chat",
        response_model=ChatReply,
        responses={status: {"model": ErrorReply} for status in (400, 500, 502)},
    )
    def chat(request: ChatRequest):
        outcome = app.state.runtime.new_loop().run_turn(request.message)
        if not outcome.ok:
            return _error_response(outcome.error.category, outcome.error.reason)
        return ChatReply(final_text=outcome.final_text, trace=outcome.trace, tool_calls=outcome.tool_calls)

    return app
