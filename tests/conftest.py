from __future__ import annotations

from pathlib import Path

import pytest

from toolloop.config import RuntimeLimits, Settings, ToolPolicy
from toolloop.models.agent_schemas import FinalText, ToolCall, ToolCalls


class ScriptedModel:
    """Model client that replays a fixed list of responses (or raises listed exceptions)."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def complete(self, history, tools):
        self.requests.append((list(history), list(tools)))
        if not self.responses:
            raise AssertionError("model called more times than scripted")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakeResponse:
    def __init__(self, status=200, headers=None, chunks=(b"hello",), encoding="utf-8"):
        self.status_code = status
        self.headers = headers if headers is not None else {"Content-Type": "text/plain"}
        self.chunks = list(chunks)
        self.encoding = encoding
        self.read = False
        self.closed = False

    def iter_content(self, chunk_size=1):
        self.read = True
        yield from self.chunks

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeSession:
    def __init__(self, responses=()):
        self.responses = list(responses)
        self.requested = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        if not self.responses:
            raise AssertionError(f"unexpected request to {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def final(text: str) -> FinalText:
    return FinalText(text=text)


def tool_calls(*calls: tuple[str, object], content: str | None = None) -> ToolCalls:
    return ToolCalls(
        calls=[ToolCall(id=f"call-{i}", name=name, arguments=args) for i, (name, args) in enumerate(calls, 1)],
        assistant_content=content,
    )


@pytest.fixture
def notes_dir(tmp_path: Path) -> Path:
    path = tmp_path / "notes"
    path.mkdir()
    return path


@pytest.fixture
def policy(notes_dir: Path) -> ToolPolicy:
    return ToolPolicy(fetch_allowed_domains=("example.com",), notes_dir=notes_dir)


@pytest.fixture
def limits(policy: ToolPolicy) -> RuntimeLimits:
    return RuntimeLimits(policy=policy)


@pytest.fixture
def settings(notes_dir: Path) -> Settings:
    return Settings(_env_file=None, notes_dir=str(notes_dir))
