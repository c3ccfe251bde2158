from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedModel, final, tool_calls
from toolloop.errors import ModelProviderError
from toolloop.runtime import AgentRuntime
from toolloop.server import create_app


@pytest.fixture
def make_client(settings):
    def _make(*responses, **overrides):
        model = ScriptedModel(responses)
        s = settings.model_copy(update=overrides)
        runtime = AgentRuntime(s, model_client_factory=lambda config: model)
        return TestClient(create_app(runtime)), model

    return _make


def test_health(make_client):
    client, _ = make_client()
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_model_client_is_built_once_per_runtime(settings):
    model = ScriptedModel([final("one"), final("two")])
    built = []

    def factory(config):
        built.append(config)
        return model

    client = TestClient(create_app(AgentRuntime(settings, model_client_factory=factory)))
    assert client.post("/chat", json={"message": "a"}).json()["final_text"] == "one"
    assert client.post("/chat", json={"message": "b"}).json()["final_text"] == "two"
    assert len(built) == 1


def test_chat_success(make_client):
    client, _ = make_client(final("Hello there."))
    resp = client.post("/chat", json={"message": "hi"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["final_text"] == "Hello there."
    assert body["trace"]["steps"] == 1
    assert body["tool_calls"] == []


def test_chat_with_tool_call(make_client, notes_dir):
    (notes_dir / "a.md").write_text("alpha")
    client, _ = make_client(tool_calls(("search_notes", {"query": "alpha", "limit": 1})), final("Found a.md"))
    body = client.post("/chat", json={"message": "search"}).json()
    assert body["trace"]["tools_used"] == ["search_notes"]
    assert body["tool_calls"][0]["tool_name"] == "search_notes"


@pytest.mark.parametrize(
    "payload",
    [
        {"message": "hi", "stream": True},
        {"message": 42},
        {"message": None},
        {},
        ["hi"],
    ],
)
def test_bad_request_body_is_validation(make_client, payload):
    client, model = make_client()
    resp = client.post("/chat", json=payload)
    assert resp.status_code == 400
    assert resp.json()["category"] == "validation"
    assert model.requests == []


def test_malformed_json_is_validation(make_client):
    client, _ = make_client()
    resp = client.post("/chat", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["category"] == "validation"


def test_policy_failure_is_400(make_client):
    client, _ = make_client(tool_calls(("fetch_url", {"url": "https://evil.test/"})))
    resp = client.post("/chat", json={"message": "fetch"})
    assert resp.status_code == 400
    assert resp.json()["category"] == "policy"
    assert "allowlist" in resp.json()["reason"]


def test_provider_failure_is_502(make_client):
    client, _ = make_client(ModelProviderError("ollama is down"))
    resp = client.post("/chat", json={"message": "hi"})
    assert resp.status_code == 502
    assert resp.json() == {"category": "upstream", "reason": "ollama is down"}


def test_internal_failure_is_500(make_client):
    search = tool_calls(("search_notes", {"query": "x", "limit": 1}))
    client, _ = make_client(search, agent_max_steps=1)
    resp = client.post("/chat", json={"message": "loop"})
    assert resp.status_code == 500
    assert resp.json()["category"] == "internal"


def test_input_too_long_is_400(make_client):
    client, _ = make_client(agent_max_input_chars=3)
    resp = client.post("/chat", json={"message": "toolong"})
    assert resp.status_code == 400
    assert resp.json()["category"] == "validation"
