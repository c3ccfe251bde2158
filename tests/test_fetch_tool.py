"""Tests for fetch_url with a fake requests session."""

from __future__ import annotations

from dataclasses import replace

import pytest
import requests

from conftest import FakeResponse, FakeSession
from toolloop.errors import (
    InvalidArgsError,
    PolicyBlockedError,
    TransientToolError,
    UpstreamFailureError,
)
from toolloop.tools.fetch_tool import content_type_allowed, fetch_url
from toolloop.tools.policy import PolicyEngine

URL = "https://example.com/page"


def _fetch(policy, *responses, **policy_overrides):
    session = FakeSession(responses)
    engine = PolicyEngine(replace(policy, **policy_overrides))
    return fetch_url(engine, URL, timeout_s=1.0, session=session), session


@pytest.mark.parametrize(
    "content_type, allowed",
    [
        ("text/html; charset=utf-8", True),
        ("TEXT/PLAIN", True),
        ("application/json", True),
        ("application/xhtml+xml", True),
        ("application/octet-stream", False),
        ("image/png", False),
        ("", False),
    ],
)
def test_content_type_allowed(content_type, allowed, policy):
    assert content_type_allowed(content_type, policy.fetch_allowed_content_types) is allowed


def test_success_payload(policy):
    resp = FakeResponse(headers={"Content-Type": "text/html"}, chunks=[b"<p>hi", b"</p>"])
    out, session = _fetch(policy, resp)
    assert out == {
        "url": URL,
        "final_url": URL,
        "status": 200,
        "content_type": "text/html",
        "bytes": 9,
        "content": "<p>hi</p>",
    }
    assert session.requested == [URL]
    assert resp.closed


def test_blocked_host_never_requested(policy):
    session = FakeSession()
    with pytest.raises(PolicyBlockedError):
        fetch_url(PolicyEngine(policy), "https://evil.test/", timeout_s=1.0, session=session)
    assert session.requested == []


def test_disallowed_content_type_not_read(policy):
    resp = FakeResponse(headers={"Content-Type": "image/png"}, chunks=[b"\x89PNG"])
    with pytest.raises(PolicyBlockedError, match="content type"):
        _fetch(policy, resp)
    assert resp.read is False


def test_declared_length_over_cap(policy):
    resp = FakeResponse(headers={"Content-Type": "text/plain", "Content-Length": "11"})
    with pytest.raises(PolicyBlockedError, match="declares"):
        _fetch(policy, resp, fetch_max_bytes=10)
    assert resp.read is False


def test_streamed_body_over_cap(policy):
    resp = FakeResponse(chunks=[b"x" * 8, b"x" * 8, b"x" * 8])
    with pytest.raises(PolicyBlockedError, match="exceeds 10 bytes"):
        _fetch(policy, resp, fetch_max_bytes=10)


@pytest.mark.parametrize("status", [429, 500, 503])
def test_transient_statuses(policy, status):
    with pytest.raises(TransientToolError):
        _fetch(policy, FakeResponse(status=status))


@pytest.mark.parametrize("status", [400, 403, 404])
def test_client_errors_are_upstream(policy, status):
    with pytest.raises(UpstreamFailureError, match=str(status)):
        _fetch(policy, FakeResponse(status=status))


@pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("reset")])
def test_network_errors_are_transient(policy, exc):
    with pytest.raises(TransientToolError):
        _fetch(policy, exc)


def test_redirect_not_followed_by_default(policy):
    resp = FakeResponse(status=302, headers={"Location": "https://example.com/new"})
    out, session = _fetch(policy, resp)
    assert out["status"] == 302
    assert out["redirect_location"] == "https://example.com/new"
    assert out["content"] is None
    assert session.requested == [URL]


def test_redirect_followed_when_enabled(policy):
    out, session = _fetch(
        policy,
        FakeResponse(status=301, headers={"Location": "/moved"}),
        FakeResponse(chunks=[b"here"]),
        fetch_follow_redirects=True,
    )
    assert out["final_url"] == "https://example.com/moved"
    assert out["content"] == "here"
    assert session.requested == [URL, "https://example.com/moved"]


def test_redirect_to_unlisted_host_blocked(policy):
    session = FakeSession([FakeResponse(status=302, headers={"Location": "https://evil.test/"})])
    engine = PolicyEngine(replace(policy, fetch_follow_redirects=True))
    with pytest.raises(PolicyBlockedError):
        fetch_url(engine, URL, timeout_s=1.0, session=session)
    assert session.requested == [URL]


def test_too_many_redirects(policy):
    loop = [FakeResponse(status=302, headers={"Location": URL}) for _ in range(3)]
    with pytest.raises(UpstreamFailureError, match="too many redirects"):
        _fetch(policy, *loop, fetch_follow_redirects=True, fetch_max_redirects=2)


def test_invalid_initial_url_is_validation(policy):
    with pytest.raises(InvalidArgsError):
        fetch_url(PolicyEngine(policy), "not a url", timeout_s=1.0, session=FakeSession())
