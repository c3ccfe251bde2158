"""fetch_url tool: allowlisted HTTP GET with a streaming byte cap."""

from __future__ import annotations

import logging
from typing import Callable
from urllib.parse import urljoin

import requests

from toolloop.errors import (
    InvalidArgsError,
    PolicyBlockedError,
    TransientToolError,
    UpstreamFailureError,
)
from toolloop.tools import Tool
from toolloop.tools.policy import PolicyEngine
from toolloop.tools.schemas import FETCH_URL, FETCH_URL_PARAMETERS, FetchUrlArgs

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
CHUNK_SIZE = 8192
USER_AGENT = "toolloop-fetch/0.1"


def content_type_allowed(content_type: str, allowed: tuple[str, ...]) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    if not media_type:
        return False
    for entry in allowed:
        if entry.endswith("/"):
            if media_type.startswith(entry):
                return True
        elif media_type == entry:
            return True
    return False


def fetch_url(
    engine: PolicyEngine,
    url: str,
    timeout_s: float,
    session: requests.Session,
) -> dict:
    """GET ``url``, following redirects only if the policy allows it.

    Every hop is checked against the allowlist before any request is sent.
    """
    policy = engine.policy
    current = url
    hops = 0
    while True:
        try:
            engine.check_fetch_target(current)
        except InvalidArgsError as e:
            if hops == 0:
                raise
            raise UpstreamFailureError(FETCH_URL, f"invalid redirect target: {e.reason}") from e

        try:
            response = session.get(
                current,
                stream=True,
                allow_redirects=False,
                timeout=timeout_s,
                headers={"User-Agent": USER_AGENT},
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientToolError(FETCH_URL, f"request to {current} failed: {e}") from e
        except requests.RequestException as e:
            raise UpstreamFailureError(FETCH_URL, f"request to {current} failed: {e}") from e

        with response:
            if response.status_code in REDIRECT_STATUSES and policy.fetch_follow_redirects:
                location = response.headers.get("Location")
                if not location:
                    raise UpstreamFailureError(FETCH_URL, f"redirect from {current} has no Location")
                hops += 1
                if hops > policy.fetch_max_redirects:
                    raise UpstreamFailureError(
                        FETCH_URL, f"too many redirects (max {policy.fetch_max_redirects})"
                    )
                target = urljoin(current, location)
                logger.debug("Following redirect %s -> %s", current, target)
                current = target
                continue
            return _read_response(response, url, current, policy.fetch_max_bytes, policy.fetch_allowed_content_types)


def _read_response(
    response: requests.Response,
    requested_url: str,
    final_url: str,
    max_bytes: int,
    allowed_types: tuple[str, ...],
) -> dict:
    status = response.status_code
    if status == 429 or status >= 500:
        raise TransientToolError(FETCH_URL, f"{final_url} returned HTTP {status}")
    if status >= 400:
        raise UpstreamFailureError(FETCH_URL, f"{final_url} returned HTTP {status}")
    if status in REDIRECT_STATUSES:
        return {
            "url": requested_url,
            "final_url": final_url,
            "status": status,
            "redirect_location": response.headers.get("Location"),
            "content_type": None,
            "bytes": 0,
            "content": None,
        }

    content_type = response.headers.get("Content-Type", "")
    if not content_type_allowed(content_type, allowed_types):
        raise PolicyBlockedError(FETCH_URL, f"content type `{content_type or 'missing'}` is not allowed")

    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PolicyBlockedError(
            FETCH_URL, f"response declares {declared} bytes (max {max_bytes})"
        )

    body = bytearray()
    try:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            body.extend(chunk)
            if len(body) > max_bytes:
                raise PolicyBlockedError(FETCH_URL, f"response body exceeds {max_bytes} bytes")
    except (requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as e:
        raise TransientToolError(FETCH_URL, f"reading {final_url} failed: {e}") from e

    encoding = response.encoding or "utf-8"
    try:
        text = bytes(body).decode(encoding, errors="replace")
    except LookupError:
        text = bytes(body).decode("utf-8", errors="replace")

    logger.info("Fetched %s (HTTP %d, %d bytes)", final_url, status, len(body))
    return {
        "url": requested_url,
        "final_url": final_url,
        "status": status,
        "content_type": content_type,
        "bytes": len(body),
        "content": text,
    }


def create_fetch_tools(
    engine: PolicyEngine,
    timeout_s: float,
    session_factory: Callable[[], requests.Session] | None = None,
) -> list[Tool]:
    make_session = session_factory or requests.Session

    def run_fetch_url(args: FetchUrlArgs) -> dict:
        with make_session() as session:
            return fetch_url(engine, args.url, timeout_s, session)

    return [
        Tool(
            name=FETCH_URL,
            description=(
                "Fetch a web page over http(s). Only allowlisted hosts are reachable "
                "and large or binary responses are refused."
            ),
            parameters=FETCH_URL_PARAMETERS,
            args_model=FetchUrlArgs,
            execute=run_fetch_url,
            retry_transient=True,
        )
    ]
