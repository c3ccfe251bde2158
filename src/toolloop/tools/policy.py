"""Side-effect rules applied to parsed tool arguments before execution."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from urllib.parse import urlsplit

from toolloop.config import ToolPolicy
from toolloop.errors import InvalidArgsError, PolicyBlockedError
from toolloop.tools.schemas import (
    FETCH_URL,
    SAVE_NOTE,
    FetchUrlArgs,
    SaveNoteArgs,
    SearchNotesArgs,
    ToolArgs,
)

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"
MAX_NOTE_STEM_CHARS = 120

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_DASH_RUNS = re.compile(r"-{2,}")


def normalize_note_title(title: str) -> str:
    """Turn a free-form title into a bare file stem (no suffix).

    Returns an empty string when nothing usable is left.
    """
    stem = title.strip()
    if stem.lower().endswith(NOTE_SUFFIX):
        stem = stem[: -len(NOTE_SUFFIX)]
    stem = _UNSAFE_FILENAME_CHARS.sub("-", stem)
    stem = _DASH_RUNS.sub("-", stem)
    stem = stem.strip(".-")
    return stem[:MAX_NOTE_STEM_CHARS].rstrip(".-")


def host_allowed(host: str, allowlist: tuple[str, ...], allow_subdomains: bool = False) -> bool:
    host = host.lower().rstrip(".")
    if host in allowlist:
        return True
    if allow_subdomains:
        return any(host.endswith(f".{domain}") for domain in allowlist)
    return False


class PolicyEngine:
    def __init__(self, policy: ToolPolicy) -> None:
        self.policy = policy
        self._checks = {
            SearchNotesArgs: self._check_search_notes,
            FetchUrlArgs: self._check_fetch_url,
            SaveNoteArgs: self._check_save_note,
        }

    @property
    def notes_root(self) -> Path:
        return self.policy.notes_dir.resolve()

    def check(self, args: ToolArgs) -> None:
        """Raise PolicyBlockedError (or InvalidArgsError) if the call must not run."""
        self._checks[type(args)](args)

    # --- search_notes ---

    def _check_search_notes(self, args: SearchNotesArgs) -> None:
        # Read-only; range limits are enforced by the schema.
        return None

    # --- fetch_url ---

    def _check_fetch_url(self, args: FetchUrlArgs) -> None:
        self.check_fetch_target(args.url)

    def check_fetch_target(self, url: str) -> str:
        """Validate scheme and host of a fetch target (initial URL or redirect hop).

        Returns the normalized host.
        """
        try:
            parts = urlsplit(url)
            host = parts.hostname
            parts.port  # raises ValueError on a malformed port
        except ValueError as e:
            raise InvalidArgsError(FETCH_URL, f"invalid url `{url}`: {e}") from e
        if not parts.scheme:
            raise InvalidArgsError(FETCH_URL, f"url `{url}` must be absolute")
        if parts.scheme.lower() not in ("http", "https"):
            raise PolicyBlockedError(FETCH_URL, f"url scheme `{parts.scheme}` is not allowed")
        if not host:
            raise InvalidArgsError(FETCH_URL, f"url `{url}` must include a host")
        if not host_allowed(host, self.policy.fetch_allowed_domains, self.policy.fetch_allow_subdomains):
            logger.info("Blocked fetch to %s (allowlist: %s)", host, ", ".join(self.policy.fetch_allowed_domains))
            raise PolicyBlockedError(FETCH_URL, f"url host `{host}` is not in allowlist")
        return host.lower()

    # --- save_note ---

    def _check_save_note(self, args: SaveNoteArgs) -> None:
        size = len(args.body.encode("utf-8"))
        if size > self.policy.save_note_max_bytes:
            raise PolicyBlockedError(
                SAVE_NOTE,
                f"note body is {size} bytes (max {self.policy.save_note_max_bytes})",
            )
        self.resolve_note_path(args.title)

    def resolve_note_path(self, title: str) -> Path:
        """Map a title to its file under the notes root, enforcing the write rules."""
        stem = normalize_note_title(title)
        if not stem:
            raise InvalidArgsError(SAVE_NOTE, f"title `{title}` has no usable filename characters")

        root = self.notes_root
        path = root / f"{stem}{NOTE_SUFFIX}"
        if not path.resolve().is_relative_to(root):
            raise PolicyBlockedError(SAVE_NOTE, f"note path `{path.name}` escapes the notes directory")
        if path.is_symlink():
            raise PolicyBlockedError(SAVE_NOTE, f"note `{path.name}` is a symlink")
        if path.exists():
            if not path.is_file():
                raise PolicyBlockedError(SAVE_NOTE, f"note `{path.name}` is not a regular file")
            if not self.policy.save_note_allow_overwrite:
                raise PolicyBlockedError(
                    SAVE_NOTE,
                    f"note `{path.name}` already exists and overwrite is disabled",
                )
        return path
