"""Notes tools backed by plain files under the notes root."""

from __future__ import annotations

import logging
from pathlib import Path

from toolloop.errors import PolicyBlockedError
from toolloop.tools import Tool
from toolloop.tools.policy import PolicyEngine
from toolloop.tools.schemas import (
    SAVE_NOTE,
    SAVE_NOTE_PARAMETERS,
    SEARCH_NOTES,
    SEARCH_NOTES_PARAMETERS,
    SaveNoteArgs,
    SearchNotesArgs,
)

logger = logging.getLogger(__name__)

MAX_SNIPPET_CHARS = 200


def search_notes(root: Path, query: str, limit: int) -> list[dict]:
    """Rank notes by case-insensitive occurrence count of ``query``.

    Ties are broken by filename so the same query over an unchanged directory
    always returns the same list.
    """
    if not root.is_dir():
        return []

    needle = query.lower()
    scored: list[tuple[int, str, str]] = []
    for fpath in root.iterdir():
        if fpath.is_symlink() or not fpath.is_file():
            continue
        try:
            text = fpath.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot read note %s: %s", fpath, e)
            continue
        score = text.lower().count(needle)
        if score:
            scored.append((score, fpath.name, _snippet(text, needle)))

    scored.sort(key=lambda item: (-item[0], item[1]))
    return [
        {"file": name, "score": score, "snippet": snippet}
        for score, name, snippet in scored[:limit]
    ]


def _snippet(text: str, needle: str) -> str:
    for line in text.splitlines():
        if needle in line.lower():
            line = line.strip()
            if len(line) > MAX_SNIPPET_CHARS:
                return line[:MAX_SNIPPET_CHARS] + "..."
            return line
    return ""


def write_note(path: Path, body: str, overwrite: bool) -> bool:
    """Write a note; returns True when an existing file was replaced."""
    path.parent.mkdir(parents=True, exist_ok=True)
    existed = path.exists()
    # "x" refuses to clobber a file created between the policy check and now.
    mode = "w" if overwrite else "x"
    try:
        with open(path, mode, encoding="utf-8") as f:
            f.write(body)
    except FileExistsError:
        raise PolicyBlockedError(
            SAVE_NOTE, f"note `{path.name}` already exists and overwrite is disabled"
        ) from None
    return existed


def create_notes_tools(engine: PolicyEngine) -> tuple[Tool, Tool]:
    def run_search_notes(args: SearchNotesArgs) -> dict:
        results = search_notes(engine.notes_root, args.query, args.limit)
        logger.info("search_notes(%r) -> %d result(s)", args.query, len(results))
        return {"query": args.query, "limit": args.limit, "results": results}

    def run_save_note(args: SaveNoteArgs) -> dict:
        # Re-resolve at write time; the directory may have changed since the check.
        path = engine.resolve_note_path(args.title)
        overwritten = write_note(path, args.body, engine.policy.save_note_allow_overwrite)
        logger.info("Saved note %s (%d bytes)", path, len(args.body.encode("utf-8")))
        return {
            "title": args.title,
            "file": path.name,
            "bytes": len(args.body.encode("utf-8")),
            "overwritten": overwritten,
        }

    search_tool = Tool(
        name=SEARCH_NOTES,
        description=(
            "Search saved notes for a text fragment. "
            "Returns up to `limit` notes ranked by number of matches."
        ),
        parameters=SEARCH_NOTES_PARAMETERS,
        args_model=SearchNotesArgs,
        execute=run_search_notes,
    )
    save_tool = Tool(
        name=SAVE_NOTE,
        description=(
            "Save a markdown note. The title becomes the file name; "
            "existing notes are not overwritten unless the operator allows it."
        ),
        parameters=SAVE_NOTE_PARAMETERS,
        args_model=SaveNoteArgs,
        execute=run_save_note,
    )
    return search_tool, save_tool
