"""Expected answer shapes and their checks."""

from __future__ import annotations

import json
from enum import Enum


class AnswerFormat(str, Enum):
    PLAIN_TEXT = "plain_text"
    JSON_OBJECT = "json_object"
    MARKDOWN_BULLETS = "markdown_bullets"


def format_problem(answer_format: AnswerFormat, answer: str) -> str | None:
    """Return a description of why ``answer`` does not match, or None if it does."""
    if answer_format == AnswerFormat.PLAIN_TEXT:
        return None if answer.strip() else "answer is empty"

    if answer_format == AnswerFormat.JSON_OBJECT:
        try:
            value = json.loads(answer)
        except json.JSONDecodeError as e:
            return f"answer is not valid JSON: {e}"
        if not isinstance(value, dict):
            return "answer is JSON but not an object"
        return None

    lines = [line for line in answer.splitlines() if line.strip()]
    if not lines:
        return "answer is empty"
    invalid = [line.strip() for line in lines if not line.lstrip().startswith("- ")]
    if invalid:
        return f"non-bullet lines detected: {' | '.join(invalid)}"
    return None


def matches_format(answer_format: AnswerFormat, answer: str) -> bool:
    return format_problem(answer_format, answer) is None
