"""Prompt layer — loads prompt templates from .txt files in templates/ directory."""

from __future__ import annotations

from pathlib import Path

from toolloop.answer_format import AnswerFormat

TEMPLATES_DIR = Path(__file__).parent / "templates"

FORMAT_TEMPLATES = {
    AnswerFormat.PLAIN_TEXT: "format_plain_text",
    AnswerFormat.JSON_OBJECT: "format_json_object",
    AnswerFormat.MARKDOWN_BULLETS: "format_markdown_bullets",
}

_cache: dict[str, str] = {}


def load_prompt(name: str) -> str:
    """Load a prompt template by name (without extension).

    Returns the raw template string with {variable} placeholders.
    """
    if name not in _cache:
        path = TEMPLATES_DIR / f"{name}.txt"
        _cache[name] = path.read_text(encoding="utf-8").strip()
    return _cache[name]


def render_prompt(name: str, **kwargs: str) -> str:
    """Load a prompt template and fill in variables."""
    return load_prompt(name).format(**kwargs)


def system_prompt(tool_names: list[str]) -> str:
    return render_prompt("agent_system", tool_names=", ".join(tool_names) or "(none)")


def format_reprompt(answer_format: AnswerFormat, problem: str) -> str:
    """Build the single follow-up request asking the model to fix its answer shape."""
    return render_prompt(
        "format_reprompt",
        problem=problem,
        instructions=load_prompt(FORMAT_TEMPLATES[answer_format]),
    )
