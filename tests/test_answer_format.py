from __future__ import annotations

import pytest

from toolloop.answer_format import AnswerFormat, format_problem, matches_format
from toolloop.prompts.prompt_layer import format_reprompt, system_prompt


@pytest.mark.parametrize(
    "fmt, answer, ok",
    [
        (AnswerFormat.PLAIN_TEXT, "hello", True),
        (AnswerFormat.PLAIN_TEXT, "   ", False),
        (AnswerFormat.JSON_OBJECT, '{"a": [1, 2]}', True),
        (AnswerFormat.JSON_OBJECT, "[1, 2]", False),
        (AnswerFormat.JSON_OBJECT, "```json\n{}\n```", False),
        (AnswerFormat.MARKDOWN_BULLETS, "- one\n\n  - two", True),
        (AnswerFormat.MARKDOWN_BULLETS, "Here you go:\n- one", False),
        (AnswerFormat.MARKDOWN_BULLETS, "* star", False),
        (AnswerFormat.MARKDOWN_BULLETS, "", False),
    ],
)
def test_matches_format(fmt, answer, ok):
    assert matches_format(fmt, answer) is ok


def test_format_problem_names_offending_lines():
    problem = format_problem(AnswerFormat.MARKDOWN_BULLETS, "intro\n- one")
    assert problem == "non-bullet lines detected: intro"


def test_system_prompt_lists_tools():
    prompt = system_prompt(["search_notes", "save_note"])
    assert "Available tools: search_notes, save_note." in prompt
    assert "Never invent tool output" in prompt


def test_format_reprompt_includes_problem_and_instructions():
    text = format_reprompt(AnswerFormat.JSON_OBJECT, "answer is JSON but not an object")
    assert "(answer is JSON but not an object)" in text
    assert "single JSON object" in text
