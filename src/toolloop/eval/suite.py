"""Evaluation suite definition, loaded from YAML."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from toolloop.answer_format import AnswerFormat
from toolloop.errors import ErrorCategory

DEFAULT_EVAL_CASES_PATH = "eval/cases.yaml"
DEFAULT_TARGET_PASS_RATE = 0.80


class EvalSuiteError(ValueError):
    """Raised when a suite file cannot be read or fails validation."""


class EvalCase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    prompt: str
    required_tools: list[str] = []
    answer_format: AnswerFormat = AnswerFormat.PLAIN_TEXT
    answer_must_contain: list[str] = []
    answer_must_not_contain: list[str] = []
    no_invented_tool_output: bool = False
    # When set, the case passes only if the turn fails with this category.
    expected_error_category: ErrorCategory | None = None


class EvalSuite(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_pass_rate: float = Field(DEFAULT_TARGET_PASS_RATE, ge=0.0, le=1.0)
    cases: list[EvalCase] = Field(min_length=1)


def normalize_suite(suite: EvalSuite, known_tools: list[str]) -> EvalSuite:
    seen: set[str] = set()
    cases = []
    for case in suite.cases:
        case_id = case.id.strip()
        prompt = case.prompt.strip()
        if not case_id:
            raise EvalSuiteError("case id cannot be empty")
        if not prompt:
            raise EvalSuiteError(f"case `{case_id}` prompt cannot be empty")
        if case_id in seen:
            raise EvalSuiteError(f"duplicate case id `{case_id}`")
        seen.add(case_id)

        required = sorted({t.strip() for t in case.required_tools if t.strip()})
        for tool in required:
            if tool not in known_tools:
                raise EvalSuiteError(f"case `{case_id}` references unknown required tool `{tool}`")
        cases.append(case.model_copy(update={"id": case_id, "prompt": prompt, "required_tools": required}))
    return suite.model_copy(update={"cases": cases})


def load_eval_suite(path: Path, known_tools: list[str]) -> EvalSuite:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise EvalSuiteError(f"failed to read eval cases file `{path}`: {e}") from e
    except yaml.YAMLError as e:
        raise EvalSuiteError(f"failed to parse eval cases file `{path}`: {e}") from e

    try:
        suite = EvalSuite.model_validate(raw or {})
    except ValidationError as e:
        raise EvalSuiteError(f"invalid eval cases file `{path}`: {e}") from e
    return normalize_suite(suite, known_tools)
