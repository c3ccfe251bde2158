"""Per-case checks run against a turn outcome."""

from __future__ import annotations

from dataclasses import dataclass

from toolloop.answer_format import format_problem
from toolloop.eval.suite import EvalCase
from toolloop.models.agent_schemas import TurnOutcome

URL_LEADING = "\"'([{"
URL_TRAILING = "\"')]},.;:!?"


@dataclass
class EvalCheckResult:
    name: str
    passed: bool
    detail: str


def check_required_tool_usage(case: EvalCase, used_tools: list[str]) -> EvalCheckResult:
    name = "required_tool_usage"
    if not case.required_tools:
        return EvalCheckResult(name, True, "no required tools configured")
    missing = [t for t in case.required_tools if t not in used_tools]
    if missing:
        return EvalCheckResult(name, False, f"missing required tool calls: {', '.join(missing)}")
    return EvalCheckResult(name, True, "all required tools were used")


def check_answer_format(case: EvalCase, answer: str) -> EvalCheckResult:
    problem = format_problem(case.answer_format, answer)
    if problem:
        return EvalCheckResult("answer_format", False, problem)
    return EvalCheckResult("answer_format", True, f"answer matches {case.answer_format.value}")


def check_answer_content(case: EvalCase, answer: str) -> EvalCheckResult:
    lowered = answer.lower()
    missing = [s for s in case.answer_must_contain if s.lower() not in lowered]
    forbidden = [s for s in case.answer_must_not_contain if s.lower() in lowered]
    if not missing and not forbidden:
        return EvalCheckResult("answer_content", True, "required/forbidden content checks passed")
    details = []
    if missing:
        details.append(f"missing required strings: {', '.join(missing)}")
    if forbidden:
        details.append(f"forbidden strings found: {', '.join(forbidden)}")
    return EvalCheckResult("answer_content", False, "; ".join(details))


def check_no_invented_tool_output(case: EvalCase, outcome: TurnOutcome) -> EvalCheckResult:
    """Flag quoted fragments, long numbers and URLs absent from prompt and tool output."""
    name = "no_invented_tool_output"
    if not case.no_invented_tool_output:
        return EvalCheckResult(name, True, "grounding check disabled for this case")
    if not outcome.tool_calls:
        return EvalCheckResult(name, False, "case requires grounded output but no tool calls were executed")

    sources = [case.prompt] + [call.output for call in outcome.tool_calls]
    corpus = "\n".join(sources).lower()
    allowed_numbers: set[str] = set()
    for source in sources:
        allowed_numbers |= extract_numeric_tokens(source)

    answer = outcome.final_text
    quoted = [
        f for f in extract_quoted_fragments(answer)
        if len(f) >= 4 and f.lower() not in corpus
    ]
    numbers = sorted(
        n for n in extract_numeric_tokens(answer)
        if len(n) >= 3 and n not in allowed_numbers
    )
    urls = sorted(u for u in extract_urls(answer) if u.lower() not in corpus)

    if not quoted and not numbers and not urls:
        return EvalCheckResult(name, True, "answer appears grounded in prompt/tool output")
    details = []
    if quoted:
        details.append(f"quoted fragments not found in tool outputs: {', '.join(quoted)}")
    if numbers:
        details.append(f"numbers not found in tool outputs: {', '.join(numbers)}")
    if urls:
        details.append(f"urls not found in tool outputs: {', '.join(urls)}")
    return EvalCheckResult(name, False, "; ".join(details))


def check_expected_failure(case: EvalCase, outcome: TurnOutcome) -> EvalCheckResult:
    name = "expected_error_category"
    expected = case.expected_error_category
    if outcome.ok:
        return EvalCheckResult(name, False, f"expected a {expected.value} failure but the turn succeeded")
    actual = outcome.error.category
    if actual != expected:
        return EvalCheckResult(name, False, f"expected {expected.value} failure, got {actual.value}")
    return EvalCheckResult(name, True, f"turn failed with {actual.value} as expected")


def extract_quoted_fragments(text: str) -> list[str]:
    """Fragments inside double quotes, or single quotes that are not apostrophes."""
    fragments = []
    current: list[str] = []
    quote: str | None = None
    for i, ch in enumerate(text):
        if quote is None:
            if ch == '"' or (ch == "'" and (i == 0 or not text[i - 1].isalnum())):
                quote = ch
                current = []
        elif ch == quote:
            fragment = "".join(current).strip()
            if fragment:
                fragments.append(fragment)
            quote = None
        else:
            current.append(ch)
    return fragments


def extract_numeric_tokens(text: str) -> set[str]:
    tokens: set[str] = set()
    current = ""
    for ch in text:
        if ch.isdigit() and ch.isascii() or (ch == "." and current and "." not in current):
            current += ch
        elif current:
            tokens.add(current.rstrip("."))
            current = ""
    if current:
        tokens.add(current.rstrip("."))
    return tokens


def extract_urls(text: str) -> set[str]:
    urls = set()
    for token in text.split():
        token = token.lstrip(URL_LEADING)
        if token.startswith(("http://", "https://")):
            token = token.rstrip(URL_TRAILING)
            if token:
                urls.add(token)
    return urls
