"""Runs an evaluation suite against a live runtime and aggregates the report."""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from toolloop.eval.checks import (
    EvalCheckResult,
    check_answer_content,
    check_answer_format,
    check_expected_failure,
    check_no_invented_tool_output,
    check_required_tool_usage,
)
from toolloop.eval.suite import EvalCase, EvalSuite
from toolloop.models.agent_schemas import TurnOutcome
from toolloop.runtime import AgentRuntime

logger = logging.getLogger(__name__)


@dataclass
class EvalCaseResult:
    id: str
    passed: bool
    used_tools: list[str] = field(default_factory=list)
    checks: list[EvalCheckResult] = field(default_factory=list)
    final_answer: str = ""
    error: str | None = None
    latency_ms: float = 0.0

    @property
    def failed_checks(self) -> list[EvalCheckResult]:
        return [c for c in self.checks if not c.passed]


@dataclass
class EvalRunReport:
    cases_path: str
    target_pass_rate: float
    results: list[EvalCaseResult]

    @property
    def total_cases(self) -> int:
        return len(self.results)

    @property
    def passed_cases(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_cases(self) -> int:
        return self.total_cases - self.passed_cases

    @property
    def pass_rate(self) -> float:
        if not self.results:
            return 0.0
        return self.passed_cases / self.total_cases

    @property
    def meets_target(self) -> bool:
        return self.pass_rate >= self.target_pass_rate


def evaluate_outcome(case: EvalCase, outcome: TurnOutcome) -> EvalCaseResult:
    used_tools = list(outcome.trace.tools_used)
    latency = outcome.trace.turn_latency_ms

    if case.expected_error_category is not None:
        check = check_expected_failure(case, outcome)
        return EvalCaseResult(
            id=case.id,
            passed=check.passed,
            used_tools=used_tools,
            checks=[check],
            final_answer=outcome.final_text,
            error=None if outcome.ok else f"[{outcome.error.category.value}] {outcome.error.reason}",
            latency_ms=latency,
        )

    if not outcome.ok:
        return EvalCaseResult(
            id=case.id,
            passed=False,
            used_tools=used_tools,
            error=f"[{outcome.error.category.value}] {outcome.error.reason}",
            latency_ms=latency,
        )

    checks = [
        check_required_tool_usage(case, used_tools),
        check_no_invented_tool_output(case, outcome),
        check_answer_format(case, outcome.final_text),
        check_answer_content(case, outcome.final_text),
    ]
    return EvalCaseResult(
        id=case.id,
        passed=all(c.passed for c in checks),
        used_tools=used_tools,
        checks=checks,
        final_answer=outcome.final_text,
        latency_ms=latency,
    )


def run_eval_suite(runtime: AgentRuntime, suite: EvalSuite, cases_path: str = "") -> EvalRunReport:
    """Run every case on a fresh loop and history, inside a throwaway notes dir."""
    results = []
    with tempfile.TemporaryDirectory(prefix="toolloop-eval-notes-") as notes_dir:
        eval_runtime = runtime.with_notes_dir(Path(notes_dir))
        for case in suite.cases:
            logger.info("Running eval case %s", case.id)
            outcome = eval_runtime.new_loop().run_turn(case.prompt, answer_format=case.answer_format)
            result = evaluate_outcome(case, outcome)
            if not result.passed:
                logger.info("Eval case %s failed: %s", case.id, result.error or result.failed_checks)
            results.append(result)
    return EvalRunReport(cases_path=cases_path, target_pass_rate=suite.target_pass_rate, results=results)
