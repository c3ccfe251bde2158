"""Typer sub-app for the evaluation suite."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from toolloop.errors import ErrorCategory, exit_code_for
from toolloop.eval.suite import DEFAULT_EVAL_CASES_PATH, EvalSuite, EvalSuiteError, load_eval_suite

eval_app = typer.Typer(name="eval", help="Run or validate the evaluation suite.")
console = Console()
err_console = Console(stderr=True)


def _load_suite_or_exit(cases: Path, known_tools: list[str]) -> EvalSuite:
    try:
        return load_eval_suite(cases, known_tools)
    except EvalSuiteError as e:
        err_console.print(f"[validation] {e}", markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(exit_code_for(ErrorCategory.VALIDATION))


@eval_app.command()
def validate(
    cases: Path = typer.Option(DEFAULT_EVAL_CASES_PATH, "--cases", help="Path to the YAML suite"),
) -> None:
    """Check a suite file without calling the model."""
    from toolloop.cli import _runtime_or_exit

    runtime = _runtime_or_exit()
    suite = _load_suite_or_exit(cases, runtime.registry.names())
    console.print(
        f"[green]Eval suite OK:[/green] {len(suite.cases)} cases, "
        f"target pass rate {suite.target_pass_rate:.0%}"
    )


@eval_app.command()
def run(
    cases: Path = typer.Option(DEFAULT_EVAL_CASES_PATH, "--cases", help="Path to the YAML suite"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Run every case and fail when the pass rate is below target."""
    from toolloop.cli import _configure_logging, _runtime_or_exit
    from toolloop.eval.runner import run_eval_suite

    _configure_logging(verbose)
    runtime = _runtime_or_exit()
    suite = _load_suite_or_exit(cases, runtime.registry.names())

    console.print(f"[bold]Running {len(suite.cases)} eval cases from {cases}...[/bold]")
    report = run_eval_suite(runtime, suite, str(cases))

    table = Table(title="Eval results", border_style="dim")
    table.add_column("Case", style="bold")
    table.add_column("Result")
    table.add_column("Tools", style="dim")
    table.add_column("Detail", style="dim")
    for result in report.results:
        status = "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]"
        detail = result.error or "; ".join(c.detail for c in result.failed_checks)
        table.add_row(Text(result.id), status, ", ".join(result.used_tools) or "-", Text(detail))
    console.print(table)

    summary = (
        f"pass rate {report.pass_rate:.1%} ({report.passed_cases}/{report.total_cases}), "
        f"target {report.target_pass_rate:.0%}"
    )
    if not report.meets_target:
        console.print(f"[red]Eval below target:[/red] {summary}")
        raise typer.Exit(1)
    console.print(f"[green]Eval passed:[/green] {summary}")
