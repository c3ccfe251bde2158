import json
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.text import Text

from toolloop.answer_format import AnswerFormat
from toolloop.errors import ConfigError, ErrorCategory, exit_code_for
from toolloop.eval.cli import eval_app
from toolloop.models.agent_schemas import TurnOutcome
from toolloop.runtime import AgentRuntime, create_runtime

app = typer.Typer(name="toolloop", help="Bounded tool-calling chat agent.")
app.add_typer(eval_app, name="eval")
console = Console()
err_console = Console(stderr=True)

EXIT_WORDS = {"exit", "quit"}


def _configure_logging(verbose: bool, default: int = logging.WARNING) -> None:
    level = logging.DEBUG if verbose else default
    logging.basicConfig(level=level, format="%(name)s | %(levelname)s | %(message)s")


def _fail(category: ErrorCategory, reason: str) -> None:
    err_console.print(f"[{category.value}] {reason}", markup=False, highlight=False, soft_wrap=True)
    raise typer.Exit(exit_code_for(category))


def _runtime_or_exit() -> AgentRuntime:
    """Load settings and build the runtime, exiting with the mapped code on bad config."""
    try:
        return create_runtime()
    except ConfigError as e:
        _fail(e.category, e.reason)


def _outcome_json(outcome: TurnOutcome) -> str:
    payload = outcome.model_dump(mode="json", exclude={"history"})
    return json.dumps(payload, indent=2, ensure_ascii=False)


@app.command()
def chat(
    message: str = typer.Argument(..., help="User message for a single turn"),
    as_json: bool = typer.Option(False, "--json", help="Print the full outcome as JSON"),
    answer_format: Optional[AnswerFormat] = typer.Option(
        None, "--format", help="Expected answer format; mismatches get one re-prompt"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Run one turn and print the answer."""
    from toolloop.agents.console_callback import ConsoleCallback, print_trace

    _configure_logging(verbose)
    runtime = _runtime_or_exit()

    callback = None if as_json else ConsoleCallback(console)
    outcome = runtime.new_loop(callback).run_turn(message, answer_format=answer_format)

    if as_json:
        typer.echo(_outcome_json(outcome))
    elif outcome.ok:
        console.print()
        console.print(Text(outcome.final_text))
        print_trace(console, outcome)

    if not outcome.ok:
        _fail(outcome.error.category, outcome.error.reason)


@app.command()
def repl(
    answer_format: Optional[AnswerFormat] = typer.Option(
        None, "--format", help="Expected answer format for every turn"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Interactive multi-turn session. Type `exit` or `quit` to leave."""
    from toolloop.agents.console_callback import ConsoleCallback, print_tools, print_trace

    _configure_logging(verbose)
    runtime = _runtime_or_exit()
    print_tools(console, runtime.registry)
    loop = runtime.new_loop(ConsoleCallback(console))
    history = []

    while True:
        try:
            message = console.input("[bold green]you>[/] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if not message:
            continue
        if message.lower() in EXIT_WORDS:
            break

        outcome = loop.run_turn(message, history=history, answer_format=answer_format)
        if outcome.ok:
            history = outcome.history
            console.print(Text(outcome.final_text))
            print_trace(console, outcome)
        else:
            # The failed turn is dropped; the session continues from the last good history.
            err_console.print(
                f"[{outcome.error.category.value}] {outcome.error.reason}",
                markup=False, highlight=False, soft_wrap=True,
            )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Start the HTTP chat server."""
    import uvicorn

    from toolloop.server import create_app

    _configure_logging(verbose, default=logging.INFO)
    runtime = _runtime_or_exit()
    uvicorn.run(create_app(runtime), host=host, port=port)


@app.command()
def tools() -> None:
    """List the registered tools."""
    from toolloop.agents.console_callback import print_tools

    runtime = _runtime_or_exit()
    print_tools(console, runtime.registry)
