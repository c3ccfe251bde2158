"""Rich console callback for the agentic loop."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from toolloop.models.agent_schemas import TurnError, TurnOutcome
from toolloop.tools import ToolRegistry

MAX_RESULT_LINES = 30
MAX_RESULT_CHARS = 2000


def _truncate(text: str) -> str:
    lines = text.splitlines()
    if len(lines) > MAX_RESULT_LINES or len(text) > MAX_RESULT_CHARS:
        kept = lines[:MAX_RESULT_LINES]
        truncated = "\n".join(kept)
        if len(truncated) > MAX_RESULT_CHARS:
            truncated = truncated[:MAX_RESULT_CHARS]
        omitted = len(lines) - MAX_RESULT_LINES
        if omitted > 0:
            truncated += f"\n... ({omitted} more lines)"
        return truncated
    return text


TOOL_ICONS = {
    "search_notes": "🔍",
    "fetch_url": "🌐",
    "save_note": "📝",
}


def _format_arg_value(value: Any) -> str:
    s = str(value)
    if len(s) > 120:
        return s[:120] + "..."
    return s


def print_tools(console: Console, registry: ToolRegistry) -> None:
    table = Table(title="Available tools", border_style="dim", show_lines=False)
    table.add_column("Tool", style="bold cyan", no_wrap=True)
    table.add_column("Description", style="dim")
    for tool in registry.list_all():
        icon = TOOL_ICONS.get(tool.name, "🔧")
        params = tool.parameters.get("properties", {})
        table.add_row(f"{icon} {tool.name}({', '.join(params)})", tool.description)
    console.print(table)


def print_trace(console: Console, outcome: TurnOutcome) -> None:
    trace = outcome.trace
    tools = ", ".join(trace.tools_used) or "none"
    console.print(
        f"[dim]steps={trace.steps} tool_calls={trace.tool_calls_total} tools={tools} "
        f"model={trace.model_latency_ms:.0f}ms tools_time={trace.tool_latency_ms:.0f}ms "
        f"turn={trace.turn_latency_ms:.0f}ms[/dim]"
    )


class ConsoleCallback:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def on_step_start(self, step: int, max_steps: int) -> None:
        self.console.rule(f"[bold blue]Step {step}/{max_steps}", style="blue")

    def on_thinking(self, text: str) -> None:
        self.console.print(
            Panel(
                _truncate(text),
                title="[bold yellow]Thinking",
                border_style="yellow",
                padding=(0, 1),
            )
        )

    def on_tool_call(self, name: str, args: dict[str, Any]) -> None:
        icon = TOOL_ICONS.get(name, "🔧")
        self.console.print(f"  {icon} [bold cyan]{name}[/]")
        for k, v in args.items():
            self.console.print(f"      [dim]{k}:[/] {_format_arg_value(v)}")

    def on_tool_result(self, name: str, result: str) -> None:
        truncated = _truncate(result)
        self.console.print(
            Panel(
                Syntax(truncated, "json", theme="ansi_dark", word_wrap=True)
                if len(truncated) > 200
                else Text(truncated, style="dim"),
                title="[dim]result",
                border_style="dim",
                padding=(0, 1),
            )
        )

    def on_finish(self, text: str, steps: int, tool_calls: int) -> None:
        self.console.rule(f"[bold green]Done ({steps} steps, {tool_calls} tool calls)", style="green")

    def on_failure(self, error: TurnError) -> None:
        self.console.rule(f"[bold red]Failed ({error.category.value})", style="red")
