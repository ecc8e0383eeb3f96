"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from nbchat.document.base import DocumentUnit, UnitKind
from nbchat.llm.types import ToolCallRequest
from nbchat.reduction import TokenReductionStrategy
from nbchat.tools.base import Tool

ROLE_COLORS = {
    "system": "magenta",
    "assistant": "green",
    "user": "blue",
}


def _preview(text: str, width: int = 60) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line if len(line) <= width else line[: width - 1] + "…"


class OutputFormatter:
    """Rich-based output formatting for the nbchat CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_cells(self, units: list[DocumentUnit]) -> None:
        if not units:
            self.console.print("[dim]The notebook has no cells.[/dim]")
            return

        table = Table(title="Cells")
        table.add_column("#", justify="right", no_wrap=True)
        table.add_column("Kind", no_wrap=True)
        table.add_column("Role", no_wrap=True)
        table.add_column("Content")

        for i, unit in enumerate(units):
            role = unit.role_tag or "user"
            kind = unit.language if unit.kind == UnitKind.CODE else "markdown"
            table.add_row(
                str(i),
                kind,
                Text(role, style=ROLE_COLORS.get(role, "white")),
                _preview(unit.content),
            )

        self.console.print(table)

    def format_strategies(self, strategies: list[TokenReductionStrategy], overflow: int) -> None:
        table = Table(title=f"Request is {overflow} tokens over the limit")
        table.add_column("#", justify="right", no_wrap=True)
        table.add_column("Strategy")
        table.add_column("Saves", justify="right", no_wrap=True)

        for i, s in enumerate(strategies, 1):
            saves = s.estimated_savings or 0
            style = "green" if saves >= overflow else ("yellow" if saves > 0 else "dim")
            table.add_row(str(i), s.label, Text(s.description, style=style))

        self.console.print(table)

    def format_tool_calls(self, calls: list[ToolCallRequest]) -> None:
        self.console.print("[bold yellow]The model wants to call tools[/bold yellow]")
        for i, call in enumerate(calls, 1):
            self.console.print(f"  [bold]{i}.[/bold] {call.name}")
            self.console.print(Syntax(call.function.arguments or "{}", "json", theme="monokai"))

    def format_tool_list(self, tools: list[Tool]) -> None:
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Required", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            table.add_row(t.name, ", ".join(t.required_fields), t.description)

        self.console.print(table)

    def format_token_report(self, model: str, count: int, limit: int | None) -> None:
        if limit is None:
            body = f"[bold]{count}[/bold] tokens ([dim]context window unknown[/dim])"
        else:
            color = "red" if count > limit else "green"
            body = f"[{color}]{count}[/{color}] / {limit} tokens"
        self.console.print(Panel(body, title=f"Token usage: {model}"))

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
