"""Terminal implementation of the operator interface."""

from __future__ import annotations

import asyncio
import getpass

from rich.console import Console

from nbchat.cli.output import OutputFormatter
from nbchat.llm.types import ToolCallRequest
from nbchat.reduction import TokenReductionStrategy
from nbchat.ui import OperatorInterface


def parse_selection(raw: str, count: int) -> list[int] | None:
    """
    Parse ``"1,3"`` / ``"all"`` / ``""`` into zero-based positions.

    Returns ``None`` for input that does not name valid positions.
    """
    raw = raw.strip().lower()
    if not raw:
        return []
    if raw in ("a", "all"):
        return list(range(count))
    picked: list[int] = []
    for part in raw.replace(" ", ",").split(","):
        if not part:
            continue
        if not part.isdigit() or not 1 <= int(part) <= count:
            return None
        if int(part) - 1 not in picked:
            picked.append(int(part) - 1)
    return sorted(picked)


class ConsoleOperator(OperatorInterface):
    """
    Prompts on stdin, prints with rich.

    Streamed text is echoed as it arrives through :meth:`report_progress`.
    """

    def __init__(self, console: Console | None = None, assume_yes: bool = False) -> None:
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.assume_yes = assume_yes

    async def _ask(self, prompt: str) -> str:
        try:
            return await asyncio.get_running_loop().run_in_executor(
                None, lambda: input(prompt)
            )
        except (EOFError, KeyboardInterrupt):
            return ""

    async def select_strategies(
        self, strategies: list[TokenReductionStrategy], overflow: int
    ) -> list[TokenReductionStrategy]:
        self.formatter.format_strategies(strategies, overflow)
        while True:
            raw = await self._ask("  Apply which strategies (e.g. 1,3; empty cancels)? ")
            picked = parse_selection(raw, len(strategies))
            if picked is not None:
                return [strategies[i] for i in picked]
            self.console.print("  [red]Invalid selection.[/red]")

    async def select_tool_calls(
        self, calls: list[ToolCallRequest]
    ) -> list[ToolCallRequest]:
        self.formatter.format_tool_calls(calls)
        if self.assume_yes:
            return list(calls)
        while True:
            raw = await self._ask("  Allow which calls [all]? (numbers, 'all' or 'none') ")
            if not raw.strip():
                return list(calls)
            if raw.strip().lower() == "none":
                return []
            picked = parse_selection(raw, len(calls))
            if picked is not None:
                return [calls[i] for i in picked]
            self.console.print("  [red]Invalid selection.[/red]")

    async def select_model(self, models: list[str]) -> str | None:
        for i, model in enumerate(models, 1):
            self.console.print(f"  [bold]{i}.[/bold] {model}")
        raw = (await self._ask("  Select a model (number or name): ")).strip()
        if raw.isdigit() and 1 <= int(raw) <= len(models):
            return models[int(raw) - 1]
        return raw or None

    async def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        self.console.print(f"[yellow]{message}[/yellow]")
        raw = await self._ask("  Proceed? [y/N]: ")
        return raw.strip().lower() in ("y", "yes")

    async def prompt_secret(self, message: str) -> str | None:
        try:
            return await asyncio.get_running_loop().run_in_executor(
                None, lambda: getpass.getpass(f"{message}: ")
            )
        except (EOFError, KeyboardInterrupt):
            return None

    def report_progress(self, message: str) -> None:
        self.console.print(message, end="", markup=False, highlight=False)

    def info(self, message: str) -> None:
        self.console.print(f"\n[dim]{message}[/dim]")

    def warn(self, message: str) -> None:
        self.console.print(f"\n[yellow]Warning:[/yellow] {message}")

    def error(self, title: str, detail: str = "") -> None:
        self.console.print(f"\n[red]Error:[/red] {title}")
        if detail:
            self.console.print(f"  [dim]{detail}[/dim]")
