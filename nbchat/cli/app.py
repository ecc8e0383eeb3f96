"""
Main CLI application for nbchat.

Usage:
    nbchat send NOTEBOOK [--cell N] [--mode current_cell|current_and_above]
    nbchat cells NOTEBOOK
    nbchat tokens NOTEBOOK [--cell N]
    nbchat set NOTEBOOK KEY VALUE | --unset KEY
    nbchat role NOTEBOOK CELL ROLE
    nbchat model NOTEBOOK [NAME]
    nbchat key set
    nbchat tools list
    nbchat config show|validate
    nbchat version
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from nbchat import __version__
from nbchat.config import (
    PARAMETER_RULES,
    CredentialStore,
    NbchatConfig,
    ParameterError,
    RequestParameters,
    load_config,
)
from nbchat.document.notebook import Notebook

app = typer.Typer(name="nbchat", help="nbchat - chat completions inside Jupyter notebooks")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")
key_app = typer.Typer(help="API key management")

app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")
app.add_typer(key_app, name="key")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "nbchat.yaml",
        Path.cwd() / "nbchat.yml",
        Path.home() / ".config" / "nbchat" / "config.yaml",
        Path.home() / ".nbchat" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _setup_logging(cfg: NbchatConfig, verbose: bool) -> None:
    root = logging.getLogger("nbchat")
    root.handlers.clear()
    level = logging.DEBUG if verbose else getattr(logging, cfg.logging.level.upper(), logging.WARNING)
    root.setLevel(level)
    root.addHandler(RichHandler(console=Console(stderr=True), show_path=False, level=level))
    if cfg.logging.log_file:
        file_handler = logging.FileHandler(Path(cfg.logging.log_file).expanduser(), encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)


def _load(profile: str | None = None, verbose: bool = False, **overrides) -> NbchatConfig:
    cfg = load_config(
        _get_config_path(),
        profile=profile,
        cli_overrides={k: v for k, v in overrides.items() if v is not None},
    )
    _setup_logging(cfg, verbose)
    return cfg


def _open_notebook(path: Path) -> Notebook:
    if not path.is_file():
        console.print(f"[red]Notebook not found:[/red] {path}")
        raise typer.Exit(1)
    return Notebook.load(path)


def _cell_index(nb: Notebook, cell: int | None) -> int:
    count = nb.unit_count()
    if count == 0:
        console.print("[red]The notebook has no cells.[/red]")
        raise typer.Exit(1)
    index = count - 1 if cell is None else cell
    if not 0 <= index < count:
        console.print(f"[red]Cell {index} does not exist[/red] (0..{count - 1})")
        raise typer.Exit(1)
    return index


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def send(
    notebook: Path = typer.Argument(..., help="Path to the .ipynb file"),
    cell: Optional[int] = typer.Option(None, "--cell", "-c", help="Cell index (default: last cell)"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="current_cell or current_and_above"),
    model: Optional[str] = typer.Option(None, help="Model for this request only"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Allow all tool calls and confirmations"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Send the notebook up to a cell and write the reply as new cells."""
    from nbchat.cli.console import ConsoleOperator
    from nbchat.cancellation import CancellationToken
    from nbchat.llm.providers.openai_compat import OpenAICompatProvider
    from nbchat.orchestrator.core import Orchestrator, resolve_api_key
    from nbchat.session import Workspace
    from nbchat.tools.registry import default_registry
    from nbchat.types import CompletionType

    cfg = _load(profile, verbose)
    nb = _open_notebook(notebook)
    index = _cell_index(nb, cell)
    completion_type = CompletionType(mode or cfg.completion.default_mode)
    ui = ConsoleOperator(console, assume_yes=yes)

    async def _run():
        store = CredentialStore(env_var=cfg.llm.api_key_env)
        api_key = await resolve_api_key(store, ui)
        provider = OpenAICompatProvider(
            url=cfg.llm.api_base,
            api_key=api_key,
            timeout=float(cfg.llm.timeout_seconds),
            max_retries=cfg.llm.max_retries,
        )
        registry = default_registry(
            cfg.tools.workspace_root,
            disabled=cfg.tools.disabled,
            plugins_enabled=cfg.tools.plugins_enabled,
        )
        orchestrator = Orchestrator(provider, ui, cfg, registry)

        workspace = Workspace(cfg)
        workspace.set_active_document(nb)
        context = workspace.capture()
        if model:
            context.parameters.model = model

        cancel = CancellationToken()
        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, cancel.cancel)
        try:
            return await orchestrator.generate_cells(context, index, completion_type, cancel)
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

    try:
        reason = asyncio.run(_run())
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print()
    nb.save(notebook)
    if reason is None:
        raise typer.Exit(1)
    console.print(f"[dim]finish_reason: {reason.value}[/dim]")


@app.command()
def cells(notebook: Path = typer.Argument(..., help="Path to the .ipynb file")):
    """List the cells of a notebook with their roles."""
    from nbchat.cli.output import OutputFormatter

    nb = _open_notebook(notebook)
    OutputFormatter(console).format_cells(nb.units)


@app.command()
def tokens(
    notebook: Path = typer.Argument(..., help="Path to the .ipynb file"),
    cell: Optional[int] = typer.Option(None, "--cell", "-c", help="Cell index (default: last cell)"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="current_cell or current_and_above"),
):
    """Count the tokens a request for a cell would use."""
    from nbchat.assembler import build_messages
    from nbchat.cli.output import OutputFormatter
    from nbchat.errors import UnknownModelTokenizer
    from nbchat.llm.token_counter import TokenCounter, get_token_limit
    from nbchat.tools.registry import default_registry
    from nbchat.types import CompletionType

    cfg = _load()
    nb = _open_notebook(notebook)
    index = _cell_index(nb, cell)
    params = RequestParameters.from_metadata(nb.metadata)
    model = params.model or cfg.llm.default_model
    if not model:
        console.print("[red]No model set.[/red] Use 'nbchat model' first.")
        raise typer.Exit(1)

    completion_type = CompletionType(mode or cfg.completion.default_mode)
    messages = asyncio.run(build_messages(nb, index, completion_type))
    registry = default_registry(cfg.tools.workspace_root, disabled=cfg.tools.disabled)
    try:
        count = TokenCounter(model).count_messages(messages, registry.to_openai_schema())
    except UnknownModelTokenizer as e:
        console.print(f"[yellow]Warning:[/yellow] {e.detail}")
        raise typer.Exit(1)
    OutputFormatter(console).format_token_report(
        model, count, get_token_limit(model, cfg.llm.context_windows)
    )


@app.command("set")
def set_parameter(
    notebook: Path = typer.Argument(..., help="Path to the .ipynb file"),
    key: str = typer.Argument(..., help=f"One of: {', '.join(PARAMETER_RULES)}"),
    value: Optional[str] = typer.Argument(None, help="New value"),
    unset: bool = typer.Option(False, "--unset", help="Remove the setting"),
):
    """Set or remove a request parameter stored in the notebook."""
    nb = _open_notebook(notebook)
    if unset:
        parsed = None
    else:
        if value is None:
            console.print("[red]A value is required (or pass --unset).[/red]")
            raise typer.Exit(1)
        try:
            parsed = RequestParameters.validate(key, value)
        except ParameterError as e:
            console.print(f"[red]Invalid value:[/red] {e}")
            raise typer.Exit(1)

    asyncio.run(nb.update_metadata(key, parsed))
    nb.save(notebook)
    console.print(f"  {key} = {parsed!r}" if parsed is not None else f"  {key} removed")


@app.command()
def role(
    notebook: Path = typer.Argument(..., help="Path to the .ipynb file"),
    cell: int = typer.Argument(..., help="Cell index"),
    role_name: str = typer.Argument(..., metavar="ROLE", help="system, user or assistant"),
):
    """Tag a cell with the chat role it is sent as."""
    from nbchat.types import Role

    if role_name not in (Role.SYSTEM, Role.USER, Role.ASSISTANT):
        console.print(f"[red]Unknown role:[/red] {role_name}")
        raise typer.Exit(1)
    nb = _open_notebook(notebook)
    index = _cell_index(nb, cell)
    asyncio.run(nb.set_role_tag(index, role_name))
    nb.save(notebook)
    console.print(f"  cell {index} -> {role_name}")


@app.command()
def model(
    notebook: Path = typer.Argument(..., help="Path to the .ipynb file"),
    name: Optional[str] = typer.Argument(None, help="Model name (omit to pick from a list)"),
):
    """Choose the model used for a notebook."""
    from nbchat.cli.console import ConsoleOperator

    cfg = _load()
    nb = _open_notebook(notebook)
    if not name:
        name = asyncio.run(ConsoleOperator(console).select_model(list(cfg.llm.models)))
    if not name:
        console.print("[dim]No model selected.[/dim]")
        raise typer.Exit(1)
    asyncio.run(nb.update_metadata("model", name))
    nb.save(notebook)
    console.print(f"  model = {name}")


@key_app.command("set")
def key_set():
    """Store the API key used for requests."""
    import getpass

    cfg = _load()
    api_key = getpass.getpass("API key: ").strip()
    if not api_key:
        console.print("[dim]Nothing stored.[/dim]")
        raise typer.Exit(1)
    store = CredentialStore(env_var=cfg.llm.api_key_env)
    store.set(api_key)
    console.print(f"  Stored in {store.path}")


@tools_app.command("list")
def tools_list():
    """List the tools offered to the model."""
    from nbchat.cli.output import OutputFormatter
    from nbchat.tools.registry import default_registry

    cfg = _load()
    registry = default_registry(
        cfg.tools.workspace_root,
        disabled=cfg.tools.disabled,
        plugins_enabled=cfg.tools.plugins_enabled,
    )
    OutputFormatter(console).format_tool_list(registry.list())


@config_app.command("show")
def config_show():
    """Show effective config."""
    from nbchat.cli.output import OutputFormatter

    cfg = _load()
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and show any type issues."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
        console.print("[green]Config is valid.[/green]")
        if config_path:
            console.print(f"  Loaded from: {config_path}")
        else:
            console.print("  [dim]No config file found, using defaults.[/dim]")
        console.print(f"  API base: {cfg.llm.api_base}")
        console.print(f"  Default model: {cfg.llm.default_model or '(ask)'}")
        console.print(f"  Default mode: {cfg.completion.default_mode}")
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version."""
    console.print(f"nbchat v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
