"""Settings inspection commands."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from stickplan.cli_support import emit_json
from stickplan.config.loader import find_config
from stickplan.core.config import get_config

ConfigTyper = typer.Typer(help="Inspect stickplan settings", add_completion=False)

console: Console = Console()


def register_config_commands(root: typer.Typer, shared_console: Console) -> None:
    """Attach the config command group to the root CLI."""
    global console
    console = shared_console
    root.add_typer(ConfigTyper, name="config")


@ConfigTyper.command("show")
def show(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of a table"),
) -> None:
    """Print the effective settings (defaults, stickplan.yml, STICKPLAN_* variables)."""
    settings = get_config().as_dict()
    source: Optional[str] = ctx.obj["config_path"] if ctx.obj else find_config()

    if json_output:
        emit_json({"source": source, "settings": settings})
        return

    table = Table(title=f"Settings ({source or 'defaults'})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in settings.items():
        table.add_row(name, str(value))
    console.print(table)
