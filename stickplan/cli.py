#!/usr/bin/env python3
"""stickplan CLI - plan upgrades of live system storage devices."""
from typing import Optional

import typer
from rich.console import Console

from stickplan.cli_config_commands import register_config_commands
from stickplan.cli_device_commands import register_device_commands
from stickplan.cli_plan_commands import register_plan_commands
from stickplan.cli_support import handle_cli_error, setup_file_logging
from stickplan.config.loader import find_config, load_config
from stickplan.core.config import set_config
from stickplan.core.errors import ConfigValidationError
from stickplan.core.logger import get_logger

app = typer.Typer(
    name="stickplan",
    help="""stickplan - Plan upgrades of live system storage devices

Classifies the partitions of a live USB stick or disk and decides
whether its system and EFI partitions can be upgraded in place.

Quick start:
  stickplan devices                  # List storage devices
  stickplan classify sdb             # Show partition roles
  stickplan plan system sdb          # Plan a system upgrade
  stickplan plan efi sdb --needed-size 209715200
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to the log file"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Log file path"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file (stickplan.yml)"),
) -> None:
    """Global options shared by all commands."""
    if verbose or log_file:
        setup_file_logging(log_file=log_file, verbose=verbose)

    ctx.obj = {"config_path": find_config(config)}
    try:
        set_config(load_config(config))
    except (ConfigValidationError, FileNotFoundError) as e:
        handle_cli_error(e, console)


# Attach modular subcommands
register_device_commands(app, console)
register_plan_commands(app, console)
register_config_commands(app, console)

if __name__ == "__main__":
    app()
