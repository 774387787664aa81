"""Shared utilities for stickplan CLI modules."""
from __future__ import annotations

import json
import os
from typing import Any, Optional

import typer
from rich.console import Console

from stickplan.core.config import get_config
from stickplan.services.backends import LinuxStorageBackend, StorageBackend


def is_mock() -> bool:
    """Return True when CLI runs in mock mode."""
    return os.environ.get("STICKPLAN_MOCK") == "1"


def get_backend(mock: Optional[bool] = None) -> StorageBackend:
    """Return the storage backend for this host, honoring mock mode."""
    if mock is None:
        mock = is_mock()
    return LinuxStorageBackend(mock=mock, config=get_config())


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging for CLI commands.

    Args:
        log_file: Path to log file (optional)
        verbose: Enable verbose logging
    """
    from stickplan.core.logger import setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose)


def emit_json(payload: Any) -> None:
    """Write machine-readable output to stdout, unstyled."""
    typer.echo(json.dumps(payload, indent=2))


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {e}")
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    """Print success message with consistent formatting."""
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    """Print error message with consistent formatting."""
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    """Print warning message with consistent formatting."""
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    """Print info message with consistent formatting."""
    console.print(f"[cyan]{prefix}[/cyan] {message}")
