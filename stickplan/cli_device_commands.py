"""Device listing and classification commands."""
from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from stickplan.cli_support import emit_json, get_backend, handle_cli_error, print_warning
from stickplan.core.classifier import classify as classify_device
from stickplan.core.config import get_config
from stickplan.core.errors import CollaboratorIOError
from stickplan.discovery import StorageScanner
from stickplan.models import Role, format_bytes

console: Console = Console()

ROLE_STYLES = {
    Role.DATA: "green",
    Role.EFI: "magenta",
    Role.EXCHANGE: "yellow",
    Role.SYSTEM: "cyan",
}


def devices() -> None:
    """List storage devices.

    The device the running live system was booted from is marked with *.
    """
    scanner = StorageScanner(get_backend())
    try:
        found = scanner.scan_all()
        boot_device = scanner.find_boot_device(get_config().live_medium_path)
    except CollaboratorIOError as e:
        handle_cli_error(e, console)

    if not found:
        print_warning(console, "No storage devices found")
        return

    table = Table(title="Storage devices")
    table.add_column("Device", style="cyan")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Removable")
    table.add_column("Partitions", justify="right")

    for device in found:
        name = f"{device.device} *" if device.device == boot_device else device.device
        table.add_row(
            name,
            device.device_type.display_name,
            device.size_human,
            "yes" if device.removable else "no",
            str(len(device.partitions)),
        )

    console.print(table)


def classify(
    device: str = typer.Argument(..., help="Device name, e.g. sdb or /dev/sdb"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of a table"),
) -> None:
    """Show the partitions of a device and their roles."""
    try:
        storage_device = StorageScanner(get_backend()).scan_device(device)
    except CollaboratorIOError as e:
        handle_cli_error(e, console)

    classification = classify_device(storage_device)

    if json_output:
        emit_json({
            "device": storage_device.device,
            "size": storage_device.size,
            "type": storage_device.device_type.value,
            "partitions": [
                {
                    "name": p.name,
                    "number": p.number,
                    "offset": p.offset,
                    "size": p.size,
                    "table_type": p.table_type,
                    "label": p.label,
                    "fs_type": p.fs_type,
                    "role": p.role.value,
                }
                for p in storage_device.partitions
            ],
            "roles": classification.as_dict(),
        })
        return

    table = Table(title=str(storage_device))
    table.add_column("#", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Label")
    table.add_column("FS")
    table.add_column("Type")
    table.add_column("Role")

    for partition in storage_device.partitions:
        style = ROLE_STYLES.get(partition.role, "dim")
        table.add_row(
            str(partition.number),
            format_bytes(partition.size),
            partition.label or "-",
            partition.fs_type or "-",
            partition.table_type or "-",
            f"[{style}]{partition.role.value}[/{style}]",
        )

    console.print(table)


def register_device_commands(app: typer.Typer, shared_console: Console) -> None:
    """Attach device commands to the root CLI."""
    global console
    console = shared_console
    app.command()(devices)
    app.command()(classify)
