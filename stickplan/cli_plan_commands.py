"""Upgrade planning commands: plan system, plan efi."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from stickplan.cli_support import (
    emit_json,
    get_backend,
    handle_cli_error,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from stickplan.core.config import get_config
from stickplan.core.errors import CollaboratorIOError
from stickplan.core.planner import UpgradePlanner
from stickplan.core.size_probe import OverlaySizeProbe
from stickplan.discovery import StorageScanner, measure_live_system
from stickplan.models import EfiUpgradePlan, SystemUpgradePlan, format_bytes

PlanTyper = typer.Typer(help="Plan system and EFI partition upgrades", add_completion=False)

console: Console = Console()

SYSTEM_PLAN_DESCRIPTIONS = {
    SystemUpgradePlan.REGULAR: "Replace the system image in place",
    SystemUpgradePlan.REPARTITION: "Shrink the previous partition and grow the system partition",
    SystemUpgradePlan.BACKUP: "Back up user data, reinstall and restore",
    SystemUpgradePlan.INSTALLATION: "Nothing to keep: clean installation",
}

EFI_PLAN_DESCRIPTIONS = {
    EfiUpgradePlan.REGULAR: "Replace the EFI partition content",
    EfiUpgradePlan.ENLARGE_REPARTITION: "Shrink the following partition and enlarge the EFI partition",
    EfiUpgradePlan.ENLARGE_BACKUP: "Back up the following partition, enlarge the EFI partition and restore",
}


def register_plan_commands(root: typer.Typer, shared_console: Console) -> None:
    """Attach the plan command group to the root CLI."""
    global console
    console = shared_console
    root.add_typer(PlanTyper, name="plan")


@PlanTyper.command("system")
def plan_system(
    device: str = typer.Argument(..., help="Device name, e.g. sdb or /dev/sdb"),
    enlarged_size: Optional[int] = typer.Option(
        None, "--enlarged-size", min=0,
        help="Bytes the new system needs (default: running live system size x system_size_factor)",
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of text"),
) -> None:
    """Decide how the system partition of DEVICE can be upgraded."""
    config = get_config()
    backend = get_backend()

    try:
        if enlarged_size is None:
            enlarged_size = measure_live_system(backend, config).enlarged_system_size
        storage_device = StorageScanner(backend).scan_device(device)
    except CollaboratorIOError as e:
        handle_cli_error(e, console)

    planner = UpgradePlanner(OverlaySizeProbe(backend, config), config)
    result = planner.plan_system_upgrade(storage_device, enlarged_size)

    if json_output:
        payload = result.as_dict()
        payload["device"] = storage_device.device
        payload["enlarged_system_size"] = enlarged_size
        emit_json(payload)
        return

    print_info(console, f"{storage_device} (new system: {format_bytes(enlarged_size)})")
    if not result.is_possible:
        print_error(console, f"System upgrade impossible: {result.message}")
        return

    description = SYSTEM_PLAN_DESCRIPTIONS[result.plan]
    if result.is_destructive:
        print_warning(console, f"[bold]{result.plan.value}[/bold]: {description}")
    else:
        print_success(console, f"[bold]{result.plan.value}[/bold]: {description}")


@PlanTyper.command("efi")
def plan_efi(
    device: str = typer.Argument(..., help="Device name, e.g. sdb or /dev/sdb"),
    needed_size: int = typer.Option(..., "--needed-size", min=0, help="Bytes the new EFI partition needs"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of text"),
) -> None:
    """Decide how the EFI partition of DEVICE can be upgraded."""
    config = get_config()
    backend = get_backend()

    try:
        storage_device = StorageScanner(backend).scan_device(device)
    except CollaboratorIOError as e:
        handle_cli_error(e, console)

    planner = UpgradePlanner(OverlaySizeProbe(backend, config), config)
    plan = planner.plan_efi_upgrade(storage_device, needed_size)

    if json_output:
        emit_json({
            "device": storage_device.device,
            "plan": plan.value,
            "needed_size": needed_size,
        })
        return

    print_info(console, f"{storage_device} (new EFI partition: {format_bytes(needed_size)})")
    description = EFI_PLAN_DESCRIPTIONS[plan]
    if plan is EfiUpgradePlan.REGULAR:
        print_success(console, f"[bold]{plan.value}[/bold]: {description}")
    else:
        print_warning(console, f"[bold]{plan.value}[/bold]: {description}")
