"""Restore helper command group."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hearth.cli_support import (
    handle_cli_error,
    load_settings,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from hearth.services.duplicati import RestoreError, RestoreHelper

RestoreApp = typer.Typer(help="Prepare restores from Duplicati backup sets", add_completion=False)

_console: Console = Console()


def register_restore_commands(app: typer.Typer, console: Console) -> None:
    """Attach restore commands to the primary CLI."""
    global _console
    _console = console
    app.add_typer(RestoreApp, name="restore")


def _helper() -> RestoreHelper:
    settings = load_settings()
    return RestoreHelper(
        settings.backup_base_dir,
        settings.restore_base_dir,
        duplicati_url=settings.duplicati_url,
        log_dir=settings.backup_log_dir,
    )


def _validate(helper: RestoreHelper, backup_set: str) -> bool:
    result = helper.validate(backup_set)
    for error in result.errors:
        print_error(_console, error)
    for path in result.corrupted:
        print_warning(_console, f"Potentially corrupted: {path}")
    if result.ok:
        print_success(_console, f"Backup set '{backup_set}' passed validation ({result.volume_count} volumes)")
    return result.ok


@RestoreApp.command("list")
def restore_list() -> None:
    """List backup sets available for restore."""
    candidates = _helper().list_sets()
    if not candidates:
        print_warning(_console, "No backup sets found")
        raise typer.Exit(1)

    table = Table(title="Available Backup Sets", show_header=True)
    table.add_column("Set", style="cyan")
    table.add_column("Archives", justify="right")
    table.add_column("Latest", style="dim")
    for candidate in candidates:
        latest = candidate.latest.strftime("%Y-%m-%d %H:%M") if candidate.latest else "-"
        table.add_row(candidate.name, str(candidate.archive_count), latest)
    _console.print(table)


@RestoreApp.command("validate")
def restore_validate(
    backup_set: str = typer.Argument(..., help="Backup set to validate"),
) -> None:
    """Check a backup set's volumes before restoring from it."""
    try:
        ok = _validate(_helper(), backup_set)
    except RestoreError as e:
        handle_cli_error(e, _console)
    if not ok:
        raise typer.Exit(1)


@RestoreApp.command("prepare")
def restore_prepare(
    backup_set: str = typer.Argument(..., help="Backup set to restore"),
) -> None:
    """Create the restore staging directory for a backup set."""
    try:
        target = _helper().prepare(backup_set)
    except (RestoreError, OSError) as e:
        handle_cli_error(e, _console)
    print_success(_console, f"Restore environment prepared at: {target}")


@RestoreApp.command("instructions")
def restore_instructions(
    backup_set: str = typer.Argument(..., help="Backup set to restore"),
    target: Optional[str] = typer.Argument(None, help="Restore destination"),
) -> None:
    """Write step-by-step restore instructions for a backup set."""
    helper = _helper()
    target = target or str(helper.restore_base_dir / backup_set)
    try:
        path = helper.write_instructions(backup_set, target)
    except (RestoreError, OSError) as e:
        handle_cli_error(e, _console)
    _console.print(path.read_text())
    print_success(_console, f"Restore instructions generated: {path}")


@RestoreApp.command("wizard")
def restore_wizard() -> None:
    """Interactively pick a backup set, validate it and prepare a restore."""
    helper = _helper()
    candidates = helper.list_sets()
    if not candidates:
        print_error(_console, "No backup sets found")
        raise typer.Exit(1)

    _console.print("[bold]Duplicati Restore Wizard[/bold]\n")
    for index, candidate in enumerate(candidates, start=1):
        latest = candidate.latest.strftime("%Y-%m-%d %H:%M") if candidate.latest else "no backups"
        _console.print(f"  {index}. {candidate.name} ({candidate.archive_count} archives, {latest})")

    choice = typer.prompt("Select backup set number", type=int)
    if not 1 <= choice <= len(candidates):
        print_error(_console, "Invalid selection")
        raise typer.Exit(1)
    backup_set = candidates[choice - 1].name
    print_info(_console, f"Selected backup set: {backup_set}")

    try:
        ok = _validate(helper, backup_set)
    except RestoreError as e:
        handle_cli_error(e, _console)
    if not ok:
        if not typer.confirm("Backup validation failed. Continue anyway?", default=False):
            raise typer.Exit(1)

    default_target = str(helper.restore_base_dir / backup_set)
    target = typer.prompt("Restore destination", default=default_target)

    try:
        helper.prepare(backup_set)
        path = helper.write_instructions(backup_set, target)
    except (RestoreError, OSError) as e:
        handle_cli_error(e, _console)

    _console.print(path.read_text())
    print_success(_console, f"Restore instructions generated: {path}")
    print_info(_console, "Follow the instructions to complete the restore in the Duplicati web UI")
