"""Shared utilities for hearth CLI modules."""
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from hearth.core.config import HearthSettings
from hearth.models.backup import BackupJob, load_jobs
from hearth.services.docker_compose import ComposeRunner

# Default .env search paths (ordered by proximity to current run)
ENV_FILE_PATHS = [
    "./.env",
]

_state = {"verbose": False}


def set_verbose(verbose: bool) -> None:
    _state["verbose"] = verbose


def is_verbose() -> bool:
    return _state["verbose"]


def find_env_file(env_file: Optional[str] = None) -> Optional[Path]:
    """Locate the stack's .env file (``--env-file``, ``HEARTH_ENV_FILE``, ``./.env``)."""
    if env_file:
        return Path(env_file)

    if env_path := os.environ.get("HEARTH_ENV_FILE"):
        return Path(env_path)

    for path in ENV_FILE_PATHS:
        if Path(path).exists():
            return Path(path)

    return None


def is_mock() -> bool:
    """Return True when CLI runs in mock mode."""
    return os.environ.get("HEARTH_MOCK") == "1"


def load_settings() -> HearthSettings:
    """Settings from the environment, with mock mode from HEARTH_MOCK."""
    settings = HearthSettings.from_env()
    settings.mock = settings.mock or is_mock()
    return settings


def get_runner(settings: HearthSettings, env_file: Optional[str] = None) -> ComposeRunner:
    """Return a ComposeRunner for the stack with mock defaults."""
    return ComposeRunner(
        settings.resolve(settings.compose_file),
        env_file=find_env_file(env_file),
        project_dir=settings.project_dir,
        mock=settings.mock,
    )


def load_backup_jobs(settings: HearthSettings, console: Console) -> List[BackupJob]:
    """Load job descriptors, exiting with a readable error when one is invalid."""
    try:
        return load_jobs(settings.backup_jobs_dir)
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        print_error(console, f"Invalid backup job descriptor in {settings.backup_jobs_dir}")
        handle_cli_error(e, console)


def find_job(jobs: List[BackupJob], name: str) -> Optional[BackupJob]:
    """Find a job by backup set or job name."""
    for job in jobs:
        if name in (job.backup_set, job.name):
            return job
    return None


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode.

    Args:
        message: Confirmation message to display
        yes_flag: Skip prompt if True (from --yes flag)
        mock: Skip prompt if True (mock mode)

    Returns:
        True if confirmed, False otherwise
    """
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: Optional[bool] = None,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True (defaults to --verbose)
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {e}")
    if is_verbose() if verbose is None else verbose:
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


def print_findings(console: Console, errors: List[str], warnings: List[str]) -> None:
    """Print the errors and warnings of a validation result."""
    for error in errors:
        print_error(console, error)
    for warning in warnings:
        print_warning(console, warning)


STATUS_STYLES = {
    "ok": ("green", "✓"),
    "warn": ("yellow", "⚠"),
    "fail": ("red", "✗"),
    "skip": ("dim", "-"),
}


def status_cell(status: str) -> str:
    """Rich markup for a check status value."""
    style, symbol = STATUS_STYLES.get(status, ("white", "?"))
    return f"[{style}]{symbol} {status}[/{style}]"
