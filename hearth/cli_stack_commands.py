"""Compose stack command group."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hearth.cli_support import (
    find_env_file,
    get_runner,
    handle_cli_error,
    load_backup_jobs,
    load_settings,
    print_error,
    print_findings,
    print_info,
    print_success,
    print_warning,
)
from hearth.core.config import HearthSettings
from hearth.core.envfile import load_env_file, validate_env
from hearth.services.docker_compose import (
    CommandError,
    ComposeManifest,
    ComposeManifestError,
    SmokeTester,
)
from hearth.services.duplicati import create_directories

StackApp = typer.Typer(help="Validate, start and check the compose stack", add_completion=False)

_console: Console = Console()


def register_stack_commands(app: typer.Typer, console: Console) -> None:
    """Attach stack commands to the primary CLI."""
    global _console
    _console = console
    app.add_typer(StackApp, name="stack")


def _load_manifest(settings: HearthSettings) -> ComposeManifest:
    try:
        return ComposeManifest.load(settings.resolve(settings.compose_file))
    except ComposeManifestError as e:
        handle_cli_error(e, _console)


def _validate(settings: HearthSettings, env_file: Optional[str]) -> bool:
    """Validate manifest and .env; print findings and return True when usable."""
    manifest = _load_manifest(settings)
    manifest_result = manifest.validate()
    _console.print(f"[bold]Compose file:[/bold] {settings.resolve(settings.compose_file)}")
    print_findings(_console, manifest_result.errors, manifest_result.warnings)

    ok = not manifest_result.has_errors()

    path = find_env_file(env_file)
    if path is None:
        print_error(_console, "No .env file found; pass --env-file or set HEARTH_ENV_FILE")
        return False
    try:
        env = load_env_file(path)
    except FileNotFoundError as e:
        print_error(_console, str(e))
        return False

    _console.print(f"[bold]Environment:[/bold] {path}")
    env_result = validate_env(env, required_extra=manifest.required_variables())
    print_findings(_console, env_result.errors, env_result.warnings)
    return ok and not env_result.has_errors()


@StackApp.command("validate")
def stack_validate(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Validate the compose manifest and its .env file."""
    settings = load_settings()
    if not _validate(settings, env_file):
        print_error(_console, "Stack configuration has errors")
        raise typer.Exit(1)
    print_success(_console, "Stack configuration is valid")


@StackApp.command("setup")
def stack_setup(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Validate configuration, create backup directories and start the stack."""
    settings = load_settings()
    runner = get_runner(settings, env_file)
    if not runner.is_available():
        print_error(_console, "docker with the compose plugin is required but not installed")
        raise typer.Exit(1)

    if not _validate(settings, env_file):
        print_error(_console, "Fix the configuration errors above before setup")
        raise typer.Exit(1)

    jobs = load_backup_jobs(settings, _console)
    try:
        create_directories(settings.backup_base_dir, jobs, log_dir=settings.backup_log_dir, mock=settings.mock)
    except OSError as e:
        handle_cli_error(e, _console)
    print_success(_console, "Backup directories ready")

    print_info(_console, "Starting services...")
    if not runner.up():
        print_error(_console, "docker compose up failed")
        raise typer.Exit(1)
    print_success(_console, "Stack is up; run 'hearth stack health' to smoke test it")


@StackApp.command("status")
def stack_status(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Show container state and health for every service."""
    settings = load_settings()
    try:
        services = get_runner(settings, env_file).ps()
    except CommandError as e:
        handle_cli_error(e, _console)

    if not services:
        print_warning(_console, "No containers found for this stack")
        raise typer.Exit(1)

    table = Table(title="Stack Status", show_header=True)
    table.add_column("Service", style="cyan")
    table.add_column("Container")
    table.add_column("State")
    table.add_column("Health")
    table.add_column("Status", style="dim")
    unhealthy = 0
    for service in services:
        state = service.get("State", "")
        health = service.get("Health", "")
        if state != "running" or health == "unhealthy":
            unhealthy += 1
        color = "green" if state == "running" and health != "unhealthy" else "red"
        table.add_row(
            service.get("Service", ""),
            service.get("Name", ""),
            f"[{color}]{state}[/{color}]",
            health or "-",
            service.get("Status", ""),
        )
    _console.print(table)

    if unhealthy:
        print_error(_console, f"{unhealthy} service(s) not running or unhealthy")
        raise typer.Exit(1)
    print_success(_console, f"{len(services)} service(s) running")


@StackApp.command("logs")
def stack_logs(
    service: Optional[str] = typer.Argument(None, help="Service name (default: all)"),
    tail: int = typer.Option(100, "--tail", "-n", help="Number of lines"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Stream new log lines"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Show service logs."""
    settings = load_settings()
    try:
        output = get_runner(settings, env_file).logs(service, tail=tail, follow=follow)
    except CommandError as e:
        handle_cli_error(e, _console)
    if output:
        _console.print(output, markup=False, highlight=False)


@StackApp.command("restart")
def stack_restart(
    service: Optional[str] = typer.Argument(None, help="Service name (default: all)"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Restart one service or the whole stack."""
    settings = load_settings()
    if not get_runner(settings, env_file).restart(service):
        print_error(_console, f"Failed to restart {service or 'the stack'}")
        raise typer.Exit(1)
    print_success(_console, f"Restarted {service or 'all services'}")


@StackApp.command("health")
def stack_health(
    attempts: int = typer.Option(30, "--attempts", help="Checks per service before giving up"),
    delay: float = typer.Option(2.0, "--delay", help="Seconds between checks"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Smoke test: every service with a healthcheck must report healthy."""
    settings = load_settings()
    manifest = _load_manifest(settings)
    endpoints = manifest.health_endpoints()
    if not endpoints:
        print_warning(_console, "No services define a healthcheck")
        return

    tester = SmokeTester(get_runner(settings, env_file), attempts=attempts, delay=delay)
    results = tester.run(endpoints)

    table = Table(title="Smoke Test", show_header=True)
    table.add_column("Service", style="cyan")
    table.add_column("Check")
    table.add_column("Target", style="dim")
    table.add_column("Result")
    for result in results:
        outcome = f"[green]✓ {result.detail}[/green]" if result.ok else f"[red]✗ {result.detail}[/red]"
        table.add_row(result.service, result.method, result.target, outcome)
    _console.print(table)

    failed = [r for r in results if not r.ok]
    if failed:
        print_error(_console, f"{len(failed)} of {len(results)} service(s) failed the smoke test")
        raise typer.Exit(1)
    print_success(_console, f"All {len(results)} service(s) healthy")
