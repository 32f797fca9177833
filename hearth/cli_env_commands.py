"""Environment file commands for hearth CLI."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from hearth.cli_support import (
    find_env_file,
    load_settings,
    print_error,
    print_findings,
    print_info,
    print_success,
    print_warning,
)
from hearth.core.envfile import load_env_file, validate_env
from hearth.services.docker_compose import ComposeManifest, ComposeManifestError

EnvApp = typer.Typer(help="Check the stack's .env file", add_completion=False)

_console: Console = Console()


def register_env_commands(app: typer.Typer, console: Console) -> None:
    """Attach env subcommands to the main Typer app."""
    global _console
    _console = console
    app.add_typer(EnvApp, name="env")


@EnvApp.command("check")
def env_check(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
    with_compose: bool = typer.Option(
        True, "--compose/--no-compose", help="Also require variables the compose file references"
    ),
) -> None:
    """Validate required variables, formats and placeholder values."""
    settings = load_settings()
    path = find_env_file(env_file)
    if path is None:
        print_error(_console, "No .env file found; pass --env-file or set HEARTH_ENV_FILE")
        raise typer.Exit(1)

    try:
        env = load_env_file(path)
    except FileNotFoundError as e:
        print_error(_console, str(e))
        raise typer.Exit(1)

    required = []
    if with_compose:
        compose_file = settings.resolve(settings.compose_file)
        try:
            required = ComposeManifest.load(compose_file).required_variables()
        except ComposeManifestError as e:
            print_warning(_console, f"Skipping compose variables: {e}")

    result = validate_env(env, required_extra=required)
    print_info(_console, f"Checked {len(env)} variable(s) in {path}")
    print_findings(_console, result.errors, result.warnings)

    if result.has_errors():
        print_error(_console, f"{len(result.errors)} error(s) in {path}")
        raise typer.Exit(1)
    print_success(_console, f"{path} satisfies the stack's environment contract")
