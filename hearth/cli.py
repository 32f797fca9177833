#!/usr/bin/env python3
"""hearth CLI - Operations toolkit for a Docker Compose homelab."""
from typing import Optional

import typer

from hearth import __version__
from hearth.cli_backup_commands import register_backup_commands
from hearth.cli_env_commands import register_env_commands
from hearth.cli_files_commands import register_files_commands
from hearth.cli_restore_commands import register_restore_commands
from hearth.cli_ssl_commands import register_ssl_commands
from hearth.cli_stack_commands import register_stack_commands
from hearth.cli_support import set_verbose
from hearth.cli_tunnel_commands import register_tunnel_commands
from hearth.core.logger import console, get_logger, setup_file_logging

app = typer.Typer(
    name="hearth",
    help="""hearth - Operations toolkit for a Docker Compose homelab

Backups, Cloudflare tunnel, TLS and the compose stack from one CLI.

Quick start:
  hearth env check            # Validate .env
  hearth stack setup          # Validate and start the stack
  hearth stack health         # Smoke test every service
  hearth backup verify        # Check backup freshness and retention
  hearth files users list     # Filebrowser accounts

Set HEARTH_MOCK=1 to see what commands would do without running them.
""",
    add_completion=False,
)

logger = get_logger(__name__)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output and tracebacks"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
) -> None:
    set_verbose(verbose)
    setup_file_logging(log_file=log_file, verbose=verbose)


@app.command("version")
def version() -> None:
    """Show hearth version."""
    console.print(f"hearth {__version__}")


# Attach modular subcommands
register_backup_commands(app, console)
register_restore_commands(app, console)
register_tunnel_commands(app, console)
register_ssl_commands(app, console)
register_stack_commands(app, console)
register_env_commands(app, console)
register_files_commands(app, console)

if __name__ == "__main__":
    app()
