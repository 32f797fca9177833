"""Filebrowser users and shares command group."""
from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console

from hearth.cli_support import (
    confirm_action,
    get_runner,
    handle_cli_error,
    load_settings,
    print_error,
    print_info,
    print_success,
)
from hearth.core.config import HearthSettings
from hearth.services.docker_compose import CommandError
from hearth.services.filebrowser import FilebrowserAdmin, FilebrowserError, parse_permissions

FilesApp = typer.Typer(help="Manage filebrowser users and shares", add_completion=False)
UsersApp = typer.Typer(help="Add, remove and update filebrowser users", add_completion=False)
SharesApp = typer.Typer(help="Create, list and remove file shares", add_completion=False)
FilesApp.add_typer(UsersApp, name="users")
FilesApp.add_typer(SharesApp, name="shares")

_console: Console = Console()

PERM_HELP = "Permission as name=true|false (repeatable): admin, create, delete, modify, rename, share, download"


def register_files_commands(app: typer.Typer, console: Console) -> None:
    """Attach files commands to the primary CLI."""
    global _console
    _console = console
    app.add_typer(FilesApp, name="files")


def _admin(settings: HearthSettings) -> FilebrowserAdmin:
    return FilebrowserAdmin(
        get_runner(settings),
        container=settings.filebrowser_container,
        database=settings.filebrowser_database,
        root=settings.filebrowser_root,
    )


def _done(ok: bool, success: str, failure: str) -> None:
    if not ok:
        print_error(_console, failure)
        raise typer.Exit(1)
    print_success(_console, success)


def _print_table(text: str, empty: str) -> None:
    if text.strip():
        _console.print(text.rstrip(), markup=False, highlight=False)
    else:
        print_info(_console, empty)


@UsersApp.command("add")
def users_add(
    username: str = typer.Argument(..., help="Login name"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Initial password"
    ),
    scope: Optional[str] = typer.Option(None, "--scope", help="Home directory (default <root>/users/<name>)"),
    perms: Optional[List[str]] = typer.Option(None, "--perm", "-p", help=PERM_HELP),
) -> None:
    """Add a user with its own scope directory."""
    settings = load_settings()
    admin = _admin(settings)
    try:
        permissions = parse_permissions(perms or [])
        ok = admin.add_user(username, password, scope=scope, permissions=permissions)
    except FilebrowserError as e:
        handle_cli_error(e, _console)
    _done(ok, f"User {username} added with scope: {scope or admin.default_scope(username)}",
          f"Failed to add user {username}")


@UsersApp.command("remove")
def users_remove(
    username: str = typer.Argument(..., help="Login name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove a user. Files in its scope are left in place."""
    settings = load_settings()
    if not confirm_action(f"Remove filebrowser user {username}?", yes_flag=yes, mock=settings.mock):
        raise typer.Exit(1)
    try:
        ok = _admin(settings).remove_user(username)
    except FilebrowserError as e:
        handle_cli_error(e, _console)
    _done(ok, f"User {username} removed", f"Failed to remove user {username}")


@UsersApp.command("list")
def users_list() -> None:
    """List filebrowser users."""
    settings = load_settings()
    try:
        output = _admin(settings).list_users()
    except CommandError as e:
        handle_cli_error(e, _console)
    _console.print("[bold]Current filebrowser users:[/bold]")
    _print_table(output, "No output from filebrowser")


@UsersApp.command("permissions")
def users_permissions(
    username: str = typer.Argument(..., help="Login name"),
    perms: List[str] = typer.Option(..., "--perm", "-p", help=PERM_HELP),
) -> None:
    """Grant or revoke permissions for a user."""
    settings = load_settings()
    try:
        ok = _admin(settings).update_permissions(username, parse_permissions(perms))
    except FilebrowserError as e:
        handle_cli_error(e, _console)
    _done(ok, f"Permissions updated for {username}", f"Failed to update permissions for {username}")


@UsersApp.command("password")
def users_password(
    username: str = typer.Argument(..., help="Login name"),
    password: str = typer.Option(
        ..., "--password", prompt="New password", hide_input=True, confirmation_prompt=True, help="New password"
    ),
) -> None:
    """Reset a user's password."""
    settings = load_settings()
    try:
        ok = _admin(settings).reset_password(username, password)
    except FilebrowserError as e:
        handle_cli_error(e, _console)
    _done(ok, f"Password reset for {username}", f"Failed to reset password for {username}")


@SharesApp.command("create")
def shares_create(
    path: str = typer.Argument(..., help="File or directory inside the served root"),
    expires: Optional[str] = typer.Option(None, "--expires", "-e", help="Expiry such as 24h or 30m"),
) -> None:
    """Create a public share link."""
    settings = load_settings()
    try:
        ok = _admin(settings).create_share(path, expires=expires)
    except FilebrowserError as e:
        handle_cli_error(e, _console)
    suffix = f" (expires in {expires})" if expires else ""
    _done(ok, f"Share created for {path}{suffix}", f"Failed to share {path}")


@SharesApp.command("list")
def shares_list(
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Only this user's shares"),
) -> None:
    """List file shares."""
    settings = load_settings()
    try:
        output = _admin(settings).list_shares(username)
    except (FilebrowserError, CommandError) as e:
        handle_cli_error(e, _console)
    _console.print("[bold]Current file shares:[/bold]")
    _print_table(output, "No output from filebrowser")


@SharesApp.command("remove")
def shares_remove(
    share_id: str = typer.Argument(..., help="Share ID from 'hearth files shares list'"),
) -> None:
    """Remove a share link."""
    settings = load_settings()
    try:
        ok = _admin(settings).remove_share(share_id)
    except FilebrowserError as e:
        handle_cli_error(e, _console)
    _done(ok, f"Share {share_id} removed", f"Failed to remove share {share_id}")
