"""TLS certificate command group."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from hearth.cli_support import (
    confirm_action,
    get_runner,
    handle_cli_error,
    load_settings,
    print_error,
    print_findings,
    print_info,
    print_success,
    print_warning,
)
from hearth.core.config import HearthSettings
from hearth.services.traefik import (
    AcmeStore,
    AcmeStoreError,
    CertificateLevel,
    CertificateRenewer,
    check_domain,
    classify,
)

SslApp = typer.Typer(help="Check and maintain TLS certificates", add_completion=False)

_console: Console = Console()

LEVEL_STYLES = {
    CertificateLevel.OK: "green",
    CertificateLevel.WARNING: "yellow",
    CertificateLevel.CRITICAL: "red",
    CertificateLevel.UNKNOWN: "red",
}


def register_ssl_commands(app: typer.Typer, console: Console) -> None:
    """Attach ssl commands to the primary CLI."""
    global _console
    _console = console
    app.add_typer(SslApp, name="ssl")


def _store(settings: HearthSettings) -> AcmeStore:
    return AcmeStore(settings.resolve(settings.acme_json_path), resolver=settings.acme_resolver)


@SslApp.command("check")
def ssl_check(
    domains: Optional[List[str]] = typer.Option(None, "--domain", "-d", help="Domain to check (repeatable)"),
) -> None:
    """Check live certificate expiry. Exits 0 (ok), 1 (warning) or 2 (critical)."""
    settings = load_settings()
    domains = domains or ([settings.domain] if settings.domain else [])
    if not domains:
        print_error(_console, "No domain given; pass --domain or set DOMAIN")
        raise typer.Exit(1)

    exit_code = 0
    for domain in domains:
        status = check_domain(
            domain, settings.ssl_alert_days, settings.ssl_critical_days, timeout=settings.http_timeout
        )
        style = LEVEL_STYLES[status.level]
        _console.print(f"[{style}]{status.level.value}[/{style}] {status.message}")
        exit_code = max(exit_code, status.exit_code)

    raise typer.Exit(exit_code)


@SslApp.command("acme")
def ssl_acme() -> None:
    """Validate acme.json and list the certificates it holds."""
    settings = load_settings()
    store = _store(settings)
    validation = store.validate()
    print_findings(_console, validation.errors, validation.warnings)
    if validation.has_errors():
        print_info(_console, "Run 'hearth ssl repair' to rebuild a corrupted store")
        raise typer.Exit(1)

    certificates = store.certificates()
    now = datetime.now(timezone.utc)
    table = Table(title=f"ACME certificates ({settings.acme_resolver})", show_header=True)
    table.add_column("Domain", style="cyan")
    table.add_column("SANs", style="dim")
    table.add_column("Expires")
    table.add_column("Days left", justify="right")
    for cert in certificates:
        if cert.info is None:
            table.add_row(cert.domain, ", ".join(cert.sans), f"[red]{cert.error}[/red]", "-")
            continue
        days = cert.info.days_left(now)
        style = LEVEL_STYLES[classify(days, settings.ssl_alert_days, settings.ssl_critical_days)]
        table.add_row(
            cert.domain,
            ", ".join(cert.sans),
            cert.info.not_after.strftime("%Y-%m-%d"),
            f"[{style}]{days}[/{style}]",
        )
    _console.print(table)
    print_success(_console, f"Found {len(certificates)} certificates in ACME storage")


@SslApp.command("backup")
def ssl_backup(
    keep: int = typer.Option(10, "--keep", help="Number of backups to keep"),
) -> None:
    """Back up acme.json, rotating old copies."""
    settings = load_settings()
    try:
        path = _store(settings).backup(settings.resolve(settings.acme_backup_dir), keep=keep)
    except OSError as e:
        handle_cli_error(e, _console)
    if path is None:
        print_error(_console, "ACME JSON file not found, nothing to back up")
        raise typer.Exit(1)
    print_success(_console, f"ACME JSON backed up to: {path}")


@SslApp.command("repair")
def ssl_repair(
    email: Optional[str] = typer.Option(None, "--email", help="ACME account email"),
    force: bool = typer.Option(False, "--force", help="Repair even if the store looks valid"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Replace a corrupted acme.json with a minimal valid store."""
    settings = load_settings()
    store = _store(settings)

    if not store.validate().has_errors() and not force:
        print_success(_console, "ACME JSON file is valid, no repair needed")
        return

    email = email or settings.acme_email or (f"admin@{settings.domain}" if settings.domain else None)
    if not email:
        print_error(_console, "No ACME email; pass --email or set ACME_EMAIL")
        raise typer.Exit(1)

    if not confirm_action(
        "All stored certificates will be re-issued. Continue?", yes_flag=yes, mock=settings.mock
    ):
        raise typer.Exit(1)

    try:
        store.repair(email)
    except OSError as e:
        handle_cli_error(e, _console)
    print_success(_console, "ACME JSON file repaired with minimal structure")


@SslApp.command("renew")
def ssl_renew(
    domain: str = typer.Argument(..., help="Domain to renew"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Force Traefik to obtain a new certificate for a domain."""
    settings = load_settings()
    renewer = CertificateRenewer(
        _store(settings),
        get_runner(settings, env_file),
        backup_dir=settings.resolve(settings.acme_backup_dir),
        container=settings.traefik_container,
        ping_url=settings.traefik_ping_url,
        alert_days=settings.ssl_alert_days,
        critical_days=settings.ssl_critical_days,
        mock=settings.mock,
    )
    try:
        renewed = renewer.renew(domain)
    except (AcmeStoreError, OSError) as e:
        handle_cli_error(e, _console)

    if not renewed:
        print_error(_console, f"Certificate renewal failed for {domain}")
        print_warning(_console, "Check 'hearth stack logs traefik' for ACME errors")
        raise typer.Exit(1)
    print_success(_console, f"Certificate renewed for {domain}")
