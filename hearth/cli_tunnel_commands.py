"""Cloudflare tunnel command group."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hearth.cli_support import (
    get_runner,
    handle_cli_error,
    load_settings,
    print_error,
    print_findings,
    print_info,
    print_success,
    print_warning,
    status_cell,
)
from hearth.core.config import HearthSettings
from hearth.models.health import CheckStatus, HealthReport
from hearth.services.cloudflared import (
    TunnelCLI,
    TunnelConfig,
    TunnelConfigError,
    TunnelHealthChecker,
    TunnelReconnector,
    install_credentials,
    load_tunnel_config,
    set_tunnel_id,
)

TunnelApp = typer.Typer(help="Manage the Cloudflare tunnel", add_completion=False)

_console: Console = Console()


def register_tunnel_commands(app: typer.Typer, console: Console) -> None:
    """Attach tunnel commands to the primary CLI."""
    global _console
    _console = console
    app.add_typer(TunnelApp, name="tunnel")


def _load_config(settings: HearthSettings) -> TunnelConfig:
    try:
        return load_tunnel_config(settings.resolve(settings.cloudflared_config))
    except TunnelConfigError as e:
        handle_cli_error(e, _console)


def _checker(settings: HearthSettings) -> TunnelHealthChecker:
    return TunnelHealthChecker(
        config_path=settings.resolve(settings.cloudflared_config),
        credentials_path=settings.resolve(settings.cloudflared_credentials),
        metrics_url=settings.cloudflared_metrics_url,
        log_file=settings.cloudflared_log,
        edge_url=settings.edge_url,
        timeout=settings.http_timeout,
        mock=settings.mock,
    )


def _require_cli(settings: HearthSettings) -> TunnelCLI:
    cli = TunnelCLI(mock=settings.mock)
    if not cli.is_installed():
        print_error(_console, "cloudflared is not installed")
        print_info(_console, "Install it from https://developers.cloudflare.com/cloudflare-one/connections/connect-networks/downloads/")
        raise typer.Exit(1)
    return cli


def _print_report(report: HealthReport, title: str) -> None:
    table = Table(title=title, show_header=True)
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Details")
    for check in report.checks:
        table.add_row(check.name, status_cell(check.status.value), check.message)
    _console.print(table)


@TunnelApp.command("status")
def tunnel_status(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Show container state, tunnel ID and routed hostnames."""
    settings = load_settings()
    runner = get_runner(settings, env_file)

    state = runner.container_status(settings.cloudflared_container)
    health = runner.health_status(settings.cloudflared_container)
    config = _load_config(settings)

    _console.print(f"[bold]Container:[/bold] {settings.cloudflared_container} ({state or 'not found'}"
                   f"{', ' + health if health else ''})")
    _console.print(f"[bold]Tunnel ID:[/bold] {config.tunnel or '-'}")
    _console.print(f"[bold]Metrics:[/bold] {config.metrics_address or settings.cloudflared_metrics_url}")

    table = Table(title="Ingress", show_header=True)
    table.add_column("Hostname", style="cyan")
    table.add_column("Path", style="dim")
    table.add_column("Service")
    for rule in config.ingress:
        table.add_row(rule.hostname or "*", rule.path or "", rule.service or "")
    _console.print(table)

    if state != "running":
        print_error(_console, "cloudflared container is not running")
        raise typer.Exit(1)
    print_success(_console, "cloudflared container is running")


@TunnelApp.command("health")
def tunnel_health(
    quick: bool = typer.Option(False, "--quick", help="Process and metrics checks only"),
) -> None:
    """Run the tunnel health checks."""
    settings = load_settings()
    checker = _checker(settings)
    report = checker.quick() if quick else checker.run_all()
    _print_report(report, "Tunnel Health")

    if not report.ok:
        print_error(_console, f"{len(report.failures)} check(s) failed")
        raise typer.Exit(report.exit_code())
    if report.warnings:
        print_warning(_console, f"All checks passed with {len(report.warnings)} warning(s)")
    else:
        print_success(_console, "All health checks passed successfully")


@TunnelApp.command("metrics")
def tunnel_metrics() -> None:
    """Show the tunnel's key Prometheus metrics."""
    settings = load_settings()
    result = _checker(settings).check_tunnel_metrics()
    if result.status == CheckStatus.FAIL:
        print_error(_console, result.message)
        raise typer.Exit(1)

    table = Table(title="Tunnel Metrics", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in result.details.items():
        table.add_row(name, f"{value:g}")
    _console.print(table)
    if result.status == CheckStatus.WARN:
        print_warning(_console, result.message)


@TunnelApp.command("validate")
def tunnel_validate() -> None:
    """Validate the tunnel ingress configuration."""
    settings = load_settings()
    config = _load_config(settings)
    validation = config.validate()
    print_findings(_console, validation.errors, validation.warnings)

    if validation.has_errors():
        raise typer.Exit(1)

    cli = TunnelCLI(mock=settings.mock)
    if cli.is_installed() and not cli.validate_ingress(config.path):
        print_error(_console, "cloudflared rejected the ingress rules")
        raise typer.Exit(1)
    print_success(_console, f"{config.path} is valid ({len(config.ingress)} ingress rules)")


@TunnelApp.command("route")
def tunnel_route(
    hostname: str = typer.Argument(..., help="Hostname to route"),
    path: str = typer.Argument("/", help="Request path"),
) -> None:
    """Show which ingress rule serves a hostname and path."""
    settings = load_settings()
    config = _load_config(settings)
    validation = config.validate()
    if validation.has_errors():
        print_findings(_console, validation.errors, [])
        print_error(_console, "Fix the ingress rules before routing; see 'hearth tunnel validate'")
        raise typer.Exit(1)

    rule = config.match(hostname, path)
    if rule is None:
        print_error(_console, f"No ingress rule matches {hostname}{path}")
        raise typer.Exit(1)
    if rule.is_catch_all:
        print_warning(_console, f"{hostname}{path} falls through to the catch-all: {rule.service}")
        return
    print_success(_console, f"{hostname}{path} → {rule.service}")
    for key, value in rule.origin.items():
        _console.print(f"  [dim]{key}: {value}[/dim]")


@TunnelApp.command("dns")
def tunnel_dns() -> None:
    """List the CNAME records the tunnel's hostnames need."""
    settings = load_settings()
    config = _load_config(settings)
    if not config.tunnel_configured:
        print_error(_console, "Tunnel ID not configured; run 'hearth tunnel create' first")
        raise typer.Exit(1)

    table = Table(title="DNS Records", show_header=True)
    table.add_column("Type")
    table.add_column("Name", style="cyan")
    table.add_column("Target")
    for record in config.dns_records():
        table.add_row(record.type, record.name, record.target)
    _console.print(table)
    for hostname in config.wildcard_hostnames:
        print_warning(_console, f"{hostname} needs a wildcard record; add it by hand")
    print_info(_console, "Create these as proxied records in the Cloudflare dashboard")


@TunnelApp.command("create")
def tunnel_create(
    name: str = typer.Argument("homelab-tunnel", help="Tunnel name"),
) -> None:
    """Create a tunnel, write its ID into config.yml and install credentials."""
    settings = load_settings()
    cli = _require_cli(settings)

    tunnel_id = cli.create(name)
    if not tunnel_id:
        print_error(_console, f"Failed to create tunnel '{name}'")
        raise typer.Exit(1)
    print_success(_console, f"Tunnel created with ID: {tunnel_id}")

    config_path = settings.resolve(settings.cloudflared_config)
    if settings.mock:
        print_info(_console, f"MOCK: Would update {config_path} and install credentials")
        return

    try:
        backup = set_tunnel_id(config_path, tunnel_id)
        install_credentials(
            tunnel_id, settings.resolve(settings.cloudflared_credentials), settings.cloudflared_home
        )
    except (TunnelConfigError, OSError) as e:
        handle_cli_error(e, _console)

    print_success(_console, f"Configuration updated (previous version kept at {backup})")
    print_success(_console, "Credentials file copied and secured")
    for record in load_tunnel_config(config_path).dns_records():
        _console.print(f"  CNAME {record.name} → {record.target}")


@TunnelApp.command("list")
def tunnel_list() -> None:
    """List tunnels on the Cloudflare account."""
    settings = load_settings()
    cli = _require_cli(settings)
    tunnels = cli.list_tunnels()
    if not tunnels:
        print_warning(_console, "No tunnels found")
        return

    table = Table(title="Tunnels", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Connections", justify="right")
    for tunnel in tunnels:
        table.add_row(
            str(tunnel.get("id", "")),
            str(tunnel.get("name", "")),
            str(len(tunnel.get("connections") or [])),
        )
    _console.print(table)


@TunnelApp.command("info")
def tunnel_info(
    tunnel_id: Optional[str] = typer.Argument(None, help="Tunnel ID (default: from config.yml)"),
) -> None:
    """Check that Cloudflare knows the tunnel."""
    settings = load_settings()
    cli = _require_cli(settings)
    if tunnel_id is None:
        config = _load_config(settings)
        if not config.tunnel_configured:
            print_error(_console, "Tunnel ID not configured (using placeholder)")
            raise typer.Exit(1)
        tunnel_id = config.tunnel

    if not cli.info(tunnel_id):
        print_error(_console, f"Cannot retrieve tunnel info for tunnel ID: {tunnel_id}")
        raise typer.Exit(1)
    print_success(_console, f"Tunnel connectivity verified for tunnel ID: {tunnel_id}")


@TunnelApp.command("reconnect")
def tunnel_reconnect(
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Path to .env file"),
) -> None:
    """Restart cloudflared and wait until the tunnel is healthy."""
    settings = load_settings()
    reconnector = TunnelReconnector(
        get_runner(settings, env_file),
        _checker(settings),
        container=settings.cloudflared_container,
        attempts=settings.health_attempts,
        delay=settings.health_delay,
    )
    if not reconnector.reconnect():
        print_error(_console, "Tunnel did not become healthy after restart")
        raise typer.Exit(1)
    print_success(_console, "Tunnel reconnected")
