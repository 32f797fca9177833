"""Backup maintenance command group."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hearth.cli_support import (
    find_job,
    handle_cli_error,
    load_backup_jobs,
    load_settings,
    print_error,
    print_info,
    print_success,
    print_warning,
    status_cell,
)
from hearth.core.durations import format_age, format_size
from hearth.core.lock import LockError
from hearth.core.logger import current_log_file
from hearth.core.retention import Verdict, evaluate
from hearth.services.duplicati import (
    BackupCleaner,
    BackupVerifier,
    CleanupResult,
    DuplicatiClient,
    SetVerification,
    StatusReporter,
    create_directories,
    scan_backup_set,
)

BackupApp = typer.Typer(help="Verify, report on and clean up Duplicati backups", add_completion=False)

_console: Console = Console()


def register_backup_commands(app: typer.Typer, console: Console) -> None:
    """Attach backup commands to the primary CLI."""
    global _console
    _console = console
    app.add_typer(BackupApp, name="backup")


def _verification_table(results: List[SetVerification]) -> Table:
    table = Table(title="Backup Sets", show_header=True)
    table.add_column("Set", style="cyan")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Newest", style="dim")
    table.add_column("Issues")
    for result in results:
        table.add_row(
            result.job.backup_set,
            status_cell(result.status.value),
            str(result.scan.file_count),
            format_size(result.scan.total_size),
            result.newest_age or "-",
            "\n".join(result.issues) or "-",
        )
    return table


def _cleanup_summary(results: List[CleanupResult]) -> None:
    for result in results:
        verb = "Would delete" if result.dry_run else "Deleted"
        if result.deleted:
            print_success(
                _console,
                f"{result.backup_set}: {verb} {len(result.deleted)} file(s), "
                f"{format_size(result.freed_bytes)}",
            )
        else:
            print_info(_console, f"{result.backup_set}: nothing to delete")
        for skipped in result.skipped:
            print_warning(_console, skipped)
        for error in result.errors:
            print_error(_console, error)
        if result.report:
            for warning in result.report.warnings:
                print_warning(_console, f"{result.backup_set}: {warning}")


def _check_health(settings) -> bool:
    client = DuplicatiClient(settings.duplicati_url, timeout=settings.http_timeout, mock=settings.mock)
    healthy = client.is_healthy()
    if healthy:
        print_success(_console, f"Duplicati service is running at {settings.duplicati_url}")
    else:
        print_error(_console, f"Duplicati service is not responding at {settings.duplicati_url}")
    return healthy


@BackupApp.command("init")
def backup_init() -> None:
    """Create backup directories and validate job descriptors."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)
    print_success(_console, f"{len(jobs)} backup job(s) valid")

    try:
        created = create_directories(
            settings.backup_base_dir, jobs, log_dir=settings.backup_log_dir, mock=settings.mock
        )
    except OSError as e:
        handle_cli_error(e, _console)

    for directory in created:
        _console.print(f"  [dim]{directory}[/dim]")
    print_success(_console, f"Backup directories ready under {settings.backup_base_dir}")


@BackupApp.command("health")
def backup_health() -> None:
    """Check that the Duplicati service answers."""
    settings = load_settings()
    if not _check_health(settings):
        raise typer.Exit(1)


@BackupApp.command("verify")
def backup_verify() -> None:
    """Verify every backup set: presence, freshness, integrity and retention."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)

    results = BackupVerifier(settings.backup_base_dir).verify_all(jobs)
    _console.print(_verification_table(results))

    failed = [r for r in results if not r.ok]
    if failed:
        print_error(_console, f"{len(failed)} of {len(results)} backup set(s) failed verification")
        raise typer.Exit(1)
    print_success(_console, "Backup verification completed")


@BackupApp.command("evaluate")
def backup_evaluate(
    backup_set: str = typer.Argument(..., help="Backup set or job name"),
) -> None:
    """Show which versions a set's retention policy keeps or expires."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)
    job = find_job(jobs, backup_set)
    if job is None:
        print_error(_console, f"No backup job for '{backup_set}'")
        raise typer.Exit(1)

    now = datetime.now(timezone.utc)
    scan = scan_backup_set(settings.backup_base_dir / job.backup_set, name=job.backup_set)
    if not scan.exists:
        print_error(_console, f"Backup directory not found: {scan.path}")
        raise typer.Exit(1)

    policy = job.to_policy()
    report = evaluate(
        scan.versions(), policy, now,
        total_bytes=scan.total_size if scan.is_duplicati else None,
    )

    _console.print(Panel(policy.describe(), title=f"Retention policy: {job.backup_set}"))
    table = Table(show_header=True)
    table.add_column("Version", style="cyan")
    table.add_column("Taken")
    table.add_column("Age", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Verdict")
    table.add_column("Why", style="dim")
    colors = {Verdict.KEEP: "green", Verdict.EXPIRE: "red", Verdict.OVER_BUDGET: "yellow"}
    for decision in report.decisions:
        version = decision.version
        color = colors[decision.verdict]
        table.add_row(
            version.name,
            version.timestamp.strftime("%Y-%m-%d %H:%M"),
            format_age(now - version.timestamp),
            format_size(version.size),
            f"[{color}]{decision.verdict.value}[/{color}]",
            ", ".join(decision.reasons),
        )
    _console.print(table)

    _console.print(
        f"{len(report.kept)} kept, {len(report.expired)} expired, "
        f"{len(report.over_budget_versions)} over budget; "
        f"{format_size(report.kept_bytes)} of {format_size(report.total_bytes)} retained"
    )
    for warning in report.warnings:
        print_warning(_console, warning)
    if report.compliant:
        print_success(_console, f"{job.backup_set} complies with its retention policy")


@BackupApp.command("cleanup")
def backup_cleanup(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted"),
    enforce_budget: bool = typer.Option(
        False, "--enforce-budget", help="Also delete versions that exceed the storage limit"
    ),
    timeout: int = typer.Option(0, "--timeout", help="Seconds to wait for the maintenance lock"),
) -> None:
    """Delete backups that fall outside their retention policy."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)
    cleaner = BackupCleaner(settings.backup_base_dir, lock_file=settings.lock_file, mock=settings.mock)

    try:
        results = cleaner.cleanup_all(
            jobs, dry_run=dry_run, enforce_budget=enforce_budget, timeout=timeout
        )
    except LockError as e:
        handle_cli_error(e, _console)

    _cleanup_summary(results)
    if any(r.errors for r in results):
        raise typer.Exit(1)
    print_success(_console, "Backup cleanup completed")


@BackupApp.command("status")
def backup_status() -> None:
    """Write the plain-text status report to the backup log directory."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)

    healthy = DuplicatiClient(
        settings.duplicati_url, timeout=settings.http_timeout, mock=settings.mock
    ).is_healthy()
    results = BackupVerifier(settings.backup_base_dir).verify_all(jobs)

    try:
        path = StatusReporter().write_text_report(
            settings.backup_log_dir, results, healthy, log_file=current_log_file()
        )
    except OSError as e:
        handle_cli_error(e, _console)

    _console.print(_verification_table(results))
    print_success(_console, f"Status report generated: {path}")


@BackupApp.command("report")
def backup_report(
    html: Path = typer.Option(..., "--html", help="Where to write the HTML report"),
) -> None:
    """Render an HTML backup report."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)

    healthy = DuplicatiClient(
        settings.duplicati_url, timeout=settings.http_timeout, mock=settings.mock
    ).is_healthy()
    results = BackupVerifier(settings.backup_base_dir).verify_all(jobs)

    try:
        path = StatusReporter().write_html_report(html, results, healthy)
    except OSError as e:
        handle_cli_error(e, _console)
    print_success(_console, f"HTML report written: {path}")


@BackupApp.command("jobs")
def backup_jobs() -> None:
    """List backup job descriptors."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)

    table = Table(title="Backup Jobs", show_header=True)
    table.add_column("Job", style="cyan")
    table.add_column("Set")
    table.add_column("Schedule")
    table.add_column("Retention")
    table.add_column("Sources", style="dim")
    for job in jobs:
        table.add_row(
            job.name,
            job.backup_set + (" (+alt)" if job.mirror else ""),
            job.schedule,
            job.to_policy().describe(),
            "\n".join(job.sources),
        )
    _console.print(table)
    print_info(_console, "Import jobs into Duplicati through its web UI")


@BackupApp.command("full-maintenance")
def backup_full_maintenance(
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not delete anything"),
    enforce_budget: bool = typer.Option(False, "--enforce-budget", help="Enforce storage limits"),
) -> None:
    """Run health check, verification, cleanup and status report."""
    settings = load_settings()
    jobs = load_backup_jobs(settings, _console)
    print_info(_console, "Starting full backup maintenance...")

    healthy = _check_health(settings)

    results = BackupVerifier(settings.backup_base_dir).verify_all(jobs)
    _console.print(_verification_table(results))

    cleaner = BackupCleaner(settings.backup_base_dir, lock_file=settings.lock_file, mock=settings.mock)
    try:
        cleanup_results = cleaner.cleanup_all(jobs, dry_run=dry_run, enforce_budget=enforce_budget)
    except LockError as e:
        handle_cli_error(e, _console)
    _cleanup_summary(cleanup_results)

    try:
        path = StatusReporter().write_text_report(
            settings.backup_log_dir, results, healthy, log_file=current_log_file()
        )
    except OSError as e:
        handle_cli_error(e, _console)
    print_success(_console, f"Status report generated: {path}")

    if not healthy or any(not r.ok for r in results) or any(r.errors for r in cleanup_results):
        print_error(_console, "Full maintenance finished with problems")
        raise typer.Exit(1)
    print_success(_console, "Full maintenance completed")
