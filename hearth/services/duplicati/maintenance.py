"""Backup directory initialisation and retention cleanup."""
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from hearth.core.durations import format_size
from hearth.core.lock import maintenance_lock
from hearth.core.logger import get_logger
from hearth.core.retention import RetentionReport, Verdict, evaluate
from hearth.models.backup import BackupJob
from hearth.services.duplicati.scanner import scan_backup_set

logger = get_logger(__name__)


def create_directories(base_dir: Path, jobs: List[BackupJob], log_dir: Optional[Path] = None,
                       mock: bool = False) -> List[Path]:
    """Create every backup set directory (and its mirror) with mode 0755.

    Returns:
        Directories that were created or already existed
    """
    base_dir = Path(base_dir)
    targets = [base_dir]
    for job in jobs:
        targets.append(base_dir / job.backup_set)
        if job.mirror_set:
            targets.append(base_dir / job.mirror_set)
    if log_dir is not None:
        targets.append(Path(log_dir))

    logger.info("Creating backup directories...")
    for directory in targets:
        if mock:
            logger.info(f"MOCK: Would create {directory}")
            continue
        directory.mkdir(parents=True, exist_ok=True)
        os.chmod(directory, 0o755)

    logger.info("Backup directories created successfully")
    return targets


@dataclass
class CleanupResult:
    """What a cleanup pass removed (or would remove) from one set."""
    backup_set: str
    deleted: List[Path] = field(default_factory=list)
    freed_bytes: int = 0
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    report: Optional[RetentionReport] = None
    dry_run: bool = False


class BackupCleaner:
    """Apply retention policies by deleting expired files from plain backup sets.

    Duplicati sets share block volumes between versions, so they are never
    pruned file by file; Duplicati's own retention handles them and this
    class only reports what is past retention.
    """

    def __init__(self, base_dir: Path, lock_file: Optional[Path] = None, mock: bool = False):
        self.base_dir = Path(base_dir)
        self.lock_file = lock_file
        self.mock = mock

    def cleanup(self, job: BackupJob, now: Optional[datetime] = None, dry_run: bool = False,
                enforce_budget: bool = False) -> CleanupResult:
        now = now or datetime.now(timezone.utc)
        result = CleanupResult(backup_set=job.backup_set, dry_run=dry_run or self.mock)
        scan = scan_backup_set(self.base_dir / job.backup_set, name=job.backup_set)

        if not scan.exists:
            result.skipped.append(f"Backup directory not found: {scan.path}")
            return result

        report = evaluate(
            scan.versions(),
            job.to_policy(),
            now,
            total_bytes=scan.total_size if scan.is_duplicati else None,
        )
        result.report = report

        doomed = {Verdict.EXPIRE}
        if enforce_budget:
            doomed.add(Verdict.OVER_BUDGET)
        targets = [d for d in report.decisions if d.verdict in doomed]

        if not targets:
            return result

        if scan.is_duplicati:
            message = (
                f"{job.backup_set}: {len(targets)} version(s) past retention; "
                "Duplicati-managed set, leaving pruning to Duplicati"
            )
            logger.warning(message)
            result.skipped.append(message)
            return result

        for decision in targets:
            for raw_path in decision.version.paths:
                path = Path(raw_path)
                if result.dry_run:
                    logger.info(f"{'MOCK' if self.mock else 'DRY RUN'}: Would delete {path}")
                    result.deleted.append(path)
                    result.freed_bytes += decision.version.size
                    continue
                try:
                    path.unlink()
                except OSError as e:
                    logger.error(f"Failed to delete {path}: {e}")
                    result.errors.append(f"{path}: {e}")
                    continue
                logger.info(f"Deleted expired backup: {path}")
                result.deleted.append(path)
                result.freed_bytes += decision.version.size

        return result

    def cleanup_all(self, jobs: List[BackupJob], now: Optional[datetime] = None,
                    dry_run: bool = False, enforce_budget: bool = False,
                    timeout: int = 0) -> List[CleanupResult]:
        """Run cleanup for every job while holding the maintenance lock.

        Raises:
            LockError: If another maintenance run holds the lock
        """
        logger.info("Starting backup cleanup...")
        with maintenance_lock(timeout=timeout, lock_file=self.lock_file):
            results = [
                self.cleanup(job, now=now, dry_run=dry_run, enforce_budget=enforce_budget)
                for job in jobs
            ]
        freed = sum(r.freed_bytes for r in results)
        logger.info(f"Backup cleanup completed ({format_size(freed)} reclaimed)")
        return results
