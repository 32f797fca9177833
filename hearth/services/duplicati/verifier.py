"""Backup verification: presence, freshness, integrity and retention compliance."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from hearth.core.cron import CronError
from hearth.core.durations import format_age, format_size
from hearth.core.logger import get_logger
from hearth.core.retention import RetentionReport, bucket_counts, evaluate
from hearth.models.backup import BackupFile, BackupFileKind, BackupJob, BackupSetScan
from hearth.models.health import CheckStatus
from hearth.services.duplicati.scanner import scan_backup_set

logger = get_logger(__name__)

ZIP_MAGIC = (b"PK\x03\x04", b"PK\x05\x06")
AES_MAGIC = b"AES"


def is_corrupt_volume(backup_file: BackupFile) -> bool:
    """Heuristic integrity check for a Duplicati dblock volume."""
    if backup_file.size == 0:
        return True
    try:
        with open(backup_file.path, "rb") as f:
            header = f.read(4)
    except OSError as e:
        logger.warning(f"Cannot read {backup_file.path}: {e}")
        return True

    if backup_file.encrypted:
        return not header.startswith(AES_MAGIC)
    return not header.startswith(ZIP_MAGIC)


@dataclass
class IntegrityResult:
    """Outcome of validating the files of one backup set."""
    volume_count: int = 0
    corrupted: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.corrupted


def validate_integrity(scan: BackupSetScan) -> IntegrityResult:
    """Check a set has Duplicati volumes and that none of its dblocks look corrupt."""
    result = IntegrityResult()

    if not scan.exists:
        result.errors.append(f"Backup path not found: {scan.path}")
        return result

    volumes = [f for f in scan.files if f.kind != BackupFileKind.OTHER]
    result.volume_count = len(volumes)
    if not volumes:
        result.errors.append(f"No backup files found in {scan.path}")
        return result

    for volume in scan.files_of(BackupFileKind.DBLOCK):
        if is_corrupt_volume(volume):
            logger.warning(f"Potentially corrupted file: {volume.path}")
            result.corrupted.append(volume.path)

    return result


@dataclass
class SetVerification:
    """Verification outcome for one backup job's set."""
    job: BackupJob
    scan: BackupSetScan
    status: CheckStatus = CheckStatus.OK
    issues: List[str] = field(default_factory=list)
    retention: Optional[RetentionReport] = None
    age_buckets: Dict[str, int] = field(default_factory=dict)
    newest_age: Optional[str] = None
    mirror_scan: Optional[BackupSetScan] = None

    def fail(self, message: str) -> None:
        self.status = CheckStatus.FAIL
        self.issues.append(message)

    def warn(self, message: str) -> None:
        if self.status == CheckStatus.OK:
            self.status = CheckStatus.WARN
        self.issues.append(message)

    @property
    def ok(self) -> bool:
        return self.status != CheckStatus.FAIL

    def summary(self) -> str:
        if not self.scan.exists:
            return "missing"
        return f"{self.scan.file_count} files, {format_size(self.scan.total_size)} total size"


class BackupVerifier:
    """Verify backup sets below a base directory against their job descriptors."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def verify_job(self, job: BackupJob, now: Optional[datetime] = None) -> SetVerification:
        now = now or datetime.now(timezone.utc)
        scan = scan_backup_set(self.base_dir / job.backup_set, name=job.backup_set)
        result = SetVerification(job=job, scan=scan)

        if not scan.exists:
            result.fail(f"Backup directory not found: {scan.path}")
            logger.warning(f"Backup directory not found: {job.backup_set}")
            return result

        if not scan.files:
            result.fail("Backup directory is empty")
            return result

        result.age_buckets = bucket_counts((f.mtime for f in scan.files), now)

        newest = scan.newest
        age = now - newest.mtime
        result.newest_age = format_age(age)
        try:
            window = job.freshness_window(now)
        except CronError as e:
            result.fail(f"Cannot compute freshness window: {e}")
            return result
        if age > window:
            result.fail(
                f"Stale: newest file is {format_age(age)} old (window {format_age(window)})"
            )

        if scan.is_duplicati:
            self._check_duplicati(scan, result)

        if job.mirror_set:
            self._check_mirror(job, scan, result)

        report = evaluate(
            scan.versions(),
            job.to_policy(),
            now,
            total_bytes=scan.total_size if scan.is_duplicati else None,
        )
        result.retention = report
        if report.expired:
            result.warn(f"{len(report.expired)} version(s) past retention")
        if report.over_budget:
            result.warn(
                f"Over storage limit: {format_size(report.total_bytes)} used of "
                f"{format_size(report.storage_limit)}"
            )
        for warning in report.warnings:
            result.warn(warning)

        logger.info(f"Backup {job.backup_set}: {result.summary()}")
        return result

    def _check_duplicati(self, scan: BackupSetScan, result: SetVerification) -> None:
        for kind in (BackupFileKind.DLIST, BackupFileKind.DINDEX, BackupFileKind.DBLOCK):
            if not scan.files_of(kind):
                result.fail(f"No {kind.value} files present")

        integrity = validate_integrity(scan)
        if integrity.corrupted:
            result.fail(f"{len(integrity.corrupted)} potentially corrupted dblock file(s)")

    def _check_mirror(self, job: BackupJob, scan: BackupSetScan, result: SetVerification) -> None:
        mirror = scan_backup_set(self.base_dir / job.mirror_set, name=job.mirror_set)
        result.mirror_scan = mirror
        if not mirror.exists:
            result.warn(f"Mirror directory not found: {job.mirror_set}")
            return

        primary_names = {f.path.relative_to(scan.path) for f in scan.files}
        mirror_names = {f.path.relative_to(mirror.path) for f in mirror.files}
        missing = primary_names - mirror_names
        if missing:
            result.warn(f"Mirror {job.mirror_set} is missing {len(missing)} file(s)")

    def verify_all(self, jobs: List[BackupJob], now: Optional[datetime] = None) -> List[SetVerification]:
        logger.info("Starting backup verification...")
        now = now or datetime.now(timezone.utc)
        results = [self.verify_job(job, now) for job in jobs]
        logger.info("Backup verification completed")
        return results
