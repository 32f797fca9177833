"""Restore preparation for Duplicati backup sets.

The restore itself happens in the Duplicati web UI; this module finds
restorable sets, validates them, prepares a target directory and writes
step-by-step instructions.
"""
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from hearth.core.durations import format_size
from hearth.core.logger import get_logger
from hearth.models.backup import SLUG, BackupSetScan
from hearth.services.duplicati.scanner import scan_backup_root, scan_backup_set
from hearth.services.duplicati.verifier import IntegrityResult, validate_integrity

logger = get_logger(__name__)

DUPLICATI_DOCS = "https://duplicati.readthedocs.io/"


class RestoreError(Exception):
    """Raised when a backup set cannot be prepared for restore."""
    pass


@dataclass
class RestoreCandidate:
    """A backup set that can be restored from."""
    name: str
    archive_count: int
    latest: Optional[datetime]


def _archive_count(scan: BackupSetScan) -> int:
    return sum(1 for f in scan.files if f.name.endswith(".zip") or ".dblock" in f.name)


class RestoreHelper:
    """Guide restores out of the backup root."""

    def __init__(self, backup_base_dir: Path, restore_base_dir: Path,
                 duplicati_url: str = "http://localhost:8200",
                 log_dir: Path = Path("/var/log/duplicati")):
        self.backup_base_dir = Path(backup_base_dir)
        self.restore_base_dir = Path(restore_base_dir)
        self.duplicati_url = duplicati_url
        self.log_dir = Path(log_dir)

    def _set_dir(self, backup_set: str) -> Path:
        """Directory of ``backup_set`` under the backup root.

        Raises:
            RestoreError: If the name is not a backup set slug
        """
        if not SLUG.fullmatch(backup_set or ""):
            raise RestoreError(
                f"Invalid backup set name '{backup_set}': use lowercase letters, digits and hyphens"
            )
        return self.backup_base_dir / backup_set

    def list_sets(self) -> List[RestoreCandidate]:
        """List restorable sets; ``-alt`` mirrors are excluded."""
        candidates = []
        for scan in scan_backup_root(self.backup_base_dir, include_mirrors=False):
            newest = scan.newest
            candidates.append(
                RestoreCandidate(
                    name=scan.name,
                    archive_count=_archive_count(scan),
                    latest=newest.mtime if newest else None,
                )
            )
        return candidates

    def validate(self, backup_set: str) -> IntegrityResult:
        logger.info(f"Validating backup integrity for: {backup_set}")
        result = validate_integrity(scan_backup_set(self._set_dir(backup_set)))
        if result.ok:
            logger.info(f"Found {result.volume_count} backup files in {backup_set}")
        else:
            for error in result.errors:
                logger.error(error)
            if result.corrupted:
                logger.warning(f"Found {len(result.corrupted)} potentially corrupted files")
        return result

    def prepare(self, backup_set: str) -> Path:
        """Create the restore staging directory for ``backup_set``.

        Raises:
            RestoreError: If the name is invalid or the backup set does not exist
        """
        logger.info(f"Preparing restore environment for backup set: {backup_set}")
        if not self._set_dir(backup_set).is_dir():
            raise RestoreError(f"Backup set '{backup_set}' not found")

        target = self.restore_base_dir / backup_set
        target.mkdir(parents=True, exist_ok=True)
        os.chmod(target, 0o755)
        logger.info(f"Restore environment prepared at: {target}")
        return target

    def instructions(self, backup_set: str, target_path: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        scan = scan_backup_set(self._set_dir(backup_set))

        lines = [
            "Duplicati Restore Instructions",
            "==============================",
            f"Backup Set: {backup_set}",
            f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}",
            f"Target Path: {target_path}",
            "",
            "Prerequisites:",
            "1. Ensure Duplicati service is running",
            "2. Verify backup integrity before restore (hearth restore validate)",
            "3. Stop related services if restoring active data",
            "",
            "Restore Steps:",
            f"1. Access Duplicati web interface at: {self.duplicati_url}",
            "2. Navigate to 'Restore' section",
            f"3. Select backup configuration for: {backup_set}",
            "4. Choose restore point (latest or specific date)",
            "5. Select files/folders to restore",
            f"6. Set restore destination: {target_path}",
            "7. Enter backup passphrase when prompted",
            "8. Start restore operation",
            "",
            "Post-Restore Steps:",
            "1. Verify restored files integrity",
            "2. Update file permissions if necessary",
            "3. Restart affected services",
            "4. Test application functionality",
            "",
            "Backup Set Details:",
            f"Source Path: {scan.path}",
        ]
        if scan.exists:
            newest = scan.newest
            lines += [
                f"Backup Files: {scan.file_count}",
                f"Total Size: {format_size(scan.total_size)}",
                f"Latest File: {newest.name} ({newest.mtime:%Y-%m-%d %H:%M:%S %Z})" if newest else "Latest File: none",
            ]
        lines += [
            "",
            "Emergency Contact Information:",
            f"- Check logs at: {self.log_dir}/",
            "- Backup maintenance: hearth backup --help",
            f"- Duplicati documentation: {DUPLICATI_DOCS}",
        ]
        return "\n".join(lines) + "\n"

    def write_instructions(self, backup_set: str, target_path: str,
                           now: Optional[datetime] = None) -> Path:
        now = now or datetime.now()
        self.restore_base_dir.mkdir(parents=True, exist_ok=True)
        path = self.restore_base_dir / f"restore-instructions-{backup_set}-{now.strftime('%Y%m%d-%H%M%S')}.txt"
        path.write_text(self.instructions(backup_set, target_path, now))
        logger.info(f"Restore instructions generated: {path}")
        return path
