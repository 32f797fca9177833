"""Read-only scans of backup directories into file metadata."""
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from hearth.core.logger import get_logger
from hearth.models.backup import BackupFile, BackupFileKind, BackupSetScan

logger = get_logger(__name__)


def scan_backup_set(path: Path, name: Optional[str] = None) -> BackupSetScan:
    """Collect name, size and mtime for every file below ``path``.

    Args:
        path: Backup set directory
        name: Set name (defaults to the directory name)

    Returns:
        BackupSetScan; ``exists`` is False when the directory is missing
    """
    path = Path(path)
    scan = BackupSetScan(name=name or path.name, path=path)

    if not path.is_dir():
        scan.exists = False
        return scan

    for file_path in sorted(p for p in path.rglob("*") if p.is_file()):
        try:
            stat = file_path.stat()
        except OSError as e:
            logger.warning(f"Cannot stat {file_path}: {e}")
            continue
        scan.files.append(
            BackupFile(
                path=file_path,
                name=file_path.name,
                size=stat.st_size,
                mtime=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                kind=BackupFileKind.from_name(file_path.name),
            )
        )

    logger.debug(f"Scanned {scan.name}: {scan.file_count} files")
    return scan


def scan_backup_root(base_dir: Path, include_mirrors: bool = True) -> List[BackupSetScan]:
    """Scan every backup set directory directly below ``base_dir``."""
    base_dir = Path(base_dir)
    if not base_dir.is_dir():
        return []

    scans = []
    for child in sorted(base_dir.iterdir()):
        if not child.is_dir():
            continue
        scan = scan_backup_set(child)
        if scan.is_mirror and not include_mirrors:
            continue
        scans.append(scan)
    return scans
