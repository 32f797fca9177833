"""Data models for hearth."""
from hearth.models.backup import (
    DEFAULT_JOBS,
    BackupFile,
    BackupFileKind,
    BackupJob,
    BackupSetScan,
    load_jobs,
)
from hearth.models.health import CheckResult, CheckStatus, HealthReport

__all__ = [
    'DEFAULT_JOBS',
    'BackupFile',
    'BackupFileKind',
    'BackupJob',
    'BackupSetScan',
    'load_jobs',
    'CheckResult',
    'CheckStatus',
    'HealthReport',
]
