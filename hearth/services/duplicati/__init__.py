"""
Duplicati backup tooling.

Scans backup directories, evaluates retention policies, verifies integrity
and prepares restores. Backups themselves are produced by Duplicati.
"""

from .client import DuplicatiClient
from .maintenance import BackupCleaner, CleanupResult, create_directories
from .report import StatusReporter
from .restore import RestoreCandidate, RestoreError, RestoreHelper
from .scanner import scan_backup_root, scan_backup_set
from .verifier import BackupVerifier, SetVerification, validate_integrity

__all__ = [
    "DuplicatiClient",
    "BackupCleaner",
    "CleanupResult",
    "create_directories",
    "StatusReporter",
    "RestoreCandidate",
    "RestoreError",
    "RestoreHelper",
    "scan_backup_root",
    "scan_backup_set",
    "BackupVerifier",
    "SetVerification",
    "validate_integrity",
]
