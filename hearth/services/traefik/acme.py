"""Traefik ACME storage (acme.json) management."""
import base64
import binascii
import json
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from hearth.core.logger import get_logger
from hearth.services.traefik.certificates import CertificateInfo, load_pem_certificate

logger = get_logger(__name__)

BACKUP_PREFIX = "acme.json."
PLACEHOLDER_ACCOUNT_URI = "https://acme-v02.api.letsencrypt.org/acme/acct/placeholder"


class AcmeStoreError(Exception):
    """Raised when acme.json cannot be read or rewritten."""
    pass


@dataclass
class AcmeValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class StoredCertificate:
    """A certificate entry from acme.json."""
    domain: str
    sans: List[str]
    info: Optional[CertificateInfo] = None
    error: Optional[str] = None

    @property
    def not_after(self) -> Optional[datetime]:
        return self.info.not_after if self.info else None


def minimal_store(resolver: str, email: str) -> Dict[str, Any]:
    return {
        resolver: {
            "Account": {
                "Email": email,
                "Registration": {
                    "body": {"status": "valid", "contact": [f"mailto:{email}"]},
                    "uri": PLACEHOLDER_ACCOUNT_URI,
                },
            },
            "Certificates": [],
            "HTTPChallenges": {},
            "TLSChallenges": {},
        }
    }


class AcmeStore:
    """Read and maintain Traefik's acme.json for one certificate resolver."""

    def __init__(self, path: Path, resolver: str = "letsencrypt"):
        self.path = Path(path)
        self.resolver = resolver

    def load(self) -> Dict[str, Any]:
        """Load the raw store.

        Raises:
            AcmeStoreError: If the file is missing or not JSON
        """
        if not self.path.exists():
            raise AcmeStoreError(f"ACME JSON file not found at {self.path}")
        try:
            data = json.loads(self.path.read_text() or "null")
        except (OSError, json.JSONDecodeError) as e:
            raise AcmeStoreError(f"Invalid JSON in {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise AcmeStoreError(f"{self.path} does not contain a JSON object")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2) + "\n")
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)

    def validate(self) -> AcmeValidation:
        result = AcmeValidation()
        try:
            data = self.load()
        except AcmeStoreError as e:
            result.errors.append(str(e))
            return result

        section = data.get(self.resolver)
        if not isinstance(section, dict):
            result.errors.append(f"ACME JSON missing '{self.resolver}' section")
            return result

        if not section.get("Account"):
            result.warnings.append("No ACME account registered yet")
        if not section.get("Certificates"):
            result.warnings.append("No certificates found in ACME storage")

        mode = self.path.stat().st_mode & 0o777
        if mode & 0o077:
            result.warnings.append(f"{self.path} is mode {mode:o}; Traefik requires 600")
        return result

    def _entries(self) -> List[Dict[str, Any]]:
        section = self.load().get(self.resolver) or {}
        return list(section.get("Certificates") or [])

    def certificates(self) -> List[StoredCertificate]:
        """Certificates stored for the resolver, with expiry decoded."""
        stored = []
        for entry in self._entries():
            domain = entry.get("domain") or {}
            cert = StoredCertificate(
                domain=domain.get("main", ""),
                sans=list(domain.get("sans") or []),
            )
            try:
                pem = base64.b64decode(entry.get("certificate") or "", validate=True)
                cert.info = load_pem_certificate(pem)
            except (binascii.Error, ValueError) as e:
                cert.error = f"Cannot decode certificate: {e}"
            stored.append(cert)
        return stored

    def backup(self, backup_dir: Path, keep: int = 10, now: Optional[datetime] = None) -> Optional[Path]:
        """Copy acme.json to ``backup_dir`` and keep only the newest ``keep`` copies."""
        if not self.path.exists():
            logger.warning(f"ACME JSON file not found at {self.path}, nothing to back up")
            return None

        now = now or datetime.now()
        backup_dir = Path(backup_dir)
        backup_dir.mkdir(parents=True, exist_ok=True)
        target = backup_dir / f"{BACKUP_PREFIX}{now.strftime('%Y%m%d_%H%M%S')}"
        shutil.copyfile(self.path, target)
        os.chmod(target, 0o600)
        logger.info(f"ACME JSON backed up to: {target}")

        backups = sorted(backup_dir.glob(f"{BACKUP_PREFIX}*"), reverse=True)
        for old in backups[keep:]:
            old.unlink()
            logger.debug(f"Rotated old ACME backup {old}")
        return target

    def repair(self, email: str) -> Path:
        """Replace a corrupted store with a minimal valid one.

        The previous file is kept as ``acme.json.corrupted.<epoch>``.
        """
        logger.warning("Attempting to repair corrupted ACME JSON file")
        if self.path.exists():
            preserved = self.path.with_name(f"{self.path.name}.corrupted.{int(time.time())}")
            shutil.copyfile(self.path, preserved)
            os.chmod(preserved, 0o600)
        self._write(minimal_store(self.resolver, email))
        logger.info("ACME JSON file repaired with minimal structure")
        return self.path

    def remove_certificate(self, domain: str) -> bool:
        """Drop ``domain``'s certificate so Traefik requests a new one.

        Returns:
            True if an entry was removed
        """
        data = self.load()
        section = data.get(self.resolver)
        if not isinstance(section, dict):
            raise AcmeStoreError(f"ACME JSON missing '{self.resolver}' section")

        entries = section.get("Certificates") or []
        kept = [e for e in entries if (e.get("domain") or {}).get("main") != domain]
        if len(kept) == len(entries):
            logger.info(f"No certificate for {domain} in ACME storage")
            return False

        section["Certificates"] = kept
        self._write(data)
        logger.info(f"Removed certificate entry for {domain}")
        return True

    def has_certificate(self, domain: str) -> bool:
        try:
            return any(c.domain == domain for c in self.certificates())
        except AcmeStoreError:
            return False
