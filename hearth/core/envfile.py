"""The stack's ``.env`` contract."""
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import dotenv_values

from hearth.core.cron import is_valid_cron
from hearth.core.durations import DurationError, parse_go_duration, parse_prometheus_duration

REQUIRED_VARIABLES = ("DOMAIN", "ACME_EMAIL", "TZ")
PASSWORD_VARIABLES = ("GRAFANA_ADMIN_PASSWORD",)
MIN_PASSWORD_LENGTH = 12

DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,63}$"
)
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PLACEHOLDER_PATTERN = re.compile(r"^(changeme|change-me|your[-_].*|YOUR_.*|example|xxx+)$", re.IGNORECASE)


@dataclass
class EnvValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def has_errors(self) -> bool:
        return bool(self.errors)


def load_env_file(path: Path) -> Dict[str, Optional[str]]:
    """Read a ``.env`` file without touching ``os.environ``.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Environment file not found: {path}")
    return dict(dotenv_values(path))


def validate_env(env: Mapping[str, Optional[str]], required_extra: Iterable[str] = ()) -> EnvValidation:
    """Check ``env`` against the stack's variable contract.

    Args:
        env: Parsed variables (e.g. from :func:`load_env_file`)
        required_extra: Further names that must be set, typically the
            compose manifest's ``required_variables()``
    """
    result = EnvValidation()

    def value(name: str) -> str:
        return (env.get(name) or "").strip()

    for name in REQUIRED_VARIABLES:
        if not value(name):
            result.errors.append(f"{name} is not set")

    domain = value("DOMAIN")
    if domain and not DOMAIN_PATTERN.match(domain):
        result.errors.append(f"DOMAIN '{domain}' is not a valid domain name")

    email = value("ACME_EMAIL")
    if email and not EMAIL_PATTERN.match(email):
        result.errors.append(f"ACME_EMAIL '{email}' is not a valid email address")

    tz = value("TZ")
    if tz:
        try:
            ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            result.warnings.append(f"TZ '{tz}' is not a known time zone")

    if not value("CLOUDFLARE_TUNNEL_TOKEN") and not (
        value("CLOUDFLARE_TUNNEL_ID") and value("CLOUDFLARE_ACCOUNT_TAG")
    ):
        result.errors.append(
            "Set CLOUDFLARE_TUNNEL_TOKEN, or both CLOUDFLARE_TUNNEL_ID and CLOUDFLARE_ACCOUNT_TAG"
        )

    for name in PASSWORD_VARIABLES:
        password = value(name)
        if not password:
            result.errors.append(f"{name} is not set")
        elif len(password) < MIN_PASSWORD_LENGTH and not PLACEHOLDER_PATTERN.match(password):
            result.warnings.append(f"{name} is shorter than {MIN_PASSWORD_LENGTH} characters")

    schedule = value("BACKUP_SCHEDULE")
    if schedule and not is_valid_cron(schedule):
        result.errors.append(f"BACKUP_SCHEDULE '{schedule}' is not a valid cron expression")

    retention = value("PROMETHEUS_RETENTION")
    if retention:
        try:
            parse_prometheus_duration(retention)
        except DurationError:
            result.errors.append(f"PROMETHEUS_RETENTION '{retention}' is not a valid duration")

    grace = value("TUNNEL_GRACE_PERIOD")
    if grace:
        try:
            parse_go_duration(grace)
        except DurationError:
            result.errors.append(f"TUNNEL_GRACE_PERIOD '{grace}' is not a valid duration")

    retries = value("TUNNEL_RETRIES")
    if retries and not retries.isdigit():
        result.errors.append(f"TUNNEL_RETRIES '{retries}' must be a non-negative integer")

    for name in sorted(set(required_extra)):
        if name in REQUIRED_VARIABLES or name in PASSWORD_VARIABLES:
            continue
        if not value(name):
            result.errors.append(f"{name} is referenced by the compose file but not set")

    for name, raw in sorted(env.items()):
        if raw and PLACEHOLDER_PATTERN.match(raw.strip()):
            result.warnings.append(f"{name} still has a placeholder value")

    return result
