"""hearth runtime configuration and settings."""
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HearthSettings:
    """Runtime configuration for hearth operations.

    Defaults mirror the paths used inside the stack's containers. Every field
    can be overridden with an upper-cased ``HEARTH_`` environment variable,
    e.g. ``HEARTH_BACKUP_BASE_DIR=/mnt/backups``.
    """

    # Stack layout
    project_dir: Path = Path(".")
    compose_file: Path = Path("docker-compose.yml")
    domain: Optional[str] = None
    acme_email: Optional[str] = None

    # Duplicati
    duplicati_url: str = "http://localhost:8200"
    backup_base_dir: Path = Path("/backups")
    backup_log_dir: Path = Path("/var/log/duplicati")
    backup_jobs_dir: Path = Path("/config/backup-jobs")
    restore_base_dir: Path = Path("/tmp/duplicati-restore")
    lock_file: Optional[Path] = None

    # Cloudflare tunnel
    cloudflared_config: Path = Path("config/cloudflared/config.yml")
    cloudflared_credentials: Path = Path("config/cloudflared/credentials.json")
    cloudflared_log: Path = Path("/var/log/cloudflared.log")
    cloudflared_metrics_url: str = "http://localhost:8080/metrics"
    cloudflared_container: str = "cloudflared"
    cloudflared_home: Path = field(default_factory=lambda: Path.home() / ".cloudflared")
    edge_url: str = "https://www.cloudflare.com"

    # Traefik / TLS
    traefik_container: str = "traefik"
    traefik_ping_url: str = "http://localhost:8080/ping"
    acme_json_path: Path = Path("data/traefik/letsencrypt/acme.json")
    acme_backup_dir: Path = Path("data/traefik/letsencrypt/backups")
    acme_resolver: str = "letsencrypt"
    ssl_alert_days: int = 30
    ssl_critical_days: int = 7

    # Filebrowser
    filebrowser_container: str = "filebrowser"
    filebrowser_database: str = "/database/filebrowser.db"
    filebrowser_root: str = "/srv"

    # Timeouts and polling
    http_timeout: int = 10
    health_attempts: int = 30
    health_delay: float = 2.0
    mock: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HearthSettings":
        """Create settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            HearthSettings instance with values from environment or defaults
        """
        env = os.environ if environ is None else environ
        settings = cls()

        for f in fields(cls):
            raw = env.get(f"HEARTH_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            current = getattr(settings, f.name)
            if isinstance(current, bool) or f.name == "mock":
                value = _as_bool(raw)
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, float):
                value = float(raw)
            elif isinstance(current, Path) or f.name == "lock_file":
                value = Path(raw)
            else:
                value = raw
            setattr(settings, f.name, value)

        if settings.domain is None and env.get("DOMAIN"):
            settings.domain = env["DOMAIN"]
        if settings.acme_email is None and env.get("ACME_EMAIL"):
            settings.acme_email = env["ACME_EMAIL"]

        return settings

    def resolve(self, path: Path) -> Path:
        """Resolve a relative stack path against the project directory."""
        path = Path(path)
        return path if path.is_absolute() else self.project_dir / path
