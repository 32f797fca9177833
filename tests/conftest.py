"""Shared test fixtures for hearth tests."""
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def write_backup_file(directory: Path, name: str, mtime: datetime, content: bytes = b"PK\x03\x04data") -> Path:
    """Write one backup file and set its mtime."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(content)
    stamp = mtime.timestamp()
    os.utime(path, (stamp, stamp))
    return path


def dlist_name(timestamp: datetime) -> str:
    return f"duplicati-{timestamp.strftime('%Y%m%dT%H%M%SZ')}.dlist.zip"


@pytest.fixture
def now():
    """Fixed reference time for retention and freshness checks."""
    return NOW


@pytest.fixture
def backup_root(tmp_path):
    """Empty backup base directory."""
    root = tmp_path / "backups"
    root.mkdir()
    return root


@pytest.fixture
def duplicati_set(backup_root):
    """A healthy Duplicati set with one version per day for five days."""
    set_dir = backup_root / "critical-daily"
    for days in range(5):
        stamp = NOW - timedelta(days=days, hours=1)
        write_backup_file(set_dir, dlist_name(stamp), stamp)
        write_backup_file(set_dir, f"duplicati-b{days:04d}.dblock.zip", stamp)
        write_backup_file(set_dir, f"duplicati-i{days:04d}.dindex.zip", stamp)
    return set_dir


@pytest.fixture
def plain_set(backup_root):
    """A plain archive set with one file per day for ten days."""
    set_dir = backup_root / "config-daily"
    for days in range(10):
        stamp = NOW - timedelta(days=days, hours=2)
        write_backup_file(set_dir, f"config-{stamp:%Y%m%d}.tar.gz", stamp, b"x" * 100)
    return set_dir


@pytest.fixture
def tunnel_config_text():
    """Valid cloudflared config with a catch-all rule."""
    return """\
tunnel: 6ff42ae2-765d-4adf-8112-31c55c1551ef
credentials-file: /etc/cloudflared/credentials.json
metrics: 0.0.0.0:8080
originRequest:
  connectTimeout: 30s
  tcpKeepAlive: 30s
ingress:
  - hostname: grafana.example.com
    service: http://grafana:3000
  - hostname: "*.apps.example.com"
    service: http://traefik:80
  - hostname: files.example.com
    path: ^/api/.*
    service: http://filebrowser:80
  - service: http_status:404
"""


@pytest.fixture
def compose_dict():
    """Compose manifest with networks, volumes and healthchecks."""
    return {
        "services": {
            "traefik": {
                "image": "traefik:v3.0",
                "ports": ["80:80", "443:443"],
                "networks": ["frontend"],
                "healthcheck": {
                    "test": ["CMD", "traefik", "healthcheck", "--ping"],
                    "interval": "30s",
                    "timeout": "10s",
                    "retries": 3,
                },
            },
            "grafana": {
                "image": "grafana/grafana:10.4.0",
                "ports": ["3000:3000"],
                "environment": {
                    "GF_SECURITY_ADMIN_PASSWORD": "${GRAFANA_ADMIN_PASSWORD:?set a password}",
                    "GF_SERVER_ROOT_URL": "https://grafana.${DOMAIN}",
                },
                "networks": ["frontend", "backend"],
                "volumes": ["grafana_data:/var/lib/grafana"],
                "depends_on": {"prometheus": {"condition": "service_healthy"}},
                "healthcheck": {
                    "test": ["CMD-SHELL", "wget -q --spider http://localhost:3000/api/health"],
                    "interval": "30s",
                },
            },
            "prometheus": {
                "image": "prom/prometheus:v2.51.0",
                "networks": {"backend": {"ipv4_address": "172.21.0.10"}},
                "volumes": ["prometheus_data:/prometheus"],
                "healthcheck": {
                    "test": ["CMD", "wget", "-q", "--spider", "http://localhost:9090/-/healthy"],
                    "interval": "30s",
                },
            },
            "cloudflared": {
                "image": "cloudflare/cloudflared:latest",
                "environment": ["TUNNEL_TOKEN=${CLOUDFLARE_TUNNEL_TOKEN:-}"],
                "networks": ["frontend"],
            },
        },
        "networks": {
            "frontend": {"ipam": {"config": [{"subnet": "172.20.0.0/24", "gateway": "172.20.0.1"}]}},
            "backend": {
                "internal": True,
                "ipam": {"config": [{"subnet": "172.21.0.0/24"}]},
            },
        },
        "volumes": {"grafana_data": {}, "prometheus_data": {}},
    }


@pytest.fixture
def valid_env():
    """Environment that satisfies the stack's contract."""
    return {
        "DOMAIN": "example.com",
        "ACME_EMAIL": "admin@example.com",
        "TZ": "Europe/Stockholm",
        "CLOUDFLARE_TUNNEL_TOKEN": "eyJhIjoiYWJjIn0",
        "GRAFANA_ADMIN_PASSWORD": "correct-horse-battery",
        "BACKUP_SCHEDULE": "0 2 * * *",
        "PROMETHEUS_RETENTION": "15d",
    }


@pytest.fixture
def hearth_env(monkeypatch, tmp_path):
    """Point every hearth path setting into tmp_path and enable mock mode."""
    monkeypatch.setenv("HEARTH_MOCK", "1")
    monkeypatch.setenv("HEARTH_PROJECT_DIR", str(tmp_path))
    monkeypatch.setenv("HEARTH_BACKUP_BASE_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("HEARTH_BACKUP_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("HEARTH_BACKUP_JOBS_DIR", str(tmp_path / "jobs"))
    monkeypatch.setenv("HEARTH_RESTORE_BASE_DIR", str(tmp_path / "restore"))
    monkeypatch.setenv("HEARTH_LOCK_FILE", str(tmp_path / "maintenance.lock"))
    monkeypatch.setenv("HEARTH_CLOUDFLARED_HOME", str(tmp_path / "cloudflared-home"))
    monkeypatch.setenv("HEARTH_CLOUDFLARED_LOG", str(tmp_path / "cloudflared.log"))
    monkeypatch.delenv("HEARTH_ENV_FILE", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def make_certificate_pem(common_name: str, sans=(), days_valid: int = 90, now: datetime = NOW) -> bytes:
    """Self-signed PEM certificate valid from one day before ``now``."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days_valid))
    )
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(san) for san in sans]), critical=False
        )
    cert = builder.sign(key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM)
