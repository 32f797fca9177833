"""Tests for runtime settings."""
from pathlib import Path

from hearth.core.config import HearthSettings


class TestHearthSettings:
    """Environment overrides."""

    def test_defaults(self):
        settings = HearthSettings.from_env({})
        assert settings.backup_base_dir == Path("/backups")
        assert settings.ssl_alert_days == 30
        assert settings.lock_file is None
        assert settings.mock is False

    def test_typed_overrides(self):
        settings = HearthSettings.from_env({
            "HEARTH_BACKUP_BASE_DIR": "/mnt/backups",
            "HEARTH_SSL_ALERT_DAYS": "14",
            "HEARTH_HEALTH_DELAY": "0.5",
            "HEARTH_MOCK": "true",
            "HEARTH_LOCK_FILE": "/tmp/m.lock",
            "HEARTH_DUPLICATI_URL": "http://nas:8200",
        })

        assert settings.backup_base_dir == Path("/mnt/backups")
        assert settings.ssl_alert_days == 14
        assert settings.health_delay == 0.5
        assert settings.mock is True
        assert settings.lock_file == Path("/tmp/m.lock")
        assert settings.duplicati_url == "http://nas:8200"

    def test_empty_values_ignored(self):
        settings = HearthSettings.from_env({"HEARTH_SSL_ALERT_DAYS": ""})
        assert settings.ssl_alert_days == 30

    def test_domain_falls_back_to_stack_variables(self):
        settings = HearthSettings.from_env({"DOMAIN": "example.com", "ACME_EMAIL": "a@example.com"})
        assert settings.domain == "example.com"
        assert settings.acme_email == "a@example.com"

    def test_resolve(self):
        settings = HearthSettings.from_env({"HEARTH_PROJECT_DIR": "/srv/stack"})
        assert settings.resolve(Path("docker-compose.yml")) == Path("/srv/stack/docker-compose.yml")
        assert settings.resolve(Path("/etc/compose.yml")) == Path("/etc/compose.yml")
