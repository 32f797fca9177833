"""End-to-end tests for hearth commands in mock mode."""
import base64
import json
import os
from datetime import datetime, timedelta, timezone

import pytest
import yaml
from typer.testing import CliRunner

from conftest import make_certificate_pem, write_backup_file

from hearth.cli import app

runner = CliRunner()


def write_env(path, values):
    path.write_text("".join(f'{key}="{value}"\n' for key, value in values.items()))
    return path


@pytest.fixture
def config_job(hearth_env):
    """A plain archive set keeping its last three versions, with ten on disk."""
    jobs_dir = hearth_env / "jobs"
    jobs_dir.mkdir()
    (jobs_dir / "config.json").write_text(json.dumps({
        "name": "config-daily",
        "sources": ["/source/config"],
        "schedule": "0 2 * * *",
        "keep_last": 3,
        "compression": "none",
    }))

    now = datetime.now(timezone.utc)
    set_dir = hearth_env / "backups" / "config-daily"
    for days in range(10):
        stamp = now - timedelta(days=days, hours=2)
        write_backup_file(set_dir, f"config-{stamp:%Y%m%d}.tar.gz", stamp, b"x" * 100)
    return set_dir


class TestVersion:

    def test_version(self, hearth_env):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "hearth" in result.stdout


class TestBackupCommands:
    """Backup maintenance commands against a temporary backup root."""

    def test_init_with_default_jobs(self, hearth_env):
        result = runner.invoke(app, ["backup", "init"])

        assert result.exit_code == 0
        assert "4 backup job(s) valid" in result.stdout

    def test_init_rejects_invalid_descriptor(self, hearth_env):
        jobs_dir = hearth_env / "jobs"
        jobs_dir.mkdir()
        (jobs_dir / "bad.json").write_text(json.dumps({"name": "Bad Name", "sources": ["relative"]}))

        result = runner.invoke(app, ["backup", "init"])

        assert result.exit_code == 1
        assert "Invalid backup job descriptor" in result.stdout

    def test_jobs(self, hearth_env):
        result = runner.invoke(app, ["backup", "jobs"])

        assert result.exit_code == 0
        assert "Backup Jobs" in result.stdout
        assert "Import jobs into Duplicati" in result.stdout

    def test_health_in_mock_mode(self, hearth_env):
        result = runner.invoke(app, ["backup", "health"])
        assert result.exit_code == 0
        assert "Duplicati service is running" in result.stdout

    def test_verify(self, config_job):
        result = runner.invoke(app, ["backup", "verify"])

        assert result.exit_code == 0
        assert "Backup verification completed" in result.stdout

    def test_verify_missing_sets_fail(self, hearth_env):
        result = runner.invoke(app, ["backup", "verify"])

        assert result.exit_code == 1
        assert "4 of 4 backup set(s) failed" in result.stdout

    def test_evaluate(self, config_job):
        result = runner.invoke(app, ["backup", "evaluate", "config-daily"])

        assert result.exit_code == 0
        assert "3 kept, 7 expired, 0 over budget" in result.stdout

    def test_evaluate_unknown_set(self, config_job):
        result = runner.invoke(app, ["backup", "evaluate", "photos"])
        assert result.exit_code == 1
        assert "No backup job for 'photos'" in result.stdout

    def test_cleanup_dry_run(self, config_job):
        result = runner.invoke(app, ["backup", "cleanup", "--dry-run"])

        assert result.exit_code == 0
        assert "Would delete 7 file(s)" in result.stdout
        assert len(list(config_job.iterdir())) == 10

    def test_cleanup_deletes_expired(self, config_job, monkeypatch):
        monkeypatch.setenv("HEARTH_MOCK", "0")

        result = runner.invoke(app, ["backup", "cleanup"])

        assert result.exit_code == 0
        assert "Deleted 7 file(s)" in result.stdout
        assert len(list(config_job.iterdir())) == 3

    def test_status_writes_report(self, config_job, hearth_env):
        result = runner.invoke(app, ["backup", "status"])

        assert result.exit_code == 0
        reports = list((hearth_env / "logs").glob("backup-status-*.txt"))
        assert len(reports) == 1
        assert "config-daily" in reports[0].read_text()

    def test_html_report(self, config_job, hearth_env):
        target = hearth_env / "report.html"

        result = runner.invoke(app, ["backup", "report", "--html", str(target)])

        assert result.exit_code == 0
        html = target.read_text()
        assert "<html" in html
        assert "config-daily" in html


class TestRestoreCommands:

    def test_list_without_backups(self, hearth_env):
        result = runner.invoke(app, ["restore", "list"])
        assert result.exit_code == 1
        assert "No backup sets found" in result.stdout

    def test_prepare(self, config_job, hearth_env):
        result = runner.invoke(app, ["restore", "prepare", "config-daily"])

        assert result.exit_code == 0
        assert (hearth_env / "restore" / "config-daily").is_dir()

    def test_prepare_unknown_set(self, hearth_env):
        result = runner.invoke(app, ["restore", "prepare", "photos"])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_prepare_rejects_path_traversal(self, hearth_env):
        result = runner.invoke(app, ["restore", "prepare", "../../etc"])

        assert result.exit_code == 1
        assert "Invalid backup set name" in result.stdout
        assert not (hearth_env / "etc").exists()


class TestTunnelCommands:
    """Tunnel config inspection commands."""

    @pytest.fixture
    def tunnel_config(self, hearth_env, tunnel_config_text, monkeypatch):
        path = hearth_env / "config.yml"
        path.write_text(tunnel_config_text)
        monkeypatch.setenv("HEARTH_CLOUDFLARED_CONFIG", str(path))
        return path

    def test_validate(self, tunnel_config):
        result = runner.invoke(app, ["tunnel", "validate"])
        assert result.exit_code == 0
        assert "✓" in result.stdout

    def test_validate_missing_catch_all(self, tunnel_config):
        data = yaml.safe_load(tunnel_config.read_text())
        data["ingress"] = data["ingress"][:-1]
        tunnel_config.write_text(yaml.safe_dump(data))

        result = runner.invoke(app, ["tunnel", "validate"])

        assert result.exit_code == 1
        assert "catch-all" in result.stdout

    def test_validate_missing_config(self, hearth_env, monkeypatch):
        monkeypatch.setenv("HEARTH_CLOUDFLARED_CONFIG", str(hearth_env / "missing.yml"))
        result = runner.invoke(app, ["tunnel", "validate"])
        assert result.exit_code == 1
        assert "Error:" in result.stdout

    def test_route(self, tunnel_config):
        result = runner.invoke(app, ["tunnel", "route", "grafana.example.com"])

        assert result.exit_code == 0
        assert "http://grafana:3000" in result.stdout

    def test_route_catch_all(self, tunnel_config):
        result = runner.invoke(app, ["tunnel", "route", "unknown.example.org"])

        assert result.exit_code == 0
        assert "falls through to the catch-all" in result.stdout

    def test_route_refuses_invalid_config(self, tunnel_config):
        tunnel_config.write_text(tunnel_config.read_text().replace("^/api/.*", "'(['"))

        result = runner.invoke(app, ["tunnel", "route", "files.example.com", "/api/x"])

        assert result.exit_code == 1
        assert "invalid path regex" in result.stdout

    def test_dns(self, tunnel_config):
        result = runner.invoke(app, ["tunnel", "dns"])

        assert result.exit_code == 0
        assert "DNS Records" in result.stdout
        assert "proxied records" in result.stdout
        assert "*.apps.example.com needs a wildcard record" in result.stdout

    def test_info_in_mock_mode(self, tunnel_config):
        result = runner.invoke(app, ["tunnel", "info"])
        assert result.exit_code == 0
        assert "Tunnel connectivity verified" in result.stdout


class TestSslCommands:
    """acme.json commands."""

    @pytest.fixture
    def acme_file(self, hearth_env, monkeypatch):
        path = hearth_env / "acme.json"
        pem = make_certificate_pem("example.com", ["example.com"], now=datetime.now(timezone.utc))
        path.write_text(json.dumps({
            "letsencrypt": {
                "Account": {"Email": "admin@example.com"},
                "Certificates": [{
                    "domain": {"main": "example.com", "sans": []},
                    "certificate": base64.b64encode(pem).decode(),
                    "key": "",
                    "Store": "default",
                }],
            }
        }))
        os.chmod(path, 0o600)
        monkeypatch.setenv("HEARTH_ACME_JSON_PATH", str(path))
        monkeypatch.setenv("HEARTH_ACME_BACKUP_DIR", str(hearth_env / "acme-backups"))
        return path

    def test_acme(self, acme_file):
        result = runner.invoke(app, ["ssl", "acme"])

        assert result.exit_code == 0
        assert "Found 1 certificates" in result.stdout

    def test_acme_corrupted(self, acme_file):
        acme_file.write_text("{broken")

        result = runner.invoke(app, ["ssl", "acme"])

        assert result.exit_code == 1
        assert "hearth ssl repair" in result.stdout

    def test_repair_valid_store_is_noop(self, acme_file):
        result = runner.invoke(app, ["ssl", "repair"])
        assert result.exit_code == 0
        assert "no repair needed" in result.stdout

    def test_repair(self, acme_file):
        acme_file.write_text("{broken")

        result = runner.invoke(app, ["ssl", "repair", "--email", "ops@example.com", "--yes"])

        assert result.exit_code == 0
        assert json.loads(acme_file.read_text())["letsencrypt"]["Account"]["Email"] == "ops@example.com"

    def test_backup(self, acme_file, hearth_env):
        result = runner.invoke(app, ["ssl", "backup"])

        assert result.exit_code == 0
        assert len(list((hearth_env / "acme-backups").iterdir())) == 1

    def test_check_without_domain(self, hearth_env, monkeypatch):
        monkeypatch.delenv("DOMAIN", raising=False)
        monkeypatch.delenv("HEARTH_DOMAIN", raising=False)

        result = runner.invoke(app, ["ssl", "check"])

        assert result.exit_code == 1
        assert "No domain given" in result.stdout


class TestEnvCommands:
    """env check against the variable contract."""

    def test_valid(self, hearth_env, valid_env):
        path = write_env(hearth_env / ".env", valid_env)

        result = runner.invoke(app, ["env", "check", "--env-file", str(path), "--no-compose"])

        assert result.exit_code == 0
        assert "environment contract" in result.stdout

    def test_missing_domain(self, hearth_env, valid_env):
        del valid_env["DOMAIN"]
        write_env(hearth_env / ".env", valid_env)

        result = runner.invoke(app, ["env", "check", "--no-compose"])

        assert result.exit_code == 1
        assert "DOMAIN is not set" in result.stdout

    def test_compose_variables_required(self, hearth_env, valid_env, compose_dict):
        compose_dict["services"]["grafana"]["environment"]["GF_SMTP_HOST"] = "${SMTP_HOST}"
        (hearth_env / "docker-compose.yml").write_text(yaml.safe_dump(compose_dict))
        write_env(hearth_env / ".env", valid_env)

        result = runner.invoke(app, ["env", "check"])

        assert result.exit_code == 1
        assert "SMTP_HOST is referenced" in result.stdout

    def test_no_env_file(self, hearth_env):
        result = runner.invoke(app, ["env", "check"])
        assert result.exit_code == 1
        assert "No .env file found" in result.stdout


class TestStackCommands:
    """Stack commands with docker mocked out."""

    @pytest.fixture
    def stack(self, hearth_env, compose_dict, valid_env):
        (hearth_env / "docker-compose.yml").write_text(yaml.safe_dump(compose_dict))
        write_env(hearth_env / ".env", valid_env)
        return hearth_env

    def test_validate(self, stack):
        result = runner.invoke(app, ["stack", "validate"])

        assert result.exit_code == 0
        assert "Stack configuration is valid" in result.stdout

    def test_validate_reports_manifest_errors(self, stack, compose_dict):
        compose_dict["services"]["grafana"]["depends_on"] = ["ghost"]
        (stack / "docker-compose.yml").write_text(yaml.safe_dump(compose_dict))

        result = runner.invoke(app, ["stack", "validate"])

        assert result.exit_code == 1
        assert "unknown service 'ghost'" in result.stdout

    def test_setup_in_mock_mode(self, stack):
        result = runner.invoke(app, ["stack", "setup"])

        assert result.exit_code == 0
        assert "Stack is up" in result.stdout

    def test_status_in_mock_mode(self, stack):
        result = runner.invoke(app, ["stack", "status"])
        assert result.exit_code == 0
        assert "service(s) running" in result.stdout

    def test_health_in_mock_mode(self, stack):
        result = runner.invoke(app, ["stack", "health", "--attempts", "1", "--delay", "0"])

        assert result.exit_code == 0
        assert "service(s) healthy" in result.stdout


class TestFilesCommands:
    """Filebrowser administration in mock mode."""

    def test_users_add(self, hearth_env):
        result = runner.invoke(
            app,
            ["files", "users", "add", "alice", "--password", "correct-horse", "--perm", "share=true"],
        )

        assert result.exit_code == 0
        assert "User alice added with scope: /srv/users/alice" in result.stdout

    def test_users_add_prompts_for_password(self, hearth_env):
        result = runner.invoke(app, ["files", "users", "add", "alice"], input="correct-horse\ncorrect-horse\n")

        assert result.exit_code == 0
        assert "User alice added" in result.stdout

    def test_users_add_unknown_permission(self, hearth_env):
        result = runner.invoke(
            app,
            ["files", "users", "add", "alice", "--password", "correct-horse", "--perm", "root=true"],
        )

        assert result.exit_code == 1
        assert "Unknown permission 'root'" in result.stdout

    def test_users_remove(self, hearth_env):
        result = runner.invoke(app, ["files", "users", "remove", "alice"])

        assert result.exit_code == 0
        assert "User alice removed" in result.stdout

    def test_users_list(self, hearth_env):
        result = runner.invoke(app, ["files", "users", "list"])

        assert result.exit_code == 0
        assert "Current filebrowser users" in result.stdout

    def test_users_permissions(self, hearth_env):
        result = runner.invoke(app, ["files", "users", "permissions", "alice", "--perm", "delete=false"])

        assert result.exit_code == 0
        assert "Permissions updated for alice" in result.stdout

    def test_users_password(self, hearth_env):
        result = runner.invoke(app, ["files", "users", "password", "alice", "--password", "new-passphrase"])

        assert result.exit_code == 0
        assert "Password reset for alice" in result.stdout

    def test_shares_create(self, hearth_env):
        result = runner.invoke(app, ["files", "shares", "create", "/srv/shared/report.pdf", "--expires", "24h"])

        assert result.exit_code == 0
        assert "Share created for /srv/shared/report.pdf (expires in 24h)" in result.stdout

    def test_shares_create_outside_root(self, hearth_env):
        result = runner.invoke(app, ["files", "shares", "create", "/etc/passwd"])

        assert result.exit_code == 1
        assert "outside /srv" in result.stdout

    def test_shares_list_and_remove(self, hearth_env):
        listed = runner.invoke(app, ["files", "shares", "list", "--username", "alice"])
        removed = runner.invoke(app, ["files", "shares", "remove", "Ab3x9"])

        assert listed.exit_code == 0
        assert "Current file shares" in listed.stdout
        assert removed.exit_code == 0
        assert "Share Ab3x9 removed" in removed.stdout
