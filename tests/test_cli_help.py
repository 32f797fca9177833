"""Snapshot tests for CLI help output."""
from typer.testing import CliRunner

from hearth import __version__
from hearth.cli import app

runner = CliRunner()


class TestMainHelp:
    """Test main CLI help output."""

    def test_main_help(self):
        """Main help shows the description, quick start and command groups."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        output = result.stdout

        assert "hearth - Operations toolkit for a Docker Compose homelab" in output
        assert "hearth env check" in output
        assert "hearth backup verify" in output

        for group in ("backup", "restore", "tunnel", "ssl", "stack", "env", "files", "version"):
            assert group in output

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"hearth {__version__}" in result.stdout


class TestBackupHelp:
    """Test backup command group help output."""

    def test_backup_help(self):
        result = runner.invoke(app, ["backup", "--help"])

        assert result.exit_code == 0
        output = result.stdout
        for command in ("init", "health", "verify", "evaluate", "cleanup", "status", "report",
                        "jobs", "full-maintenance"):
            assert command in output

    def test_cleanup_help(self):
        """Cleanup documents dry-run and budget enforcement."""
        result = runner.invoke(app, ["backup", "cleanup", "--help"])

        assert result.exit_code == 0
        assert "--dry-run" in result.stdout
        assert "--enforce-budget" in result.stdout
        assert "--timeout" in result.stdout


class TestRestoreHelp:

    def test_restore_help(self):
        result = runner.invoke(app, ["restore", "--help"])

        assert result.exit_code == 0
        for command in ("list", "validate", "prepare", "instructions", "wizard"):
            assert command in result.stdout


class TestTunnelHelp:
    """Test tunnel command group help output."""

    def test_tunnel_help(self):
        result = runner.invoke(app, ["tunnel", "--help"])

        assert result.exit_code == 0
        for command in ("status", "health", "metrics", "validate", "route", "dns", "create",
                        "list", "info", "reconnect"):
            assert command in result.stdout

    def test_health_help(self):
        result = runner.invoke(app, ["tunnel", "health", "--help"])
        assert result.exit_code == 0
        assert "--quick" in result.stdout


class TestSslHelp:

    def test_ssl_help(self):
        result = runner.invoke(app, ["ssl", "--help"])

        assert result.exit_code == 0
        for command in ("check", "acme", "backup", "repair", "renew"):
            assert command in result.stdout

    def test_check_help(self):
        result = runner.invoke(app, ["ssl", "check", "--help"])
        assert result.exit_code == 0
        assert "--domain" in result.stdout


class TestStackAndEnvHelp:

    def test_stack_help(self):
        result = runner.invoke(app, ["stack", "--help"])

        assert result.exit_code == 0
        for command in ("validate", "setup", "status", "logs", "restart", "health"):
            assert command in result.stdout

    def test_env_check_help(self):
        result = runner.invoke(app, ["env", "check", "--help"])

        assert result.exit_code == 0
        assert "--env-file" in result.stdout
        assert "--no-compose" in result.stdout


class TestFilesHelp:

    def test_files_help(self):
        result = runner.invoke(app, ["files", "--help"])

        assert result.exit_code == 0
        assert "users" in result.stdout
        assert "shares" in result.stdout

    def test_users_help(self):
        result = runner.invoke(app, ["files", "users", "--help"])

        assert result.exit_code == 0
        for command in ("add", "remove", "list", "permissions", "password"):
            assert command in result.stdout
