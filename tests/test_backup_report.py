"""Tests for backup status reports."""
from conftest import NOW

from hearth.models.backup import BackupJob
from hearth.services.duplicati import BackupVerifier, StatusReporter
from hearth.services.duplicati.report import tail_lines


def verify(backup_root, *jobs):
    return BackupVerifier(backup_root).verify_all(list(jobs), NOW)


def critical_job():
    return BackupJob(name="critical-data-daily", backup_set="critical-daily", sources=["/source/data"],
                     description="Application data")


class TestTailLines:

    def test_last_lines(self, tmp_path):
        log = tmp_path / "backup.log"
        log.write_text("\n".join(f"line {i}" for i in range(50)) + "\n")
        assert tail_lines(log, 3) == ["line 47", "line 48", "line 49"]

    def test_missing_file(self, tmp_path):
        assert tail_lines(tmp_path / "nope.log") == []
        assert tail_lines(None) == []


class TestTextReport:
    """Plain-text status report."""

    def test_write_text_report(self, backup_root, duplicati_set, tmp_path):
        results = verify(backup_root, critical_job())
        log = tmp_path / "maintenance.log"
        log.write_text("cleanup finished\n")

        path = StatusReporter().write_text_report(tmp_path / "logs", results, True, log_file=log, now=NOW)

        assert path.name == "backup-status-20240615.txt"
        text = path.read_text()
        assert "✓ Duplicati service is running" in text
        assert "✓ critical-daily: 15 files" in text
        assert "cleanup finished" in text

    def test_failures_listed(self, backup_root):
        results = verify(backup_root, critical_job())
        text = StatusReporter().text_report(results, False, [], NOW)
        assert "✗ Duplicati service is not responding" in text
        assert "✗ critical-daily: missing" in text
        assert "- Backup directory not found" in text
        assert "No recent log entries" in text


class TestHtmlReport:
    """HTML report rendering."""

    def test_write_html_report(self, backup_root, duplicati_set, tmp_path):
        results = verify(backup_root, critical_job())

        path = StatusReporter().write_html_report(tmp_path / "out" / "report.html", results, True, NOW)

        html = path.read_text()
        assert "<h2>critical-daily</h2>" in html
        assert "Application data" in html
        assert "5 kept, 0 expired" in html
        assert "1 set(s), 0 failing" in html
        assert "&lt;24h" in html

    def test_escapes_descriptions(self, backup_root, duplicati_set):
        job = BackupJob(name="critical-daily", sources=["/source/data"], description="<script>")
        html = StatusReporter().html_report(verify(backup_root, job), None, NOW)
        assert "<script>" not in html
        assert "Duplicati service" not in html
