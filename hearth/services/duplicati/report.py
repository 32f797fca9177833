"""Backup status reports in plain text and HTML."""
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from hearth.core.durations import format_size
from hearth.core.logger import get_logger
from hearth.core.retention import AGE_BUCKETS
from hearth.services.duplicati.verifier import SetVerification

logger = get_logger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates"


def tail_lines(path: Optional[Path], count: int = 20) -> List[str]:
    """Return the last ``count`` lines of a log file (empty if unreadable)."""
    if path is None:
        return []
    try:
        with open(path, errors="replace") as f:
            return [line.rstrip("\n") for line in deque(f, maxlen=count)]
    except OSError:
        return []


class StatusReporter:
    """Render backup verification results for humans."""

    def __init__(self, template_dir: Path = TEMPLATE_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["size"] = format_size

    def text_report(self, results: List[SetVerification], healthy: bool,
                    log_tail: List[str], now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        lines = [
            "Duplicati Backup Status Report",
            f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S %Z')}",
            "================================",
            "",
            "Service Health:",
            "✓ Duplicati service is running" if healthy else "✗ Duplicati service is not responding",
            "",
            "Backup Directory Status:",
        ]
        for result in results:
            marker = {"ok": "✓", "warn": "⚠", "fail": "✗"}.get(result.status.value, "-")
            lines.append(f"  {marker} {result.job.backup_set}: {result.summary()}")
            for issue in result.issues:
                lines.append(f"      - {issue}")
        lines.append("")
        lines.append("Recent Log Entries:")
        lines.extend(log_tail or ["No recent log entries"])
        return "\n".join(lines) + "\n"

    def write_text_report(self, log_dir: Path, results: List[SetVerification], healthy: bool,
                          log_file: Optional[Path] = None, now: Optional[datetime] = None) -> Path:
        """Write ``backup-status-YYYYMMDD.txt`` into ``log_dir``."""
        now = now or datetime.now(timezone.utc)
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        report_file = log_dir / f"backup-status-{now.strftime('%Y%m%d')}.txt"
        report_file.write_text(self.text_report(results, healthy, tail_lines(log_file), now))
        logger.info(f"Status report generated: {report_file}")
        return report_file

    def html_report(self, results: List[SetVerification], healthy: Optional[bool] = None,
                    now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        template = self.env.get_template("backup_report.html.j2")
        return template.render(
            results=results,
            healthy=healthy,
            generated=now.strftime("%Y-%m-%d %H:%M:%S %Z"),
            bucket_labels=[label for label, _ in AGE_BUCKETS],
            failed=sum(1 for r in results if not r.ok),
        )

    def write_html_report(self, path: Path, results: List[SetVerification],
                          healthy: Optional[bool] = None, now: Optional[datetime] = None) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.html_report(results, healthy, now))
        logger.info(f"HTML report written: {path}")
        return path
