"""Cloudflare tunnel health checks and reconnection."""
import re
from collections import deque
from pathlib import Path
from typing import Callable, Dict, Optional

import psutil
import requests
from prometheus_client.parser import text_string_to_metric_families

from hearth.core.logger import get_logger
from hearth.core.retry import poll_until
from hearth.models.health import CheckResult, CheckStatus, HealthReport
from hearth.services.cloudflared.cli import TunnelCLI
from hearth.services.cloudflared.config import (
    TunnelConfigError,
    load_tunnel_config,
    validate_credentials,
)

logger = get_logger(__name__)

TUNNEL_METRICS = {
    "active_streams": "cloudflared_tunnel_active_streams",
    "total_requests": "cloudflared_tunnel_total_requests",
    "ha_connections": "cloudflared_tunnel_ha_connections",
    "request_errors": "cloudflared_tunnel_request_errors",
}
LOG_ERROR_PATTERN = re.compile(r"error|fatal|panic", re.IGNORECASE)
LOG_SCAN_LINES = 100
LOG_ERROR_THRESHOLD = 5


def parse_tunnel_metrics(text: str) -> Dict[str, float]:
    """Sum the tunnel's key counters/gauges out of a Prometheus exposition.

    Metrics absent from the exposition are omitted from the result.
    """
    samples: Dict[str, float] = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            samples[sample.name] = samples.get(sample.name, 0.0) + sample.value

    values = {}
    for key, metric in TUNNEL_METRICS.items():
        for candidate in (metric, f"{metric}_total"):
            if candidate in samples:
                values[key] = samples[candidate]
                break
    return values


def find_tunnel_process() -> Optional[int]:
    """PID of a running ``cloudflared ... tunnel ... run`` process, if any."""
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            cmdline = proc.info.get("cmdline") or []
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if not cmdline:
            continue
        joined = " ".join(cmdline)
        if "cloudflared" in joined and "tunnel" in cmdline and "run" in cmdline:
            return proc.info["pid"]
    return None


class TunnelHealthChecker:
    """Run the tunnel health checks used by ``hearth tunnel health``."""

    def __init__(
        self,
        config_path: Path,
        credentials_path: Path,
        metrics_url: str = "http://localhost:8080/metrics",
        log_file: Optional[Path] = None,
        edge_url: str = "https://www.cloudflare.com",
        timeout: int = 10,
        cli: Optional[TunnelCLI] = None,
        session: Optional[requests.Session] = None,
        mock: bool = False,
    ):
        self.config_path = Path(config_path)
        self.credentials_path = Path(credentials_path)
        self.metrics_url = metrics_url
        self.log_file = Path(log_file) if log_file else None
        self.edge_url = edge_url
        self.timeout = timeout
        self.cli = cli or TunnelCLI(mock=mock)
        self.session = session or requests.Session()
        self.mock = mock

    def check_process(self) -> CheckResult:
        if self.mock:
            logger.info("MOCK: Would look for a running cloudflared tunnel process")
            return CheckResult("process", CheckStatus.OK, "cloudflared process is running (mock)")
        pid = find_tunnel_process()
        if pid is None:
            return CheckResult("process", CheckStatus.FAIL, "cloudflared process is not running")
        return CheckResult("process", CheckStatus.OK, "cloudflared process is running", {"pid": pid})

    def fetch_metrics(self) -> str:
        response = self.session.get(self.metrics_url, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def check_metrics_endpoint(self) -> CheckResult:
        if self.mock:
            logger.info(f"MOCK: Would scrape {self.metrics_url}")
            return CheckResult("metrics", CheckStatus.OK, "Metrics endpoint is accessible (mock)")
        try:
            self.fetch_metrics()
        except requests.RequestException as e:
            return CheckResult(
                "metrics", CheckStatus.FAIL,
                f"Metrics endpoint {self.metrics_url} is not accessible: {e}",
            )
        return CheckResult("metrics", CheckStatus.OK, "Metrics endpoint is accessible")

    def check_config(self) -> CheckResult:
        try:
            config = load_tunnel_config(self.config_path)
        except TunnelConfigError as e:
            return CheckResult("config", CheckStatus.FAIL, str(e))

        validation = config.validate()
        details = {"errors": validation.errors, "warnings": validation.warnings}
        if validation.has_errors():
            return CheckResult(
                "config", CheckStatus.FAIL,
                f"Invalid tunnel configuration: {validation.errors[0]}", details,
            )
        if self.cli.is_installed() and not self.cli.validate_ingress(self.config_path):
            return CheckResult(
                "config", CheckStatus.FAIL,
                f"cloudflared rejected ingress rules in {self.config_path}", details,
            )
        if validation.warnings:
            return CheckResult(
                "config", CheckStatus.WARN,
                f"Tunnel configuration has {len(validation.warnings)} warning(s)", details,
            )
        return CheckResult("config", CheckStatus.OK, "Tunnel configuration is valid", details)

    def check_credentials(self) -> CheckResult:
        if not self.credentials_path.exists():
            return CheckResult(
                "credentials", CheckStatus.WARN,
                f"Credentials file {self.credentials_path} not found (may be using token auth)",
            )
        error = validate_credentials(self.credentials_path)
        if error:
            return CheckResult("credentials", CheckStatus.FAIL, error)
        return CheckResult("credentials", CheckStatus.OK, "Credentials file is valid")

    def check_tunnel_metrics(self) -> CheckResult:
        if self.mock:
            logger.info(f"MOCK: Would fetch tunnel metrics from {self.metrics_url}")
            return CheckResult("tunnel-metrics", CheckStatus.OK, "Tunnel metrics look healthy (mock)")
        try:
            values = parse_tunnel_metrics(self.fetch_metrics())
        except requests.RequestException as e:
            return CheckResult(
                "tunnel-metrics", CheckStatus.FAIL, f"Cannot fetch metrics from {self.metrics_url}: {e}"
            )
        except ValueError as e:
            return CheckResult("tunnel-metrics", CheckStatus.FAIL, f"Unparseable metrics: {e}")

        connections = values.get("ha_connections", 0)
        if connections <= 0:
            return CheckResult(
                "tunnel-metrics", CheckStatus.WARN,
                "No active tunnel connections found in metrics", values,
            )
        return CheckResult(
            "tunnel-metrics", CheckStatus.OK,
            f"{int(connections)} HA connection(s), {int(values.get('total_requests', 0))} total requests",
            values,
        )

    def check_edge(self) -> CheckResult:
        if self.mock:
            logger.info(f"MOCK: Would reach {self.edge_url}")
            return CheckResult("edge", CheckStatus.OK, "Connectivity to Cloudflare edge verified (mock)")
        try:
            response = self.session.head(self.edge_url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            return CheckResult("edge", CheckStatus.FAIL, f"Cannot reach Cloudflare edge network: {e}")
        if response.status_code >= 500:
            return CheckResult(
                "edge", CheckStatus.FAIL, f"Cloudflare edge returned HTTP {response.status_code}"
            )
        return CheckResult("edge", CheckStatus.OK, "Connectivity to Cloudflare edge verified")

    def check_connectivity(self) -> CheckResult:
        try:
            config = load_tunnel_config(self.config_path)
        except TunnelConfigError:
            return CheckResult("connectivity", CheckStatus.SKIP, "No tunnel configuration to check")

        if not config.tunnel:
            return CheckResult("connectivity", CheckStatus.WARN, "No tunnel ID found in configuration")
        if not config.tunnel_configured:
            return CheckResult(
                "connectivity", CheckStatus.WARN, "Tunnel ID not configured (using placeholder)"
            )
        if not self.cli.is_installed():
            return CheckResult("connectivity", CheckStatus.SKIP, "cloudflared binary not installed")
        if not self.cli.info(config.tunnel):
            return CheckResult(
                "connectivity", CheckStatus.FAIL,
                f"Cannot retrieve tunnel info for tunnel ID: {config.tunnel}",
            )
        return CheckResult(
            "connectivity", CheckStatus.OK,
            f"Tunnel connectivity verified for tunnel ID: {config.tunnel}",
        )

    def check_logs(self) -> CheckResult:
        if self.log_file is None or not self.log_file.exists():
            return CheckResult("logs", CheckStatus.WARN, f"Log file {self.log_file} not found")

        with open(self.log_file, errors="replace") as f:
            recent = deque(f, maxlen=LOG_SCAN_LINES)
        errors = [line.rstrip("\n") for line in recent if LOG_ERROR_PATTERN.search(line)]
        if len(errors) > LOG_ERROR_THRESHOLD:
            return CheckResult(
                "logs", CheckStatus.WARN,
                f"Found {len(errors)} recent errors in logs",
                {"last_errors": errors[-3:]},
            )
        return CheckResult("logs", CheckStatus.OK, "No significant errors found in recent logs")

    def run_all(self) -> HealthReport:
        logger.info("Starting comprehensive cloudflared health check...")
        report = HealthReport()
        for check in (
            self.check_process,
            self.check_config,
            self.check_credentials,
            self.check_metrics_endpoint,
            self.check_tunnel_metrics,
            self.check_edge,
            self.check_connectivity,
            self.check_logs,
        ):
            result = report.add(check())
            logger.debug(f"{result.name}: {result.status.value} {result.message}")
        return report

    def quick(self) -> HealthReport:
        """Process and metrics endpoint only; mirrors the container healthcheck."""
        report = HealthReport()
        report.add(self.check_process())
        report.add(self.check_metrics_endpoint())
        return report


class TunnelReconnector:
    """Restart the cloudflared container and wait for the tunnel to come back."""

    def __init__(self, runner, checker: TunnelHealthChecker, container: str = "cloudflared",
                 attempts: int = 30, delay: float = 2.0, max_delay: float = 10.0,
                 sleep: Callable[[float], None] = None):
        self.runner = runner
        self.checker = checker
        self.container = container
        self.attempts = attempts
        self.delay = delay
        self.max_delay = max_delay
        self.sleep = sleep

    def reconnect(self) -> bool:
        logger.info(f"Restarting {self.container} container...")
        if not self.runner.restart_container(self.container):
            logger.error(f"Failed to restart {self.container}")
            return False

        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        healthy = poll_until(
            lambda: self.checker.quick().ok,
            attempts=self.attempts,
            delay=self.delay,
            backoff=2.0,
            max_delay=self.max_delay,
            description="tunnel health",
            **kwargs,
        )
        if healthy:
            logger.info("Tunnel reconnected")
        else:
            logger.error("Tunnel did not become healthy after restart")
        return healthy
