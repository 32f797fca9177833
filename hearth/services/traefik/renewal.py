"""Forced certificate renewal through Traefik."""
import time
from pathlib import Path
from typing import Callable, Optional

import requests

from hearth.core.logger import get_logger
from hearth.core.retry import poll_until
from hearth.services.traefik.acme import AcmeStore
from hearth.services.traefik.certificates import CertificateLevel, check_domain

logger = get_logger(__name__)


class CertificateRenewer:
    """Force Traefik to obtain a fresh certificate for a domain.

    Backs up acme.json, removes the domain's entry, (re)starts Traefik,
    waits for its ping endpoint, then watches until the live certificate
    is healthy again.
    """

    def __init__(
        self,
        store: AcmeStore,
        runner,
        backup_dir: Path,
        container: str = "traefik",
        ping_url: str = "http://localhost:8080/ping",
        alert_days: int = 30,
        critical_days: int = 7,
        ping_attempts: int = 30,
        monitor_timeout: int = 300,
        monitor_interval: int = 10,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        checker: Callable = check_domain,
        mock: bool = False,
    ):
        self.store = store
        self.runner = runner
        self.backup_dir = Path(backup_dir)
        self.container = container
        self.ping_url = ping_url
        self.alert_days = alert_days
        self.critical_days = critical_days
        self.ping_attempts = ping_attempts
        self.monitor_timeout = monitor_timeout
        self.monitor_interval = monitor_interval
        self.session = session or requests.Session()
        self.sleep = sleep
        self.checker = checker
        self.mock = mock

    def ping(self) -> bool:
        try:
            return self.session.get(self.ping_url, timeout=5).status_code == 200
        except requests.RequestException:
            return False

    def wait_for_traefik(self) -> bool:
        return poll_until(
            self.ping,
            attempts=self.ping_attempts,
            delay=2.0,
            backoff=2.0,
            max_delay=10.0,
            description="Traefik ping",
            sleep=self.sleep,
        )

    def certificate_ready(self, domain: str) -> bool:
        if not self.store.has_certificate(domain):
            return False
        status = self.checker(domain, self.alert_days, self.critical_days)
        return status.level == CertificateLevel.OK

    def renew(self, domain: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would force certificate renewal for {domain}")
            return True

        logger.info(f"Forcing certificate renewal for {domain}...")

        self.store.backup(self.backup_dir)
        if self.store.path.exists():
            self.store.remove_certificate(domain)

        if self.runner.container_status(self.container) != "running":
            logger.info("Traefik container is not running, starting it...")
            if not self.runner.start_container(self.container):
                logger.error("Failed to start Traefik container")
                return False

        logger.info("Restarting Traefik container to trigger certificate renewal...")
        if not self.runner.restart_container(self.container):
            logger.error("Failed to restart Traefik container")
            return False

        if not self.wait_for_traefik():
            logger.error("Traefik failed to start properly")
            return False
        logger.info("Traefik restarted successfully")

        attempts = max(1, self.monitor_timeout // self.monitor_interval)
        ready = poll_until(
            lambda: self.certificate_ready(domain),
            attempts=attempts,
            delay=float(self.monitor_interval),
            description=f"certificate for {domain}",
            sleep=self.sleep,
        )
        if ready:
            logger.info(f"Certificate renewal successful for {domain}")
        else:
            logger.error(f"Certificate generation timed out after {self.monitor_timeout}s")
        return ready
