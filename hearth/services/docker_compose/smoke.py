"""Post-deploy smoke tests: every service with a healthcheck must turn healthy."""
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests

from hearth.core.logger import get_logger
from hearth.core.retry import poll_until
from hearth.services.docker_compose.manifest import HealthEndpoint
from hearth.services.docker_compose.runner import ComposeRunner

logger = get_logger(__name__)


@dataclass
class SmokeResult:
    service: str
    ok: bool
    method: str
    target: str
    elapsed: float = 0.0
    detail: str = ""


class SmokeTester:
    """Poll health endpoints until they answer or the attempt budget runs out.

    Published HTTP endpoints must return 200; everything else falls back
    to Docker's own health status.
    """

    def __init__(self, runner: ComposeRunner, session: Optional[requests.Session] = None,
                 attempts: int = 30, delay: float = 2.0, timeout: float = 5.0,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.runner = runner
        self.session = session or requests.Session()
        self.attempts = attempts
        self.delay = delay
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock

    def _http_ok(self, url: str) -> bool:
        try:
            return self.session.get(url, timeout=self.timeout).status_code == 200
        except requests.RequestException as e:
            logger.debug(f"{url}: {e}")
            return False

    def check_endpoint(self, endpoint: HealthEndpoint) -> SmokeResult:
        start = self.clock()
        if endpoint.url:
            method, target = "http", endpoint.url
        else:
            method, target = "docker", endpoint.container

        if self.runner.mock:
            logger.info(f"MOCK: Would check {target} for {endpoint.service}")
            return SmokeResult(endpoint.service, True, method, target, 0.0, "healthy (mock)")

        def check() -> bool:
            if method == "http":
                return self._http_ok(target)
            return self.runner.health_status(target) == "healthy"

        ok = poll_until(
            check,
            attempts=self.attempts,
            delay=self.delay,
            description=f"{endpoint.service} health",
            sleep=self.sleep,
        )
        elapsed = self.clock() - start
        if ok:
            detail = f"healthy after {elapsed:.0f}s"
        elif method == "http":
            detail = f"no HTTP 200 within {self.attempts} attempts"
        else:
            status = self.runner.health_status(endpoint.container) or "no health status"
            detail = f"container is {status}"
        return SmokeResult(endpoint.service, ok, method, target, elapsed, detail)

    def run(self, endpoints: List[HealthEndpoint]) -> List[SmokeResult]:
        results = []
        for endpoint in endpoints:
            logger.info(f"Smoke testing {endpoint.service}...")
            result = self.check_endpoint(endpoint)
            if result.ok:
                logger.info(f"✓ {endpoint.service}: {result.detail}")
            else:
                logger.error(f"✗ {endpoint.service}: {result.detail}")
            results.append(result)
        return results
