"""Duplicati web service health client."""
from typing import Any, Dict

import requests

from hearth.core.logger import get_logger
from hearth.core.retry import retry

logger = get_logger(__name__)


class DuplicatiClient:
    """Minimal client for the Duplicati server state endpoint."""

    SERVER_STATE_PATH = "/api/v1/serverstate"

    def __init__(self, base_url: str = "http://localhost:8200", timeout: int = 10,
                 mock: bool = False, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.mock = mock
        self.session = session or requests.Session()

    @retry(max_attempts=3, delay=1.0, exceptions=(requests.RequestException,))
    def server_state(self) -> Dict[str, Any]:
        """Fetch the server state document.

        Raises:
            requests.RequestException: After retries are exhausted
        """
        if self.mock:
            return {"ProgramState": "Running", "ActiveTask": None, "SchedulerQueueIds": []}

        response = self.session.get(f"{self.base_url}{self.SERVER_STATE_PATH}", timeout=self.timeout)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            # Some versions answer with an auth page; the service is still up
            return {}

    def is_healthy(self) -> bool:
        """Return True when the Duplicati web service answers."""
        try:
            self.server_state()
        except requests.RequestException as e:
            logger.error(f"Duplicati service is not responding at {self.base_url}: {e}")
            return False
        logger.info("Duplicati service is healthy")
        return True
