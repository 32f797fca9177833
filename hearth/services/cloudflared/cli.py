"""Wrapper around the cloudflared binary."""
import json
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from hearth.core.logger import get_logger
from hearth.services.cloudflared.config import UUID_PATTERN

logger = get_logger(__name__)

MOCK_TUNNEL_ID = "00000000-0000-4000-8000-000000000000"


class TunnelCLI:
    """Run ``cloudflared tunnel`` subcommands."""

    def __init__(self, mock: bool = False, binary: str = "cloudflared", timeout: int = 60):
        self.mock = mock
        self.binary = binary
        self.timeout = timeout

    def _run(self, args: List[str]) -> Optional[subprocess.CompletedProcess]:
        cmd = [self.binary] + args
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"Command failed: {' '.join(cmd)}")
            if e.stderr:
                logger.error(f"Error output: {e.stderr.strip()}")
            return None
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Could not run {' '.join(cmd)}: {e}")
            return None

    def is_installed(self) -> bool:
        if self.mock:
            return True
        return shutil.which(self.binary) is not None

    def version(self) -> Optional[str]:
        if self.mock:
            logger.info("MOCK: Would run cloudflared --version")
            return "cloudflared version 2024.1.0 (mock)"
        result = self._run(["--version"])
        return result.stdout.strip() if result else None

    def create(self, name: str) -> Optional[str]:
        """Create a named tunnel and return its UUID."""
        if self.mock:
            logger.info(f"MOCK: Would create tunnel {name}")
            return MOCK_TUNNEL_ID

        logger.info(f"Creating tunnel: {name}")
        result = self._run(["tunnel", "create", name])
        if result is None:
            return None

        match = UUID_PATTERN.search(result.stdout + result.stderr)
        if not match:
            logger.error("Failed to extract tunnel ID from cloudflared output")
            return None
        logger.info(f"Tunnel created with ID: {match.group(0)}")
        return match.group(0)

    def list_tunnels(self) -> List[Dict[str, Any]]:
        if self.mock:
            logger.info("MOCK: Would list tunnels")
            return [{"id": MOCK_TUNNEL_ID, "name": "hearth", "connections": []}]

        result = self._run(["tunnel", "list", "--output", "json"])
        if result is None:
            return []
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            logger.error(f"Could not parse tunnel list: {e}")
            return []
        return data if isinstance(data, list) else []

    def info(self, tunnel_id: str) -> bool:
        """True if cloudflared can fetch info for ``tunnel_id``."""
        if self.mock:
            logger.info(f"MOCK: Would fetch tunnel info for {tunnel_id}")
            return True
        return self._run(["tunnel", "info", tunnel_id]) is not None

    def validate_ingress(self, config: Path) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would validate ingress rules in {config}")
            return True
        return self._run(["tunnel", "--config", str(config), "ingress", "validate"]) is not None
