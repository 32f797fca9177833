"""
Docker Compose runner - drive the stack with ``docker compose`` and ``docker``.

Every call shells out to the docker CLI; in mock mode the command is only
logged and a canned answer is returned.
"""
import json
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from hearth.core.logger import get_logger

logger = get_logger(__name__)

MOCK_SERVICE = {
    "Name": "mock-service",
    "Service": "mock-service",
    "State": "running",
    "Health": "healthy",
    "Status": "Up 5 minutes (healthy)",
}


class CommandError(Exception):
    """Raised when a docker command the caller depends on fails."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Command failed ({returncode}): {' '.join(cmd)}{detail}")


def mask_secrets(cmd: List[str], secrets: Sequence[str] = ()) -> List[str]:
    """Copy of ``cmd`` with every argument listed in ``secrets`` replaced by ``****``."""
    return ["****" if part in secrets else part for part in cmd]


def parse_ps_output(output: str) -> List[Dict[str, Any]]:
    """Parse ``docker compose ps --format json``.

    Older Compose releases print one JSON array, newer ones one object per line.
    """
    output = output.strip()
    if not output:
        return []
    if output.startswith("["):
        return json.loads(output)
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class ComposeRunner:
    """
    Run the homelab stack's compose project.

    Example:
        runner = ComposeRunner(Path("docker-compose.yml"), env_file=Path(".env"))
        runner.up()
        runner.ps()
    """

    def __init__(
        self,
        compose_file: Path = Path("docker-compose.yml"),
        env_file: Optional[Path] = None,
        project_dir: Optional[Path] = None,
        mock: bool = False,
    ):
        self.compose_file = Path(compose_file)
        self.env_file = Path(env_file) if env_file else None
        self.project_dir = Path(project_dir) if project_dir else self.compose_file.parent
        self.mock = mock

    def _compose(self, *args: str) -> List[str]:
        cmd = ["docker", "compose", "-f", str(self.compose_file)]
        if self.env_file:
            cmd += ["--env-file", str(self.env_file)]
        return cmd + list(args)

    def _run(self, cmd: List[str], capture: bool = True,
             secrets: Sequence[str] = ()) -> subprocess.CompletedProcess:
        """Run ``cmd`` in the project directory; ``secrets`` never reach logs or errors.

        Raises:
            CommandError: If the command exits non-zero or cannot be started
        """
        shown = mask_secrets(cmd, secrets)
        logger.debug(f"Running: {' '.join(shown)}")
        try:
            return subprocess.run(
                cmd,
                cwd=str(self.project_dir),
                capture_output=capture,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            error = CommandError(shown, e.returncode, e.stderr or "")
            # CalledProcessError carries the unmasked argv
            if secrets:
                raise error from None
            raise error from e
        except OSError as e:
            raise CommandError(shown, 127, str(e)) from e

    def _try(self, cmd: List[str], action: str) -> bool:
        try:
            self._run(cmd)
            return True
        except CommandError as e:
            logger.error(f"✗ Failed to {action}: {e}")
            return False

    def is_available(self) -> bool:
        if self.mock:
            return True
        if shutil.which("docker") is None:
            return False
        try:
            self._run(["docker", "compose", "version"])
            return True
        except CommandError:
            return False

    def up(self, detach: bool = True, services: Optional[List[str]] = None) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would run docker compose up for {self.compose_file}")
            return True
        args = ["up"] + (["-d"] if detach else []) + list(services or [])
        if not self._try(self._compose(*args), "start services"):
            return False
        logger.info("✓ Services started")
        return True

    def down(self) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would run docker compose down for {self.compose_file}")
            return True
        return self._try(self._compose("down"), "stop services")

    def ps(self) -> List[Dict[str, Any]]:
        """Container state for every service of the project.

        Raises:
            CommandError: If docker compose cannot be queried
        """
        if self.mock:
            logger.info("MOCK: Would run docker compose ps")
            return [dict(MOCK_SERVICE)]
        result = self._run(self._compose("ps", "--all", "--format", "json"))
        try:
            return parse_ps_output(result.stdout)
        except json.JSONDecodeError as e:
            raise CommandError(self._compose("ps"), 0, f"unparseable output: {e}") from e

    def logs(self, service: Optional[str] = None, tail: int = 100, follow: bool = False) -> str:
        """Service logs; with ``follow`` they stream to the terminal instead."""
        if self.mock:
            logger.info(f"MOCK: Would show logs for {service or 'all services'}")
            return ""
        args = ["logs", "--tail", str(tail)]
        if follow:
            args.append("--follow")
        if service:
            args.append(service)
        result = self._run(self._compose(*args), capture=not follow)
        return result.stdout or ""

    def restart(self, service: Optional[str] = None) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would restart {service or 'all services'}")
            return True
        args = ["restart"] + ([service] if service else [])
        return self._try(self._compose(*args), f"restart {service or 'services'}")

    def _inspect(self, name: str, template: str) -> Optional[str]:
        try:
            result = self._run(["docker", "inspect", "--format", template, name])
        except CommandError:
            return None
        return result.stdout.strip() or None

    def container_status(self, name: str) -> Optional[str]:
        """Docker state (``running``, ``exited`` ...) or None if no such container."""
        if self.mock:
            return "running"
        return self._inspect(name, "{{.State.Status}}")

    def health_status(self, name: str) -> Optional[str]:
        """Docker health (``healthy``, ``starting``, ``unhealthy``) or None without a healthcheck."""
        if self.mock:
            return "healthy"
        return self._inspect(name, "{{if .State.Health}}{{.State.Health.Status}}{{end}}")

    def start_container(self, name: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would start container {name}")
            return True
        return self._try(["docker", "start", name], f"start {name}")

    def restart_container(self, name: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would restart container {name}")
            return True
        return self._try(["docker", "restart", name], f"restart {name}")

    def exec_output(self, name: str, command: List[str], secrets: Sequence[str] = ()) -> str:
        """Stdout of ``command`` run inside container ``name``.

        Raises:
            CommandError: If the command exits non-zero
        """
        if self.mock:
            logger.info(f"MOCK: Would run {' '.join(mask_secrets(command, secrets))} in {name}")
            return ""
        return self._run(["docker", "exec", name] + list(command), secrets=secrets).stdout or ""

    def exec_ok(self, name: str, command: List[str], secrets: Sequence[str] = ()) -> bool:
        """True if ``command`` exits zero inside container ``name``."""
        try:
            self.exec_output(name, command, secrets=secrets)
            return True
        except CommandError as e:
            logger.error(f"✗ Command in {name} failed: {e}")
            return False
