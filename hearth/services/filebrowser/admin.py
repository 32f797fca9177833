"""
Filebrowser administration through its own CLI.

The filebrowser binary edits its bolt database directly, so every command
runs inside the running container with ``docker exec``.
"""
import re
from typing import Dict, List, Optional, Sequence

from hearth.core.durations import DurationError, parse_go_duration
from hearth.core.logger import get_logger
from hearth.services.docker_compose import ComposeRunner

logger = get_logger(__name__)

DEFAULT_DATABASE = "/database/filebrowser.db"
DEFAULT_ROOT = "/srv"

PERMISSIONS = ("admin", "create", "delete", "modify", "rename", "share", "download")

USERNAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
SHARE_ID = re.compile(r"^[A-Za-z0-9_-]+$")

_TRUE = ("true", "yes", "1", "on")
_FALSE = ("false", "no", "0", "off")


class FilebrowserError(ValueError):
    """Raised for user or share arguments filebrowser would reject."""
    pass


def parse_permissions(items: Sequence[str]) -> Dict[str, bool]:
    """Parse ``name=true|false`` items; a bare ``name`` grants the permission.

    Raises:
        FilebrowserError: On unknown permissions or values
    """
    permissions: Dict[str, bool] = {}
    for item in items:
        name, sep, value = item.partition("=")
        name = name.strip().lower()
        if name not in PERMISSIONS:
            raise FilebrowserError(
                f"Unknown permission '{name}'; expected one of: {', '.join(PERMISSIONS)}"
            )
        value = value.strip().lower() if sep else "true"
        if value in _TRUE:
            permissions[name] = True
        elif value in _FALSE:
            permissions[name] = False
        else:
            raise FilebrowserError(f"Invalid value for {name}: {value!r} (use true or false)")
    return permissions


def _permission_flags(permissions: Dict[str, bool]) -> List[str]:
    return [f"--perm.{name}={str(value).lower()}" for name, value in sorted(permissions.items())]


def _check_username(username: str) -> None:
    if not username or not USERNAME.match(username):
        raise FilebrowserError(f"Invalid username {username!r}")


def _check_password(password: str) -> None:
    if not password:
        raise FilebrowserError("Password must not be empty")


class FilebrowserAdmin:
    """
    Manage filebrowser users and shares in the running container.

    Example:
        admin = FilebrowserAdmin(runner)
        admin.add_user("alice", "s3cret-passphrase", permissions={"share": True})
        print(admin.list_users())
    """

    def __init__(self, runner: ComposeRunner, container: str = "filebrowser",
                 database: str = DEFAULT_DATABASE, root: str = DEFAULT_ROOT):
        self.runner = runner
        self.container = container
        self.database = database
        self.root = root.rstrip("/") or "/"

    def _cmd(self, *args: str) -> List[str]:
        return ["filebrowser", "-d", self.database] + list(args)

    def _exec(self, *args: str, secrets: Sequence[str] = ()) -> bool:
        return self.runner.exec_ok(self.container, self._cmd(*args), secrets=secrets)

    def default_scope(self, username: str) -> str:
        return f"{self.root}/users/{username}"

    def add_user(self, username: str, password: str, scope: Optional[str] = None,
                 permissions: Optional[Dict[str, bool]] = None) -> bool:
        """Create ``username`` with its own scope directory under the served root.

        Raises:
            FilebrowserError: On an invalid username, password or scope
        """
        _check_username(username)
        _check_password(password)
        scope = scope or self.default_scope(username)
        if not scope.startswith("/"):
            raise FilebrowserError(f"Scope must be an absolute path: {scope!r}")

        logger.info(f"Adding user: {username}")
        if not self.runner.exec_ok(self.container, ["mkdir", "-p", scope]):
            return False
        if not self.runner.exec_ok(self.container, ["chmod", "755", scope]):
            return False
        if not self._exec("users", "add", username, password, "--scope", scope,
                          *_permission_flags(permissions or {}), secrets=[password]):
            return False
        logger.info(f"User {username} added with scope: {scope}")
        return True

    def remove_user(self, username: str) -> bool:
        _check_username(username)
        logger.info(f"Removing user: {username}")
        return self._exec("users", "rm", username)

    def list_users(self) -> str:
        """The ``users ls`` table as filebrowser prints it.

        Raises:
            CommandError: If the container or database cannot be reached
        """
        return self.runner.exec_output(self.container, self._cmd("users", "ls"))

    def update_permissions(self, username: str, permissions: Dict[str, bool]) -> bool:
        _check_username(username)
        if not permissions:
            raise FilebrowserError("No permissions given")
        logger.info(f"Updating permissions for user: {username}")
        return self._exec("users", "update", username, *_permission_flags(permissions))

    def reset_password(self, username: str, password: str) -> bool:
        _check_username(username)
        _check_password(password)
        logger.info(f"Resetting password for user: {username}")
        return self._exec("users", "update", username, "--password", password, secrets=[password])

    def create_share(self, path: str, expires: Optional[str] = None) -> bool:
        """Share ``path`` (inside the served root), optionally expiring after ``expires``.

        Raises:
            FilebrowserError: On a path outside the root or a malformed expiry
        """
        if not path.startswith("/") or ".." in path.split("/"):
            raise FilebrowserError(f"Share path must be absolute and free of '..': {path!r}")
        if self.root != "/" and path != self.root and not path.startswith(self.root + "/"):
            raise FilebrowserError(f"Share path {path!r} is outside {self.root}")

        args = ["shares", "add", path]
        if expires:
            try:
                parse_go_duration(expires)
            except DurationError as e:
                raise FilebrowserError(f"Invalid share expiry: {e}") from e
            args += ["--expires", expires]

        logger.info(f"Creating share for: {path}")
        return self._exec(*args)

    def list_shares(self, username: Optional[str] = None) -> str:
        """The ``shares ls`` table, optionally for one user.

        Raises:
            CommandError: If the container or database cannot be reached
        """
        args = ["shares", "ls"]
        if username:
            _check_username(username)
            args += ["--username", username]
        return self.runner.exec_output(self.container, self._cmd(*args))

    def remove_share(self, share_id: str) -> bool:
        if not share_id or not SHARE_ID.match(share_id):
            raise FilebrowserError(f"Invalid share ID {share_id!r}")
        logger.info(f"Removing share: {share_id}")
        return self._exec("shares", "rm", share_id)
