"""Cloudflare tunnel ingress configuration: loading, validation and routing."""
import json
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from hearth.core.durations import DurationError, parse_go_duration
from hearth.core.logger import get_logger

logger = get_logger(__name__)

PLACEHOLDER_TUNNEL_ID = "YOUR_TUNNEL_ID"
TUNNEL_HOST_SUFFIX = "cfargotunnel.com"
UUID_PATTERN = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}")
VARIABLE_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

SERVICE_SCHEMES = ("http", "https", "tcp", "ssh", "rdp", "smb", "unix", "unix+tls")
UNIX_SCHEMES = ("unix", "unix+tls")
DURATION_KEYS = ("connectTimeout", "tlsTimeout", "tcpKeepAlive", "keepAliveTimeout")
REQUIRED_CREDENTIAL_KEYS = ("AccountTag", "TunnelSecret", "TunnelID")


class TunnelConfigError(Exception):
    """Raised when the tunnel config file cannot be read or updated."""
    pass


@dataclass
class IngressRule:
    """One ingress rule: hostname/path → origin service."""
    service: str
    hostname: Optional[str] = None
    path: Optional[str] = None
    origin: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_catch_all(self) -> bool:
        return not self.hostname and not self.path

    def matches(self, hostname: str, path: str = "/") -> bool:
        if self.hostname and not hostname_matches(self.hostname, hostname):
            return False
        if self.path:
            try:
                return re.match(self.path, path) is not None
            except re.error:
                # validate() reports the bad pattern; it never matches
                return False
        return True


def hostname_matches(pattern: str, hostname: str) -> bool:
    """Match ``hostname`` against a rule hostname, honouring a leading ``*.``."""
    pattern = pattern.lower()
    hostname = hostname.lower().rstrip(".")
    if pattern.startswith("*."):
        suffix = pattern[1:]
        return hostname.endswith(suffix) and len(hostname) > len(suffix)
    return pattern == hostname


@dataclass
class TunnelValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class DnsRecord:
    name: str
    target: str
    type: str = "CNAME"


@dataclass
class TunnelConfig:
    """Parsed cloudflared config.yml."""
    path: Optional[Path]
    tunnel: Optional[str]
    credentials_file: Optional[str]
    ingress: List[IngressRule] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)

    @property
    def tunnel_configured(self) -> bool:
        return bool(self.tunnel) and self.tunnel != PLACEHOLDER_TUNNEL_ID

    @property
    def metrics_address(self) -> Optional[str]:
        return self.settings.get("metrics")

    @property
    def hostnames(self) -> List[str]:
        return [rule.hostname for rule in self.ingress if rule.hostname]

    @property
    def wildcard_hostnames(self) -> List[str]:
        return [hostname for hostname in self.hostnames if hostname.startswith("*.")]

    def validate(self) -> TunnelValidation:
        result = TunnelValidation()
        result.errors.extend(_duration_errors("originRequest", self.settings.get("originRequest") or {}))

        if not self.tunnel:
            result.errors.append("No tunnel ID configured")
        elif self.tunnel == PLACEHOLDER_TUNNEL_ID:
            result.warnings.append("Configuration contains placeholder tunnel ID")

        if not self.ingress:
            result.errors.append("No ingress rules defined")
            return result

        if not self.ingress[-1].is_catch_all:
            result.errors.append(
                "The last ingress rule must be a catch-all (e.g. 'service: http_status:404')"
            )

        seen = set()
        for index, rule in enumerate(self.ingress):
            label = rule.hostname or f"rule #{index + 1}"

            if rule.is_catch_all and index != len(self.ingress) - 1:
                result.errors.append(f"Catch-all {label} must be the last ingress rule")

            service_error = validate_service(rule.service)
            if service_error:
                result.errors.append(f"{label}: {service_error}")

            if rule.hostname:
                if "*" in rule.hostname and not (
                    rule.hostname.startswith("*.") and "*" not in rule.hostname[2:]
                ):
                    result.errors.append(
                        f"{label}: wildcard is only allowed as the leftmost label"
                    )
                key = (rule.hostname.lower(), rule.path)
                if key in seen:
                    result.errors.append(f"{label}: duplicate ingress rule")
                seen.add(key)

            if rule.path:
                try:
                    re.compile(rule.path)
                except re.error as e:
                    result.errors.append(f"{label}: invalid path regex: {e}")

            result.errors.extend(_duration_errors(label, rule.origin))

            if rule.origin.get("noTLSVerify") is True:
                result.warnings.append(f"{label}: TLS verification disabled (noTLSVerify)")

        for name in sorted(set(self.unresolved)):
            result.warnings.append(f"Variable ${{{name}}} is not set")

        return result

    def match(self, hostname: str, path: str = "/") -> Optional[IngressRule]:
        """Return the first ingress rule that would serve ``hostname``/``path``."""
        for rule in self.ingress:
            if rule.matches(hostname, path):
                return rule
        return None

    def dns_records(self, tunnel_id: Optional[str] = None) -> List[DnsRecord]:
        """CNAME records each concrete hostname needs to reach the tunnel.

        Wildcard hostnames are left out; see ``wildcard_hostnames``.
        """
        tunnel_id = tunnel_id or self.tunnel
        target = f"{tunnel_id}.{TUNNEL_HOST_SUFFIX}"
        records = []
        seen = set()
        for hostname in self.hostnames:
            if VARIABLE_PATTERN.search(hostname) or hostname.startswith("*.") or hostname in seen:
                continue
            seen.add(hostname)
            records.append(DnsRecord(name=hostname, target=target))
        return records


def _duration_errors(label: str, origin: Mapping[str, Any]) -> List[str]:
    errors = []
    for key_name in DURATION_KEYS:
        if key_name in origin:
            try:
                parse_go_duration(str(origin[key_name]))
            except DurationError:
                errors.append(f"{label}: invalid {key_name} {origin[key_name]!r}")
    return errors


def validate_service(service: Optional[str]) -> Optional[str]:
    """Return an error message for an invalid ingress service, else None."""
    if not service:
        return "missing service"
    if service == "hello_world":
        return None
    if service.startswith("http_status:"):
        code = service.split(":", 1)[1]
        if not code.isdigit() or not 100 <= int(code) <= 599:
            return f"invalid status code in {service!r}"
        return None
    scheme, sep, rest = service.partition("://")
    if not sep and scheme.partition(":")[0] in UNIX_SCHEMES:
        # cloudflared writes sockets as unix:/path or unix+tls:/path
        scheme, sep, rest = service.partition(":")
        if not rest.startswith("/"):
            return f"unix socket path must be absolute in {service!r}"
    if not sep or scheme not in SERVICE_SCHEMES or not rest:
        return f"unsupported service {service!r}"
    return None


def expand_variables(text: str, env: Mapping[str, str], unresolved: List[str]) -> str:
    def replace(match):
        name = match.group(1)
        if name in env and env[name] != "":
            return env[name]
        unresolved.append(name)
        return match.group(0)

    return VARIABLE_PATTERN.sub(replace, text)


def parse_tunnel_config(text: str, env: Optional[Mapping[str, str]] = None,
                        path: Optional[Path] = None) -> TunnelConfig:
    env = os.environ if env is None else env
    unresolved: List[str] = []
    expanded = expand_variables(text, env, unresolved)

    try:
        raw = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise TunnelConfigError(f"Invalid YAML in tunnel config: {e}") from e
    if not isinstance(raw, dict):
        raise TunnelConfigError("Tunnel config must be a mapping")

    rules = []
    for entry in raw.get("ingress") or []:
        if not isinstance(entry, dict):
            raise TunnelConfigError(f"Ingress rule must be a mapping: {entry!r}")
        rules.append(
            IngressRule(
                service=entry.get("service"),
                hostname=entry.get("hostname"),
                path=entry.get("path"),
                origin=dict(entry.get("originRequest") or {}),
            )
        )

    settings = {
        key: value for key, value in raw.items()
        if key not in ("tunnel", "credentials-file", "ingress")
    }
    tunnel = raw.get("tunnel")
    return TunnelConfig(
        path=path,
        tunnel=str(tunnel) if tunnel is not None else None,
        credentials_file=raw.get("credentials-file"),
        ingress=rules,
        settings=settings,
        unresolved=unresolved,
    )


def load_tunnel_config(path: Path, env: Optional[Mapping[str, str]] = None) -> TunnelConfig:
    """Load and expand a cloudflared config file.

    Raises:
        TunnelConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise TunnelConfigError(f"Configuration file not found: {path}")
    return parse_tunnel_config(path.read_text(), env=env, path=path)


def set_tunnel_id(path: Path, tunnel_id: str) -> Path:
    """Replace the placeholder tunnel ID in ``path``; keeps a ``.bak`` copy.

    Raises:
        TunnelConfigError: If the ID is malformed or the file is missing
    """
    if not UUID_PATTERN.fullmatch(tunnel_id or ""):
        raise TunnelConfigError(f"Not a tunnel ID: {tunnel_id!r}")
    path = Path(path)
    if not path.exists():
        raise TunnelConfigError(f"Configuration file not found: {path}")

    content = path.read_text()
    backup = path.with_name(path.name + ".bak")
    shutil.copy2(path, backup)
    path.write_text(content.replace(PLACEHOLDER_TUNNEL_ID, tunnel_id))
    logger.info(f"Configuration updated with tunnel ID {tunnel_id}")
    return backup


def install_credentials(tunnel_id: str, destination: Path, source_dir: Path) -> Path:
    """Copy ``<source_dir>/<tunnel_id>.json`` to ``destination`` with mode 0600.

    Raises:
        TunnelConfigError: If the source credentials file does not exist
    """
    source = Path(source_dir) / f"{tunnel_id}.json"
    if not source.exists():
        raise TunnelConfigError(f"Credentials file not found at {source}")
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    os.chmod(destination, 0o600)
    logger.info("Credentials file copied and secured")
    return destination


def validate_credentials(path: Path) -> Optional[str]:
    """Return an error message if the credentials file is unusable, else None."""
    try:
        data = json.loads(Path(path).read_text())
    except FileNotFoundError:
        return f"Credentials file {path} not found"
    except (OSError, json.JSONDecodeError) as e:
        return f"Invalid JSON in credentials file {path}: {e}"

    if not isinstance(data, dict):
        return f"Credentials file {path} must contain a JSON object"
    missing = [key for key in REQUIRED_CREDENTIAL_KEYS if not data.get(key)]
    if missing:
        return f"Credentials file {path} is missing {', '.join(missing)}"
    return None
