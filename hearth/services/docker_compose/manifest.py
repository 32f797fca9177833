"""
Docker Compose manifest model and validation.

Parses the stack's compose file to check what Docker Compose itself only
discovers at ``up`` time:
- Services, networks and named volumes reference each other consistently
- depends_on forms no cycle and health conditions have a healthcheck
- Host ports are unique and network subnets do not overlap
- ``${VAR}`` references that need a value from .env
"""

import ipaddress
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml

from hearth.core.durations import DurationError, parse_go_duration

EXPECTED_NETWORKS = ("frontend", "backend", "monitoring")
INTERNAL_NETWORKS = ("backend", "monitoring")
HEALTHCHECK_DURATIONS = ("interval", "timeout", "start_period", "start_interval")

VARIABLE_PATTERN = re.compile(r"(?<!\$)\$\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-?+])([^}]*))?\}")
HEALTH_URL_PATTERN = re.compile(r"https?://(?:localhost|127\.0\.0\.1)(?::(\d+))?(/[^\s'\"]*)?")


class ComposeManifestError(Exception):
    """Raised when a compose file cannot be read or parsed."""
    pass


@dataclass
class PortMapping:
    """A published port (``[host_ip:]host:container[/proto]``)."""
    container_port: Optional[int]
    host_port: Optional[int] = None
    host_ip: str = ""
    protocol: str = "tcp"

    @classmethod
    def parse(cls, value: Any) -> "PortMapping":
        if isinstance(value, dict):
            return cls(
                container_port=_port_number(value.get("target")),
                host_port=_port_number(value.get("published")),
                host_ip=str(value.get("host_ip", "")),
                protocol=str(value.get("protocol", "tcp")),
            )

        text = str(value)
        protocol = "tcp"
        if "/" in text:
            text, protocol = text.rsplit("/", 1)
        parts = text.rsplit(":", 2)
        if len(parts) == 1:
            return cls(container_port=_port_number(parts[0]), protocol=protocol)
        if len(parts) == 2:
            host, container = parts
            return cls(_port_number(container), _port_number(host), "", protocol)
        host_ip, host, container = parts
        return cls(_port_number(container), _port_number(host), host_ip, protocol)


def _port_number(value: Any) -> Optional[int]:
    """Integer port, or None for ranges and unexpanded variables."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class HealthcheckSpec:
    test: str
    interval: Optional[str] = None
    timeout: Optional[str] = None
    start_period: Optional[str] = None
    start_interval: Optional[str] = None
    retries: Optional[int] = None
    disabled: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "HealthcheckSpec":
        test = raw.get("test", "")
        if isinstance(test, list):
            disabled = bool(test) and test[0] == "NONE"
            if test and test[0] in ("CMD", "CMD-SHELL", "NONE"):
                test = test[1:]
            test = " ".join(str(part) for part in test)
        else:
            disabled = False
        return cls(
            test=str(test),
            interval=_opt_str(raw.get("interval")),
            timeout=_opt_str(raw.get("timeout")),
            start_period=_opt_str(raw.get("start_period")),
            start_interval=_opt_str(raw.get("start_interval")),
            retries=raw.get("retries"),
            disabled=disabled or bool(raw.get("disable")),
        )


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class ServiceSpec:
    """One service of the stack."""
    name: str
    image: Optional[str] = None
    build: Any = None
    container_name: Optional[str] = None
    ports: List[PortMapping] = field(default_factory=list)
    networks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    volumes: List[Any] = field(default_factory=list)
    depends_on: Dict[str, str] = field(default_factory=dict)
    healthcheck: Optional[HealthcheckSpec] = None
    environment: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def container(self) -> str:
        return self.container_name or self.name

    @property
    def has_healthcheck(self) -> bool:
        return self.healthcheck is not None and not self.healthcheck.disabled

    def named_volumes(self) -> List[str]:
        """Named volume sources (bind mounts excluded)."""
        names = []
        for volume in self.volumes:
            if isinstance(volume, dict):
                if volume.get("type", "volume") == "volume" and volume.get("source"):
                    names.append(str(volume["source"]))
                continue
            source = str(volume).split(":", 1)[0] if ":" in str(volume) else None
            if source and not source.startswith(("/", ".", "~", "$")):
                names.append(source)
        return names

    @classmethod
    def from_dict(cls, name: str, raw: Dict[str, Any]) -> "ServiceSpec":
        raw = raw or {}

        networks = raw.get("networks") or {}
        if isinstance(networks, list):
            networks = {n: {} for n in networks}
        networks = {n: (opts or {}) for n, opts in networks.items()}

        depends = raw.get("depends_on") or {}
        if isinstance(depends, list):
            depends = {d: "service_started" for d in depends}
        else:
            depends = {
                d: (opts or {}).get("condition", "service_started") for d, opts in depends.items()
            }

        environment = raw.get("environment") or {}
        if isinstance(environment, list):
            parsed = {}
            for item in environment:
                key, sep, value = str(item).partition("=")
                parsed[key] = value if sep else None
            environment = parsed
        else:
            environment = {k: (None if v is None else str(v)) for k, v in environment.items()}

        healthcheck = raw.get("healthcheck")
        return cls(
            name=name,
            image=raw.get("image"),
            build=raw.get("build"),
            container_name=raw.get("container_name"),
            ports=[PortMapping.parse(p) for p in raw.get("ports") or []],
            networks=networks,
            volumes=list(raw.get("volumes") or []),
            depends_on=depends,
            healthcheck=HealthcheckSpec.from_dict(healthcheck) if healthcheck else None,
            environment=environment,
        )


@dataclass
class NetworkSpec:
    name: str
    driver: str = "bridge"
    internal: bool = False
    external: bool = False
    subnet: Optional[str] = None
    gateway: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, raw: Optional[Dict[str, Any]]) -> "NetworkSpec":
        raw = raw or {}
        ipam_config = ((raw.get("ipam") or {}).get("config") or [{}])[0] or {}
        return cls(
            name=name,
            driver=raw.get("driver", "bridge"),
            internal=bool(raw.get("internal", False)),
            external=bool(raw.get("external", False)),
            subnet=ipam_config.get("subnet"),
            gateway=ipam_config.get("gateway"),
        )


@dataclass
class HealthEndpoint:
    """Where a smoke test can observe a service's health."""
    service: str
    container: str
    container_port: Optional[int] = None
    host_port: Optional[int] = None
    path: str = "/"

    @property
    def url(self) -> Optional[str]:
        if self.host_port is None:
            return None
        return f"http://localhost:{self.host_port}{self.path}"


@dataclass
class ManifestValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class ComposeManifest:
    services: Dict[str, ServiceSpec] = field(default_factory=dict)
    networks: Dict[str, NetworkSpec] = field(default_factory=dict)
    volumes: Set[str] = field(default_factory=set)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "ComposeManifest":
        """Load a compose file.

        Raises:
            ComposeManifestError: If the file is missing or not valid YAML
        """
        path = Path(path)
        try:
            raw = yaml.safe_load(path.read_text())
        except FileNotFoundError as e:
            raise ComposeManifestError(f"Compose file not found: {path}") from e
        except yaml.YAMLError as e:
            raise ComposeManifestError(f"Invalid YAML in {path}: {e}") from e
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ComposeManifest":
        if not isinstance(raw, dict) or not raw.get("services"):
            raise ComposeManifestError("Invalid compose file: no services section found")

        return cls(
            services={
                name: ServiceSpec.from_dict(name, spec) for name, spec in raw["services"].items()
            },
            networks={
                name: NetworkSpec.from_dict(name, spec)
                for name, spec in (raw.get("networks") or {}).items()
            },
            volumes=set((raw.get("volumes") or {}).keys()),
            raw=raw,
        )

    def validate(self) -> ManifestValidation:
        result = ManifestValidation()
        self._validate_services(result)
        self._validate_dependencies(result)
        self._validate_ports(result)
        self._validate_networks(result)
        return result

    def _validate_services(self, result: ManifestValidation) -> None:
        for service in self.services.values():
            if not service.image and not service.build:
                result.errors.append(f"Service '{service.name}' has neither image nor build")

            for network in service.networks:
                if network != "default" and network not in self.networks:
                    result.errors.append(
                        f"Service '{service.name}' uses undefined network '{network}'"
                    )

            for volume in service.named_volumes():
                if volume not in self.volumes:
                    result.errors.append(
                        f"Service '{service.name}' uses undefined volume '{volume}'"
                    )

            if service.healthcheck:
                for key in HEALTHCHECK_DURATIONS:
                    value = getattr(service.healthcheck, key)
                    if value is None:
                        continue
                    try:
                        parse_go_duration(value)
                    except DurationError:
                        result.errors.append(
                            f"Service '{service.name}' healthcheck has invalid {key} '{value}'"
                        )

    def _validate_dependencies(self, result: ManifestValidation) -> None:
        for service in self.services.values():
            for target, condition in service.depends_on.items():
                if target not in self.services:
                    result.errors.append(
                        f"Service '{service.name}' depends on unknown service '{target}'"
                    )
                    continue
                if condition == "service_healthy" and not self.services[target].has_healthcheck:
                    result.errors.append(
                        f"Service '{service.name}' waits for '{target}' to be healthy "
                        f"but '{target}' has no healthcheck"
                    )

        cycle = self._find_cycle()
        if cycle:
            result.errors.append(f"Dependency cycle: {' -> '.join(cycle)}")

    def _find_cycle(self) -> Optional[List[str]]:
        visiting: List[str] = []
        done: Set[str] = set()

        def visit(name: str) -> Optional[List[str]]:
            if name in visiting:
                return visiting[visiting.index(name):] + [name]
            if name in done or name not in self.services:
                return None
            visiting.append(name)
            for target in self.services[name].depends_on:
                found = visit(target)
                if found:
                    return found
            visiting.pop()
            done.add(name)
            return None

        for name in sorted(self.services):
            found = visit(name)
            if found:
                return found
        return None

    def _validate_ports(self, result: ManifestValidation) -> None:
        claimed: Dict[tuple, str] = {}
        for service in self.services.values():
            for port in service.ports:
                if port.host_port is None:
                    continue
                key = (port.host_ip or "0.0.0.0", port.host_port, port.protocol)
                owner = claimed.get(key)
                if owner:
                    result.errors.append(
                        f"Host port {port.host_port}/{port.protocol} is published by both "
                        f"'{owner}' and '{service.name}'"
                    )
                else:
                    claimed[key] = service.name

    def _validate_networks(self, result: ManifestValidation) -> None:
        subnets = {}
        for network in self.networks.values():
            if not network.subnet:
                continue
            try:
                subnet = ipaddress.ip_network(network.subnet, strict=True)
            except ValueError as e:
                result.errors.append(f"Network '{network.name}' has invalid subnet: {e}")
                continue

            for other_name, other in subnets.items():
                if subnet.overlaps(other):
                    result.errors.append(
                        f"Network '{network.name}' subnet {subnet} overlaps '{other_name}' ({other})"
                    )
            subnets[network.name] = subnet

            if network.gateway:
                try:
                    gateway = ipaddress.ip_address(network.gateway)
                except ValueError:
                    result.errors.append(
                        f"Network '{network.name}' has invalid gateway '{network.gateway}'"
                    )
                else:
                    if gateway not in subnet:
                        result.errors.append(
                            f"Network '{network.name}' gateway {gateway} is outside {subnet}"
                        )

        for service in self.services.values():
            for name, opts in service.networks.items():
                address = opts.get("ipv4_address")
                if not address or name not in subnets:
                    continue
                try:
                    inside = ipaddress.ip_address(address) in subnets[name]
                except ValueError:
                    inside = False
                if not inside:
                    result.errors.append(
                        f"Service '{service.name}' address {address} is outside network '{name}'"
                    )

        for name in EXPECTED_NETWORKS:
            if name not in self.networks:
                result.warnings.append(f"Expected network '{name}' is not defined")
        for name in INTERNAL_NETWORKS:
            network = self.networks.get(name)
            if network and not network.internal:
                result.warnings.append(f"Network '{name}' should be marked internal")

    def required_variables(self) -> List[str]:
        """``${VAR}`` references that have no default value."""
        required = set()
        for text in _walk_strings(self.raw):
            for match in VARIABLE_PATTERN.finditer(text):
                name, operator = match.group(1), match.group(2)
                if operator in (None, "?", ":?"):
                    required.add(name)
        return sorted(required)

    def health_endpoints(self) -> List[HealthEndpoint]:
        endpoints = []
        for service in self.services.values():
            if not service.has_healthcheck:
                continue
            endpoint = HealthEndpoint(service=service.name, container=service.container)
            match = HEALTH_URL_PATTERN.search(service.healthcheck.test)
            if match:
                endpoint.container_port = int(match.group(1) or 80)
                endpoint.path = match.group(2) or "/"
                for port in service.ports:
                    if port.container_port == endpoint.container_port and port.host_port:
                        endpoint.host_port = port.host_port
                        break
            endpoints.append(endpoint)
        return endpoints


def _walk_strings(node: Any):
    if isinstance(node, str):
        yield node
    elif isinstance(node, dict):
        for key, value in node.items():
            yield from _walk_strings(key)
            yield from _walk_strings(value)
    elif isinstance(node, list):
        for item in node:
            yield from _walk_strings(item)
