"""Docker Compose stack: manifest validation, runner and smoke tests."""

from .manifest import (
    ComposeManifest,
    ComposeManifestError,
    HealthEndpoint,
    ManifestValidation,
    NetworkSpec,
    PortMapping,
    ServiceSpec,
)
from .runner import CommandError, ComposeRunner
from .smoke import SmokeResult, SmokeTester

__all__ = [
    "ComposeManifest",
    "ComposeManifestError",
    "HealthEndpoint",
    "ManifestValidation",
    "NetworkSpec",
    "PortMapping",
    "ServiceSpec",
    "CommandError",
    "ComposeRunner",
    "SmokeResult",
    "SmokeTester",
]
