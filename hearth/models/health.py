"""Health check result models shared by tunnel, TLS and stack checks."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class CheckStatus(str, Enum):
    """Outcome of a single check."""
    OK = "ok"
    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


@dataclass
class CheckResult:
    """Result of a single named check."""
    name: str
    status: CheckStatus
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != CheckStatus.FAIL


@dataclass
class HealthReport:
    """Ordered collection of check results."""
    checks: List[CheckResult] = field(default_factory=list)

    def add(self, result: CheckResult) -> CheckResult:
        self.checks.append(result)
        return result

    @property
    def ok(self) -> bool:
        return all(check.ok for check in self.checks)

    @property
    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if c.status == CheckStatus.FAIL]

    @property
    def warnings(self) -> List[CheckResult]:
        return [c for c in self.checks if c.status == CheckStatus.WARN]

    def exit_code(self) -> int:
        return 0 if self.ok else 1
