"""Post-deployment health checks and the retrying HealthVerifier."""

from __future__ import annotations

import abc
import logging
import subprocess
import time
from typing import Callable

import requests
from pydantic import BaseModel, Field

from deploykit.config import HealthCheckSpec

logger = logging.getLogger(__name__)


class CheckResult(BaseModel):
    """Result of a single health check."""

    name: str = ""
    passed: bool = True
    message: str = ""


class HealthReport(BaseModel):
    """Aggregate health report."""

    status: str = "healthy"  # healthy, unhealthy
    attempts: int = 1
    checks: list[CheckResult] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    @property
    def failures(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]


class HealthCheck(abc.ABC):
    """Base class for all health checks."""

    name: str = "check"

    @abc.abstractmethod
    def run(self) -> CheckResult:
        """Run the check once."""


class HttpHealthCheck(HealthCheck):
    """GET *url* and expect *expected_status*."""

    def __init__(
        self,
        url: str,
        expected_status: int = 200,
        timeout: float = 5.0,
        name: str = "",
    ) -> None:
        self.url = url
        self.expected_status = expected_status
        self.timeout = timeout
        self.name = name or url

    def run(self) -> CheckResult:
        try:
            resp = requests.get(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            return CheckResult(name=self.name, passed=False, message=f"request failed: {exc}")
        passed = resp.status_code == self.expected_status
        return CheckResult(
            name=self.name,
            passed=passed,
            message=f"HTTP {resp.status_code} (expected {self.expected_status})",
        )


class CommandHealthCheck(HealthCheck):
    """Run a shell command and expect exit code 0."""

    def __init__(self, command: str, timeout: float = 5.0, name: str = "") -> None:
        self.command = command
        self.timeout = timeout
        self.name = name or command

    def run(self) -> CheckResult:
        try:
            result = subprocess.run(
                self.command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return CheckResult(name=self.name, passed=False, message=f"timed out after {self.timeout}s")
        except OSError as exc:
            return CheckResult(name=self.name, passed=False, message=str(exc))

        if result.returncode == 0:
            return CheckResult(name=self.name, passed=True, message="exit 0")
        output = (result.stderr or result.stdout).strip()
        return CheckResult(
            name=self.name,
            passed=False,
            message=f"exit {result.returncode}: {output[:200]}",
        )


class CallableHealthCheck(HealthCheck):
    """Wrap a zero-argument callable returning a bool."""

    def __init__(self, func: Callable[[], bool], name: str = "") -> None:
        self.func = func
        self.name = name or getattr(func, "__name__", "callable")

    def run(self) -> CheckResult:
        try:
            passed = bool(self.func())
        except Exception as exc:
            return CheckResult(name=self.name, passed=False, message=f"raised {exc!r}")
        return CheckResult(name=self.name, passed=passed, message="ok" if passed else "returned False")


def build_health_check(spec: HealthCheckSpec) -> HealthCheck:
    """Create a health check from its configuration."""
    if spec.type == "http":
        return HttpHealthCheck(spec.url, spec.expected_status, spec.timeout, spec.name)
    return CommandHealthCheck(spec.command, spec.timeout, spec.name)


class HealthVerifier:
    """Run health checks with retries until they all pass.

    Parameters
    ----------
    sleep:
        Sleep function used between attempts (injectable for tests).
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    def check_once(self, checks: list[HealthCheck]) -> HealthReport:
        results = [check.run() for check in checks]
        status = "healthy" if all(r.passed for r in results) else "unhealthy"
        return HealthReport(status=status, checks=results)

    def verify(
        self,
        checks: list[HealthCheck],
        retries: int = 3,
        interval: float = 2.0,
    ) -> HealthReport:
        """Run *checks* up to *retries* times, sleeping *interval* in between.

        An empty check list is healthy.
        """
        if not checks:
            return HealthReport(status="healthy", attempts=0)

        attempts = max(retries, 1)
        report = HealthReport(status="unhealthy")
        for attempt in range(1, attempts + 1):
            report = self.check_once(checks)
            report.attempts = attempt
            if report.healthy:
                return report
            logger.info(
                "Health attempt %d/%d failed: %s",
                attempt, attempts, ", ".join(c.name for c in report.failures),
            )
            if attempt < attempts:
                self._sleep(interval)
        return report
