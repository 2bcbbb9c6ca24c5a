"""Tests for health checks and the retrying verifier."""

from __future__ import annotations

import sys

import pytest
import requests

from deploykit.config import HealthCheckSpec
from deploykit.execution.health import (
    CallableHealthCheck,
    CommandHealthCheck,
    HealthVerifier,
    HttpHealthCheck,
    build_health_check,
)

PY = f'"{sys.executable}"'


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


class TestChecks:
    def test_http_check_passes(self, monkeypatch):
        seen = {}

        def fake_get(url, timeout=None):
            seen.update(url=url, timeout=timeout)
            return _Response(200)

        monkeypatch.setattr(requests, "get", fake_get)
        result = HttpHealthCheck("http://svc/health", timeout=3).run()
        assert result.passed
        assert result.name == "http://svc/health"
        assert seen == {"url": "http://svc/health", "timeout": 3}

    def test_http_check_wrong_status(self, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda url, timeout=None: _Response(503))
        result = HttpHealthCheck("http://svc/health", name="api").run()
        assert not result.passed
        assert "503" in result.message

    def test_http_check_connection_error(self, monkeypatch):
        def refuse(url, timeout=None):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", refuse)
        result = HttpHealthCheck("http://svc/health").run()
        assert not result.passed
        assert "request failed" in result.message

    def test_command_check(self):
        assert CommandHealthCheck(f"{PY} -c \"pass\"").run().passed
        result = CommandHealthCheck(f"{PY} -c \"import sys; sys.exit('db down')\"", name="db").run()
        assert not result.passed
        assert "db down" in result.message

    def test_command_check_timeout(self):
        result = CommandHealthCheck(f"{PY} -c \"import time; time.sleep(3)\"", timeout=0.5).run()
        assert not result.passed
        assert "timed out" in result.message

    def test_callable_check_exception(self):
        def broken():
            raise RuntimeError("no route")

        result = CallableHealthCheck(broken).run()
        assert result.name == "broken"
        assert not result.passed
        assert "no route" in result.message

    def test_build_from_spec(self):
        http = build_health_check(HealthCheckSpec(url="http://svc/health", expected_status=204))
        assert isinstance(http, HttpHealthCheck)
        assert http.expected_status == 204
        command = build_health_check(HealthCheckSpec(type="command", command="curl -f localhost"))
        assert isinstance(command, CommandHealthCheck)
        assert command.name == "curl -f localhost"


class TestHealthVerifier:
    def test_no_checks_is_healthy(self):
        report = HealthVerifier(sleep=pytest.fail).verify([])
        assert report.healthy
        assert report.attempts == 0

    def test_retries_until_healthy(self):
        calls = iter([False, False, True])
        sleeps: list[float] = []
        verifier = HealthVerifier(sleep=sleeps.append)

        report = verifier.verify([CallableHealthCheck(lambda: next(calls), name="warmup")], retries=5, interval=1.5)
        assert report.healthy
        assert report.attempts == 3
        assert sleeps == [1.5, 1.5]

    def test_gives_up_after_retries(self):
        sleeps: list[float] = []
        verifier = HealthVerifier(sleep=sleeps.append)
        checks = [CallableHealthCheck(lambda: True, name="ok"), CallableHealthCheck(lambda: False, name="bad")]

        report = verifier.verify(checks, retries=3, interval=0.1)
        assert not report.healthy
        assert report.attempts == 3
        assert [c.name for c in report.failures] == ["bad"]
        assert len(sleeps) == 2

    def test_check_once(self):
        report = HealthVerifier().check_once([CallableHealthCheck(lambda: True)])
        assert report.healthy
        assert report.attempts == 1
