"""Tests for notification providers and the dispatcher (all HTTP is faked)."""

from __future__ import annotations

import pytest
import requests

from deploykit.config import NotificationSettings
from deploykit.notifications import (
    ConsoleNotifier,
    DiscordNotifier,
    NotificationDispatcher,
    NotificationProvider,
    SlackNotifier,
    TeamsNotifier,
    build_dispatcher,
)
from deploykit.notifications.providers import WEBHOOK_TIMEOUT, format_event


class _Response:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class _Recorder:
    """Stands in for requests.post and remembers each call."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.status = 200

    def __call__(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        return _Response(self.status)


@pytest.fixture
def posted(monkeypatch):
    recorder = _Recorder()
    monkeypatch.setattr(requests, "post", recorder)
    return recorder


class _Exploding(NotificationProvider):
    def notify(self, event):
        raise RuntimeError("provider down")

    def is_available(self):
        return True


def _event(**overrides):
    event = {
        "type": "deploy_succeeded",
        "project": "shop",
        "environment": "staging",
        "version": "1.2.0",
        "user": "alice",
        "details": "",
        "severity": "success",
        "channel": "",
    }
    event.update(overrides)
    return event


class TestFormatEvent:
    def test_full_event(self):
        text = format_event(_event(details="all green"))
        assert text == "[shop] deploy_succeeded 1.2.0 -> staging by alice : all green"

    def test_minimal_event(self):
        assert format_event({"type": "pipeline_succeeded"}) == "pipeline_succeeded"


class TestConsoleNotifier:
    def test_logs_events(self):
        console = ConsoleNotifier()
        assert console.notify(_event())
        assert console.log[0]["version"] == "1.2.0"
        assert console.is_available()


class TestWebhookProviders:
    def test_slack_payload(self, posted):
        slack = SlackNotifier("https://hooks.slack.test/x", success_channel="#deployments")
        assert slack.notify(_event())
        call = posted.calls[0]
        assert call["url"] == "https://hooks.slack.test/x"
        assert call["timeout"] == WEBHOOK_TIMEOUT
        assert call["json"]["channel"] == "#deployments"
        assert "deploy_succeeded" in call["json"]["text"]

    def test_slack_channel_routing(self):
        slack = SlackNotifier("https://x", success_channel="#ok", failure_channel="#failures")
        assert slack.channel_for(_event(severity="success")) == "#ok"
        assert slack.channel_for(_event(severity="failure")) == "#failures"
        assert slack.channel_for(_event(severity="info")) == ""
        assert slack.channel_for(_event(channel="#ops", severity="failure")) == "#ops"

    def test_slack_without_channel(self, posted):
        SlackNotifier("https://x").notify(_event())
        assert "channel" not in posted.calls[0]["json"]

    def test_discord_accepts_204(self, posted):
        posted.status = 204
        assert DiscordNotifier("https://discord.test/hook").notify(_event())
        assert "content" in posted.calls[0]["json"]

    def test_teams_card_colour(self, posted):
        assert TeamsNotifier("https://teams.test/hook").notify(_event(severity="failure"))
        card = posted.calls[0]["json"]
        assert card["@type"] == "MessageCard"
        assert card["themeColor"] == "D50200"
        assert card["summary"] == card["text"]

    def test_http_error_returns_false(self, posted):
        posted.status = 500
        assert not TeamsNotifier("https://teams.test/hook").notify(_event())

    def test_request_exception_returns_false(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("unreachable")

        monkeypatch.setattr(requests, "post", boom)
        assert not SlackNotifier("https://x").notify(_event())

    def test_unavailable_without_url(self, posted):
        teams = TeamsNotifier()
        assert not teams.is_available()
        assert not teams.notify(_event())
        assert posted.calls == []


class TestDispatcher:
    def test_console_always_present(self):
        dispatcher = NotificationDispatcher(project="shop")
        assert isinstance(dispatcher.providers[0], ConsoleNotifier)
        event = dispatcher.dispatch("custom", environment="dev", details="hello")
        assert event["project"] == "shop"
        assert dispatcher.console.log == [event]

    def test_failing_provider_does_not_raise(self):
        dispatcher = NotificationDispatcher([_Exploding()])
        dispatcher.deploy_failed("dev", "1.0.0", "ci", "boom")
        assert dispatcher.console.log[0]["type"] == "deploy_failed"
        assert dispatcher.console.log[0]["severity"] == "failure"

    def test_unavailable_provider_skipped(self, posted):
        dispatcher = NotificationDispatcher([SlackNotifier()])
        dispatcher.deploy_started("dev", "1.0.0")
        assert posted.calls == []

    def test_lifecycle_helpers(self):
        dispatcher = NotificationDispatcher()
        dispatcher.deploy_succeeded("dev", "1.0.0", "ci")
        dispatcher.deploy_rolled_back("dev", "1.1.0", "1.0.0", "ci")
        dispatcher.promotion_rejected("staging", "1.1.0", "bob", "flaky tests")
        dispatcher.pipeline_finished("billing", False, "failed at Test")

        log = dispatcher.console.log
        assert [e["type"] for e in log] == [
            "deploy_succeeded", "deploy_rolled_back", "promotion_rejected", "pipeline_failed",
        ]
        assert log[1]["details"] == "restored 1.0.0"
        assert log[2]["details"] == "flaky tests"
        assert log[3]["details"] == "billing failed at Test"

    def test_build_dispatcher(self, posted):
        settings = NotificationSettings(
            slack_webhook="https://slack.test",
            slack_failure_channel="#failures",
            discord_webhook="https://discord.test",
        )
        dispatcher = build_dispatcher(settings, project="shop")
        kinds = [type(p) for p in dispatcher.providers]
        assert kinds == [ConsoleNotifier, SlackNotifier, DiscordNotifier]

        dispatcher.deploy_failed("production", "2.0.0", "ci", "health check failed")
        slack_call = next(c for c in posted.calls if c["url"] == "https://slack.test")
        assert slack_call["json"]["channel"] == "#failures"
        assert len(posted.calls) == 2
