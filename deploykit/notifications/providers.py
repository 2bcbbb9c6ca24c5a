"""Notification providers — console, Slack, Teams, Discord."""

from __future__ import annotations

import abc
import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10

_SEVERITY_COLOURS = {"success": "2EB886", "failure": "D50200", "info": "439FE0"}
_EVENT_FIELDS = (("version", "{}"), ("environment", "-> {}"), ("user", "by {}"), ("details", ": {}"))


class NotificationProvider(abc.ABC):
    """Delivers deployment events somewhere people will see them.

    Events are plain dicts built by the dispatcher (``type``, ``project``,
    ``environment``, ``version``, ``user``, ``timestamp``, ``details``,
    ``severity``, ``channel``).  ``notify`` returns False instead of raising
    when delivery fails.
    """

    @abc.abstractmethod
    def notify(self, event: dict[str, Any]) -> bool: ...

    @abc.abstractmethod
    def is_available(self) -> bool: ...


class ConsoleNotifier(NotificationProvider):
    """Logs every event and keeps a copy in memory."""

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []

    def notify(self, event: dict[str, Any]) -> bool:
        self._events.append(event)
        logger.info("[deploykit] %s", format_event(event))
        return True

    def is_available(self) -> bool:
        return True

    @property
    def log(self) -> list[dict[str, Any]]:
        return list(self._events)


class WebhookNotifier(NotificationProvider):
    """Base for providers that POST a JSON payload to an incoming webhook."""

    label = "webhook"
    ok_statuses: tuple[int, ...] = (200,)

    def __init__(self, webhook_url: str | None = None) -> None:
        self.webhook_url = webhook_url

    def is_available(self) -> bool:
        return bool(self.webhook_url)

    def build_payload(self, event: dict[str, Any]) -> dict[str, Any]:
        return {"text": format_event(event)}

    def notify(self, event: dict[str, Any]) -> bool:
        if not self.is_available():
            logger.warning("%s notifier has no webhook URL, skipping.", self.label)
            return False

        try:
            resp = requests.post(
                self.webhook_url,
                json=self.build_payload(event),
                timeout=WEBHOOK_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.warning("%s notification failed: %s", self.label, exc)
            return False

        if resp.status_code not in self.ok_statuses:
            logger.warning(
                "%s notification rejected (HTTP %s)", self.label, resp.status_code,
            )
            return False
        return True


class SlackNotifier(WebhookNotifier):
    """Slack incoming-webhook provider with per-outcome channel routing.

    Parameters
    ----------
    webhook_url:
        Slack incoming webhook URL.
    success_channel:
        Channel used for ``success`` severity events.
    failure_channel:
        Channel used for ``failure`` severity events.
    """

    label = "Slack"

    def __init__(
        self,
        webhook_url: str | None = None,
        success_channel: str = "",
        failure_channel: str = "",
    ) -> None:
        super().__init__(webhook_url)
        self.success_channel = success_channel
        self.failure_channel = failure_channel

    def channel_for(self, event: dict[str, Any]) -> str:
        if event.get("channel"):
            return str(event["channel"])
        severity = event.get("severity", "info")
        if severity == "success":
            return self.success_channel
        if severity == "failure":
            return self.failure_channel
        return ""

    def build_payload(self, event: dict[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": format_event(event)}
        channel = self.channel_for(event)
        if channel:
            payload["channel"] = channel
        return payload


class TeamsNotifier(WebhookNotifier):
    """Microsoft Teams connector card, coloured by severity."""

    label = "Teams"

    def build_payload(self, event: dict[str, Any]) -> dict[str, Any]:
        text = format_event(event)
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "summary": text,
            "themeColor": _SEVERITY_COLOURS.get(event.get("severity", "info"), _SEVERITY_COLOURS["info"]),
            "text": text,
        }


class DiscordNotifier(WebhookNotifier):
    """Discord webhook; Discord answers 204 on success."""

    label = "Discord"
    ok_statuses = (200, 204)

    def build_payload(self, event: dict[str, Any]) -> dict[str, Any]:
        return {"content": format_event(event)}


def format_event(event: dict[str, Any]) -> str:
    """One line per event, e.g. ``[shop] deploy_succeeded 1.2.0 -> staging by alice : all green``."""
    head = event.get("type", "unknown")
    if event.get("project"):
        head = f"[{event['project']}] {head}"
    parts = [head]
    for key, template in _EVENT_FIELDS:
        if event.get(key):
            parts.append(template.format(event[key]))
    return " ".join(parts)
