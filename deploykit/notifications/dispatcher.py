"""NotificationDispatcher — routes deployment events to notification providers."""

from __future__ import annotations

import logging
import time
from typing import Any

from deploykit.config import NotificationSettings
from deploykit.notifications.providers import (
    ConsoleNotifier,
    DiscordNotifier,
    NotificationProvider,
    SlackNotifier,
    TeamsNotifier,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Dispatch deployment events to all configured notification providers.

    Always includes a ConsoleNotifier as the default provider.  Provider
    failures are logged and never interrupt a deployment.
    """

    def __init__(
        self,
        providers: list[NotificationProvider] | None = None,
        project: str = "",
    ) -> None:
        self.project = project
        self._console = ConsoleNotifier()
        self._providers: list[NotificationProvider] = [self._console]
        if providers:
            self._providers.extend(providers)

    def add_provider(self, provider: NotificationProvider) -> None:
        """Register an additional notification provider."""
        self._providers.append(provider)

    @property
    def providers(self) -> list[NotificationProvider]:
        return list(self._providers)

    @property
    def console(self) -> ConsoleNotifier:
        """Access the built-in console notifier (useful for testing)."""
        return self._console

    def dispatch(
        self,
        event_type: str,
        *,
        environment: str = "",
        version: str = "",
        user: str = "",
        details: str = "",
        severity: str = "info",
        channel: str = "",
    ) -> dict[str, Any]:
        """Build an event and send it to every available provider.

        Returns the event dict that was dispatched.
        """
        event = {
            "type": event_type,
            "project": self.project,
            "environment": environment,
            "version": version,
            "user": user,
            "timestamp": time.time(),
            "details": details,
            "severity": severity,
            "channel": channel,
        }
        self._dispatch(event)
        return event

    # -- Deployment lifecycle -------------------------------------------------

    def deploy_started(self, environment: str, version: str, user: str = "") -> None:
        self.dispatch("deploy_started", environment=environment, version=version, user=user)

    def deploy_succeeded(self, environment: str, version: str, user: str = "") -> None:
        self.dispatch(
            "deploy_succeeded",
            environment=environment, version=version, user=user, severity="success",
        )

    def deploy_failed(
        self, environment: str, version: str, user: str = "", details: str = "",
    ) -> None:
        self.dispatch(
            "deploy_failed",
            environment=environment, version=version, user=user,
            details=details, severity="failure",
        )

    def deploy_rolled_back(
        self, environment: str, version: str, restored: str, user: str = "",
    ) -> None:
        self.dispatch(
            "deploy_rolled_back",
            environment=environment, version=version, user=user,
            details=f"restored {restored}", severity="failure",
        )

    def rollback_succeeded(
        self, environment: str, version: str, user: str = "", details: str = "",
    ) -> None:
        self.dispatch(
            "rollback_succeeded",
            environment=environment, version=version, user=user,
            details=details, severity="success",
        )

    def rollback_failed(
        self, environment: str, version: str, user: str = "", details: str = "",
    ) -> None:
        self.dispatch(
            "rollback_failed",
            environment=environment, version=version, user=user,
            details=details, severity="failure",
        )

    # -- Promotion ------------------------------------------------------------

    def promotion_requested(self, environment: str, version: str, user: str = "") -> None:
        self.dispatch("promotion_requested", environment=environment, version=version, user=user)

    def promotion_approved(self, environment: str, version: str, user: str = "") -> None:
        self.dispatch("promotion_approved", environment=environment, version=version, user=user)

    def promotion_rejected(
        self, environment: str, version: str, user: str = "", reason: str = "",
    ) -> None:
        self.dispatch(
            "promotion_rejected",
            environment=environment, version=version, user=user, details=reason,
        )

    # -- Pipelines ------------------------------------------------------------

    def pipeline_finished(self, name: str, success: bool, details: str = "") -> None:
        self.dispatch(
            "pipeline_succeeded" if success else "pipeline_failed",
            details=f"{name} {details}".strip(),
            severity="success" if success else "failure",
        )

    def _dispatch(self, event: dict[str, Any]) -> None:
        """Send event to all available providers."""
        for provider in self._providers:
            if provider.is_available():
                try:
                    provider.notify(event)
                except Exception as exc:
                    logger.warning(
                        "Notification provider %s failed: %s",
                        type(provider).__name__,
                        exc,
                    )


def build_dispatcher(
    settings: NotificationSettings,
    project: str = "",
) -> NotificationDispatcher:
    """Create a dispatcher with a provider for every configured webhook."""
    providers: list[NotificationProvider] = []
    if settings.slack_webhook:
        providers.append(SlackNotifier(
            settings.slack_webhook,
            success_channel=settings.slack_success_channel,
            failure_channel=settings.slack_failure_channel,
        ))
    if settings.teams_webhook:
        providers.append(TeamsNotifier(settings.teams_webhook))
    if settings.discord_webhook:
        providers.append(DiscordNotifier(settings.discord_webhook))
    return NotificationDispatcher(providers, project=project)
