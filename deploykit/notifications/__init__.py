"""Notifications — console, Slack, Teams, and Discord delivery of deployment events."""

from deploykit.notifications.dispatcher import NotificationDispatcher, build_dispatcher
from deploykit.notifications.providers import (
    ConsoleNotifier,
    DiscordNotifier,
    NotificationProvider,
    SlackNotifier,
    TeamsNotifier,
)

__all__ = [
    "ConsoleNotifier",
    "DiscordNotifier",
    "NotificationDispatcher",
    "NotificationProvider",
    "SlackNotifier",
    "TeamsNotifier",
    "build_dispatcher",
]
