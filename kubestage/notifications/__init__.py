"""Report delivery for KubeStage.

Exports:
    NotificationChannel        -- Abstract base for channel implementations.
    ReportNotifier             -- Sends the final report to every channel.
    WebhookNotificationChannel -- JSON POST webhook channel.
    build_notifier             -- Factory used by the application bootstrap.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from kubestage.notifications.manager import NotificationChannel, ReportNotifier
from kubestage.notifications.webhook import WebhookNotificationChannel
from kubestage.observability.logging import get_logger

if TYPE_CHECKING:
    from kubestage.models.config import NotificationConfig

_log = get_logger("notifications")

__all__ = [
    "NotificationChannel",
    "ReportNotifier",
    "WebhookNotificationChannel",
    "build_notifier",
]


def build_notifier(config: NotificationConfig) -> ReportNotifier:
    """Build a ReportNotifier from environment-resolved secrets.

    ``webhook_secret_ref`` is the *name* of an environment variable whose
    value is the webhook URL, so the URL itself never sits in config.
    """
    channels: list[NotificationChannel] = []

    webhook_ref = config.webhook_secret_ref
    if webhook_ref:
        webhook_url = os.environ.get(webhook_ref, "")
        if webhook_url:
            try:
                channels.append(WebhookNotificationChannel(url=webhook_url))
                _log.info("webhook_channel_enabled")
            except ValueError as exc:
                _log.warning("webhook_channel_disabled", reason=str(exc))
        else:
            _log.debug("webhook_channel_skipped", reason="secret ref env var is empty")

    if not channels:
        _log.debug("no_notification_channels_configured")

    return ReportNotifier(channels=channels)
