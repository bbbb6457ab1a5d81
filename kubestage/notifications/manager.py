"""Report notifier for KubeStage.

NotificationChannel -- ABC every channel must implement.
ReportNotifier      -- Delivers the final DeploymentReport to every
                       registered channel; a failing channel never affects
                       the others or the run's exit code.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from kubestage.models.report import DeploymentReport
from kubestage.observability.logging import get_logger
from kubestage.observability.metrics import notifications_total

_log = get_logger("notifications.manager")


class NotificationChannel(ABC):
    """Abstract base class for all notification channels.

    ``send`` should not raise; it returns ``False`` when delivery fails.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Identifier used in metrics and logs."""

    @abstractmethod
    async def send(self, report: DeploymentReport) -> bool:
        """Deliver *report* via this channel.

        Returns:
            True  -- accepted by the remote endpoint.
            False -- delivery failed (already logged inside implementation).
        """


class ReportNotifier:
    """Sends a report to every channel concurrently and waits for delivery.

    The process exits right after a run, so delivery is awaited rather
    than scheduled in the background.
    """

    def __init__(self, channels: list[NotificationChannel]) -> None:
        self._channels = channels

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    async def notify(self, report: DeploymentReport) -> dict[str, bool]:
        """Deliver *report*; returns channel name -> success."""
        if not self._channels:
            return {}
        outcomes = await asyncio.gather(*(self._send_one(c, report) for c in self._channels))
        return {c.channel_name: ok for c, ok in zip(self._channels, outcomes, strict=True)}

    async def _send_one(self, channel: NotificationChannel, report: DeploymentReport) -> bool:
        try:
            success = await channel.send(report)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "notification_channel_unexpected_error",
                channel=channel.channel_name,
                error=str(exc),
            )
            success = False

        notifications_total.labels(channel=channel.channel_name, success="true" if success else "false").inc()
        if success:
            _log.info("notification_sent", channel=channel.channel_name, verdict=report.verdict.value)
        else:
            _log.warning("notification_failed", channel=channel.channel_name, verdict=report.verdict.value)
        return success
