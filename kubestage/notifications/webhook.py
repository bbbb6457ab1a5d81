"""Generic JSON webhook channel.

POSTs the DeploymentReport in the same shape as ``--output json`` so
consumers can parse it without KubeStage-specific knowledge.
"""

from __future__ import annotations

import httpx

from kubestage.models.report import DeploymentReport
from kubestage.notifications.manager import NotificationChannel
from kubestage.observability.logging import get_logger
from kubestage.report.reporter import report_to_dict

_log = get_logger("notifications.webhook")


class WebhookNotificationChannel(NotificationChannel):
    """Delivers reports by POSTing JSON to a configurable URL.

    Args:
        url:       Full endpoint URL.
        headers:   Optional extra headers (e.g. Authorization).
        timeout:   HTTP request timeout in seconds. Defaults to 10.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook url must not be empty")
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Webhook url must be http(s), got: {url!r}")
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._transport = transport

    @property
    def channel_name(self) -> str:
        return "webhook"

    async def send(self, report: DeploymentReport) -> bool:
        """Returns True on a 2xx response, False otherwise."""
        request_headers = {
            "Content-Type": "application/json",
            **self._headers,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=report_to_dict(report), headers=request_headers)
                if response.is_success:
                    return True
                _log.warning(
                    "webhook_non_2xx_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                )
                return False
        except httpx.TimeoutException:
            _log.warning("webhook_request_timeout", url=self._url)
            return False
        except httpx.HTTPError as exc:
            _log.warning("webhook_http_error", error=str(exc))
            return False
