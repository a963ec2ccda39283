"""
LeadConnector inbound-webhook notifier.

Failed notifications are retried exactly once after a delay, in the
background; the original failure is still raised to the caller.
"""
import asyncio
from typing import Any, Dict, List, Optional, Set

import httpx
import structlog

from paymongo_relay.config import Settings, get_settings
from paymongo_relay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""

    pass


class LeadConnectorNotifier:
    """Posts checkout and payment events to the LeadConnector webhook."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.webhook_url = self.settings.leadconnector_webhook_url
        self.http_client = http_client or httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
        )
        self._pending_retries: Set["asyncio.Task[None]"] = set()

    @property
    def enabled(self) -> bool:
        return not self.settings.disable_leadconnector_webhook and bool(self.webhook_url)

    async def send(self, data: Dict[str, Any]) -> Optional[Any]:
        """
        Deliver ``data`` to LeadConnector.

        Returns the decoded response body, or None when notifications are
        disabled or not configured.

        Raises:
            NotificationError: If delivery fails (a retry is already scheduled)
        """
        if self.settings.disable_leadconnector_webhook:
            metrics.record_notification("leadconnector", "skipped")
            return None

        if not self.webhook_url:
            logger.info("leadconnector_webhook_not_configured")
            metrics.record_notification("leadconnector", "skipped")
            return None

        try:
            response = await self.http_client.post(
                self.webhook_url,
                json=data,
                timeout=self.settings.notification_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("leadconnector_send_failed", status=data.get("status"), error=str(e))
            metrics.record_notification("leadconnector", "failed")
            self._schedule_retry(data, str(e))
            raise NotificationError(f"Failed to send to LeadConnector: {e}") from e

        logger.info("leadconnector_sent", status=data.get("status"))
        metrics.record_notification("leadconnector", "sent")
        try:
            return response.json()
        except ValueError:
            return response.text

    def _schedule_retry(self, data: Dict[str, Any], original_error: str) -> None:
        task = asyncio.create_task(self._retry_later(data, original_error))
        self._pending_retries.add(task)
        task.add_done_callback(self._pending_retries.discard)

    async def _retry_later(self, data: Dict[str, Any], original_error: str) -> None:
        await asyncio.sleep(self.settings.notification_retry_delay_seconds)
        try:
            response = await self.http_client.post(
                self.webhook_url,
                json={**data, "retry": True, "originalError": original_error},
                timeout=self.settings.notification_timeout_seconds,
            )
            response.raise_for_status()
            logger.info("leadconnector_retry_succeeded", status=data.get("status"))
            metrics.record_notification("leadconnector", "retried")
        except httpx.HTTPError as e:
            logger.error("leadconnector_retry_failed", status=data.get("status"), error=str(e))
            metrics.record_notification("leadconnector", "retry_failed")

    async def send_to_many(
        self, data: Dict[str, Any], webhooks: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Post ``data`` to several webhooks concurrently.

        Each webhook is ``{"url": ..., "headers": {...}}``. Returns one result
        per webhook, in order, with either ``status_code`` or ``error``.
        """

        async def _post(webhook: Dict[str, Any]) -> Dict[str, Any]:
            try:
                response = await self.http_client.post(
                    webhook["url"],
                    json=data,
                    headers=webhook.get("headers") or {"Content-Type": "application/json"},
                    timeout=5.0,
                )
                response.raise_for_status()
                return {"webhook": webhook["url"], "status_code": response.status_code}
            except httpx.HTTPError as e:
                return {"webhook": webhook["url"], "error": str(e)}

        results = await asyncio.gather(*(_post(webhook) for webhook in webhooks))

        failures = [result for result in results if "error" in result]
        if failures:
            logger.error("webhook_fanout_failures", failures=failures)
        return list(results)

    async def wait_for_retries(self) -> None:
        """Wait for scheduled retries to finish (shutdown and tests)."""
        if self._pending_retries:
            await asyncio.gather(*self._pending_retries, return_exceptions=True)

    async def close(self) -> None:
        """Finish pending retries and close the HTTP client."""
        await self.wait_for_retries()
        await self.http_client.aclose()
