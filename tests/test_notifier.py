"""
Unit tests for the LeadConnector notifier.
"""
import json
from typing import Callable, List

import httpx
import pytest

from paymongo_relay.config import Settings
from paymongo_relay.integrations.notifier import LeadConnectorNotifier, NotificationError


class TestLeadConnectorNotifier:
    """Test suite for LeadConnectorNotifier."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_posts_payload(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        notifier = LeadConnectorNotifier(test_settings, make_http_client(handler))
        result = await notifier.send({"status": "payment_initiated", "amount": "5500.00"})

        assert result == {"ok": True}
        assert str(requests[0].url) == test_settings.leadconnector_webhook_url
        assert json.loads(requests[0].content)["amount"] == "5500.00"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disabled_notifier_sends_nothing(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        requests: List[httpx.Request] = []
        settings = test_settings.model_copy(update={"disable_leadconnector_webhook": True})
        notifier = LeadConnectorNotifier(
            settings, make_http_client(lambda r: requests.append(r) or httpx.Response(200))
        )

        assert not notifier.enabled
        assert await notifier.send({"status": "payment_initiated"}) is None
        assert requests == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unconfigured_notifier_sends_nothing(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        settings = test_settings.model_copy(update={"leadconnector_webhook_url": None})
        notifier = LeadConnectorNotifier(settings, make_http_client(lambda r: httpx.Response(500)))

        assert await notifier.send({"status": "payment_initiated"}) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_raises_and_retries_once(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        bodies: List[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(502 if len(bodies) == 1 else 200)

        notifier = LeadConnectorNotifier(test_settings, make_http_client(handler))

        with pytest.raises(NotificationError):
            await notifier.send({"status": "payment_successful"})
        await notifier.wait_for_retries()

        assert len(bodies) == 2
        assert "retry" not in bodies[0]
        assert bodies[1]["retry"] is True
        assert bodies[1]["status"] == "payment_successful"
        assert "502" in bodies[1]["originalError"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retry_failure_is_not_retried_again(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        attempts: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(500)

        notifier = LeadConnectorNotifier(test_settings, make_http_client(handler))

        with pytest.raises(NotificationError):
            await notifier.send({"status": "payment_failed"})
        await notifier.wait_for_retries()

        assert len(attempts) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_to_many_reports_each_webhook(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500 if request.url.host == "bad.test" else 202)

        notifier = LeadConnectorNotifier(test_settings, make_http_client(handler))
        results = await notifier.send_to_many(
            {"status": "payment_successful"},
            [{"url": "https://good.test/hook"}, {"url": "https://bad.test/hook"}],
        )

        assert results[0] == {"webhook": "https://good.test/hook", "status_code": 202}
        assert results[1]["webhook"] == "https://bad.test/hook"
        assert "error" in results[1]
