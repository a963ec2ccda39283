"""
Unit tests for the PayMongo API client.
"""
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from paymongo_relay.config import Settings
from paymongo_relay.integrations.paymongo_client import (
    CircuitBreaker,
    PayMongoClient,
    PayMongoError,
    PayMongoErrorType,
)

BASE_URL = "https://api.paymongo.test/v1"


def _intent_response() -> Dict[str, Any]:
    return {
        "data": {
            "id": "pi_test_123",
            "type": "payment_intent",
            "attributes": {
                "amount": 550050,
                "currency": "PHP",
                "status": "awaiting_payment_method",
                "client_key": "pi_test_123_client_abc",
            },
        }
    }


def _session_response() -> Dict[str, Any]:
    return {
        "data": {
            "id": "cs_test_123",
            "type": "checkout_session",
            "attributes": {"checkout_url": "https://checkout.paymongo.com/cs_test_123"},
        }
    }


class TestPayMongoClient:
    """Test suite for PayMongoClient."""

    @staticmethod
    def _client(
        test_settings: Settings,
        make_http_client: Callable[..., httpx.AsyncClient],
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> PayMongoClient:
        return PayMongoClient(
            settings=test_settings,
            http_client=make_http_client(handler, base_url=BASE_URL),
            retry_base_delay=0,
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_payment_intent_with_checkout_session(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        """Intent and checkout session carry integer centavos only."""
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/payment_intents"):
                return httpx.Response(200, json=_intent_response())
            return httpx.Response(200, json=_session_response())

        client = self._client(test_settings, make_http_client, handler)
        result = await client.create_payment_intent(
            amount_minor_units=550050,
            currency="php",
            description="Customization Plan - Juan Dela Cruz",
            metadata={"paymentReference": "PAYABC"},
            line_items=[
                {"name": "Customization Plan", "amount": 500045, "quantity": 1},
                {"name": "Tax", "amount": 50005, "quantity": 1},
            ],
        )

        assert [r.url.path for r in requests] == ["/v1/payment_intents", "/v1/checkout_sessions"]

        intent_attributes = json.loads(requests[0].content)["data"]["attributes"]
        assert intent_attributes["amount"] == 550050
        assert isinstance(intent_attributes["amount"], int)
        assert intent_attributes["currency"] == "PHP"
        assert intent_attributes["statement_descriptor"] == test_settings.statement_descriptor

        session_attributes = json.loads(requests[1].content)["data"]["attributes"]
        assert [item["amount"] for item in session_attributes["line_items"]] == [500045, 50005]
        assert session_attributes["success_url"] == test_settings.frontend_success_url

        assert result["id"] == "pi_test_123"
        assert result["attributes"]["client_key"] == "pi_test_123_client_abc"
        assert result["attributes"]["checkout_url"] == "https://checkout.paymongo.com/cs_test_123"
        assert result["attributes"]["checkout_session_id"] == "cs_test_123"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_line_items_must_sum_to_amount(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        calls: List[httpx.Request] = []
        client = self._client(
            test_settings, make_http_client, lambda r: calls.append(r) or httpx.Response(200)
        )

        with pytest.raises(ValueError, match="does not match"):
            await client.create_payment_intent(
                amount_minor_units=550050,
                currency="PHP",
                description="Mismatch",
                line_items=[{"amount": 500000}, {"amount": 50000}],
            )
        assert calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount,error", [(5500.5, TypeError), (True, TypeError), (0, ValueError)])
    async def test_rejects_non_integer_or_non_positive_amounts(
        self,
        test_settings: Settings,
        make_http_client: Callable[..., httpx.AsyncClient],
        amount: Any,
        error: type,
    ) -> None:
        client = self._client(test_settings, make_http_client, lambda r: httpx.Response(200))

        with pytest.raises(error):
            await client.create_payment_intent(
                amount_minor_units=amount, currency="PHP", description="Bad amount"
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] < 3:
                return httpx.Response(503, json={"errors": [{"code": "unavailable"}]})
            return httpx.Response(200, json=_intent_response())

        client = self._client(test_settings, make_http_client, handler)
        payment_intent = await client.get_payment_intent("pi_test_123")

        assert attempts["count"] == 3
        assert payment_intent["id"] == "pi_test_123"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            return httpx.Response(
                400,
                json={
                    "errors": [
                        {"code": "parameter_below_minimum", "detail": "amount cannot be less than 2000."}
                    ]
                },
            )

        client = self._client(test_settings, make_http_client, handler)

        with pytest.raises(PayMongoError) as exc_info:
            await client.get_payment_intent("pi_test_123")

        assert attempts["count"] == 1
        error = exc_info.value
        assert str(error) == "parameter_below_minimum: amount cannot be less than 2000."
        assert error.error_type == PayMongoErrorType.PERMANENT
        assert error.status_code == 400
        assert not error.retryable

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_network_errors_become_transient(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = self._client(test_settings, make_http_client, handler)

        with pytest.raises(PayMongoError, match="No response from PayMongo API") as exc_info:
            await client.list_webhooks()

        assert exc_info.value.error_type == PayMongoErrorType.TRANSIENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_refund(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, json={"data": {"id": "ref_test_1", "attributes": {"status": "pending"}}}
            )

        client = self._client(test_settings, make_http_client, handler)
        refund = await client.create_refund("pay_test_1", 550050, reason="duplicate")

        assert refund["id"] == "ref_test_1"
        attributes = json.loads(requests[0].content)["data"]["attributes"]
        assert attributes == {"payment_id": "pay_test_1", "amount": 550050, "reason": "duplicate"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_refund_rejects_unknown_reason(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        client = self._client(test_settings, make_http_client, lambda r: httpx.Response(200))

        with pytest.raises(ValueError, match="Invalid refund reason"):
            await client.create_refund("pay_test_1", 1000, reason="changed_mind")


class TestCircuitBreaker:
    """Test suite for the async circuit breaker."""

    @staticmethod
    async def _fail(error_type: PayMongoErrorType) -> None:
        raise PayMongoError("boom", error_type)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2, timeout=60)

        for _ in range(2):
            with pytest.raises(PayMongoError):
                await breaker.call(self._fail, PayMongoErrorType.TRANSIENT)

        assert breaker.state == "open"
        with pytest.raises(PayMongoError, match="Circuit breaker is open"):
            await breaker.call(self._fail, PayMongoErrorType.TRANSIENT)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_permanent_errors_do_not_open_circuit(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1)

        with pytest.raises(PayMongoError):
            await breaker.call(self._fail, PayMongoErrorType.PERMANENT)

        assert breaker.state == "closed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_half_open_closes_after_successes(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1, timeout=0, success_threshold=2)

        async def ok() -> str:
            return "ok"

        with pytest.raises(PayMongoError):
            await breaker.call(self._fail, PayMongoErrorType.RATE_LIMIT)
        assert breaker.state == "open"

        breaker.last_failure_time = 1.0  # far in the past
        assert await breaker.call(ok) == "ok"
        assert breaker.state == "half_open"
        assert await breaker.call(ok) == "ok"
        assert breaker.state == "closed"


class TestIdempotencyKeys:
    """Retried POSTs must reuse the key of their first attempt."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timed_out_refund_is_retried_with_same_key(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(
                200, json={"data": {"id": "ref_test_1", "attributes": {"status": "pending"}}}
            )

        client = PayMongoClient(
            settings=test_settings,
            http_client=make_http_client(handler, base_url=BASE_URL),
            retry_base_delay=0,
        )
        refund = await client.create_refund("pay_test_1", 550050)

        assert refund["id"] == "ref_test_1"
        keys = [r.headers.get("Idempotency-Key") for r in requests]
        assert len(keys) == 2
        assert keys[0]
        assert keys[0] == keys[1]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_separate_refunds_get_separate_keys(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"data": {"id": "ref_test_1", "attributes": {}}})

        client = PayMongoClient(
            settings=test_settings, http_client=make_http_client(handler, base_url=BASE_URL)
        )
        await client.create_refund("pay_test_1", 1000)
        await client.create_refund("pay_test_1", 1000)

        assert requests[0].headers["Idempotency-Key"] != requests[1].headers["Idempotency-Key"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payment_intent_and_session_keys_derive_from_reference(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/payment_intents"):
                if len(requests) == 1:
                    return httpx.Response(502, json={"errors": [{"code": "bad_gateway"}]})
                return httpx.Response(200, json=_intent_response())
            return httpx.Response(200, json=_session_response())

        client = PayMongoClient(
            settings=test_settings,
            http_client=make_http_client(handler, base_url=BASE_URL),
            retry_base_delay=0,
        )
        await client.create_payment_intent(
            amount_minor_units=550050,
            currency="PHP",
            description="Customization Plan - Juan Dela Cruz",
            idempotency_key="PAYABC",
        )

        assert [(r.url.path, r.headers["Idempotency-Key"]) for r in requests] == [
            ("/v1/payment_intents", "PAYABC-intent"),
            ("/v1/payment_intents", "PAYABC-intent"),
            ("/v1/checkout_sessions", "PAYABC-session"),
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reads_carry_no_key(
        self, test_settings: Settings, make_http_client: Callable[..., httpx.AsyncClient]
    ) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=_intent_response())

        client = PayMongoClient(
            settings=test_settings, http_client=make_http_client(handler, base_url=BASE_URL)
        )
        await client.get_payment_intent("pi_test_123")

        assert "Idempotency-Key" not in requests[0].headers


class TestPayMongoOperations:
    """Each public operation hits the expected PayMongo endpoint."""

    @pytest.fixture
    def recorded(self) -> List[httpx.Request]:
        return []

    @pytest.fixture
    def client(
        self,
        test_settings: Settings,
        make_http_client: Callable[..., httpx.AsyncClient],
        recorded: List[httpx.Request],
    ) -> PayMongoClient:
        def handler(request: httpx.Request) -> httpx.Response:
            recorded.append(request)
            if request.method == "GET" and request.url.path in ("/v1/payments", "/v1/webhooks"):
                return httpx.Response(200, json={"data": [{"id": "item_1"}]})
            return httpx.Response(200, json={"data": {"id": "res_1", "attributes": {}}})

        return PayMongoClient(
            settings=test_settings, http_client=make_http_client(handler, base_url=BASE_URL)
        )

    @staticmethod
    def _attributes(request: httpx.Request) -> Dict[str, Any]:
        return json.loads(request.content)["data"]["attributes"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_checkout_session(
        self, client: PayMongoClient, recorded: List[httpx.Request], test_settings: Settings
    ) -> None:
        await client.create_checkout_session(
            "pi_test_123", 550050, "php", "Customization Plan", metadata={"ref": "PAYABC"}
        )

        request = recorded[0]
        assert (request.method, request.url.path) == ("POST", "/v1/checkout_sessions")
        attributes = self._attributes(request)
        assert attributes["payment_intent_id"] == "pi_test_123"
        assert attributes["payment_method_types"] == ["gcash"]
        assert attributes["line_items"] == [
            {
                "amount": 550050,
                "currency": "PHP",
                "description": "Customization Plan",
                "name": "Customization Plan",
                "quantity": 1,
            }
        ]
        assert attributes["metadata"] == {"ref": "PAYABC"}
        assert attributes["cancel_url"] == test_settings.frontend_cancel_url

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_payment_intent(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        payment_intent = await client.get_payment_intent("pi_test_123")

        assert (recorded[0].method, recorded[0].url.path) == (
            "GET",
            "/v1/payment_intents/pi_test_123",
        )
        assert payment_intent["id"] == "res_1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_attach_payment_method(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        await client.attach_payment_method("pi_test_123", "pm_test_1")

        assert (recorded[0].method, recorded[0].url.path) == (
            "POST",
            "/v1/payment_intents/pi_test_123/attach",
        )
        assert self._attributes(recorded[0]) == {"payment_method": "pm_test_1"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_payment_method(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        await client.create_payment_method("gcash")
        await client.create_payment_method("card", {"card_number": "4343434343434345"})

        assert [(r.method, r.url.path) for r in recorded] == [
            ("POST", "/v1/payment_methods"),
            ("POST", "/v1/payment_methods"),
        ]
        assert self._attributes(recorded[0]) == {"type": "gcash"}
        assert self._attributes(recorded[1]) == {
            "type": "card",
            "details": {"card_number": "4343434343434345"},
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_payments(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        payments = await client.list_payments(limit=5)

        assert recorded[0].method == "GET"
        assert recorded[0].url.path == "/v1/payments"
        assert recorded[0].url.params["limit"] == "5"
        assert payments == [{"id": "item_1"}]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_payment(self, client: PayMongoClient, recorded: List[httpx.Request]) -> None:
        payment = await client.get_payment("pay_test_1")

        assert (recorded[0].method, recorded[0].url.path) == ("GET", "/v1/payments/pay_test_1")
        assert payment["id"] == "res_1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expire_checkout_session(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        await client.expire_checkout_session("cs_test_123")

        assert (recorded[0].method, recorded[0].url.path) == (
            "POST",
            "/v1/checkout_sessions/cs_test_123/expire",
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_checkout_session(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        session = await client.get_checkout_session("cs_test_123")

        assert (recorded[0].method, recorded[0].url.path) == (
            "GET",
            "/v1/checkout_sessions/cs_test_123",
        )
        assert session["id"] == "res_1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_webhooks(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        assert await client.list_webhooks() == [{"id": "item_1"}]
        assert (recorded[0].method, recorded[0].url.path) == ("GET", "/v1/webhooks")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_webhook_defaults_to_payment_outcomes(
        self, client: PayMongoClient, recorded: List[httpx.Request]
    ) -> None:
        await client.create_webhook("https://relay.test/api/payments/webhook")
        await client.create_webhook("https://relay.test/hook", events=["payment.refunded"])

        assert [(r.method, r.url.path) for r in recorded] == [
            ("POST", "/v1/webhooks"),
            ("POST", "/v1/webhooks"),
        ]
        assert self._attributes(recorded[0]) == {
            "url": "https://relay.test/api/payments/webhook",
            "events": ["payment.paid", "payment.failed"],
        }
        assert self._attributes(recorded[1])["events"] == ["payment.refunded"]
