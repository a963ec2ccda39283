"""
PayMongo API client with retry logic and comprehensive error handling.

Implements:
- Exponential backoff for transient errors
- Circuit breaker pattern
- Integer-only amounts (centavos) on every money field
"""
import time
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from paymongo_relay.config import Settings, get_settings
from paymongo_relay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DEFAULT_PAYMENT_METHODS = ["gcash", "paymaya", "card"]
REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer", "others")


class PayMongoErrorType(Enum):
    """Classification of PayMongo errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class PayMongoError(Exception):
    """Base exception for PayMongo-related errors."""

    def __init__(
        self,
        message: str,
        error_type: PayMongoErrorType,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        """
        Initialize PayMongo error.

        Args:
            message: Error message
            error_type: Classification of error
            status_code: HTTP status returned by PayMongo, if any
            code: PayMongo error code, if any
        """
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.code = code

    @property
    def retryable(self) -> bool:
        """Whether another attempt may succeed."""
        return self.error_type in (PayMongoErrorType.TRANSIENT, PayMongoErrorType.RATE_LIMIT)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, PayMongoError) and error.retryable


class CircuitBreaker:
    """
    Circuit breaker for PayMongo API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Execute coroutine function with circuit breaker protection.

        Only retryable PayMongo errors count as failures; a rejected request
        says nothing about PayMongo's availability.

        Raises:
            PayMongoError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise PayMongoError(
                    "Circuit breaker is open",
                    PayMongoErrorType.TRANSIENT,
                )

        try:
            result = await func(*args, **kwargs)
        except PayMongoError as e:
            if e.retryable:
                self.on_failure()
            else:
                self.on_success()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold or self.state == "half_open":
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


class PayMongoClient:
    """
    Async wrapper for the PayMongo REST API.

    Features:
    - Automatic retry with exponential backoff
    - Circuit breaker pattern
    - PayMongo error payloads surfaced as ``code: detail`` messages
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
    ) -> None:
        """
        Initialize PayMongo client.

        Args:
            settings: Optional settings (loaded from environment if omitted)
            http_client: Optional preconfigured HTTP client
            max_attempts: Attempts per request for retryable errors
            retry_base_delay: Multiplier for exponential backoff (seconds)
        """
        self.settings = settings or get_settings()
        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.settings.paymongo_api_base_url,
            auth=httpx.BasicAuth(self.settings.paymongo_secret_key, ""),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=self.settings.paymongo_timeout_seconds,
        )
        self.circuit_breaker = CircuitBreaker()
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

        logger.info(
            "paymongo_client_initialized",
            base_url=self.settings.paymongo_api_base_url,
            test_mode=self.settings.is_test_mode,
        )

    @staticmethod
    def _classify_status(status_code: int) -> PayMongoErrorType:
        """
        Classify an HTTP error status for retry logic.

        Args:
            status_code: HTTP status code

        Returns:
            PayMongoErrorType: Error classification
        """
        if status_code == 429:
            return PayMongoErrorType.RATE_LIMIT
        if status_code >= 500:
            return PayMongoErrorType.TRANSIENT
        return PayMongoErrorType.PERMANENT

    def _error_from_response(self, response: httpx.Response) -> PayMongoError:
        """Build a PayMongoError from an error response body."""
        error_type = self._classify_status(response.status_code)
        code: Optional[str] = None
        message = f"PayMongo request failed with status {response.status_code}"

        try:
            errors = response.json().get("errors") or []
        except ValueError:
            errors = []

        if errors and isinstance(errors[0], dict):
            code = errors[0].get("code")
            detail = errors[0].get("detail")
            message = f"{code}: {detail}"

        logger.error(
            "paymongo_api_error",
            error_type=error_type.value,
            status_code=response.status_code,
            error_code=code,
            error_message=message,
        )
        return PayMongoError(message, error_type, status_code=response.status_code, code=code)

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self.http_client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TransportError as e:
            logger.error("paymongo_no_response", path=path, error=str(e))
            raise PayMongoError(
                "No response from PayMongo API. Check your network connection.",
                PayMongoErrorType.TRANSIENT,
            ) from e

        if response.is_error:
            raise self._error_from_response(response)
        return response.json()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a request with circuit breaker protection and retries.

        Every POST carries an ``Idempotency-Key`` that stays the same across
        retries, so a timed-out create that PayMongo already processed is not
        performed twice.

        Args:
            operation: Operation name for logs and metrics
            method: HTTP method
            path: Path relative to the API base URL
            json: Optional JSON body
            params: Optional query parameters
            idempotency_key: Key for POSTs (generated when omitted)

        Returns:
            Dict[str, Any]: Decoded response body

        Raises:
            PayMongoError: If the request ultimately fails
        """
        headers: Optional[Dict[str, str]] = None
        if method == "POST":
            headers = {"Idempotency-Key": idempotency_key or uuid.uuid4().hex}

        start_time = time.time()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_base_delay, max=16),
                reraise=True,
            ):
                with attempt:
                    body = await self.circuit_breaker.call(
                        self._send, method, path, json=json, params=params, headers=headers
                    )
        except PayMongoError as e:
            metrics.record_paymongo_api_error(e.error_type.value)
            metrics.record_paymongo_api_call(operation, "error", time.time() - start_time)
            raise

        metrics.record_paymongo_api_call(operation, "success", time.time() - start_time)
        return body

    @staticmethod
    def _require_minor_units(amount_minor_units: Any) -> int:
        if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int):
            raise TypeError("PayMongo amounts must be integer centavos")
        if amount_minor_units <= 0:
            raise ValueError("PayMongo amounts must be positive")
        return amount_minor_units

    def _checkout_session_attributes(
        self,
        currency: str,
        description: str,
        line_items: List[Dict[str, Any]],
        payment_method_types: List[str],
        metadata: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        return {
            "send_email_receipt": True,
            "show_description": True,
            "show_line_items": True,
            "line_items": [
                {
                    "amount": self._require_minor_units(item["amount"]),
                    "currency": currency.upper(),
                    "description": item.get("description", description),
                    "name": item.get("name", description),
                    "quantity": item.get("quantity", 1),
                }
                for item in line_items
            ],
            "payment_method_types": payment_method_types,
            "description": description,
            "metadata": metadata or {},
            "success_url": self.settings.frontend_success_url,
            "failure_url": self.settings.frontend_failure_url,
            "cancel_url": self.settings.frontend_cancel_url,
        }

    async def create_payment_intent(
        self,
        amount_minor_units: int,
        currency: str,
        description: str,
        payment_method_allowed: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        line_items: Optional[List[Dict[str, Any]]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a PaymentIntent and a hosted checkout session for it.

        Args:
            amount_minor_units: Charge amount in centavos
            currency: Currency code (e.g., 'PHP')
            description: Shown on the checkout page
            payment_method_allowed: Allowed payment methods
            metadata: Flat string metadata
            line_items: Optional items (``amount`` in centavos) summing to the charge
            idempotency_key: Base key for the intent and session POSTs

        Returns:
            Dict[str, Any]: Intent resource with ``checkout_url`` and
            ``checkout_session_id`` merged into its attributes

        Raises:
            PayMongoError: If either API call fails
        """
        amount = self._require_minor_units(amount_minor_units)
        methods = payment_method_allowed or DEFAULT_PAYMENT_METHODS
        key = idempotency_key or uuid.uuid4().hex
        items = line_items or [{"amount": amount, "quantity": 1}]

        items_total = sum(
            self._require_minor_units(item["amount"]) * item.get("quantity", 1) for item in items
        )
        if items_total != amount:
            raise ValueError(
                f"Line items total {items_total} does not match intent amount {amount}"
            )

        logger.info(
            "creating_payment_intent",
            amount_minor_units=amount,
            currency=currency.upper(),
            metadata_keys=sorted((metadata or {}).keys()),
        )

        intent_body = await self._request(
            "create_payment_intent",
            "POST",
            "/payment_intents",
            json={
                "data": {
                    "attributes": {
                        "amount": amount,
                        "currency": currency.upper(),
                        "description": description,
                        "statement_descriptor": self.settings.statement_descriptor,
                        "payment_method_allowed": methods,
                        "metadata": metadata or {},
                    }
                }
            },
            idempotency_key=f"{key}-intent",
        )
        payment_intent = intent_body["data"]
        logger.info("payment_intent_created", payment_intent_id=payment_intent["id"])

        session_body = await self._request(
            "create_checkout_session",
            "POST",
            "/checkout_sessions",
            json={
                "data": {
                    "attributes": self._checkout_session_attributes(
                        currency, description, items, methods, metadata
                    )
                }
            },
            idempotency_key=f"{key}-session",
        )
        checkout_session = session_body["data"]
        checkout_url = checkout_session["attributes"].get("checkout_url")

        logger.info(
            "checkout_session_created",
            checkout_session_id=checkout_session["id"],
            checkout_url=checkout_url,
        )

        return {
            "id": payment_intent["id"],
            "type": payment_intent.get("type"),
            "attributes": {
                **payment_intent.get("attributes", {}),
                "checkout_url": checkout_url,
                "checkout_session_id": checkout_session["id"],
            },
        }

    async def create_checkout_session(
        self,
        payment_intent_id: str,
        amount_minor_units: int,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        payment_method_types: Optional[List[str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a checkout session bound to an existing payment intent."""
        amount = self._require_minor_units(amount_minor_units)
        attributes = self._checkout_session_attributes(
            currency,
            description,
            [{"amount": amount, "quantity": 1}],
            payment_method_types or ["gcash"],
            metadata,
        )
        attributes["payment_intent_id"] = payment_intent_id
        return await self._request(
            "create_checkout_session",
            "POST",
            "/checkout_sessions",
            json={"data": {"attributes": attributes}},
            idempotency_key=idempotency_key,
        )

    async def get_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """Retrieve a PaymentIntent by ID."""
        logger.info("retrieving_payment_intent", payment_intent_id=payment_intent_id)
        body = await self._request(
            "get_payment_intent", "GET", f"/payment_intents/{payment_intent_id}"
        )
        return body["data"]

    async def attach_payment_method(
        self, payment_intent_id: str, payment_method_id: str
    ) -> Dict[str, Any]:
        """Attach a payment method to an intent (card payments)."""
        return await self._request(
            "attach_payment_method",
            "POST",
            f"/payment_intents/{payment_intent_id}/attach",
            json={"data": {"attributes": {"payment_method": payment_method_id}}},
        )

    async def create_payment_method(
        self, type: str, details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create a payment method."""
        attributes: Dict[str, Any] = {"type": type}
        if details:
            attributes["details"] = details
        return await self._request(
            "create_payment_method",
            "POST",
            "/payment_methods",
            json={"data": {"attributes": attributes}},
        )

    async def list_payments(self, limit: int = 10) -> List[Dict[str, Any]]:
        """List recent payments."""
        body = await self._request("list_payments", "GET", "/payments", params={"limit": limit})
        return body["data"]

    async def get_payment(self, payment_id: str) -> Dict[str, Any]:
        """Retrieve a payment by ID."""
        body = await self._request("get_payment", "GET", f"/payments/{payment_id}")
        return body["data"]

    async def create_refund(
        self,
        payment_id: str,
        amount_minor_units: int,
        reason: str = "requested_by_customer",
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Refund a payment.

        Args:
            payment_id: PayMongo payment ID
            amount_minor_units: Refund amount in centavos
            reason: One of duplicate, fraudulent, requested_by_customer, others
            notes: Optional free-text note
            idempotency_key: Key reused on every retry (generated when omitted)

        Returns:
            Dict[str, Any]: Refund resource

        Raises:
            PayMongoError: If the refund fails
        """
        amount = self._require_minor_units(amount_minor_units)
        if reason not in REFUND_REASONS:
            raise ValueError(f"Invalid refund reason. Must be one of: {list(REFUND_REASONS)}")

        logger.info("creating_refund", payment_id=payment_id, amount_minor_units=amount)

        attributes: Dict[str, Any] = {
            "payment_id": payment_id,
            "amount": amount,
            "reason": reason,
        }
        if notes:
            attributes["notes"] = notes

        body = await self._request(
            "create_refund",
            "POST",
            "/refunds",
            json={"data": {"attributes": attributes}},
            idempotency_key=idempotency_key,
        )
        refund = body["data"]
        logger.info("refund_created", refund_id=refund["id"])
        return refund

    async def expire_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """Expire a checkout session."""
        return await self._request(
            "expire_checkout_session", "POST", f"/checkout_sessions/{session_id}/expire"
        )

    async def get_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """Retrieve a checkout session."""
        body = await self._request(
            "get_checkout_session", "GET", f"/checkout_sessions/{session_id}"
        )
        return body["data"]

    async def list_webhooks(self) -> List[Dict[str, Any]]:
        """List registered webhooks."""
        body = await self._request("list_webhooks", "GET", "/webhooks")
        return body["data"]

    async def create_webhook(
        self, url: str, events: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Register a webhook endpoint (initial setup)."""
        return await self._request(
            "create_webhook",
            "POST",
            "/webhooks",
            json={
                "data": {
                    "attributes": {
                        "url": url,
                        "events": events or ["payment.paid", "payment.failed"],
                    }
                }
            },
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.http_client.aclose()
