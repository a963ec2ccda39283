"""
PayMongo webhook handler with signature verification and event deduplication.

Implements:
- ``Paymongo-Signature`` verification (HMAC-SHA256 over ``"<t>.<body>"``)
- Event deduplication (Redis when configured, bounded in-process set otherwise)
- Event type routing to registered handlers
- Relay of payment outcomes to LeadConnector and the GHL CRM
"""
import hashlib
import hmac
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
import structlog

from paymongo_relay.config import Settings, get_settings
from paymongo_relay.core.money import MINOR_UNITS_PER_MAJOR, round2
from paymongo_relay.integrations.ghl_client import GhlClient, GhlError
from paymongo_relay.integrations.notifier import LeadConnectorNotifier, NotificationError
from paymongo_relay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[["WebhookEvent"], Awaitable[Dict[str, Any]]]


class WebhookError(Exception):
    """Raised when a webhook cannot be parsed or authenticated."""

    pass


@dataclass(frozen=True)
class WebhookEvent:
    """A PayMongo event envelope reduced to the parts the relay uses."""

    id: str
    type: str
    livemode: bool
    resource: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WebhookEvent":
        """
        Parse ``{"data": {"id", "type", "attributes": {"type", "livemode", "data"}}}``.

        Raises:
            WebhookError: If the envelope has no ``data`` object
        """
        data = payload.get("data")
        if not isinstance(data, dict):
            raise WebhookError("Webhook payload has no data object")
        attributes = data.get("attributes") or {}
        return cls(
            id=str(data.get("id") or ""),
            type=str(attributes.get("type") or data.get("type") or "unknown"),
            livemode=bool(attributes.get("livemode", False)),
            resource=attributes.get("data") or {},
        )


def parse_signature_header(header: str) -> Dict[str, str]:
    """Split ``t=...,te=...,li=...`` into a dict."""
    parts: Dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key] = value
    return parts


def compute_signature(secret: str, timestamp: str, payload: bytes) -> str:
    """HMAC-SHA256 hex digest PayMongo sends in the te/li fields."""
    message = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProcessedEventStore:
    """Remembers processed event IDs; Redis-backed when a client is supplied."""

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        max_local_events: int = 10000,
        ttl_seconds: int = 86400 * 7,
    ):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.max_local_events = max_local_events
        self._local: "OrderedDict[str, None]" = OrderedDict()

    async def is_processed(self, event_id: str) -> bool:
        if self.redis_client is None:
            return event_id in self._local
        try:
            return bool(await self.redis_client.exists(f"webhook:processed:{event_id}"))
        except Exception as e:
            logger.warning("webhook_dedup_check_error", error=str(e), event_id=event_id)
            # If Redis is down, process the event anyway to avoid losing it
            return False

    async def mark_processed(self, event_id: str) -> None:
        if self.redis_client is None:
            self._local[event_id] = None
            while len(self._local) > self.max_local_events:
                self._local.popitem(last=False)
            return
        try:
            await self.redis_client.setex(f"webhook:processed:{event_id}", self.ttl_seconds, "1")
        except Exception as e:
            logger.warning("webhook_mark_processed_error", error=str(e), event_id=event_id)


class WebhookHandler:
    """
    Handles PayMongo webhook events with verification, dedup and routing.

    Handlers for ``payment.paid``, ``payment.failed``, ``payment.pending`` and
    ``checkout_session.payment.paid`` are registered by default.
    """

    def __init__(
        self,
        notifier: LeadConnectorNotifier,
        ghl_client: Optional[GhlClient] = None,
        event_store: Optional[ProcessedEventStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.ghl_client = ghl_client
        self.event_store = event_store or ProcessedEventStore()
        self.event_handlers: Dict[str, EventHandler] = {}

        self.register_handler("payment.paid", self.handle_payment_paid)
        self.register_handler("checkout_session.payment.paid", self.handle_payment_paid)
        self.register_handler("payment.failed", self.handle_payment_failed)
        self.register_handler("payment.pending", self.handle_payment_pending)

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: PayMongo event type (e.g., 'payment.paid')
            handler: Async callable receiving the WebhookEvent
        """
        self.event_handlers[event_type] = handler
        logger.debug("webhook_handler_registered", event_type=event_type)

    def verify_signature(self, payload: bytes, signature: Optional[str], livemode: bool) -> None:
        """
        Verify the ``Paymongo-Signature`` header.

        Skipped when no webhook secret is configured. A valid signature whose
        ``t`` is older than ``paymongo_webhook_tolerance_seconds`` is rejected
        as a replay.

        Raises:
            WebhookError: If the header is missing, stale or does not match
        """
        secret = self.settings.paymongo_webhook_secret
        if not secret:
            return
        if not signature:
            raise WebhookError("Missing Paymongo-Signature header")

        parts = parse_signature_header(signature)
        timestamp = parts.get("t")
        expected_signature = parts.get("li" if livemode else "te")
        if not timestamp or not expected_signature or not timestamp.isdigit():
            raise WebhookError("Malformed Paymongo-Signature header")

        computed = compute_signature(secret, timestamp, payload)
        if not hmac.compare_digest(computed, expected_signature):
            logger.error("webhook_signature_verification_failed", livemode=livemode)
            raise WebhookError("Invalid webhook signature")

        age = abs(time.time() - int(timestamp))
        if age > self.settings.paymongo_webhook_tolerance_seconds:
            logger.error("webhook_timestamp_outside_tolerance", age_seconds=int(age))
            raise WebhookError("Webhook timestamp outside the tolerance zone")

    def parse_and_verify(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Decode the raw body, verify its signature and build the event.

        Raises:
            WebhookError: If the body is not JSON or verification fails
        """
        try:
            body = json.loads(payload)
        except ValueError as e:
            raise WebhookError(f"Webhook body is not valid JSON: {e}") from e
        if not isinstance(body, dict):
            raise WebhookError("Webhook body must be a JSON object")

        event = WebhookEvent.from_payload(body)
        self.verify_signature(payload, signature, event.livemode)
        return event

    async def process_event(self, event: WebhookEvent) -> Dict[str, Any]:
        """
        Route an event to its handler.

        Handler failures are logged and reported in the result rather than
        raised, so the endpoint can still acknowledge the delivery.
        """
        start_time = time.time()
        logger.info("processing_webhook_event", event_id=event.id, event_type=event.type)

        if event.id and await self.event_store.is_processed(event.id):
            logger.info("webhook_event_already_processed", event_id=event.id)
            metrics.record_webhook_event(event.type, "duplicate", time.time() - start_time)
            return {"status": "duplicate", "event_id": event.id, "event_type": event.type}

        handler = self.event_handlers.get(event.type)
        if handler is None:
            logger.info("webhook_unhandled_event_type", event_id=event.id, event_type=event.type)
            metrics.record_webhook_event(event.type, "no_handler", time.time() - start_time)
            return {"status": "no_handler", "event_id": event.id, "event_type": event.type}

        try:
            result = await handler(event)
        except Exception as e:
            logger.error(
                "webhook_event_processing_failed",
                event_id=event.id,
                event_type=event.type,
                error=str(e),
                error_type=type(e).__name__,
            )
            metrics.record_webhook_event(event.type, "failed", time.time() - start_time)
            return {
                "status": "failed",
                "event_id": event.id,
                "event_type": event.type,
                "error": str(e),
            }

        if event.id:
            await self.event_store.mark_processed(event.id)
        metrics.record_webhook_event(event.type, "success", time.time() - start_time)
        logger.info("webhook_event_processed", event_id=event.id, event_type=event.type)
        return {
            "status": "success",
            "event_id": event.id,
            "event_type": event.type,
            "result": result,
        }

    @staticmethod
    def _payment_and_metadata(resource: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Return the payment resource and checkout metadata for an event resource."""
        attributes = resource.get("attributes") or {}
        if resource.get("type") == "checkout_session":
            payments: List[Dict[str, Any]] = attributes.get("payments") or []
            payment = payments[0] if payments else {}
            payment_metadata = (payment.get("attributes") or {}).get("metadata") or {}
            return payment, {**payment_metadata, **(attributes.get("metadata") or {})}
        return resource, attributes.get("metadata") or {}

    async def _notify(self, payload: Dict[str, Any]) -> bool:
        try:
            await self.notifier.send(payload)
        except NotificationError as e:
            logger.warning("webhook_notification_failed", status=payload.get("status"), error=str(e))
            return False
        return True

    async def handle_payment_paid(self, event: WebhookEvent) -> Dict[str, Any]:
        """Relay a successful payment to LeadConnector and the CRM."""
        payment, metadata = self._payment_and_metadata(event.resource)
        payment_id = payment.get("id")
        attributes = payment.get("attributes") or {}

        logger.info(
            "handling_payment_paid",
            payment_id=payment_id,
            payment_reference=metadata.get("paymentReference"),
            amount_minor_units=attributes.get("amount"),
        )

        result: Dict[str, Any] = {"payment_id": payment_id}
        result["notified"] = await self._notify(
            {
                **metadata,
                "status": "payment_successful",
                "paymentId": payment_id,
                "paymentDetails": attributes,
                "completedAt": _now_iso(),
            }
        )

        if self.ghl_client is not None:
            try:
                result["invoice_id"] = await self.sync_crm(payment_id, attributes, metadata)
                result["crm_synced"] = True
            except GhlError as e:
                logger.error("crm_sync_failed", payment_id=payment_id, error=str(e))
                result["crm_synced"] = False

        return result

    async def handle_payment_failed(self, event: WebhookEvent) -> Dict[str, Any]:
        """Relay a failed payment to LeadConnector."""
        payment, metadata = self._payment_and_metadata(event.resource)
        attributes = payment.get("attributes") or {}
        failure_reason = (
            attributes.get("failed_message")
            or (attributes.get("last_payment_error") or {}).get("failed_message")
            or "Unknown error"
        )

        logger.info(
            "handling_payment_failed",
            payment_id=payment.get("id"),
            failure_reason=failure_reason,
        )

        notified = await self._notify(
            {
                **metadata,
                "status": "payment_failed",
                "paymentId": payment.get("id"),
                "failureReason": failure_reason,
                "failedAt": _now_iso(),
            }
        )
        return {"payment_id": payment.get("id"), "notified": notified, "error": failure_reason}

    async def handle_payment_pending(self, event: WebhookEvent) -> Dict[str, Any]:
        """Pending payments are only logged."""
        payment, _ = self._payment_and_metadata(event.resource)
        logger.info("handling_payment_pending", payment_id=payment.get("id"))
        return {"payment_id": payment.get("id")}

    @staticmethod
    def _invoice_amounts(
        attributes: Dict[str, Any], metadata: Dict[str, Any]
    ) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Base, tax and total decimals for the invoice.

        Taken from the breakdown recorded at checkout; payments without one are
        invoiced as a single untaxed line for the charged centavos.
        """
        try:
            base = round2(metadata["baseAmount"])
            tax = round2(metadata["taxAmount"])
            total = round2(metadata["totalAmount"])
            return base, tax, total
        except (KeyError, InvalidOperation, TypeError, ValueError):
            total = round2(Decimal(int(attributes.get("amount") or 0)) / MINOR_UNITS_PER_MAJOR)
            return total, Decimal("0.00"), total

    async def sync_crm(
        self, payment_id: Optional[str], attributes: Dict[str, Any], metadata: Dict[str, Any]
    ) -> Optional[str]:
        """
        Upsert the contact, create an invoice and record the payment on it.

        Returns:
            Optional[str]: The GHL invoice ID
        """
        if self.ghl_client is None:
            return None
        contact = await self.ghl_client.upsert_contact(
            full_name=metadata.get("fullName", ""),
            email=metadata.get("email"),
            phone=metadata.get("mobile"),
        )
        contact_id = (contact.get("contact") or {}).get("id") or contact.get("id")

        base, tax, total = self._invoice_amounts(attributes, metadata)
        currency = str(attributes.get("currency") or self.settings.default_currency).upper()
        product = metadata.get("product") or "PayMongo payment"

        items: List[Dict[str, Any]] = [
            {
                "name": product,
                "description": product,
                "amount": float(base),
                "qty": 1,
                "currency": currency,
            }
        ]
        if tax > 0:
            items.append(
                {
                    "name": "Tax",
                    "description": f"Tax on {product}",
                    "amount": float(tax),
                    "qty": 1,
                    "currency": currency,
                }
            )

        invoice = await self.ghl_client.create_invoice(
            contact_id=contact_id,
            items=items,
            contact_details={
                "name": metadata.get("fullName"),
                "email": metadata.get("email"),
                "phoneNo": metadata.get("mobile"),
            },
            name=f"{product} - {metadata.get('paymentReference') or payment_id}",
            currency=currency,
        )
        invoice_id = invoice.get("_id") or invoice.get("id")

        source = attributes.get("source") or {}
        await self.ghl_client.record_invoice_payment(
            invoice_id=invoice_id,
            amount=float(total),
            mode="card" if source.get("type") == "card" else "other",
            card_brand=source.get("brand"),
            card_last4=source.get("last4"),
            notes=f"Payment via PayMongo ({payment_id})",
        )

        logger.info("crm_synced", payment_id=payment_id, invoice_id=invoice_id)
        return invoice_id
