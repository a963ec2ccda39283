"""
Checkout orchestration.

Flow for a checkout request:
1. Validate customer fields and product
2. Validate any caller-supplied total
3. Pick the pricing policy and compute the money breakdown
4. Build flat PayMongo metadata
5. Create the payment intent and checkout session (total centavos only)
6. Notify LeadConnector that payment was initiated
"""
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import structlog

from paymongo_relay.config import Settings, get_settings
from paymongo_relay.core.catalog import Product, get_product
from paymongo_relay.core.money import (
    MAX_CHARGE_AMOUNT,
    MoneyBreakdown,
    breakdown_from_total,
    compute_breakdown,
    is_degraded_tax_rate,
    normalize_tax_rate,
    refund_minor_units,
    round2,
    to_decimal,
)
from paymongo_relay.core.validation import (
    generate_id,
    mask_sensitive,
    sanitize_input,
    validate_email,
    validate_mobile,
)
from paymongo_relay.integrations.notifier import LeadConnectorNotifier, NotificationError
from paymongo_relay.integrations.paymongo_client import PayMongoClient
from paymongo_relay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ["fullName", "email", "mobile", "product"]
OPTIONAL_FIELDS = [
    "notes",
    "businessName",
    "setupType",
    "timezone",
    "experienceLevel",
    "coachingGoals",
    "targetClient",
]
POLICY_CATALOG = "catalog"
POLICY_CALLER_TOTAL = "caller_total"

PAYMENT_METHODS = [
    {"id": "gcash", "name": "GCash", "icon": "gcash-icon.png"},
    {"id": "paymaya", "name": "PayMaya", "icon": "paymaya-icon.png"},
    {"id": "card", "name": "Credit/Debit Card", "icon": "card-icon.png"},
    {"id": "grab_pay", "name": "GrabPay", "icon": "grab-icon.png"},
]


class PaymentError(Exception):
    """Base exception for payment processing errors."""

    pass


class PaymentValidationError(PaymentError):
    """Raised when payment input validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class InvalidAmountError(PaymentValidationError):
    """Raised when an amount is not a finite positive number."""

    pass


class UnknownProductError(PaymentValidationError):
    """Raised when the product is not in the catalog."""

    pass


def parse_amount(value: Any) -> Decimal:
    """
    Validate a caller-supplied amount.

    The amount must be finite, no larger than PayMongo's maximum charge and
    still above zero once rounded to centavos.

    Raises:
        InvalidAmountError: If the value is not a chargeable amount
    """
    try:
        amount = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError("Invalid amount", {"amount": str(value)})
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError("Invalid amount", {"amount": str(value)})
    if amount > MAX_CHARGE_AMOUNT:
        raise InvalidAmountError(
            "Amount exceeds the maximum charge",
            {"amount": str(value), "maximum": str(MAX_CHARGE_AMOUNT)},
        )
    if round2(amount) <= 0:
        raise InvalidAmountError("Amount is below one centavo", {"amount": str(value)})
    return amount


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def flatten_metadata(fields: Dict[str, Any]) -> Dict[str, str]:
    """
    Stringify and sanitise metadata values, dropping empty ones.

    PayMongo only accepts flat string metadata.
    """
    flattened: Dict[str, str] = {}
    for key, value in fields.items():
        if value is None:
            continue
        text = str(sanitize_input(value) if isinstance(value, str) else value)
        if text in ("", "undefined", "null", "None"):
            continue
        flattened[key] = text
    return flattened


class CheckoutService:
    """
    Checkout-intent and refund handler.

    Decides which pricing policy applies; the money engine itself only
    implements the two reductions.
    """

    def __init__(
        self,
        paymongo_client: PayMongoClient,
        notifier: LeadConnectorNotifier,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.paymongo_client = paymongo_client
        self.notifier = notifier

    @staticmethod
    def validate_customer(data: Dict[str, Any]) -> Product:
        """
        Validate required customer fields and resolve the product.

        Raises:
            PaymentValidationError: If a field is missing or malformed
            UnknownProductError: If the product is not sold
        """
        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise PaymentValidationError(
                "Missing required fields", {"required": REQUIRED_FIELDS, "missing": missing}
            )
        if not validate_email(data["email"]):
            raise PaymentValidationError("Invalid email format")
        if not validate_mobile(data["mobile"]):
            raise PaymentValidationError("Invalid mobile number format")

        product = get_product(data["product"])
        if product is None:
            raise UnknownProductError("Invalid product", {"product": data["product"]})
        return product

    def _effective_tax_rate(self) -> Decimal:
        raw = self.settings.tax_rate
        if is_degraded_tax_rate(raw):
            logger.warning("tax_rate_degraded_to_zero", configured_tax_rate=raw)
            metrics.record_degraded_tax_rate()
        return normalize_tax_rate(raw)

    def price(self, product: Product, caller_total: Any = None) -> Tuple[MoneyBreakdown, str]:
        """
        Compute the breakdown for a product.

        A caller total that differs from the catalog price (e.g. a discount
        already applied on the page) is split into base and tax; otherwise
        tax is added on top of the catalog price.

        Raises:
            InvalidAmountError: If ``caller_total`` is supplied but invalid
        """
        tax_rate = self._effective_tax_rate()

        if caller_total is not None and caller_total != "":
            total = round2(parse_amount(caller_total))
            if total != product.amount:
                return breakdown_from_total(total, tax_rate), POLICY_CALLER_TOTAL

        return compute_breakdown(product.amount, tax_rate), POLICY_CATALOG

    @staticmethod
    def line_items(product: Product, breakdown: MoneyBreakdown) -> List[Dict[str, Any]]:
        """Checkout line items whose centavos sum to ``total_minor_units``."""
        items = [
            {
                "name": product.name,
                "description": product.name,
                "amount": breakdown.base_minor_units,
                "quantity": 1,
            }
        ]
        if breakdown.tax_minor_units:
            items.append(
                {
                    "name": "Tax",
                    "description": f"Tax ({breakdown.tax_rate})",
                    "amount": breakdown.tax_minor_units,
                    "quantity": 1,
                }
            )
        return items

    async def create_checkout(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a payment intent and checkout session for a checkout request.

        Args:
            data: camelCase checkout fields (see CheckoutRequest)

        Returns:
            Dict[str, Any]: Frontend response with checkout URL and amounts

        Raises:
            PaymentValidationError: If input validation fails
            PayMongoError: If PayMongo rejects the request
        """
        start_time = time.time()
        product = self.validate_customer(data)
        breakdown, policy = self.price(product, data.get("amount"))
        payment_reference = generate_id("PAY")
        payment_method = data.get("paymentMethod") or "gcash"
        source = data.get("source") or "nexistry_academy"

        logger.info(
            "checkout_request_received",
            **mask_sensitive({key: data.get(key) for key in REQUIRED_FIELDS}),
            payment_method=payment_method,
            source=source,
            policy=policy,
            total_minor_units=breakdown.total_minor_units,
        )

        money = breakdown.as_metadata()
        metadata = flatten_metadata(
            {
                **(data.get("metadata") or {}),
                **{key: data.get(key) for key in REQUIRED_FIELDS + OPTIONAL_FIELDS},
                "paymentReference": payment_reference,
                "paymentMethod": payment_method,
                "source": source,
                "baseAmount": money["baseAmount"],
                "taxAmount": money["taxAmount"],
                "totalAmount": money["totalAmount"],
                "taxRate": money["taxRate"],
                "timestamp": _now_iso(),
            }
        )

        try:
            payment_intent = await self.paymongo_client.create_payment_intent(
                amount_minor_units=breakdown.total_minor_units,
                currency=product.currency,
                description=f"{product.name} - {metadata['fullName']}",
                payment_method_allowed=["gcash", "paymaya", "card"],
                metadata=metadata,
                line_items=self.line_items(product, breakdown),
                idempotency_key=payment_reference,
            )
        except Exception:
            metrics.record_checkout_request("error", policy)
            raise

        attributes = payment_intent.get("attributes", {})
        checkout_url = attributes.get("checkout_url")

        try:
            await self.notifier.send(
                {
                    **metadata,
                    "amount": money["totalAmount"],
                    "currency": product.currency,
                    "status": "payment_initiated",
                    "paymentIntentId": payment_intent["id"],
                    "checkoutUrl": checkout_url,
                }
            )
        except NotificationError as e:
            logger.warning("checkout_notification_failed", error=str(e))

        duration = time.time() - start_time
        metrics.record_checkout_request("created", policy, breakdown.total_minor_units)
        metrics.record_checkout_duration(duration)

        logger.info(
            "checkout_created",
            payment_intent_id=payment_intent["id"],
            payment_reference=payment_reference,
            duration_seconds=duration,
        )

        return {
            "success": True,
            "paymentIntentId": payment_intent["id"],
            "clientSecret": attributes.get("client_key"),
            "checkoutUrl": checkout_url,
            "paymentReference": payment_reference,
            "amount": money["totalAmount"],
            "baseAmount": money["baseAmount"],
            "taxAmount": money["taxAmount"],
            "currency": product.currency,
        }

    async def get_payment_status(self, payment_intent_id: str) -> Dict[str, Any]:
        """Look up a payment intent's status."""
        payment_intent = await self.paymongo_client.get_payment_intent(payment_intent_id)
        status = (payment_intent.get("attributes") or {}).get("status")
        return {
            "success": True,
            "status": status,
            "paid": status == "succeeded",
            "paymentIntent": payment_intent,
        }

    async def retry_payment(self, payment_intent_id: str) -> Dict[str, Any]:
        """Return the checkout URL for an existing intent so the customer can retry."""
        payment_intent = await self.paymongo_client.get_payment_intent(payment_intent_id)
        return {
            "success": True,
            "checkoutUrl": (payment_intent.get("attributes") or {}).get("checkout_url"),
            "paymentIntentId": payment_intent["id"],
        }

    async def cancel_payment(
        self, payment_intent_id: str, reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Acknowledge a customer cancellation."""
        logger.info(
            "payment_cancelled",
            payment_intent_id=payment_intent_id,
            reason=reason or "User cancelled",
        )
        return {"success": True, "message": "Payment cancelled", "paymentId": payment_intent_id}

    async def refund_payment(
        self,
        payment_id: str,
        total_amount: Any,
        reason: str = "requested_by_customer",
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Refund a previously charged decimal total.

        Uses the same floor conversion as the charge, so the refund can never
        exceed the centavos originally collected.

        Raises:
            InvalidAmountError: If ``total_amount`` is invalid
            PayMongoError: If PayMongo rejects the refund
        """
        amount = parse_amount(total_amount)
        amount_minor_units = refund_minor_units(amount)
        if amount_minor_units <= 0:
            raise InvalidAmountError("Refund amount is below one centavo", {"amount": str(amount)})

        logger.info(
            "refund_requested",
            payment_id=payment_id,
            amount_minor_units=amount_minor_units,
            reason=reason,
        )

        refund = await self.paymongo_client.create_refund(
            payment_id=payment_id,
            amount_minor_units=amount_minor_units,
            reason=reason,
            notes=notes,
        )
        refund_attributes = refund.get("attributes") or {}
        return {
            "success": True,
            "paymentId": payment_id,
            "refundId": refund.get("id"),
            "status": refund_attributes.get("status"),
            "amountMinorUnits": amount_minor_units,
        }

    @staticmethod
    def validate_payment_details(data: Dict[str, Any]) -> List[str]:
        """Collect validation errors for a payment form without creating anything."""
        errors: List[str] = []
        full_name = data.get("fullName") or ""
        if len(full_name.strip()) < 2:
            errors.append("Full name must be at least 2 characters")
        if not data.get("email") or not validate_email(data["email"]):
            errors.append("Valid email is required")
        if not data.get("mobile") or not validate_mobile(data["mobile"]):
            errors.append("Valid mobile number is required")

        amount = data.get("amount")
        if amount is not None and amount != "":
            try:
                if parse_amount(amount) < 1:
                    errors.append("Invalid amount")
            except InvalidAmountError:
                errors.append("Invalid amount")
        return errors

    @staticmethod
    def payment_methods() -> List[Dict[str, str]]:
        """Payment methods offered on the checkout page."""
        return PAYMENT_METHODS
