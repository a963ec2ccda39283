"""
Pydantic schemas for API request/response models.

Wire field names are camelCase to match the checkout frontend.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from paymongo_relay.integrations.paymongo_client import REFUND_REASONS


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutRequest(CamelModel):
    """
    Request schema for creating a checkout.

    Customer fields are optional here so the checkout service can report
    every missing field at once.
    """

    full_name: Optional[str] = Field(default=None, description="Customer full name")
    email: Optional[str] = Field(default=None, description="Customer email")
    mobile: Optional[str] = Field(default=None, description="Philippine mobile number")
    product: Optional[str] = Field(default=None, description="Catalog product name")
    amount: Optional[Union[float, str]] = Field(
        default=None,
        description="Final total shown to the customer (e.g. after a discount)",
    )
    notes: Optional[str] = None
    business_name: Optional[str] = None
    setup_type: Optional[str] = None
    timezone: Optional[str] = None
    experience_level: Optional[str] = None
    coaching_goals: Optional[str] = None
    target_client: Optional[str] = None
    payment_method: str = Field(default="gcash", description="Preferred payment method")
    source: str = Field(default="nexistry_academy", description="Lead source")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Extra metadata")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "fullName": "Juan Dela Cruz",
                    "email": "juan@example.com",
                    "mobile": "09171234567",
                    "product": "Customization Plan",
                    "paymentMethod": "gcash",
                }
            ]
        },
    )


class CheckoutResponse(CamelModel):
    """Response schema for checkout creation. Amounts are 2-decimal strings."""

    success: bool = True
    payment_intent_id: str = Field(..., description="PayMongo payment intent ID")
    client_secret: Optional[str] = Field(default=None, description="Payment intent client key")
    checkout_url: Optional[str] = Field(default=None, description="Hosted checkout URL")
    payment_reference: str = Field(..., description="Relay payment reference")
    amount: str = Field(..., description="Total charged")
    base_amount: str = Field(..., description="Pre-tax amount")
    tax_amount: str = Field(..., description="Tax amount")
    currency: str = Field(..., description="Currency code")


class PaymentStatusResponse(CamelModel):
    """Response schema for payment status."""

    success: bool = True
    status: Optional[str] = Field(default=None, description="PayMongo intent status")
    paid: bool = Field(..., description="True once the intent succeeded")
    payment_intent: Dict[str, Any] = Field(..., description="Raw PayMongo payment intent")


class CancelRequest(BaseModel):
    """Request schema for cancelling a payment."""

    reason: Optional[str] = Field(default=None, description="Cancellation reason")


class RefundRequest(BaseModel):
    """Request schema for refunding a payment."""

    amount: Union[float, str] = Field(..., description="Decimal total to refund (e.g. 5500.50)")
    reason: str = Field(default="requested_by_customer", description="PayMongo refund reason")
    notes: Optional[str] = Field(default=None, description="Internal refund notes")

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Validate refund reason."""
        if v not in REFUND_REASONS:
            raise ValueError(f"Invalid refund reason. Must be one of: {list(REFUND_REASONS)}")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"amount": "5500.50", "reason": "requested_by_customer"},
                {"amount": 1650, "reason": "duplicate"},
            ]
        }
    }


class RefundResponse(CamelModel):
    """Response schema for refund."""

    success: bool = True
    payment_id: str = Field(..., description="PayMongo payment ID")
    refund_id: Optional[str] = Field(default=None, description="PayMongo refund ID")
    status: Optional[str] = Field(default=None, description="Refund status")
    amount_minor_units: int = Field(..., description="Refunded amount in centavos")


class ValidatePaymentRequest(CamelModel):
    """Request schema for validating checkout details."""

    full_name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    amount: Optional[Union[float, str]] = None


class PaymentMethod(BaseModel):
    """Supported payment method."""

    id: str
    name: str
    icon: str


class PaymentMethodsResponse(BaseModel):
    """Response schema for supported payment methods."""

    methods: List[PaymentMethod]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
    environment: Optional[str] = Field(default=None, description="Deployment environment")
