"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentStatusResponse,
    RefundRequest,
    RefundResponse,
)

__all__ = [
    "app",
    "CheckoutRequest",
    "CheckoutResponse",
    "PaymentStatusResponse",
    "RefundRequest",
    "RefundResponse",
]
