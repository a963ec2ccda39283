"""Core checkout logic: money engine, catalog, validation and rate limiting."""
from .catalog import PRODUCTS, Product, get_product
from .checkout import (
    CheckoutService,
    InvalidAmountError,
    PaymentError,
    PaymentValidationError,
    UnknownProductError,
)
from .money import MoneyBreakdown, breakdown_from_total, compute_breakdown, refund_minor_units

__all__ = [
    "CheckoutService",
    "InvalidAmountError",
    "MoneyBreakdown",
    "PRODUCTS",
    "PaymentError",
    "PaymentValidationError",
    "Product",
    "UnknownProductError",
    "breakdown_from_total",
    "compute_breakdown",
    "get_product",
    "refund_minor_units",
]
