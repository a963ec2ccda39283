"""
Monetary amount engine.

Turns a decimal price into the base/tax/total breakdown sent to PayMongo.
PayMongo takes integer centavos, so the breakdown also carries minor-unit
equivalents.

Rules:
- Decimal amounts (base, tax, total) are rounded to 2 places, ROUND_HALF_UP.
- Conversion to minor units uses floor, once per component, at the last step.
- total_minor_units is the sum of the floored parts, never floor(total * 100).

Together these guarantee the customer is never charged more centavos than the
decimal total they were shown.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Tuple, Union

MONEY_PRECISION = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = Decimal("100")
DEFAULT_TAX_RATE = Decimal("0.10")
# Largest single charge PayMongo accepts (PHP)
MAX_CHARGE_AMOUNT = Decimal("99999999.99")
ZERO = Decimal("0")

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """
    Convert an amount to Decimal.

    Floats go through ``str`` so that 5500.5 becomes Decimal("5500.5") rather
    than the binary expansion of the float.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Boolean is not a monetary amount")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return Decimal(str(value).strip())


def round2(value: AmountLike) -> Decimal:
    """Round to exactly two fractional digits (half up)."""
    return to_decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def to_minor_units(amount: AmountLike) -> int:
    """Convert a decimal amount to integer centavos, flooring any remainder."""
    minor = to_decimal(amount) * MINOR_UNITS_PER_MAJOR
    return int(minor.to_integral_value(rounding=ROUND_FLOOR))


def _parse_tax_rate(raw: Any) -> Tuple[Decimal, bool]:
    """Return ``(rate, degraded)``; unusable input yields ``(0, True)``."""
    if raw is None:
        return ZERO, True
    try:
        rate = to_decimal(raw)
    except (InvalidOperation, TypeError, ValueError):
        return ZERO, True
    if not rate.is_finite() or rate < 0:
        return ZERO, True
    return rate, False


def normalize_tax_rate(raw: Any) -> Decimal:
    """
    Return the effective tax rate.

    Missing, malformed, non-finite or negative rates become 0 instead of
    raising: a broken tax setting must not block checkout.
    """
    return _parse_tax_rate(raw)[0]


def is_degraded_tax_rate(raw: Any) -> bool:
    """True when ``raw`` was supplied but could not be used as a tax rate."""
    return _parse_tax_rate(raw)[1]


@dataclass(frozen=True)
class MoneyBreakdown:
    """Base/tax/total amounts in both decimal and minor-unit form."""

    base_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    base_minor_units: int
    tax_minor_units: int
    total_minor_units: int
    tax_rate: Decimal

    @classmethod
    def from_parts(
        cls, base_amount: Decimal, tax_amount: Decimal, tax_rate: Decimal
    ) -> MoneyBreakdown:
        """Build a breakdown from already rounded base and tax amounts."""
        base_minor_units = to_minor_units(base_amount)
        tax_minor_units = to_minor_units(tax_amount)
        return cls(
            base_amount=base_amount,
            tax_amount=tax_amount,
            total_amount=round2(base_amount + tax_amount),
            base_minor_units=base_minor_units,
            tax_minor_units=tax_minor_units,
            total_minor_units=base_minor_units + tax_minor_units,
            tax_rate=tax_rate,
        )

    def as_metadata(self) -> Dict[str, Any]:
        """Render for PayMongo metadata and downstream notification payloads."""
        return {
            "baseAmount": f"{self.base_amount:.2f}",
            "taxAmount": f"{self.tax_amount:.2f}",
            "totalAmount": f"{self.total_amount:.2f}",
            "baseMinorUnits": self.base_minor_units,
            "taxMinorUnits": self.tax_minor_units,
            "totalMinorUnits": self.total_minor_units,
            "taxRate": str(self.tax_rate),
        }


def compute_breakdown(
    nominal_amount: AmountLike, tax_rate: Any = DEFAULT_TAX_RATE
) -> MoneyBreakdown:
    """
    Derive tax and total from a pre-tax price.

    ``nominal_amount`` must already be validated as finite and positive.

    Example:
        >>> compute_breakdown("5000.00", "0.10").total_minor_units
        550000
    """
    rate = normalize_tax_rate(tax_rate)
    base_amount = round2(nominal_amount)
    tax_amount = round2(base_amount * rate)
    return MoneyBreakdown.from_parts(base_amount, tax_amount, rate)


def breakdown_from_total(
    caller_total: AmountLike, tax_rate: Any = DEFAULT_TAX_RATE
) -> MoneyBreakdown:
    """
    Split a caller-final total (e.g. a discounted price) into base and tax.

    Example:
        >>> breakdown_from_total("5500.50", "0.10").total_minor_units
        550050
    """
    rate = normalize_tax_rate(tax_rate)
    total_amount = round2(caller_total)
    base_amount = round2(total_amount / (Decimal("1") + rate))
    tax_amount = round2(total_amount - base_amount)
    return MoneyBreakdown.from_parts(base_amount, tax_amount, rate)


def refund_minor_units(total_amount: AmountLike) -> int:
    """Minor units to refund for a previously charged decimal total."""
    return to_minor_units(total_amount)
