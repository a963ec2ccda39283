"""
Input validation and sanitisation helpers for checkout requests.

These run before the amount engine; the engine itself assumes clean input.
"""
import re
import secrets
import time
from typing import Any, Dict, Iterable

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MASKED_MOBILE_PATTERN = re.compile(r"(\d{3})\d{4}(\d{4})")

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: str = "") -> str:
    """Generate a short unique reference such as ``PAYLZ3K9QF1A2B3C``."""
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(6))
    return f"{prefix}{timestamp}{random_part}".upper()


def validate_email(email: str) -> bool:
    """Check basic email shape (local@domain.tld)."""
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def validate_mobile(mobile: str) -> bool:
    """
    Check a Philippine mobile number.

    Accepts 09XXXXXXXXX, 639XXXXXXXXX and +639XXXXXXXXX, ignoring spaces,
    dashes and parentheses.
    """
    if not mobile:
        return False
    digits = re.sub(r"\D", "", mobile)
    if len(digits) == 11 and digits.startswith("09"):
        return True
    return len(digits) == 12 and digits.startswith("639")


def sanitize_input(value: Any) -> Any:
    """Strip angle brackets and surrounding whitespace from strings."""
    if not isinstance(value, str):
        return value
    return value.replace("<", "").replace(">", "").strip()


def mask_sensitive(
    data: Dict[str, Any], fields: Iterable[str] = ("email", "mobile")
) -> Dict[str, Any]:
    """Return a copy of ``data`` with email and mobile values masked for logging."""
    masked = dict(data)
    for field in fields:
        value = masked.get(field)
        if not value or not isinstance(value, str):
            continue
        if field == "email" and "@" in value:
            local, _, domain = value.partition("@")
            masked[field] = f"{local[:2]}***@{domain}"
        elif field == "mobile":
            masked[field] = MASKED_MOBILE_PATTERN.sub(r"\1****\2", value)
    return masked
