"""GoHighLevel (LeadConnector) CRM client for contacts and invoices."""
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from paymongo_relay.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class GhlError(Exception):
    """Raised when a GHL API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def normalize_phone_e164(phone: Optional[str]) -> Optional[str]:
    """
    Normalise a Philippine phone number to E.164.

    ``0917 123 4567`` -> ``+639171234567``. Numbers that already carry a
    ``+`` keep their country code. Returns None when nothing usable remains.
    """
    if not phone:
        return None
    raw = str(phone).strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return None

    if raw.startswith("+") or digits.startswith("63"):
        return f"+{digits}"
    if digits.startswith("09") and len(digits) == 11:
        return f"+63{digits[1:]}"
    if digits.startswith("9") and len(digits) == 10:
        return f"+63{digits}"
    if len(digits) >= 10:
        return f"+{digits}"
    return None


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


class GhlClient:
    """Thin async client over the GHL contacts and invoices APIs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.location_id = self.settings.ghl_location_id

        if not self.settings.ghl_private_key:
            logger.warning("ghl_private_key_not_configured")
        if not self.location_id:
            logger.warning("ghl_location_id_not_configured")

        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.settings.ghl_api_base_url,
            timeout=self.settings.ghl_timeout_seconds,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.settings.ghl_private_key}",
                "Version": self.settings.ghl_api_version,
                "LocationId": self.location_id or "",
            },
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.http_client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ghl_api_error",
                path=path,
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise GhlError(f"GHL request to {path} failed", e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error("ghl_api_unreachable", path=path, error=str(e))
            raise GhlError(f"GHL request to {path} failed: {e}") from e
        return response.json()

    async def upsert_contact(
        self, full_name: str, email: Optional[str] = None, phone: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create or update a contact by email/phone."""
        name = (full_name or "").strip()
        first_name, _, last_name = name.partition(" ")

        payload = _drop_none(
            {
                "firstName": first_name or None,
                "lastName": last_name.strip() or None,
                "name": name or None,
                "email": email or None,
                "phone": normalize_phone_e164(phone),
                "locationId": self.location_id,
            }
        )
        return await self._post("/contacts/upsert", payload)

    async def create_invoice(
        self,
        contact_id: str,
        items: List[Dict[str, Any]],
        contact_details: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        currency: str = "PHP",
        issue_date: Optional[str] = None,
        due_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create an invoice for a contact.

        ``items`` use decimal amounts as GHL expects (e.g. ``{"name": ...,
        "amount": 5000.45, "qty": 1, "currency": "PHP"}``).
        """
        details = dict(contact_details or {})
        details["phoneNo"] = normalize_phone_e164(details.get("phoneNo"))
        today = datetime.now(timezone.utc).date().isoformat()

        payload = {
            "altId": self.location_id,
            "altType": "location",
            "name": name or "PayMongo Invoice",
            "businessDetails": {"name": self.settings.ghl_business_name},
            "currency": currency,
            "items": items,
            "contactDetails": {"id": contact_id, **_drop_none(details)},
            "issueDate": issue_date or today,
            "dueDate": due_date or issue_date or today,
            "liveMode": not self.settings.is_test_mode,
        }
        return await self._post("/invoices/", payload)

    async def record_invoice_payment(
        self,
        invoice_id: str,
        amount: float,
        mode: str = "card",
        card_brand: Optional[str] = None,
        card_last4: Optional[str] = None,
        notes: Optional[str] = None,
        fulfilled_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record a manual payment against an invoice."""
        if not invoice_id:
            raise ValueError("invoice_id is required")

        payload: Dict[str, Any] = {
            "altId": self.location_id,
            "altType": "location",
            "mode": mode or "card",
            "notes": notes or "Payment via PayMongo",
            "amount": amount,
            "fulfilledAt": fulfilled_at or datetime.now(timezone.utc).isoformat(),
        }
        if card_brand and card_last4:
            payload["card"] = {"brand": card_brand, "last4": card_last4}

        return await self._post(f"/invoices/{invoice_id}/record-payment", payload)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.http_client.aclose()
