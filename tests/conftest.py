"""
Pytest configuration and fixtures.
"""
import os

# Settings are read from the environment on first use; set them before any
# application module is imported.
os.environ.setdefault("PAYMONGO_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("DISABLE_LEADCONNECTOR_WEBHOOK", "true")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from typing import Any, AsyncGenerator, Callable, Dict  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from paymongo_relay.config import Settings  # noqa: E402


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests that exercise the HTTP app")


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        paymongo_secret_key="sk_test_fake_key_for_testing",
        paymongo_api_base_url="https://api.paymongo.test/v1",
        leadconnector_webhook_url="https://hooks.leadconnector.test/inbound",
        disable_leadconnector_webhook=False,
        notification_retry_delay_seconds=0,
        ghl_private_key="pit-test-key",
        ghl_location_id="loc_test_123",
        ghl_api_base_url="https://ghl.test",
        tax_rate="0.10",
        app_name="paymongo-relay-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def make_http_client() -> Callable[..., httpx.AsyncClient]:
    """Build an httpx client whose requests are answered by ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return _make


@pytest.fixture
def sample_checkout_data() -> Dict[str, Any]:
    """Sample checkout request data (camelCase, as sent by the frontend)."""
    return {
        "fullName": "Juan Dela Cruz",
        "email": "juan@example.com",
        "mobile": "09171234567",
        "product": "Customization Plan",
        "paymentMethod": "gcash",
        "businessName": "JDC Virtual Assistance",
    }


@pytest.fixture
def paymongo_intent() -> Dict[str, Any]:
    """A PayMongo payment intent as returned by PayMongoClient.create_payment_intent."""
    return {
        "id": "pi_test_123",
        "type": "payment_intent",
        "attributes": {
            "amount": 550000,
            "currency": "PHP",
            "status": "awaiting_payment_method",
            "client_key": "pi_test_123_client_abc",
            "checkout_url": "https://checkout.paymongo.com/cs_test_123",
            "checkout_session_id": "cs_test_123",
        },
    }


@pytest_asyncio.fixture
async def api_client() -> AsyncGenerator[httpx.AsyncClient, Any]:
    """HTTP client bound to the FastAPI app; dependency overrides are reset afterwards."""
    from paymongo_relay.api.dependencies import get_checkout_rate_limiter, get_ip_rate_limiter
    from paymongo_relay.api.main import app

    get_ip_rate_limiter.cache_clear()
    get_checkout_rate_limiter.cache_clear()

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
