"""
API routes for checkout, webhooks and monitoring.
"""
import time
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from paymongo_relay.core.checkout import CheckoutService, PaymentError, PaymentValidationError
from paymongo_relay.integrations.paymongo_client import PayMongoError
from paymongo_relay.integrations.webhook_handler import WebhookError, WebhookHandler
from paymongo_relay.monitoring.health import HealthCheck

from .dependencies import get_checkout_service, get_health_check, get_webhook_handler
from .schemas import (
    CancelRequest,
    CheckoutRequest,
    CheckoutResponse,
    HealthCheckResponse,
    PaymentMethodsResponse,
    PaymentStatusResponse,
    RefundRequest,
    RefundResponse,
    ValidatePaymentRequest,
)
from .security import enforce_checkout_rate_limit, require_api_key

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(prefix="/api/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])


def _provider_status(e: PayMongoError) -> int:
    """Client errors PayMongo rejects map to 400, everything else to 502."""
    if e.status_code is not None and 400 <= e.status_code < 500 and e.status_code != 429:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_502_BAD_GATEWAY


@payment_router.post(
    "/create-payment-intent",
    response_model=CheckoutResponse,
    summary="Create a checkout",
    description="Price a product, create a PayMongo payment intent and hosted checkout",
    dependencies=[Depends(enforce_checkout_rate_limit)],
)
async def create_payment_intent(
    request: CheckoutRequest,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    """Create a payment intent for a catalog product."""
    try:
        return await checkout_service.create_checkout(
            request.model_dump(by_alias=True, exclude_none=True)
        )

    except PaymentValidationError as e:
        logger.warning("api_create_checkout_validation_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail={"error": str(e), **e.details}
        )

    except PayMongoError as e:
        logger.error(
            "api_create_checkout_paymongo_error",
            error=str(e),
            error_type=e.error_type.value,
            status_code=e.status_code,
        )
        raise HTTPException(
            status_code=_provider_status(e),
            detail={"error": "Failed to create payment intent", "message": str(e)},
        )

    except PaymentError as e:
        logger.error("api_create_checkout_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to create payment intent", "message": str(e)},
        )


@payment_router.get(
    "/status/{payment_id}",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
    description="Retrieve the current status of a payment intent",
)
async def get_payment_status(
    payment_id: str,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    """Get payment status by payment intent ID."""
    try:
        return await checkout_service.get_payment_status(payment_id)
    except PayMongoError as e:
        logger.error("api_get_payment_status_error", payment_id=payment_id, error=str(e))
        raise HTTPException(
            status_code=_provider_status(e),
            detail={"error": "Failed to get payment status", "message": str(e)},
        )


@payment_router.post(
    "/webhook",
    summary="PayMongo webhook endpoint",
    description="Handle PayMongo webhook events",
)
async def paymongo_webhook(
    request: Request,
    paymongo_signature: Optional[str] = Header(default=None, alias="Paymongo-Signature"),
    webhook_handler: WebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    """
    Handle PayMongo webhook events.

    Authenticated deliveries are always acknowledged with 200, even when
    processing fails, so PayMongo does not redeliver them.
    """
    body = await request.body()

    try:
        event = webhook_handler.parse_and_verify(body, paymongo_signature)
    except WebhookError as e:
        logger.error("api_webhook_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info("api_webhook_received", event_id=event.id, event_type=event.type)

    result = await webhook_handler.process_event(event)
    if result["status"] == "failed":
        return {"received": True, "error": result.get("error")}
    return {"received": True, "status": result["status"]}


@payment_router.post(
    "/cancel/{payment_id}",
    summary="Cancel a payment",
    description="Acknowledge that the customer abandoned checkout",
)
async def cancel_payment(
    payment_id: str,
    request: Optional[CancelRequest] = None,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    """Cancel a payment."""
    return await checkout_service.cancel_payment(
        payment_id, reason=request.reason if request else None
    )


@payment_router.post(
    "/retry/{payment_id}",
    summary="Retry a payment",
    description="Return the hosted checkout URL of an existing payment intent",
)
async def retry_payment(
    payment_id: str,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    """Retry a payment."""
    try:
        return await checkout_service.retry_payment(payment_id)
    except PayMongoError as e:
        logger.error("api_retry_payment_error", payment_id=payment_id, error=str(e))
        raise HTTPException(
            status_code=_provider_status(e), detail={"error": "Failed to retry payment"}
        )


@payment_router.post(
    "/refund/{payment_id}",
    response_model=RefundResponse,
    summary="Refund a payment",
    description="Refund a previously charged decimal total",
    dependencies=[Depends(require_api_key)],
)
async def refund_payment(
    payment_id: str,
    request: RefundRequest,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Dict[str, Any]:
    """Refund a payment."""
    try:
        refund = await checkout_service.refund_payment(
            payment_id=payment_id,
            total_amount=request.amount,
            reason=request.reason,
            notes=request.notes,
        )
        logger.info(
            "api_refund_payment_success",
            payment_id=payment_id,
            refund_id=refund["refundId"],
        )
        return refund

    except PaymentValidationError as e:
        logger.warning("api_refund_payment_validation_error", payment_id=payment_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail={"error": str(e), **e.details}
        )

    except PayMongoError as e:
        logger.error("api_refund_payment_error", payment_id=payment_id, error=str(e))
        raise HTTPException(
            status_code=_provider_status(e), detail={"error": "Refund failed", "message": str(e)}
        )


@payment_router.get(
    "/methods",
    response_model=PaymentMethodsResponse,
    summary="List payment methods",
)
async def get_payment_methods() -> Dict[str, Any]:
    """Payment methods offered on the checkout page."""
    return {"methods": CheckoutService.payment_methods()}


@payment_router.post(
    "/validate",
    summary="Validate payment details",
    description="Validate checkout details without creating a payment intent",
)
async def validate_payment(request: ValidatePaymentRequest) -> Any:
    """Validate checkout details."""
    errors = CheckoutService.validate_payment_details(
        request.model_dump(by_alias=True, exclude_none=True)
    )
    if errors:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"valid": False, "errors": errors}
        )
    return {"valid": True}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        result = await health_check.check_all()
        return {**result, "environment": health_check.settings.app_env}
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    try:
        result = await health_check.readiness()
        if result["status"] != "healthy":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
        return result
    except HTTPException:
        raise
    except Exception as e:
        logger.error("readiness_check_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "error": str(e)},
        )


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,  # Don't include in OpenAPI docs
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
