import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from event_registration.api.dependencies import get_db, get_gateway, get_sleep
from event_registration.api.schemas.schemas import CreateOrderRequest, RazorpayWebhookEvent
from event_registration.application.reconciliation_service import (
    PAYMENT_CAPTURED,
    PAYMENT_FAILED,
    PaymentEvent,
    PaymentReconciliationService,
    WebhookResult,
)
from event_registration.domain.exceptions import (
    GatewayNotConfiguredError,
    InvalidSignatureError,
    PaymentGatewayError,
)
from event_registration.infrastructure.config import Settings, get_settings
from event_registration.infrastructure.payments.razorpay_gateway import RazorpayGateway


router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-razorpay-signature"


def _cors_headers(settings: Settings) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_allow_origin,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": f"Content-Type, {SIGNATURE_HEADER}",
    }


def _json(settings: Settings, status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body, headers=_cors_headers(settings))


# -----------------------------
# Order creation
# -----------------------------
@router.options("/createRazorpayOrder")
def create_order_preflight(settings: Settings = Depends(get_settings)):
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=_cors_headers(settings))


@router.post("/createRazorpayOrder")
async def create_razorpay_order(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    try:
        payload = await request.json()
    except ValueError:
        return _json(settings, 400, {"error": "Invalid request", "details": "Body must be JSON"})

    if not isinstance(payload, dict) or payload.get("amount") is None:
        return _json(settings, 400, {"error": "Invalid amount", "details": "amount is required"})

    try:
        order_request = CreateOrderRequest.model_validate(payload)
    except ValidationError:
        return _json(settings, 400, {"error": "Invalid amount", "details": "amount must be a number"})

    amount = order_request.amount
    if amount <= 0 or not float(amount).is_integer():
        return _json(
            settings,
            400,
            {
                "error": "Invalid amount",
                "details": "amount must be a positive integer in the smallest currency unit",
            },
        )

    try:
        order = gateway.create_order(
            amount=int(amount),
            currency=order_request.currency,
            receipt=order_request.receipt,
            notes=order_request.notes,
        )
    except GatewayNotConfiguredError as exc:
        logger.error("Order requested but gateway keys are missing")
        return _json(settings, 500, {"error": str(exc)})
    except PaymentGatewayError as exc:
        return _json(settings, 500, {"error": "Failed to create order", "details": str(exc)})

    return _json(settings, 200, {"order": order})


# -----------------------------
# Webhook
# -----------------------------
def _reconcile(
    raw_body: bytes,
    db: Session,
    settings: Settings,
    sleep: Callable[[float], None],
) -> WebhookResult:
    try:
        webhook = RazorpayWebhookEvent.model_validate_json(raw_body)
    except ValidationError:
        return WebhookResult(400, {"error": "Invalid webhook payload"})

    # Only captured and failed act on a booking; other events are acknowledged
    # even when their payment entity is missing or malformed.
    requires_entity = webhook.event in (PAYMENT_CAPTURED, PAYMENT_FAILED)
    try:
        entity = webhook.payment_entity(strict=requires_entity)
    except ValidationError:
        return WebhookResult(400, {"error": "Invalid payment entity"})

    if requires_entity and entity is None:
        return WebhookResult(400, {"error": "Missing payment entity"})

    event = PaymentEvent(
        event_type=webhook.event,
        payment_id=entity.id if entity else None,
        order_id=entity.order_id if entity else None,
        error_reason=(entity.error_description or entity.error_reason) if entity else None,
    )
    result = PaymentReconciliationService(db, settings, sleep=sleep).handle(event, raw_body)
    db.commit()
    return result


@router.options("/razorpayWebhook")
def webhook_preflight(settings: Settings = Depends(get_settings)):
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=_cors_headers(settings))


@router.post("/razorpayWebhook")
async def razorpay_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: RazorpayGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
    sleep: Callable[[float], None] = Depends(get_sleep),
):
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("Webhook rejected: no signature header")
        return _json(settings, 400, {"error": "No signature provided"})

    raw_body = await request.body()
    try:
        gateway.verify_webhook_signature(raw_body, signature)
    except InvalidSignatureError:
        logger.warning("Webhook rejected: signature mismatch")
        return _json(settings, 400, {"error": "Invalid signature"})
    except GatewayNotConfiguredError:
        logger.error("Webhook received but RAZORPAY_WEBHOOK_SECRET is not set")
        return _json(settings, 500, {"error": "Internal server error"})

    try:
        # Lookup retries block, so the whole reconciliation runs off the event loop.
        result = await run_in_threadpool(_reconcile, raw_body, db, settings, sleep)
    except Exception:
        logger.exception("Webhook processing failed")
        await run_in_threadpool(db.rollback)
        return _json(settings, 500, {"error": "Internal server error"})

    return _json(settings, result.status_code, result.body)


@router.get("/webhookStatus")
def webhook_status():
    return {
        "message": "Razorpay webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
