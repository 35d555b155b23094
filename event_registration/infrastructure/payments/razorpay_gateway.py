# event_registration/infrastructure/payments/razorpay_gateway.py

import logging
from typing import Any

import razorpay

from event_registration.domain.exceptions import (
    GatewayNotConfiguredError,
    InvalidSignatureError,
    PaymentGatewayError,
)
from event_registration.infrastructure.config import Settings

logger = logging.getLogger(__name__)

PROVIDER = "RAZORPAY"


class RazorpayGateway:
    """Thin wrapper over the Razorpay SDK, configured from injected settings."""

    def __init__(self, settings: Settings, client_factory=razorpay.Client):
        self.settings = settings
        self._client_factory = client_factory

    def _client(self) -> razorpay.Client:
        if not self.settings.has_gateway_credentials:
            raise GatewayNotConfiguredError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return self._client_factory(
            auth=(self.settings.razorpay_key_id, self.settings.razorpay_key_secret)
        )

    def create_order(
        self,
        amount: int,
        currency: str = "INR",
        receipt: str | None = None,
        notes: dict[str, Any] | None = None,
    ) -> dict:
        client = self._client()
        payload: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "payment_capture": 1,
        }
        if receipt:
            payload["receipt"] = receipt
        if notes:
            payload["notes"] = notes

        try:
            order = client.order.create(payload)
        except Exception as exc:
            logger.warning("Razorpay order creation failed: %s", exc)
            raise PaymentGatewayError(str(exc)) from exc

        logger.info("Razorpay order created. order_id=%s amount=%s", order.get("id"), amount)
        return order

    def verify_payment_signature(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> None:
        client = self._client()
        try:
            client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except (razorpay.errors.SignatureVerificationError, TypeError) as exc:
            raise InvalidSignatureError("Invalid payment signature") from exc

    def verify_webhook_signature(self, body: bytes, signature: str) -> None:
        """
        HMAC-SHA256 of the raw body with the webhook secret, compared in
        constant time by the SDK.
        """
        secret = self.settings.razorpay_webhook_secret
        if not secret:
            raise GatewayNotConfiguredError("Razorpay webhook secret not configured.")

        try:
            text = body.decode("utf-8")
            self._client_factory().utility.verify_webhook_signature(text, signature, secret)
        except (razorpay.errors.SignatureVerificationError, UnicodeDecodeError, TypeError) as exc:
            raise InvalidSignatureError("Invalid signature") from exc
