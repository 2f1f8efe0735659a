# backend/roombook/services/stripe_gateway.py
"""
Thin wrapper around the Stripe SDK.

Each call takes the secret explicitly so settings-provided credentials can
override the process-wide default. SDK failures surface as
ExternalDependencyException; signature failures as WebhookSignatureException.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import ExternalDependencyException, WebhookSignatureException

logger = logging.getLogger(__name__)

# Bounded network behaviour: a gateway call may fail, it may not hang
try:
    stripe.default_http_client = stripe.http_client.RequestsClient(
        timeout=settings.stripe_timeout_seconds
    )
    stripe.max_network_retries = 1
except Exception as exc:  # pragma: no cover - SDK without client customization
    logger.warning("Could not configure Stripe HTTP client timeout: %s", exc)


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str
    payment_intent_id: Optional[str] = None


class StripeGateway:
    """Checkout, refund and webhook verification against Stripe."""

    def create_checkout_session(
        self,
        *,
        secret_key: Optional[str],
        booking_id: str,
        description: str,
        amount_cents: int,
        currency: str,
        expires_at: datetime,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        if not secret_key:
            raise ExternalDependencyException(
                "Payment gateway is not configured", code="GATEWAY_NOT_CONFIGURED"
            )
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {"name": description},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "metadata": {"booking_id": booking_id},
            "payment_intent_data": {"metadata": {"booking_id": booking_id}},
            "client_reference_id": booking_id,
            "expires_at": int(expires_at.timestamp()),
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(api_key=secret_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed for booking {booking_id}: {e}")
            raise ExternalDependencyException(
                f"Failed to create checkout session: {str(e)}", code="GATEWAY_ERROR"
            )
        return CheckoutSession(
            id=session["id"],
            url=session["url"],
            payment_intent_id=session.get("payment_intent"),
        )

    def create_refund(
        self,
        *,
        secret_key: Optional[str],
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
    ) -> str:
        if not secret_key:
            raise ExternalDependencyException(
                "Payment gateway is not configured", code="GATEWAY_NOT_CONFIGURED"
            )
        params: Dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        try:
            refund = stripe.Refund.create(api_key=secret_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for intent {payment_intent_id}: {e}")
            raise ExternalDependencyException(f"Refund failed: {str(e)}", code="GATEWAY_ERROR")
        return str(refund["id"])

    def construct_event(
        self, payload: bytes, signature: Optional[str], webhook_secret: Optional[str]
    ) -> Dict[str, Any]:
        """Verify the signature header and parse the event; raise on any mismatch."""
        if not webhook_secret:
            raise WebhookSignatureException("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureException("Missing webhook signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Invalid webhook signature: {str(e)}")
            raise WebhookSignatureException()
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {str(e)}")
            raise WebhookSignatureException("Invalid webhook payload")
        return dict(event)
