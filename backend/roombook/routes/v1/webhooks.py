# backend/roombook/routes/v1/webhooks.py
"""
Payment gateway webhook endpoint (v1).

The raw body is passed through untouched; signature verification needs the
exact bytes the gateway signed.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from ...api.dependencies import get_payment_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...schemas.payment import WebhookResponse
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# v1 router - mounted under /api/v1/webhooks
router = APIRouter(tags=["webhooks"])


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        result = await asyncio.to_thread(
            payment_service.handle_gateway_webhook, payload, signature
        )
    except DomainException as e:
        logger.warning("Stripe webhook rejected: %s", e.message)
        handle_domain_exception(e)
    if not result.get("handled"):
        logger.debug("Ignoring unhandled Stripe event %s", result.get("event_type"))
    return WebhookResponse(
        handled=bool(result.get("handled")),
        event_type=str(result.get("event_type", "")),
        payment_id=result.get("payment_id"),
    )
