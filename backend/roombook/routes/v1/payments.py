# backend/roombook/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    POST /bookings/{booking_id} - Create a direct payment record
    POST /bookings/{booking_id}/checkout - Open a hosted card checkout
    POST /bookings/{booking_id}/bank-transfer - Open a bank transfer with remittance code
    POST /{payment_id}/refund - Full or partial refund (admin)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.params import Path

from ...api.dependencies import get_current_principal, get_payment_service
from ...core.exceptions import DomainException
from ...core.permissions import Principal
from ...errors import handle_domain_exception
from ...schemas.payment import (
    BankTransferInstructions,
    CheckoutSessionResponse,
    DirectPaymentCreate,
    PaymentResponse,
    RefundRequest,
)
from ...services.payment_service import PaymentService
from . import ULID_PATH_PATTERN

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


@router.post(
    "/bookings/{booking_id}",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Payment already exists"}},
)
async def create_direct_payment(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    payment_data: DirectPaymentCreate = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    try:
        payment = await asyncio.to_thread(
            payment_service.create_direct_payment,
            current_principal,
            booking_id,
            payment_data.method,
        )
        return PaymentResponse.from_payment(payment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/checkout", response_model=CheckoutSessionResponse)
async def create_checkout(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    current_principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> CheckoutSessionResponse:
    """Open (or reopen) a hosted checkout session for an approved booking."""
    try:
        result = await asyncio.to_thread(
            payment_service.create_gateway_checkout, current_principal, booking_id
        )
        return CheckoutSessionResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/bank-transfer", response_model=BankTransferInstructions)
async def create_bank_transfer(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    current_principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> BankTransferInstructions:
    """Return bank details and the remittance code the payer must quote."""
    try:
        result = await asyncio.to_thread(
            payment_service.create_bank_transfer, current_principal, booking_id
        )
        return BankTransferInstructions.from_mapping(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: str = Path(..., description="Payment ULID", pattern=ULID_PATH_PATTERN),
    refund_data: Optional[RefundRequest] = Body(None),
    current_principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    amount = refund_data.amount if refund_data else None
    try:
        payment = await asyncio.to_thread(
            payment_service.refund_payment, current_principal, payment_id, amount
        )
        return PaymentResponse.from_payment(payment)
    except DomainException as e:
        handle_domain_exception(e)
