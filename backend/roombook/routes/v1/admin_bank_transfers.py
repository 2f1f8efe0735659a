# backend/roombook/routes/v1/admin_bank_transfers.py
"""Admin reconciliation of incoming bank transfers."""

import asyncio

from fastapi import APIRouter, Depends
from fastapi.params import Path

from ...api.dependencies import get_current_principal, get_payment_service
from ...core.exceptions import DomainException
from ...core.permissions import Principal
from ...errors import handle_domain_exception
from ...schemas.payment import (
    PaymentResponse,
    PendingBankTransferList,
    PendingBankTransferResponse,
)
from ...services.payment_service import PaymentService
from . import ULID_PATH_PATTERN

router = APIRouter(tags=["admin-bank-transfers"])


@router.get("", response_model=PendingBankTransferList)
async def list_pending_bank_transfers(
    current_principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PendingBankTransferList:
    """Unverified bank transfers, oldest first."""
    try:
        payments = await asyncio.to_thread(
            payment_service.list_pending_bank_transfers, current_principal
        )
        items = [PendingBankTransferResponse.from_payment(p) for p in payments]
        return PendingBankTransferList(items=items, total=len(items))
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{payment_id}/verify", response_model=PaymentResponse)
async def verify_bank_transfer(
    payment_id: str = Path(..., description="Payment ULID", pattern=ULID_PATH_PATTERN),
    current_principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    try:
        payment = await asyncio.to_thread(
            payment_service.verify_bank_transfer, current_principal, payment_id
        )
        return PaymentResponse.from_payment(payment)
    except DomainException as e:
        handle_domain_exception(e)
