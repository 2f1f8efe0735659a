# backend/roombook/schemas/payment.py
"""Payment request and response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..models.payment import Payment, PaymentMethod
from ._strict_base import StrictModel, StrictRequestModel


class DirectPaymentCreate(StrictRequestModel):
    method: PaymentMethod = Field(..., description="GATEWAY_CARD or BANK_TRANSFER")


class RefundRequest(StrictRequestModel):
    amount: Optional[Decimal] = Field(
        None, gt=0, decimal_places=2, description="Partial amount; omit for a full refund"
    )


class PaymentResponse(StrictModel):
    id: str
    booking_id: str
    amount: Decimal
    currency: str
    method: str
    status: str
    checkout_url: Optional[str] = None
    bank_transfer_code: Optional[str] = None
    bank_transfer_note: Optional[str] = None
    bank_transfer_verified: bool = False
    refunded_amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            booking_id=payment.booking_id,
            amount=payment.amount,
            currency=payment.currency,
            method=payment.method,
            status=payment.status,
            checkout_url=payment.checkout_url,
            bank_transfer_code=payment.bank_transfer_code,
            bank_transfer_note=payment.bank_transfer_note,
            bank_transfer_verified=bool(payment.bank_transfer_verified),
            refunded_amount=payment.refunded_amount,
            paid_at=payment.paid_at,
            expires_at=payment.expires_at,
            created_at=payment.created_at,
        )


class PendingBankTransferResponse(PaymentResponse):
    """Unverified transfer with enough booking context to match a bank statement line."""

    booking_title: Optional[str] = None
    payer: Optional[str] = None

    @classmethod
    def from_payment(cls, payment: Payment) -> "PendingBankTransferResponse":
        base = PaymentResponse.from_payment(payment).model_dump()
        booking = payment.booking
        return cls(
            **base,
            booking_title=booking.title if booking else None,
            payer=(booking.recipient_email or booking.guest_name) if booking else None,
        )


class CheckoutSessionResponse(StrictModel):
    payment_id: str
    session_id: Optional[str] = None
    checkout_url: Optional[str] = None
    amount: Decimal
    currency: str
    expires_at: Optional[datetime] = None


class BankTransferInstructions(StrictModel):
    payment_id: str
    bank_transfer_code: Optional[str] = None
    amount: Decimal
    currency: str
    expires_at: Optional[datetime] = None
    bank_name: Optional[str] = None
    account_holder: Optional[str] = None
    iban: Optional[str] = None
    bic: Optional[str] = None
    address: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "BankTransferInstructions":
        return cls(**data)


class WebhookResponse(StrictModel):
    received: bool = True
    handled: bool
    event_type: str
    payment_id: Optional[str] = None


class PendingBankTransferList(StrictModel):
    items: List[PendingBankTransferResponse]
    total: int
