# backend/roombook/schemas/booking.py
"""
Booking request and response schemas.

Time windows are half-open ``[start_time, end_time)``. Naive datetimes are
read as UTC.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import Field, model_validator

from ..core.enums import RejectionReason
from ..models.booking import Booking
from ..services.booking_service import ApprovalOutcome, AutoCharge, Charge, OverrideCharge
from ._strict_base import StrictModel, StrictRequestModel
from .payment import BankTransferInstructions, PaymentResponse

NOTES_MAX_LENGTH = 500


class AdditionalResourceLine(StrictRequestModel):
    resource_id: str
    quantity: int = Field(1, ge=1)


class _WindowModel(StrictRequestModel):
    @model_validator(mode="after")
    def _check_window(self):  # type: ignore[no-untyped-def]
        start = getattr(self, "start_time", None)
        end = getattr(self, "end_time", None)
        if start is not None and end is not None and end <= start:
            raise ValueError("end_time must be after start_time")
        return self


class BookingCreate(_WindowModel):
    resource_id: str = Field(..., description="Main resource to book")
    start_time: datetime
    end_time: datetime
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    attendees: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None, max_length=2000)
    additional_resources: List[AdditionalResourceLine] = Field(default_factory=list)


class BookingUpdate(_WindowModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    attendees: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None, max_length=2000)


class AdminBookingUpdate(_WindowModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    admin_note: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class AutoChargeIn(StrictRequestModel):
    mode: Literal["auto"] = "auto"


class OverrideChargeIn(StrictRequestModel):
    mode: Literal["override"] = "override"
    amount: Decimal = Field(..., ge=0, decimal_places=2)


ChargeIn = Annotated[Union[AutoChargeIn, OverrideChargeIn], Field(discriminator="mode")]


def _to_charge(charge: Union[AutoChargeIn, OverrideChargeIn]) -> Charge:
    if isinstance(charge, OverrideChargeIn):
        return OverrideCharge(amount=charge.amount)
    return AutoCharge()


class ManualBookingCreate(BookingCreate):
    guest_name: str = Field(..., min_length=1, max_length=200)
    guest_email: Optional[str] = Field(None, max_length=255)
    guest_phone: Optional[str] = Field(None, max_length=50)
    auto_approve: bool = False
    charge: ChargeIn = Field(default_factory=AutoChargeIn)

    def to_charge(self) -> Charge:
        return _to_charge(self.charge)


class BookingApprove(StrictRequestModel):
    charge: ChargeIn = Field(default_factory=AutoChargeIn)
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)

    def to_charge(self) -> Charge:
        return _to_charge(self.charge)


class BookingReject(StrictRequestModel):
    reason: RejectionReason
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class BookingCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class AvailabilityCheckRequest(_WindowModel):
    resource_id: str
    start_time: datetime
    end_time: datetime
    exclude_booking_id: Optional[str] = None


class AvailabilityCheckResponse(StrictModel):
    available: bool
    conflicting_booking_ids: List[str] = Field(default_factory=list)


class AdditionalResourceResponse(StrictModel):
    resource_id: str
    quantity: int


class BookingResponse(StrictModel):
    id: str
    resource_id: str
    requester_id: Optional[str] = None
    requester_email: Optional[str] = None
    guest_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    attendees: Optional[int] = None
    notes: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: str
    total_price: Decimal
    payment_status: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    payment_received: bool = False
    invoice_issued: bool = False
    reminder_sent: bool = False
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    additional_resources: List[AdditionalResourceResponse] = Field(default_factory=list)
    payment: Optional[PaymentResponse] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            resource_id=booking.resource_id,
            requester_id=booking.requester_id,
            requester_email=booking.requester_email,
            guest_name=booking.guest_name,
            title=booking.title,
            description=booking.description,
            attendees=booking.attendees,
            notes=booking.notes,
            start_time=booking.start_time,
            end_time=booking.end_time,
            status=booking.status,
            total_price=booking.total_price,
            payment_status=booking.payment_status,
            approved_by=booking.approved_by,
            approved_at=booking.approved_at,
            rejection_reason=booking.rejection_reason,
            payment_received=bool(booking.payment_received),
            invoice_issued=bool(booking.invoice_issued),
            reminder_sent=bool(booking.reminder_sent),
            cancellation_reason=booking.cancellation_reason,
            cancelled_at=booking.cancelled_at,
            completed_at=booking.completed_at,
            created_at=booking.created_at,
            additional_resources=[
                AdditionalResourceResponse(resource_id=line.resource_id, quantity=line.quantity)
                for line in booking.additional_resources
            ],
            payment=PaymentResponse.from_payment(booking.payment) if booking.payment else None,
        )


class BookingListResponse(StrictModel):
    items: List[BookingResponse]
    total: int
    limit: int
    offset: int


class ApprovalResponse(StrictModel):
    booking: BookingResponse
    amount: Decimal
    checkout_url: Optional[str] = None
    bank_transfer: Optional[BankTransferInstructions] = None
    failed_options: List[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: ApprovalOutcome) -> "ApprovalResponse":
        return cls(
            booking=BookingResponse.from_booking(outcome.booking),
            amount=outcome.amount,
            checkout_url=outcome.checkout_url,
            bank_transfer=(
                BankTransferInstructions.from_mapping(outcome.bank_transfer)
                if outcome.bank_transfer
                else None
            ),
            failed_options=list(outcome.failed_options),
        )


class PurgeResponse(StrictModel):
    deleted: bool
    booking_id: str
