# backend/roombook/models/booking.py
"""
Booking model for the reservation engine.

A booking reserves one main resource (plus optional add-on lines) for a
half-open window ``[start_time, end_time)``. Only PENDING and APPROVED
bookings occupy the resource's timeline.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .payment import PaymentStatus

if TYPE_CHECKING:
    from .payment import Payment
    from .resource import Resource

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Awaiting staff decision
    APPROVED = "APPROVED"  # Approved, awaiting payment and invoice
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"  # Paid and invoiced


LIVE_STATUSES = (BookingStatus.PENDING.value, BookingStatus.APPROVED.value)


class Booking(Base):
    """Reservation request for a resource and time window."""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID())
    )

    resource_id: Mapped[str] = mapped_column(String(26), ForeignKey("resources.id"), nullable=False)
    # Null for staff-created bookings on behalf of a guest
    requester_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    requester_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    guest_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attendees: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    # hours x rate sum kept at 4 decimals (pricing.PRICE_SCALE); cents only on a Payment
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=0)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )

    approved_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    rejected_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payment_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_received_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_received_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    invoice_issued: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invoice_issued_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    invoice_issued_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )

    resource: Mapped["Resource"] = relationship("Resource", lazy="joined")
    additional_resources: Mapped[List["BookingAdditionalResource"]] = relationship(
        "BookingAdditionalResource",
        back_populates="booking",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    payment: Mapped[Optional["Payment"]] = relationship(
        "Payment",
        back_populates="booking",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_booking_time_order"),
        CheckConstraint("total_price >= 0", name="check_booking_price_non_negative"),
        Index("ix_bookings_resource_window", "resource_id", "start_time", "end_time"),
        Index("ix_bookings_status_payment", "status", "payment_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} resource={self.resource_id} "
            f"{self.start_time}-{self.end_time} status={self.status}>"
        )

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def recipient_email(self) -> Optional[str]:
        return self.requester_email or self.guest_email

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot used for audit metadata and notification payloads."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "requester_id": self.requester_id,
            "title": self.title,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "status": self.status,
            "payment_status": self.payment_status,
            "total_price": str(self.total_price) if self.total_price is not None else None,
            "payment_received": bool(self.payment_received),
            "invoice_issued": bool(self.invoice_issued),
            "additional_resources": [
                {"resource_id": line.resource_id, "quantity": line.quantity}
                for line in (self.additional_resources or [])
            ],
        }


class BookingAdditionalResource(Base):
    """Add-on line priced like the main resource: hours x rate x quantity."""

    __tablename__ = "booking_additional_resources"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_id: Mapped[str] = mapped_column(String(26), ForeignKey("resources.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="additional_resources")
    resource: Mapped["Resource"] = relationship("Resource", lazy="joined")

    __table_args__ = (CheckConstraint("quantity >= 1", name="check_additional_quantity_positive"),)
