# backend/roombook/repositories/booking_repository.py
"""
Booking Repository

Data access for bookings, their add-on lines, and the sweep selections
used by the lifecycle scheduler.
"""

from datetime import datetime
import logging
from typing import List, Optional, Sequence, Tuple, cast

from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingAdditionalResource, BookingStatus
from ..models.payment import PaymentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_booking_with_details(self, booking_id: str) -> Optional[Booking]:
        try:
            return cast(
                Optional[Booking],
                self.db.query(Booking)
                .options(
                    selectinload(Booking.additional_resources),
                    selectinload(Booking.payment),
                )
                .filter(Booking.id == booking_id)
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error loading booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")

    def add_additional_resources(
        self, booking: Booking, lines: Sequence[Tuple[str, int]]
    ) -> List[BookingAdditionalResource]:
        created: List[BookingAdditionalResource] = []
        for resource_id, quantity in lines:
            line = BookingAdditionalResource(resource_id=resource_id, quantity=quantity)
            booking.additional_resources.append(line)
            created.append(line)
        self.db.flush()
        return created

    def list_bookings(
        self,
        *,
        requester_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Booking], int]:
        try:
            query = self.db.query(Booking)
            if requester_id:
                query = query.filter(Booking.requester_id == requester_id)
            if resource_id:
                query = query.filter(Booking.resource_id == resource_id)
            if status:
                query = query.filter(Booking.status == status)
            total = query.count()
            rows = (
                query.order_by(Booking.start_time.desc()).offset(max(0, offset)).limit(limit).all()
            )
            return cast(List[Booking], rows), int(total)
        except Exception as e:
            self.logger.error(f"Error listing bookings: {str(e)}")
            raise RepositoryException(f"Failed to list bookings: {str(e)}")

    # Sweep selections

    def get_bookings_needing_payment_reminder(self, approved_before: datetime) -> List[Booking]:
        """APPROVED bookings still awaiting payment, approved at or before the cutoff, not yet reminded."""
        try:
            return cast(
                List[Booking],
                self.db.query(Booking)
                .options(selectinload(Booking.payment))
                .filter(
                    Booking.status == BookingStatus.APPROVED.value,
                    Booking.payment_status == PaymentStatus.PENDING.value,
                    Booking.reminder_sent.is_(False),
                    Booking.approved_at.isnot(None),
                    Booking.approved_at <= approved_before,
                )
                .order_by(Booking.approved_at)
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Error selecting reminder candidates: {str(e)}")
            raise RepositoryException(f"Failed to select reminder candidates: {str(e)}")

    def get_bookings_past_payment_deadline(self, approved_before: datetime) -> List[Booking]:
        """APPROVED bookings still awaiting payment, approved strictly before the cutoff."""
        try:
            return cast(
                List[Booking],
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.APPROVED.value,
                    Booking.payment_status == PaymentStatus.PENDING.value,
                    Booking.approved_at.isnot(None),
                    Booking.approved_at < approved_before,
                )
                .order_by(Booking.approved_at)
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Error selecting overdue bookings: {str(e)}")
            raise RepositoryException(f"Failed to select overdue bookings: {str(e)}")
