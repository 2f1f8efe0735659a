# backend/roombook/repositories/conflict_checker_repository.py
"""
ConflictChecker Repository

Reads the live timeline of a resource. Two half-open windows overlap iff
``a.start < b.end AND b.start < a.end``; only PENDING and APPROVED bookings
are considered.
"""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import LIVE_STATUSES, Booking
from ..models.resource import Resource
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ConflictCheckerRepository(BaseRepository[Booking]):
    """Repository for conflict checking data access."""

    def __init__(self, db: Session):
        """Initialize with Booking model as primary."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_overlapping_live_bookings(
        self,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Get live bookings on a resource whose window overlaps ``[start_time, end_time)``.

        Abutting windows (``end == other.start``) are not returned.
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.resource_id == resource_id,
                Booking.status.in_(LIVE_STATUSES),
                Booking.start_time < end_time,
                start_time < Booking.end_time,
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)

            return cast(List[Booking], query.order_by(Booking.start_time).all())

        except Exception as e:
            self.logger.error(f"Error getting bookings for conflict check: {str(e)}")
            raise RepositoryException(f"Failed to get conflict bookings: {str(e)}")

    def lock_resource(self, resource_id: str) -> Optional[Resource]:
        """
        Take a row lock on the resource so concurrent writers serialize.

        Held until the surrounding transaction ends. SQLite ignores FOR UPDATE;
        there the exclusion constraint is absent too and writes are serialized
        by the database file lock.
        """
        try:
            return cast(
                Optional[Resource],
                self.db.query(Resource)
                .filter(Resource.id == resource_id)
                .with_for_update()
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error locking resource {resource_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock resource: {str(e)}")
