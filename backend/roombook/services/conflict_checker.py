# backend/roombook/services/conflict_checker.py
"""
Conflict Checker Service

Decides whether a candidate window may be placed on a resource's timeline.
Booking creation, requester edits and staff edits all go through
``ConflictChecker.check_availability`` so the overlap rule has one
implementation.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc
from ..core.exceptions import ValidationException
from ..models.booking import LIVE_STATUSES
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open overlap: ``[a_start, a_end)`` and ``[b_start, b_end)`` share an instant."""
    return a_start < b_end and b_start < a_end


def find_conflicts(
    start: datetime,
    end: datetime,
    existing: Iterable[Tuple[str, datetime, datetime, str]],
    exclude_booking_id: Optional[str] = None,
) -> List[str]:
    """
    Return ids of live intervals in ``existing`` that overlap the candidate.

    ``existing`` yields ``(booking_id, start, end, status)`` tuples.
    """
    start, end = ensure_utc(start), ensure_utc(end)
    return [
        booking_id
        for booking_id, other_start, other_end, status in existing
        if booking_id != exclude_booking_id
        and status in LIVE_STATUSES
        and intervals_overlap(start, end, ensure_utc(other_start), ensure_utc(other_end))
    ]


class ConflictChecker(BaseService):
    """Availability decisions for a resource window."""

    def __init__(self, db: Session, clock: Optional[Clock] = None, repository=None):
        super().__init__(db, clock=clock)
        self.repository = repository or RepositoryFactory.create_conflict_checker_repository(db)

    @BaseService.measure_operation("check_availability")
    def check_availability(
        self,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Check a window against the resource's live bookings.

        Returns:
            {"available": bool, "conflicting_booking_ids": [...]}
        """
        start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)
        if start_time >= end_time:
            raise ValidationException("End time must be after start time", code="INVALID_INTERVAL")

        candidates = self.repository.get_overlapping_live_bookings(
            resource_id, start_time, end_time, exclude_booking_id=exclude_booking_id
        )
        conflicts = find_conflicts(
            start_time,
            end_time,
            ((b.id, b.start_time, b.end_time, b.status) for b in candidates),
            exclude_booking_id=exclude_booking_id,
        )
        if conflicts:
            self.logger.debug(
                "Resource %s unavailable for %s-%s (conflicts: %s)",
                resource_id,
                start_time,
                end_time,
                conflicts,
            )
        return {"available": not conflicts, "conflicting_booking_ids": conflicts}

    def is_available(
        self,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        result = self.check_availability(
            resource_id, start_time, end_time, exclude_booking_id=exclude_booking_id
        )
        return bool(result["available"])
