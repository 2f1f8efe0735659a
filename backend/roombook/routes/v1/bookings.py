# backend/roombook/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    POST /check-availability - Check if a window is free on a resource
    GET / - List bookings (own bookings unless staff)
    POST / - Request a booking
    POST /manual - Staff booking on behalf of a guest
    GET /{booking_id} - Booking details
    PATCH /{booking_id} - Requester edit of a pending booking
    PATCH /{booking_id}/admin - Staff edit of a live booking
    POST /{booking_id}/cancel - Cancel a booking
    POST /{booking_id}/approve - Approve and open payment options
    POST /{booking_id}/reject - Reject with a reason code
    POST /{booking_id}/mark-payment-received - Record an offline payment
    POST /{booking_id}/mark-invoice-issued - Record the invoice
    DELETE /{booking_id} - Permanently delete (admin)
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.params import Path

from ...api.dependencies import get_booking_service, get_current_principal
from ...core.exceptions import DomainException
from ...core.permissions import Principal
from ...errors import handle_domain_exception
from ...models.booking import BookingStatus
from ...schemas.booking import (
    AdminBookingUpdate,
    ApprovalResponse,
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
    BookingApprove,
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingReject,
    BookingResponse,
    BookingUpdate,
    ManualBookingCreate,
    PurgeResponse,
)
from ...services.booking_service import BookingService
from . import ULID_PATH_PATTERN

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])


def _booking_id_path() -> Any:
    return Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


@router.post("/check-availability", response_model=AvailabilityCheckResponse)
async def check_availability(
    check_data: AvailabilityCheckRequest = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> AvailabilityCheckResponse:
    """Check whether a half-open window is free on a resource."""
    try:
        result = await asyncio.to_thread(
            booking_service.check_availability,
            check_data.resource_id,
            check_data.start_time,
            check_data.end_time,
            exclude_booking_id=check_data.exclude_booking_id,
        )
        return AvailabilityCheckResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    resource_id: Optional[str] = Query(None),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    try:
        rows, total = await asyncio.to_thread(
            booking_service.list_bookings,
            current_principal,
            resource_id=resource_id,
            status=status_filter.value if status_filter else None,
            limit=limit,
            offset=offset,
        )
        return BookingListResponse(
            items=[BookingResponse.from_booking(b) for b in rows],
            total=total,
            limit=limit,
            offset=offset,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Request a booking.

    The booking starts PENDING and occupies the resource's timeline until
    it is rejected or cancelled. Overlaps with live bookings return 409.
    """
    try:
        booking = await asyncio.to_thread(
            booking_service.create_booking,
            current_principal,
            resource_id=booking_data.resource_id,
            start_time=booking_data.start_time,
            end_time=booking_data.end_time,
            title=booking_data.title,
            description=booking_data.description,
            attendees=booking_data.attendees,
            notes=booking_data.notes,
            additional_resources=[
                (line.resource_id, line.quantity) for line in booking_data.additional_resources
            ],
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/manual", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_manual_booking(
    booking_data: ManualBookingCreate = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.create_manual_booking,
            current_principal,
            resource_id=booking_data.resource_id,
            start_time=booking_data.start_time,
            end_time=booking_data.end_time,
            title=booking_data.title,
            guest_name=booking_data.guest_name,
            guest_email=booking_data.guest_email,
            guest_phone=booking_data.guest_phone,
            description=booking_data.description,
            attendees=booking_data.attendees,
            notes=booking_data.notes,
            additional_resources=[
                (line.resource_id, line.quantity) for line in booking_data.additional_resources
            ],
            auto_approve=booking_data.auto_approve,
            charge=booking_data.to_charge(),
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = _booking_id_path(),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.get_booking, current_principal, booking_id
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: str = _booking_id_path(),
    update_data: BookingUpdate = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Requester edit; only PENDING bookings can be changed."""
    changes = update_data.model_dump(exclude_unset=True)
    try:
        booking = await asyncio.to_thread(
            booking_service.update_booking, current_principal, booking_id, **changes
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{booking_id}/admin", response_model=BookingResponse)
async def admin_update_booking(
    booking_id: str = _booking_id_path(),
    update_data: AdminBookingUpdate = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    changes = update_data.model_dump(exclude_unset=True)
    try:
        booking = await asyncio.to_thread(
            booking_service.admin_update_booking, current_principal, booking_id, **changes
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def cancel_booking(
    booking_id: str = _booking_id_path(),
    cancel_data: Optional[BookingCancel] = Body(None),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Cancel a booking."""
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_booking,
            current_principal,
            booking_id,
            reason=cancel_data.reason if cancel_data else None,
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/approve",
    response_model=ApprovalResponse,
    responses={404: {"description": "Booking not found"}, 409: {"description": "Time conflict"}},
)
async def approve_booking(
    booking_id: str = _booking_id_path(),
    approve_data: Optional[BookingApprove] = Body(None),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> ApprovalResponse:
    """
    Approve a pending booking.

    The response lists the payment options that could be opened; options
    that failed are named in ``failed_options`` and the approval stands.
    """
    approve_data = approve_data or BookingApprove()
    try:
        outcome = await asyncio.to_thread(
            booking_service.approve_booking,
            current_principal,
            booking_id,
            approve_data.to_charge(),
            approve_data.notes,
        )
        return ApprovalResponse.from_outcome(outcome)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str = _booking_id_path(),
    reject_data: BookingReject = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.reject_booking,
            current_principal,
            booking_id,
            reject_data.reason,
            reject_data.notes,
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/mark-payment-received", response_model=BookingResponse)
async def mark_payment_received(
    booking_id: str = _booking_id_path(),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.mark_payment_received, current_principal, booking_id
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/mark-invoice-issued", response_model=BookingResponse)
async def mark_invoice_issued(
    booking_id: str = _booking_id_path(),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.mark_invoice_issued, current_principal, booking_id
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{booking_id}", response_model=PurgeResponse)
async def purge_booking(
    booking_id: str = _booking_id_path(),
    current_principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> PurgeResponse:
    """Permanently delete a booking with its payment and add-on lines."""
    try:
        result = await asyncio.to_thread(
            booking_service.purge_booking, current_principal, booking_id
        )
        return PurgeResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)
