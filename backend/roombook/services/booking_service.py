# backend/roombook/services/booking_service.py
"""
Booking State Machine

Owns every booking transition:

    PENDING  -> APPROVED | REJECTED | CANCELLED
    APPROVED -> CANCELLED | COMPLETED

Interactive requests and the lifecycle sweeps both go through this service,
so each transition has a single implementation. Every public operation
checks capabilities first, then validates, then writes inside one
transaction. Notifications, refunds and payment-option creation are
best-effort and run after the transition has committed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc
from ..core.config import settings
from ..core.enums import Action, AuditAction, NotificationKind, RejectionReason
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    InvariantViolationException,
    NotFoundException,
    ValidationException,
)
from ..core.permissions import SYSTEM_PRINCIPAL, Principal, authorize
from ..models.booking import Booking, BookingStatus
from ..models.payment import PaymentMethod, PaymentStatus, round_amount
from ..models.payment_settings import PaymentSettings
from ..models.resource import Resource
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .base import BaseService
from .conflict_checker import ConflictChecker
from .notification_service import NotificationService, booking_context
from .payment_service import PaymentService
from .pricing import calculate_price, stored_price

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 500

AUTO_CANCEL_REASON = "Cancellata automaticamente: pagamento non ricevuto entro {days} giorni"

_EDITABLE_FIELDS = ("title", "description", "attendees", "notes")


@dataclass(frozen=True)
class AutoCharge:
    """Charge the computed hours x rate total."""


@dataclass(frozen=True)
class OverrideCharge:
    """Charge an amount chosen by the approver."""

    amount: Decimal

    def __post_init__(self) -> None:
        if Decimal(self.amount) < 0:
            raise ValidationException("Custom amount cannot be negative", code="INVALID_AMOUNT")


Charge = Union[AutoCharge, OverrideCharge]


@dataclass
class ApprovalOutcome:
    """Result of an approval: the booking plus whichever payment options exist."""

    booking: Booking
    amount: Decimal
    checkout_url: Optional[str] = None
    bank_transfer: Optional[Dict[str, Any]] = None
    failed_options: List[str] = field(default_factory=list)


class BookingService(BaseService):
    """Create, edit and move bookings through their lifecycle."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        payment_service: Optional[PaymentService] = None,
        notification_service: Optional[NotificationService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        super().__init__(db, clock=clock)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.resource_repository = RepositoryFactory.create_resource_repository(db)
        self.conflict_repository = RepositoryFactory.create_conflict_checker_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db, clock=self.clock)
        self.notification_service = notification_service or NotificationService(
            db, clock=self.clock
        )
        self.payment_service = payment_service or PaymentService(
            db, clock=self.clock, notification_service=self.notification_service
        )
        self.audit_service = AuditService(db, clock=self.clock)

    # Queries

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get_booking_with_details(booking_id)
        if not booking:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        return booking

    def get_booking(self, principal: Principal, booking_id: str) -> Booking:
        booking = self._get_booking(booking_id)
        authorize(principal, Action.VIEW_BOOKING, booking)
        return booking

    def list_bookings(
        self,
        principal: Principal,
        *,
        resource_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Booking], int]:
        """Staff see every booking; everyone else only their own."""
        requester_id = None if principal.is_staff else principal.id
        return self.repository.list_bookings(
            requester_id=requester_id,
            resource_id=resource_id,
            status=status,
            limit=limit,
            offset=offset,
        )

    def check_availability(
        self,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.conflict_checker.check_availability(
            resource_id, start_time, end_time, exclude_booking_id=exclude_booking_id
        )

    # Creation

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        principal: Principal,
        *,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        title: str,
        description: Optional[str] = None,
        attendees: Optional[int] = None,
        notes: Optional[str] = None,
        additional_resources: Sequence[Tuple[str, int]] = (),
    ) -> Booking:
        """
        Create a PENDING booking for the acting principal.

        Raises:
            ValidationException: window invalid or in the past, resource inactive
            NotFoundException: resource unknown
            BookingConflictException: window overlaps a live booking
        """
        authorize(principal, Action.CREATE_BOOKING)
        start_time, end_time = self._validate_window(start_time, end_time, require_future=True)

        booking = self._insert_booking(
            actor=principal,
            resource_id=resource_id,
            start_time=start_time,
            end_time=end_time,
            additional_resources=additional_resources,
            requester_id=principal.id,
            requester_email=principal.email,
            title=title,
            description=description,
            attendees=attendees,
            notes=notes,
        )

        self.log_operation("booking_created", booking_id=booking.id, resource_id=resource_id)
        context = {"booking": booking_context(booking)}
        self._notify(NotificationKind.NEW_BOOKING_REQUESTER, booking.recipient_email, context)
        self._notify(NotificationKind.NEW_BOOKING_ADMIN, settings.admin_notification_email, context)
        return booking

    @BaseService.measure_operation("create_manual_booking")
    def create_manual_booking(
        self,
        principal: Principal,
        *,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        title: str,
        guest_name: str,
        guest_email: Optional[str] = None,
        guest_phone: Optional[str] = None,
        description: Optional[str] = None,
        attendees: Optional[int] = None,
        notes: Optional[str] = None,
        additional_resources: Sequence[Tuple[str, int]] = (),
        auto_approve: bool = False,
        charge: Charge = AutoCharge(),
    ) -> Booking:
        """Staff booking on behalf of a guest, optionally approved straight away."""
        authorize(principal, Action.CREATE_MANUAL_BOOKING)
        if not guest_name or not guest_name.strip():
            raise ValidationException("Guest name is required", code="GUEST_NAME_REQUIRED")
        start_time, end_time = self._validate_window(start_time, end_time, require_future=True)

        booking = self._insert_booking(
            actor=principal,
            resource_id=resource_id,
            start_time=start_time,
            end_time=end_time,
            additional_resources=additional_resources,
            requester_id=None,
            requester_email=None,
            guest_name=guest_name.strip(),
            guest_email=guest_email,
            guest_phone=guest_phone,
            title=title,
            description=description,
            attendees=attendees,
            notes=notes,
        )
        self.log_operation("manual_booking_created", booking_id=booking.id, by=principal.id)

        if auto_approve:
            return self.approve_booking(principal, booking.id, charge=charge).booking

        self._notify(
            NotificationKind.NEW_BOOKING_REQUESTER,
            booking.recipient_email,
            {"booking": booking_context(booking)},
        )
        return booking

    def _insert_booking(
        self,
        *,
        actor: Principal,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        additional_resources: Sequence[Tuple[str, int]],
        **fields: Any,
    ) -> Booking:
        resource = self._get_active_resource(resource_id)
        lines = self._resolve_additional_lines(additional_resources)
        price = stored_price(
            calculate_price(
                start_time,
                end_time,
                resource.hourly_rate,
                [(line_resource.hourly_rate, quantity) for line_resource, quantity in lines],
            )
        )

        try:
            with self.transaction():
                # Serialize writers on this resource until commit
                self.conflict_repository.lock_resource(resource.id)
                self._assert_available(resource.id, start_time, end_time)
                booking = self.repository.create(
                    resource_id=resource.id,
                    start_time=start_time,
                    end_time=end_time,
                    status=BookingStatus.PENDING.value,
                    payment_status=PaymentStatus.PENDING.value,
                    total_price=price,
                    **fields,
                )
                if lines:
                    self.repository.add_additional_resources(
                        booking, [(line_resource.id, quantity) for line_resource, quantity in lines]
                    )
                self.audit_service.log(
                    AuditAction.CREATE,
                    "booking",
                    entity_id=booking.id,
                    description=f"Booking created for {resource.name}",
                    actor=actor,
                    metadata=booking.to_dict(),
                )
        except IntegrityError as e:
            # The overlap exclusion constraint caught a concurrent insert
            self.logger.warning(f"Integrity error creating booking on {resource.id}: {str(e)}")
            raise BookingConflictException()

        return booking

    # Edits

    @BaseService.measure_operation("update_booking")
    def update_booking(
        self,
        principal: Principal,
        booking_id: str,
        *,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        **changes: Any,
    ) -> Booking:
        """
        Requester edit of their own PENDING booking.

        A new window is checked for overlaps (ignoring the booking itself) but,
        unlike creation, is not required to lie in the future.
        """
        booking = self._get_booking(booking_id)
        authorize(principal, Action.UPDATE_BOOKING, booking)
        if booking.status != BookingStatus.PENDING.value:
            raise BusinessRuleException(
                "Only pending bookings can be edited",
                code="BOOKING_NOT_EDITABLE",
                details={"status": booking.status},
            )
        return self._apply_edit(
            booking,
            actor=principal,
            start_time=start_time,
            end_time=end_time,
            changes=changes,
            description="Booking updated by requester",
        )

    @BaseService.measure_operation("admin_update_booking")
    def admin_update_booking(
        self,
        principal: Principal,
        booking_id: str,
        *,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        admin_note: Optional[str] = None,
        **changes: Any,
    ) -> Booking:
        """Staff edit of a live booking."""
        authorize(principal, Action.ADMIN_UPDATE_BOOKING)
        booking = self._get_booking(booking_id)
        if not booking.is_live:
            raise BusinessRuleException(
                "Only pending or approved bookings can be edited",
                code="BOOKING_NOT_EDITABLE",
                details={"status": booking.status},
            )
        if admin_note and len(admin_note) > MAX_NOTES_LENGTH:
            raise ValidationException(
                f"Admin note must be at most {MAX_NOTES_LENGTH} characters", code="NOTES_TOO_LONG"
            )
        return self._apply_edit(
            booking,
            actor=principal,
            start_time=start_time,
            end_time=end_time,
            changes=changes,
            description="Booking updated by staff",
            extra_metadata={"adminNote": admin_note} if admin_note else None,
        )

    def _apply_edit(
        self,
        booking: Booking,
        *,
        actor: Principal,
        start_time: Optional[datetime],
        end_time: Optional[datetime],
        changes: Dict[str, Any],
        description: str,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValidationException(
                f"Cannot edit fields: {', '.join(sorted(unknown))}", code="INVALID_FIELDS"
            )
        updates = {key: value for key, value in changes.items() if value is not None}

        new_start = ensure_utc(start_time) if start_time else ensure_utc(booking.start_time)
        new_end = ensure_utc(end_time) if end_time else ensure_utc(booking.end_time)
        window_changed = (
            new_start != ensure_utc(booking.start_time) or new_end != ensure_utc(booking.end_time)
        )
        if window_changed:
            self._validate_window(new_start, new_end, require_future=False)
            updates.update(
                start_time=new_start,
                end_time=new_end,
                total_price=stored_price(
                    calculate_price(
                        new_start,
                        new_end,
                        booking.resource.hourly_rate,
                        [
                            (line.resource.hourly_rate, line.quantity)
                            for line in booking.additional_resources
                        ],
                    )
                ),
            )

        if not updates:
            return booking

        try:
            with self.transaction():
                if window_changed:
                    self.conflict_repository.lock_resource(booking.resource_id)
                    self._assert_available(
                        booking.resource_id, new_start, new_end, exclude_booking_id=booking.id
                    )
                self.repository.update(booking, **updates)
                metadata: Dict[str, Any] = {"changes": sorted(updates.keys())}
                if extra_metadata:
                    metadata.update(extra_metadata)
                self.audit_service.log(
                    AuditAction.UPDATE,
                    "booking",
                    entity_id=booking.id,
                    description=description,
                    actor=actor,
                    metadata=metadata,
                )
        except IntegrityError as e:
            self.logger.warning(f"Integrity error updating booking {booking.id}: {str(e)}")
            raise BookingConflictException()

        self.log_operation("booking_updated", booking_id=booking.id, fields=sorted(updates))
        return booking

    # Transitions

    @BaseService.measure_operation("approve_booking")
    def approve_booking(
        self,
        principal: Principal,
        booking_id: str,
        charge: Charge = AutoCharge(),
        notes: Optional[str] = None,
    ) -> ApprovalOutcome:
        """
        Approve a PENDING booking and open its payment options.

        The approval commits first. Each enabled payment option is then
        created independently; a failing gateway or a disabled method leaves
        that option out without undoing the approval.
        """
        authorize(principal, Action.APPROVE_BOOKING)
        self._validate_notes(notes)
        booking = self._get_booking(booking_id)
        self._require_status(booking, BookingStatus.PENDING, "approved")

        if isinstance(charge, OverrideCharge):
            amount = round_amount(charge.amount)
        else:
            amount = round_amount(booking.total_price)

        with self.transaction():
            self._lock_and_recheck(booking, BookingStatus.PENDING, "approved")
            updates: Dict[str, Any] = {
                "status": BookingStatus.APPROVED.value,
                "approved_by": principal.id,
                "approved_at": self.now(),
                "approval_notes": notes,
            }
            if isinstance(charge, OverrideCharge):
                updates["total_price"] = amount
            self.repository.update(booking, **updates)

        outcome = ApprovalOutcome(booking=booking, amount=amount)
        current = self.payment_service.settings_service.get_settings()

        if current.stripe_enabled:
            try:
                payment = self.payment_service.open_gateway_checkout(
                    booking, amount=amount, actor=principal
                )
                outcome.checkout_url = payment.checkout_url
            except Exception as e:
                self.logger.error(f"Checkout creation failed for booking {booking.id}: {str(e)}")
                outcome.failed_options.append(PaymentMethod.GATEWAY_CARD.value)

        if current.bank_transfer_enabled:
            try:
                payment = self.payment_service.open_bank_transfer(
                    booking, amount=amount, actor=principal
                )
                outcome.bank_transfer = self.payment_service.bank_transfer_instructions(
                    payment, current
                )
            except Exception as e:
                self.logger.error(
                    f"Bank transfer creation failed for booking {booking.id}: {str(e)}"
                )
                outcome.failed_options.append(PaymentMethod.BANK_TRANSFER.value)

        self._record_approval(booking, principal, outcome, charge, current)
        return outcome

    def _record_approval(
        self,
        booking: Booking,
        principal: Principal,
        outcome: ApprovalOutcome,
        charge: Charge,
        current: PaymentSettings,
    ) -> None:
        options = []
        if outcome.checkout_url:
            options.append(PaymentMethod.GATEWAY_CARD.value)
        if outcome.bank_transfer:
            options.append(PaymentMethod.BANK_TRANSFER.value)
        try:
            with self.transaction():
                self.audit_service.log(
                    AuditAction.APPROVE,
                    "booking",
                    entity_id=booking.id,
                    description=f"Booking approved - Amount: {outcome.amount} {current.currency}",
                    actor=principal,
                    metadata={
                        "amount": outcome.amount,
                        "customAmount": isinstance(charge, OverrideCharge),
                        "paymentOptions": options,
                        "failedOptions": outcome.failed_options,
                    },
                )
        except Exception as e:
            self.logger.error(f"Failed to record approval audit for booking {booking.id}: {str(e)}")

        self.log_operation("booking_approved", booking_id=booking.id, options=options)
        bank_transfer = outcome.bank_transfer
        self._notify(
            NotificationKind.BOOKING_APPROVED,
            booking.recipient_email,
            {
                "booking": booking_context(booking),
                "amount": f"{outcome.amount} {current.currency}",
                "checkout_url": outcome.checkout_url,
                "bank_transfer": (
                    {
                        "account_holder": bank_transfer["account_holder"],
                        "iban": bank_transfer["iban"],
                        "note": bank_transfer["note"],
                    }
                    if bank_transfer
                    else None
                ),
            },
        )

    @BaseService.measure_operation("reject_booking")
    def reject_booking(
        self,
        principal: Principal,
        booking_id: str,
        reason_code: Union[RejectionReason, str],
        notes: Optional[str] = None,
    ) -> Booking:
        authorize(principal, Action.REJECT_BOOKING)
        try:
            reason = RejectionReason(reason_code)
        except ValueError:
            raise ValidationException(
                f"Unknown rejection reason: {reason_code}",
                code="INVALID_REJECTION_REASON",
                details={"allowed": [r.value for r in RejectionReason]},
            )
        self._validate_notes(notes)
        booking = self._get_booking(booking_id)
        self._require_status(booking, BookingStatus.PENDING, "rejected")

        composed = f"{reason.message}: {notes}" if notes else reason.message
        with self.transaction():
            self._lock_and_recheck(booking, BookingStatus.PENDING, "rejected")
            self.repository.update(
                booking,
                status=BookingStatus.REJECTED.value,
                rejected_by=principal.id,
                rejected_at=self.now(),
                rejection_reason=composed,
            )
            self.audit_service.log(
                AuditAction.REJECT,
                "booking",
                entity_id=booking.id,
                description=f"Booking rejected - Reason: {reason.value}",
                actor=principal,
                metadata={"reasonCode": reason.value, "notes": notes},
            )

        self.log_operation("booking_rejected", booking_id=booking.id, reason=reason.value)
        self._refund_if_paid(booking, principal, composed)
        self._notify(
            NotificationKind.BOOKING_REJECTED,
            booking.recipient_email,
            {"booking": booking_context(booking), "reason": composed},
        )
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self, principal: Principal, booking_id: str, reason: Optional[str] = None
    ) -> Booking:
        """
        Cancel from any state except CANCELLED.

        A settled gateway payment is refunded in full on a best-effort basis;
        a failed refund is logged for manual reconciliation.
        """
        booking = self._get_booking(booking_id)
        authorize(principal, Action.CANCEL_BOOKING, booking)
        return self._cancel(booking, actor=principal, reason=reason)

    def auto_cancel_overdue(self, booking: Booking, deadline_days: int) -> Booking:
        """Scheduler-driven cancellation of an unpaid APPROVED booking."""
        self._require_status(booking, BookingStatus.APPROVED, "auto-cancelled")
        return self._cancel(
            booking,
            actor=SYSTEM_PRINCIPAL,
            reason=AUTO_CANCEL_REASON.format(days=deadline_days),
            payment_status=PaymentStatus.FAILED,
            refund=False,
        )

    def _cancel(
        self,
        booking: Booking,
        *,
        actor: Principal,
        reason: Optional[str],
        payment_status: Optional[PaymentStatus] = None,
        refund: bool = True,
    ) -> Booking:
        if booking.status == BookingStatus.CANCELLED.value:
            raise InvariantViolationException(
                "Booking is already cancelled",
                code="ALREADY_CANCELLED",
                details={"booking_id": booking.id},
            )
        previous_status = booking.status

        with self.transaction():
            locked = self.repository.get_by_id(booking.id, for_update=True)
            if locked is None or locked.status == BookingStatus.CANCELLED.value:
                raise InvariantViolationException(
                    "Booking is already cancelled", code="ALREADY_CANCELLED"
                )
            updates: Dict[str, Any] = {
                "status": BookingStatus.CANCELLED.value,
                "cancellation_reason": reason,
                "cancelled_at": self.now(),
                "cancelled_by": actor.id,
            }
            if payment_status is not None:
                updates["payment_status"] = payment_status.value
            self.repository.update(booking, **updates)
            self.audit_service.log(
                AuditAction.CANCEL,
                "booking",
                entity_id=booking.id,
                description="Booking cancelled" + (f" - Reason: {reason}" if reason else ""),
                actor=actor,
                metadata={"previousStatus": previous_status, "reason": reason},
            )

        self.log_operation("booking_cancelled", booking_id=booking.id, by=actor.id)
        if refund:
            self._refund_if_paid(booking, actor, reason)
        self._notify(
            NotificationKind.BOOKING_CANCELLED,
            booking.recipient_email,
            {"booking": booking_context(booking), "reason": reason or ""},
        )
        return booking

    @BaseService.measure_operation("mark_payment_received")
    def mark_payment_received(self, principal: Principal, booking_id: str) -> Booking:
        """Record that payment arrived; completes the booking if the invoice is out too."""
        authorize(principal, Action.MARK_PAYMENT_RECEIVED)
        return self._mark_flag(
            principal,
            booking_id,
            flag="payment_received",
            label="Payment marked as received",
            already="Payment already marked as received",
        )

    @BaseService.measure_operation("mark_invoice_issued")
    def mark_invoice_issued(self, principal: Principal, booking_id: str) -> Booking:
        """Record that the invoice went out; completes the booking if it is also paid."""
        authorize(principal, Action.MARK_INVOICE_ISSUED)
        return self._mark_flag(
            principal,
            booking_id,
            flag="invoice_issued",
            label="Invoice marked as issued",
            already="Invoice already marked as issued",
        )

    def _mark_flag(
        self, principal: Principal, booking_id: str, *, flag: str, label: str, already: str
    ) -> Booking:
        booking = self._get_booking(booking_id)
        self._require_status(booking, BookingStatus.APPROVED, "updated")

        with self.transaction():
            self._lock_and_recheck(booking, BookingStatus.APPROVED, "updated")
            if getattr(booking, flag):
                raise InvariantViolationException(
                    already, code="ALREADY_MARKED", details={"booking_id": booking.id, "flag": flag}
                )
            now = self.now()
            updates: Dict[str, Any] = {
                flag: True,
                f"{flag}_at": now,
                f"{flag}_by": principal.id,
            }
            if flag == "payment_received" and booking.payment_status in (
                PaymentStatus.PENDING.value,
                PaymentStatus.PROCESSING.value,
                PaymentStatus.FAILED.value,
            ):
                updates["payment_status"] = PaymentStatus.SUCCEEDED.value

            other = "invoice_issued" if flag == "payment_received" else "payment_received"
            completed = bool(getattr(booking, other))
            if completed:
                updates["status"] = BookingStatus.COMPLETED.value
                updates["completed_at"] = now

            self.repository.update(booking, **updates)
            self.audit_service.log(
                AuditAction.UPDATE,
                "booking",
                entity_id=booking.id,
                description=label + (" - Booking completed" if completed else ""),
                actor=principal,
                metadata={"flag": flag, "completed": completed},
            )

        self.log_operation(flag, booking_id=booking.id, completed=completed)
        return booking

    @BaseService.measure_operation("purge_booking")
    def purge_booking(self, principal: Principal, booking_id: str) -> Dict[str, Any]:
        """Hard delete a booking with its payment and add-on lines."""
        authorize(principal, Action.PURGE_BOOKING)
        booking = self._get_booking(booking_id)
        snapshot = booking.to_dict()
        if booking.payment is not None:
            snapshot["payment"] = {
                "id": booking.payment.id,
                "status": booking.payment.status,
                "amount": booking.payment.amount,
            }

        with self.transaction():
            self.repository.delete(booking)
            self.audit_service.log(
                AuditAction.DELETE,
                "booking",
                entity_id=booking_id,
                description="Booking permanently deleted",
                actor=principal,
                metadata=snapshot,
            )

        self.logger.warning(f"Booking {booking_id} purged by {principal.id}")
        return {"deleted": True, "booking_id": booking_id}

    # Sweep support

    def send_payment_reminder(self, booking: Booking, current: PaymentSettings) -> bool:
        """
        Remind the payer once; the flag is only set when delivery succeeded,
        so a failed send is retried by the next sweep.
        """
        now = self.now()
        payment = booking.payment
        if (
            payment is not None
            and payment.checkout_url
            and payment.checkout_expires_at is not None
            and ensure_utc(payment.checkout_expires_at) > now
        ):
            payment_url = payment.checkout_url
        else:
            payment_url = settings.payment_page_url.format(booking_id=booking.id)

        if payment is not None and payment.expires_at is not None:
            deadline = ensure_utc(payment.expires_at)
        else:
            deadline = ensure_utc(booking.approved_at) + timedelta(
                days=current.payment_deadline_days
            )
        hours_remaining = max(0, int((deadline - now).total_seconds() // 3600))

        result = self.notification_service.send(
            NotificationKind.PAYMENT_REMINDER,
            booking.recipient_email,
            {
                "booking": booking_context(booking),
                "hours_remaining": hours_remaining,
                "payment_url": payment_url,
            },
        )
        if not result.success:
            self.logger.warning(
                f"Payment reminder for booking {booking.id} not delivered: {result.error}"
            )
            return False

        with self.transaction():
            self.repository.update(booking, reminder_sent=True, reminder_sent_at=now)
        return True

    # Helpers

    def _validate_window(
        self, start_time: datetime, end_time: datetime, *, require_future: bool
    ) -> Tuple[datetime, datetime]:
        start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)
        if start_time >= end_time:
            raise ValidationException("End time must be after start time", code="INVALID_INTERVAL")
        if require_future and start_time < self.now():
            raise ValidationException("Cannot book in the past", code="BOOKING_IN_PAST")
        return start_time, end_time

    @staticmethod
    def _validate_notes(notes: Optional[str]) -> None:
        if notes and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationException(
                f"Notes must be at most {MAX_NOTES_LENGTH} characters", code="NOTES_TOO_LONG"
            )

    @staticmethod
    def _require_status(booking: Booking, expected: BookingStatus, verb: str) -> None:
        if booking.status != expected.value:
            raise BusinessRuleException(
                f"Only {expected.value.lower()} bookings can be {verb}",
                code="INVALID_BOOKING_STATUS",
                details={"booking_id": booking.id, "status": booking.status},
            )

    def _lock_and_recheck(self, booking: Booking, expected: BookingStatus, verb: str) -> None:
        locked = self.repository.get_by_id(booking.id, for_update=True)
        if locked is None:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        self._require_status(locked, expected, verb)

    def _get_active_resource(self, resource_id: str) -> Resource:
        resource = self.resource_repository.get_by_id(resource_id)
        if not resource:
            raise NotFoundException("Resource not found", code="RESOURCE_NOT_FOUND")
        if not resource.is_active:
            raise ValidationException(
                "Resource is not available for booking",
                code="RESOURCE_INACTIVE",
                details={"resource_id": resource_id},
            )
        return resource

    def _resolve_additional_lines(
        self, lines: Iterable[Tuple[str, int]]
    ) -> List[Tuple[Resource, int]]:
        lines = list(lines)
        resources = self.resource_repository.get_many(rid for rid, _ in lines)
        resolved: List[Tuple[Resource, int]] = []
        for resource_id, quantity in lines:
            if int(quantity) < 1:
                raise ValidationException(
                    "Quantity must be at least 1", code="INVALID_QUANTITY"
                )
            resource = resources.get(resource_id)
            if resource is None:
                raise NotFoundException(
                    "Additional resource not found",
                    code="RESOURCE_NOT_FOUND",
                    details={"resource_id": resource_id},
                )
            if not resource.is_active:
                raise ValidationException(
                    "Additional resource is not available",
                    code="RESOURCE_INACTIVE",
                    details={"resource_id": resource_id},
                )
            resolved.append((resource, int(quantity)))
        return resolved

    def _assert_available(
        self,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        result = self.conflict_checker.check_availability(
            resource_id, start_time, end_time, exclude_booking_id=exclude_booking_id
        )
        if not result["available"]:
            raise BookingConflictException(
                details={"conflicting_booking_ids": result["conflicting_booking_ids"]}
            )

    def _refund_if_paid(self, booking: Booking, actor: Principal, reason: Optional[str]) -> None:
        payment = self.payment_service.payment_repository.get_by_booking_id(booking.id)
        if payment is None or payment.status != PaymentStatus.SUCCEEDED.value:
            return
        try:
            self.payment_service.issue_refund(payment, actor=actor, reason=reason)
        except Exception as e:
            self.logger.error(
                f"Refund failed for booking {booking.id} (payment {payment.id}); "
                f"manual reconciliation required: {str(e)}"
            )

    def _notify(
        self, kind: NotificationKind, recipient: Optional[str], payload: Dict[str, Any]
    ) -> None:
        try:
            self.notification_service.send(kind, recipient, payload)
        except Exception as e:
            self.logger.error(f"Notification {kind.value} failed: {str(e)}")
