from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from roombook.core.clock import ensure_utc
from roombook.core.enums import NotificationKind, RejectionReason
from roombook.core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ExternalDependencyException,
    ForbiddenException,
    InvariantViolationException,
    NotFoundException,
    ValidationException,
)
from roombook.models.audit_log import AuditLog
from roombook.models.booking import Booking, BookingStatus
from roombook.models.payment import Payment, PaymentMethod, PaymentStatus
from roombook.services.booking_service import OverrideCharge


def _audit_actions(db, booking_id):
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.entity == "booking", AuditLog.entity_id == booking_id)
        .all()
    )
    return {row.action for row in rows}


def _sent_kinds(notifier):
    return [c.args[0] for c in notifier.send.call_args_list]


class TestCreateBooking:
    def test_creates_pending_booking_with_price(self, create_booking, requester, db):
        booking = create_booking()

        assert booking.status == BookingStatus.PENDING.value
        assert booking.payment_status == PaymentStatus.PENDING.value
        assert booking.requester_id == requester.id
        assert booking.requester_email == requester.email
        assert booking.total_price == Decimal("100")
        assert "CREATE" in _audit_actions(db, booking.id)

    def test_fractional_hours_are_kept_at_four_decimals(self, create_booking, make_window, db):
        start, _ = make_window()
        booking = create_booking(end_time=start + timedelta(minutes=20))

        db.expire(booking)
        assert booking.total_price == Decimal("16.6667")

    def test_notifies_requester_and_staff(self, create_booking, notifier):
        create_booking()

        kinds = _sent_kinds(notifier)
        assert NotificationKind.NEW_BOOKING_REQUESTER in kinds
        assert NotificationKind.NEW_BOOKING_ADMIN in kinds

    def test_additional_resources_are_priced(self, create_booking, projector):
        booking = create_booking(additional_resources=[(projector.id, 2)])

        # 2h x 50 + 2h x 10 x 2
        assert booking.total_price == Decimal("140")
        assert [(line.resource_id, line.quantity) for line in booking.additional_resources] == [
            (projector.id, 2)
        ]

    def test_overlapping_window_is_rejected(self, create_booking, other_user):
        first = create_booking(start_hour=10, hours=2)

        with pytest.raises(BookingConflictException) as exc_info:
            create_booking(principal=other_user, start_hour=11, hours=2)

        assert exc_info.value.code == "BOOKING_CONFLICT"
        assert exc_info.value.details["conflicting_booking_ids"] == [first.id]

    def test_abutting_windows_are_allowed(self, create_booking, other_user):
        create_booking(start_hour=10, hours=2)
        second = create_booking(principal=other_user, start_hour=12, hours=1)
        third = create_booking(principal=other_user, start_hour=9, hours=1)

        assert second.status == BookingStatus.PENDING.value
        assert third.status == BookingStatus.PENDING.value

    def test_rejected_booking_frees_the_slot(
        self, booking_service, create_booking, manager, other_user
    ):
        first = create_booking()
        booking_service.reject_booking(manager, first.id, RejectionReason.OTHER)

        replacement = create_booking(principal=other_user)
        assert replacement.status == BookingStatus.PENDING.value

    def test_past_start_is_rejected(self, create_booking):
        with pytest.raises(ValidationException) as exc_info:
            create_booking(day_offset=-1)
        assert exc_info.value.code == "BOOKING_IN_PAST"

    def test_inverted_window_is_rejected(self, booking_service, resource, requester, make_window):
        start, end = make_window()
        with pytest.raises(ValidationException) as exc_info:
            booking_service.create_booking(
                requester, resource_id=resource.id, start_time=end, end_time=start, title="x"
            )
        assert exc_info.value.code == "INVALID_INTERVAL"

    def test_inactive_resource_is_rejected(self, create_booking, resource, db):
        resource.is_active = False
        db.commit()

        with pytest.raises(ValidationException) as exc_info:
            create_booking()
        assert exc_info.value.code == "RESOURCE_INACTIVE"

    def test_unknown_resource(self, create_booking):
        with pytest.raises(NotFoundException):
            create_booking(resource_id="01HZZZZZZZZZZZZZZZZZZZZZZZ")

    def test_constraint_violation_maps_to_conflict(self, booking_service, create_booking):
        err = IntegrityError("INSERT INTO bookings", {}, Exception("bookings_no_overlap"))
        with patch.object(booking_service.repository, "create", side_effect=err):
            with pytest.raises(BookingConflictException):
                create_booking()


class TestManualBooking:
    def test_guest_booking_without_requester(self, booking_service, resource, manager, make_window):
        start, end = make_window()
        booking = booking_service.create_manual_booking(
            manager,
            resource_id=resource.id,
            start_time=start,
            end_time=end,
            title="Evento esterno",
            guest_name="  Anna Bianchi ",
            guest_email="anna@example.com",
        )

        assert booking.requester_id is None
        assert booking.guest_name == "Anna Bianchi"
        assert booking.recipient_email == "anna@example.com"
        assert booking.status == BookingStatus.PENDING.value

    def test_auto_approve_with_override(
        self, booking_service, resource, manager, make_window, payment_settings, gateway
    ):
        start, end = make_window()
        booking = booking_service.create_manual_booking(
            manager,
            resource_id=resource.id,
            start_time=start,
            end_time=end,
            title="Evento esterno",
            guest_name="Anna Bianchi",
            auto_approve=True,
            charge=OverrideCharge(amount=Decimal("75.00")),
        )

        assert booking.status == BookingStatus.APPROVED.value
        assert booking.total_price == Decimal("75.00")
        assert gateway.create_checkout_session.call_args.kwargs["amount_cents"] == 7500

    def test_requires_staff(self, booking_service, resource, requester, make_window):
        start, end = make_window()
        with pytest.raises(ForbiddenException):
            booking_service.create_manual_booking(
                requester,
                resource_id=resource.id,
                start_time=start,
                end_time=end,
                title="x",
                guest_name="Anna",
            )

    def test_guest_name_required(self, booking_service, resource, manager, make_window):
        start, end = make_window()
        with pytest.raises(ValidationException):
            booking_service.create_manual_booking(
                manager,
                resource_id=resource.id,
                start_time=start,
                end_time=end,
                title="x",
                guest_name="   ",
            )


class TestEdits:
    def test_owner_moves_window_and_price_follows(
        self, booking_service, create_booking, requester, make_window
    ):
        booking = create_booking()
        start, end = make_window(day_offset=2, hours=3)

        updated = booking_service.update_booking(
            requester, booking.id, start_time=start, end_time=end, title="Nuovo titolo"
        )

        assert ensure_utc(updated.start_time) == start
        assert updated.total_price == Decimal("150")
        assert updated.title == "Nuovo titolo"

    def test_edit_ignores_own_window_when_checking_overlap(
        self, booking_service, create_booking, requester, make_window
    ):
        booking = create_booking(start_hour=10, hours=2)
        start, end = make_window(start_hour=11, hours=2)

        updated = booking_service.update_booking(requester, booking.id, start_time=start, end_time=end)
        assert ensure_utc(updated.end_time) == end

    def test_edit_into_another_booking_conflicts(
        self, booking_service, create_booking, requester, other_user, make_window
    ):
        create_booking(principal=other_user, start_hour=14, hours=2)
        mine = create_booking(start_hour=10, hours=2)
        start, end = make_window(start_hour=13, hours=2)

        with pytest.raises(BookingConflictException):
            booking_service.update_booking(requester, mine.id, start_time=start, end_time=end)

    def test_only_owner_may_edit(self, booking_service, create_booking, other_user, admin):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.update_booking(other_user, booking.id, title="x")
        with pytest.raises(ForbiddenException):
            booking_service.update_booking(admin, booking.id, title="x")

    def test_approved_booking_is_not_editable_by_owner(
        self, booking_service, approved_booking, requester
    ):
        with pytest.raises(BusinessRuleException) as exc_info:
            booking_service.update_booking(requester, approved_booking.id, title="x")
        assert exc_info.value.code == "BOOKING_NOT_EDITABLE"

    def test_unknown_fields_are_rejected(self, booking_service, create_booking, requester):
        booking = create_booking()
        with pytest.raises(ValidationException):
            booking_service.update_booking(requester, booking.id, status="APPROVED")

    def test_staff_edit_records_admin_note(
        self, booking_service, approved_booking, manager, db
    ):
        booking_service.admin_update_booking(
            manager, approved_booking.id, title="Rinominata", admin_note="Richiesta telefonica"
        )

        entries = (
            db.query(AuditLog)
            .filter(AuditLog.entity_id == approved_booking.id, AuditLog.action == "UPDATE")
            .all()
        )
        assert approved_booking.title == "Rinominata"
        assert any(e.details.get("adminNote") == "Richiesta telefonica" for e in entries)

    def test_staff_edit_requires_live_booking(
        self, booking_service, create_booking, requester, manager
    ):
        booking = create_booking()
        booking_service.cancel_booking(requester, booking.id)
        with pytest.raises(BusinessRuleException):
            booking_service.admin_update_booking(manager, booking.id, title="x")


class TestApproval:
    def test_opens_both_payment_options(
        self, booking_service, create_booking, manager, payment_settings, gateway, db
    ):
        booking = create_booking()

        outcome = booking_service.approve_booking(manager, booking.id, notes="Ok")

        assert outcome.booking.status == BookingStatus.APPROVED.value
        assert outcome.booking.approved_by == manager.id
        assert outcome.amount == Decimal("100.00")
        assert outcome.checkout_url == "https://checkout.stripe.test/cs_test_123"
        assert outcome.bank_transfer["bank_transfer_code"].startswith("BK-")
        assert outcome.bank_transfer["iban"] == payment_settings.bank_iban
        assert outcome.failed_options == []

        gateway.create_checkout_session.assert_called_once()
        assert gateway.create_checkout_session.call_args.kwargs["amount_cents"] == 10000

        payments = db.query(Payment).filter(Payment.booking_id == booking.id).all()
        assert len(payments) == 1
        payment = payments[0]
        assert payment.amount == Decimal("100.00")
        assert payment.stripe_session_id == "cs_test_123"
        assert payment.status == PaymentStatus.PENDING.value
        assert "APPROVE" in _audit_actions(db, booking.id)

    def test_gateway_failure_keeps_approval(
        self, booking_service, create_booking, manager, payment_settings, gateway, db, notifier
    ):
        gateway.create_checkout_session.side_effect = ExternalDependencyException(
            "Stripe unavailable", code="GATEWAY_ERROR"
        )
        booking = create_booking()

        outcome = booking_service.approve_booking(manager, booking.id)

        assert outcome.booking.status == BookingStatus.APPROVED.value
        assert outcome.checkout_url is None
        assert outcome.failed_options == [PaymentMethod.GATEWAY_CARD.value]
        assert outcome.bank_transfer is not None
        assert db.get(Booking, booking.id).status == BookingStatus.APPROVED.value
        assert "APPROVE" in _audit_actions(db, booking.id)
        assert NotificationKind.BOOKING_APPROVED in _sent_kinds(notifier)

    def test_disabled_options_are_skipped(
        self, booking_service, create_booking, manager, payment_settings, gateway, db
    ):
        payment_settings.stripe_enabled = False
        payment_settings.bank_transfer_enabled = False
        db.commit()
        booking = create_booking()

        outcome = booking_service.approve_booking(manager, booking.id)

        assert outcome.checkout_url is None
        assert outcome.bank_transfer is None
        gateway.create_checkout_session.assert_not_called()
        assert db.query(Payment).count() == 0

    def test_override_amount(self, booking_service, create_booking, manager, payment_settings, gateway):
        booking = create_booking()

        outcome = booking_service.approve_booking(
            manager, booking.id, charge=OverrideCharge(amount=Decimal("80.555"))
        )

        assert outcome.amount == Decimal("80.56")
        assert outcome.booking.total_price == Decimal("80.56")
        assert gateway.create_checkout_session.call_args.kwargs["amount_cents"] == 8056

    def test_negative_override_is_invalid(self):
        with pytest.raises(ValidationException):
            OverrideCharge(amount=Decimal("-1"))

    def test_requires_staff(self, booking_service, create_booking, requester):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.approve_booking(requester, booking.id)

    def test_cannot_approve_twice(self, booking_service, approved_booking, manager):
        with pytest.raises(BusinessRuleException) as exc_info:
            booking_service.approve_booking(manager, approved_booking.id)
        assert exc_info.value.code == "INVALID_BOOKING_STATUS"

    def test_notes_length_is_bounded(self, booking_service, create_booking, manager):
        booking = create_booking()
        with pytest.raises(ValidationException):
            booking_service.approve_booking(manager, booking.id, notes="x" * 501)


class TestRejection:
    def test_rejects_with_reason_code(self, booking_service, create_booking, manager, db, notifier):
        booking = create_booking()

        rejected = booking_service.reject_booking(
            manager, booking.id, "MAINTENANCE_SCHEDULED", notes="Lavori in corso"
        )

        assert rejected.status == BookingStatus.REJECTED.value
        assert rejected.rejected_by == manager.id
        assert rejected.rejection_reason == (
            f"{RejectionReason.MAINTENANCE_SCHEDULED.message}: Lavori in corso"
        )
        entry = (
            db.query(AuditLog)
            .filter(AuditLog.entity_id == booking.id, AuditLog.action == "REJECT")
            .one()
        )
        assert entry.details["reasonCode"] == "MAINTENANCE_SCHEDULED"
        assert NotificationKind.BOOKING_REJECTED in _sent_kinds(notifier)

    def test_unknown_reason_code(self, booking_service, create_booking, manager):
        booking = create_booking()
        with pytest.raises(ValidationException) as exc_info:
            booking_service.reject_booking(manager, booking.id, "BAD_WEATHER")
        assert exc_info.value.code == "INVALID_REJECTION_REASON"

    def test_only_pending_can_be_rejected(self, booking_service, approved_booking, manager):
        with pytest.raises(BusinessRuleException):
            booking_service.reject_booking(manager, approved_booking.id, RejectionReason.OTHER)


class TestCancellation:
    def test_owner_cancels_pending(self, booking_service, create_booking, requester, db):
        booking = create_booking()

        cancelled = booking_service.cancel_booking(requester, booking.id, reason="Cambio piani")

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Cambio piani"
        assert cancelled.cancelled_by == requester.id
        assert "CANCEL" in _audit_actions(db, booking.id)

    def test_cancel_twice_raises(self, booking_service, create_booking, requester):
        booking = create_booking()
        booking_service.cancel_booking(requester, booking.id)

        with pytest.raises(InvariantViolationException) as exc_info:
            booking_service.cancel_booking(requester, booking.id)
        assert exc_info.value.code == "ALREADY_CANCELLED"

    def test_stranger_cannot_cancel(self, booking_service, create_booking, other_user):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.cancel_booking(other_user, booking.id)

    def test_paid_gateway_booking_is_refunded(
        self, booking_service, payment_service, approved_booking, manager, gateway
    ):
        payment_service.handle_gateway_event(
            {
                "id": "evt_1",
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "id": "cs_test_123",
                        "payment_status": "paid",
                        "payment_intent": "pi_test_123",
                    }
                },
            }
        )

        booking_service.cancel_booking(manager, approved_booking.id, reason="Sala inagibile")

        gateway.create_refund.assert_called_once()
        assert gateway.create_refund.call_args.kwargs["amount_cents"] == 10000
        assert approved_booking.payment.status == PaymentStatus.REFUNDED.value
        assert approved_booking.payment_status == PaymentStatus.REFUNDED.value

    def test_failed_refund_does_not_block_cancellation(
        self, booking_service, payment_service, approved_booking, manager, gateway
    ):
        payment_service.handle_gateway_event(
            {
                "type": "checkout.session.completed",
                "data": {"object": {"id": "cs_test_123", "payment_intent": "pi_test_123"}},
            }
        )
        gateway.create_refund.side_effect = ExternalDependencyException("down", code="GATEWAY_ERROR")

        cancelled = booking_service.cancel_booking(manager, approved_booking.id)

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.payment.status == PaymentStatus.SUCCEEDED.value


class TestCompletion:
    def test_payment_then_invoice_completes(self, booking_service, approved_booking, manager):
        booking_service.mark_payment_received(manager, approved_booking.id)
        assert approved_booking.status == BookingStatus.APPROVED.value
        assert approved_booking.payment_status == PaymentStatus.SUCCEEDED.value

        booking_service.mark_invoice_issued(manager, approved_booking.id)
        assert approved_booking.status == BookingStatus.COMPLETED.value
        assert approved_booking.completed_at is not None

    def test_marking_paid_leaves_the_payment_row_open(
        self, booking_service, approved_booking, manager
    ):
        payment = approved_booking.payment
        assert payment.status == PaymentStatus.PENDING.value

        booking_service.mark_payment_received(manager, approved_booking.id)

        assert approved_booking.payment_status == PaymentStatus.SUCCEEDED.value
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.bank_transfer_verified is False

    def test_invoice_then_payment_completes(self, booking_service, approved_booking, manager):
        booking_service.mark_invoice_issued(manager, approved_booking.id)
        assert approved_booking.status == BookingStatus.APPROVED.value

        booking_service.mark_payment_received(manager, approved_booking.id)
        assert approved_booking.status == BookingStatus.COMPLETED.value

    def test_marking_twice_raises(self, booking_service, approved_booking, manager):
        booking_service.mark_payment_received(manager, approved_booking.id)

        with pytest.raises(InvariantViolationException) as exc_info:
            booking_service.mark_payment_received(manager, approved_booking.id)
        assert exc_info.value.code == "ALREADY_MARKED"

    def test_requires_approved_booking(self, booking_service, create_booking, manager):
        booking = create_booking()
        with pytest.raises(BusinessRuleException):
            booking_service.mark_invoice_issued(manager, booking.id)

    def test_requester_cannot_mark(self, booking_service, approved_booking, requester):
        with pytest.raises(ForbiddenException):
            booking_service.mark_payment_received(requester, approved_booking.id)


class TestPurge:
    def test_admin_purges_booking_and_payment(
        self, booking_service, approved_booking, admin, db
    ):
        booking_id = approved_booking.id

        result = booking_service.purge_booking(admin, booking_id)

        assert result == {"deleted": True, "booking_id": booking_id}
        db.expire_all()
        assert db.get(Booking, booking_id) is None
        assert db.query(Payment).filter(Payment.booking_id == booking_id).count() == 0
        assert "DELETE" in _audit_actions(db, booking_id)

    def test_manager_cannot_purge(self, booking_service, create_booking, manager):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.purge_booking(manager, booking.id)


class TestQueries:
    def test_requesters_only_see_their_own(
        self, booking_service, create_booking, requester, other_user, manager
    ):
        create_booking(start_hour=9, hours=1)
        create_booking(principal=other_user, start_hour=12, hours=1)

        own, own_total = booking_service.list_bookings(requester)
        everything, total = booking_service.list_bookings(manager)

        assert own_total == 1
        assert [b.requester_id for b in own] == [requester.id]
        assert total == 2
        assert len(everything) == 2

    def test_view_is_owner_or_staff(self, booking_service, create_booking, other_user, manager):
        booking = create_booking()
        assert booking_service.get_booking(manager, booking.id).id == booking.id
        with pytest.raises(ForbiddenException):
            booking_service.get_booking(other_user, booking.id)

    def test_check_availability_reports_conflicts(
        self, booking_service, create_booking, resource, make_window
    ):
        booking = create_booking()
        start, end = make_window(start_hour=11, hours=1)

        result = booking_service.check_availability(resource.id, start, end)
        assert result["available"] is False
        assert result["conflicting_booking_ids"] == [booking.id]

        excluded = booking_service.check_availability(
            resource.id, start, end, exclude_booking_id=booking.id
        )
        assert excluded["available"] is True

    def test_timestamps_use_injected_clock(
        self, booking_service, approved_booking, manager, clock
    ):
        assert ensure_utc(approved_booking.approved_at) == clock.now()
        clock.advance(timedelta(hours=1))
        booking_service.mark_invoice_issued(manager, approved_booking.id)
        assert ensure_utc(approved_booking.invoice_issued_at) == clock.now()
