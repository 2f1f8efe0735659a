from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from roombook.core.enums import NotificationKind
from roombook.models.booking import BookingStatus
from roombook.models.payment import PaymentStatus
from roombook.services.notification_service import NotificationResult
from roombook.tasks import booking_tasks
from roombook.tasks.beat_schedule import CELERYBEAT_SCHEDULE, get_beat_schedule
from roombook.tasks.booking_tasks import run_auto_cancel_sweep, run_payment_reminder_sweep


def _reminders_sent(notifier):
    return [
        c for c in notifier.send.call_args_list if c.args[0] == NotificationKind.PAYMENT_REMINDER
    ]


class TestPaymentReminderSweep:
    def test_reminds_once_at_the_boundary(
        self, db, clock, booking_service, approved_booking, notifier
    ):
        clock.advance(timedelta(hours=24))

        first = run_payment_reminder_sweep(db, booking_service=booking_service)
        second = run_payment_reminder_sweep(db, booking_service=booking_service)

        assert first["selected"] == 1
        assert first["reminded"] == 1
        assert second["selected"] == 0
        assert approved_booking.reminder_sent is True
        assert len(_reminders_sent(notifier)) == 1

    def test_too_early_is_not_selected(self, db, clock, booking_service, approved_booking):
        clock.advance(timedelta(hours=23, minutes=59))

        results = run_payment_reminder_sweep(db, booking_service=booking_service)

        assert results["selected"] == 0
        assert approved_booking.reminder_sent is False

    def test_reminder_carries_hours_left_and_checkout_link(
        self, db, clock, booking_service, approved_booking, notifier, payment_settings
    ):
        payment_settings.payment_reminder_hours = 12
        db.commit()
        clock.advance(timedelta(hours=12))

        run_payment_reminder_sweep(db, booking_service=booking_service)

        kind, recipient, payload = _reminders_sent(notifier)[0].args
        assert recipient == "mario@example.com"
        assert payload["hours_remaining"] == 36
        assert payload["payment_url"] == "https://checkout.stripe.test/cs_test_123"

    def test_expired_checkout_falls_back_to_payment_page(
        self, db, clock, booking_service, approved_booking, notifier
    ):
        clock.advance(timedelta(hours=24))

        run_payment_reminder_sweep(db, booking_service=booking_service)

        payload = _reminders_sent(notifier)[0].args[2]
        assert payload["hours_remaining"] == 24
        assert payload["payment_url"].endswith(f"/bookings/{approved_booking.id}/payment")

    def test_failed_delivery_is_retried_next_pass(
        self, db, clock, booking_service, approved_booking, notifier
    ):
        clock.advance(timedelta(hours=24))
        notifier.send.return_value = NotificationResult(success=False, error="smtp down")

        failed = run_payment_reminder_sweep(db, booking_service=booking_service)
        assert failed["failed"] == 1
        assert approved_booking.reminder_sent is False

        notifier.send.return_value = NotificationResult(success=True)
        retried = run_payment_reminder_sweep(db, booking_service=booking_service)
        assert retried["reminded"] == 1

    def test_disabled_reminders_skip_the_sweep(
        self, db, clock, booking_service, approved_booking, payment_settings
    ):
        payment_settings.send_reminders = False
        db.commit()
        clock.advance(timedelta(days=1))

        results = run_payment_reminder_sweep(db, booking_service=booking_service)

        assert results["skipped"] is True
        assert results["selected"] == 0

    def test_paid_bookings_are_not_reminded(
        self, db, clock, booking_service, payment_service, approved_booking, admin
    ):
        payment_service.verify_bank_transfer(admin, approved_booking.payment.id)
        clock.advance(timedelta(days=1))

        results = run_payment_reminder_sweep(db, booking_service=booking_service)

        assert results["selected"] == 0


class TestAutoCancelSweep:
    def test_cancels_after_deadline(self, db, clock, booking_service, approved_booking, notifier):
        clock.advance(timedelta(days=2, hours=1))

        results = run_auto_cancel_sweep(db, booking_service=booking_service)

        assert results["selected"] == 1
        assert results["cancelled"] == 1
        assert approved_booking.status == BookingStatus.CANCELLED.value
        assert approved_booking.payment_status == PaymentStatus.FAILED.value
        assert "2 giorni" in approved_booking.cancellation_reason
        # the payment row is left for reconciliation
        assert approved_booking.payment.status == PaymentStatus.PENDING.value
        kinds = [c.args[0] for c in notifier.send.call_args_list]
        assert NotificationKind.BOOKING_CANCELLED in kinds

    @pytest.mark.parametrize("elapsed", [timedelta(days=2, hours=-1), timedelta(days=2)])
    def test_not_yet_overdue(self, db, clock, booking_service, approved_booking, elapsed):
        clock.advance(elapsed)

        results = run_auto_cancel_sweep(db, booking_service=booking_service)

        assert results["selected"] == 0
        assert approved_booking.status == BookingStatus.APPROVED.value

    def test_second_pass_finds_nothing(self, db, clock, booking_service, approved_booking):
        clock.advance(timedelta(days=3))

        run_auto_cancel_sweep(db, booking_service=booking_service)
        again = run_auto_cancel_sweep(db, booking_service=booking_service)

        assert again["selected"] == 0

    def test_direct_card_payment_then_approval_is_still_swept(
        self, db, clock, booking_service, payment_service, create_booking, requester, manager,
        payment_settings,
    ):
        booking = create_booking()
        payment_service.create_direct_payment(requester, booking.id, "GATEWAY_CARD")
        assert booking.payment_status == PaymentStatus.PROCESSING.value

        booking_service.approve_booking(manager, booking.id)
        assert booking.payment_status == PaymentStatus.PENDING.value

        clock.advance(timedelta(days=1))
        assert run_payment_reminder_sweep(db, booking_service=booking_service)["reminded"] == 1

        clock.advance(timedelta(days=2))
        results = run_auto_cancel_sweep(db, booking_service=booking_service)

        assert results["cancelled"] == 1
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.payment_status == PaymentStatus.FAILED.value

    def test_one_failure_does_not_stop_the_pass(
        self, db, clock, booking_service, create_booking, manager, payment_settings, monkeypatch
    ):
        payment_settings.stripe_enabled = False
        db.commit()
        first = create_booking(start_hour=9, hours=1)
        second = create_booking(start_hour=14, hours=1)
        booking_service.approve_booking(manager, first.id)
        booking_service.approve_booking(manager, second.id)
        clock.advance(timedelta(days=3))

        original = booking_service.auto_cancel_overdue

        def flaky(booking, days):
            if booking.id == first.id:
                raise RuntimeError("lock timeout")
            return original(booking, days)

        monkeypatch.setattr(booking_service, "auto_cancel_overdue", flaky)

        results = run_auto_cancel_sweep(db, booking_service=booking_service)

        assert results["selected"] == 2
        assert results["cancelled"] == 1
        assert results["failures"] == [{"booking_id": first.id, "error": "lock timeout"}]


class TestCeleryWiring:
    def test_reminder_task_commits_and_closes(self, monkeypatch):
        session = MagicMock()
        sweep = MagicMock(return_value={"selected": 0})
        monkeypatch.setattr(booking_tasks, "SessionLocal", lambda: session)
        monkeypatch.setattr(booking_tasks, "run_payment_reminder_sweep", sweep)

        assert booking_tasks.send_payment_reminders() == {"selected": 0}
        sweep.assert_called_once_with(session)
        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_auto_cancel_task_commits_and_closes(self, monkeypatch):
        session = MagicMock()
        sweep = MagicMock(return_value={"selected": 0})
        monkeypatch.setattr(booking_tasks, "SessionLocal", lambda: session)
        monkeypatch.setattr(booking_tasks, "run_auto_cancel_sweep", sweep)

        assert booking_tasks.auto_cancel_unpaid_bookings() == {"selected": 0}
        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_beat_schedule(self):
        schedule = get_beat_schedule()

        assert schedule["send-payment-reminders"]["schedule"] == timedelta(hours=6)
        assert schedule["auto-cancel-unpaid-bookings"]["schedule"] == timedelta(hours=1)
        assert schedule["purge-old-audit-logs"]["task"] == (
            "roombook.tasks.audit_tasks.purge_old_audit_logs"
        )

        schedule["send-payment-reminders"]["schedule"] = timedelta(minutes=1)
        assert CELERYBEAT_SCHEDULE["send-payment-reminders"]["schedule"] == timedelta(hours=6)
