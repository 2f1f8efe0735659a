# backend/roombook/tasks/booking_tasks.py
"""
Celery tasks for the booking payment lifecycle.

Two independent sweeps over APPROVED bookings whose payment is still
PENDING:

- ``send_payment_reminders`` (every 6 hours) reminds each payer once;
- ``auto_cancel_unpaid_bookings`` (hourly) cancels bookings whose payment
  deadline has passed.

Both delegate the per-booking work to ``BookingService`` so the transition
logic is shared with interactive requests. A failure on one booking is
logged and the pass moves on to the next.
"""

from datetime import timedelta
import logging
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    ParamSpec,
    Protocol,
    TypedDict,
    TypeVar,
    cast,
)

from celery.result import AsyncResult
from sqlalchemy.orm import Session

from roombook.core.clock import Clock
from roombook.database import SessionLocal
from roombook.monitoring.prometheus_metrics import prometheus_metrics
from roombook.services.booking_service import BookingService
from roombook.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class ReminderSweepResults(TypedDict):
    selected: int
    reminded: int
    failed: int
    skipped: bool
    failures: List[Dict[str, Any]]
    processed_at: str


class AutoCancelSweepResults(TypedDict):
    selected: int
    cancelled: int
    failed: int
    failures: List[Dict[str, Any]]
    processed_at: str


def run_payment_reminder_sweep(
    db: Session,
    clock: Optional[Clock] = None,
    booking_service: Optional[BookingService] = None,
) -> ReminderSweepResults:
    """
    Remind payers of APPROVED bookings approved at least the configured lead
    time ago that have not been reminded yet.

    A no-op when reminders are switched off in payment settings.
    """
    booking_service = booking_service or BookingService(db, clock=clock)
    now = booking_service.now()
    current = booking_service.payment_service.settings_service.get_settings()

    failures: List[Dict[str, Any]] = []
    results: ReminderSweepResults = {
        "selected": 0,
        "reminded": 0,
        "failed": 0,
        "skipped": False,
        "failures": failures,
        "processed_at": now.isoformat(),
    }

    if not current.send_reminders:
        logger.info("Payment reminders are disabled; skipping sweep")
        results["skipped"] = True
        return results

    cutoff = now - timedelta(hours=current.payment_reminder_hours)
    candidates = booking_service.repository.get_bookings_needing_payment_reminder(cutoff)
    results["selected"] = len(candidates)

    for booking in candidates:
        booking_id = booking.id
        try:
            if booking_service.send_payment_reminder(booking, current):
                results["reminded"] += 1
                prometheus_metrics.record_sweep_item("payment_reminder", "sent")
            else:
                results["failed"] += 1
                failures.append({"booking_id": booking_id, "error": "notification not delivered"})
                prometheus_metrics.record_sweep_item("payment_reminder", "failed")
        except Exception as e:
            db.rollback()
            logger.error(f"Payment reminder failed for booking {booking_id}: {str(e)}")
            results["failed"] += 1
            failures.append({"booking_id": booking_id, "error": str(e)})
            prometheus_metrics.record_sweep_item("payment_reminder", "error")

    if results["failed"] > 0:
        logger.warning(f"Reminder sweep completed with {results['failed']} failures")
    logger.info(
        f"Reminder sweep completed: {results['reminded']} reminded "
        f"of {results['selected']} selected"
    )
    return results


def run_auto_cancel_sweep(
    db: Session,
    clock: Optional[Clock] = None,
    booking_service: Optional[BookingService] = None,
) -> AutoCancelSweepResults:
    """
    Cancel APPROVED bookings approved more than the payment deadline ago.

    The booking moves to CANCELLED with payment status FAILED. Any Payment
    row is left as it is for an administrator to reconcile.
    """
    booking_service = booking_service or BookingService(db, clock=clock)
    now = booking_service.now()
    current = booking_service.payment_service.settings_service.get_settings()

    failures: List[Dict[str, Any]] = []
    results: AutoCancelSweepResults = {
        "selected": 0,
        "cancelled": 0,
        "failed": 0,
        "failures": failures,
        "processed_at": now.isoformat(),
    }

    cutoff = now - timedelta(days=current.payment_deadline_days)
    overdue = booking_service.repository.get_bookings_past_payment_deadline(cutoff)
    results["selected"] = len(overdue)

    for booking in overdue:
        booking_id = booking.id
        try:
            booking_service.auto_cancel_overdue(booking, current.payment_deadline_days)
            results["cancelled"] += 1
            prometheus_metrics.record_sweep_item("auto_cancel", "cancelled")
        except Exception as e:
            db.rollback()
            logger.error(f"Auto-cancel failed for booking {booking_id}: {str(e)}")
            results["failed"] += 1
            failures.append({"booking_id": booking_id, "error": str(e)})
            prometheus_metrics.record_sweep_item("auto_cancel", "error")

    if results["failed"] > 0:
        logger.warning(f"Auto-cancel sweep completed with {results['failed']} failures")
    logger.info(
        f"Auto-cancel sweep completed: {results['cancelled']} cancelled "
        f"of {results['selected']} selected"
    )
    return results


@typed_task(bind=True, max_retries=3, name="roombook.tasks.booking_tasks.send_payment_reminders")
def send_payment_reminders(self: Any) -> ReminderSweepResults:
    """
    Send payment reminders.

    Runs every 6 hours. Each booking is reminded at most once.
    """
    db: Session = SessionLocal()
    try:
        results = run_payment_reminder_sweep(db)
        db.commit()
        return results
    except Exception as exc:
        logger.error(f"Payment reminder sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()


@typed_task(
    bind=True, max_retries=3, name="roombook.tasks.booking_tasks.auto_cancel_unpaid_bookings"
)
def auto_cancel_unpaid_bookings(self: Any) -> AutoCancelSweepResults:
    """
    Cancel bookings whose payment deadline has passed.

    Runs hourly.
    """
    db: Session = SessionLocal()
    try:
        results = run_auto_cancel_sweep(db)
        db.commit()
        return results
    except Exception as exc:
        logger.error(f"Auto-cancel sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()
