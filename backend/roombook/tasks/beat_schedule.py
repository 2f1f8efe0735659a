# backend/roombook/tasks/beat_schedule.py
"""
Celery Beat schedule for the lifecycle sweeps.

Plain repeating intervals; no calendar alignment is needed because every
sweep is idempotent and selects its work from the current state.
"""

from datetime import timedelta
from typing import Any

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Remind payers of approved bookings still awaiting payment
    "send-payment-reminders": {
        "task": "roombook.tasks.booking_tasks.send_payment_reminders",
        "schedule": timedelta(hours=6),
        "options": {"priority": 5},
    },
    # Cancel approved bookings whose payment deadline has lapsed
    "auto-cancel-unpaid-bookings": {
        "task": "roombook.tasks.booking_tasks.auto_cancel_unpaid_bookings",
        "schedule": timedelta(hours=1),
        "options": {"priority": 7},
    },
    "purge-old-audit-logs": {
        "task": "roombook.tasks.audit_tasks.purge_old_audit_logs",
        "schedule": timedelta(days=1),
        "options": {"priority": 2},
    },
}


def get_beat_schedule() -> dict[str, dict[str, Any]]:
    """Return a copy of the beat schedule so callers can adjust it safely."""
    return {name: dict(entry) for name, entry in CELERYBEAT_SCHEDULE.items()}
