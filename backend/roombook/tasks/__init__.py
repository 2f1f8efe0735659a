# backend/roombook/tasks/__init__.py
"""
Celery tasks package for the reservation engine.

This package contains the unattended lifecycle sweeps:
- Payment reminders for approved, unpaid bookings
- Auto-cancellation of bookings past their payment deadline
- Audit log retention
"""

from roombook.tasks.audit_tasks import purge_old_audit_logs
from roombook.tasks.booking_tasks import auto_cancel_unpaid_bookings, send_payment_reminders
from roombook.tasks.celery_app import BaseTask, celery_app

__all__ = [
    "BaseTask",
    "auto_cancel_unpaid_bookings",
    "celery_app",
    "purge_old_audit_logs",
    "send_payment_reminders",
]
