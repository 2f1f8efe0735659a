# backend/roombook/tasks/audit_tasks.py
"""Audit log retention."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from roombook.database import SessionLocal
from roombook.services.audit_service import AuditService
from roombook.tasks.booking_tasks import typed_task

logger = logging.getLogger(__name__)


@typed_task(bind=True, max_retries=3, name="roombook.tasks.audit_tasks.purge_old_audit_logs")
def purge_old_audit_logs(self: Any, days_to_keep: Optional[int] = None) -> Dict[str, int]:
    """Delete audit entries older than the retention horizon (default 90 days)."""
    db: Session = SessionLocal()
    try:
        result = AuditService(db).delete_old_logs(days_to_keep)
        db.commit()
        return result
    except Exception as exc:
        db.rollback()
        logger.error(f"Audit retention sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=600)
    finally:
        db.close()
