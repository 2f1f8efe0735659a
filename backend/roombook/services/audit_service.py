"""Service for writing and reading the booking/payment audit trail."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from roombook.core.clock import Clock, system_clock
from roombook.core.config import settings
from roombook.core.enums import AuditAction
from roombook.models.audit_log import AuditLog
from roombook.repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)


class AuditService:
    """Create and query audit log entries."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or system_clock
        self.repository = RepositoryFactory.create_audit_repository(db)

    def log(
        self,
        action: AuditAction | str,
        entity: str,
        *,
        entity_id: str | None = None,
        description: str,
        actor: Any | None = None,
        actor_id: str | None = None,
        actor_email: str | None = None,
        actor_role: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        request: Any = None,
    ) -> Optional[AuditLog]:
        """
        Append an audit entry inside a savepoint of the caller's transaction.

        Never raises: a failed write is rolled back to the savepoint and logged,
        so the surrounding business transaction still commits.
        """
        resolved_id, resolved_email, resolved_role = _resolve_actor_fields(
            actor, actor_id, actor_email, actor_role
        )
        user_agent = None
        if request is not None:
            user_agent = request.headers.get("user-agent")
            if user_agent:
                user_agent = user_agent[:500]

        try:
            entry = AuditLog(
                actor_id=resolved_id,
                actor_email=resolved_email,
                actor_role=resolved_role,
                action=_normalize_value(action),
                entity=entity,
                entity_id=entity_id,
                description=description,
                details=_sanitize_metadata(metadata),
                ip_address=_get_client_ip(request),
                user_agent=user_agent,
                created_at=self.clock.now(),
            )
            with self.db.begin_nested():
                self.repository.write(entry)
            return entry
        except Exception as exc:
            logger.error(
                "Failed to write audit entry %s %s/%s: %s",
                _normalize_value(action),
                entity,
                entity_id,
                exc,
            )
            return None

    def find_all(
        self,
        *,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        entity: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Filtered, paginated listing (newest first) with the total match count."""
        page_size = limit or settings.audit_default_page_size
        rows, total = self.repository.list(
            actor_id=actor_id,
            action=action,
            entity=entity,
            start=start_date,
            end=end_date,
            limit=page_size,
            offset=offset,
        )
        return {"logs": rows, "total": total, "limit": page_size, "offset": offset}

    def find_by_entity(self, entity: str, entity_id: str) -> list[AuditLog]:
        return self.repository.list_for_entity(entity, entity_id)

    def delete_old_logs(self, days_to_keep: Optional[int] = None) -> dict[str, int]:
        """Delete entries older than the retention horizon (default 90 days)."""
        days = days_to_keep or settings.audit_retention_days
        cutoff = self.clock.now() - timedelta(days=days)
        deleted = self.repository.delete_older_than(cutoff)
        logger.info("Deleted %s audit entries older than %s", deleted, cutoff.isoformat())
        return {"deleted": deleted}


def _resolve_actor_fields(
    actor: Any | None,
    actor_id: str | None,
    actor_email: str | None,
    actor_role: str | None,
) -> tuple[str | None, str | None, str | None]:
    if actor is None:
        return actor_id, actor_email, actor_role

    if isinstance(actor, Mapping):
        resolved_id = actor_id or _extract_value(actor, ("id", "actor_id", "user_id"))
        resolved_email = actor_email or _extract_value(actor, ("email", "actor_email"))
        resolved_role = actor_role or _extract_value(actor, ("role", "actor_role"))
    else:
        resolved_id = actor_id or _first_attr(actor, ("id", "actor_id", "user_id"))
        resolved_email = actor_email or _first_attr(actor, ("email", "actor_email"))
        resolved_role = actor_role or _first_attr(actor, ("role", "actor_role"))

    return (
        str(resolved_id) if resolved_id is not None else None,
        str(resolved_email) if resolved_email is not None else None,
        str(_normalize_value(resolved_role)) if resolved_role is not None else None,
    )


def _sanitize_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    if not metadata:
        return {}
    return {key: _normalize_value(value) for key, value in metadata.items()}


def _normalize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


def _first_attr(obj: Any, names: tuple[str, ...]) -> Any | None:
    for name in names:
        if hasattr(obj, name):
            value = getattr(obj, name)
            if value is not None:
                return value
    return None


def _extract_value(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any | None:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _get_client_ip(request: Any) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return str(forwarded).split(",")[0].strip()
    if hasattr(request, "client") and request.client:
        host = getattr(request.client, "host", None)
        return str(host) if host is not None else None
    return None
