# backend/roombook/repositories/audit_repository.py
"""
Repository helpers for audit_logs persistence and querying.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Select, and_, delete, func, select
from sqlalchemy.orm import Session

from roombook.models.audit_log import AuditLog


class AuditRepository:
    """Persist and query audit trail entries."""

    def __init__(self, db: Session):
        self.db = db

    def write(self, audit: AuditLog) -> None:
        """Persist a new audit row inside the active transaction."""
        self.db.add(audit)
        self.db.flush()

    def list(
        self,
        *,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        entity: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """Return audit rows matching supplied filters ordered descending by timestamp."""
        limit = max(0, limit)
        offset = max(0, offset)

        conditions = list(_build_filters(actor_id, action, entity))
        if start is not None:
            conditions.append(AuditLog.created_at >= start)
        if end is not None:
            conditions.append(AuditLog.created_at <= end)

        stmt: Select[Any] = select(AuditLog).order_by(
            AuditLog.created_at.desc(), AuditLog.id.desc()
        )
        count_stmt = select(func.count()).select_from(AuditLog)

        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        stmt = stmt.offset(offset).limit(limit)

        rows = list(self.db.execute(stmt).scalars().all())
        total = self.db.execute(count_stmt).scalar_one()

        return rows, int(total)

    def list_for_entity(self, entity: str, entity_id: str) -> list[AuditLog]:
        """Full history for one entity, newest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity == entity, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def delete_older_than(self, cutoff: datetime) -> int:
        result = self.db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
        self.db.flush()
        return int(result.rowcount or 0)


def _build_filters(
    actor_id: Optional[str],
    action: Optional[str],
    entity: Optional[str],
) -> list[Any]:
    clauses: list[Any] = []
    if actor_id:
        clauses.append(AuditLog.actor_id == actor_id)
    if action:
        clauses.append(AuditLog.action == action)
    if entity:
        clauses.append(AuditLog.entity == entity)
    return clauses
