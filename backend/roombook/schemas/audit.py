# backend/roombook/schemas/audit.py
"""Audit log response schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..models.audit_log import AuditLog
from ._strict_base import StrictModel


class AuditLogResponse(StrictModel):
    id: str
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_role: Optional[str] = None
    action: str
    entity: str
    entity_id: Optional[str] = None
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: AuditLog) -> "AuditLogResponse":
        return cls(
            id=entry.id,
            actor_id=entry.actor_id,
            actor_email=entry.actor_email,
            actor_role=entry.actor_role,
            action=entry.action,
            entity=entry.entity,
            entity_id=entry.entity_id,
            description=entry.description,
            metadata=entry.details or {},
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=entry.created_at,
        )


class AuditLogListResponse(StrictModel):
    logs: List[AuditLogResponse]
    total: int
    limit: int
    offset: int
