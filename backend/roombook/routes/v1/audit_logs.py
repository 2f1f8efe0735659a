# backend/roombook/routes/v1/audit_logs.py
"""Audit log browsing (admin)."""

import asyncio
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_audit_service, get_current_principal
from ...core.enums import Action, AuditAction
from ...core.exceptions import DomainException
from ...core.permissions import Principal, authorize
from ...errors import handle_domain_exception
from ...schemas.audit import AuditLogListResponse, AuditLogResponse
from ...services.audit_service import AuditService

router = APIRouter(tags=["admin-audit"])


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    actor_id: Optional[str] = Query(None),
    action: Optional[AuditAction] = Query(None),
    entity: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_principal: Principal = Depends(get_current_principal),
    audit_service: AuditService = Depends(get_audit_service),
) -> AuditLogListResponse:
    """Newest first, with the total number of matching entries."""
    try:
        authorize(current_principal, Action.VIEW_AUDIT_LOG)
        result = await asyncio.to_thread(
            audit_service.find_all,
            actor_id=actor_id,
            action=action.value if action else None,
            entity=entity,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
        return AuditLogListResponse(
            logs=[AuditLogResponse.from_entry(entry) for entry in result["logs"]],
            total=result["total"],
            limit=result["limit"],
            offset=result["offset"],
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{entity}/{entity_id}", response_model=List[AuditLogResponse])
async def get_entity_history(
    entity: str,
    entity_id: str,
    current_principal: Principal = Depends(get_current_principal),
    audit_service: AuditService = Depends(get_audit_service),
) -> List[AuditLogResponse]:
    try:
        authorize(current_principal, Action.VIEW_AUDIT_LOG)
        entries = await asyncio.to_thread(audit_service.find_by_entity, entity, entity_id)
        return [AuditLogResponse.from_entry(entry) for entry in entries]
    except DomainException as e:
        handle_domain_exception(e)
