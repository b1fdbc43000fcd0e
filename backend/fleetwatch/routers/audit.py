"""Audit log endpoints."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Caller, Capability, PermissionChecker
from ..database import get_db
from ..schemas import AuditEntryResponse, AuditStatsResponse
from ..services.audit import (
    AUDIT_ACTION_GROUPS,
    DEFAULT_AUDIT_LIMIT,
    AuditFilters,
    audit_stats,
    query_audit_log,
)

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditEntryResponse])
def get_audit_log(
    actor_id: Optional[UUID] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(DEFAULT_AUDIT_LIMIT, ge=1, le=1000),
    caller: Caller = Depends(PermissionChecker(Capability.VIEW_AUDIT)),
    db: Session = Depends(get_db),
):
    """Audit entries, newest first."""
    filters = AuditFilters(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    return query_audit_log(db, filters)


@router.get("/stats", response_model=AuditStatsResponse)
def get_audit_stats(
    actor_id: Optional[UUID] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    caller: Caller = Depends(PermissionChecker(Capability.VIEW_AUDIT)),
    db: Session = Depends(get_db),
):
    """Counts by action, actor and resource type over the whole filtered set."""
    filters = AuditFilters(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        date_from=date_from,
        date_to=date_to,
        limit=None,
    )
    return audit_stats(db, filters)


@router.get("/actions")
def get_audit_actions(caller: Caller = Depends(PermissionChecker(Capability.VIEW_AUDIT))):
    """Known audit actions grouped by area."""
    return {group: [action.value for action in actions] for group, actions in AUDIT_ACTION_GROUPS.items()}
