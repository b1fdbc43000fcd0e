"""Audit recorder: best-effort append-only writes plus filtered reads and statistics."""
from __future__ import annotations

import enum
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import Caller
from ..models import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LIMIT = 100
RECENT_ACTIVITY_SIZE = 10


class AuditAction(str, enum.Enum):
    CREATE_GEOFENCE = "create_geofence"
    UPDATE_GEOFENCE = "update_geofence"
    DELETE_GEOFENCE = "delete_geofence"
    ASSIGN_GEOFENCE = "assign_geofence"
    UNASSIGN_GEOFENCE = "unassign_geofence"
    CREATE_RECIPIENT = "create_recipient"
    UPDATE_RECIPIENT = "update_recipient"
    DEACTIVATE_RECIPIENT = "deactivate_recipient"
    DELETE_RECIPIENT = "delete_recipient"
    TEST_RECIPIENT = "test_recipient"
    INGEST_EVENT = "ingest_event"
    DISPATCH_NOTIFICATIONS = "dispatch_notifications"
    DELIVER_NOTIFICATION = "deliver_notification"


AUDIT_ACTION_GROUPS: dict[str, list[AuditAction]] = {
    "geofences": [
        AuditAction.CREATE_GEOFENCE,
        AuditAction.UPDATE_GEOFENCE,
        AuditAction.DELETE_GEOFENCE,
        AuditAction.ASSIGN_GEOFENCE,
        AuditAction.UNASSIGN_GEOFENCE,
    ],
    "recipients": [
        AuditAction.CREATE_RECIPIENT,
        AuditAction.UPDATE_RECIPIENT,
        AuditAction.DEACTIVATE_RECIPIENT,
        AuditAction.DELETE_RECIPIENT,
        AuditAction.TEST_RECIPIENT,
    ],
    "notifications": [
        AuditAction.INGEST_EVENT,
        AuditAction.DISPATCH_NOTIFICATIONS,
        AuditAction.DELIVER_NOTIFICATION,
    ],
}


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditFilters:
    actor_id: UUID | None = None
    action: str | None = None
    resource_type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int | None = DEFAULT_AUDIT_LIMIT


class AuditRecorder:
    """Writes audit rows in a dedicated session so a failure never touches the caller's transaction."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(
        self,
        actor: Caller,
        action: AuditAction | str,
        resource_type: str,
        resource_id: Any = None,
        details: dict[str, Any] | None = None,
        request_meta: RequestMeta | None = None,
    ) -> None:
        action_value = action.value if isinstance(action, AuditAction) else action
        meta = request_meta or RequestMeta()
        try:
            db = self._session_factory()
            try:
                db.add(
                    AuditLog(
                        actor_id=actor.user_id,
                        actor_name=actor.name,
                        actor_role=actor.role.value,
                        action=action_value,
                        resource_type=resource_type,
                        resource_id=str(resource_id) if resource_id is not None else None,
                        details=jsonable_encoder(details) if details is not None else None,
                        ip_address=meta.ip_address,
                        user_agent=meta.user_agent[:512] if meta.user_agent else None,
                    )
                )
                db.commit()
            finally:
                db.close()
        except Exception:
            # Audit is a side channel: never fail the business operation.
            logger.exception(
                "Failed to write audit entry action=%s resource=%s/%s",
                action_value,
                resource_type,
                resource_id,
            )


def _apply_filters(query, filters: AuditFilters):
    if filters.actor_id:
        query = query.filter(AuditLog.actor_id == filters.actor_id)
    if filters.action:
        query = query.filter(AuditLog.action == filters.action)
    if filters.resource_type:
        query = query.filter(AuditLog.resource_type == filters.resource_type)
    if filters.date_from:
        query = query.filter(AuditLog.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(AuditLog.created_at <= filters.date_to)
    return query


def query_audit_log(db: Session, filters: AuditFilters) -> list[AuditLog]:
    """Return audit entries matching filters, newest first."""
    query = _apply_filters(db.query(AuditLog), filters).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if filters.limit:
        query = query.limit(filters.limit)
    return query.all()


def audit_stats(db: Session, filters: AuditFilters) -> dict[str, Any]:
    """Counts by action, actor and resource type plus the most recent entries.

    Counting happens in the database; only the recent slice is loaded.
    """

    def grouped(*columns):
        return _apply_filters(db.query(*columns, func.count(AuditLog.id)), filters).group_by(*columns).all()

    by_action = {action: count for action, count in grouped(AuditLog.action)}
    by_resource_type = {resource_type: count for resource_type, count in grouped(AuditLog.resource_type)}
    by_actor: Counter[str] = Counter()
    for actor_name, actor_role, count in grouped(AuditLog.actor_name, AuditLog.actor_role):
        by_actor[f"{actor_name or 'unknown'} ({actor_role or 'n/a'})"] += count

    recent = query_audit_log(db, replace(filters, limit=RECENT_ACTIVITY_SIZE))

    return {
        "total": sum(by_action.values()),
        "by_action": by_action,
        "by_actor": dict(by_actor),
        "by_resource_type": by_resource_type,
        "recent_activity": [
            {
                "id": entry.id,
                "action": entry.action,
                "actor_name": entry.actor_name,
                "resource_type": entry.resource_type,
                "created_at": entry.created_at,
            }
            for entry in recent
        ],
    }
