"""Security helpers (geofence visibility scoping, tenant checks and mutation rights)."""

from __future__ import annotations

import enum
from uuid import UUID

from sqlalchemy import and_, false, or_, select
from sqlalchemy.sql.elements import ColumnElement

from .auth import Caller, Capability, check_permission
from .domain_errors import PermissionDenied
from .models import AssignmentScope, Geofence, GeofenceAssignment, GeofenceState, OwnerKind


class VisibilityFilter(str, enum.Enum):
    OWN = "own"
    SHARED = "shared"
    ALL = "all"

    @classmethod
    def parse(cls, value: str | None) -> "VisibilityFilter":
        if not value:
            return cls.OWN
        normalized = value.strip().lower()
        # Older clients still send "assigned".
        if normalized == "assigned":
            return cls.SHARED
        return cls(normalized)


_PAST_TENSE = {"modify": "modified", "delete": "deleted", "share": "shared"}


class Permission(str, enum.Enum):
    EDITABLE = "editable"
    READONLY = "readonly"


def active_geofence_clause() -> ColumnElement[bool]:
    """Every geofence read path goes through this state filter."""
    return Geofence.state == GeofenceState.ACTIVE.value


def owned_by_client_clause(client_id: UUID) -> ColumnElement[bool]:
    return and_(
        Geofence.owner_kind == OwnerKind.TENANT.value,
        Geofence.owner_client_id == client_id,
    )


def globally_assigned_clause() -> ColumnElement[bool]:
    return and_(
        Geofence.owner_kind == OwnerKind.PLATFORM.value,
        select(GeofenceAssignment.id).where(
            GeofenceAssignment.geofence_id == Geofence.id,
            GeofenceAssignment.scope == AssignmentScope.GLOBAL.value,
        ).exists(),
    )


def assigned_to_client_clause(client_id: UUID) -> ColumnElement[bool]:
    return and_(
        Geofence.owner_kind == OwnerKind.PLATFORM.value,
        select(GeofenceAssignment.id).where(
            GeofenceAssignment.geofence_id == Geofence.id,
            GeofenceAssignment.scope == AssignmentScope.CLIENT.value,
            GeofenceAssignment.client_id == client_id,
        ).exists(),
    )


def shared_with_client_clause(client_id: UUID) -> ColumnElement[bool]:
    return or_(globally_assigned_clause(), assigned_to_client_clause(client_id))


def visibility_predicate(
    caller: Caller,
    visibility: VisibilityFilter,
    target_client_id: UUID | None = None,
) -> ColumnElement[bool]:
    """Compose the WHERE clause for (role, filter); soft-deleted rows are always excluded."""
    if check_permission(caller, Capability.VIEW_ANY_CLIENT):
        if target_client_id is None:
            # Default operator view is limited to global geofences.
            scope = globally_assigned_clause()
        else:
            scope = or_(
                owned_by_client_clause(target_client_id),
                globally_assigned_clause(),
                assigned_to_client_clause(target_client_id),
            )
        return and_(active_geofence_clause(), scope)

    if caller.client_id is None:
        return false()
    if target_client_id is not None and target_client_id != caller.client_id:
        raise PermissionDenied(
            code="GEOFENCE_CLIENT_FORBIDDEN",
            message="Not allowed to view geofences of another organization",
            reason="Tenant users can only list geofences of their own organization",
        )

    if visibility is VisibilityFilter.OWN:
        scope = owned_by_client_clause(caller.client_id)
    elif visibility is VisibilityFilter.SHARED:
        scope = shared_with_client_clause(caller.client_id)
    else:
        scope = or_(
            owned_by_client_clause(caller.client_id),
            shared_with_client_clause(caller.client_id),
        )
    return and_(active_geofence_clause(), scope)


def owns_geofence(caller: Caller, geofence: Geofence) -> bool:
    return (
        caller.client_id is not None
        and geofence.owner_kind == OwnerKind.TENANT.value
        and geofence.owner_client_id == caller.client_id
    )


def permission_for(caller: Caller, geofence: Geofence) -> Permission:
    """Row-level permission shown next to each visible geofence."""
    if check_permission(caller, Capability.EDIT_ANY_GEOFENCE):
        return Permission.EDITABLE
    if check_permission(caller, Capability.EDIT_OWN_GEOFENCES) and owns_geofence(caller, geofence):
        return Permission.EDITABLE
    return Permission.READONLY


def ensure_can_mutate_geofence(caller: Caller, geofence: Geofence, *, action: str = "modify") -> None:
    """Tenant users may only mutate geofences of their own organization."""
    if permission_for(caller, geofence) is Permission.EDITABLE:
        return
    raise PermissionDenied(
        code="GEOFENCE_NOT_OWNED",
        message=f"Not allowed to {action} this geofence",
        reason=f"Only geofences owned by your organization can be {_PAST_TENSE.get(action, action)}",
    )


def ensure_can_manage_client(caller: Caller, client_id: UUID) -> None:
    """Recipients (and other client-scoped config) are managed by the client or operators."""
    if check_permission(caller, Capability.MANAGE_ANY_RECIPIENTS):
        return
    if check_permission(caller, Capability.MANAGE_OWN_RECIPIENTS) and caller.client_id == client_id:
        return
    raise PermissionDenied(
        code="CLIENT_ACCESS_DENIED",
        message="Not allowed to manage recipients of this organization",
        reason="You can only manage recipients of your own organization",
    )
