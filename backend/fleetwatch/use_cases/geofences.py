"""Geofence ownership, visibility and sharing use-cases."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from ..auth import Caller, Capability, check_permission, require_capability
from ..domain_errors import NotFound, ValidationError
from ..models import (
    AssignmentScope,
    Client,
    Geofence,
    GeofenceAssignment,
    GeofenceState,
    OwnerKind,
)
from ..schemas import AssignmentCreate, GeofenceCreate, GeofenceUpdate
from ..security import (
    Permission,
    VisibilityFilter,
    active_geofence_clause,
    ensure_can_mutate_geofence,
    permission_for,
    visibility_predicate,
)
from ..services.audit import AuditAction, AuditRecorder, RequestMeta
from ..services.delivery_state import now_utc
from ..services.senders import label_template_error

_EDITABLE_FIELDS = ("name", "category", "color", "alert_mode", "entry_labels", "exit_labels")


def _validate_labels(**label_sets: list[str] | None) -> None:
    for field, labels in label_sets.items():
        for label in labels or []:
            error = label_template_error(label)
            if error is not None:
                raise ValidationError(
                    code="GEOFENCE_LABEL_INVALID",
                    message=f"Label template in {field} cannot be rendered: {error}",
                    details={"field": field, "label": label},
                )


def _get_geofence_or_404(*, db: Session, geofence_id: UUID) -> Geofence:
    geofence = db.query(Geofence).filter(
        Geofence.id == geofence_id,
        active_geofence_clause(),
    ).first()
    if not geofence:
        raise NotFound(code="GEOFENCE_NOT_FOUND", message="Geofence not found")
    return geofence


def _ensure_client_exists(db: Session, client_id: UUID) -> None:
    if not db.query(Client.id).filter(Client.id == client_id).first():
        raise NotFound(code="CLIENT_NOT_FOUND", message="Client not found")


def _ensure_assignment(db: Session, geofence: Geofence, *, scope: AssignmentScope, client_id: UUID | None, caller: Caller) -> bool:
    """Add a sharing grant unless it already exists. Returns True when a row was added."""
    query = db.query(GeofenceAssignment).filter(
        GeofenceAssignment.geofence_id == geofence.id,
        GeofenceAssignment.scope == scope.value,
    )
    if client_id is not None:
        query = query.filter(GeofenceAssignment.client_id == client_id)
    if query.first():
        return False
    db.add(
        GeofenceAssignment(
            geofence_id=geofence.id,
            scope=scope.value,
            client_id=client_id,
            created_by=caller.user_id,
        )
    )
    return True


def _remove_assignment(db: Session, geofence: Geofence, *, scope: AssignmentScope, client_id: UUID | None) -> int:
    query = db.query(GeofenceAssignment).filter(
        GeofenceAssignment.geofence_id == geofence.id,
        GeofenceAssignment.scope == scope.value,
    )
    if client_id is not None:
        query = query.filter(GeofenceAssignment.client_id == client_id)
    return query.delete(synchronize_session=False)


def resolve_visible(
    *,
    db: Session,
    caller: Caller,
    visibility: VisibilityFilter = VisibilityFilter.OWN,
    target_client_id: UUID | None = None,
) -> list[tuple[Geofence, Permission]]:
    """Geofences visible to caller under the display filter, with per-row permission."""
    predicate = visibility_predicate(caller, visibility, target_client_id)
    geofences = (
        db.query(Geofence)
        .options(selectinload(Geofence.assignments))
        .filter(predicate)
        .order_by(Geofence.created_at.desc(), Geofence.id)
        .all()
    )
    return [(geofence, permission_for(caller, geofence)) for geofence in geofences]


def get_geofence_use_case(*, db: Session, caller: Caller, geofence_id: UUID) -> tuple[Geofence, Permission]:
    """Load one geofence the caller may see; hidden ones look missing."""
    if check_permission(caller, Capability.VIEW_ANY_CLIENT):
        return _get_geofence_or_404(db=db, geofence_id=geofence_id), Permission.EDITABLE

    geofence = db.query(Geofence).filter(
        Geofence.id == geofence_id,
        visibility_predicate(caller, VisibilityFilter.ALL),
    ).first()
    if not geofence:
        raise NotFound(code="GEOFENCE_NOT_FOUND", message="Geofence not found")
    return geofence, permission_for(caller, geofence)


def create_geofence_use_case(
    *,
    db: Session,
    caller: Caller,
    data: GeofenceCreate,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> Geofence:
    """Create a geofence; ownership and sharing follow the caller's role."""
    _validate_labels(entry_labels=data.entry_labels, exit_labels=data.exit_labels)
    geofence = Geofence(
        name=data.name.strip(),
        category=data.category,
        color=data.color,
        geometry=data.geometry.model_dump(mode="json"),
        alert_mode=data.alert_mode.value,
        entry_labels=list(data.entry_labels),
        exit_labels=list(data.exit_labels),
        state=GeofenceState.ACTIVE.value,
        created_by=caller.user_id,
    )

    if check_permission(caller, Capability.SHARE_GEOFENCES):
        # Operator geofences stay platform-owned; a named client only receives a grant.
        geofence.owner_kind = OwnerKind.PLATFORM.value
        geofence.owner_client_id = None
        db.add(geofence)
        db.flush()
        if data.client_id is not None:
            _ensure_client_exists(db, data.client_id)
            _ensure_assignment(db, geofence, scope=AssignmentScope.CLIENT, client_id=data.client_id, caller=caller)
        if data.client_id is None or data.is_global:
            _ensure_assignment(db, geofence, scope=AssignmentScope.GLOBAL, client_id=None, caller=caller)
    else:
        if caller.client_id is None:
            raise ValidationError(
                code="GEOFENCE_CLIENT_REQUIRED",
                message="Tenant user is not linked to an organization",
            )
        geofence.owner_kind = OwnerKind.TENANT.value
        geofence.owner_client_id = caller.client_id
        db.add(geofence)
        db.flush()

    db.commit()
    db.refresh(geofence)
    assignments = [
        {"scope": assignment.scope, "client_id": assignment.client_id}
        for assignment in geofence.assignments
    ]

    audit.record(
        caller,
        AuditAction.CREATE_GEOFENCE,
        "geofence",
        geofence.id,
        {
            "name": geofence.name,
            "owner_kind": geofence.owner_kind,
            "owner_client_id": geofence.owner_client_id,
            "assignments": assignments,
        },
        request_meta,
    )
    return geofence


def update_geofence_use_case(
    *,
    db: Session,
    caller: Caller,
    geofence_id: UUID,
    data: GeofenceUpdate,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> Geofence:
    """Partial update; operators may also re-share platform geofences."""
    geofence = _get_geofence_or_404(db=db, geofence_id=geofence_id)
    ensure_can_mutate_geofence(caller, geofence, action="modify")
    _validate_labels(entry_labels=data.entry_labels, exit_labels=data.exit_labels)

    changes = data.model_dump(exclude_unset=True)
    sharing_requested = any(
        changes.get(key) is not None for key in ("client_id", "is_global")
    )
    field_changes = {key: changes[key] for key in _EDITABLE_FIELDS if changes.get(key) is not None}
    if "geometry" in changes and data.geometry is not None:
        field_changes["geometry"] = data.geometry.model_dump(mode="json")

    can_share = check_permission(caller, Capability.SHARE_GEOFENCES)
    if not field_changes and not (sharing_requested and can_share):
        raise ValidationError(code="GEOFENCE_EMPTY_UPDATE", message="No fields provided for update")

    for key, value in field_changes.items():
        if key == "alert_mode":
            value = getattr(value, "value", value)
        if key == "name":
            value = value.strip()
        setattr(geofence, key, value)

    sharing_changes: dict[str, object] = {}
    if sharing_requested and can_share:
        if not geofence.is_platform_owned:
            raise ValidationError(
                code="GEOFENCE_NOT_SHAREABLE",
                message="Only platform geofences can be shared",
            )
        if data.client_id is not None:
            _ensure_client_exists(db, data.client_id)
            _ensure_assignment(db, geofence, scope=AssignmentScope.CLIENT, client_id=data.client_id, caller=caller)
            sharing_changes["client_id"] = data.client_id
        if data.is_global is True:
            _ensure_assignment(db, geofence, scope=AssignmentScope.GLOBAL, client_id=None, caller=caller)
            sharing_changes["is_global"] = True
        elif data.is_global is False:
            _remove_assignment(db, geofence, scope=AssignmentScope.GLOBAL, client_id=None)
            sharing_changes["is_global"] = False

    geofence.updated_at = now_utc()
    db.commit()
    db.refresh(geofence)

    audit.record(
        caller,
        AuditAction.UPDATE_GEOFENCE,
        "geofence",
        geofence.id,
        {"fields": sorted(field_changes), **sharing_changes},
        request_meta,
    )
    return geofence


def delete_geofence_use_case(
    *,
    db: Session,
    caller: Caller,
    geofence_id: UUID,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> None:
    """Soft delete: the row stays for audit history and past events."""
    geofence = _get_geofence_or_404(db=db, geofence_id=geofence_id)
    ensure_can_mutate_geofence(caller, geofence, action="delete")

    deleted_at = now_utc()
    geofence.state = GeofenceState.DELETED.value
    geofence.deleted_at = deleted_at
    geofence.updated_at = deleted_at
    name = geofence.name
    db.commit()

    audit.record(caller, AuditAction.DELETE_GEOFENCE, "geofence", geofence_id, {"name": name}, request_meta)


def _validated_assignment_target(data: AssignmentCreate) -> UUID | None:
    if data.scope is AssignmentScope.GLOBAL:
        if data.client_id is not None:
            raise ValidationError(
                code="ASSIGNMENT_GLOBAL_WITH_CLIENT",
                message="A global assignment cannot name a client",
            )
        return None
    if data.client_id is None:
        raise ValidationError(
            code="ASSIGNMENT_CLIENT_REQUIRED",
            message="client_id is required for a client assignment",
        )
    return data.client_id


def assign_geofence_use_case(
    *,
    db: Session,
    caller: Caller,
    geofence_id: UUID,
    data: AssignmentCreate,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> Geofence:
    """Share a platform geofence with every client or one client (idempotent)."""
    geofence = _get_geofence_or_404(db=db, geofence_id=geofence_id)
    require_capability(caller, Capability.SHARE_GEOFENCES)
    if not geofence.is_platform_owned:
        raise ValidationError(code="GEOFENCE_NOT_SHAREABLE", message="Only platform geofences can be shared")

    client_id = _validated_assignment_target(data)
    if client_id is not None:
        _ensure_client_exists(db, client_id)
    added = _ensure_assignment(db, geofence, scope=data.scope, client_id=client_id, caller=caller)
    db.commit()
    db.refresh(geofence)

    if added:
        audit.record(
            caller,
            AuditAction.ASSIGN_GEOFENCE,
            "geofence",
            geofence.id,
            {"scope": data.scope.value, "client_id": client_id},
            request_meta,
        )
    return geofence


def unassign_geofence_use_case(
    *,
    db: Session,
    caller: Caller,
    geofence_id: UUID,
    data: AssignmentCreate,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> Geofence:
    """Withdraw a sharing grant; missing grants are a no-op."""
    geofence = _get_geofence_or_404(db=db, geofence_id=geofence_id)
    require_capability(caller, Capability.SHARE_GEOFENCES)

    client_id = _validated_assignment_target(data)
    removed = _remove_assignment(db, geofence, scope=data.scope, client_id=client_id)
    db.commit()
    db.refresh(geofence)

    if removed:
        audit.record(
            caller,
            AuditAction.UNASSIGN_GEOFENCE,
            "geofence",
            geofence.id,
            {"scope": data.scope.value, "client_id": client_id},
            request_meta,
        )
    return geofence
