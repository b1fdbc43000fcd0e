"""Geofence endpoints (visibility-scoped listing, CRUD and sharing)."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import Caller, Capability, PermissionChecker
from ..database import get_db
from ..domain_errors import ValidationError
from ..models import Geofence
from ..schemas import AssignmentCreate, GeofenceCreate, GeofenceResponse, GeofenceUpdate
from ..security import Permission, VisibilityFilter, permission_for
from ..services.audit import AuditRecorder, RequestMeta
from ..use_cases.geofences import (
    assign_geofence_use_case,
    create_geofence_use_case,
    delete_geofence_use_case,
    get_geofence_use_case,
    resolve_visible,
    unassign_geofence_use_case,
    update_geofence_use_case,
)
from .deps import get_audit, get_request_meta

router = APIRouter(prefix="/geofences", tags=["geofences"])


def _to_response(geofence: Geofence, permission: Permission) -> GeofenceResponse:
    response = GeofenceResponse.model_validate(geofence)
    response.permission = permission.value
    return response


def _parse_filter(value: Optional[str]) -> VisibilityFilter:
    try:
        return VisibilityFilter.parse(value)
    except ValueError:
        raise ValidationError(
            code="GEOFENCE_FILTER_INVALID",
            message="filter must be one of: own, shared, all",
            details={"filter": value},
        )


@router.get("", response_model=list[GeofenceResponse])
def list_geofences(
    filter: Optional[str] = Query(None, description="own | shared | all"),
    client_id: Optional[UUID] = None,
    caller: Caller = Depends(PermissionChecker(Capability.VIEW_GEOFENCES)),
    db: Session = Depends(get_db),
):
    """List geofences visible to the caller."""
    rows = resolve_visible(
        db=db,
        caller=caller,
        visibility=_parse_filter(filter),
        target_client_id=client_id,
    )
    return [_to_response(geofence, permission) for geofence, permission in rows]


@router.post("", response_model=GeofenceResponse, status_code=status.HTTP_201_CREATED)
def create_geofence(
    data: GeofenceCreate,
    caller: Caller = Depends(PermissionChecker(Capability.CREATE_GEOFENCES)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    geofence = create_geofence_use_case(db=db, caller=caller, data=data, audit=audit, request_meta=request_meta)
    return _to_response(geofence, permission_for(caller, geofence))


@router.get("/{geofence_id}", response_model=GeofenceResponse)
def get_geofence(
    geofence_id: UUID,
    caller: Caller = Depends(PermissionChecker(Capability.VIEW_GEOFENCES)),
    db: Session = Depends(get_db),
):
    geofence, permission = get_geofence_use_case(db=db, caller=caller, geofence_id=geofence_id)
    return _to_response(geofence, permission)


@router.put("/{geofence_id}", response_model=GeofenceResponse)
def update_geofence(
    geofence_id: UUID,
    data: GeofenceUpdate,
    caller: Caller = Depends(PermissionChecker(Capability.EDIT_OWN_GEOFENCES)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    geofence = update_geofence_use_case(
        db=db,
        caller=caller,
        geofence_id=geofence_id,
        data=data,
        audit=audit,
        request_meta=request_meta,
    )
    return _to_response(geofence, permission_for(caller, geofence))


@router.delete("/{geofence_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_geofence(
    geofence_id: UUID,
    caller: Caller = Depends(PermissionChecker(Capability.EDIT_OWN_GEOFENCES)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    """Soft-delete a geofence."""
    delete_geofence_use_case(db=db, caller=caller, geofence_id=geofence_id, audit=audit, request_meta=request_meta)


@router.post("/{geofence_id}/assignments", response_model=GeofenceResponse)
def assign_geofence(
    geofence_id: UUID,
    data: AssignmentCreate,
    caller: Caller = Depends(PermissionChecker(Capability.SHARE_GEOFENCES)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    """Share a platform geofence globally or with one client."""
    geofence = assign_geofence_use_case(
        db=db,
        caller=caller,
        geofence_id=geofence_id,
        data=data,
        audit=audit,
        request_meta=request_meta,
    )
    return _to_response(geofence, Permission.EDITABLE)


@router.delete("/{geofence_id}/assignments", response_model=GeofenceResponse)
def unassign_geofence(
    geofence_id: UUID,
    scope: str = Query(..., description="global | client"),
    client_id: Optional[UUID] = None,
    caller: Caller = Depends(PermissionChecker(Capability.SHARE_GEOFENCES)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    try:
        data = AssignmentCreate(scope=scope, client_id=client_id)
    except ValueError:
        raise ValidationError(
            code="ASSIGNMENT_SCOPE_INVALID",
            message="scope must be 'global' or 'client'",
            details={"scope": scope},
        )
    geofence = unassign_geofence_use_case(
        db=db,
        caller=caller,
        geofence_id=geofence_id,
        data=data,
        audit=audit,
        request_meta=request_meta,
    )
    return _to_response(geofence, Permission.EDITABLE)
