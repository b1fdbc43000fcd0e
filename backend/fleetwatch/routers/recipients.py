"""Notification recipient endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth import Caller, Capability, PermissionChecker
from ..database import get_db
from ..schemas import RecipientCreate, RecipientResponse, RecipientTestResponse, RecipientUpdate
from ..services.audit import AuditRecorder, RequestMeta
from ..use_cases.dispatch import Dispatcher
from ..use_cases.recipients import (
    create_recipient_use_case,
    deactivate_recipient_use_case,
    delete_recipient_use_case,
    list_recipients_use_case,
    send_test_notification_use_case,
    update_recipient_use_case,
)
from .deps import get_audit, get_dispatcher, get_request_meta

router = APIRouter(tags=["recipients"])


@router.get("/clients/{client_id}/recipients", response_model=list[RecipientResponse])
def list_recipients(
    client_id: UUID,
    include_inactive: bool = True,
    caller: Caller = Depends(PermissionChecker(Capability.MANAGE_OWN_RECIPIENTS)),
    db: Session = Depends(get_db),
):
    return list_recipients_use_case(db=db, caller=caller, client_id=client_id, include_inactive=include_inactive)


@router.post(
    "/clients/{client_id}/recipients",
    response_model=RecipientResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_recipient(
    client_id: UUID,
    data: RecipientCreate,
    caller: Caller = Depends(PermissionChecker(Capability.MANAGE_OWN_RECIPIENTS)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    return create_recipient_use_case(
        db=db,
        caller=caller,
        client_id=client_id,
        data=data,
        audit=audit,
        request_meta=request_meta,
    )


@router.put("/recipients/{recipient_id}", response_model=RecipientResponse)
def update_recipient(
    recipient_id: UUID,
    data: RecipientUpdate,
    caller: Caller = Depends(PermissionChecker(Capability.MANAGE_OWN_RECIPIENTS)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    return update_recipient_use_case(
        db=db,
        caller=caller,
        recipient_id=recipient_id,
        data=data,
        audit=audit,
        request_meta=request_meta,
    )


@router.post("/recipients/{recipient_id}/deactivate", response_model=RecipientResponse)
def deactivate_recipient(
    recipient_id: UUID,
    caller: Caller = Depends(PermissionChecker(Capability.MANAGE_OWN_RECIPIENTS)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    """Stop matching this recipient for future events."""
    return deactivate_recipient_use_case(
        db=db,
        caller=caller,
        recipient_id=recipient_id,
        audit=audit,
        request_meta=request_meta,
    )


@router.delete("/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_recipient(
    recipient_id: UUID,
    caller: Caller = Depends(PermissionChecker(Capability.MANAGE_OWN_RECIPIENTS)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    delete_recipient_use_case(db=db, caller=caller, recipient_id=recipient_id, audit=audit, request_meta=request_meta)


@router.post("/recipients/{recipient_id}/test", response_model=RecipientTestResponse)
def test_recipient(
    recipient_id: UUID,
    caller: Caller = Depends(PermissionChecker(Capability.TEST_RECIPIENTS)),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
    dispatcher: Dispatcher = Depends(get_dispatcher),
    request_meta: RequestMeta = Depends(get_request_meta),
):
    """Send a test message on every enabled channel and report each outcome."""
    results = send_test_notification_use_case(
        db=db,
        caller=caller,
        recipient_id=recipient_id,
        sender=dispatcher.sender,
        audit=audit,
        disabled_channels=dispatcher.disabled_channels,
        request_meta=request_meta,
    )
    return {"recipient_id": recipient_id, "results": results}
