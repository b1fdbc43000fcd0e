"""Crossing detector webhook and delivery tracking endpoints."""
from typing import Union
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Caller, Capability, PermissionChecker, verify_detector_secret
from ..database import get_db
from ..domain_errors import NotFound
from ..models import GeofenceEvent, NotificationDelivery
from ..schemas import DeliveryResponse, GeofenceEventIn, IngestBatchResponse, IngestResultOut
from ..services.audit import AuditRecorder
from ..use_cases.events import ingest_event_use_case
from .deps import get_audit

router = APIRouter(prefix="/geofence-events", tags=["geofence-events"])


@router.post("", response_model=IngestBatchResponse, dependencies=[Depends(verify_detector_secret)])
def ingest_geofence_events(
    payload: Union[GeofenceEventIn, list[GeofenceEventIn]],
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit),
):
    """Accept one crossing or a batch; repeats within the dedupe window come back as duplicates."""
    items = payload if isinstance(payload, list) else [payload]
    results: list[IngestResultOut] = []
    for item in items:
        result = ingest_event_use_case(
            db=db,
            vehicle_id=item.vehicle_id,
            geofence_id=item.geofence_id,
            direction=item.direction,
            latitude=item.latitude,
            longitude=item.longitude,
            occurred_at=item.occurred_at,
            audit=audit,
        )
        results.append(
            IngestResultOut(status=result.status, event_id=result.event_id, dedupe_key=result.dedupe_key)
        )

    accepted = sum(1 for result in results if result.status == "accepted")
    return IngestBatchResponse(accepted=accepted, duplicates=len(results) - accepted, results=results)


@router.get("/{event_id}/deliveries", response_model=list[DeliveryResponse])
def list_event_deliveries(
    event_id: UUID,
    caller: Caller = Depends(PermissionChecker(Capability.VIEW_DELIVERIES)),
    db: Session = Depends(get_db),
):
    if not db.query(GeofenceEvent.id).filter(GeofenceEvent.id == event_id).first():
        raise NotFound(code="EVENT_NOT_FOUND", message="Event not found")
    return (
        db.query(NotificationDelivery)
        .filter(NotificationDelivery.event_id == event_id)
        .order_by(NotificationDelivery.created_at, NotificationDelivery.id)
        .all()
    )
