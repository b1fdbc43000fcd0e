"""Crossing event ingestion and claim-for-processing."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import SYSTEM_CALLER, Caller
from ..config import settings
from ..domain_errors import NotFound, ValidationError
from ..models import Direction, Geofence, GeofenceEvent
from ..security import active_geofence_clause
from ..services.audit import AuditAction, AuditRecorder
from ..services.delivery_state import now_utc
from ..services.event_dedupe import as_utc, build_dedupe_key

logger = logging.getLogger(__name__)

_DIRECTIONS = {direction.value for direction in Direction}


@dataclass(frozen=True)
class IngestResult:
    status: Literal["accepted", "duplicate"]
    event_id: Optional[UUID]
    dedupe_key: str

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"


def ingest_event_use_case(
    *,
    db: Session,
    vehicle_id: str,
    geofence_id: UUID,
    direction: Direction | str,
    latitude: float,
    longitude: float,
    occurred_at: datetime,
    window_seconds: int | None = None,
    audit: AuditRecorder | None = None,
    actor: Caller = SYSTEM_CALLER,
) -> IngestResult:
    """Persist one crossing exactly once per dedupe window.

    The unique dedupe key is the only guard: concurrent reports of the same
    crossing race on the insert and all but one come back as ``duplicate``.
    """
    direction_value = getattr(direction, "value", direction)
    if direction_value not in _DIRECTIONS:
        raise ValidationError(
            code="EVENT_DIRECTION_INVALID",
            message="Direction must be 'entry' or 'exit'",
            details={"direction": direction_value},
        )
    vehicle = (vehicle_id or "").strip()
    if not vehicle:
        raise ValidationError(code="EVENT_VEHICLE_REQUIRED", message="vehicle_id is required")

    geofence_exists = db.query(Geofence.id).filter(
        Geofence.id == geofence_id,
        active_geofence_clause(),
    ).first()
    if not geofence_exists:
        raise NotFound(code="GEOFENCE_NOT_FOUND", message="Geofence not found")

    window = window_seconds or settings.EVENT_DEDUPE_WINDOW_SECONDS
    dedupe_key = build_dedupe_key(
        vehicle_id=vehicle,
        geofence_id=geofence_id,
        direction=direction_value,
        occurred_at=occurred_at,
        window_seconds=window,
    )

    event = GeofenceEvent(
        vehicle_id=vehicle,
        geofence_id=geofence_id,
        direction=direction_value,
        latitude=latitude,
        longitude=longitude,
        occurred_at=as_utc(occurred_at),
        dedupe_key=dedupe_key,
        processed=False,
    )
    try:
        # Savepoint: a lost race only undoes this insert, not the caller's other work.
        with db.begin_nested():
            db.add(event)
            db.flush()
    except IntegrityError:
        existing_id = db.query(GeofenceEvent.id).filter(GeofenceEvent.dedupe_key == dedupe_key).scalar()
        db.commit()
        logger.info(
            "Duplicate crossing ignored vehicle=%s geofence=%s direction=%s",
            vehicle,
            geofence_id,
            direction_value,
        )
        return IngestResult(status="duplicate", event_id=existing_id, dedupe_key=dedupe_key)

    db.commit()
    logger.info(
        "Crossing accepted event=%s vehicle=%s geofence=%s direction=%s",
        event.id,
        vehicle,
        geofence_id,
        direction_value,
    )
    if audit is not None:
        audit.record(
            actor,
            AuditAction.INGEST_EVENT,
            "geofence_event",
            event.id,
            {"vehicle_id": vehicle, "geofence_id": geofence_id, "direction": direction_value},
        )
    return IngestResult(status="accepted", event_id=event.id, dedupe_key=dedupe_key)


def claim_next_event(db: Session, *, max_attempts: int = 10) -> GeofenceEvent | None:
    """Flip the oldest unprocessed event to processed and return it.

    Does not commit: the caller commits the claim together with the deliveries
    it creates, so a crash before commit leaves the event claimable again.
    """
    lost: list[UUID] = []
    for _ in range(max_attempts):
        query = db.query(GeofenceEvent).filter(GeofenceEvent.processed.is_(False))
        if lost:
            query = query.filter(GeofenceEvent.id.notin_(lost))
        candidate = (
            query.order_by(GeofenceEvent.created_at, GeofenceEvent.id)
            .with_for_update(skip_locked=True)
            .first()
        )
        if candidate is None:
            return None

        result = db.execute(
            update(GeofenceEvent)
            .where(GeofenceEvent.id == candidate.id, GeofenceEvent.processed.is_(False))
            .values(processed=True, processed_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            db.refresh(candidate)
            logger.info("Claimed event %s", candidate.id)
            return candidate
        # Another worker flipped it between our read and our update.
        lost.append(candidate.id)
    return None
