"""Recipient matching for a persisted crossing event."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from ..models import (
    AssignmentScope,
    Client,
    Geofence,
    GeofenceAssignment,
    GeofenceEvent,
    NotificationRecipient,
    OwnerKind,
)
from ..services.recipient_rules import deliverable_channels, direction_allowed, recipient_matches


def _active_only(db: Session, client_ids: set[UUID]) -> set[UUID]:
    if not client_ids:
        return set()
    rows = db.query(Client.id).filter(Client.id.in_(client_ids), Client.is_active.is_(True)).all()
    return {client_id for (client_id,) in rows}


def entitled_client_ids(db: Session, geofence: Geofence) -> set[UUID]:
    """Active clients whose recipients may hear about crossings of this geofence."""
    if geofence.owner_kind == OwnerKind.TENANT.value:
        return _active_only(db, {geofence.owner_client_id})

    assignments = db.query(GeofenceAssignment.scope, GeofenceAssignment.client_id).filter(
        GeofenceAssignment.geofence_id == geofence.id,
    ).all()
    if any(scope == AssignmentScope.GLOBAL.value for scope, _ in assignments):
        # Global grant: every client that has recipients configured.
        rows = (
            db.query(NotificationRecipient.client_id)
            .join(Client, Client.id == NotificationRecipient.client_id)
            .filter(Client.is_active.is_(True))
            .distinct()
            .all()
        )
        return {client_id for (client_id,) in rows}
    return _active_only(db, {client_id for scope, client_id in assignments if client_id is not None})


def find_matching_recipients(
    db: Session,
    event: GeofenceEvent,
    geofence: Geofence | None = None,
) -> list[NotificationRecipient]:
    geofence = geofence or db.get(Geofence, event.geofence_id)
    if geofence is None or geofence.is_deleted:
        return []
    if not direction_allowed(geofence.alert_mode, event.direction):
        return []

    client_ids = entitled_client_ids(db, geofence)
    if not client_ids:
        return []

    candidates = (
        db.query(NotificationRecipient)
        .filter(
            NotificationRecipient.client_id.in_(client_ids),
            NotificationRecipient.is_active.is_(True),
        )
        .order_by(NotificationRecipient.created_at, NotificationRecipient.id)
        .all()
    )
    return [
        recipient
        for recipient in candidates
        if recipient_matches(
            recipient,
            geofence_id=geofence.id,
            vehicle_id=event.vehicle_id,
            direction=event.direction,
        )
    ]


def match_event(
    db: Session,
    event: GeofenceEvent,
    geofence: Geofence | None = None,
) -> list[tuple[NotificationRecipient, str]]:
    """One (recipient, channel) pair per enabled channel with an address."""
    return [
        (recipient, channel)
        for recipient in find_matching_recipients(db, event, geofence)
        for channel, _destination in deliverable_channels(recipient)
    ]
