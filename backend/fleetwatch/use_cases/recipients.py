"""Notification recipient management use-cases."""
from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from ..auth import Caller, Capability, require_capability
from ..domain_errors import NotFound, ValidationError
from ..models import Client, DeliveryStatus, NotificationRecipient
from ..schemas import RecipientCreate, RecipientUpdate
from ..security import ensure_can_manage_client
from ..services.audit import AuditAction, AuditRecorder, RequestMeta
from ..services.delivery_state import now_utc
from ..services.recipient_rules import normalize_allow_list, normalize_values, validate_recipient_config
from ..services.senders import SendResult, Sender

TEST_SUBJECT = "Fleetwatch test notification"
TEST_MESSAGE = "This is a test notification from Fleetwatch geofence alerts."


def _get_recipient_or_404(*, db: Session, recipient_id: UUID) -> NotificationRecipient:
    recipient = db.query(NotificationRecipient).filter(NotificationRecipient.id == recipient_id).first()
    if not recipient:
        raise NotFound(code="RECIPIENT_NOT_FOUND", message="Recipient not found")
    return recipient


def _clean_address(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def _recipient_snapshot(recipient: NotificationRecipient) -> dict:
    return {
        "client_id": recipient.client_id,
        "channels": recipient.channels,
        "alert_types": recipient.alert_types,
        "geofence_ids": recipient.geofence_ids,
        "vehicle_ids": recipient.vehicle_ids,
        "is_active": recipient.is_active,
    }


def list_recipients_use_case(
    *,
    db: Session,
    caller: Caller,
    client_id: UUID,
    include_inactive: bool = True,
) -> list[NotificationRecipient]:
    ensure_can_manage_client(caller, client_id)
    query = db.query(NotificationRecipient).filter(NotificationRecipient.client_id == client_id)
    if not include_inactive:
        query = query.filter(NotificationRecipient.is_active.is_(True))
    return query.order_by(NotificationRecipient.created_at.desc(), NotificationRecipient.id).all()


def create_recipient_use_case(
    *,
    db: Session,
    caller: Caller,
    client_id: UUID,
    data: RecipientCreate,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> NotificationRecipient:
    ensure_can_manage_client(caller, client_id)
    if not db.query(Client.id).filter(Client.id == client_id).first():
        raise NotFound(code="CLIENT_NOT_FOUND", message="Client not found")

    channels = normalize_values(data.channels)
    alert_types = normalize_values(data.alert_types)
    email = _clean_address(data.email)
    whatsapp = _clean_address(data.whatsapp)
    validate_recipient_config(channels=channels, alert_types=alert_types, email=email, whatsapp=whatsapp)

    recipient = NotificationRecipient(
        client_id=client_id,
        user_id=data.user_id,
        email=email,
        whatsapp=whatsapp,
        channels=channels,
        alert_types=alert_types,
        geofence_ids=normalize_allow_list(data.geofence_ids),
        vehicle_ids=normalize_allow_list(data.vehicle_ids),
        is_active=data.is_active,
    )
    db.add(recipient)
    db.commit()
    db.refresh(recipient)

    audit.record(
        caller,
        AuditAction.CREATE_RECIPIENT,
        "notification_recipient",
        recipient.id,
        _recipient_snapshot(recipient),
        request_meta,
    )
    return recipient


def update_recipient_use_case(
    *,
    db: Session,
    caller: Caller,
    recipient_id: UUID,
    data: RecipientUpdate,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> NotificationRecipient:
    """Partial update; validation runs against the merged result."""
    recipient = _get_recipient_or_404(db=db, recipient_id=recipient_id)
    ensure_can_manage_client(caller, recipient.client_id)

    provided = data.model_fields_set
    if not provided:
        raise ValidationError(code="RECIPIENT_EMPTY_UPDATE", message="No fields provided for update")

    channels = normalize_values(data.channels) if "channels" in provided and data.channels is not None else recipient.channels
    alert_types = (
        normalize_values(data.alert_types)
        if "alert_types" in provided and data.alert_types is not None
        else recipient.alert_types
    )
    email = _clean_address(data.email) if "email" in provided else recipient.email
    whatsapp = _clean_address(data.whatsapp) if "whatsapp" in provided else recipient.whatsapp
    validate_recipient_config(channels=channels, alert_types=alert_types, email=email, whatsapp=whatsapp)

    recipient.channels = channels
    recipient.alert_types = alert_types
    recipient.email = email
    recipient.whatsapp = whatsapp
    # Allow-lists: explicit null lifts the restriction, omission keeps it.
    if "geofence_ids" in provided:
        recipient.geofence_ids = normalize_allow_list(data.geofence_ids)
    if "vehicle_ids" in provided:
        recipient.vehicle_ids = normalize_allow_list(data.vehicle_ids)
    if "user_id" in provided:
        recipient.user_id = data.user_id
    if "is_active" in provided and data.is_active is not None:
        recipient.is_active = data.is_active
    recipient.updated_at = now_utc()

    db.commit()
    db.refresh(recipient)

    audit.record(
        caller,
        AuditAction.UPDATE_RECIPIENT,
        "notification_recipient",
        recipient.id,
        {"fields": sorted(provided), **_recipient_snapshot(recipient)},
        request_meta,
    )
    return recipient


def deactivate_recipient_use_case(
    *,
    db: Session,
    caller: Caller,
    recipient_id: UUID,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> NotificationRecipient:
    recipient = _get_recipient_or_404(db=db, recipient_id=recipient_id)
    ensure_can_manage_client(caller, recipient.client_id)

    recipient.is_active = False
    recipient.updated_at = now_utc()
    db.commit()
    db.refresh(recipient)

    audit.record(
        caller,
        AuditAction.DEACTIVATE_RECIPIENT,
        "notification_recipient",
        recipient.id,
        {"client_id": recipient.client_id},
        request_meta,
    )
    return recipient


def delete_recipient_use_case(
    *,
    db: Session,
    caller: Caller,
    recipient_id: UUID,
    audit: AuditRecorder,
    request_meta: RequestMeta | None = None,
) -> None:
    """Hard delete; past deliveries keep their rows with recipient_id cleared."""
    recipient = _get_recipient_or_404(db=db, recipient_id=recipient_id)
    ensure_can_manage_client(caller, recipient.client_id)

    client_id = recipient.client_id
    db.delete(recipient)
    db.commit()

    audit.record(
        caller,
        AuditAction.DELETE_RECIPIENT,
        "notification_recipient",
        recipient_id,
        {"client_id": client_id},
        request_meta,
    )


def send_test_notification_use_case(
    *,
    db: Session,
    caller: Caller,
    recipient_id: UUID,
    sender: Sender,
    audit: AuditRecorder,
    disabled_channels: Iterable[str] = (),
    request_meta: RequestMeta | None = None,
) -> list[dict]:
    """Synchronously send a test message on every enabled channel."""
    require_capability(caller, Capability.TEST_RECIPIENTS)
    recipient = _get_recipient_or_404(db=db, recipient_id=recipient_id)
    disabled = set(disabled_channels)

    results: list[dict] = []
    for channel in normalize_values(recipient.channels):
        destination = recipient.destination_for(channel)
        if not destination:
            results.append({"channel": channel, "destination": None, "status": DeliveryStatus.SKIPPED.value, "error": "NO_DESTINATION"})
            continue
        if channel in disabled or not sender.supports(channel):
            results.append({"channel": channel, "destination": destination, "status": DeliveryStatus.SKIPPED.value, "error": f"CHANNEL_DISABLED: {channel}"})
            continue
        try:
            outcome = sender.send(channel, destination, TEST_SUBJECT, TEST_MESSAGE)
        except Exception as exc:
            outcome = SendResult(ok=False, error=f"EXCEPTION: {exc}")
        results.append(
            {
                "channel": channel,
                "destination": destination,
                "status": DeliveryStatus.SENT.value if outcome.ok else DeliveryStatus.FAILED.value,
                "error": outcome.error,
            }
        )

    audit.record(
        caller,
        AuditAction.TEST_RECIPIENT,
        "notification_recipient",
        recipient.id,
        {"results": results},
        request_meta,
    )
    return results
