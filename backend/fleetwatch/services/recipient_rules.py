"""Recipient scope and contact invariant helpers."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from ..domain_errors import ValidationError
from ..models import AlertMode, Channel, Direction

_MODE_DIRECTIONS: dict[str, set[str]] = {
    AlertMode.ENTRY_ONLY.value: {Direction.ENTRY.value},
    AlertMode.EXIT_ONLY.value: {Direction.EXIT.value},
    AlertMode.ENTRY_AND_EXIT.value: {Direction.ENTRY.value, Direction.EXIT.value},
    AlertMode.NONE.value: set(),
}


def _enum_value(value: Any) -> str:
    return getattr(value, "value", value)


def normalize_values(values: Iterable[Any] | None) -> list[str]:
    """Deduplicate while keeping order; enums and UUIDs become plain strings."""
    seen: set[str] = set()
    normalized: list[str] = []
    for value in values or []:
        item = str(_enum_value(value)).strip()
        if isinstance(value, UUID):
            item = item.lower()
        if not item or item in seen:
            continue
        seen.add(item)
        normalized.append(item)
    return normalized


def normalize_allow_list(values: Iterable[Any] | None) -> list[str] | None:
    """None means "no restriction"; an explicit list is stored as given."""
    if values is None:
        return None
    return normalize_values(values)


def direction_allowed(alert_mode: str | None, direction: str) -> bool:
    return direction in _MODE_DIRECTIONS.get(alert_mode or AlertMode.ENTRY_AND_EXIT.value, set())


def _allow_list_permits(allow_list: list[str] | None, value: str) -> bool:
    if allow_list is None:
        return True
    return value in {str(item).lower() for item in allow_list}


def recipient_matches(recipient: Any, *, geofence_id: UUID | str, vehicle_id: str, direction: str) -> bool:
    """Scope check for one active recipient against one crossing."""
    if not recipient.is_active:
        return False
    if direction not in (recipient.alert_types or []):
        return False
    if not _allow_list_permits(recipient.geofence_ids, str(geofence_id).lower()):
        return False
    return _allow_list_permits(recipient.vehicle_ids, str(vehicle_id).lower())


def deliverable_channels(recipient: Any) -> list[tuple[str, str]]:
    """(channel, destination) for every enabled channel that has an address; others are skipped."""
    pairs: list[tuple[str, str]] = []
    for channel in normalize_values(recipient.channels):
        destination = recipient.destination_for(channel)
        if destination:
            pairs.append((channel, destination))
    return pairs


def validate_recipient_config(
    *,
    channels: list[str],
    alert_types: list[str],
    email: str | None,
    whatsapp: str | None,
) -> None:
    if not channels:
        raise ValidationError(
            code="RECIPIENT_CHANNEL_REQUIRED",
            message="At least one notification channel is required",
        )
    unknown_channels = set(channels) - {channel.value for channel in Channel}
    if unknown_channels:
        raise ValidationError(
            code="RECIPIENT_CHANNEL_INVALID",
            message="Unknown notification channel",
            details={"channels": sorted(unknown_channels)},
        )
    if not alert_types:
        raise ValidationError(
            code="RECIPIENT_ALERT_TYPE_REQUIRED",
            message="At least one alert type is required",
        )
    unknown_types = set(alert_types) - {direction.value for direction in Direction}
    if unknown_types:
        raise ValidationError(
            code="RECIPIENT_ALERT_TYPE_INVALID",
            message="Unknown alert type",
            details={"alert_types": sorted(unknown_types)},
        )
    if Channel.EMAIL.value in channels and not (email or "").strip():
        raise ValidationError(
            code="RECIPIENT_EMAIL_REQUIRED",
            message="Email is required when the email channel is enabled",
        )
    if Channel.WHATSAPP.value in channels and not (whatsapp or "").strip():
        raise ValidationError(
            code="RECIPIENT_WHATSAPP_REQUIRED",
            message="WhatsApp number is required when the WhatsApp channel is enabled",
        )
