"""Delivery status state machine."""

from __future__ import annotations

from datetime import datetime, timezone

from ..models import DeliveryStatus

TERMINAL_STATUSES: frozenset[str] = frozenset(
    {DeliveryStatus.SENT.value, DeliveryStatus.FAILED.value, DeliveryStatus.SKIPPED.value}
)
_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    DeliveryStatus.PENDING.value: set(TERMINAL_STATUSES),
    DeliveryStatus.SENT.value: set(),
    DeliveryStatus.FAILED.value: set(),
    DeliveryStatus.SKIPPED.value: set(),
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def validate_delivery_transition(*, current_status: str, next_status: str) -> str:
    allowed = _ALLOWED_TRANSITIONS.get(current_status, set())
    if next_status not in allowed:
        raise ValueError(f"Invalid delivery status transition: {current_status} -> {next_status}")
    return next_status


def terminal_updates(*, next_status: str, error: str | None = None, at: datetime | None = None) -> dict:
    """Column values written together with a terminal status."""
    validate_delivery_transition(current_status=DeliveryStatus.PENDING.value, next_status=next_status)
    ts = at or now_utc()
    updates: dict = {"status": next_status, "updated_at": ts}
    if next_status == DeliveryStatus.SENT.value:
        updates["sent_at"] = ts
        updates["error_message"] = None
    else:
        updates["error_message"] = error
    return updates
