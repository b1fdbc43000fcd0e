"""Dedupe key derivation for raw crossing reports."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from uuid import UUID


def as_utc(value: datetime) -> datetime:
    """Naive datetimes from the detector are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_to_window(value: datetime, window_seconds: int) -> datetime:
    if window_seconds <= 0:
        raise ValueError("Dedupe window must be positive")
    ts = as_utc(value)
    epoch = int(ts.timestamp())
    return datetime.fromtimestamp(epoch - epoch % window_seconds, tz=timezone.utc)


def build_dedupe_key(
    *,
    vehicle_id: str,
    geofence_id: UUID | str,
    direction: str,
    occurred_at: datetime,
    window_seconds: int,
) -> str:
    """Stable key: at most one crossing per vehicle/geofence/direction per window."""
    bucket = truncate_to_window(occurred_at, window_seconds)
    raw = f"{vehicle_id.strip()}|{str(geofence_id).lower()}|{direction}|{bucket.isoformat()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
