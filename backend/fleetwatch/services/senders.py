"""External notification senders and message rendering."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from ..config import Settings, settings as default_settings
from ..models import Channel, Direction

logger = logging.getLogger(__name__)

DEFAULT_LABELS = {
    Direction.ENTRY.value: "Vehicle {vehicle_id} entered {geofence_name}",
    Direction.EXIT.value: "Vehicle {vehicle_id} left {geofence_name}",
}


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: str | None = None


class Sender(Protocol):
    def supports(self, channel: str) -> bool:
        ...

    def send(self, channel: str, destination: str, subject: str | None, body: str) -> SendResult:
        ...


# Raised by str.format_map on malformed or unsupported placeholders.
_LABEL_ERRORS = (ValueError, IndexError, KeyError, AttributeError, TypeError)


class _TemplateValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _format_label(template: str, values: _TemplateValues) -> str:
    return template.format_map(values)


def label_template_error(template: str) -> str | None:
    """Return why a label template cannot be rendered, or None when it is usable."""
    sample = _TemplateValues(
        vehicle_id="V1",
        geofence_name="Zone",
        direction=Direction.ENTRY.value,
        occurred_at="",
        latitude=0.0,
        longitude=0.0,
    )
    try:
        _format_label(template, sample)
    except _LABEL_ERRORS as exc:
        return str(exc) or type(exc).__name__
    return None


def render_message(*, geofence: Any, event: Any) -> tuple[str, str]:
    """Build (subject, body) from the geofence's entry/exit labels.

    A label that cannot be formatted falls back to the default wording.
    """
    labels = geofence.entry_labels if event.direction == Direction.ENTRY.value else geofence.exit_labels
    template = (labels or [None])[0] or DEFAULT_LABELS[event.direction]
    values = _TemplateValues(
        vehicle_id=event.vehicle_id,
        geofence_name=geofence.name,
        direction=event.direction,
        occurred_at=event.occurred_at.isoformat() if event.occurred_at else "",
        latitude=event.latitude,
        longitude=event.longitude,
    )
    try:
        headline = _format_label(template, values)
    except _LABEL_ERRORS:
        logger.warning("Unusable label on geofence %s, using default wording", getattr(geofence, "id", None))
        headline = _format_label(DEFAULT_LABELS[event.direction], values)
    subject = f"[{geofence.name}] {headline}"[:255]
    body = (
        f"{headline}\n"
        f"Vehicle: {event.vehicle_id}\n"
        f"Geofence: {geofence.name}\n"
        f"Direction: {event.direction}\n"
        f"Time: {values['occurred_at']}\n"
        f"Location: {event.latitude:.6f}, {event.longitude:.6f}"
    )
    return subject, body


class HttpGatewaySender:
    """Posts notifications to per-channel HTTP gateways (mail relay, WhatsApp API bridge)."""

    def __init__(self, config: Settings | None = None, session: requests.Session | None = None):
        cfg = config or default_settings
        self._urls = {
            Channel.EMAIL.value: cfg.EMAIL_GATEWAY_URL,
            Channel.WHATSAPP.value: cfg.WHATSAPP_GATEWAY_URL,
        }
        self._token = cfg.NOTIFY_GATEWAY_TOKEN
        self._timeout = cfg.NOTIFY_HTTP_TIMEOUT_SECONDS
        self._http = session or requests.Session()

    def supports(self, channel: str) -> bool:
        return bool(self._urls.get(channel))

    def send(self, channel: str, destination: str, subject: str | None, body: str) -> SendResult:
        url = self._urls.get(channel)
        if not url:
            return SendResult(ok=False, error=f"NO_GATEWAY: {channel}")

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            response = self._http.post(
                url,
                json={"to": destination, "subject": subject, "body": body, "channel": channel},
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            return SendResult(ok=False, error=f"EXCEPTION: {exc}")

        if 200 <= response.status_code < 300:
            return SendResult(ok=True)
        if response.status_code == 429:
            return SendResult(ok=False, error=f"RATE_LIMIT: {response.text[:200]}")
        return SendResult(ok=False, error=f"HTTP_{response.status_code}: {response.text[:200]}")
