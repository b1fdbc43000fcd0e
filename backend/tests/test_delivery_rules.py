from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import requests

from fleetwatch.config import Settings
from fleetwatch.domain_errors import DomainError
from fleetwatch.services.delivery_state import is_terminal, terminal_updates, validate_delivery_transition
from fleetwatch.services.recipient_rules import normalize_allow_list, normalize_values, validate_recipient_config
from fleetwatch.services.senders import HttpGatewaySender, label_template_error, render_message


class _ResponseStub:
    def __init__(self, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text


class _HttpStub:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.requests: list[dict] = []

    def post(self, url, **kwargs):
        self.requests.append({"url": url, **kwargs})
        if self.error:
            raise self.error
        return self.response


def _sender(http, **config):
    cfg = Settings(EMAIL_GATEWAY_URL="https://mail.example/send", NOTIFY_GATEWAY_TOKEN="tkn", **config)
    return HttpGatewaySender(cfg, session=http)


@pytest.mark.parametrize("current", ["sent", "failed", "skipped"])
@pytest.mark.parametrize("target", ["pending", "sent", "failed", "skipped"])
def test_terminal_statuses_never_transition(current, target) -> None:
    assert is_terminal(current)
    with pytest.raises(ValueError):
        validate_delivery_transition(current_status=current, next_status=target)


def test_terminal_updates_for_sent_and_failed() -> None:
    at = datetime(2026, 3, 2, tzinfo=timezone.utc)

    assert terminal_updates(next_status="sent", at=at) == {
        "status": "sent",
        "updated_at": at,
        "sent_at": at,
        "error_message": None,
    }
    assert terminal_updates(next_status="failed", error="HTTP_500: x", at=at)["error_message"] == "HTTP_500: x"
    with pytest.raises(ValueError):
        terminal_updates(next_status="pending")


def test_normalize_values_dedupes_and_keeps_order() -> None:
    assert normalize_values(["email", " email ", "whatsapp", ""]) == ["email", "whatsapp"]
    assert normalize_allow_list(None) is None
    assert normalize_allow_list([]) == []


@pytest.mark.parametrize(
    ("kwargs", "code"),
    [
        ({"channels": [], "alert_types": ["entry"]}, "RECIPIENT_CHANNEL_REQUIRED"),
        ({"channels": ["sms"], "alert_types": ["entry"]}, "RECIPIENT_CHANNEL_INVALID"),
        ({"channels": ["email"], "alert_types": []}, "RECIPIENT_ALERT_TYPE_REQUIRED"),
        ({"channels": ["email"], "alert_types": ["loiter"]}, "RECIPIENT_ALERT_TYPE_INVALID"),
        ({"channels": ["email"], "alert_types": ["entry"], "email": "  "}, "RECIPIENT_EMAIL_REQUIRED"),
        ({"channels": ["whatsapp"], "alert_types": ["exit"]}, "RECIPIENT_WHATSAPP_REQUIRED"),
    ],
)
def test_recipient_config_validation(kwargs, code) -> None:
    payload = {"email": None, "whatsapp": None, **kwargs}

    with pytest.raises(DomainError) as exc_info:
        validate_recipient_config(**payload)

    assert exc_info.value.code == code
    assert exc_info.value.http_status == 422


def test_render_message_uses_labels_and_falls_back_to_defaults() -> None:
    event = SimpleNamespace(
        vehicle_id="V7",
        direction="exit",
        occurred_at=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc),
        latitude=19.5,
        longitude=-99.25,
    )
    labelled = SimpleNamespace(name="Depot", entry_labels=[], exit_labels=["{vehicle_id} left at {occurred_at} {unknown}"])
    plain = SimpleNamespace(name="Depot", entry_labels=[], exit_labels=[])

    subject, body = render_message(geofence=labelled, event=event)
    assert subject == "[Depot] V7 left at 2026-03-02T08:00:00+00:00 {unknown}"
    assert "Location: 19.500000, -99.250000" in body

    subject, _ = render_message(geofence=plain, event=event)
    assert subject == "[Depot] Vehicle V7 left Depot"


def test_http_gateway_sender_posts_json_with_bearer_token() -> None:
    http = _HttpStub(_ResponseStub(202))
    sender = _sender(http)

    result = sender.send("email", "a@example.com", "Subject", "Body")

    assert result.ok is True
    [request] = http.requests
    assert request["url"] == "https://mail.example/send"
    assert request["json"] == {"to": "a@example.com", "subject": "Subject", "body": "Body", "channel": "email"}
    assert request["headers"]["Authorization"] == "Bearer tkn"


@pytest.mark.parametrize(
    ("response", "error", "expected"),
    [
        (_ResponseStub(429, "slow down"), None, "RATE_LIMIT: slow down"),
        (_ResponseStub(500, "oops"), None, "HTTP_500: oops"),
        (None, requests.ConnectionError("refused"), "EXCEPTION: refused"),
    ],
)
def test_http_gateway_sender_reports_errors_verbatim(response, error, expected) -> None:
    sender = _sender(_HttpStub(response, error))

    result = sender.send("email", "a@example.com", None, "Body")

    assert result.ok is False
    assert result.error == expected


def test_http_gateway_sender_without_channel_url() -> None:
    sender = _sender(_HttpStub(_ResponseStub(200)))

    assert sender.supports("email") is True
    assert sender.supports("whatsapp") is False
    assert sender.send("whatsapp", "+5215550001", None, "Body").error == "NO_GATEWAY: whatsapp"


def test_render_message_falls_back_when_label_cannot_be_formatted() -> None:
    event = SimpleNamespace(
        vehicle_id="V7",
        direction="entry",
        occurred_at=None,
        latitude=19.5,
        longitude=-99.25,
    )
    broken = SimpleNamespace(id="g-1", name="Depot", entry_labels=["Entered {zone"], exit_labels=[])

    subject, body = render_message(geofence=broken, event=event)

    assert subject == "[Depot] Vehicle V7 entered Depot"
    assert body.startswith("Vehicle V7 entered Depot\n")
    assert label_template_error("Entered {zone") is not None
    assert label_template_error("{vehicle_id} at {latitude:.3f}") is None
