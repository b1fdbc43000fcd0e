from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from conftest import RecordingSender, make_client, make_user
from fleetwatch.auth import Role, create_access_token
from fleetwatch.config import settings
from fleetwatch.main import create_app
from fleetwatch.routers.deps import get_request_meta
from fleetwatch.services.audit import AuditRecorder
from fleetwatch.services.worker_pool import DeliveryWorkerPool
from fleetwatch.use_cases.dispatch import Dispatcher

CIRCLE = {"type": "circle", "center": [-99.13, 19.43], "radius_m": 150}


def _auth(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def api(database, db):
    dispatcher = Dispatcher(
        database=database,
        sender=RecordingSender(),
        pool=DeliveryWorkerPool(max_workers=1, max_queue=10),
        audit=AuditRecorder(database.SessionLocal),
    )
    t1 = make_client(db, "T1")
    t2 = make_client(db, "T2")
    users = {
        "operator": make_user(db, role=Role.OPERATOR, username="operator"),
        "t1": make_user(db, role=Role.TENANT_USER, client=t1, username="t1-user"),
        "t2": make_user(db, role=Role.TENANT_USER, client=t2, username="t2-user"),
    }
    app = create_app(database=database, dispatcher=dispatcher)
    with TestClient(app) as client:
        yield client, dispatcher, {"t1": t1, "t2": t2}, users
    dispatcher.shutdown(wait=True)


def test_requests_without_token_are_rejected(api) -> None:
    client, _, _, _ = api

    assert client.get("/api/v1/geofences").status_code in (401, 403)


def test_geofence_visibility_and_ownership_over_http(api) -> None:
    client, _, clients, users = api

    created = client.post("/api/v1/geofences", json={"name": "Customs", "geometry": CIRCLE}, headers=_auth(users["operator"]))
    assert created.status_code == 201
    platform = created.json()
    assert platform["owner_kind"] == "platform"
    assert [assignment["scope"] for assignment in platform["assignments"]] == ["global"]

    own = client.post("/api/v1/geofences", json={"name": "Depot", "geometry": CIRCLE}, headers=_auth(users["t1"]))
    assert own.status_code == 201
    assert own.json()["owner_client_id"] == str(clients["t1"].id)

    shared = client.get("/api/v1/geofences", params={"filter": "shared"}, headers=_auth(users["t1"])).json()
    assert [(row["name"], row["permission"]) for row in shared] == [("Customs", "readonly")]

    everything = client.get("/api/v1/geofences", params={"filter": "all"}, headers=_auth(users["t1"])).json()
    assert {row["name"]: row["permission"] for row in everything} == {"Customs": "readonly", "Depot": "editable"}

    other = client.get("/api/v1/geofences", params={"filter": "all"}, headers=_auth(users["t2"])).json()
    assert [row["name"] for row in other] == ["Customs"]

    forbidden = client.put(
        f"/api/v1/geofences/{platform['id']}",
        json={"name": "Mine now"},
        headers=_auth(users["t1"]),
    )
    assert forbidden.status_code == 403
    assert forbidden.headers["content-type"].startswith("application/problem+json")
    assert forbidden.json()["code"] == "GEOFENCE_NOT_OWNED"

    deleted = client.delete(f"/api/v1/geofences/{own.json()['id']}", headers=_auth(users["t1"]))
    assert deleted.status_code == 204
    missing = client.get(f"/api/v1/geofences/{own.json()['id']}", headers=_auth(users["t1"]))
    assert missing.status_code == 404
    assert missing.json()["code"] == "GEOFENCE_NOT_FOUND"


def test_invalid_filter_is_problem_details(api) -> None:
    client, _, _, users = api

    response = client.get("/api/v1/geofences", params={"filter": "mine"}, headers=_auth(users["t1"]))

    assert response.status_code == 422
    assert response.json()["code"] == "GEOFENCE_FILTER_INVALID"


def test_assignment_endpoints_are_operator_only(api) -> None:
    client, _, clients, users = api
    created = client.post(
        "/api/v1/geofences",
        json={"name": "Port", "geometry": CIRCLE, "client_id": str(clients["t1"].id)},
        headers=_auth(users["operator"]),
    ).json()
    url = f"/api/v1/geofences/{created['id']}/assignments"

    assert client.post(url, json={"scope": "global"}, headers=_auth(users["t1"])).status_code == 403

    assigned = client.post(url, json={"scope": "global"}, headers=_auth(users["operator"]))
    assert assigned.status_code == 200
    assert {row["scope"] for row in assigned.json()["assignments"]} == {"global", "client"}

    removed = client.delete(
        url,
        params={"scope": "client", "client_id": str(clients["t1"].id)},
        headers=_auth(users["operator"]),
    )
    assert removed.status_code == 200
    assert [row["scope"] for row in removed.json()["assignments"]] == ["global"]


def test_detector_webhook_ingest_dispatch_and_delivery_listing(api) -> None:
    client, dispatcher, clients, users = api
    geofence = client.post("/api/v1/geofences", json={"name": "Depot", "geometry": CIRCLE}, headers=_auth(users["t1"])).json()
    recipient = client.post(
        f"/api/v1/clients/{clients['t1'].id}/recipients",
        json={"email": "ops@t1.example", "channels": ["email"], "alert_types": ["entry"]},
        headers=_auth(users["t1"]),
    )
    assert recipient.status_code == 201

    crossing = {
        "vehicleId": "V1",
        "geofenceId": geofence["id"],
        "direction": "entry",
        "lat": 19.43,
        "lng": -99.13,
        "occurredAt": "2026-03-02T08:00:30Z",
    }
    assert client.post("/api/v1/geofence-events", json=crossing).status_code == 401
    wrong = client.post("/api/v1/geofence-events", json=crossing, headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 403

    detector = {"Authorization": f"Bearer {settings.DETECTOR_SHARED_SECRET}"}
    first = client.post("/api/v1/geofence-events", json=crossing, headers=detector)
    assert first.status_code == 200
    assert first.json()["accepted"] == 1
    event_id = first.json()["results"][0]["event_id"]

    repeat = client.post("/api/v1/geofence-events", json=[crossing, crossing], headers=detector).json()
    assert repeat["accepted"] == 0
    assert repeat["duplicates"] == 2
    assert {row["event_id"] for row in repeat["results"]} == {event_id}

    dispatcher.drain()
    dispatcher.shutdown(wait=True)

    assert client.get(f"/api/v1/geofence-events/{event_id}/deliveries", headers=_auth(users["t1"])).status_code == 403
    deliveries = client.get(f"/api/v1/geofence-events/{event_id}/deliveries", headers=_auth(users["operator"])).json()
    assert [(row["destination"], row["status"]) for row in deliveries] == [("ops@t1.example", "sent")]


def test_recipient_validation_and_tenant_scoping_over_http(api) -> None:
    client, _, clients, users = api

    invalid = client.post(
        f"/api/v1/clients/{clients['t1'].id}/recipients",
        json={"channels": ["email"], "alert_types": ["entry"]},
        headers=_auth(users["t1"]),
    )
    assert invalid.status_code == 422
    assert invalid.json()["code"] == "RECIPIENT_EMAIL_REQUIRED"

    other_client = client.get(f"/api/v1/clients/{clients['t2'].id}/recipients", headers=_auth(users["t1"]))
    assert other_client.status_code == 403
    assert other_client.json()["code"] == "CLIENT_ACCESS_DENIED"


def test_audit_endpoints(api) -> None:
    client, _, _, users = api
    client.post("/api/v1/geofences", json={"name": "Customs", "geometry": CIRCLE}, headers=_auth(users["operator"]))

    assert client.get("/api/v1/audit", headers=_auth(users["t1"])).status_code == 403

    entries = client.get("/api/v1/audit", params={"action": "create_geofence"}, headers=_auth(users["operator"])).json()
    assert [entry["actor_name"] for entry in entries] == ["operator"]
    assert entries[0]["ip_address"] == "testclient"

    stats = client.get("/api/v1/audit/stats", headers=_auth(users["operator"])).json()
    assert stats["total"] == 1
    assert stats["by_actor"] == {"operator (operator)": 1}

    actions = client.get("/api/v1/audit/actions", headers=_auth(users["operator"])).json()
    assert "create_geofence" in actions["geofences"]


def test_health_reports_database_status(api) -> None:
    client, _, _, _ = api

    response = client.get("/api/v1/system/health")

    assert response.status_code == 200
    assert response.json()["database"] == "ok"


def test_forwarded_for_is_ignored_unless_proxy_headers_are_trusted(api) -> None:
    client, _, _, users = api
    headers = {**_auth(users["operator"]), "X-Forwarded-For": "6.6.6.6"}

    client.post("/api/v1/geofences", json={"name": "Customs", "geometry": CIRCLE}, headers=headers)

    entries = client.get("/api/v1/audit", params={"action": "create_geofence"}, headers=_auth(users["operator"])).json()
    assert [entry["ip_address"] for entry in entries] == ["testclient"]


@pytest.mark.parametrize(
    ("trusted", "headers", "expected"),
    [
        (False, {"x-forwarded-for": "6.6.6.6"}, "10.0.0.1"),
        (True, {"x-forwarded-for": "6.6.6.6, 10.0.0.9"}, "6.6.6.6"),
        (True, {"x-real-ip": "7.7.7.7", "x-forwarded-for": "6.6.6.6"}, "7.7.7.7"),
        (True, {"x-forwarded-for": "not-an-ip"}, "10.0.0.1"),
    ],
)
def test_request_meta_client_ip(monkeypatch, trusted, headers, expected) -> None:
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", trusted)
    request = SimpleNamespace(headers={**headers, "user-agent": "pytest"}, client=SimpleNamespace(host="10.0.0.1"))

    meta = get_request_meta(request)

    assert meta.ip_address == expected
    assert meta.user_agent == "pytest"
