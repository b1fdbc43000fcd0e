from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from fleetwatch.auth import Caller, Role
from fleetwatch.database import build_database
from fleetwatch.models import (
    Client,
    Geofence,
    GeofenceAssignment,
    NotificationRecipient,
    User,
)
from fleetwatch.services.audit import AuditRecorder
from fleetwatch.services.senders import SendResult

T0 = datetime(2026, 3, 2, 8, 0, 30, tzinfo=timezone.utc)


class RecordingSender:
    """Sender double: records calls and answers from a per-destination script."""

    def __init__(self, *, channels=("email", "whatsapp"), outcomes=None, raise_for=()):
        self.channels = set(channels)
        self.outcomes = outcomes or {}
        self.raise_for = set(raise_for)
        self.calls: list[tuple[str, str, str | None, str]] = []

    def supports(self, channel: str) -> bool:
        return channel in self.channels

    def send(self, channel, destination, subject, body):
        self.calls.append((channel, destination, subject, body))
        if destination in self.raise_for:
            raise RuntimeError("gateway exploded")
        return self.outcomes.get(destination, SendResult(ok=True))


@pytest.fixture
def database(tmp_path):
    # File-backed so worker threads and the audit recorder can open their own connections.
    db_handle = build_database(f"sqlite:///{tmp_path / 'fleetwatch-test.db'}")
    db_handle.create_all()
    yield db_handle
    db_handle.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def audit(database):
    return AuditRecorder(database.SessionLocal)


def make_client(db, name="Tenant") -> Client:
    client = Client(name=name)
    db.add(client)
    db.commit()
    return client


def make_user(db, *, role: Role, client: Client | None = None, username: str | None = None) -> User:
    user = User(
        username=username or f"user-{uuid4().hex[:8]}",
        name="Test User",
        role=role.value,
        client_id=client.id if client else None,
    )
    db.add(user)
    db.commit()
    return user


def caller_for(user: User) -> Caller:
    return Caller.from_user(user)


def operator_caller() -> Caller:
    return Caller(user_id=None, name="ops", role=Role.OPERATOR)


def tenant_caller(client: Client) -> Caller:
    return Caller(user_id=None, name=f"tenant-{client.name}", role=Role.TENANT_USER, client_id=client.id)


def make_geofence(
    db,
    *,
    owner: Client | None = None,
    scope: str | None = None,
    assigned_to: Client | None = None,
    alert_mode: str = "entry_and_exit",
    name: str = "Zone",
    state: str = "active",
    entry_labels=None,
    exit_labels=None,
) -> Geofence:
    """Tenant geofence when owner is given, platform geofence otherwise."""
    geofence = Geofence(
        name=name,
        geometry={"type": "circle", "center": [-99.13, 19.43], "radius_m": 200},
        owner_kind="tenant" if owner else "platform",
        owner_client_id=owner.id if owner else None,
        alert_mode=alert_mode,
        entry_labels=entry_labels or [],
        exit_labels=exit_labels or [],
        state=state,
    )
    db.add(geofence)
    db.flush()
    if scope == "global":
        db.add(GeofenceAssignment(geofence_id=geofence.id, scope="global"))
    if assigned_to is not None:
        db.add(GeofenceAssignment(geofence_id=geofence.id, scope="client", client_id=assigned_to.id))
    db.commit()
    return geofence


def make_recipient(
    db,
    *,
    client: Client,
    channels=("email",),
    alert_types=("entry",),
    email: str | None = "alerts@example.com",
    whatsapp: str | None = None,
    geofence_ids=None,
    vehicle_ids=None,
    is_active: bool = True,
) -> NotificationRecipient:
    recipient = NotificationRecipient(
        client_id=client.id,
        email=email,
        whatsapp=whatsapp,
        channels=list(channels),
        alert_types=list(alert_types),
        geofence_ids=geofence_ids,
        vehicle_ids=vehicle_ids,
        is_active=is_active,
    )
    db.add(recipient)
    db.commit()
    return recipient
