from __future__ import annotations

import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import T0, make_client, make_geofence
from fleetwatch.domain_errors import DomainError
from fleetwatch.models import Client, GeofenceEvent
from fleetwatch.services.event_dedupe import build_dedupe_key, truncate_to_window
from fleetwatch.use_cases.events import claim_next_event, ingest_event_use_case


def _ingest(db, geofence, *, vehicle_id="V1", direction="entry", occurred_at=T0, **kwargs):
    return ingest_event_use_case(
        db=db,
        vehicle_id=vehicle_id,
        geofence_id=geofence.id,
        direction=direction,
        latitude=19.43,
        longitude=-99.13,
        occurred_at=occurred_at,
        **kwargs,
    )


def test_truncate_to_window_floors_to_bucket_start() -> None:
    assert truncate_to_window(T0, 60) == T0.replace(second=0)
    assert truncate_to_window(T0.replace(tzinfo=None), 60) == T0.replace(second=0)


def test_dedupe_key_is_stable_within_window_and_differs_across() -> None:
    geofence_id = uuid4()
    base = dict(vehicle_id="V1", geofence_id=geofence_id, direction="entry", window_seconds=60)

    same_window = build_dedupe_key(occurred_at=T0, **base)
    assert same_window == build_dedupe_key(occurred_at=T0 + timedelta(seconds=20), **base)
    assert same_window != build_dedupe_key(occurred_at=T0 + timedelta(seconds=40), **base)
    assert same_window != build_dedupe_key(occurred_at=T0, **{**base, "direction": "exit"})
    assert len(same_window) == 64


def test_ingest_twice_in_window_stores_one_event(db) -> None:
    geofence = make_geofence(db, owner=make_client(db))

    first = _ingest(db, geofence)
    second = _ingest(db, geofence, occurred_at=T0 + timedelta(seconds=10))

    assert first.status == "accepted"
    assert second.status == "duplicate"
    assert second.event_id == first.event_id
    assert db.query(GeofenceEvent).count() == 1
    event = db.get(GeofenceEvent, first.event_id)
    assert event.processed is False


def test_duplicate_only_undoes_its_own_insert(db) -> None:
    geofence = make_geofence(db, owner=make_client(db))
    _ingest(db, geofence)

    db.add(Client(name="Pending in caller session"))
    duplicate = _ingest(db, geofence)

    assert duplicate.status == "duplicate"
    db.expire_all()
    assert db.query(Client).filter(Client.name == "Pending in caller session").count() == 1
    assert db.query(GeofenceEvent).count() == 1


def test_ingest_rejects_unknown_or_deleted_geofence(db) -> None:
    deleted = make_geofence(db, owner=make_client(db), state="deleted")

    with pytest.raises(DomainError) as exc_info:
        _ingest(db, deleted)
    assert exc_info.value.code == "GEOFENCE_NOT_FOUND"
    assert exc_info.value.http_status == 404

    with pytest.raises(DomainError):
        ingest_event_use_case(
            db=db,
            vehicle_id="V1",
            geofence_id=uuid4(),
            direction="entry",
            latitude=0.0,
            longitude=0.0,
            occurred_at=T0,
        )


def test_ingest_rejects_invalid_direction(db) -> None:
    geofence = make_geofence(db, owner=make_client(db))

    with pytest.raises(DomainError) as exc_info:
        _ingest(db, geofence, direction="sideways")

    assert exc_info.value.code == "EVENT_DIRECTION_INVALID"
    assert exc_info.value.http_status == 422
    assert db.query(GeofenceEvent).count() == 0


def test_concurrent_ingest_of_same_crossing_accepts_exactly_one(database, db) -> None:
    geofence = make_geofence(db, owner=make_client(db))
    barrier = threading.Barrier(6)
    statuses: list[str] = []
    lock = threading.Lock()

    def worker():
        session = database.session()
        try:
            barrier.wait()
            result = _ingest(session, geofence)
            with lock:
                statuses.append(result.status)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(statuses) == ["accepted"] + ["duplicate"] * 5
    assert db.query(GeofenceEvent).count() == 1


def test_claim_flips_oldest_unprocessed_event_once(db) -> None:
    geofence = make_geofence(db, owner=make_client(db))
    first = _ingest(db, geofence, vehicle_id="V1")
    second = _ingest(db, geofence, vehicle_id="V2")

    claimed = claim_next_event(db)
    db.commit()
    assert claimed.id == first.event_id
    assert claimed.processed is True
    assert claimed.processed_at is not None

    assert claim_next_event(db).id == second.event_id
    db.commit()
    assert claim_next_event(db) is None


def test_claim_is_reverted_when_transaction_rolls_back(db) -> None:
    geofence = make_geofence(db, owner=make_client(db))
    accepted = _ingest(db, geofence)

    assert claim_next_event(db).id == accepted.event_id
    db.rollback()

    db.expire_all()
    assert db.get(GeofenceEvent, accepted.event_id).processed is False
    assert claim_next_event(db).id == accepted.event_id
    db.commit()


def test_concurrent_claims_never_share_an_event(database, db) -> None:
    geofence = make_geofence(db, owner=make_client(db))
    for index in range(8):
        _ingest(db, geofence, vehicle_id=f"V{index}")

    claimed: list = []
    lock = threading.Lock()

    def worker():
        session = database.session()
        try:
            while True:
                event = claim_next_event(session)
                session.commit()
                if event is None:
                    return
                with lock:
                    claimed.append(event.id)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(claimed) == 8
    assert len(set(claimed)) == 8
