import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from push_scheduler.errors import AuthError, InternalError, NotFoundError, ValidationError
from push_scheduler.scheduler.models import parse_timestamp
from push_scheduler.scheduler.repo import ScheduleStore
from push_scheduler.scheduler.service import ScheduleService

from conftest import U1_P1, U1_P2, U2_P1


def _create(service, credential=U1_P1, **overrides):
    values = dict(name="Morning", push_token="device-token", cron_pattern="0 9 * * *", payload={"title": "hi"})
    values.update(overrides)
    return service.create_schedule(credential, **values)


def _update(service, schedule_id, credential=U1_P1, **overrides):
    values = dict(name="Hourly", push_token="device-token", cron_pattern="0 * * * *", payload={"title": "hey"})
    values.update(overrides)
    return service.update_schedule(credential, schedule_id, **values)


def test_create_stamps_owner_and_times(service, clock):
    record = _create(service)

    assert record["owner_user_id"] == "U1"
    assert record["owner_audience"] == "P1"
    assert parse_timestamp(record["created_at"]) == clock.now
    assert parse_timestamp(record["last_execution"]) == clock.now
    assert parse_timestamp(record["next_execution"]) == datetime(2024, 5, 1, 9, 0)


def test_create_ignores_owner_like_payload_keys(service):
    record = _create(service, payload={"owner_user_id": "U9", "owner_audience": "P9"})

    assert record["owner_user_id"] == "U1"
    assert record["owner_audience"] == "P1"
    assert record["payload"] == {"owner_user_id": "U9", "owner_audience": "P9"}


@pytest.mark.parametrize("payload", [[], None, "string", 42, 1.5, True])
def test_non_object_payload_rejected(service, payload):
    with pytest.raises(ValidationError):
        _create(service, payload=payload)
    assert service.list_schedules(U1_P1) == []


@pytest.mark.parametrize("payload", [{}, {"k": 1}, {"nested": {"a": [1, 2]}}])
def test_object_payload_accepted(service, payload):
    assert _create(service, payload=payload)["payload"] == payload


@pytest.mark.parametrize("pattern", ["", "61 * * * *", "0 0 31 2 *"])
def test_invalid_pattern_rejected_without_write(service, pattern):
    with pytest.raises(ValidationError):
        _create(service, cron_pattern=pattern)
    assert service.list_schedules(U1_P1) == []


def test_unauthenticated_requests_fail_fast(service):
    with pytest.raises(AuthError):
        _create(service, credential=None)
    with pytest.raises(AuthError):
        service.list_schedules("Bearer nobody")
    with pytest.raises(AuthError):
        service.delete_schedule("Basic abc", 1)
    assert service.list_schedules(U1_P1) == []


def test_list_is_scoped_to_identity(service):
    own = _create(service)
    _create(service, credential=U2_P1)
    _create(service, credential=U1_P2)

    assert [r["id"] for r in service.list_schedules(U1_P1)] == [own["id"]]


def test_update_recomputes_next_execution(service, clock):
    record = _create(service)
    clock.advance(minutes=100)

    updated = _update(service, record["id"])

    assert updated["id"] == record["id"]
    assert updated["owner_user_id"] == "U1"
    assert updated["owner_audience"] == "P1"
    assert updated["created_at"] == record["created_at"]
    assert parse_timestamp(updated["updated_at"]) == clock.now
    assert parse_timestamp(updated["next_execution"]) == datetime(2024, 5, 1, 11, 0)
    assert updated["cron_pattern"] == "0 * * * *"


def test_update_validates_payload_and_pattern(service):
    record = _create(service)

    with pytest.raises(ValidationError):
        _update(service, record["id"], payload=["x"])
    with pytest.raises(ValidationError):
        _update(service, record["id"], cron_pattern="nope")

    assert service.list_schedules(U1_P1) == [record]


def test_foreign_schedule_looks_like_missing_one(service):
    record = _create(service)

    with pytest.raises(NotFoundError) as missing:
        _update(service, 999_999)
    for credential in (U2_P1, U1_P2):
        with pytest.raises(NotFoundError) as foreign_update:
            _update(service, record["id"], credential=credential)
        with pytest.raises(NotFoundError) as foreign_delete:
            service.delete_schedule(credential, record["id"])
        assert str(foreign_update.value) == str(missing.value)
        assert str(foreign_delete.value) == str(missing.value)

    assert service.list_schedules(U1_P1) == [record]


def test_delete_returns_snapshot_then_not_found(service):
    record = _create(service)

    assert service.delete_schedule(U1_P1, record["id"]) == record
    with pytest.raises(NotFoundError):
        service.delete_schedule(U1_P1, record["id"])
    assert service.list_schedules(U1_P1) == []


class _RaceStore(ScheduleStore):
    """Lookup sees the row, but it vanishes before the conditional write."""

    def update_owned(self, *args, **kwargs):
        return None

    def delete_owned(self, *args, **kwargs):
        return None


def test_lost_race_reports_not_found(database_url, verifier, clock):
    store = _RaceStore(database_url)
    store.init_db()
    service = ScheduleService(store, verifier, clock=clock)
    record = _create(service)

    with pytest.raises(NotFoundError):
        _update(service, record["id"])
    with pytest.raises(NotFoundError):
        service.delete_schedule(U1_P1, record["id"])


class _InterleavedUpdateStore(ScheduleStore):
    """Another caller's update commits after the lookup but before the delete."""

    service = None

    def delete_owned(self, schedule_id, *args, **kwargs):
        _update(self.service, schedule_id, name="changed", payload={"v": 2})
        return super().delete_owned(schedule_id, *args, **kwargs)


def test_delete_returns_what_was_removed(database_url, verifier, clock):
    store = _InterleavedUpdateStore(database_url)
    store.init_db()
    service = ScheduleService(store, verifier, clock=clock)
    store.service = service
    record = _create(service, name="orig", payload={"v": 1})

    removed = service.delete_schedule(U1_P1, record["id"])

    assert removed["name"] == "changed"
    assert removed["payload"] == {"v": 2}
    assert service.list_schedules(U1_P1) == []


class _BrokenStore(ScheduleStore):
    def list_for_owner(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is unavailable"))

    def insert(self, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is unavailable"))


def test_store_failures_become_internal_errors(database_url, verifier, clock):
    service = ScheduleService(_BrokenStore(database_url), verifier, clock=clock)

    with pytest.raises(InternalError):
        service.list_schedules(U1_P1)
    with pytest.raises(InternalError):
        _create(service)


def test_concurrent_deletes_exactly_one_wins(service):
    record = _create(service)
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            result = service.delete_schedule(U1_P1, record["id"])
            outcome = ("ok", result)
        except NotFoundError as exc:
            outcome = ("not_found", exc)
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    kinds = sorted(kind for kind, _ in outcomes)
    assert kinds == ["not_found", "ok"]
    winner = next(value for kind, value in outcomes if kind == "ok")
    assert winner == record


def test_concurrent_updates_all_succeed_and_last_write_wins(service):
    record = _create(service)
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def worker(n):
        barrier.wait()
        try:
            result = _update(service, record["id"], name=f"writer-{n}", payload={"writer": n})
            outcome = ("ok", result)
        except Exception as exc:
            outcome = ("error", exc)
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len(outcomes) == workers
    assert all(kind == "ok" for kind, _ in outcomes), outcomes

    (stored,) = service.list_schedules(U1_P1)
    submitted = {(f"writer-{n}", n) for n in range(workers)}
    assert (stored["name"], stored["payload"]["writer"]) in submitted


def test_long_cron_pattern_is_stored(service):
    pattern = ",".join(str(m) for m in range(60)) + " * * * *"

    record = _create(service, cron_pattern=pattern)

    assert record["cron_pattern"] == pattern
    assert service.list_schedules(U1_P1)[0]["cron_pattern"] == pattern


def test_end_to_end_daily_then_hourly(service, clock):
    created = _create(service, cron_pattern="0 9 * * *", payload={"title": "hi"})

    listed = service.list_schedules(U1_P1)
    assert len(listed) == 1
    assert parse_timestamp(listed[0]["next_execution"]) == datetime(2024, 5, 1, 9, 0)
    assert service.list_schedules(U2_P1) == []

    clock.advance(hours=3, minutes=7)
    updated = _update(service, created["id"], cron_pattern="0 * * * *")
    gap = parse_timestamp(updated["next_execution"]) - parse_timestamp(updated["updated_at"])
    assert timedelta(0) < gap <= timedelta(hours=1)
    assert updated["next_execution"] != created["next_execution"]

    assert service.delete_schedule(U1_P1, created["id"])["id"] == created["id"]
    assert service.list_schedules(U1_P1) == []
