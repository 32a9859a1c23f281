from datetime import datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from database import JobStore, MemoryJobStore, open_store
from config import Settings
from errors import ValidationError
from models import JobStatus

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["sqlite", "memory"])
def any_store(request, tmp_path):
    if request.param == "sqlite":
        return JobStore(str(tmp_path / "jobs.db"))
    return MemoryJobStore()


def test_enqueue_creates_queued_job(any_store):
    job = any_store.enqueue("acme", "https://cdn/x.jpg", NOW, caption="hello")

    stored = any_store.get(job.id)
    assert stored.status == JobStatus.QUEUED
    assert stored.attempts == 0
    assert stored.caption == "hello"
    assert stored.scheduled_at == NOW


def test_enqueue_rejects_invalid_requests(any_store):
    with pytest.raises(ValidationError):
        any_store.enqueue("acme", None, NOW)
    with pytest.raises(ValidationError):
        any_store.enqueue("", "https://cdn/x.jpg", NOW)
    with pytest.raises(ValidationError):
        any_store.enqueue("acme", "https://cdn/x.jpg", "someday")
    assert any_store.list_jobs() == []


def test_list_due_orders_by_schedule_and_respects_limit(any_store):
    later = any_store.enqueue("acme", "https://cdn/2.jpg", NOW - timedelta(minutes=5))
    earliest = any_store.enqueue("acme", "https://cdn/1.jpg", NOW - timedelta(hours=2))
    middle = any_store.enqueue("acme", "https://cdn/3.jpg", NOW - timedelta(minutes=30))
    any_store.enqueue("acme", "https://cdn/future.jpg", NOW + timedelta(minutes=1))

    due = any_store.list_due(NOW, limit=10)
    assert [j.id for j in due] == [earliest.id, middle.id, later.id]

    capped = any_store.list_due(NOW, limit=2)
    assert [j.id for j in capped] == [earliest.id, middle.id]
    assert any_store.list_due(NOW, limit=0) == []


def test_list_due_includes_exact_boundary(any_store):
    job = any_store.enqueue("acme", "https://cdn/x.jpg", NOW)
    assert [j.id for j in any_store.list_due(NOW, 5)] == [job.id]
    assert any_store.list_due(NOW - timedelta(microseconds=1), 5) == []


def test_list_due_skips_non_queued(any_store):
    job = any_store.enqueue("acme", "https://cdn/x.jpg", NOW - timedelta(hours=1))
    job.status = JobStatus.FAILED
    any_store.update(job)
    assert any_store.list_due(NOW, 10) == []


def test_list_due_is_a_pure_read(any_store):
    for i in range(3):
        any_store.enqueue("acme", f"https://cdn/{i}.jpg", NOW - timedelta(minutes=i))
    first = any_store.list_due(NOW, 10)
    second = any_store.list_due(NOW, 10)
    assert [j.id for j in first] == [j.id for j in second]
    assert all(j.status == JobStatus.QUEUED for j in any_store.list_jobs())


def test_update_persists_full_state(any_store):
    job = any_store.enqueue("acme", "https://cdn/x.jpg", NOW)
    job.status = JobStatus.DONE
    job.attempts = 2
    job.external_media_id = "m1"
    job.last_error = None
    any_store.update(job)

    stored = any_store.get(job.id)
    assert stored.status == JobStatus.DONE
    assert stored.attempts == 2
    assert stored.external_media_id == "m1"


def test_update_unknown_job_raises(any_store):
    job = any_store.enqueue("acme", "https://cdn/x.jpg", NOW)
    other = job.model_copy(update={"id": "missing"})
    with pytest.raises(ValueError):
        any_store.update(other)


def test_memory_store_hands_out_copies(memory_store):
    job = memory_store.enqueue("acme", "https://cdn/x.jpg", NOW)
    job.status = JobStatus.DONE
    # not persisted until update()
    assert memory_store.get(job.id).status == JobStatus.QUEUED


def test_list_jobs_filters(any_store):
    a = any_store.enqueue("acme", "https://cdn/a.jpg", NOW)
    b = any_store.enqueue("novara", "https://cdn/b.jpg", NOW)
    b.status = JobStatus.FAILED
    any_store.update(b)

    assert {j.id for j in any_store.list_jobs()} == {a.id, b.id}
    assert [j.id for j in any_store.list_jobs(status="failed")] == [b.id]
    assert [j.id for j in any_store.list_jobs(account="acme")] == [a.id]
    with pytest.raises(ValueError):
        any_store.list_jobs(status="bogus")


def test_activity_log_newest_first(any_store):
    any_store.log_activity("j1", "acme", "publish", "running", "starting")
    any_store.log_activity("j1", "acme", "publish", "error", "boom", {"payload": {"code": 1}})
    any_store.log_activity("j2", "acme", "publish", "success", "ok")

    rows = any_store.recent_activity()
    assert [r["message"] for r in rows] == ["ok", "boom", "starting"]
    j1 = any_store.recent_activity("j1", limit=1)
    assert len(j1) == 1
    assert j1[0]["details"] == {"payload": {"code": 1}}


def test_sqlite_store_survives_reopen(tmp_path):
    path = str(tmp_path / "jobs.db")
    job = JobStore(path).enqueue("acme", "https://cdn/x.jpg", NOW)
    assert JobStore(path).get(job.id).media_url == "https://cdn/x.jpg"


@freeze_time("2024-05-01 12:00:00")
def test_naive_when_uses_store_timezone(tmp_path):
    store = JobStore(str(tmp_path / "jobs.db"), default_tz="Asia/Kolkata")
    job = store.enqueue("acme", "https://cdn/x.jpg", "2024-05-01T17:30")
    assert job.scheduled_at == NOW
    assert job.created_at == NOW


def test_open_store_picks_backend(tmp_path):
    assert isinstance(open_store(Settings(database_path=":memory:")), MemoryJobStore)
    assert isinstance(open_store(Settings(database_path=str(tmp_path / "x.db"))), JobStore)


def test_open_store_uses_default_timezone(tmp_path):
    sqlite_store = open_store(Settings(database_path=str(tmp_path / "x.db"), default_timezone="Asia/Kolkata"))
    memory_store = open_store(Settings(database_path=":memory:", default_timezone="Asia/Kolkata"))

    for store in (sqlite_store, memory_store):
        job = store.enqueue("acme", "https://cdn/x.jpg", "2024-05-01T17:30")
        assert job.scheduled_at == NOW
