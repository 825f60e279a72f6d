"""Tests for the notification ledger and the new-job watcher."""

import asyncio
import json
import sqlite3
from collections.abc import Iterator

import pytest

from jobstream.backends.memory import MemoryBackend
from jobstream.core.store import get_blob, init_store, put_raw
from jobstream.pipeline.notifications import NewJobWatcher, NotificationLedger, storage_key

USER = "user-1"


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    c = init_store(":memory:")
    yield c
    c.close()


def _ledger(conn: sqlite3.Connection | None, cap: int = 50) -> NotificationLedger:
    ledger = NotificationLedger(conn, USER, cap=cap)
    ledger.load()
    return ledger


def _row(job_id: str, **overrides: object) -> dict:
    row = {
        "id": job_id,
        "title": f"Job {job_id}",
        "company_name": "Acme",
        "posted_at": "2026-10-19T10:00:00+00:00",
        "is_active": True,
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# NotificationLedger
# ---------------------------------------------------------------------------


class TestLedgerAdd:
    def test_prepends_and_counts(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        ledger.add(job_id="1", message="a")
        ledger.add(job_id="2", message="b")
        assert [n.job_id for n in ledger.notifications] == ["2", "1"]
        assert ledger.unread_count == 2

    def test_duplicate_job_ignored(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        assert ledger.add(job_id="1") is not None
        assert ledger.add(job_id="1") is None
        assert len(ledger.notifications) == 1
        assert ledger.unread_count == 1

    def test_without_job_id_never_deduplicated(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        ledger.add(message="system")
        ledger.add(message="system")
        assert len(ledger.notifications) == 2

    def test_ids_unique(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        for i in range(20):
            ledger.add(job_id=str(i))
        ids = [n.id for n in ledger.notifications]
        assert len(set(ids)) == len(ids)

    def test_cap_keeps_newest(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn, cap=3)
        for i in range(5):
            ledger.add(job_id=str(i))
        assert [n.job_id for n in ledger.notifications] == ["4", "3", "2"]
        assert ledger.unread_count == 5

    def test_default_cap_is_fifty(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        for i in range(60):
            ledger.add(job_id=str(i))
        assert len(ledger.notifications) == 50


class TestLedgerReadState:
    def test_mark_as_read(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        n = ledger.add(job_id="1")
        ledger.add(job_id="2")
        assert n is not None
        ledger.mark_as_read(n.id)
        assert ledger.unread_count == 1

    def test_mark_as_read_twice_decrements_once(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        n = ledger.add(job_id="1")
        ledger.add(job_id="2")
        assert n is not None
        ledger.mark_as_read(n.id)
        ledger.mark_as_read(n.id)
        assert ledger.unread_count == 1

    def test_mark_unknown_is_noop(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        ledger.add(job_id="1")
        ledger.mark_as_read("missing")
        assert ledger.unread_count == 1

    def test_mark_all_as_read(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        ledger.add(job_id="1")
        ledger.add(job_id="2")
        ledger.mark_all_as_read()
        assert ledger.unread_count == 0
        assert all(n.read for n in ledger.notifications)

    def test_remove_unread_decrements(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        n = ledger.add(job_id="1")
        assert n is not None
        ledger.remove(n.id)
        assert ledger.notifications == []
        assert ledger.unread_count == 0

    def test_remove_read_keeps_count(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        first = ledger.add(job_id="1")
        ledger.add(job_id="2")
        assert first is not None
        ledger.mark_as_read(first.id)
        ledger.remove(first.id)
        assert ledger.unread_count == 1

    def test_clear_all_keeps_dedup(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        ledger.add(job_id="1")
        ledger.clear_all()
        assert ledger.notifications == []
        assert ledger.unread_count == 0
        assert ledger.add(job_id="1") is None


class TestLedgerPersistence:
    def test_round_trip(self, conn: sqlite3.Connection) -> None:
        ledger = _ledger(conn)
        ledger.add(job_id="1", job_title="Data Engineer", company="Acme")
        ledger.add(job_id="2")

        restored = _ledger(conn)

        assert [n.job_id for n in restored.notifications] == ["2", "1"]
        assert restored.unread_count == 2
        assert restored.notifications[1].job_title == "Data Engineer"

    def test_rehydrated_jobs_are_deduplicated(self, conn: sqlite3.Connection) -> None:
        _ledger(conn).add(job_id="1")
        restored = _ledger(conn)
        assert restored.has_processed("1")
        assert restored.add(job_id="1") is None

    def test_per_user_keys(self, conn: sqlite3.Connection) -> None:
        _ledger(conn).add(job_id="1")
        other = NotificationLedger(conn, "user-2")
        other.load()
        assert other.notifications == []

    def test_no_writes_before_load(self, conn: sqlite3.Connection) -> None:
        ledger = NotificationLedger(conn, USER)
        assert ledger.is_loading is True
        ledger.add(job_id="1")
        assert get_blob(conn, storage_key(USER)) is None

    def test_corrupt_blob_ignored(self, conn: sqlite3.Connection) -> None:
        put_raw(conn, storage_key(USER), "{not json")
        ledger = _ledger(conn)
        assert ledger.notifications == []
        assert ledger.is_loading is False

    def test_invalid_shape_ignored(self, conn: sqlite3.Connection) -> None:
        put_raw(conn, storage_key(USER), json.dumps({"version": 1, "data": [1, 2, 3]}))
        assert _ledger(conn).notifications == []

    def test_legacy_camel_case_migrated(self, conn: sqlite3.Connection) -> None:
        legacy = {
            "notifications": [{
                "id": "job_7_1700000000000",
                "type": "new_job",
                "title": "New Job Posted",
                "message": "Acme is hiring!",
                "jobId": "7",
                "jobTitle": "Data Engineer",
                "company": "Acme",
                "timestamp": "2026-10-01T10:00:00+00:00",
                "read": False,
            }],
            "unreadCount": 1,
        }
        put_raw(conn, storage_key(USER), json.dumps(legacy))

        ledger = _ledger(conn)

        assert ledger.unread_count == 1
        assert ledger.notifications[0].job_title == "Data Engineer"
        assert ledger.has_processed("7")

    def test_without_store(self) -> None:
        ledger = _ledger(None)
        ledger.add(job_id="1")
        assert ledger.unread_count == 1


# ---------------------------------------------------------------------------
# NewJobWatcher
# ---------------------------------------------------------------------------


class TestNewJobWatcher:
    async def test_events_before_ready_dropped(self, conn: sqlite3.Connection) -> None:
        backend = MemoryBackend()
        ledger = _ledger(conn)
        watcher = NewJobWatcher(backend, ledger, grace_seconds=0)
        await watcher.start()

        backend.publish_job(_row("1"))
        assert ledger.notifications == []

        watcher.mark_ready()
        backend.publish_job(_row("2", company_name="Globex"))

        assert [n.job_id for n in ledger.notifications] == ["2"]
        n = ledger.notifications[0]
        assert n.message == "Globex is hiring!"
        assert n.title == "New Job Posted"
        assert n.job_title == "Job 2"
        assert n.id.startswith("job_2_")
        watcher.close()

    async def test_inactive_rows_ignored(self, conn: sqlite3.Connection) -> None:
        backend = MemoryBackend()
        ledger = _ledger(conn)
        watcher = NewJobWatcher(backend, ledger, grace_seconds=0)
        await watcher.start()
        watcher.mark_ready()

        backend.publish_job(_row("1", is_active=False))

        assert ledger.notifications == []
        watcher.close()

    async def test_same_job_notified_once(self, conn: sqlite3.Connection) -> None:
        backend = MemoryBackend()
        ledger = _ledger(conn)
        watcher = NewJobWatcher(backend, ledger, grace_seconds=0)
        await watcher.start()
        watcher.mark_ready()

        backend.publish_job(_row("1"))
        backend.publish_job(_row("1"))

        assert len(ledger.notifications) == 1
        watcher.close()

    async def test_grace_timer_makes_ready(self, conn: sqlite3.Connection) -> None:
        watcher = NewJobWatcher(MemoryBackend(), _ledger(conn), grace_seconds=0.01)
        await watcher.start()
        assert watcher.ready is False
        await asyncio.sleep(0.05)
        assert watcher.ready is True
        watcher.close()

    async def test_close_stops_delivery(self, conn: sqlite3.Connection) -> None:
        backend = MemoryBackend()
        ledger = _ledger(conn)
        watcher = NewJobWatcher(backend, ledger, grace_seconds=0)
        await watcher.start()
        watcher.mark_ready()
        watcher.close()

        backend.publish_job(_row("1"))

        assert ledger.notifications == []
        assert watcher.running is False

    async def test_mark_ready_after_close_is_noop(self, conn: sqlite3.Connection) -> None:
        watcher = NewJobWatcher(MemoryBackend(), _ledger(conn), grace_seconds=10)
        await watcher.start()
        watcher.close()
        watcher.mark_ready()
        assert watcher.ready is False

    async def test_missing_company_falls_back(self, conn: sqlite3.Connection) -> None:
        backend = MemoryBackend()
        ledger = _ledger(conn)
        watcher = NewJobWatcher(backend, ledger, grace_seconds=0)
        await watcher.start()
        watcher.mark_ready()

        backend.publish_job(_row("1", company_name=None))

        assert ledger.notifications[0].message == "A company is hiring!"
        watcher.close()
