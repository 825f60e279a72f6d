"""Tests for the in-process backend."""

import asyncio
from pathlib import Path
from textwrap import dedent

import pytest

from jobstream.backends.base import NOT_FOUND, BackendError, Subscription
from jobstream.backends.memory import UNIQUE_VIOLATION, MemoryBackend
from jobstream.core.schemas import ApplicationStatus
from jobstream.core.store import init_store, put_raw

USER = "user-1"


def _rows() -> list[dict]:
    return [
        {"id": "1", "title": "Old", "posted_at": "2026-10-01T10:00:00+00:00"},
        {"id": "2", "title": "New", "posted_at": "2026-10-18T10:00:00+00:00"},
        {"id": "3", "title": "Closed", "posted_at": "2026-10-10T10:00:00+00:00", "is_active": False},
    ]


class TestSeedFile:
    def test_load(self, tmp_path: Path) -> None:
        seed = tmp_path / "seed.yaml"
        seed.write_text(dedent("""\
            jobs:
              - id: "1"
                title: Engineer
                posted_at: "2026-10-01T10:00:00+00:00"
        """))
        backend = MemoryBackend.from_seed_file(seed)
        assert backend.backend_id == "memory"

    def test_missing_file(self) -> None:
        with pytest.raises(FileNotFoundError):
            MemoryBackend.from_seed_file("/nonexistent/seed.yaml")

    async def test_shipped_seed(self) -> None:
        backend = MemoryBackend.from_seed_file("config/seed_jobs.yaml")
        rows = await backend.fetch_active_jobs()
        ids = [r["id"] for r in rows]
        assert "105" not in ids
        assert ids[0] == "104"


class TestJobs:
    async def test_active_newest_first(self) -> None:
        rows = await MemoryBackend(_rows()).fetch_active_jobs()
        assert [r["id"] for r in rows] == ["2", "1"]

    async def test_rows_are_copies(self) -> None:
        backend = MemoryBackend(_rows())
        rows = await backend.fetch_active_jobs()
        rows[0]["title"] = "changed"
        assert (await backend.fetch_active_jobs())[0]["title"] == "New"


class TestSubscription:
    async def test_publish_reaches_subscriber(self) -> None:
        backend = MemoryBackend()
        received: list[dict] = []
        sub = await backend.subscribe_to_new_jobs(received.append)

        backend.publish_job({"id": "9", "title": "Fresh", "is_active": True})

        assert isinstance(sub, Subscription)
        assert [r["id"] for r in received] == ["9"]
        assert "posted_at" in received[0]

    async def test_close_unsubscribes(self) -> None:
        backend = MemoryBackend()
        received: list[dict] = []
        sub = await backend.subscribe_to_new_jobs(received.append)
        sub.close()
        sub.close()
        backend.publish_job({"id": "9"})
        assert received == []
        assert sub.closed is True


class TestSavedJobs:
    async def test_save_and_unsave(self) -> None:
        backend = MemoryBackend(_rows())
        saved = await backend.save_job(USER, "1", notes="look later")
        assert saved.notes == "look later"
        assert [s.job_id for s in await backend.fetch_saved_jobs(USER)] == ["1"]
        await backend.unsave_job(USER, "1")
        assert await backend.fetch_saved_jobs(USER) == []

    async def test_duplicate_rejected(self) -> None:
        backend = MemoryBackend(_rows())
        await backend.save_job(USER, "1")
        with pytest.raises(BackendError) as exc_info:
            await backend.save_job(USER, "1")
        assert exc_info.value.code == UNIQUE_VIOLATION

    async def test_per_user(self) -> None:
        backend = MemoryBackend(_rows())
        await backend.save_job(USER, "1")
        await backend.save_job("user-2", "1")
        assert len(await backend.fetch_saved_jobs(USER)) == 1


class TestApplications:
    async def test_submit_embeds_job(self) -> None:
        backend = MemoryBackend(_rows())
        app = await backend.submit_application(USER, "2")
        assert app.status is ApplicationStatus.APPLIED
        assert app.job is not None
        assert app.job["title"] == "New"

    async def test_duplicate_rejected(self) -> None:
        backend = MemoryBackend(_rows())
        await backend.submit_application(USER, "1")
        with pytest.raises(BackendError, match="Already applied"):
            await backend.submit_application(USER, "1")

    async def test_withdraw_terminal_rejected(self) -> None:
        backend = MemoryBackend(_rows())
        app = await backend.submit_application(USER, "1")
        await backend.withdraw_application(app.id)
        with pytest.raises(BackendError, match="withdrawn"):
            await backend.withdraw_application(app.id)

    async def test_illegal_status_transition(self) -> None:
        backend = MemoryBackend(_rows())
        app = await backend.submit_application(USER, "1")
        with pytest.raises(ValueError, match="Illegal transition"):
            backend.set_application_status(app.id, ApplicationStatus.OFFERED)


class TestSettings:
    async def test_none_until_written(self) -> None:
        backend = MemoryBackend()
        assert await backend.fetch_settings(USER) is None
        await backend.update_settings(USER, {"theme": "light"})
        await backend.update_settings(USER, {"language": "de"})
        assert await backend.fetch_settings(USER) == {"theme": "light", "language": "de"}


class TestPublish:
    async def test_published_row_is_active(self) -> None:
        backend = MemoryBackend()
        received: list[dict] = []
        await backend.subscribe_to_new_jobs(received.append)

        backend.publish_job({"id": "9", "title": "Fresh"})

        assert received[0]["is_active"] is True
        assert [r["id"] for r in await backend.fetch_active_jobs()] == ["9"]

    async def test_failing_handler_does_not_block_others(self) -> None:
        backend = MemoryBackend()
        received: list[dict] = []

        def broken(row: dict) -> None:
            raise ValueError("bad")

        await backend.subscribe_to_new_jobs(broken)
        await backend.subscribe_to_new_jobs(received.append)

        backend.publish_job({"id": "9"})

        assert [r["id"] for r in received] == ["9"]


class TestPersistence:
    async def test_state_survives_restart(self, tmp_path: Path) -> None:
        conn = init_store(tmp_path / "store.db")
        first = MemoryBackend(_rows(), conn=conn)
        await first.save_job(USER, "1")
        app = await first.submit_application(USER, "2")
        await first.update_settings(USER, {"theme": "light"})
        await first.update_profile(USER, {"bio": "hello"})
        first.publish_job({"id": "7", "title": "Later"})

        second = MemoryBackend(_rows(), conn=conn)

        assert [s.job_id for s in await second.fetch_saved_jobs(USER)] == ["1"]
        assert [a.id for a in await second.fetch_applications(USER)] == [app.id]
        assert await second.fetch_settings(USER) == {"theme": "light"}
        assert (await second.fetch_profile(USER))["bio"] == "hello"
        assert "7" in [r["id"] for r in await second.fetch_active_jobs()]
        withdrawn = await second.withdraw_application(app.id)
        assert withdrawn.status is ApplicationStatus.WITHDRAWN

    async def test_corrupt_state_ignored(self) -> None:
        conn = init_store(":memory:")
        put_raw(conn, "memory_backend", '{"version": 1, "data": {"saved": [{"bad": 1}]}}')
        backend = MemoryBackend(_rows(), conn=conn)
        assert await backend.fetch_saved_jobs(USER) == []

    async def test_subscriber_sees_jobs_from_other_process(self, tmp_path: Path) -> None:
        db = tmp_path / "store.db"
        watcher_side = MemoryBackend(conn=init_store(db), poll_interval_s=0.01)
        poster_side = MemoryBackend(conn=init_store(db))
        received: list[dict] = []
        sub = await watcher_side.subscribe_to_new_jobs(received.append)

        poster_side.publish_job({"id": "42", "title": "Cross-process"})
        for _ in range(100):
            if received:
                break
            await asyncio.sleep(0.01)
        sub.close()
        await watcher_side.aclose()

        assert [r["id"] for r in received] == ["42"]


class TestProfiles:
    async def test_missing_is_not_found(self) -> None:
        with pytest.raises(BackendError) as exc_info:
            await MemoryBackend().fetch_profile(USER)
        assert exc_info.value.code == NOT_FOUND

    async def test_update_creates_then_merges(self) -> None:
        backend = MemoryBackend()
        await backend.update_profile(USER, {"bio": "a"})
        row = await backend.update_profile(USER, {"job_title": "Dev"})
        assert row == {"id": USER, "bio": "a", "job_title": "Dev"}


class TestResumes:
    async def test_upload_list_delete(self) -> None:
        backend = MemoryBackend()
        stored = await backend.upload_resume(USER, "my cv.pdf", b"%PDF", "application/pdf")

        entries = await backend.list_resumes(USER)

        assert stored["path"].startswith(f"{USER}/")
        assert stored["path"].endswith("_my_cv.pdf")
        assert entries[0]["metadata"] == {"size": 4, "mimetype": "application/pdf"}
        await backend.delete_resume(stored["path"])
        assert await backend.list_resumes(USER) == []

    async def test_delete_unknown(self) -> None:
        with pytest.raises(BackendError, match="not found"):
            await MemoryBackend().delete_resume(f"{USER}/nope.pdf")
