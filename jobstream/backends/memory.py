"""In-process backend: a seedable stand-in for the hosted store.

Enforces the same constraints the hosted store does (one saved job and one
application per user and job) so client behaviour can be exercised without a
network.

Given a local store connection, everything written through the backend
(published jobs, saved jobs, applications, settings, profiles, resume
entries) is kept under one blob and reloaded on the next start. Subscribers
then also pick up jobs published by other processes sharing that store.
"""

import asyncio
import logging
import re
import sqlite3
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from jobstream.backends.base import (
    NOT_FOUND,
    BackendError,
    InsertHandler,
    JobBackend,
    Subscription,
    log_task_failure,
)
from jobstream.core.schemas import Application, ApplicationStatus, SavedJob, utcnow
from jobstream.core.store import get_blob, put_blob

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
STATE_KEY = "memory_backend"


class MemoryBackend(JobBackend):
    """Keeps jobs, saved jobs, applications and settings in dicts.

    Usage::

        backend = MemoryBackend.from_seed_file("config/seed_jobs.yaml", conn=conn)
        rows = await backend.fetch_active_jobs()
    """

    def __init__(
        self,
        jobs: list[dict[str, Any]] | None = None,
        *,
        conn: sqlite3.Connection | None = None,
        poll_interval_s: float = 1.0,
    ) -> None:
        self._jobs: list[dict[str, Any]] = [dict(j) for j in jobs or []]
        self._published: list[dict[str, Any]] = []
        self._saved: dict[tuple[str, str], SavedJob] = {}
        self._applications: dict[str, Application] = {}
        self._settings: dict[str, dict[str, Any]] = {}
        self._profiles: dict[str, dict[str, Any]] = {}
        self._resumes: dict[str, list[dict[str, Any]]] = {}
        self._handlers: list[InsertHandler] = []
        self._conn = conn
        self._poll_interval_s = poll_interval_s
        self._poll_tasks: set[asyncio.Task[None]] = set()
        if conn is not None:
            self._load_state(conn)

    @classmethod
    def from_seed_file(
        cls,
        path: str | Path,
        *,
        conn: sqlite3.Connection | None = None,
        poll_interval_s: float = 1.0,
    ) -> "MemoryBackend":
        """Build a backend from a YAML file with a top-level ``jobs`` list."""
        path = Path(path)
        if not path.exists():
            msg = f"Seed file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        jobs = raw.get("jobs") or []
        logger.info("Seeded %d jobs from %s", len(jobs), path)
        return cls(jobs, conn=conn, poll_interval_s=poll_interval_s)

    @property
    def backend_id(self) -> str:
        return "memory"

    async def aclose(self) -> None:
        for task in list(self._poll_tasks):
            task.cancel()

    # -- persistence --------------------------------------------------------

    def _load_state(self, conn: sqlite3.Connection) -> None:
        raw = get_blob(conn, STATE_KEY)
        if raw is None:
            return
        if not isinstance(raw, dict):
            logger.warning("Ignoring stored backend state: expected an object")
            return
        try:
            saved = [SavedJob.model_validate(s) for s in raw.get("saved") or []]
            applications = [Application.model_validate(a) for a in raw.get("applications") or []]
        except ValidationError as e:
            logger.warning("Ignoring stored backend state: %s", e)
            return

        self._published = [dict(j) for j in raw.get("published") or []]
        known = {str(j.get("id")) for j in self._jobs}
        self._jobs.extend(j for j in self._published if str(j.get("id")) not in known)
        self._saved = {(s.user_id or "", s.job_id): s for s in saved}
        self._applications = {a.id: a for a in applications}
        self._settings = dict(raw.get("settings") or {})
        self._profiles = dict(raw.get("profiles") or {})
        self._resumes = {uid: list(entries) for uid, entries in (raw.get("resumes") or {}).items()}
        logger.debug(
            "Restored backend state: %d published jobs, %d saved, %d applications",
            len(self._published), len(self._saved), len(self._applications),
        )

    def _persist(self) -> None:
        if self._conn is None:
            return
        put_blob(self._conn, STATE_KEY, {
            "published": self._published,
            "saved": [s.model_dump(mode="json") for s in self._saved.values()],
            "applications": [a.model_dump(mode="json") for a in self._applications.values()],
            "settings": self._settings,
            "profiles": self._profiles,
            "resumes": self._resumes,
        })

    # -- jobs ---------------------------------------------------------------

    async def fetch_active_jobs(self) -> list[dict[str, Any]]:
        active = [dict(j) for j in self._jobs if j.get("is_active", True)]
        active.sort(key=_posted_key, reverse=True)
        return active

    def publish_job(self, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a job row and push it to every live subscriber. Returns the stored row."""
        row = dict(row)
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("posted_at", utcnow().isoformat())
        row.setdefault("is_active", True)
        self._jobs.append(row)
        self._published.append(row)
        self._persist()
        self._deliver(row)
        return dict(row)

    def _deliver(self, row: dict[str, Any]) -> None:
        for handler in list(self._handlers):
            try:
                handler(dict(row))
            except Exception:
                logger.exception("New-job handler failed for job %s", row.get("id"))

    async def subscribe_to_new_jobs(self, on_insert: InsertHandler) -> Subscription:
        self._handlers.append(on_insert)
        logger.debug("Subscriber added (%d live)", len(self._handlers))
        task: asyncio.Task[None] | None = None
        if self._conn is not None:
            task = asyncio.create_task(self._poll_store(self._conn))
            self._poll_tasks.add(task)
            task.add_done_callback(self._poll_tasks.discard)
            task.add_done_callback(log_task_failure)

        def _remove() -> None:
            if on_insert in self._handlers:
                self._handlers.remove(on_insert)
            if task is not None:
                task.cancel()

        return Subscription(on_close=_remove)

    async def _poll_store(self, conn: sqlite3.Connection) -> None:
        """Deliver jobs other processes published into the shared store."""
        while True:
            await asyncio.sleep(self._poll_interval_s)
            raw = get_blob(conn, STATE_KEY)
            if not isinstance(raw, dict):
                continue
            known = {str(j.get("id")) for j in self._jobs}
            for row in raw.get("published") or []:
                if str(row.get("id")) in known:
                    continue
                row = dict(row)
                self._jobs.append(row)
                self._published.append(row)
                self._deliver(row)

    # -- saved jobs ---------------------------------------------------------

    async def fetch_saved_jobs(self, user_id: str) -> list[SavedJob]:
        items = [s for (uid, _), s in self._saved.items() if uid == user_id]
        items.sort(key=lambda s: s.created_at, reverse=True)
        return items

    async def save_job(self, user_id: str, job_id: str, notes: str | None = None) -> SavedJob:
        key = (user_id, job_id)
        if key in self._saved:
            msg = "duplicate key value violates unique constraint \"saved_jobs_user_id_job_id_key\""
            raise BackendError(msg, code=UNIQUE_VIOLATION)
        saved = SavedJob(id=uuid.uuid4().hex, job_id=job_id, user_id=user_id, notes=notes)
        self._saved[key] = saved
        self._persist()
        return saved

    async def unsave_job(self, user_id: str, job_id: str) -> None:
        if self._saved.pop((user_id, job_id), None) is not None:
            self._persist()

    # -- applications -------------------------------------------------------

    async def fetch_applications(self, user_id: str) -> list[Application]:
        apps = [a for a in self._applications.values() if a.user_id == user_id]
        apps.sort(key=lambda a: a.applied_at, reverse=True)
        return apps

    async def submit_application(
        self,
        user_id: str,
        job_id: str,
        cover_letter: str | None = None,
        resume_url: str | None = None,
    ) -> Application:
        if any(a.user_id == user_id and a.job_id == job_id for a in self._applications.values()):
            raise BackendError("Already applied", code=UNIQUE_VIOLATION)
        job = next((dict(j) for j in self._jobs if str(j.get("id")) == job_id), None)
        if job is None:
            msg = f"Job {job_id} does not exist"
            raise BackendError(msg)
        application = Application(
            id=uuid.uuid4().hex,
            job_id=job_id,
            user_id=user_id,
            cover_letter=cover_letter,
            resume_url=resume_url,
            job=job,
        )
        self._applications[application.id] = application
        self._persist()
        return application

    async def withdraw_application(self, application_id: str) -> Application:
        current = self._applications.get(application_id)
        if current is None:
            msg = f"Application {application_id} not found"
            raise BackendError(msg)
        if not current.status.can_transition_to(ApplicationStatus.WITHDRAWN):
            msg = f"Cannot withdraw an application that is {current.status.value}"
            raise BackendError(msg)
        updated = current.model_copy(update={"status": ApplicationStatus.WITHDRAWN})
        self._applications[application_id] = updated
        self._persist()
        return updated

    def set_application_status(self, application_id: str, status: ApplicationStatus) -> None:
        """Advance an application the way an employer would. Not exposed to clients."""
        current = self._applications[application_id]
        if not current.status.can_transition_to(status):
            msg = f"Illegal transition {current.status.value} -> {status.value}"
            raise ValueError(msg)
        self._applications[application_id] = current.model_copy(update={"status": status})
        self._persist()

    # -- settings -----------------------------------------------------------

    async def fetch_settings(self, user_id: str) -> dict[str, Any] | None:
        row = self._settings.get(user_id)
        return dict(row) if row is not None else None

    async def update_settings(self, user_id: str, changes: dict[str, Any]) -> None:
        self._settings.setdefault(user_id, {}).update(changes)
        self._persist()

    # -- profiles -----------------------------------------------------------

    async def fetch_profile(self, user_id: str) -> dict[str, Any]:
        row = self._profiles.get(user_id)
        if row is None:
            raise BackendError("The result contains 0 rows", code=NOT_FOUND)
        return dict(row)

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        row = self._profiles.setdefault(user_id, {"id": user_id})
        row.update(changes)
        self._persist()
        return dict(row)

    # -- resumes ------------------------------------------------------------

    async def list_resumes(self, user_id: str) -> list[dict[str, Any]]:
        entries = [dict(e) for e in self._resumes.get(user_id, [])]
        entries.sort(key=lambda e: str(e.get("created_at") or ""), reverse=True)
        return entries

    async def upload_resume(
        self, user_id: str, file_name: str, content: bytes, content_type: str,
    ) -> dict[str, Any]:
        stored_name = f"{int(time.time() * 1000)}_{_safe_name(file_name)}"
        path = f"{user_id}/{stored_name}"
        uploaded_at = utcnow().isoformat()
        entry = {
            "id": uuid.uuid4().hex,
            "name": stored_name,
            "path": path,
            "url": f"memory://resumes/{path}",
            "created_at": uploaded_at,
            "metadata": {"size": len(content), "mimetype": content_type},
        }
        self._resumes.setdefault(user_id, []).append(entry)
        self._persist()
        return {
            "path": path,
            "url": entry["url"],
            "file_name": file_name,
            "file_size": len(content),
            "file_type": content_type,
            "uploaded_at": uploaded_at,
        }

    async def delete_resume(self, path: str) -> None:
        user_id = path.split("/", 1)[0]
        entries = self._resumes.get(user_id, [])
        remaining = [e for e in entries if e.get("path") != path]
        if len(remaining) == len(entries):
            msg = f"Object not found: {path}"
            raise BackendError(msg)
        self._resumes[user_id] = remaining
        self._persist()


def _safe_name(file_name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", file_name)


def _posted_key(row: dict[str, Any]) -> str:
    value = row.get("posted_at")
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value or "")
