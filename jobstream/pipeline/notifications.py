"""Notification ledger and the new-job watcher that feeds it.

The ledger is most-recent-first, capped, persisted per user in the local
store and deduplicated by source job id. The dedup set is filled from the
rehydrated history and from every new arrival, and is never pruned within a
session: a job id notifies at most once, even if it is posted again or the
ledger is cleared.

The watcher discards push events until it is ready, so the first burst of
pre-existing rows is not replayed as new. Readiness comes from an explicit
``mark_ready()`` call (normally after the first listing fetch) or, as a
fallback, a grace timer. A row that is genuinely new but arrives before
readiness is dropped.
"""

import asyncio
import logging
import sqlite3
import time
import uuid
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from jobstream.backends.base import JobBackend, Subscription
from jobstream.core.schemas import Notification, utcnow
from jobstream.core.store import get_blob, put_blob

logger = logging.getLogger(__name__)

DEFAULT_CAP = 50


def storage_key(user_id: str) -> str:
    return f"notifications_{user_id}"


class _LedgerBlob(BaseModel):
    """Persisted ledger shape."""

    notifications: list[Notification] = Field(default_factory=list)
    unread_count: int = Field(default=0, ge=0)


def _migrate_legacy(raw: dict[str, Any]) -> dict[str, Any]:
    """Map the camelCase shape written by older clients onto the current one."""
    if "unreadCount" not in raw:
        return raw
    renames = {"jobId": "job_id", "jobTitle": "job_title"}
    notifications = [
        {renames.get(k, k): v for k, v in n.items()}
        for n in raw.get("notifications") or []
        if isinstance(n, dict)
    ]
    return {"notifications": notifications, "unread_count": raw.get("unreadCount") or 0}


class NotificationLedger:
    """Per-user list of notifications with an unread counter.

    Usage::

        ledger = NotificationLedger(conn, user_id)
        ledger.load()
        ledger.add(job_id="42", job_title="Data Engineer", company="Acme")
    """

    def __init__(
        self,
        conn: sqlite3.Connection | None,
        user_id: str | None,
        cap: int = DEFAULT_CAP,
    ) -> None:
        self._conn = conn
        self._user_id = user_id
        self._cap = cap
        self._notifications: list[Notification] = []
        self._unread_count = 0
        self._processed_job_ids: set[str] = set()
        self.is_loading = True

    @property
    def notifications(self) -> list[Notification]:
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return self._unread_count

    def has_processed(self, job_id: str) -> bool:
        return job_id in self._processed_job_ids

    # -- persistence --------------------------------------------------------

    def load(self) -> None:
        """Rehydrate from the local store. Bad data is logged and ignored."""
        self.is_loading = False
        if self._conn is None or not self._user_id:
            return
        raw = get_blob(self._conn, storage_key(self._user_id))
        if raw is None:
            return
        if not isinstance(raw, dict):
            logger.warning("Ignoring stored notifications: expected an object")
            return
        try:
            blob = _LedgerBlob.model_validate(_migrate_legacy(raw))
        except ValidationError as e:
            logger.warning("Ignoring stored notifications: %s", e)
            return

        self._notifications = blob.notifications[: self._cap]
        self._unread_count = blob.unread_count
        for n in self._notifications:
            if n.job_id:
                self._processed_job_ids.add(n.job_id)
        logger.debug("Rehydrated %d notifications", len(self._notifications))

    def _persist(self) -> None:
        if self.is_loading or self._conn is None or not self._user_id:
            return
        blob = _LedgerBlob(
            notifications=self._notifications[: self._cap],
            unread_count=self._unread_count,
        )
        put_blob(self._conn, storage_key(self._user_id), blob.model_dump(mode="json"))

    # -- mutations ----------------------------------------------------------

    def add(
        self,
        *,
        message: str = "",
        title: str = "New Job Posted",
        job_id: str | None = None,
        job_title: str | None = None,
        company: str | None = None,
        notification_id: str | None = None,
        timestamp: Any = None,
    ) -> Notification | None:
        """Record a notification. Returns None if job_id was already notified."""
        if job_id and job_id in self._processed_job_ids:
            logger.debug("Skipping duplicate notification for job %s", job_id)
            return None

        notification = Notification(
            id=notification_id or uuid.uuid4().hex,
            title=title,
            message=message,
            job_id=job_id,
            job_title=job_title,
            company=company,
            timestamp=timestamp or utcnow(),
        )
        if job_id:
            self._processed_job_ids.add(job_id)

        self._notifications = [notification, *self._notifications][: self._cap]
        self._unread_count += 1
        self._persist()
        logger.info("New notification: %s", notification.message or notification.title)
        return notification

    def mark_as_read(self, notification_id: str) -> None:
        changed = False
        updated: list[Notification] = []
        for n in self._notifications:
            if n.id == notification_id and not n.read:
                n = n.model_copy(update={"read": True})
                changed = True
            updated.append(n)
        if not changed:
            return
        self._notifications = updated
        self._unread_count = max(0, self._unread_count - 1)
        self._persist()

    def mark_all_as_read(self) -> None:
        self._notifications = [
            n if n.read else n.model_copy(update={"read": True}) for n in self._notifications
        ]
        self._unread_count = 0
        self._persist()

    def remove(self, notification_id: str) -> None:
        target = next((n for n in self._notifications if n.id == notification_id), None)
        if target is None:
            return
        if not target.read:
            self._unread_count = max(0, self._unread_count - 1)
        self._notifications = [n for n in self._notifications if n.id != notification_id]
        self._persist()

    def clear_all(self) -> None:
        """Empty the ledger. Already-notified job ids stay suppressed."""
        self._notifications = []
        self._unread_count = 0
        self._persist()


class NewJobWatcher:
    """Turns new-job push events into ledger notifications.

    Usage::

        watcher = NewJobWatcher(backend, ledger, grace_seconds=3.0)
        await watcher.start()
        ...                      # first listing fetch completes
        watcher.mark_ready()
        ...
        watcher.close()
    """

    def __init__(
        self,
        backend: JobBackend,
        ledger: NotificationLedger,
        grace_seconds: float = 3.0,
    ) -> None:
        self._backend = backend
        self._ledger = ledger
        self._grace_seconds = grace_seconds
        self._subscription: Subscription | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._ready = False
        self._alive = False

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def running(self) -> bool:
        return self._alive

    async def start(self) -> None:
        """Subscribe to new jobs. Events are dropped until ready."""
        if self._alive:
            return
        self._alive = True
        self._ready = False
        self._subscription = await self._backend.subscribe_to_new_jobs(self._on_insert)
        if self._grace_seconds > 0:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._grace_seconds, self.mark_ready)
        logger.info("Listening for new jobs")

    def mark_ready(self) -> None:
        """Start turning events into notifications."""
        if not self._alive or self._ready:
            return
        self._ready = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.debug("Initial load complete - now notifying on new jobs")

    def close(self) -> None:
        """Cancel the subscription and the grace timer. Late events become no-ops."""
        self._alive = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        logger.debug("New-job watcher closed")

    def _on_insert(self, row: dict[str, Any]) -> None:
        if not self._alive:
            return
        if not self._ready:
            logger.debug("Skipping job %s - still in initial load period", row.get("id"))
            return
        if not row.get("is_active"):
            logger.debug("Skipping job %s - not active", row.get("id"))
            return

        job_id = str(row["id"])
        company = row.get("company_name") or "A company"
        self._ledger.add(
            notification_id=f"job_{job_id}_{int(time.time() * 1000)}",
            title="New Job Posted",
            message=f"{company} is hiring!",
            job_id=job_id,
            job_title=row.get("title"),
            company=row.get("company_name"),
            timestamp=row.get("posted_at") or None,
        )
