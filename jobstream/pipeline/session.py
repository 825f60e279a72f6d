"""Client session: wires the feed, the user's lists, notifications and settings.

Profile and resumes are wired too but load on demand, not at startup.

Startup order:
  1. Rehydrate the notification ledger from the local store
  2. Start the new-job watcher (events dropped until ready)
  3. Fetch the listing through the cache
  4. Mark the watcher ready
  5. Load saved jobs, applications and settings
"""

import logging
import sqlite3
from types import TracebackType

from jobstream.backends.base import JobBackend
from jobstream.core.config import Settings
from jobstream.core.schemas import FilterSpec, JobView
from jobstream.pipeline.applications import ApplicationsManager
from jobstream.pipeline.cache import FeedResult, JobCache, JobFeed
from jobstream.pipeline.filters import count_active_filters, filter_jobs
from jobstream.pipeline.notifications import NewJobWatcher, NotificationLedger
from jobstream.pipeline.profile import ProfileManager
from jobstream.pipeline.resumes import ResumeManager
from jobstream.pipeline.saved_jobs import SavedJobsManager
from jobstream.pipeline.settings_manager import SettingsManager

logger = logging.getLogger(__name__)


class Dashboard:
    """Search box, quick type selector and advanced filters for the job list."""

    def __init__(self) -> None:
        self.search_term = ""
        self.filter_type = "all"
        self.filters = FilterSpec.default()

    @property
    def active_filter_count(self) -> int:
        return count_active_filters(self.filters)

    def set_filters(self, filters: FilterSpec) -> None:
        self.filters = filters

    def reset_filters(self) -> None:
        self.filters = FilterSpec.default()

    def visible(self, jobs: list[JobView]) -> list[JobView]:
        return filter_jobs(jobs, self.search_term, self.filter_type, self.filters)


class ClientSession:
    """Everything one signed-in (or anonymous) user sees.

    Usage::

        async with ClientSession.from_settings(settings, backend, conn) as session:
            jobs = session.dashboard.visible(session.feed.jobs)
            await session.saved.toggle(jobs[0].id)
    """

    def __init__(
        self,
        backend: JobBackend,
        conn: sqlite3.Connection | None,
        user_id: str | None,
        *,
        cache: JobCache | None = None,
        notification_cap: int = 50,
        grace_seconds: float = 3.0,
        user_email: str = "",
    ) -> None:
        self.user_id = user_id
        self.backend = backend
        self.feed = JobFeed(backend, cache or JobCache())
        self.saved = SavedJobsManager(backend, user_id)
        self.applications = ApplicationsManager(backend, user_id)
        self.settings = SettingsManager(backend, conn, user_id)
        identity = {"id": user_id, "email": user_email} if user_id else None
        self.profile = ProfileManager(backend, user_id, identity)
        self.resumes = ResumeManager(backend, user_id)
        self.ledger = NotificationLedger(conn, user_id, cap=notification_cap)
        self.watcher = NewJobWatcher(backend, self.ledger, grace_seconds=grace_seconds)
        self.dashboard = Dashboard()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: JobBackend,
        conn: sqlite3.Connection | None,
        *,
        cache: JobCache | None = None,
    ) -> "ClientSession":
        return cls(
            backend,
            conn,
            settings.user_id,
            cache=cache or JobCache(ttl_seconds=settings.cache.ttl_seconds),
            notification_cap=settings.notifications.cap,
            grace_seconds=settings.notifications.grace_seconds,
            user_email=settings.user_email,
        )

    async def open(self, *, watch: bool = True) -> FeedResult:
        """Load everything the dashboard needs. Returns the listing fetch result."""
        self.ledger.load()
        if watch and self.user_id:
            await self.watcher.start()

        result = await self.feed.fetch()
        if result.error:
            logger.warning("Listing loaded with error: %s", result.error)
        if self.watcher.running:
            self.watcher.mark_ready()

        if self.user_id:
            await self.saved.load()
            await self.applications.load()
        await self.settings.load()
        logger.info(
            "Session ready: %d jobs, %d saved, %d applications",
            len(result.jobs), self.saved.saved_count, self.applications.total_count,
        )
        return result

    async def refresh(self) -> FeedResult:
        """Manual "Try again": refetch the listing and the user's lists."""
        result = await self.feed.refetch()
        if self.user_id:
            await self.saved.load()
            await self.applications.load()
        return result

    def visible_jobs(self) -> list[JobView]:
        return self.dashboard.visible(self.feed.jobs)

    def close(self) -> None:
        """Tear down: stop the watcher and drop results of calls still in flight."""
        self.watcher.close()
        self.saved.close()
        self.applications.close()
        self.settings.close()
        self.profile.close()

    async def __aenter__(self) -> "ClientSession":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
