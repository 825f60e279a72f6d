"""Job listing cache and the feed that fills it.

One JobCache instance is shared by everything that shows the listing; pass
it around rather than keeping module-level state. A failed fetch never
clears the cache: stale jobs stay visible next to the error.
"""

import logging
import time
from collections.abc import Callable

from jobstream.backends.base import BackendError, JobBackend
from jobstream.core.schemas import JobView
from jobstream.pipeline.transform import transform_jobs

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
LOAD_ERROR = "Failed to load jobs"


class JobCache:
    """Holds the most recent successful listing and when it was stored.

    Usage::

        cache = JobCache(ttl_seconds=300)
        jobs = cache.get()          # None when empty or expired
        cache.store(fresh_jobs)
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._jobs: list[JobView] | None = None
        self._stored_at: float | None = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def age(self) -> float | None:
        """Seconds since the last store, or None if nothing is cached."""
        if self._stored_at is None:
            return None
        return self._clock() - self._stored_at

    def is_fresh(self) -> bool:
        age = self.age()
        return self._jobs is not None and age is not None and age < self._ttl

    def get(self) -> list[JobView] | None:
        """Return the cached jobs if still fresh."""
        if not self.is_fresh():
            return None
        return list(self._jobs or [])

    def peek(self) -> list[JobView] | None:
        """Return the cached jobs regardless of age."""
        return None if self._jobs is None else list(self._jobs)

    def store(self, jobs: list[JobView]) -> None:
        self._jobs = list(jobs)
        self._stored_at = self._clock()
        logger.debug("Cached %d jobs", len(jobs))

    def invalidate(self) -> None:
        """Force the next fetch to go remote. The stale data remains peekable."""
        self._stored_at = None


class FeedResult:
    """What a fetch produced: jobs to show, an error to show next to them, and the source."""

    def __init__(
        self,
        jobs: list[JobView],
        error: str | None = None,
        from_cache: bool = False,
    ) -> None:
        self.jobs = jobs
        self.error = error
        self.from_cache = from_cache

    @property
    def ok(self) -> bool:
        return self.error is None


class JobFeed:
    """Fetches active jobs through the cache."""

    def __init__(self, backend: JobBackend, cache: JobCache) -> None:
        self._backend = backend
        self._cache = cache
        self.error: str | None = None
        self.is_loading = False

    @property
    def cache(self) -> JobCache:
        return self._cache

    @property
    def jobs(self) -> list[JobView]:
        return self._cache.peek() or []

    async def fetch(self, force: bool = False) -> FeedResult:
        """Return the listing, hitting the backend only when the cache is stale or forced."""
        if not force:
            cached = self._cache.get()
            if cached is not None:
                logger.debug("Serving %d jobs from cache", len(cached))
                self.error = None
                return FeedResult(cached, from_cache=True)

        self.is_loading = True
        self.error = None
        try:
            rows = await self._backend.fetch_active_jobs()
            jobs = transform_jobs(rows)
        except (BackendError, ValueError, KeyError) as e:
            logger.error("Error fetching jobs: %s", e)
            self.error = LOAD_ERROR
            return FeedResult(self._cache.peek() or [], error=LOAD_ERROR, from_cache=True)
        finally:
            self.is_loading = False

        self._cache.store(jobs)
        logger.info("Fetched %d active jobs", len(jobs))
        return FeedResult(jobs)

    async def refetch(self) -> FeedResult:
        """Manual retry: always goes to the backend."""
        return await self.fetch(force=True)
