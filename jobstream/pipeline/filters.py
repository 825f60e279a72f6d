"""Filter chain for the job list.

Every filter is a stable, order-preserving callable over a list of jobs and
is a no-op when its criterion is at its default. Groups are ANDed by running
them in sequence:
  1. SearchTermFilter: title, company, location or any tag
  2. QuickTypeFilter: coarse type selector ("all" passes everything)
  3. JobTypesFilter: exact type match, any of
  4. ExperienceFilter: exact level match, any of
  5. SalaryRangeFilter: interval overlap with a salary bucket
  6. PostedWithinFilter: posted_at at or after now minus bucket days
  7. RemoteOnlyFilter: remote flag or "remote" in location
  8. LocationsFilter: location contains any substring
"""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from jobstream.core.schemas import (
    POSTED_WITHIN_DAYS,
    SALARY_BUCKETS,
    FilterSpec,
    JobView,
    utcnow,
)

logger = logging.getLogger(__name__)

# A filter is a callable that takes jobs and returns a subset, order kept.
Filter = Callable[[list[JobView]], list[JobView]]


class _PredicateFilter:
    """Base for filters that keep jobs matching a per-job predicate."""

    def active(self) -> bool:
        return True

    def matches(self, job: JobView) -> bool:
        raise NotImplementedError

    def __call__(self, jobs: list[JobView]) -> list[JobView]:
        if not self.active():
            return jobs
        result = [j for j in jobs if self.matches(j)]
        removed = len(jobs) - len(result)
        if removed:
            logger.debug("%s: removed %d jobs", type(self).__name__, removed)
        return result


class SearchTermFilter(_PredicateFilter):
    """Case-insensitive substring match on title, company, location or any tag."""

    def __init__(self, term: str) -> None:
        self._term = term.lower()

    def active(self) -> bool:
        return bool(self._term)

    def matches(self, job: JobView) -> bool:
        t = self._term
        return (
            t in job.title.lower()
            or t in job.company.lower()
            or t in job.location.lower()
            or any(t in tag.lower() for tag in job.tags)
        )


class QuickTypeFilter(_PredicateFilter):
    """Coarse type selector: "all" or a substring of the job type."""

    def __init__(self, filter_type: str) -> None:
        self._type = filter_type.strip().lower()

    def active(self) -> bool:
        return self._type not in ("", "all")

    def matches(self, job: JobView) -> bool:
        return self._type in job.type.lower()


class JobTypesFilter(_PredicateFilter):
    """Keep jobs whose type equals any selected type (case-insensitive)."""

    def __init__(self, job_types: Sequence[str]) -> None:
        self._types = {t.lower() for t in job_types}

    def active(self) -> bool:
        return bool(self._types)

    def matches(self, job: JobView) -> bool:
        return job.type.lower() in self._types


class ExperienceFilter(_PredicateFilter):
    """Keep jobs whose experience level is one of the selected levels (exact)."""

    def __init__(self, levels: Sequence[str]) -> None:
        self._levels = set(levels)

    def active(self) -> bool:
        return bool(self._levels)

    def matches(self, job: JobView) -> bool:
        return job.experience_level in self._levels


class SalaryRangeFilter(_PredicateFilter):
    """Keep jobs whose [min, max] salary overlaps the bucket.

    A job missing one bound uses the other for both ends; a job with no
    salary data never matches an active bucket.
    """

    def __init__(self, bucket: str | None) -> None:
        bounds = SALARY_BUCKETS.get(bucket) if bucket else None
        self._active = bounds is not None
        self._bounds: tuple[int, int | None] = bounds or (0, None)

    def active(self) -> bool:
        return self._active

    def matches(self, job: JobView) -> bool:
        low = job.salary_min if job.salary_min is not None else job.salary_max
        high = job.salary_max if job.salary_max is not None else job.salary_min
        if low is None or high is None:
            return False
        return salary_overlaps(low, high, self._bounds)


class PostedWithinFilter(_PredicateFilter):
    """Keep jobs posted at or after now minus the bucket's days."""

    def __init__(self, posted_within: str, now: datetime | None = None) -> None:
        days = POSTED_WITHIN_DAYS.get(posted_within)
        self._cutoff = (now or utcnow()) - timedelta(days=days) if days else None

    def active(self) -> bool:
        return self._cutoff is not None

    def matches(self, job: JobView) -> bool:
        return self._cutoff is None or job.posted_at >= self._cutoff


class RemoteOnlyFilter(_PredicateFilter):
    """Keep remote jobs: flagged remote, or "remote" appears in the location."""

    def __init__(self, remote_only: bool) -> None:
        self._remote_only = remote_only

    def active(self) -> bool:
        return self._remote_only

    def matches(self, job: JobView) -> bool:
        return job.is_remote or "remote" in job.location.lower()


class LocationsFilter(_PredicateFilter):
    """Keep jobs whose location contains any of the substrings (case-insensitive)."""

    def __init__(self, locations: Sequence[str]) -> None:
        self._locations = [loc.lower() for loc in locations if loc.strip()]

    def active(self) -> bool:
        return bool(self._locations)

    def matches(self, job: JobView) -> bool:
        location = job.location.lower()
        return any(loc in location for loc in self._locations)


def salary_overlaps(low: int, high: int, bucket: tuple[int, int | None]) -> bool:
    """True iff [low, high] overlaps the bucket; a None bucket max is unbounded."""
    bucket_min, bucket_max = bucket
    return high >= bucket_min and (bucket_max is None or low <= bucket_max)


def build_filter_chain(
    search_term: str,
    filter_type: str,
    spec: FilterSpec | None = None,
    *,
    now: datetime | None = None,
) -> list[Filter]:
    """Build the filter chain for one evaluation of the job list."""
    spec = spec or FilterSpec.default()
    return [
        SearchTermFilter(search_term),
        QuickTypeFilter(filter_type),
        JobTypesFilter(spec.job_types),
        ExperienceFilter(spec.experience_levels),
        SalaryRangeFilter(spec.salary_range),
        PostedWithinFilter(spec.posted_within, now=now),
        RemoteOnlyFilter(spec.remote_only),
        LocationsFilter(spec.locations),
    ]


def run_filter_chain(jobs: list[JobView], filters: list[Filter]) -> list[JobView]:
    """Apply filters in order, returning the surviving jobs."""
    result = jobs
    for f in filters:
        result = f(result)
    return result


def filter_jobs(
    jobs: Sequence[JobView],
    search_term: str = "",
    filter_type: str = "all",
    spec: FilterSpec | None = None,
    *,
    now: datetime | None = None,
) -> list[JobView]:
    """Return the jobs matching every active criterion, in their original order."""
    return run_filter_chain(
        list(jobs), build_filter_chain(search_term, filter_type, spec, now=now),
    )


def count_active_filters(spec: FilterSpec | None) -> int:
    """Badge count: one per selected list member plus one per non-default scalar."""
    if spec is None:
        return 0
    count = len(spec.experience_levels) + len(spec.job_types) + len(spec.locations)
    if spec.salary_range:
        count += 1
    if spec.posted_within != "any":
        count += 1
    if spec.remote_only:
        count += 1
    return count
