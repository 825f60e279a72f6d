"""Map raw backend job rows to display view-models.

Pure functions: the same row, index and ``now`` always give the same JobView.
The card color comes from the row's position in the fetched batch, so it is
stable within one fetch but can change across refetches when ordering shifts.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any

from jobstream.core.schemas import JobView, utcnow

logger = logging.getLogger(__name__)

JOB_COLORS = (
    "from-blue-500 to-cyan-500",
    "from-purple-500 to-pink-500",
    "from-orange-500 to-red-500",
    "from-green-500 to-teal-500",
    "from-yellow-500 to-orange-500",
    "from-indigo-500 to-purple-500",
)

DEFAULT_LOGO = "💼"

# Ordered: first category with a keyword in the lowercased title wins.
_LOGO_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("frontend", "react"), "💻"),
    (("full stack",), "🚀"),
    (("backend", "python"), "⚙️"),
    (("devops", "cloud"), "☁️"),
    (("machine learning", "ml", "ai"), "🧠"),
    (("data",), "📊"),
    (("design", "ux"), "🎨"),
    (("product",), "📋"),
    (("mobile", "ios", "android"), "📱"),
)

SOURCE_LABEL = "JobStream"


def job_logo(title: str) -> str:
    """Pick a glyph for the job from keywords in its title."""
    t = title.lower()
    for keywords, glyph in _LOGO_KEYWORDS:
        if any(kw in t for kw in keywords):
            return glyph
    return DEFAULT_LOGO


def job_color(index: int) -> str:
    return JOB_COLORS[index % len(JOB_COLORS)]


def format_posted_time(posted_at: datetime, now: datetime | None = None) -> str:
    """Relative age: Today, 1 day ago, N days ago, 1 week ago, N weeks ago."""
    now = now or utcnow()
    days = math.floor((now - posted_at).total_seconds() / 86400)
    if days <= 0:
        return "Today"
    if days == 1:
        return "1 day ago"
    if days < 7:
        return f"{days} days ago"
    if days < 14:
        return "1 week ago"
    return f"{days // 7} weeks ago"


def _format_amount(n: int) -> str:
    if n >= 1000:
        # Half-up rounding to the nearest thousand
        return f"${math.floor(n / 1000 + 0.5)}k"
    return f"${n}"


def format_salary(salary_min: int | None, salary_max: int | None) -> str:
    """Render a salary range as "$80k - $120k"."""
    if salary_min is None and salary_max is None:
        return "Not specified"
    if salary_min is None:
        return _format_amount(salary_max)  # type: ignore[arg-type]
    if salary_max is None:
        return _format_amount(salary_min)
    return f"{_format_amount(salary_min)} - {_format_amount(salary_max)}"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (or datetime) into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        dt = datetime.fromisoformat(value)
    else:
        msg = f"Invalid timestamp: {value!r}"
        raise ValueError(msg)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def transform_job(raw: dict[str, Any], index: int, *, now: datetime | None = None) -> JobView:
    """Build the view-model for one row at position ``index`` in its batch."""
    title = raw.get("title") or ""
    posted_at = parse_timestamp(raw.get("posted_at"))
    salary_min = raw.get("salary_min")
    salary_max = raw.get("salary_max")
    return JobView(
        id=str(raw["id"]),
        title=title,
        company=raw.get("company_name") or "",
        company_data=raw.get("company"),
        location=raw.get("location") or "Remote",
        type=raw.get("job_type") or "",
        salary=format_salary(salary_min, salary_max),
        salary_min=salary_min,
        salary_max=salary_max,
        posted=format_posted_time(posted_at, now),
        posted_at=posted_at,
        source=SOURCE_LABEL,
        logo=job_logo(title),
        color=job_color(index),
        applicants=raw.get("applicants_count") or 0,
        description=raw.get("description") or "",
        requirements=tuple(raw.get("requirements") or ()),
        benefits=tuple(raw.get("benefits") or ()),
        tags=tuple(raw.get("tags") or ()),
        is_remote=bool(raw.get("is_remote")),
        experience_level=raw.get("experience_level"),
        application_url=raw.get("application_url"),
    )


def transform_jobs(rows: list[dict[str, Any]], *, now: datetime | None = None) -> list[JobView]:
    """Transform a fetched batch, coloring each row by its position.

    Rows that cannot be transformed (missing id, bad timestamp, inverted
    salary range) are logged and skipped; the rest of the batch is kept.
    """
    now = now or utcnow()
    jobs: list[JobView] = []
    for i, row in enumerate(rows):
        try:
            jobs.append(transform_job(row, i, now=now))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping job row %r: %s", row.get("id"), e)
    if len(jobs) < len(rows):
        logger.info("Transformed %d of %d job rows", len(jobs), len(rows))
    return jobs
