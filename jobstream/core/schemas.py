"""Core data models for the jobstream client."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TEMP_ID_PREFIX = "temp_"

# Salary bucket key -> (min, max). None max means unbounded.
SALARY_BUCKETS: dict[str, tuple[int, int | None]] = {
    "0-50000": (0, 50_000),
    "50000-80000": (50_000, 80_000),
    "80000-120000": (80_000, 120_000),
    "120000-150000": (120_000, 150_000),
    "150000-200000": (150_000, 200_000),
    "200000+": (200_000, None),
}

# "Posted within" bucket key -> days. None means no cutoff.
POSTED_WITHIN_DAYS: dict[str, int | None] = {
    "24h": 1,
    "7d": 7,
    "14d": 14,
    "30d": 30,
    "any": None,
}

EXPERIENCE_LEVELS = ("Entry", "Mid", "Senior", "Lead", "Executive")
JOB_TYPES = ("Full-time", "Part-time", "Contract", "Internship")

PostedWithin = Literal["24h", "7d", "14d", "30d", "any"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobView(BaseModel):
    """A job listing normalized for display.

    Frozen: listings are read-only on the client and replaced wholesale on refetch.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    company: str = ""
    company_data: dict[str, Any] | None = None
    location: str = "Remote"
    type: str = ""
    salary: str = ""
    salary_min: int | None = None
    salary_max: int | None = None
    posted: str = ""
    posted_at: datetime
    source: str = "JobStream"
    logo: str = ""
    color: str = ""
    applicants: int = 0
    description: str = ""
    requirements: tuple[str, ...] = ()
    benefits: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    is_remote: bool = False
    experience_level: str | None = None
    application_url: str | None = None

    @model_validator(mode="after")
    def salary_range_ordered(self) -> "JobView":
        if (
            self.salary_min is not None
            and self.salary_max is not None
            and self.salary_min > self.salary_max
        ):
            msg = f"salary_min ({self.salary_min}) exceeds salary_max ({self.salary_max})"
            raise ValueError(msg)
        return self


class SavedJob(BaseModel):
    """A user's bookmark on a job. At most one per (user, job)."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str
    job_id: str
    user_id: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_placeholder(self) -> bool:
        """True for entries created locally and not yet confirmed by the backend."""
        return self.id.startswith(TEMP_ID_PREFIX)


class ApplicationStatus(str, Enum):
    """Lifecycle of an application.

    applied -> viewed -> interviewing -> {offered, rejected}; withdrawn is
    reachable from any non-terminal state.
    """

    APPLIED = "applied"
    VIEWED = "viewed"
    INTERVIEWING = "interviewing"
    OFFERED = "offered"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    def can_transition_to(self, target: "ApplicationStatus") -> bool:
        if self.is_terminal:
            return False
        if target is ApplicationStatus.WITHDRAWN:
            return True
        return target in _FORWARD_TRANSITIONS[self]


_TERMINAL_STATUSES = frozenset(
    {ApplicationStatus.OFFERED, ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN}
)

_FORWARD_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.APPLIED: frozenset({ApplicationStatus.VIEWED}),
    ApplicationStatus.VIEWED: frozenset({ApplicationStatus.INTERVIEWING}),
    ApplicationStatus.INTERVIEWING: frozenset(
        {ApplicationStatus.OFFERED, ApplicationStatus.REJECTED}
    ),
}


class Application(BaseModel):
    """A submitted application. Uniqueness per (user, job) is enforced server-side."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str
    job_id: str
    user_id: str | None = None
    status: ApplicationStatus = ApplicationStatus.APPLIED
    cover_letter: str | None = None
    resume_url: str | None = None
    applied_at: datetime = Field(default_factory=utcnow)
    notes: str | None = None
    job: dict[str, Any] | None = None


class Notification(BaseModel):
    """A user-facing event kept in the local notification ledger."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    type: Literal["new_job"] = "new_job"
    title: str = "New Job Posted"
    message: str = ""
    job_id: str | None = None
    job_title: str | None = None
    company: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    read: bool = False


class FilterSpec(BaseModel):
    """Advanced filter criteria for the job list. Replaced wholesale, never patched."""

    model_config = ConfigDict(frozen=True)

    experience_levels: list[str] = Field(default_factory=list)
    job_types: list[str] = Field(default_factory=list)
    salary_range: str | None = None
    posted_within: PostedWithin = "any"
    remote_only: bool = False
    locations: list[str] = Field(default_factory=list)

    @field_validator("salary_range")
    @classmethod
    def salary_range_known(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if v not in SALARY_BUCKETS:
            msg = f"salary_range must be one of {list(SALARY_BUCKETS)}, got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("locations")
    @classmethod
    def locations_stripped(cls, v: list[str]) -> list[str]:
        return [loc.strip() for loc in v if loc.strip()]

    @classmethod
    def default(cls) -> "FilterSpec":
        return cls()


class UserSettings(BaseModel):
    """Per-user preferences. Unknown keys coming from the backend are dropped."""

    model_config = ConfigDict(extra="ignore")

    theme: Literal["light", "dark", "system"] = "dark"
    email_notifications: bool = True
    push_notifications: bool = True
    application_updates: bool = True
    job_recommendations: bool = True
    marketing_emails: bool = False
    language: str = "en"
    compact_view: bool = False
    show_salary: bool = True
    auto_apply_profile: bool = True


class Profile(BaseModel):
    """A user's public profile. Text fields the backend leaves null read as empty."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    email: str = ""
    full_name: str = ""
    avatar_url: str = ""
    phone: str = ""
    location: str = ""
    bio: str = ""
    linkedin_url: str = ""
    github_url: str = ""
    portfolio_url: str = ""
    resume_url: str | None = None
    job_title: str = ""
    years_experience: int = Field(default=0, ge=0)
    skills: list[str] = Field(default_factory=list)
    preferred_job_types: list[str] = Field(default_factory=list)
    preferred_locations: list[str] = Field(default_factory=list)
    salary_min: int | None = None
    salary_max: int | None = None
    is_open_to_work: bool = True

    @field_validator(
        "email", "full_name", "avatar_url", "phone", "location", "bio",
        "linkedin_url", "github_url", "portfolio_url", "job_title",
        mode="before",
    )
    @classmethod
    def null_text_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("skills", "preferred_job_types", "preferred_locations", mode="before")
    @classmethod
    def null_list_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("years_experience", mode="before")
    @classmethod
    def null_years_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class ResumeFile(BaseModel):
    """One stored resume. ``name`` drops the upload timestamp prefix of ``original_name``."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    original_name: str
    path: str
    url: str | None = None
    size: int = 0
    created_at: datetime | None = None
    type: str = "application/pdf"


class MutationResult(BaseModel):
    """Outcome of a user-initiated operation. Returned instead of raising."""

    success: bool
    error: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> "MutationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "MutationResult":
        return cls(success=False, error=error)
