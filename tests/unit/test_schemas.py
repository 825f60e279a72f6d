"""Tests for core data models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from jobstream.core.schemas import (
    Application,
    ApplicationStatus,
    FilterSpec,
    JobView,
    MutationResult,
    Notification,
    SavedJob,
    UserSettings,
)

POSTED = datetime(2026, 10, 1, tzinfo=timezone.utc)


class TestJobView:
    def test_frozen(self) -> None:
        job = JobView(id="1", title="Engineer", posted_at=POSTED)
        with pytest.raises(ValidationError):
            job.title = "Other"  # type: ignore[misc]

    def test_defaults(self) -> None:
        job = JobView(id="1", title="Engineer", posted_at=POSTED)
        assert job.location == "Remote"
        assert job.source == "JobStream"
        assert job.tags == ()

    def test_salary_min_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError, match="exceeds salary_max"):
            JobView(id="1", title="x", posted_at=POSTED, salary_min=100, salary_max=50)

    def test_one_sided_salary_allowed(self) -> None:
        job = JobView(id="1", title="x", posted_at=POSTED, salary_min=100)
        assert job.salary_max is None


class TestSavedJob:
    def test_numeric_ids_coerced(self) -> None:
        saved = SavedJob.model_validate({"id": 7, "job_id": 42})
        assert saved.id == "7"
        assert saved.job_id == "42"

    def test_placeholder(self) -> None:
        assert SavedJob(id="temp_123", job_id="1").is_placeholder is True
        assert SavedJob(id="abc", job_id="1").is_placeholder is False


class TestApplicationStatus:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ApplicationStatus.APPLIED, ApplicationStatus.VIEWED),
            (ApplicationStatus.VIEWED, ApplicationStatus.INTERVIEWING),
            (ApplicationStatus.INTERVIEWING, ApplicationStatus.OFFERED),
            (ApplicationStatus.INTERVIEWING, ApplicationStatus.REJECTED),
        ],
    )
    def test_forward_progression(
        self, current: ApplicationStatus, target: ApplicationStatus,
    ) -> None:
        assert current.can_transition_to(target) is True

    def test_no_skipping_or_going_back(self) -> None:
        assert ApplicationStatus.APPLIED.can_transition_to(ApplicationStatus.OFFERED) is False
        assert ApplicationStatus.VIEWED.can_transition_to(ApplicationStatus.APPLIED) is False

    @pytest.mark.parametrize(
        "status",
        [ApplicationStatus.APPLIED, ApplicationStatus.VIEWED, ApplicationStatus.INTERVIEWING],
    )
    def test_withdraw_from_non_terminal(self, status: ApplicationStatus) -> None:
        assert status.can_transition_to(ApplicationStatus.WITHDRAWN) is True
        assert status.is_terminal is False

    @pytest.mark.parametrize(
        "status",
        [ApplicationStatus.OFFERED, ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN],
    )
    def test_terminal_states_are_final(self, status: ApplicationStatus) -> None:
        assert status.is_terminal is True
        assert status.can_transition_to(ApplicationStatus.WITHDRAWN) is False

    def test_application_parses_status_string(self) -> None:
        app = Application.model_validate({"id": 1, "job_id": 2, "status": "interviewing"})
        assert app.status is ApplicationStatus.INTERVIEWING


class TestFilterSpec:
    def test_default(self) -> None:
        spec = FilterSpec.default()
        assert spec.experience_levels == []
        assert spec.salary_range is None
        assert spec.posted_within == "any"
        assert spec.remote_only is False

    def test_unknown_salary_bucket_rejected(self) -> None:
        with pytest.raises(ValidationError, match="salary_range must be one of"):
            FilterSpec(salary_range="1-2")

    def test_blank_salary_bucket_is_none(self) -> None:
        assert FilterSpec(salary_range="").salary_range is None

    def test_unknown_posted_within_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FilterSpec(posted_within="90d")  # type: ignore[arg-type]

    def test_blank_locations_dropped(self) -> None:
        assert FilterSpec(locations=[" Berlin ", "  "]).locations == ["Berlin"]


class TestNotification:
    def test_defaults(self) -> None:
        n = Notification(id="1")
        assert n.type == "new_job"
        assert n.read is False
        assert n.title == "New Job Posted"


class TestUserSettings:
    def test_defaults(self) -> None:
        s = UserSettings()
        assert s.theme == "dark"
        assert s.marketing_emails is False
        assert s.language == "en"

    def test_unknown_keys_ignored(self) -> None:
        s = UserSettings.model_validate({"theme": "light", "user_id": "u1", "id": 9})
        assert s.theme == "light"
        assert "user_id" not in s.model_dump()

    def test_invalid_theme(self) -> None:
        with pytest.raises(ValidationError):
            UserSettings(theme="neon")  # type: ignore[arg-type]


class TestMutationResult:
    def test_ok(self) -> None:
        r = MutationResult.ok({"a": 1})
        assert r.success is True
        assert r.error is None
        assert r.data == {"a": 1}

    def test_fail(self) -> None:
        r = MutationResult.fail("nope")
        assert r.success is False
        assert r.error == "nope"
