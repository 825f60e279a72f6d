"""Job applications.

Applying is not optimistic: nothing changes locally until the backend
confirms the submission, and the list is then reloaded from the backend.
Duplicate submissions are refused locally only while a job is already
applied to or mid-submission; the backend decides uniqueness.
"""

import logging

from jobstream.backends.base import BackendError, JobBackend
from jobstream.core.schemas import Application, ApplicationStatus, MutationResult

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "User not authenticated"


class ApplicationsManager:
    """Owns one user's applications."""

    def __init__(self, backend: JobBackend, user_id: str | None) -> None:
        self._backend = backend
        self._user_id = user_id
        self._applications: list[Application] = []
        self._applied_job_ids: frozenset[str] = frozenset()
        self._submitting: set[str] = set()
        self._alive = True
        self.is_loading = False
        self.error: str | None = None

    # -- queries ------------------------------------------------------------

    @property
    def applications(self) -> list[Application]:
        return list(self._applications)

    @property
    def total_count(self) -> int:
        return len(self._applications)

    def has_applied(self, job_id: str) -> bool:
        return job_id in self._applied_job_ids

    def is_submitting(self, job_id: str) -> bool:
        return job_id in self._submitting

    def can_apply(self, job_id: str) -> bool:
        """False once applied or while a submission for job_id is pending."""
        return not self.has_applied(job_id) and not self.is_submitting(job_id)

    def application_for(self, job_id: str) -> Application | None:
        return next((a for a in self._applications if a.job_id == job_id), None)

    def by_status(self, status: ApplicationStatus | str) -> list[Application]:
        if status == "all":
            return list(self._applications)
        status = ApplicationStatus(status)
        return [a for a in self._applications if a.status is status]

    def counts(self) -> dict[str, int]:
        """Count per status plus an ``all`` total."""
        counts = {"all": len(self._applications)}
        counts.update({s.value: 0 for s in ApplicationStatus})
        for a in self._applications:
            counts[a.status.value] += 1
        return counts

    def close(self) -> None:
        self._alive = False

    def _set_applications(self, applications: list[Application]) -> None:
        self._applications = list(applications)
        self._applied_job_ids = frozenset(a.job_id for a in applications)

    # -- operations ---------------------------------------------------------

    async def load(self) -> MutationResult:
        """Reload all applications from the backend."""
        if not self._user_id:
            self._set_applications([])
            return MutationResult.ok(0)

        self.is_loading = True
        self.error = None
        try:
            applications = await self._backend.fetch_applications(self._user_id)
        except BackendError as e:
            logger.error("Error fetching applications: %s", e)
            message = e.message or "Failed to load applications"
            if self._alive:
                self.error = message
            return MutationResult.fail(message)
        finally:
            self.is_loading = False

        if self._alive:
            self._set_applications(applications)
        return MutationResult.ok(len(applications))

    async def apply(
        self,
        job_id: str,
        cover_letter: str | None = None,
        resume_url: str | None = None,
    ) -> MutationResult:
        """Submit an application and, once confirmed, reload the list.

        On failure the backend's message is returned verbatim.
        """
        if not self._user_id:
            return MutationResult.fail(NOT_AUTHENTICATED)
        if self.has_applied(job_id):
            return MutationResult.fail("Already applied")
        if self.is_submitting(job_id):
            return MutationResult.fail("Application already being submitted")

        self._submitting.add(job_id)
        try:
            application = await self._backend.submit_application(
                self._user_id, job_id, cover_letter, resume_url,
            )
        except BackendError as e:
            logger.error("Error applying to job %s: %s", job_id, e)
            return MutationResult.fail(e.message or "Failed to submit application")
        except Exception:
            logger.exception("Unexpected error applying to job %s", job_id)
            return MutationResult.fail("Failed to submit application")
        finally:
            self._submitting.discard(job_id)

        logger.info("Applied to job %s (application %s)", job_id, application.id)
        if self._alive:
            await self.load()
        return MutationResult.ok(application)

    async def withdraw(self, application_id: str) -> MutationResult:
        """Withdraw an application. Terminal applications are refused without a remote call."""
        current = next((a for a in self._applications if a.id == application_id), None)
        if current is not None and not current.status.can_transition_to(
            ApplicationStatus.WITHDRAWN
        ):
            return MutationResult.fail(
                f"Cannot withdraw an application that is {current.status.value}"
            )

        try:
            updated = await self._backend.withdraw_application(application_id)
        except BackendError as e:
            logger.error("Error withdrawing application %s: %s", application_id, e)
            return MutationResult.fail(e.message or "Failed to withdraw application")
        except Exception:
            logger.exception("Unexpected error withdrawing application %s", application_id)
            return MutationResult.fail("Failed to withdraw application")

        if self._alive:
            self._set_applications([
                a.model_copy(update={"status": ApplicationStatus.WITHDRAWN})
                if a.id == application_id
                else a
                for a in self._applications
            ])
        return MutationResult.ok(updated)
