"""Saved jobs with optimistic toggling.

Toggling flips local membership immediately, then calls the backend. A
confirmed save swaps the placeholder's ``temp_`` id for the server id; a
failure puts that one job back the way it was before the toggle, leaving
other jobs toggled meanwhile alone. A failed unsave also reloads the whole
list from the backend.
"""

import logging
import time
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from jobstream.backends.base import BackendError, JobBackend
from jobstream.core.schemas import TEMP_ID_PREFIX, JobView, MutationResult, SavedJob
from jobstream.pipeline.optimistic import OptimisticTransaction

logger = logging.getLogger(__name__)

LOGIN_REQUIRED = "Please log in to save jobs"


class SavedJobsState(BaseModel):
    """Immutable snapshot of the saved set and the saved list (newest first)."""

    model_config = ConfigDict(frozen=True)

    ids: frozenset[str] = frozenset()
    items: tuple[SavedJob, ...] = ()

    @classmethod
    def from_items(cls, items: Sequence[SavedJob]) -> "SavedJobsState":
        return cls(ids=frozenset(i.job_id for i in items), items=tuple(items))

    def with_item(self, item: SavedJob) -> "SavedJobsState":
        return SavedJobsState(ids=self.ids | {item.job_id}, items=(item, *self.items))

    def without(self, job_id: str) -> "SavedJobsState":
        return SavedJobsState(
            ids=self.ids - {job_id},
            items=tuple(i for i in self.items if i.job_id != job_id),
        )

    def restore(self, job_id: str, snapshot: "SavedJobsState") -> "SavedJobsState":
        """Put job_id back the way it was in snapshot, keeping every other entry."""
        rest = self.without(job_id)
        if job_id not in snapshot.ids:
            return rest
        items = [*rest.items, *(i for i in snapshot.items if i.job_id == job_id)]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return SavedJobsState(ids=rest.ids | {job_id}, items=tuple(items))

    def confirm(self, saved: SavedJob) -> "SavedJobsState":
        """Give placeholder entries for saved.job_id the server-assigned id."""
        items = tuple(
            i.model_copy(update={"id": saved.id})
            if i.job_id == saved.job_id and i.is_placeholder
            else i
            for i in self.items
        )
        return SavedJobsState(ids=self.ids, items=items)


class SavedJobsManager:
    """Owns one user's saved jobs.

    Usage::

        saved = SavedJobsManager(backend, user_id)
        await saved.load()
        result = await saved.toggle(job.id)
        if not result.success:
            show(result.error)
    """

    def __init__(self, backend: JobBackend, user_id: str | None) -> None:
        self._backend = backend
        self._user_id = user_id
        self._state = SavedJobsState()
        self._alive = True
        self.is_loading = False
        self.error: str | None = None

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> SavedJobsState:
        return self._state

    def _set_state(self, state: SavedJobsState) -> None:
        self._state = state

    @property
    def saved_ids(self) -> frozenset[str]:
        return self._state.ids

    @property
    def items(self) -> list[SavedJob]:
        return list(self._state.items)

    @property
    def saved_count(self) -> int:
        return len(self._state.ids)

    def is_saved(self, job_id: str) -> bool:
        return job_id in self._state.ids

    def with_details(self, jobs: Sequence[JobView]) -> list[tuple[SavedJob, JobView]]:
        """Pair each saved entry with its job, dropping entries whose job isn't loaded."""
        by_id = {j.id: j for j in jobs}
        return [(item, by_id[item.job_id]) for item in self._state.items if item.job_id in by_id]

    def clear_error(self) -> None:
        self.error = None

    def close(self) -> None:
        """Stop applying results from calls still in flight."""
        self._alive = False

    # -- operations ---------------------------------------------------------

    async def load(self) -> MutationResult:
        """Replace local state with the backend's saved jobs."""
        if not self._user_id:
            return MutationResult.fail(LOGIN_REQUIRED)

        self.is_loading = True
        self.error = None
        try:
            items = await self._backend.fetch_saved_jobs(self._user_id)
        except BackendError as e:
            logger.error("Error loading saved jobs: %s", e)
            if self._alive:
                self.error = "Failed to load saved jobs"
            return MutationResult.fail("Failed to load saved jobs")
        finally:
            self.is_loading = False

        if not self._alive:
            return MutationResult.fail("Session closed")
        self._state = SavedJobsState.from_items(items)
        logger.debug("Loaded %d saved jobs", len(items))
        return MutationResult.ok(len(items))

    async def toggle(self, job_id: str) -> MutationResult:
        """Save or unsave job_id, reflecting the change locally before the backend answers."""
        if not self._user_id:
            self.error = LOGIN_REQUIRED
            return MutationResult.fail(LOGIN_REQUIRED)

        user_id = self._user_id
        was_saved = job_id in self._state.ids

        txn: OptimisticTransaction[SavedJobsState, object]
        if was_saved:
            txn = OptimisticTransaction(
                get_state=lambda: self._state,
                set_state=self._set_state,
                apply=lambda s: s.without(job_id),
                attempt=lambda: self._backend.unsave_job(user_id, job_id),
                revert=lambda s, snap: s.restore(job_id, snap),
                is_alive=lambda: self._alive,
                expected=(BackendError,),
            )
        else:
            placeholder = SavedJob(
                id=f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}",
                job_id=job_id,
                user_id=user_id,
            )
            txn = OptimisticTransaction(
                get_state=lambda: self._state,
                set_state=self._set_state,
                apply=lambda s: s.with_item(placeholder),
                attempt=lambda: self._backend.save_job(user_id, job_id),
                reconcile=lambda s, saved: s.confirm(saved),  # type: ignore[arg-type]
                revert=lambda s, snap: s.restore(job_id, snap),
                is_alive=lambda: self._alive,
                expected=(BackendError,),
            )

        try:
            outcome = await txn.run()
        except Exception:
            logger.exception("Error toggling save for job %s", job_id)
            await self.load()
            self.error = "Failed to update saved job"
            return MutationResult.fail(self.error)

        if outcome.ok:
            self.error = None
            return MutationResult.ok({"job_id": job_id, "saved": not was_saved})

        if was_saved:
            logger.error("Error unsaving job %s: %s", job_id, outcome.error)
            # The delete may have partly applied; resync from the backend.
            await self.load()
            self.error = "Failed to unsave job"
        else:
            logger.error("Error saving job %s: %s", job_id, outcome.error)
            self.error = "Failed to save job"
        return MutationResult.fail(self.error)
