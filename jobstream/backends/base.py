"""Abstract base class for the remote data store and its push channel."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from jobstream.core.schemas import Application, SavedJob

logger = logging.getLogger(__name__)

# Receives one raw job row per insert event.
InsertHandler = Callable[[dict[str, Any]], None]

# Code the store returns when a single-row lookup finds nothing.
NOT_FOUND = "PGRST116"


class BackendError(Exception):
    """A remote call failed (network, auth, validation or constraint).

    ``str(err)`` is the server-provided message and is safe to show to users.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class Subscription:
    """Handle for a push channel. Closing it stops delivery; closing twice is a no-op."""

    def __init__(self, on_close: Callable[[], None] | None = None) -> None:
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close()


def log_task_failure(task: asyncio.Task[Any]) -> None:
    """Done-callback for background tasks: log the exception a task died with."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s died", task.get_name(), exc_info=exc)


class JobBackend(ABC):
    """Base class that every remote store implementation must implement.

    All calls raise BackendError on failure.
    """

    @property
    @abstractmethod
    def backend_id(self) -> str:
        """Unique identifier for this backend (e.g. 'memory')."""

    @abstractmethod
    async def fetch_active_jobs(self) -> list[dict[str, Any]]:
        """Return raw rows for all active jobs, newest first."""

    @abstractmethod
    async def fetch_saved_jobs(self, user_id: str) -> list[SavedJob]:
        """Return the user's saved jobs, newest first."""

    @abstractmethod
    async def save_job(self, user_id: str, job_id: str, notes: str | None = None) -> SavedJob:
        """Create a saved job and return it with its server-assigned id."""

    @abstractmethod
    async def unsave_job(self, user_id: str, job_id: str) -> None:
        """Delete the user's saved job for job_id."""

    @abstractmethod
    async def fetch_applications(self, user_id: str) -> list[Application]:
        """Return the user's applications, newest first."""

    @abstractmethod
    async def submit_application(
        self,
        user_id: str,
        job_id: str,
        cover_letter: str | None = None,
        resume_url: str | None = None,
    ) -> Application:
        """Submit an application. Duplicates are rejected by the backend."""

    @abstractmethod
    async def withdraw_application(self, application_id: str) -> Application:
        """Mark an application withdrawn and return the updated record."""

    @abstractmethod
    async def fetch_settings(self, user_id: str) -> dict[str, Any] | None:
        """Return the user's settings row, or None if there is none yet."""

    @abstractmethod
    async def update_settings(self, user_id: str, changes: dict[str, Any]) -> None:
        """Persist a partial settings update."""

    @abstractmethod
    async def fetch_profile(self, user_id: str) -> dict[str, Any]:
        """Return the user's profile row. Raises BackendError(code=NOT_FOUND) if there is none."""

    @abstractmethod
    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial profile update (creating the row if needed) and return the row."""

    @abstractmethod
    async def list_resumes(self, user_id: str) -> list[dict[str, Any]]:
        """Return storage entries under the user's resume folder, newest first.

        Each entry has ``name``, ``path``, ``url`` and optionally ``id``,
        ``created_at`` and ``metadata`` (``size``, ``mimetype``).
        """

    @abstractmethod
    async def upload_resume(
        self, user_id: str, file_name: str, content: bytes, content_type: str,
    ) -> dict[str, Any]:
        """Store a resume file and return ``path``, ``url`` and the file details."""

    @abstractmethod
    async def delete_resume(self, path: str) -> None:
        """Remove a stored resume by its storage path."""

    @abstractmethod
    async def subscribe_to_new_jobs(self, on_insert: InsertHandler) -> Subscription:
        """Start delivering newly inserted job rows to on_insert."""

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
