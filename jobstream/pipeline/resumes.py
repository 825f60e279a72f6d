"""Resume files: client-side checks, upload, listing, delete and the primary pick.

The primary resume is the profile's ``resume_url``. Storage itself is the
backend's business; this layer only validates, lists and keeps the profile
pointer in step.
"""

import logging
from typing import Any

from jobstream.backends.base import BackendError, JobBackend
from jobstream.core.schemas import MutationResult, ResumeFile

logger = logging.getLogger(__name__)

ALLOWED_RESUME_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)
MAX_RESUME_BYTES = 5 * 1024 * 1024
NOT_AUTHENTICATED = "User not authenticated"


def validate_resume(file_name: str, content_type: str, size: int) -> str | None:
    """Return the user-facing reason a file can't be uploaded, or None if it can."""
    if not file_name:
        return "No file selected"
    if content_type not in ALLOWED_RESUME_TYPES:
        return "Invalid file type. Please upload a PDF or Word document."
    if size > MAX_RESUME_BYTES:
        return f"File too large. Maximum size is {MAX_RESUME_BYTES // (1024 * 1024)}MB."
    return None


def resume_from_entry(entry: dict[str, Any]) -> ResumeFile:
    """Build a ResumeFile from a storage listing entry."""
    stored = str(entry["name"])
    metadata = entry.get("metadata") or {}
    # Stored names are "<millis>_<name>"
    display = stored.split("_", 1)[1] if "_" in stored else stored
    return ResumeFile(
        id=str(entry.get("id") or stored),
        name=display or stored,
        original_name=stored,
        path=str(entry.get("path") or stored),
        url=entry.get("url"),
        size=metadata.get("size") or 0,
        created_at=entry.get("created_at") or metadata.get("lastModified"),
        type=metadata.get("mimetype") or "application/pdf",
    )


def file_type_label(content_type: str) -> str:
    if content_type == "application/pdf":
        return "PDF"
    if "word" in content_type or "document" in content_type:
        return "DOC"
    return "FILE"


def format_file_size(size: int) -> str:
    if not size:
        return "Unknown size"
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


class ResumeManager:
    """Owns one user's resume list and primary resume pointer.

    Usage::

        resumes = ResumeManager(backend, user_id)
        await resumes.load()
        result = await resumes.upload("cv.pdf", data, "application/pdf", set_as_primary=True)
    """

    def __init__(self, backend: JobBackend, user_id: str | None) -> None:
        self._backend = backend
        self._user_id = user_id
        self.resumes: list[ResumeFile] = []
        self.primary_url: str | None = None
        self.is_loading = False
        self.is_uploading = False
        self.error: str | None = None

    def is_primary(self, resume: ResumeFile) -> bool:
        return resume.url is not None and resume.url == self.primary_url

    async def load(self) -> MutationResult:
        """Reload the file list and the primary pointer from the profile."""
        if not self._user_id:
            self.resumes = []
            return MutationResult.ok([])

        self.is_loading = True
        self.error = None
        try:
            entries = await self._backend.list_resumes(self._user_id)
        except BackendError as e:
            if "not found" in e.message.lower():
                # No folder yet: the user has never uploaded
                entries = []
            else:
                logger.error("Error loading resumes: %s", e)
                self.error = e.message or "Failed to load resumes"
                return MutationResult.fail(self.error)
        finally:
            self.is_loading = False

        self.resumes = [
            resume_from_entry(e)
            for e in entries
            if e.get("name") and not str(e["name"]).endswith("/")
        ]
        await self._load_primary()
        return MutationResult.ok(self.resumes)

    async def _load_primary(self) -> None:
        if not self._user_id:
            return
        try:
            row = await self._backend.fetch_profile(self._user_id)
        except BackendError as e:
            logger.debug("No primary resume: %s", e)
            return
        if row.get("resume_url"):
            self.primary_url = row["resume_url"]

    async def upload(
        self,
        file_name: str,
        content: bytes,
        content_type: str,
        *,
        set_as_primary: bool = False,
    ) -> MutationResult:
        if not self._user_id:
            return MutationResult.fail(NOT_AUTHENTICATED)
        problem = validate_resume(file_name, content_type, len(content))
        if problem:
            self.error = problem
            return MutationResult.fail(problem)

        self.is_uploading = True
        self.error = None
        try:
            stored = await self._backend.upload_resume(
                self._user_id, file_name, content, content_type,
            )
            if set_as_primary and stored.get("url"):
                await self._backend.update_profile(self._user_id, {"resume_url": stored["url"]})
                self.primary_url = stored["url"]
        except BackendError as e:
            logger.error("Error uploading resume: %s", e)
            self.error = e.message or "Failed to upload resume"
            return MutationResult.fail(self.error)
        finally:
            self.is_uploading = False

        logger.info("Uploaded resume %s (%d bytes)", file_name, len(content))
        await self.load()
        return MutationResult.ok(stored)

    async def delete(self, path: str) -> MutationResult:
        """Delete a stored file; clears the primary pointer if it was the primary."""
        if not self._user_id:
            return MutationResult.fail(NOT_AUTHENTICATED)

        self.error = None
        resume = next((r for r in self.resumes if r.path == path), None)
        try:
            await self._backend.delete_resume(path)
            if resume is not None and self.is_primary(resume):
                await self._backend.update_profile(self._user_id, {"resume_url": None})
                self.primary_url = None
        except BackendError as e:
            logger.error("Error deleting resume: %s", e)
            self.error = e.message or "Failed to delete resume"
            return MutationResult.fail(self.error)

        self.resumes = [r for r in self.resumes if r.path != path]
        return MutationResult.ok()

    async def set_primary(self, resume_url: str) -> MutationResult:
        if not self._user_id:
            return MutationResult.fail(NOT_AUTHENTICATED)

        self.error = None
        try:
            await self._backend.update_profile(self._user_id, {"resume_url": resume_url})
        except BackendError as e:
            logger.error("Error setting primary resume: %s", e)
            self.error = e.message or "Failed to set primary resume"
            return MutationResult.fail(self.error)

        self.primary_url = resume_url
        return MutationResult.ok(resume_url)
