"""REST backend for a hosted PostgREST-style store, using httpx.

Tables: ``jobs``, ``saved_jobs``, ``applications``, ``user_settings``,
``profiles``. Resumes live in the private ``resumes`` storage bucket and are
handed out as signed URLs.
The new-job channel is an interval poll over ``jobs``: the first pass only
records which rows exist, later passes deliver rows not seen before.
"""

import asyncio
import logging
import re
import time
from typing import Any

import httpx

from jobstream.backends.base import (
    NOT_FOUND,
    BackendError,
    InsertHandler,
    JobBackend,
    Subscription,
    log_task_failure,
)
from jobstream.core.schemas import Application, ApplicationStatus, SavedJob, utcnow

logger = logging.getLogger(__name__)

_JOB_SELECT = "*,company:companies(*)"
_POLL_PAGE_SIZE = 100
_REST_ROOT = "/rest/v1"
_STORAGE_ROOT = "/storage/v1"
_RESUME_BUCKET = "resumes"
_SIGNED_URL_TTL_S = 3600


class RestBackend(JobBackend):
    """Talks to ``<url>/rest/v1`` and ``<url>/storage/v1`` with an API key.

    Usage::

        backend = RestBackend("https://xyz.example.co", api_key)
        rows = await backend.fetch_active_jobs()
        await backend.aclose()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_s: float = 10.0,
        poll_interval_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            msg = "RestBackend requires a base URL"
            raise ValueError(msg)
        self._poll_interval_s = poll_interval_s
        self._poll_tasks: set[asyncio.Task[None]] = set()
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout_s,
            transport=transport,
        )

    @property
    def backend_id(self) -> str:
        return "rest"

    async def aclose(self) -> None:
        for task in list(self._poll_tasks):
            task.cancel()
        await self._client.aclose()

    # -- jobs ---------------------------------------------------------------

    async def fetch_active_jobs(self) -> list[dict[str, Any]]:
        rows = await self._request(
            "GET",
            "/jobs",
            params={"select": _JOB_SELECT, "is_active": "eq.true", "order": "posted_at.desc"},
        )
        return list(rows or [])

    async def subscribe_to_new_jobs(self, on_insert: InsertHandler) -> Subscription:
        task = asyncio.create_task(self._poll_new_jobs(on_insert))
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)
        task.add_done_callback(log_task_failure)
        logger.info("Polling for new jobs every %.1fs", self._poll_interval_s)
        return Subscription(on_close=task.cancel)

    async def _poll_new_jobs(self, on_insert: InsertHandler) -> None:
        seen: set[str] | None = None
        while True:
            try:
                rows = await self._request(
                    "GET",
                    "/jobs",
                    params={
                        "select": "*",
                        "order": "posted_at.desc",
                        "limit": str(_POLL_PAGE_SIZE),
                    },
                )
            except (BackendError, ValueError) as e:
                logger.warning("New-job poll failed: %s", e)
            else:
                rows = [r for r in rows or [] if isinstance(r, dict)]
                if seen is None:
                    seen = {str(r.get("id")) for r in rows}
                    logger.debug("Poll baseline: %d existing jobs", len(seen))
                else:
                    # Oldest first so subscribers see inserts in posting order.
                    for row in reversed(rows):
                        job_id = str(row.get("id"))
                        if job_id in seen:
                            continue
                        seen.add(job_id)
                        try:
                            on_insert(row)
                        except Exception:
                            logger.exception("New-job handler failed for job %s", job_id)
            await asyncio.sleep(self._poll_interval_s)

    # -- saved jobs ---------------------------------------------------------

    async def fetch_saved_jobs(self, user_id: str) -> list[SavedJob]:
        rows = await self._request(
            "GET",
            "/saved_jobs",
            params={
                "select": "id,job_id,user_id,notes,created_at",
                "user_id": f"eq.{user_id}",
                "order": "created_at.desc",
            },
        )
        return [SavedJob.model_validate(r) for r in rows or []]

    async def save_job(self, user_id: str, job_id: str, notes: str | None = None) -> SavedJob:
        rows = await self._request(
            "POST",
            "/saved_jobs",
            json={"user_id": user_id, "job_id": job_id, "notes": notes},
            prefer="return=representation",
        )
        return SavedJob.model_validate(_single(rows, "saved job"))

    async def unsave_job(self, user_id: str, job_id: str) -> None:
        await self._request(
            "DELETE",
            "/saved_jobs",
            params={"user_id": f"eq.{user_id}", "job_id": f"eq.{job_id}"},
        )

    # -- applications -------------------------------------------------------

    async def fetch_applications(self, user_id: str) -> list[Application]:
        rows = await self._request(
            "GET",
            "/applications",
            params={
                "select": f"*,job:jobs({_JOB_SELECT})",
                "user_id": f"eq.{user_id}",
                "order": "applied_at.desc",
            },
        )
        return [Application.model_validate(r) for r in rows or []]

    async def submit_application(
        self,
        user_id: str,
        job_id: str,
        cover_letter: str | None = None,
        resume_url: str | None = None,
    ) -> Application:
        rows = await self._request(
            "POST",
            "/applications",
            json={
                "user_id": user_id,
                "job_id": job_id,
                "cover_letter": cover_letter,
                "resume_url": resume_url,
            },
            prefer="return=representation",
        )
        return Application.model_validate(_single(rows, "application"))

    async def withdraw_application(self, application_id: str) -> Application:
        rows = await self._request(
            "PATCH",
            "/applications",
            params={"id": f"eq.{application_id}"},
            json={"status": ApplicationStatus.WITHDRAWN.value},
            prefer="return=representation",
        )
        return Application.model_validate(_single(rows, "application"))

    # -- settings -----------------------------------------------------------

    async def fetch_settings(self, user_id: str) -> dict[str, Any] | None:
        rows = await self._request(
            "GET",
            "/user_settings",
            params={"select": "*", "user_id": f"eq.{user_id}"},
        )
        if not rows:
            return None
        return dict(rows[0])

    async def update_settings(self, user_id: str, changes: dict[str, Any]) -> None:
        rows = await self._request(
            "PATCH",
            "/user_settings",
            params={"user_id": f"eq.{user_id}"},
            json=changes,
            prefer="return=representation",
        )
        if not rows:
            # No row yet for this user
            await self._request(
                "POST",
                "/user_settings",
                json={"user_id": user_id, **changes},
                prefer="return=minimal",
            )

    # -- profiles -----------------------------------------------------------

    async def fetch_profile(self, user_id: str) -> dict[str, Any]:
        rows = await self._request(
            "GET",
            "/profiles",
            params={"select": "*", "id": f"eq.{user_id}"},
        )
        if not rows:
            raise BackendError("The result contains 0 rows", code=NOT_FOUND)
        return dict(rows[0])

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request(
            "PATCH",
            "/profiles",
            params={"id": f"eq.{user_id}"},
            json=changes,
            prefer="return=representation",
        )
        if not rows:
            rows = await self._request(
                "POST",
                "/profiles",
                json={"id": user_id, **changes},
                prefer="return=representation",
            )
        return _single(rows, "profile")

    # -- resumes ------------------------------------------------------------

    async def list_resumes(self, user_id: str) -> list[dict[str, Any]]:
        entries = await self._request(
            "POST",
            f"/object/list/{_RESUME_BUCKET}",
            json={
                "prefix": user_id,
                "sortBy": {"column": "created_at", "order": "desc"},
            },
            root=_STORAGE_ROOT,
        )
        resumes = []
        for entry in entries or []:
            path = f"{user_id}/{entry.get('name')}"
            resumes.append({**entry, "path": path, "url": await self._signed_url(path)})
        return resumes

    async def upload_resume(
        self, user_id: str, file_name: str, content: bytes, content_type: str,
    ) -> dict[str, Any]:
        stored_name = f"{int(time.time() * 1000)}_{re.sub(r'[^a-zA-Z0-9.-]', '_', file_name)}"
        path = f"{user_id}/{stored_name}"
        await self._request(
            "POST",
            f"/object/{_RESUME_BUCKET}/{path}",
            content=content,
            headers={
                "Content-Type": content_type,
                "Cache-Control": "max-age=3600",
                "x-upsert": "false",
            },
            root=_STORAGE_ROOT,
        )
        return {
            "path": path,
            "url": await self._signed_url(path),
            "file_name": file_name,
            "file_size": len(content),
            "file_type": content_type,
            "uploaded_at": utcnow().isoformat(),
        }

    async def delete_resume(self, path: str) -> None:
        await self._request(
            "DELETE",
            f"/object/{_RESUME_BUCKET}",
            json={"prefixes": [path]},
            root=_STORAGE_ROOT,
        )

    async def _signed_url(self, path: str) -> str | None:
        """Signed download URL for a private object, or None if signing fails."""
        try:
            body = await self._request(
                "POST",
                f"/object/sign/{_RESUME_BUCKET}/{path}",
                json={"expiresIn": _SIGNED_URL_TTL_S},
                root=_STORAGE_ROOT,
            )
        except BackendError as e:
            logger.warning("Could not sign %s: %s", path, e)
            return None
        signed = (body or {}).get("signedURL")
        if not signed:
            return None
        return f"{self._base_url}{_STORAGE_ROOT}{signed}"

    # -- transport ----------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        prefer: str | None = None,
        root: str = _REST_ROOT,
    ) -> Any:
        headers = dict(headers or {})
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method,
                f"{root}{path}",
                params=params,
                json=json,
                content=content,
                headers=headers or None,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message, code = _error_details(e.response)
            logger.debug("%s %s -> %d: %s", method, path, e.response.status_code, message)
            raise BackendError(message, code=code) from e
        except httpx.HTTPError as e:
            msg = f"Network error: {e}"
            raise BackendError(msg) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            msg = f"Invalid JSON from {method} {path}"
            raise BackendError(msg) from e


def _error_details(response: httpx.Response) -> tuple[str, str | None]:
    """Pull the user-facing message and error code out of an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("msg")
        if message:
            code = body.get("code")
            return str(message), str(code) if code is not None else None
    return f"Request failed with status {response.status_code}", None


def _single(rows: Any, what: str) -> dict[str, Any]:
    if isinstance(rows, list) and rows:
        return dict(rows[0])
    if isinstance(rows, dict):
        return rows
    msg = f"No {what} returned"
    raise BackendError(msg)
