"""User settings: local cache first, backend second, defaults always underneath."""

import logging
import sqlite3
from typing import Any

from pydantic import ValidationError

from jobstream.backends.base import BackendError, JobBackend
from jobstream.core.schemas import MutationResult, UserSettings
from jobstream.core.store import get_blob, put_blob
from jobstream.pipeline.optimistic import OptimisticTransaction

logger = logging.getLogger(__name__)

LOCAL_KEY = "user_settings"
SAVE_ERROR = "Failed to save settings"


class SettingsManager:
    """Holds the effective settings for the current user.

    Changes are applied locally at once and reverted if the backend rejects
    them. Signed-out users get defaults and local-only changes.
    """

    def __init__(
        self,
        backend: JobBackend,
        conn: sqlite3.Connection | None,
        user_id: str | None,
    ) -> None:
        self._backend = backend
        self._conn = conn
        self._user_id = user_id
        self._settings = self._read_local()
        self._alive = True
        self.is_loading = False
        self.is_saving = False
        self.error: str | None = None

    @property
    def settings(self) -> UserSettings:
        return self._settings

    def close(self) -> None:
        self._alive = False

    # -- local cache --------------------------------------------------------

    def _read_local(self) -> UserSettings:
        if self._conn is None:
            return UserSettings()
        raw = get_blob(self._conn, LOCAL_KEY)
        if raw is None:
            return UserSettings()
        if not isinstance(raw, dict):
            logger.warning("Ignoring cached settings: expected an object")
            return UserSettings()
        try:
            return UserSettings.model_validate(raw)
        except ValidationError as e:
            logger.warning("Ignoring cached settings: %s", e)
            return UserSettings()

    def _set(self, settings: UserSettings) -> None:
        self._settings = settings
        if self._conn is not None:
            put_blob(self._conn, LOCAL_KEY, settings.model_dump(mode="json"))

    # -- operations ---------------------------------------------------------

    async def load(self) -> MutationResult:
        """Merge the backend's row over the current settings.

        Signed out: reset to defaults. Missing row or failure: keep what we have.
        """
        if not self._user_id:
            self._set(UserSettings())
            return MutationResult.ok(self._settings)

        self.is_loading = True
        try:
            row = await self._backend.fetch_settings(self._user_id)
        except BackendError as e:
            logger.error("Error fetching settings: %s", e)
            return MutationResult.fail("Failed to load settings")
        finally:
            self.is_loading = False

        if row is None or not self._alive:
            return MutationResult.ok(self._settings)
        try:
            merged = UserSettings.model_validate({**self._settings.model_dump(), **row})
        except ValidationError as e:
            logger.warning("Ignoring invalid settings from backend: %s", e)
            return MutationResult.fail("Failed to load settings")
        self._set(merged)
        return MutationResult.ok(merged)

    async def update(self, **changes: Any) -> MutationResult:
        """Apply a partial update locally, then persist it remotely."""
        unknown = sorted(set(changes) - set(UserSettings.model_fields))
        if unknown:
            return MutationResult.fail(f"Unknown setting(s): {', '.join(unknown)}")
        try:
            updated = UserSettings.model_validate({**self._settings.model_dump(), **changes})
        except ValidationError as e:
            return MutationResult.fail(f"Invalid settings: {e.errors()[0]['msg']}")

        if not self._user_id:
            self._set(updated)
            return MutationResult.ok(updated)

        user_id = self._user_id
        payload = {k: getattr(updated, k) for k in changes}
        txn: OptimisticTransaction[UserSettings, None] = OptimisticTransaction(
            get_state=lambda: self._settings,
            set_state=self._set,
            apply=lambda _: updated,
            attempt=lambda: self._backend.update_settings(user_id, payload),
            is_alive=lambda: self._alive,
            expected=(BackendError,),
        )

        self.is_saving = True
        self.error = None
        try:
            outcome = await txn.run()
        except Exception:
            logger.exception("Unexpected error saving settings")
            self.error = SAVE_ERROR
            return MutationResult.fail(SAVE_ERROR)
        finally:
            self.is_saving = False

        if not outcome.ok:
            message = str(outcome.error) or SAVE_ERROR
            logger.error("Error saving settings: %s", message)
            self.error = message
            return MutationResult.fail(message)
        return MutationResult.ok(self._settings)

    async def update_setting(self, key: str, value: Any) -> MutationResult:
        return await self.update(**{key: value})

    async def reset(self) -> MutationResult:
        """Restore defaults locally and push them to the backend (best effort)."""
        defaults = UserSettings()
        self._set(defaults)
        if self._user_id:
            try:
                await self._backend.update_settings(self._user_id, defaults.model_dump())
            except BackendError as e:
                logger.error("Error resetting settings: %s", e)
        return MutationResult.ok(defaults)
