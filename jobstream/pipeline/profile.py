"""User profile: load with a fallback for users who have no row yet, and update."""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from jobstream.backends.base import NOT_FOUND, BackendError, JobBackend
from jobstream.core.schemas import MutationResult, Profile

logger = logging.getLogger(__name__)

LOAD_ERROR = "Failed to load profile"
UPDATE_ERROR = "Failed to update profile"
EDITABLE_FIELDS = frozenset(Profile.model_fields) - {"id"}


def fallback_profile(identity: Mapping[str, Any]) -> Profile:
    """Blank profile built from the signed-in identity (id, email, user_metadata)."""
    metadata = identity.get("user_metadata") or {}
    return Profile(
        id=str(identity["id"]),
        email=identity.get("email") or "",
        full_name=metadata.get("full_name") or "",
        avatar_url=metadata.get("avatar_url") or "",
        resume_url="",
    )


class ProfileManager:
    """Holds the signed-in user's profile.

    Not optimistic: the local profile only changes once the backend returns
    the updated row.

    Usage::

        profile = ProfileManager(backend, user_id, identity={"id": user_id, "email": email})
        await profile.load()
        result = await profile.update(job_title="Staff Engineer")
    """

    def __init__(
        self,
        backend: JobBackend,
        user_id: str | None,
        identity: Mapping[str, Any] | None = None,
    ) -> None:
        self._backend = backend
        self._user_id = user_id
        self._identity = identity
        self._alive = True
        self.profile: Profile | None = None
        self._unsaved_fallback = False
        self.is_loading = False
        self.is_saving = False
        self.error: str | None = None

    def close(self) -> None:
        self._alive = False

    async def load(self) -> MutationResult:
        """Fetch the profile. A missing row yields a blank profile from the identity."""
        if not self._user_id:
            return MutationResult.ok(None)

        self.is_loading = True
        self.error = None
        self._unsaved_fallback = False
        try:
            row = await self._backend.fetch_profile(self._user_id)
            profile = Profile.model_validate(row)
        except BackendError as e:
            if e.code != NOT_FOUND:
                logger.error("Error fetching profile: %s", e)
                self.error = e.message
                return MutationResult.fail(e.message)
            logger.info("No profile row for %s, using identity defaults", self._user_id)
            profile = fallback_profile(self._identity) if self._identity else None
            self._unsaved_fallback = profile is not None
        except ValidationError as e:
            logger.error("Error fetching profile: %s", e)
            self.error = LOAD_ERROR
            return MutationResult.fail(LOAD_ERROR)
        finally:
            self.is_loading = False

        if self._alive:
            self.profile = profile
        return MutationResult.ok(profile)

    async def update(self, **changes: Any) -> MutationResult:
        """Persist a partial update and adopt the row the backend returns."""
        if not self._user_id:
            return MutationResult.fail("No user ID")
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            return MutationResult.fail(f"Unknown profile field(s): {', '.join(unknown)}")
        current = self.profile.model_dump() if self.profile else {"id": self._user_id}
        try:
            Profile.model_validate({**current, **changes})
        except ValidationError as e:
            return MutationResult.fail(f"Invalid profile: {e.errors()[0]['msg']}")

        self.is_saving = True
        self.error = None
        try:
            payload = dict(changes)
            if self._unsaved_fallback and self.profile is not None:
                # First write creates the row: carry the identity defaults along
                payload = {**self.profile.model_dump(exclude={"id"}), **changes}
            row = await self._backend.update_profile(self._user_id, payload)
            profile = Profile.model_validate(row)
        except BackendError as e:
            logger.error("Error updating profile: %s", e)
            self.error = e.message
            return MutationResult.fail(e.message)
        except Exception:
            logger.exception("Unexpected error updating profile")
            self.error = UPDATE_ERROR
            return MutationResult.fail(UPDATE_ERROR)
        finally:
            self.is_saving = False

        self._unsaved_fallback = False
        if self._alive:
            self.profile = profile
        return MutationResult.ok(profile)
