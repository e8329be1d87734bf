"""Profile repository.

Profiles live at ``users/{uid}``, next to the user's group index and
notifications. Profile writes therefore always merge top-level fields and
never overwrite the whole node.
"""

import asyncio
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from socialtree import paths
from socialtree.errors import NotFoundError, ValidationError
from socialtree.identity import IdentityClaims
from socialtree.logging import logger
from socialtree.models import UserProfile, UserSummary
from socialtree.repository import TreeRepository
from socialtree.utils import as_mapping

PROFILE_FIELDS = frozenset(UserProfile.model_fields)
UPDATABLE_FIELDS = PROFILE_FIELDS - {"id", "connections"}


def _is_profile(data: Any) -> bool:
    # users/{uid} may hold only an index or notifications for a user that
    # never completed signup
    return isinstance(data, dict) and any(k in PROFILE_FIELDS for k in data)


def _parse_profile(uid: str, data: dict[str, Any]) -> UserProfile:
    record = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
    # Older clients kept a map of connected users under the profile
    if isinstance(record.get("connections"), dict):
        record["connections"] = len(record["connections"])
    return UserProfile.model_validate({**record, "id": uid})


class ProfileRepository(TreeRepository):
    """Read and write user profiles."""

    async def get_profile(self, user_id: str) -> UserProfile | None:
        data = await self.store.get(paths.user(user_id))
        if not _is_profile(data):
            return None
        return _parse_profile(user_id, data)

    async def ensure_profile(
        self,
        user_id: str,
        claims: IdentityClaims | None = None,
        title: str | None = None,
    ) -> UserProfile:
        """Return the user's profile, creating the default one if missing.

        Two concurrent calls for the same user write identical content, so
        running this on every login is safe.

        Args:
            user_id: Identity provider user ID
            claims: Identity claims used for the default profile
            title: Headline for a newly created profile (e.g. "New Member")
        """
        existing = await self.get_profile(user_id)
        if existing is not None:
            return existing

        claims = claims or IdentityClaims()
        profile = UserProfile(
            id=user_id,
            displayName=claims.displayName or "User",
            email=claims.email,
            photoURL=claims.photoURL,
            title=title,
            connections=0,
        )
        await self.store.merge(paths.user(user_id), profile.to_record())
        logger.info(f"✅ Created profile for {user_id}")
        return profile

    async def update_profile(self, user_id: str, fields: dict[str, Any]) -> UserProfile:
        """Merge editable profile fields and return the stored result.

        Raises:
            ValidationError: Unknown or read-only fields, or bad values
            NotFoundError: If the profile does not exist
        """
        if not fields:
            raise ValidationError("No profile fields to update")
        rejected = sorted(set(fields) - UPDATABLE_FIELDS)
        if rejected:
            raise ValidationError(f"Fields cannot be updated: {', '.join(rejected)}")

        current = await self.get_profile(user_id)
        if current is None:
            raise NotFoundError(paths.user(user_id))
        try:
            UserProfile.model_validate({**current.model_dump(), **fields})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid profile update: {exc}") from exc

        await self.store.merge(paths.user(user_id), fields)

        updated = await self.get_profile(user_id)
        if updated is None:
            raise NotFoundError(paths.user(user_id))
        return updated

    async def list_profiles(self) -> list[UserProfile]:
        """All profiles, in store key order."""
        data = as_mapping(await self.store.get(paths.USERS))
        profiles = []
        for uid, record in data.items():
            if not _is_profile(record):
                continue
            try:
                profiles.append(_parse_profile(uid, record))
            except PydanticValidationError as exc:
                logger.warning(f"⚠️ Skipping malformed profile {uid!r}: {exc}")
        return profiles

    async def get_summaries(self, user_ids: list[str]) -> list[UserSummary]:
        """Summaries for the given users, skipping missing profiles."""
        profiles = await asyncio.gather(*(self.get_profile(uid) for uid in user_ids))
        return [UserSummary.from_profile(p) for p in profiles if p is not None]


__all__ = ["ProfileRepository"]
