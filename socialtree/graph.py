"""Social graph repository.

Connections are symmetric and stored as two independent edges,
``connections/{a}/{b}`` and ``connections/{b}/{a}``. A failure between the
two writes leaves a one-sided edge; calling :meth:`connect` again repairs
it because every write is a plain overwrite.

Profile ``connections`` counters are recomputed from the edge table after
each connect, so retries never double count.
"""

from socialtree import paths
from socialtree.config import settings
from socialtree.errors import ValidationError
from socialtree.interfaces import ITreeStore
from socialtree.logging import logger
from socialtree.models import ConnectionEdge, UserSummary
from socialtree.profiles import ProfileRepository
from socialtree.repository import TreeRepository
from socialtree.utils import as_mapping, now_ms


class SocialGraphRepository(TreeRepository):
    """Symmetric user connections and connection suggestions."""

    def __init__(
        self,
        store: ITreeStore,
        profiles: ProfileRepository,
        atomic_counters: bool | None = None,
    ):
        super().__init__(store, atomic_counters)
        self.profiles = profiles

    async def connect(self, user_id: str, target_id: str) -> None:
        """Create both edges of a connection.

        Raises:
            ValidationError: Self-connection or missing IDs (nothing is written)
            WriteError: If an edge write fails; an edge written earlier in
                the same call stays in place
        """
        if not user_id or not target_id:
            raise ValidationError("Both user IDs are required")
        if user_id == target_id:
            raise ValidationError("Cannot connect a user to themselves")

        edge = ConnectionEdge(connectedAt=now_ms()).model_dump()
        await self.store.set(paths.connection(user_id, target_id), edge)
        await self.store.set(paths.connection(target_id, user_id), edge)
        logger.info(f"✅ Connected {user_id} <-> {target_id}")

        for uid in (user_id, target_id):
            await self._best_effort("connection_counter", self._refresh_counter(uid))

    async def _refresh_counter(self, user_id: str) -> None:
        if await self.profiles.get_profile(user_id) is None:
            return
        count = len(await self.get_connection_ids(user_id))
        await self.store.merge(paths.user(user_id), {"connections": count})

    async def has_connection(self, user_id: str, other_id: str) -> bool:
        return await self.store.get(paths.connection(user_id, other_id)) is not None

    async def get_connection_ids(self, user_id: str) -> list[str]:
        data = await self.store.get(paths.user_connections(user_id))
        return list(as_mapping(data))

    async def get_connections(self, user_id: str) -> list[UserSummary]:
        """Summaries of the user's connections (missing profiles skipped)."""
        return await self.profiles.get_summaries(await self.get_connection_ids(user_id))

    async def get_suggested_users(
        self,
        user_id: str,
        limit: int | None = None,
    ) -> list[UserSummary]:
        """Users the given user is not connected to, in store order.

        No ranking is applied.
        """
        if limit is None:
            limit = settings.suggestion_limit
        excluded = set(await self.get_connection_ids(user_id)) | {user_id}
        candidates = [
            UserSummary.from_profile(p)
            for p in await self.profiles.list_profiles()
            if p.id not in excluded
        ]
        return candidates[:limit]


__all__ = ["SocialGraphRepository"]
