"""Group repository with a per-user membership index.

The group record at ``groups/{gid}`` is authoritative. Each member also
gets an index entry at ``users/{uid}/groups/{gid}`` so "my groups" is a
single read; those entries are written best-effort and may lag.
"""

from collections.abc import Iterable

from socialtree import paths
from socialtree.errors import NotFoundError, ValidationError
from socialtree.logging import logger
from socialtree.models import Group, GroupSummary
from socialtree.repository import TreeRepository
from socialtree.utils import as_mapping, now_ms


class GroupRepository(TreeRepository):
    """Create groups and read membership."""

    async def create_group(
        self,
        creator_id: str,
        name: str,
        type: str = "",
        member_ids: Iterable[str] = (),
    ) -> Group:
        """Create a group and index it for every member.

        Members are the creator followed by ``member_ids``, without
        duplicates.

        Raises:
            ValidationError: Empty name or a malformed member ID (nothing is
                written)
            WriteError: If the group record cannot be written
        """
        group_name = (name or "").strip()
        if not group_name:
            raise ValidationError("Group name must not be empty")

        members: list[str] = []
        for uid in (creator_id, *member_ids):
            if uid and uid not in members:
                members.append(paths.key(uid, "member id"))

        path = self.store.append_child(paths.GROUPS)
        group = Group(
            id=paths.last(path),
            name=group_name,
            type=str(type or ""),
            createdBy=creator_id,
            createdAt=now_ms(),
            members=members,
        )
        await self.store.set(path, group.to_record())
        logger.info(f"✅ Created group {group.id} with {len(members)} members")

        for uid in members:
            await self._best_effort(
                "group_index",
                self.store.set(paths.user_group(uid, group.id), {"name": group_name}),
            )
        return group

    async def get_group(self, group_id: str) -> Group:
        """Fetch one group.

        Raises:
            NotFoundError: If the group does not exist
        """
        data = await self.store.get(paths.group(group_id))
        if not isinstance(data, dict) or "createdBy" not in data:
            raise NotFoundError(paths.group(group_id))
        return Group.from_record(group_id, data)

    async def list_groups(self) -> list[Group]:
        groups = self._parse_children(await self.store.get(paths.GROUPS), Group)
        groups.sort(key=lambda g: g.id)
        return groups

    async def list_my_groups(self, user_id: str) -> list[GroupSummary]:
        """Groups from the user's membership index."""
        data = as_mapping(await self.store.get(paths.user_groups(user_id)))
        return [
            GroupSummary(id=gid, name=entry.get("name", "") if isinstance(entry, dict) else str(entry))
            for gid, entry in data.items()
        ]


__all__ = ["GroupRepository"]
