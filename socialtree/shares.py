"""Share audit trail stored under ``shares/``."""

from collections.abc import Iterable

from socialtree import paths
from socialtree.models import ShareRecord
from socialtree.repository import TreeRepository
from socialtree.utils import now_ms


class ShareRepository(TreeRepository):
    async def record_share(
        self,
        post_id: str,
        shared_by: str,
        shared_with: Iterable[str],
        message: str = "",
    ) -> ShareRecord:
        path = self.store.append_child(paths.SHARES)
        record = ShareRecord(
            id=paths.last(path),
            postId=post_id,
            sharedBy=shared_by,
            sharedWith=list(shared_with),
            message=(message or "").strip(),
            timestamp=now_ms(),
        )
        await self.store.set(path, record.to_record())
        return record

    async def list_shares(self, post_id: str | None = None) -> list[ShareRecord]:
        """Share records, oldest first, optionally for one post."""
        records = self._parse_children(await self.store.get(paths.SHARES), ShareRecord)
        if post_id is not None:
            records = [r for r in records if r.postId == post_id]
        records.sort(key=lambda r: (r.timestamp, r.id))
        return records


__all__ = ["ShareRepository"]
