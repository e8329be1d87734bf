"""Notification fan-out and read tracking.

Personal notifications live at ``users/{uid}/notifications/{nid}`` with a
``read`` flag. Group notifications live once per group at
``groups/{gid}/notifications/{nid}`` and track readers in ``readBy/{uid}``.
Either way a notification only ever moves from unread to read: nothing in
this module writes ``false``.

Fan-out writes are independent. A failed recipient is logged and skipped,
and the caller gets back the notifications that were actually written.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from socialtree import metrics, paths
from socialtree.config import settings
from socialtree.errors import NotFoundError, StoreError
from socialtree.interfaces import ITreeStore, Unsubscribe
from socialtree.logging import logger
from socialtree.models import (
    MarkAllReadResult,
    Notification,
    NotificationSender,
    NotificationType,
)
from socialtree.repository import TreeRepository
from socialtree.utils import as_mapping, now_ms

PAYLOAD_FIELDS = ("message", "postId", "groupId", "groupName")


def is_group_scoped(notification: Notification) -> bool:
    """True for notifications stored once per group (tracked via readBy)."""
    return notification.groupScoped and bool(notification.groupId)


def _inbox_key(notification: Notification) -> tuple[str | None, str]:
    gid = notification.groupId if is_group_scoped(notification) else None
    return gid, notification.id


class NotificationRepository(TreeRepository):
    """Write, list and mark notifications.

    Args:
        store: Hierarchical store
        max_concurrency: Maximum in-flight writes during fan-out
    """

    def __init__(
        self,
        store: ITreeStore,
        max_concurrency: int | None = None,
        atomic_counters: bool | None = None,
    ):
        super().__init__(store, atomic_counters)
        self.max_concurrency = max_concurrency or settings.max_concurrency

    async def notify(
        self,
        recipient_ids: Iterable[str],
        type: str,
        sender: NotificationSender,
        payload: dict[str, Any] | None = None,
        to_groups: bool | None = None,
    ) -> list[Notification]:
        """Write one notification per recipient.

        Args:
            recipient_ids: User IDs, or group IDs when ``to_groups`` is set
            type: Notification type (share, comment, like, mention, group, ...)
            sender: Who triggered it
            payload: Optional ``message``, ``postId``, ``groupId``, ``groupName``
            to_groups: Address groups instead of users (defaults to
                ``type == "group"``)

        Returns:
            The notifications that were written, in recipient order
        """
        if to_groups is None:
            to_groups = type == NotificationType.GROUP
        extra = {k: v for k, v in (payload or {}).items() if k in PAYLOAD_FIELDS}

        recipients: list[str] = []
        for rid in recipient_ids:
            if rid and rid not in recipients:
                recipients.append(paths.key(rid, "recipient id"))

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def deliver(recipient: str) -> Notification | None:
            base = (
                paths.group_notifications(recipient)
                if to_groups
                else paths.user_notifications(recipient)
            )
            path = self.store.append_child(base)
            fields = dict(extra)
            if to_groups:
                fields.setdefault("groupId", recipient)
            notification = Notification.model_validate(
                {
                    **fields,
                    "id": paths.last(path),
                    "type": str(type),
                    "from": sender,
                    "timestamp": now_ms(),
                    "groupScoped": to_groups,
                }
            )
            record = notification.to_group_record() if to_groups else notification.to_record()
            async with semaphore:
                written = await self._best_effort("notification", self.store.set(path, record))
            if not written:
                return None
            metrics.notifications_created_total.labels(type=str(type)).inc()
            return notification

        results = await asyncio.gather(*(deliver(r) for r in recipients))
        created = [n for n in results if n is not None]
        logger.debug(f"Sent {len(created)}/{len(recipients)} {type} notifications")
        return created

    async def _group_notifications(self, user_id: str) -> list[Notification]:
        index = as_mapping(await self.store.get(paths.user_groups(user_id)))
        items = []
        for gid, entry in index.items():
            group_name = entry.get("name") if isinstance(entry, dict) else None
            data = await self.store.get(paths.group_notifications(gid))
            for n in self._parse_children(data, Notification):
                items.append(
                    n.model_copy(
                        update={
                            "groupId": gid,
                            "groupScoped": True,
                            "groupName": n.groupName or group_name,
                            "read": bool(n.readBy.get(user_id)),
                        }
                    )
                )
        return items

    async def list_notifications(self, user_id: str) -> list[Notification]:
        """Personal and group notifications of a user, newest first.

        Group notifications keep their stored ``type``; they come back with
        ``groupScoped`` set and ``read`` taken from the user's ``readBy`` flag.
        """
        personal = self._parse_children(
            await self.store.get(paths.user_notifications(user_id)), Notification
        )
        items = personal + await self._group_notifications(user_id)
        items.sort(key=lambda n: (n.timestamp, n.id), reverse=True)
        return items

    async def unread_count(self, user_id: str) -> int:
        return sum(1 for n in await self.list_notifications(user_id) if not n.is_read_by(user_id))

    async def mark_read(
        self,
        user_id: str,
        notification_id: str,
        group_id: str | None = None,
    ) -> None:
        """Mark one notification as read for ``user_id``.

        Raises:
            ValidationError: If an ID is blank or contains ``/``
            NotFoundError: If the notification does not exist
            WriteError: If the write fails
        """
        if group_id:
            path = paths.group_notification(group_id, notification_id)
            update = {f"readBy/{paths.key(user_id, 'user id')}": True}
        else:
            path = paths.user_notification(user_id, notification_id)
            update = {"read": True}

        if await self.store.get(path) is None:
            raise NotFoundError(path)
        await self.store.merge(path, update)

    async def mark_all_read(
        self,
        user_id: str,
        notifications: list[Notification] | None = None,
    ) -> MarkAllReadResult:
        """Mark every unread notification in ``notifications`` as read.

        Personal notifications go out as one multi-path update at the root.
        Group notifications go out as one update per group. Each batch
        succeeds or fails on its own; failures are reported in the result
        and not retried.

        Only notifications currently stored for the user are written.
        Unknown IDs are reported as failed instead of creating stub records.

        Args:
            user_id: Reader
            notifications: Notifications to mark (defaults to the user's
                current list)
        """
        stored = {_inbox_key(n): n for n in await self.list_notifications(user_id)}
        result = MarkAllReadResult()
        if notifications is None:
            candidates = list(stored.values())
        else:
            candidates = []
            for n in notifications:
                current = stored.get(_inbox_key(n))
                if current is None:
                    result.failed[n.id] = "not found"
                    continue
                candidates.append(current)
        unread = [n for n in candidates if not n.is_read_by(user_id)]

        personal = [n for n in unread if not is_group_scoped(n)]
        by_group: dict[str, list[Notification]] = defaultdict(list)
        for n in unread:
            if is_group_scoped(n):
                by_group[n.groupId].append(n)

        batches: list[tuple[str, dict[str, Any], list[Notification]]] = []
        if personal:
            batches.append(
                (
                    "",
                    {f"{paths.user_notification(user_id, n.id)}/read": True for n in personal},
                    personal,
                )
            )
        for gid, items in by_group.items():
            batches.append(
                (
                    paths.group(gid),
                    {f"notifications/{n.id}/readBy/{user_id}": True for n in items},
                    items,
                )
            )

        for base, update, items in batches:
            try:
                await self.store.merge(base, update)
            except StoreError as exc:
                logger.warning(f"⚠️ Failed to mark {len(items)} notifications read: {exc}")
                metrics.fanout_failures_total.labels(step="mark_all_read").inc()
                result.failed.update({n.id: str(exc) for n in items})
            else:
                result.marked.extend(n.id for n in items)

        return result

    async def listen_for_notifications(
        self,
        user_id: str,
        callback: Callable[[list[Notification]], Any],
    ) -> Unsubscribe:
        """Watch a user's notifications.

        ``callback`` receives the merged list (as :meth:`list_notifications`)
        whenever the personal list, the group index or a joined group's
        notifications change. Groups joined after subscribing are picked up
        on the next subscription.
        """

        async def refresh(_: Any) -> None:
            result = callback(await self.list_notifications(user_id))
            if asyncio.iscoroutine(result):
                await result

        watched = [paths.user_notifications(user_id), paths.user_groups(user_id)]
        index = as_mapping(await self.store.get(paths.user_groups(user_id)))
        watched.extend(paths.group_notifications(gid) for gid in index)

        handles = [await self.store.subscribe(path, refresh) for path in watched]

        def unsubscribe() -> None:
            for handle in handles:
                handle()

        return unsubscribe


__all__ = ["NotificationRepository", "is_group_scoped"]
