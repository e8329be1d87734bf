"""Social service facade.

:class:`SocialService` wires the repositories to one store, an identity
provider and a blob store, and implements the user-facing actions: posting
(with image upload), liking, commenting and sharing with notification
fan-out, connecting, groups and notification read tracking.

Actions that need a signed-in user do nothing and return ``None`` while
nobody is signed in. Use :meth:`SocialService.require_user` to get an
``AuthError`` instead.

Example:
    >>> service = SocialService.from_settings()
    >>> await service.signup("ada@example.com", "secret1", "Ada")
    >>> post = await service.create_post("Hello", tags="intro, python")
    >>> await service.like_post(post.id)
    1
"""

import mimetypes
from collections.abc import Callable, Iterable
from typing import Any

from socialtree import paths
from socialtree.blobs import create_blob_store, encode_data_url
from socialtree.comments import CommentRepository
from socialtree.config import Settings, settings
from socialtree.errors import AuthError, ValidationError
from socialtree.graph import SocialGraphRepository
from socialtree.groups import GroupRepository
from socialtree.identity import LocalIdentityProvider
from socialtree.interfaces import IBlobStore, IIdentityProvider, ITreeStore, ProgressCallback
from socialtree.logging import logger
from socialtree.models import (
    Comment,
    Group,
    GroupSummary,
    MarkAllReadResult,
    Notification,
    NotificationSender,
    NotificationType,
    Post,
    ShareRecord,
    Tag,
    UserProfile,
    UserSummary,
)
from socialtree.notifications import NotificationRepository, is_group_scoped
from socialtree.posts import PostRepository
from socialtree.profiles import ProfileRepository
from socialtree.shares import ShareRepository
from socialtree.store import create_store
from socialtree.telemetry import shutdown_telemetry, traced_operation
from socialtree.utils import excerpt

NEW_MEMBER_TITLE = "New Member"


# =============================================================================
# Repository Container
# =============================================================================


class Repositories:
    """All repositories bound to one store.

    Example:
        >>> repos = Repositories(MemoryTreeStore())
        >>> await repos.posts.list_posts()
        []
    """

    def __init__(self, store: ITreeStore, atomic_counters: bool | None = None):
        self.store = store
        self.profiles = ProfileRepository(store, atomic_counters)
        self.posts = PostRepository(store, atomic_counters)
        self.comments = CommentRepository(store, self.posts, atomic_counters)
        self.graph = SocialGraphRepository(store, self.profiles, atomic_counters)
        self.groups = GroupRepository(store, atomic_counters)
        self.notifications = NotificationRepository(store, atomic_counters=atomic_counters)
        self.shares = ShareRepository(store, atomic_counters)


# =============================================================================
# Service
# =============================================================================


class SocialService:
    """User-facing actions for the signed-in user.

    Args:
        store: Hierarchical store (built from settings if None)
        identity: Identity provider (a fresh local provider if None)
        blobs: Blob store for images; None embeds images as data URLs
        atomic_counters: Override ``settings.atomic_counters``
    """

    def __init__(
        self,
        store: ITreeStore | None = None,
        identity: IIdentityProvider | None = None,
        blobs: IBlobStore | None = None,
        atomic_counters: bool | None = None,
    ):
        self.store = store or create_store()
        self.identity = identity or LocalIdentityProvider()
        self.blobs = blobs
        self.repos = Repositories(self.store, atomic_counters)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "SocialService":
        """Build store, identity provider and blob store from settings."""
        config = config or settings
        return cls(
            store=create_store(config),
            identity=LocalIdentityProvider(),
            blobs=create_blob_store(config),
            atomic_counters=config.atomic_counters,
        )

    async def close(self) -> None:
        await self.store.close()
        close_blobs = getattr(self.blobs, "close", None)
        if close_blobs is not None:
            await close_blobs()
        shutdown_telemetry()
        logger.debug("Social service closed")

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def current_user_id(self) -> str | None:
        return self.identity.current_user_id()

    def require_user(self) -> str:
        """ID of the signed-in user.

        Raises:
            AuthError: If nobody is signed in
        """
        uid = self.identity.current_user_id()
        if uid is None:
            raise AuthError("Not signed in")
        return uid

    def _actor(self, action: str) -> str | None:
        uid = self.identity.current_user_id()
        if uid is None:
            logger.debug(f"Ignoring {action}: no signed-in user")
        return uid

    async def signup(self, email: str, password: str, display_name: str = "") -> UserProfile:
        """Create an account and its profile (titled "New Member")."""
        with traced_operation("signup"):
            uid = await self.identity.signup(email, password, display_name)
            return await self.repos.profiles.ensure_profile(
                uid, self.identity.current_user_claims(), title=NEW_MEMBER_TITLE
            )

    async def login(self, email: str, password: str) -> UserProfile:
        """Sign in, creating the default profile if it is missing."""
        with traced_operation("login"):
            uid = await self.identity.login(email, password)
            return await self.repos.profiles.ensure_profile(
                uid, self.identity.current_user_claims()
            )

    async def logout(self) -> None:
        await self.identity.logout()

    async def current_profile(self) -> UserProfile | None:
        uid = self.identity.current_user_id()
        if uid is None:
            return None
        return await self.repos.profiles.ensure_profile(uid, self.identity.current_user_claims())

    async def _sender(self, uid: str) -> tuple[UserProfile, NotificationSender]:
        profile = await self.repos.profiles.ensure_profile(uid, self.identity.current_user_claims())
        return profile, NotificationSender(
            uid=uid, name=profile.displayName, profilePic=profile.avatar
        )

    async def update_profile(self, fields: dict[str, Any]) -> UserProfile | None:
        uid = self._actor("update_profile")
        if uid is None:
            return None
        with traced_operation("update_profile", user_id=uid):
            return await self.repos.profiles.update_profile(uid, fields)

    # -------------------------------------------------------------------------
    # Posts
    # -------------------------------------------------------------------------

    async def create_post(
        self,
        content: str,
        tags: str | Iterable[str] | None = None,
        type: str = "",
        image: bytes | None = None,
        image_name: str = "image",
        on_progress: ProgressCallback | None = None,
    ) -> Post | None:
        """Publish a post as the signed-in user.

        The image, if any, is uploaded first. An upload failure aborts the
        action before anything is written to the store.

        Raises:
            ValidationError: Empty content
            UploadError: Image upload failed
            WriteError: Post record could not be written
        """
        uid = self._actor("create_post")
        if uid is None:
            return None
        if not (content or "").strip():
            raise ValidationError("Post content must not be empty")

        with traced_operation("create_post", user_id=uid, has_image=image is not None):
            image_url = None
            if image is not None:
                if self.blobs is None:
                    mime_type = mimetypes.guess_type(image_name)[0] or "application/octet-stream"
                    image_url = encode_data_url(image, mime_type)
                else:
                    image_url = await self.blobs.upload(image, image_name, on_progress)

            profile, _ = await self._sender(uid)
            return await self.repos.posts.create_post(
                uid, content, profile.snapshot(), tags=tags, type=type, image=image_url
            )

    async def post_to_group(
        self,
        group_id: str,
        content: str,
        tags: str | Iterable[str] | None = None,
        type: str = "",
    ) -> Post | None:
        """Publish a post and notify the group."""
        uid = self._actor("post_to_group")
        if uid is None:
            return None
        with traced_operation("post_to_group", user_id=uid, group_id=group_id):
            group = await self.repos.groups.get_group(group_id)
            profile, sender = await self._sender(uid)
            post = await self.repos.posts.create_post(
                uid, content, profile.snapshot(), tags=tags, type=type
            )
            await self.repos.notifications.notify(
                [group.id],
                NotificationType.GROUP,
                sender,
                {
                    "message": f"{sender.name} posted in {group.name}: {excerpt(post.content)}",
                    "postId": post.id,
                    "groupId": group.id,
                    "groupName": group.name,
                },
            )
            return post

    async def get_post(self, post_id: str) -> Post:
        return await self.repos.posts.get_post(post_id)

    async def feed(self, limit: int | None = None) -> list[Post]:
        return await self.repos.posts.list_posts(limit)

    async def user_posts(self, user_id: str) -> list[Post]:
        return await self.repos.posts.list_posts_by_user(user_id)

    async def search(self, query: str) -> list[Post]:
        return await self.repos.posts.search_posts(query)

    async def trending_topics(self, limit: int | None = None) -> list[Tag]:
        return await self.repos.posts.get_trending_topics(limit)

    async def like_post(self, post_id: str) -> int | None:
        """Like a post and notify its author (unless it is the liker)."""
        uid = self._actor("like_post")
        if uid is None:
            return None
        with traced_operation("like_post", user_id=uid, post_id=post_id):
            post = await self.repos.posts.get_post(post_id)
            likes = await self.repos.posts.like_post(post_id, uid)
            if post.userId != uid:
                _, sender = await self._sender(uid)
                await self.repos.notifications.notify(
                    [post.userId],
                    NotificationType.LIKE,
                    sender,
                    {"message": f"{sender.name} liked your post", "postId": post_id},
                )
            return likes

    async def comment(self, post_id: str, content: str) -> Comment | None:
        """Comment on a post and notify its author (unless it is the commenter)."""
        uid = self._actor("comment")
        if uid is None:
            return None
        with traced_operation("comment", user_id=uid, post_id=post_id):
            post = await self.repos.posts.get_post(post_id)
            profile, sender = await self._sender(uid)
            comment = await self.repos.comments.add_comment(
                post_id, uid, content, profile.snapshot()
            )
            if post.userId != uid:
                await self.repos.notifications.notify(
                    [post.userId],
                    NotificationType.COMMENT,
                    sender,
                    {
                        "message": f"{sender.name} commented: {excerpt(comment.content)}",
                        "postId": post_id,
                    },
                )
            return comment

    async def get_comments(self, post_id: str) -> list[Comment]:
        return await self.repos.comments.get_comments(post_id)

    async def listen_for_comments(
        self, post_id: str, callback: Callable[[list[Comment]], Any]
    ) -> Callable[[], None]:
        return await self.repos.comments.listen_for_comments(post_id, callback)

    async def share_post(
        self,
        post_id: str,
        recipient_ids: Iterable[str],
        message: str = "",
    ) -> ShareRecord | None:
        """Share a post with other users.

        Increments the share counter, records the share and notifies each
        recipient other than the sharer.
        """
        uid = self._actor("share_post")
        if uid is None:
            return None
        recipients = [
            paths.key(r, "recipient id") for r in dict.fromkeys(recipient_ids) if r and r != uid
        ]
        with traced_operation("share_post", user_id=uid, post_id=post_id):
            await self.repos.posts.get_post(post_id)
            await self.repos.posts.share_post(post_id, uid)
            record = await self.repos.shares.record_share(post_id, uid, recipients, message)
            _, sender = await self._sender(uid)
            await self.repos.notifications.notify(
                recipients,
                NotificationType.SHARE,
                sender,
                {
                    "message": message.strip() or f"{sender.name} shared a post with you",
                    "postId": post_id,
                },
            )
            return record

    # -------------------------------------------------------------------------
    # Social graph
    # -------------------------------------------------------------------------

    async def connect(self, target_id: str) -> bool | None:
        uid = self._actor("connect")
        if uid is None:
            return None
        with traced_operation("connect", user_id=uid, target_id=target_id):
            await self.repos.graph.connect(uid, target_id)
            return True

    async def connections(self) -> list[UserSummary] | None:
        uid = self._actor("connections")
        if uid is None:
            return None
        return await self.repos.graph.get_connections(uid)

    async def suggested_users(self, limit: int | None = None) -> list[UserSummary] | None:
        uid = self._actor("suggested_users")
        if uid is None:
            return None
        return await self.repos.graph.get_suggested_users(uid, limit)

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    async def create_group(
        self,
        name: str,
        type: str = "",
        member_ids: Iterable[str] = (),
    ) -> Group | None:
        uid = self._actor("create_group")
        if uid is None:
            return None
        with traced_operation("create_group", user_id=uid):
            return await self.repos.groups.create_group(uid, name, type, member_ids)

    async def my_groups(self) -> list[GroupSummary] | None:
        uid = self._actor("my_groups")
        if uid is None:
            return None
        return await self.repos.groups.list_my_groups(uid)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def notifications(self) -> list[Notification] | None:
        uid = self._actor("notifications")
        if uid is None:
            return None
        return await self.repos.notifications.list_notifications(uid)

    async def unread_count(self) -> int | None:
        uid = self._actor("unread_count")
        if uid is None:
            return None
        return await self.repos.notifications.unread_count(uid)

    async def mark_read(self, notification: Notification | str, group_id: str | None = None) -> bool | None:
        """Mark one notification as read.

        Accepts a notification from :meth:`notifications` (group scope is
        detected) or a raw ID plus optional group ID.
        """
        uid = self._actor("mark_read")
        if uid is None:
            return None
        if isinstance(notification, Notification):
            if is_group_scoped(notification):
                group_id = notification.groupId
            notification = notification.id
        with traced_operation("mark_read", user_id=uid, notification_id=notification):
            await self.repos.notifications.mark_read(uid, notification, group_id)
            return True

    async def mark_all_read(self) -> MarkAllReadResult | None:
        uid = self._actor("mark_all_read")
        if uid is None:
            return None
        with traced_operation("mark_all_read", user_id=uid):
            result = await self.repos.notifications.mark_all_read(uid)
            if result.failed:
                logger.warning(
                    f"⚠️ {len(result.failed)} notifications could not be marked read"
                )
            return result

    async def listen_for_notifications(
        self, callback: Callable[[list[Notification]], Any]
    ) -> Callable[[], None] | None:
        uid = self._actor("listen_for_notifications")
        if uid is None:
            return None
        return await self.repos.notifications.listen_for_notifications(uid, callback)


__all__ = ["SocialService", "Repositories", "NEW_MEMBER_TITLE"]
