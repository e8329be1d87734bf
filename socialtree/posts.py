"""Post repository: creation, counters, tags, feed and search.

Post counters (likes, comments, shares) and tag counters are denormalized
and maintained with read-then-write updates unless atomic counters are
enabled. Under concurrency a read-then-write counter can lose increments
but never goes below the number of completed writes' starting value.
"""

from collections.abc import Iterable
from typing import Any

from socialtree import paths
from socialtree.config import settings
from socialtree.errors import NotFoundError, ValidationError
from socialtree.logging import logger
from socialtree.models import AuthorSnapshot, Post, Tag
from socialtree.repository import TreeRepository, as_count
from socialtree.utils import as_mapping, decode_key, normalize_tags, now_ms, tag_key


class PostRepository(TreeRepository):
    """Posts under ``posts/`` and tag counters under ``tags/``."""

    async def create_post(
        self,
        user_id: str,
        content: str,
        author: AuthorSnapshot,
        tags: str | Iterable[str] | None = None,
        type: str = "",
        image: str | None = None,
    ) -> Post:
        """Write a new post and bump the counters of its tags.

        Args:
            user_id: Author user ID
            content: Post text (trimmed; must not be empty)
            author: Snapshot of the author's profile
            tags: List of tags or a comma-separated string
            type: Post type ("", "idea", "resource", "skill", ...)
            image: Image URL or data URL

        Returns:
            The stored post

        Raises:
            ValidationError: Empty content (nothing is written)
            WriteError: If the post record cannot be written
        """
        text = (content or "").strip()
        if not text:
            raise ValidationError("Post content must not be empty")
        tag_list = normalize_tags(tags)

        path = self.store.append_child(paths.POSTS)
        post = Post(
            id=paths.last(path),
            userId=user_id,
            content=text,
            author=author,
            timestamp=now_ms(),
            tags=tag_list,
            type=str(type or ""),
            image=image,
        )
        await self.store.set(path, post.to_record())
        logger.info(f"✅ Created post {post.id} with {len(tag_list)} tags")

        for tag in tag_list:
            await self._best_effort("tag_upsert", self._bump_tag(tag))
        return post

    async def _bump_tag(self, tag: str) -> None:
        path = paths.tag(tag_key(tag))
        if self.atomic_counters:

            def bump(record: Any) -> dict[str, Any]:
                count = as_count(record.get("count")) if isinstance(record, dict) else 0
                return {"name": tag, "count": count + 1}

            await self.store.transaction(path, bump)
            return

        existing = await self.store.get(path)
        if isinstance(existing, dict):
            await self.store.merge(path, {"count": as_count(existing.get("count")) + 1})
        else:
            await self.store.set(path, Tag(name=tag, count=1).model_dump())

    async def get_post(self, post_id: str) -> Post:
        """Fetch one post.

        Raises:
            ValidationError: If the post ID is blank or contains ``/``
            NotFoundError: If the post does not exist
        """
        data = await self.store.get(paths.post(post_id))
        if not isinstance(data, dict):
            raise NotFoundError(paths.post(post_id))
        return Post.from_record(post_id, data)

    async def list_posts(self, limit: int | None = None) -> list[Post]:
        """Newest posts first (ties broken by key, newer key first).

        Args:
            limit: Maximum number of posts (``settings.feed_page_size`` when
                omitted, all posts when 0)
        """
        if limit is None:
            limit = settings.feed_page_size
        posts = self._parse_children(await self.store.get(paths.POSTS), Post)
        posts.sort(key=lambda p: (p.timestamp, p.id), reverse=True)
        return posts[:limit] if limit else posts

    async def list_posts_by_user(self, user_id: str, limit: int | None = None) -> list[Post]:
        """A user's posts, newest first."""
        posts = [p for p in await self.list_posts(limit=0) if p.userId == user_id]
        return posts[:limit] if limit else posts

    async def like_post(self, post_id: str, user_id: str) -> int:
        """Increment the like counter and record the liker.

        Repeat likes are not rejected; ``likedBy`` is informational.

        Returns:
            The like count written
        """
        path = paths.post(post_id)
        liker = paths.key(user_id, "user id")
        likes = await self._increment(path, "likes")
        await self._best_effort("liked_by", self.store.merge(path, {f"likedBy/{liker}": True}))
        return likes

    async def share_post(self, post_id: str, user_id: str) -> int:
        """Increment the share counter.

        Returns:
            The share count written
        """
        shares = await self._increment(paths.post(post_id), "shares")
        logger.debug(f"{user_id} shared {post_id} (shares={shares})")
        return shares

    async def increment_comment_count(self, post_id: str) -> int:
        return await self._increment(paths.post(post_id), "comments")

    async def search_posts(self, query: str) -> list[Post]:
        """Case-insensitive substring match on content or any tag.

        This is a full scan; there is no search index. A blank query
        matches nothing.
        """
        needle = (query or "").strip().lower()
        if not needle:
            return []
        return [
            post
            for post in await self.list_posts(limit=0)
            if needle in post.content.lower()
            or any(needle in tag.lower() for tag in post.tags)
        ]

    async def get_trending_topics(self, limit: int | None = None) -> list[Tag]:
        """Most used tags, by count descending then name."""
        if limit is None:
            limit = settings.trending_limit
        tags = list((await self.list_tags()).values())
        tags.sort(key=lambda t: (-t.count, t.name))
        return tags[:limit]

    async def list_tags(self) -> dict[str, Tag]:
        """All tag counters keyed by their store key."""
        data = as_mapping(await self.store.get(paths.TAGS))
        return {
            key: Tag(
                name=record.get("name") or f"#{decode_key(key)}",
                count=as_count(record.get("count")),
            )
            for key, record in data.items()
            if isinstance(record, dict)
        }


__all__ = ["PostRepository"]
