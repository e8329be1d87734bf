"""Comment subsystem.

Comments live at ``comments/{postId}/{commentId}``. Adding one is two
writes: the comment itself, then the post's comment counter. If the second
write fails the comment stays and the counter lags behind.
"""

from collections.abc import Callable
from typing import Any

from socialtree import paths
from socialtree.errors import StoreError, ValidationError, WriteError
from socialtree.interfaces import ITreeStore, Unsubscribe
from socialtree.logging import logger
from socialtree.models import AuthorSnapshot, Comment
from socialtree.posts import PostRepository
from socialtree.repository import TreeRepository
from socialtree.utils import now_ms


class CommentRepository(TreeRepository):
    """Add, read and watch comments of a post."""

    def __init__(
        self,
        store: ITreeStore,
        posts: PostRepository,
        atomic_counters: bool | None = None,
    ):
        super().__init__(store, atomic_counters)
        self.posts = posts

    async def add_comment(
        self,
        post_id: str,
        user_id: str,
        content: str,
        author: AuthorSnapshot,
    ) -> Comment:
        """Write a comment and increment the post's comment counter.

        Raises:
            ValidationError: Empty content (nothing is written)
            NotFoundError: If the post does not exist
            WriteError: If either write fails. When the counter update
                fails the comment has already been stored.
        """
        text = (content or "").strip()
        if not text:
            raise ValidationError("Comment must not be empty")

        await self.posts.get_post(post_id)

        path = self.store.append_child(paths.post_comments(post_id))
        comment = Comment(
            id=paths.last(path),
            postId=post_id,
            userId=user_id,
            content=text,
            author=author,
            timestamp=now_ms(),
        )
        await self.store.set(path, comment.to_record())

        try:
            await self.posts.increment_comment_count(post_id)
        except WriteError:
            logger.error(f"❌ Comment {comment.id} stored but counter of {post_id} not updated")
            raise
        except StoreError as exc:
            logger.error(f"❌ Comment {comment.id} stored but counter of {post_id} not updated")
            raise WriteError(str(exc), path=paths.post(post_id)) from exc

        return comment

    def _parse(self, data: Any) -> list[Comment]:
        comments = self._parse_children(data, Comment)
        comments.sort(key=lambda c: (c.timestamp, c.id))
        return comments

    async def get_comments(self, post_id: str) -> list[Comment]:
        """Comments of a post, oldest first."""
        return self._parse(await self.store.get(paths.post_comments(post_id)))

    async def listen_for_comments(
        self,
        post_id: str,
        callback: Callable[[list[Comment]], Any],
    ) -> Unsubscribe:
        """Watch a post's comments.

        ``callback`` receives the full ascending list right away and after
        every change.
        """

        def on_change(value: Any) -> Any:
            return callback(self._parse(value))

        return await self.store.subscribe(paths.post_comments(post_id), on_change)


__all__ = ["CommentRepository"]
