"""Tests for the comment subsystem."""

import asyncio

import pytest

from conftest import settle
from socialtree.errors import NotFoundError, ValidationError, WriteError


class TestAddComment:
    """Comment plus counter writes."""

    @pytest.mark.asyncio
    async def test_comment_increments_counter_and_notifies_listener(self, repos, store, author):
        post = await repos.posts.create_post("u1", "Hello", author)
        deliveries = []
        unsubscribe = await repos.comments.listen_for_comments(post.id, deliveries.append)

        comment = await repos.comments.add_comment(post.id, "u2", " Nice post ", author)

        assert (await repos.posts.get_post(post.id)).comments == 1
        assert deliveries[0] == []
        latest = deliveries[-1]
        assert len(latest) == 1
        assert latest[0].id == comment.id
        assert latest[0].content == "Nice post"
        unsubscribe()

    @pytest.mark.asyncio
    async def test_sequential_comments_match_counter(self, repos, author):
        post = await repos.posts.create_post("u1", "Hello", author)
        for i in range(4):
            await repos.comments.add_comment(post.id, "u2", f"c{i}", author)

        comments = await repos.comments.get_comments(post.id)
        assert [c.content for c in comments] == ["c0", "c1", "c2", "c3"]
        assert (await repos.posts.get_post(post.id)).comments == len(comments)

    @pytest.mark.asyncio
    async def test_empty_comment_writes_nothing(self, repos, store, author):
        post = await repos.posts.create_post("u1", "Hello", author)
        with pytest.raises(ValidationError):
            await repos.comments.add_comment(post.id, "u2", "  ", author)
        assert await store.get("comments") is None

    @pytest.mark.asyncio
    async def test_missing_post(self, repos, store, author):
        with pytest.raises(NotFoundError):
            await repos.comments.add_comment("ghost", "u2", "hi", author)
        assert await store.get("comments") is None

    @pytest.mark.asyncio
    async def test_counter_failure_leaves_comment(self, flaky_repos, flaky_store, author):
        post = await flaky_repos.posts.create_post("u1", "Hello", author)
        flaky_store.fail_writes_under(f"posts/{post.id}/comments")

        with pytest.raises(WriteError):
            await flaky_repos.comments.add_comment(post.id, "u2", "hi", author)

        assert len(await flaky_repos.comments.get_comments(post.id)) == 1
        assert (await flaky_repos.posts.get_post(post.id)).comments == 0

    @pytest.mark.asyncio
    async def test_counter_read_failure_is_write_error(self, flaky_repos, flaky_store, author):
        post = await flaky_repos.posts.create_post("u1", "Hello", author)
        reads = []

        def fail_second_post_read(path):
            if path == f"posts/{post.id}":
                reads.append(path)
                return len(reads) > 1
            return False

        flaky_store.fail_reads = fail_second_post_read
        with pytest.raises(WriteError):
            await flaky_repos.comments.add_comment(post.id, "u2", "hi", author)

        flaky_store.heal()
        assert len(await flaky_repos.comments.get_comments(post.id)) == 1


class TestListenForComments:
    """Live comment updates."""

    @pytest.mark.asyncio
    async def test_async_callback_receives_sorted_lists(self, repos, author):
        post = await repos.posts.create_post("u1", "Hello", author)
        deliveries = []

        async def on_comments(comments):
            await asyncio.sleep(0)
            deliveries.append([c.content for c in comments])

        await repos.comments.listen_for_comments(post.id, on_comments)
        await repos.comments.add_comment(post.id, "u2", "first", author)
        await repos.comments.add_comment(post.id, "u3", "second", author)
        await settle()

        assert deliveries[0] == []
        assert deliveries[-1] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_updates(self, repos, author):
        post = await repos.posts.create_post("u1", "Hello", author)
        deliveries = []
        unsubscribe = await repos.comments.listen_for_comments(post.id, deliveries.append)
        unsubscribe()
        await repos.comments.add_comment(post.id, "u2", "hi", author)
        assert deliveries == [[]]
