"""Tests for the post repository: creation, tags, counters and feed."""

import asyncio

import pytest

from socialtree.errors import NotFoundError, ValidationError, WriteError
from socialtree.metrics import sample_value
from socialtree.service import Repositories


class TestCreatePost:
    """Post creation and tag counters."""

    @pytest.mark.asyncio
    async def test_hello_world_with_tags(self, repos, store, author):
        await store.set("tags/design", {"name": "#design", "count": 3})

        post = await repos.posts.create_post("u1", "  Hello world  ", author, tags="design, #dev")

        assert post.tags == ["#design", "#dev"]
        stored = await store.get(f"posts/{post.id}")
        assert stored["tags"] == ["#design", "#dev"]
        assert stored["content"] == "Hello world"
        assert stored["likes"] == 0 and stored["comments"] == 0 and stored["shares"] == 0
        assert stored["author"] == {"id": "u1", "name": "Ada", "title": "Engineer"}
        assert await store.get("tags/design/count") == 4
        assert await store.get("tags/dev") == {"name": "#dev", "count": 1}

    @pytest.mark.asyncio
    async def test_sequential_posts_count_tag_exactly(self, repos, store, author):
        for i in range(5):
            await repos.posts.create_post("u1", f"post {i}", author, tags=["python"])
        assert await store.get("tags/python/count") == 5

    @pytest.mark.asyncio
    async def test_duplicate_tags_counted_once(self, repos, store, author):
        await repos.posts.create_post("u1", "x", author, tags="a, #a, a")
        assert await store.get("tags/a/count") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", None])
    async def test_empty_content_writes_nothing(self, repos, store, author, content):
        with pytest.raises(ValidationError):
            await repos.posts.create_post("u1", content, author, tags="design")
        assert await store.get("") in (None, {})

    @pytest.mark.asyncio
    async def test_author_snapshot_is_frozen(self, repos, store, author):
        await store.set("users/u1", {"displayName": "Ada"})
        post = await repos.posts.create_post("u1", "x", author)
        await repos.profiles.update_profile("u1", {"displayName": "Ada Lovelace"})
        assert (await repos.posts.get_post(post.id)).author.name == "Ada"

    @pytest.mark.asyncio
    async def test_tag_failure_does_not_fail_post(self, flaky_repos, flaky_store, author):
        flaky_store.fail_writes_under("tags/dev")
        before = sample_value("fanout_failures_total", {"step": "tag_upsert"})

        post = await flaky_repos.posts.create_post("u1", "x", author, tags="design, dev")

        assert await flaky_store.get(f"posts/{post.id}") is not None
        assert await flaky_store.get("tags/design/count") == 1
        assert await flaky_store.get("tags/dev") is None
        assert sample_value("fanout_failures_total", {"step": "tag_upsert"}) == before + 1

    @pytest.mark.asyncio
    async def test_post_write_failure_raises(self, flaky_repos, flaky_store, author):
        flaky_store.fail_writes_under("posts")
        with pytest.raises(WriteError):
            await flaky_repos.posts.create_post("u1", "x", author, tags="design")
        assert await flaky_store.get("tags") is None

    @pytest.mark.asyncio
    async def test_atomic_tag_counters(self, store, author):
        repos = Repositories(store, atomic_counters=True)
        await asyncio.gather(
            *(repos.posts.create_post("u1", f"p{i}", author, tags="rush") for i in range(10))
        )
        assert await store.get("tags/rush") == {"name": "#rush", "count": 10}


class TestReadPosts:
    """Reading, feed ordering and search."""

    @pytest.mark.asyncio
    async def test_get_missing_post(self, repos):
        with pytest.raises(NotFoundError) as exc_info:
            await repos.posts.get_post("nope")
        assert exc_info.value.path == "posts/nope"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("post_id", ["", "  ", "a/likes"])
    async def test_get_post_rejects_malformed_id(self, repos, author, post_id):
        await repos.posts.create_post("u1", "x", author)
        with pytest.raises(ValidationError):
            await repos.posts.get_post(post_id)

    @pytest.mark.asyncio
    async def test_feed_is_newest_first(self, repos, store, author):
        await store.set("posts/a", {"userId": "u1", "content": "old", "author": {"id": "u1", "name": "Ada"}, "timestamp": 1})
        await store.set("posts/b", {"userId": "u2", "content": "new", "author": {"id": "u2", "name": "Bo"}, "timestamp": 3})
        await store.set("posts/c", {"userId": "u1", "content": "mid", "author": {"id": "u1", "name": "Ada"}, "timestamp": 2})
        await store.set("posts/broken", {"content": "no author"})

        assert [p.id for p in await repos.posts.list_posts()] == ["b", "c", "a"]
        assert [p.id for p in await repos.posts.list_posts(limit=2)] == ["b", "c"]
        assert [p.id for p in await repos.posts.list_posts_by_user("u1")] == ["c", "a"]

    @pytest.mark.asyncio
    async def test_creation_order_newest_first(self, repos, author):
        posts = [await repos.posts.create_post("u1", f"p{i}", author) for i in range(3)]
        listed = await repos.posts.list_posts(limit=0)
        assert [p.id for p in listed] == sorted((p.id for p in posts), reverse=True)

    @pytest.mark.asyncio
    async def test_search(self, repos, author):
        await repos.posts.create_post("u1", "Learning Rust today", author, tags="systems")
        await repos.posts.create_post("u1", "Python tips", author, tags="python, tips")

        assert [p.content for p in await repos.posts.search_posts("rust")] == ["Learning Rust today"]
        assert [p.content for p in await repos.posts.search_posts("#TIPS")] == ["Python tips"]
        assert await repos.posts.search_posts("   ") == []

    @pytest.mark.asyncio
    async def test_trending_topics(self, repos, store):
        await store.set("tags", {
            "python": {"name": "#python", "count": 5},
            "ai": {"name": "#ai", "count": 5},
            "rust": {"name": "#rust", "count": 2},
            "go": {"name": "#go", "count": 9},
        })
        trending = await repos.posts.get_trending_topics(limit=3)
        assert [(t.name, t.count) for t in trending] == [("#go", 9), ("#ai", 5), ("#python", 5)]

    @pytest.mark.asyncio
    async def test_numeric_tag_is_listed(self, repos, store, author):
        post = await repos.posts.create_post("u1", "Day zero", author, tags="0")

        assert post.tags == ["#0"]
        assert [(t.name, t.count) for t in await repos.posts.get_trending_topics()] == [("#0", 1)]
        assert list(await repos.posts.list_tags()) == ["0"]

    @pytest.mark.asyncio
    async def test_similar_tags_are_counted_apart(self, repos, author):
        await repos.posts.create_post("u1", "a", author, tags="node.js")
        await repos.posts.create_post("u1", "b", author, tags="node_js, node.js")

        trending = await repos.posts.get_trending_topics()
        assert sorted((t.name, t.count) for t in trending) == [("#node.js", 2), ("#node_js", 1)]


class TestCounters:
    """Likes and shares."""

    @pytest.mark.asyncio
    async def test_like_and_share(self, repos, store, author):
        post = await repos.posts.create_post("u1", "x", author)
        assert await repos.posts.like_post(post.id, "u2") == 1
        assert await repos.posts.like_post(post.id, "u3") == 2
        assert await repos.posts.share_post(post.id, "u2") == 1

        stored = await store.get(f"posts/{post.id}")
        assert stored["likes"] == 2
        assert stored["shares"] == 1
        assert stored["likedBy"] == {"u2": True, "u3": True}

    @pytest.mark.asyncio
    async def test_like_missing_post(self, repos, store):
        with pytest.raises(NotFoundError):
            await repos.posts.like_post("ghost", "u2")
        assert await store.get("posts/ghost") is None

    @pytest.mark.asyncio
    async def test_like_from_numeric_user_id(self, repos, author):
        post = await repos.posts.create_post("u1", "x", author)
        await repos.posts.like_post(post.id, "0")

        fetched = await repos.posts.get_post(post.id)
        assert fetched.likes == 1
        assert fetched.likedBy == {"0": True}
        assert [p.id for p in await repos.posts.list_posts()] == [post.id]

    @pytest.mark.asyncio
    async def test_like_rejects_malformed_user_id(self, repos, store, author):
        post = await repos.posts.create_post("u1", "x", author)
        with pytest.raises(ValidationError):
            await repos.posts.like_post(post.id, "")
        assert await store.get(f"posts/{post.id}/likes") == 0
        assert await store.get(f"posts/{post.id}/likedBy") is None

    @pytest.mark.asyncio
    async def test_concurrent_likes_may_lose_updates(self, repos, store, author):
        post = await repos.posts.create_post("u1", "x", author)
        likers = [f"u{i}" for i in range(10)]

        await asyncio.gather(*(repos.posts.like_post(post.id, uid) for uid in likers))

        likes = await store.get(f"posts/{post.id}/likes")
        assert 1 <= likes <= len(likers)
        # Every liker read the same starting value
        assert likes < len(likers)
        assert set(await store.get(f"posts/{post.id}/likedBy")) == set(likers)

    @pytest.mark.asyncio
    async def test_concurrent_likes_with_atomic_counters(self, store, author):
        repos = Repositories(store, atomic_counters=True)
        post = await repos.posts.create_post("u1", "x", author)

        await asyncio.gather(*(repos.posts.like_post(post.id, f"u{i}") for i in range(10)))

        assert await store.get(f"posts/{post.id}/likes") == 10

    @pytest.mark.asyncio
    async def test_atomic_increment_on_missing_post(self, store):
        repos = Repositories(store, atomic_counters=True)
        with pytest.raises(NotFoundError):
            await repos.posts.like_post("ghost", "u2")
        assert await store.get("posts/ghost") is None
