"""Integration tests for the social service facade."""

import pytest

from conftest import settle
from socialtree.blobs import LocalBlobStore
from socialtree.errors import AuthError, NotFoundError, UploadError, ValidationError
from socialtree.identity import LocalIdentityProvider
from socialtree.models import NotificationType
from socialtree.service import NEW_MEMBER_TITLE, SocialService
from socialtree.store import MemoryTreeStore

pytestmark = pytest.mark.integration


class FailingBlobStore:
    async def upload(self, data, suggested_name, on_progress=None):
        if on_progress:
            on_progress(10.0)
        raise UploadError("storage offline")


async def signup(service, name):
    return await service.signup(f"{name.lower()}@example.com", "secret1", name)


class TestAccounts:
    """Signup, login and profiles."""

    @pytest.mark.asyncio
    async def test_signup_creates_profile(self, service, store):
        profile = await signup(service, "Ada")

        assert profile.title == NEW_MEMBER_TITLE
        assert profile.displayName == "Ada"
        assert service.current_user_id() == profile.id
        assert (await store.get(f"users/{profile.id}"))["email"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_login_recreates_missing_profile(self, service, store):
        profile = await signup(service, "Ada")
        await service.logout()
        await store.set(f"users/{profile.id}", None)

        again = await service.login("ada@example.com", "secret1")

        assert again.id == profile.id
        assert again.displayName == "Ada"
        assert again.title is None

    @pytest.mark.asyncio
    async def test_bad_login(self, service):
        await signup(service, "Ada")
        await service.logout()
        with pytest.raises(AuthError):
            await service.login("ada@example.com", "nope-nope")

    @pytest.mark.asyncio
    async def test_update_profile(self, service):
        await signup(service, "Ada")
        updated = await service.update_profile({"bio": "Math"})
        assert updated.bio == "Math"
        assert (await service.current_profile()).bio == "Math"

    @pytest.mark.asyncio
    async def test_require_user(self, service):
        with pytest.raises(AuthError):
            service.require_user()
        profile = await signup(service, "Ada")
        assert service.require_user() == profile.id


class TestLoggedOut:
    """Actions without a signed-in user are no-ops."""

    @pytest.mark.asyncio
    async def test_actions_return_none_and_write_nothing(self, service, store):
        assert await service.current_profile() is None
        assert await service.create_post("Hello") is None
        assert await service.like_post("p1") is None
        assert await service.comment("p1", "hi") is None
        assert await service.share_post("p1", ["u2"]) is None
        assert await service.connect("u2") is None
        assert await service.create_group("Design") is None
        assert await service.notifications() is None
        assert await service.unread_count() is None
        assert await service.mark_read("n1") is None
        assert await service.mark_all_read() is None
        assert await service.update_profile({"bio": "x"}) is None
        assert await service.listen_for_notifications(lambda items: None) is None
        assert await store.get("") in (None, {})


class TestPosting:
    """Posting, images and reactions."""

    @pytest.mark.asyncio
    async def test_create_post_with_inline_image(self, service):
        await signup(service, "Ada")
        post = await service.create_post("Look", tags="cats", image=b"\x89PNG", image_name="cat.png")

        assert post.image.startswith("data:image/png;base64,")
        assert post.author.name == "Ada"
        assert post.author.title == NEW_MEMBER_TITLE
        assert [t.name for t in await service.trending_topics()] == ["#cats"]

    @pytest.mark.asyncio
    async def test_create_post_with_blob_store(self, store, tmp_path):
        service = SocialService(store=store, blobs=LocalBlobStore(tmp_path / "blobs"))
        await signup(service, "Ada")
        progress = []

        post = await service.create_post("Look", image=b"abc", on_progress=progress.append)

        assert post.image.startswith("file://")
        assert progress[-1] == 100.0

    @pytest.mark.asyncio
    async def test_upload_failure_aborts_post(self, store):
        service = SocialService(store=store, blobs=FailingBlobStore())
        await signup(service, "Ada")

        with pytest.raises(UploadError):
            await service.create_post("Look", tags="cats", image=b"abc")
        assert await store.get("posts") is None
        assert await store.get("tags") is None

    @pytest.mark.asyncio
    async def test_empty_post_rejected_before_upload(self, store):
        service = SocialService(store=store, blobs=FailingBlobStore())
        await signup(service, "Ada")
        with pytest.raises(ValidationError):
            await service.create_post("  ", image=b"abc")

    @pytest.mark.asyncio
    async def test_like_and_comment_notify_author(self, service):
        author = await signup(service, "Ada")
        post = await service.create_post("Hello world")
        await service.logout()

        await signup(service, "Bo")
        assert await service.like_post(post.id) == 1
        await service.comment(post.id, "Great post about the world")
        await service.logout()

        await service.login("ada@example.com", "secret1")
        items = await service.notifications()
        assert sorted(n.type for n in items) == ["comment", "like"]
        assert all(n.postId == post.id for n in items)
        assert all(n.from_.name == "Bo" for n in items)
        assert await service.unread_count() == 2
        assert (await service.get_post(post.id)).comments == 1
        assert service.current_user_id() == author.id

    @pytest.mark.asyncio
    async def test_own_actions_do_not_notify(self, service):
        await signup(service, "Ada")
        post = await service.create_post("Hello")
        await service.like_post(post.id)
        await service.comment(post.id, "self reply")
        assert await service.notifications() == []

    @pytest.mark.asyncio
    async def test_like_missing_post(self, service):
        await signup(service, "Ada")
        with pytest.raises(NotFoundError):
            await service.like_post("ghost")

    @pytest.mark.asyncio
    async def test_blank_post_id_rejected(self, service, store):
        await signup(service, "Ada")
        post = await service.create_post("Hello")

        with pytest.raises(ValidationError):
            await service.like_post("")
        with pytest.raises(ValidationError):
            await service.comment("", "hi")

        assert (await service.get_post(post.id)).likes == 0
        assert await store.get("comments") is None

    @pytest.mark.asyncio
    async def test_feed_search_and_user_posts(self, service):
        ada = await signup(service, "Ada")
        await service.create_post("First post", tags="intro")
        await service.create_post("Second post")

        assert [p.content for p in await service.feed()] == ["Second post", "First post"]
        assert len(await service.user_posts(ada.id)) == 2
        assert [p.content for p in await service.search("intro")] == ["First post"]

    @pytest.mark.asyncio
    async def test_listen_for_comments(self, service):
        await signup(service, "Ada")
        post = await service.create_post("Hello")
        seen = []
        await service.listen_for_comments(post.id, seen.append)
        await service.comment(post.id, "hi")
        assert [c.content for c in seen[-1]] == ["hi"]
        assert [c.content for c in await service.get_comments(post.id)] == ["hi"]


class TestSharing:
    """Shares with notification fan-out."""

    @pytest.mark.asyncio
    async def test_share_post(self, service, store):
        bo = await signup(service, "Bo")
        await service.logout()
        ada = await signup(service, "Ada")
        post = await service.create_post("Hello")

        record = await service.share_post(post.id, [bo.id, ada.id, bo.id], "  look  ")

        assert record.sharedWith == [bo.id]
        assert record.message == "look"
        assert (await service.get_post(post.id)).shares == 1
        assert len(await service.repos.shares.list_shares(post.id)) == 1

        [notification] = (await store.get(f"users/{bo.id}/notifications")).values()
        assert notification["type"] == NotificationType.SHARE.value
        assert notification["message"] == "look"
        assert await store.get(f"users/{ada.id}/notifications") is None

    @pytest.mark.asyncio
    async def test_share_missing_post(self, service):
        await signup(service, "Ada")
        with pytest.raises(NotFoundError):
            await service.share_post("ghost", ["u2"])

    @pytest.mark.asyncio
    async def test_malformed_recipient_rejected_before_writes(self, service, store):
        await signup(service, "Ada")
        post = await service.create_post("Hello")

        with pytest.raises(ValidationError):
            await service.share_post(post.id, ["u2/notifications"])

        assert (await service.get_post(post.id)).shares == 0
        assert await store.get("shares") is None


class TestSocial:
    """Connections, groups and notification read state."""

    @pytest.mark.asyncio
    async def test_connect_and_suggestions(self, service):
        bo = await signup(service, "Bo")
        await service.logout()
        cy = await signup(service, "Cy")
        await service.logout()
        ada = await signup(service, "Ada")

        assert await service.connect(bo.id) is True

        assert [c.id for c in await service.connections()] == [bo.id]
        assert [s.id for s in await service.suggested_users(10)] == [cy.id]
        assert (await service.current_profile()).connections == 1
        assert ada.id not in [s.id for s in await service.suggested_users(10)]

    @pytest.mark.asyncio
    async def test_group_post_notifies_members(self, service):
        bo = await signup(service, "Bo")
        await service.logout()
        await signup(service, "Ada")
        group = await service.create_group("Design", "community", [bo.id])
        assert [g.name for g in await service.my_groups()] == ["Design"]

        post = await service.post_to_group(group.id, "Weekly critique thread")
        await service.logout()

        await service.login("bo@example.com", "secret1")
        [item] = await service.notifications()
        assert item.type == "group"
        assert item.groupName == "Design"
        assert item.postId == post.id
        assert "Weekly critique" in item.message

        assert await service.mark_read(item) is True
        assert await service.unread_count() == 0

    @pytest.mark.asyncio
    async def test_post_to_missing_group(self, service, store):
        await signup(service, "Ada")
        with pytest.raises(NotFoundError):
            await service.post_to_group("ghost", "Hello")
        assert await store.get("posts") is None

    @pytest.mark.asyncio
    async def test_mark_all_read_and_listener(self, service):
        bo = await signup(service, "Bo")
        await service.logout()
        await signup(service, "Ada")
        post = await service.create_post("Hello")
        await service.share_post(post.id, [bo.id])
        await service.logout()

        await service.login("bo@example.com", "secret1")
        seen = []
        unsubscribe = await service.listen_for_notifications(seen.append)
        await settle()
        assert len(seen[-1]) == 1

        result = await service.mark_all_read()
        await settle()

        assert result.ok
        assert await service.unread_count() == 0
        assert all(n.read for n in seen[-1])
        unsubscribe()


class TestLifecycle:
    """Construction and shutdown."""

    @pytest.mark.asyncio
    async def test_from_settings_uses_memory_store_in_tests(self):
        service = SocialService.from_settings()
        assert isinstance(service.store, MemoryTreeStore)
        assert isinstance(service.identity, LocalIdentityProvider)
        await service.close()
