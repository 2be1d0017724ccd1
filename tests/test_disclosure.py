"""Tests for profile, timeline and file disclosure."""

import pytest

from charmhost.disclosure import DisclosureService
from charmhost.errors import NOT_VISIBLE_MESSAGE, ForbiddenError, NotFoundError
from charmhost.tokens import Capability
from charmhost.visibility import PUBLIC, Network, Owner

from conftest import PASSWORD


@pytest.fixture
def disclosure(directory, relationships, gate) -> DisclosureService:
    return DisclosureService(directory, relationships, gate)


class TestProfile:
    """Tests for profile disclosure."""

    @pytest.mark.asyncio
    async def test_public_profile_with_counts(
        self, session, disclosure, relationships, make_actor, add_charm
    ):
        alice = await make_actor("alice", display_name="Alice")
        bob = await make_actor("bob")
        await relationships.follow(session, bob.id, alice.id)
        await add_charm(alice, "one")
        await add_charm(alice, "two")

        profile = await disclosure.profile(session, "alice", PUBLIC)

        assert profile.handle == "alice"
        assert profile.display_name == "Alice"
        assert profile.followers_count == 1
        assert profile.following_count == 0
        assert profile.charms_count == 2
        assert profile.to_dict()["actor_url"].endswith("/users/alice")

    @pytest.mark.asyncio
    async def test_private_profile_denied_to_public(self, session, disclosure, make_actor):
        await make_actor("alice", is_private=True)
        with pytest.raises(ForbiddenError):
            await disclosure.profile(session, "alice", PUBLIC)

    @pytest.mark.asyncio
    async def test_missing_and_private_look_the_same(self, session, disclosure, make_actor):
        """Test a missing handle is indistinguishable from a hidden one."""
        viewer = await make_actor("viewer")
        await make_actor("hidden", is_private=True)

        for context in (PUBLIC, Network(viewer.id)):
            with pytest.raises(ForbiddenError) as hidden:
                await disclosure.profile(session, "hidden", context)
            with pytest.raises(ForbiddenError) as missing:
                await disclosure.profile(session, "ghost", context)
            assert hidden.value.message == missing.value.message == NOT_VISIBLE_MESSAGE

    @pytest.mark.asyncio
    async def test_owner_missing_target(self, session, disclosure):
        with pytest.raises(NotFoundError):
            await disclosure.profile(session, "ghost", Owner("someone"))


class TestTimeline:
    """Tests for timeline disclosure."""

    @pytest.mark.asyncio
    async def test_newest_first(self, session, disclosure, make_actor, add_charm):
        alice = await make_actor("alice")
        for text in ("first", "second", "third"):
            await add_charm(alice, text)

        timeline = await disclosure.timeline(session, "alice", PUBLIC)
        assert [c.text for c in timeline.charms] == ["third", "second", "first"]

        page = await disclosure.timeline(session, "alice", PUBLIC, limit=1, offset=1)
        assert [c.text for c in page.charms] == ["second"]

    @pytest.mark.asyncio
    async def test_only_owner_charms(self, session, disclosure, make_actor, add_charm):
        alice = await make_actor("alice")
        bob = await make_actor("bob")
        await add_charm(alice, "mine")
        await add_charm(bob, "not mine")

        timeline = await disclosure.timeline(session, "alice", PUBLIC)
        assert [c.text for c in timeline.charms] == ["mine"]

    @pytest.mark.asyncio
    async def test_blocked_viewer_denied(
        self, session, disclosure, relationships, make_actor, add_charm
    ):
        alice = await make_actor("alice")
        bob = await make_actor("bob")
        await relationships.follow(session, bob.id, alice.id)
        await relationships.block(session, alice.id, bob.id)
        await add_charm(alice, "hello")

        with pytest.raises(ForbiddenError):
            await disclosure.timeline(session, "alice", Network(bob.id))

        # Public still sees a public owner
        timeline = await disclosure.timeline(session, "alice", PUBLIC)
        assert len(timeline.charms) == 1


class TestFiles:
    """Tests for file listings."""

    @pytest.mark.asyncio
    async def test_private_files_hidden_from_others(
        self, session, disclosure, make_actor, add_file
    ):
        alice = await make_actor("alice")
        bob = await make_actor("bob")
        await add_file(alice, "public.png")
        await add_file(alice, "secret.png", is_private=True)

        public = await disclosure.files(session, "alice", PUBLIC)
        network = await disclosure.files(session, "alice", Network(bob.id))
        own = await disclosure.files(session, "alice", Owner(alice.id))

        assert [f.file_name for f in public] == ["public.png"]
        assert [f.file_name for f in network] == ["public.png"]
        assert [f.file_name for f in own] == ["public.png", "secret.png"]

    @pytest.mark.asyncio
    async def test_private_owner_files_need_follow(
        self, session, disclosure, relationships, make_actor, add_file
    ):
        alice = await make_actor("alice", is_private=True)
        bob = await make_actor("bob")
        await add_file(alice, "public.png")

        with pytest.raises(ForbiddenError):
            await disclosure.files(session, "alice", Network(bob.id))

        await relationships.follow(session, bob.id, alice.id)
        files = await disclosure.files(session, "alice", Network(bob.id))
        assert [f.file_name for f in files] == ["public.png"]


class TestPrivateAccountScenario:
    """A private account becomes visible to a follower."""

    @pytest.mark.asyncio
    async def test_follow_unlocks_private_timeline(
        self, session, disclosure, directory, tokens, relationships, make_actor, add_charm
    ):
        bob = await make_actor("bob", is_private=True)
        carol = await make_actor("carol")
        charms = [await add_charm(bob, "morning"), await add_charm(bob, "evening")]

        with pytest.raises(ForbiddenError):
            await disclosure.timeline(session, "bob", PUBLIC)

        record = await tokens.issue(session, carol.id, PASSWORD, [Capability.POST_CONTENT])
        caller = await tokens.authorize(session, record.token)
        await relationships.follow(session, caller.id, bob.id)

        viewer = await directory.resolve_by_token(session, record.token)
        timeline = await disclosure.timeline(session, "bob", Network(viewer.id))

        assert {c.id for c in timeline.charms} == {c.id for c in charms}
