"""Tests for the capability token authority."""

import pytest
from sqlalchemy import select

from charmhost.errors import ForbiddenError, UnauthorizedError
from charmhost.models import CapabilityToken
from charmhost.tokens import Capability, lookup_token

from conftest import PASSWORD


class TestIssue:
    """Tests for token issuance."""

    @pytest.mark.asyncio
    async def test_issue_with_capabilities(self, session, tokens, make_actor):
        """Test only the requested capabilities are granted."""
        alice = await make_actor("alice")

        record = await tokens.issue(
            session, alice.id, PASSWORD, [Capability.POST_CONTENT, Capability.CHANGE_EMAIL]
        )

        assert record.is_active is True
        assert record.owner_id == alice.id
        assert len(record.token) == 64
        assert record.can_post_content is True
        assert record.can_change_email is True
        assert record.can_change_password is False
        assert record.can_change_username is False
        assert record.can_delete_account is False

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        first = await tokens.issue(session, alice.id, PASSWORD)
        second = await tokens.issue(session, alice.id, PASSWORD)
        assert first.token != second.token

    @pytest.mark.asyncio
    async def test_wrong_password(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        with pytest.raises(UnauthorizedError):
            await tokens.issue(session, alice.id, "wrong")

        count = len((await session.execute(select(CapabilityToken))).scalars().all())
        assert count == 0

    @pytest.mark.asyncio
    async def test_unknown_actor(self, session, tokens):
        with pytest.raises(UnauthorizedError):
            await tokens.issue(session, "nobody", PASSWORD)

    @pytest.mark.asyncio
    async def test_issue_for_handle(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        record = await tokens.issue_for_handle(session, "alice", PASSWORD)
        assert record.owner_id == alice.id

        with pytest.raises(UnauthorizedError):
            await tokens.issue_for_handle(session, "nobody", PASSWORD)


class TestAuthorize:
    """Tests for token authorization."""

    @pytest.mark.asyncio
    async def test_authorize_without_capability(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        record = await tokens.issue(session, alice.id, PASSWORD)

        actor = await tokens.authorize(session, record.token)
        assert actor.id == alice.id

    @pytest.mark.asyncio
    async def test_authorize_with_capability(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        record = await tokens.issue(session, alice.id, PASSWORD, [Capability.CHANGE_USERNAME])

        actor = await tokens.authorize(session, record.token, Capability.CHANGE_USERNAME)
        assert actor.id == alice.id

    @pytest.mark.asyncio
    async def test_missing_capability_is_forbidden(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        record = await tokens.issue(session, alice.id, PASSWORD, [Capability.POST_CONTENT])

        with pytest.raises(ForbiddenError):
            await tokens.authorize(session, record.token, Capability.DELETE_ACCOUNT)

    @pytest.mark.asyncio
    async def test_unknown_token_is_unauthorized(self, session, tokens):
        with pytest.raises(UnauthorizedError):
            await tokens.authorize(session, "does-not-exist")
        with pytest.raises(UnauthorizedError):
            await tokens.authorize(session, "")

    @pytest.mark.asyncio
    async def test_inactive_token_is_unauthorized(self, session, tokens, make_actor):
        """Test an inactive token fails before any capability check."""
        alice = await make_actor("alice")
        record = await tokens.issue(session, alice.id, PASSWORD, [Capability.POST_CONTENT])
        record.is_active = False
        await session.commit()

        with pytest.raises(UnauthorizedError):
            await tokens.authorize(session, record.token, Capability.POST_CONTENT)
        with pytest.raises(UnauthorizedError):
            await lookup_token(session, record.token)


class TestRevoke:
    """Tests for token revocation."""

    @pytest.mark.asyncio
    async def test_revoke_own_token(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        record = await tokens.issue(session, alice.id, PASSWORD)

        await tokens.revoke(session, record.token, alice.id)

        with pytest.raises(UnauthorizedError):
            await tokens.authorize(session, record.token)

    @pytest.mark.asyncio
    async def test_revoke_by_non_owner_refused(self, session, tokens, make_actor):
        """Test ownership is checked before deletion."""
        alice = await make_actor("alice")
        mallory = await make_actor("mallory")
        record = await tokens.issue(session, alice.id, PASSWORD)

        with pytest.raises(UnauthorizedError):
            await tokens.revoke(session, record.token, mallory.id)

        actor = await tokens.authorize(session, record.token)
        assert actor.id == alice.id

    @pytest.mark.asyncio
    async def test_revoke_unknown_token(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        with pytest.raises(UnauthorizedError):
            await tokens.revoke(session, "nope", alice.id)


class TestListTokens:
    """Tests for credential-checked token listing."""

    @pytest.mark.asyncio
    async def test_list_tokens(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        bob = await make_actor("bob")
        first = await tokens.issue(session, alice.id, PASSWORD)
        second = await tokens.issue(session, alice.id, PASSWORD, [Capability.POST_CONTENT])
        await tokens.issue(session, bob.id, PASSWORD)

        records = await tokens.list_tokens(session, alice.id, PASSWORD)
        assert [r.token for r in records] == [first.token, second.token]

    @pytest.mark.asyncio
    async def test_list_tokens_wrong_password(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        with pytest.raises(UnauthorizedError):
            await tokens.list_tokens(session, alice.id, "wrong")

    @pytest.mark.asyncio
    async def test_list_tokens_for_handle(self, session, tokens, make_actor):
        alice = await make_actor("alice")
        record = await tokens.issue(session, alice.id, PASSWORD)

        records = await tokens.list_tokens_for_handle(session, "alice", PASSWORD)
        assert [r.token for r in records] == [record.token]
        with pytest.raises(UnauthorizedError):
            await tokens.list_tokens_for_handle(session, "nobody", PASSWORD)
