"""Capability token authority.

Tokens are opaque strings carrying a fixed set of named boolean
capabilities. A token is Active from issue until it is revoked, either
explicitly or by deleting its owner's account.
"""

from enum import Enum
from typing import TYPE_CHECKING, Iterable

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    INVALID_TOKEN_MESSAGE,
    MISSING_CAPABILITY_MESSAGE,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    store_errors,
)
from .models import Actor, CapabilityToken
from .security import derive_opaque_value, verify_password_async

if TYPE_CHECKING:
    from .directory import ActorDirectory

logger = structlog.get_logger()


class Capability(str, Enum):
    """Named permissions a token may carry.

    Values are the column names on CapabilityToken.
    """
    POST_CONTENT = "can_post_content"
    CHANGE_PASSWORD = "can_change_password"
    CHANGE_USERNAME = "can_change_username"
    CHANGE_EMAIL = "can_change_email"
    DELETE_ACCOUNT = "can_delete_account"


async def lookup_token(session: AsyncSession, token: str) -> CapabilityToken:
    """Fetch a live token by value.

    Raises:
        UnauthorizedError: If the token does not exist or is inactive
    """
    if not token:
        raise UnauthorizedError(INVALID_TOKEN_MESSAGE)

    async with store_errors():
        result = await session.execute(
            select(CapabilityToken).where(CapabilityToken.token == token)
        )
        record = result.scalar_one_or_none()

    if record is None or not record.is_active:
        raise UnauthorizedError(INVALID_TOKEN_MESSAGE)
    return record


class TokenAuthority:
    """Issues, checks and revokes capability tokens."""

    def __init__(self, directory: "ActorDirectory"):
        """Initialize token authority.

        Args:
            directory: Actor directory used to resolve token owners
        """
        self.directory = directory

    async def issue(
        self,
        session: AsyncSession,
        actor_id: str,
        password: str,
        capabilities: Iterable[Capability] = (),
    ) -> CapabilityToken:
        """Issue a new token after checking the actor's password.

        Args:
            session: Database session
            actor_id: Id of the actor requesting the token
            password: Plain-text password to verify
            capabilities: Capabilities to grant; all others are False

        Returns:
            The persisted, active CapabilityToken

        Raises:
            UnauthorizedError: If the actor is unknown or the password is wrong
        """
        try:
            actor = await self.directory.resolve_by_id(session, actor_id)
        except NotFoundError:
            raise UnauthorizedError("Invalid credentials.") from None

        if not await verify_password_async(password, actor.password_hash):
            logger.info("Token issue rejected", actor_id=actor_id)
            raise UnauthorizedError("Invalid credentials.")

        granted = {Capability(c) for c in capabilities}
        record = CapabilityToken(
            token=derive_opaque_value(actor.id),
            owner_id=actor.id,
            is_active=True,
            **{c.value: (c in granted) for c in Capability},
        )

        async with store_errors(session, "Token collision, retry."):
            session.add(record)
            await session.commit()

        logger.info(
            "Issued token",
            actor_id=actor.id,
            capabilities=sorted(c.value for c in granted),
        )
        return record

    async def issue_for_handle(
        self,
        session: AsyncSession,
        handle: str,
        password: str,
        capabilities: Iterable[Capability] = (),
    ) -> CapabilityToken:
        """Issue a token for the actor with the given handle (sign-in)."""
        try:
            actor = await self.directory.resolve_by_handle(session, handle)
        except NotFoundError:
            raise UnauthorizedError("Invalid credentials.") from None
        return await self.issue(session, actor.id, password, capabilities)

    async def authorize(
        self,
        session: AsyncSession,
        token: str,
        required: Capability | None = None,
    ) -> Actor:
        """Resolve a token to its owner, checking one capability.

        Args:
            session: Database session
            token: Opaque token value
            required: Capability the caller needs, or None for any live token

        Returns:
            The owning Actor

        Raises:
            UnauthorizedError: If the token is missing, unknown or inactive
            ForbiddenError: If the token lacks the required capability
        """
        record = await lookup_token(session, token)

        if required is not None and not getattr(record, Capability(required).value):
            logger.info(
                "Token lacks capability",
                actor_id=record.owner_id,
                capability=Capability(required).value,
            )
            raise ForbiddenError(MISSING_CAPABILITY_MESSAGE)

        try:
            return await self.directory.resolve_by_id(session, record.owner_id)
        except NotFoundError:
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE) from None

    async def revoke(
        self,
        session: AsyncSession,
        token: str,
        owner_id: str,
    ) -> None:
        """Revoke a token on behalf of its owner.

        Ownership is checked before anything is deleted.

        Raises:
            UnauthorizedError: If the token is unknown or owned by someone else
        """
        record = await lookup_token(session, token)
        if record.owner_id != owner_id:
            logger.warning("Token revoke by non-owner refused", caller_id=owner_id)
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE)

        async with store_errors(session):
            await session.execute(
                delete(CapabilityToken).where(CapabilityToken.id == record.id)
            )
            await session.commit()

        logger.info("Revoked token", actor_id=owner_id)

    async def list_tokens(
        self,
        session: AsyncSession,
        actor_id: str,
        password: str,
    ) -> list[CapabilityToken]:
        """List an actor's tokens after checking their password."""
        try:
            actor = await self.directory.resolve_by_id(session, actor_id)
        except NotFoundError:
            raise UnauthorizedError("Invalid credentials.") from None
        if not await verify_password_async(password, actor.password_hash):
            raise UnauthorizedError("Invalid credentials.")

        async with store_errors():
            result = await session.execute(
                select(CapabilityToken)
                .where(CapabilityToken.owner_id == actor.id)
                .order_by(CapabilityToken.issued_at, CapabilityToken.id)
            )
            return list(result.scalars().all())

    async def list_tokens_for_handle(
        self,
        session: AsyncSession,
        handle: str,
        password: str,
    ) -> list[CapabilityToken]:
        """List the tokens of the actor with the given handle."""
        try:
            actor = await self.directory.resolve_by_handle(session, handle)
        except NotFoundError:
            raise UnauthorizedError("Invalid credentials.") from None
        return await self.list_tokens(session, actor.id, password)
