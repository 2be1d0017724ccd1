"""Actor directory: local account storage and resolution.

Implements:
- Account creation with handle uniqueness, keys and password hashing
- Resolution by id, handle or token
- Email verification, profile updates, handle changes
- Account deletion cascading to tokens, edges, files and charms
"""

import asyncio
import re

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConflictError, InvalidArgumentError, NotFoundError, store_errors
from .models import Actor, ActorFile, CapabilityToken, Charm, RelationshipEdge
from .security import (
    derive_opaque_value,
    generate_rsa_keypair,
    hash_password_async,
)
from .tokens import lookup_token

logger = structlog.get_logger()

HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,64}$")


def validate_handle(handle: str) -> str:
    """Check that a handle is usable in acct: URIs and actor paths.

    Raises:
        InvalidArgumentError: If the handle is empty or has other characters
    """
    if not HANDLE_PATTERN.match(handle or ""):
        raise InvalidArgumentError(
            "Handles may only contain letters, digits and underscores."
        )
    return handle


class ActorDirectory:
    """Stores and resolves local actors."""

    def __init__(
        self,
        hostname: str,
        base_url: str,
        bcrypt_rounds: int = 12,
    ):
        """Initialize actor directory.

        Args:
            hostname: Bare hostname of this instance (e.g., charmhost.social)
            base_url: Public base URL (e.g., https://charmhost.social)
            bcrypt_rounds: Work factor for password hashes
        """
        self.hostname = hostname
        self.base_url = base_url.rstrip("/")
        self.bcrypt_rounds = bcrypt_rounds

    # === Creation ===

    async def create_actor(
        self,
        session: AsyncSession,
        handle: str,
        password: str,
        display_name: str = "",
        description: str = "",
        avatar_url: str = "",
        is_private: bool = False,
        is_admin: bool = False,
    ) -> Actor:
        """Create a new, unverified local actor.

        Args:
            session: Database session
            handle: Unique handle on this instance
            password: Plain-text password (hashed before storage)
            display_name: Optional display name (defaults to handle)
            description: Optional bio
            avatar_url: Optional avatar path relative to the instance
            is_private: Whether content is restricted to followers
            is_admin: Whether the actor administers the instance

        Returns:
            The new Actor, with an email_token awaiting verification

        Raises:
            InvalidArgumentError: If the handle or password is unusable
            ConflictError: If the handle is already taken
        """
        validate_handle(handle)
        password_hash = await hash_password_async(password, self.bcrypt_rounds)

        # Uniqueness is checked here and enforced again by the store
        await self._ensure_handle_free(session, handle)

        public_key_pem, private_key_pem = await asyncio.to_thread(generate_rsa_keypair)

        actor = Actor(
            id=derive_opaque_value(handle),
            handle=handle,
            host=self.base_url,
            display_name=display_name or handle,
            description=description,
            avatar_url=avatar_url,
            password_hash=password_hash,
            email_token=derive_opaque_value(handle, "email"),
            public_key_pem=public_key_pem,
            private_key_pem=private_key_pem,
            is_private=is_private,
            is_active=False,
            is_admin=is_admin,
        )

        async with store_errors(session, f'The handle "{handle}" is already taken.'):
            session.add(actor)
            await session.commit()

        logger.info("Created actor", actor_id=actor.id, handle=handle)
        return actor

    async def _ensure_handle_free(self, session: AsyncSession, handle: str) -> None:
        async with store_errors():
            result = await session.execute(
                select(Actor.id).where(Actor.handle == handle)
            )
            taken = result.scalar_one_or_none()
        if taken is not None:
            raise ConflictError(f'The handle "{handle}" is already taken.')

    # === Resolution ===

    async def resolve_by_id(self, session: AsyncSession, actor_id: str) -> Actor:
        """Get actor by id.

        Raises:
            NotFoundError: If no such actor exists
        """
        async with store_errors():
            actor = await session.get(Actor, actor_id)
        if actor is None:
            raise NotFoundError("Actor not found.")
        return actor

    async def resolve_by_handle(self, session: AsyncSession, handle: str) -> Actor:
        """Get actor by handle (exact, case-sensitive).

        Raises:
            NotFoundError: If no such actor exists
        """
        async with store_errors():
            result = await session.execute(
                select(Actor).where(Actor.handle == handle)
            )
            actor = result.scalar_one_or_none()
        if actor is None:
            raise NotFoundError("Actor not found.")
        return actor

    async def resolve_by_token(self, session: AsyncSession, token: str) -> Actor:
        """Get the owner of a live token.

        Raises:
            UnauthorizedError: If the token is unknown or inactive
        """
        record = await lookup_token(session, token)
        return await self.resolve_by_id(session, record.owner_id)

    # === Lifecycle ===

    async def verify_email(self, session: AsyncSession, email_token: str) -> Actor:
        """Activate the actor holding an email verification token.

        Raises:
            NotFoundError: If the token does not match a pending actor
        """
        if not email_token:
            raise NotFoundError("Verification token not found.")

        async with store_errors(session):
            result = await session.execute(
                select(Actor).where(Actor.email_token == email_token)
            )
            actor = result.scalar_one_or_none()
            if actor is None:
                raise NotFoundError("Verification token not found.")

            actor.is_active = True
            actor.email_token = None
            await session.commit()

        logger.info("Activated actor", actor_id=actor.id)
        return actor

    async def update_profile(
        self,
        session: AsyncSession,
        actor: Actor,
        display_name: str | None = None,
        description: str | None = None,
        avatar_url: str | None = None,
        is_private: bool | None = None,
    ) -> Actor:
        """Update owner-editable profile fields. None leaves a field as is."""
        if display_name is not None:
            actor.display_name = display_name
        if description is not None:
            actor.description = description
        if avatar_url is not None:
            actor.avatar_url = avatar_url
        if is_private is not None:
            actor.is_private = is_private

        async with store_errors(session):
            await session.commit()

        logger.info("Updated profile", actor_id=actor.id)
        return actor

    async def change_handle(
        self,
        session: AsyncSession,
        actor: Actor,
        new_handle: str,
    ) -> Actor:
        """Rename an actor.

        Raises:
            InvalidArgumentError: If the new handle is unusable
            ConflictError: If the new handle is already taken
        """
        validate_handle(new_handle)
        if new_handle == actor.handle:
            return actor

        await self._ensure_handle_free(session, new_handle)

        old_handle = actor.handle
        actor.handle = new_handle
        async with store_errors(session, f'The handle "{new_handle}" is already taken.'):
            await session.commit()

        logger.info("Changed handle", actor_id=actor.id, old=old_handle, new=new_handle)
        return actor

    async def change_password(
        self,
        session: AsyncSession,
        actor: Actor,
        new_password: str,
    ) -> None:
        """Replace an actor's password hash."""
        actor.password_hash = await hash_password_async(new_password, self.bcrypt_rounds)
        async with store_errors(session):
            await session.commit()
        logger.info("Changed password", actor_id=actor.id)

    async def delete_actor(self, session: AsyncSession, actor_id: str) -> None:
        """Delete an actor and everything it owns in one transaction.

        Raises:
            NotFoundError: If no such actor exists
        """
        actor = await self.resolve_by_id(session, actor_id)

        async with store_errors(session):
            await session.execute(
                delete(CapabilityToken).where(CapabilityToken.owner_id == actor_id)
            )
            await session.execute(
                delete(RelationshipEdge).where(
                    or_(
                        RelationshipEdge.subject_id == actor_id,
                        RelationshipEdge.object_id == actor_id,
                    )
                )
            )
            await session.execute(delete(ActorFile).where(ActorFile.owner_id == actor_id))
            await session.execute(delete(Charm).where(Charm.owner_id == actor_id))
            await session.delete(actor)
            await session.commit()

        logger.info("Deleted actor", actor_id=actor_id)

    # === URL helpers ===

    def actor_url(self, actor: Actor) -> str:
        """ActivityPub id of a local actor."""
        return f"{actor.host}/users/{actor.handle}"

    def profile_url(self, actor: Actor) -> str:
        """Human-facing profile page of a local actor."""
        return f"{actor.host}/@{actor.handle}"
