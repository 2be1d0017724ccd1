"""Content disclosure: profile, timeline and file listings.

Every read of another actor's content goes through the visibility gate.
A target that does not exist is reported to non-owners exactly like a
target they may not see, so handles cannot be enumerated.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .directory import ActorDirectory
from .errors import NOT_VISIBLE_MESSAGE, ForbiddenError, NotFoundError, store_errors
from .models import Actor, ActorFile, Charm
from .relationships import RelationshipIndex
from .visibility import Owner, ViewerContext, VisibilityGate, visible_files

logger = structlog.get_logger()

DEFAULT_TIMELINE_LIMIT = 20
MAX_TIMELINE_LIMIT = 100


@dataclass
class ProfileView:
    """Public projection of an actor's profile."""
    id: str
    handle: str
    display_name: str
    description: str
    avatar_url: str
    actor_url: str
    is_private: bool
    followers_count: int
    following_count: int
    charms_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "handle": self.handle,
            "display_name": self.display_name,
            "description": self.description,
            "avatar_url": self.avatar_url,
            "actor_url": self.actor_url,
            "is_private": self.is_private,
            "followers_count": self.followers_count,
            "following_count": self.following_count,
            "charms_count": self.charms_count,
        }


@dataclass
class CharmView:
    id: str
    text: str
    created_at: datetime
    file_id: str | None = None
    reply_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "file_id": self.file_id,
            "reply_to": self.reply_to,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FileView:
    id: str
    file_name: str
    file_path: str
    is_private: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "is_private": self.is_private,
        }


@dataclass
class Timeline:
    """Newest-first slice of an actor's charms."""
    handle: str
    charms: list[CharmView] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "charms": [c.to_dict() for c in self.charms],
        }


class DisclosureService:
    """Serves content-disclosure reads behind the visibility gate."""

    def __init__(
        self,
        directory: ActorDirectory,
        relationships: RelationshipIndex,
        gate: VisibilityGate,
    ):
        self.directory = directory
        self.relationships = relationships
        self.gate = gate

    async def _visible_target(
        self,
        session: AsyncSession,
        handle: str,
        viewer: ViewerContext,
    ) -> Actor:
        """Resolve the target and apply the gate.

        Raises:
            ForbiddenError: If the viewer may not see the target, or the
                target does not exist and the viewer is not its owner
            NotFoundError: If an Owner context names a missing target
        """
        try:
            target = await self.directory.resolve_by_handle(session, handle)
        except NotFoundError:
            if isinstance(viewer, Owner):
                raise
            raise ForbiddenError(NOT_VISIBLE_MESSAGE) from None

        await self.gate.require(session, target.id, viewer)
        return target

    async def profile(
        self,
        session: AsyncSession,
        handle: str,
        viewer: ViewerContext,
    ) -> ProfileView:
        """Profile fields plus follower, following and charm counts."""
        target = await self._visible_target(session, handle, viewer)

        followers_count = await self.relationships.followers_count(session, target.id)
        following_count = await self.relationships.following_count(session, target.id)
        async with store_errors():
            charms_count = await session.scalar(
                select(func.count()).select_from(Charm).where(Charm.owner_id == target.id)
            )

        return ProfileView(
            id=target.id,
            handle=target.handle,
            display_name=target.display_name,
            description=target.description,
            avatar_url=target.avatar_url,
            actor_url=self.directory.actor_url(target),
            is_private=target.is_private,
            followers_count=followers_count,
            following_count=following_count,
            charms_count=charms_count or 0,
        )

    async def timeline(
        self,
        session: AsyncSession,
        handle: str,
        viewer: ViewerContext,
        limit: int = DEFAULT_TIMELINE_LIMIT,
        offset: int = 0,
    ) -> Timeline:
        """The target's charms, newest first."""
        target = await self._visible_target(session, handle, viewer)
        limit = max(1, min(limit, MAX_TIMELINE_LIMIT))
        offset = max(0, offset)

        async with store_errors():
            result = await session.execute(
                select(Charm)
                .where(Charm.owner_id == target.id)
                .order_by(Charm.created_at.desc(), Charm.id.desc())
                .offset(offset)
                .limit(limit)
            )
            charms = result.scalars().all()

        return Timeline(
            handle=target.handle,
            charms=[
                CharmView(
                    id=c.id,
                    text=c.text,
                    created_at=c.created_at,
                    file_id=c.file_id,
                    reply_to=c.reply_to,
                )
                for c in charms
            ],
        )

    async def files(
        self,
        session: AsyncSession,
        handle: str,
        viewer: ViewerContext,
    ) -> list[FileView]:
        """The target's files, without private ones unless viewed by the owner."""
        target = await self._visible_target(session, handle, viewer)

        async with store_errors():
            result = await session.execute(
                select(ActorFile)
                .where(ActorFile.owner_id == target.id)
                .order_by(ActorFile.created_at, ActorFile.id)
            )
            files = result.scalars().all()

        shown = visible_files(target.id, files, viewer)
        logger.debug(
            "Listed files",
            owner_id=target.id,
            total=len(files),
            shown=len(shown),
        )
        return [
            FileView(id=f.id, file_name=f.file_name, file_path=f.file_path, is_private=f.is_private)
            for f in shown
        ]
