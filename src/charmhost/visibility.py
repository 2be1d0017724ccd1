"""Visibility gate: what a viewer may see of another actor's content.

A viewer is described by a request-scoped context:

- Owner(actor_id): the actor looking at their own content
- Network(viewer_id): an authenticated actor looking at someone else
- Public: an anonymous caller

The decision itself is a pure function over a VisibilitySnapshot. The
snapshot (privacy flag, block edge, follow edge) is read in a single
statement so that a concurrently created block cannot be missed between
separate reads.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, TypeAlias, TypeVar

import structlog
from sqlalchemy import literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NOT_VISIBLE_MESSAGE, ForbiddenError, NotFoundError, store_errors
from .models import Actor, ActorFile, RelationshipKind
from .relationships import edge_exists

logger = structlog.get_logger()


@dataclass(frozen=True)
class Owner:
    """Viewer is (claims to be) the content owner."""
    actor_id: str


@dataclass(frozen=True)
class Network:
    """Viewer is an authenticated actor."""
    viewer_id: str


@dataclass(frozen=True)
class Public:
    """Viewer is anonymous."""


ViewerContext: TypeAlias = Owner | Network | Public

PUBLIC = Public()


class Decision(str, Enum):
    """Outcome of a visibility check."""
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class VisibilitySnapshot:
    """Consistent read of everything the gate needs."""
    owner_id: str
    owner_is_private: bool
    viewer_is_blocked: bool = False    # owner has blocked the viewer
    viewer_is_following: bool = False  # viewer follows the owner


def context_for(viewer_id: str | None, owner_id: str) -> ViewerContext:
    """Build the context for an optional authenticated viewer."""
    if viewer_id is None:
        return PUBLIC
    if viewer_id == owner_id:
        return Owner(viewer_id)
    return Network(viewer_id)


def _viewer_id(context: ViewerContext) -> str | None:
    if isinstance(context, Owner):
        return context.actor_id
    if isinstance(context, Network):
        return context.viewer_id
    return None


def is_owner(owner_id: str, context: ViewerContext) -> bool:
    """True iff the context identifies the owner themselves."""
    return _viewer_id(context) == owner_id


def decide(snapshot: VisibilitySnapshot, context: ViewerContext) -> Decision:
    """Decide whether the viewer may see the owner's content.

    Rules:
    - The owner always sees their own content.
    - Public callers see only non-private owners.
    - Network viewers are denied if the owner blocked them (this dominates
      following), otherwise denied if the owner is private and they do
      not follow the owner, otherwise allowed.

    An Owner context naming someone else is treated as a Network viewer.
    """
    if is_owner(snapshot.owner_id, context):
        return Decision.ALLOW

    if isinstance(context, Public):
        return Decision.DENY if snapshot.owner_is_private else Decision.ALLOW

    if snapshot.viewer_is_blocked:
        return Decision.DENY
    if snapshot.owner_is_private and not snapshot.viewer_is_following:
        return Decision.DENY
    return Decision.ALLOW


FileT = TypeVar("FileT", bound=ActorFile)


def visible_files(
    owner_id: str,
    files: Iterable[FileT],
    context: ViewerContext,
) -> list[FileT]:
    """Drop private files unless the viewer is the owner.

    Applied after the gate has allowed the listing as a whole.
    """
    if is_owner(owner_id, context):
        return list(files)
    return [f for f in files if not f.is_private]


class VisibilityGate:
    """Reads visibility snapshots and applies decide()."""

    async def snapshot(
        self,
        session: AsyncSession,
        owner_id: str,
        context: ViewerContext,
    ) -> VisibilitySnapshot:
        """Read the owner's privacy flag and the viewer's edges in one statement.

        Raises:
            NotFoundError: If the owner does not exist
        """
        viewer_id = _viewer_id(context)

        if viewer_id is None or viewer_id == owner_id:
            blocked = literal(False)
            following = literal(False)
        else:
            blocked = edge_exists(RelationshipKind.BLOCK, owner_id, viewer_id)
            following = edge_exists(RelationshipKind.FOLLOW, viewer_id, owner_id)

        stmt = select(
            Actor.is_private,
            blocked.label("viewer_is_blocked"),
            following.label("viewer_is_following"),
        ).where(Actor.id == owner_id)

        async with store_errors():
            row = (await session.execute(stmt)).one_or_none()

        if row is None:
            raise NotFoundError("Actor not found.")

        return VisibilitySnapshot(
            owner_id=owner_id,
            owner_is_private=bool(row.is_private),
            viewer_is_blocked=bool(row.viewer_is_blocked),
            viewer_is_following=bool(row.viewer_is_following),
        )

    async def evaluate(
        self,
        session: AsyncSession,
        owner_id: str,
        context: ViewerContext,
    ) -> Decision:
        """Decide visibility of owner_id's content for the given viewer."""
        snapshot = await self.snapshot(session, owner_id, context)
        decision = decide(snapshot, context)
        if decision is Decision.DENY:
            logger.debug(
                "Visibility denied",
                owner_id=owner_id,
                viewer_id=_viewer_id(context),
            )
        return decision

    async def require(
        self,
        session: AsyncSession,
        owner_id: str,
        context: ViewerContext,
    ) -> None:
        """Raise unless the viewer may see owner_id's content.

        Raises:
            ForbiddenError: On Deny, with a message that does not reveal why
        """
        if await self.evaluate(session, owner_id, context) is Decision.DENY:
            raise ForbiddenError(NOT_VISIBLE_MESSAGE)
