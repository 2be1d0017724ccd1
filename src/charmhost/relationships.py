"""Relationship index: directed follow and block edges between actors.

Every lookup is a point or range query on the (kind, subject_id) or
(kind, object_id) index. Duplicate edges are rejected by the store's
uniqueness constraint rather than a read-before-write check, so two
concurrent follow attempts cannot both succeed.
"""

import structlog
from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConflictError, InvalidArgumentError, NotFoundError, store_errors
from .models import Actor, RelationshipEdge, RelationshipKind

logger = structlog.get_logger()


def edge_exists(kind: RelationshipKind, subject_id: str, object_id: str):
    """EXISTS clause for a single edge, usable inside larger statements."""
    return exists().where(
        RelationshipEdge.kind == kind,
        RelationshipEdge.subject_id == subject_id,
        RelationshipEdge.object_id == object_id,
    )


class RelationshipIndex:
    """Stores follow/block edges and answers membership queries."""

    # === Mutators ===

    async def _add_edge(
        self,
        session: AsyncSession,
        kind: RelationshipKind,
        subject_id: str,
        object_id: str,
    ) -> RelationshipEdge:
        if subject_id == object_id:
            raise InvalidArgumentError(f"An actor cannot {kind.value} itself.")

        edge = RelationshipEdge(kind=kind, subject_id=subject_id, object_id=object_id)
        try:
            async with store_errors(session, f"Relationship already exists ({kind.value})."):
                session.add(edge)
                await session.commit()
        except ConflictError:
            # A foreign key failure surfaces as the same integrity error
            if not await self._actors_exist(session, subject_id, object_id):
                raise NotFoundError("Actor not found.") from None
            raise

        logger.info(
            "Created relationship",
            kind=kind.value,
            subject_id=subject_id,
            object_id=object_id,
        )
        return edge

    async def _actors_exist(self, session: AsyncSession, *actor_ids: str) -> bool:
        async with store_errors(session):
            found = await session.scalar(
                select(func.count()).select_from(Actor).where(Actor.id.in_(actor_ids))
            )
        return found == len(set(actor_ids))

    async def _remove_edge(
        self,
        session: AsyncSession,
        kind: RelationshipKind,
        subject_id: str,
        object_id: str,
    ) -> bool:
        async with store_errors(session):
            result = await session.execute(
                delete(RelationshipEdge).where(
                    RelationshipEdge.kind == kind,
                    RelationshipEdge.subject_id == subject_id,
                    RelationshipEdge.object_id == object_id,
                )
            )
            await session.commit()

        removed = bool(result.rowcount)
        if removed:
            logger.info(
                "Removed relationship",
                kind=kind.value,
                subject_id=subject_id,
                object_id=object_id,
            )
        return removed

    async def follow(
        self, session: AsyncSession, subject_id: str, object_id: str
    ) -> RelationshipEdge:
        """Record that subject follows object.

        Raises:
            InvalidArgumentError: If subject and object are the same actor
            ConflictError: If subject already follows object
            NotFoundError: If either actor does not exist
        """
        return await self._add_edge(session, RelationshipKind.FOLLOW, subject_id, object_id)

    async def unfollow(self, session: AsyncSession, subject_id: str, object_id: str) -> bool:
        """Remove a follow edge. Missing edges are not an error.

        Returns:
            True if an edge was removed
        """
        return await self._remove_edge(session, RelationshipKind.FOLLOW, subject_id, object_id)

    async def block(
        self, session: AsyncSession, subject_id: str, object_id: str
    ) -> RelationshipEdge:
        """Record that subject has blocked object.

        Raises:
            InvalidArgumentError: If subject and object are the same actor
            ConflictError: If subject already blocks object
            NotFoundError: If either actor does not exist
        """
        return await self._add_edge(session, RelationshipKind.BLOCK, subject_id, object_id)

    async def unblock(self, session: AsyncSession, subject_id: str, object_id: str) -> bool:
        """Remove a block edge. Missing edges are not an error."""
        return await self._remove_edge(session, RelationshipKind.BLOCK, subject_id, object_id)

    # === Queries ===

    async def is_following(self, session: AsyncSession, a: str, b: str) -> bool:
        """True iff a follows b."""
        async with store_errors():
            return bool(
                await session.scalar(select(edge_exists(RelationshipKind.FOLLOW, a, b)))
            )

    async def is_blocked_by(self, session: AsyncSession, a: str, b: str) -> bool:
        """True iff b has blocked a."""
        async with store_errors():
            return bool(
                await session.scalar(select(edge_exists(RelationshipKind.BLOCK, b, a)))
            )

    async def followers_of(self, session: AsyncSession, actor_id: str) -> list[str]:
        """Ids of actors following actor_id, in edge-creation order."""
        async with store_errors():
            result = await session.execute(
                select(RelationshipEdge.subject_id)
                .where(
                    RelationshipEdge.kind == RelationshipKind.FOLLOW,
                    RelationshipEdge.object_id == actor_id,
                )
                .order_by(RelationshipEdge.id)
            )
            return list(result.scalars().all())

    async def following_of(self, session: AsyncSession, actor_id: str) -> list[str]:
        """Ids of actors that actor_id follows, in edge-creation order."""
        async with store_errors():
            result = await session.execute(
                select(RelationshipEdge.object_id)
                .where(
                    RelationshipEdge.kind == RelationshipKind.FOLLOW,
                    RelationshipEdge.subject_id == actor_id,
                )
                .order_by(RelationshipEdge.id)
            )
            return list(result.scalars().all())

    async def followers_count(self, session: AsyncSession, actor_id: str) -> int:
        async with store_errors():
            return await session.scalar(
                select(func.count())
                .select_from(RelationshipEdge)
                .where(
                    RelationshipEdge.kind == RelationshipKind.FOLLOW,
                    RelationshipEdge.object_id == actor_id,
                )
            ) or 0

    async def following_count(self, session: AsyncSession, actor_id: str) -> int:
        async with store_errors():
            return await session.scalar(
                select(func.count())
                .select_from(RelationshipEdge)
                .where(
                    RelationshipEdge.kind == RelationshipKind.FOLLOW,
                    RelationshipEdge.subject_id == actor_id,
                )
            ) or 0

    async def blocked_by(self, session: AsyncSession, actor_id: str) -> list[str]:
        """Ids of actors that actor_id has blocked, in edge-creation order."""
        async with store_errors():
            result = await session.execute(
                select(RelationshipEdge.object_id)
                .where(
                    RelationshipEdge.kind == RelationshipKind.BLOCK,
                    RelationshipEdge.subject_id == actor_id,
                )
                .order_by(RelationshipEdge.id)
            )
            return list(result.scalars().all())
