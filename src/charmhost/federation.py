"""Actor document assembly for federated peers.

Builds the ActivityPub representation of a local actor from the actor
directory and the relationship index:

- Actor document with endpoints, public key and embedded collections
- Standalone followers/following collections
- Paged collection slices (?page=N)

Endpoint URIs are derived from host and handle on every call; nothing
about them is persisted.
"""

from enum import Enum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .activitypub_types import (
    ActorDocument,
    OrderedCollection,
    OrderedCollectionPage,
    PublicKey,
)
from .directory import ActorDirectory
from .errors import InvalidArgumentError
from .models import Actor
from .relationships import RelationshipIndex

logger = structlog.get_logger()

DEFAULT_PAGE_SIZE = 20


class CollectionKind(str, Enum):
    """Which side of the follow relation a collection lists."""
    FOLLOWERS = "followers"
    FOLLOWING = "following"


class ActorDocumentAssembler:
    """Assembles Actor documents and follow collections."""

    def __init__(self, directory: ActorDirectory, relationships: RelationshipIndex):
        """Initialize assembler.

        Args:
            directory: Actor directory used to resolve related actors
            relationships: Relationship index holding follow edges
        """
        self.directory = directory
        self.relationships = relationships

    # === Actor ===

    async def build(self, session: AsyncSession, actor: Actor) -> ActorDocument:
        """Build the Actor document served at /users/{handle}."""
        actor_url = self.directory.actor_url(actor)

        followers = await self.followers_collection(session, actor)
        following = await self.following_collection(session, actor)

        icon_url = ""
        if actor.avatar_url:
            icon_url = f"{actor.host}/{actor.avatar_url.lstrip('/')}"

        return ActorDocument(
            id=actor_url,
            preferred_username=actor.handle,
            name=actor.display_name,
            summary=actor.description,
            inbox=f"{actor_url}/inbox",
            outbox=f"{actor_url}/outbox",
            followers=followers,
            following=following,
            public_key=PublicKey(
                id=f"{actor_url}#main-key",
                owner=actor_url,
                public_key_pem=actor.public_key_pem,
            ),
            icon_url=icon_url,
            url=self.directory.profile_url(actor),
            manually_approves_followers=actor.is_private,
        )

    # === Collections ===

    async def _related_ids(
        self, session: AsyncSession, actor: Actor, kind: CollectionKind
    ) -> list[str]:
        if kind is CollectionKind.FOLLOWERS:
            return await self.relationships.followers_of(session, actor.id)
        return await self.relationships.following_of(session, actor.id)

    async def _actor_urls(self, session: AsyncSession, actor_ids: list[str]) -> list[str]:
        """Map actor ids to actor URLs, resolving each through the directory."""
        urls = []
        for actor_id in actor_ids:
            related = await self.directory.resolve_by_id(session, actor_id)
            urls.append(self.directory.actor_url(related))
        return urls

    async def collection(
        self, session: AsyncSession, actor: Actor, kind: CollectionKind
    ) -> OrderedCollection:
        """Full followers or following collection, in edge-creation order."""
        actor_ids = await self._related_ids(session, actor, kind)
        return OrderedCollection(
            id=f"{self.directory.actor_url(actor)}/{kind.value}",
            items=await self._actor_urls(session, actor_ids),
        )

    async def followers_collection(
        self, session: AsyncSession, actor: Actor
    ) -> OrderedCollection:
        return await self.collection(session, actor, CollectionKind.FOLLOWERS)

    async def following_collection(
        self, session: AsyncSession, actor: Actor
    ) -> OrderedCollection:
        return await self.collection(session, actor, CollectionKind.FOLLOWING)

    async def collection_page(
        self,
        session: AsyncSession,
        actor: Actor,
        kind: CollectionKind,
        page: int,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> OrderedCollectionPage:
        """One page of a followers or following collection.

        Pages are numbered from 1. Only the actors on the requested page
        are resolved.

        Raises:
            InvalidArgumentError: If page is less than 1
        """
        if page < 1:
            raise InvalidArgumentError("Page numbers start at 1.")

        collection_url = f"{self.directory.actor_url(actor)}/{kind.value}"
        actor_ids = await self._related_ids(session, actor, kind)

        offset = (page - 1) * page_size
        page_ids = actor_ids[offset:offset + page_size]

        collection_page = OrderedCollectionPage(
            id=f"{collection_url}?page={page}",
            part_of=collection_url,
            total_items=len(actor_ids),
            items=await self._actor_urls(session, page_ids),
        )

        if offset + page_size < len(actor_ids):
            collection_page.next = f"{collection_url}?page={page + 1}"
        if page > 1:
            collection_page.prev = f"{collection_url}?page={page - 1}"

        logger.debug(
            "Built collection page",
            actor_id=actor.id,
            kind=kind.value,
            page=page,
            items=len(page_ids),
        )
        return collection_page
