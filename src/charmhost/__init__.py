"""Charmhost federated microblogging backend.

This package implements identity resolution and visibility control for a
federated microblogging instance, serving ActivityPub actors and WebFinger
discovery to Mastodon and other Fediverse servers.

Key components:
- activitypub_types: ActivityPub and WebFinger document types
- config: Pydantic configuration management
- models: SQLAlchemy database models
- errors: Error taxonomy and store error wrapping
- directory: Local actor storage and resolution
- tokens: Capability token authority
- relationships: Follow/block relationship index
- visibility: Visibility gate for content disclosure
- webfinger: Local and remote WebFinger resolution
- federation: Actor document assembly
- disclosure: Profile, timeline and file listings
- main: HTTP server entry point
"""

from .activitypub_types import (
    ActorDocument,
    ObjectType,
    OrderedCollection,
    OrderedCollectionPage,
    PublicKey,
    WebFingerDocument,
    WebFingerLink,
)
from .config import (
    AppConfig,
    DatabaseConfig,
    FederationConfig,
    InstanceConfig,
    SecurityConfig,
    ServerConfig,
    load_config,
)
from .directory import ActorDirectory
from .disclosure import DisclosureService
from .errors import (
    CharmhostError,
    ConflictError,
    ForbiddenError,
    InternalStoreError,
    InvalidArgumentError,
    NotFoundError,
    RemoteFetchError,
    UnauthorizedError,
)
from .federation import ActorDocumentAssembler, CollectionKind
from .models import (
    Actor,
    ActorFile,
    CapabilityToken,
    Charm,
    RelationshipEdge,
    RelationshipKind,
    init_db,
)
from .relationships import RelationshipIndex
from .tokens import Capability, TokenAuthority
from .visibility import (
    PUBLIC,
    Decision,
    Network,
    Owner,
    Public,
    ViewerContext,
    VisibilityGate,
    decide,
)
from .webfinger import Local, Remote, WebFingerResolver

__version__ = "0.1.0"

__all__ = [
    # Types
    "ActorDocument",
    "ObjectType",
    "OrderedCollection",
    "OrderedCollectionPage",
    "PublicKey",
    "WebFingerDocument",
    "WebFingerLink",
    # Config
    "AppConfig",
    "DatabaseConfig",
    "FederationConfig",
    "InstanceConfig",
    "SecurityConfig",
    "ServerConfig",
    "load_config",
    # Errors
    "CharmhostError",
    "ConflictError",
    "ForbiddenError",
    "InternalStoreError",
    "InvalidArgumentError",
    "NotFoundError",
    "RemoteFetchError",
    "UnauthorizedError",
    # Models
    "Actor",
    "ActorFile",
    "CapabilityToken",
    "Charm",
    "RelationshipEdge",
    "RelationshipKind",
    "init_db",
    # Services
    "ActorDirectory",
    "ActorDocumentAssembler",
    "Capability",
    "CollectionKind",
    "DisclosureService",
    "RelationshipIndex",
    "TokenAuthority",
    "WebFingerResolver",
    # Visibility
    "PUBLIC",
    "Decision",
    "Network",
    "Owner",
    "Public",
    "ViewerContext",
    "VisibilityGate",
    "decide",
    # Resolution targets
    "Local",
    "Remote",
]
