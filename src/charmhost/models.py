"""Database models for charmhost."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RelationshipKind(str, Enum):
    """Kind of directed edge between two actors."""
    FOLLOW = "follow"  # subject follows object
    BLOCK = "block"    # subject has blocked object


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class Actor(Base):
    """A local account.

    Handle format: @{handle}@{host}
    Example: @alice@charmhost.social
    """
    __tablename__ = "actors"

    # Opaque, stable identifier
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    handle: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    host: Mapped[str] = mapped_column(String(256), nullable=False)

    # Profile
    display_name: Mapped[str] = mapped_column(String(256), default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    avatar_url: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    banner_url: Mapped[str] = mapped_column(String(512), default="", nullable=False)

    # Credentials (opaque)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    # Pending email verification token; cleared once verified
    email_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)

    # RSA key pair for HTTP signatures
    public_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    private_key_pem: Mapped[str] = mapped_column(Text, nullable=False)

    # Flags
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class CapabilityToken(Base):
    """Opaque session credential scoped to a fixed set of capabilities.

    Capabilities are fixed at issue time; changing them means issuing a
    new token.
    """
    __tablename__ = "capability_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    can_post_content: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_change_password: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_change_username: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_change_email: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_delete_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_capability_tokens_owner", "owner_id"),
    )


class RelationshipEdge(Base):
    """Directed follow or block edge between two local actors.

    The autoincrement id records edge-creation order, which is the
    iteration order of followers/following collections.
    """
    __tablename__ = "relationship_edges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[RelationshipKind] = mapped_column(SQLEnum(RelationshipKind), nullable=False)
    subject_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False
    )
    object_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("kind", "subject_id", "object_id", name="uq_relationship_edge"),
        CheckConstraint("subject_id <> object_id", name="ck_relationship_no_self_edge"),
        Index("ix_relationship_edges_subject", "kind", "subject_id"),
        Index("ix_relationship_edges_object", "kind", "object_id"),
    )


class ActorFile(Base):
    """File uploaded by an actor. Storage I/O lives elsewhere."""
    __tablename__ = "actor_files"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(256), nullable=False)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_actor_files_owner", "owner_id"),
    )


class Charm(Base):
    """A post authored by a local actor."""
    __tablename__ = "charms"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    file_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reply_to: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_charms_owner_created", "owner_id", "created_at"),
    )


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, enabling foreign keys on SQLite."""
    engine = create_async_engine(database_url, echo=False)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


async def init_db(database_url: str) -> async_sessionmaker:
    """Initialize database and return session maker."""
    engine = build_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False)
