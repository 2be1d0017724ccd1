"""Error taxonomy shared by every charmhost component.

Store and transport failures are rewrapped into these types at the
component boundary so that callers never see raw driver errors.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

NOT_VISIBLE_MESSAGE = "You are not allowed to view this content."
INVALID_TOKEN_MESSAGE = "Invalid or inactive token."
MISSING_CAPABILITY_MESSAGE = "Token lacks the required capability."


class CharmhostError(Exception):
    """Base class for all charmhost errors."""

    status = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or ""
        super().__init__(self.message)


class NotFoundError(CharmhostError):
    """Requested actor, edge or token does not exist."""

    status = 404


class UnauthorizedError(CharmhostError):
    """Missing, inactive or invalid token or credential."""

    status = 401


class ForbiddenError(CharmhostError):
    """Caller is authenticated but may not perform this operation."""

    status = 403


class ConflictError(CharmhostError):
    """Resource already exists."""

    status = 409


class InvalidArgumentError(CharmhostError):
    """Request is structurally invalid."""

    status = 400


class RemoteFetchError(CharmhostError):
    """Remote server could not be reached or returned an unusable document."""

    status = 502


class InternalStoreError(CharmhostError):
    """Store operation failed."""

    status = 500


@asynccontextmanager
async def store_errors(
    session: AsyncSession | None = None,
    conflict_message: str = "Resource already exists.",
) -> AsyncIterator[None]:
    """Rewrap SQLAlchemy errors raised inside the block into the taxonomy.

    Args:
        session: Session to roll back on failure, if any
        conflict_message: Message used when a uniqueness constraint fires

    Raises:
        ConflictError: On integrity (uniqueness/check) violations
        InternalStoreError: On any other store failure
    """
    try:
        yield
    except CharmhostError:
        raise
    except IntegrityError as e:
        if session is not None:
            await session.rollback()
        raise ConflictError(conflict_message) from e
    except SQLAlchemyError as e:
        if session is not None:
            await session.rollback()
        logger.error("Store operation failed", error=str(e))
        raise InternalStoreError() from e
