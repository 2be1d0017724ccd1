"""WebFinger resolution for local and remote accounts.

A lookup for user@host is dispatched once, up front, to one of two
targets: Local when host is this instance's hostname, Remote(host)
otherwise. Local lookups are answered from the actor directory. Remote
lookups make exactly one outbound request with a bounded timeout; any
transport failure or malformed body becomes RemoteFetchError. Retrying
is left to the caller.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, TypeAlias

import aiohttp
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from yarl import URL

from .activitypub_types import (
    AP_ACCEPT_HEADER,
    AP_CONTENT_TYPE,
    REL_AVATAR,
    REL_PROFILE_PAGE,
    REL_SELF,
    REL_SUBSCRIBE,
    JsonDict,
    WebFingerDocument,
    WebFingerLink,
    guess_media_type,
    parse_acct_resource,
    parse_webfinger,
    validate_acct,
)
from .directory import ActorDirectory
from .errors import InvalidArgumentError, RemoteFetchError

logger = structlog.get_logger()


@dataclass(frozen=True)
class Local:
    """Account lives on this instance."""


@dataclass(frozen=True)
class Remote:
    """Account lives on another instance."""
    host: str


ResolutionTarget: TypeAlias = Local | Remote

LOCAL = Local()


def parse_resource(resource: str) -> tuple[str, str]:
    """Parse a WebFinger resource parameter into (username, host).

    Raises:
        InvalidArgumentError: If the resource is not acct:user@host
    """
    try:
        return parse_acct_resource(resource or "")
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from None


def remote_webfinger_url(username: str, host: str) -> URL:
    """Discovery URL for an account on another instance.

    Raises:
        InvalidArgumentError: If username or host cannot form an acct: URI
    """
    try:
        username, host = validate_acct(username, host)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from None
    hostname, _, port = host.partition(":")
    return URL.build(
        scheme="https",
        host=hostname,
        port=int(port) if port else None,
        path="/.well-known/webfinger",
        query={"resource": f"acct:{username}@{host}"},
    )


class WebFingerResolver:
    """Resolves acct: identifiers to WebFinger documents."""

    def __init__(
        self,
        directory: ActorDirectory,
        hostname: str,
        timeout: float = 10.0,
        user_agent: str = "Charmhost/0.1",
        http_session: aiohttp.ClientSession | None = None,
    ):
        """Initialize resolver.

        Args:
            directory: Directory used for local lookups
            hostname: This instance's hostname (decides Local vs Remote)
            timeout: Total timeout in seconds for each outbound request
            user_agent: User-Agent sent on outbound requests
            http_session: Optional shared client session
        """
        self.directory = directory
        self.hostname = hostname.lower()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.user_agent = user_agent
        self._http_session = http_session

    async def _get_http_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._http_session and not self._http_session.closed:
            await self._http_session.close()

    def target_for(self, host: str) -> ResolutionTarget:
        """Decide where an account on host is resolved."""
        host = (host or "").lower()
        if host == self.hostname:
            return LOCAL
        return Remote(host)

    async def resolve(
        self,
        session: AsyncSession,
        username: str,
        host: str,
    ) -> WebFingerDocument:
        """Resolve username@host to a WebFinger document.

        Raises:
            NotFoundError: If a local account does not exist
            InvalidArgumentError: If a remote username or host is not URL-safe
            RemoteFetchError: If a remote lookup fails for any reason
        """
        target = self.target_for(host)
        if isinstance(target, Remote):
            return await self._resolve_remote(username, target)
        return await self._resolve_local(session, username)

    # === Local ===

    async def _resolve_local(self, session: AsyncSession, username: str) -> WebFingerDocument:
        actor = await self.directory.resolve_by_handle(session, username)
        actor_url = self.directory.actor_url(actor)
        profile_url = self.directory.profile_url(actor)

        links = [
            WebFingerLink(rel=REL_PROFILE_PAGE, type="text/html", href=profile_url),
            WebFingerLink(rel=REL_SELF, type=AP_CONTENT_TYPE, href=actor_url),
        ]
        if actor.avatar_url:
            links.append(
                WebFingerLink(
                    rel=REL_AVATAR,
                    type=guess_media_type(actor.avatar_url),
                    href=f"{actor.host}/{actor.avatar_url.lstrip('/')}",
                )
            )
        links.append(
            WebFingerLink(
                rel=REL_SUBSCRIBE,
                template=f"{actor.host}/authorize_interaction?uri={{uri}}",
            )
        )

        return WebFingerDocument(
            subject=f"acct:{actor.handle}@{self.hostname}",
            aliases=[profile_url, actor_url],
            links=links,
        )

    # === Remote ===

    async def _fetch_json(self, url: str | URL, accept: str) -> Any:
        """GET a JSON document once, wrapping every failure."""
        http_session = await self._get_http_session()
        try:
            async with http_session.get(
                url,
                headers={"Accept": accept, "User-Agent": self.user_agent},
                timeout=self.timeout,
            ) as response:
                if response.status != 200:
                    raise RemoteFetchError(f"Remote fetch failed: HTTP {response.status}")
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Remote fetch failed", url=str(url), error=str(e))
            raise RemoteFetchError(f"Remote fetch failed: {e}") from e
        except ValueError as e:
            logger.warning("Remote document is not JSON", url=str(url))
            raise RemoteFetchError("Remote document is not valid JSON.") from e

    async def _resolve_remote(self, username: str, target: Remote) -> WebFingerDocument:
        url = remote_webfinger_url(username, target.host)
        data = await self._fetch_json(url, "application/jrd+json, application/json")

        try:
            document = parse_webfinger(data)
        except ValueError as e:
            logger.warning("Malformed WebFinger document", host=target.host, error=str(e))
            raise RemoteFetchError(f"Malformed WebFinger document: {e}") from e

        logger.info("Resolved remote account", username=username, host=target.host)
        return document

    async def fetch_remote_actor(self, actor_url: str) -> JsonDict:
        """Fetch a remote ActivityPub actor document.

        Raises:
            RemoteFetchError: On transport failure or a body that is not an actor
        """
        data = await self._fetch_json(actor_url, AP_ACCEPT_HEADER)
        if not isinstance(data, dict) or not data.get("id") or not data.get("inbox"):
            raise RemoteFetchError("Invalid actor document.")
        return data
