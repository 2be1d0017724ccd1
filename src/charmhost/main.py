"""Main entry point for the charmhost server.

Implements an aiohttp-based HTTP server with:
- WebFinger endpoint (/.well-known/webfinger)
- Actor and follow-collection endpoints (/users/{username})
- Account, token and relationship JSON API (/api/...)
- Content disclosure behind the visibility gate (/api/users/{username}/...)
"""

import asyncio
import json
import logging
import signal
from typing import Any

import aiohttp
import structlog
from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .activitypub_types import AP_CONTENT_TYPE, JRD_CONTENT_TYPE
from .config import AppConfig, load_config
from .directory import ActorDirectory
from .disclosure import DEFAULT_TIMELINE_LIMIT, DisclosureService
from .errors import CharmhostError, InvalidArgumentError
from .federation import ActorDocumentAssembler, CollectionKind
from .models import CapabilityToken, init_db
from .relationships import RelationshipIndex
from .tokens import Capability, TokenAuthority
from .visibility import PUBLIC, Network, Owner, ViewerContext, VisibilityGate
from .webfinger import WebFingerResolver, parse_resource

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def create_app(
    config: AppConfig,
    session_maker: async_sessionmaker,
    http_session: aiohttp.ClientSession | None = None,
) -> web.Application:
    """Build the aiohttp application and its services.

    Args:
        config: Application configuration
        session_maker: Session factory for the relational store
        http_session: Optional client session for outbound fetches

    Returns:
        Configured application
    """
    app = web.Application(middlewares=[error_middleware])

    directory = ActorDirectory(
        hostname=config.instance.hostname,
        base_url=config.instance.base_url,
        bcrypt_rounds=config.security.bcrypt_rounds,
    )
    relationships = RelationshipIndex()
    gate = VisibilityGate()
    resolver = WebFingerResolver(
        directory=directory,
        hostname=config.instance.hostname,
        timeout=config.federation.fetch_timeout_seconds,
        user_agent=config.federation.user_agent,
        http_session=http_session,
    )

    # Store services in app for handlers
    app["config"] = config
    app["session_maker"] = session_maker
    app["directory"] = directory
    app["tokens"] = TokenAuthority(directory)
    app["relationships"] = relationships
    app["gate"] = gate
    app["webfinger"] = resolver
    app["assembler"] = ActorDocumentAssembler(directory, relationships)
    app["disclosure"] = DisclosureService(directory, relationships, gate)

    _setup_routes(app)

    async def _close_resolver(app: web.Application) -> None:
        await app["webfinger"].close()

    app.on_cleanup.append(_close_resolver)
    return app


def _setup_routes(app: web.Application) -> None:
    """Set up HTTP routes."""
    app.router.add_get("/.well-known/webfinger", handle_webfinger)

    app.router.add_get("/users/{username}", handle_actor)
    app.router.add_get("/users/{username}/followers", handle_followers)
    app.router.add_get("/users/{username}/following", handle_following)

    app.router.add_post("/api/actors", handle_create_actor)
    app.router.add_delete("/api/actors", handle_delete_actor)
    app.router.add_post("/api/actors/verify", handle_verify_email)
    app.router.add_post("/api/actors/profile", handle_update_profile)
    app.router.add_post("/api/actors/handle", handle_change_handle)

    app.router.add_post("/api/tokens", handle_issue_token)
    app.router.add_delete("/api/tokens", handle_revoke_token)
    app.router.add_post("/api/tokens/list", handle_list_tokens)

    app.router.add_post("/api/follow", handle_follow)
    app.router.add_post("/api/unfollow", handle_unfollow)
    app.router.add_post("/api/block", handle_block)
    app.router.add_post("/api/unblock", handle_unblock)

    app.router.add_get("/api/users/{username}/profile", handle_profile)
    app.router.add_get("/api/users/{username}/timeline", handle_timeline)
    app.router.add_get("/api/users/{username}/files", handle_files)

    # Health check
    app.router.add_get("/health", handle_health)


class CharmhostServer:
    """Charmhost HTTP server."""

    def __init__(self, config: AppConfig):
        """Initialize server.

        Args:
            config: Application configuration
        """
        self.config = config
        self.app: web.Application | None = None

    async def setup(self) -> None:
        """Set up server components."""
        session_maker = await init_db(self.config.database.url)
        self.app = create_app(self.config, session_maker)

        logger.info(
            "Server setup complete",
            hostname=self.config.instance.hostname,
            base_url=self.config.instance.base_url,
        )

    async def run(self) -> None:
        """Run the server."""
        await self.setup()

        runner = web.AppRunner(self.app)
        await runner.setup()

        site = web.TCPSite(
            runner,
            self.config.server.host,
            self.config.server.port,
        )

        await site.start()

        logger.info(
            "Server started",
            host=self.config.server.host,
            port=self.config.server.port,
        )

        # Wait for shutdown signal
        stop_event = asyncio.Event()

        def signal_handler():
            stop_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

        await stop_event.wait()

        logger.info("Shutting down...")
        await runner.cleanup()


# === Middleware and request helpers ===

@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Render charmhost errors as {"error": message} with their status."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except CharmhostError as e:
        if e.status >= 500:
            logger.error("Request failed", path=request.path, error=e.message)
        return web.json_response({"error": e.message}, status=e.status)
    except Exception:
        logger.exception("Unhandled error", path=request.path)
        return web.json_response({"error": "Internal server error."}, status=500)


async def _read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body."""
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidArgumentError("Invalid JSON") from None
    if not isinstance(data, dict):
        raise InvalidArgumentError("Request body must be a JSON object")
    return data


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidArgumentError(f"Missing {key} field")
    return value


def _optional_bool(data: dict[str, Any], key: str) -> bool | None:
    """A JSON boolean field, or None when absent."""
    value = data.get(key)
    if value is not None and not isinstance(value, bool):
        raise InvalidArgumentError(f"{key} must be a boolean")
    return value


def _bearer_token(request: web.Request, data: dict[str, Any] | None = None) -> str | None:
    """Token from the Authorization header, or a "token" body field."""
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    if data is not None:
        token = data.get("token")
        if isinstance(token, str) and token:
            return token
    return None


def _parse_capabilities(raw: Any) -> list[Capability]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InvalidArgumentError("capabilities must be a list")
    try:
        return [Capability(c) for c in raw]
    except ValueError:
        raise InvalidArgumentError(
            f"Unknown capability; expected one of {[c.value for c in Capability]}"
        ) from None


def _token_dict(record: CapabilityToken) -> dict[str, Any]:
    return {
        "token": record.token,
        "is_active": record.is_active,
        "issued_at": record.issued_at.isoformat(),
        "capabilities": {c.value: getattr(record, c.value) for c in Capability},
    }


async def _viewer_context(
    request: web.Request,
    session: AsyncSession,
    username: str,
) -> ViewerContext:
    """Public without a token, Owner for the target's own token, else Network."""
    token = _bearer_token(request)
    if token is None:
        return PUBLIC
    viewer = await request.app["directory"].resolve_by_token(session, token)
    if viewer.handle == username:
        return Owner(viewer.id)
    return Network(viewer.id)


def _page_param(request: web.Request) -> int | None:
    page = request.query.get("page")
    if not page:
        return None
    try:
        return int(page)
    except ValueError:
        raise InvalidArgumentError("page must be an integer") from None


# === Federation handlers ===

async def handle_webfinger(request: web.Request) -> web.Response:
    """Handle WebFinger discovery requests."""
    resource = request.query.get("resource", "")
    if not resource:
        raise InvalidArgumentError("Missing resource parameter")

    username, host = parse_resource(resource)

    async with request.app["session_maker"]() as session:
        document = await request.app["webfinger"].resolve(session, username, host)

    return web.json_response(document.to_dict(), content_type=JRD_CONTENT_TYPE)


async def handle_actor(request: web.Request) -> web.Response:
    """Handle actor document request."""
    username = request.match_info["username"]

    async with request.app["session_maker"]() as session:
        actor = await request.app["directory"].resolve_by_handle(session, username)
        document = await request.app["assembler"].build(session, actor)

    return web.json_response(document.to_dict(), content_type=AP_CONTENT_TYPE)


async def _collection_response(request: web.Request, kind: CollectionKind) -> web.Response:
    username = request.match_info["username"]
    page = _page_param(request)
    assembler: ActorDocumentAssembler = request.app["assembler"]

    async with request.app["session_maker"]() as session:
        actor = await request.app["directory"].resolve_by_handle(session, username)
        if page is None:
            collection = await assembler.collection(session, actor, kind)
            body = collection.to_dict(with_context=True)
        else:
            body = (await assembler.collection_page(session, actor, kind, page)).to_dict()

    return web.json_response(body, content_type=AP_CONTENT_TYPE)


async def handle_followers(request: web.Request) -> web.Response:
    """Handle followers collection request."""
    return await _collection_response(request, CollectionKind.FOLLOWERS)


async def handle_following(request: web.Request) -> web.Response:
    """Handle following collection request."""
    return await _collection_response(request, CollectionKind.FOLLOWING)


# === Account handlers ===

async def handle_create_actor(request: web.Request) -> web.Response:
    """Create a new, unverified account."""
    data = await _read_json(request)

    async with request.app["session_maker"]() as session:
        actor = await request.app["directory"].create_actor(
            session,
            handle=_require_str(data, "handle"),
            password=_require_str(data, "password"),
            display_name=data.get("display_name") or "",
            description=data.get("description") or "",
            avatar_url=data.get("avatar_url") or "",
            is_private=bool(_optional_bool(data, "is_private")),
        )

    return web.json_response(
        {"id": actor.id, "handle": actor.handle, "is_active": actor.is_active},
        status=201,
    )


async def handle_verify_email(request: web.Request) -> web.Response:
    """Activate an account from its email verification token."""
    data = await _read_json(request)

    async with request.app["session_maker"]() as session:
        actor = await request.app["directory"].verify_email(
            session, _require_str(data, "email_token")
        )

    return web.json_response(
        {"id": actor.id, "handle": actor.handle, "is_active": actor.is_active}
    )


async def handle_update_profile(request: web.Request) -> web.Response:
    """Update the caller's own profile fields."""
    data = await _read_json(request)

    async with request.app["session_maker"]() as session:
        actor = await request.app["tokens"].authorize(session, _bearer_token(request, data))
        is_private = _optional_bool(data, "is_private")
        actor = await request.app["directory"].update_profile(
            session,
            actor,
            display_name=data.get("display_name"),
            description=data.get("description"),
            avatar_url=data.get("avatar_url"),
            is_private=is_private,
        )

    return web.json_response({"status": "ok", "handle": actor.handle})


async def handle_change_handle(request: web.Request) -> web.Response:
    """Rename the caller's account."""
    data = await _read_json(request)

    async with request.app["session_maker"]() as session:
        actor = await request.app["tokens"].authorize(
            session, _bearer_token(request, data), Capability.CHANGE_USERNAME
        )
        actor = await request.app["directory"].change_handle(
            session, actor, _require_str(data, "new_handle")
        )

    return web.json_response({"status": "ok", "handle": actor.handle})


async def handle_delete_actor(request: web.Request) -> web.Response:
    """Delete the caller's account and everything it owns."""
    async with request.app["session_maker"]() as session:
        actor = await request.app["tokens"].authorize(
            session, _bearer_token(request), Capability.DELETE_ACCOUNT
        )
        await request.app["directory"].delete_actor(session, actor.id)

    return web.json_response({"status": "deleted"})


# === Token handlers ===

async def handle_issue_token(request: web.Request) -> web.Response:
    """Issue a token for handle/password credentials."""
    data = await _read_json(request)
    capabilities = _parse_capabilities(data.get("capabilities"))

    async with request.app["session_maker"]() as session:
        record = await request.app["tokens"].issue_for_handle(
            session,
            _require_str(data, "handle"),
            _require_str(data, "password"),
            capabilities,
        )

    return web.json_response(_token_dict(record), status=201)


async def handle_revoke_token(request: web.Request) -> web.Response:
    """Revoke a token owned by the caller (the caller's own by default)."""
    caller_token = _bearer_token(request)
    data = await _read_json(request) if request.can_read_body else {}
    target = data.get("revoke") or caller_token

    async with request.app["session_maker"]() as session:
        caller = await request.app["tokens"].authorize(session, caller_token)
        await request.app["tokens"].revoke(session, target, caller.id)

    return web.json_response({"status": "revoked"})


async def handle_list_tokens(request: web.Request) -> web.Response:
    """List an account's tokens for handle/password credentials."""
    data = await _read_json(request)

    async with request.app["session_maker"]() as session:
        records = await request.app["tokens"].list_tokens_for_handle(
            session,
            _require_str(data, "handle"),
            _require_str(data, "password"),
        )

    return web.json_response({"tokens": [_token_dict(r) for r in records]})


# === Relationship handlers ===

async def _relationship_action(request: web.Request, action: str) -> web.Response:
    data = await _read_json(request)

    async with request.app["session_maker"]() as session:
        caller = await request.app["tokens"].authorize(session, _bearer_token(request, data))
        target = await request.app["directory"].resolve_by_handle(
            session, _require_str(data, "handle")
        )
        relationships: RelationshipIndex = request.app["relationships"]
        result = await getattr(relationships, action)(session, caller.id, target.id)

    status = 201 if action in ("follow", "block") else 200
    body: dict[str, Any] = {"status": "ok", "action": action, "handle": target.handle}
    if isinstance(result, bool):
        body["changed"] = result
    return web.json_response(body, status=status)


async def handle_follow(request: web.Request) -> web.Response:
    return await _relationship_action(request, "follow")


async def handle_unfollow(request: web.Request) -> web.Response:
    return await _relationship_action(request, "unfollow")


async def handle_block(request: web.Request) -> web.Response:
    return await _relationship_action(request, "block")


async def handle_unblock(request: web.Request) -> web.Response:
    return await _relationship_action(request, "unblock")


# === Disclosure handlers ===

async def handle_profile(request: web.Request) -> web.Response:
    """Profile of a user, as visible to the caller."""
    username = request.match_info["username"]

    async with request.app["session_maker"]() as session:
        viewer = await _viewer_context(request, session, username)
        profile = await request.app["disclosure"].profile(session, username, viewer)

    return web.json_response(profile.to_dict())


async def handle_timeline(request: web.Request) -> web.Response:
    """Charms of a user, newest first, as visible to the caller."""
    username = request.match_info["username"]
    try:
        limit = int(request.query.get("limit", DEFAULT_TIMELINE_LIMIT))
        offset = int(request.query.get("offset", 0))
    except ValueError:
        raise InvalidArgumentError("limit and offset must be integers") from None

    async with request.app["session_maker"]() as session:
        viewer = await _viewer_context(request, session, username)
        timeline = await request.app["disclosure"].timeline(
            session, username, viewer, limit=limit, offset=offset
        )

    return web.json_response(timeline.to_dict())


async def handle_files(request: web.Request) -> web.Response:
    """Files of a user, as visible to the caller."""
    username = request.match_info["username"]

    async with request.app["session_maker"]() as session:
        viewer = await _viewer_context(request, session, username)
        files = await request.app["disclosure"].files(session, username, viewer)

    return web.json_response({"files": [f.to_dict() for f in files]})


async def handle_health(request: web.Request) -> web.Response:
    """Health check endpoint."""
    return web.json_response({"status": "ok"})


def main() -> None:
    """Main entry point."""
    # Configure standard logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
    )

    config = load_config()

    # Set log level from config
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(log_level)

    server = CharmhostServer(config)

    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
