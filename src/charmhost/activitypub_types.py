"""ActivityPub and WebFinger document types for charmhost.

This module implements the read-only projections served to federated
peers: the Actor document, its followers/following collections, and
WebFinger discovery documents (RFC 7033).

References:
- ActivityPub: https://www.w3.org/TR/activitypub/
- ActivityStreams 2.0: https://www.w3.org/TR/activitystreams-core/
- WebFinger: https://www.rfc-editor.org/rfc/rfc7033
"""

import mimetypes
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias

# JSON-LD contexts for ActivityPub
ACTIVITY_STREAMS_CONTEXT = "https://www.w3.org/ns/activitystreams"
SECURITY_CONTEXT = "https://w3id.org/security/v1"

# Standard ActivityPub context
AP_CONTEXT: list[str | dict] = [
    ACTIVITY_STREAMS_CONTEXT,
    SECURITY_CONTEXT,
]

# Content types
AP_CONTENT_TYPE = "application/activity+json"
AP_ACCEPT_HEADER = 'application/activity+json, application/ld+json; profile="https://www.w3.org/ns/activitystreams"'
JRD_CONTENT_TYPE = "application/jrd+json"

# WebFinger link relations
REL_PROFILE_PAGE = "http://webfinger.net/rel/profile-page"
REL_SELF = "self"
REL_AVATAR = "http://webfinger.net/rel/avatar"
REL_SUBSCRIBE = "http://ostatus.org/schema/1.0/subscribe"

# Type aliases
JsonDict: TypeAlias = dict[str, Any]

# Bare DNS name, optionally with a port
ACCT_HOST_PATTERN = re.compile(
    r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*(?::\d{1,5})?"
)
ACCT_USER_FORBIDDEN = set("/?#&@%")


class ObjectType(str, Enum):
    """ActivityPub object types used by charmhost."""
    # Actors
    PERSON = "Person"

    # Media
    IMAGE = "Image"

    # Collections
    ORDERED_COLLECTION = "OrderedCollection"
    ORDERED_COLLECTION_PAGE = "OrderedCollectionPage"


@dataclass
class PublicKey:
    """RSA public key for HTTP signatures."""
    id: str  # e.g., https://charmhost.social/users/alice#main-key
    owner: str  # Actor ID
    public_key_pem: str

    def to_dict(self) -> JsonDict:
        """Convert to ActivityPub JSON-LD format."""
        return {
            "id": self.id,
            "owner": self.owner,
            "publicKeyPem": self.public_key_pem,
        }


@dataclass
class OrderedCollection:
    """Followers/following collection with its items inlined."""
    items: list[str] = field(default_factory=list)
    id: str = ""

    @property
    def total_items(self) -> int:
        return len(self.items)

    def to_dict(self, with_context: bool = False) -> JsonDict:
        """Convert to ActivityPub JSON-LD format."""
        collection: JsonDict = {}
        if with_context:
            collection["@context"] = AP_CONTEXT
        if self.id:
            collection["id"] = self.id
        collection.update({
            "type": ObjectType.ORDERED_COLLECTION.value,
            "totalItems": self.total_items,
            "items": list(self.items),
        })
        return collection


@dataclass
class OrderedCollectionPage:
    """Page of an OrderedCollection."""
    id: str
    part_of: str  # Parent collection ID
    total_items: int = 0
    items: list[str] = field(default_factory=list)
    next: str = ""
    prev: str = ""

    def to_dict(self) -> JsonDict:
        """Convert to ActivityPub JSON-LD format."""
        page = {
            "@context": AP_CONTEXT,
            "id": self.id,
            "type": ObjectType.ORDERED_COLLECTION_PAGE.value,
            "partOf": self.part_of,
            "totalItems": self.total_items,
            "orderedItems": self.items,
        }

        if self.next:
            page["next"] = self.next
        if self.prev:
            page["prev"] = self.prev

        return page


@dataclass
class ActorDocument:
    """ActivityPub Actor as served at /users/{username}."""
    id: str  # https://charmhost.social/users/alice
    preferred_username: str
    name: str
    summary: str
    inbox: str
    outbox: str
    followers: OrderedCollection
    following: OrderedCollection
    public_key: PublicKey
    icon_url: str = ""
    type: ObjectType = ObjectType.PERSON
    url: str = ""  # Profile page
    manually_approves_followers: bool = False

    def to_dict(self) -> JsonDict:
        """Convert to ActivityPub JSON-LD format."""
        actor: JsonDict = {
            "@context": AP_CONTEXT,
            "id": self.id,
            "type": self.type.value,
            "preferredUsername": self.preferred_username,
            "name": self.name or self.preferred_username,
            "summary": self.summary,
            "url": self.url or self.id,
            "inbox": self.inbox,
            "outbox": self.outbox,
            "followers": self.followers.to_dict(),
            "following": self.following.to_dict(),
            "manuallyApprovesFollowers": self.manually_approves_followers,
            "publicKey": self.public_key.to_dict(),
        }

        if self.icon_url:
            actor["icon"] = {
                "type": ObjectType.IMAGE.value,
                "mediaType": guess_media_type(self.icon_url),
                "url": self.icon_url,
            }

        return actor


@dataclass
class WebFingerLink:
    """One entry of a WebFinger document's links array."""
    rel: str
    type: str | None = None
    href: str | None = None
    template: str | None = None

    def to_dict(self) -> JsonDict:
        link: JsonDict = {"rel": self.rel}
        if self.type is not None:
            link["type"] = self.type
        if self.href is not None:
            link["href"] = self.href
        if self.template is not None:
            link["template"] = self.template
        return link


@dataclass
class WebFingerDocument:
    """WebFinger JRD document."""
    subject: str  # acct:alice@charmhost.social
    aliases: list[str] = field(default_factory=list)
    links: list[WebFingerLink] = field(default_factory=list)

    def to_dict(self) -> JsonDict:
        """Convert to JRD JSON."""
        return {
            "subject": self.subject,
            "aliases": list(self.aliases),
            "links": [link.to_dict() for link in self.links],
        }

    def self_link(self) -> WebFingerLink | None:
        """The ActivityPub self link, if present."""
        for link in self.links:
            if link.rel == REL_SELF and link.type == AP_CONTENT_TYPE and link.href:
                return link
        return None

    def actor_url(self) -> str | None:
        """URL of the ActivityPub actor document, if advertised."""
        link = self.self_link()
        return link.href if link else None


def parse_webfinger(data: Any) -> WebFingerDocument:
    """Parse a WebFinger JRD document.

    Args:
        data: Decoded JSON body

    Returns:
        WebFingerDocument

    Raises:
        ValueError: If the body does not have the expected shape
    """
    if not isinstance(data, dict):
        raise ValueError("WebFinger document must be a JSON object")

    subject = data.get("subject")
    if not isinstance(subject, str) or not subject:
        raise ValueError("WebFinger document has no subject")

    aliases = data.get("aliases", [])
    if not isinstance(aliases, list) or not all(isinstance(a, str) for a in aliases):
        raise ValueError("WebFinger aliases must be a list of strings")

    raw_links = data.get("links", [])
    if not isinstance(raw_links, list):
        raise ValueError("WebFinger links must be a list")

    links: list[WebFingerLink] = []
    for raw in raw_links:
        if not isinstance(raw, dict) or not isinstance(raw.get("rel"), str):
            raise ValueError("WebFinger link must be an object with a rel")
        for key in ("type", "href", "template"):
            if raw.get(key) is not None and not isinstance(raw[key], str):
                raise ValueError(f"WebFinger link {key} must be a string")
        links.append(
            WebFingerLink(
                rel=raw["rel"],
                type=raw.get("type"),
                href=raw.get("href"),
                template=raw.get("template"),
            )
        )

    return WebFingerDocument(subject=subject, aliases=list(aliases), links=links)


def parse_acct_resource(resource: str) -> tuple[str, str]:
    """Split an acct: resource into (username, host).

    Args:
        resource: e.g. acct:alice@charmhost.social

    Raises:
        ValueError: If the resource is not an acct: URI with user and host
    """
    if not resource.startswith("acct:"):
        raise ValueError("Resource must be an acct: URI")
    acct = resource[5:].lstrip("@")
    if "@" not in acct:
        raise ValueError("Resource must be of the form acct:user@host")
    username, host = acct.rsplit("@", 1)
    return validate_acct(username, host)


def validate_acct(username: str, host: str) -> tuple[str, str]:
    """Check that username@host can be placed in a discovery URL.

    Returns:
        (username, lowercased host)

    Raises:
        ValueError: If the username carries URL delimiters or the host is
            not a bare hostname
    """
    host = host.lower()
    if not username or not host:
        raise ValueError("Resource must be of the form acct:user@host")
    if any(c in ACCT_USER_FORBIDDEN or not c.isprintable() or c.isspace() for c in username):
        raise ValueError("Username contains characters not allowed in an acct: URI")
    if len(host) > 253 or not ACCT_HOST_PATTERN.fullmatch(host):
        raise ValueError("Host must be a bare hostname")
    _, _, port = host.partition(":")
    if port and not 0 < int(port) <= 65535:
        raise ValueError("Host port is out of range")
    return username, host


def guess_media_type(path: str) -> str:
    """Infer a media type from a file extension, defaulting to octet-stream."""
    media_type, _ = mimetypes.guess_type(path)
    return media_type or "application/octet-stream"
