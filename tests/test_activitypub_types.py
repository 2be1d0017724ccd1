"""Tests for ActivityPub and WebFinger document types."""

import pytest

from charmhost.activitypub_types import (
    ACTIVITY_STREAMS_CONTEXT,
    AP_CONTENT_TYPE,
    REL_PROFILE_PAGE,
    REL_SELF,
    ActorDocument,
    ObjectType,
    OrderedCollection,
    OrderedCollectionPage,
    PublicKey,
    WebFingerDocument,
    WebFingerLink,
    guess_media_type,
    parse_acct_resource,
    parse_webfinger,
)


def _actor_document(**overrides) -> ActorDocument:
    actor_url = "https://charmhost.social/users/alice"
    fields = dict(
        id=actor_url,
        preferred_username="alice",
        name="Alice",
        summary="Hello",
        inbox=f"{actor_url}/inbox",
        outbox=f"{actor_url}/outbox",
        followers=OrderedCollection(items=["https://charmhost.social/users/bob"]),
        following=OrderedCollection(),
        public_key=PublicKey(
            id=f"{actor_url}#main-key",
            owner=actor_url,
            public_key_pem="-----BEGIN PUBLIC KEY-----\ntest\n-----END PUBLIC KEY-----",
        ),
    )
    fields.update(overrides)
    return ActorDocument(**fields)


class TestObjectType:
    """Tests for ObjectType enum."""

    def test_values(self):
        assert ObjectType.PERSON.value == "Person"
        assert ObjectType.ORDERED_COLLECTION.value == "OrderedCollection"


class TestOrderedCollection:
    """Tests for OrderedCollection."""

    def test_to_dict(self):
        collection = OrderedCollection(items=["a", "b"])
        assert collection.to_dict() == {
            "type": "OrderedCollection",
            "totalItems": 2,
            "items": ["a", "b"],
        }

    def test_empty_with_context(self):
        collection = OrderedCollection(id="https://charmhost.social/users/alice/followers")
        data = collection.to_dict(with_context=True)
        assert ACTIVITY_STREAMS_CONTEXT in data["@context"]
        assert data["id"].endswith("/followers")
        assert data["totalItems"] == 0
        assert data["items"] == []


class TestOrderedCollectionPage:
    """Tests for OrderedCollectionPage."""

    def test_to_dict_with_links(self):
        page = OrderedCollectionPage(
            id="https://x/followers?page=2",
            part_of="https://x/followers",
            total_items=45,
            items=["a"],
            next="https://x/followers?page=3",
            prev="https://x/followers?page=1",
        )
        data = page.to_dict()
        assert data["type"] == "OrderedCollectionPage"
        assert data["partOf"] == "https://x/followers"
        assert data["orderedItems"] == ["a"]
        assert data["next"].endswith("page=3")
        assert data["prev"].endswith("page=1")

    def test_first_page_has_no_prev(self):
        page = OrderedCollectionPage(id="p1", part_of="c")
        assert "prev" not in page.to_dict()
        assert "next" not in page.to_dict()


class TestActorDocument:
    """Tests for ActorDocument."""

    def test_to_dict(self):
        data = _actor_document().to_dict()

        assert data["id"] == "https://charmhost.social/users/alice"
        assert data["type"] == "Person"
        assert data["name"] == "Alice"
        assert data["summary"] == "Hello"
        assert data["inbox"].endswith("/inbox")
        assert data["outbox"].endswith("/outbox")
        assert data["followers"] == {
            "type": "OrderedCollection",
            "totalItems": 1,
            "items": ["https://charmhost.social/users/bob"],
        }
        assert data["following"]["totalItems"] == 0
        assert data["publicKey"]["id"].endswith("#main-key")
        assert data["publicKey"]["owner"] == data["id"]
        assert "icon" not in data

    def test_icon(self):
        data = _actor_document(icon_url="https://charmhost.social/avatars/a.png").to_dict()
        assert data["icon"] == {
            "type": "Image",
            "mediaType": "image/png",
            "url": "https://charmhost.social/avatars/a.png",
        }

    def test_name_falls_back_to_username(self):
        assert _actor_document(name="").to_dict()["name"] == "alice"


class TestWebFingerDocument:
    """Tests for WebFingerDocument."""

    def test_to_dict(self):
        document = WebFingerDocument(
            subject="acct:alice@charmhost.social",
            aliases=["https://charmhost.social/@alice"],
            links=[
                WebFingerLink(rel=REL_SELF, type=AP_CONTENT_TYPE, href="https://charmhost.social/users/alice"),
                WebFingerLink(rel="http://ostatus.org/schema/1.0/subscribe", template="https://x/{uri}"),
            ],
        )
        data = document.to_dict()
        assert data["subject"] == "acct:alice@charmhost.social"
        assert data["links"][0] == {
            "rel": "self",
            "type": AP_CONTENT_TYPE,
            "href": "https://charmhost.social/users/alice",
        }
        assert data["links"][1] == {
            "rel": "http://ostatus.org/schema/1.0/subscribe",
            "template": "https://x/{uri}",
        }

    def test_actor_url(self):
        document = WebFingerDocument(
            subject="acct:alice@remote.example",
            links=[
                WebFingerLink(rel=REL_PROFILE_PAGE, type="text/html", href="https://remote.example/@alice"),
                WebFingerLink(rel=REL_SELF, type="text/html", href="https://remote.example/html"),
                WebFingerLink(rel=REL_SELF, type=AP_CONTENT_TYPE, href="https://remote.example/users/alice"),
            ],
        )
        assert document.actor_url() == "https://remote.example/users/alice"

    def test_actor_url_missing(self):
        assert WebFingerDocument(subject="acct:a@b").actor_url() is None


class TestParseWebFinger:
    """Tests for parsing remote WebFinger bodies."""

    def test_parse_mastodon_style(self):
        data = {
            "subject": "acct:Gargron@mastodon.social",
            "aliases": ["https://mastodon.social/@Gargron"],
            "links": [
                {"rel": "http://webfinger.net/rel/profile-page", "type": "text/html", "href": "https://mastodon.social/@Gargron"},
                {"rel": "self", "type": "application/activity+json", "href": "https://mastodon.social/users/Gargron"},
                {"rel": "http://ostatus.org/schema/1.0/subscribe", "template": "https://mastodon.social/authorize_interaction?uri={uri}"},
            ],
        }
        document = parse_webfinger(data)
        assert document.subject == "acct:Gargron@mastodon.social"
        assert len(document.links) == 3
        assert document.actor_url() == "https://mastodon.social/users/Gargron"
        assert document.links[2].template.endswith("{uri}")

    def test_parse_minimal(self):
        document = parse_webfinger({"subject": "acct:a@b"})
        assert document.aliases == []
        assert document.links == []

    @pytest.mark.parametrize(
        "data",
        [
            None,
            [],
            "text",
            {},
            {"subject": ""},
            {"subject": "acct:a@b", "aliases": "x"},
            {"subject": "acct:a@b", "aliases": [1]},
            {"subject": "acct:a@b", "links": {}},
            {"subject": "acct:a@b", "links": ["self"]},
            {"subject": "acct:a@b", "links": [{"href": "x"}]},
            {"subject": "acct:a@b", "links": [{"rel": "self", "href": 5}]},
        ],
    )
    def test_malformed(self, data):
        with pytest.raises(ValueError):
            parse_webfinger(data)


class TestParseAcctResource:
    """Tests for acct: resource parsing."""

    def test_parse(self):
        assert parse_acct_resource("acct:alice@Charmhost.Social") == ("alice", "charmhost.social")

    def test_leading_at(self):
        assert parse_acct_resource("acct:@alice@charmhost.social") == ("alice", "charmhost.social")

    @pytest.mark.parametrize(
        "resource",
        [
            "alice@charmhost.social",
            "acct:alice",
            "acct:@charmhost.social",
            "acct:alice@",
            "",
            "acct:a&resource=acct:admin@evil.example/x?",
            "acct:alice@evil.example/path",
            "acct:alice@evil.example\n",
            "acct:al ice@charmhost.social",
        ],
    )
    def test_invalid(self, resource):
        with pytest.raises(ValueError):
            parse_acct_resource(resource)


class TestGuessMediaType:
    """Tests for media type inference."""

    def test_known_extensions(self):
        assert guess_media_type("avatars/a.png") == "image/png"
        assert guess_media_type("avatars/a.jpg") == "image/jpeg"

    def test_unknown_extension(self):
        assert guess_media_type("avatars/a") == "application/octet-stream"
