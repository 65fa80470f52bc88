"""Tests for the Spotify catalog client."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import spotify_item

from pulsemix.config import SpotifyConfig
from pulsemix.core.errors import AuthorizationError, ConfigurationError, SearchError, TokenExpiredError
from pulsemix.music import SpotifyClient, TrackResult


def make_client(handler, **config):
    settings = SpotifyConfig(
        client_id=config.get("client_id", "sp-id"),
        client_secret=config.get("client_secret", "sp-secret"),
        redirect_uri=config.get("redirect_uri", "http://localhost/callback"),
        market="US",
        timeout=5,
    )
    return SpotifyClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def unused(request):
    raise AssertionError(f"unexpected request {request.url}")


class TestTrackResult:
    def test_from_api_response_prefers_mid_image(self):
        track = TrackResult.from_api_response(spotify_item("abc", "Glider"))

        assert track.to_dict() == {
            "id": "abc",
            "name": "Glider",
            "artists": ["Artist"],
            "preview_url": None,
            "uri": "spotify:track:abc",
            "externalUrl": "https://open.spotify.com/track/abc",
            "albumArt": "mid",
        }

    def test_single_image_and_missing_fields(self):
        track = TrackResult.from_api_response({"id": "x", "album": {"images": [{"url": "only"}]}})

        assert track.album_art_url == "only"
        assert track.name == "Unknown"
        assert track.artist_names == []


class TestAuthorization:
    def test_authorization_url(self):
        url = make_client(unused).authorization_url()
        query = parse_qs(urlparse(url).query)

        assert url.startswith("https://accounts.spotify.com/authorize?")
        assert query["state"] == ["playlist-generator"]
        assert query["scope"] == ["playlist-modify-private playlist-modify-public user-read-recently-played"]

    def test_authorization_url_requires_config(self):
        with pytest.raises(ConfigurationError):
            make_client(unused, client_id=None).authorization_url()

    async def test_exchange_code(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"access_token": "user-token", "expires_in": 3600})

        tokens = await make_client(handler).exchange_code("abc")

        assert tokens["access_token"] == "user-token"
        assert seen[0].headers["Authorization"].startswith("Basic ")
        assert parse_qs(seen[0].content.decode())["code"] == ["abc"]

    async def test_exchange_code_rejected(self):
        client = make_client(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
        with pytest.raises(AuthorizationError):
            await client.exchange_code("bad")


class TestSearch:
    async def test_search_tracks(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"tracks": {"items": [spotify_item("1")]}})

        items = await make_client(handler).search_tracks("token", "deep focus", limit=30)

        assert [i["id"] for i in items] == ["1"]
        params = seen[0].url.params
        assert params["q"] == "deep focus"
        assert params["type"] == "track"
        assert params["limit"] == "30"
        assert params["market"] == "US"
        assert seen[0].headers["Authorization"] == "Bearer token"

    async def test_unauthorized_is_token_expired(self):
        client = make_client(lambda request: httpx.Response(401, json={"error": {"status": 401}}))
        with pytest.raises(TokenExpiredError):
            await client.search_tracks("stale", "q")

    async def test_rate_limit_is_search_error(self):
        client = make_client(lambda request: httpx.Response(429, json={}))
        with pytest.raises(SearchError) as exc:
            await client.search_tracks("token", "q")
        assert exc.value.status_code == 429

    async def test_transport_error_is_search_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(SearchError):
            await make_client(handler).search_tracks("token", "q")

    async def test_missing_tracks_key(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        assert await client.search_tracks("token", "q") == []

    async def test_non_json_body_is_search_error(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(SearchError):
            await client.search_tracks("token", "q")

    async def test_null_items_are_dropped(self):
        client = make_client(lambda request: httpx.Response(200, json={
            "tracks": {"items": [None, spotify_item("2"), "junk"]},
        }))

        items = await client.search_tracks("token", "q")

        assert [i["id"] for i in items] == ["2"]

    async def test_items_not_a_list_is_search_error(self):
        client = make_client(lambda request: httpx.Response(200, json={"tracks": {"items": "oops"}}))
        with pytest.raises(SearchError):
            await client.search_tracks("token", "q")


class TestPlaylists:
    async def test_create_and_add_in_batches(self):
        posts = []

        def handler(request):
            posts.append((request.url.path, json.loads(request.content)))
            if request.url.path.endswith("/me/playlists"):
                return httpx.Response(201, json={"id": "pl1", "external_urls": {"spotify": "https://x/pl1"}})
            return httpx.Response(201, json={"snapshot_id": f"snap{len(posts)}"})

        client = make_client(handler)
        playlist = await client.create_playlist("token", "Mood playlist", "desc")
        snapshot = await client.add_tracks("token", playlist["id"], [f"spotify:track:{i}" for i in range(150)])

        assert posts[0] == ("/v1/me/playlists", {"name": "Mood playlist", "description": "desc", "public": False})
        assert [len(body["uris"]) for path, body in posts[1:]] == [100, 50]
        assert snapshot == "snap3"
