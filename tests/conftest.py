"""Shared fixtures and fakes for the PulseMix test suite."""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest

from pulsemix.config import Settings, SpotifyConfig, WeatherConfig, WhoopConfig
from pulsemix.context import WeatherService
from pulsemix.core import AggregationStore
from pulsemix.core.errors import AuthorizationError
from pulsemix.llm import LLMClient, LLMConfig, PlaylistEnricher
from pulsemix.music import TrackResolver
from pulsemix.providers import TokenLifecycleManager, TokenRecord
from pulsemix.providers.whoop import WhoopDataSource
from pulsemix.service import PulseMixService

FIXED_NOW = "2024-05-01T08:00:00+00:00"


def spotify_item(track_id: str, name: str = "Song") -> Dict[str, Any]:
    return {
        "id": track_id,
        "name": name,
        "artists": [{"name": "Artist"}],
        "preview_url": None,
        "uri": f"spotify:track:{track_id}",
        "external_urls": {"spotify": f"https://open.spotify.com/track/{track_id}"},
        "album": {"images": [{"url": "big"}, {"url": "mid"}, {"url": "small"}]},
    }


class FakeSearcher:
    """Scripted catalog search. ``responses`` maps query -> items or exception."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, default: Any = None):
        self.responses = responses or {}
        self.default = default if default is not None else []
        self.calls: List[str] = []

    async def search_tracks(self, access_token: str, query: str, limit: int = 30):
        self.calls.append(query)
        result = self.responses.get(query, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class FakeOAuthClient:
    """Counts refreshes; each refresh issues a new token pair."""

    def __init__(self, refresh_delay: float = 0.0, fail_refresh: bool = False, clock=lambda: 1000.0):
        self.refresh_delay = refresh_delay
        self.fail_refresh = fail_refresh
        self.clock = clock
        self.refresh_calls: List[str] = []
        self.exchanged: List[str] = []

    def authorization_url(self, state: str) -> str:
        return f"https://auth.example/authorize?state={state}"

    async def exchange_code(self, code: str) -> TokenRecord:
        self.exchanged.append(code)
        return TokenRecord("access-0", "refresh-0", self.clock() + 3600)

    async def refresh(self, refresh_token: str) -> TokenRecord:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.fail_refresh:
            raise AuthorizationError("Failed to refresh token: invalid_grant")
        n = len(self.refresh_calls)
        return TokenRecord(f"access-{n}", f"refresh-{n}", self.clock() + 3600)


class FakeLLMClient(LLMClient):
    """Returns a canned JSON object (or raises) without any network."""

    def __init__(self, response: Any = None, error: Optional[Exception] = None):
        super().__init__(LLMConfig(provider="openai", api_key="test-key"))
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        raise NotImplementedError

    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


def failing_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network disabled in tests", request=request)

    return httpx.MockTransport(handler)


@pytest.fixture
def store():
    return AggregationStore(clock=lambda: FIXED_NOW)


@pytest.fixture
def oauth_client():
    return FakeOAuthClient()


@pytest.fixture
def token_manager(oauth_client):
    return TokenLifecycleManager(oauth_client, clock=lambda: 1000.0)


@pytest.fixture
def searcher():
    return FakeSearcher(default=[spotify_item("t1"), spotify_item("t2")])


@pytest.fixture
def weather():
    # Always degrades to the placeholder snapshot
    return WeatherService(WeatherConfig(), http_client=httpx.AsyncClient(transport=failing_transport()))


@pytest.fixture
def llm_client():
    return FakeLLMClient({
        "mood": "flow",
        "energy": 0.6,
        "valence": 0.5,
        "tempo": 110,
        "genres": ["ambient", "lofi"],
        "searchQuery": "focus beats",
        "reasoning": "Well rested",
    })


@pytest.fixture
def make_service(store, token_manager, searcher, weather):
    """Build a service with fakes; pass ``enricher=`` to enable enrichment."""

    def _make(enricher: Optional[PlaylistEnricher] = None, spotify: Any = None) -> PulseMixService:
        whoop = WhoopDataSource(token_manager, http_client=httpx.AsyncClient(transport=failing_transport()))
        return PulseMixService(
            store=store,
            token_manager=token_manager,
            whoop=whoop,
            resolver=TrackResolver(searcher),
            spotify=spotify,
            weather=weather,
            enricher=enricher,
        )

    return _make


@pytest.fixture
def settings():
    return Settings(
        whoop=WhoopConfig(client_id="whoop-id", client_secret="whoop-secret",
                          redirect_uri="http://localhost:4000/auth/whoop/callback"),
        spotify=SpotifyConfig(client_id="sp-id", client_secret="sp-secret",
                              redirect_uri="http://localhost:4000/auth/callback"),
        weather=WeatherConfig(),
        client_urls=["http://localhost:5173"],
    )
