"""
PulseMix Service

Wires the normalizer, aggregation store, mood classifier, token manager,
enrichment and track resolver into the operations the HTTP layer
exposes. One instance owns all process-lifetime state; tests build
their own with fakes injected.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings
from .context import WeatherService
from .core.errors import (
    EnrichmentError,
    InvalidRequestError,
    MoodNotReadyError,
    NoMetricsError,
    PulseMixError,
    ReauthRequiredError,
)
from .core.mood import MoodSnapshot, infer_mood
from .core.normalizer import list_providers, normalize
from .core.store import AggregatedMetrics, AggregationStore, SyncContext
from .llm.enrichment import EnrichmentContext, PlaylistEnricher, describe_schedule_load
from .music.resolver import FALLBACK_NO_TOKEN_SOURCE, TrackResolver, get_fallback_tracks
from .music.spotify import SpotifyClient
from .providers.tokens import TokenLifecycleManager
from .providers.whoop import WhoopDataSource, WhoopOAuthClient

logger = logging.getLogger(__name__)


DEFAULT_USER_ID = "default"


class PulseMixService:
    """
    Orchestrates the wearable -> mood -> playlist pipeline.

    Responsibilities:
        - Normalize and record wearable samples
        - Classify and store the current mood
        - Fetch provider data through the OAuth token manager
        - Optionally enrich the mood with an LLM hint
        - Resolve tracks with static fallback
    """

    def __init__(
        self,
        store: AggregationStore,
        token_manager: TokenLifecycleManager,
        whoop: WhoopDataSource,
        resolver: TrackResolver,
        spotify: Optional[SpotifyClient] = None,
        weather: Optional[WeatherService] = None,
        enricher: Optional[PlaylistEnricher] = None,
    ):
        self.store = store
        self.token_manager = token_manager
        self.whoop = whoop
        self.resolver = resolver
        self.spotify = spotify
        self.weather = weather
        self.enricher = enricher

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PulseMixService":
        """Build a service with real HTTP collaborators."""
        settings = settings or Settings()
        token_manager = TokenLifecycleManager(WhoopOAuthClient(settings.whoop))
        spotify = SpotifyClient(settings.spotify)
        return cls(
            store=AggregationStore(),
            token_manager=token_manager,
            whoop=WhoopDataSource(token_manager, timeout=settings.call_timeout),
            resolver=TrackResolver(spotify, timeout=settings.call_timeout),
            spotify=spotify,
            weather=WeatherService(settings.weather),
            enricher=PlaylistEnricher.from_env(timeout=settings.call_timeout),
        )

    async def aclose(self) -> None:
        for collaborator in (self.token_manager.oauth_client, self.whoop, self.spotify, self.weather):
            close = getattr(collaborator, "aclose", None)
            if close is not None:
                await close()

    def reset(self) -> None:
        """Clear every piece of in-memory state."""
        self.store.reset()
        self.token_manager.reset()

    # =========================================================================
    # Wearables
    # =========================================================================

    def providers(self) -> List[str]:
        return list_providers()

    def latest(self) -> Dict[str, Any]:
        aggregated = self.store.aggregate()
        return {
            "data": {provider: sample.to_dict() for provider, sample in self.store.latest().items()},
            "aggregated": aggregated.to_dict() if aggregated else None,
        }

    async def current_weather(self) -> Optional[Dict[str, Any]]:
        if self.weather is None:
            return None
        return (await self.weather.fetch_current()).to_dict()

    async def sync_wearable(
        self,
        provider: str,
        payload: Any,
        schedule_load: Optional[float] = None,
        user_input: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Normalize a pushed payload, record it and classify the mood.

        The mood reflects the sample just synced; ``aggregatedMetrics``
        is the cross-provider view.
        """
        if not provider or payload is None:
            raise InvalidRequestError("provider and payload are required")

        sample = normalize(provider, payload)
        self.store.record(provider, sample)

        weather = await self.current_weather()
        self.store.set_context(SyncContext(
            weather=weather,
            schedule_load=schedule_load,
            user_input=user_input,
        ))

        aggregated = self.store.aggregate()
        mood = self.store.set_mood_snapshot(infer_mood(AggregatedMetrics.from_sample(sample)))

        return {
            "provider": provider,
            "normalizedMetrics": sample.metrics.to_dict(),
            "aggregatedMetrics": aggregated.to_dict() if aggregated else None,
            "mood": mood.to_dict(),
            "weather": weather,
        }

    async def fetch_provider_data(self, user_id: str = DEFAULT_USER_ID) -> Dict[str, Any]:
        """
        Pull the latest WHOOP data for ``user_id`` and run it through the pipeline.

        Raises:
            ReauthRequiredError: The user must (re-)authorize WHOOP access.
        """
        if not self.token_manager.is_authenticated(user_id):
            raise ReauthRequiredError(
                "Whoop authentication required. Please authenticate at /auth/whoop/login"
            )

        payload = await self.whoop.fetch_latest_raw(user_id)
        sample = normalize("whoop", payload)
        self.store.record("whoop", sample)

        aggregated = self.store.aggregate()
        mood = self.store.set_mood_snapshot(infer_mood(AggregatedMetrics.from_sample(sample)))

        return {
            "provider": "whoop",
            "source": "api",
            "normalizedMetrics": sample.metrics.to_dict(),
            "aggregatedMetrics": aggregated.to_dict() if aggregated else None,
            "mood": mood.to_dict(),
            "rawData": payload,
        }

    # =========================================================================
    # Mood
    # =========================================================================

    def run_mood(self) -> Dict[str, Any]:
        """Classify the current aggregate and store the snapshot."""
        aggregated = self.store.aggregate()
        mood = self.store.set_mood_snapshot(infer_mood(aggregated))
        return {"mood": mood.to_dict(), "aggregated": aggregated.to_dict()}

    def current_mood(self) -> MoodSnapshot:
        mood = self.store.get_mood_snapshot()
        if mood is None:
            raise MoodNotReadyError("No mood snapshot yet.")
        return mood

    def _enrichment_context(
        self,
        weather: Optional[Dict[str, Any]],
        schedule_load: Optional[float],
        user_input: Optional[str],
    ) -> EnrichmentContext:
        """Request values win; otherwise fall back to what the last sync captured."""
        stored = self.store.get_context()
        load = schedule_load if schedule_load is not None else stored.schedule_load
        return EnrichmentContext(
            calendar_events=describe_schedule_load(load),
            weather=weather or stored.weather,
            user_preference=(user_input if user_input is not None else stored.user_input) or "",
        )

    async def enrich_mood(
        self,
        mood: MoodSnapshot,
        weather: Optional[Dict[str, Any]] = None,
        schedule_load: Optional[float] = None,
        user_input: Optional[str] = None,
    ) -> MoodSnapshot:
        """Overlay an LLM search hint; any failure keeps the heuristic mood."""
        aggregated = self.store.aggregate()
        if self.enricher is None or aggregated is None:
            return mood

        try:
            hint = await self.enricher.enrich(
                aggregated, self._enrichment_context(weather, schedule_load, user_input)
            )
        except EnrichmentError as e:
            logger.warning(f"Playlist enrichment failed, using heuristic mood: {e}")
            return mood

        return mood.with_enrichment(hint.search_query, hint.genres, self.enricher.source)

    # =========================================================================
    # Playlists
    # =========================================================================

    async def resolve_playlist(
        self,
        access_token: Optional[str] = None,
        use_enrichment: bool = True,
        weather: Optional[Dict[str, Any]] = None,
        schedule_load: Optional[float] = None,
        user_input: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Resolve the stored mood into tracks; always returns some list."""
        mood = self.store.get_mood_snapshot()
        if mood is None:
            raise MoodNotReadyError("Run mood detection before requesting a playlist.", status=400)

        if use_enrichment:
            mood = await self.enrich_mood(mood, weather, schedule_load, user_input)

        result = await self.resolver.resolve_or_fallback(mood, access_token, use_enrichment)
        return {
            "mood": mood.to_dict(),
            "tracks": [t.to_dict() for t in result.tracks],
            "source": result.source,
            "query": result.query,
        }

    def _biometrics(self, override: Optional[Dict[str, Any]]) -> AggregatedMetrics:
        if override:
            return AggregatedMetrics.from_dict(override)
        aggregated = self.store.aggregate()
        if aggregated is None:
            raise NoMetricsError(
                "No biometric data available. Please sync wearable data first or provide biometricOverride."
            )
        return aggregated

    def _require_enricher(self) -> PlaylistEnricher:
        if self.enricher is None:
            raise EnrichmentError(
                "No LLM provider is configured",
                code="LLM_NOT_CONFIGURED",
                status=503,
            )
        return self.enricher

    @staticmethod
    def _biometric_summary(data: AggregatedMetrics) -> Dict[str, Any]:
        return {
            "providers": list(data.providers),
            "metrics": data.metrics.to_dict(),
            "lastUpdated": data.last_updated,
            "sampleCount": data.sample_count,
        }

    async def analyze_only(
        self,
        calendar_events: Optional[List[Dict[str, Any]]] = None,
        biometric_override: Optional[Dict[str, Any]] = None,
        weather: Optional[Dict[str, Any]] = None,
        user_preference: str = "",
    ) -> Dict[str, Any]:
        """LLM analysis only; enrichment failures propagate."""
        enricher = self._require_enricher()
        data = self._biometrics(biometric_override)
        hint = await enricher.enrich(data, EnrichmentContext(
            calendar_events=calendar_events or [],
            weather=weather,
            user_preference=user_preference,
        ))
        return {
            "aiAnalysis": hint.to_dict(),
            "weatherData": weather or {},
            "biometricData": self._biometric_summary(data),
        }

    async def ai_playlist(
        self,
        access_token: Optional[str] = None,
        calendar_events: Optional[List[Dict[str, Any]]] = None,
        biometric_override: Optional[Dict[str, Any]] = None,
        weather: Optional[Dict[str, Any]] = None,
        user_preference: str = "",
    ) -> Dict[str, Any]:
        """LLM analysis followed by track resolution for the suggested mood."""
        analysis = await self.analyze_only(calendar_events, biometric_override, weather, user_preference)
        hint = analysis["aiAnalysis"]
        source_tag = self.enricher.source
        mood = MoodSnapshot.from_label(hint["mood"], source=source_tag).with_enrichment(
            hint["searchQuery"], hint["genres"], source_tag
        )

        if access_token:
            result = await self.resolver.resolve_or_fallback(mood, access_token, use_enrichment=True)
            tracks, source = result.tracks, result.source
        else:
            tracks, source = get_fallback_tracks(mood.label), FALLBACK_NO_TOKEN_SOURCE

        analysis.update({
            "tracks": [t.to_dict() for t in tracks],
            "source": source,
        })
        return analysis

    async def save_playlist(
        self,
        access_token: Optional[str],
        track_uris: Optional[List[str]],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Persist tracks as a new Spotify playlist."""
        if not access_token:
            raise InvalidRequestError("accessToken is required to save a playlist.")
        if not isinstance(track_uris, list) or not track_uris:
            raise InvalidRequestError("trackUris must be a non-empty array.")
        if self.spotify is None:
            raise InvalidRequestError("Playlist saving is not available.", status=503)

        try:
            playlist = await self.spotify.create_playlist(
                access_token,
                name=name or "Mood playlist",
                description=description or "Generated from your WHOOP/Oura mood",
            )
            snapshot_id = await self.spotify.add_tracks(access_token, playlist["id"], track_uris)
        except (httpx.HTTPError, KeyError) as e:
            logger.error(f"Failed to save playlist: {e}")
            raise PulseMixError(
                "Failed to save playlist to Spotify", code="PLAYLIST_SAVE_FAILED", status=502
            ) from e

        return {
            "playlistId": playlist["id"],
            "playlistUrl": (playlist.get("external_urls") or {}).get("spotify"),
            "snapshotId": snapshot_id or playlist.get("snapshot_id"),
        }
