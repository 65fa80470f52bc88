"""Tests for the PulseMix service orchestration."""

import pytest

from conftest import FakeLLMClient

from pulsemix.core.errors import (
    EnrichmentError,
    InvalidRequestError,
    MoodNotReadyError,
    NoMetricsError,
    ReauthRequiredError,
    UnsupportedProviderError,
)
from pulsemix.llm import PlaylistEnricher
from pulsemix.providers import TokenRecord

WHOOP_PAYLOAD = {
    "recovery": {"score": 85, "hrv": 90, "resting_heart_rate": 50},
    "sleep": {"score": 90},
    "strain": 6,
}
OURA_PAYLOAD = {
    "readiness": {"score": 40, "hrv_balance": 30},
    "sleep": {"score": 50},
}


class FakeSpotify:
    def __init__(self):
        self.created = []
        self.added = []

    async def create_playlist(self, access_token, name, description="", public=False):
        self.created.append((name, description))
        return {"id": "pl1", "external_urls": {"spotify": "https://open.spotify.com/playlist/pl1"}}

    async def add_tracks(self, access_token, playlist_id, track_uris):
        self.added.append((playlist_id, list(track_uris)))
        return "snap1"


class TestSync:
    async def test_sync_infers_mood_from_new_sample(self, make_service):
        service = make_service()
        await service.sync_wearable("oura", OURA_PAYLOAD)

        result = await service.sync_wearable("whoop", WHOOP_PAYLOAD, schedule_load=0.8, user_input="focus")

        assert result["provider"] == "whoop"
        assert result["normalizedMetrics"]["readiness"] == 85
        # Mood follows the synced sample; the aggregate spans both providers
        assert result["mood"]["label"] == "flow"
        assert result["aggregatedMetrics"]["sampleCount"] == 2
        assert result["aggregatedMetrics"]["metrics"]["readiness"] == 62.5
        assert result["weather"]["source"] == "fallback"
        assert service.store.get_context().schedule_load == 0.8
        assert service.current_mood().label == "flow"

    @pytest.mark.parametrize("provider,payload", [(None, {"a": 1}), ("oura", None), ("", {"a": 1})])
    async def test_sync_requires_provider_and_payload(self, make_service, provider, payload):
        with pytest.raises(InvalidRequestError):
            await make_service().sync_wearable(provider, payload)

    async def test_sync_accepts_empty_payload(self, make_service):
        service = make_service()

        result = await service.sync_wearable("whoop", {})

        assert result["normalizedMetrics"] == {
            "hrv": None,
            "sleepQuality": None,
            "strain": None,
            "readiness": None,
            "restingHeartRate": None,
        }
        assert result["mood"]["label"] == "reset"
        assert "whoop" in service.latest()["data"]

    async def test_sync_unknown_provider(self, make_service):
        with pytest.raises(UnsupportedProviderError):
            await make_service().sync_wearable("garmin", {"x": 1})

    def test_latest(self, make_service):
        assert make_service().latest() == {"data": {}, "aggregated": None}


class TestMood:
    def test_run_without_data(self, make_service):
        with pytest.raises(NoMetricsError):
            make_service().run_mood()

    async def test_run_uses_aggregate(self, make_service):
        service = make_service()
        await service.sync_wearable("whoop", WHOOP_PAYLOAD)
        await service.sync_wearable("oura", OURA_PAYLOAD)

        result = service.run_mood()

        # readiness 62.5, sleep 70
        assert result["mood"]["label"] == "reset"
        assert result["aggregated"]["providers"] == ["whoop", "oura"]

    def test_current_mood_missing(self, make_service):
        with pytest.raises(MoodNotReadyError) as exc:
            make_service().current_mood()
        assert exc.value.status == 404


class TestFetchProviderData:
    async def test_requires_authentication(self, make_service):
        with pytest.raises(ReauthRequiredError):
            await make_service().fetch_provider_data("nobody")

    async def test_fetch_runs_pipeline(self, make_service, token_manager):
        service = make_service()
        token_manager.store_tokens("u1", TokenRecord("a", "r", 5000.0))

        async def fetch_latest_raw(user_id):
            return {"recovery": {"score": 30}, "sleep": {"score": 40}}

        service.whoop.fetch_latest_raw = fetch_latest_raw
        result = await service.fetch_provider_data("u1")

        assert result["source"] == "api"
        assert result["mood"]["label"] == "recovery"
        assert result["rawData"]["recovery"]["score"] == 30
        assert "whoop" in service.latest()["data"]


class TestResolvePlaylist:
    async def test_requires_mood(self, make_service):
        with pytest.raises(MoodNotReadyError) as exc:
            await make_service().resolve_playlist("token")
        assert exc.value.status == 400

    async def test_heuristic_search(self, make_service, searcher):
        service = make_service()
        await service.sync_wearable("whoop", WHOOP_PAYLOAD)

        result = await service.resolve_playlist("token")

        assert result["source"] == "spotify-search"
        assert result["query"] == '"deep focus"'
        assert len(result["tracks"]) == 2
        assert result["mood"]["source"] == "heuristic"

    async def test_enriched_search(self, make_service, searcher, llm_client):
        service = make_service(enricher=PlaylistEnricher(llm_client))
        await service.sync_wearable("whoop", WHOOP_PAYLOAD, schedule_load=0.9)

        result = await service.resolve_playlist("token")

        assert searcher.calls == ["focus beats"]
        assert result["source"] == "ai-search"
        assert result["mood"]["source"] == "openai"
        assert result["mood"]["playlistHints"]["seedGenres"] == ["ambient", "lofi"]
        assert "Daily workload: 90% busy" in llm_client.prompts[0]

    async def test_enrichment_failure_keeps_heuristic(self, make_service, searcher):
        enricher = PlaylistEnricher(FakeLLMClient(error=ValueError("garbage")))
        service = make_service(enricher=enricher)
        await service.sync_wearable("whoop", WHOOP_PAYLOAD)

        result = await service.resolve_playlist("token")

        assert result["mood"]["source"] == "heuristic"
        assert result["source"] == "spotify-search"

    async def test_without_token_uses_fallback(self, make_service, searcher):
        service = make_service()
        await service.sync_wearable("oura", OURA_PAYLOAD)

        result = await service.resolve_playlist(None, use_enrichment=False)

        assert searcher.calls == []
        assert result["source"] == "fallback"
        assert [t["id"] for t in result["tracks"]] == ["recovery-1", "recovery-2"]


class TestAIPlaylist:
    async def test_not_configured(self, make_service):
        with pytest.raises(EnrichmentError) as exc:
            await make_service().ai_playlist("token", biometric_override={"metrics": {"readiness": 80}})
        assert exc.value.status == 503

    async def test_requires_biometrics(self, make_service, llm_client):
        service = make_service(enricher=PlaylistEnricher(llm_client))
        with pytest.raises(NoMetricsError):
            await service.ai_playlist("token")

    async def test_with_token(self, make_service, llm_client, searcher):
        service = make_service(enricher=PlaylistEnricher(llm_client))

        result = await service.ai_playlist("token", biometric_override={"metrics": {"readiness": 80}})

        assert result["aiAnalysis"]["mood"] == "flow"
        assert result["source"] == "ai-search"
        assert searcher.calls == ["focus beats"]
        assert result["biometricData"]["metrics"]["readiness"] == 80

    async def test_without_token(self, make_service, llm_client, searcher):
        service = make_service(enricher=PlaylistEnricher(llm_client))
        await service.sync_wearable("oura", OURA_PAYLOAD)

        result = await service.ai_playlist(None)

        assert result["source"] == "fallback-no-token"
        assert [t["id"] for t in result["tracks"]] == ["flow-1", "flow-2"]
        assert searcher.calls == []

    async def test_enrichment_errors_propagate(self, make_service):
        service = make_service(enricher=PlaylistEnricher(FakeLLMClient(error=ValueError("garbage"))))
        with pytest.raises(EnrichmentError):
            await service.ai_playlist("token", biometric_override={"metrics": {"readiness": 80}})

    async def test_analyze_only(self, make_service, llm_client):
        service = make_service(enricher=PlaylistEnricher(llm_client))

        result = await service.analyze_only(
            calendar_events=[{"title": "Standup"}],
            biometric_override={"metrics": {"readiness": 80}},
            weather={"condition": "Rain"},
        )

        assert result["aiAnalysis"]["searchQuery"] == "focus beats"
        assert result["weatherData"] == {"condition": "Rain"}
        assert "tracks" not in result
        assert "Standup" in llm_client.prompts[0]


class TestSavePlaylist:
    async def test_save(self, make_service):
        spotify = FakeSpotify()
        service = make_service(spotify=spotify)

        result = await service.save_playlist("token", ["spotify:track:1"], name=None, description="mine")

        assert result == {
            "playlistId": "pl1",
            "playlistUrl": "https://open.spotify.com/playlist/pl1",
            "snapshotId": "snap1",
        }
        assert spotify.created == [("Mood playlist", "mine")]

    @pytest.mark.parametrize("token,uris", [(None, ["u"]), ("token", []), ("token", None)])
    async def test_validation(self, make_service, token, uris):
        with pytest.raises(InvalidRequestError):
            await make_service(spotify=FakeSpotify()).save_playlist(token, uris)


async def test_reset_clears_state(make_service, token_manager):
    service = make_service()
    await service.sync_wearable("whoop", WHOOP_PAYLOAD)
    token_manager.store_tokens("u1", TokenRecord("a", "r", 5000.0))

    service.reset()

    assert service.store.aggregate() is None
    assert not token_manager.is_authenticated("u1")
