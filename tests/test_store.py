"""Tests for the in-memory aggregation store."""

import pytest

from pulsemix.core import AggregatedMetrics, MoodSnapshot, SyncContext, normalize
from pulsemix.core.normalizer import CanonicalSample, MetricSet


def sample(provider, **metrics):
    return CanonicalSample(provider=provider, timestamp="t", metrics=MetricSet(**metrics))


def test_empty_store_has_no_aggregate(store):
    assert store.aggregate() is None
    assert store.latest() == {}


def test_average_ignores_nulls(store):
    store.record("whoop", sample("whoop", readiness=70.0, hrv=90.0))
    store.record("oura", sample("oura", readiness=80.0))

    aggregated = store.aggregate()

    assert aggregated.sample_count == 2
    assert aggregated.providers == ["whoop", "oura"]
    assert aggregated.last_updated == "2024-05-01T08:00:00+00:00"
    assert aggregated.metrics.readiness == 75.0
    assert aggregated.metrics.hrv == 90.0
    assert aggregated.metrics.sleep_quality is None
    assert aggregated.metrics.strain is None


def test_average_rounds_to_two_places(store):
    store.record("a", sample("a", strain=70.0))
    store.record("b", sample("b", strain=71.0))
    store.record("c", sample("c", strain=71.0))

    assert store.aggregate().metrics.strain == 70.67


def test_record_replaces_provider_entry(store):
    store.record("oura", sample("oura", readiness=40.0))
    store.record("oura", sample("oura", readiness=90.0))

    aggregated = store.aggregate()
    assert aggregated.sample_count == 1
    assert aggregated.metrics.readiness == 90.0


def test_providers_come_from_the_samples(store):
    store.record("primary-band", sample("whoop", readiness=60.0))
    store.record("ring", sample("oura", readiness=70.0))

    aggregated = store.aggregate()

    assert aggregated.providers == ["whoop", "oura"]
    assert set(store.latest()) == {"primary-band", "ring"}


def test_latest_returns_a_copy(store):
    store.record("oura", sample("oura", readiness=40.0))
    snapshot = store.latest()
    snapshot.clear()

    assert "oura" in store.latest()


def test_mood_snapshot_is_stamped(store):
    stored = store.set_mood_snapshot(MoodSnapshot.from_label("flow"))

    assert stored.updated_at == "2024-05-01T08:00:00+00:00"
    assert store.get_mood_snapshot() == stored


def test_reset_clears_everything(store):
    store.record("whoop", normalize("whoop", {"recovery": {"score": 50}}))
    store.set_mood_snapshot(MoodSnapshot.from_label("reset"))
    store.set_context(SyncContext(schedule_load=0.5, user_input="chill"))

    store.reset()

    assert store.aggregate() is None
    assert store.get_mood_snapshot() is None
    assert store.get_context() == SyncContext()


class TestAggregatedMetrics:
    def test_to_dict_uses_wire_keys(self, store):
        store.record("oura", sample("oura", readiness=80.0, resting_heart_rate=55.0))

        data = store.aggregate().to_dict()

        assert data["sampleCount"] == 1
        assert data["providers"] == ["oura"]
        assert data["metrics"]["restingHeartRate"] == 55.0
        assert data["metrics"]["sleepQuality"] is None

    def test_from_dict_override(self):
        aggregated = AggregatedMetrics.from_dict({
            "providers": ["manual"],
            "metrics": {"readiness": 80, "sleepQuality": "72", "strain": None},
        })

        assert aggregated.sample_count == 1
        assert aggregated.providers == ["manual"]
        assert aggregated.metrics.readiness == 80.0
        assert aggregated.metrics.sleep_quality == 72.0
        assert aggregated.metrics.strain is None

    @pytest.mark.parametrize("metrics", [None, "bad", []])
    def test_from_dict_tolerates_bad_metrics(self, metrics):
        aggregated = AggregatedMetrics.from_dict({"metrics": metrics})
        assert aggregated.metrics == MetricSet()
