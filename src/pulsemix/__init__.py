"""
PulseMix - wearable-driven mood detection and playlist generation.

Wearable payloads (WHOOP, Oura) are normalized into one canonical metric
schema, averaged across providers and classified into a mood label.
The mood then drives a Spotify track search with a static fallback, so
a playlist request always returns something.

Usage:
    # Same-process integration
    from pulsemix import AggregationStore, normalize, infer_mood
    store = AggregationStore()
    store.record("oura", normalize("oura", payload))
    mood = infer_mood(store.aggregate())

    # HTTP server
    pulsemix-server --port 4000
"""

__version__ = "0.1.0"

from .config import Settings, SpotifyConfig, WeatherConfig, WhoopConfig
from .core import (
    AggregatedMetrics,
    AggregationStore,
    CanonicalSample,
    MetricSet,
    MoodSnapshot,
    PulseMixError,
    infer_mood,
    list_providers,
    normalize,
)
from .music import TrackResolver, TrackResult
from .providers import TokenLifecycleManager, TokenRecord
from .service import PulseMixService

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    "SpotifyConfig",
    "WeatherConfig",
    "WhoopConfig",
    # Core
    "AggregatedMetrics",
    "AggregationStore",
    "CanonicalSample",
    "MetricSet",
    "MoodSnapshot",
    "PulseMixError",
    "infer_mood",
    "list_providers",
    "normalize",
    # Playlists
    "TrackResolver",
    "TrackResult",
    # Providers
    "TokenLifecycleManager",
    "TokenRecord",
    # Service
    "PulseMixService",
]
