"""
Core data-to-decision pipeline.

Modules:
    - normalizer: Provider payload -> CanonicalSample
    - store: Latest sample per provider + cross-provider aggregate
    - mood: Feature vector + ordered mood rule table
    - errors: Error taxonomy shared by every layer
    - deadline: Timeout guard for external calls
"""

from .errors import (
    AuthorizationError,
    CallTimeoutError,
    ConfigurationError,
    EnrichmentError,
    InvalidRequestError,
    MoodNotReadyError,
    NoMetricsError,
    NoProviderDataError,
    NoResultsError,
    ProviderRequestError,
    PulseMixError,
    ReauthRequiredError,
    SearchError,
    TokenExpiredError,
    UnsupportedProviderError,
)
from .normalizer import (
    METRIC_KEYS,
    CanonicalSample,
    MetricSet,
    list_providers,
    normalize,
    to_number,
)
from .store import AggregatedMetrics, AggregationStore, SyncContext
from .mood import (
    MOOD_LABELS,
    MOOD_PROFILES,
    MOOD_RULES,
    FeatureVector,
    MoodProfile,
    MoodSnapshot,
    PlaylistHints,
    build_feature_vector,
    classify_mood,
    get_mood_profile,
    infer_mood,
)
from .deadline import DEFAULT_CALL_TIMEOUT, with_deadline

__all__ = [
    # Errors
    "PulseMixError",
    "AuthorizationError",
    "CallTimeoutError",
    "ConfigurationError",
    "EnrichmentError",
    "InvalidRequestError",
    "MoodNotReadyError",
    "NoMetricsError",
    "NoProviderDataError",
    "NoResultsError",
    "ProviderRequestError",
    "ReauthRequiredError",
    "SearchError",
    "TokenExpiredError",
    "UnsupportedProviderError",
    # Normalizer
    "METRIC_KEYS",
    "CanonicalSample",
    "MetricSet",
    "list_providers",
    "normalize",
    "to_number",
    # Store
    "AggregatedMetrics",
    "AggregationStore",
    "SyncContext",
    # Mood
    "MOOD_LABELS",
    "MOOD_PROFILES",
    "MOOD_RULES",
    "FeatureVector",
    "MoodProfile",
    "MoodSnapshot",
    "PlaylistHints",
    "build_feature_vector",
    "classify_mood",
    "get_mood_profile",
    "infer_mood",
    # Deadlines
    "DEFAULT_CALL_TIMEOUT",
    "with_deadline",
]
