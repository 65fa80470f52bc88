"""
Music catalog integration.

Modules:
    - spotify: Spotify Web API client (search, playlists, user auth)
    - resolver: Mood -> tracks fallback chain
"""

from .spotify import SpotifyClient, TrackResult, USER_SCOPES
from .resolver import (
    ENRICHED_SEARCH_SOURCE,
    FALLBACK_NO_TOKEN_SOURCE,
    FALLBACK_SOURCE,
    FALLBACK_TRACKS,
    MOOD_PRESETS,
    SEARCH_SOURCE,
    ResolutionResult,
    SearchCandidate,
    TrackResolver,
    build_candidate_queries,
    get_fallback_tracks,
)

__all__ = [
    "SpotifyClient",
    "TrackResult",
    "USER_SCOPES",
    "ENRICHED_SEARCH_SOURCE",
    "FALLBACK_NO_TOKEN_SOURCE",
    "FALLBACK_SOURCE",
    "FALLBACK_TRACKS",
    "MOOD_PRESETS",
    "SEARCH_SOURCE",
    "ResolutionResult",
    "SearchCandidate",
    "TrackResolver",
    "build_candidate_queries",
    "get_fallback_tracks",
]
