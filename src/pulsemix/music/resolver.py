"""
Track Resolution Pipeline

Resolves a mood into a ranked track list by walking an ordered chain of
candidate search queries:

    1. Enrichment search string (if enabled and present)
    2. Enrichment genres + mood label (if enabled and present)
    3. The mood's three preset queries
    4. The mood label itself

Queries run sequentially and stop at the first non-empty result. An
unauthorized search aborts the chain (every later call would use the
same token); other failures skip to the next candidate.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ..core.deadline import DEFAULT_CALL_TIMEOUT, with_deadline
from ..core.errors import (
    CallTimeoutError,
    NoResultsError,
    PulseMixError,
    SearchError,
    TokenExpiredError,
)
from ..core.mood import MoodSnapshot
from .spotify import TrackResult

logger = logging.getLogger(__name__)


SEARCH_SOURCE = "spotify-search"
ENRICHED_SEARCH_SOURCE = "ai-search"
FALLBACK_SOURCE = "fallback"
FALLBACK_NO_TOKEN_SOURCE = "fallback-no-token"

MAX_TRACKS = 20
SEARCH_LIMIT = 30


MOOD_PRESETS: Dict[str, List[str]] = {
    "flow": ['"deep focus"', "chill instrumental", "ambient focus"],
    "amped": ["high energy workout", "edm bangers", "alt rock hype"],
    "recovery": ["calm acoustic sleep", "lofi meditation", "piano relaxation"],
    "reset": ["feel good indie", "uplifting pop", "jazzy morning"],
}


def _track(track_id: str, name: str, artist: str) -> TrackResult:
    return TrackResult(id=track_id, name=name, artist_names=[artist])


FALLBACK_TRACKS: Dict[str, List[TrackResult]] = {
    "flow": [
        _track("flow-1", "Deep Focus Echoes", "Analog Atlas"),
        _track("flow-2", "Glider State", "Marin"),
    ],
    "amped": [
        _track("amped-1", "Voltage Push", "Strobe City"),
        _track("amped-2", "Sprintline", "Pulse Engine"),
    ],
    "recovery": [
        _track("recovery-1", "Soft Reset", "Quiet Season"),
        _track("recovery-2", "Blue Hour Drift", "Cumulus"),
    ],
    "reset": [
        _track("reset-1", "New Ground", "Vista Bloom"),
        _track("reset-2", "Field Notes", "Lucent"),
    ],
}


def get_presets(label: str) -> List[str]:
    return MOOD_PRESETS.get(label, MOOD_PRESETS["reset"])


def get_fallback_tracks(label: Optional[str]) -> List[TrackResult]:
    """Static tracks for ``label``; unknown labels get reset's list."""
    return list(FALLBACK_TRACKS.get(label or "", FALLBACK_TRACKS["reset"]))


class TrackSearcher(Protocol):
    async def search_tracks(self, access_token: str, query: str, limit: int = 30) -> List[Dict[str, Any]]: ...


@dataclass(frozen=True)
class SearchCandidate:
    query: str
    from_enrichment: bool = False


@dataclass
class ResolutionResult:
    tracks: List[TrackResult]
    source: str
    query: Optional[str] = None
    attempts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tracks": [t.to_dict() for t in self.tracks],
            "source": self.source,
            "query": self.query,
        }


def build_candidate_queries(mood: MoodSnapshot, use_enrichment: bool = True) -> List[SearchCandidate]:
    """Ordered fallback chain for ``mood``."""
    candidates: List[SearchCandidate] = []
    hints = mood.playlist_hints

    if use_enrichment:
        if hints.search_query and hints.search_query.strip():
            candidates.append(SearchCandidate(hints.search_query.strip(), from_enrichment=True))
        genres = [g.strip() for g in hints.seed_genres or () if g and g.strip()]
        if genres:
            candidates.append(SearchCandidate(" ".join(genres + [mood.label]), from_enrichment=True))

    candidates.extend(SearchCandidate(q) for q in get_presets(mood.label))
    candidates.append(SearchCandidate(mood.label))
    return candidates


class TrackResolver:
    """
    Resolves moods into tracks against a catalog search collaborator.

    The shuffle uses an injectable ``random.Random`` so tests can pin it.
    """

    def __init__(
        self,
        searcher: Optional[TrackSearcher],
        rng: Optional[random.Random] = None,
        timeout: float = DEFAULT_CALL_TIMEOUT,
        max_tracks: int = MAX_TRACKS,
        search_limit: int = SEARCH_LIMIT,
    ):
        self.searcher = searcher
        self.rng = rng or random.Random()
        self.timeout = timeout
        self.max_tracks = max_tracks
        self.search_limit = search_limit

    async def resolve(
        self,
        mood: MoodSnapshot,
        access_token: Optional[str] = None,
        use_enrichment: bool = True,
    ) -> ResolutionResult:
        """
        Walk the candidate chain and return the first non-empty result.

        Without a token no search is attempted and the static list is returned.

        Raises:
            TokenExpiredError: A search call rejected the token.
            NoResultsError: Every candidate came back empty or failed.
        """
        if not access_token or self.searcher is None:
            return ResolutionResult(get_fallback_tracks(mood.label), FALLBACK_SOURCE)

        attempts: List[str] = []
        for candidate in build_candidate_queries(mood, use_enrichment):
            attempts.append(candidate.query)
            try:
                items = await with_deadline(
                    self.searcher.search_tracks(access_token, candidate.query, self.search_limit),
                    self.timeout,
                    f"Spotify search '{candidate.query}'",
                )
            except TokenExpiredError:
                logger.warning(f"Spotify rejected token on query '{candidate.query}', aborting search")
                raise
            except (SearchError, CallTimeoutError) as e:
                logger.warning(f"Spotify search API error for '{candidate.query}': {e}")
                continue

            if not items:
                logger.debug(f"No results for '{candidate.query}'")
                continue

            shuffled = list(items)
            self.rng.shuffle(shuffled)
            tracks = [TrackResult.from_api_response(item) for item in shuffled[:self.max_tracks]]
            source = ENRICHED_SEARCH_SOURCE if candidate.from_enrichment else SEARCH_SOURCE
            logger.info(f"Resolved {len(tracks)} tracks for '{mood.label}' via '{candidate.query}'")
            return ResolutionResult(tracks, source, candidate.query, attempts)

        raise NoResultsError()

    async def resolve_or_fallback(
        self,
        mood: MoodSnapshot,
        access_token: Optional[str] = None,
        use_enrichment: bool = True,
    ) -> ResolutionResult:
        """``resolve``, substituting the static list when live search fails."""
        try:
            return await self.resolve(mood, access_token, use_enrichment)
        except PulseMixError as e:
            logger.warning(f"Spotify live playlist failed, using fallback tracks: {e}")
            return ResolutionResult(get_fallback_tracks(mood.label), FALLBACK_SOURCE)
