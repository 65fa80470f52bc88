"""
Mood Classifier

Turns aggregated wearable metrics into a five-score feature vector and
picks a mood label with an ordered rule table.

Labels (first matching rule wins):
    - flow: readiness and sleep both high
    - amped: high strain with decent readiness
    - recovery: readiness or sleep low
    - reset: catch-all

The table is static lookup data; classification is pure given the
feature vector.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import NoMetricsError
from .normalizer import MetricSet
from .store import AggregatedMetrics

logger = logging.getLogger(__name__)


MOOD_LABELS = ("flow", "amped", "recovery", "reset")

HEURISTIC_SOURCE = "heuristic"


def clamp(value: float, min_val: float = 0.0, max_val: float = 1.0) -> float:
    return max(min_val, min(max_val, value))


def scale(value: Optional[float], lo: float, hi: float) -> Optional[float]:
    """Linear scale into [0, 1], rounded to 2 places. None stays None."""
    if value is None:
        return None
    return clamp(round((value - lo) / (hi - lo), 2))


@dataclass(frozen=True)
class FeatureVector:
    """Normalized [0, 1] scores derived from aggregated metrics."""
    readiness_score: float
    recovery_score: float
    sleep_score: float
    strain_score: float
    resting_hr_score: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "readinessScore": self.readiness_score,
            "recoveryScore": self.recovery_score,
            "sleepScore": self.sleep_score,
            "strainScore": self.strain_score,
            "restingHrScore": self.resting_hr_score,
        }


def _or_default(value: Optional[float], default: float) -> float:
    return default if value is None else value


def build_feature_vector(metrics: MetricSet) -> FeatureVector:
    """Scale each metric into [0, 1], substituting defaults for gaps."""
    rhr = metrics.resting_heart_rate
    return FeatureVector(
        readiness_score=_or_default(scale(metrics.readiness, 0, 100), 0.5),
        recovery_score=_or_default(scale(metrics.hrv, 20, 150), 0.5),
        sleep_score=_or_default(scale(metrics.sleep_quality, 0, 100), 0.5),
        strain_score=_or_default(scale(metrics.strain, 0, 21), 0.3),
        # Lower resting HR is better, so invert around 80 bpm
        resting_hr_score=_or_default(scale(80 - rhr if rhr else None, -10, 50), 0.5),
    )


def weighted_score(features: FeatureVector) -> float:
    return round(
        features.readiness_score * 0.25
        + features.sleep_score * 0.20
        + features.recovery_score * 0.20
        + features.resting_hr_score * 0.15
        - features.strain_score * 0.15,
        2,
    )


# =============================================================================
# Static mood table
# =============================================================================


@dataclass(frozen=True)
class PlaylistHints:
    """Audio targets for a mood, optionally overlaid by enrichment."""
    target_energy: float
    target_valence: float
    target_tempo: int
    search_query: Optional[str] = None
    seed_genres: Optional[Tuple[str, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "targetEnergy": self.target_energy,
            "targetValence": self.target_valence,
            "targetTempo": self.target_tempo,
        }
        if self.search_query is not None:
            data["searchQuery"] = self.search_query
        if self.seed_genres is not None:
            data["seedGenres"] = list(self.seed_genres)
        return data


@dataclass(frozen=True)
class MoodProfile:
    label: str
    summary: str
    playlist_hints: PlaylistHints
    recommendations: Tuple[str, ...]


MOOD_PROFILES: Dict[str, MoodProfile] = {
    "flow": MoodProfile(
        label="flow",
        summary="Balanced recovery + sleep, ready for focused deep work.",
        playlist_hints=PlaylistHints(target_energy=0.65, target_valence=0.55, target_tempo=110),
        recommendations=(
            "Lean into deep focus work blocks",
            "Keep energy steady with mid-tempo playlists",
        ),
    ),
    "amped": MoodProfile(
        label="amped",
        summary="High physiological activation - great for workouts or shipping sprints.",
        playlist_hints=PlaylistHints(target_energy=0.85, target_valence=0.6, target_tempo=130),
        recommendations=(
            "Channel intensity toward creative output",
            "Favor upbeat tracks to ride the momentum",
        ),
    ),
    "recovery": MoodProfile(
        label="recovery",
        summary="Body is signaling fatigue - keep things calm and restorative.",
        playlist_hints=PlaylistHints(target_energy=0.35, target_valence=0.5, target_tempo=80),
        recommendations=(
            "Prioritize low-pressure tasks",
            "Use downtempo playlists to reduce stress",
        ),
    ),
    "reset": MoodProfile(
        label="reset",
        summary="Mixed signals - treat today as a reset and stay flexible.",
        playlist_hints=PlaylistHints(target_energy=0.5, target_valence=0.55, target_tempo=100),
        recommendations=(
            "Alternate between focus + recovery blocks",
            "Use versatile playlists that adapt with you",
        ),
    ),
}


MoodRule = Tuple[Callable[[FeatureVector], bool], MoodProfile]

# Evaluated in order; the last predicate always matches.
MOOD_RULES: List[MoodRule] = [
    (lambda f: f.readiness_score > 0.70 and f.sleep_score > 0.70, MOOD_PROFILES["flow"]),
    (lambda f: f.strain_score > 0.60 and f.readiness_score > 0.55, MOOD_PROFILES["amped"]),
    (lambda f: f.readiness_score < 0.45 or f.sleep_score < 0.45, MOOD_PROFILES["recovery"]),
    (lambda f: True, MOOD_PROFILES["reset"]),
]


def get_mood_profile(label: Optional[str]) -> MoodProfile:
    """Profile for ``label``, falling back to reset."""
    return MOOD_PROFILES.get(label or "", MOOD_PROFILES["reset"])


# =============================================================================
# Snapshot + classification
# =============================================================================


@dataclass(frozen=True)
class MoodSnapshot:
    """A classified mood, replaced wholesale on every run."""
    label: str
    score: float
    summary: str
    recommendations: Tuple[str, ...]
    playlist_hints: PlaylistHints
    feature_vector: Optional[FeatureVector] = None
    updated_at: Optional[str] = None
    source: str = HEURISTIC_SOURCE

    def stamped(self, updated_at: str) -> "MoodSnapshot":
        return replace(self, updated_at=updated_at)

    def with_enrichment(
        self,
        search_query: Optional[str],
        seed_genres: Optional[List[str]],
        source: str,
    ) -> "MoodSnapshot":
        """Overlay a model-generated query and genres, marking provenance."""
        hints = replace(
            self.playlist_hints,
            search_query=search_query,
            seed_genres=tuple(seed_genres) if seed_genres is not None else None,
        )
        return replace(self, playlist_hints=hints, source=source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "score": self.score,
            "summary": self.summary,
            "recommendations": list(self.recommendations),
            "playlistHints": self.playlist_hints.to_dict(),
            "featureVector": self.feature_vector.to_dict() if self.feature_vector else None,
            "updatedAt": self.updated_at,
            "source": self.source,
        }

    @classmethod
    def from_label(cls, label: str, source: str = HEURISTIC_SOURCE) -> "MoodSnapshot":
        """Snapshot carrying only a label's static data (no metrics)."""
        profile = get_mood_profile(label)
        return cls(
            label=profile.label,
            score=0.0,
            summary=profile.summary,
            recommendations=profile.recommendations,
            playlist_hints=profile.playlist_hints,
            source=source,
        )


def classify_mood(features: FeatureVector) -> Tuple[MoodProfile, float]:
    """Pick the first matching rule and compute the weighted score."""
    score = weighted_score(features)
    for predicate, profile in MOOD_RULES:
        if predicate(features):
            return profile, score
    return MOOD_PROFILES["reset"], score


def infer_mood(aggregated: Optional[AggregatedMetrics]) -> MoodSnapshot:
    """
    Classify aggregated metrics into a MoodSnapshot.

    Raises:
        NoMetricsError: If no aggregate is available.
    """
    if aggregated is None:
        raise NoMetricsError()

    features = build_feature_vector(aggregated.metrics)
    profile, score = classify_mood(features)
    logger.info(f"Inferred mood '{profile.label}' (score={score}) from {aggregated.sample_count} sample(s)")

    return MoodSnapshot(
        label=profile.label,
        score=score,
        summary=profile.summary,
        recommendations=profile.recommendations,
        playlist_hints=profile.playlist_hints,
        feature_vector=features,
    )
