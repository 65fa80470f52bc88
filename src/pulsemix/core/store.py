"""
In-Memory Aggregation Store

Holds the latest CanonicalSample per provider, the most recent mood
snapshot and the context captured at sync time. Nothing here survives
a restart; ``reset()`` clears it for tests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .normalizer import METRIC_KEYS, CanonicalSample, MetricSet, utc_now_iso

if TYPE_CHECKING:
    from .mood import MoodSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregatedMetrics:
    """Cross-provider average of the current samples."""
    sample_count: int
    providers: List[str]
    last_updated: str
    metrics: MetricSet

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sampleCount": self.sample_count,
            "providers": list(self.providers),
            "lastUpdated": self.last_updated,
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_sample(cls, sample: CanonicalSample, last_updated: Optional[str] = None) -> "AggregatedMetrics":
        """Wrap a single sample as a one-sample aggregate."""
        return cls(
            sample_count=1,
            providers=[sample.provider],
            last_updated=last_updated or utc_now_iso(),
            metrics=sample.metrics,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregatedMetrics":
        """Build from a caller-supplied override (camelCase keys)."""
        providers = data.get("providers") or []
        return cls(
            sample_count=int(data.get("sampleCount") or 1),
            providers=[str(p) for p in providers] if isinstance(providers, list) else [],
            last_updated=str(data.get("lastUpdated") or utc_now_iso()),
            metrics=MetricSet.from_mapping(data.get("metrics") or {}),
        )


def average_metric(samples: List[CanonicalSample], key: str) -> Optional[float]:
    """Mean of the non-null values for ``key``, rounded to 2 places."""
    values = [s.metrics.get(key) for s in samples]
    values = [v for v in values if v is not None]
    if not values:
        return None
    return round(sum(values) / len(values), 2)


@dataclass
class SyncContext:
    """Context captured alongside the latest sync, reused for enrichment."""
    weather: Optional[Dict[str, Any]] = None
    schedule_load: Optional[float] = None
    user_input: Optional[str] = None


class AggregationStore:
    """
    Process-lifetime store for wearable samples and the derived mood.

    Writers for different provider keys never interfere: each ``record``
    replaces one dict entry under a lock.
    """

    def __init__(self, clock: Callable[[], str] = utc_now_iso):
        self._clock = clock
        self._lock = threading.Lock()
        self._samples: Dict[str, CanonicalSample] = {}
        self._mood: Optional["MoodSnapshot"] = None
        self._context = SyncContext()

    # -------------------------------------------------------------------------
    # Samples
    # -------------------------------------------------------------------------

    def record(self, provider_id: str, sample: CanonicalSample) -> None:
        """Store ``sample`` as the latest reading for ``provider_id``."""
        with self._lock:
            self._samples[provider_id] = sample
        logger.info(f"Recorded {provider_id} sample at {sample.timestamp}")

    def latest(self) -> Dict[str, CanonicalSample]:
        """Snapshot of provider -> latest sample."""
        with self._lock:
            return dict(self._samples)

    def aggregate(self) -> Optional[AggregatedMetrics]:
        """
        Average every metric across the current samples.

        Returns:
            AggregatedMetrics, or None if nothing has been recorded.
        """
        samples = list(self.latest().values())
        if not samples:
            return None

        metrics = MetricSet.from_mapping({
            key: average_metric(samples, key) for key in METRIC_KEYS
        })
        return AggregatedMetrics(
            sample_count=len(samples),
            providers=[s.provider for s in samples],
            last_updated=self._clock(),
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # Mood snapshot + context
    # -------------------------------------------------------------------------

    def set_mood_snapshot(self, snapshot: Optional["MoodSnapshot"]) -> Optional["MoodSnapshot"]:
        """Replace the stored snapshot, stamping ``updated_at``."""
        if snapshot is None:
            return self._mood
        stamped = snapshot.stamped(self._clock())
        with self._lock:
            self._mood = stamped
        return stamped

    def get_mood_snapshot(self) -> Optional["MoodSnapshot"]:
        with self._lock:
            return self._mood

    def set_context(self, context: SyncContext) -> None:
        with self._lock:
            self._context = context

    def get_context(self) -> SyncContext:
        with self._lock:
            return self._context

    def reset(self) -> None:
        """Drop all samples, the mood snapshot and the sync context."""
        with self._lock:
            self._samples.clear()
            self._mood = None
            self._context = SyncContext()
        logger.debug("Aggregation store reset")
