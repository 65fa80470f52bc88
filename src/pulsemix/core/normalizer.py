"""
Wearable Metric Normalizer

Maps provider-specific payloads onto one canonical metric schema so the
rest of the pipeline never sees vendor field names.

Providers:
    - whoop: recovery / sleep / strain payloads (API v2 reshaped or manual)
    - oura: readiness / sleep / activity payloads

Every field read goes through ``to_number`` so a payload of any shape
yields a sample; only an unknown provider id is an error.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import UnsupportedProviderError

logger = logging.getLogger(__name__)


# Canonical metric keys as they appear on the wire
METRIC_KEYS = ("hrv", "sleepQuality", "strain", "readiness", "restingHeartRate")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class MetricSet:
    """The five canonical physiological metrics, each possibly missing."""
    hrv: Optional[float] = None
    sleep_quality: Optional[float] = None
    strain: Optional[float] = None
    readiness: Optional[float] = None
    resting_heart_rate: Optional[float] = None

    def get(self, key: str) -> Optional[float]:
        """Look up a metric by its canonical wire key."""
        return getattr(self, _ATTRIBUTE_FOR_KEY[key])

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {key: self.get(key) for key in METRIC_KEYS}

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "MetricSet":
        """Build from a camelCase mapping, coercing every value."""
        if not isinstance(values, dict):
            values = {}
        return cls(**{
            attr: to_number(values.get(key))
            for key, attr in _ATTRIBUTE_FOR_KEY.items()
        })


_ATTRIBUTE_FOR_KEY = {
    "hrv": "hrv",
    "sleepQuality": "sleep_quality",
    "strain": "strain",
    "readiness": "readiness",
    "restingHeartRate": "resting_heart_rate",
}


@dataclass(frozen=True)
class CanonicalSample:
    """One normalized reading from one provider."""
    provider: str
    timestamp: str
    metrics: MetricSet
    raw_payload: Any = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "timestamp": self.timestamp,
            "metrics": self.metrics.to_dict(),
            "raw": self.raw_payload,
        }


# =============================================================================
# Coercion helpers
# =============================================================================


def to_number(value: Any) -> Optional[float]:
    """
    Coerce a payload value to a float or None.

    Missing, non-numeric, non-finite and zero values all become None;
    wearables report zero when a metric was not captured.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number) or number == 0:
        return None
    return number


def _section(payload: Any, *keys: str) -> Dict[str, Any]:
    """Return the first dict found under ``keys``, else an empty dict."""
    if not isinstance(payload, dict):
        return {}
    for key in keys:
        value = payload.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _coalesce(*values: Any) -> Any:
    """First value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


def _timestamp(*candidates: Any) -> str:
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return utc_now_iso()


# =============================================================================
# Provider mappings
# =============================================================================


def normalize_whoop(payload: Any) -> CanonicalSample:
    """WHOOP nests the recovery score under ``recovery``."""
    recovery = _section(payload, "recovery")
    sleep = _section(payload, "sleep")
    training_load = _section(payload, "training_load")
    top = payload if isinstance(payload, dict) else {}

    metrics = MetricSet(
        hrv=to_number(_coalesce(recovery.get("hrv"), recovery.get("heart_rate_variability"))),
        sleep_quality=to_number(_coalesce(sleep.get("score"), sleep.get("quality_score"))),
        strain=to_number(_coalesce(top.get("strain"), training_load.get("strain"))),
        readiness=to_number(_coalesce(recovery.get("score"), recovery.get("readiness_score"))),
        resting_heart_rate=to_number(recovery.get("resting_heart_rate")),
    )
    return CanonicalSample(
        provider="whoop",
        timestamp=_timestamp(top.get("timestamp"), recovery.get("timestamp")),
        metrics=metrics,
        raw_payload=copy.deepcopy(payload),
    )


def normalize_oura(payload: Any) -> CanonicalSample:
    """Oura nests the recovery score under ``readiness``."""
    readiness = _section(payload, "readiness")
    sleep = _section(payload, "sleep", "sleep_summary")
    activity = _section(payload, "activity")
    top = payload if isinstance(payload, dict) else {}

    metrics = MetricSet(
        hrv=to_number(readiness.get("hrv_balance")),
        sleep_quality=to_number(sleep.get("score")),
        strain=to_number(activity.get("strain") or activity.get("score")),
        readiness=to_number(readiness.get("score")),
        resting_heart_rate=to_number(
            sleep.get("resting_heart_rate") or readiness.get("resting_heart_rate")
        ),
    )
    return CanonicalSample(
        provider="oura",
        timestamp=_timestamp(top.get("timestamp"), readiness.get("timestamp")),
        metrics=metrics,
        raw_payload=copy.deepcopy(payload),
    )


PROVIDER_MAPPINGS: Dict[str, Callable[[Any], CanonicalSample]] = {
    "whoop": normalize_whoop,
    "oura": normalize_oura,
}


def list_providers() -> List[str]:
    """Provider ids with a registered mapping."""
    return list(PROVIDER_MAPPINGS)


def normalize(provider_id: str, raw_payload: Any) -> CanonicalSample:
    """
    Normalize a raw provider payload into a CanonicalSample.

    Args:
        provider_id: Registered provider id (e.g. "whoop", "oura").
        raw_payload: Provider payload of any shape.

    Returns:
        CanonicalSample with all five metrics present (possibly None).

    Raises:
        UnsupportedProviderError: If ``provider_id`` has no mapping.
    """
    mapping = PROVIDER_MAPPINGS.get(provider_id)
    if mapping is None:
        raise UnsupportedProviderError(provider_id)

    sample = mapping(raw_payload)
    logger.debug(f"Normalized {provider_id} payload: {sample.metrics.to_dict()}")
    return sample
