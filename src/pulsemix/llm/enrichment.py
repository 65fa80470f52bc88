"""
Playlist enrichment via LLM.

Builds a prompt from aggregated biometrics, the day's schedule, weather
and the user's stated preference, asks the model for a strict JSON hint
and validates it. Callers that only use the hint to improve a search
treat ``EnrichmentError`` as non-fatal and keep the heuristic mood.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ..core.deadline import with_deadline
from ..core.errors import CallTimeoutError, EnrichmentError
from ..core.mood import MOOD_LABELS
from ..core.store import AggregatedMetrics
from .client import LLMClient, LLMConfig, detect_llm_config, get_llm_client

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert music therapist and data analyst. Your role is to analyze biometric data, daily schedules, weather, and the user's stated music preference to recommend optimal music characteristics that will enhance productivity, mood, and wellbeing.

You must respond ONLY with valid JSON matching this exact structure:
{
  "mood": "flow" | "amped" | "recovery" | "reset",
  "energy": 0.0-1.0,
  "valence": 0.0-1.0,
  "tempo": 60-200,
  "genres": ["genre1", "genre2"],
  "searchQuery": "string",
  "reasoning": "brief explanation of your recommendations"
}

Guidelines:
- energy: 0.0 (calm) to 1.0 (intense/energetic)
- valence: 0.0 (sad/negative) to 1.0 (happy/positive)
- tempo: BPM (beats per minute)
- mood: flow (focused work), amped (high energy/workout), recovery (rest/relax), reset (balanced/flexible)
- genres: 2-4 relevant music genres
- searchQuery: A natural language query optimized for Spotify search
- If the user explicitly states a desired mood or effect (e.g. "calm me down", "get me hyped"), this should strongly guide your choices as long as it is not in direct conflict with clear physiological needs (e.g. extremely low readiness + request for max intensity)."""

MAX_GENRES = 4


@dataclass
class PlaylistHint:
    """Validated model output."""
    mood: str = "reset"
    energy: float = 0.5
    valence: float = 0.5
    tempo: float = 100
    genres: List[str] = field(default_factory=list)
    search_query: str = ""
    reasoning: str = "No reasoning provided"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mood": self.mood,
            "energy": self.energy,
            "valence": self.valence,
            "tempo": self.tempo,
            "genres": list(self.genres),
            "searchQuery": self.search_query,
            "reasoning": self.reasoning,
        }


@dataclass
class EnrichmentContext:
    """Optional context appended to the prompt."""
    calendar_events: List[Dict[str, Any]] = field(default_factory=list)
    weather: Optional[Dict[str, Any]] = None
    user_preference: str = ""


# =============================================================================
# Prompt formatting
# =============================================================================


def format_biometric_data(data: Optional[AggregatedMetrics]) -> str:
    if data is None:
        return "No biometric data available"

    metrics = data.metrics
    lines = []
    if data.providers:
        lines.append(f"Source: {', '.join(data.providers)} ({data.sample_count or 1} sample(s))")
    if data.last_updated:
        lines.append(f"Last Updated: {data.last_updated}")

    if metrics.readiness is not None:
        lines.append(f"- Readiness Score: {metrics.readiness:g}/100")
    if metrics.sleep_quality is not None:
        lines.append(f"- Sleep Quality: {metrics.sleep_quality:g}/100")
    if metrics.hrv is not None:
        lines.append(f"- Heart Rate Variability (HRV): {metrics.hrv:g}ms")
    if metrics.resting_heart_rate is not None:
        lines.append(f"- Resting Heart Rate: {metrics.resting_heart_rate:g} bpm")
    if metrics.strain is not None:
        lines.append(f"- Strain/Activity Level: {metrics.strain:g}/21")

    return "\n".join(lines) if lines else "Limited biometric data available"


def _format_time(value: Any) -> str:
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).strftime("%I:%M %p").lstrip("0")
    except ValueError:
        return str(value)


def format_calendar_events(events: Optional[List[Dict[str, Any]]]) -> str:
    if not events:
        return "No calendar events provided"

    lines = ["Today's Schedule:"]
    for index, event in enumerate(events, start=1):
        time_str = _format_time(event["start"]) if event.get("start") else "Time TBD"
        title = event.get("title") or event.get("summary") or "Untitled Event"
        duration = f" ({event['duration']} min)" if event.get("duration") else ""
        kind = f" [{event['type']}]" if event.get("type") else ""
        lines.append(f"{index}. {time_str} - {title}{duration}{kind}")
    return "\n".join(lines)


WEATHER_FIELDS = [
    ("condition", "Condition"),
    ("temperature", "Temperature"),
    ("wind", "Wind"),
    ("humidity", "Humidity"),
    ("precipitation", "Precipitation"),
    ("sunrise", "Sunrise"),
    ("sunset", "Sunset"),
]


def format_weather_data(weather: Optional[Dict[str, Any]]) -> str:
    if not weather:
        return "No weather data available"
    lines = [f"- {label}: {weather[key]}" for key, label in WEATHER_FIELDS if weather.get(key)]
    return "\n".join(lines) if lines else "No weather data available"


def describe_schedule_load(load: Optional[float]) -> List[Dict[str, Any]]:
    """Turn a 0-1 busyness level into a one-line calendar summary."""
    if load is None:
        return []

    if load <= 0.2:
        description = "Very light schedule - mostly free time"
    elif load <= 0.4:
        description = "Light workload - some meetings"
    elif load <= 0.6:
        description = "Moderate workload - balanced schedule"
    elif load <= 0.8:
        description = "Busy schedule - many commitments"
    else:
        description = "Very heavy schedule - back-to-back events"

    return [{
        "title": f"Daily workload: {round(load * 100)}% busy",
        "description": description,
        "type": "schedule-summary",
    }]


def build_prompt(data: Optional[AggregatedMetrics], context: EnrichmentContext) -> str:
    return f"""Analyze the following data and recommend optimal music characteristics:

## BIOMETRIC DATA:
{format_biometric_data(data)}

## DAILY SCHEDULE:
{format_calendar_events(context.calendar_events)}

## UPCOMING WEATHER:
{format_weather_data(context.weather)}

## USER'S DESIRED MOOD / EFFECT FROM MUSIC:
{context.user_preference or 'Not specified'}

Based on this information, determine:
1. The person's current physiological state (energy levels, recovery needs)
2. Their cognitive demands for the day (focus work, meetings, exercise)
3. How weather might impact their mood and energy
4. Optimal music characteristics to support their wellbeing and productivity

Provide your analysis as JSON."""


# =============================================================================
# Response validation
# =============================================================================


def _clamp_value(value: Any, lo: float, hi: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return max(lo, min(hi, number))


def parse_hint(parsed: Dict[str, Any]) -> PlaylistHint:
    """Validate raw model JSON, substituting defaults for bad fields."""
    mood = parsed.get("mood")
    genres = parsed.get("genres")
    return PlaylistHint(
        mood=mood if mood in MOOD_LABELS else "reset",
        energy=_clamp_value(parsed.get("energy"), 0, 1, 0.5),
        valence=_clamp_value(parsed.get("valence"), 0, 1, 0.5),
        tempo=_clamp_value(parsed.get("tempo"), 60, 200, 100),
        genres=[str(g) for g in genres[:MAX_GENRES]] if isinstance(genres, list) else [],
        search_query=str(parsed.get("searchQuery") or ""),
        reasoning=str(parsed.get("reasoning") or "No reasoning provided"),
    )


MOOD_DESCRIPTORS = {
    "flow": "focus deep work",
    "amped": "high energy workout",
    "recovery": "calm relaxing",
    "reset": "uplifting feel good",
}


def generate_search_query(hint: PlaylistHint) -> str:
    """Deterministic search string built from a hint."""
    parts = []
    if hint.genres:
        parts.append(" ".join(hint.genres[:2]))
    parts.append(MOOD_DESCRIPTORS.get(hint.mood, "chill"))
    if hint.energy > 0.7:
        parts.append("upbeat")
    elif hint.energy < 0.4:
        parts.append("mellow")
    if hint.valence > 0.7:
        parts.append("happy")
    return " ".join(parts)


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


# =============================================================================
# Service
# =============================================================================


class PlaylistEnricher:
    """
    Asks an LLM for playlist parameters.

    Example:
        >>> enricher = PlaylistEnricher.from_env()
        >>> if enricher:
        ...     hint = await enricher.enrich(aggregated, EnrichmentContext(user_preference="calm me down"))
    """

    def __init__(self, client: LLMClient, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    @classmethod
    def from_env(cls, timeout: float = 30.0) -> Optional["PlaylistEnricher"]:
        config = detect_llm_config()
        if config is None:
            logger.info("No LLM provider configured; enrichment disabled")
            return None
        return cls(get_llm_client(config), timeout=timeout)

    @classmethod
    def from_config(cls, config: LLMConfig) -> "PlaylistEnricher":
        return cls(get_llm_client(config), timeout=config.timeout)

    @property
    def source(self) -> str:
        """Provenance tag stamped on enriched moods."""
        return self.client.provider

    async def enrich(
        self,
        data: Optional[AggregatedMetrics],
        context: Optional[EnrichmentContext] = None,
    ) -> PlaylistHint:
        """
        Generate a validated PlaylistHint.

        Raises:
            EnrichmentError: Bad credentials (401), rate limit (429),
                timeout (504) or unusable model output (502).
        """
        prompt = build_prompt(data, context or EnrichmentContext())
        logger.debug(f"Enrichment prompt:\n{prompt}")

        try:
            parsed = await with_deadline(
                asyncio.to_thread(self.client.complete_json, prompt, SYSTEM_PROMPT),
                self.timeout,
                "LLM enrichment",
            )
        except CallTimeoutError as e:
            raise EnrichmentError(str(e), code="LLM_TIMEOUT", status=504) from e
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to parse model response: {e}")
            raise EnrichmentError("Invalid JSON response from model", code="LLM_BAD_OUTPUT") from e
        except Exception as e:
            status = _status_of(e)
            if status == 401:
                raise EnrichmentError("Invalid LLM API key", code="LLM_UNAUTHORIZED", status=401) from e
            if status == 429:
                raise EnrichmentError("LLM API rate limit exceeded", code="LLM_RATE_LIMIT", status=429) from e
            logger.error(f"LLM request failed: {e}")
            raise EnrichmentError(f"LLM request failed: {e}") from e

        if not isinstance(parsed, dict):
            raise EnrichmentError("Invalid JSON response from model", code="LLM_BAD_OUTPUT")

        hint = parse_hint(parsed)
        logger.info(f"Enrichment suggested mood '{hint.mood}' with query '{hint.search_query}'")
        return hint
