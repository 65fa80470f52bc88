"""
LLM-powered playlist enrichment.

NOTE: Hosted providers need optional dependencies:
    pip install pulsemix[llm]

Without them (or without an API key) enrichment is simply unavailable
and the heuristic mood is used as-is.
"""

from .client import LLMClient, LLMConfig, detect_llm_config, extract_json, get_llm_client
from .enrichment import (
    SYSTEM_PROMPT,
    EnrichmentContext,
    PlaylistEnricher,
    PlaylistHint,
    build_prompt,
    describe_schedule_load,
    format_biometric_data,
    format_calendar_events,
    format_weather_data,
    generate_search_query,
    parse_hint,
)

__all__ = [
    "LLMClient",
    "LLMConfig",
    "detect_llm_config",
    "extract_json",
    "get_llm_client",
    "SYSTEM_PROMPT",
    "EnrichmentContext",
    "PlaylistEnricher",
    "PlaylistHint",
    "build_prompt",
    "describe_schedule_load",
    "format_biometric_data",
    "format_calendar_events",
    "format_weather_data",
    "generate_search_query",
    "parse_hint",
]
