"""
Weather Context

Fetches current conditions from open-meteo.com (free, no API key) and
renders them as short text fields for the enrichment prompt. Weather is
decoration, so any failure degrades to a placeholder snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import WeatherConfig
from .core.deadline import with_deadline
from .core.errors import CallTimeoutError

logger = logging.getLogger(__name__)


# Weather code descriptions (WMO standard)
WEATHER_CODES = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    80: "Rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    95: "Thunderstorm",
}

RAIN_CODES = {51, 53, 55, 61, 63, 65, 80, 81, 82, 95}


@dataclass
class WeatherSnapshot:
    """Current conditions, already formatted for display."""
    location: str
    temperature: str
    condition: str
    description: str = ""
    wind: Optional[str] = None
    humidity: Optional[str] = None
    precipitation: Optional[str] = None
    is_raining: bool = False
    is_overcast: bool = False
    source: str = "open-meteo"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "temperature": self.temperature,
            "condition": self.condition,
            "description": self.description,
            "wind": self.wind,
            "humidity": self.humidity,
            "precipitation": self.precipitation,
            "isRaining": self.is_raining,
            "isOvercast": self.is_overcast,
            "source": self.source,
        }


class WeatherService:
    """Current-conditions lookup with a static fallback."""

    BASE_URL = "https://api.open-meteo.com/v1/forecast"

    def __init__(
        self,
        config: Optional[WeatherConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or WeatherConfig()
        self._http = http_client or httpx.AsyncClient(timeout=self.config.timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def fetch_current(self) -> WeatherSnapshot:
        """Fetch current weather; never raises."""
        params = {
            "latitude": self.config.latitude,
            "longitude": self.config.longitude,
            "current": "temperature_2m,relative_humidity_2m,precipitation,weather_code,cloud_cover,wind_speed_10m",
            "temperature_unit": "fahrenheit",
            "wind_speed_unit": "mph",
        }
        try:
            response = await with_deadline(
                self._http.get(self.BASE_URL, params=params),
                self.config.timeout,
                "Weather lookup",
            )
            response.raise_for_status()
            return self._parse_current(response.json())
        except (httpx.HTTPError, CallTimeoutError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Weather fetch error, using fallback: {e}")
            return self._get_fallback()

    def _parse_current(self, data: Dict[str, Any]) -> WeatherSnapshot:
        current = data.get("current") if isinstance(data, dict) else None
        if not isinstance(current, dict):
            raise ValueError("Weather response has no current conditions")
        code = int(current.get("weather_code", 0))
        cloud_cover = current.get("cloud_cover") or 0
        precip = current.get("precipitation") or 0.0
        condition = WEATHER_CODES.get(code, "Unknown")

        return WeatherSnapshot(
            location=self.config.location,
            temperature=f"{current['temperature_2m']:.0f}°F",
            condition=condition,
            description=condition.lower(),
            wind=f"{current.get('wind_speed_10m', 0):.0f} mph",
            humidity=f"{current.get('relative_humidity_2m', 0):.0f}%",
            precipitation=f"{precip:.1f} mm",
            is_raining=code in RAIN_CODES or precip > 0,
            is_overcast=cloud_cover > 75,
        )

    def _get_fallback(self) -> WeatherSnapshot:
        """Placeholder used when the API is unreachable."""
        return WeatherSnapshot(
            location=self.config.location,
            temperature="62°F",
            condition="Partly Cloudy",
            description="A cool, brisk day",
            is_raining=False,
            is_overcast=True,
            source="fallback",
        )
