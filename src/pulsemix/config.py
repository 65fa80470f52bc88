"""
Runtime configuration.

Each external collaborator gets a small dataclass whose fields default
from environment variables. Loading ``.env`` files is left to the
process that starts the server.

Environment Variables:
    WHOOP_CLIENT_ID, WHOOP_CLIENT_SECRET, WHOOP_REDIRECT_URI
    SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, SPOTIFY_REDIRECT_URI, SPOTIFY_MARKET
    CLIENT_URL: Comma-separated browser origins; the first is the post-login redirect
    WEATHER_LOCATION, WEATHER_LATITUDE, WEATHER_LONGITUDE
    PULSEMIX_CALL_TIMEOUT: Deadline in seconds for each external call
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class WhoopConfig:
    """OAuth client settings for the WHOOP developer API."""

    client_id: Optional[str] = field(default_factory=lambda: os.getenv("WHOOP_CLIENT_ID"))
    client_secret: Optional[str] = field(default_factory=lambda: os.getenv("WHOOP_CLIENT_SECRET"))
    redirect_uri: Optional[str] = field(default_factory=lambda: os.getenv("WHOOP_REDIRECT_URI"))
    timeout: float = field(default_factory=lambda: _env_float("PULSEMIX_CALL_TIMEOUT", 15.0))

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


@dataclass
class SpotifyConfig:
    """Spotify Web API settings."""

    client_id: Optional[str] = field(default_factory=lambda: os.getenv("SPOTIFY_CLIENT_ID"))
    client_secret: Optional[str] = field(default_factory=lambda: os.getenv("SPOTIFY_CLIENT_SECRET"))
    redirect_uri: Optional[str] = field(
        default_factory=lambda: os.getenv("SPOTIFY_REDIRECT_URI") or os.getenv("REDIRECT_URI")
    )
    market: str = field(default_factory=lambda: os.getenv("SPOTIFY_MARKET", "US"))
    timeout: float = field(default_factory=lambda: _env_float("PULSEMIX_CALL_TIMEOUT", 15.0))

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


@dataclass
class WeatherConfig:
    """Location used for the contextual weather lookup (Open-Meteo, no key)."""

    location: str = field(default_factory=lambda: os.getenv("WEATHER_LOCATION", "Omaha,NE"))
    latitude: float = field(default_factory=lambda: _env_float("WEATHER_LATITUDE", 41.2565))
    longitude: float = field(default_factory=lambda: _env_float("WEATHER_LONGITUDE", -95.9345))
    timeout: float = 10.0


@dataclass
class Settings:
    """Top-level settings for one PulseMix process."""

    whoop: WhoopConfig = field(default_factory=WhoopConfig)
    spotify: SpotifyConfig = field(default_factory=SpotifyConfig)
    weather: WeatherConfig = field(default_factory=WeatherConfig)
    client_urls: List[str] = field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("CLIENT_URL", "").split(",")
            if origin.strip()
        ]
    )
    call_timeout: float = field(default_factory=lambda: _env_float("PULSEMIX_CALL_TIMEOUT", 15.0))

    @property
    def client_url(self) -> str:
        """Where the browser lands after Spotify login."""
        return self.client_urls[0] if self.client_urls else "http://localhost:5173"
