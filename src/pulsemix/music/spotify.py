"""
Spotify Catalog Client

Track search, playlist creation and the user-authorization helpers.
Calls are made with the end user's access token (Authorization Code
Flow); an unauthorized search surfaces as ``TokenExpiredError`` so the
resolution pipeline can tell it apart from rate limits and outages.

Environment Variables:
    SPOTIFY_CLIENT_ID: Spotify application client ID
    SPOTIFY_CLIENT_SECRET: Spotify application client secret
    SPOTIFY_REDIRECT_URI: Registered callback URL
    SPOTIFY_MARKET: Search market (default US)
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from ..config import SpotifyConfig
from ..core.deadline import with_deadline
from ..core.errors import (
    AuthorizationError,
    ConfigurationError,
    SearchError,
    TokenExpiredError,
)

logger = logging.getLogger(__name__)


USER_SCOPES = [
    "playlist-modify-private",
    "playlist-modify-public",
    "user-read-recently-played",
]

# Spotify accepts at most 100 URIs per add-items call
ADD_TRACKS_BATCH = 100


@dataclass(frozen=True)
class TrackResult:
    """Lean track shape returned to clients."""
    id: str
    name: str
    artist_names: List[str] = field(default_factory=list)
    preview_url: Optional[str] = None
    canonical_uri: Optional[str] = None
    external_url: Optional[str] = None
    album_art_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "artists": list(self.artist_names),
            "preview_url": self.preview_url,
            "uri": self.canonical_uri,
            "externalUrl": self.external_url,
            "albumArt": self.album_art_url,
        }

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> "TrackResult":
        """Map a Spotify track object, preferring the mid-size album image."""
        images = (data.get("album") or {}).get("images") or []
        album_art = None
        if len(images) > 1:
            album_art = images[1].get("url")
        if album_art is None and images:
            album_art = images[0].get("url")

        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "Unknown")),
            artist_names=[a.get("name", "") for a in data.get("artists") or [] if isinstance(a, dict)],
            preview_url=data.get("preview_url"),
            canonical_uri=data.get("uri"),
            external_url=(data.get("external_urls") or {}).get("spotify"),
            album_art_url=album_art,
        )


class SpotifyClient:
    """
    Client for the Spotify Web API endpoints PulseMix uses.

    Example:
        >>> spotify = SpotifyClient()
        >>> items = await spotify.search_tracks(token, "deep focus", limit=30)
    """

    AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
    TOKEN_URL = "https://accounts.spotify.com/api/token"
    API_BASE = "https://api.spotify.com/v1"

    def __init__(
        self,
        config: Optional[SpotifyConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or SpotifyConfig()
        self._http = http_client or httpx.AsyncClient(timeout=self.config.timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    def _get_auth_header(self) -> str:
        """Get base64 encoded client credentials."""
        if not self.config.client_id or not self.config.client_secret:
            raise ConfigurationError(
                "Spotify credentials not configured. "
                "Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET environment variables."
            )
        auth_str = f"{self.config.client_id}:{self.config.client_secret}"
        return base64.b64encode(auth_str.encode()).decode()

    async def _send(self, method: str, endpoint: str, access_token: str, **kwargs) -> httpx.Response:
        return await with_deadline(
            self._http.request(
                method,
                f"{self.API_BASE}/{endpoint}",
                headers={"Authorization": f"Bearer {access_token}"},
                **kwargs,
            ),
            self.config.timeout,
            f"Spotify {method} {endpoint}",
        )

    # =========================================================================
    # User authorization
    # =========================================================================

    def authorization_url(self, state: str = "playlist-generator") -> str:
        if not self.config.client_id or not self.config.redirect_uri:
            raise ConfigurationError("Missing Spotify auth configuration")
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "scope": " ".join(USER_SCOPES),
            "redirect_uri": self.config.redirect_uri,
            "state": state,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for the user's token payload."""
        try:
            response = await with_deadline(
                self._http.post(
                    self.TOKEN_URL,
                    headers={"Authorization": f"Basic {self._get_auth_header()}"},
                    data={
                        "code": code,
                        "redirect_uri": self.config.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                ),
                self.config.timeout,
                "Spotify code exchange",
            )
        except httpx.HTTPError as e:
            logger.error(f"Spotify auth failed: {e}")
            raise AuthorizationError(f"Spotify auth failed: {e}") from e

        if response.is_error:
            logger.error(f"Spotify auth failed: {response.status_code}")
            raise AuthorizationError(
                "Spotify auth failed",
                details={"status_code": response.status_code},
            )
        return response.json()

    # =========================================================================
    # Search
    # =========================================================================

    async def search_tracks(self, access_token: str, query: str, limit: int = 30) -> List[Dict[str, Any]]:
        """
        Search the catalog for tracks.

        Returns:
            Raw Spotify track objects (possibly empty).

        Raises:
            TokenExpiredError: The access token was rejected.
            SearchError: Any other HTTP or transport failure.
        """
        try:
            response = await self._send(
                "GET",
                "search",
                access_token,
                params={
                    "q": query,
                    "type": "track",
                    "limit": limit,
                    "market": self.config.market,
                },
            )
        except httpx.HTTPError as e:
            raise SearchError(f"Spotify search transport error: {e}") from e

        if response.status_code == 401:
            raise TokenExpiredError()
        if response.is_error:
            raise SearchError(
                f"Spotify search failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise SearchError(f"Spotify search returned a non-JSON body: {e}") from e

        tracks = data.get("tracks") if isinstance(data, dict) else None
        items = tracks.get("items") if isinstance(tracks, dict) else None
        if items is None:
            return []
        if not isinstance(items, list):
            raise SearchError("Spotify search returned an unexpected payload shape")
        return [item for item in items if isinstance(item, dict)]

    # =========================================================================
    # Playlist persistence
    # =========================================================================

    async def create_playlist(
        self,
        access_token: str,
        name: str,
        description: str = "",
        public: bool = False,
    ) -> Dict[str, Any]:
        """Create a playlist on the current user's account."""
        response = await self._send(
            "POST",
            "me/playlists",
            access_token,
            json={"name": name, "description": description, "public": public},
        )
        if response.status_code == 401:
            raise TokenExpiredError()
        response.raise_for_status()

        playlist = response.json()
        logger.info(f"Created Spotify playlist {playlist.get('id')}")
        return playlist

    async def add_tracks(self, access_token: str, playlist_id: str, track_uris: List[str]) -> Optional[str]:
        """
        Append tracks in batches.

        Returns:
            The playlist snapshot id after the last batch.
        """
        snapshot_id = None
        for i in range(0, len(track_uris), ADD_TRACKS_BATCH):
            batch = track_uris[i:i + ADD_TRACKS_BATCH]
            response = await self._send(
                "POST",
                f"playlists/{playlist_id}/tracks",
                access_token,
                json={"uris": batch},
            )
            if response.status_code == 401:
                raise TokenExpiredError()
            response.raise_for_status()
            snapshot_id = response.json().get("snapshot_id", snapshot_id)

        logger.info(f"Added {len(track_uris)} tracks to playlist {playlist_id}")
        return snapshot_id
