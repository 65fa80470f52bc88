"""
PulseMix REST API Server.

FastAPI application exposing the wearable -> mood -> playlist pipeline
to the browser client. Each app instance owns one ``PulseMixService``
(stores, token manager, HTTP clients) on ``app.state``; routes reach it
through the ``get_service`` dependency.

Errors raised as ``PulseMixError`` are rendered as JSON with the
error's own status and code.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..config import Settings
from ..core.errors import (
    AuthorizationError,
    ConfigurationError,
    PulseMixError,
    ReauthRequiredError,
)
from ..service import DEFAULT_USER_ID, PulseMixService

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Models for API
# =============================================================================


class CamelModel(BaseModel):
    """Accepts the browser client's camelCase field names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SyncRequest(CamelModel):
    """Raw wearable payload pushed by the client."""

    provider: Optional[str] = Field(None, description="Provider id (whoop, oura)")
    payload: Optional[Dict[str, Any]] = Field(None, description="Provider-specific payload")
    manual_schedule_load: Optional[float] = Field(
        None, alias="manualScheduleLoad", ge=0.0, le=1.0, description="How busy the day is (0-1)"
    )
    optional_user_input: Optional[str] = Field(None, alias="optionalUserInput")


class WhoopFetchRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userId")


class PlaylistRequest(CamelModel):
    """Request for tracks matching the current mood."""

    access_token: Optional[str] = Field(None, alias="accessToken")
    use_ai: bool = Field(True, alias="useAI", description="Overlay an LLM search hint")
    weather: Optional[Dict[str, Any]] = None
    schedule_load: Optional[float] = Field(None, alias="scheduleLoad", ge=0.0, le=1.0)
    user_input: Optional[str] = Field(None, alias="userInput")


class SavePlaylistRequest(CamelModel):
    access_token: Optional[str] = Field(None, alias="accessToken")
    name: Optional[str] = None
    description: Optional[str] = None
    track_uris: Optional[List[str]] = Field(None, alias="trackUris")


class AIPlaylistRequest(CamelModel):
    """Request for an LLM-driven playlist."""

    access_token: Optional[str] = Field(None, alias="accessToken")
    calendar_events: List[Dict[str, Any]] = Field(default_factory=list, alias="calendarEvents")
    biometric_override: Optional[Dict[str, Any]] = Field(None, alias="biometricOverride")
    weather_data: Dict[str, Any] = Field(default_factory=dict, alias="weatherData")
    user_mood_preference: str = Field("", alias="userMoodPreference")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    providers: List[str]
    llm_configured: bool


# =============================================================================
# Dependencies
# =============================================================================


def get_service(request: Request) -> PulseMixService:
    """Dependency for the app's service instance."""
    return request.app.state.service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# =============================================================================
# Application Factory
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"PulseMix API starting up (providers: {', '.join(app.state.service.providers())})")

    yield

    logger.info("PulseMix API shutting down")
    await app.state.service.aclose()


async def pulsemix_error_handler(request: Request, exc: PulseMixError) -> JSONResponse:
    if exc.status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status} {exc.code}")
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[PulseMixService] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Optional settings override (defaults read the environment).
        service: Optional pre-built service, e.g. with fake collaborators.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or Settings()

    app = FastAPI(
        title="PulseMix API",
        description="Wearable-driven mood detection and playlist generation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service or PulseMixService.from_settings(settings)

    # CORS for the browser client
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.client_urls or ["*"],
        allow_credentials=bool(settings.client_urls),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PulseMixError, pulsemix_error_handler)

    # Register routes
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(wearable_router)
    app.include_router(mood_router)
    app.include_router(playlist_router)
    app.include_router(ai_playlist_router)
    app.include_router(weather_router)

    return app


# =============================================================================
# Routers
# =============================================================================

health_router = APIRouter(tags=["health"])
auth_router = APIRouter(prefix="/auth", tags=["auth"])
wearable_router = APIRouter(prefix="/api/wearables", tags=["wearables"])
mood_router = APIRouter(prefix="/api/mood", tags=["mood"])
playlist_router = APIRouter(prefix="/api/playlists", tags=["playlists"])
ai_playlist_router = APIRouter(prefix="/api/ai-playlists", tags=["ai-playlists"])
weather_router = APIRouter(prefix="/api/weather", tags=["weather"])


@health_router.get("/health", response_model=HealthResponse)
def health_check(service: PulseMixService = Depends(get_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=__version__,
        providers=service.providers(),
        llm_configured=service.enricher is not None,
    )


# =============================================================================
# Auth Endpoints
# =============================================================================


def _client_redirect(settings: Settings, **params: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.client_url}?{urlencode(params)}")


@auth_router.get("/login")
def spotify_login(
    state: Optional[str] = Query(None),
    service: PulseMixService = Depends(get_service),
):
    """Redirect the browser to Spotify's consent page."""
    if service.spotify is None:
        raise ConfigurationError("Missing Spotify auth configuration")
    return RedirectResponse(service.spotify.authorization_url(state or "playlist-generator"))


@auth_router.get("/callback")
async def spotify_callback(
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    service: PulseMixService = Depends(get_service),
    settings: Settings = Depends(get_settings),
):
    """Exchange the code and hand the access token back to the client."""
    if error:
        return _client_redirect(settings, error=error)
    if not code or service.spotify is None:
        return _client_redirect(settings, error="missing_code")

    try:
        tokens = await service.spotify.exchange_code(code)
    except (AuthorizationError, ConfigurationError) as e:
        logger.error(f"Spotify auth failed: {e}")
        return _client_redirect(settings, error="auth_failed")

    return _client_redirect(settings, access_token=tokens["access_token"])


@auth_router.get("/config")
def auth_config(settings: Settings = Depends(get_settings)):
    return {
        "redirectUri": settings.spotify.redirect_uri,
        "clientConfigured": settings.spotify.is_configured and bool(settings.client_urls),
        "whoopConfigured": settings.whoop.is_configured,
    }


@auth_router.get("/whoop/login")
def whoop_login(
    user_id: str = Query(DEFAULT_USER_ID, alias="userId"),
    service: PulseMixService = Depends(get_service),
):
    """Start WHOOP authorization for ``userId``."""
    return RedirectResponse(service.token_manager.begin_authorization(user_id))


@auth_router.get("/whoop/callback")
async def whoop_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    service: PulseMixService = Depends(get_service),
    settings: Settings = Depends(get_settings),
):
    """Complete WHOOP authorization and return to the client."""
    if error:
        return _client_redirect(settings, whoop_error=error)
    if not code:
        return _client_redirect(settings, whoop_error="missing_code")

    try:
        await service.token_manager.complete_authorization(code, state)
    except (AuthorizationError, ConfigurationError) as e:
        logger.error(f"Whoop auth failed: {e}")
        return _client_redirect(settings, whoop_error=e.code.lower())

    return _client_redirect(settings, whoop="connected")


# =============================================================================
# Wearable Endpoints
# =============================================================================


@wearable_router.get("/providers")
def list_providers(service: PulseMixService = Depends(get_service)):
    return {"providers": service.providers()}


@wearable_router.get("/latest")
def latest_samples(service: PulseMixService = Depends(get_service)):
    return service.latest()


@wearable_router.post("/sync")
async def sync_wearable(request: SyncRequest, service: PulseMixService = Depends(get_service)):
    """Normalize a pushed payload and classify the mood."""
    return await service.sync_wearable(
        request.provider,
        request.payload,
        schedule_load=request.manual_schedule_load,
        user_input=request.optional_user_input,
    )


@wearable_router.post("/whoop/fetch")
async def fetch_whoop(
    http_request: Request,
    body: Optional[WhoopFetchRequest] = None,
    user_id: Optional[str] = Query(None, alias="userId"),
    service: PulseMixService = Depends(get_service),
):
    """Pull the latest WHOOP data for a user who has connected their account."""
    uid = (body.user_id if body else None) or user_id or DEFAULT_USER_ID
    try:
        return await service.fetch_provider_data(uid)
    except ReauthRequiredError as e:
        login_url = http_request.url_for("whoop_login").include_query_params(userId=uid)
        raise ReauthRequiredError(e.message, auth_url=str(login_url)) from e


# =============================================================================
# Mood Endpoints
# =============================================================================


@mood_router.get("")
def current_mood(service: PulseMixService = Depends(get_service)):
    return {"mood": service.current_mood().to_dict()}


@mood_router.post("/run")
def run_mood(service: PulseMixService = Depends(get_service)):
    """Re-classify the current cross-provider aggregate."""
    return service.run_mood()


# =============================================================================
# Playlist Endpoints
# =============================================================================


@playlist_router.post("")
async def generate_playlist(request: PlaylistRequest, service: PulseMixService = Depends(get_service)):
    """Tracks for the stored mood; falls back to a static list when search fails."""
    return await service.resolve_playlist(
        access_token=request.access_token,
        use_enrichment=request.use_ai,
        weather=request.weather,
        schedule_load=request.schedule_load,
        user_input=request.user_input,
    )


@playlist_router.post("/save")
async def save_playlist(request: SavePlaylistRequest, service: PulseMixService = Depends(get_service)):
    return await service.save_playlist(
        request.access_token,
        request.track_uris,
        name=request.name,
        description=request.description,
    )


@ai_playlist_router.post("")
async def ai_playlist(request: AIPlaylistRequest, service: PulseMixService = Depends(get_service)):
    """LLM analysis of biometrics, schedule and weather, then track resolution."""
    return await service.ai_playlist(
        access_token=request.access_token,
        calendar_events=request.calendar_events,
        biometric_override=request.biometric_override,
        weather=request.weather_data,
        user_preference=request.user_mood_preference,
    )


@ai_playlist_router.post("/analyze-only")
async def analyze_only(request: AIPlaylistRequest, service: PulseMixService = Depends(get_service)):
    return await service.analyze_only(
        calendar_events=request.calendar_events,
        biometric_override=request.biometric_override,
        weather=request.weather_data,
        user_preference=request.user_mood_preference,
    )


# =============================================================================
# Weather Endpoints
# =============================================================================


@weather_router.get("")
async def current_weather(service: PulseMixService = Depends(get_service)):
    return {"weather": await service.current_weather()}


# =============================================================================
# CLI Entry Point
# =============================================================================


def main():
    """CLI entry point for pulsemix-server command."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="PulseMix API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=4000, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--log-level", default="info", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    uvicorn.run(
        "pulsemix.api.server:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
