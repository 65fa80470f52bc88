"""
WHOOP API Client

OAuth 2.0 endpoints plus the "fetch latest data" path that feeds the
metric normalizer. Reads recovery, sleep and workouts from the v2
developer API over the last 7 days and reshapes the most recent record
of each into the WHOOP adapter's raw payload.

Reference: https://developer.whoop.com/docs/developing/oauth-2.0
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from ..config import WhoopConfig
from ..core.deadline import with_deadline
from ..core.errors import (
    AuthorizationError,
    ConfigurationError,
    NoProviderDataError,
    ProviderRequestError,
    ReauthRequiredError,
)
from .tokens import TokenLifecycleManager, TokenRecord

logger = logging.getLogger(__name__)


WHOOP_API_BASE = "https://api.prod.whoop.com"
WHOOP_AUTH_BASE = "https://api.prod.whoop.com/oauth/oauth2"

WHOOP_SCOPES = "read:recovery read:cycles read:workout read:sleep read:profile offline"

LOOKBACK_DAYS = 7


class WhoopOAuthClient:
    """Authorization-code exchange and refresh against WHOOP's token endpoint."""

    def __init__(
        self,
        config: Optional[WhoopConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock=time.time,
    ):
        self.config = config or WhoopConfig()
        self._http = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self._clock = clock

    async def aclose(self) -> None:
        await self._http.aclose()

    def _require(self, *fields: str) -> None:
        missing = [name for name in fields if not getattr(self.config, name)]
        if missing:
            raise ConfigurationError(
                "Whoop client credentials not configured",
                details={"missing": missing},
            )

    def authorization_url(self, state: str) -> str:
        self._require("client_id", "redirect_uri")
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": WHOOP_SCOPES,
            "state": state,
        }
        return f"{WHOOP_AUTH_BASE}/auth?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenRecord:
        self._require("client_id", "client_secret", "redirect_uri")
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
            action="exchange code for token",
        )

    async def refresh(self, refresh_token: str) -> TokenRecord:
        # WHOOP wants client credentials and scope in the refresh body
        self._require("client_id", "client_secret")
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "scope": WHOOP_SCOPES,
            },
            action="refresh token",
        )

    async def _token_request(self, form: Dict[str, Any], action: str) -> TokenRecord:
        try:
            response = await with_deadline(
                self._http.post(f"{WHOOP_AUTH_BASE}/token", data=form),
                self.config.timeout,
                f"WHOOP {action}",
            )
        except httpx.HTTPError as e:
            logger.error(f"Whoop token request failed ({action}): {e}")
            raise AuthorizationError(f"Failed to {action}: {e}") from e

        if response.is_error:
            description = _error_description(response)
            logger.error(f"Whoop token request rejected ({action}): {response.status_code} {description}")
            raise AuthorizationError(
                f"Failed to {action}: {description}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
            return TokenRecord(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                expires_at=self._clock() + float(data.get("expires_in", 3600)),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Whoop token response malformed ({action}): {e!r}")
            raise AuthorizationError(
                f"Failed to {action}: malformed token response",
                details={"status_code": response.status_code},
            ) from e


def _error_description(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("error_description") or data.get("error") or data)
    return str(data)


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def latest_record(response: Any) -> Optional[Dict[str, Any]]:
    """Pick the most recent record from a paged v2 response (newest first)."""
    if isinstance(response, list):
        records = response
    elif isinstance(response, dict):
        records = _first(response.get("records"), response.get("data"))
        if records is None:
            records = []
        elif isinstance(records, dict):
            return records
    else:
        return None

    if not records or not isinstance(records[0], dict):
        return None
    return records[0]


def build_whoop_payload(
    recovery: Optional[Dict[str, Any]],
    sleep: Optional[Dict[str, Any]],
    workout: Optional[Dict[str, Any]],
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Reshape v2 records into the payload the WHOOP adapter normalizes."""
    payload: Dict[str, Any] = {
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        "recovery": {},
        "sleep": {},
        "strain": None,
        "training_load": None,
    }

    if recovery:
        hrv = _first(_dig(recovery, "score", "hrv_rmssd_milli"), recovery.get("hrv_rmssd_milli"), recovery.get("hrv"))
        score = recovery.get("score")
        payload["recovery"] = {
            "score": _first(_dig(recovery, "score", "recovery_score"), recovery.get("recovery_score"),
                            score if not isinstance(score, dict) else None),
            "hrv": hrv,
            "heart_rate_variability": hrv,
            "resting_heart_rate": _first(_dig(recovery, "score", "resting_heart_rate"),
                                         recovery.get("resting_heart_rate")),
            "timestamp": _first(recovery.get("start"), recovery.get("timestamp")),
        }

    if sleep:
        score = sleep.get("score")
        quality = _first(_dig(sleep, "score", "sleep_performance_percentage"), _dig(sleep, "score", "total"),
                         score if not isinstance(score, dict) else None)
        payload["sleep"] = {
            "score": quality,
            "quality_score": quality,
            "duration": _first(
                _dig(sleep, "score", "stage_summary", "total_sleep_time_milli"),
                _dig(sleep, "duration", "total_sleep_time_ms"),
                sleep.get("total_sleep_time_ms"),
            ),
        }

    if workout:
        strain = _first(_dig(workout, "score", "strain"), workout.get("strain"))
        payload["strain"] = strain
        payload["training_load"] = {"strain": strain}

    return payload


class WhoopDataSource:
    """
    Reads the latest WHOOP data for a user through the token manager.

    Every request is routed through ``TokenLifecycleManager.authenticated_request``
    so an expired token is refreshed once before the caller sees a failure.
    """

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.token_manager = token_manager
        self.timeout = timeout
        self._http = http_client or httpx.AsyncClient(base_url=WHOOP_API_BASE, timeout=timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(self, access_token: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{WHOOP_API_BASE}{endpoint}"
        response = await with_deadline(
            self._http.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                params=params,
            ),
            self.timeout,
            f"Whoop GET {endpoint}",
        )
        if response.is_error:
            logger.warning(f"Whoop API Error: GET {url} -> {response.status_code}")
            if response.status_code == 404:
                raise ProviderRequestError(
                    f"Whoop API endpoint not found: {url}. Please check the API documentation.",
                    status_code=404,
                    url=url,
                )
            raise ProviderRequestError(
                f"Whoop API request failed: GET {url} -> {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        return response.json()

    async def request(self, user_id: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Authenticated GET with refresh-and-retry."""
        return await self.token_manager.authenticated_request(
            user_id, lambda token: self._get(token, endpoint, params)
        )

    @staticmethod
    def _window_params() -> Dict[str, str]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=LOOKBACK_DAYS)
        return {"start": start.isoformat(), "end": end.isoformat()}

    async def get_profile(self, user_id: str) -> Any:
        """Basic profile; a cheap way to verify the connection works."""
        return await self.request(user_id, "/developer/v2/user/profile/basic")

    async def get_recovery(self, user_id: str) -> Dict[str, Any]:
        params = self._window_params()
        try:
            response = await self.request(user_id, "/developer/v2/recovery", params)
        except ReauthRequiredError:
            raise
        except Exception as e:
            # Cycles embed recovery data
            logger.warning(f"Failed to fetch recovery, trying /developer/v2/cycle: {e}")
            response = await self.request(user_id, "/developer/v2/cycle", params)

        record = latest_record(response)
        if record is None:
            raise NoProviderDataError("No recovery data available")
        return record

    async def get_sleep(self, user_id: str) -> Dict[str, Any]:
        response = await self.request(user_id, "/developer/v2/activity/sleep", self._window_params())
        record = latest_record(response)
        if record is None:
            raise NoProviderDataError("No sleep data available")
        return record

    async def get_workouts(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Latest workout, or None; workouts are optional."""
        try:
            response = await self.request(user_id, "/developer/v2/activity/workout", self._window_params())
        except ReauthRequiredError:
            raise
        except Exception as e:
            logger.warning(f"Could not fetch workout data: {e}")
            return None
        return latest_record(response)

    async def fetch_latest_raw(self, user_id: str) -> Dict[str, Any]:
        """
        Fetch recovery, sleep and workouts concurrently and build a raw payload.

        A failed section becomes empty; an auth failure on any section
        aborts the whole fetch.

        Raises:
            ReauthRequiredError: Credentials missing or unrecoverable.
        """
        results = await asyncio.gather(
            self.get_recovery(user_id),
            self.get_sleep(user_id),
            self.get_workouts(user_id),
            return_exceptions=True,
        )

        sections: List[Optional[Dict[str, Any]]] = []
        for name, result in zip(("recovery", "sleep", "workout"), results):
            if isinstance(result, ReauthRequiredError):
                raise result
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning(f"Whoop {name} unavailable: {result}")
                sections.append(None)
            else:
                sections.append(result)

        return build_whoop_payload(*sections)
