"""
OAuth Token Lifecycle

Acquires, stores and refreshes short-lived access tokens for one
metric provider, and wraps authenticated calls with a single
refresh-and-retry on an unauthorized response.

States per user:
    Unauthenticated -> Authorizing (state issued) -> Authenticated
    Authenticated -> Refreshing (within expiry buffer or after a 401)
    Refreshing -> Authenticated | ReauthRequired

Refreshes are single-flight per user: a per-user asyncio.Lock guards
the refresh step, and a waiter that finds the record already replaced
reuses the new token instead of spending the rotated refresh token.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple, TypeVar

import httpx

from ..core.errors import AuthorizationError, CallTimeoutError, ReauthRequiredError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Refresh proactively when this close to expiry
EXPIRY_BUFFER_SECONDS = 5 * 60

# Upstream requires the OAuth state parameter to be at least 8 characters
MIN_STATE_LENGTH = 8

# Unfinished authorizations are forgotten after this long
STATE_TTL_SECONDS = 10 * 60


@dataclass(frozen=True)
class TokenRecord:
    """Credentials for one user. ``expires_at`` is an epoch timestamp."""
    access_token: str
    refresh_token: Optional[str]
    expires_at: float

    def expires_within(self, buffer_seconds: float, now: float) -> bool:
        return now >= self.expires_at - buffer_seconds

    def to_dict(self) -> Dict[str, object]:
        # Tokens are secrets; only expose what callers need to display
        return {
            "expiresAt": self.expires_at,
            "hasRefreshToken": bool(self.refresh_token),
        }


class OAuthClient(Protocol):
    """What the lifecycle manager needs from a provider's OAuth endpoints."""

    def authorization_url(self, state: str) -> str: ...

    async def exchange_code(self, code: str) -> TokenRecord: ...

    async def refresh(self, refresh_token: str) -> TokenRecord: ...


class TokenStore:
    """Per-user TokenRecord map. Records persist for the process lifetime."""

    def __init__(self):
        self._records: Dict[str, TokenRecord] = {}

    def get(self, user_id: str) -> Optional[TokenRecord]:
        return self._records.get(user_id)

    def put(self, user_id: str, record: TokenRecord) -> None:
        self._records[user_id] = record

    def reset(self) -> None:
        self._records.clear()

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._records


def is_unauthorized(exc: BaseException) -> bool:
    """Default check for 'recoverable by refresh'."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 401
    return getattr(exc, "status_code", None) == 401


class TokenLifecycleManager:
    """
    Manages OAuth credentials for one provider across users.

    Example:
        >>> manager = TokenLifecycleManager(WhoopOAuthClient(config))
        >>> url = manager.begin_authorization("default")
        >>> # ... user approves, provider redirects back with code + state
        >>> await manager.complete_authorization(code, state)
        >>> data = await manager.authenticated_request("default", fetch_recovery)
    """

    def __init__(
        self,
        oauth_client: OAuthClient,
        store: Optional[TokenStore] = None,
        expiry_buffer: float = EXPIRY_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
        recoverable: Callable[[BaseException], bool] = is_unauthorized,
        state_ttl: float = STATE_TTL_SECONDS,
    ):
        self.oauth_client = oauth_client
        self.store = store if store is not None else TokenStore()
        self.expiry_buffer = expiry_buffer
        self._clock = clock
        self._recoverable = recoverable
        self.state_ttl = state_ttl
        # state -> (user_id, issued_at)
        self._pending_states: Dict[str, Tuple[str, float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def begin_authorization(self, user_id: str) -> str:
        """Issue an anti-forgery state bound to ``user_id`` and build the redirect URL."""
        self._prune_states()
        state = f"{secrets.token_hex(8)}:{user_id}"
        self._pending_states[state] = (user_id, self._clock())
        logger.info(f"Authorization started for user '{user_id}'")
        return self.oauth_client.authorization_url(state)

    def user_for_state(self, state: Optional[str]) -> str:
        """Resolve and consume a state issued by ``begin_authorization``."""
        self._prune_states()
        if not state or len(state) < MIN_STATE_LENGTH or state not in self._pending_states:
            raise AuthorizationError(
                "Unknown or expired authorization state",
                code="INVALID_STATE",
                status=400,
            )
        user_id, _ = self._pending_states.pop(state)
        return user_id

    def _prune_states(self) -> None:
        cutoff = self._clock() - self.state_ttl
        expired = [s for s, (_, issued_at) in self._pending_states.items() if issued_at < cutoff]
        for state in expired:
            del self._pending_states[state]
        if expired:
            logger.debug(f"Dropped {len(expired)} expired authorization state(s)")

    @property
    def pending_authorizations(self) -> int:
        return len(self._pending_states)

    async def complete_authorization(self, code: str, state: str) -> TokenRecord:
        """
        Exchange an authorization code and store the resulting tokens.

        Raises:
            AuthorizationError: If the state is unknown or the exchange fails.
        """
        user_id = self.user_for_state(state)
        record = await self.oauth_client.exchange_code(code)
        self.store.put(user_id, record)
        logger.info(f"Stored tokens for user '{user_id}'")
        return record

    def store_tokens(self, user_id: str, record: TokenRecord) -> None:
        self.store.put(user_id, record)

    def get_stored_tokens(self, user_id: str) -> Optional[TokenRecord]:
        return self.store.get(user_id)

    def is_authenticated(self, user_id: str) -> bool:
        return user_id in self.store

    # -------------------------------------------------------------------------
    # Token access
    # -------------------------------------------------------------------------

    async def get_valid_access_token(self, user_id: str) -> str:
        """
        Return a usable access token, refreshing once if near expiry.

        Raises:
            ReauthRequiredError: No record, no refresh token, or refresh failed.
        """
        record = self.store.get(user_id)
        if record is None:
            raise ReauthRequiredError("No access token available. Please re-authenticate.")

        if not record.expires_within(self.expiry_buffer, self._clock()):
            return record.access_token

        async with self._lock_for(user_id):
            current = self.store.get(user_id)
            if current is not None and not current.expires_within(self.expiry_buffer, self._clock()):
                # Another caller refreshed while we waited
                return current.access_token
            return (await self._refresh_locked(user_id, current or record)).access_token

    async def _force_refresh(self, user_id: str, rejected_token: str) -> str:
        """Refresh after ``rejected_token`` came back unauthorized."""
        async with self._lock_for(user_id):
            current = self.store.get(user_id)
            if current is None:
                raise ReauthRequiredError()
            if current.access_token != rejected_token:
                return current.access_token
            return (await self._refresh_locked(user_id, current)).access_token

    async def _refresh_locked(self, user_id: str, record: TokenRecord) -> TokenRecord:
        if not record.refresh_token:
            raise ReauthRequiredError(
                "Token expired and no refresh token available. Please re-authenticate."
            )

        logger.info(f"Refreshing access token for user '{user_id}'")
        try:
            refreshed = await self.oauth_client.refresh(record.refresh_token)
        except (AuthorizationError, CallTimeoutError, httpx.HTTPError) as e:
            logger.warning(f"Token refresh failed for user '{user_id}': {e}")
            raise ReauthRequiredError() from e

        if not refreshed.refresh_token:
            refreshed = TokenRecord(
                access_token=refreshed.access_token,
                refresh_token=record.refresh_token,
                expires_at=refreshed.expires_at,
            )
        self.store.put(user_id, refreshed)
        return refreshed

    # -------------------------------------------------------------------------
    # Authenticated calls
    # -------------------------------------------------------------------------

    async def authenticated_request(
        self,
        user_id: str,
        call: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Run ``call(access_token)`` with one refresh-and-retry on unauthorized.

        Any other failure propagates unchanged with zero retries.

        Raises:
            ReauthRequiredError: Refresh failed or the retry was also unauthorized.
        """
        token = await self.get_valid_access_token(user_id)
        try:
            return await call(token)
        except Exception as e:
            if not self._recoverable(e):
                raise
            logger.info(f"Unauthorized response for user '{user_id}', refreshing and retrying once")

        token = await self._force_refresh(user_id, token)
        try:
            return await call(token)
        except Exception as e:
            if self._recoverable(e):
                raise ReauthRequiredError() from e
            raise

    def authenticated(
        self,
        call: Callable[..., Awaitable[T]],
    ) -> Callable[..., Awaitable[T]]:
        """
        Decorator form: wrap ``call(access_token, *args, **kwargs)`` so it is
        invoked as ``wrapped(user_id, *args, **kwargs)``.
        """

        async def wrapped(user_id: str, *args, **kwargs) -> T:
            return await self.authenticated_request(
                user_id, lambda token: call(token, *args, **kwargs)
            )

        wrapped.__name__ = getattr(call, "__name__", "authenticated_call")
        wrapped.__doc__ = getattr(call, "__doc__", None)
        return wrapped

    def reset(self) -> None:
        """Forget every token, pending state and lock."""
        self.store.reset()
        self._pending_states.clear()
        self._locks.clear()
