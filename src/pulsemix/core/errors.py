"""
PulseMix error taxonomy.

Every failure the pipeline surfaces to a caller is a ``PulseMixError``
carrying a machine-readable ``code`` and an HTTP-style ``status`` so the
routing layer can render it without knowing the concrete type.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PulseMixError(Exception):
    """Base exception for PulseMix errors."""

    status: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        if status is not None:
            self.status = status

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "message": self.message,
            "status": self.status,
            "code": self.code,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(PulseMixError):
    """Raised when client credentials or endpoints are not configured."""

    status = 500
    default_code = "NOT_CONFIGURED"


class InvalidRequestError(PulseMixError):
    """Raised for malformed caller input."""

    status = 400
    default_code = "INVALID_REQUEST"


class UnsupportedProviderError(PulseMixError):
    """Raised when a payload names a provider with no registered mapping."""

    status = 400
    default_code = "UNSUPPORTED_PROVIDER"

    def __init__(self, provider: str):
        super().__init__(
            f"Unsupported provider: {provider}",
            details={"provider": provider},
        )
        self.provider = provider


class NoMetricsError(PulseMixError):
    """Raised when mood inference runs before any wearable data was synced."""

    status = 400
    default_code = "NO_METRICS"

    def __init__(self, message: str = "No wearable data has been ingested yet."):
        super().__init__(message)


class MoodNotReadyError(PulseMixError):
    """Raised when a stored mood snapshot is required but none exists."""

    status = 404
    default_code = "MOOD_NOT_READY"


class ReauthRequiredError(PulseMixError):
    """Raised when stored credentials cannot be used or refreshed."""

    status = 401
    default_code = "REAUTH_REQUIRED"

    def __init__(
        self,
        message: str = "Authentication failed. Please re-authenticate.",
        auth_url: Optional[str] = None,
    ):
        super().__init__(message)
        self.auth_url = auth_url

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.auth_url:
            payload["authUrl"] = self.auth_url
        return payload


class AuthorizationError(PulseMixError):
    """Raised when an OAuth code exchange or refresh is rejected."""

    status = 401
    default_code = "AUTH_FAILED"


class ProviderRequestError(PulseMixError):
    """Non-auth HTTP failure from a metric provider endpoint."""

    status = 502
    default_code = "PROVIDER_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message, details={"status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class NoProviderDataError(PulseMixError):
    """Raised when a provider endpoint answers but holds no records."""

    status = 404
    default_code = "NO_PROVIDER_DATA"


class TokenExpiredError(PulseMixError):
    """Raised when the catalog search rejects the supplied access token."""

    status = 401
    default_code = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Spotify token expired"):
        super().__init__(message)


class SearchError(PulseMixError):
    """Non-auth catalog failure (rate limit, 5xx, transport)."""

    status = 502
    default_code = "SEARCH_FAILED"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class NoResultsError(PulseMixError):
    """Raised when every candidate search query came back empty."""

    status = 502
    default_code = "NO_RESULTS"

    def __init__(self, message: str = "Spotify search returned no tracks"):
        super().__init__(message)


class EnrichmentError(PulseMixError):
    """Raised when the LLM enrichment step fails."""

    status = 502
    default_code = "ENRICHMENT_FAILED"


class CallTimeoutError(PulseMixError):
    """Raised when an external call exceeds its deadline."""

    status = 504
    default_code = "TIMEOUT"
