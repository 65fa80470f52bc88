"""
Metric provider integrations.

Modules:
    - tokens: OAuth token lifecycle (store, refresh, retry-once wrapper)
    - whoop: WHOOP OAuth endpoints and latest-data fetch
"""

from .tokens import (
    EXPIRY_BUFFER_SECONDS,
    OAuthClient,
    TokenLifecycleManager,
    TokenRecord,
    TokenStore,
    is_unauthorized,
)
from .whoop import (
    WHOOP_SCOPES,
    WhoopDataSource,
    WhoopOAuthClient,
    build_whoop_payload,
    latest_record,
)

__all__ = [
    # Tokens
    "EXPIRY_BUFFER_SECONDS",
    "OAuthClient",
    "TokenLifecycleManager",
    "TokenRecord",
    "TokenStore",
    "is_unauthorized",
    # WHOOP
    "WHOOP_SCOPES",
    "WhoopDataSource",
    "WhoopOAuthClient",
    "build_whoop_payload",
    "latest_record",
]
