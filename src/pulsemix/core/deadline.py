"""Deadline guard for awaited external calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from .errors import CallTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT = 15.0


async def with_deadline(awaitable: Awaitable[T], timeout: float, label: str) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    Cancellation from the caller propagates untouched; an expired deadline
    cancels the inner call and surfaces as ``CallTimeoutError``.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"{label} timed out after {timeout:.1f}s")
        raise CallTimeoutError(f"{label} timed out after {timeout:.1f}s") from e
