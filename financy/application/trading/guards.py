"""
Timeout and serialization helpers shared by the use cases.
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Hashable, Optional, TypeVar

from financy.domain.trading.entities import Asset, Quote
from financy.domain.trading.errors import DataUnavailableError

T = TypeVar("T")

CACHED_QUOTE_MAX_AGE = timedelta(minutes=5)


async def bounded(awaitable: Awaitable[T], timeout: float, subject: str) -> T:
    """Await a collaborator call; a timeout becomes DataUnavailableError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise DataUnavailableError(subject, f"timed out after {timeout:.1f}s") from exc


def effective_price(
    asset: Asset,
    quote: Optional[Quote],
    now: datetime,
    max_age: timedelta = CACHED_QUOTE_MAX_AGE,
) -> Optional[Decimal]:
    """Live quote price, else the cached asset price if it is fresh enough."""
    if quote is not None:
        return quote.price
    if asset.current_price is None or asset.updated_at is None:
        return None
    if now - asset.updated_at > max_age:
        return None
    return asset.current_price


class KeyedLocks:
    """One ``asyncio.Lock`` per key, created on first use.

    Locks are held weakly: an entry disappears once no task holds or waits
    on its lock.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __call__(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)
