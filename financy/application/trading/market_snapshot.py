"""
Per-pass market snapshot.

Loads the assets an evaluation pass needs, refreshes their quotes from the
price feed (one bounded call per asset, in parallel) and fetches EUR rates
once for every currency involved. The snapshot is read-only and shared by
every entity evaluated in the pass.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from financy.application.trading.guards import CACHED_QUOTE_MAX_AGE, bounded, effective_price
from financy.domain.trading.currency import CurrencyNormalizer, EurRates, Money
from financy.domain.trading.entities import Asset, Quote
from financy.domain.trading.errors import DataUnavailableError, RateUnavailableError
from financy.domain.trading.ports import PriceFeedPort, UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketSnapshot:
    """Assets with their effective native prices and the pass-wide EUR rates."""

    assets: dict[UUID, Asset]
    prices: dict[UUID, Optional[Decimal]]
    rates: EurRates

    def price(self, asset_id: UUID) -> Optional[Decimal]:
        return self.prices.get(asset_id)

    def price_eur(self, asset_id: UUID) -> Optional[Decimal]:
        asset = self.assets.get(asset_id)
        price = self.prices.get(asset_id)
        if asset is None or price is None:
            return None
        try:
            return self.rates.to_eur(Money.of(price, asset.currency)).amount
        except RateUnavailableError as exc:
            logger.warning("No EUR price for %s: %s", asset.symbol, exc.message)
            return None


def _apply_quote(asset: Asset, quote: Quote, now: datetime) -> Asset:
    return replace(
        asset,
        current_price=quote.price,
        previous_close=quote.previous_close if quote.previous_close is not None else asset.previous_close,
        change_percent=quote.change_percent if quote.change_percent is not None else asset.change_percent,
        volume=quote.volume if quote.volume is not None else asset.volume,
        currency=quote.currency or asset.currency,
        updated_at=now,
    )


class MarketSnapshotLoader:
    """Builds ``MarketSnapshot`` objects.

    Args:
        uow: Store access (asset reads and quote cache writes).
        price_feed: Live quote source.
        normalizer: EUR rate source.
        timeout: Bound for each quote request.
        max_concurrency: Quote requests in flight at once.
        cached_quote_max_age: How old a cached price may be when the
            live quote is unavailable.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        price_feed: PriceFeedPort,
        normalizer: CurrencyNormalizer,
        timeout: float = 10.0,
        max_concurrency: int = 8,
        cached_quote_max_age: timedelta = CACHED_QUOTE_MAX_AGE,
    ) -> None:
        self._uow = uow
        self._price_feed = price_feed
        self._normalizer = normalizer
        self._timeout = timeout
        self._max_concurrency = max(1, max_concurrency)
        self._cached_quote_max_age = cached_quote_max_age

    async def load(self, asset_ids: Iterable[UUID], now: datetime) -> MarketSnapshot:
        assets = await self._uow.assets.get_many(asset_ids)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def refresh(asset: Asset) -> Optional[Quote]:
            async with semaphore:
                return await self._refresh(asset, now)

        ordered = list(assets.values())
        quotes = await asyncio.gather(*(refresh(asset) for asset in ordered))

        refreshed: dict[UUID, Asset] = {}
        prices: dict[UUID, Optional[Decimal]] = {}
        for asset, quote in zip(ordered, quotes):
            prices[asset.id] = effective_price(asset, quote, now, self._cached_quote_max_age)
            refreshed[asset.id] = _apply_quote(asset, quote, now) if quote is not None else asset

        rates = await self._normalizer.snapshot(a.currency for a in refreshed.values())
        return MarketSnapshot(assets=refreshed, prices=prices, rates=rates)

    async def _refresh(self, asset: Asset, now: datetime) -> Optional[Quote]:
        try:
            quote = await bounded(self._price_feed.get_quote(asset.symbol), self._timeout, asset.symbol)
        except DataUnavailableError as exc:
            logger.warning("Quote unavailable: %s", exc.message)
            return None
        except Exception:
            logger.exception("Quote for %s failed", asset.symbol)
            return None
        if quote is None:
            return None
        try:
            await self._uow.assets.update_quote(asset.id, quote, now)
        except Exception:
            logger.exception("Could not cache quote for %s", asset.symbol)
        return quote
