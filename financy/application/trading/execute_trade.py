"""
Use case: Execute a simulated trade against the profile's cash balance.

Input: trading_asset_id (+ quantity for buys)
Output: the updated TradingAsset
Side effects (one transaction per trade):
    Buy:  status → bought, cash -= price_eur × quantity, holding in the
          "Trading" portfolio created or averaged in, latest BUY signal
          marked executed.
    Sell: status → sold, cash += price_eur × quantity, trading holding
          removed, latest SELL signal marked executed.
Failure cases:
    - InvalidQuantityError for a non-positive quantity.
    - InvalidStateError if the trading asset is not in the right status.
    - InsufficientFundsError (nothing is written).
    - DataUnavailableError when no live or recent price exists.
    - RateUnavailableError when only an approximate EUR rate is known.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from financy.application.trading.guards import CACHED_QUOTE_MAX_AGE, KeyedLocks, bounded, effective_price
from financy.domain.trading.currency import CurrencyNormalizer, round_money
from financy.domain.trading.entities import Asset, Quote, TradeAction, TradingAsset, TradingProfile, TradingStatus
from financy.domain.trading.errors import (
    AssetNotFoundError,
    DataUnavailableError,
    InsufficientFundsError,
    InvalidQuantityError,
    InvalidStateError,
    ProfileNotFoundError,
    TradingAssetNotFoundError,
)
from financy.domain.trading.lifecycle import add_lot, enter_bought, enter_sold
from financy.domain.trading.ports import PriceFeedPort, UnitOfWork

logger = logging.getLogger(__name__)

TRADING_PORTFOLIO = "Trading"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TradeExecutor:
    """Buys and sells trading assets.

    Trades of one profile are serialized: the funds check and the cash
    movement of one trade never interleave with another trade's.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        price_feed: PriceFeedPort,
        normalizer: CurrencyNormalizer,
        timeout: float = 10.0,
        locks: Optional[KeyedLocks] = None,
        cached_quote_max_age: timedelta = CACHED_QUOTE_MAX_AGE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._price_feed = price_feed
        self._normalizer = normalizer
        self._timeout = timeout
        self._locks = locks or KeyedLocks()
        self._cached_quote_max_age = cached_quote_max_age
        self._clock = clock

    async def buy(self, trading_asset_id: UUID, quantity: Decimal) -> TradingAsset:
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError(str(quantity))

        trading_asset = await self._load(trading_asset_id)
        async with self._locks(trading_asset.profile_id):
            trading_asset = await self._load(trading_asset_id)
            if trading_asset.status is not TradingStatus.WATCHING:
                raise InvalidStateError("trading asset", trading_asset.status.value, "buy")

            profile = await self._profile(trading_asset)
            asset = await self._asset(trading_asset)
            now = self._clock()
            quote, price, price_eur = await self._price(asset, now)

            total = round_money(price_eur * quantity)
            if profile.cash_balance < total:
                raise InsufficientFundsError(f"€{total:.2f}", f"€{profile.cash_balance:.2f}")

            bought = enter_bought(trading_asset, price_eur, price, quantity, profile, now)
            async with self._uow.atomic() as tx:
                if quote is not None:
                    await tx.assets.update_quote(asset.id, quote, now)
                await tx.trading.save_trading_asset(bought)
                await tx.trading.adjust_cash(profile.id, -total)
                portfolio = await tx.portfolios.get_or_create(profile.user_id, TRADING_PORTFOLIO)
                existing = await tx.portfolios.get_holding(portfolio.id, asset.id)
                await tx.portfolios.save_holding(add_lot(existing, portfolio.id, bought, quantity, price_eur))
                await tx.trading.mark_latest_signal_executed(bought.id, TradeAction.BUY)

        logger.info("Bought %s %s at €%s (total €%s)", quantity, asset.symbol, price_eur, total)
        return bought

    async def sell(self, trading_asset_id: UUID) -> TradingAsset:
        trading_asset = await self._load(trading_asset_id)
        async with self._locks(trading_asset.profile_id):
            trading_asset = await self._load(trading_asset_id)
            if trading_asset.status is not TradingStatus.BOUGHT:
                raise InvalidStateError("trading asset", trading_asset.status.value, "sell")

            profile = await self._profile(trading_asset)
            asset = await self._asset(trading_asset)
            now = self._clock()
            quote, price, price_eur = await self._price(asset, now)

            quantity = trading_asset.quantity or Decimal("0")
            proceeds = round_money(price_eur * quantity)
            sold = enter_sold(trading_asset, price_eur, price, now)
            async with self._uow.atomic() as tx:
                if quote is not None:
                    await tx.assets.update_quote(asset.id, quote, now)
                await tx.trading.save_trading_asset(sold)
                await tx.trading.adjust_cash(profile.id, proceeds)
                portfolio = await tx.portfolios.find(profile.user_id, TRADING_PORTFOLIO)
                if portfolio is not None:
                    await tx.portfolios.delete_trading_holding(portfolio.id, sold.id)
                await tx.trading.mark_latest_signal_executed(sold.id, TradeAction.SELL)

        logger.info(
            "Sold %s %s at €%s (proceeds €%s, %s%%)",
            quantity, asset.symbol, price_eur, proceeds, sold.realized_profit_pct,
        )
        return sold

    async def _load(self, trading_asset_id: UUID) -> TradingAsset:
        trading_asset = await self._uow.trading.get_trading_asset(trading_asset_id)
        if trading_asset is None:
            raise TradingAssetNotFoundError(str(trading_asset_id))
        return trading_asset

    async def _profile(self, trading_asset: TradingAsset) -> TradingProfile:
        profile = await self._uow.trading.get_profile(trading_asset.profile_id)
        if profile is None:
            raise ProfileNotFoundError(str(trading_asset.profile_id))
        return profile

    async def _asset(self, trading_asset: TradingAsset) -> Asset:
        asset = await self._uow.assets.get(trading_asset.asset_id)
        if asset is None:
            raise AssetNotFoundError(str(trading_asset.asset_id))
        return asset

    async def _price(self, asset: Asset, now: datetime) -> tuple[Optional[Quote], Decimal, Decimal]:
        """Live quote (or fresh cached price), native and EUR."""
        try:
            quote = await bounded(self._price_feed.get_quote(asset.symbol), self._timeout, asset.symbol)
        except DataUnavailableError as exc:
            logger.warning("Live quote unavailable: %s", exc.message)
            quote = None
        price = effective_price(asset, quote, now, self._cached_quote_max_age)
        if price is None:
            raise DataUnavailableError(asset.symbol, "no live or recent price")
        currency = quote.currency if quote is not None else asset.currency
        rate = await self._normalizer.rate_for(currency, firm=True)
        return quote, price, round_money(price * rate)
