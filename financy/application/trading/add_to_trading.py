"""
Use case: Put an asset on a profile's trading list.

Input: AddToTradingCommand
Output: TradingAsset (watching, or bought for an existing position)
Side effects: Inserts the trading asset, or reactivates a sold one in place.
    No cash is moved: an existing position was paid for elsewhere.
Failure cases:
    - ProfileNotFoundError / AssetNotFoundError.
    - AlreadyTrackedError if the asset is watched or bought already.
    - InvalidQuantityError for a non-positive quantity.
    - DataUnavailableError for a position without entry or cached price.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from financy.application.trading.dtos import AddToTradingCommand
from financy.domain.trading.currency import EUR, CurrencyNormalizer, round_money, round_rate
from financy.domain.trading.entities import Asset, TradingAsset, TradingStatus
from financy.domain.trading.errors import (
    AlreadyTrackedError,
    AssetNotFoundError,
    DataUnavailableError,
    InvalidQuantityError,
    ProfileNotFoundError,
)
from financy.domain.trading.lifecycle import enter_bought, start_watching
from financy.domain.trading.ports import UnitOfWork

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AddToTradingUseCase:
    """Creates or reactivates a trading asset.

    Thresholds come from the cached EUR price of the asset (watching) or
    from the entry price (bought).
    """

    def __init__(
        self,
        uow: UnitOfWork,
        normalizer: CurrencyNormalizer,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._normalizer = normalizer
        self._clock = clock

    async def execute(self, command: AddToTradingCommand, uow: Optional[UnitOfWork] = None) -> TradingAsset:
        """Run against ``uow`` when given (to join a caller's transaction)."""
        uow = uow or self._uow
        if command.quantity is not None and command.quantity <= 0:
            raise InvalidQuantityError(str(command.quantity))

        profile = await uow.trading.get_profile(command.profile_id)
        if profile is None:
            raise ProfileNotFoundError(str(command.profile_id))
        asset = await uow.assets.get(command.asset_id)
        if asset is None:
            raise AssetNotFoundError(str(command.asset_id))

        existing = await uow.trading.find_trading_asset(profile.id, asset.id)
        if existing is not None and existing.status is not TradingStatus.SOLD:
            raise AlreadyTrackedError(str(asset.id))

        base = existing or TradingAsset(profile_id=profile.id, asset_id=asset.id)
        rate = await self._normalizer.rate_for(asset.currency)
        current_eur = self._current_eur(asset, rate)

        if command.status is TradingStatus.BOUGHT:
            entry_eur, entry_native = self._entry_prices(command, asset, rate, current_eur)
            trading_asset = enter_bought(base, entry_eur, entry_native, command.quantity, profile, self._clock())
        else:
            trading_asset = start_watching(base, current_eur, profile)

        if existing is not None:
            await uow.trading.save_trading_asset(trading_asset)
            logger.info("Reactivated %s for profile %s as %s", asset.symbol, profile.id, trading_asset.status.value)
        else:
            await uow.trading.add_trading_asset(trading_asset)
            logger.info("Added %s to profile %s as %s", asset.symbol, profile.id, trading_asset.status.value)
        return trading_asset

    @staticmethod
    def _current_eur(asset: Asset, rate: Decimal) -> Optional[Decimal]:
        if asset.current_price is None:
            return None
        return round_money(asset.current_price * rate)

    @staticmethod
    def _entry_prices(
        command: AddToTradingCommand, asset: Asset, rate: Decimal, current_eur: Optional[Decimal]
    ) -> tuple[Decimal, Decimal]:
        if command.entry_price is not None:
            native = command.entry_price if asset.currency == EUR else round_rate(command.entry_price / rate)
            return command.entry_price, native
        if current_eur is None:
            raise DataUnavailableError(asset.symbol, "no price to use as entry price")
        return current_eur, asset.current_price
