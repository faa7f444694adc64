"""
Trading asset lifecycle.

    watching ──buy──▶ bought ──sell──▶ sold
    sold ──add to trading──▶ watching | bought   (reactivation)

Target and stop-loss are always EUR and always derived from one reference
price: the EUR entry price once bought, the current EUR price while watching.
"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from financy.domain.trading.currency import round_money
from financy.domain.trading.entities import Holding, TradingAsset, TradingProfile, TradingStatus
from financy.domain.trading.errors import InvalidStateError

_HUNDRED = Decimal("100")
AVG_PRICE_QUANTUM = Decimal("0.000001")


def derive_thresholds(
    reference_eur: Optional[Decimal], profile: TradingProfile
) -> tuple[Optional[Decimal], Optional[Decimal]]:
    """Return (target, stop_loss) in EUR for a reference price."""
    if reference_eur is None:
        return None, None
    target = reference_eur * (1 + profile.target_profit_pct / _HUNDRED)
    stop = reference_eur * (1 - profile.max_loss_pct / _HUNDRED)
    return round_money(target), round_money(stop)


def realized_profit_pct(entry_eur: Decimal, exit_eur: Decimal) -> Decimal:
    if not entry_eur:
        return Decimal("0")
    return round_money((exit_eur - entry_eur) / entry_eur * _HUNDRED)


def start_watching(
    trading_asset: TradingAsset, current_eur: Optional[Decimal], profile: TradingProfile
) -> TradingAsset:
    """Put an asset (new or reactivated) on the watch list."""
    target, stop = derive_thresholds(current_eur, profile)
    return replace(
        _cleared(trading_asset),
        status=TradingStatus.WATCHING,
        target_price=target,
        stop_loss_price=stop,
    )


def enter_bought(
    trading_asset: TradingAsset,
    entry_eur: Decimal,
    entry_native: Decimal,
    quantity: Optional[Decimal],
    profile: TradingProfile,
    now: datetime,
) -> TradingAsset:
    """Transition to bought and recompute thresholds from the entry price.

    Raises:
        InvalidStateError: If the asset is already bought.
    """
    if trading_asset.status is TradingStatus.BOUGHT:
        raise InvalidStateError("trading asset", trading_asset.status.value, "buy")
    target, stop = derive_thresholds(entry_eur, profile)
    return replace(
        _cleared(trading_asset),
        status=TradingStatus.BOUGHT,
        entry_price=round_money(entry_eur),
        entry_price_native=entry_native,
        entry_date=now,
        quantity=quantity,
        target_price=target,
        stop_loss_price=stop,
    )


def enter_sold(
    trading_asset: TradingAsset,
    exit_eur: Decimal,
    exit_native: Optional[Decimal],
    now: datetime,
) -> TradingAsset:
    """Close a bought position.

    Raises:
        InvalidStateError: If the asset is not bought.
    """
    if trading_asset.status is not TradingStatus.BOUGHT or trading_asset.entry_price is None:
        raise InvalidStateError("trading asset", trading_asset.status.value, "sell")
    return replace(
        trading_asset,
        status=TradingStatus.SOLD,
        entry_price=None,
        entry_date=None,
        exit_price=round_money(exit_eur),
        exit_price_native=exit_native,
        exit_date=now,
        realized_profit_pct=realized_profit_pct(trading_asset.entry_price, exit_eur),
    )


def _cleared(trading_asset: TradingAsset) -> TradingAsset:
    return replace(
        trading_asset,
        entry_price=None,
        entry_price_native=None,
        entry_date=None,
        quantity=None,
        exit_price=None,
        exit_price_native=None,
        exit_date=None,
        realized_profit_pct=None,
    )


def add_lot(
    existing: Optional[Holding],
    portfolio_id: UUID,
    trading_asset: TradingAsset,
    quantity: Decimal,
    price_eur: Decimal,
) -> Holding:
    """Merge a bought lot into the portfolio holding (weighted average price)."""
    if existing is None:
        return Holding(
            portfolio_id=portfolio_id,
            asset_id=trading_asset.asset_id,
            quantity=quantity,
            avg_buy_price=price_eur,
            trading_asset_id=trading_asset.id,
        )
    total = existing.quantity + quantity
    average = (existing.quantity * existing.avg_buy_price + quantity * price_eur) / total
    return replace(
        existing,
        quantity=total,
        avg_buy_price=average.quantize(AVG_PRICE_QUANTUM),
        trading_asset_id=trading_asset.id,
    )
