"""
Adapter: Trading repository.

Implements TradingRepository port over ``trading_profiles``,
``trading_assets`` and ``trading_signals``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import insert, select, update

from financy.domain.trading.entities import (
    Confidence,
    Horizon,
    RiskTolerance,
    TradeAction,
    TradingAsset,
    TradingProfile,
    TradingSignal,
    TradingStatus,
    TradingStyle,
)
from financy.domain.trading.ports import TradingRepository
from financy.infrastructure.trading.base import SqlRepository, parse_enum, to_decimal
from financy.infrastructure.trading.tables import trading_assets, trading_profiles, trading_signals


def _to_profile(row) -> TradingProfile:
    return TradingProfile(
        id=row["id"],
        user_id=row["user_id"],
        horizon=parse_enum(Horizon, row["horizon"], Horizon.MEDIUM),
        risk_tolerance=parse_enum(RiskTolerance, row["risk_tolerance"], RiskTolerance.MODERATE),
        target_profit_pct=to_decimal(row["target_profit_pct"]),
        max_loss_pct=to_decimal(row["max_loss_pct"]),
        preferred_sectors=tuple(row["preferred_sectors"] or ()),
        trading_style=parse_enum(TradingStyle, row["trading_style"], TradingStyle.SWING),
        cash_balance=to_decimal(row["cash_balance"]),
        analysis_interval=row["analysis_interval"],
        suggestion_interval=row["suggestion_interval"],
        resuggest_dismissed_after_days=row["resuggest_dismissed_after_days"],
        resuggest_accepted_after_days=row["resuggest_accepted_after_days"],
        last_analysis_at=row["last_analysis_at"],
        last_suggestion_at=row["last_suggestion_at"],
    )


def _to_trading_asset(row) -> TradingAsset:
    return TradingAsset(
        id=row["id"],
        profile_id=row["profile_id"],
        asset_id=row["asset_id"],
        status=TradingStatus(row["status"]),
        entry_price=to_decimal(row["entry_price"]),
        entry_price_native=to_decimal(row["entry_price_native"]),
        entry_date=row["entry_date"],
        quantity=to_decimal(row["quantity"]),
        target_price=to_decimal(row["target_price"]),
        stop_loss_price=to_decimal(row["stop_loss_price"]),
        exit_price=to_decimal(row["exit_price"]),
        exit_price_native=to_decimal(row["exit_price_native"]),
        exit_date=row["exit_date"],
        realized_profit_pct=to_decimal(row["realized_profit_pct"]),
    )


def _to_signal(row) -> TradingSignal:
    return TradingSignal(
        id=row["id"],
        trading_asset_id=row["trading_asset_id"],
        action=TradeAction(row["action"]),
        confidence=Confidence(row["confidence"]),
        reason=row["reason"],
        price_at_signal=to_decimal(row["price_at_signal"]),
        criteria=row["criteria"] or {},
        notified=bool(row["notified"]),
        executed=bool(row["executed"]),
        created_at=row["created_at"],
    )


def _trading_asset_values(trading_asset: TradingAsset) -> dict:
    return {
        "status": trading_asset.status.value,
        "entry_price": trading_asset.entry_price,
        "entry_price_native": trading_asset.entry_price_native,
        "entry_date": trading_asset.entry_date,
        "quantity": trading_asset.quantity,
        "target_price": trading_asset.target_price,
        "stop_loss_price": trading_asset.stop_loss_price,
        "exit_price": trading_asset.exit_price,
        "exit_price_native": trading_asset.exit_price_native,
        "exit_date": trading_asset.exit_date,
        "realized_profit_pct": trading_asset.realized_profit_pct,
    }


class SqlTradingRepository(SqlRepository, TradingRepository):
    """SQL implementation of the trading repository."""

    # ── Profiles ────────────────────────────────────────────────────

    async def get_profile(self, profile_id: UUID) -> Optional[TradingProfile]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(trading_profiles).where(trading_profiles.c.id == profile_id)
            )
            row = result.mappings().first()
        return _to_profile(row) if row else None

    async def list_profiles(self) -> list[TradingProfile]:
        async with self._connect() as conn:
            result = await conn.execute(select(trading_profiles))
            rows = result.mappings().all()
        return [_to_profile(row) for row in rows]

    async def add_profile(self, profile: TradingProfile) -> TradingProfile:
        async with self._connect() as conn:
            await conn.execute(
                insert(trading_profiles).values(
                    id=profile.id,
                    user_id=profile.user_id,
                    horizon=profile.horizon.value,
                    risk_tolerance=profile.risk_tolerance.value,
                    target_profit_pct=profile.target_profit_pct,
                    max_loss_pct=profile.max_loss_pct,
                    preferred_sectors=list(profile.preferred_sectors),
                    trading_style=profile.trading_style.value,
                    cash_balance=profile.cash_balance,
                    analysis_interval=profile.analysis_interval,
                    suggestion_interval=profile.suggestion_interval,
                    resuggest_dismissed_after_days=profile.resuggest_dismissed_after_days,
                    resuggest_accepted_after_days=profile.resuggest_accepted_after_days,
                    last_analysis_at=profile.last_analysis_at,
                    last_suggestion_at=profile.last_suggestion_at,
                )
            )
        return profile

    async def adjust_cash(self, profile_id: UUID, delta: Decimal) -> None:
        async with self._connect() as conn:
            await conn.execute(
                update(trading_profiles)
                .where(trading_profiles.c.id == profile_id)
                .values(cash_balance=trading_profiles.c.cash_balance + delta)
            )

    async def mark_profile_run(
        self,
        profile_id: UUID,
        analysis_at: Optional[datetime] = None,
        suggestion_at: Optional[datetime] = None,
    ) -> None:
        values = {}
        if analysis_at is not None:
            values["last_analysis_at"] = analysis_at
        if suggestion_at is not None:
            values["last_suggestion_at"] = suggestion_at
        if not values:
            return
        async with self._connect() as conn:
            await conn.execute(
                update(trading_profiles).where(trading_profiles.c.id == profile_id).values(**values)
            )

    # ── Trading assets ──────────────────────────────────────────────

    async def get_trading_asset(self, trading_asset_id: UUID) -> Optional[TradingAsset]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(trading_assets).where(trading_assets.c.id == trading_asset_id)
            )
            row = result.mappings().first()
        return _to_trading_asset(row) if row else None

    async def find_trading_asset(self, profile_id: UUID, asset_id: UUID) -> Optional[TradingAsset]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(trading_assets).where(
                    trading_assets.c.profile_id == profile_id,
                    trading_assets.c.asset_id == asset_id,
                )
            )
            row = result.mappings().first()
        return _to_trading_asset(row) if row else None

    async def list_trading_assets(
        self, profile_id: UUID, statuses: Optional[Iterable[TradingStatus]] = None
    ) -> list[TradingAsset]:
        query = select(trading_assets).where(trading_assets.c.profile_id == profile_id)
        if statuses is not None:
            query = query.where(trading_assets.c.status.in_([s.value for s in statuses]))
        async with self._connect() as conn:
            result = await conn.execute(query.order_by(trading_assets.c.created_at))
            rows = result.mappings().all()
        return [_to_trading_asset(row) for row in rows]

    async def add_trading_asset(self, trading_asset: TradingAsset) -> TradingAsset:
        async with self._connect() as conn:
            await conn.execute(
                insert(trading_assets).values(
                    id=trading_asset.id,
                    profile_id=trading_asset.profile_id,
                    asset_id=trading_asset.asset_id,
                    **_trading_asset_values(trading_asset),
                )
            )
        return trading_asset

    async def save_trading_asset(self, trading_asset: TradingAsset) -> None:
        async with self._connect() as conn:
            await conn.execute(
                update(trading_assets)
                .where(trading_assets.c.id == trading_asset.id)
                .values(**_trading_asset_values(trading_asset))
            )

    # ── Signals ─────────────────────────────────────────────────────

    async def find_recent_signal(
        self, trading_asset_id: UUID, action: TradeAction, since: datetime
    ) -> Optional[TradingSignal]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(trading_signals)
                .where(
                    trading_signals.c.trading_asset_id == trading_asset_id,
                    trading_signals.c.action == action.value,
                    trading_signals.c.created_at >= since,
                )
                .order_by(trading_signals.c.created_at.desc())
                .limit(1)
            )
            row = result.mappings().first()
        return _to_signal(row) if row else None

    async def add_signal(self, signal: TradingSignal) -> None:
        async with self._connect() as conn:
            await conn.execute(
                insert(trading_signals).values(
                    id=signal.id,
                    trading_asset_id=signal.trading_asset_id,
                    action=signal.action.value,
                    confidence=signal.confidence.value,
                    reason=signal.reason,
                    price_at_signal=signal.price_at_signal,
                    criteria=signal.criteria,
                    notified=signal.notified,
                    executed=signal.executed,
                    created_at=signal.created_at,
                )
            )

    async def mark_signal_notified(self, signal_id: UUID) -> None:
        async with self._connect() as conn:
            await conn.execute(
                update(trading_signals).where(trading_signals.c.id == signal_id).values(notified=True)
            )

    async def mark_latest_signal_executed(self, trading_asset_id: UUID, action: TradeAction) -> None:
        async with self._connect() as conn:
            result = await conn.execute(
                select(trading_signals.c.id)
                .where(
                    trading_signals.c.trading_asset_id == trading_asset_id,
                    trading_signals.c.action == action.value,
                    trading_signals.c.executed.is_(False),
                )
                .order_by(trading_signals.c.created_at.desc())
                .limit(1)
            )
            signal_id = result.scalar_one_or_none()
            if signal_id is not None:
                await conn.execute(
                    update(trading_signals).where(trading_signals.c.id == signal_id).values(executed=True)
                )

    async def list_signals(self, trading_asset_id: UUID) -> list[TradingSignal]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(trading_signals)
                .where(trading_signals.c.trading_asset_id == trading_asset_id)
                .order_by(trading_signals.c.created_at)
            )
            rows = result.mappings().all()
        return [_to_signal(row) for row in rows]
