"""
Use case: Analyze a trading asset (signal rule engine).

Input: trading_asset_id (optionally a pass-wide MarketSnapshot)
Output: AnalysisResult
Side effects:
    - Records a TradingSignal unless one with the same action exists inside
      the dedup window.
    - BUY/SELL signals are pushed in-app and to Telegram.
Failure cases:
    - TradingAssetNotFoundError if the trading asset does not exist.
    - InvalidStateError for sold assets.
    - DataUnavailableError when no usable price exists.
    - RateUnavailableError when the asset's currency has no EUR rate.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional
from uuid import UUID

from financy.application.trading.dtos import AnalysisResult, SignalPassResult
from financy.application.trading.guards import KeyedLocks, bounded
from financy.application.trading.market_snapshot import MarketSnapshot, MarketSnapshotLoader
from financy.domain.trading.entities import (
    Asset,
    NotificationChannel,
    NotificationMessage,
    TradeAction,
    TradingAsset,
    TradingProfile,
    TradingSignal,
    TradingStatus,
)
from financy.domain.trading.errors import (
    DataUnavailableError,
    InvalidStateError,
    ProfileNotFoundError,
    RateUnavailableError,
    TradingAssetNotFoundError,
)
from financy.domain.trading.ports import IndicatorPort, NotifierPort, UnitOfWork
from financy.domain.trading.signal_rules import (
    IndicatorSnapshot,
    SignalDecision,
    SignalInputs,
    build_snapshot,
    decide,
    thresholds_reached,
)

logger = logging.getLogger(__name__)

SIGNAL_DEDUP_WINDOW = timedelta(hours=4)
HOLD_REASON = "No notable conditions detected"
SIGNAL_CHANNELS = (NotificationChannel.IN_APP, NotificationChannel.TELEGRAM)
ANALYZED_STATUSES = (TradingStatus.WATCHING, TradingStatus.BOUGHT)

_ACTION_ICONS = {TradeAction.BUY: "🟢", TradeAction.SELL: "🔴"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalyzeTradingAssetUseCase:
    """Scores one trading asset and records the resulting signal.

    Analyses of the same trading asset are serialized so the dedup check
    and the insert cannot interleave.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        market: MarketSnapshotLoader,
        indicators: IndicatorPort,
        notifier: NotifierPort,
        timeout: float = 10.0,
        dedup_window: timedelta = SIGNAL_DEDUP_WINDOW,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._market = market
        self._indicators = indicators
        self._notifier = notifier
        self._timeout = timeout
        self._dedup_window = dedup_window
        self._locks = locks or KeyedLocks()
        self._clock = clock

    async def execute(
        self, trading_asset_id: UUID, snapshot: Optional[MarketSnapshot] = None
    ) -> AnalysisResult:
        async with self._locks(trading_asset_id):
            trading_asset = await self._uow.trading.get_trading_asset(trading_asset_id)
            if trading_asset is None:
                raise TradingAssetNotFoundError(str(trading_asset_id))
            if trading_asset.status is TradingStatus.SOLD:
                raise InvalidStateError("trading asset", trading_asset.status.value, "analyze")

            profile = await self._uow.trading.get_profile(trading_asset.profile_id)
            if profile is None:
                raise ProfileNotFoundError(str(trading_asset.profile_id))

            now = self._clock()
            if snapshot is None or trading_asset.asset_id not in snapshot.assets:
                snapshot = await self._market.load([trading_asset.asset_id], now)

            asset = snapshot.assets.get(trading_asset.asset_id)
            price = snapshot.price(trading_asset.asset_id)
            if asset is None or price is None:
                raise DataUnavailableError(str(trading_asset.asset_id), "no current price")
            price_eur = snapshot.price_eur(asset.id)
            if price_eur is None:
                raise RateUnavailableError(asset.currency or "USD")

            indicators = await self._indicator_snapshot(asset, price)
            target_reached, stop_reached = thresholds_reached(trading_asset, price_eur)
            decision = decide(
                SignalInputs(
                    status=trading_asset.status,
                    indicators=indicators,
                    current_price_native=price,
                    entry_price_native=trading_asset.entry_price_native or trading_asset.entry_price,
                    target_reached=target_reached,
                    stop_loss_reached=stop_reached,
                )
            )
            criteria = {
                **indicators.as_criteria(),
                "targetReached": target_reached,
                "stopLossReached": stop_reached,
                "priceEur": float(price_eur),
                "currency": asset.currency,
                "score": decision.score,
                "rules": list(decision.fired),
            }
            reason = decision.reason or HOLD_REASON
            created = await self._record(
                trading_asset, profile, asset, decision, reason, price, price_eur, criteria, now
            )

        return AnalysisResult(
            trading_asset_id=trading_asset.id,
            action=decision.action,
            confidence=decision.confidence,
            reason=reason,
            price=price,
            price_eur=price_eur,
            signal_created=created,
            criteria=criteria,
        )

    async def _indicator_snapshot(self, asset: Asset, price) -> IndicatorSnapshot:
        readings, sentiment = await asyncio.gather(
            bounded(self._indicators.get_indicators(asset.id), self._timeout, f"{asset.symbol} indicators"),
            bounded(self._indicators.get_news_sentiment(asset.id), self._timeout, f"{asset.symbol} sentiment"),
        )
        return build_snapshot(readings, price, asset.volume, asset.average_volume, sentiment)

    async def _record(
        self,
        trading_asset: TradingAsset,
        profile: TradingProfile,
        asset: Asset,
        decision: SignalDecision,
        reason: str,
        price,
        price_eur,
        criteria: dict,
        now: datetime,
    ) -> bool:
        existing = await self._uow.trading.find_recent_signal(
            trading_asset.id, decision.action, now - self._dedup_window
        )
        if existing is not None:
            logger.debug(
                "%s signal for %s already recorded at %s", decision.action.value, asset.symbol, existing.created_at
            )
            return False

        signal = TradingSignal(
            trading_asset_id=trading_asset.id,
            action=decision.action,
            confidence=decision.confidence,
            reason=reason,
            price_at_signal=price,
            criteria=criteria,
            created_at=now,
        )
        await self._uow.trading.add_signal(signal)
        logger.info(
            "%s signal for %s (%s confidence, score %d)",
            decision.action.value, asset.symbol, decision.confidence.value, decision.score,
        )

        if decision.action is not TradeAction.HOLD:
            message = self._message(trading_asset, asset, decision, reason, price, price_eur)
            summary = await self._notifier.notify(profile.user_id, SIGNAL_CHANNELS, message)
            if summary.delivered:
                await self._uow.trading.mark_signal_notified(signal.id)
        return True

    @staticmethod
    def _message(trading_asset, asset, decision, reason, price, price_eur) -> NotificationMessage:
        lines = [
            f"{decision.action.value} signal for {asset.symbol} ({decision.confidence.value} confidence)",
            f"Price: €{price_eur:.2f}",
        ]
        entry_native = trading_asset.entry_price_native
        if trading_asset.status is TradingStatus.BOUGHT and entry_native:
            profit = (price - entry_native) / entry_native * 100
            lines.append(f"P/L: {profit:+.1f}%")
        if trading_asset.target_price is not None:
            lines.append(f"Target: €{trading_asset.target_price:.2f}")
        if trading_asset.stop_loss_price is not None:
            lines.append(f"Stop-loss: €{trading_asset.stop_loss_price:.2f}")
        lines.append(reason)
        return NotificationMessage(
            title=f"{_ACTION_ICONS[decision.action]} {decision.action.value} {asset.symbol}",
            body="\n".join(lines),
            kind="trading_signal",
            data={
                "tradingAssetId": str(trading_asset.id),
                "symbol": asset.symbol,
                "action": decision.action.value,
                "confidence": decision.confidence.value,
                "priceEur": float(price_eur),
            },
        )


class RunSignalPassUseCase:
    """Analyzes every watched or bought asset of the profiles that are due.

    A profile is due when its ``analysis_interval`` (minutes, 0 disables)
    has elapsed since ``last_analysis_at``. One market snapshot is shared
    by all analyses of the pass; a failure on one asset never stops the
    others.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        market: MarketSnapshotLoader,
        analyze: AnalyzeTradingAssetUseCase,
        max_concurrency: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._market = market
        self._analyze = analyze
        self._max_concurrency = max(1, max_concurrency)
        self._clock = clock

    async def execute(self, force: bool = False) -> SignalPassResult:
        now = self._clock()
        profiles = [p for p in await self._uow.trading.list_profiles() if force or self._is_due(p, now)]
        if not profiles:
            return SignalPassResult()

        trading_assets: list[TradingAsset] = []
        for profile in profiles:
            trading_assets.extend(await self._uow.trading.list_trading_assets(profile.id, ANALYZED_STATUSES))

        snapshot = await self._market.load({ta.asset_id for ta in trading_assets}, now)
        outcomes = await self._analyze_all(trading_assets, snapshot)

        for profile in profiles:
            await self._uow.trading.mark_profile_run(profile.id, analysis_at=now)

        result = SignalPassResult(
            profiles=len(profiles),
            analyzed=sum(1 for o in outcomes if isinstance(o, AnalysisResult)),
            signals_created=sum(1 for o in outcomes if isinstance(o, AnalysisResult) and o.signal_created),
            skipped=outcomes.count("skipped"),
            failed=outcomes.count("failed"),
        )
        logger.info(
            "Signal pass: %d profiles, %d analyzed, %d signals, %d skipped, %d failed",
            result.profiles, result.analyzed, result.signals_created, result.skipped, result.failed,
        )
        return result

    async def _analyze_all(self, trading_assets: Iterable[TradingAsset], snapshot: MarketSnapshot) -> list:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(trading_asset: TradingAsset):
            async with semaphore:
                try:
                    return await self._analyze.execute(trading_asset.id, snapshot)
                except (DataUnavailableError, RateUnavailableError, InvalidStateError) as exc:
                    logger.info("Analysis of %s skipped: %s", trading_asset.id, exc.message)
                    return "skipped"
                except Exception:
                    logger.exception("Analysis of %s failed", trading_asset.id)
                    return "failed"

        return list(await asyncio.gather(*(run(ta) for ta in trading_assets)))

    @staticmethod
    def _is_due(profile: TradingProfile, now: datetime) -> bool:
        if profile.analysis_interval <= 0:
            return False
        if profile.last_analysis_at is None:
            return True
        return now - profile.last_analysis_at >= timedelta(minutes=profile.analysis_interval)
