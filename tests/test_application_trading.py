"""
Tests for the trading use cases, run against a SQLite store with in-memory
price, FX, indicator and notification collaborators.

    1. EvaluateAlertsUseCase / CreateAlertUseCase / GetAlertTrackingUseCase
    2. AddToTradingUseCase
    3. TradeExecutor / KeyedLocks
    4. AnalyzeTradingAssetUseCase / RunSignalPassUseCase
    5. GenerateSuggestionsUseCase / ReviewSuggestionUseCase / RunSuggestionPassUseCase
"""

import asyncio
import gc
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest

from financy.application.trading.add_to_trading import AddToTradingUseCase
from financy.application.trading.analyze_trading_asset import (
    HOLD_REASON,
    SIGNAL_CHANNELS,
    AnalyzeTradingAssetUseCase,
    RunSignalPassUseCase,
)
from financy.application.trading.create_alert import CreateAlertUseCase
from financy.application.trading.dtos import AddToTradingCommand, CreateAlertCommand
from financy.application.trading.evaluate_alerts import EvaluateAlertsUseCase
from financy.application.trading.execute_trade import TRADING_PORTFOLIO, TradeExecutor
from financy.application.trading.generate_suggestions import (
    GenerateSuggestionsUseCase,
    RunSuggestionPassUseCase,
)
from financy.application.trading.get_alert_tracking import GetAlertTrackingUseCase
from financy.application.trading.guards import KeyedLocks
from financy.application.trading.market_snapshot import MarketSnapshotLoader
from financy.application.trading.review_suggestion import ReviewSuggestionUseCase
from financy.domain.trading.alert_evaluator import AlertEvaluator
from financy.domain.trading.currency import CurrencyNormalizer
from financy.domain.trading.entities import (
    Alert,
    AlertType,
    Asset,
    Confidence,
    Holding,
    Horizon,
    IndicatorReading,
    MarketCandidate,
    MoverCategory,
    NotificationChannel,
    RiskLevel,
    RiskTolerance,
    SuggestionStatus,
    TradeAction,
    TradingAsset,
    TradingProfile,
    TradingSignal,
    TradingStatus,
    TradingSuggestion,
)
from financy.domain.trading.errors import (
    AlertNotFoundError,
    AlreadyTrackedError,
    AssetNotFoundError,
    DataUnavailableError,
    InsufficientFundsError,
    InvalidQuantityError,
    InvalidStateError,
    RateUnavailableError,
    SuggestionNotFoundError,
    TradingAssetNotFoundError,
    UnsupportedAlertTypeError,
)
from financy.domain.trading.suggestion_scorer import SuggestionScorer
from tests.conftest import NOW, FakeFxFeed, FakePriceFeed, RecordingNotifier

D = Decimal


# ══════════════════════════════════════════════════════════════════════
# Helpers
# ══════════════════════════════════════════════════════════════════════


async def _asset(uow, symbol: str, price: Optional[str] = None, currency: str = "EUR", **kwargs) -> Asset:
    return await uow.assets.add(
        Asset(
            symbol=symbol,
            name=f"{symbol} SE",
            currency=currency,
            current_price=D(price) if price is not None else None,
            updated_at=NOW if price is not None else None,
            **kwargs,
        )
    )


async def _profile(uow, cash: str = "1000", **kwargs) -> TradingProfile:
    return await uow.trading.add_profile(TradingProfile(user_id=uuid4(), cash_balance=D(cash), **kwargs))


async def _watching(uow, profile: TradingProfile, asset: Asset) -> TradingAsset:
    return await uow.trading.add_trading_asset(
        TradingAsset(
            profile_id=profile.id,
            asset_id=asset.id,
            target_price=D("110"),
            stop_loss_price=D("95"),
        )
    )


async def _bought(uow, profile: TradingProfile, asset: Asset, entry: str = "100") -> TradingAsset:
    return await uow.trading.add_trading_asset(
        TradingAsset(
            profile_id=profile.id,
            asset_id=asset.id,
            status=TradingStatus.BOUGHT,
            entry_price=D(entry),
            entry_price_native=D(entry),
            entry_date=NOW - timedelta(days=3),
            quantity=D("1"),
            target_price=D(entry) * D("1.1"),
            stop_loss_price=D(entry) * D("0.95"),
        )
    )


def _market(uow, price_feed, fx_feed) -> MarketSnapshotLoader:
    return MarketSnapshotLoader(uow, price_feed, CurrencyNormalizer(fx_feed))


def _candidate(symbol: str, price: str, change: str, sector: Optional[str] = None) -> MarketCandidate:
    return MarketCandidate(
        symbol=symbol,
        name=f"{symbol} Corp",
        price=D(price),
        change_percent=D(change),
        volume=1_000_000,
        currency="USD",
        sector=sector,
    )


# ══════════════════════════════════════════════════════════════════════
# 1. Alert evaluation
# ══════════════════════════════════════════════════════════════════════


class TestEvaluateAlerts:
    """One notification per breach, a price trail while it lasts."""

    @pytest.fixture
    def use_case(self, uow, price_feed, fx_feed, notifier, clock):
        return EvaluateAlertsUseCase(uow, _market(uow, price_feed, fx_feed), notifier, clock=clock)

    async def _price_alert(self, uow, threshold: str = "100", **kwargs) -> Alert:
        asset = await _asset(uow, "SAP", "95")
        return await uow.alerts.add(
            Alert(
                user_id=uuid4(),
                asset_id=asset.id,
                alert_type=AlertType.PRICE_ABOVE,
                threshold=D(threshold),
                **kwargs,
            )
        )

    @pytest.mark.asyncio
    async def test_breach_notifies_once_then_tracks(self, use_case, uow, price_feed, notifier, clock):
        alert = await self._price_alert(uow)

        price_feed.set_price("SAP", "95", currency="EUR")
        first = await use_case.execute()
        assert first.triggered == 0
        assert first.evaluated == 1

        clock.now = NOW + timedelta(minutes=1)
        price_feed.set_price("SAP", "101", currency="EUR")
        second = await use_case.execute()

        assert second.triggered == 1
        assert len(notifier.sent) == 1
        user_id, channels, message = notifier.sent[0]
        assert user_id == alert.user_id
        assert message.kind == "alert"
        assert message.title == "🔔 SAP"
        assert message.data["currentPrice"] == 101.0
        assert message.data["currency"] == "EUR"

        stored = await uow.alerts.get(alert.id)
        assert stored.is_tracking is True
        assert stored.trigger_count == 1
        assert len(await uow.alerts.list_history(alert.id)) == 1
        assert len(await uow.alerts.recent_tracks(alert.id)) == 1

        clock.now = NOW + timedelta(minutes=2)
        price_feed.set_price("SAP", "103", currency="EUR")
        third = await use_case.execute()

        assert third.tracked == 1
        assert len(notifier.sent) == 1
        assert [t.price for t in await uow.alerts.recent_tracks(alert.id)] == [D("101"), D("103")]

    @pytest.mark.asyncio
    async def test_recovery_resets_and_cooldown_holds_back_retrigger(self, use_case, uow, price_feed, notifier, clock):
        alert = await self._price_alert(uow)

        price_feed.set_price("SAP", "101", currency="EUR")
        await use_case.execute()

        clock.now = NOW + timedelta(minutes=1)
        price_feed.set_price("SAP", "99", currency="EUR")
        reset = await use_case.execute()
        assert reset.reset == 1
        assert (await uow.alerts.get(alert.id)).is_tracking is False

        clock.now = NOW + timedelta(minutes=2)
        price_feed.set_price("SAP", "102", currency="EUR")
        held = await use_case.execute()
        assert held.triggered == 0
        assert len(notifier.sent) == 1

        clock.now = NOW + timedelta(minutes=6)
        again = await use_case.execute()
        assert again.triggered == 1
        assert len(notifier.sent) == 2
        assert (await uow.alerts.get(alert.id)).trigger_count == 2

    @pytest.mark.asyncio
    async def test_threshold_is_compared_in_eur(self, use_case, uow, price_feed, notifier):
        asset = await _asset(uow, "AAPL", "110", currency="USD")
        await uow.alerts.add(
            Alert(user_id=uuid4(), asset_id=asset.id, alert_type=AlertType.PRICE_ABOVE, threshold=D("100"))
        )
        price_feed.set_price("AAPL", "110", currency="USD")

        result = await use_case.execute()

        # $110 at 0.9 is €99.00
        assert result.triggered == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_missing_price_skips_alert(self, use_case, uow, price_feed):
        asset = await _asset(uow, "GONE")
        await uow.alerts.add(
            Alert(user_id=uuid4(), asset_id=asset.id, alert_type=AlertType.PRICE_BELOW, threshold=D("10"))
        )
        price_feed.failing.add("GONE")

        result = await use_case.execute()

        assert result.skipped == 1
        assert result.evaluated == 0

    @pytest.mark.asyncio
    async def test_alert_without_channels_triggers_silently(self, use_case, uow, price_feed, notifier):
        alert = await self._price_alert(uow, channels=())
        price_feed.set_price("SAP", "120", currency="EUR")

        result = await use_case.execute()

        assert result.triggered == 1
        assert notifier.sent == []
        history = await uow.alerts.list_history(alert.id)
        assert history[0].notified is False

    @pytest.mark.asyncio
    async def test_one_failing_alert_does_not_stop_the_pass(self, uow, price_feed, fx_feed, notifier, clock):
        broken = await self._price_alert(uow)
        other_asset = await _asset(uow, "ASML", "650")
        healthy = await uow.alerts.add(
            Alert(user_id=uuid4(), asset_id=other_asset.id, alert_type=AlertType.PRICE_ABOVE, threshold=D("600"))
        )
        price_feed.set_price("SAP", "120", currency="EUR")
        price_feed.set_price("ASML", "650", currency="EUR")

        class FlakyEvaluator(AlertEvaluator):
            def evaluate(self, alert, observation, now):
                if alert.id == broken.id:
                    raise RuntimeError("corrupt alert")
                return super().evaluate(alert, observation, now)

        use_case = EvaluateAlertsUseCase(
            uow, _market(uow, price_feed, fx_feed), notifier, evaluator=FlakyEvaluator(), clock=clock
        )
        result = await use_case.execute()

        assert result.failed == 1
        assert result.triggered == 1
        assert notifier.sent[0][2].data["alertId"] == str(healthy.id)

    @pytest.mark.asyncio
    async def test_unexpected_feed_error_skips_only_that_asset(self, uow, fx_feed, notifier, clock):
        class ShakyFeed(FakePriceFeed):
            async def get_quote(self, symbol):
                if symbol == "BAD":
                    raise RuntimeError("unexpected payload shape")
                return await super().get_quote(symbol)

        feed = ShakyFeed()
        feed.set_price("GOOD", "120", currency="EUR")
        for symbol in ("BAD", "GOOD"):
            asset = await _asset(uow, symbol)
            await uow.alerts.add(
                Alert(user_id=uuid4(), asset_id=asset.id, alert_type=AlertType.PRICE_ABOVE, threshold=D("100"))
            )

        use_case = EvaluateAlertsUseCase(uow, _market(uow, feed, fx_feed), notifier, clock=clock)
        result = await use_case.execute()

        assert result.triggered == 1
        assert result.skipped == 1
        assert notifier.sent[0][2].title == "🔔 GOOD"

    @pytest.mark.asyncio
    async def test_currency_without_rate_skips_alert(self, use_case, uow, price_feed, notifier):
        asset = await _asset(uow, "XYZCO", "20000", currency="XYZ")
        await uow.alerts.add(
            Alert(user_id=uuid4(), asset_id=asset.id, alert_type=AlertType.PRICE_ABOVE, threshold=D("100"))
        )
        price_feed.set_price("XYZCO", "20000", currency="XYZ")

        result = await use_case.execute()

        assert result.skipped == 1
        assert result.triggered == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_no_active_alerts(self, use_case, price_feed):
        result = await use_case.execute()

        assert result.evaluated == 0
        assert price_feed.calls == []


class TestCreateAlert:
    """Only alert types the pass can evaluate are stored."""

    @pytest.mark.asyncio
    async def test_stores_active_price_alert(self, uow):
        asset = await _asset(uow, "SAP", "95")
        command = CreateAlertCommand(
            user_id=uuid4(),
            asset_id=asset.id,
            alert_type=AlertType.PRICE_ABOVE,
            threshold=D("100"),
            channels=(NotificationChannel.EMAIL, NotificationChannel.EMAIL),
        )

        alert = await CreateAlertUseCase(uow).execute(command)

        stored = await uow.alerts.get(alert.id)
        assert stored.is_tracking is False
        assert stored.channels == (NotificationChannel.EMAIL,)
        assert [a.id for a in await uow.alerts.list_active()] == [alert.id]

    @pytest.mark.asyncio
    async def test_technical_signal_alert_is_refused(self, uow):
        asset = await _asset(uow, "SAP", "95")
        command = CreateAlertCommand(
            user_id=uuid4(), asset_id=asset.id, alert_type=AlertType.TECHNICAL_SIGNAL, threshold=D("1")
        )

        with pytest.raises(UnsupportedAlertTypeError):
            await CreateAlertUseCase(uow).execute(command)

        assert await uow.alerts.list_active() == []

    @pytest.mark.asyncio
    async def test_unknown_asset(self, uow):
        command = CreateAlertCommand(
            user_id=uuid4(), asset_id=uuid4(), alert_type=AlertType.PRICE_BELOW, threshold=D("10")
        )

        with pytest.raises(AssetNotFoundError):
            await CreateAlertUseCase(uow).execute(command)


class TestGetAlertTracking:
    """Tracking state and samples of one alert."""

    @pytest.mark.asyncio
    async def test_returns_samples_of_tracking_alert(self, uow, price_feed, fx_feed, notifier, clock):
        asset = await _asset(uow, "SAP", "101")
        alert = await uow.alerts.add(
            Alert(user_id=uuid4(), asset_id=asset.id, alert_type=AlertType.PRICE_ABOVE, threshold=D("100"))
        )
        price_feed.set_price("SAP", "101", currency="EUR")
        await EvaluateAlertsUseCase(uow, _market(uow, price_feed, fx_feed), notifier, clock=clock).execute()

        result = await GetAlertTrackingUseCase(uow).execute(alert.id)

        assert result.is_tracking is True
        assert result.tracking_started_at == NOW
        assert len(result.tracks) == 1

    @pytest.mark.asyncio
    async def test_unknown_alert(self, uow):
        with pytest.raises(AlertNotFoundError):
            await GetAlertTrackingUseCase(uow).execute(uuid4())


# ══════════════════════════════════════════════════════════════════════
# 2. Add to trading
# ══════════════════════════════════════════════════════════════════════


class TestAddToTrading:
    """Watching and existing positions, thresholds in EUR."""

    @pytest.fixture
    def use_case(self, uow, fx_feed, clock):
        return AddToTradingUseCase(uow, CurrencyNormalizer(fx_feed), clock=clock)

    @pytest.mark.asyncio
    async def test_watching_thresholds_from_cached_eur_price(self, use_case, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "AAPL", "100", currency="USD")

        trading_asset = await use_case.execute(AddToTradingCommand(profile_id=profile.id, asset_id=asset.id))

        assert trading_asset.status is TradingStatus.WATCHING
        assert trading_asset.target_price == D("99.00")
        assert trading_asset.stop_loss_price == D("85.50")
        assert trading_asset.entry_price is None

    @pytest.mark.asyncio
    async def test_existing_position_keeps_cash_untouched(self, use_case, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "AAPL", "100", currency="USD")

        trading_asset = await use_case.execute(
            AddToTradingCommand(
                profile_id=profile.id,
                asset_id=asset.id,
                status=TradingStatus.BOUGHT,
                entry_price=D("90"),
                quantity=D("2"),
            )
        )

        assert trading_asset.status is TradingStatus.BOUGHT
        assert trading_asset.entry_price == D("90.00")
        assert trading_asset.entry_price_native == D("100")
        assert trading_asset.entry_date == NOW
        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("1000")

    @pytest.mark.asyncio
    async def test_already_tracked(self, use_case, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        command = AddToTradingCommand(profile_id=profile.id, asset_id=asset.id)
        await use_case.execute(command)

        with pytest.raises(AlreadyTrackedError):
            await use_case.execute(command)

    @pytest.mark.asyncio
    async def test_sold_asset_is_reactivated_in_place(self, use_case, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "120")
        sold = await uow.trading.add_trading_asset(
            TradingAsset(
                profile_id=profile.id,
                asset_id=asset.id,
                status=TradingStatus.SOLD,
                exit_price=D("110"),
                exit_date=NOW - timedelta(days=1),
                realized_profit_pct=D("10"),
            )
        )

        reactivated = await use_case.execute(AddToTradingCommand(profile_id=profile.id, asset_id=asset.id))

        assert reactivated.id == sold.id
        stored = await uow.trading.get_trading_asset(sold.id)
        assert stored.status is TradingStatus.WATCHING
        assert stored.exit_price is None
        assert stored.realized_profit_pct is None
        assert stored.target_price == D("132.00")

    @pytest.mark.asyncio
    async def test_position_without_any_price(self, use_case, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "NEW")

        with pytest.raises(DataUnavailableError):
            await use_case.execute(
                AddToTradingCommand(
                    profile_id=profile.id, asset_id=asset.id, status=TradingStatus.BOUGHT, quantity=D("1")
                )
            )

    @pytest.mark.asyncio
    async def test_rejects_non_positive_quantity(self, use_case, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")

        with pytest.raises(InvalidQuantityError):
            await use_case.execute(
                AddToTradingCommand(
                    profile_id=profile.id, asset_id=asset.id, status=TradingStatus.BOUGHT, quantity=D("0")
                )
            )


# ══════════════════════════════════════════════════════════════════════
# 3. Trade executor
# ══════════════════════════════════════════════════════════════════════


class TestTradeExecutor:
    """Simulated buys and sells against the profile's cash."""

    @pytest.fixture
    def executor(self, uow, price_feed, fx_feed, clock):
        return TradeExecutor(uow, price_feed, CurrencyNormalizer(fx_feed), clock=clock)

    @pytest.mark.asyncio
    async def test_insufficient_funds_writes_nothing(self, executor, uow, price_feed):
        profile = await _profile(uow, cash="50")
        asset = await _asset(uow, "SAP", "60")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("SAP", "60", currency="EUR")

        with pytest.raises(InsufficientFundsError):
            await executor.buy(trading_asset.id, D("1"))

        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("50")
        assert (await uow.trading.get_trading_asset(trading_asset.id)).status is TradingStatus.WATCHING
        portfolio = await uow.portfolios.get_or_create(profile.user_id, TRADING_PORTFOLIO)
        assert await uow.portfolios.list_holdings(portfolio.id) == []

    @pytest.mark.asyncio
    async def test_buy_then_sell_round_trip(self, executor, uow, price_feed, clock):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("SAP", "100", currency="EUR")

        bought = await executor.buy(trading_asset.id, D("2"))

        assert bought.status is TradingStatus.BOUGHT
        assert bought.entry_price == D("100.00")
        assert bought.target_price == D("110.00")
        assert bought.stop_loss_price == D("95.00")
        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("800")
        portfolio = await uow.portfolios.get_or_create(profile.user_id, TRADING_PORTFOLIO)
        holding = await uow.portfolios.get_holding(portfolio.id, asset.id)
        assert holding.quantity == D("2")
        assert holding.avg_buy_price == D("100")
        assert holding.trading_asset_id == trading_asset.id

        clock.now = NOW + timedelta(days=2)
        price_feed.set_price("SAP", "110", currency="EUR")
        sold = await executor.sell(trading_asset.id)

        assert sold.status is TradingStatus.SOLD
        assert sold.exit_price == D("110.00")
        assert sold.realized_profit_pct == D("10.00")
        assert sold.entry_price is None
        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("1020")
        assert await uow.portfolios.get_holding(portfolio.id, asset.id) is None

    @pytest.mark.asyncio
    async def test_buy_in_foreign_currency_debits_eur(self, executor, uow, price_feed):
        profile = await _profile(uow)
        asset = await _asset(uow, "AAPL", "100", currency="USD")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("AAPL", "100", currency="USD")

        bought = await executor.buy(trading_asset.id, D("2"))

        assert bought.entry_price == D("90.00")
        assert bought.entry_price_native == D("100")
        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("820")

    @pytest.mark.asyncio
    async def test_buy_averages_into_existing_holding(self, executor, uow, price_feed):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "120")
        portfolio = await uow.portfolios.get_or_create(profile.user_id, TRADING_PORTFOLIO)
        await uow.portfolios.save_holding(
            Holding(portfolio_id=portfolio.id, asset_id=asset.id, quantity=D("3"), avg_buy_price=D("100"))
        )
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("SAP", "120", currency="EUR")

        await executor.buy(trading_asset.id, D("2"))

        holding = await uow.portfolios.get_holding(portfolio.id, asset.id)
        assert holding.quantity == D("5")
        # (3 × 100 + 2 × 120) / 5
        assert holding.avg_buy_price == D("108")
        assert holding.trading_asset_id == trading_asset.id
        assert len(await uow.portfolios.list_holdings(portfolio.id)) == 1

    @pytest.mark.asyncio
    async def test_buy_refuses_approximate_rate(self, uow, price_feed, clock):
        executor = TradeExecutor(uow, price_feed, CurrencyNormalizer(FakeFxFeed({"USD": "0.9"})), clock=clock)
        profile = await _profile(uow, cash="100000")
        asset = await _asset(uow, "7203.T", "20000", currency="JPY")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("7203.T", "20000", currency="JPY")

        with pytest.raises(RateUnavailableError):
            await executor.buy(trading_asset.id, D("1"))

        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("100000")
        assert (await uow.trading.get_trading_asset(trading_asset.id)).status is TradingStatus.WATCHING

    @pytest.mark.asyncio
    async def test_sell_without_trading_portfolio_creates_none(self, executor, uow, price_feed):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "105")
        trading_asset = await _bought(uow, profile, asset)
        price_feed.set_price("SAP", "105", currency="EUR")

        sold = await executor.sell(trading_asset.id)

        assert sold.status is TradingStatus.SOLD
        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("1105")
        assert await uow.portfolios.find(profile.user_id, TRADING_PORTFOLIO) is None

    @pytest.mark.asyncio
    async def test_buy_marks_latest_buy_signal_executed(self, executor, uow, price_feed):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        await uow.trading.add_signal(
            TradingSignal(
                trading_asset_id=trading_asset.id,
                action=TradeAction.BUY,
                confidence=Confidence.MEDIUM,
                reason="MACD bullish crossover",
                price_at_signal=D("100"),
                criteria={},
                created_at=NOW - timedelta(hours=1),
            )
        )
        price_feed.set_price("SAP", "100", currency="EUR")

        await executor.buy(trading_asset.id, D("1"))

        signals = await uow.trading.list_signals(trading_asset.id)
        assert signals[0].executed is True

    @pytest.mark.asyncio
    async def test_invalid_transitions(self, executor, uow, price_feed):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("SAP", "100", currency="EUR")

        with pytest.raises(InvalidStateError):
            await executor.sell(trading_asset.id)
        await executor.buy(trading_asset.id, D("1"))
        with pytest.raises(InvalidStateError):
            await executor.buy(trading_asset.id, D("1"))

    @pytest.mark.asyncio
    async def test_invalid_quantity_and_unknown_asset(self, executor, uow):
        with pytest.raises(InvalidQuantityError):
            await executor.buy(uuid4(), D("0"))
        with pytest.raises(TradingAssetNotFoundError):
            await executor.buy(uuid4(), D("1"))

    @pytest.mark.asyncio
    async def test_falls_back_to_fresh_cached_price(self, executor, uow, price_feed, clock):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.failing.add("SAP")

        clock.now = NOW + timedelta(minutes=2)
        bought = await executor.buy(trading_asset.id, D("1"))
        assert bought.entry_price == D("100.00")

    @pytest.mark.asyncio
    async def test_stale_cached_price_is_refused(self, executor, uow, price_feed, clock):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.failing.add("SAP")

        clock.now = NOW + timedelta(minutes=30)
        with pytest.raises(DataUnavailableError):
            await executor.buy(trading_asset.id, D("1"))

    @pytest.mark.asyncio
    async def test_concurrent_buys_never_overdraw(self, executor, uow, price_feed):
        profile = await _profile(uow, cash="150")
        first = await _watching(uow, profile, await _asset(uow, "SAP", "100"))
        second = await _watching(uow, profile, await _asset(uow, "ASML", "100"))
        price_feed.set_price("SAP", "100", currency="EUR")
        price_feed.set_price("ASML", "100", currency="EUR")

        results = await asyncio.gather(
            executor.buy(first.id, D("1")),
            executor.buy(second.id, D("1")),
            return_exceptions=True,
        )

        assert sum(isinstance(r, TradingAsset) for r in results) == 1
        assert sum(isinstance(r, InsufficientFundsError) for r in results) == 1
        assert (await uow.trading.get_profile(profile.id)).cash_balance == D("50")


class TestKeyedLocks:
    """Per-key locks live only while someone uses them."""

    @pytest.mark.asyncio
    async def test_same_key_shares_lock_and_idle_locks_are_dropped(self):
        locks = KeyedLocks()
        key = uuid4()

        async with locks(key):
            assert locks(key) is locks(key)
            assert locks(key).locked()
            assert len(locks) == 1

        gc.collect()
        assert len(locks) == 0
        assert not locks(key).locked()


# ══════════════════════════════════════════════════════════════════════
# 4. Signal analysis
# ══════════════════════════════════════════════════════════════════════


class TestAnalyzeTradingAsset:
    """Signals are recorded once per window and pushed for BUY/SELL only."""

    @pytest.fixture
    def use_case(self, uow, price_feed, fx_feed, indicators, notifier, clock):
        return AnalyzeTradingAssetUseCase(
            uow, _market(uow, price_feed, fx_feed), indicators, notifier, clock=clock
        )

    @pytest.mark.asyncio
    async def test_buy_signal_is_recorded_and_notified(self, use_case, uow, price_feed, indicators, notifier):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("SAP", "100", currency="EUR")
        indicators.readings[asset.id] = [
            IndicatorReading("RSI", "oversold", D("25")),
            IndicatorReading("MACD", "bullish", D("0.4")),
        ]

        result = await use_case.execute(trading_asset.id)

        assert result.action is TradeAction.BUY
        assert result.confidence is Confidence.MEDIUM
        assert result.reason == "RSI oversold (25). MACD bullish crossover"
        assert result.signal_created is True
        assert result.criteria["rules"] == ["rsi_oversold", "macd_bullish"]

        user_id, channels, message = notifier.sent[0]
        assert user_id == profile.user_id
        assert channels == SIGNAL_CHANNELS
        assert message.title == "🟢 BUY SAP"
        assert message.kind == "trading_signal"
        signals = await uow.trading.list_signals(trading_asset.id)
        assert [s.notified for s in signals] == [True]

    @pytest.mark.asyncio
    async def test_same_action_is_deduplicated_within_window(
        self, use_case, uow, price_feed, indicators, notifier, clock
    ):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("SAP", "100", currency="EUR")
        indicators.readings[asset.id] = [
            IndicatorReading("RSI", "oversold", D("25")),
            IndicatorReading("MACD", "bullish", D("0.4")),
        ]

        await use_case.execute(trading_asset.id)
        clock.now = NOW + timedelta(hours=1)
        repeated = await use_case.execute(trading_asset.id)

        assert repeated.action is TradeAction.BUY
        assert repeated.signal_created is False
        assert len(notifier.sent) == 1

        clock.now = NOW + timedelta(hours=5)
        later = await use_case.execute(trading_asset.id)
        assert later.signal_created is True
        assert len(await uow.trading.list_signals(trading_asset.id)) == 2

    @pytest.mark.asyncio
    async def test_hold_is_recorded_but_not_notified(self, use_case, uow, price_feed, notifier):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.set_price("SAP", "100", currency="EUR")

        result = await use_case.execute(trading_asset.id)

        assert result.action is TradeAction.HOLD
        assert result.reason == HOLD_REASON
        assert notifier.sent == []
        signals = await uow.trading.list_signals(trading_asset.id)
        assert [s.action for s in signals] == [TradeAction.HOLD]

    @pytest.mark.asyncio
    async def test_target_reached_sells_bought_asset(self, use_case, uow, price_feed, notifier):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _bought(uow, profile, asset)
        price_feed.set_price("SAP", "111", currency="EUR")

        result = await use_case.execute(trading_asset.id)

        assert result.action is TradeAction.SELL
        assert result.criteria["targetReached"] is True
        assert result.reason.startswith("Target profit reached (+11.0%)")
        assert notifier.sent[0][2].title == "🔴 SELL SAP"

    @pytest.mark.asyncio
    async def test_failed_delivery_leaves_signal_unnotified(self, uow, price_feed, fx_feed, indicators, clock):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        trading_asset = await _bought(uow, profile, asset)
        price_feed.set_price("SAP", "80", currency="EUR")
        use_case = AnalyzeTradingAssetUseCase(
            uow, _market(uow, price_feed, fx_feed), indicators, RecordingNotifier(succeed=False), clock=clock
        )

        result = await use_case.execute(trading_asset.id)

        assert result.action is TradeAction.SELL
        signals = await uow.trading.list_signals(trading_asset.id)
        assert signals[0].notified is False

    @pytest.mark.asyncio
    async def test_sold_and_unknown_assets_are_rejected(self, use_case, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        sold = await uow.trading.add_trading_asset(
            TradingAsset(
                profile_id=profile.id,
                asset_id=asset.id,
                status=TradingStatus.SOLD,
                exit_price=D("110"),
                exit_date=NOW,
                realized_profit_pct=D("10"),
            )
        )

        with pytest.raises(InvalidStateError):
            await use_case.execute(sold.id)
        with pytest.raises(TradingAssetNotFoundError):
            await use_case.execute(uuid4())

    @pytest.mark.asyncio
    async def test_no_price_at_all(self, use_case, uow, price_feed):
        profile = await _profile(uow)
        asset = await _asset(uow, "GONE")
        trading_asset = await _watching(uow, profile, asset)
        price_feed.failing.add("GONE")

        with pytest.raises(DataUnavailableError):
            await use_case.execute(trading_asset.id)


class TestRunSignalPass:
    """Only due profiles are analyzed; failures are isolated."""

    @pytest.fixture
    def signal_pass(self, uow, price_feed, fx_feed, indicators, notifier, clock):
        market = _market(uow, price_feed, fx_feed)
        analyze = AnalyzeTradingAssetUseCase(uow, market, indicators, notifier, clock=clock)
        return RunSignalPassUseCase(uow, market, analyze, clock=clock)

    @pytest.mark.asyncio
    async def test_due_profiles_only(self, signal_pass, uow, price_feed, clock):
        due = await _profile(uow, analysis_interval=60)
        disabled = await _profile(uow, analysis_interval=0)
        await _watching(uow, due, await _asset(uow, "SAP", "100"))
        await _watching(uow, due, await _asset(uow, "GONE"))
        await _watching(uow, disabled, await _asset(uow, "ASML", "600"))
        price_feed.set_price("SAP", "100", currency="EUR")
        price_feed.set_price("ASML", "600", currency="EUR")
        price_feed.failing.add("GONE")

        result = await signal_pass.execute()

        assert result.profiles == 1
        assert result.analyzed == 1
        assert result.signals_created == 1
        assert result.skipped == 1
        assert (await uow.trading.get_profile(due.id)).last_analysis_at == NOW
        assert (await uow.trading.get_profile(disabled.id)).last_analysis_at is None

        clock.now = NOW + timedelta(minutes=30)
        assert (await signal_pass.execute()).profiles == 0

        clock.now = NOW + timedelta(minutes=61)
        assert (await signal_pass.execute()).profiles == 1

    @pytest.mark.asyncio
    async def test_force_runs_every_profile(self, signal_pass, uow, price_feed):
        disabled = await _profile(uow, analysis_interval=0)
        await _watching(uow, disabled, await _asset(uow, "SAP", "100"))
        price_feed.set_price("SAP", "100", currency="EUR")

        result = await signal_pass.execute(force=True)

        assert result.profiles == 1
        assert result.analyzed == 1


# ══════════════════════════════════════════════════════════════════════
# 5. Suggestions
# ══════════════════════════════════════════════════════════════════════


class TestSuggestions:
    """Generation from movers lists, exclusions, review."""

    @pytest.fixture
    def generate(self, uow, price_feed, fx_feed, notifier, clock):
        return GenerateSuggestionsUseCase(uow, price_feed, CurrencyNormalizer(fx_feed), notifier, clock=clock)

    @pytest.fixture
    def review(self, uow, fx_feed, clock):
        return ReviewSuggestionUseCase(uow, AddToTradingUseCase(uow, CurrencyNormalizer(fx_feed), clock=clock), clock=clock)

    @pytest.fixture
    def movers(self, price_feed):
        nvda = _candidate("NVDA", "800", "6.2", sector="Technology")
        price_feed.movers = {
            MoverCategory.TRENDING: [nvda],
            MoverCategory.GAINERS: [nvda, _candidate("AMD", "150", "4")],
            MoverCategory.LOSERS: [_candidate("INTC", "30", "-4.5"), _candidate("PENNY", "0.5", "-20")],
            MoverCategory.ACTIVE: [_candidate("AAPL", "180", "1")],
        }
        return price_feed.movers

    @pytest.mark.asyncio
    async def test_generates_pending_suggestions(self, generate, movers, uow, notifier):
        profile = await _profile(uow)
        await _watching(uow, profile, await _asset(uow, "AAPL", "180", currency="USD"))

        inserted = await generate.execute(profile.id)

        assert inserted == 3
        pending = await uow.suggestions.list_for_profile(profile.id, SuggestionStatus.PENDING)
        assets = await uow.assets.get_many(s.asset_id for s in pending)
        assert {a.symbol for a in assets.values()} == {"NVDA", "AMD", "INTC"}

        nvda = next(s for s in pending if assets[s.asset_id].symbol == "NVDA")
        assert nvda.criteria["sources"] == ["trending", "gainers"]
        assert nvda.criteria["priceEur"] == 720.0
        assert nvda.expected_profit == D("10")
        assert nvda.timeframe == "weeks"

        assert len(notifier.sent) == 1
        assert notifier.sent[0][2].kind == "trading_suggestion"
        assert (await uow.trading.get_profile(profile.id)).last_suggestion_at == NOW

    @pytest.mark.asyncio
    async def test_criteria_record_profile_horizon_and_risk(self, generate, movers, uow):
        profile = await _profile(uow, horizon=Horizon.SHORT, risk_tolerance=RiskTolerance.AGGRESSIVE)

        await generate.execute(profile.id)

        pending = await uow.suggestions.list_for_profile(profile.id, SuggestionStatus.PENDING)
        assert pending
        for suggestion in pending:
            assert suggestion.criteria["horizon"] == "short"
            assert suggestion.criteria["riskTolerance"] == "aggressive"

    @pytest.mark.asyncio
    async def test_whole_candidate_pool_is_stored_as_assets(self, uow, price_feed, fx_feed, notifier, clock, movers):
        generate = GenerateSuggestionsUseCase(
            uow, price_feed, CurrencyNormalizer(fx_feed), notifier,
            scorer=SuggestionScorer(persist_count=1), clock=clock,
        )
        profile = await _profile(uow)

        inserted = await generate.execute(profile.id)

        assert inserted == 1
        assert len(await uow.suggestions.list_for_profile(profile.id)) == 1
        for symbol in ("NVDA", "AMD", "INTC", "AAPL"):
            asset = await uow.assets.find_by_symbol(symbol)
            assert asset is not None
            assert asset.updated_at == NOW
        assert await uow.assets.find_by_symbol("PENNY") is None

    @pytest.mark.asyncio
    async def test_pending_suggestions_are_not_repeated(self, generate, movers, uow, notifier):
        profile = await _profile(uow)
        await _watching(uow, profile, await _asset(uow, "AAPL", "180", currency="USD"))
        await generate.execute(profile.id)

        assert await generate.execute(profile.id) == 0
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_dismissed_asset_returns_after_block_window(self, generate, review, movers, uow, clock):
        profile = await _profile(uow)
        await _watching(uow, profile, await _asset(uow, "AAPL", "180", currency="USD"))
        await generate.execute(profile.id)
        nvda_asset = await uow.assets.find_by_symbol("NVDA")
        pending = await uow.suggestions.list_for_profile(profile.id, SuggestionStatus.PENDING)
        nvda = next(s for s in pending if s.asset_id == nvda_asset.id)

        dismissed = await review.dismiss(nvda.id)
        assert dismissed.status is SuggestionStatus.DISMISSED

        clock.now = NOW + timedelta(days=2)
        assert await generate.execute(profile.id) == 0

        clock.now = NOW + timedelta(days=8)
        assert await generate.execute(profile.id) == 1

    @pytest.mark.asyncio
    async def test_accept_puts_asset_on_watch_list(self, generate, review, movers, uow):
        profile = await _profile(uow)
        await generate.execute(profile.id)
        amd_asset = await uow.assets.find_by_symbol("AMD")
        pending = await uow.suggestions.list_for_profile(profile.id, SuggestionStatus.PENDING)
        amd = next(s for s in pending if s.asset_id == amd_asset.id)

        accepted, trading_asset = await review.accept(amd.id)

        assert accepted.status is SuggestionStatus.ACCEPTED
        assert accepted.accepted_at == NOW
        assert trading_asset.status is TradingStatus.WATCHING
        assert trading_asset.target_price == D("148.50")
        stored = await uow.suggestions.get(amd.id)
        assert stored.status is SuggestionStatus.ACCEPTED

        with pytest.raises(InvalidStateError):
            await review.dismiss(amd.id)

    @pytest.mark.asyncio
    async def test_accept_rolls_back_when_asset_already_tracked(self, review, uow):
        profile = await _profile(uow)
        asset = await _asset(uow, "SAP", "100")
        await _watching(uow, profile, asset)
        suggestion = TradingSuggestion(
            profile_id=profile.id,
            asset_id=asset.id,
            reason="Trending on the markets.",
            confidence=Confidence.MEDIUM,
            risk_level=RiskLevel.MEDIUM,
            expected_profit=D("10"),
            timeframe="weeks",
            criteria={},
            created_at=NOW,
        )
        await uow.suggestions.add_many([suggestion])

        with pytest.raises(AlreadyTrackedError):
            await review.accept(suggestion.id)

        assert (await uow.suggestions.get(suggestion.id)).status is SuggestionStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_suggestion(self, review):
        with pytest.raises(SuggestionNotFoundError):
            await review.accept(uuid4())

    @pytest.mark.asyncio
    async def test_failed_mover_lists_produce_nothing(self, generate, uow, notifier):
        profile = await _profile(uow)

        assert await generate.execute(profile.id) == 0
        assert notifier.sent == []
        assert (await uow.trading.get_profile(profile.id)).last_suggestion_at == NOW

    @pytest.mark.asyncio
    async def test_suggestion_pass_respects_interval(self, generate, movers, uow, clock):
        enabled = await _profile(uow, suggestion_interval=60)
        disabled = await _profile(uow, suggestion_interval=0)
        suggestion_pass = RunSuggestionPassUseCase(uow, generate, clock=clock)

        assert await suggestion_pass.execute() == 4
        assert await uow.suggestions.list_for_profile(disabled.id) == []
        assert len(await uow.suggestions.list_for_profile(enabled.id)) == 4
