"""
Signal rule engine.

A pure, additive point system. Each rule is a ``(predicate, weight, reason)``
entry evaluated in declaration order; the reason clauses of every rule that
fired are joined in that same order, so the explanation a user reads is
exactly the list of rules that produced the decision.

Sell rules apply only to bought assets, buy rules only to watched ones.

    sell score >= 2  → SELL  (high >= 4, medium >= 3, else low)
    buy score  >= 3  → BUY   (high >= 5, medium >= 4, else low)
    otherwise        → HOLD  (low, empty reason)

Profit percentages in reasons use native-currency prices so FX moves never
show up as gains or losses.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from financy.domain.trading.entities import (
    Confidence,
    IndicatorReading,
    TradeAction,
    TradingAsset,
    TradingStatus,
)

RSI_OVERBOUGHT = Decimal("70")
RSI_OVERSOLD = Decimal("30")
RSI_NEUTRAL_LOW = Decimal("40")
RSI_NEUTRAL_HIGH = Decimal("60")
SENTIMENT_NEGATIVE = Decimal("-0.3")
SENTIMENT_POSITIVE = Decimal("0.3")
VOLUME_RATIO_HIGH = Decimal("1.5")

SELL_THRESHOLD = 2
BUY_THRESHOLD = 3


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator state an analysis runs against."""

    rsi: Optional[Decimal] = None
    macd: Optional[str] = None
    macd_histogram: Optional[Decimal] = None
    price_vs_ma20: Optional[str] = None
    price_vs_ma50: Optional[str] = None
    volume_ratio: Optional[Decimal] = None
    sentiment: Optional[Decimal] = None

    def as_criteria(self) -> dict[str, Any]:
        """Snapshot stored with a signal (JSON friendly)."""
        return {
            "rsi": _as_float(self.rsi),
            "macd": self.macd,
            "macdHistogram": _as_float(self.macd_histogram),
            "priceVsMA20": self.price_vs_ma20,
            "priceVsMA50": self.price_vs_ma50,
            "volumeRatio": _as_float(self.volume_ratio),
            "sentiment": _as_float(self.sentiment),
        }


@dataclass(frozen=True)
class SignalInputs:
    """Everything a rule may look at."""

    status: TradingStatus
    indicators: IndicatorSnapshot
    current_price_native: Decimal
    entry_price_native: Optional[Decimal] = None
    target_reached: bool = False
    stop_loss_reached: bool = False

    @property
    def profit_pct(self) -> Optional[Decimal]:
        """Native-currency P/L of a bought position, in percent."""
        entry = self.entry_price_native
        if not entry:
            return None
        return (self.current_price_native - entry) / entry * 100


@dataclass(frozen=True)
class ScoringRule:
    name: str
    weight: int
    predicate: Callable[[SignalInputs], bool]
    reason: Callable[[SignalInputs], str]


@dataclass(frozen=True)
class SignalDecision:
    action: TradeAction
    confidence: Confidence
    reason: str
    score: int = 0
    fired: tuple[str, ...] = ()


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _pct(inputs: SignalInputs) -> Decimal:
    return inputs.profit_pct or Decimal("0")


def _rsi_between(inputs: SignalInputs, low: Decimal, high: Decimal) -> bool:
    rsi = inputs.indicators.rsi
    return rsi is not None and low <= rsi <= high


SELL_RULES: tuple[ScoringRule, ...] = (
    ScoringRule(
        "target_reached", 3,
        lambda s: s.target_reached,
        lambda s: f"Target profit reached ({_pct(s):+.1f}%)",
    ),
    ScoringRule(
        "stop_loss_reached", 4,
        lambda s: s.stop_loss_reached,
        lambda s: f"Stop-loss reached ({_pct(s):.1f}%)",
    ),
    ScoringRule(
        "rsi_overbought", 1,
        lambda s: s.indicators.rsi is not None and s.indicators.rsi > RSI_OVERBOUGHT,
        lambda s: f"RSI overbought ({s.indicators.rsi:.0f})",
    ),
    ScoringRule(
        "macd_bearish", 1,
        lambda s: s.indicators.macd == "bearish",
        lambda s: "MACD bearish crossover",
    ),
    ScoringRule(
        "negative_sentiment", 1,
        lambda s: s.indicators.sentiment is not None and s.indicators.sentiment < SENTIMENT_NEGATIVE,
        lambda s: "Negative news sentiment",
    ),
)

BUY_RULES: tuple[ScoringRule, ...] = (
    ScoringRule(
        "rsi_oversold", 2,
        lambda s: s.indicators.rsi is not None and s.indicators.rsi < RSI_OVERSOLD,
        lambda s: f"RSI oversold ({s.indicators.rsi:.0f})",
    ),
    ScoringRule(
        "rsi_neutral", 1,
        lambda s: _rsi_between(s, RSI_NEUTRAL_LOW, RSI_NEUTRAL_HIGH),
        lambda s: "RSI in neutral zone",
    ),
    ScoringRule(
        "macd_bullish", 2,
        lambda s: s.indicators.macd == "bullish",
        lambda s: "MACD bullish crossover",
    ),
    ScoringRule(
        "above_ma20", 1,
        lambda s: s.indicators.price_vs_ma20 == "above",
        lambda s: "Price above MA20",
    ),
    ScoringRule(
        "positive_sentiment", 1,
        lambda s: s.indicators.sentiment is not None and s.indicators.sentiment > SENTIMENT_POSITIVE,
        lambda s: "Positive news sentiment",
    ),
    ScoringRule(
        "volume_above_average", 1,
        lambda s: s.indicators.volume_ratio is not None and s.indicators.volume_ratio > VOLUME_RATIO_HIGH,
        lambda s: "Volume above average",
    ),
)


def score_rules(rules: Iterable[ScoringRule], inputs: SignalInputs) -> tuple[int, list[ScoringRule]]:
    """Sum the weights of every rule whose predicate holds, keeping order."""
    fired = [rule for rule in rules if rule.predicate(inputs)]
    return sum(rule.weight for rule in fired), fired


def _sell_confidence(score: int) -> Confidence:
    if score >= 4:
        return Confidence.HIGH
    if score >= 3:
        return Confidence.MEDIUM
    return Confidence.LOW


def _buy_confidence(score: int) -> Confidence:
    if score >= 5:
        return Confidence.HIGH
    if score >= 4:
        return Confidence.MEDIUM
    return Confidence.LOW


def decide(inputs: SignalInputs) -> SignalDecision:
    """Run the rule tables for the asset's status and pick an action."""
    if inputs.status is TradingStatus.BOUGHT and inputs.entry_price_native is not None:
        score, fired = score_rules(SELL_RULES, inputs)
        if score >= SELL_THRESHOLD:
            return _decision(TradeAction.SELL, _sell_confidence(score), score, fired, inputs)
    elif inputs.status is TradingStatus.WATCHING:
        score, fired = score_rules(BUY_RULES, inputs)
        if score >= BUY_THRESHOLD:
            return _decision(TradeAction.BUY, _buy_confidence(score), score, fired, inputs)
    return SignalDecision(TradeAction.HOLD, Confidence.LOW, "")


def _decision(
    action: TradeAction,
    confidence: Confidence,
    score: int,
    fired: list[ScoringRule],
    inputs: SignalInputs,
) -> SignalDecision:
    return SignalDecision(
        action=action,
        confidence=confidence,
        reason=". ".join(rule.reason(inputs) for rule in fired),
        score=score,
        fired=tuple(rule.name for rule in fired),
    )


def thresholds_reached(
    trading_asset: TradingAsset, current_price_eur: Decimal
) -> tuple[bool, bool]:
    """Compare the EUR price against the EUR target and stop-loss.

    Only meaningful for bought assets; returns (False, False) otherwise.
    """
    if trading_asset.status is not TradingStatus.BOUGHT or trading_asset.entry_price is None:
        return False, False
    target = trading_asset.target_price
    stop = trading_asset.stop_loss_price
    return (
        target is not None and current_price_eur >= target,
        stop is not None and current_price_eur <= stop,
    )


def build_snapshot(
    readings: Iterable[IndicatorReading],
    current_price_native: Decimal,
    volume: Optional[int] = None,
    average_volume: Optional[int] = None,
    sentiment: Optional[Decimal] = None,
) -> IndicatorSnapshot:
    """Fold raw indicator readings into a snapshot.

    Moving averages are quoted in the asset's native currency, so they are
    compared against the native price. Later readings of the same indicator
    do not override the first (readings arrive newest first).
    """
    values: dict[str, Any] = {}
    for reading in readings:
        name = reading.indicator.upper()
        if name == "RSI" and "rsi" not in values and reading.value is not None:
            values["rsi"] = reading.value
        elif name == "MACD" and "macd" not in values:
            values["macd"] = reading.signal.lower() if reading.signal else None
            values["macd_histogram"] = reading.value
        elif name in ("MA20", "MA50") and reading.value is not None:
            key = "price_vs_ma20" if name == "MA20" else "price_vs_ma50"
            if key not in values:
                values[key] = "above" if current_price_native > reading.value else "below"

    if volume and average_volume:
        values["volume_ratio"] = (Decimal(volume) / Decimal(average_volume)).quantize(Decimal("0.01"))

    return IndicatorSnapshot(sentiment=sentiment, **values)
