"""
Domain entities for the trading bounded context.

Entities represent core business objects with identity and lifecycle.
They contain no framework imports and no IO operations.

All amounts named ``*_price`` on alerts, trading assets and holdings are
EUR unless the field name says ``native``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4


class AlertType(Enum):
    """Condition an alert watches for."""

    PRICE_ABOVE = "price_above"
    PRICE_BELOW = "price_below"
    PERCENT_CHANGE = "percent_change"
    VOLUME_SPIKE = "volume_spike"
    TECHNICAL_SIGNAL = "technical_signal"


class AlertStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    TRIGGERED = "triggered"


class TradingStatus(Enum):
    """Lifecycle status of an asset in a trading list."""

    WATCHING = "watching"
    BOUGHT = "bought"
    SOLD = "sold"


class TradeAction(Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Confidence(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.LOW: 1, Confidence.MEDIUM: 2, Confidence.HIGH: 3}


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuggestionStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"


class Horizon(Enum):
    """Investment horizon of a trading profile."""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class RiskTolerance(Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class TradingStyle(Enum):
    MOMENTUM = "momentum"
    VALUE = "value"
    SWING = "swing"
    SCALPING = "scalping"


class MoverCategory(Enum):
    """Market-mover list a suggestion candidate was drawn from."""

    TRENDING = "trending"
    GAINERS = "gainers"
    LOSERS = "losers"
    ACTIVE = "active"
    UNDERVALUED = "undervalued"
    GROWTH = "growth"


class NotificationChannel(Enum):
    IN_APP = "in_app"
    TELEGRAM = "telegram"
    EMAIL = "email"
    WEBHOOK = "webhook"


@dataclass
class Asset:
    """A market instrument with its last cached quote (native currency)."""

    symbol: str
    name: str
    currency: str = "USD"
    asset_type: str = "stock"
    sector: Optional[str] = None
    current_price: Optional[Decimal] = None
    previous_close: Optional[Decimal] = None
    change_percent: Optional[Decimal] = None
    volume: Optional[int] = None
    average_volume: Optional[int] = None
    updated_at: Optional[datetime] = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class Quote:
    """A live price quote as returned by the price feed (native currency)."""

    symbol: str
    price: Decimal
    currency: str
    previous_close: Optional[Decimal] = None
    change_percent: Optional[Decimal] = None
    volume: Optional[int] = None


@dataclass
class Alert:
    """A user-defined price/volume/percent condition on one asset.

    The threshold of price alerts is EUR regardless of the asset's
    native currency. ``is_tracking`` implies ``status == ACTIVE``.
    """

    user_id: UUID
    asset_id: UUID
    alert_type: AlertType
    threshold: Decimal
    status: AlertStatus = AlertStatus.ACTIVE
    channels: tuple[NotificationChannel, ...] = (NotificationChannel.IN_APP,)
    is_tracking: bool = False
    tracking_started_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None
    trigger_count: int = 0
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class AlertPriceTrack:
    """One EUR price sample recorded while an alert is tracking."""

    alert_id: UUID
    price: Decimal
    threshold: Decimal
    recorded_at: datetime
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class AlertHistoryEntry:
    """One trigger event of an alert."""

    alert_id: UUID
    price_at_trigger: Decimal
    message: str
    notified: bool
    triggered_at: datetime
    id: UUID = field(default_factory=uuid4)


@dataclass
class TradingProfile:
    """Per-user trading configuration and virtual cash balance (EUR).

    ``analysis_interval`` and ``suggestion_interval`` are minutes, 0 disables.
    """

    user_id: UUID
    horizon: Horizon = Horizon.MEDIUM
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    target_profit_pct: Decimal = Decimal("10")
    max_loss_pct: Decimal = Decimal("5")
    preferred_sectors: tuple[str, ...] = ()
    trading_style: TradingStyle = TradingStyle.SWING
    cash_balance: Decimal = Decimal("0")
    analysis_interval: int = 60
    suggestion_interval: int = 0
    resuggest_dismissed_after_days: int = 7
    resuggest_accepted_after_days: Optional[int] = None
    last_analysis_at: Optional[datetime] = None
    last_suggestion_at: Optional[datetime] = None
    id: UUID = field(default_factory=uuid4)


@dataclass
class TradingAsset:
    """An asset in a profile's trading list.

    Invariants:
        entry_price / entry_date are set iff status is BOUGHT.
        exit_price / exit_date / realized_profit_pct are set iff status is SOLD.
    """

    profile_id: UUID
    asset_id: UUID
    status: TradingStatus = TradingStatus.WATCHING
    entry_price: Optional[Decimal] = None
    entry_price_native: Optional[Decimal] = None
    entry_date: Optional[datetime] = None
    quantity: Optional[Decimal] = None
    target_price: Optional[Decimal] = None
    stop_loss_price: Optional[Decimal] = None
    exit_price: Optional[Decimal] = None
    exit_price_native: Optional[Decimal] = None
    exit_date: Optional[datetime] = None
    realized_profit_pct: Optional[Decimal] = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class TradingSignal:
    """An immutable BUY/SELL/HOLD decision recorded for a trading asset."""

    trading_asset_id: UUID
    action: TradeAction
    confidence: Confidence
    reason: str
    price_at_signal: Decimal
    criteria: dict[str, Any]
    created_at: datetime
    notified: bool = False
    executed: bool = False
    id: UUID = field(default_factory=uuid4)


@dataclass
class TradingSuggestion:
    """A candidate asset proposed to a profile."""

    profile_id: UUID
    asset_id: UUID
    reason: str
    confidence: Confidence
    risk_level: RiskLevel
    expected_profit: Decimal
    timeframe: str
    criteria: dict[str, Any]
    status: SuggestionStatus = SuggestionStatus.PENDING
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class Portfolio:
    user_id: UUID
    name: str
    id: UUID = field(default_factory=uuid4)


@dataclass
class Holding:
    """A position in a portfolio. ``avg_buy_price`` is EUR."""

    portfolio_id: UUID
    asset_id: UUID
    quantity: Decimal
    avg_buy_price: Decimal
    trading_asset_id: Optional[UUID] = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class IndicatorReading:
    """A raw technical indicator value, e.g. ("RSI", "neutral", 52.3)."""

    indicator: str
    signal: str
    value: Optional[Decimal] = None


@dataclass(frozen=True)
class MarketCandidate:
    """An entry of a market-mover list (native currency)."""

    symbol: str
    name: str
    price: Decimal
    change_percent: Decimal
    volume: int = 0
    currency: str = "USD"
    sector: Optional[str] = None


@dataclass(frozen=True)
class NotificationMessage:
    """A user-facing notification, channel independent."""

    title: str
    body: str
    kind: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of one channel delivery."""

    channel: NotificationChannel
    success: bool
    error: Optional[str] = None
    latency_ms: float = 0.0


@dataclass(frozen=True)
class NotificationSummary:
    """Outcome of a notify() call across all requested channels."""

    results: tuple[NotificationResult, ...] = ()

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)
