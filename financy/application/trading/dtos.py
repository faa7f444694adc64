"""
Data Transfer Objects for the trading application layer.

DTOs carry data between the interface and application layers.
They are plain dataclasses with no behavior.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from financy.domain.trading.entities import (
    AlertPriceTrack,
    AlertType,
    Confidence,
    NotificationChannel,
    TradeAction,
    TradingStatus,
)


@dataclass(frozen=True)
class AlertPassResult:
    """Counters of one alert evaluation pass.

    Attributes:
        evaluated: Alerts that reached the state machine.
        triggered: IDLE→TRACKING transitions (one notification each).
        tracked: Samples appended to already tracking alerts.
        reset: TRACKING→IDLE transitions.
        skipped: Alerts skipped for missing data or unsupported type.
        failed: Alerts whose processing raised; the pass continued.
    """

    evaluated: int = 0
    triggered: int = 0
    tracked: int = 0
    reset: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of analyzing one trading asset.

    ``signal_created`` is False when an identical action was already
    recorded inside the dedup window; the decision is still returned.
    """

    trading_asset_id: UUID
    action: TradeAction
    confidence: Confidence
    reason: str
    price: Decimal
    price_eur: Decimal
    signal_created: bool
    criteria: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignalPassResult:
    profiles: int = 0
    analyzed: int = 0
    signals_created: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass(frozen=True)
class AddToTradingCommand:
    """Input DTO for putting an asset on a profile's trading list.

    Attributes:
        profile_id: Trading profile.
        asset_id: Market asset.
        status: ``watching`` (default) or ``bought`` for an existing position.
        entry_price: EUR entry price of an existing position.
        quantity: Size of an existing position.
    """

    profile_id: UUID
    asset_id: UUID
    status: TradingStatus = TradingStatus.WATCHING
    entry_price: Optional[Decimal] = None
    quantity: Optional[Decimal] = None


@dataclass(frozen=True)
class AlertTrackingResult:
    alert_id: UUID
    is_tracking: bool
    tracking_started_at: Optional[datetime]
    tracks: tuple[AlertPriceTrack, ...]


@dataclass(frozen=True)
class CreateAlertCommand:
    """Input DTO for a new alert. Price thresholds are EUR."""

    user_id: UUID
    asset_id: UUID
    alert_type: AlertType
    threshold: Decimal
    channels: tuple[NotificationChannel, ...] = (NotificationChannel.IN_APP,)
