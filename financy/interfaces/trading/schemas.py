"""
Pydantic schemas for trading API request/response validation.

These schemas enforce input validation and define the API contract.
Prices ending in ``_eur`` are EUR; other prices are in the asset's
native currency.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from financy.domain.trading.entities import (
    AlertStatus,
    AlertType,
    Confidence,
    NotificationChannel,
    RiskLevel,
    SuggestionStatus,
    TradeAction,
    TradingStatus,
)


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    scheduler_running: bool = False


class AlertPassResponse(BaseModel):
    """Counters of one alert evaluation pass."""

    evaluated: int
    triggered: int
    tracked: int
    reset: int
    skipped: int
    failed: int


class CreateAlertRequest(BaseModel):
    """Request body for a new alert.

    Price thresholds are EUR. ``technical_signal`` is rejected with 422.
    """

    user_id: UUID
    asset_id: UUID
    alert_type: AlertType
    threshold: Decimal = Field(..., gt=0)
    channels: list[NotificationChannel] = Field(default_factory=lambda: [NotificationChannel.IN_APP])


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    asset_id: UUID
    alert_type: AlertType
    threshold: Decimal
    status: AlertStatus
    channels: list[NotificationChannel]
    is_tracking: bool
    trigger_count: int


class PriceTrackItem(BaseModel):
    price: Decimal
    threshold: Decimal
    recorded_at: datetime


class AlertTrackingResponse(BaseModel):
    alert_id: UUID
    is_tracking: bool
    tracking_started_at: Optional[datetime] = None
    tracks: list[PriceTrackItem]


class AddToTradingRequest(BaseModel):
    """Request schema for putting an asset on the trading list.

    Attributes:
        asset_id: Asset to track.
        status: ``watching`` (default) or ``bought`` for a position held elsewhere.
        entry_price: EUR entry price of an existing position.
        quantity: Size of an existing position.
    """

    asset_id: UUID
    status: TradingStatus = TradingStatus.WATCHING
    entry_price: Optional[Decimal] = Field(default=None, gt=0, description="EUR entry price")
    quantity: Optional[Decimal] = Field(default=None, gt=0)


class BuyRequest(BaseModel):
    quantity: Decimal = Field(..., gt=0, description="Number of units to buy")


class TradingAssetResponse(BaseModel):
    """A trading list entry. Entry, exit, target and stop-loss prices are EUR."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    profile_id: UUID
    asset_id: UUID
    status: TradingStatus
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


class AnalysisResponse(BaseModel):
    trading_asset_id: UUID
    action: TradeAction
    confidence: Confidence
    reason: str
    price: Decimal
    price_eur: Decimal
    signal_created: bool
    criteria: dict[str, Any]


class GenerateSuggestionsResponse(BaseModel):
    created: int


class SuggestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    profile_id: UUID
    asset_id: UUID
    status: SuggestionStatus
    reason: str
    confidence: Confidence
    risk_level: RiskLevel
    expected_profit: Decimal
    timeframe: str
    accepted_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None


class AcceptSuggestionResponse(BaseModel):
    suggestion: SuggestionResponse
    trading_asset: TradingAssetResponse
