"""
Port interfaces (ABCs) for the trading bounded context.

Ports define the contracts that the domain requires from the outside world.
Infrastructure adapters implement these interfaces.
The domain layer never depends on concrete implementations.

Every port is asynchronous: the scheduler drives many entities per pass and
no collaborator call may block the others.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import AsyncContextManager, Iterable, Optional
from uuid import UUID

from financy.domain.trading.entities import (
    Alert,
    AlertHistoryEntry,
    AlertPriceTrack,
    Asset,
    Holding,
    IndicatorReading,
    MarketCandidate,
    MoverCategory,
    NotificationChannel,
    NotificationMessage,
    NotificationSummary,
    Portfolio,
    Quote,
    SuggestionStatus,
    TradeAction,
    TradingAsset,
    TradingProfile,
    TradingSignal,
    TradingStatus,
    TradingSuggestion,
)


# ── External collaborators ──────────────────────────────────────────


class PriceFeedPort(ABC):
    """Port for live quotes and market-mover lists."""

    @abstractmethod
    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Return a live quote, or None when the feed has no price."""
        raise NotImplementedError

    @abstractmethod
    async def get_movers(self, category: MoverCategory, count: int) -> list[MarketCandidate]:
        """Return a ranked market-mover list for one category."""
        raise NotImplementedError


class FxRatePort(ABC):
    """Port for currency→EUR conversion rates."""

    @abstractmethod
    async def get_eur_rate(self, currency: str) -> Decimal:
        """Return how many EUR one unit of ``currency`` is worth.

        Raises:
            RateUnavailableError: If no source could provide a rate.
        """
        raise NotImplementedError


class IndicatorPort(ABC):
    """Port for technical indicators and aggregate news sentiment."""

    @abstractmethod
    async def get_indicators(self, asset_id: UUID) -> list[IndicatorReading]:
        """Return the most recent indicator readings. May be empty."""
        raise NotImplementedError

    @abstractmethod
    async def get_news_sentiment(self, asset_id: UUID) -> Optional[Decimal]:
        """Return an aggregate sentiment in [-1, 1], or None without news."""
        raise NotImplementedError


class NotifierPort(ABC):
    """Port for best-effort user notifications. Implementations never raise."""

    @abstractmethod
    async def notify(
        self,
        user_id: UUID,
        channels: Iterable[NotificationChannel],
        message: NotificationMessage,
    ) -> NotificationSummary:
        raise NotImplementedError


# ── Persistent store ────────────────────────────────────────────────


class AssetRepository(ABC):
    """Port for market assets and their cached quotes."""

    @abstractmethod
    async def get(self, asset_id: UUID) -> Optional[Asset]:
        raise NotImplementedError

    @abstractmethod
    async def get_many(self, asset_ids: Iterable[UUID]) -> dict[UUID, Asset]:
        raise NotImplementedError

    @abstractmethod
    async def find_by_symbol(self, symbol: str) -> Optional[Asset]:
        raise NotImplementedError

    @abstractmethod
    async def add(self, asset: Asset) -> Asset:
        raise NotImplementedError

    @abstractmethod
    async def update_quote(self, asset_id: UUID, quote: Quote, at: datetime) -> None:
        """Overwrite the cached quote fields of an asset."""
        raise NotImplementedError


class AlertRepository(ABC):
    """Port for alerts, their trigger history and tracking samples."""

    @abstractmethod
    async def get(self, alert_id: UUID) -> Optional[Alert]:
        raise NotImplementedError

    @abstractmethod
    async def list_active(self) -> list[Alert]:
        raise NotImplementedError

    @abstractmethod
    async def add(self, alert: Alert) -> Alert:
        raise NotImplementedError

    @abstractmethod
    async def save_state(self, alert: Alert) -> None:
        """Persist the evaluator-owned fields (tracking, trigger count)."""
        raise NotImplementedError

    @abstractmethod
    async def add_history(self, entry: AlertHistoryEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_history(self, alert_id: UUID) -> list[AlertHistoryEntry]:
        raise NotImplementedError

    @abstractmethod
    async def add_track(self, track: AlertPriceTrack) -> None:
        raise NotImplementedError

    @abstractmethod
    async def recent_tracks(self, alert_id: UUID, limit: int = 500) -> list[AlertPriceTrack]:
        """Return the most recent samples, oldest first."""
        raise NotImplementedError


class TradingRepository(ABC):
    """Port for trading profiles, trading assets and signals."""

    @abstractmethod
    async def get_profile(self, profile_id: UUID) -> Optional[TradingProfile]:
        raise NotImplementedError

    @abstractmethod
    async def list_profiles(self) -> list[TradingProfile]:
        raise NotImplementedError

    @abstractmethod
    async def add_profile(self, profile: TradingProfile) -> TradingProfile:
        raise NotImplementedError

    @abstractmethod
    async def adjust_cash(self, profile_id: UUID, delta: Decimal) -> None:
        """Add ``delta`` (negative to spend) to the cash balance in place."""
        raise NotImplementedError

    @abstractmethod
    async def mark_profile_run(
        self,
        profile_id: UUID,
        analysis_at: Optional[datetime] = None,
        suggestion_at: Optional[datetime] = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_trading_asset(self, trading_asset_id: UUID) -> Optional[TradingAsset]:
        raise NotImplementedError

    @abstractmethod
    async def find_trading_asset(self, profile_id: UUID, asset_id: UUID) -> Optional[TradingAsset]:
        raise NotImplementedError

    @abstractmethod
    async def list_trading_assets(
        self, profile_id: UUID, statuses: Optional[Iterable[TradingStatus]] = None
    ) -> list[TradingAsset]:
        raise NotImplementedError

    @abstractmethod
    async def add_trading_asset(self, trading_asset: TradingAsset) -> TradingAsset:
        raise NotImplementedError

    @abstractmethod
    async def save_trading_asset(self, trading_asset: TradingAsset) -> None:
        raise NotImplementedError

    @abstractmethod
    async def find_recent_signal(
        self, trading_asset_id: UUID, action: TradeAction, since: datetime
    ) -> Optional[TradingSignal]:
        raise NotImplementedError

    @abstractmethod
    async def add_signal(self, signal: TradingSignal) -> None:
        raise NotImplementedError

    @abstractmethod
    async def mark_signal_notified(self, signal_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    async def mark_latest_signal_executed(self, trading_asset_id: UUID, action: TradeAction) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_signals(self, trading_asset_id: UUID) -> list[TradingSignal]:
        raise NotImplementedError


class SuggestionRepository(ABC):
    """Port for trading suggestions."""

    @abstractmethod
    async def get(self, suggestion_id: UUID) -> Optional[TradingSuggestion]:
        raise NotImplementedError

    @abstractmethod
    async def list_for_profile(
        self, profile_id: UUID, status: Optional[SuggestionStatus] = None
    ) -> list[TradingSuggestion]:
        raise NotImplementedError

    @abstractmethod
    async def add_many(self, suggestions: list[TradingSuggestion]) -> int:
        """Insert suggestions, skipping (profile, asset, status) duplicates.

        Returns:
            Number of rows actually inserted.
        """
        raise NotImplementedError

    @abstractmethod
    async def save(self, suggestion: TradingSuggestion) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_other(
        self, profile_id: UUID, asset_id: UUID, status: SuggestionStatus, keep_id: UUID
    ) -> None:
        """Delete rows in ``status`` for the pair, except ``keep_id``."""
        raise NotImplementedError


class PortfolioRepository(ABC):
    """Port for portfolios and holdings."""

    @abstractmethod
    async def find(self, user_id: UUID, name: str) -> Optional[Portfolio]:
        raise NotImplementedError

    @abstractmethod
    async def get_or_create(self, user_id: UUID, name: str) -> Portfolio:
        raise NotImplementedError

    @abstractmethod
    async def get_holding(self, portfolio_id: UUID, asset_id: UUID) -> Optional[Holding]:
        raise NotImplementedError

    @abstractmethod
    async def save_holding(self, holding: Holding) -> None:
        """Insert or update the holding for (portfolio, asset)."""
        raise NotImplementedError

    @abstractmethod
    async def delete_trading_holding(self, portfolio_id: UUID, trading_asset_id: UUID) -> int:
        raise NotImplementedError

    @abstractmethod
    async def list_holdings(self, portfolio_id: UUID) -> list[Holding]:
        raise NotImplementedError


class NotificationRepository(ABC):
    """Port for stored in-app notifications and per-user channel settings."""

    @abstractmethod
    async def store(self, user_id: UUID, message: NotificationMessage) -> None:
        """Store an in-app notification (one per alert for alert messages)."""
        raise NotImplementedError

    @abstractmethod
    async def get_telegram_chat_id(self, user_id: UUID) -> Optional[str]:
        """Return the chat id when the user enabled Telegram, else None."""
        raise NotImplementedError


class UnitOfWork(ABC):
    """Access to all repositories plus the multi-write transaction primitive.

    Outside ``atomic()`` each repository call commits on its own.
    Inside, every call made through the yielded unit of work shares one
    transaction that commits on exit or rolls back on error.
    """

    assets: AssetRepository
    alerts: AlertRepository
    trading: TradingRepository
    suggestions: SuggestionRepository
    portfolios: PortfolioRepository

    @abstractmethod
    def atomic(self) -> AsyncContextManager["UnitOfWork"]:
        raise NotImplementedError
