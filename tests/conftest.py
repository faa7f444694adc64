"""
Shared fixtures: a throwaway SQLite store and in-memory collaborators.

Repositories run against a file database in ``tmp_path`` so concurrent
connections behave like they do on a real server.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from financy.domain.trading.entities import (
    IndicatorReading,
    MarketCandidate,
    MoverCategory,
    NotificationChannel,
    NotificationMessage,
    NotificationResult,
    NotificationSummary,
    Quote,
)
from financy.domain.trading.errors import DataUnavailableError, RateUnavailableError
from financy.domain.trading.ports import FxRatePort, IndicatorPort, NotifierPort, PriceFeedPort
from financy.infrastructure.trading.tables import init_db
from financy.infrastructure.trading.unit_of_work import SqlUnitOfWork

NOW = datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc)


class FakePriceFeed(PriceFeedPort):
    """Quotes and movers served from dictionaries."""

    def __init__(self) -> None:
        self.quotes: dict[str, Quote] = {}
        self.movers: dict[MoverCategory, list[MarketCandidate]] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def set_price(self, symbol: str, price: str, currency: str = "USD", **extra) -> None:
        self.quotes[symbol] = Quote(symbol=symbol, price=Decimal(price), currency=currency, **extra)

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        self.calls.append(symbol)
        if symbol in self.failing:
            raise DataUnavailableError(symbol, "feed down")
        return self.quotes.get(symbol)

    async def get_movers(self, category: MoverCategory, count: int) -> list[MarketCandidate]:
        return list(self.movers.get(category, []))[:count]


class FakeFxFeed(FxRatePort):
    def __init__(self, rates: Optional[dict[str, str]] = None) -> None:
        if rates is None:
            rates = {"USD": "0.9"}
        self.rates = {k: Decimal(v) for k, v in rates.items()}

    async def get_eur_rate(self, currency: str) -> Decimal:
        if currency not in self.rates:
            raise RateUnavailableError(currency)
        return self.rates[currency]


class FakeIndicators(IndicatorPort):
    def __init__(self) -> None:
        self.readings: dict[UUID, list[IndicatorReading]] = {}
        self.sentiment: dict[UUID, Decimal] = {}

    async def get_indicators(self, asset_id: UUID) -> list[IndicatorReading]:
        return list(self.readings.get(asset_id, []))

    async def get_news_sentiment(self, asset_id: UUID) -> Optional[Decimal]:
        return self.sentiment.get(asset_id)


class RecordingNotifier(NotifierPort):
    """Records every notification; delivery always succeeds unless told otherwise."""

    def __init__(self, succeed: bool = True) -> None:
        self.sent: list[tuple[UUID, tuple[NotificationChannel, ...], NotificationMessage]] = []
        self.succeed = succeed

    async def notify(
        self, user_id: UUID, channels: Iterable[NotificationChannel], message: NotificationMessage
    ) -> NotificationSummary:
        channels = tuple(channels)
        self.sent.append((user_id, channels, message))
        return NotificationSummary(
            tuple(
                NotificationResult(channel=c, success=self.succeed, error=None if self.succeed else "down")
                for c in channels
            )
        )


class Clock:
    """Settable clock for use cases that take ``clock=``."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'financy.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow(engine) -> SqlUnitOfWork:
    return SqlUnitOfWork(engine)


@pytest.fixture
def price_feed() -> FakePriceFeed:
    return FakePriceFeed()


@pytest.fixture
def fx_feed() -> FakeFxFeed:
    return FakeFxFeed()


@pytest.fixture
def indicators() -> FakeIndicators:
    return FakeIndicators()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> Clock:
    return Clock()
