"""
Adapter: Technical indicator supplier.

Implements IndicatorPort from the ``technical_signals`` and ``asset_news``
tables, which are filled by the indicator and news ingestion jobs.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select

from financy.domain.trading.entities import IndicatorReading
from financy.domain.trading.ports import IndicatorPort
from financy.infrastructure.trading.base import SqlRepository, to_decimal
from financy.infrastructure.trading.tables import asset_news, technical_signals

RECENT_READINGS = 10
RECENT_NEWS = 10

_SENTIMENT_SCORES = {"positive": 1, "negative": -1}


class SqlIndicatorRepository(SqlRepository, IndicatorPort):
    """Reads the latest indicator rows and news sentiment labels."""

    async def get_indicators(self, asset_id: UUID) -> list[IndicatorReading]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(technical_signals)
                .where(technical_signals.c.asset_id == asset_id)
                .order_by(technical_signals.c.calculated_at.desc())
                .limit(RECENT_READINGS)
            )
            rows = result.mappings().all()
        return [
            IndicatorReading(
                indicator=row["indicator"],
                signal=row["signal"],
                value=to_decimal(row["value"]),
            )
            for row in rows
        ]

    async def get_news_sentiment(self, asset_id: UUID) -> Optional[Decimal]:
        """Mean of the non-neutral labels of the latest news items."""
        async with self._connect() as conn:
            result = await conn.execute(
                select(asset_news.c.sentiment)
                .where(asset_news.c.asset_id == asset_id)
                .order_by(asset_news.c.published_at.desc())
                .limit(RECENT_NEWS)
            )
            labels = result.scalars().all()
        scores = [_SENTIMENT_SCORES[label] for label in labels if label in _SENTIMENT_SCORES]
        if not scores:
            return None
        return (Decimal(sum(scores)) / Decimal(len(scores))).quantize(Decimal("0.0001"))
