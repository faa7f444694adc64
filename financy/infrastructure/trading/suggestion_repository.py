"""
Adapter: Suggestion repository.

Implements SuggestionRepository port over ``trading_suggestions``.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import delete, insert, select, update

from financy.domain.trading.entities import (
    Confidence,
    RiskLevel,
    SuggestionStatus,
    TradingSuggestion,
)
from financy.domain.trading.ports import SuggestionRepository
from financy.infrastructure.trading.base import SqlRepository, parse_enum, to_decimal
from financy.infrastructure.trading.tables import trading_suggestions, utcnow


def _to_suggestion(row) -> TradingSuggestion:
    return TradingSuggestion(
        id=row["id"],
        profile_id=row["profile_id"],
        asset_id=row["asset_id"],
        status=SuggestionStatus(row["status"]),
        reason=row["reason"],
        confidence=parse_enum(Confidence, row["confidence"], Confidence.MEDIUM),
        risk_level=parse_enum(RiskLevel, row["risk_level"], RiskLevel.MEDIUM),
        expected_profit=to_decimal(row["expected_profit"]),
        timeframe=row["timeframe"],
        criteria=row["criteria"] or {},
        created_at=row["created_at"],
        accepted_at=row["accepted_at"],
        dismissed_at=row["dismissed_at"],
    )


class SqlSuggestionRepository(SqlRepository, SuggestionRepository):
    """SQL implementation of the suggestion repository."""

    async def get(self, suggestion_id: UUID) -> Optional[TradingSuggestion]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(trading_suggestions).where(trading_suggestions.c.id == suggestion_id)
            )
            row = result.mappings().first()
        return _to_suggestion(row) if row else None

    async def list_for_profile(
        self, profile_id: UUID, status: Optional[SuggestionStatus] = None
    ) -> list[TradingSuggestion]:
        query = select(trading_suggestions).where(trading_suggestions.c.profile_id == profile_id)
        if status is not None:
            query = query.where(trading_suggestions.c.status == status.value)
        async with self._connect() as conn:
            result = await conn.execute(query.order_by(trading_suggestions.c.created_at))
            rows = result.mappings().all()
        return [_to_suggestion(row) for row in rows]

    async def add_many(self, suggestions: list[TradingSuggestion]) -> int:
        inserted = 0
        async with self._connect() as conn:
            for suggestion in suggestions:
                existing = await conn.execute(
                    select(trading_suggestions.c.id).where(
                        trading_suggestions.c.profile_id == suggestion.profile_id,
                        trading_suggestions.c.asset_id == suggestion.asset_id,
                        trading_suggestions.c.status == suggestion.status.value,
                    )
                )
                if existing.first() is not None:
                    continue
                await conn.execute(
                    insert(trading_suggestions).values(
                        id=suggestion.id,
                        profile_id=suggestion.profile_id,
                        asset_id=suggestion.asset_id,
                        status=suggestion.status.value,
                        reason=suggestion.reason,
                        confidence=suggestion.confidence.value,
                        risk_level=suggestion.risk_level.value,
                        expected_profit=suggestion.expected_profit,
                        timeframe=suggestion.timeframe,
                        criteria=suggestion.criteria,
                        created_at=suggestion.created_at or utcnow(),
                    )
                )
                inserted += 1
        return inserted

    async def save(self, suggestion: TradingSuggestion) -> None:
        async with self._connect() as conn:
            await conn.execute(
                update(trading_suggestions)
                .where(trading_suggestions.c.id == suggestion.id)
                .values(
                    status=suggestion.status.value,
                    accepted_at=suggestion.accepted_at,
                    dismissed_at=suggestion.dismissed_at,
                )
            )

    async def delete_other(
        self, profile_id: UUID, asset_id: UUID, status: SuggestionStatus, keep_id: UUID
    ) -> None:
        async with self._connect() as conn:
            await conn.execute(
                delete(trading_suggestions).where(
                    trading_suggestions.c.profile_id == profile_id,
                    trading_suggestions.c.asset_id == asset_id,
                    trading_suggestions.c.status == status.value,
                    trading_suggestions.c.id != keep_id,
                )
            )
