"""
Use case: Accept or dismiss a trading suggestion.

Accept: the suggested asset goes on the trading list as watching, and the
suggestion becomes accepted (replacing an older accepted suggestion for the
same asset). Both happen in one transaction.
Dismiss: the suggestion becomes dismissed.

Failure cases:
    - SuggestionNotFoundError.
    - InvalidStateError unless the suggestion is pending.
    - AlreadyTrackedError when accepting an asset already on the list.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from financy.application.trading.add_to_trading import AddToTradingUseCase
from financy.application.trading.dtos import AddToTradingCommand
from financy.domain.trading.entities import SuggestionStatus, TradingAsset, TradingSuggestion
from financy.domain.trading.errors import InvalidStateError, SuggestionNotFoundError
from financy.domain.trading.ports import UnitOfWork

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewSuggestionUseCase:
    def __init__(
        self,
        uow: UnitOfWork,
        add_to_trading: AddToTradingUseCase,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._add_to_trading = add_to_trading
        self._clock = clock

    async def accept(self, suggestion_id: UUID) -> tuple[TradingSuggestion, TradingAsset]:
        suggestion = await self._pending(suggestion_id, "accept")
        accepted = replace(suggestion, status=SuggestionStatus.ACCEPTED, accepted_at=self._clock())
        async with self._uow.atomic() as tx:
            trading_asset = await self._add_to_trading.execute(
                AddToTradingCommand(profile_id=suggestion.profile_id, asset_id=suggestion.asset_id),
                uow=tx,
            )
            await tx.suggestions.delete_other(
                suggestion.profile_id, suggestion.asset_id, SuggestionStatus.ACCEPTED, keep_id=suggestion.id
            )
            await tx.suggestions.save(accepted)
        logger.info("Suggestion %s accepted", suggestion.id)
        return accepted, trading_asset

    async def dismiss(self, suggestion_id: UUID) -> TradingSuggestion:
        suggestion = await self._pending(suggestion_id, "dismiss")
        dismissed = replace(suggestion, status=SuggestionStatus.DISMISSED, dismissed_at=self._clock())
        async with self._uow.atomic() as tx:
            await tx.suggestions.delete_other(
                suggestion.profile_id, suggestion.asset_id, SuggestionStatus.DISMISSED, keep_id=suggestion.id
            )
            await tx.suggestions.save(dismissed)
        logger.info("Suggestion %s dismissed", suggestion.id)
        return dismissed

    async def _pending(self, suggestion_id: UUID, operation: str) -> TradingSuggestion:
        suggestion = await self._uow.suggestions.get(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(str(suggestion_id))
        if suggestion.status is not SuggestionStatus.PENDING:
            raise InvalidStateError("suggestion", suggestion.status.value, operation)
        return suggestion
