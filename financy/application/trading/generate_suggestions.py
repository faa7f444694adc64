"""
Use case: Generate trading suggestions for a profile.

Input: profile_id
Output: number of suggestions persisted
Side effects:
    - Upserts the twenty best-scored candidates as assets (new symbols
      created, cached quotes of known ones refreshed).
    - Persists up to five pending suggestions (existing duplicates skipped).
    - Stamps ``last_suggestion_at`` on the profile.
    - Notifies the user in-app and on Telegram when something was persisted.
Failure cases:
    - ProfileNotFoundError.
    - A mover category that fails or times out contributes nothing.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from financy.application.trading.guards import bounded
from financy.domain.trading.currency import CurrencyNormalizer, EurRates, Money
from financy.domain.trading.entities import (
    Asset,
    MarketCandidate,
    MoverCategory,
    NotificationChannel,
    NotificationMessage,
    Quote,
    TradingProfile,
    TradingStatus,
    TradingSuggestion,
)
from financy.domain.trading.errors import DataUnavailableError, ProfileNotFoundError, RateUnavailableError
from financy.domain.trading.ports import NotifierPort, PriceFeedPort, UnitOfWork
from financy.domain.trading.suggestion_scorer import (
    CATEGORY_LIST_SIZES,
    TIMEFRAMES,
    CandidateAnalysis,
    ScoredCandidate,
    SuggestionScorer,
    blocks_resuggestion,
)

logger = logging.getLogger(__name__)

SUGGESTION_CHANNELS = (NotificationChannel.IN_APP, NotificationChannel.TELEGRAM)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _previous_close(candidate: MarketCandidate) -> Optional[Decimal]:
    divisor = 1 + candidate.change_percent / 100
    if not divisor:
        return None
    return (candidate.price / divisor).quantize(Decimal("0.000001"))


class GenerateSuggestionsUseCase:
    """Turns the market movers lists into ranked, explained suggestions."""

    def __init__(
        self,
        uow: UnitOfWork,
        price_feed: PriceFeedPort,
        normalizer: CurrencyNormalizer,
        notifier: NotifierPort,
        scorer: Optional[SuggestionScorer] = None,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._price_feed = price_feed
        self._normalizer = normalizer
        self._notifier = notifier
        self._scorer = scorer or SuggestionScorer()
        self._timeout = timeout
        self._clock = clock

    async def execute(self, profile_id: UUID) -> int:
        profile = await self._uow.trading.get_profile(profile_id)
        if profile is None:
            raise ProfileNotFoundError(str(profile_id))

        now = self._clock()
        excluded = await self._excluded_symbols(profile, now)
        movers = await self._fetch_movers()
        scored = self._scorer.score(profile, movers, excluded)

        if not scored:
            logger.info("No suggestion candidates for profile %s", profile.id)
            await self._uow.trading.mark_profile_run(profile.id, suggestion_at=now)
            return 0

        rates = await self._normalizer.snapshot(c.candidate.currency for c in scored)
        chosen = self._scorer.select([(c, self._scorer.analyze(c, profile)) for c in scored])

        assets = {}
        for candidate in scored:
            assets[candidate.candidate.symbol] = await self._ensure_asset(candidate.candidate, now)

        suggestions = [
            self._suggestion(profile, assets[candidate.candidate.symbol], candidate, analysis, rates, now)
            for candidate, analysis in chosen
        ]

        async with self._uow.atomic() as tx:
            inserted = await tx.suggestions.add_many(suggestions)
            await tx.trading.mark_profile_run(profile.id, suggestion_at=now)

        logger.info("Generated %d suggestions for profile %s", inserted, profile.id)
        if inserted:
            await self._notify(profile, [c.symbol for c, _ in chosen], inserted)
        return inserted

    async def _excluded_symbols(self, profile: TradingProfile, now: datetime) -> set[str]:
        tracked = await self._uow.trading.list_trading_assets(
            profile.id, (TradingStatus.WATCHING, TradingStatus.BOUGHT)
        )
        blocked = {ta.asset_id for ta in tracked}
        for suggestion in await self._uow.suggestions.list_for_profile(profile.id):
            if blocks_resuggestion(suggestion, profile, now):
                blocked.add(suggestion.asset_id)
        assets = await self._uow.assets.get_many(blocked)
        return {asset.symbol.upper() for asset in assets.values()}

    async def _fetch_movers(self) -> dict[MoverCategory, list[MarketCandidate]]:
        async def fetch(category: MoverCategory, count: int) -> list[MarketCandidate]:
            try:
                return await bounded(
                    self._price_feed.get_movers(category, count), self._timeout, f"{category.value} movers"
                )
            except DataUnavailableError as exc:
                logger.warning("%s", exc.message)
                return []
            except Exception:
                logger.exception("%s movers failed", category.value)
                return []

        categories = list(CATEGORY_LIST_SIZES.items())
        lists = await asyncio.gather(*(fetch(category, count) for category, count in categories))
        return {category: movers for (category, _), movers in zip(categories, lists)}

    async def _ensure_asset(self, candidate: MarketCandidate, now: datetime) -> Asset:
        quote = Quote(
            symbol=candidate.symbol,
            price=candidate.price,
            currency=candidate.currency,
            previous_close=_previous_close(candidate),
            change_percent=candidate.change_percent,
            volume=candidate.volume,
        )
        asset = await self._uow.assets.find_by_symbol(candidate.symbol)
        if asset is not None:
            await self._uow.assets.update_quote(asset.id, quote, now)
            return asset
        return await self._uow.assets.add(
            Asset(
                symbol=candidate.symbol.upper(),
                name=candidate.name or candidate.symbol,
                currency=candidate.currency,
                sector=candidate.sector,
                current_price=quote.price,
                previous_close=quote.previous_close,
                change_percent=quote.change_percent,
                volume=quote.volume,
                updated_at=now,
            )
        )

    @staticmethod
    def _suggestion(
        profile: TradingProfile,
        asset: Asset,
        scored: ScoredCandidate,
        analysis: CandidateAnalysis,
        rates: EurRates,
        now: datetime,
    ) -> TradingSuggestion:
        candidate = scored.candidate
        try:
            price_eur: Optional[Decimal] = rates.to_eur(Money.of(candidate.price, candidate.currency)).amount
        except RateUnavailableError:
            price_eur = None
        return TradingSuggestion(
            profile_id=profile.id,
            asset_id=asset.id,
            reason=analysis.reason,
            confidence=analysis.confidence,
            risk_level=analysis.risk_level,
            expected_profit=profile.target_profit_pct,
            timeframe=TIMEFRAMES[profile.horizon],
            criteria={
                "sources": [s.value for s in scored.sources],
                "score": float(scored.score),
                "price": float(candidate.price),
                "priceEur": float(price_eur) if price_eur is not None else None,
                "currency": candidate.currency,
                "changePercent": float(candidate.change_percent),
                "volume": candidate.volume,
                "sector": candidate.sector,
                "horizon": profile.horizon.value,
                "riskTolerance": profile.risk_tolerance.value,
            },
            created_at=now,
        )

    async def _notify(self, profile: TradingProfile, symbols: list[str], count: int) -> None:
        message = NotificationMessage(
            title="New trading suggestions",
            body=f"{count} new assets match your profile: {', '.join(symbols[:count])}",
            kind="trading_suggestion",
            data={"profileId": str(profile.id), "symbols": symbols, "count": count},
        )
        await self._notifier.notify(profile.user_id, SUGGESTION_CHANNELS, message)


class RunSuggestionPassUseCase:
    """Generates suggestions for every profile whose suggestion interval elapsed.

    ``suggestion_interval`` is in minutes; 0 disables automatic generation.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        generate: GenerateSuggestionsUseCase,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._generate = generate
        self._clock = clock

    async def execute(self) -> int:
        now = self._clock()
        total = 0
        for profile in await self._uow.trading.list_profiles():
            if not self._is_due(profile, now):
                continue
            try:
                total += await self._generate.execute(profile.id)
            except Exception:
                logger.exception("Suggestion generation failed for profile %s", profile.id)
        return total

    @staticmethod
    def _is_due(profile: TradingProfile, now: datetime) -> bool:
        if profile.suggestion_interval <= 0:
            return False
        if profile.last_suggestion_at is None:
            return True
        return now - profile.last_suggestion_at >= timedelta(minutes=profile.suggestion_interval)
