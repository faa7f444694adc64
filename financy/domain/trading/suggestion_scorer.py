"""
Suggestion scorer.

Ranks market-mover candidates against a trading profile. A candidate earns,
for every category list it appears in:

    horizon weight[category] × style multiplier[category] × risk multiplier[category]
    + volatility bonus(|change %|)

and the contributions are summed. The weight tables below are the whole
scoring policy; a category missing from a style or risk table counts as 1.

Filters (applied after scoring, before ranking) are hard filters:
preferred sectors (unknown sector passes) and, for conservative long-term
profiles, |change %| < 8.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from financy.domain.trading.entities import (
    Confidence,
    Horizon,
    MarketCandidate,
    MoverCategory,
    RiskLevel,
    RiskTolerance,
    SuggestionStatus,
    TradingProfile,
    TradingStyle,
    TradingSuggestion,
)

D = Decimal

CANDIDATE_POOL_SIZE = 20
PERSISTED_SUGGESTIONS = 5
MIN_PRICE = D("1")

# Category order is also the order contributions (and sources) accumulate in.
CATEGORY_LIST_SIZES: dict[MoverCategory, int] = {
    MoverCategory.TRENDING: 25,
    MoverCategory.GAINERS: 20,
    MoverCategory.LOSERS: 20,
    MoverCategory.ACTIVE: 20,
    MoverCategory.UNDERVALUED: 15,
    MoverCategory.GROWTH: 15,
}

_C = MoverCategory

HORIZON_WEIGHTS: dict[Horizon, dict[MoverCategory, Decimal]] = {
    Horizon.SHORT: {_C.TRENDING: D(4), _C.GAINERS: D(5), _C.LOSERS: D(4), _C.ACTIVE: D(5), _C.UNDERVALUED: D(1), _C.GROWTH: D(2)},
    Horizon.MEDIUM: {_C.TRENDING: D(3), _C.GAINERS: D(3), _C.LOSERS: D(3), _C.ACTIVE: D(3), _C.UNDERVALUED: D(3), _C.GROWTH: D(3)},
    Horizon.LONG: {_C.TRENDING: D(1), _C.GAINERS: D(1), _C.LOSERS: D(2), _C.ACTIVE: D(1), _C.UNDERVALUED: D(5), _C.GROWTH: D(4)},
}

VOLATILITY_BONUS: dict[Horizon, Decimal] = {
    Horizon.SHORT: D(3),
    Horizon.MEDIUM: D(1),
    Horizon.LONG: D(0),
}

STYLE_MULTIPLIERS: dict[TradingStyle, dict[MoverCategory, Decimal]] = {
    TradingStyle.MOMENTUM: {_C.TRENDING: D("1.3"), _C.GAINERS: D("1.5"), _C.LOSERS: D("0.8"), _C.UNDERVALUED: D("0.5"), _C.GROWTH: D(1)},
    TradingStyle.VALUE: {_C.TRENDING: D("0.5"), _C.GAINERS: D("0.5"), _C.LOSERS: D("1.3"), _C.UNDERVALUED: D(2), _C.GROWTH: D("0.8")},
    TradingStyle.SWING: {_C.TRENDING: D(1), _C.GAINERS: D(1), _C.LOSERS: D("1.5"), _C.UNDERVALUED: D(1), _C.GROWTH: D(1)},
    TradingStyle.SCALPING: {_C.TRENDING: D("1.5"), _C.GAINERS: D("1.5"), _C.LOSERS: D(1), _C.UNDERVALUED: D("0.3"), _C.GROWTH: D("0.5")},
}

RISK_MULTIPLIERS: dict[RiskTolerance, dict[MoverCategory, Decimal]] = {
    RiskTolerance.CONSERVATIVE: {_C.LOSERS: D("0.5"), _C.UNDERVALUED: D("1.5")},
    RiskTolerance.MODERATE: {},
    RiskTolerance.AGGRESSIVE: {_C.LOSERS: D("1.5"), _C.UNDERVALUED: D("0.7")},
}

RISK_VOLATILITY_MULTIPLIER: dict[RiskTolerance, Decimal] = {
    RiskTolerance.CONSERVATIVE: D("0.3"),
    RiskTolerance.MODERATE: D(1),
    RiskTolerance.AGGRESSIVE: D(2),
}

# (minimum |change %|, bonus factor), checked top-down.
VOLATILITY_TIERS: tuple[tuple[Decimal, int], ...] = ((D(10), 3), (D(5), 2), (D(3), 1))

TIMEFRAMES = {Horizon.SHORT: "days", Horizon.MEDIUM: "weeks", Horizon.LONG: "months"}


@dataclass
class ScoredCandidate:
    candidate: MarketCandidate
    sources: list[MoverCategory] = field(default_factory=list)
    score: Decimal = D(0)

    @property
    def symbol(self) -> str:
        return self.candidate.symbol


@dataclass(frozen=True)
class CandidateAnalysis:
    """Explanation attached to a suggestion."""

    reason: str
    confidence: Confidence
    risk_level: RiskLevel


def category_weight(profile: TradingProfile, category: MoverCategory) -> Decimal:
    """Base points for appearing in one category list."""
    return (
        HORIZON_WEIGHTS[profile.horizon][category]
        * STYLE_MULTIPLIERS[profile.trading_style].get(category, D(1))
        * RISK_MULTIPLIERS[profile.risk_tolerance].get(category, D(1))
    )


def volatility_bonus(profile: TradingProfile, change_percent: Decimal) -> Decimal:
    magnitude = abs(change_percent)
    scale = VOLATILITY_BONUS[profile.horizon] * RISK_VOLATILITY_MULTIPLIER[profile.risk_tolerance]
    for minimum, factor in VOLATILITY_TIERS:
        if magnitude >= minimum:
            return scale * factor
    return D(0)


def sector_matches(sector: str, preferred: Sequence[str]) -> bool:
    """Case-insensitive substring match against any preferred sector."""
    lowered = sector.lower()
    return any(p.lower() in lowered for p in preferred if p)


def blocks_resuggestion(suggestion: TradingSuggestion, profile: TradingProfile, now: datetime) -> bool:
    """Whether an existing suggestion keeps its asset out of a new run.

    Pending suggestions always block. Accepted ones block unless the profile
    allows re-suggesting after N days. Dismissed ones block for
    ``resuggest_dismissed_after_days`` (0 disables the block).
    """
    if suggestion.status is SuggestionStatus.PENDING:
        return True
    if suggestion.status is SuggestionStatus.ACCEPTED:
        days = profile.resuggest_accepted_after_days
        if days is None or suggestion.accepted_at is None:
            return True
        return now - suggestion.accepted_at < timedelta(days=days)
    days = profile.resuggest_dismissed_after_days
    if days <= 0 or suggestion.dismissed_at is None:
        return False
    return now - suggestion.dismissed_at < timedelta(days=days)


class SuggestionScorer:
    """Scores, filters and explains market-mover candidates for a profile."""

    def __init__(
        self,
        pool_size: int = CANDIDATE_POOL_SIZE,
        persist_count: int = PERSISTED_SUGGESTIONS,
    ) -> None:
        self.pool_size = pool_size
        self.persist_count = persist_count

    def score(
        self,
        profile: TradingProfile,
        movers: Mapping[MoverCategory, Sequence[MarketCandidate]],
        excluded_symbols: Iterable[str] = (),
    ) -> list[ScoredCandidate]:
        """Return the top ``pool_size`` candidates, best first."""
        excluded = {s.upper() for s in excluded_symbols}
        scored: dict[str, ScoredCandidate] = {}

        for category in CATEGORY_LIST_SIZES:
            base = category_weight(profile, category)
            for candidate in movers.get(category, ()):
                symbol = candidate.symbol.upper()
                if symbol in excluded or candidate.price < MIN_PRICE:
                    continue
                points = base + volatility_bonus(profile, candidate.change_percent)
                if (
                    profile.horizon is Horizon.SHORT
                    and profile.risk_tolerance is RiskTolerance.AGGRESSIVE
                    and abs(candidate.change_percent) >= 5
                ):
                    points += 3
                entry = scored.setdefault(symbol, ScoredCandidate(candidate))
                entry.sources.append(category)
                entry.score += points

        ranked = [c for c in scored.values() if self._passes_filters(profile, c.candidate)]
        ranked.sort(key=lambda c: c.score, reverse=True)
        return ranked[: self.pool_size]

    @staticmethod
    def _passes_filters(profile: TradingProfile, candidate: MarketCandidate) -> bool:
        if profile.preferred_sectors and candidate.sector:
            if not sector_matches(candidate.sector, profile.preferred_sectors):
                return False
        if profile.risk_tolerance is RiskTolerance.CONSERVATIVE and profile.horizon is Horizon.LONG:
            return abs(candidate.change_percent) < 8
        return True

    def analyze(self, scored: ScoredCandidate, profile: TradingProfile) -> CandidateAnalysis:
        """Explain a candidate: reason clauses, confidence and risk level."""
        reasons: list[str] = []
        confidence = Confidence.MEDIUM
        risk = RiskLevel.MEDIUM
        sources = scored.sources
        change = scored.candidate.change_percent
        magnitude = abs(change)

        if profile.horizon is Horizon.SHORT:
            if magnitude >= 5:
                reasons.append(f"High volatility ({change:+.1f}%), suited to short-term trading")
                confidence = Confidence.HIGH
            if MoverCategory.ACTIVE in sources:
                reasons.append("High volume, liquid enough for fast entry and exit")
            if MoverCategory.GAINERS in sources and change > 0:
                reasons.append("Positive momentum, trend may continue")
            if MoverCategory.LOSERS in sources and change < 0:
                reasons.append("Sharp drop, short-term rebound opportunity")
                risk = RiskLevel.HIGH
        elif profile.horizon is Horizon.MEDIUM:
            if MoverCategory.TRENDING in sources:
                reasons.append("Trending, growing market interest")
            if MoverCategory.GROWTH in sources:
                reasons.append("Medium-term growth potential")
            if magnitude >= 3:
                reasons.append(f"Significant move ({change:.1f}%)")
        else:
            if MoverCategory.UNDERVALUED in sources:
                reasons.append("Undervalued, long-term appreciation potential")
                confidence = Confidence.HIGH
                risk = RiskLevel.LOW
            if MoverCategory.GROWTH in sources:
                reasons.append("Growth sector with good long-term prospects")
            if magnitude < 3:
                reasons.append("Contained volatility, suited to stable investing")
                risk = RiskLevel.LOW

        if MoverCategory.TRENDING in sources and not any("Trending" in r for r in reasons):
            reasons.append("Trending on the markets")

        if profile.risk_tolerance is RiskTolerance.AGGRESSIVE:
            if magnitude >= 8:
                reasons.append("High volatility fits an aggressive profile")
                confidence = Confidence.HIGH
        elif profile.risk_tolerance is RiskTolerance.CONSERVATIVE:
            if risk is RiskLevel.HIGH:
                risk = RiskLevel.MEDIUM
            if magnitude < 5 and MoverCategory.UNDERVALUED in sources:
                reasons.append("Limited risk profile")
                confidence = Confidence.HIGH

        if len(sources) >= 3:
            confidence = Confidence.HIGH
            reasons.append(f"Flagged by {len(sources)} sources")
        elif len(sources) == 2 and confidence is not Confidence.HIGH:
            confidence = Confidence.MEDIUM

        if scored.score >= 15:
            confidence = Confidence.HIGH
        elif scored.score >= 8 and confidence is Confidence.LOW:
            confidence = Confidence.MEDIUM

        sector = scored.candidate.sector
        if sector and profile.preferred_sectors and sector_matches(sector, profile.preferred_sectors):
            reasons.append(f"{sector} sector matches your preferences")

        if not reasons:
            reasons.append("Matches your trading profile")
        return CandidateAnalysis(". ".join(reasons) + ".", confidence, risk)

    def select(
        self, analyzed: Sequence[tuple[ScoredCandidate, CandidateAnalysis]]
    ) -> list[tuple[ScoredCandidate, CandidateAnalysis]]:
        """Keep the ``persist_count`` best by confidence, score breaking ties."""
        ordered = sorted(
            analyzed,
            key=lambda pair: (pair[1].confidence.rank, pair[0].score),
            reverse=True,
        )
        return ordered[: self.persist_count]
