"""
Currency normalization.

``Money`` is the only way amounts cross a currency boundary, and
``EurRates.to_eur`` is the only place a conversion happens. A pass fetches
its rates once through ``CurrencyNormalizer.snapshot`` and hands the same
immutable ``EurRates`` to every entity it evaluates.

Rounding rule: money to 2 decimals, FX rates to 6 decimals, half-up.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Union

from financy.domain.trading.errors import RateUnavailableError
from financy.domain.trading.ports import FxRatePort

logger = logging.getLogger(__name__)

EUR = "EUR"
DEFAULT_CURRENCY = "USD"

MONEY_QUANTUM = Decimal("0.01")
RATE_QUANTUM = Decimal("0.000001")

# Inclusive bounds on "1 unit of currency = x EUR".
SANE_RATE_BANDS: dict[str, tuple[Decimal, Decimal]] = {
    "USD": (Decimal("0.5"), Decimal("1.5")),
}
DEFAULT_RATE_BAND = (Decimal("0"), Decimal("100"))

# Approximate last-resort rates, used only when the feed and the last good
# value both fail. Trades refuse them.
FALLBACK_EUR_RATES: dict[str, Decimal] = {
    "USD": Decimal("0.84"),
    "GBP": Decimal("1.17"),
    "CHF": Decimal("1.07"),
    "JPY": Decimal("0.0058"),
    "CAD": Decimal("0.62"),
    "AUD": Decimal("0.56"),
    "SEK": Decimal("0.090"),
    "NOK": Decimal("0.085"),
    "DKK": Decimal("0.134"),
    "HKD": Decimal("0.11"),
    "CNY": Decimal("0.12"),
    "SGD": Decimal("0.66"),
}

Number = Union[Decimal, int, str]


def round_money(value: Number) -> Decimal:
    """Round an amount to cents."""
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def round_rate(value: Number) -> Decimal:
    return Decimal(value).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def normalize_currency(currency: Optional[str]) -> str:
    """Upper-case ISO code, defaulting to USD when the feed gave none."""
    return (currency or DEFAULT_CURRENCY).strip().upper() or DEFAULT_CURRENCY


def is_sane_rate(currency: str, rate: Decimal) -> bool:
    """Check a currency→EUR rate against the band for its pair."""
    low, high = SANE_RATE_BANDS.get(currency, DEFAULT_RATE_BAND)
    return rate > 0 and low <= rate <= high


@dataclass(frozen=True)
class Money:
    """An amount in an explicit currency."""

    amount: Decimal
    currency: str = EUR

    @classmethod
    def of(cls, amount: Number, currency: Optional[str]) -> "Money":
        return cls(Decimal(amount), normalize_currency(currency))

    @property
    def is_eur(self) -> bool:
        return self.currency == EUR

    def rounded(self) -> "Money":
        return Money(round_money(self.amount), self.currency)

    def __str__(self) -> str:
        return f"{self.amount:.2f} {self.currency}"


@dataclass(frozen=True)
class EurRates:
    """Currency→EUR rates frozen for the duration of one pass.

    ``approximate`` holds the codes whose rate is a hardcoded constant
    rather than one observed from the FX feed.
    """

    rates: Mapping[str, Decimal] = field(default_factory=dict)
    approximate: frozenset[str] = frozenset()

    def rate_for(self, currency: Optional[str]) -> Decimal:
        """Rate for ``currency``.

        Raises:
            RateUnavailableError: If the pass has no rate for the currency.
        """
        code = normalize_currency(currency)
        if code == EUR:
            return Decimal("1")
        rate = self.rates.get(code)
        if rate is None:
            raise RateUnavailableError(code)
        return rate

    def firm_rate_for(self, currency: Optional[str]) -> Decimal:
        """Like ``rate_for``, but refuses approximate constants."""
        code = normalize_currency(currency)
        if code in self.approximate:
            raise RateUnavailableError(code)
        return self.rate_for(code)

    def to_eur(self, money: Money) -> Money:
        """Convert to EUR. EUR amounts are returned unchanged."""
        if money.is_eur:
            return money
        return Money(round_money(money.amount * self.rate_for(money.currency)), EUR)


class CurrencyNormalizer:
    """Builds per-pass ``EurRates`` from the FX feed.

    Rates outside the sane band, failed lookups and timeouts fall back to
    the last good rate this normalizer saw, then to a hardcoded constant.
    A currency with neither is left out of the snapshot.
    """

    def __init__(self, fx_feed: FxRatePort, timeout: float = 10.0) -> None:
        self._fx_feed = fx_feed
        self._timeout = timeout
        self._last_good: dict[str, Decimal] = {}

    async def snapshot(self, currencies: Iterable[Optional[str]]) -> EurRates:
        """Fetch one rate per distinct currency, concurrently."""
        wanted = {normalize_currency(c) for c in currencies}
        wanted.discard(EUR)
        codes = sorted(wanted)
        resolved = await asyncio.gather(*(self._resolve(code) for code in codes))
        rates: dict[str, Decimal] = {}
        approximate: set[str] = set()
        for code, (rate, is_constant) in zip(codes, resolved):
            if rate is None:
                continue
            rates[code] = rate
            if is_constant:
                approximate.add(code)
        return EurRates(rates, frozenset(approximate))

    async def rate_for(self, currency: Optional[str], firm: bool = False) -> Decimal:
        """Single-currency lookup for on-demand operations (trades, analyze now).

        With ``firm`` set, a hardcoded constant is not accepted: the caller
        moves money at this rate.
        """
        rates = await self.snapshot([currency])
        return rates.firm_rate_for(currency) if firm else rates.rate_for(currency)

    async def _resolve(self, currency: str) -> tuple[Optional[Decimal], bool]:
        rate: Optional[Decimal] = None
        try:
            rate = await asyncio.wait_for(
                self._fx_feed.get_eur_rate(currency), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning("FX rate lookup for %s timed out after %.1fs", currency, self._timeout)
        except RateUnavailableError as exc:
            logger.warning("FX rate unavailable: %s", exc.message)
        except Exception:
            logger.exception("FX rate lookup for %s failed", currency)

        if rate is not None:
            rate = Decimal(rate)
            if is_sane_rate(currency, rate):
                rate = round_rate(rate)
                self._last_good[currency] = rate
                return rate, False
            logger.warning("Rejected out-of-band %s→EUR rate %s", currency, rate)

        last_good = self._last_good.get(currency)
        if last_good is not None:
            logger.warning("Using last good %s→EUR rate %s", currency, last_good)
            return last_good, False
        constant = FALLBACK_EUR_RATES.get(currency)
        if constant is not None:
            logger.warning("Using approximate %s→EUR rate %s", currency, constant)
            return constant, True
        logger.warning("No %s→EUR rate available", currency)
        return None, False
