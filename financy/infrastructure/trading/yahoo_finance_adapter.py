"""
Adapter: Yahoo Finance price feed.

Implements PriceFeedPort over Yahoo's public JSON endpoints:

    v8/finance/chart/{symbol}                      live quote
    v1/finance/screener/predefined/saved?scrIds=…  gainers, losers, ...
    v1/finance/trending/US + v7/finance/quote      trending tickers

Quotes are never cached here; mover lists are cached briefly because they
are only used for suggestion generation.
"""

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from financy.domain.trading.entities import MarketCandidate, MoverCategory, Quote
from financy.domain.trading.errors import DataUnavailableError
from financy.domain.trading.ports import PriceFeedPort

logger = logging.getLogger(__name__)

SCREENER_IDS = {
    MoverCategory.GAINERS: "day_gainers",
    MoverCategory.LOSERS: "day_losers",
    MoverCategory.ACTIVE: "most_actives",
    MoverCategory.UNDERVALUED: "undervalued_large_caps",
    MoverCategory.GROWTH: "growth_technology_stocks",
}

MOVERS_CACHE_TTL_SECONDS = 600


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _candidate(raw: dict[str, Any], default_sector: Optional[str] = None) -> Optional[MarketCandidate]:
    price = _decimal(raw.get("regularMarketPrice"))
    if price is None:
        return None
    return MarketCandidate(
        symbol=raw["symbol"],
        name=raw.get("longName") or raw.get("shortName") or raw["symbol"],
        price=price,
        change_percent=_decimal(raw.get("regularMarketChangePercent")) or Decimal("0"),
        volume=int(raw.get("regularMarketVolume") or 0),
        currency=raw.get("currency") or "USD",
        sector=raw.get("sector") or default_sector,
    )


def _quote(symbol: str, data: dict[str, Any]) -> Optional[Quote]:
    """Quote from a chart payload; None when Yahoo has no price."""
    results = (data.get("chart") or {}).get("result") or []
    if not results:
        logger.warning("No Yahoo Finance data for %s", symbol)
        return None
    meta = results[0].get("meta") or {}
    price = _decimal(meta.get("regularMarketPrice"))
    if price is None:
        return None

    previous_close = _decimal(meta.get("chartPreviousClose"))
    change_percent = None
    if previous_close:
        change_percent = ((price - previous_close) / previous_close * 100).quantize(Decimal("0.01"))
    return Quote(
        symbol=meta.get("symbol") or symbol,
        price=price,
        currency=meta.get("currency") or "USD",
        previous_close=previous_close,
        change_percent=change_percent,
        volume=int(meta.get("regularMarketVolume") or 0),
    )


class YahooFinanceAdapter(PriceFeedPort):
    """Price feed backed by Yahoo Finance.

    Args:
        client: Shared ``httpx.AsyncClient`` (owned by the caller).
        base_url: Yahoo query host.
        user_agent: Sent on every request; Yahoo rejects empty agents.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://query2.finance.yahoo.com",
        user_agent: str = "Mozilla/5.0",
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._movers_cache: dict[tuple[MoverCategory, int], tuple[float, list[MarketCandidate]]] = {}

    async def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        response = await self._client.get(f"{self._base_url}{path}", params=params, headers=self._headers)
        response.raise_for_status()
        return response.json()

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        try:
            data = await self._get_json(
                f"/v8/finance/chart/{symbol}", params={"interval": "1d", "range": "1d"}
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise DataUnavailableError(symbol, f"quote request failed: {type(exc).__name__}") from exc
        try:
            return _quote(symbol, data)
        except (AttributeError, TypeError, KeyError, IndexError) as exc:
            raise DataUnavailableError(symbol, f"malformed quote payload: {type(exc).__name__}") from exc

    async def get_movers(self, category: MoverCategory, count: int) -> list[MarketCandidate]:
        key = (category, count)
        cached = self._movers_cache.get(key)
        if cached and time.monotonic() - cached[0] < MOVERS_CACHE_TTL_SECONDS:
            return cached[1]

        try:
            if category is MoverCategory.TRENDING:
                movers = await self._trending(count)
            else:
                movers = await self._screener(category, count)
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning("Yahoo %s list unavailable: %s", category.value, exc)
            return []

        self._movers_cache[key] = (time.monotonic(), movers)
        return movers

    async def _screener(self, category: MoverCategory, count: int) -> list[MarketCandidate]:
        data = await self._get_json(
            "/v1/finance/screener/predefined/saved",
            params={"scrIds": SCREENER_IDS[category], "count": count},
        )
        results = (data.get("finance") or {}).get("result") or []
        quotes = results[0].get("quotes", []) if results else []
        default_sector = "Technology" if category is MoverCategory.GROWTH else None
        movers = []
        for raw in quotes:
            if raw.get("quoteType") != "EQUITY":
                continue
            candidate = _candidate(raw, default_sector)
            if candidate is not None:
                movers.append(candidate)
        return movers

    async def _trending(self, count: int) -> list[MarketCandidate]:
        data = await self._get_json("/v1/finance/trending/US", params={"count": count})
        results = (data.get("finance") or {}).get("result") or []
        tickers = results[0].get("quotes", []) if results else []
        symbols = [t["symbol"] for t in tickers if t.get("symbol")][:count]
        if not symbols:
            return []

        data = await self._get_json("/v7/finance/quote", params={"symbols": ",".join(symbols)})
        quotes = (data.get("quoteResponse") or {}).get("result") or []
        movers = []
        for raw in quotes:
            if raw.get("quoteType") != "EQUITY":
                continue
            candidate = _candidate(raw)
            if candidate is not None:
                movers.append(candidate)
        return movers
