"""
Adapter: FX rates (ECB with Yahoo fallback).

Implements FxRatePort. Source chain for "1 unit of X in EUR":

    1. ECB daily reference rates (EUR→X, inverted)
    2. Yahoo Finance ``{X}EUR=X`` chart quote
    3. Cross rate through USD: Yahoo ``{X}USD=X`` times the USD→EUR rate
    4. Last rate served for X, even past the cache TTL

Raises RateUnavailableError once the chain is exhausted; the currency
normalizer then applies its own band checks and constant fallbacks.
"""

import logging
import re
import time
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from financy.domain.trading.errors import RateUnavailableError
from financy.domain.trading.ports import FxRatePort

logger = logging.getLogger(__name__)

ECB_CUBE_PATTERN = re.compile(r"<Cube currency='([A-Z]{3})' rate='([0-9.]+)'/>")


def parse_ecb_rates(xml: str) -> dict[str, Decimal]:
    """Extract EUR→X rates from the ECB daily XML."""
    rates: dict[str, Decimal] = {}
    for currency, raw in ECB_CUBE_PATTERN.findall(xml):
        try:
            rate = Decimal(raw)
        except InvalidOperation:
            continue
        if rate > 0:
            rates[currency] = rate
    return rates


class EcbYahooFxAdapter(FxRatePort):
    """Currency→EUR rates with a source fallback chain and a TTL cache."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        ecb_url: str = "https://www.ecb.europa.eu/stats/eurofxref/eurofxref-daily.xml",
        yahoo_base_url: str = "https://query2.finance.yahoo.com",
        user_agent: str = "Mozilla/5.0",
        cache_ttl_seconds: int = 3600,
    ) -> None:
        self._client = client
        self._ecb_url = ecb_url
        self._yahoo_base_url = yahoo_base_url.rstrip("/")
        self._headers = {"User-Agent": user_agent}
        self._ttl = cache_ttl_seconds
        self._ecb_cache: Optional[tuple[float, dict[str, Decimal]]] = None
        self._rate_cache: dict[str, tuple[float, Decimal]] = {}

    async def get_eur_rate(self, currency: str) -> Decimal:
        currency = currency.upper()
        if currency == "EUR":
            return Decimal("1")

        cached = self._rate_cache.get(currency)
        if cached and time.monotonic() - cached[0] < self._ttl:
            return cached[1]

        rate = await self._from_ecb(currency)
        if rate is None:
            rate = await self._from_yahoo(currency)
        if rate is None:
            rate = await self._from_usd_cross(currency)
        if rate is None:
            if cached:
                logger.warning("Serving expired cached %s→EUR rate %s", currency, cached[1])
                return cached[1]
            raise RateUnavailableError(currency)

        self._rate_cache[currency] = (time.monotonic(), rate)
        return rate

    async def _from_ecb(self, currency: str) -> Optional[Decimal]:
        rates = await self._ecb_rates()
        eur_to_x = rates.get(currency)
        if not eur_to_x:
            return None
        rate = Decimal("1") / eur_to_x
        logger.info("Exchange rate (ECB): 1 %s = %.4f EUR", currency, rate)
        return rate

    async def _ecb_rates(self) -> dict[str, Decimal]:
        if self._ecb_cache and time.monotonic() - self._ecb_cache[0] < self._ttl:
            return self._ecb_cache[1]
        try:
            response = await self._client.get(self._ecb_url, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("ECB reference rates unavailable: %s", exc)
            return {}
        rates = parse_ecb_rates(response.text)
        if rates:
            self._ecb_cache = (time.monotonic(), rates)
        return rates

    async def _from_yahoo(self, currency: str) -> Optional[Decimal]:
        rate = await self._yahoo_price(f"{currency}EUR=X")
        if rate is not None:
            logger.info("Exchange rate (Yahoo): 1 %s = %.4f EUR", currency, rate)
        return rate

    async def _from_usd_cross(self, currency: str) -> Optional[Decimal]:
        if currency == "USD":
            return None
        to_usd = await self._yahoo_price(f"{currency}USD=X")
        if to_usd is None:
            return None
        try:
            usd_to_eur = await self.get_eur_rate("USD")
        except RateUnavailableError:
            return None
        rate = to_usd * usd_to_eur
        logger.info("Exchange rate (via USD): 1 %s = %.4f EUR", currency, rate)
        return rate

    async def _yahoo_price(self, pair: str) -> Optional[Decimal]:
        try:
            response = await self._client.get(
                f"{self._yahoo_base_url}/v8/finance/chart/{pair}",
                params={"interval": "1d", "range": "1d"},
                headers=self._headers,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Yahoo %s quote unavailable: %s", pair, exc)
            return None

        try:
            results = (data.get("chart") or {}).get("result") or []
            raw = (results[0].get("meta") or {}).get("regularMarketPrice") if results else None
            rate = Decimal(str(raw)) if raw is not None else None
        except (AttributeError, TypeError, IndexError, InvalidOperation) as exc:
            logger.warning("Malformed Yahoo %s payload: %s", pair, exc)
            return None
        if rate is None or rate <= 0:
            return None
        return rate
