"""
BTC market price oracle backed by the Coinbase exchange-rates endpoint.

Rates are cached per currency for a short TTL. Every failure path raises
PriceUnavailable; the service never retries on its own.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import aiohttp

from caching.simple_cache import SimpleCache
from config import Config
from utils.error_handler import PriceUnavailable

logger = logging.getLogger(__name__)


class PriceService:
    """Fetches the BTC unit price in a fiat currency"""

    def __init__(
        self,
        api_url: Optional[str] = None,
        cache_ttl: Optional[int] = None,
        timeout_seconds: Optional[int] = None,
        cache: Optional[SimpleCache] = None,
    ):
        self.api_url = api_url or Config.PRICE_API_URL
        self.cache_ttl = Config.PRICE_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        self.timeout_seconds = timeout_seconds or Config.PRICE_API_TIMEOUT_SECONDS
        self._cache = cache or SimpleCache(default_ttl=self.cache_ttl)

    @staticmethod
    def _cache_key(currency: str) -> str:
        return f"btc_rate_{currency}"

    async def get_price(self, currency: str) -> Decimal:
        """Current price of 1 BTC in the given fiat currency"""
        currency = (currency or "").upper().strip()
        if not currency:
            raise PriceUnavailable("Currency code is required")

        cached = self._cache.get(self._cache_key(currency))
        if cached is not None:
            return cached

        rates = await self._fetch_rates()

        raw_rate = rates.get(currency)
        if raw_rate is None:
            logger.warning(f"PRICE_UNAVAILABLE: no BTC rate for {currency}")
            raise PriceUnavailable(f"No BTC rate available for {currency}")

        try:
            rate = Decimal(str(raw_rate))
        except InvalidOperation:
            logger.error(f"PRICE_UNAVAILABLE: unparseable BTC/{currency} rate {raw_rate!r}")
            raise PriceUnavailable(f"Invalid BTC rate for {currency}")

        if not rate.is_finite() or rate <= 0:
            logger.error(f"PRICE_UNAVAILABLE: non-positive BTC/{currency} rate {rate}")
            raise PriceUnavailable(f"Invalid BTC rate for {currency}")

        self._cache.set(self._cache_key(currency), rate, self.cache_ttl)
        logger.info(f"PRICE_FETCHED: BTC/{currency} = {rate}")
        return rate

    async def _fetch_rates(self) -> Dict[str, str]:
        """GET the exchange-rate table, returning data.rates"""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.api_url) as response:
                    if response.status != 200:
                        logger.error(f"❌ PRICE_API_ERROR: HTTP {response.status}")
                        raise PriceUnavailable(f"Price oracle returned HTTP {response.status}")
                    payload = await response.json()
        except asyncio.TimeoutError:
            logger.error(f"❌ PRICE_API_TIMEOUT: no response within {self.timeout_seconds}s")
            raise PriceUnavailable("Price oracle timed out")
        except aiohttp.ClientError as e:
            logger.error(f"❌ PRICE_API_NETWORK_ERROR: {e}")
            raise PriceUnavailable("Price oracle unreachable")
        except ValueError as e:
            logger.error(f"❌ PRICE_API_BAD_PAYLOAD: {e}")
            raise PriceUnavailable("Price oracle returned invalid JSON")

        data = payload.get("data") if isinstance(payload, dict) else None
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict):
            logger.error(f"❌ PRICE_API_BAD_PAYLOAD: {str(payload)[:200]}")
            raise PriceUnavailable("Price oracle returned an unexpected payload")
        return rates

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_cache_stats(self) -> Dict[str, int]:
        return self._cache.get_stats()
