# coding: utf-8
"""
Price oracle backed by the CoinGecko simple/price endpoint

- Bounded-staleness in-memory cache (PRICE_CACHE_TTL_SECONDS)
- Stale cache, then the static fallback table, when the live fetch fails
- Prices are Decimal end to end (JSON floats parsed straight to Decimal)
"""
import json
import logging
import time
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Callable, Dict, Iterable, Optional, Tuple

import aiohttp
from loguru import logger
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from config.config import (
    COINGECKO_API_KEY,
    COINGECKO_BASE_URL,
    COINGECKO_IDS,
    PRICE_CACHE_TTL_SECONDS,
    REFERENCE_CURRENCY,
    RPC_TIMEOUT_SECONDS,
    STATIC_FALLBACK_PRICES,
)


# Create standard logger for tenacity
std_logger = logging.getLogger(__name__)


class UnknownCoinError(ValueError):
    """Raised for a symbol with neither a price source nor a fallback"""


class PriceFetchError(Exception):
    """Live price fetch returned an unusable response"""


class PriceOracle:
    """
    Current unit price of a coin in the reference currency

    Nothing is locked while a fetch is in flight: two concurrent misses
    may both fetch, and the later write wins.
    """

    def __init__(
        self,
        api_key: str = COINGECKO_API_KEY,
        base_url: str = COINGECKO_BASE_URL,
        currency: str = REFERENCE_CURRENCY,
        cache_ttl: float = PRICE_CACHE_TTL_SECONDS,
        coin_ids: Optional[Dict[str, str]] = None,
        fallback_prices: Optional[Dict[str, Decimal]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self.cache_ttl = cache_ttl
        self.coin_ids = dict(coin_ids or COINGECKO_IDS)
        self.fallback_prices = dict(fallback_prices or STATIC_FALLBACK_PRICES)
        self._clock = clock
        self._cache: Dict[str, Tuple[Decimal, float]] = {}
        self._session: Optional[aiohttp.ClientSession] = None

    def supports(self, symbol: str) -> bool:
        symbol = symbol.upper()
        return symbol in self.coin_ids or symbol in self.fallback_prices

    async def price(self, symbol: str) -> Decimal:
        """
        Get current price for a coin symbol (ETH, SOL, ZEC, ...)

        Never fails because the provider is down: falls back to the last
        cached value, then to the static table.

        Raises:
            UnknownCoinError: symbol has no price source at all
        """
        symbol = symbol.upper()
        if not self.supports(symbol):
            raise UnknownCoinError(f"No price source for {symbol}")

        cached = self._cache.get(symbol)
        if cached is not None and self._clock() - cached[1] < self.cache_ttl:
            return cached[0]

        if symbol in self.coin_ids:
            try:
                prices = await self.refresh([symbol])
                if symbol in prices:
                    return prices[symbol]
            except (aiohttp.ClientError, TimeoutError, PriceFetchError) as e:
                logger.warning(f"Price fetch failed for {symbol}: {e}")

        if cached is not None:
            logger.warning(f"Using STALE cached price for {symbol}: {cached[0]}")
            return cached[0]

        fallback = self.fallback_prices.get(symbol)
        if fallback is None:
            raise UnknownCoinError(f"No price available for {symbol}")

        logger.warning(f"⚠️ Using STATIC FALLBACK price for {symbol}: {fallback}")
        return fallback

    async def refresh(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, Decimal]:
        """
        Fetch fresh prices and store them in the cache

        Args:
            symbols: Coins to refresh (default: every configured coin)

        Returns:
            Mapping symbol -> price for the coins the provider returned
        """
        wanted = [s.upper() for s in (symbols or self.coin_ids.keys()) if s.upper() in self.coin_ids]
        if not wanted:
            return {}

        ids = {self.coin_ids[s]: s for s in wanted}
        data = await self._fetch_prices(sorted(ids))

        now = self._clock()
        result: Dict[str, Decimal] = {}
        for coin_id, symbol in ids.items():
            entry = data.get(coin_id)
            if entry is None:
                continue
            if not isinstance(entry, dict):
                logger.warning(f"Malformed CoinGecko entry for {coin_id}: {entry!r}")
                continue

            value = entry.get(self.currency)
            if value is None:
                continue
            try:
                price = Decimal(str(value))
            except InvalidOperation:
                logger.warning(f"Non-numeric CoinGecko price for {coin_id}: {value!r}")
                continue
            if not price.is_finite() or price <= 0:
                continue
            self._cache[symbol] = (price, now)
            result[symbol] = price

        logger.debug(f"Prices refreshed: {result}")
        return result

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        before_sleep=before_sleep_log(std_logger, logging.WARNING),
        reraise=True,
    )
    async def _fetch_prices(self, coin_ids: list) -> Dict[str, Dict[str, Decimal]]:
        """GET /simple/price for the given CoinGecko ids"""
        params = {"ids": ",".join(coin_ids), "vs_currencies": self.currency}
        headers = {}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key

        session = await self._get_session()
        async with session.get(
            f"{self.base_url}/simple/price",
            params=params,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=RPC_TIMEOUT_SECONDS),
        ) as response:
            if response.status != 200:
                raise PriceFetchError(f"CoinGecko returned HTTP {response.status}")
            try:
                data = await response.json(loads=partial(json.loads, parse_float=Decimal))
            except (aiohttp.ContentTypeError, ValueError) as e:
                raise PriceFetchError(f"CoinGecko returned an unreadable body: {e}") from e

        if not isinstance(data, dict):
            raise PriceFetchError("Unexpected CoinGecko payload")
        return data

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def cached_prices(self) -> Dict[str, Decimal]:
        """Snapshot of cached prices, fresh or stale"""
        return {symbol: price for symbol, (price, _) in self._cache.items()}

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
