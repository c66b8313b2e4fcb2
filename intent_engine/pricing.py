"""
Intent Engine - Fiat Valuation.

============================================================
PURPOSE
============================================================
Fiat rates for fiat-denominated pledges and for the valuation snapshot
stored on every ledger entry.

- PriceOracle: interface
- StaticPriceOracle: fixed rates (tests, offline runs)
- CoinGeckoPriceOracle: CoinGecko simple/price over aiohttp, TTL cache

Snapshots are taken once at commit time and never recomputed.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Tuple

import aiohttp

from .amount import native_to_fiat
from .clock import ClockProtocol, get_clock
from .config import PricingConfig
from .exceptions import PriceUnavailableError
from .registry import AssetInfo
from .types import FiatValuation


logger = logging.getLogger(__name__)


class PriceOracle(ABC):
    """Source of fiat rates per whole asset unit."""

    source: str = "unknown"

    def __init__(self, clock: Optional[ClockProtocol] = None):
        self._clock = clock or get_clock()

    @abstractmethod
    async def get_rate(self, asset: AssetInfo, currency: str = "USD") -> Decimal:
        """
        Fiat per whole unit of `asset`.

        Raises:
            PriceUnavailableError: When no rate can be obtained
        """
        pass

    async def snapshot(
        self,
        asset: AssetInfo,
        raw_amount: int,
        currency: str = "USD",
    ) -> FiatValuation:
        """Value `raw_amount` now."""
        rate = await self.get_rate(asset, currency)
        return FiatValuation(
            currency=currency.upper(),
            rate=rate,
            value=native_to_fiat(raw_amount, asset.decimals, rate),
            source=self.source,
            taken_at=self._clock.now(),
        )

    async def close(self) -> None:
        pass


# ============================================================
# STATIC ORACLE
# ============================================================

class StaticPriceOracle(PriceOracle):
    """Fixed rates keyed by price ID (CoinGecko ID) or asset ID."""

    source = "static"

    def __init__(self, rates: Optional[Dict[str, Decimal]] = None, clock: Optional[ClockProtocol] = None):
        super().__init__(clock)
        self._rates = {k: Decimal(str(v)) for k, v in (rates or {}).items()}

    def set_rate(self, key: str, rate: Decimal) -> None:
        self._rates[key] = Decimal(str(rate))

    async def get_rate(self, asset: AssetInfo, currency: str = "USD") -> Decimal:
        for key in (asset.asset_id, asset.price_id):
            if key and key in self._rates:
                return self._rates[key]
        raise PriceUnavailableError(f"No static rate for {asset.asset_id}")


# ============================================================
# COINGECKO ORACLE
# ============================================================

class CoinGeckoPriceOracle(PriceOracle):
    """
    CoinGecko simple/price client.

    Rates are cached per (price_id, currency) for cache_ttl_seconds.
    """

    source = "coingecko"

    def __init__(
        self,
        config: Optional[PricingConfig] = None,
        clock: Optional[ClockProtocol] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(clock)
        self._config = config or PricingConfig()
        self._session = session
        self._owns_session = session is None
        self._cache: Dict[Tuple[str, str], Tuple[Decimal, float]] = {}
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self._config.api_key:
                headers["x-cg-demo-api-key"] = self._config.api_key
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_seconds),
                headers=headers,
            )
            self._owns_session = True
        return self._session

    def _cached(self, key: Tuple[str, str]) -> Optional[Decimal]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        rate, fetched_at = entry
        if self._clock.now().timestamp() - fetched_at > self._config.cache_ttl_seconds:
            return None
        return rate

    async def get_rate(self, asset: AssetInfo, currency: str = "USD") -> Decimal:
        if not asset.price_id:
            raise PriceUnavailableError(f"Asset {asset.asset_id} has no price source")
        vs = currency.lower()
        key = (asset.price_id, vs)

        async with self._lock:
            cached = self._cached(key)
            if cached is not None:
                return cached

            url = f"{self._config.base_url.rstrip('/')}/simple/price"
            session = await self._get_session()
            try:
                async with session.get(url, params={"ids": asset.price_id, "vs_currencies": vs}) as response:
                    if response.status >= 400:
                        raise PriceUnavailableError(
                            f"CoinGecko HTTP {response.status} for {asset.price_id}",
                            context={"status_code": response.status},
                        )
                    data = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise PriceUnavailableError(
                    f"CoinGecko unreachable for {asset.price_id}",
                    original_error=e,
                )

            try:
                rate = Decimal(str(data[asset.price_id][vs]))
            except (KeyError, TypeError, InvalidOperation) as e:
                raise PriceUnavailableError(
                    f"CoinGecko has no {vs} rate for {asset.price_id}",
                    original_error=e,
                )
            if rate <= 0:
                raise PriceUnavailableError(f"Non-positive rate for {asset.price_id}: {rate}")

            self._cache[key] = (rate, self._clock.now().timestamp())
            logger.debug(f"Rate {asset.price_id}/{vs} = {rate}")
            return rate

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
