import asyncio
import json
import math
import os
from time import time
from typing import Any

import httpx
from pydantic import ValidationError

from personal_cfo.core import settings
from personal_cfo.logger import get_logger
from personal_cfo.models import ExchangeRate, RateSource

logger = get_logger(__name__)

PRIMARY_URL = "https://v6.exchangerate-api.com/v6/{key}/latest/PEN"
FALLBACK_URL = "https://api.exchangerate.fun/latest"
FIXED_PEN_PER_USD = 3.50
CACHE_FILENAME = "exchange_rate.json"


def _lookup(rates: Any, code: str) -> Any:
    return rates.get(code) if isinstance(rates, dict) else None


def _positive_rate(value: Any) -> float | None:
    """Return ``value`` as a float when it is a finite positive number."""
    if isinstance(value, bool):
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rate) or rate <= 0:
        return None
    return rate


def _from_usd_per_pen(usd_per_pen: float, source: RateSource) -> ExchangeRate:
    return ExchangeRate(
        pen_per_usd=1 / usd_per_pen,
        usd_per_pen=usd_per_pen,
        source=source,
        fetched_at=time(),
    )


def fixed_rate() -> ExchangeRate:
    return ExchangeRate(
        pen_per_usd=FIXED_PEN_PER_USD,
        usd_per_pen=1 / FIXED_PEN_PER_USD,
        source="fixed",
        fetched_at=time(),
        using_fixed_fallback=True,
    )


class ExchangeRateProvider:
    """PEN/USD rate with a memory and file cache in front of two public sources.

    The chain never fails: when both sources are down the fixed rate is
    returned (and cached) with ``using_fixed_fallback`` set.
    """

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        data_dir: str | None = None,
        cache_ttl: float | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("EXCHANGE_RATE_API_KEY")
        self.cache_path = os.path.join(data_dir or settings.get_data_dir(), CACHE_FILENAME)
        ttl = settings.EXCHANGE_RATE_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        self.cache_ttl = max(0.0, ttl)
        self.timeout = settings.EXCHANGE_RATE_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = client
        self._owns_client = client is None
        self._lock = asyncio.Lock()
        self._cached: ExchangeRate | None = None
        self._load_cache()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    def _load_cache(self) -> None:
        if not os.path.exists(self.cache_path):
            return
        try:
            with open(self.cache_path, encoding="utf-8") as handle:
                self._cached = ExchangeRate.model_validate(json.load(handle))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("[FX] Ignoring unreadable rate cache %s: %s", self.cache_path, exc)
            self._cached = None

    def _save_cache(self, rate: ExchangeRate) -> None:
        self._cached = rate
        try:
            with open(self.cache_path, "w", encoding="utf-8") as handle:
                json.dump(rate.model_dump(mode="json"), handle, indent=2)
        except OSError as exc:
            logger.warning("[FX] Could not write rate cache %s: %s", self.cache_path, exc)

    def cached(self) -> ExchangeRate | None:
        """Return the cached rate if it is still within its TTL."""
        rate = self._cached
        if rate is None or self.cache_ttl <= 0:
            return None
        if time() - rate.fetched_at >= self.cache_ttl:
            return None
        return rate

    def clear_cache(self) -> None:
        self._cached = None
        if os.path.exists(self.cache_path):
            os.remove(self.cache_path)

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        return payload

    async def _fetch_primary(self) -> ExchangeRate | None:
        if not self.api_key:
            return None
        try:
            payload = await self._get_json(PRIMARY_URL.format(key=self.api_key))
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("[FX] exchangerate-api request failed: %s", exc)
            return None
        usd = _positive_rate(_lookup(payload.get("conversion_rates"), "USD"))
        if payload.get("result") != "success" or usd is None:
            logger.warning("[FX] exchangerate-api returned no usable USD rate.")
            return None
        return _from_usd_per_pen(usd, "exchangerate-api")

    async def _fetch_fallback(self) -> ExchangeRate | None:
        try:
            payload = await self._get_json(FALLBACK_URL, params={"base": "PEN"})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("[FX] exchangerate.fun request failed: %s", exc)
            return None
        rates = payload.get("rates")
        # BMD is pegged 1:1 to USD
        usd = _positive_rate(_lookup(rates, "USD")) or _positive_rate(_lookup(rates, "BMD"))
        if usd is None:
            logger.warning("[FX] exchangerate.fun returned no usable USD rate.")
            return None
        return _from_usd_per_pen(usd, "exchangerate.fun")

    async def get_rate(self, *, use_cache: bool = True) -> ExchangeRate:
        async with self._lock:
            if use_cache:
                cached = self.cached()
                if cached is not None:
                    return cached

            rate = await self._fetch_primary() or await self._fetch_fallback()
            if rate is None:
                logger.warning("[FX] All rate sources failed; using fixed %.2f PEN per USD.", FIXED_PEN_PER_USD)
                rate = fixed_rate()
            else:
                logger.info("[FX] 1 USD = %.4f PEN (%s).", rate.pen_per_usd, rate.source)
            self._save_cache(rate)
            return rate
