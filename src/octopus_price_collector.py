#!/usr/bin/env python3
"""
Octopus Agile unit-rate collector using the public products API.

No network calls happen during initialization. Prices are only fetched when
`fetch_prices()` is called by the orchestrator, and only in dynamic price mode.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import aiohttp

from inverter.ports.price_provider_port import PriceProviderPort
from tariff_window_policy import PricePoint, to_utc

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.octopus.energy/v1"
DEFAULT_PRODUCT_CODE = "AGILE-FLEX-22-11-25"
DEFAULT_TARIFF_CODE = "E-1R-AGILE-FLEX-22-11-25-C"


def _parse_api_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))


def parse_unit_rates(payload: Dict[str, Any]) -> List[PricePoint]:
    """Convert a standard-unit-rates page into price points, skipping unusable rows."""
    points: List[PricePoint] = []
    for item in payload.get("results", []) or []:
        try:
            valid_from = _parse_api_time(item.get("valid_from"))
            valid_to = _parse_api_time(item.get("valid_to"))
            price = float(item["value_inc_vat"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Unparsable unit rate: %s", item)
            continue
        if valid_from is None or valid_to is None:
            # Open-ended rates belong to fixed tariffs, not half-hourly Agile slots
            continue
        points.append(PricePoint(valid_from=valid_from, valid_to=valid_to, inc_vat_price=price))
    return points


class OctopusPriceCollector(PriceProviderPort):
    """Collector for Octopus Agile half-hourly unit rates."""

    def __init__(self, config: Dict[str, Any]):
        tariff_cfg = config.get("electricity_tariff", {}) or {}
        cfg = tariff_cfg.get("dynamic_price", {}) or {}
        self.api_url: str = str(cfg.get("api_url", DEFAULT_API_URL)).rstrip("/")
        self.product_code: str = cfg.get("product_code", DEFAULT_PRODUCT_CODE)
        self.tariff_code: str = cfg.get("tariff_code", DEFAULT_TARIFF_CODE)
        self.update_interval_minutes: int = int(cfg.get("update_interval_minutes", 30))
        self.request_timeout_seconds: int = int(cfg.get("request_timeout_seconds", 15))
        self.retry_attempts: int = int(cfg.get("retry_attempts", 3))
        self.retry_delay_seconds: float = float(cfg.get("retry_delay_seconds", 5))

        # runtime cache
        self._cache_timestamp: Optional[float] = None
        self._prices: List[PricePoint] = []

        logger.info("Octopus price collector initialized (%s / %s)", self.product_code, self.tariff_code)

    @property
    def rates_url(self) -> str:
        return (f"{self.api_url}/products/{self.product_code}/electricity-tariffs/"
                f"{self.tariff_code}/standard-unit-rates/")

    def has_data(self) -> bool:
        """Whether the collector currently holds any prices in cache."""
        return bool(self._prices)

    async def _fetch_all_pages(self, params: Dict[str, str]) -> List[PricePoint]:
        points: List[PricePoint] = []
        url: Optional[str] = self.rates_url
        timeout = aiohttp.ClientTimeout(total=self.request_timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            while url:
                async with session.get(url, params=params) as resp:
                    resp.raise_for_status()
                    payload = await resp.json()
                points.extend(parse_unit_rates(payload))
                # the `next` link already carries the query string
                url = payload.get("next")
                params = {}
        return points

    async def fetch_prices(self, now: datetime) -> List[PricePoint]:
        """Fetch unit rates for now - 24h .. now + 24h (async).

        Transient network errors are retried. On final failure the previous
        cache is returned, which may be empty.
        """
        if (
            self._prices
            and self._cache_timestamp
            and (time.time() - self._cache_timestamp) < self.update_interval_minutes * 60
        ):
            return self._prices

        now_utc = to_utc(now)
        params = {
            "period_from": (now_utc - timedelta(hours=24)).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "period_to": (now_utc + timedelta(hours=24)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

        last_error: Optional[Exception] = None
        for attempt in range(self.retry_attempts):
            try:
                prices = await self._fetch_all_pages(dict(params))
                prices.sort(key=lambda p: p.valid_from)

                self._prices = prices
                self._cache_timestamp = time.time()
                logger.info("Fetched %d Agile unit rates for %s", len(prices), now_utc.date())
                return prices
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                logger.error(
                    "Octopus price fetch failed (attempt %d/%d): %s",
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )
                if attempt + 1 < self.retry_attempts:
                    await asyncio.sleep(self.retry_delay_seconds)

        if last_error:
            logger.warning("Octopus price fetch ultimately failed: %s", last_error)
        return self._prices
