"""Pyth Network price oracle service."""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from collections.abc import Callable

import aiohttp
import certifi

from ..config import PythConfig
from ..fixed_point import WAD

logger = logging.getLogger(__name__)


def _normalize_feed_id(feed_id: str) -> str:
    return feed_id.lower().removeprefix("0x")


def _to_wad(price_raw: int, expo: int) -> int:
    """Scale a Pyth ``price * 10**expo`` into an 18-decimal integer."""
    shift = 18 + expo
    if shift >= 0:
        return price_raw * 10**shift
    return price_raw // 10**-shift


class PythOracle:
    """Prices from Pyth Hermes, cached with their publish time.

    ``refresh()`` does the network round trip; ``get_price_usd`` only reads
    the cache, so the engine never blocks on HTTP. A failed refresh keeps the
    previous prices, which then age into staleness.
    """

    def __init__(
        self,
        config: PythConfig,
        clock: Callable[[], int] | None = None,
        stale_threshold: int = 3600,
    ) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)
        self.stale_threshold = stale_threshold
        self._clock = clock or (lambda: int(time.time()))
        self._cache: dict[str, tuple[int, int]] = {}

    async def refresh(self, tokens: list[str] | None = None) -> dict[str, int]:
        """Fetch current prices from Pyth Network into the cache.

        Args:
            tokens: Optional list of token addresses to fetch. If None,
                fetches all configured feeds.

        Returns the prices updated by this call (WAD, keyed by token).
        """
        prices: dict[str, int] = {}

        feeds = self.price_feeds
        if tokens is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in tokens}

        feed_ids = sorted({_normalize_feed_id(v) for v in feeds.values()})
        if not feed_ids:
            return prices

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        id_to_tokens: dict[str, list[str]] = {}
        for token, feed_id in feeds.items():
            id_to_tokens.setdefault(_normalize_feed_id(feed_id), []).append(token)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return prices

                    data = await response.json()

            for item in data.get("parsed", []):
                feed_id = _normalize_feed_id(item.get("id", ""))
                price_data = item.get("price", {})
                price = _to_wad(int(price_data.get("price", 0)), int(price_data.get("expo", 0)))
                publish_time = int(price_data.get("publish_time", self._clock()))

                for token in id_to_tokens.get(feed_id, []):
                    self._cache[token] = (price, publish_time)
                    prices[token] = price

            logger.info("Fetched prices from Pyth Network:")
            for token, price in sorted(prices.items()):
                logger.info("  %s: $%.4f", token, price / WAD)

        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.error("Error fetching prices from Pyth: %s", e)

        return prices

    def get_price_usd(self, token: str) -> tuple[int, bool]:
        entry = self._cache.get(token)
        if entry is None:
            return 0, True
        price, publish_time = entry
        return price, int(self._clock()) - publish_time > self.stale_threshold

    def set_stale_threshold(self, seconds: int) -> None:
        if seconds < 0:
            raise ValueError("Stale threshold must be non-negative")
        self.stale_threshold = seconds
