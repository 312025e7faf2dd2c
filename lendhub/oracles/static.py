"""In-memory price oracle with manually pushed prices."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_STALE_THRESHOLD = 3600


class ManualPriceOracle:
    """Prices (USD per whole token, WAD) set by an operator or a test.

    A price is stale once ``now - updated_at`` exceeds the threshold; a token
    that was never priced reads as ``(0, True)``.
    """

    def __init__(
        self,
        clock: Callable[[], int] | None = None,
        stale_threshold: int = DEFAULT_STALE_THRESHOLD,
    ) -> None:
        self._clock = clock or (lambda: int(time.time()))
        self._prices: dict[str, tuple[int, int]] = {}
        self.set_stale_threshold(stale_threshold)

    def set_price(self, token: str, price: int, updated_at: int | None = None) -> None:
        if price < 0:
            raise ValueError(f"Negative price for {token}")
        if updated_at is None:
            updated_at = int(self._clock())
        self._prices[token] = (price, updated_at)
        logger.debug("Price %s = %d (at %d)", token, price, updated_at)

    def get_price_usd(self, token: str) -> tuple[int, bool]:
        entry = self._prices.get(token)
        if entry is None:
            return 0, True
        price, updated_at = entry
        return price, int(self._clock()) - updated_at > self.stale_threshold

    def set_stale_threshold(self, seconds: int) -> None:
        if seconds < 0:
            raise ValueError("Stale threshold must be non-negative")
        self.stale_threshold = seconds
