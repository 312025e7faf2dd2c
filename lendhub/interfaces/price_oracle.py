"""Price oracle protocol — USD price feed abstraction."""
from typing import Protocol


class PriceOracle(Protocol):
    """Abstract interface for reading asset prices.

    Prices are USD per whole token in WAD. ``is_stale`` is True when the
    oracle's data is older than its staleness threshold.
    """

    def get_price_usd(self, token: str) -> tuple[int, bool]: ...

    def set_stale_threshold(self, seconds: int) -> None: ...
