"""Registry of assets the engine knows about (address → symbol, decimals)."""
from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import InvalidParamsError, InvalidTokenError
from ..models import TokenInfo

logger = logging.getLogger(__name__)


class TokenRegistry:
    """Maps token addresses to their metadata."""

    def __init__(self, tokens: Iterable[TokenInfo] = ()) -> None:
        self._tokens: dict[str, TokenInfo] = {}
        self.batch_register(tokens)

    def register(self, info: TokenInfo) -> None:
        if not info.address:
            raise InvalidParamsError("Token address is empty")
        if not 0 <= info.decimals <= 36:
            raise InvalidParamsError(
                f"Token {info.symbol} has unsupported decimals {info.decimals}"
            )
        self._tokens[info.address] = info
        logger.debug("Registered token %s (%s, %d decimals)", info.symbol, info.address, info.decimals)

    def batch_register(self, tokens: Iterable[TokenInfo]) -> None:
        for info in tokens:
            self.register(info)

    def get(self, address: str) -> TokenInfo:
        info = self._tokens.get(address)
        if info is None:
            raise InvalidTokenError(f"Unknown token {address}")
        return info

    def by_symbol(self, symbol: str) -> TokenInfo:
        for info in self._tokens.values():
            if info.symbol == symbol:
                return info
        raise InvalidTokenError(f"Unknown token symbol {symbol}")

    def is_registered(self, address: str) -> bool:
        return address in self._tokens

    def symbol(self, address: str) -> str:
        info = self._tokens.get(address)
        return info.symbol if info else "UNKNOWN"

    def __iter__(self):
        return iter(self._tokens.values())

    def __len__(self) -> int:
        return len(self._tokens)
