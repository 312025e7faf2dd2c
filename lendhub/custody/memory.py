"""In-memory custody ledger.

Tracks each account's external balance and how much of every token the
pools hold, so ``held(token) >= cash`` can be checked against pool state.
"""
from __future__ import annotations

import logging
from collections import defaultdict

from ..errors import InsufficientBalanceError, ZeroAmountError

logger = logging.getLogger(__name__)


class InMemoryCustody:
    """Balances keyed by ``(account, token)``; debits move value into the pools."""

    def __init__(self) -> None:
        self._balances: dict[tuple[str, str], int] = defaultdict(int)
        self._held: dict[str, int] = defaultdict(int)

    def mint(self, account: str, token: str, amount: int) -> None:
        """Fund an account from outside the system (tests, demos)."""
        if amount <= 0:
            raise ZeroAmountError("Mint amount must be positive")
        self._balances[(account, token)] += amount

    def balance_of(self, account: str, token: str) -> int:
        return self._balances.get((account, token), 0)

    def held(self, token: str) -> int:
        return self._held.get(token, 0)

    def debit(self, account: str, token: str, amount: int) -> None:
        balance = self.balance_of(account, token)
        if amount > balance:
            raise InsufficientBalanceError(
                f"{account} holds {balance} of {token}, needs {amount}"
            )
        self._balances[(account, token)] = balance - amount
        self._held[token] += amount
        logger.debug("Debited %d %s from %s", amount, token, account)

    def credit(self, account: str, token: str, amount: int) -> None:
        if amount > self._held.get(token, 0):
            raise InsufficientBalanceError(f"Pools hold less than {amount} of {token}")
        self._held[token] -= amount
        self._balances[(account, token)] += amount
        logger.debug("Credited %d %s to %s", amount, token, account)
