"""Custody ledger protocol — external balances the engine credits and debits."""
from typing import Protocol


class CustodyLedger(Protocol):
    """Abstract interface for moving value between users and the pools.

    ``debit`` raises ``InsufficientBalanceError`` when the account cannot pay.
    """

    def credit(self, account: str, token: str, amount: int) -> None: ...

    def debit(self, account: str, token: str, amount: int) -> None: ...
