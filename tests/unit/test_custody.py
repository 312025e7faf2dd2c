"""Unit tests for the in-memory custody ledger."""
from __future__ import annotations

import pytest

from lendhub.custody.memory import InMemoryCustody
from lendhub.errors import InsufficientBalanceError, ZeroAmountError


@pytest.fixture()
def ledger() -> InMemoryCustody:
    ledger = InMemoryCustody()
    ledger.mint("alice", "0xUSDC", 1_000)
    return ledger


class TestInMemoryCustody:
    def test_debit_moves_funds_into_pools(self, ledger: InMemoryCustody) -> None:
        ledger.debit("alice", "0xUSDC", 400)
        assert ledger.balance_of("alice", "0xUSDC") == 600
        assert ledger.held("0xUSDC") == 400

    def test_credit_moves_funds_out(self, ledger: InMemoryCustody) -> None:
        ledger.debit("alice", "0xUSDC", 400)
        ledger.credit("bob", "0xUSDC", 150)
        assert ledger.balance_of("bob", "0xUSDC") == 150
        assert ledger.held("0xUSDC") == 250

    def test_debit_beyond_balance_fails(self, ledger: InMemoryCustody) -> None:
        with pytest.raises(InsufficientBalanceError):
            ledger.debit("alice", "0xUSDC", 1_001)
        assert ledger.balance_of("alice", "0xUSDC") == 1_000

    def test_credit_beyond_holdings_fails(self, ledger: InMemoryCustody) -> None:
        with pytest.raises(InsufficientBalanceError):
            ledger.credit("bob", "0xUSDC", 1)

    def test_mint_requires_positive_amount(self, ledger: InMemoryCustody) -> None:
        with pytest.raises(ZeroAmountError):
            ledger.mint("alice", "0xUSDC", 0)

    def test_unknown_balance_is_zero(self, ledger: InMemoryCustody) -> None:
        assert ledger.balance_of("nobody", "0xDAI") == 0
