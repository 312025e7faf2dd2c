"""Data models — all frozen (immutable).

Ledger quantities are ints: token amounts in native units, prices, rates,
ratios and USD values in WAD (18 decimals).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .fixed_point import MAX_UINT256, WAD, mul_div

HEALTH_FACTOR_MAX = MAX_UINT256


class Role(Enum):
    ADMIN = "admin"
    RISK_ADMIN = "risk_admin"
    LIQUIDATOR = "liquidator"
    KEEPER = "keeper"


class EventKind(Enum):
    LEND = "Lend"
    WITHDRAW = "Withdraw"
    BORROW = "Borrow"
    REPAY = "Repay"


# ---------------------------------------------------------------------------
# Configuration-level records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenInfo:
    """A supported asset: address, display symbol and native decimals."""

    address: str
    symbol: str
    decimals: int = 18


@dataclass(frozen=True)
class RiskParams:
    """Per-pool, per-token risk and rate-curve parameters (all WAD)."""

    ltv: int
    liquidation_threshold: int
    kink: int
    base_rate: int
    slope1: int
    slope2: int


@dataclass(frozen=True)
class PoolParams:
    """Pool-wide parameters (WAD)."""

    reserve_factor: int = WAD // 10
    liquidation_bonus: int = WAD // 20


# ---------------------------------------------------------------------------
# Ledger state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenState:
    """Per-token pool totals and compounding indices."""

    cash: int = 0
    borrows: int = 0
    last_accrue_time: int = 0
    index_supply: int = WAD
    index_borrow: int = WAD
    reserves_scaled: int = 0

    @property
    def reserves(self) -> int:
        """Treasury share of the supply side, valued at the current supply index."""
        return mul_div(self.reserves_scaled, self.index_supply, WAD)


@dataclass(frozen=True)
class UserPosition:
    """Principal plus the index snapshot taken when it was last re-based."""

    supplied_principal: int = 0
    supplied_index_snapshot: int = WAD
    borrowed_principal: int = 0
    borrowed_index_snapshot: int = WAD

    def supplied_balance(self, index_supply: int) -> int:
        if self.supplied_principal == 0:
            return 0
        return mul_div(self.supplied_principal, index_supply, self.supplied_index_snapshot)

    def borrowed_balance(self, index_borrow: int) -> int:
        if self.borrowed_principal == 0:
            return 0
        return mul_div(self.borrowed_principal, index_borrow, self.borrowed_index_snapshot)


@dataclass(frozen=True)
class RateSnapshot:
    utilization: int
    borrow_rate: int
    supply_rate: int


@dataclass(frozen=True)
class HealthSnapshot:
    """Derived position valuation; never stored."""

    collateral_usd: int
    weighted_collateral_usd: int
    borrow_limit_usd: int
    borrow_usd: int
    health_factor: int = HEALTH_FACTOR_MAX

    @property
    def is_liquidatable(self) -> bool:
        return self.health_factor < WAD

    @property
    def borrow_power_usd(self) -> int:
        return max(0, self.borrow_limit_usd - self.borrow_usd)


@dataclass(frozen=True)
class BorrowableAsset:
    token: str
    symbol: str
    borrow_qty: int
    price: int


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceEvent:
    kind: EventKind
    pool_id: str
    user: str
    token: str
    amount: int
    new_balance: int
    timestamp: int


@dataclass(frozen=True)
class AccrueEvent:
    pool_id: str
    token: str
    interest: int
    cash: int
    borrows: int
    index_supply: int
    index_borrow: int
    timestamp: int


@dataclass(frozen=True)
class LiquidationEvent:
    liquidator: str
    user: str
    pool_id: str
    debt_token: str
    repay_amount: int
    collateral_token: str
    seized_amount: int
    health_factor_before: int
    health_factor_after: int
    timestamp: int


# ---------------------------------------------------------------------------
# Keeper records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpkeepCandidate:
    pool_id: str
    user: str
    health_factor: int


@dataclass(frozen=True)
class UpkeepCheck:
    upkeep_needed: bool
    candidates: tuple[UpkeepCandidate, ...] = ()


@dataclass(frozen=True)
class LiquidationAttempt:
    candidate: UpkeepCandidate
    success: bool
    event: LiquidationEvent | None = None
    error_code: str = ""
    error: str = ""
    retryable: bool = False


@dataclass(frozen=True)
class UpkeepReport:
    performed: bool
    attempts: tuple[LiquidationAttempt, ...] = field(default_factory=tuple)
    timestamp: int = 0

    @property
    def succeeded(self) -> tuple[LiquidationAttempt, ...]:
        return tuple(a for a in self.attempts if a.success)

    @property
    def failed(self) -> tuple[LiquidationAttempt, ...]:
        return tuple(a for a in self.attempts if not a.success)
