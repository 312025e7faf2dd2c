"""Isolated lending pool: per-user balances and the four state transitions.

Every mutating call runs inside ``transaction()``: exclusive for the pool,
non-reentrant, and all-or-nothing. Token state is accrued before any balance
of that token is read or written.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Union

from ..access.roles import require_role
from ..errors import (
    HealthFactorTooLowError,
    InsufficientBalanceError,
    InsufficientLiquidityError,
    InvalidParamsError,
    InvalidTokenError,
    PausedError,
    ReentrantError,
    ZeroAmountError,
)
from ..fixed_point import SECONDS_PER_YEAR, WAD, mul_div
from ..interfaces.access_control import AccessControl
from ..interfaces.custody import CustodyLedger
from ..models import (
    AccrueEvent,
    BalanceEvent,
    BorrowableAsset,
    EventKind,
    HealthSnapshot,
    LiquidationEvent,
    PoolParams,
    RateSnapshot,
    RiskParams,
    Role,
    TokenState,
    UserPosition,
)
from .interest_rate import InterestRateModel
from .ledger import accrue
from .risk import RiskEngine
from .tokens import TokenRegistry

logger = logging.getLogger(__name__)

PoolEvent = Union[BalanceEvent, AccrueEvent, LiquidationEvent]


def validate_pool_params(params: PoolParams) -> None:
    if not 0 <= params.reserve_factor < WAD:
        raise InvalidParamsError("Reserve factor must be in [0, 1)")
    if not 0 <= params.liquidation_bonus <= WAD:
        raise InvalidParamsError("Liquidation bonus must be in [0, 1]")


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise ZeroAmountError("Amount must be positive")


class LendingPool:
    """State store and transitions for one isolated pool."""

    def __init__(
        self,
        pool_id: str,
        params: PoolParams,
        tokens: TokenRegistry,
        risk: RiskEngine,
        custody: CustodyLedger,
        access: AccessControl,
        clock: Callable[[], int] | None = None,
        seconds_per_year: int = SECONDS_PER_YEAR,
    ) -> None:
        validate_pool_params(params)
        self.pool_id = pool_id
        self._params = params
        self._registry = tokens
        self._risk = risk
        self._custody = custody
        self._access = access
        self._clock = clock or (lambda: int(time.time()))
        self._seconds_per_year = seconds_per_year

        self._tokens: dict[str, TokenState] = {}
        self._positions: dict[tuple[str, str], UserPosition] = {}
        self._events: list[PoolEvent] = []

        self._lock = threading.RLock()
        self._in_transaction = False
        self._paused = False

    # ------------------------------------------------------------------
    # Transaction discipline
    # ------------------------------------------------------------------

    def now(self) -> int:
        return int(self._clock())

    @contextmanager
    def transaction(self, allow_paused: bool = False) -> Iterator[int]:
        """Run one atomic state change and yield its timestamp.

        Other threads wait; a nested call from the same thread (e.g. from a
        custody callback) raises ``ReentrantError``. Any exception restores the
        token and position store, the pool parameters and the event log.
        """
        with self._lock:
            if self._in_transaction:
                raise ReentrantError(f"Reentrant call into pool {self.pool_id}")
            if self._paused and not allow_paused:
                raise PausedError(f"Pool {self.pool_id} is paused")

            saved_tokens = dict(self._tokens)
            saved_positions = dict(self._positions)
            saved_params = self._params
            saved_events = len(self._events)
            self._in_transaction = True
            try:
                yield self.now()
            except BaseException:
                self._tokens = saved_tokens
                self._positions = saved_positions
                self._params = saved_params
                del self._events[saved_events:]
                raise
            finally:
                self._in_transaction = False

    def _assert_in_transaction(self) -> None:
        if not self._in_transaction:
            raise RuntimeError("Pool mutation outside of a transaction")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_token(self, token: str) -> None:
        if token not in self._tokens:
            raise InvalidTokenError(f"Token {token} is not supported by pool {self.pool_id}")

    def _rate_model(self, token: str) -> InterestRateModel:
        return InterestRateModel(
            self._risk.params.get(self.pool_id, token), self._params.reserve_factor
        )

    def _projected(self, token: str, now: int) -> TokenState:
        state, _ = accrue(self._tokens[token], self._rate_model(token), now, self._seconds_per_year)
        return state

    def _accrue(self, token: str, now: int) -> TokenState:
        state, interest = accrue(
            self._tokens[token], self._rate_model(token), now, self._seconds_per_year
        )
        self._tokens[token] = state
        if interest:
            self._events.append(
                AccrueEvent(
                    pool_id=self.pool_id,
                    token=token,
                    interest=interest,
                    cash=state.cash,
                    borrows=state.borrows,
                    index_supply=state.index_supply,
                    index_borrow=state.index_borrow,
                    timestamp=now,
                )
            )
        return state

    def _position(self, user: str, token: str) -> UserPosition:
        return self._positions.get((user, token), UserPosition())

    def _balances_at(self, user: str, now: int) -> dict[str, tuple[int, int]]:
        balances: dict[str, tuple[int, int]] = {}
        for token in self._tokens:
            pos = self._positions.get((user, token))
            if pos is None:
                continue
            state = self._projected(token, now)
            balances[token] = (
                pos.supplied_balance(state.index_supply),
                pos.borrowed_balance(state.index_borrow),
            )
        return balances

    def _emit(
        self, kind: EventKind, user: str, token: str, amount: int, new_balance: int, now: int
    ) -> None:
        self._events.append(
            BalanceEvent(
                kind=kind,
                pool_id=self.pool_id,
                user=user,
                token=token,
                amount=amount,
                new_balance=new_balance,
                timestamp=now,
            )
        )

    def _set_supplied(self, user: str, token: str, balance: int, index: int) -> None:
        pos = self._position(user, token)
        self._positions[(user, token)] = replace(
            pos, supplied_principal=balance, supplied_index_snapshot=index
        )

    def _set_borrowed(self, user: str, token: str, balance: int, index: int) -> None:
        pos = self._position(user, token)
        self._positions[(user, token)] = replace(
            pos, borrowed_principal=balance, borrowed_index_snapshot=index
        )

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def lend(self, user: str, token: str, amount: int) -> int:
        """Supply ``amount`` of ``token``. Returns the user's new supplied balance."""
        _check_amount(amount)
        with self.transaction() as now:
            self._require_token(token)
            state = self._accrue(token, now)
            balance = self._position(user, token).supplied_balance(state.index_supply) + amount

            self._set_supplied(user, token, balance, state.index_supply)
            self._tokens[token] = replace(state, cash=state.cash + amount)

            self._custody.debit(user, token, amount)
            self._emit(EventKind.LEND, user, token, amount, balance, now)

        logger.info("Lend — %s · %s %s · supplied %d", self.pool_id, user, token, balance)
        return balance

    def withdraw(self, user: str, token: str, amount: int) -> int:
        """Withdraw supplied ``token``. Returns the user's remaining supplied balance."""
        _check_amount(amount)
        with self.transaction() as now:
            self._require_token(token)
            state = self._accrue(token, now)
            balance = self._position(user, token).supplied_balance(state.index_supply)
            if amount > balance:
                raise InsufficientBalanceError(
                    f"Withdraw {amount} exceeds supplied balance {balance}"
                )
            if amount > state.cash:
                raise InsufficientLiquidityError(
                    f"Withdraw {amount} exceeds pool cash {state.cash}"
                )

            remaining = balance - amount
            self._set_supplied(user, token, remaining, state.index_supply)
            self._tokens[token] = replace(state, cash=state.cash - amount)

            balances = self._balances_at(user, now)
            if any(borrowed for _, borrowed in balances.values()):
                snapshot = self._risk.snapshot(self.pool_id, balances)
                if snapshot.health_factor < WAD:
                    raise HealthFactorTooLowError(
                        f"Withdraw would leave health factor {snapshot.health_factor}"
                    )

            self._custody.credit(user, token, amount)
            self._emit(EventKind.WITHDRAW, user, token, amount, remaining, now)

        logger.info("Withdraw — %s · %s %s · supplied %d", self.pool_id, user, token, remaining)
        return remaining

    def borrow(self, user: str, token: str, amount: int) -> int:
        """Borrow ``token`` against supplied collateral. Returns the user's new debt."""
        _check_amount(amount)
        with self.transaction() as now:
            self._require_token(token)
            state = self._accrue(token, now)
            if amount > state.cash:
                raise InsufficientLiquidityError(
                    f"Borrow {amount} exceeds pool cash {state.cash}"
                )

            debt = self._position(user, token).borrowed_balance(state.index_borrow) + amount
            self._set_borrowed(user, token, debt, state.index_borrow)
            self._tokens[token] = replace(
                state, cash=state.cash - amount, borrows=state.borrows + amount
            )

            snapshot = self._risk.snapshot(self.pool_id, self._balances_at(user, now))
            # a dust borrow can value at 0 USD; with no limit any debt is too much
            if snapshot.borrow_usd > snapshot.borrow_limit_usd or snapshot.borrow_limit_usd == 0:
                raise HealthFactorTooLowError(
                    f"Borrow of {snapshot.borrow_usd} USD exceeds limit "
                    f"{snapshot.borrow_limit_usd} USD"
                )

            self._custody.credit(user, token, amount)
            self._emit(EventKind.BORROW, user, token, amount, debt, now)

        logger.info("Borrow — %s · %s %s · debt %d", self.pool_id, user, token, debt)
        return debt

    def repay(self, user: str, token: str, amount: int) -> int:
        """Repay debt, capped at what is owed. Returns the amount actually applied."""
        _check_amount(amount)
        with self.transaction() as now:
            self._require_token(token)
            state = self._accrue(token, now)
            debt = self._position(user, token).borrowed_balance(state.index_borrow)
            if debt == 0:
                raise InsufficientBalanceError(f"{user} has no {token} debt to repay")

            applied = min(amount, debt)
            remaining = debt - applied
            self._set_borrowed(user, token, remaining, state.index_borrow)
            self._tokens[token] = replace(
                state,
                cash=state.cash + applied,
                borrows=max(0, state.borrows - applied),
            )

            self._custody.debit(user, token, applied)
            self._emit(EventKind.REPAY, user, token, applied, remaining, now)

        logger.info("Repay — %s · %s %s · applied %d, debt %d", self.pool_id, user, token, applied, remaining)
        return applied

    def accrue(self, token: str) -> TokenState:
        """Bring ``token``'s indices up to now and return the stored state."""
        with self.transaction() as now:
            self._require_token(token)
            return self._accrue(token, now)

    # ------------------------------------------------------------------
    # Liquidation hooks (called by LiquidationEngine inside transaction())
    # ------------------------------------------------------------------

    def accrue_for_liquidation(self, tokens: tuple[str, ...], now: int) -> None:
        self._assert_in_transaction()
        for token in tokens:
            self._require_token(token)
            self._accrue(token, now)

    def settle_liquidation(self, event: LiquidationEvent) -> None:
        """Move repaid debt and seized collateral described by ``event``."""
        self._assert_in_transaction()
        user = event.user

        debt_state = self._tokens[event.debt_token]
        debt = self._position(user, event.debt_token).borrowed_balance(debt_state.index_borrow)
        if event.repay_amount > debt:
            raise InsufficientBalanceError("Repay exceeds the user's debt")
        self._set_borrowed(user, event.debt_token, debt - event.repay_amount, debt_state.index_borrow)
        self._tokens[event.debt_token] = replace(
            debt_state,
            cash=debt_state.cash + event.repay_amount,
            borrows=max(0, debt_state.borrows - event.repay_amount),
        )

        coll_state = self._tokens[event.collateral_token]
        supplied = self._position(user, event.collateral_token).supplied_balance(
            coll_state.index_supply
        )
        if event.seized_amount > supplied:
            raise InsufficientBalanceError("Seize exceeds the user's collateral")
        if event.seized_amount > coll_state.cash:
            raise InsufficientLiquidityError(
                f"Seize {event.seized_amount} exceeds pool cash {coll_state.cash}"
            )
        self._set_supplied(
            user, event.collateral_token, supplied - event.seized_amount, coll_state.index_supply
        )
        self._tokens[event.collateral_token] = replace(
            coll_state, cash=coll_state.cash - event.seized_amount
        )

    def record_liquidation(self, event: LiquidationEvent) -> None:
        self._assert_in_transaction()
        self._events.append(event)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def add_token(self, caller: str, token: str) -> None:
        require_role(self._access, caller, Role.ADMIN)
        info = self._registry.get(token)
        if not self._risk.params.has(self.pool_id, token):
            raise InvalidParamsError(f"Set risk params for {info.symbol} before adding it")
        with self.transaction(allow_paused=True) as now:
            if token in self._tokens:
                raise InvalidParamsError(f"{info.symbol} is already supported")
            self._tokens[token] = TokenState(last_accrue_time=now)
        logger.info("Pool %s now supports %s", self.pool_id, info.symbol)

    def set_risk_params(self, caller: str, token: str, params: RiskParams) -> None:
        """Update a token's risk params; interest up to now uses the old curve."""
        with self.transaction(allow_paused=True) as now:
            if token in self._tokens:
                self._accrue(token, now)
            self._risk.params.set_risk_params(caller, self.pool_id, token, params)

    def set_reserve_factor(self, caller: str, reserve_factor: int) -> None:
        require_role(self._access, caller, Role.RISK_ADMIN)
        self._update_params(replace(self._params, reserve_factor=reserve_factor))

    def set_liquidation_bonus(self, caller: str, liquidation_bonus: int) -> None:
        require_role(self._access, caller, Role.RISK_ADMIN)
        self._update_params(replace(self._params, liquidation_bonus=liquidation_bonus))

    def _update_params(self, params: PoolParams) -> None:
        validate_pool_params(params)
        with self.transaction(allow_paused=True) as now:
            for token in self._tokens:
                self._accrue(token, now)
            self._params = params
        logger.info(
            "Pool %s params: reserve factor %d, liquidation bonus %d",
            self.pool_id, params.reserve_factor, params.liquidation_bonus,
        )

    def pause(self, caller: str) -> None:
        require_role(self._access, caller, Role.ADMIN)
        with self._lock:
            self._paused = True
        logger.warning("Pool %s paused by %s", self.pool_id, caller)

    def unpause(self, caller: str) -> None:
        require_role(self._access, caller, Role.ADMIN)
        with self._lock:
            self._paused = False
        logger.info("Pool %s unpaused by %s", self.pool_id, caller)

    # ------------------------------------------------------------------
    # Read API (projected to now, never mutating)
    # ------------------------------------------------------------------

    @property
    def params(self) -> PoolParams:
        return self._params

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def events(self) -> tuple[PoolEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def get_supported_tokens(self) -> list[str]:
        with self._lock:
            return list(self._tokens)

    def is_token_supported(self, token: str) -> bool:
        return token in self._tokens

    def get_token_state(self, token: str) -> TokenState:
        with self._lock:
            self._require_token(token)
            return self._projected(token, self.now())

    def get_user_position(self, user: str, token: str) -> UserPosition:
        with self._lock:
            self._require_token(token)
            return self._position(user, token)

    def supplied_balance(self, user: str, token: str) -> int:
        return self.supplied_balance_at(user, token, self.now())

    def supplied_balance_at(self, user: str, token: str, now: int) -> int:
        with self._lock:
            self._require_token(token)
            state = self._projected(token, now)
            return self._position(user, token).supplied_balance(state.index_supply)

    def debt_balance(self, user: str, token: str) -> int:
        return self.debt_balance_at(user, token, self.now())

    def debt_balance_at(self, user: str, token: str, now: int) -> int:
        with self._lock:
            self._require_token(token)
            state = self._projected(token, now)
            return self._position(user, token).borrowed_balance(state.index_borrow)

    def user_balances(self, user: str) -> dict[str, tuple[int, int]]:
        """``token -> (supplied, borrowed)`` for every token the user touched."""
        with self._lock:
            return self._balances_at(user, self.now())

    def health_at(self, user: str, now: int) -> HealthSnapshot:
        """Health valued at ``now`` rather than at the clock's current reading.

        Code running inside :meth:`transaction` reads through this so every
        check agrees with the timestamp the tokens were accrued to.
        """
        with self._lock:
            return self._risk.snapshot(self.pool_id, self._balances_at(user, now))

    def get_rates(self, token: str) -> RateSnapshot:
        with self._lock:
            self._require_token(token)
            state = self._projected(token, self.now())
            return self._rate_model(token).rates(state.cash, state.borrows)

    def get_health_factor(self, user: str) -> HealthSnapshot:
        with self._lock:
            return self._risk.calc_health_factor(user, self)

    def get_borrow_power(self, user: str) -> int:
        with self._lock:
            return self._risk.get_user_borrow_power_usd(user, self)

    def get_assets_to_borrow(self, user: str) -> list[BorrowableAsset]:
        """Per-token quantity the user could borrow now, bounded by pool cash."""
        with self._lock:
            now = self.now()
            power = self._risk.snapshot(self.pool_id, self._balances_at(user, now)).borrow_power_usd
            assets: list[BorrowableAsset] = []
            for token in self._tokens:
                info = self._registry.get(token)
                price = self._risk.price_of(token)
                qty = min(mul_div(power, 10**info.decimals, price), self._projected(token, now).cash)
                assets.append(
                    BorrowableAsset(token=token, symbol=info.symbol, borrow_qty=qty, price=price)
                )
            return assets
