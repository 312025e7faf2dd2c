"""Keeper scheduler — finds unhealthy tracked positions and liquidates them.

A run has two phases that never share a pool lock: the scan reads health
factors, then each candidate is liquidated in its own pool transaction, which
re-checks liquidatability. A failed candidate is reported and skipped.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from ..access.roles import require_role
from ..engine.factory import PoolFactory
from ..engine.liquidation import LiquidationEngine
from ..engine.pool import LendingPool
from ..engine.risk import RiskEngine
from ..errors import (
    RETRYABLE_ERRORS,
    InsufficientBalanceError,
    InvalidParamsError,
    LendingError,
)
from ..fixed_point import WAD, wad_mul
from ..interfaces.access_control import AccessControl
from ..models import (
    LiquidationAttempt,
    LiquidationEvent,
    Role,
    UpkeepCandidate,
    UpkeepCheck,
    UpkeepReport,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeeperSettings:
    check_interval: int = 300
    max_liquidations_per_run: int = 5
    min_health_factor: int = WAD
    close_factor: int = WAD // 2


def validate_keeper_settings(settings: KeeperSettings) -> None:
    if settings.check_interval < 0:
        raise InvalidParamsError("Check interval must be non-negative")
    if settings.max_liquidations_per_run <= 0:
        raise InvalidParamsError("Max liquidations per run must be positive")
    if settings.min_health_factor <= 0:
        raise InvalidParamsError("Min health factor must be positive")
    if not 0 < settings.close_factor <= WAD:
        raise InvalidParamsError("Close factor must be in (0, 1]")


class KeeperScheduler:
    """Tracked users per pool plus the periodic upkeep check and action."""

    def __init__(
        self,
        factory: PoolFactory,
        liquidations: LiquidationEngine,
        risk: RiskEngine,
        access: AccessControl,
        settings: KeeperSettings | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._factory = factory
        self._liquidations = liquidations
        self._risk = risk
        self._access = access
        self.settings = settings or KeeperSettings()
        validate_keeper_settings(self.settings)
        self._clock = clock or (lambda: int(time.time()))

        # dict keys as an insertion-ordered set
        self._tracked: dict[str, dict[str, None]] = {}
        self._lock = threading.Lock()
        self.last_run_time = 0

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def add_user(self, caller: str, pool_id: str, user: str) -> bool:
        """Start tracking ``user``. Returns False if already tracked."""
        require_role(self._access, caller, Role.ADMIN)
        self._factory.get_pool(pool_id)
        with self._lock:
            users = self._tracked.setdefault(pool_id, {})
            if user in users:
                return False
            users[user] = None
        logger.info("Tracking %s in pool %s", user, pool_id)
        return True

    def batch_add_users(self, caller: str, pool_id: str, users: Iterable[str]) -> int:
        """Track several users; returns how many were newly added."""
        return sum(self.add_user(caller, pool_id, user) for user in users)

    def remove_user(self, caller: str, pool_id: str, user: str) -> bool:
        require_role(self._access, caller, Role.ADMIN)
        with self._lock:
            users = self._tracked.get(pool_id, {})
            if user not in users:
                return False
            del users[user]
        logger.info("Stopped tracking %s in pool %s", user, pool_id)
        return True

    def get_tracked_users(self, pool_id: str) -> list[str]:
        with self._lock:
            return list(self._tracked.get(pool_id, {}))

    def is_user_tracked(self, pool_id: str, user: str) -> bool:
        with self._lock:
            return user in self._tracked.get(pool_id, {})

    def update_config(self, caller: str, settings: KeeperSettings) -> None:
        require_role(self._access, caller, Role.ADMIN)
        validate_keeper_settings(settings)
        self.settings = settings
        logger.info(
            "Keeper config: interval %ds, max %d per run, close factor %d",
            settings.check_interval, settings.max_liquidations_per_run, settings.close_factor,
        )

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def _pool_ids(self, pool_ids: Iterable[str] | None) -> list[str]:
        if pool_ids is not None:
            return list(pool_ids)
        with self._lock:
            return list(self._tracked)

    def get_liquidatable_users(
        self, pool_ids: Iterable[str] | None = None
    ) -> list[UpkeepCandidate]:
        """Tracked users below the minimum health factor, worst first.

        Equal health factors keep pool order, then tracking order.
        Stale prices propagate as ``StalePriceError``.
        """
        candidates: list[UpkeepCandidate] = []
        for pool_id in self._pool_ids(pool_ids):
            pool = self._factory.get_pool(pool_id)
            for user in self.get_tracked_users(pool_id):
                hf = pool.get_health_factor(user).health_factor
                if hf < self.settings.min_health_factor:
                    candidates.append(UpkeepCandidate(pool_id=pool_id, user=user, health_factor=hf))
        candidates.sort(key=lambda c: c.health_factor)
        return candidates

    def _due(self, now: int) -> bool:
        return now - self.last_run_time >= self.settings.check_interval

    def check_upkeep(self, pool_ids: Iterable[str] | None = None) -> UpkeepCheck:
        """Read-only: the candidates a run would act on now, if one is due."""
        if not self._due(int(self._clock())):
            return UpkeepCheck(upkeep_needed=False)
        candidates = self.get_liquidatable_users(pool_ids)[: self.settings.max_liquidations_per_run]
        return UpkeepCheck(upkeep_needed=bool(candidates), candidates=tuple(candidates))

    # ------------------------------------------------------------------
    # Act
    # ------------------------------------------------------------------

    def _largest(self, pool: LendingPool, user: str) -> tuple[str, int, str]:
        """Pick ``(debt_token, debt, collateral_token)`` by USD value."""
        debt_token = collateral_token = ""
        debt = debt_usd = collateral_usd = 0
        for token, (supplied, borrowed) in pool.user_balances(user).items():
            if borrowed:
                value = self._risk.value_usd(token, borrowed, self._risk.price_of(token))
                if value > debt_usd or not debt_token:
                    debt_token, debt, debt_usd = token, borrowed, value
            if supplied:
                value = self._risk.value_usd(token, supplied, self._risk.price_of(token))
                if value > collateral_usd or not collateral_token:
                    collateral_token, collateral_usd = token, value
        if not debt_token or not collateral_token:
            raise InsufficientBalanceError(f"{user} has no debt/collateral pair in {pool.pool_id}")
        return debt_token, debt, collateral_token

    def _liquidate(self, caller: str, candidate: UpkeepCandidate) -> LiquidationEvent:
        pool = self._factory.get_pool(candidate.pool_id)
        debt_token, debt, collateral_token = self._largest(pool, candidate.user)
        repay = wad_mul(debt, self.settings.close_factor) or debt
        return self._liquidations.liquidate(
            caller, candidate.user, pool, debt_token, repay, collateral_token
        )

    def perform_upkeep(
        self, caller: str, candidates: Iterable[UpkeepCandidate]
    ) -> UpkeepReport:
        """Liquidate each candidate independently; failures are reported, not raised."""
        require_role(self._access, caller, Role.KEEPER)
        attempts: list[LiquidationAttempt] = []
        for candidate in candidates:
            try:
                event = self._liquidate(caller, candidate)
            except LendingError as e:
                logger.warning(
                    "Liquidation of %s in %s failed: %s", candidate.user, candidate.pool_id, e
                )
                attempts.append(
                    LiquidationAttempt(
                        candidate=candidate,
                        success=False,
                        error_code=e.code,
                        error=e.message,
                        retryable=isinstance(e, RETRYABLE_ERRORS),
                    )
                )
                continue
            attempts.append(LiquidationAttempt(candidate=candidate, success=True, event=event))

        now = int(self._clock())
        self.last_run_time = now
        return UpkeepReport(performed=True, attempts=tuple(attempts), timestamp=now)

    def run_upkeep(self, caller: str, pool_ids: Iterable[str] | None = None) -> UpkeepReport:
        """Scan, then act on at most ``max_liquidations_per_run`` candidates.

        Returns ``performed=False`` when the interval has not elapsed. A
        completed scan advances ``last_run_time`` even with nothing to do.
        """
        require_role(self._access, caller, Role.KEEPER)
        now = int(self._clock())
        if not self._due(now):
            logger.debug("Upkeep not due (last run %d, now %d)", self.last_run_time, now)
            return UpkeepReport(performed=False, timestamp=now)

        candidates = self.get_liquidatable_users(pool_ids)[: self.settings.max_liquidations_per_run]
        self.last_run_time = now
        if not candidates:
            logger.info("Upkeep scan found no liquidatable positions")
            return UpkeepReport(performed=True, timestamp=now)

        logger.info("Upkeep scan found %d candidate(s)", len(candidates))
        return self.perform_upkeep(caller, candidates)
