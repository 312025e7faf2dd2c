"""Creates and looks up isolated pools."""
from __future__ import annotations

import logging
from collections.abc import Callable

from ..access.roles import require_role
from ..errors import InvalidParamsError, UnknownPoolError
from ..fixed_point import SECONDS_PER_YEAR
from ..interfaces.access_control import AccessControl
from ..interfaces.custody import CustodyLedger
from ..models import PoolParams, Role
from .pool import LendingPool
from .risk import RiskEngine
from .tokens import TokenRegistry

logger = logging.getLogger(__name__)


class PoolFactory:
    def __init__(
        self,
        tokens: TokenRegistry,
        risk: RiskEngine,
        custody: CustodyLedger,
        access: AccessControl,
        clock: Callable[[], int] | None = None,
        seconds_per_year: int = SECONDS_PER_YEAR,
    ) -> None:
        self._tokens = tokens
        self._risk = risk
        self._custody = custody
        self._access = access
        self._clock = clock
        self._seconds_per_year = seconds_per_year
        self._pools: dict[str, LendingPool] = {}

    def create_pool(
        self, caller: str, pool_id: str, params: PoolParams | None = None
    ) -> LendingPool:
        require_role(self._access, caller, Role.ADMIN)
        if not pool_id:
            raise InvalidParamsError("Pool id is empty")
        if pool_id in self._pools:
            raise InvalidParamsError(f"Pool {pool_id} already exists")

        pool = LendingPool(
            pool_id,
            params or PoolParams(),
            self._tokens,
            self._risk,
            self._custody,
            self._access,
            clock=self._clock,
            seconds_per_year=self._seconds_per_year,
        )
        self._pools[pool_id] = pool
        logger.info("Created pool %s", pool_id)
        return pool

    def get_pool(self, pool_id: str) -> LendingPool:
        pool = self._pools.get(pool_id)
        if pool is None:
            raise UnknownPoolError(f"Unknown pool {pool_id}")
        return pool

    def pool_ids(self) -> list[str]:
        return list(self._pools)

    def __contains__(self, pool_id: object) -> bool:
        return pool_id in self._pools
