"""Risk parameters and health-factor computation.

Health factor = LT-weighted collateral USD / borrow USD, WAD-scaled;
``HEALTH_FACTOR_MAX`` when there is no debt. Borrow power uses LTV weights.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from ..access.roles import require_role
from ..errors import InvalidParamsError, InvalidTokenError, StalePriceError
from ..fixed_point import WAD, mul_div, wad_div, wad_mul
from ..interfaces.access_control import AccessControl
from ..interfaces.price_oracle import PriceOracle
from ..models import HEALTH_FACTOR_MAX, HealthSnapshot, RiskParams, Role
from .tokens import TokenRegistry

if TYPE_CHECKING:
    from .pool import LendingPool

logger = logging.getLogger(__name__)

# token -> (supplied balance, borrowed balance), native units
Balances = Mapping[str, tuple[int, int]]


def validate_risk_params(params: RiskParams) -> None:
    """Raise ``InvalidParamsError`` for an inconsistent parameter set."""
    if not 0 < params.ltv <= params.liquidation_threshold <= WAD:
        raise InvalidParamsError(
            "Risk params need 0 < LTV <= liquidation threshold <= 1"
        )
    if not 0 < params.kink <= WAD:
        raise InvalidParamsError("Kink must be in (0, 1]")
    if min(params.base_rate, params.slope1, params.slope2) < 0:
        raise InvalidParamsError("Rate parameters must be non-negative")


class RiskParamsRegistry:
    """Risk parameters per ``(pool, token)``, written by RISK_ADMIN."""

    def __init__(self, access: AccessControl) -> None:
        self._access = access
        self._params: dict[tuple[str, str], RiskParams] = {}

    def set_risk_params(
        self, caller: str, pool_id: str, token: str, params: RiskParams
    ) -> None:
        require_role(self._access, caller, Role.RISK_ADMIN)
        validate_risk_params(params)
        self._params[(pool_id, token)] = params
        logger.info(
            "Risk params for %s/%s: LTV %d LT %d kink %d",
            pool_id, token, params.ltv, params.liquidation_threshold, params.kink,
        )

    def batch_set_risk_params(
        self, caller: str, pool_id: str, params: Mapping[str, RiskParams]
    ) -> None:
        for token, p in params.items():
            self.set_risk_params(caller, pool_id, token, p)

    def get(self, pool_id: str, token: str) -> RiskParams:
        params = self._params.get((pool_id, token))
        if params is None:
            raise InvalidTokenError(f"No risk params for {token} in pool {pool_id}")
        return params

    def has(self, pool_id: str, token: str) -> bool:
        return (pool_id, token) in self._params


class RiskEngine:
    """Values positions through the price oracle and the risk parameters."""

    def __init__(
        self,
        oracle: PriceOracle,
        tokens: TokenRegistry,
        params: RiskParamsRegistry,
    ) -> None:
        self.oracle = oracle
        self.tokens = tokens
        self.params = params

    def price_of(self, token: str) -> int:
        """Current USD price (WAD). Stale or non-positive prices are errors."""
        price, is_stale = self.oracle.get_price_usd(token)
        if is_stale:
            raise StalePriceError(f"Price for {self.tokens.symbol(token)} is stale")
        if price <= 0:
            raise StalePriceError(f"No usable price for {self.tokens.symbol(token)}")
        return price

    def value_usd(self, token: str, amount: int, price: int) -> int:
        """USD value (WAD) of ``amount`` native units at ``price``."""
        return mul_div(amount, price, 10 ** self.tokens.get(token).decimals)

    def snapshot(self, pool_id: str, balances: Balances) -> HealthSnapshot:
        """Value a set of balances; only tokens with a nonzero balance are priced."""
        collateral = weighted = limit = debt = 0
        for token, (supplied, borrowed) in balances.items():
            if supplied == 0 and borrowed == 0:
                continue
            price = self.price_of(token)
            if supplied:
                params = self.params.get(pool_id, token)
                value = self.value_usd(token, supplied, price)
                collateral += value
                weighted += wad_mul(value, params.liquidation_threshold)
                limit += wad_mul(value, params.ltv)
            if borrowed:
                debt += self.value_usd(token, borrowed, price)

        health_factor = HEALTH_FACTOR_MAX if debt == 0 else wad_div(weighted, debt)
        return HealthSnapshot(
            collateral_usd=collateral,
            weighted_collateral_usd=weighted,
            borrow_limit_usd=limit,
            borrow_usd=debt,
            health_factor=health_factor,
        )

    def calc_health_factor(self, user: str, pool: LendingPool) -> HealthSnapshot:
        return self.snapshot(pool.pool_id, pool.user_balances(user))

    def is_liquidatable(self, user: str, pool: LendingPool) -> bool:
        return self.calc_health_factor(user, pool).is_liquidatable

    def get_user_borrow_power_usd(self, user: str, pool: LendingPool) -> int:
        """LTV-weighted collateral minus current debt, floored at zero."""
        return self.calc_health_factor(user, pool).borrow_power_usd
