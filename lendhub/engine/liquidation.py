"""Liquidation of unhealthy positions.

A liquidator repays part of a user's debt in one token and receives the
user's collateral in another, worth the repaid value plus the pool's
liquidation bonus.
"""
from __future__ import annotations

import logging
from dataclasses import replace

from ..access.roles import require_role
from ..errors import InsufficientBalanceError, UserHealthyError, ZeroAmountError
from ..fixed_point import WAD, mul_div, wad_mul
from ..interfaces.access_control import AccessControl
from ..interfaces.custody import CustodyLedger
from ..models import LiquidationEvent, Role
from .pool import LendingPool
from .risk import RiskEngine

logger = logging.getLogger(__name__)


class LiquidationEngine:
    def __init__(
        self, risk: RiskEngine, custody: CustodyLedger, access: AccessControl
    ) -> None:
        self._risk = risk
        self._custody = custody
        self._access = access

    def calculate_seize_amount(
        self,
        pool: LendingPool,
        debt_token: str,
        repay_amount: int,
        collateral_token: str,
    ) -> int:
        """Collateral units worth ``repay_amount`` of debt plus the bonus.

        Not capped at the user's collateral; ``liquidate`` applies that cap.
        """
        repay_usd = self._risk.value_usd(
            debt_token, repay_amount, self._risk.price_of(debt_token)
        )
        seize_usd = wad_mul(repay_usd, WAD + pool.params.liquidation_bonus)
        decimals = self._risk.tokens.get(collateral_token).decimals
        return mul_div(seize_usd, 10**decimals, self._risk.price_of(collateral_token))

    def liquidate(
        self,
        liquidator: str,
        user: str,
        pool: LendingPool,
        debt_token: str,
        repay_amount: int,
        collateral_token: str,
    ) -> LiquidationEvent:
        """Repay up to ``repay_amount`` of ``user``'s debt and seize collateral.

        Liquidatability is checked inside the pool transaction, never taken
        from an earlier scan. Repay is capped at the debt, seize at the
        user's supplied collateral.
        """
        require_role(self._access, liquidator, Role.LIQUIDATOR)
        if repay_amount <= 0:
            raise ZeroAmountError("Repay amount must be positive")

        with pool.transaction() as now:
            pool.accrue_for_liquidation((debt_token, collateral_token), now)

            before = pool.health_at(user, now)
            if not before.is_liquidatable:
                raise UserHealthyError(
                    f"{user} is healthy in pool {pool.pool_id} (hf {before.health_factor})"
                )

            debt = pool.debt_balance_at(user, debt_token, now)
            if debt == 0:
                raise InsufficientBalanceError(f"{user} owes no {debt_token}")
            supplied = pool.supplied_balance_at(user, collateral_token, now)
            if supplied == 0:
                raise InsufficientBalanceError(f"{user} supplies no {collateral_token}")

            actual_repay = min(repay_amount, debt)
            seize = min(
                self.calculate_seize_amount(pool, debt_token, actual_repay, collateral_token),
                supplied,
            )
            event = LiquidationEvent(
                liquidator=liquidator,
                user=user,
                pool_id=pool.pool_id,
                debt_token=debt_token,
                repay_amount=actual_repay,
                collateral_token=collateral_token,
                seized_amount=seize,
                health_factor_before=before.health_factor,
                health_factor_after=before.health_factor,
                timestamp=now,
            )
            pool.settle_liquidation(event)

            after = pool.health_at(user, now)
            event = replace(event, health_factor_after=after.health_factor)

            self._custody.debit(liquidator, debt_token, actual_repay)
            self._custody.credit(liquidator, collateral_token, seize)
            pool.record_liquidation(event)

        if event.health_factor_after < event.health_factor_before:
            # Happens when hf < LT * (1 + bonus): the bonus outweighs the repaid debt.
            logger.warning(
                "Liquidation of %s in %s lowered health factor %d -> %d",
                user, pool.pool_id, event.health_factor_before, event.health_factor_after,
            )
        logger.info(
            "Liquidated %s in %s — repaid %d %s, seized %d %s",
            user, pool.pool_id, actual_repay, debt_token, seize, collateral_token,
        )
        return event
