"""Two-slope (kink) interest rate model.

Rates are annual, in WAD. ``utilization = borrows / (cash + borrows)``.
"""
from __future__ import annotations

from ..fixed_point import SECONDS_PER_YEAR, WAD, mul_div, wad_mul
from ..models import RateSnapshot, RiskParams


def utilization(cash: int, borrows: int) -> int:
    """Fraction of pooled funds lent out, in ``[0, WAD]``; zero for an empty pool."""
    total = cash + borrows
    if total == 0:
        return 0
    return mul_div(borrows, WAD, total)


class InterestRateModel:
    """Kinked borrow curve plus the supply rate implied by the reserve factor."""

    def __init__(self, params: RiskParams, reserve_factor: int) -> None:
        self.params = params
        self.reserve_factor = reserve_factor

    def borrow_rate(self, util: int) -> int:
        """Borrow rate for a utilization.

        Below the kink: ``base + slope1 * u``. Above it:
        ``base + slope1 * kink + slope2 * (u - kink)``. Both branches agree at
        the kink, so the curve is continuous and non-decreasing.
        """
        p = self.params
        util = max(0, min(WAD, util))
        if util <= p.kink:
            return p.base_rate + wad_mul(p.slope1, util)
        return p.base_rate + wad_mul(p.slope1, p.kink) + wad_mul(p.slope2, util - p.kink)

    def supply_rate(self, util: int) -> int:
        """``borrow_rate * u * (1 - reserve_factor)``; never above the borrow rate."""
        util = max(0, min(WAD, util))
        gross = wad_mul(self.borrow_rate(util), util)
        return wad_mul(gross, WAD - self.reserve_factor)

    def rates(self, cash: int, borrows: int) -> RateSnapshot:
        util = utilization(cash, borrows)
        return RateSnapshot(
            utilization=util,
            borrow_rate=self.borrow_rate(util),
            supply_rate=self.supply_rate(util),
        )

    def rate_curve(self, n_points: int = 11) -> list[RateSnapshot]:
        """Sample the curve at evenly spaced utilizations from 0 to 100%."""
        if n_points < 2:
            raise ValueError("rate_curve needs at least two points")
        curve: list[RateSnapshot] = []
        for i in range(n_points):
            util = mul_div(i, WAD, n_points - 1)
            curve.append(
                RateSnapshot(
                    utilization=util,
                    borrow_rate=self.borrow_rate(util),
                    supply_rate=self.supply_rate(util),
                )
            )
        return curve


def to_apy(rate: int, periods_per_year: int = SECONDS_PER_YEAR) -> float:
    """Annualised yield of a WAD APR compounded ``periods_per_year`` times.

    ``APY = (1 + APR / periods) ** periods - 1``. Display only.
    """
    if periods_per_year <= 0:
        raise ValueError("periods_per_year must be positive")
    apr = rate / WAD
    return (1.0 + apr / periods_per_year) ** periods_per_year - 1.0
