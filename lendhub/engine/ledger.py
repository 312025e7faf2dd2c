"""Per-token interest accrual.

``accrue`` is pure: it takes a ``TokenState`` and returns the state at ``now``.
Callers must apply it before reading or writing any balance of the token.
"""
from __future__ import annotations

from dataclasses import replace

from ..fixed_point import SECONDS_PER_YEAR, WAD, mul_div, wad_mul
from ..models import TokenState
from .interest_rate import InterestRateModel, utilization


def accrue(
    state: TokenState,
    model: InterestRateModel,
    now: int,
    seconds_per_year: int = SECONDS_PER_YEAR,
) -> tuple[TokenState, int]:
    """Compound the token's indices up to ``now``.

    Returns the new state and the interest added to ``borrows``. With no
    elapsed time or no borrows the indices stay put and only the timestamp
    moves. A ``now`` behind ``last_accrue_time`` leaves the state unchanged.

    Both indices come from the same utilization and elapsed time. The reserve
    cut of the interest is minted to the treasury at the new supply index, so
    ``cash + borrows`` keeps matching total supplied plus reserves.
    """
    elapsed = now - state.last_accrue_time
    if elapsed < 0:
        return state, 0
    if elapsed == 0 or state.borrows == 0:
        return replace(state, last_accrue_time=now), 0

    util = utilization(state.cash, state.borrows)
    borrow_rate = model.borrow_rate(util)
    supply_rate = model.supply_rate(util)

    borrow_factor = WAD + mul_div(borrow_rate, elapsed, seconds_per_year)
    supply_factor = WAD + mul_div(supply_rate, elapsed, seconds_per_year)

    interest = wad_mul(state.borrows, borrow_factor - WAD)
    index_borrow = wad_mul(state.index_borrow, borrow_factor)
    index_supply = wad_mul(state.index_supply, supply_factor)

    reserve_cut = wad_mul(interest, model.reserve_factor)
    reserves_scaled = state.reserves_scaled + mul_div(reserve_cut, WAD, index_supply)

    return (
        replace(
            state,
            borrows=state.borrows + interest,
            last_accrue_time=now,
            index_supply=index_supply,
            index_borrow=index_borrow,
            reserves_scaled=reserves_scaled,
        ),
        interest,
    )
