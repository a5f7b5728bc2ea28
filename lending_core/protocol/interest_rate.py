"""Piecewise linear utilization-based interest rate model.

Rates are RAY-scaled annual values on input; the model returns per-second
rates. All arithmetic is exact fixed-point with half-up rounding.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from lending_core.data.constants import (
    BPS_PRECISION,
    RAY,
    RAY_PRECISION,
    SECONDS_PER_YEAR,
)
from lending_core.protocol.errors import InvalidMarketParams
from lending_core.protocol.fixed_point import Decimal, bps_one, ray_one


@dataclass(frozen=True)
class InterestRateParams:
    """Rate curve and reserve parameters for one market.

    ``slopes`` has one entry per segment and ``breakpoints`` one entry per
    kink, so a 3-segment curve has two breakpoints (mid and optimal
    utilization). Segment ``i`` adds ``slopes[i]`` over its full width.
    """

    base_rate: Decimal  # RAY, annual
    slopes: tuple[Decimal, ...]  # RAY, annual
    breakpoints: tuple[Decimal, ...]  # RAY utilization
    max_rate: Decimal  # RAY, annual
    reserve_factor: Decimal  # BPS
    asset_decimals: int

    def __post_init__(self) -> None:
        if not 2 <= len(self.slopes) <= 3:
            raise InvalidMarketParams("curve needs 2 or 3 segments")
        if len(self.breakpoints) != len(self.slopes) - 1:
            raise InvalidMarketParams("breakpoints must be one fewer than slopes")
        for value in (self.base_rate, self.max_rate, *self.slopes, *self.breakpoints):
            if value.scale != RAY_PRECISION:
                raise InvalidMarketParams("rates and breakpoints must be RAY-scaled")
        if self.max_rate <= self.base_rate:
            raise InvalidMarketParams(
                "max_borrow_rate must be greater than base_borrow_rate"
            )
        previous = Decimal.zero(RAY_PRECISION)
        for bp in self.breakpoints:
            if bp <= previous:
                raise InvalidMarketParams("utilization breakpoints must be increasing")
            previous = bp
        if previous >= ray_one():
            raise InvalidMarketParams("optimal utilization must be less than 1.0")
        if self.reserve_factor.scale != BPS_PRECISION or self.reserve_factor >= bps_one():
            raise InvalidMarketParams("reserve factor must be less than 10000")
        if self.asset_decimals < 0:
            raise InvalidMarketParams("asset decimals must be non-negative")

    @classmethod
    def from_fractions(
        cls,
        base_rate: str,
        slopes: tuple[str, ...],
        breakpoints: tuple[str, ...],
        max_rate: str,
        reserve_factor_bps: int,
        asset_decimals: int,
    ) -> InterestRateParams:
        """Build params from decimal strings such as ``"0.04"`` (exact)."""
        return cls(
            base_rate=_ray_from_str(base_rate),
            slopes=tuple(_ray_from_str(s) for s in slopes),
            breakpoints=tuple(_ray_from_str(b) for b in breakpoints),
            max_rate=_ray_from_str(max_rate),
            reserve_factor=Decimal.bps(reserve_factor_bps),
            asset_decimals=asset_decimals,
        )


def _ray_from_str(value: str) -> Decimal:
    try:
        return Decimal.from_str(value, RAY_PRECISION)
    except ValueError as exc:
        raise InvalidMarketParams(str(exc)) from exc


def utilization(borrowed: Decimal, supplied: Decimal) -> Decimal:
    """borrowed / supplied in RAY; zero for an empty market."""
    if supplied.is_zero():
        return Decimal.zero(RAY_PRECISION)
    return borrowed.div_half_up(supplied, RAY_PRECISION)


class InterestRateModel:
    """Utilization-based borrow and deposit rate curve."""

    def __init__(self, params: InterestRateParams) -> None:
        self.params = params

    def annual_borrow_rate(self, util: Decimal) -> Decimal:
        """Annual borrow rate (RAY) for a RAY-scaled utilization.

        Each segment grows linearly from the end of the previous one; the
        final segment spans from the last breakpoint to 100% and keeps
        growing above it, capped at ``max_rate``.
        """
        p = self.params
        rate = p.base_rate
        lower = Decimal.zero(RAY_PRECISION)
        edges = (*p.breakpoints, ray_one())

        for i, slope in enumerate(p.slopes):
            upper = edges[i]
            is_last = i == len(p.slopes) - 1
            if util >= upper and not is_last:
                rate = rate + slope
                lower = upper
                continue
            excess = util - lower
            contribution = excess.mul_half_up(slope, RAY_PRECISION).div_half_up(
                upper - lower, RAY_PRECISION
            )
            rate = rate + contribution
            break

        if rate > p.max_rate:
            return p.max_rate
        return rate

    def borrow_rate(self, util: Decimal) -> Decimal:
        """Per-second borrow rate (RAY)."""
        annual = self.annual_borrow_rate(util)
        return annual.div_half_up(Decimal(SECONDS_PER_YEAR, 0), RAY_PRECISION)

    def deposit_rate(self, util: Decimal, borrow_rate: Decimal) -> Decimal:
        """Rate earned by suppliers: ``util * borrow_rate * (1 - reserve_factor)``."""
        if util.is_zero():
            return Decimal.zero(RAY_PRECISION)
        supplier_share = bps_one() - self.params.reserve_factor
        return util.mul_half_up(borrow_rate, RAY_PRECISION).mul_half_up(
            supplier_share, RAY_PRECISION
        )

    def rate_curve(self, n_points: int = 201) -> pd.DataFrame:
        """Sample the annual curve for inspection.

        The utilization grid is exact; the returned columns are float views.

        Returns:
            DataFrame with columns: utilization, borrow_rate, supply_rate
        """
        grid = [Decimal(RAY * i // (n_points - 1), RAY_PRECISION) for i in range(n_points)]
        borrow = [self.annual_borrow_rate(u) for u in grid]
        supply = [self.deposit_rate(u, b) for u, b in zip(grid, borrow)]

        return pd.DataFrame(
            {
                "utilization": np.array([u.magnitude for u in grid], dtype=float) / RAY,
                "borrow_rate": np.array([b.magnitude for b in borrow], dtype=float) / RAY,
                "supply_rate": np.array([s.magnitude for s in supply], dtype=float) / RAY,
            }
        )
