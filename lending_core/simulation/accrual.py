"""Deterministic projection of a market's indices over a timestamp grid."""

from __future__ import annotations

import copy

import numpy as np
import pandas as pd

from lending_core.data.constants import RAY, SECONDS_PER_YEAR
from lending_core.protocol.errors import InvalidTimeOrdering
from lending_core.protocol.pool import Market


def timestamp_grid(start: int, horizon_seconds: int, n_steps: int) -> list[int]:
    """Evenly spaced integer timestamps from ``start`` to ``start + horizon``."""
    if n_steps < 1:
        raise ValueError("n_steps must be >= 1")
    offsets = np.linspace(0, horizon_seconds, n_steps + 1).round().astype(np.int64)
    return [start + int(o) for o in offsets]


def project_accrual(market: Market, timestamps: list[int]) -> pd.DataFrame:
    """Sync a copy of ``market`` at each timestamp and record the result.

    Accounting is exact; the returned columns are float views for analysis.
    The market itself is not modified.

    Returns:
        DataFrame with columns: timestamp, borrow_index, supply_index,
        utilization, borrow_apr, supply_apr, borrowed, supplied, revenue
    """
    if any(b < a for a, b in zip(timestamps, timestamps[1:])):
        raise InvalidTimeOrdering("timestamps must be non-decreasing")

    projected = Market(copy.deepcopy(market.state), market.params)
    scale = 10**market.asset_decimals
    rows = []
    for ts in timestamps:
        projected.sync(ts)
        s = projected.state
        rows.append(
            (
                ts,
                s.borrow_index.magnitude,
                s.supply_index.magnitude,
                s.utilization.magnitude,
                projected.borrow_rate.magnitude * SECONDS_PER_YEAR,
                projected.deposit_rate.magnitude * SECONDS_PER_YEAR,
                s.borrowed.magnitude,
                s.supplied.magnitude,
                s.revenue.magnitude,
            )
        )

    raw = np.array(rows, dtype=object).reshape(len(rows), 9)
    ray_cols = raw[:, 1:6].astype(float) / RAY
    amount_cols = raw[:, 6:9].astype(float) / scale
    return pd.DataFrame(
        {
            "timestamp": raw[:, 0].astype(np.int64),
            "borrow_index": ray_cols[:, 0],
            "supply_index": ray_cols[:, 1],
            "utilization": ray_cols[:, 2],
            "borrow_apr": ray_cols[:, 3],
            "supply_apr": ray_cols[:, 4],
            "borrowed": amount_cols[:, 0],
            "supplied": amount_cols[:, 1],
            "revenue": amount_cols[:, 2],
        }
    )
