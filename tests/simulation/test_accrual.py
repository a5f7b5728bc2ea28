"""Tests for deterministic accrual projection."""

import pytest

from lending_core.data.constants import SECONDS_PER_YEAR
from lending_core.data.static_params import USDC, build_storage
from lending_core.protocol.errors import InvalidTimeOrdering
from lending_core.protocol.fixed_point import Decimal
from lending_core.protocol.pool import Market
from lending_core.simulation.accrual import project_accrual, timestamp_grid


@pytest.fixture
def market() -> Market:
    storage = build_storage()
    state = storage.markets[USDC]
    state.supplied = Decimal.from_units(1_000_000, 6)
    state.reserves = Decimal.from_units(300_000, 6)
    state.borrowed = Decimal.from_units(700_000, 6)
    return Market(state, storage.rate_params[USDC])


class TestTimestampGrid:
    def test_even_spacing(self) -> None:
        assert timestamp_grid(0, 100, 4) == [0, 25, 50, 75, 100]

    def test_offset_start(self) -> None:
        grid = timestamp_grid(1_000, SECONDS_PER_YEAR, 12)
        assert grid[0] == 1_000
        assert grid[-1] == 1_000 + SECONDS_PER_YEAR
        assert len(grid) == 13

    def test_needs_a_step(self) -> None:
        with pytest.raises(ValueError):
            timestamp_grid(0, 100, 0)


class TestProjectAccrual:
    def test_columns_and_rows(self, market: Market) -> None:
        df = project_accrual(market, timestamp_grid(0, SECONDS_PER_YEAR, 12))
        assert list(df.columns) == [
            "timestamp",
            "borrow_index",
            "supply_index",
            "utilization",
            "borrow_apr",
            "supply_apr",
            "borrowed",
            "supplied",
            "revenue",
        ]
        assert len(df) == 13
        assert df["utilization"].iloc[0] == pytest.approx(0.7)

    def test_indices_grow(self, market: Market) -> None:
        df = project_accrual(market, timestamp_grid(0, SECONDS_PER_YEAR, 12))
        assert df["borrow_index"].is_monotonic_increasing
        assert df["supply_index"].is_monotonic_increasing
        assert df["borrow_index"].iloc[-1] > 1.0
        assert (df["supply_apr"] <= df["borrow_apr"]).all()
        assert df["revenue"].iloc[-1] > 0

    def test_does_not_touch_market(self, market: Market) -> None:
        project_accrual(market, [0, 3_600, 7_200])
        assert market.state.last_sync_timestamp == 0
        assert market.state.borrowed == Decimal.from_units(700_000, 6)

    def test_rejects_time_going_backwards(self, market: Market) -> None:
        with pytest.raises(InvalidTimeOrdering):
            project_accrual(market, [0, 100, 50])
