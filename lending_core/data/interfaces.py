"""Abstract price collaborator interface and per-asset oracle settings."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from lending_core.data.constants import (
    BPS,
    BPS_PRECISION,
    DEFAULT_MAX_PRICE_STALE_SECONDS,
    MAX_FIRST_TOLERANCE_BPS,
    MAX_LAST_TOLERANCE_BPS,
    MIN_FIRST_TOLERANCE_BPS,
    MIN_LAST_TOLERANCE_BPS,
    WAD_PRECISION,
)
from lending_core.protocol.errors import InvalidTolerance
from lending_core.protocol.fixed_point import Decimal


@dataclass(frozen=True)
class PriceFeed:
    """One aggregator answer for an asset."""

    price: Decimal  # WAD, USD per whole unit
    decimals: int  # decimals of the source feed
    timestamp: int

    def __post_init__(self) -> None:
        if self.price.scale != WAD_PRECISION:
            raise InvalidTolerance("feed prices must be WAD-scaled")


@dataclass(frozen=True)
class ToleranceBand:
    """Accepted ratio range ``lower <= aggregator / anchor <= upper`` in BPS."""

    lower: Decimal
    upper: Decimal

    @classmethod
    def from_tolerance(cls, tolerance_bps: int) -> ToleranceBand:
        upper = BPS + tolerance_bps
        return cls(
            lower=Decimal(BPS * BPS // upper, BPS_PRECISION),
            upper=Decimal(upper, BPS_PRECISION),
        )

    def contains(self, ratio: Decimal) -> bool:
        return self.lower <= ratio <= self.upper


@dataclass(frozen=True)
class OracleConfig:
    """Price safety settings for one asset.

    Within the first band the anchor price is trusted as is; within the last
    band the average of anchor and aggregator is used; outside both the
    price is unsafe.
    """

    first_tolerance_bps: int = 200
    last_tolerance_bps: int = 500
    max_stale_seconds: int = DEFAULT_MAX_PRICE_STALE_SECONDS

    def __post_init__(self) -> None:
        if not MIN_FIRST_TOLERANCE_BPS <= self.first_tolerance_bps <= MAX_FIRST_TOLERANCE_BPS:
            raise InvalidTolerance(f"first tolerance {self.first_tolerance_bps}")
        if not MIN_LAST_TOLERANCE_BPS <= self.last_tolerance_bps <= MAX_LAST_TOLERANCE_BPS:
            raise InvalidTolerance(f"last tolerance {self.last_tolerance_bps}")
        if self.last_tolerance_bps < self.first_tolerance_bps:
            raise InvalidTolerance("last tolerance must not be tighter than first")
        if self.max_stale_seconds <= 0:
            raise InvalidTolerance("max staleness must be positive")

    @property
    def first_band(self) -> ToleranceBand:
        return ToleranceBand.from_tolerance(self.first_tolerance_bps)

    @property
    def last_band(self) -> ToleranceBand:
        return ToleranceBand.from_tolerance(self.last_tolerance_bps)


class PriceOracle(ABC):
    """Query side of the price aggregator."""

    @abstractmethod
    def get_price_feed(self, asset: str) -> PriceFeed | None:
        """Latest aggregator answer, or None if the asset has no feed."""

    @abstractmethod
    def get_anchor_price(self, asset: str) -> Decimal | None:
        """Reference price used for the tolerance check, or None if unavailable."""
