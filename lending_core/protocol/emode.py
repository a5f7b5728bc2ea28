"""E-mode category dataclasses."""

from dataclasses import dataclass

from lending_core.protocol.errors import InvalidLiquidationThreshold
from lending_core.protocol.fixed_point import Decimal


@dataclass(frozen=True)
class EModeCategory:
    """Efficiency mode category: risk parameter overrides for correlated assets."""

    category_id: int
    ltv: Decimal  # BPS, e.g. 9300
    liquidation_threshold: Decimal  # BPS, e.g. 9550
    liquidation_bonus: Decimal  # BPS, e.g. 100 (1%)
    is_deprecated: bool = False

    def __post_init__(self) -> None:
        if self.liquidation_threshold < self.ltv:
            raise InvalidLiquidationThreshold(f"e-mode category {self.category_id}")


@dataclass(frozen=True)
class EModeAssetConfig:
    """Per (category, asset) usage override."""

    is_collateralizable: bool = True
    is_borrowable: bool = True
