"""Per-asset risk configuration."""

from __future__ import annotations

from dataclasses import dataclass, replace

from lending_core.data.constants import BPS_PRECISION, WAD_PRECISION
from lending_core.protocol.emode import EModeAssetConfig, EModeCategory
from lending_core.protocol.errors import InvalidLiquidationThreshold, InvalidMarketParams
from lending_core.protocol.fixed_point import Decimal


@dataclass(frozen=True)
class AssetConfig:
    """Risk parameters and usage flags for a supported asset.

    Caps are in the asset's native scale; ``None`` means uncapped.
    """

    ltv: Decimal  # BPS
    liquidation_threshold: Decimal  # BPS
    liquidation_bonus: Decimal  # BPS
    liquidation_fee: Decimal  # BPS, share of the bonus kept by the protocol
    is_collateralizable: bool = True
    is_borrowable: bool = True
    is_isolated: bool = False
    is_siloed: bool = False
    is_flashloanable: bool = False
    is_e_mode_enabled: bool = False
    borrowable_in_isolation: bool = False
    isolation_debt_ceiling_usd: Decimal = Decimal.zero(WAD_PRECISION)
    supply_cap: Decimal | None = None
    borrow_cap: Decimal | None = None
    flash_loan_fee: Decimal = Decimal.zero(BPS_PRECISION)

    def __post_init__(self) -> None:
        for value in (self.ltv, self.liquidation_threshold, self.liquidation_bonus,
                      self.liquidation_fee, self.flash_loan_fee):
            if value.scale != BPS_PRECISION:
                raise InvalidMarketParams("risk parameters must be BPS-scaled")
        if self.liquidation_threshold < self.ltv:
            raise InvalidLiquidationThreshold()
        if self.isolation_debt_ceiling_usd.scale != WAD_PRECISION:
            raise InvalidMarketParams("debt ceiling must be WAD-scaled")

    def with_e_mode(
        self,
        category: EModeCategory | None,
        asset_e_mode: EModeAssetConfig | None,
    ) -> AssetConfig:
        """Config as seen by an account in ``category``.

        Only applies when the account has a category and the asset is
        registered in it; otherwise the asset's own parameters stand.
        """
        if category is None or asset_e_mode is None:
            return self
        return replace(
            self,
            is_collateralizable=asset_e_mode.is_collateralizable,
            is_borrowable=asset_e_mode.is_borrowable,
            ltv=category.ltv,
            liquidation_threshold=category.liquidation_threshold,
            liquidation_bonus=category.liquidation_bonus,
        )
