"""Account valuation, health factor and the supply/borrow policy gates.

All values are USD in WAD. ``value = amount * price`` where ``amount`` is
in the asset's native scale and ``price`` is per whole unit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lending_core.data.cache import RequestCache
from lending_core.data.constants import (
    BPS_PRECISION,
    DEFAULT_MAX_POSITIONS,
    MAX_LIQUIDATION_BONUS_BPS,
    RAY_PRECISION,
    WAD_PRECISION,
)
from lending_core.position.account_position import (
    AccountAttributes,
    PositionKind,
)
from lending_core.protocol.asset_config import AssetConfig
from lending_core.protocol.errors import (
    AssetNotBorrowable,
    AssetNotBorrowableInIsolation,
    AssetNotBorrowableInSiloed,
    AssetNotCollateralizable,
    AssetNotSupportedInEMode,
    BorrowCapReached,
    DebtCeilingReached,
    EModeCategoryDeprecated,
    EModeWithIsolatedAsset,
    InsufficientCollateral,
    MixIsolatedCollateral,
    PositionLimitExceeded,
    SupplyCapReached,
)
from lending_core.protocol.fixed_point import Decimal, dec_min, ray_one, wad_zero

logger = logging.getLogger(__name__)

# Reported when an account has no debt
MAX_HEALTH_FACTOR = Decimal(2**256 - 1, RAY_PRECISION)


def usd_value(amount: Decimal, price: Decimal) -> Decimal:
    return amount.mul_half_up(price, WAD_PRECISION)


def units_for_value(value: Decimal, price: Decimal, asset_decimals: int) -> Decimal:
    return value.div_half_up(price, asset_decimals)


def health_factor(weighted_collateral: Decimal, debt_value: Decimal) -> Decimal:
    """``weighted_collateral / debt_value`` in RAY, or the no-debt sentinel."""
    if debt_value.is_zero():
        return MAX_HEALTH_FACTOR
    return weighted_collateral.div_half_up(debt_value, RAY_PRECISION)


@dataclass(frozen=True)
class AccountSnapshot:
    """Priced view of an account at one instant."""

    collateral_value: Decimal
    weighted_collateral: Decimal  # liquidation-threshold weighted
    ltv_collateral: Decimal  # LTV weighted, borrowing power
    debt_value: Decimal
    health_factor: Decimal  # RAY
    deposit_values: dict[str, Decimal] = field(default_factory=dict)
    borrow_values: dict[str, Decimal] = field(default_factory=dict)

    @property
    def has_debt(self) -> bool:
        return not self.debt_value.is_zero()

    @property
    def is_liquidatable(self) -> bool:
        return self.has_debt and self.health_factor < ray_one()


class HealthEngine:
    """Values an account's positions and enforces the usage policies."""

    def __init__(self, cache: RequestCache, max_positions: int = DEFAULT_MAX_POSITIONS) -> None:
        self.cache = cache
        self.max_positions = max_positions

    @property
    def txn(self):
        return self.cache.txn

    # ------------------------------------------------------------------
    # Effective parameters
    # ------------------------------------------------------------------

    def effective_config(self, attrs: AccountAttributes, asset: str) -> AssetConfig:
        """Asset config with the account's e-mode overrides applied."""
        config = self.cache.asset_config(asset)
        if not attrs.has_e_mode:
            return config
        category = self.cache.e_mode_category(attrs.e_mode_category)
        asset_e_mode = self.cache.e_mode_asset(attrs.e_mode_category, asset)
        return config.with_e_mode(category, asset_e_mode)

    def liquidation_bonus(self, attrs: AccountAttributes, snapshot: AccountSnapshot) -> Decimal:
        """Collateral-value weighted bonus of the account (RAY), capped.

        Every collateral asset is seized at this one rate.
        """
        if snapshot.collateral_value.is_zero():
            return Decimal.zero(RAY_PRECISION)
        weighted = Decimal.zero(WAD_PRECISION + BPS_PRECISION)
        for asset, value in snapshot.deposit_values.items():
            bonus = self.effective_config(attrs, asset).liquidation_bonus
            weighted = weighted + value.mul_half_up(bonus, WAD_PRECISION + BPS_PRECISION)
        bonus = weighted.div_half_up(snapshot.collateral_value, RAY_PRECISION)
        cap = Decimal.bps(MAX_LIQUIDATION_BONUS_BPS).rescale_half_up(RAY_PRECISION)
        return dec_min(bonus, cap)

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def sync_positions(self, account_id: int) -> None:
        """Bring every position of the account up to the current indices."""
        for position in self.txn.positions(account_id).values():
            self.cache.market(position.asset).sync_position(position, self.cache.now)

    def snapshot(self, account_id: int) -> AccountSnapshot:
        attrs = self.txn.account(account_id)
        collateral = weighted = ltv_weighted = debt = wad_zero()
        deposit_values: dict[str, Decimal] = {}
        borrow_values: dict[str, Decimal] = {}

        for position in self.txn.deposits(account_id):
            value = usd_value(position.principal, self.cache.price(position.asset))
            config = self.effective_config(attrs, position.asset)
            deposit_values[position.asset] = value
            collateral = collateral + value
            weighted = weighted + value.mul_half_up(config.liquidation_threshold, WAD_PRECISION)
            ltv_weighted = ltv_weighted + value.mul_half_up(config.ltv, WAD_PRECISION)

        for position in self.txn.borrows(account_id):
            value = usd_value(position.principal, self.cache.price(position.asset))
            borrow_values[position.asset] = value
            debt = debt + value

        return AccountSnapshot(
            collateral_value=collateral,
            weighted_collateral=weighted,
            ltv_collateral=ltv_weighted,
            debt_value=debt,
            health_factor=health_factor(weighted, debt),
            deposit_values=deposit_values,
            borrow_values=borrow_values,
        )

    def health_factor(self, account_id: int) -> Decimal:
        self.sync_positions(account_id)
        return self.snapshot(account_id).health_factor

    def record_isolated_debt(self, attrs: AccountAttributes, value: Decimal) -> None:
        if not attrs.is_isolated:
            return
        state = self.cache.market(attrs.isolated_asset).state
        state.isolated_debt_usd = state.isolated_debt_usd + value

    def release_isolated_debt(self, attrs: AccountAttributes, value: Decimal) -> None:
        if not attrs.is_isolated:
            return
        state = self.cache.market(attrs.isolated_asset).state
        state.isolated_debt_usd = state.isolated_debt_usd.saturating_sub(value)

    # ------------------------------------------------------------------
    # Policy gates
    # ------------------------------------------------------------------

    def check_e_mode(self, attrs: AccountAttributes, asset: str) -> None:
        """The asset must be usable under the account's e-mode category."""
        if not attrs.has_e_mode:
            return
        category = self.cache.e_mode_category(attrs.e_mode_category)
        if category.is_deprecated:
            raise EModeCategoryDeprecated(str(category.category_id))
        config = self.cache.asset_config(asset)
        if config.is_isolated:
            raise EModeWithIsolatedAsset(asset)
        if not config.is_e_mode_enabled:
            raise AssetNotSupportedInEMode(f"{asset} has e-mode disabled")
        if self.cache.e_mode_asset(attrs.e_mode_category, asset) is None:
            raise AssetNotSupportedInEMode(f"{asset} not in category {category.category_id}")

    def _check_position_limit(self, account_id: int, kind: PositionKind, asset: str) -> None:
        if self.txn.position(account_id, kind, asset) is not None:
            return
        held = [p for p in self.txn.positions(account_id).values() if p.kind is kind]
        if len(held) >= self.max_positions:
            raise PositionLimitExceeded(f"{kind.value} positions={len(held)}")

    def check_supply(self, account_id: int, asset: str, amount: Decimal) -> None:
        attrs = self.txn.account(account_id)
        config = self.cache.asset_config(asset)
        self.check_e_mode(attrs, asset)

        if not self.effective_config(attrs, asset).is_collateralizable:
            raise AssetNotCollateralizable(asset)
        if config.is_isolated != attrs.is_isolated:
            raise MixIsolatedCollateral(asset)
        if attrs.is_isolated and attrs.isolated_asset != asset:
            raise MixIsolatedCollateral(f"{asset} with isolated {attrs.isolated_asset}")

        if config.supply_cap is not None:
            state = self.cache.market(asset).state
            total = state.supplied + state.vault_supplied + amount
            if total > config.supply_cap:
                raise SupplyCapReached(f"{asset} cap={config.supply_cap}")

        self._check_position_limit(account_id, PositionKind.DEPOSIT, asset)

    def check_borrow(
        self,
        account_id: int,
        asset: str,
        amount: Decimal,
        snapshot: AccountSnapshot,
    ) -> Decimal:
        """Validate a new borrow against a fresh snapshot; return its USD value."""
        attrs = self.txn.account(account_id)
        config = self.cache.asset_config(asset)
        self.check_e_mode(attrs, asset)

        if not self.effective_config(attrs, asset).is_borrowable:
            raise AssetNotBorrowable(asset)

        borrow_value = usd_value(amount, self.cache.price(asset))

        if attrs.is_isolated:
            if not config.borrowable_in_isolation:
                raise AssetNotBorrowableInIsolation(asset)
            collateral_asset = attrs.isolated_asset
            ceiling = self.cache.asset_config(collateral_asset).isolation_debt_ceiling_usd
            used = self.cache.market(collateral_asset).state.isolated_debt_usd
            if used + borrow_value > ceiling:
                raise DebtCeilingReached(f"{collateral_asset} ceiling={ceiling}")

        for existing in self.txn.borrows(account_id):
            if existing.asset == asset:
                continue
            if config.is_siloed or self.cache.asset_config(existing.asset).is_siloed:
                raise AssetNotBorrowableInSiloed(f"{asset} with {existing.asset}")

        if config.borrow_cap is not None:
            total = self.cache.market(asset).state.borrowed + amount
            if total > config.borrow_cap:
                raise BorrowCapReached(f"{asset} cap={config.borrow_cap}")

        self._check_position_limit(account_id, PositionKind.BORROW, asset)

        if snapshot.ltv_collateral < snapshot.debt_value + borrow_value:
            raise InsufficientCollateral(
                f"borrowing power {snapshot.ltv_collateral}, "
                f"debt after {snapshot.debt_value + borrow_value}"
            )
        return borrow_value
