"""Per-market state, index accrual and market-level flows.

Accounting identity kept by every operation, modulo rounding dust:

    reserves + borrowed + bad_debt == supplied + revenue

``reserves`` is the cash held by the pool, ``supplied`` the suppliers'
claim and ``revenue`` the protocol's claim. Vault deposits sit outside this
identity in ``vault_supplied``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Callable

from lending_core.data.constants import RAY_PRECISION, WAD_PRECISION
from lending_core.position.account_position import AccountPosition, PositionKind, touch
from lending_core.protocol.errors import (
    AmountMustBePositive,
    InsufficientLiquidity,
    InsufficientRevenue,
    InvalidFlashLoanRepayment,
    InvalidPayments,
    InvalidTimeOrdering,
)
from lending_core.protocol.fixed_point import Decimal, dec_min, ray_one
from lending_core.protocol.interest_rate import (
    InterestRateModel,
    InterestRateParams,
    utilization,
)

logger = logging.getLogger(__name__)


@dataclass
class MarketState:
    """Mutable state of one market. Amounts are in the asset's native scale."""

    asset: str
    supplied: Decimal
    borrowed: Decimal
    reserves: Decimal
    revenue: Decimal
    bad_debt: Decimal
    vault_supplied: Decimal
    borrow_index: Decimal  # RAY
    supply_index: Decimal  # RAY
    last_sync_timestamp: int
    isolated_debt_usd: Decimal = field(
        default_factory=lambda: Decimal.zero(WAD_PRECISION)
    )

    @classmethod
    def new(cls, asset: str, asset_decimals: int, timestamp: int) -> MarketState:
        zero = Decimal.zero(asset_decimals)
        return cls(
            asset=asset,
            supplied=zero,
            borrowed=zero,
            reserves=zero,
            revenue=zero,
            bad_debt=zero,
            vault_supplied=zero,
            borrow_index=ray_one(),
            supply_index=ray_one(),
            last_sync_timestamp=timestamp,
        )

    @property
    def utilization(self) -> Decimal:
        return utilization(self.borrowed, self.supplied)


@dataclass(frozen=True)
class SyncResult:
    """What one index sync capitalized."""

    elapsed: int
    interest_accrued: Decimal
    reserve_cut: Decimal
    supplier_gain: Decimal


@dataclass(frozen=True)
class WithdrawResult:
    amount: Decimal  # removed from the position
    protocol_fee: Decimal  # part of ``amount`` kept as revenue

    @property
    def paid_out(self) -> Decimal:
        return self.amount - self.protocol_fee


@dataclass(frozen=True)
class RepayResult:
    applied: Decimal
    refund: Decimal


class Market:
    """Index accrual engine and market-level flows for one asset."""

    def __init__(self, state: MarketState, params: InterestRateParams) -> None:
        self.state = state
        self.params = params
        self.rate_model = InterestRateModel(params)

    @property
    def asset(self) -> str:
        return self.state.asset

    @property
    def asset_decimals(self) -> int:
        return self.params.asset_decimals

    def _zero(self) -> Decimal:
        return Decimal.zero(self.asset_decimals)

    def require_amount(self, amount: Decimal) -> None:
        if amount.scale != self.asset_decimals:
            raise InvalidPayments(f"{self.asset} amounts use {self.asset_decimals} decimals")
        if amount.is_zero():
            raise AmountMustBePositive()

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    @property
    def utilization(self) -> Decimal:
        return self.state.utilization

    @property
    def borrow_rate(self) -> Decimal:
        """Per-second borrow rate (RAY)."""
        return self.rate_model.borrow_rate(self.utilization)

    @property
    def deposit_rate(self) -> Decimal:
        """Per-second deposit rate (RAY)."""
        util = self.utilization
        return self.rate_model.deposit_rate(util, self.rate_model.borrow_rate(util))

    # ------------------------------------------------------------------
    # Index accrual
    # ------------------------------------------------------------------

    def sync(self, now: int) -> SyncResult:
        """Capitalize interest accrued since the last sync.

        Raises:
            InvalidTimeOrdering: if ``now`` is before the last sync.
        """
        s = self.state
        elapsed = now - s.last_sync_timestamp
        if elapsed < 0:
            raise InvalidTimeOrdering(f"now={now} last={s.last_sync_timestamp}")
        zero = self._zero()
        if elapsed == 0:
            return SyncResult(0, zero, zero, zero)

        rate = self.borrow_rate
        growth = rate.mul_half_up(Decimal(elapsed, 0), RAY_PRECISION)
        interest_factor = ray_one() + growth

        interest_accrued = s.borrowed.mul_half_up(growth, self.asset_decimals)
        reserve_cut = interest_accrued.mul_half_up(
            self.params.reserve_factor, self.asset_decimals
        )
        supplier_gain = interest_accrued - reserve_cut

        s.borrowed = s.borrowed + interest_accrued
        s.borrow_index = s.borrow_index.mul_half_up(interest_factor, RAY_PRECISION)

        if s.supplied.is_zero():
            s.revenue = s.revenue + interest_accrued
        else:
            s.revenue = s.revenue + reserve_cut
            self._grow_supply_index(supplier_gain)

        s.last_sync_timestamp = now
        logger.debug(
            "sync %s dt=%d interest=%s borrow_index=%s supply_index=%s",
            s.asset,
            elapsed,
            interest_accrued,
            s.borrow_index,
            s.supply_index,
        )
        return SyncResult(elapsed, interest_accrued, reserve_cut, supplier_gain)

    def _grow_supply_index(self, gain: Decimal) -> None:
        s = self.state
        if gain.is_zero():
            return
        ratio = gain.div_half_up(s.supplied, RAY_PRECISION)
        s.supply_index = s.supply_index.mul_half_up(ray_one() + ratio, RAY_PRECISION)
        s.supplied = s.supplied + gain

    def simulate_sync(self, now: int) -> MarketState:
        """State after a sync at ``now``, without mutating this market."""
        projected = Market(copy.deepcopy(self.state), self.params)
        projected.sync(now)
        return projected.state

    def add_rewards(self, amount: Decimal, now: int) -> None:
        """Distribute externally funded yield to current suppliers."""
        self.require_amount(amount)
        self.sync(now)
        if self.state.supplied.is_zero():
            raise InsufficientLiquidity("no suppliers to reward")
        self._grow_supply_index(amount)
        self.state.reserves = self.state.reserves + amount
        logger.info("rewards %s %s supply_index=%s", amount, self.asset, self.state.supply_index)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def current_index(self, kind: PositionKind) -> Decimal:
        if kind is PositionKind.DEPOSIT:
            return self.state.supply_index
        return self.state.borrow_index

    def sync_position(self, position: AccountPosition, now: int) -> Decimal:
        """Sync the market and bring ``position`` up to date; return accrued interest."""
        self.sync(now)
        return touch(position, self.current_index(position.kind))

    def supply(self, position: AccountPosition, amount: Decimal, now: int) -> None:
        self.require_amount(amount)
        self.sync_position(position, now)
        position.principal = position.principal + amount
        if position.is_vault:
            self.state.vault_supplied = self.state.vault_supplied + amount
            return
        self.state.supplied = self.state.supplied + amount
        self.state.reserves = self.state.reserves + amount

    def withdraw(
        self,
        position: AccountPosition,
        amount: Decimal,
        now: int,
        protocol_fee: Decimal | None = None,
    ) -> WithdrawResult:
        """Remove up to ``amount`` from a deposit position.

        ``protocol_fee`` (liquidations only) stays in the pool as revenue
        instead of being paid out.
        """
        self.require_amount(amount)
        self.sync_position(position, now)
        amount = dec_min(amount, position.principal)
        fee = dec_min(protocol_fee or self._zero(), amount)
        payout = amount - fee
        s = self.state

        if position.is_vault:
            s.vault_supplied = s.vault_supplied.saturating_sub(amount)
            s.reserves = s.reserves + fee
        else:
            if s.reserves < payout:
                raise InsufficientLiquidity(f"{self.asset} reserves={s.reserves}")
            s.supplied = s.supplied.saturating_sub(amount)
            s.reserves = s.reserves - payout
        s.revenue = s.revenue + fee
        position.principal = position.principal - amount
        return WithdrawResult(amount, fee)

    def borrow(self, position: AccountPosition, amount: Decimal, now: int) -> None:
        self.require_amount(amount)
        self.sync_position(position, now)
        s = self.state
        if s.reserves < amount:
            raise InsufficientLiquidity(f"{self.asset} reserves={s.reserves}")
        position.principal = position.principal + amount
        s.borrowed = s.borrowed + amount
        s.reserves = s.reserves - amount

    def repay(self, position: AccountPosition, amount: Decimal, now: int) -> RepayResult:
        """Apply a repayment; anything above the outstanding debt is refunded."""
        self.require_amount(amount)
        self.sync_position(position, now)
        applied = dec_min(amount, position.principal)
        position.principal = position.principal - applied
        s = self.state
        s.borrowed = s.borrowed.saturating_sub(applied)
        s.reserves = s.reserves + applied
        return RepayResult(applied, amount - applied)

    # ------------------------------------------------------------------
    # Vault custody
    # ------------------------------------------------------------------

    def move_to_vault(self, position: AccountPosition, now: int) -> None:
        """Take a deposit out of market accrual into vault custody."""
        self.sync_position(position, now)
        s = self.state
        amount = position.principal
        if s.reserves < amount:
            raise InsufficientLiquidity(f"{self.asset} reserves={s.reserves}")
        s.supplied = s.supplied.saturating_sub(amount)
        s.reserves = s.reserves - amount
        s.vault_supplied = s.vault_supplied + amount
        position.is_vault = True

    def move_from_vault(self, position: AccountPosition, now: int) -> None:
        """Put a vault deposit back into the market at the current supply index."""
        self.sync(now)
        s = self.state
        amount = position.principal
        s.vault_supplied = s.vault_supplied.saturating_sub(amount)
        s.supplied = s.supplied + amount
        s.reserves = s.reserves + amount
        position.is_vault = False
        position.index_snapshot = s.supply_index

    # ------------------------------------------------------------------
    # Bad debt and revenue
    # ------------------------------------------------------------------

    def write_off_debt(self, position: AccountPosition, now: int) -> Decimal:
        """Drop a borrow position's remaining debt as bad debt."""
        self.sync_position(position, now)
        s = self.state
        amount = position.principal
        written = dec_min(amount, s.borrowed)
        s.borrowed = s.borrowed - written
        s.bad_debt = s.bad_debt + written
        position.principal = self._zero()
        logger.warning("bad debt %s %s recorded", amount, self.asset)
        return amount

    def seize_to_revenue(self, position: AccountPosition, now: int) -> Decimal:
        """Move a deposit position entirely into protocol revenue."""
        self.sync_position(position, now)
        s = self.state
        amount = position.principal
        if position.is_vault:
            s.vault_supplied = s.vault_supplied.saturating_sub(amount)
            s.reserves = s.reserves + amount
        else:
            s.supplied = s.supplied.saturating_sub(amount)
        s.revenue = s.revenue + amount
        position.principal = self._zero()
        return amount

    def claim_revenue(self, now: int) -> Decimal:
        """Pay out accrued revenue, bounded by available reserves."""
        self.sync(now)
        s = self.state
        amount = dec_min(s.revenue, s.reserves)
        if amount.is_zero():
            raise InsufficientRevenue(self.asset)
        s.revenue = s.revenue - amount
        s.reserves = s.reserves - amount
        logger.info("revenue claimed %s %s", amount, self.asset)
        return amount

    # ------------------------------------------------------------------
    # Flash loans
    # ------------------------------------------------------------------

    def flash_loan(
        self,
        amount: Decimal,
        fee: Decimal,
        receiver: Callable[[str, Decimal, Decimal], Decimal],
        now: int,
    ) -> Decimal:
        """Lend ``amount`` for the duration of ``receiver``.

        The receiver gets ``(asset, amount, fee)`` and returns what it pays
        back, which must cover ``amount + fee``. Returns the fee earned.
        """
        self.require_amount(amount)
        self.sync(now)
        s = self.state
        if s.reserves < amount:
            raise InsufficientLiquidity(f"{self.asset} reserves={s.reserves}")
        s.reserves = s.reserves - amount

        repaid = receiver(self.asset, amount, fee)
        if not isinstance(repaid, Decimal) or repaid.scale != self.asset_decimals:
            raise InvalidFlashLoanRepayment("repayment must be a native-scale amount")
        if repaid < amount + fee:
            raise InvalidFlashLoanRepayment(f"got {repaid}, owed {amount + fee}")

        earned = repaid - amount
        s.reserves = s.reserves + repaid
        s.revenue = s.revenue + earned
        return earned
