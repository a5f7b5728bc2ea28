"""Liquidation of under-collateralized accounts.

Each liquidation may repay at most the debt needed to bring the account back
to a health factor of 1.02 (1.01 when that is out of reach); offers above it
are refunded. Repayments are applied entry by entry; collateral is then
seized once for the total repaid value, split across the account's deposits
in proportion to their share of collateral value in the pre-liquidation
snapshot. Seizing against one aggregated value means splitting a repayment
into many entries only moves rounding dust.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lending_core.data.constants import (
    BAD_DEBT_USD_THRESHOLD,
    LIQUIDATION_TARGET_HEALTH_BPS,
    RAY_PRECISION,
    WAD_PRECISION,
)
from lending_core.position.account_position import PositionKind
from lending_core.position.health import (
    AccountSnapshot,
    HealthEngine,
    health_factor,
    units_for_value,
    usd_value,
)
from lending_core.protocol.errors import (
    AmountMustBePositive,
    HealthFactorNotLowEnough,
    InvalidPayments,
    LiquidationReceiptTooLow,
    LiquidationTokenMismatch,
    NoCollateralToSeize,
)
from lending_core.protocol.fixed_point import Decimal, dec_min, ray_one, wad_zero

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Repayment:
    """One (asset, amount) entry offered by the liquidator."""

    asset: str
    amount: Decimal


@dataclass(frozen=True)
class RepaymentOutcome:
    asset: str
    applied: Decimal
    refund: Decimal
    value: Decimal  # WAD USD of ``applied``


@dataclass(frozen=True)
class Seizure:
    """Collateral taken from one deposit position."""

    asset: str
    amount: Decimal
    protocol_fee: Decimal

    @property
    def to_liquidator(self) -> Decimal:
        return self.amount - self.protocol_fee


@dataclass(frozen=True)
class LiquidationResult:
    account_id: int
    health_factor_before: Decimal
    health_factor_after: Decimal
    repayments: tuple[RepaymentOutcome, ...]
    seizures: tuple[Seizure, ...]
    repaid_value: Decimal
    received_value: Decimal
    bonus: Decimal  # RAY, account level
    bad_debt_cleaned: bool = False

    def seized(self, asset: str) -> Decimal | None:
        for seizure in self.seizures:
            if seizure.asset == asset:
                return seizure.amount
        return None


@dataclass(frozen=True)
class LiquidationEstimate:
    """How far an account can be liquidated right now. Values are WAD USD."""

    account_id: int
    health_factor_before: Decimal
    health_factor_after: Decimal
    max_repay_value: Decimal
    max_seize_value: Decimal
    bonus: Decimal  # RAY


def _pro_rata(value: Decimal, share: Decimal, total: Decimal) -> Decimal:
    """``value * share / total`` in WAD, rounded once."""
    return value.mul_half_up(share, 2 * WAD_PRECISION).div_half_up(total, WAD_PRECISION)


def _seized_weight(snapshot: AccountSnapshot, bonus: Decimal) -> Decimal:
    """Weighted collateral lost per unit of debt repaid (RAY)."""
    threshold = snapshot.weighted_collateral.div_half_up(snapshot.collateral_value, RAY_PRECISION)
    return threshold.mul_half_up(ray_one() + bonus, RAY_PRECISION)


def health_after_repaying(snapshot: AccountSnapshot, repaid: Decimal, bonus: Decimal) -> Decimal:
    """Projected health factor once ``repaid`` (WAD USD) is repaid at ``bonus``."""
    if repaid.is_zero():
        return snapshot.health_factor
    seized = repaid.mul_half_up(_seized_weight(snapshot, bonus), WAD_PRECISION)
    weighted = snapshot.weighted_collateral.saturating_sub(seized)
    return health_factor(weighted, snapshot.debt_value.saturating_sub(repaid))


def max_repayable_debt(snapshot: AccountSnapshot, bonus: Decimal) -> Decimal:
    """Largest debt value (WAD USD) a single liquidation may repay.

    Solves ``(W - d*t*(1+b)) / (D - d) = target`` for ``d``, where ``t`` is
    the account's average liquidation threshold, trying each target in
    ``LIQUIDATION_TARGET_HEALTH_BPS``. The result never exceeds what the
    collateral covers once the bonus is added; when no target is reachable
    that ceiling is returned.
    """
    if not snapshot.is_liquidatable or snapshot.collateral_value.is_zero():
        return wad_zero()
    ceiling = snapshot.collateral_value.div_half_up(ray_one() + bonus, WAD_PRECISION)
    weight = _seized_weight(snapshot, bonus)
    repay = ceiling
    for target_bps in LIQUIDATION_TARGET_HEALTH_BPS:
        target = Decimal.bps(target_bps).rescale_half_up(RAY_PRECISION)
        repay = ceiling
        if target > weight:
            shortfall = target.mul_half_up(snapshot.debt_value, WAD_PRECISION).saturating_sub(
                snapshot.weighted_collateral
            )
            repay = dec_min(shortfall.div_half_up(target - weight, WAD_PRECISION), ceiling)
        if health_after_repaying(snapshot, repay, bonus) >= ray_one():
            return repay
    return repay


def is_bad_debt(snapshot: AccountSnapshot) -> bool:
    """Debt exceeds collateral and what is left is not worth liquidating."""
    threshold = Decimal.wad(BAD_DEBT_USD_THRESHOLD)
    return (
        snapshot.has_debt
        and snapshot.debt_value > snapshot.collateral_value
        and snapshot.collateral_value < threshold
    )


class LiquidationEngine:
    """Applies liquidator repayments and seizes collateral."""

    def __init__(self, health: HealthEngine) -> None:
        self.health = health
        self.cache = health.cache

    @property
    def txn(self):
        return self.cache.txn

    def liquidate(
        self,
        account_id: int,
        repayments: list[Repayment],
        min_receipt_value: Decimal | None = None,
    ) -> LiquidationResult:
        """Liquidate ``account_id``.

        Args:
            account_id: account to liquidate.
            repayments: ordered repayment entries; each must target an
                existing borrow position. Amounts above the outstanding debt,
                or above what the liquidation may repay in total, are
                refunded.
            min_receipt_value: smallest acceptable USD value (WAD) of the
                collateral handed to the liquidator after fees.

        Returns:
            LiquidationResult describing what was repaid and seized.
        """
        if not repayments:
            raise InvalidPayments("no repayment entries")
        attrs = self.txn.account(account_id)

        self.health.sync_positions(account_id)
        before = self.health.snapshot(account_id)
        if before.collateral_value.is_zero():
            raise NoCollateralToSeize(str(account_id))
        if not before.is_liquidatable:
            raise HealthFactorNotLowEnough(f"health factor {before.health_factor}")

        bonus = self.health.liquidation_bonus(attrs, before)
        budget = max_repayable_debt(before, bonus)
        outcomes = self._apply_repayments(account_id, repayments, budget)
        repaid_value = wad_zero()
        for outcome in outcomes:
            repaid_value = repaid_value + outcome.value
        self.health.release_isolated_debt(attrs, repaid_value)

        seizures = self._seize(account_id, bonus, repaid_value, before)
        received = wad_zero()
        for seizure in seizures:
            received = received + usd_value(seizure.to_liquidator, self.cache.price(seizure.asset))
        if min_receipt_value is not None and received < min_receipt_value:
            raise LiquidationReceiptTooLow(f"received {received}, minimum {min_receipt_value}")

        after = self.health.snapshot(account_id)
        cleaned = False
        if is_bad_debt(after):
            self.clean_bad_debt(account_id, after)
            cleaned = True
            after = self.health.snapshot(account_id)
        self.txn.prune(account_id)

        logger.info(
            "liquidated account=%d repaid=%s received=%s hf %s -> %s",
            account_id,
            repaid_value,
            received,
            before.health_factor,
            after.health_factor,
        )
        return LiquidationResult(
            account_id=account_id,
            health_factor_before=before.health_factor,
            health_factor_after=after.health_factor,
            repayments=tuple(outcomes),
            seizures=tuple(seizures),
            repaid_value=repaid_value,
            received_value=received,
            bonus=bonus,
            bad_debt_cleaned=cleaned,
        )

    def estimate(self, account_id: int) -> LiquidationEstimate:
        """Largest liquidation the account currently allows."""
        attrs = self.txn.account(account_id)
        self.health.sync_positions(account_id)
        snapshot = self.health.snapshot(account_id)
        bonus = self.health.liquidation_bonus(attrs, snapshot)
        max_repay = max_repayable_debt(snapshot, bonus)
        return LiquidationEstimate(
            account_id=account_id,
            health_factor_before=snapshot.health_factor,
            health_factor_after=health_after_repaying(snapshot, max_repay, bonus),
            max_repay_value=max_repay,
            max_seize_value=max_repay.mul_half_up(ray_one() + bonus, WAD_PRECISION),
            bonus=bonus,
        )

    def _apply_repayments(
        self, account_id: int, repayments: list[Repayment], budget: Decimal
    ) -> list[RepaymentOutcome]:
        """Apply entries in order until ``budget`` (WAD USD) is used up."""
        outcomes = []
        for entry in repayments:
            if entry.amount.is_zero():
                raise AmountMustBePositive(entry.asset)
            position = self.txn.position(account_id, PositionKind.BORROW, entry.asset)
            if position is None or position.is_empty():
                raise LiquidationTokenMismatch(entry.asset)
            market = self.cache.market(entry.asset)
            market.require_amount(entry.amount)
            price = self.cache.price(entry.asset)

            allowed = dec_min(entry.amount, units_for_value(budget, price, market.asset_decimals))
            if allowed.is_zero():
                outcomes.append(
                    RepaymentOutcome(entry.asset, allowed, entry.amount, wad_zero())
                )
                continue
            repaid = market.repay(position, allowed, self.cache.now)
            value = usd_value(repaid.applied, price)
            budget = budget.saturating_sub(value)
            refund = entry.amount - repaid.applied
            outcomes.append(RepaymentOutcome(entry.asset, repaid.applied, refund, value))
        return outcomes

    def _seize(
        self,
        account_id: int,
        bonus: Decimal,
        repaid_value: Decimal,
        before: AccountSnapshot,
    ) -> list[Seizure]:
        seizures = []
        total = before.collateral_value
        seize_value = repaid_value.mul_half_up(ray_one() + bonus, WAD_PRECISION)
        for position in self.txn.deposits(account_id):
            share = before.deposit_values.get(position.asset)
            if share is None or share.is_zero() or position.is_empty():
                continue
            decimals = position.asset_decimals
            price = self.cache.price(position.asset)

            asset_seize = _pro_rata(seize_value, share, total)
            asset_base = _pro_rata(repaid_value, share, total)
            amount = dec_min(units_for_value(asset_seize, price, decimals), position.principal)
            if amount.is_zero():
                continue
            base_units = dec_min(units_for_value(asset_base, price, decimals), amount)
            fee_rate = self.cache.asset_config(position.asset).liquidation_fee
            fee = (amount - base_units).mul_half_up(fee_rate, decimals)

            withdrawn = self.cache.market(position.asset).withdraw(
                position, amount, self.cache.now, protocol_fee=fee
            )
            seizures.append(Seizure(position.asset, withdrawn.amount, withdrawn.protocol_fee))
        return seizures

    def clean_bad_debt(self, account_id: int, snapshot: AccountSnapshot) -> Decimal:
        """Move remaining collateral to revenue and write all debt off.

        Returns the USD value (WAD) of the debt written off.
        """
        attrs = self.txn.account(account_id)
        now = self.cache.now
        for position in self.txn.deposits(account_id):
            self.cache.market(position.asset).seize_to_revenue(position, now)
        for position in self.txn.borrows(account_id):
            self.cache.market(position.asset).write_off_debt(position, now)
        self.health.release_isolated_debt(attrs, snapshot.debt_value)
        logger.warning(
            "bad debt cleaned account=%d debt=%s collateral=%s",
            account_id,
            snapshot.debt_value,
            snapshot.collateral_value,
        )
        return snapshot.debt_value
