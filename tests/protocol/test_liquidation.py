"""Tests for liquidation: seizure, fees, bad debt and split repayments."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lending_core.data.constants import RAY, WAD
from lending_core.data.static_params import (
    USDC,
    WBTC,
    WETH,
    StaticPriceOracle,
    build_storage,
    wad_price,
)
from lending_core.position.account_position import PositionKind
from lending_core.protocol.controller import LendingController
from lending_core.protocol.errors import (
    AccountNotFound,
    AmountMustBePositive,
    CannotCleanBadDebt,
    HealthFactorNotLowEnough,
    InvalidPayments,
    LiquidationReceiptTooLow,
    LiquidationTokenMismatch,
    NoCollateralToSeize,
)
from lending_core.protocol.fixed_point import Decimal
from lending_core.protocol.liquidation import Repayment, is_bad_debt


def weth(amount: str) -> Decimal:
    return Decimal.from_str(amount, 18)


def usdc(units: int) -> Decimal:
    return Decimal.from_units(units, 6)


def split(total: int, parts: int) -> list[int]:
    chunk = total // parts
    return [chunk] * (parts - 1) + [total - chunk * (parts - 1)]


def deposit_principal(storage, account: int, asset: str) -> Decimal:
    return storage.positions[account][(PositionKind.DEPOSIT, asset)].principal


class Protocol:
    """Controller plus handles to its storage and oracle."""

    def __init__(self) -> None:
        self.storage = build_storage()
        self.oracle = StaticPriceOracle()
        self.controller = LendingController(self.storage, self.oracle)
        self.controller.supply(0, USDC, usdc(1_000_000))

    def set_price(self, asset: str, price: str) -> None:
        self.oracle.set_price(asset, wad_price(price))


def single_collateral() -> tuple[Protocol, int]:
    """1 WETH against 2400 USDC, WETH then drops to 2800 (HF ~0.968)."""
    p = Protocol()
    account = p.controller.supply(0, WETH, weth("1"))
    p.controller.borrow(0, account, USDC, usdc(2_400))
    p.set_price(WETH, "2800")
    return p, account


def two_collateral() -> tuple[Protocol, int]:
    """0.5 WETH + 0.025 WBTC against 2200 USDC, both drop ~17% (HF ~0.898)."""
    p = Protocol()
    account = p.controller.supply(0, WETH, weth("0.5"))
    p.controller.supply(0, WBTC, Decimal(2_500_000, 8), account_id=account)
    p.controller.borrow(0, account, USDC, usdc(2_200))
    p.set_price(WETH, "2500")
    p.set_price(WBTC, "50000")
    return p, account


class TestLiquidate:
    def test_seizes_repaid_value_plus_bonus(self) -> None:
        p, account = single_collateral()
        result = p.controller.liquidate(0, account, [Repayment(USDC, usdc(700))])

        # 700 * 1.05 / 2800
        assert result.seized(WETH) == weth("0.2625")
        assert result.repaid_value == Decimal.wad(700 * WAD)
        assert result.bonus == Decimal.ray(500 * RAY // 10_000)
        assert result.health_factor_before < Decimal.ray(RAY)
        assert result.health_factor_after > Decimal.ray(RAY)
        assert deposit_principal(p.storage, account, WETH) == weth("0.7375")

    def test_protocol_fee_goes_to_revenue(self) -> None:
        p, account = single_collateral()
        revenue_before = p.storage.markets[WETH].revenue
        result = p.controller.liquidate(0, account, [Repayment(USDC, usdc(700))])

        (seizure,) = result.seizures
        assert not seizure.protocol_fee.is_zero()
        assert seizure.to_liquidator + seizure.protocol_fee == seizure.amount
        assert p.storage.markets[WETH].revenue == revenue_before + seizure.protocol_fee
        # 10% of the 0.0125 WETH bonus
        assert seizure.protocol_fee == weth("0.00125")

    def test_overpayment_is_refunded(self) -> None:
        p, account = single_collateral()
        result = p.controller.liquidate(0, account, [Repayment(USDC, usdc(5_000))])
        (outcome,) = result.repayments
        # (1.02 * 2400 - 2324) / (1.02 - 0.83 * 1.05)
        assert outcome.applied == Decimal(835_016_835, 6)
        assert outcome.refund == usdc(5_000) - outcome.applied
        assert result.health_factor_after >= Decimal.ray(RAY)


class TestRepaymentCap:
    def test_marginal_account_is_not_fully_liquidated(self) -> None:
        p = Protocol()
        account = p.controller.supply(0, WETH, weth("1"))
        p.controller.borrow(0, account, USDC, usdc(2_400))
        p.set_price(WETH, "2880")

        result = p.controller.liquidate(0, account, [Repayment(USDC, usdc(2_400))])
        (outcome,) = result.repayments
        assert outcome.applied < usdc(400)
        assert outcome.applied + outcome.refund == usdc(2_400)
        assert result.health_factor_before < Decimal.ray(RAY)
        assert Decimal.ray(RAY) <= result.health_factor_after
        assert result.health_factor_after < Decimal.ray(103 * RAY // 100)
        assert (PositionKind.BORROW, USDC) in p.storage.positions[account]

    def test_budget_is_shared_across_entries(self) -> None:
        p, account = single_collateral()
        result = p.controller.liquidate(
            0,
            account,
            [
                Repayment(USDC, usdc(600)),
                Repayment(USDC, usdc(600)),
                Repayment(USDC, usdc(100)),
            ],
        )
        first, second, third = result.repayments
        assert first.applied == usdc(600)
        assert first.refund.is_zero()
        assert second.applied == Decimal(235_016_835, 6)
        assert second.refund == usdc(600) - second.applied
        assert third.applied.is_zero()
        assert third.refund == usdc(100)

    def test_estimate_matches_cap(self) -> None:
        p, account = single_collateral()
        estimate = p.controller.liquidation_estimate(0, account)
        assert estimate.max_repay_value == Decimal.wad(835_016_835_016_835_016_835)
        assert estimate.bonus == Decimal.ray(500 * RAY // 10_000)
        assert estimate.max_seize_value == estimate.max_repay_value.mul_half_up(
            Decimal.ray(105 * RAY // 100), 18
        )
        assert Decimal.ray(RAY) <= estimate.health_factor_after
        assert estimate.health_factor_before < Decimal.ray(RAY)

    def test_estimate_for_healthy_account(self) -> None:
        p = Protocol()
        account = p.controller.supply(0, WETH, weth("1"))
        p.controller.borrow(0, account, USDC, usdc(2_000))
        estimate = p.controller.liquidation_estimate(0, account)
        assert estimate.max_repay_value.is_zero()
        assert estimate.max_seize_value.is_zero()

    def test_cap_falls_back_to_collateral_ceiling(self) -> None:
        p, account = single_collateral()
        p.set_price(WETH, "3")
        estimate = p.controller.liquidation_estimate(0, account)
        # 3 / 1.05
        assert estimate.max_repay_value == Decimal.wad(2_857_142_857_142_857_143)

    def test_empty_repayments(self) -> None:
        p, account = single_collateral()
        with pytest.raises(InvalidPayments):
            p.controller.liquidate(0, account, [])

    def test_zero_amount_entry(self) -> None:
        p, account = single_collateral()
        with pytest.raises(AmountMustBePositive):
            p.controller.liquidate(0, account, [Repayment(USDC, usdc(0))])

    def test_token_mismatch(self) -> None:
        p, account = single_collateral()
        with pytest.raises(LiquidationTokenMismatch):
            p.controller.liquidate(0, account, [Repayment(WETH, weth("0.1"))])

    def test_healthy_account_cannot_be_liquidated(self) -> None:
        p = Protocol()
        account = p.controller.supply(0, WETH, weth("1"))
        p.controller.borrow(0, account, USDC, usdc(2_000))
        with pytest.raises(HealthFactorNotLowEnough):
            p.controller.liquidate(0, account, [Repayment(USDC, usdc(100))])

    def test_no_collateral(self) -> None:
        p, account = single_collateral()
        position = p.storage.positions[account][(PositionKind.DEPOSIT, WETH)]
        position.principal = Decimal.zero(18)
        with pytest.raises(NoCollateralToSeize):
            p.controller.liquidate(0, account, [Repayment(USDC, usdc(100))])

    def test_min_receipt_rejects_and_rolls_back(self) -> None:
        p, account = single_collateral()
        hf_before = p.controller.health_factor(0, account)
        with pytest.raises(LiquidationReceiptTooLow):
            p.controller.liquidate(
                0,
                account,
                [Repayment(USDC, usdc(700))],
                min_receipt_value=Decimal.wad(2_000 * WAD),
            )
        assert p.controller.health_factor(0, account) == hf_before
        assert deposit_principal(p.storage, account, WETH) == weth("1")

    def test_preview_does_not_apply(self) -> None:
        p, account = single_collateral()
        preview = p.controller.liquidation_preview(0, account, [Repayment(USDC, usdc(700))])
        assert preview.seized(WETH) == weth("0.2625")
        assert deposit_principal(p.storage, account, WETH) == weth("1")

    def test_multi_collateral_proportional(self) -> None:
        p, account = two_collateral()
        result = p.controller.liquidate(0, account, [Repayment(USDC, usdc(400))])
        assert result.bonus == Decimal.ray(575 * RAY // 10_000)
        # 400 * 1.0575 = 423, half from each asset
        assert result.seized(WETH) == weth("0.0846")
        assert result.seized(WBTC) == Decimal(423_000, 8)


class TestBadDebt:
    def test_liquidation_cleans_dust_account(self) -> None:
        p, account = single_collateral()
        p.set_price(WETH, "3")
        result = p.controller.liquidate(0, account, [Repayment(USDC, usdc(1))])

        assert result.bad_debt_cleaned
        assert p.storage.markets[USDC].bad_debt == usdc(2_399)
        with pytest.raises(AccountNotFound):
            p.controller.account_summary(0, account)

    def test_clean_bad_debt_entry_point(self) -> None:
        p, account = single_collateral()
        p.set_price(WETH, "3")
        written_off = p.controller.clean_bad_debt(0, account)

        assert written_off == Decimal.wad(2_400 * WAD)
        assert p.storage.markets[USDC].bad_debt == usdc(2_400)
        assert p.storage.markets[WETH].revenue >= weth("1")
        assert account not in p.storage.accounts

    def test_cannot_clean_solvent_account(self) -> None:
        p, account = single_collateral()
        with pytest.raises(CannotCleanBadDebt):
            p.controller.clean_bad_debt(0, account)

    def test_is_bad_debt_needs_debt(self) -> None:
        p = Protocol()
        account = p.controller.supply(0, WETH, weth("0.001"))
        assert not is_bad_debt(p.controller.account_summary(0, account))


class TestSplitRepayments:
    def test_entries_in_one_call_match_single_entry(self) -> None:
        whole_p, whole_acc = single_collateral()
        whole_p.controller.liquidate(0, whole_acc, [Repayment(USDC, usdc(400))])

        split_p, split_acc = single_collateral()
        split_p.controller.liquidate(
            0, split_acc, [Repayment(USDC, usdc(200)), Repayment(USDC, usdc(200))]
        )
        assert deposit_principal(split_p.storage, split_acc, WETH) == deposit_principal(
            whole_p.storage, whole_acc, WETH
        )

    def test_separate_calls_match_single_call(self) -> None:
        whole_p, whole_acc = single_collateral()
        whole_p.controller.liquidate(0, whole_acc, [Repayment(USDC, usdc(400))])

        split_p, split_acc = single_collateral()
        split_p.controller.liquidate(0, split_acc, [Repayment(USDC, usdc(200))])
        split_p.controller.liquidate(0, split_acc, [Repayment(USDC, usdc(200))])

        whole = deposit_principal(whole_p.storage, whole_acc, WETH).magnitude
        parted = deposit_principal(split_p.storage, split_acc, WETH).magnitude
        assert abs(whole - parted) <= 10

    @settings(max_examples=25, deadline=None)
    @given(
        total=st.integers(min_value=1_000_000, max_value=500_000_000),
        parts=st.integers(min_value=2, max_value=5),
    )
    def test_split_entries_leave_only_dust(self, total: int, parts: int) -> None:
        whole_p, whole_acc = two_collateral()
        whole_p.controller.liquidate(0, whole_acc, [Repayment(USDC, Decimal(total, 6))])

        split_p, split_acc = two_collateral()
        entries = [Repayment(USDC, Decimal(amount, 6)) for amount in split(total, parts)]
        split_p.controller.liquidate(0, split_acc, entries)

        for asset in (WETH, WBTC):
            whole = deposit_principal(whole_p.storage, whole_acc, asset).magnitude
            parted = deposit_principal(split_p.storage, split_acc, asset).magnitude
            assert abs(whole - parted) <= 10

    @settings(max_examples=25, deadline=None)
    @given(
        total=st.integers(min_value=1_000_000, max_value=500_000_000),
        parts=st.integers(min_value=2, max_value=5),
    )
    def test_split_across_calls_leaves_only_dust(self, total: int, parts: int) -> None:
        whole_p, whole_acc = two_collateral()
        whole_p.controller.liquidate(0, whole_acc, [Repayment(USDC, Decimal(total, 6))])

        split_p, split_acc = two_collateral()
        for amount in split(total, parts):
            split_p.controller.liquidate(0, split_acc, [Repayment(USDC, Decimal(amount, 6))])

        whole_btc = deposit_principal(whole_p.storage, whole_acc, WBTC).magnitude
        split_btc = deposit_principal(split_p.storage, split_acc, WBTC).magnitude
        assert abs(whole_btc - split_btc) <= 10

        # value shares drift by WBTC unit rounding; bound the WETH gap in USD
        whole_eth = deposit_principal(whole_p.storage, whole_acc, WETH).magnitude
        split_eth = deposit_principal(split_p.storage, split_acc, WETH).magnitude
        assert abs(whole_eth - split_eth) * 2_500 <= WAD // 100
