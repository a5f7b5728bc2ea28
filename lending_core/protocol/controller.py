"""Protocol entry points.

Every public method runs in its own storage transaction with a fresh
request cache: it either completes and commits, or raises and leaves
storage untouched.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from lending_core.data.cache import RequestCache
from lending_core.data.constants import NO_EMODE_CATEGORY
from lending_core.data.interfaces import OracleConfig, PriceOracle
from lending_core.data.provider_factory import ProtocolConfig
from lending_core.data.storage import Storage, Transaction
from lending_core.position.account_position import (
    AccountAttributes,
    AccountPosition,
    PositionKind,
)
from lending_core.position.health import AccountSnapshot, HealthEngine, usd_value
from lending_core.protocol.errors import (
    AssetNotSupportedInEMode,
    CannotCleanBadDebt,
    EModeCategoryDeprecated,
    EModeWithIsolatedAsset,
    FlashLoanAlreadyOngoing,
    FlashLoanNotEnabled,
    HealthFactorTooLowForWithdraw,
    InsufficientCollateral,
    InvalidFlashLoanEndpoint,
    PositionNotFound,
)
from lending_core.protocol.fixed_point import Decimal, ray_one
from lending_core.protocol.liquidation import (
    LiquidationEngine,
    LiquidationEstimate,
    LiquidationResult,
    Repayment,
    is_bad_debt,
)
from lending_core.protocol.pool import Market, MarketState, RepayResult

logger = logging.getLogger(__name__)

FlashLoanReceiver = Callable[[str, Decimal, Decimal], Decimal]


class LendingController:
    """Accounts, markets and liquidations behind one transactional facade."""

    def __init__(
        self,
        storage: Storage,
        oracle: PriceOracle,
        config: ProtocolConfig | None = None,
    ) -> None:
        self.storage = storage
        self.oracle = oracle
        self.config = config or ProtocolConfig()

    @contextmanager
    def _request(
        self, now: int, price_always_safe: bool = False, commit: bool = True
    ) -> Iterator[HealthEngine]:
        """Open a transaction and request cache for one entry point.

        ``price_always_safe`` marks operations that cannot hurt the protocol
        (supply, repay), which accept prices outside the tolerance bands.
        """
        with self.storage.transaction(commit=commit) as txn:
            cache = RequestCache(
                txn,
                self.oracle,
                now,
                allow_unsafe_price=price_always_safe or self.config.allow_unsafe_price,
                default_oracle_config=OracleConfig(
                    max_stale_seconds=self.config.max_price_stale_seconds
                ),
            )
            yield HealthEngine(cache, self.config.max_positions)

    @staticmethod
    def _open_position(
        txn: Transaction, market: Market, account_id: int, kind: PositionKind
    ) -> AccountPosition:
        position = txn.position(account_id, kind, market.asset)
        if position is None:
            position = AccountPosition.open(
                account_id,
                market.asset,
                kind,
                market.asset_decimals,
                market.current_index(kind),
                is_vault=txn.account(account_id).is_vault,
            )
            txn.add_position(position)
        return position

    @staticmethod
    def _existing_position(
        txn: Transaction, account_id: int, kind: PositionKind, asset: str
    ) -> AccountPosition:
        position = txn.position(account_id, kind, asset)
        if position is None:
            raise PositionNotFound(f"account {account_id} has no {kind.value} of {asset}")
        return position

    # ------------------------------------------------------------------
    # Supply side
    # ------------------------------------------------------------------

    def supply(
        self,
        now: int,
        asset: str,
        amount: Decimal,
        account_id: int | None = None,
        e_mode_category: int = NO_EMODE_CATEGORY,
        is_vault: bool = False,
    ) -> int:
        """Deposit collateral, opening a new account when ``account_id`` is None.

        Returns the account id.
        """
        with self._request(now, price_always_safe=True) as health:
            cache, txn = health.cache, health.txn
            config = cache.asset_config(asset)
            market = cache.market(asset)
            market.require_amount(amount)
            market.sync(now)

            if account_id is None:
                if e_mode_category != NO_EMODE_CATEGORY:
                    category = cache.e_mode_category(e_mode_category)
                    if category.is_deprecated:
                        raise EModeCategoryDeprecated(str(e_mode_category))
                account_id = txn.create_account(
                    AccountAttributes(
                        is_isolated=config.is_isolated,
                        isolated_asset=asset if config.is_isolated else None,
                        is_vault=is_vault,
                        e_mode_category=e_mode_category,
                    )
                )
                logger.info("account %d opened", account_id)

            health.check_supply(account_id, asset, amount)
            position = self._open_position(txn, market, account_id, PositionKind.DEPOSIT)
            market.supply(position, amount, now)
            logger.info("supply account=%d %s %s", account_id, amount, asset)
            return account_id

    def withdraw(self, now: int, account_id: int, asset: str, amount: Decimal) -> Decimal:
        """Withdraw up to ``amount``; returns what was actually withdrawn."""
        with self._request(now) as health:
            txn = health.txn
            market = health.cache.market(asset)
            market.require_amount(amount)
            position = self._existing_position(txn, account_id, PositionKind.DEPOSIT, asset)
            health.sync_positions(account_id)

            result = market.withdraw(position, amount, now)
            if txn.borrows(account_id):
                snapshot = health.snapshot(account_id)
                if snapshot.health_factor < ray_one():
                    raise HealthFactorTooLowForWithdraw(f"health factor {snapshot.health_factor}")
            txn.prune(account_id)
            logger.info("withdraw account=%d %s %s", account_id, result.amount, asset)
            return result.amount

    # ------------------------------------------------------------------
    # Borrow side
    # ------------------------------------------------------------------

    def borrow(self, now: int, account_id: int, asset: str, amount: Decimal) -> None:
        with self._request(now) as health:
            txn = health.txn
            attrs = txn.account(account_id)
            market = health.cache.market(asset)
            market.require_amount(amount)
            market.sync(now)
            health.sync_positions(account_id)

            snapshot = health.snapshot(account_id)
            value = health.check_borrow(account_id, asset, amount, snapshot)
            position = self._open_position(txn, market, account_id, PositionKind.BORROW)
            market.borrow(position, amount, now)
            health.record_isolated_debt(attrs, value)
            logger.info("borrow account=%d %s %s", account_id, amount, asset)

    def repay(self, now: int, account_id: int, asset: str, amount: Decimal) -> RepayResult:
        """Repay debt; any excess over the outstanding principal is refunded."""
        with self._request(now, price_always_safe=True) as health:
            txn = health.txn
            attrs = txn.account(account_id)
            market = health.cache.market(asset)
            market.require_amount(amount)
            position = self._existing_position(txn, account_id, PositionKind.BORROW, asset)

            result = market.repay(position, amount, now)
            if attrs.is_isolated:
                value = usd_value(result.applied, health.cache.price(asset))
                health.release_isolated_debt(attrs, value)
            txn.prune(account_id)
            logger.info(
                "repay account=%d %s %s refund=%s", account_id, result.applied, asset, result.refund
            )
            return result

    # ------------------------------------------------------------------
    # Liquidation and bad debt
    # ------------------------------------------------------------------

    def liquidate(
        self,
        now: int,
        account_id: int,
        repayments: list[Repayment],
        min_receipt_value: Decimal | None = None,
    ) -> LiquidationResult:
        with self._request(now) as health:
            return LiquidationEngine(health).liquidate(account_id, repayments, min_receipt_value)

    def clean_bad_debt(self, now: int, account_id: int) -> Decimal:
        """Write off an insolvent dust account; returns the debt value removed."""
        with self._request(now) as health:
            health.sync_positions(account_id)
            snapshot = health.snapshot(account_id)
            if not is_bad_debt(snapshot):
                raise CannotCleanBadDebt(
                    f"collateral {snapshot.collateral_value}, debt {snapshot.debt_value}"
                )
            written_off = LiquidationEngine(health).clean_bad_debt(account_id, snapshot)
            health.txn.prune(account_id)
            return written_off

    # ------------------------------------------------------------------
    # Flash loans
    # ------------------------------------------------------------------

    def flash_loan(
        self, now: int, asset: str, amount: Decimal, receiver: FlashLoanReceiver
    ) -> Decimal:
        """Lend ``amount`` to ``receiver`` for one call; returns the fee earned.

        ``receiver(asset, amount, fee)`` must return the amount it pays back.
        """
        if self.storage.flash_loan_ongoing:
            raise FlashLoanAlreadyOngoing()
        if not callable(receiver):
            raise InvalidFlashLoanEndpoint(repr(receiver))

        with self._request(now) as health:
            config = health.cache.asset_config(asset)
            if not config.is_flashloanable:
                raise FlashLoanNotEnabled(asset)
            market = health.cache.market(asset)
            market.require_amount(amount)
            fee = amount.mul_half_up(config.flash_loan_fee, market.asset_decimals)

            self.storage.flash_loan_ongoing = True
            try:
                earned = market.flash_loan(amount, fee, receiver, now)
            finally:
                self.storage.flash_loan_ongoing = False
            logger.info("flash loan %s %s fee=%s", amount, asset, earned)
            return earned

    # ------------------------------------------------------------------
    # Market and account administration
    # ------------------------------------------------------------------

    def add_rewards(self, now: int, asset: str, amount: Decimal) -> None:
        with self._request(now) as health:
            health.cache.market(asset).add_rewards(amount, now)

    def claim_revenue(self, now: int, asset: str) -> Decimal:
        with self._request(now) as health:
            return health.cache.market(asset).claim_revenue(now)

    def toggle_vault(self, now: int, account_id: int, enable: bool) -> None:
        """Move all deposits of an account into or out of vault custody."""
        with self._request(now) as health:
            txn = health.txn
            attrs = txn.account(account_id)
            if attrs.is_vault == enable:
                return
            health.sync_positions(account_id)
            for position in txn.deposits(account_id):
                market = health.cache.market(position.asset)
                if enable:
                    market.move_to_vault(position, now)
                else:
                    market.move_from_vault(position, now)
            attrs.is_vault = enable
            logger.info("account %d vault=%s", account_id, enable)

    def set_e_mode_category(self, now: int, account_id: int, category_id: int) -> None:
        """Switch an account's e-mode category (0 leaves e-mode)."""
        with self._request(now) as health:
            txn, cache = health.txn, health.cache
            attrs = txn.account(account_id)
            if attrs.e_mode_category == category_id:
                return
            if category_id != NO_EMODE_CATEGORY:
                if attrs.is_isolated:
                    raise EModeWithIsolatedAsset(attrs.isolated_asset)
                category = cache.e_mode_category(category_id)
                if category.is_deprecated:
                    raise EModeCategoryDeprecated(str(category_id))
                for position in txn.positions(account_id).values():
                    if not cache.asset_config(position.asset).is_e_mode_enabled:
                        raise AssetNotSupportedInEMode(position.asset)
                    if cache.e_mode_asset(category_id, position.asset) is None:
                        raise AssetNotSupportedInEMode(position.asset)

            health.sync_positions(account_id)
            attrs.e_mode_category = category_id
            snapshot = health.snapshot(account_id)
            if snapshot.has_debt and snapshot.ltv_collateral < snapshot.debt_value:
                raise InsufficientCollateral(f"borrowing power {snapshot.ltv_collateral}")

    # ------------------------------------------------------------------
    # Views (never committed)
    # ------------------------------------------------------------------

    def health_factor(self, now: int, account_id: int) -> Decimal:
        with self._request(now, commit=False) as health:
            return health.health_factor(account_id)

    def account_summary(self, now: int, account_id: int) -> AccountSnapshot:
        with self._request(now, commit=False) as health:
            health.sync_positions(account_id)
            return health.snapshot(account_id)

    def liquidation_preview(
        self, now: int, account_id: int, repayments: list[Repayment]
    ) -> LiquidationResult:
        """Outcome of ``liquidate`` without applying it."""
        with self._request(now, commit=False) as health:
            return LiquidationEngine(health).liquidate(account_id, repayments)

    def liquidation_estimate(self, now: int, account_id: int) -> LiquidationEstimate:
        """Largest repayment one liquidation would accept, and what it seizes."""
        with self._request(now, commit=False) as health:
            return LiquidationEngine(health).estimate(account_id)

    def market_state(self, now: int, asset: str) -> MarketState:
        """Projected state of a market at ``now``."""
        with self._request(now, commit=False) as health:
            return health.cache.market(asset).simulate_sync(now)
