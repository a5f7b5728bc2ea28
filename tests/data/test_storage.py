"""Tests for storage transactions and account bookkeeping."""

import pytest

from lending_core.data.static_params import USDC, WETH, build_storage
from lending_core.position.account_position import (
    AccountAttributes,
    AccountPosition,
    PositionKind,
)
from lending_core.protocol.errors import (
    AccountNotFound,
    AssetAlreadySupported,
    AssetNotSupported,
    NestedOperationFailed,
)
from lending_core.protocol.fixed_point import Decimal, ray_one


@pytest.fixture
def storage():
    return build_storage()


def open_deposit(txn, account_id: int, asset: str = USDC, units: int = 100) -> AccountPosition:
    position = AccountPosition.open(account_id, asset, PositionKind.DEPOSIT, 6, ray_one())
    position.principal = Decimal.from_units(units, 6)
    txn.add_position(position)
    return position


class TestTransaction:
    def test_commit_on_success(self, storage) -> None:
        with storage.transaction() as txn:
            account = txn.create_account(AccountAttributes())
            open_deposit(txn, account)
            txn.market(USDC).supplied = Decimal.from_units(100, 6)

        assert storage.account_nonce == account
        assert account in storage.accounts
        assert (PositionKind.DEPOSIT, USDC) in storage.positions[account]
        assert storage.markets[USDC].supplied == Decimal.from_units(100, 6)

    def test_exception_discards_everything(self, storage) -> None:
        with pytest.raises(RuntimeError):
            with storage.transaction() as txn:
                txn.create_account(AccountAttributes())
                txn.market(USDC).supplied = Decimal.from_units(100, 6)
                raise RuntimeError("abort")

        assert storage.account_nonce == 0
        assert not storage.accounts
        assert storage.markets[USDC].supplied.is_zero()
        assert storage._active is None

    def test_read_only_transaction(self, storage) -> None:
        with storage.transaction(commit=False) as txn:
            txn.market(USDC).supplied = Decimal.from_units(100, 6)
        assert storage.markets[USDC].supplied.is_zero()

    def test_nested_blocks_join_outer(self, storage) -> None:
        with storage.transaction() as outer:
            with storage.transaction() as inner:
                assert inner is outer
                inner.market(USDC).supplied = Decimal.from_units(5, 6)
            # the inner block does not commit on its own
            assert storage.markets[USDC].supplied.is_zero()
        assert storage.markets[USDC].supplied == Decimal.from_units(5, 6)

    def test_caught_nested_failure_aborts_outer(self, storage) -> None:
        with pytest.raises(NestedOperationFailed):
            with storage.transaction() as outer:
                outer.market(USDC).supplied = Decimal.from_units(5, 6)
                try:
                    with storage.transaction() as inner:
                        inner.market(USDC).reserves = Decimal.from_units(7, 6)
                        raise RuntimeError("nested")
                except RuntimeError:
                    pass

        assert storage.markets[USDC].supplied.is_zero()
        assert storage.markets[USDC].reserves.is_zero()
        assert storage._active is None

    def test_working_copies_are_private(self, storage) -> None:
        with storage.transaction(commit=False) as txn:
            assert txn.market(USDC) is not storage.markets[USDC]
            assert txn.market(USDC) is txn.market(USDC)

    def test_unknown_records(self, storage) -> None:
        with storage.transaction(commit=False) as txn:
            with pytest.raises(AssetNotSupported):
                txn.market("DOGE")
            with pytest.raises(AccountNotFound):
                txn.account(1)
            assert not txn.has_account(1)


class TestPrune:
    def test_drops_empty_positions(self, storage) -> None:
        with storage.transaction() as txn:
            account = txn.create_account(AccountAttributes())
            open_deposit(txn, account, USDC)
            open_deposit(txn, account, WETH, units=0)
            assert not txn.prune(account)

        assert list(storage.positions[account]) == [(PositionKind.DEPOSIT, USDC)]

    def test_removes_account_without_positions(self, storage) -> None:
        with storage.transaction() as txn:
            account = txn.create_account(AccountAttributes())
            open_deposit(txn, account)

        with storage.transaction() as txn:
            txn.position(account, PositionKind.DEPOSIT, USDC).principal = Decimal.zero(6)
            assert txn.prune(account)
            assert not txn.has_account(account)

        assert account not in storage.accounts
        assert account not in storage.positions

    def test_nonce_is_not_reused(self, storage) -> None:
        with storage.transaction() as txn:
            first = txn.create_account(AccountAttributes())
            txn.prune(first)
        with storage.transaction() as txn:
            second = txn.create_account(AccountAttributes())
        assert second == first + 1


class TestAdministration:
    def test_duplicate_market(self, storage) -> None:
        with pytest.raises(AssetAlreadySupported):
            storage.add_market(
                USDC, storage.rate_params[USDC], storage.asset_configs[USDC], 0
            )

    def test_e_mode_membership_needs_market(self, storage) -> None:
        with pytest.raises(AssetNotSupported):
            storage.add_asset_to_e_mode(1, "DOGE")
