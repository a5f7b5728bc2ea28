"""In-memory durable storage with all-or-nothing transactions.

Entry points read records through a ``Transaction``. The first read of a
mutable record makes a private working copy; ``commit`` writes every
working copy back at once, and leaving the block through an exception drops
them, so no partially applied operation is ever visible.
"""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from lending_core.data.interfaces import OracleConfig
from lending_core.position.account_position import (
    AccountAttributes,
    AccountPosition,
    PositionKind,
)
from lending_core.protocol.asset_config import AssetConfig
from lending_core.protocol.emode import EModeAssetConfig, EModeCategory
from lending_core.protocol.errors import (
    AccountNotFound,
    AssetAlreadySupported,
    AssetNotSupported,
    NestedOperationFailed,
)
from lending_core.protocol.interest_rate import InterestRateParams
from lending_core.protocol.pool import MarketState

logger = logging.getLogger(__name__)

PositionKey = tuple[PositionKind, str]


@dataclass
class Storage:
    """Committed protocol records.

    Configuration tables hold frozen values and are read directly; mutable
    tables (markets, accounts, positions) go through a ``Transaction``.
    """

    rate_params: dict[str, InterestRateParams] = field(default_factory=dict)
    asset_configs: dict[str, AssetConfig] = field(default_factory=dict)
    oracle_configs: dict[str, OracleConfig] = field(default_factory=dict)
    e_mode_categories: dict[int, EModeCategory] = field(default_factory=dict)
    e_mode_assets: dict[int, dict[str, EModeAssetConfig]] = field(default_factory=dict)
    markets: dict[str, MarketState] = field(default_factory=dict)
    accounts: dict[int, AccountAttributes] = field(default_factory=dict)
    positions: dict[int, dict[PositionKey, AccountPosition]] = field(default_factory=dict)
    account_nonce: int = 0
    flash_loan_ongoing: bool = False
    _active: Transaction | None = field(default=None, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def add_market(
        self,
        asset: str,
        params: InterestRateParams,
        config: AssetConfig,
        timestamp: int,
        oracle_config: OracleConfig | None = None,
    ) -> None:
        if asset in self.markets:
            raise AssetAlreadySupported(asset)
        self.rate_params[asset] = params
        self.asset_configs[asset] = config
        if oracle_config is not None:
            self.oracle_configs[asset] = oracle_config
        self.markets[asset] = MarketState.new(asset, params.asset_decimals, timestamp)
        logger.info("market %s created", asset)

    def set_asset_config(self, asset: str, config: AssetConfig) -> None:
        if asset not in self.markets:
            raise AssetNotSupported(asset)
        self.asset_configs[asset] = config

    def add_e_mode_category(self, category: EModeCategory) -> None:
        self.e_mode_categories[category.category_id] = category
        self.e_mode_assets.setdefault(category.category_id, {})

    def add_asset_to_e_mode(
        self,
        category_id: int,
        asset: str,
        asset_config: EModeAssetConfig | None = None,
    ) -> None:
        if asset not in self.markets:
            raise AssetNotSupported(asset)
        members = self.e_mode_assets.setdefault(category_id, {})
        members[asset] = asset_config or EModeAssetConfig()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, commit: bool = True) -> Iterator[Transaction]:
        """Open a transaction, or join the one already running.

        Nested entry points (e.g. from a flash loan receiver) share the outer
        working set; only the outermost block commits. A nested block that
        raises marks the outer transaction aborted, and the outermost block
        then refuses to commit even if the exception was caught in between.

        Raises:
            NestedOperationFailed: the outermost block finished but a nested
                one had failed.
        """
        if self._active is not None:
            nested = self._active
            try:
                yield nested
            except Exception as exc:
                nested.failure = exc
                raise
            return
        txn = Transaction(self)
        self._active = txn
        try:
            yield txn
            if txn.failure is not None:
                raise NestedOperationFailed(repr(txn.failure)) from txn.failure
            if commit:
                txn.commit()
        finally:
            self._active = None


class Transaction:
    """Working copies of mutable records for one entry point."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self._markets: dict[str, MarketState] = {}
        self._accounts: dict[int, AccountAttributes | None] = {}
        self._positions: dict[int, dict[PositionKey, AccountPosition]] = {}
        self._nonce = storage.account_nonce
        self.failure: Exception | None = None

    def market(self, asset: str) -> MarketState:
        if asset not in self._markets:
            state = self.storage.markets.get(asset)
            if state is None:
                raise AssetNotSupported(asset)
            self._markets[asset] = copy.deepcopy(state)
        return self._markets[asset]

    def has_account(self, account_id: int) -> bool:
        if account_id in self._accounts:
            return self._accounts[account_id] is not None
        return account_id in self.storage.accounts

    def account(self, account_id: int) -> AccountAttributes:
        if account_id not in self._accounts:
            attrs = self.storage.accounts.get(account_id)
            if attrs is None:
                raise AccountNotFound(str(account_id))
            self._accounts[account_id] = copy.deepcopy(attrs)
        attrs = self._accounts[account_id]
        if attrs is None:
            raise AccountNotFound(str(account_id))
        return attrs

    def create_account(self, attrs: AccountAttributes) -> int:
        self._nonce += 1
        self._accounts[self._nonce] = attrs
        self._positions[self._nonce] = {}
        return self._nonce

    def positions(self, account_id: int) -> dict[PositionKey, AccountPosition]:
        self.account(account_id)
        if account_id not in self._positions:
            stored = self.storage.positions.get(account_id, {})
            self._positions[account_id] = copy.deepcopy(stored)
        return self._positions[account_id]

    def deposits(self, account_id: int) -> list[AccountPosition]:
        return [p for p in self.positions(account_id).values() if p.kind is PositionKind.DEPOSIT]

    def borrows(self, account_id: int) -> list[AccountPosition]:
        return [p for p in self.positions(account_id).values() if p.kind is PositionKind.BORROW]

    def position(
        self, account_id: int, kind: PositionKind, asset: str
    ) -> AccountPosition | None:
        return self.positions(account_id).get((kind, asset))

    def add_position(self, position: AccountPosition) -> None:
        self.positions(position.account_id)[(position.kind, position.asset)] = position

    def prune(self, account_id: int) -> bool:
        """Drop empty positions; remove the account once it has none.

        Returns True if the account was removed.
        """
        positions = self.positions(account_id)
        for key in [k for k, p in positions.items() if p.is_empty()]:
            del positions[key]
        if positions:
            return False
        self._accounts[account_id] = None
        logger.info("account %d closed", account_id)
        return True

    def commit(self) -> None:
        storage = self.storage
        storage.markets.update(self._markets)
        for account_id, attrs in self._accounts.items():
            if attrs is None:
                storage.accounts.pop(account_id, None)
                storage.positions.pop(account_id, None)
                self._positions.pop(account_id, None)
            else:
                storage.accounts[account_id] = attrs
        storage.positions.update(self._positions)
        storage.account_nonce = self._nonce
