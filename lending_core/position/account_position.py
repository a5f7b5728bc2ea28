"""Per-account, per-asset positions and their lazy re-valuation."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from lending_core.data.constants import NO_EMODE_CATEGORY, RAY_PRECISION
from lending_core.protocol.fixed_point import Decimal

logger = logging.getLogger(__name__)


class PositionKind(enum.Enum):
    """A position is either collateral supplied or debt owed."""

    DEPOSIT = "deposit"
    BORROW = "borrow"


@dataclass
class AccountPosition:
    """One asset held or owed by one account.

    ``principal`` is in the asset's native scale and already includes all
    interest up to ``index_snapshot``.
    """

    account_id: int
    asset: str
    kind: PositionKind
    principal: Decimal
    index_snapshot: Decimal  # RAY
    is_vault: bool = False

    @classmethod
    def open(
        cls,
        account_id: int,
        asset: str,
        kind: PositionKind,
        asset_decimals: int,
        index: Decimal,
        is_vault: bool = False,
    ) -> AccountPosition:
        return cls(
            account_id=account_id,
            asset=asset,
            kind=kind,
            principal=Decimal.zero(asset_decimals),
            index_snapshot=index,
            is_vault=is_vault and kind is PositionKind.DEPOSIT,
        )

    @property
    def asset_decimals(self) -> int:
        return self.principal.scale

    @property
    def accrues_interest(self) -> bool:
        return not (self.is_vault and self.kind is PositionKind.DEPOSIT)

    def is_empty(self) -> bool:
        return self.principal.is_zero()


def touch(position: AccountPosition, current_index: Decimal) -> Decimal:
    """Bring ``position`` up to ``current_index``; return the interest accrued.

    Vault deposits are frozen and always accrue zero.
    """
    zero = Decimal.zero(position.asset_decimals)
    if not position.accrues_interest:
        return zero
    if position.index_snapshot == current_index:
        return zero
    if position.principal.is_zero():
        position.index_snapshot = current_index
        return zero

    ratio = current_index.div_half_up(position.index_snapshot, RAY_PRECISION)
    new_principal = position.principal.mul_half_up(ratio, position.asset_decimals)
    accrued = new_principal.saturating_sub(position.principal)

    logger.debug(
        "touch account=%d asset=%s kind=%s principal %s -> %s",
        position.account_id,
        position.asset,
        position.kind.value,
        position.principal,
        new_principal,
    )
    position.principal = new_principal
    position.index_snapshot = current_index
    return accrued


@dataclass
class AccountAttributes:
    """Attributes carried by the account's position token."""

    is_isolated: bool = False
    isolated_asset: str | None = None
    is_vault: bool = False
    e_mode_category: int = NO_EMODE_CATEGORY

    @property
    def has_e_mode(self) -> bool:
        return self.e_mode_category != NO_EMODE_CATEGORY
