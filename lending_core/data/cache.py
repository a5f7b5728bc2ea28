"""Request-scoped memo table for prices, configs and markets.

One ``RequestCache`` is built per entry point and dropped when it returns,
so every price read during a multi-asset operation sees the same snapshot.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from lending_core.data.constants import BPS_PRECISION, WAD_PRECISION
from lending_core.data.interfaces import OracleConfig, PriceOracle
from lending_core.protocol.errors import (
    AssetNotSupported,
    EModeCategoryNotFound,
    PriceAggregatorNotSet,
    PriceFeedStale,
    UnsafePriceNotAllowed,
)
from lending_core.protocol.fixed_point import Decimal
from lending_core.protocol.pool import Market

if TYPE_CHECKING:
    from lending_core.data.storage import Transaction
    from lending_core.protocol.asset_config import AssetConfig
    from lending_core.protocol.emode import EModeAssetConfig, EModeCategory

logger = logging.getLogger(__name__)


def checked_price(
    asset: str,
    oracle: PriceOracle,
    config: OracleConfig,
    now: int,
    allow_unsafe: bool,
) -> Decimal:
    """Fetch a price and apply the staleness and tolerance rules.

    Inside the first band the anchor is used; inside the last band, the
    truncated average of aggregator and anchor. Outside both, the anchor is
    used only when ``allow_unsafe`` is set.

    Raises:
        PriceAggregatorNotSet: no feed for ``asset``.
        PriceFeedStale: feed older than ``config.max_stale_seconds``.
        UnsafePriceNotAllowed: outside the last band and ``allow_unsafe`` is off.
    """
    feed = oracle.get_price_feed(asset)
    if feed is None:
        raise PriceAggregatorNotSet(asset)
    if now - feed.timestamp > config.max_stale_seconds:
        raise PriceFeedStale(f"{asset} updated at {feed.timestamp}, now {now}")

    anchor = oracle.get_anchor_price(asset)
    if anchor is None or anchor.is_zero():
        return feed.price

    ratio = feed.price.div_half_up(anchor, BPS_PRECISION)
    if config.first_band.contains(ratio):
        return anchor
    if config.last_band.contains(ratio):
        average = Decimal((feed.price.magnitude + anchor.magnitude) // 2, WAD_PRECISION)
        logger.warning("price of %s between tolerance bands, using average %s", asset, average)
        return average
    if not allow_unsafe:
        raise UnsafePriceNotAllowed(f"{asset} aggregator={feed.price} anchor={anchor}")
    logger.warning(
        "unsafe price accepted for %s: aggregator %s, using anchor %s", asset, feed.price, anchor
    )
    return anchor


class RequestCache:
    """Memoizes lookups for the lifetime of one entry point."""

    def __init__(
        self,
        txn: Transaction,
        oracle: PriceOracle,
        now: int,
        allow_unsafe_price: bool = False,
        default_oracle_config: OracleConfig | None = None,
    ) -> None:
        self.txn = txn
        self.oracle = oracle
        self.now = now
        self.allow_unsafe_price = allow_unsafe_price
        self.default_oracle_config = default_oracle_config or OracleConfig()
        self._store: dict[tuple[str, Any], Any] = {}

    def _memo(self, kind: str, key: Any, load: Callable[[], Any]) -> Any:
        slot = (kind, key)
        if slot not in self._store:
            self._store[slot] = load()
        return self._store[slot]

    def clear(self) -> None:
        self._store.clear()

    def market(self, asset: str) -> Market:
        def load() -> Market:
            storage = self.txn.storage
            if asset not in storage.rate_params:
                raise AssetNotSupported(asset)
            return Market(self.txn.market(asset), storage.rate_params[asset])

        return self._memo("market", asset, load)

    def asset_config(self, asset: str) -> AssetConfig:
        def load() -> AssetConfig:
            config = self.txn.storage.asset_configs.get(asset)
            if config is None:
                raise AssetNotSupported(asset)
            return config

        return self._memo("config", asset, load)

    def e_mode_category(self, category_id: int) -> EModeCategory:
        def load() -> EModeCategory:
            category = self.txn.storage.e_mode_categories.get(category_id)
            if category is None:
                raise EModeCategoryNotFound(str(category_id))
            return category

        return self._memo("e_mode", category_id, load)

    def e_mode_asset(self, category_id: int, asset: str) -> EModeAssetConfig | None:
        def load() -> EModeAssetConfig | None:
            return self.txn.storage.e_mode_assets.get(category_id, {}).get(asset)

        return self._memo("e_mode_asset", (category_id, asset), load)

    def price(self, asset: str) -> Decimal:
        """USD price (WAD) of one whole unit of ``asset``."""

        def load() -> Decimal:
            config = self.txn.storage.oracle_configs.get(asset, self.default_oracle_config)
            return checked_price(asset, self.oracle, config, self.now, self.allow_unsafe_price)

        return self._memo("price", asset, load)
