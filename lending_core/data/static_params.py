"""Static market set with representative parameters, and a settable oracle."""

from __future__ import annotations

from lending_core.data.constants import WAD_PRECISION
from lending_core.data.interfaces import OracleConfig, PriceFeed, PriceOracle
from lending_core.data.storage import Storage
from lending_core.protocol.asset_config import AssetConfig
from lending_core.protocol.emode import EModeAssetConfig, EModeCategory
from lending_core.protocol.fixed_point import Decimal
from lending_core.protocol.interest_rate import InterestRateParams

USDC = "USDC"
WETH = "WETH"
WSTETH = "WSTETH"
WBTC = "WBTC"
ISO = "ISO"  # isolated collateral
SILO = "SILO"  # siloed borrow

EMODE_ETH_CORRELATED = 1

ASSET_DECIMALS: dict[str, int] = {
    USDC: 6,
    WETH: 18,
    WSTETH: 18,
    WBTC: 8,
    ISO: 18,
    SILO: 18,
}

# --- Rate curves (annual, exact decimal strings) ---

_RATE_PARAMS: dict[str, InterestRateParams] = {
    USDC: InterestRateParams.from_fractions(
        base_rate="0",
        slopes=("0.04", "0.10", "1.5"),
        breakpoints=("0.5", "0.9"),
        max_rate="2.0",
        reserve_factor_bps=1_000,
        asset_decimals=6,
    ),
    WETH: InterestRateParams.from_fractions(
        base_rate="0",
        slopes=("0.027", "0.40"),
        breakpoints=("0.92",),
        max_rate="1.0",
        reserve_factor_bps=1_500,
        asset_decimals=18,
    ),
    WSTETH: InterestRateParams.from_fractions(
        base_rate="0",
        slopes=("0.01", "0.40"),
        breakpoints=("0.80",),
        max_rate="1.0",
        reserve_factor_bps=3_500,
        asset_decimals=18,
    ),
    WBTC: InterestRateParams.from_fractions(
        base_rate="0",
        slopes=("0.04", "3.0"),
        breakpoints=("0.45",),
        max_rate="3.0",
        reserve_factor_bps=2_000,
        asset_decimals=8,
    ),
    ISO: InterestRateParams.from_fractions(
        base_rate="0.01",
        slopes=("0.07", "3.0"),
        breakpoints=("0.45",),
        max_rate="3.5",
        reserve_factor_bps=2_000,
        asset_decimals=18,
    ),
    SILO: InterestRateParams.from_fractions(
        base_rate="0.01",
        slopes=("0.07", "3.0"),
        breakpoints=("0.45",),
        max_rate="3.5",
        reserve_factor_bps=2_000,
        asset_decimals=18,
    ),
}


def _config(ltv: int, threshold: int, bonus: int, fee: int = 1_000, **flags) -> AssetConfig:
    return AssetConfig(
        ltv=Decimal.bps(ltv),
        liquidation_threshold=Decimal.bps(threshold),
        liquidation_bonus=Decimal.bps(bonus),
        liquidation_fee=Decimal.bps(fee),
        **flags,
    )


_ASSET_CONFIGS: dict[str, AssetConfig] = {
    USDC: _config(
        7_500, 8_000, 500,
        borrowable_in_isolation=True,
        is_flashloanable=True,
        flash_loan_fee=Decimal.bps(9),
    ),
    WETH: _config(
        8_050, 8_300, 500,
        is_flashloanable=True,
        is_e_mode_enabled=True,
        flash_loan_fee=Decimal.bps(5),
    ),
    WSTETH: _config(7_950, 8_100, 700, is_e_mode_enabled=True),
    WBTC: _config(7_000, 7_500, 650),
    ISO: _config(
        5_000, 6_000, 1_000,
        is_borrowable=False,
        is_isolated=True,
        isolation_debt_ceiling_usd=Decimal.from_units(1_000_000, 18),
    ),
    SILO: _config(6_000, 6_500, 500, is_siloed=True),
}

_EMODE_CATEGORIES: dict[int, EModeCategory] = {
    EMODE_ETH_CORRELATED: EModeCategory(
        category_id=EMODE_ETH_CORRELATED,
        ltv=Decimal.bps(9_300),
        liquidation_threshold=Decimal.bps(9_550),
        liquidation_bonus=Decimal.bps(100),
    ),
}

_EMODE_ASSETS: dict[int, dict[str, EModeAssetConfig]] = {
    EMODE_ETH_CORRELATED: {
        WETH: EModeAssetConfig(),
        WSTETH: EModeAssetConfig(),
    },
}

# USD per whole unit
_ASSET_PRICES_USD: dict[str, str] = {
    USDC: "1",
    WETH: "3000",
    WSTETH: "3500",
    WBTC: "60000",
    ISO: "2",
    SILO: "10",
}


def wad_price(value: str) -> Decimal:
    """Exact WAD price from a decimal string such as ``"0.9998"``."""
    return Decimal.from_str(value, WAD_PRECISION)


def default_prices() -> dict[str, Decimal]:
    return {asset: wad_price(p) for asset, p in _ASSET_PRICES_USD.items()}


class StaticPriceOracle(PriceOracle):
    """Oracle answering from a settable in-memory table."""

    def __init__(
        self,
        prices: dict[str, Decimal] | None = None,
        timestamp: int = 0,
        anchors: dict[str, Decimal] | None = None,
    ) -> None:
        self._feeds: dict[str, PriceFeed] = {}
        self._anchors: dict[str, Decimal] = dict(anchors or {})
        for asset, price in (prices if prices is not None else default_prices()).items():
            self.set_price(asset, price, timestamp)

    def set_price(self, asset: str, price: Decimal, timestamp: int = 0) -> None:
        self._feeds[asset] = PriceFeed(price=price, decimals=18, timestamp=timestamp)

    def set_anchor(self, asset: str, price: Decimal | None) -> None:
        if price is None:
            self._anchors.pop(asset, None)
        else:
            self._anchors[asset] = price

    def get_price_feed(self, asset: str) -> PriceFeed | None:
        return self._feeds.get(asset)

    def get_anchor_price(self, asset: str) -> Decimal | None:
        return self._anchors.get(asset)


def build_storage(timestamp: int = 0, oracle_config: OracleConfig | None = None) -> Storage:
    """Storage pre-loaded with every static market and e-mode category."""
    storage = Storage()
    for asset, params in _RATE_PARAMS.items():
        storage.add_market(asset, params, _ASSET_CONFIGS[asset], timestamp, oracle_config)
    for category_id, category in _EMODE_CATEGORIES.items():
        storage.add_e_mode_category(category)
        for asset, asset_config in _EMODE_ASSETS[category_id].items():
            storage.add_asset_to_e_mode(category_id, asset, asset_config)
    return storage
