"""Runtime configuration and factories for the oracle and controller."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from lending_core.data.constants import (
    DEFAULT_MAX_POSITIONS,
    DEFAULT_MAX_PRICE_STALE_SECONDS,
)
from lending_core.data.static_params import StaticPriceOracle, build_storage
from lending_core.protocol.fixed_point import Decimal

if TYPE_CHECKING:
    from lending_core.protocol.controller import LendingController

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class ProtocolConfig:
    """Owner-controlled runtime knobs."""

    allow_unsafe_price: bool = False
    max_price_stale_seconds: int = DEFAULT_MAX_PRICE_STALE_SECONDS
    max_positions: int = DEFAULT_MAX_POSITIONS


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
    return default


def _env_positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %d", name, raw, default)
        return default
    return value


def load_protocol_config(env: Mapping[str, str] | None = None) -> ProtocolConfig:
    """Build a ``ProtocolConfig`` from environment variables.

    Parameters
    ----------
    env : Mapping[str, str] | None
        Variables to read; defaults to ``os.environ``. Recognized names are
        ``LENDING_ALLOW_UNSAFE_PRICE``, ``LENDING_MAX_PRICE_STALE_SECONDS``
        and ``LENDING_MAX_POSITIONS``. Malformed values keep the default.

    Returns
    -------
    ProtocolConfig
    """
    source = os.environ if env is None else env
    return ProtocolConfig(
        allow_unsafe_price=_env_bool(source, "LENDING_ALLOW_UNSAFE_PRICE", False),
        max_price_stale_seconds=_env_positive_int(
            source, "LENDING_MAX_PRICE_STALE_SECONDS", DEFAULT_MAX_PRICE_STALE_SECONDS
        ),
        max_positions=_env_positive_int(source, "LENDING_MAX_POSITIONS", DEFAULT_MAX_POSITIONS),
    )


def create_oracle(
    prices: dict[str, Decimal] | None = None,
    timestamp: int = 0,
) -> StaticPriceOracle:
    """Create a price oracle seeded with ``prices`` (static defaults if None)."""
    return StaticPriceOracle(prices, timestamp=timestamp)


def create_controller(
    config: ProtocolConfig | None = None,
    timestamp: int = 0,
) -> LendingController:
    """Create a controller over the static market set.

    Parameters
    ----------
    config : ProtocolConfig | None
        Runtime knobs; read from the environment when not supplied.
    timestamp : int
        Creation time of the markets and of the oracle's feeds.
    """
    from lending_core.protocol.controller import LendingController

    resolved = config or load_protocol_config()
    return LendingController(
        storage=build_storage(timestamp),
        oracle=create_oracle(timestamp=timestamp),
        config=resolved,
    )
