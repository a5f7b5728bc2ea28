"""Scale-aware fixed-point decimals with explicit half-up rounding.

A ``Decimal`` is an unsigned integer magnitude plus a fixed number of
fractional digits. Addition, subtraction and comparison need both operands at
the same scale; multiplication and division always take an explicit target
scale and round half-up (ties away from zero).
"""

from __future__ import annotations

from dataclasses import dataclass

from lending_core.data.constants import (
    BPS_PRECISION,
    RAY_PRECISION,
    WAD_PRECISION,
)
from lending_core.protocol.errors import DivisionByZero, NegativeAmount, ScaleMismatch


def _round_div(numerator: int, denominator: int) -> int:
    """Integer division rounding half-up."""
    return (numerator + denominator // 2) // denominator


@dataclass(frozen=True, order=False)
class Decimal:
    """Unsigned fixed-point number: ``magnitude / 10**scale``."""

    magnitude: int
    scale: int

    def __post_init__(self) -> None:
        if self.magnitude < 0:
            raise NegativeAmount(f"magnitude={self.magnitude}")
        if self.scale < 0:
            raise ValueError(f"scale must be >= 0, got {self.scale}")

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def zero(cls, scale: int) -> Decimal:
        return cls(0, scale)

    @classmethod
    def one(cls, scale: int) -> Decimal:
        return cls(10**scale, scale)

    @classmethod
    def from_units(cls, units: int, scale: int) -> Decimal:
        """Build from a whole number of units, e.g. ``from_units(5, 18)`` is 5.0."""
        return cls(units * 10**scale, scale)

    @classmethod
    def from_str(cls, value: str, scale: int) -> Decimal:
        """Parse exact decimal text such as ``"0.9998"`` at ``scale``.

        Raises:
            ValueError: malformed text, or more fractional digits than
                ``scale`` holds.
        """
        whole, _, frac = value.partition(".")
        if not (whole + frac).isdigit():
            raise ValueError(f"not a decimal: {value!r}")
        if len(frac) > scale:
            raise ValueError(f"too many digits in {value!r} for scale {scale}")
        return cls(int(whole or "0") * 10**scale + int(frac.ljust(scale, "0") or "0"), scale)

    @classmethod
    def wad(cls, magnitude: int) -> Decimal:
        return cls(magnitude, WAD_PRECISION)

    @classmethod
    def ray(cls, magnitude: int) -> Decimal:
        return cls(magnitude, RAY_PRECISION)

    @classmethod
    def bps(cls, magnitude: int) -> Decimal:
        return cls(magnitude, BPS_PRECISION)

    # ------------------------------------------------------------------
    # Rounding arithmetic
    # ------------------------------------------------------------------

    def rescale_half_up(self, new_scale: int) -> Decimal:
        """Change scale, rounding half-up when digits are dropped."""
        if new_scale == self.scale:
            return self
        if new_scale > self.scale:
            return Decimal(self.magnitude * 10 ** (new_scale - self.scale), new_scale)
        divisor = 10 ** (self.scale - new_scale)
        return Decimal(_round_div(self.magnitude, divisor), new_scale)

    def mul_half_up(self, other: Decimal, target_scale: int) -> Decimal:
        product = Decimal(self.magnitude * other.magnitude, self.scale + other.scale)
        return product.rescale_half_up(target_scale)

    def div_half_up(self, other: Decimal, target_scale: int) -> Decimal:
        if other.magnitude == 0:
            raise DivisionByZero()
        exponent = target_scale + other.scale - self.scale
        if exponent >= 0:
            numerator = self.magnitude * 10**exponent
            denominator = other.magnitude
        else:
            numerator = self.magnitude
            denominator = other.magnitude * 10 ** (-exponent)
        return Decimal(_round_div(numerator, denominator), target_scale)

    # ------------------------------------------------------------------
    # Same-scale arithmetic
    # ------------------------------------------------------------------

    def _check_scale(self, other: Decimal) -> None:
        if not isinstance(other, Decimal):
            raise ScaleMismatch(f"expected Decimal, got {type(other).__name__}")
        if other.scale != self.scale:
            raise ScaleMismatch(f"scale {self.scale} vs {other.scale}")

    def __add__(self, other: Decimal) -> Decimal:
        self._check_scale(other)
        return Decimal(self.magnitude + other.magnitude, self.scale)

    def __sub__(self, other: Decimal) -> Decimal:
        self._check_scale(other)
        if other.magnitude > self.magnitude:
            raise NegativeAmount(f"{self} - {other}")
        return Decimal(self.magnitude - other.magnitude, self.scale)

    def saturating_sub(self, other: Decimal) -> Decimal:
        """Subtract, flooring at zero."""
        self._check_scale(other)
        return Decimal(max(self.magnitude - other.magnitude, 0), self.scale)

    def __lt__(self, other: Decimal) -> bool:
        self._check_scale(other)
        return self.magnitude < other.magnitude

    def __le__(self, other: Decimal) -> bool:
        self._check_scale(other)
        return self.magnitude <= other.magnitude

    def __gt__(self, other: Decimal) -> bool:
        self._check_scale(other)
        return self.magnitude > other.magnitude

    def __ge__(self, other: Decimal) -> bool:
        self._check_scale(other)
        return self.magnitude >= other.magnitude

    def is_zero(self) -> bool:
        return self.magnitude == 0

    def __bool__(self) -> bool:
        return self.magnitude != 0

    def to_float(self) -> float:
        """Lossy float view, for display and analysis only."""
        return self.magnitude / 10**self.scale

    def __str__(self) -> str:
        if self.scale == 0:
            return str(self.magnitude)
        whole, frac = divmod(self.magnitude, 10**self.scale)
        return f"{whole}.{frac:0{self.scale}d}"


def dec_min(a: Decimal, b: Decimal) -> Decimal:
    return a if a <= b else b


def dec_max(a: Decimal, b: Decimal) -> Decimal:
    return a if a >= b else b


def ray_one() -> Decimal:
    return Decimal.one(RAY_PRECISION)


def wad_zero() -> Decimal:
    return Decimal.zero(WAD_PRECISION)


def bps_one() -> Decimal:
    return Decimal.one(BPS_PRECISION)
