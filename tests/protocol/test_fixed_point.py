"""Tests for scale-aware fixed-point decimals."""

import math
from fractions import Fraction

import pytest
from hypothesis import given
from hypothesis import strategies as st

from lending_core.data.constants import RAY, RAY_PRECISION, WAD_PRECISION
from lending_core.protocol.errors import DivisionByZero, NegativeAmount, ScaleMismatch
from lending_core.protocol.fixed_point import Decimal, dec_max, dec_min, ray_one


def _half_up(value: Fraction) -> int:
    return math.floor(value + Fraction(1, 2))


magnitudes = st.integers(min_value=0, max_value=10**40)
scales = st.integers(min_value=0, max_value=30)


class TestRounding:
    def test_mul_rounds_half_up(self) -> None:
        # 1.5 * 1.3 = 1.95 -> 2.0
        result = Decimal(15, 1).mul_half_up(Decimal(13, 1), 1)
        assert result == Decimal(20, 1)

    def test_exact_half_rounds_up(self) -> None:
        assert Decimal(12345, 5).rescale_half_up(4) == Decimal(1235, 4)

    def test_below_half_rounds_down(self) -> None:
        assert Decimal(123449999, 9).rescale_half_up(4) == Decimal(1234, 4)

    def test_wad_to_four_digits(self) -> None:
        value = Decimal(1_234_567_890_123_456_789, WAD_PRECISION)
        assert value.rescale_half_up(4) == Decimal(12346, 4)

    def test_upscale_is_exact(self) -> None:
        assert Decimal(5, 1).rescale_half_up(4) == Decimal(5000, 4)

    def test_div_rounds_half_up(self) -> None:
        assert Decimal(1, 0).div_half_up(Decimal(3, 0), 4) == Decimal(3333, 4)
        assert Decimal(2, 0).div_half_up(Decimal(3, 0), 4) == Decimal(6667, 4)

    def test_div_to_coarser_scale(self) -> None:
        # 0.123456 / 1 at two digits
        assert Decimal(123456, 6).div_half_up(Decimal(1, 0), 2) == Decimal(12, 2)

    def test_div_by_zero(self) -> None:
        with pytest.raises(DivisionByZero):
            Decimal(1, 0).div_half_up(Decimal(0, 3), 4)

    def test_ray_identity(self) -> None:
        x = Decimal(123_456_789, RAY_PRECISION)
        assert x.mul_half_up(ray_one(), RAY_PRECISION) == x
        assert x.div_half_up(ray_one(), RAY_PRECISION) == x

    @given(magnitudes, scales, magnitudes, scales, scales)
    def test_mul_matches_exact_rational(self, a, sa, b, sb, target) -> None:
        exact = Fraction(a * b, 10 ** (sa + sb)) * 10**target
        assert Decimal(a, sa).mul_half_up(Decimal(b, sb), target).magnitude == _half_up(exact)

    @given(magnitudes, scales, st.integers(min_value=1, max_value=10**40), scales, scales)
    def test_div_matches_exact_rational(self, a, sa, b, sb, target) -> None:
        exact = Fraction(a, 10**sa) / Fraction(b, 10**sb) * 10**target
        assert Decimal(a, sa).div_half_up(Decimal(b, sb), target).magnitude == _half_up(exact)


class TestSameScaleArithmetic:
    def test_add_and_sub(self) -> None:
        assert Decimal(150, 2) + Decimal(25, 2) == Decimal(175, 2)
        assert Decimal(150, 2) - Decimal(25, 2) == Decimal(125, 2)

    def test_mismatched_scale_is_rejected(self) -> None:
        with pytest.raises(ScaleMismatch):
            Decimal(1, 2) + Decimal(1, 3)
        with pytest.raises(ScaleMismatch):
            Decimal(1, 2) < Decimal(1, 3)

    def test_negative_result_is_rejected(self) -> None:
        with pytest.raises(NegativeAmount):
            Decimal(1, 2) - Decimal(2, 2)

    def test_negative_magnitude_is_rejected(self) -> None:
        with pytest.raises(NegativeAmount):
            Decimal(-1, 2)

    def test_saturating_sub_floors_at_zero(self) -> None:
        assert Decimal(1, 2).saturating_sub(Decimal(5, 2)) == Decimal(0, 2)
        assert Decimal(7, 2).saturating_sub(Decimal(5, 2)) == Decimal(2, 2)

    def test_min_max(self) -> None:
        a, b = Decimal(3, 1), Decimal(7, 1)
        assert dec_min(a, b) == a
        assert dec_max(a, b) == b

    def test_str(self) -> None:
        assert str(Decimal(1234, 2)) == "12.34"
        assert str(Decimal(5, 3)) == "0.005"
        assert str(Decimal(42, 0)) == "42"

    def test_float_view(self) -> None:
        assert Decimal(RAY // 4, RAY_PRECISION).to_float() == pytest.approx(0.25)

    def test_zero_is_falsy(self) -> None:
        assert not Decimal.zero(18)
        assert Decimal.from_units(2, 6) == Decimal(2_000_000, 6)


class TestParsing:
    @pytest.mark.parametrize(
        "text, scale, magnitude",
        [
            ("3000", 18, 3_000 * 10**18),
            ("0.9998", 4, 9_998),
            (".5", 2, 50),
            ("7.", 0, 7),
            ("0.000000000000000000000000001", RAY_PRECISION, 1),
        ],
    )
    def test_exact_text(self, text: str, scale: int, magnitude: int) -> None:
        assert Decimal.from_str(text, scale) == Decimal(magnitude, scale)

    @pytest.mark.parametrize("text", ["", ".", "-1", "1.2.3", "1e5", " 1"])
    def test_malformed(self, text: str) -> None:
        with pytest.raises(ValueError):
            Decimal.from_str(text, 6)

    def test_excess_digits_are_rejected(self) -> None:
        with pytest.raises(ValueError):
            Decimal.from_str("1.0000001", 6)
