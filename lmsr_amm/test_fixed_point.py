"""
Fixed-point arithmetic: rounding direction, ln/exp accuracy, domain edges.
"""

from decimal import Decimal, InvalidOperation

import pytest

from lmsr_amm.errors import DomainError
from lmsr_amm.fixed_point import (
    WAD, EXP_MAX_INPUT, EXP_MIN_INPUT,
    div_wad, from_quote, from_wad, mul_div, mul_div_up, mul_wad,
    to_quote, to_wad, wad_exp, wad_ln,
)


LN_2 = 693_147_180_559_945_309
E_WAD = 2_718_281_828_459_045_235


class TestMulDiv:

    def test_mul_div_floors(self):
        assert mul_div(10, 1, 3) == 3
        assert mul_div(-10, 1, 3) == -4

    def test_mul_div_up_ceils(self):
        assert mul_div_up(10, 1, 3) == 4
        assert mul_div_up(9, 1, 3) == 3

    def test_zero_denominator_is_domain_error(self):
        with pytest.raises(DomainError):
            mul_div(1, 1, 0)
        with pytest.raises(DomainError):
            mul_div_up(1, 1, 0)
        with pytest.raises(DomainError):
            div_wad(1, 0)

    def test_wad_products(self):
        half = WAD // 2
        assert mul_wad(half, half) == WAD // 4
        assert div_wad(WAD // 4, half) == half


class TestTranscendentals:

    def test_exact_identities(self):
        assert wad_exp(0) == WAD
        assert wad_ln(WAD) == 0

    def test_ln_2(self):
        assert abs(wad_ln(2 * WAD) - LN_2) <= 1

    def test_ln_below_one_is_negative(self):
        assert abs(wad_ln(WAD // 2) + LN_2) <= 1

    def test_ln_e(self):
        assert abs(wad_ln(E_WAD) - WAD) <= 1

    def test_exp_of_ln_round_trips(self):
        """exp(ln(x)) recovers x to within a few wei."""
        for x in (WAD // 7, WAD, 3 * WAD, 12345 * WAD):
            assert abs(wad_exp(wad_ln(x)) - x) <= 10 * (x // WAD + 1)

    def test_exp_underflows_to_zero(self):
        assert wad_exp(EXP_MIN_INPUT) == 0
        assert wad_exp(EXP_MIN_INPUT - 1) == 0
        assert wad_exp(EXP_MIN_INPUT + WAD) > 0

    def test_exp_overflow_is_domain_error(self):
        with pytest.raises(DomainError):
            wad_exp(EXP_MAX_INPUT)

    def test_ln_of_non_positive_is_domain_error(self):
        with pytest.raises(DomainError):
            wad_ln(0)
        with pytest.raises(DomainError):
            wad_ln(-WAD)


class TestConversions:

    def test_to_wad(self):
        assert to_wad("0.25") == WAD // 4
        assert to_wad("1") == WAD
        assert to_wad(0) == 0

    def test_to_quote(self):
        assert to_quote("12.5") == 12_500_000
        assert to_quote("0.0000001") == 0

    def test_from_helpers(self):
        assert from_wad(WAD // 2) == Decimal("0.5")
        assert from_quote(1_500_000) == Decimal("1.5")
        assert str(from_quote(1_000_000_000)) == "1000"

    @pytest.mark.parametrize("value", ["NaN", "sNaN", "Infinity", "-Inf"])
    def test_non_finite_rejected(self, value):
        with pytest.raises(InvalidOperation):
            to_wad(value)
        with pytest.raises(InvalidOperation):
            to_quote(value)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidOperation):
            to_quote("lots")
