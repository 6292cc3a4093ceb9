"""
Fixed-point arithmetic. Integers only at the seams, Decimal inside ln/exp.

Two scales:
    WAD   = 1e18: probabilities, masses, exponents, log arguments
    QUOTE = 1e6: quote-currency amounts and token amounts

Values are plain Python ints. Multiplication and division floor unless the
`_up` variant is used. ln and exp are evaluated with Decimal at 80 digits
and floored back to WAD, which keeps them exact to the last wei over the
supported range:

    exp: x in (EXP_MIN_INPUT, EXP_MAX_INPUT)  (≈ −42.14 .. 135.31)
    ln:  x > 0
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_FLOOR, localcontext

from lmsr_amm.errors import DomainError


WAD = 10 ** 18
QUOTE_DECIMALS = 6
QUOTE_UNIT = 10 ** QUOTE_DECIMALS
BPS = 10_000

# exp(x) rounds to 0 below this; overflows the 256-bit range above it
EXP_MIN_INPUT = -42_139_678_854_452_767_551
EXP_MAX_INPUT = 135_305_999_368_893_231_589

_WAD_D = Decimal(WAD)
_CTX = Context(prec=80)


# ---------------------------------------------------------------------------
# Multiply / divide
# ---------------------------------------------------------------------------

def mul_wad(a: int, b: int) -> int:
    return a * b // WAD


def div_wad(a: int, b: int) -> int:
    if b == 0:
        raise DomainError("division by zero")
    return a * WAD // b


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator)."""
    if denominator == 0:
        raise DomainError("division by zero")
    return a * b // denominator


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator)."""
    if denominator == 0:
        raise DomainError("division by zero")
    return -((-a * b) // denominator)


# ---------------------------------------------------------------------------
# Transcendentals
# ---------------------------------------------------------------------------

def wad_exp(x: int) -> int:
    """e^(x / 1e18), scaled by 1e18."""
    if x <= EXP_MIN_INPUT:
        return 0
    if x >= EXP_MAX_INPUT:
        raise DomainError(f"exp overflow: {x}")
    with localcontext(_CTX):
        value = (Decimal(x) / _WAD_D).exp() * _WAD_D
        return int(value.to_integral_value(rounding=ROUND_FLOOR))


def wad_ln(x: int) -> int:
    """ln(x / 1e18), scaled by 1e18. Negative for x < 1e18."""
    if x <= 0:
        raise DomainError(f"ln of non-positive value: {x}")
    with localcontext(_CTX):
        value = (Decimal(x) / _WAD_D).ln() * _WAD_D
        return int(value.to_integral_value(rounding=ROUND_FLOOR))


# ---------------------------------------------------------------------------
# Conversions (display and input parsing only, never inside the maths)
# ---------------------------------------------------------------------------

def _finite(value: Decimal | str | int) -> Decimal:
    d = Decimal(value)
    if not d.is_finite():
        raise InvalidOperation(f"not a finite number: {value}")
    return d


def to_wad(value: Decimal | str | int) -> int:
    """Parse a decimal number ("0.25") into WAD."""
    return int((_finite(value) * _WAD_D).to_integral_value(rounding=ROUND_FLOOR))


def from_wad(value: int) -> Decimal:
    return Decimal(value) / _WAD_D


def to_quote(value: Decimal | str | int) -> int:
    """Parse a quote-currency amount ("12.5") into 1e6 units."""
    return int((_finite(value) * QUOTE_UNIT).to_integral_value(
        rounding=ROUND_FLOOR))


def from_quote(value: int) -> Decimal:
    return Decimal(value) / QUOTE_UNIT
