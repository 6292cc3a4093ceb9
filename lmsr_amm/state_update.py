"""
O(1) state update after a trade.

A trade moves the outcome utility vector in one of two ways:

    direct (back) trade on k:  only q_k moves          (dU_rest, dU_k) = (0, ±t)
    lay trade on k:            every q_j, j != k moves (dU_rest, dU_k) = (±t, 0)

Both collapse to two multiplicative corrections:

    chi_G  = e^(dU_rest / b)              applied to G
    chi_Rk = e^((dU_k - dU_rest) / b)     applied to r[k]

and s follows from the one slot that changed. Masses of the other slots and
the reserve are untouched, so the cost is independent of the outcome count.
Recomputing every mass would give the same prices; don't.
"""

from lmsr_amm.errors import InvariantViolation
from lmsr_amm.fixed_point import WAD, mul_wad, wad_exp
from lmsr_amm.lmsr import exponent_wad
from lmsr_amm.models import MarketState


def utility_deltas(is_back: bool, signed_tokens: int) -> tuple[int, int]:
    """(dU_rest, dU_k) for a trade. signed_tokens < 0 for sells."""
    if is_back:
        return 0, signed_tokens
    return signed_tokens, 0


def compute_update(market: MarketState, slot: int, is_back: bool,
                   signed_tokens: int) -> tuple[int, int, int]:
    """
    New (g, r[slot], s) after a trade, without mutating the market.
    Raises InvariantViolation if the result is unusable.
    """
    du_rest, du_k = utility_deltas(is_back, signed_tokens)

    chi_g = wad_exp(exponent_wad(market.b, du_rest)) if du_rest else WAD
    chi_r = wad_exp(exponent_wad(market.b, du_k - du_rest))

    new_g = mul_wad(market.g, chi_g)
    old_r = market.r[slot]
    new_r = mul_wad(old_r, chi_r)
    new_s = market.s - old_r + new_r

    if new_s <= 0:
        raise InvariantViolation(
            f"market {market.market_id}: S would be {new_s}")
    if market.r_reserve < 0:
        raise InvariantViolation(
            f"market {market.market_id}: negative reserve "
            f"{market.r_reserve}")
    if new_g <= 0:
        raise InvariantViolation(
            f"market {market.market_id}: G would be {new_g}")
    return new_g, new_r, new_s


def apply_update(market: MarketState, slot: int,
                 new_g: int, new_r: int, new_s: int) -> None:
    market.g = new_g
    market.r[slot] = new_r
    market.s = new_s


def apply_trade(market: MarketState, slot: int, is_back: bool,
                signed_tokens: int) -> None:
    """compute_update + apply_update in one step."""
    apply_update(market, slot,
                 *compute_update(market, slot, is_back, signed_tokens))
