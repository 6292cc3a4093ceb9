"""
Reserve expansion: turn part of the reserve into a new tradable outcome.

    new_mass   = alpha * r_reserve
    r_reserve -= new_mass
    s         += new_mass

Mass moves, none is created, so s + r_reserve (and Z = G * (s + r_reserve))
is unchanged to the wei, and every existing price r[k] / (s + r_reserve)
stays exactly where it was. Only the reserve's own price drops.
"""

from lmsr_amm.errors import ConfigurationError, InvariantViolation
from lmsr_amm.fixed_point import WAD, mul_wad
from lmsr_amm.market_init import MAX_OUTCOMES
from lmsr_amm.models import MarketState
from lmsr_amm.state_access import (
    assign_slot, require_ledger_position, require_unlisted,
)


def validate_split(market: MarketState, alpha: int) -> int:
    """Ledger-free checks for split_from_reserve. Returns the new mass."""
    if not market.is_expanding:
        raise ConfigurationError(
            f"market {market.market_id} is not expanding")
    if not 0 < alpha <= WAD:
        raise ConfigurationError(f"alpha {alpha} not in (0, 1]")
    if market.r_reserve <= 0:
        raise ConfigurationError(
            f"market {market.market_id} has no reserve left")
    if market.num_outcomes + 1 > MAX_OUTCOMES:
        raise ConfigurationError(f"market already has {MAX_OUTCOMES} outcomes")

    new_mass = mul_wad(alpha, market.r_reserve)
    if new_mass <= 0:
        raise ConfigurationError("alpha too small for any mass")
    if market.r_reserve - new_mass < 0:
        raise InvariantViolation(
            f"market {market.market_id}: negative reserve "
            f"{market.r_reserve - new_mass}")
    return new_mass


def split_from_reserve(ledger, twap, market: MarketState, position_id: int,
                       alpha: int) -> int:
    """Move alpha (WAD, in (0, 1]) of the reserve into position_id.
    Returns the new slot."""
    new_mass = validate_split(market, alpha)
    require_ledger_position(ledger, market.market_id, position_id)
    require_unlisted(market, position_id)

    twap.accrue(market)
    market.r_reserve -= new_mass
    market.s += new_mass
    slot = assign_slot(market, position_id, new_mass)
    twap.register_slot(market, slot)
    return slot
