"""
Market setup: depth from liability, prior normalization, listing.

A market is created once. Its depth is fixed for life:

    b = liability / ln(n)

where n counts the initial outcomes plus the reserve when there is one
(the reserve prices like an extra outcome until it is split out).

Priors are masses in WAD. If they already sum to 1e18 together with the
reserve they are used verbatim. Otherwise they are rescaled with floor
division; each floor loses less than one wei, so the leftover dust is at
most one wei per mass. That dust goes to the first outcome. Anything
larger means the inputs were not what we think they are, and we fail.
"""

from lmsr_amm.errors import ConfigurationError
from lmsr_amm.fixed_point import BPS, WAD, mul_div
from lmsr_amm.lmsr import depth_for_liability
from lmsr_amm.models import MarketState
from lmsr_amm.state_access import (
    assign_slot, require_ledger_position, require_unlisted,
)


MIN_OUTCOMES = 2
MAX_OUTCOMES = 4096


def validate_reserve(reserve: int, is_expanding: bool) -> None:
    if is_expanding and reserve <= 0:
        raise ConfigurationError(
            "expanding market needs a positive reserve")
    if not is_expanding and reserve != 0:
        raise ConfigurationError(
            "non-expanding market must have zero reserve")


def normalize_priors(masses: list[int],
                     reserve: int) -> tuple[list[int], int]:
    """Scale masses and reserve to sum to exactly 1e18."""
    if any(m <= 0 for m in masses):
        raise ConfigurationError("prior masses must be positive")
    if reserve < 0:
        raise ConfigurationError("reserve must be non-negative")

    total = sum(masses) + reserve
    if total == WAD:
        return list(masses), reserve

    scaled = [mul_div(m, WAD, total) for m in masses]
    scaled_reserve = mul_div(reserve, WAD, total)
    dust = WAD - sum(scaled) - scaled_reserve
    tolerance = len(masses) + 1
    if dust < 0 or dust > tolerance:
        raise ConfigurationError(
            f"normalization dust {dust} exceeds tolerance {tolerance}")
    if any(m == 0 for m in scaled):
        raise ConfigurationError("prior mass too small to normalize")

    scaled[0] += dust
    return scaled, scaled_reserve


def validate_market_config(masses: list[int], liability: int,
                           reserve: int = 0, is_expanding: bool = False,
                           fee_bps: int = 0) -> tuple[int, list[int], int]:
    """
    Every check that doesn't need the ledger. Returns
    (b, normalized masses, normalized reserve). Nothing is mutated, so
    callers can run it before allocating ledger markets or positions.
    """
    if not masses:
        raise ConfigurationError("market needs at least one outcome")
    if liability <= 0:
        raise ConfigurationError("liability must be positive")
    if not 0 <= fee_bps < BPS:
        raise ConfigurationError(f"fee_bps {fee_bps} out of range")

    n = len(masses) + (1 if reserve > 0 else 0)
    if not MIN_OUTCOMES <= n <= MAX_OUTCOMES:
        raise ConfigurationError(
            f"outcome count {n} outside [{MIN_OUTCOMES}, {MAX_OUTCOMES}]")

    validate_reserve(reserve, is_expanding)

    b = depth_for_liability(liability, n)
    if b <= 0:
        raise ConfigurationError(f"depth {b} not positive")

    masses, reserve = normalize_priors(masses, reserve)
    validate_reserve(reserve, is_expanding)
    return b, masses, reserve


def build_market(ledger, market_id: int, priors: list[tuple[int, int]],
                 liability: int, reserve: int = 0,
                 is_expanding: bool = False,
                 fee_bps: int = 0) -> MarketState:
    """
    Validate everything, then build the MarketState.

    priors: [(position_id, mass_wad), ...]
    liability: target worst-case loss, quote units
    """
    b, masses, reserve = validate_market_config(
        [m for _, m in priors], liability, reserve, is_expanding, fee_bps)

    market = MarketState(
        market_id=market_id,
        b=b,
        is_expanding=is_expanding,
        fee_bps=fee_bps,
        r_reserve=reserve,
    )
    for (position_id, _), mass in zip(priors, masses):
        require_ledger_position(ledger, market_id, position_id)
        require_unlisted(market, position_id)
        assign_slot(market, position_id, mass)
    market.s = sum(masses)
    return market


def listing_mass(market: MarketState, prior: int) -> int:
    """
    Mass that gives a new slot a direct price of exactly `prior`:
    r_new / (d + r_new) = prior  =>  r_new = prior * d / (1 - prior)
    """
    if not 0 < prior < WAD:
        raise ConfigurationError(f"listing prior {prior} not in (0, 1)")
    mass = mul_div(prior, market.denominator, WAD - prior)
    if mass <= 0:
        raise ConfigurationError("listing prior too small")
    return mass


def validate_listing(market: MarketState, prior: int) -> int:
    """Ledger-free checks for list_position. Returns the new mass."""
    if market.num_outcomes + 1 > MAX_OUTCOMES:
        raise ConfigurationError(f"market already has {MAX_OUTCOMES} outcomes")
    return listing_mass(market, prior)


def list_position(ledger, twap, market: MarketState, position_id: int,
                  prior: int) -> int:
    """
    List an extra outcome after init. Existing prices dilute by (1 - prior).
    Returns the new slot.
    """
    mass = validate_listing(market, prior)
    require_ledger_position(ledger, market.market_id, position_id)
    require_unlisted(market, position_id)

    twap.accrue(market)
    slot = assign_slot(market, position_id, mass)
    market.s += mass
    twap.register_slot(market, slot)
    return slot
