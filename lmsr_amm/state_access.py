"""
Read/validate helpers between external ids and internal slots.
"""

from lmsr_amm.errors import ConfigurationError, ListingError
from lmsr_amm.models import MarketState


def get_market(markets: dict[int, MarketState], market_id: int) -> MarketState:
    market = markets.get(market_id)
    if market is None:
        raise ConfigurationError(
            f"market {market_id} not initialized", code="market_not_found")
    return market


def slot_for(market: MarketState, position_id: int) -> int:
    """Dense 0-based slot of a listed position."""
    slot = market.slot_of.get(position_id, 0)
    if slot == 0:
        raise ListingError(
            f"position {position_id} not listed in market {market.market_id}")
    return slot - 1


def require_unlisted(market: MarketState, position_id: int) -> None:
    if position_id in market.slot_of:
        raise ListingError(
            f"position {position_id} already listed in market "
            f"{market.market_id}")


def require_ledger_position(ledger, market_id: int, position_id: int) -> None:
    if not ledger.position_exists(market_id, position_id):
        raise ListingError(
            f"position {position_id} does not exist in ledger market "
            f"{market_id}")


def assign_slot(market: MarketState, position_id: int, mass: int) -> int:
    """Append a slot for position_id. Does not touch s."""
    market.r.append(mass)
    market.ledger_id_of_slot.append(position_id)
    market.slot_of[position_id] = len(market.r)
    return len(market.r) - 1
