"""
Time-weighted average price accumulator. O(1) per touch.

Per market we integrate 1 / (s + r_reserve) over time into j. Per slot we
keep the j we last settled at and a cumulative integral of r[slot] * dj.
Since a slot's direct price is r[slot] / (s + r_reserve), and r[slot] only
changes when that slot is traded, the cumulative is the direct price
integrated over time:

    cum(t) = ∫ price(τ) dτ            (WAD · seconds)

Every price-changing call is bracketed:

    update_before_price_change(market, slot)  accrue at the old state
    ... mutate ...
    update_after_price_change(market, slot)   re-baseline the slot

Off-chain, two checkpoints give the average:

    avg = (cum1 - cum0) / (t1 - t0)
"""

import time
from typing import Callable

from lmsr_amm.errors import DomainError
from lmsr_amm.fixed_point import WAD
from lmsr_amm.models import MarketState, MarketTwap, SlotTwap


def system_clock() -> int:
    return int(time.time())


class TwapAccumulator:

    def __init__(self, clock: Callable[[], int] = system_clock):
        self.clock = clock
        self.markets: dict[int, MarketTwap] = {}

    def _twap(self, market_id: int) -> MarketTwap:
        tw = self.markets.get(market_id)
        if tw is None:
            tw = MarketTwap()
            self.markets[market_id] = tw
        return tw

    @staticmethod
    def _slot(tw: MarketTwap, slot: int) -> SlotTwap:
        # Slots listed at init share the market's j origin (0). Slots
        # listed later are registered explicitly with the j of that moment.
        st = tw.slots.get(slot)
        if st is None:
            st = SlotTwap()
            tw.slots[slot] = st
        return st

    @staticmethod
    def _dj(market: MarketState, elapsed: int) -> int:
        return elapsed * WAD * WAD // market.denominator

    # ------------------------------------------------------------------
    # Mutating bracket
    # ------------------------------------------------------------------

    def accrue(self, market: MarketState) -> MarketTwap:
        """
        Advance the market's j to now at the current denominator.
        The first call for a market only records the baseline.
        """
        tw = self._twap(market.market_id)
        now = self.clock()
        if tw.last_timestamp is None:
            tw.last_timestamp = now
            return tw
        if now > tw.last_timestamp:
            tw.j += self._dj(market, now - tw.last_timestamp)
            tw.last_timestamp = now
        return tw

    def update_before_price_change(self, market: MarketState,
                                   slot: int) -> None:
        first_touch = self._twap(market.market_id).last_timestamp is None
        tw = self.accrue(market)
        if first_touch:
            return
        st = self._slot(tw, slot)
        if st.j_slot != tw.j:
            st.cum += market.r[slot] * (tw.j - st.j_slot) // WAD
            st.j_slot = tw.j

    def update_after_price_change(self, market: MarketState,
                                  slot: int) -> None:
        tw = self._twap(market.market_id)
        self._slot(tw, slot).j_slot = tw.j

    def register_slot(self, market: MarketState, slot: int) -> None:
        """
        Start a slot listed after init at the current j. Call accrue()
        before the listing changes the denominator.
        """
        tw = self._twap(market.market_id)
        tw.slots[slot] = SlotTwap(j_slot=tw.j)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def current_cumulative(self, market: MarketState,
                           slot: int) -> tuple[int, int]:
        """(cumulative, timestamp) as of now, without mutating state."""
        now = self.clock()
        tw = self.markets.get(market.market_id)
        if tw is None or tw.last_timestamp is None:
            return 0, now

        j = tw.j
        if now > tw.last_timestamp:
            j += self._dj(market, now - tw.last_timestamp)

        st = tw.slots.get(slot) or SlotTwap()
        return st.cum + market.r[slot] * (j - st.j_slot) // WAD, now


def consult_from_checkpoints(cum0: int, t0: int, cum1: int, t1: int) -> int:
    """Average direct price (WAD) between two checkpoints."""
    if t1 <= t0 or cum1 < cum0:
        raise DomainError("bad TWAP window", code="bad_twap_window")
    return (cum1 - cum0) // (t1 - t0)
