"""
Market maker. The only entry points that change engine state.

Owns every market's LMSR state and the TWAP accumulator, and talks to the
ledger for all fund movements. Every trade is between a trader and the
market's maker account on the ledger.

Trade sequence (all four trade kinds share _execute):

    1. quote            pure, lmsr.py
    2. slippage check   caller's bound
    3. compute_update   pure, new (g, r[k], s); invariants checked here
    4. PendingTrade     mutating calls now raise ReentrancyError
    5. ledger settle    funds and tokens move, or it raises
    6. commit           TWAP before, apply update, TWAP after
    7. report           TradeReport stored, logged, sent to listeners
                        a failing listener is logged, never unwinds the trade

Everything that can fail happens in steps 1-5, before any engine state is
written. A failed trade leaves markets, TWAP and trade ids untouched.
"""

import os
from contextlib import contextmanager
from typing import Callable, Optional

from loguru import logger

from lmsr_amm.errors import ConfigurationError, ReentrancyError, SlippageError
from lmsr_amm.expansion import (
    split_from_reserve as _split_from_reserve, validate_split,
)
from lmsr_amm.lmsr import (
    back_price_wad, lay_price_wad, price_wad, reserve_price_wad,
    quote_buy_exact_tokens, quote_buy_for_amount,
    quote_sell_exact_tokens, quote_sell_for_amount, z as z_aggregate,
)
from lmsr_amm.market_init import (
    build_market, list_position as _list_position, validate_listing,
    validate_market_config,
)
from lmsr_amm.models import (
    MarketState, PendingTrade, Quote, TradeReport, next_id,
)
from lmsr_amm.state_access import get_market, slot_for
from lmsr_amm.state_update import apply_update, compute_update
from lmsr_amm.twap import (
    TwapAccumulator, consult_from_checkpoints, system_clock,
)


DEFAULT_FEE_BPS = int(os.environ.get("LMSR_DEFAULT_FEE_BPS", "0"))

QUOTERS = {
    "buy_exact_tokens": quote_buy_exact_tokens,
    "sell_exact_tokens": quote_sell_exact_tokens,
    "buy_for_amount": quote_buy_for_amount,
    "sell_for_amount": quote_sell_for_amount,
}


class MarketMaker:

    def __init__(self, ledger, twap: Optional[TwapAccumulator] = None,
                 clock: Callable[[], int] = system_clock):
        self.ledger = ledger
        self.clock = clock
        self.twap = twap if twap is not None else TwapAccumulator(clock)
        self.markets: dict[int, MarketState] = {}
        self.listeners: list[Callable[[TradeReport], None]] = []
        self._pending: Optional[PendingTrade] = None

    def add_listener(self, listener: Callable[[TradeReport], None]) -> None:
        self.listeners.append(listener)

    # ------------------------------------------------------------------
    # Market lifecycle
    # ------------------------------------------------------------------

    def init_market(self, market_id: int, priors: list[tuple[int, int]],
                    liability: int, reserve: int = 0,
                    is_expanding: bool = False,
                    fee_bps: Optional[int] = None) -> MarketState:
        """
        Create the LMSR state of a ledger market.

        priors: [(position_id, mass_wad), ...], normalized with the reserve
        liability: worst-case maker loss, quote units; fixes b for life
        """
        self._require_idle()
        if market_id in self.markets:
            raise ConfigurationError(
                f"market {market_id} already initialized",
                code="market_exists")
        if fee_bps is None:
            fee_bps = DEFAULT_FEE_BPS

        market = build_market(
            self.ledger, market_id, priors, liability,
            reserve=reserve, is_expanding=is_expanding, fee_bps=fee_bps,
        )
        self.markets[market_id] = market
        self.twap.accrue(market)
        logger.info(
            f"Market {market_id} initialized: {market.num_outcomes} outcomes, "
            f"b={market.b}, reserve={market.r_reserve}, fee={fee_bps}bps"
        )
        return market

    def list_position(self, market_id: int, position_id: int,
                      prior: int) -> int:
        """List a new outcome at direct price `prior` (WAD). Returns slot."""
        self._require_idle()
        market = get_market(self.markets, market_id)
        slot = _list_position(self.ledger, self.twap, market, position_id,
                              prior)
        logger.info(
            f"Market {market_id}: listed position {position_id} "
            f"in slot {slot} at prior {prior}"
        )
        return slot

    def split_from_reserve(self, market_id: int, position_id: int,
                           alpha: int) -> int:
        """Move alpha (WAD) of the reserve into a new outcome. Returns slot."""
        self._require_idle()
        market = get_market(self.markets, market_id)
        slot = _split_from_reserve(self.ledger, self.twap, market,
                                   position_id, alpha)
        logger.info(
            f"Market {market_id}: split {alpha} of reserve into position "
            f"{position_id} (slot {slot}), reserve now {market.r_reserve}"
        )
        return slot

    # ------------------------------------------------------------------
    # Pre-flight checks (no state touched)
    # ------------------------------------------------------------------

    def check_market_config(self, masses: list[int], liability: int,
                            reserve: int = 0, is_expanding: bool = False,
                            fee_bps: Optional[int] = None) -> None:
        """Raise what init_market would raise, before any ledger market
        or position is allocated for it."""
        if fee_bps is None:
            fee_bps = DEFAULT_FEE_BPS
        validate_market_config(masses, liability, reserve, is_expanding,
                               fee_bps)

    def check_listing(self, market_id: int, prior: int) -> None:
        validate_listing(get_market(self.markets, market_id), prior)

    def check_split(self, market_id: int, alpha: int) -> None:
        validate_split(get_market(self.markets, market_id), alpha)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def buy_exact_tokens(self, market_id: int, trader: int, position_id: int,
                         is_back: bool, tokens: int,
                         max_quote_in: int) -> TradeReport:
        with self._rejections("buy_exact_tokens", market_id, trader):
            self._require_idle()
            market = get_market(self.markets, market_id)
            q = quote_buy_exact_tokens(market, position_id, is_back, tokens)
            if q.quote_amount > max_quote_in:
                raise SlippageError(
                    f"cost {q.quote_amount} exceeds max {max_quote_in}")
            return self._execute(market, trader, q)

    def sell_exact_tokens(self, market_id: int, trader: int,
                          position_id: int, is_back: bool, tokens: int,
                          min_quote_out: int) -> TradeReport:
        with self._rejections("sell_exact_tokens", market_id, trader):
            self._require_idle()
            market = get_market(self.markets, market_id)
            q = quote_sell_exact_tokens(market, position_id, is_back, tokens)
            if q.quote_amount < min_quote_out:
                raise SlippageError(
                    f"proceeds {q.quote_amount} below min {min_quote_out}")
            return self._execute(market, trader, q)

    def buy_for_amount(self, market_id: int, trader: int, position_id: int,
                       is_back: bool, quote_in: int,
                       min_tokens_out: int) -> TradeReport:
        with self._rejections("buy_for_amount", market_id, trader):
            self._require_idle()
            market = get_market(self.markets, market_id)
            q = quote_buy_for_amount(market, position_id, is_back, quote_in)
            if q.tokens < min_tokens_out:
                raise SlippageError(
                    f"tokens {q.tokens} below min {min_tokens_out}")
            return self._execute(market, trader, q)

    def sell_for_amount(self, market_id: int, trader: int, position_id: int,
                        is_back: bool, quote_out: int,
                        max_tokens_in: int) -> TradeReport:
        with self._rejections("sell_for_amount", market_id, trader):
            self._require_idle()
            market = get_market(self.markets, market_id)
            q = quote_sell_for_amount(market, position_id, is_back, quote_out)
            if q.tokens > max_tokens_in:
                raise SlippageError(
                    f"tokens {q.tokens} exceed max {max_tokens_in}")
            return self._execute(market, trader, q)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def quote(self, market_id: int, kind: str, position_id: int,
              is_back: bool, amount: int) -> Quote:
        """Price a trade without executing it. kind is a QUOTERS key."""
        quoter = QUOTERS.get(kind)
        if quoter is None:
            raise ConfigurationError(f"unknown quote kind: {kind}")
        market = get_market(self.markets, market_id)
        return quoter(market, position_id, is_back, amount)

    def back_price(self, market_id: int, position_id: int) -> int:
        return back_price_wad(get_market(self.markets, market_id),
                              position_id)

    def lay_price(self, market_id: int, position_id: int) -> int:
        return lay_price_wad(get_market(self.markets, market_id),
                             position_id)

    def reserve_price(self, market_id: int) -> int:
        return reserve_price_wad(get_market(self.markets, market_id))

    def z(self, market_id: int) -> int:
        return z_aggregate(get_market(self.markets, market_id))

    def twap_current_cumulative(self, market_id: int,
                                position_id: int) -> tuple[int, int]:
        """(cumulative direct price in WAD·seconds, timestamp)."""
        market = get_market(self.markets, market_id)
        return self.twap.current_cumulative(
            market, slot_for(market, position_id))

    @staticmethod
    def consult(cum0: int, t0: int, cum1: int, t1: int) -> int:
        return consult_from_checkpoints(cum0, t0, cum1, t1)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_idle(self) -> None:
        if self._pending is not None:
            raise ReentrancyError(
                "mutating call while a trade is settling with the ledger")

    @contextmanager
    def _rejections(self, kind: str, market_id: int, trader: int):
        try:
            yield
        except Exception as e:
            logger.warning(
                f"Trade rejected: {kind} market={market_id} "
                f"trader={trader}: {type(e).__name__}: {e}"
            )
            raise

    def _execute(self, market: MarketState, trader: int,
                 q: Quote) -> TradeReport:
        signed = q.tokens if q.is_buy else -q.tokens
        new_g, new_r, new_s = compute_update(market, q.slot, q.is_back,
                                             signed)
        pending = PendingTrade(trader=trader, quote=q, new_g=new_g,
                               new_r=new_r, new_s=new_s)

        settle = self.ledger.settle_buy if q.is_buy else self.ledger.settle_sell
        self._pending = pending
        try:
            settle(trader, market.market_id, q.position_id, q.is_back,
                   q.quote_amount, q.tokens)
        except Exception:
            pending.status = "aborted"
            raise
        finally:
            self._pending = None

        return self._commit(market, pending)

    def _commit(self, market: MarketState,
                pending: PendingTrade) -> TradeReport:
        q = pending.quote
        self.twap.update_before_price_change(market, q.slot)
        apply_update(market, q.slot, pending.new_g, pending.new_r,
                     pending.new_s)
        self.twap.update_after_price_change(market, q.slot)

        pending.status = "committed"
        pending.trade_id = next_id("trade")
        report = TradeReport(
            trade_id=pending.trade_id,
            market_id=market.market_id,
            trader=pending.trader,
            position_id=q.position_id,
            is_back=q.is_back,
            is_buy=q.is_buy,
            tokens=q.tokens,
            quote_amount=q.quote_amount,
            price_wad=price_wad(market, q.slot),
            timestamp=self.clock(),
        )
        market.reports.append(report)
        logger.info(
            f"Trade {report.trade_id}: market={report.market_id} "
            f"trader={report.trader} {'buy' if q.is_buy else 'sell'} "
            f"{'back' if q.is_back else 'lay'} position={q.position_id} "
            f"tokens={q.tokens} amount={q.quote_amount} "
            f"price={report.price_wad}"
        )
        # The trade is settled and committed; a listener can't undo it.
        for listener in self.listeners:
            try:
                listener(report)
            except Exception:
                logger.exception(
                    f"Trade {report.trade_id}: listener {listener!r} failed")
        return report
