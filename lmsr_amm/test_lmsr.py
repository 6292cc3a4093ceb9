"""
Quote engine tests. Pure functions over a MarketState; nothing here mutates.
"""

import pytest

from lmsr_amm.errors import DomainError, ListingError
from lmsr_amm.fixed_point import WAD, mul_div, to_quote, to_wad, wad_ln
from lmsr_amm.ledger import InMemoryLedger
from lmsr_amm.lmsr import (
    add_fee, back_price_wad, cost_wad, depth_for_liability, gross_up,
    lay_price_wad, max_loss, price_wad, quote_buy_exact_tokens,
    quote_buy_for_amount, quote_sell_exact_tokens, quote_sell_for_amount,
    reserve_price_wad, strip_fee, take_fee, z,
)
from lmsr_amm.market_init import build_market
from lmsr_amm.models import reset_counters


ONE = 1_000_000     # one token / one quote unit


def make_market(priors=("0.5", "0.5"), liability="1000", fee_bps=0,
                reserve="0"):
    reset_counters()
    ledger = InMemoryLedger()
    market_id = ledger.create_market()
    pairs = [(ledger.create_position(market_id), to_wad(p)) for p in priors]
    market = build_market(
        ledger, market_id, pairs, to_quote(liability),
        reserve=to_wad(reserve), is_expanding=reserve != "0",
        fee_bps=fee_bps,
    )
    return market, [pid for pid, _ in pairs]


class TestPrices:

    def test_even_market(self):
        m, (a, b) = make_market()
        assert back_price_wad(m, a) == WAD // 2
        assert back_price_wad(m, b) == WAD // 2
        assert lay_price_wad(m, a) == WAD // 2
        assert reserve_price_wad(m) == 0

    def test_reserve_prices_like_an_outcome(self):
        m, (a, b) = make_market(("0.4", "0.4"), reserve="0.2")
        assert back_price_wad(m, a) == to_wad("0.4")
        assert reserve_price_wad(m) == to_wad("0.2")

    def test_z_starts_at_one(self):
        m, _ = make_market(("0.3", "0.3", "0.4"))
        assert z(m) == WAD

    def test_unlisted_position(self):
        m, _ = make_market()
        with pytest.raises(ListingError):
            back_price_wad(m, 999)


class TestDepth:

    def test_depth_from_liability(self):
        b = depth_for_liability(to_quote("1000"), 2)
        assert b == mul_div(to_quote("1000"), WAD, wad_ln(2 * WAD))
        assert 1_442_695_000 < b < 1_442_696_000

    def test_max_loss_recovers_liability(self):
        b = depth_for_liability(to_quote("1000"), 2)
        loss = max_loss(b, 2)
        assert to_quote("1000") - 2 <= loss <= to_quote("1000")

    def test_single_outcome_has_no_depth(self):
        with pytest.raises(DomainError):
            depth_for_liability(to_quote("1000"), 1)


class TestFees:

    def test_buy_fee_rounds_up(self):
        assert add_fee(1, 100) == 2
        assert add_fee(1_000_000, 100) == 1_010_000

    def test_sell_fee_rounds_down(self):
        assert take_fee(1, 100) == 0
        assert take_fee(1_000_000, 100) == 990_000

    def test_strip_and_gross_up_favour_the_maker(self):
        assert strip_fee(1_010_000, 100) == 1_000_000
        assert strip_fee(1_010_001, 100) == 1_000_000
        assert gross_up(990_000, 100) == 1_000_000
        assert gross_up(990_001, 100) == 1_000_002


class TestForwardQuotes:

    def test_buy_one_token_costs_about_half(self):
        m, (a, _) = make_market()
        q = quote_buy_exact_tokens(m, a, True, ONE)
        assert ONE // 2 < q.quote_amount < ONE // 2 + 1_000
        assert q.is_buy and q.tokens == ONE and q.fee == 0

    def test_direct_and_lay_symmetric_at_half(self):
        """At p = 0.5, ln(1-p+p·e^x) == ln(p+(1-p)·e^x)."""
        m, (a, _) = make_market()
        back = quote_buy_exact_tokens(m, a, True, 10 * ONE)
        lay = quote_buy_exact_tokens(m, a, False, 10 * ONE)
        assert back.quote_amount == lay.quote_amount

    def test_cheap_side_costs_less(self):
        m, (a, _) = make_market(("0.2", "0.8"))
        back = quote_buy_exact_tokens(m, a, True, ONE)
        lay = quote_buy_exact_tokens(m, a, False, ONE)
        assert back.quote_amount < lay.quote_amount
        assert abs(back.quote_amount - ONE // 5) < 1_000

    def test_fee_added_on_top(self):
        m, (a, _) = make_market(fee_bps=100)
        plain, _ = make_market()
        q = quote_buy_exact_tokens(m, a, True, 10 * ONE)
        base = quote_buy_exact_tokens(plain, a, True, 10 * ONE)
        assert q.quote_amount == add_fee(base.quote_amount, 100)
        assert q.fee == q.quote_amount - base.quote_amount

    def test_sell_pays_less_than_buy_costs(self):
        m, (a, _) = make_market()
        buy = quote_buy_exact_tokens(m, a, True, ONE)
        sell = quote_sell_exact_tokens(m, a, True, ONE)
        assert 0 < sell.quote_amount < ONE // 2 < buy.quote_amount
        assert not sell.is_buy

    def test_sell_fee_taken_from_proceeds(self):
        m, (a, _) = make_market(fee_bps=100)
        plain, _ = make_market()
        q = quote_sell_exact_tokens(m, a, True, 10 * ONE)
        base = quote_sell_exact_tokens(plain, a, True, 10 * ONE)
        assert q.quote_amount == take_fee(base.quote_amount, 100)
        assert q.fee == base.quote_amount - q.quote_amount

    def test_convexity(self):
        """Average cost per token grows with trade size."""
        m, (a, _) = make_market()
        small = quote_buy_exact_tokens(m, a, True, ONE)
        large = quote_buy_exact_tokens(m, a, True, 100 * ONE)
        assert large.quote_amount * ONE > small.quote_amount * 100 * ONE

    def test_cost_is_signed(self):
        m, (a, _) = make_market()
        assert cost_wad(m, 0, True, ONE) > 0
        assert cost_wad(m, 0, True, -ONE) < 0
        assert cost_wad(m, 0, False, -ONE) < 0

    def test_non_positive_tokens_rejected(self):
        m, (a, _) = make_market()
        with pytest.raises(DomainError) as exc:
            quote_buy_exact_tokens(m, a, True, 0)
        assert exc.value.code == "invalid_amount"
        with pytest.raises(DomainError):
            quote_sell_exact_tokens(m, a, True, -ONE)

    def test_unlisted_position_rejected(self):
        m, _ = make_market()
        with pytest.raises(ListingError):
            quote_buy_exact_tokens(m, 42, True, ONE)

    def test_price_unchanged_by_quoting(self):
        m, (a, _) = make_market()
        before = (m.g, list(m.r), m.s)
        quote_buy_exact_tokens(m, a, True, 50 * ONE)
        quote_sell_exact_tokens(m, a, False, 50 * ONE)
        assert (m.g, list(m.r), m.s) == before


class TestInverseQuotes:

    @pytest.mark.parametrize("is_back", [True, False])
    def test_buy_for_amount_agrees_with_forward(self, is_back):
        m, (a, _) = make_market(("0.3", "0.7"))
        spend = 10 * ONE
        inv = quote_buy_for_amount(m, a, is_back, spend)
        fwd = quote_buy_exact_tokens(m, a, is_back, inv.tokens)
        assert inv.quote_amount == spend
        assert abs(fwd.quote_amount - spend) <= 2

    @pytest.mark.parametrize("is_back", [True, False])
    def test_sell_for_amount_agrees_with_forward(self, is_back):
        m, (a, _) = make_market(("0.3", "0.7"))
        target = 2 * ONE
        inv = quote_sell_for_amount(m, a, is_back, target)
        fwd = quote_sell_exact_tokens(m, a, is_back, inv.tokens)
        assert inv.quote_amount == target
        assert abs(fwd.quote_amount - target) <= 2

    def test_buy_for_amount_with_fee(self):
        m, (a, _) = make_market(fee_bps=100)
        inv = quote_buy_for_amount(m, a, True, 10_100_000)
        assert inv.fee == 10_100_000 - strip_fee(10_100_000, 100)
        assert inv.fee == 100_000

    def test_amount_too_small(self):
        m, (a, _) = make_market(fee_bps=100)
        with pytest.raises(DomainError) as exc:
            quote_buy_for_amount(m, a, True, 1)
        assert exc.value.code == "amount_too_small"

    def test_sell_beyond_liquidity(self):
        """Selling direct tokens can never pay more than b·ln(1/(1-p))."""
        m, (a, _) = make_market()
        with pytest.raises(DomainError):
            quote_sell_for_amount(m, a, True, to_quote("2000"))

    def test_non_positive_amount_rejected(self):
        m, (a, _) = make_market()
        with pytest.raises(DomainError):
            quote_buy_for_amount(m, a, True, 0)
        with pytest.raises(DomainError):
            quote_sell_for_amount(m, a, True, 0)


class TestPriceHelpers:

    def test_price_wad_uses_reserve_in_denominator(self):
        m, _ = make_market(("0.25", "0.25"), reserve="0.5")
        assert price_wad(m, 0) == WAD // 4
        assert price_wad(m, 0) + price_wad(m, 1) + reserve_price_wad(m) == WAD
