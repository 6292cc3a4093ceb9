"""
LMSR (Logarithmic Market Scoring Rule): closed-form quotes, no state change.

Every function here reads a MarketState and returns numbers or a Quote.
The caller (market maker) moves funds and commits state.

Notation:
    b: depth, quote units (max loss = b * ln(n))
    p: direct-side price of the traded slot, r[k] / (s + r_reserve), WAD
    t: tokens, quote units
    x = t / b, WAD

    direct buy  cost = b * ln(1 - p + p * e^x)
    lay buy     cost = b * ln(p + (1 - p) * e^x)
    sells use the same expressions with t negated.

The cost is b * ln(Z_after / Z_before), Z = G * (s + r_reserve).

Rounding always favours the AMM: buy costs and tokens-in round up,
sell proceeds and tokens-out round down.
"""

from lmsr_amm.errors import DomainError
from lmsr_amm.fixed_point import (
    BPS, WAD,
    mul_div, mul_div_up, mul_wad, wad_exp, wad_ln,
)
from lmsr_amm.models import MarketState, Quote
from lmsr_amm.state_access import slot_for


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------

def price_wad(market: MarketState, slot: int) -> int:
    """Direct-side price of a slot, WAD."""
    return mul_div(market.r[slot], WAD, market.denominator)


def back_price_wad(market: MarketState, position_id: int) -> int:
    return price_wad(market, slot_for(market, position_id))


def lay_price_wad(market: MarketState, position_id: int) -> int:
    return WAD - back_price_wad(market, position_id)


def reserve_price_wad(market: MarketState) -> int:
    return mul_div(market.r_reserve, WAD, market.denominator)


def z(market: MarketState) -> int:
    """Aggregate G * (s + r_reserve). Diagnostic, not needed for trading."""
    return mul_wad(market.g, market.denominator)


# ---------------------------------------------------------------------------
# Depth
# ---------------------------------------------------------------------------

def depth_for_liability(liability: int, n: int) -> int:
    """b = liability / ln(n). n = 1 has no finite depth."""
    if n < 2:
        raise DomainError(f"depth undefined for {n} outcome(s)")
    return mul_div(liability, WAD, wad_ln(n * WAD))


def max_loss(b: int, n: int) -> int:
    """Worst-case AMM loss b * ln(n), quote units."""
    return mul_div(b, wad_ln(n * WAD), WAD)


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

def add_fee(cost: int, fee_bps: int) -> int:
    return mul_div_up(cost, BPS + fee_bps, BPS)


def take_fee(proceeds: int, fee_bps: int) -> int:
    return mul_div(proceeds, BPS - fee_bps, BPS)


def strip_fee(gross: int, fee_bps: int) -> int:
    """Pre-fee part of a fee-inclusive spend."""
    return mul_div(gross, BPS, BPS + fee_bps)


def gross_up(net: int, fee_bps: int) -> int:
    """Pre-fee proceeds needed to pay out `net` after the fee."""
    return mul_div_up(net, BPS, BPS - fee_bps)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _require_positive(amount: int, what: str) -> None:
    if amount <= 0:
        raise DomainError(f"{what} must be positive, got {amount}",
                          code="invalid_amount")


def _z_ratio(p: int, ex: int, is_back: bool) -> int:
    """Z_after / Z_before for a trade with e^(±t/b) = ex, WAD."""
    if is_back:
        return WAD - p + mul_wad(p, ex)
    return p + mul_wad(WAD - p, ex)


def _require_side_priced(p: int, is_back: bool) -> None:
    # A side priced at exactly 0 has no mass to scale; its log argument
    # never moves and the trade would be free.
    if (is_back and p == 0) or (not is_back and p == WAD):
        raise DomainError("side has zero price, liquidity exhausted")


def _quote(market, position_id, slot, is_back, is_buy,
           tokens, quote_amount, fee) -> Quote:
    return Quote(
        market_id=market.market_id,
        position_id=position_id,
        slot=slot,
        is_back=is_back,
        is_buy=is_buy,
        tokens=tokens,
        quote_amount=quote_amount,
        fee=fee,
    )


# ---------------------------------------------------------------------------
# Forward quotes (exact tokens)
# ---------------------------------------------------------------------------

def exponent_wad(b: int, signed_tokens: int) -> int:
    """t / b in WAD, rounded away from zero so the AMM never undercharges."""
    if signed_tokens >= 0:
        return mul_div_up(signed_tokens, WAD, b)
    return -mul_div_up(-signed_tokens, WAD, b)


def cost_wad(market: MarketState, slot: int, is_back: bool,
             signed_tokens: int) -> int:
    """
    Pre-fee signed cost b * ln(Z'/Z), in quote units scaled by 1e18.
    Positive for buys, negative for sells.
    """
    p = price_wad(market, slot)
    ex = wad_exp(exponent_wad(market.b, signed_tokens))
    return market.b * wad_ln(_z_ratio(p, ex, is_back))


def quote_buy_exact_tokens(market: MarketState, position_id: int,
                           is_back: bool, tokens: int) -> Quote:
    """Fee-inclusive cost of buying exactly `tokens`."""
    _require_positive(tokens, "token amount")
    slot = slot_for(market, position_id)
    _require_side_priced(price_wad(market, slot), is_back)

    raw = cost_wad(market, slot, is_back, tokens)
    cost = -(-raw // WAD)
    if cost < 0:
        raise DomainError(f"negative buy cost {cost}")
    total = add_fee(cost, market.fee_bps)
    return _quote(market, position_id, slot, is_back, True,
                  tokens, total, total - cost)


def quote_sell_exact_tokens(market: MarketState, position_id: int,
                            is_back: bool, tokens: int) -> Quote:
    """Fee-net proceeds of selling exactly `tokens`."""
    _require_positive(tokens, "token amount")
    slot = slot_for(market, position_id)

    raw = cost_wad(market, slot, is_back, -tokens)
    proceeds = -raw // WAD
    if proceeds < 0:
        raise DomainError(f"negative sell proceeds {proceeds}")
    net = take_fee(proceeds, market.fee_bps)
    return _quote(market, position_id, slot, is_back, False,
                  tokens, net, proceeds - net)


# ---------------------------------------------------------------------------
# Inverse quotes (exact quote amount)
# ---------------------------------------------------------------------------

def quote_buy_for_amount(market: MarketState, position_id: int,
                         is_back: bool, quote_in: int) -> Quote:
    """
    Tokens received for spending exactly `quote_in` (fee-inclusive).

    With m the pre-fee spend and x = e^(m/b):
        direct  t = b * ln(1 + (x - 1) / p)
        lay     t = b * ln((x - p) / (1 - p))
    The log argument must be >= 1.0; lay also needs x > p.
    """
    _require_positive(quote_in, "quote amount")
    slot = slot_for(market, position_id)
    p = price_wad(market, slot)
    _require_side_priced(p, is_back)

    spend = strip_fee(quote_in, market.fee_bps)
    ex = wad_exp(mul_div(spend, WAD, market.b))
    if is_back:
        arg = WAD + mul_div(ex - WAD, WAD, p)
    else:
        if ex <= p:
            raise DomainError("inverse lay argument non-positive")
        arg = mul_div(ex - p, WAD, WAD - p)
    if arg < WAD:
        raise DomainError(f"inverse log argument {arg} below 1.0")

    tokens = market.b * wad_ln(arg) // WAD
    if tokens <= 0:
        raise DomainError("amount too small for any tokens",
                          code="amount_too_small")
    return _quote(market, position_id, slot, is_back, True,
                  tokens, quote_in, quote_in - spend)


def quote_sell_for_amount(market: MarketState, position_id: int,
                          is_back: bool, quote_out: int) -> Quote:
    """
    Tokens that must be sold to receive exactly `quote_out` after fee.

    With m the pre-fee proceeds and y = e^(-m/b):
        direct  t = -b * ln(1 + (y - 1) / p)
        lay     t = -b * ln((y - p) / (1 - p))
    The log argument must be in (0, 1]; a non-positive argument means the
    side cannot pay out that much.
    """
    _require_positive(quote_out, "quote amount")
    slot = slot_for(market, position_id)
    p = price_wad(market, slot)

    proceeds = gross_up(quote_out, market.fee_bps)
    y = wad_exp(-mul_div_up(proceeds, WAD, market.b))
    if is_back:
        if p == 0:
            raise DomainError("side has zero price, liquidity exhausted")
        arg = WAD - mul_div_up(WAD - y, WAD, p)
    else:
        if y <= p:
            raise DomainError("inverse lay argument non-positive")
        arg = mul_div(y - p, WAD, WAD - p)
    if arg <= 0:
        raise DomainError("requested proceeds exceed available liquidity")

    tokens = mul_div_up(-wad_ln(arg), market.b, WAD)
    return _quote(market, position_id, slot, is_back, False,
                  tokens, quote_out, proceeds - quote_out)
