"""
Data models for the LMSR market maker.

Two separate domains:
- Ledger side: accounts, position holdings, transactions (the ledger's world)
- Engine side: per-market LMSR state, TWAP state, quotes, trade reports

The engine never holds balances. It prices trades, tells the ledger to move
funds, and then commits its own state. The ledger never sees masses or
prices, only amounts.

All state is integer fixed-point. Two scales:
- WAD (1e18) for masses, probabilities and the correction factor G
- QUOTE (1e6) for quote-currency amounts, token amounts and depth b
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from lmsr_amm.fixed_point import WAD


# ---------------------------------------------------------------------------
# Sequential IDs
# ---------------------------------------------------------------------------

_counters: dict[str, int] = defaultdict(int)


def next_id(kind: str) -> int:
    """Sequential ID. Kinds: account, market, position, trade, tx."""
    _counters[kind] += 1
    return _counters[kind]


def reset_counters() -> None:
    """Reset all counters. For testing."""
    _counters.clear()


def set_counter(kind: str, value: int) -> None:
    """Set a counter. For loading persisted state."""
    _counters[kind] = value


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def holding_key(market_id: int, position_id: int, is_back: bool) -> str:
    """Key of a token balance: "market:position:back|lay"."""
    side = "back" if is_back else "lay"
    return f"{market_id}:{position_id}:{side}"


# ---------------------------------------------------------------------------
# Ledger side
# ---------------------------------------------------------------------------

@dataclass
class Account:
    """
    An account in the ledger. Each market's maker is also an account.

    available: quote currency free to spend, quote units
    holdings: position tokens by holding_key, quote units
    """
    id: int
    available: int = 0
    holdings: dict[str, int] = field(default_factory=dict)
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(available: int = 0) -> "Account":
        return Account(id=next_id("account"), available=available)

    def tokens(self, market_id: int, position_id: int, is_back: bool) -> int:
        return self.holdings.get(
            holding_key(market_id, position_id, is_back), 0)


@dataclass
class Transaction:
    """
    Append-only ledger entry. Every balance change gets one of these.

    On buy:  trader available_delta = -cost, token_delta = +tokens
             maker available_delta = +cost
    On sell: trader available_delta = +proceeds, token_delta = -tokens
             maker available_delta = -proceeds
    On mint: available_delta = +amount
    """
    id: int
    account_id: int
    available_delta: int
    token_delta: int
    reason: str
    market_id: Optional[int] = None
    position_id: Optional[int] = None
    is_back: Optional[bool] = None
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(account_id: int, available_delta: int, token_delta: int,
            reason: str, market_id: Optional[int] = None,
            position_id: Optional[int] = None,
            is_back: Optional[bool] = None) -> "Transaction":
        return Transaction(
            id=next_id("tx"),
            account_id=account_id,
            available_delta=available_delta,
            token_delta=token_delta,
            reason=reason,
            market_id=market_id,
            position_id=position_id,
            is_back=is_back,
        )


# ---------------------------------------------------------------------------
# Market state
# ---------------------------------------------------------------------------

@dataclass
class MarketState:
    """
    LMSR state for one market.

    Price of the direct side of slot k is r[k] / (s + r_reserve). The true
    (unnormalized) mass of slot k is g * r[k]; g cancels out of every price
    but not out of Z = g * (s + r_reserve), whose log-ratio times b is the
    cost of a trade.

    slot_of maps an external position id to a 1-based slot (absent means
    not listed); ledger_id_of_slot is its inverse, indexed by 0-based slot.
    s is maintained incrementally and never re-summed from r.
    """
    market_id: int
    b: int                                     # depth, quote units
    g: int = WAD                               # global correction, WAD
    r: list[int] = field(default_factory=list)  # per-slot mass, WAD
    s: int = 0                                 # sum of listed masses
    r_reserve: int = 0                         # unallocated mass
    is_expanding: bool = False
    fee_bps: int = 0
    slot_of: dict[int, int] = field(default_factory=dict)
    ledger_id_of_slot: list[int] = field(default_factory=list)
    reports: list["TradeReport"] = field(default_factory=list)
    created_at: str = field(default_factory=_now)

    @property
    def num_outcomes(self) -> int:
        return len(self.r)

    @property
    def denominator(self) -> int:
        """Pricing denominator: listed masses plus the reserve."""
        return self.s + self.r_reserve


# ---------------------------------------------------------------------------
# TWAP state
# ---------------------------------------------------------------------------

@dataclass
class SlotTwap:
    j_slot: int = 0     # value of the market's j at last settlement
    cum: int = 0        # integral of direct price over time, WAD·seconds


@dataclass
class MarketTwap:
    """
    j is the integral of WAD² / (s + r_reserve) over time. A slot whose mass
    r stayed constant since j_slot accrues r * (j - j_slot) / WAD, which is
    exactly its direct price integrated over that window.
    """
    j: int = 0
    last_timestamp: Optional[int] = None
    slots: dict[int, SlotTwap] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Quote:
    """
    Result of a pure pricing call.

    tokens: position tokens moved (quote units)
    quote_amount: fee-inclusive amount paid (buys) or received (sells)
    fee: part of quote_amount that is protocol fee
    """
    market_id: int
    position_id: int
    slot: int
    is_back: bool
    is_buy: bool
    tokens: int
    quote_amount: int
    fee: int


@dataclass(frozen=True)
class TradeReport:
    """What every completed trade reports. price_wad is the direct-side
    price of position_id after the trade."""
    trade_id: int
    market_id: int
    trader: int
    position_id: int
    is_back: bool
    is_buy: bool
    tokens: int
    quote_amount: int
    price_wad: int
    timestamp: int


@dataclass
class PendingTrade:
    """
    A quoted trade whose funds are being moved by the ledger.

    Created before the ledger callback, committed after it. While one is
    outstanding the market maker rejects every mutating call. The trade id
    is only allocated on commit.
    """
    trader: int
    quote: Quote
    new_g: int
    new_r: int
    new_s: int
    status: str = "pending"     # "pending", "committed", "aborted"
    trade_id: Optional[int] = None
