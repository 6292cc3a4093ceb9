"""
Persistence layer. JSON snapshot + atomic writes.

The snapshot contains the complete state of the engine and its ledger:
  - ledger: accounts, holdings, transactions, positions per market, makers
  - engine: LMSR state and trade reports per market
  - TWAP: j, last timestamp and per-slot checkpoints per market
  - ID counters (so IDs resume correctly after restart)

Save after every complete mutation (init/list/split/trade/mint).
On startup, load the snapshot. No replay needed.

Every amount is an integer and JSON keeps Python ints exact, so nothing is
converted to strings. JSON object keys are strings; loaders turn them back
into ints.

Atomic write: write to .tmp, then os.replace. A crash mid-write
leaves the previous snapshot intact.
"""

import dataclasses
import json
import os
from typing import Callable

from lmsr_amm.ledger import InMemoryLedger
from lmsr_amm.market_maker import MarketMaker
from lmsr_amm.models import (
    Account, MarketState, MarketTwap, SlotTwap, TradeReport, Transaction,
    _counters, reset_counters, set_counter,
)
from lmsr_amm.twap import TwapAccumulator, system_clock


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _serialize(obj):
    """Recursively serialize dataclasses to JSON-safe types."""
    if dataclasses.is_dataclass(obj):
        return {
            f.name: _serialize(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, list):
        return [_serialize(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): _serialize(v) for k, v in obj.items()}
    return obj


# ---------------------------------------------------------------------------
# Deserialization helpers
# ---------------------------------------------------------------------------

def _load_account(d: dict) -> Account:
    return Account(
        id=d["id"],
        available=d["available"],
        holdings=dict(d["holdings"]),
        created_at=d["created_at"],
    )


def _load_transaction(d: dict) -> Transaction:
    return Transaction(
        id=d["id"],
        account_id=d["account_id"],
        available_delta=d["available_delta"],
        token_delta=d["token_delta"],
        reason=d["reason"],
        market_id=d.get("market_id"),
        position_id=d.get("position_id"),
        is_back=d.get("is_back"),
        created_at=d["created_at"],
    )


def _load_market(d: dict) -> MarketState:
    return MarketState(
        market_id=d["market_id"],
        b=d["b"],
        g=d["g"],
        r=list(d["r"]),
        s=d["s"],
        r_reserve=d["r_reserve"],
        is_expanding=d["is_expanding"],
        fee_bps=d["fee_bps"],
        slot_of={int(pid): slot for pid, slot in d["slot_of"].items()},
        ledger_id_of_slot=list(d["ledger_id_of_slot"]),
        reports=[TradeReport(**r) for r in d["reports"]],
        created_at=d["created_at"],
    )


def _load_twap(d: dict) -> MarketTwap:
    return MarketTwap(
        j=d["j"],
        last_timestamp=d.get("last_timestamp"),
        slots={int(slot): SlotTwap(**st) for slot, st in d["slots"].items()},
    )


# ---------------------------------------------------------------------------
# Schema versioning
# ---------------------------------------------------------------------------

CURRENT_VERSION = 1


def _check_version(state: dict) -> dict:
    version = state.get("version", 1)
    if version != CURRENT_VERSION:
        raise ValueError(
            f"unsupported snapshot version {version}, "
            f"expected {CURRENT_VERSION}")
    return state


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def snapshot_state(ledger: InMemoryLedger, maker: MarketMaker) -> dict:
    return {
        "version": CURRENT_VERSION,
        "counters": dict(_counters),
        "accounts": [_serialize(acc) for acc in ledger.accounts.values()],
        "transactions": [_serialize(tx) for tx in ledger.transactions],
        "positions": _serialize(ledger.positions),
        "makers": _serialize(ledger.makers),
        "markets": [_serialize(m) for m in maker.markets.values()],
        "twap": _serialize(maker.twap.markets),
    }


def save_snapshot(ledger: InMemoryLedger, maker: MarketMaker,
                  path: str) -> None:
    """
    Save complete ledger + engine state to a JSON file.
    Atomic: writes to .tmp then renames.
    """
    state = snapshot_state(ledger, maker)
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(state, f, indent=2)
    os.replace(tmp, path)


def restore_state(state: dict, clock: Callable[[], int] = system_clock
                  ) -> tuple[InMemoryLedger, MarketMaker]:
    state = _check_version(state)

    # Restore ID counters
    reset_counters()
    for kind, value in state["counters"].items():
        set_counter(kind, value)

    # Restore ledger
    ledger = InMemoryLedger()
    for adata in state["accounts"]:
        acc = _load_account(adata)
        ledger.accounts[acc.id] = acc
    ledger.transactions = [_load_transaction(t) for t in state["transactions"]]
    ledger.positions = {
        int(mid): list(pids) for mid, pids in state["positions"].items()
    }
    ledger.makers = {
        int(mid): acc_id for mid, acc_id in state["makers"].items()
    }

    # Restore engine
    twap = TwapAccumulator(clock)
    twap.markets = {
        int(mid): _load_twap(tw) for mid, tw in state["twap"].items()
    }
    maker = MarketMaker(ledger, twap=twap, clock=clock)
    for mdata in state["markets"]:
        market = _load_market(mdata)
        maker.markets[market.market_id] = market

    return ledger, maker


def load_snapshot(path: str, clock: Callable[[], int] = system_clock
                  ) -> tuple[InMemoryLedger, MarketMaker]:
    """
    Load ledger + engine state from a JSON snapshot.
    Returns (ledger, maker) ready to use.
    """
    with open(path) as f:
        state = json.load(f)
    return restore_state(state, clock)
