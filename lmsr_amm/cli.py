#!/usr/bin/env python3
"""
LMSR market maker CLI. Every invocation: lock → load → execute → save → unlock.

Usage:
    python3 -m lmsr_amm.cli create-account
    python3 -m lmsr_amm.cli mint ACCOUNT_ID AMOUNT
    python3 -m lmsr_amm.cli create-market LIABILITY PRIOR [PRIOR ...]
    python3 -m lmsr_amm.cli fund MARKET_ID AMOUNT
    python3 -m lmsr_amm.cli list-position MARKET_ID PRIOR
    python3 -m lmsr_amm.cli split MARKET_ID ALPHA
    python3 -m lmsr_amm.cli buy MARKET_ID ACCOUNT_ID POSITION_ID TOKENS
    python3 -m lmsr_amm.cli sell MARKET_ID ACCOUNT_ID POSITION_ID TOKENS
    python3 -m lmsr_amm.cli buy-for MARKET_ID ACCOUNT_ID POSITION_ID AMOUNT
    python3 -m lmsr_amm.cli sell-for MARKET_ID ACCOUNT_ID POSITION_ID AMOUNT
    python3 -m lmsr_amm.cli quote KIND MARKET_ID POSITION_ID AMOUNT
    python3 -m lmsr_amm.cli account ACCOUNT_ID
    python3 -m lmsr_amm.cli market MARKET_ID
    python3 -m lmsr_amm.cli markets
    python3 -m lmsr_amm.cli twap MARKET_ID POSITION_ID

Amounts and token counts are decimal strings in quote currency ("12.5").
Priors, alpha and prices are decimal probabilities ("0.25"). Trades take
--lay for the lay side and an optional slippage bound.

Output: JSON, one line. {"ok": true, ...} or {"ok": false, "error": "..."}
State: LMSR_STATE env var, default ./lmsr_state.json
"""

import argparse
import fcntl
import json
import os
import sys
from contextlib import contextmanager

from loguru import logger

from lmsr_amm.fixed_point import from_quote, from_wad, to_quote, to_wad
from lmsr_amm.ledger import InMemoryLedger
from lmsr_amm.lmsr import price_wad
from lmsr_amm.market_maker import QUOTERS, MarketMaker
from lmsr_amm.models import reset_counters
from lmsr_amm.persistence import load_snapshot, save_snapshot


STATE_PATH = os.environ.get("LMSR_STATE", "./lmsr_state.json")

# No bound unless the caller gives one.
_UNBOUNDED = 10 ** 36


@contextmanager
def file_lock(path):
    """Exclusive file lock. Prevents concurrent CLI invocations from corrupting state."""
    lock_path = path + ".lock"
    f = open(lock_path, "w")
    try:
        fcntl.flock(f, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(f, fcntl.LOCK_UN)
        f.close()


def load_or_create(path):
    if os.path.exists(path):
        return load_snapshot(path)
    reset_counters()
    ledger = InMemoryLedger()
    return ledger, MarketMaker(ledger)


def reply(data):
    print(json.dumps(data))


def _trade_result(report):
    return {"ok": True, "trade_id": report.trade_id,
            "position_id": report.position_id,
            "side": "back" if report.is_back else "lay",
            "tokens": str(from_quote(report.tokens)),
            "amount": str(from_quote(report.quote_amount)),
            "price": str(from_wad(report.price_wad))}


def _market_summary(market):
    return {
        "market_id": market.market_id,
        "num_outcomes": market.num_outcomes,
        "prices": {
            str(pid): str(from_wad(price_wad(market, slot)))
            for slot, pid in enumerate(market.ledger_id_of_slot)
        },
        "num_trades": len(market.reports),
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_create_account(ledger, maker, args):
    acc = ledger.create_account()
    return {"ok": True, "account_id": acc.id}


def cmd_mint(ledger, maker, args):
    ledger.mint(args.account_id, to_quote(args.amount))
    acc = ledger.get_account(args.account_id)
    return {"ok": True, "account_id": args.account_id,
            "available": str(from_quote(acc.available))}


def cmd_create_market(ledger, maker, args):
    masses = [to_wad(p) for p in args.priors]
    liability, reserve = to_quote(args.liability), to_wad(args.reserve)
    maker.check_market_config(masses, liability, reserve, args.expanding,
                              args.fee_bps)
    market_id = ledger.create_market()
    priors = [(ledger.create_position(market_id), m) for m in masses]
    market = maker.init_market(
        market_id, priors, liability,
        reserve=reserve,
        is_expanding=args.expanding,
        fee_bps=args.fee_bps,
    )
    return {"ok": True, "market_id": market_id,
            "maker_account_id": ledger.makers[market_id],
            "position_ids": list(market.ledger_id_of_slot),
            "b": str(from_quote(market.b))}


def cmd_fund(ledger, maker, args):
    ledger.fund_maker(args.market_id, to_quote(args.amount))
    acc = ledger.maker_account(args.market_id)
    return {"ok": True, "maker_account_id": acc.id,
            "available": str(from_quote(acc.available))}


def cmd_list_position(ledger, maker, args):
    prior = to_wad(args.prior)
    maker.check_listing(args.market_id, prior)
    position_id = ledger.create_position(args.market_id)
    slot = maker.list_position(args.market_id, position_id, prior)
    return {"ok": True, "position_id": position_id, "slot": slot}


def cmd_split(ledger, maker, args):
    alpha = to_wad(args.alpha)
    maker.check_split(args.market_id, alpha)
    position_id = ledger.create_position(args.market_id)
    slot = maker.split_from_reserve(args.market_id, position_id, alpha)
    return {"ok": True, "position_id": position_id, "slot": slot,
            "reserve_price": str(from_wad(
                maker.reserve_price(args.market_id)))}


def _bound(value, default):
    return to_quote(value) if value is not None else default


def cmd_buy(ledger, maker, args):
    report = maker.buy_exact_tokens(
        args.market_id, args.account_id, args.position_id, not args.lay,
        to_quote(args.tokens), _bound(args.max_in, _UNBOUNDED))
    return _trade_result(report)


def cmd_sell(ledger, maker, args):
    report = maker.sell_exact_tokens(
        args.market_id, args.account_id, args.position_id, not args.lay,
        to_quote(args.tokens), _bound(args.min_out, 0))
    return _trade_result(report)


def cmd_buy_for(ledger, maker, args):
    report = maker.buy_for_amount(
        args.market_id, args.account_id, args.position_id, not args.lay,
        to_quote(args.amount), _bound(args.min_tokens, 0))
    return _trade_result(report)


def cmd_sell_for(ledger, maker, args):
    report = maker.sell_for_amount(
        args.market_id, args.account_id, args.position_id, not args.lay,
        to_quote(args.amount), _bound(args.max_tokens, _UNBOUNDED))
    return _trade_result(report)


def cmd_quote(ledger, maker, args):
    q = maker.quote(args.market_id, args.kind, args.position_id,
                    not args.lay, to_quote(args.amount))
    return {"ok": True, "kind": args.kind,
            "tokens": str(from_quote(q.tokens)),
            "amount": str(from_quote(q.quote_amount)),
            "fee": str(from_quote(q.fee))}


def cmd_account(ledger, maker, args):
    acc = ledger.get_account(args.account_id)
    return {"ok": True, "account_id": acc.id,
            "available": str(from_quote(acc.available)),
            "holdings": {k: str(from_quote(v))
                         for k, v in acc.holdings.items()}}


def cmd_market(ledger, maker, args):
    market = maker.markets.get(args.market_id)
    if market is None:
        return {"ok": False, "error": f"market {args.market_id} not found"}
    summary = _market_summary(market)
    summary.update({
        "ok": True,
        "b": str(from_quote(market.b)),
        "fee_bps": market.fee_bps,
        "is_expanding": market.is_expanding,
        "reserve_price": str(from_wad(maker.reserve_price(market.market_id))),
        "z": str(from_wad(maker.z(market.market_id))),
    })
    return summary


def cmd_markets(ledger, maker, args):
    return {"ok": True,
            "markets": [_market_summary(m) for m in maker.markets.values()]}


def cmd_twap(ledger, maker, args):
    cum, ts = maker.twap_current_cumulative(args.market_id, args.position_id)
    return {"ok": True, "cumulative": str(cum), "timestamp": ts}


# Commands that mutate state (need save after)
MUTATING = {"create-account", "mint", "create-market", "fund",
            "list-position", "split", "buy", "sell", "buy-for", "sell-for"}


def _trade_parser(sub, name, amount_name, bound_flag):
    p = sub.add_parser(name)
    p.add_argument("market_id", type=int)
    p.add_argument("account_id", type=int)
    p.add_argument("position_id", type=int)
    p.add_argument(amount_name)
    p.add_argument("--lay", action="store_true", help="Trade the lay side")
    p.add_argument(bound_flag, default=None, help="Slippage bound")
    return p


def main():
    parser = argparse.ArgumentParser(description="LMSR market maker CLI")
    parser.add_argument("--state", default=STATE_PATH,
                        help="Path to state file")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("create-account")

    p = sub.add_parser("mint")
    p.add_argument("account_id", type=int)
    p.add_argument("amount")

    p = sub.add_parser("create-market")
    p.add_argument("liability")
    p.add_argument("priors", nargs="+")
    p.add_argument("--reserve", default="0",
                   help="Reserve mass as a probability (default 0)")
    p.add_argument("--expanding", action="store_true")
    p.add_argument("--fee-bps", type=int, default=None)

    p = sub.add_parser("fund")
    p.add_argument("market_id", type=int)
    p.add_argument("amount")

    p = sub.add_parser("list-position")
    p.add_argument("market_id", type=int)
    p.add_argument("prior")

    p = sub.add_parser("split")
    p.add_argument("market_id", type=int)
    p.add_argument("alpha")

    _trade_parser(sub, "buy", "tokens", "--max-in")
    _trade_parser(sub, "sell", "tokens", "--min-out")
    _trade_parser(sub, "buy-for", "amount", "--min-tokens")
    _trade_parser(sub, "sell-for", "amount", "--max-tokens")

    p = sub.add_parser("quote")
    p.add_argument("kind", choices=sorted(QUOTERS))
    p.add_argument("market_id", type=int)
    p.add_argument("position_id", type=int)
    p.add_argument("amount")
    p.add_argument("--lay", action="store_true")

    p = sub.add_parser("account")
    p.add_argument("account_id", type=int)

    p = sub.add_parser("market")
    p.add_argument("market_id", type=int)

    sub.add_parser("markets")

    p = sub.add_parser("twap")
    p.add_argument("market_id", type=int)
    p.add_argument("position_id", type=int)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "create-account": cmd_create_account,
        "mint": cmd_mint,
        "create-market": cmd_create_market,
        "fund": cmd_fund,
        "list-position": cmd_list_position,
        "split": cmd_split,
        "buy": cmd_buy,
        "sell": cmd_sell,
        "buy-for": cmd_buy_for,
        "sell-for": cmd_sell_for,
        "quote": cmd_quote,
        "account": cmd_account,
        "market": cmd_market,
        "markets": cmd_markets,
        "twap": cmd_twap,
    }

    # stdout carries the JSON reply
    logger.remove()
    logger.add(sys.stderr, level=os.environ.get("LMSR_LOG_LEVEL", "WARNING"))

    state_path = args.state

    try:
        with file_lock(state_path):
            ledger, maker = load_or_create(state_path)
            result = commands[args.command](ledger, maker, args)

            if args.command in MUTATING:
                save_snapshot(ledger, maker, state_path)

            reply(result)
    except Exception as e:
        reply({"ok": False, "error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
