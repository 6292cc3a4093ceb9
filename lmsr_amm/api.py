"""
FastAPI application. HTTP API over the LMSR market maker.

Public endpoints (no auth): health, markets, market detail, prices, quotes,
TWAP, trades, accounts.
Admin endpoints (admin key): accounts, mint, create market, fund, list,
split, trade.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from decimal import InvalidOperation

from fastapi import FastAPI
from loguru import logger

from lmsr_amm.api_errors import APIError, api_error_handler, translate_engine_error
from lmsr_amm.api_models import (
    AccountResponse,
    MarketSummary, MarketDetail, PriceResponse, TwapResponse,
    ConsultResponse, QuoteResponse, TradeResponse,
    CreateAccountResponse,
    MintRequest, MintResponse,
    CreateMarketRequest, CreateMarketResponse,
    FundRequest, ListPositionRequest, SplitRequest, NewPositionResponse,
    TradeRequest, HealthResponse, Side, TradeKind,
)
from lmsr_amm.errors import EngineError
from lmsr_amm.fixed_point import from_quote, from_wad, to_quote, to_wad
from lmsr_amm.ledger import InMemoryLedger, LedgerError
from lmsr_amm.lmsr import max_loss, price_wad
from lmsr_amm.market_maker import MarketMaker
from lmsr_amm.middleware import AdminDep
from lmsr_amm.models import MarketState, TradeReport, reset_counters
from lmsr_amm.persistence import save_snapshot, load_snapshot


STATE_PATH = os.environ.get("LMSR_STATE", "./lmsr_state.json")

# Slippage bound used when a trade request has none
_UNBOUNDED = 10 ** 36


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Load state
    if os.path.exists(STATE_PATH):
        ledger, maker = load_snapshot(STATE_PATH)
        logger.info(f"Loaded {len(maker.markets)} markets from {STATE_PATH}")
    else:
        reset_counters()
        ledger = InMemoryLedger()
        maker = MarketMaker(ledger)

    app.state.ledger = ledger
    app.state.maker = maker
    app.state.lock = asyncio.Lock()
    yield


app = FastAPI(title="LMSR AMM API", version="0.1.0", lifespan=lifespan)
app.add_exception_handler(APIError, api_error_handler)


def _save():
    """Save state to disk. Called after every mutation."""
    save_snapshot(app.state.ledger, app.state.maker, STATE_PATH)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_quote(value: str, what: str) -> int:
    try:
        return to_quote(value)
    except InvalidOperation:
        raise APIError(400, "invalid_amount", f"Invalid {what}: {value}")


def _parse_wad(value: str, what: str) -> int:
    try:
        return to_wad(value)
    except InvalidOperation:
        raise APIError(400, "invalid_amount", f"Invalid {what}: {value}")


def _get_market(market_id: int) -> MarketState:
    m = app.state.maker.markets.get(market_id)
    if m is None:
        raise APIError(404, "market_not_found", f"Market {market_id} not found")
    return m


def _summary_fields(m: MarketState) -> dict:
    return dict(
        market_id=m.market_id,
        num_outcomes=m.num_outcomes,
        prices={
            str(pid): str(from_wad(price_wad(m, slot)))
            for slot, pid in enumerate(m.ledger_id_of_slot)
        },
        reserve_price=str(from_wad(app.state.maker.reserve_price(m.market_id))),
        is_expanding=m.is_expanding,
        fee_bps=m.fee_bps,
        b=str(from_quote(m.b)),
        num_trades=len(m.reports),
        created_at=m.created_at,
    )


def _trade_response(r: TradeReport) -> TradeResponse:
    return TradeResponse(
        trade_id=r.trade_id,
        market_id=r.market_id,
        trader=r.trader,
        position_id=r.position_id,
        side="back" if r.is_back else "lay",
        direction="buy" if r.is_buy else "sell",
        tokens=str(from_quote(r.tokens)),
        amount=str(from_quote(r.quote_amount)),
        price=str(from_wad(r.price_wad)),
        timestamp=r.timestamp,
    )


# ---------------------------------------------------------------------------
# Health (public)
# ---------------------------------------------------------------------------

@app.get("/v1/health")
async def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        markets=len(app.state.maker.markets),
        accounts=len(app.state.ledger.accounts),
    )


# ---------------------------------------------------------------------------
# Public market data (no auth required)
# ---------------------------------------------------------------------------

@app.get("/v1/markets")
async def list_markets(is_expanding: bool | None = None) -> list[MarketSummary]:
    """List all markets with current direct prices.

    Optional filter:
    - is_expanding: only markets that can (or can't) split their reserve
    """
    result = []
    for m in app.state.maker.markets.values():
        if is_expanding is not None and m.is_expanding != is_expanding:
            continue
        result.append(MarketSummary(**_summary_fields(m)))
    return result


@app.get("/v1/markets/{market_id}")
async def get_market(market_id: int) -> MarketDetail:
    """Get full market detail including LMSR aggregates."""
    m = _get_market(market_id)
    n = m.num_outcomes + (1 if m.r_reserve > 0 else 0)
    return MarketDetail(
        **_summary_fields(m),
        maker_account_id=app.state.ledger.makers.get(market_id),
        position_ids=list(m.ledger_id_of_slot),
        g=str(from_wad(m.g)),
        z=str(from_wad(app.state.maker.z(market_id))),
        max_loss=str(from_quote(max_loss(m.b, max(n, 2)))),
    )


@app.get("/v1/markets/{market_id}/trades")
async def get_market_trades(market_id: int) -> list[TradeResponse]:
    """All trades in a market, oldest first."""
    m = _get_market(market_id)
    return [_trade_response(r) for r in m.reports]


@app.get("/v1/markets/{market_id}/positions/{position_id}/price")
async def get_price(market_id: int, position_id: int) -> PriceResponse:
    try:
        back = app.state.maker.back_price(market_id, position_id)
        lay = app.state.maker.lay_price(market_id, position_id)
    except EngineError as e:
        raise translate_engine_error(e)
    return PriceResponse(market_id=market_id, position_id=position_id,
                         back=str(from_wad(back)), lay=str(from_wad(lay)))


@app.get("/v1/markets/{market_id}/positions/{position_id}/twap")
async def get_twap(market_id: int, position_id: int) -> TwapResponse:
    """Cumulative direct price (WAD·seconds) and its timestamp. Take two of
    these and pass them to /v1/twap/consult for an average."""
    try:
        cum, ts = app.state.maker.twap_current_cumulative(
            market_id, position_id)
    except EngineError as e:
        raise translate_engine_error(e)
    return TwapResponse(market_id=market_id, position_id=position_id,
                        cumulative=str(cum), timestamp=ts)


@app.get("/v1/twap/consult")
async def consult(cum0: str, t0: int, cum1: str, t1: int) -> ConsultResponse:
    try:
        avg = app.state.maker.consult(int(cum0), t0, int(cum1), t1)
    except EngineError as e:
        raise translate_engine_error(e)
    except ValueError:
        raise APIError(400, "invalid_amount", "cumulatives must be integers")
    return ConsultResponse(average=str(from_wad(avg)))


@app.get("/v1/markets/{market_id}/quote")
async def get_quote(market_id: int, kind: TradeKind, position_id: int,
                    amount: str, side: Side = "back") -> QuoteResponse:
    """Price a trade without executing it."""
    value = _parse_quote(amount, "amount")
    try:
        q = app.state.maker.quote(market_id, kind, position_id,
                                  side == "back", value)
    except EngineError as e:
        raise translate_engine_error(e)
    return QuoteResponse(
        kind=kind,
        position_id=position_id,
        side=side,
        tokens=str(from_quote(q.tokens)),
        amount=str(from_quote(q.quote_amount)),
        fee=str(from_quote(q.fee)),
    )


@app.get("/v1/accounts/{account_id}")
async def get_account(account_id: int) -> AccountResponse:
    try:
        acc = app.state.ledger.get_account(account_id)
    except LedgerError as e:
        raise translate_engine_error(e)
    return AccountResponse(
        account_id=acc.id,
        available=str(from_quote(acc.available)),
        holdings={k: str(from_quote(v)) for k, v in acc.holdings.items()},
    )


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------

@app.post("/v1/admin/accounts")
async def admin_create_account(_: AdminDep) -> CreateAccountResponse:
    """Create a new trader account."""
    async with app.state.lock:
        acc = app.state.ledger.create_account()
        _save()
    return CreateAccountResponse(account_id=acc.id)


@app.post("/v1/admin/mint")
async def admin_mint(req: MintRequest, _: AdminDep) -> MintResponse:
    """Mint quote currency to an account."""
    amount = _parse_quote(req.amount, "amount")

    async with app.state.lock:
        try:
            app.state.ledger.mint(req.account_id, amount)
            _save()
        except LedgerError as e:
            raise translate_engine_error(e)

    acc = app.state.ledger.get_account(req.account_id)
    return MintResponse(account_id=acc.id, available=str(from_quote(acc.available)))


@app.post("/v1/admin/markets")
async def admin_create_market(req: CreateMarketRequest,
                              _: AdminDep) -> CreateMarketResponse:
    """Create a market: one ledger position per prior, then the LMSR state.
    `liability` fixes the depth: b = liability / ln(n)."""
    liability = _parse_quote(req.liability, "liability")
    masses = [_parse_wad(p, "prior") for p in req.priors]
    reserve = _parse_wad(req.reserve, "reserve")

    async with app.state.lock:
        ledger, maker = app.state.ledger, app.state.maker
        try:
            # Reject bad configs before the ledger allocates anything
            maker.check_market_config(masses, liability, reserve,
                                      req.is_expanding, req.fee_bps)
            market_id = ledger.create_market()
            priors = [(ledger.create_position(market_id), m) for m in masses]
            market = maker.init_market(
                market_id, priors, liability,
                reserve=reserve,
                is_expanding=req.is_expanding,
                fee_bps=req.fee_bps,
            )
        except EngineError as e:
            raise translate_engine_error(e)
        _save()

    return CreateMarketResponse(
        market_id=market_id,
        maker_account_id=ledger.makers[market_id],
        position_ids=list(market.ledger_id_of_slot),
        b=str(from_quote(market.b)),
    )


@app.post("/v1/admin/markets/{market_id}/fund")
async def admin_fund(market_id: int, req: FundRequest,
                     _: AdminDep) -> MintResponse:
    """Mint subsidy into a market's maker account."""
    amount = _parse_quote(req.amount, "amount")
    _get_market(market_id)

    async with app.state.lock:
        try:
            app.state.ledger.fund_maker(market_id, amount)
            _save()
        except LedgerError as e:
            raise translate_engine_error(e)

    acc = app.state.ledger.maker_account(market_id)
    return MintResponse(account_id=acc.id, available=str(from_quote(acc.available)))


@app.post("/v1/admin/markets/{market_id}/positions")
async def admin_list_position(market_id: int, req: ListPositionRequest,
                              _: AdminDep) -> NewPositionResponse:
    """Create a ledger position and list it at direct price `prior`."""
    prior = _parse_wad(req.prior, "prior")
    _get_market(market_id)

    async with app.state.lock:
        try:
            app.state.maker.check_listing(market_id, prior)
            position_id = app.state.ledger.create_position(market_id)
            slot = app.state.maker.list_position(market_id, position_id, prior)
        except EngineError as e:
            raise translate_engine_error(e)
        _save()

    price = app.state.maker.back_price(market_id, position_id)
    return NewPositionResponse(market_id=market_id, position_id=position_id,
                               slot=slot, price=str(from_wad(price)))


@app.post("/v1/admin/markets/{market_id}/split")
async def admin_split(market_id: int, req: SplitRequest,
                      _: AdminDep) -> NewPositionResponse:
    """Create a ledger position and give it `alpha` of the reserve."""
    alpha = _parse_wad(req.alpha, "alpha")
    _get_market(market_id)

    async with app.state.lock:
        try:
            app.state.maker.check_split(market_id, alpha)
            position_id = app.state.ledger.create_position(market_id)
            slot = app.state.maker.split_from_reserve(
                market_id, position_id, alpha)
        except EngineError as e:
            raise translate_engine_error(e)
        _save()

    price = app.state.maker.back_price(market_id, position_id)
    return NewPositionResponse(market_id=market_id, position_id=position_id,
                               slot=slot, price=str(from_wad(price)))


@app.post("/v1/admin/markets/{market_id}/trade")
async def admin_trade(market_id: int, req: TradeRequest,
                      _: AdminDep) -> TradeResponse:
    """Execute a trade on behalf of `account_id`."""
    amount = _parse_quote(req.amount, "amount")
    limit = _parse_quote(req.limit, "limit") if req.limit is not None else None
    is_back = req.side == "back"
    maker = app.state.maker

    async with app.state.lock:
        try:
            if req.kind == "buy_exact_tokens":
                report = maker.buy_exact_tokens(
                    market_id, req.account_id, req.position_id, is_back,
                    amount, _UNBOUNDED if limit is None else limit)
            elif req.kind == "sell_exact_tokens":
                report = maker.sell_exact_tokens(
                    market_id, req.account_id, req.position_id, is_back,
                    amount, limit or 0)
            elif req.kind == "buy_for_amount":
                report = maker.buy_for_amount(
                    market_id, req.account_id, req.position_id, is_back,
                    amount, limit or 0)
            else:
                report = maker.sell_for_amount(
                    market_id, req.account_id, req.position_id, is_back,
                    amount, _UNBOUNDED if limit is None else limit)
            _save()
        except (EngineError, LedgerError) as e:
            raise translate_engine_error(e)

    return _trade_response(report)
