"""
Pydantic request/response models for the API.
All amounts and probabilities are decimal strings to avoid IEEE 754 issues.
Raw fixed-point integers (TWAP cumulatives) are strings too, since they
exceed what JSON clients can hold in a double.
"""

from typing import Literal

from pydantic import BaseModel


# --- Account ---

class AccountResponse(BaseModel):
    account_id: int
    available: str
    holdings: dict[str, str]


# --- Markets ---

class MarketSummary(BaseModel):
    market_id: int
    num_outcomes: int
    prices: dict[str, str]
    reserve_price: str
    is_expanding: bool
    fee_bps: int
    b: str
    num_trades: int
    created_at: str

class MarketDetail(MarketSummary):
    maker_account_id: int | None
    position_ids: list[int]
    g: str
    z: str
    max_loss: str

class PriceResponse(BaseModel):
    market_id: int
    position_id: int
    back: str
    lay: str

class TwapResponse(BaseModel):
    market_id: int
    position_id: int
    cumulative: str
    timestamp: int

class ConsultResponse(BaseModel):
    average: str

class QuoteResponse(BaseModel):
    kind: str
    position_id: int
    side: str
    tokens: str
    amount: str
    fee: str

class TradeResponse(BaseModel):
    trade_id: int
    market_id: int
    trader: int
    position_id: int
    side: str
    direction: str
    tokens: str
    amount: str
    price: str
    timestamp: int


# --- Admin ---

TradeKind = Literal[
    "buy_exact_tokens", "sell_exact_tokens", "buy_for_amount", "sell_for_amount",
]
Side = Literal["back", "lay"]

class CreateAccountResponse(BaseModel):
    account_id: int

class MintRequest(BaseModel):
    account_id: int
    amount: str

class MintResponse(BaseModel):
    account_id: int
    available: str

class CreateMarketRequest(BaseModel):
    liability: str
    priors: list[str]
    reserve: str = "0"
    is_expanding: bool = False
    fee_bps: int | None = None

class CreateMarketResponse(BaseModel):
    market_id: int
    maker_account_id: int
    position_ids: list[int]
    b: str

class FundRequest(BaseModel):
    amount: str

class ListPositionRequest(BaseModel):
    prior: str

class SplitRequest(BaseModel):
    alpha: str

class NewPositionResponse(BaseModel):
    market_id: int
    position_id: int
    slot: int
    price: str

class TradeRequest(BaseModel):
    """amount is tokens for *_exact_tokens kinds and quote currency for
    *_for_amount kinds. limit is the slippage bound in the other unit;
    omit it for no bound."""
    kind: TradeKind
    account_id: int
    position_id: int
    side: Side = "back"
    amount: str
    limit: str | None = None

class HealthResponse(BaseModel):
    status: str
    markets: int
    accounts: int
