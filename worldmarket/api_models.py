"""
Pydantic request/response models for the API.

Budgets, shares and prices travel as strings to avoid IEEE 754 surprises in
JSON clients. Integer fields carry the same values at an explicit scale
(`*_scaled`, with the scale named alongside or documented per field).
"""

from pydantic import BaseModel

from worldmarket.models import AMOUNT_MICROS, PRICE_MICROS, PROBABILITY_BPS


# --- Pools ---

class CreatePoolRequest(BaseModel):
    pool_id: int | None = None
    n_events: int | None = None
    b: str | None = None
    prior: list[str] | None = None           # one probability per world
    prior_scaled: list[int] | None = None    # same, at prior_scale
    prior_scale: int = PROBABILITY_BPS.factor

class PoolSummary(BaseModel):
    pool_id: int
    n_events: int
    n_outcomes: int
    b: str
    prices: list[str]
    num_trades: int
    status: str
    created_at: str

class PoolDetail(PoolSummary):
    q: list[str]
    marginals: list[str]
    max_loss: str               # b * ln(n_outcomes), market maker subsidy

class PricesResponse(BaseModel):
    pool_id: int
    prices: list[str]
    prices_scaled: list[int]
    scale: int
    marginals: list[str]


# --- Betting ---

class BetFields(BaseModel):
    bet_type: str                                  # marginal | slice | corner
    event: int | None = None                       # marginal
    yes: bool | None = None                        # marginal
    conditions: list[tuple[int, bool]] | None = None   # slice
    outcome: int | None = None                     # corner
    world: int | None = None                       # corner (alias)
    budget: str | None = None
    amount: int | None = None                      # budget at amount_scale
    amount_scale: int = AMOUNT_MICROS.factor
    price_scale: int = PRICE_MICROS.factor

class BetRequest(BetFields):
    user: str

class QuoteRequest(BetFields):
    pass

class BetResponse(BaseModel):
    trade_id: int
    shares: str
    shares_scaled: int          # x1000
    prices: list[str]
    prices_scaled: list[int]    # x price_scale
    commitment: str
    outcomes: list[int]

class QuoteResponse(BaseModel):
    budget: str
    shares: str
    shares_scaled: int          # x1000
    prices: list[str]
    prices_scaled: list[int]    # x price_scale
    outcomes: list[int]


# --- Positions, trades, commitments ---

class PositionEntry(BaseModel):
    user: str
    positions: dict[int, str]
    positions_scaled: dict[int, int]    # x1000

class TradeResponse(BaseModel):
    trade_id: int
    pool_id: int
    user: str
    kind: str
    outcomes: list[int]
    budget: str
    shares: str
    commitment: str
    created_at: str

class VerifyCommitmentRequest(BaseModel):
    user: str
    commitment: str

class VerifyCommitmentResponse(BaseModel):
    pool_id: int
    user: str
    valid: bool


# --- Settlement ---

class ClaimRequest(BaseModel):
    user: str
    winning_outcome: int
    payout_scale: int = AMOUNT_MICROS.factor

class ClaimResponse(BaseModel):
    user: str
    winning_outcome: int
    shares: str
    shares_scaled: int          # x1000
    payout: int                 # x payout_scale
    commitment: str | None

class ResolveRequest(BaseModel):
    winning_outcome: int
    payout_scale: int = AMOUNT_MICROS.factor

class PayoutEntry(BaseModel):
    user: str
    amount: int

class ResolveResponse(BaseModel):
    success: bool
    pool_id: int
    winning_outcome: int
    payouts: list[PayoutEntry]
    total_payout: int
    scale: int


class HealthResponse(BaseModel):
    status: str
    pools: int
