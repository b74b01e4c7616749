"""
FastAPI application. HTTP surface for the combinatorial world market.

Pools: create, list, detail, prices.
Trading: bets (marginal, slice, corner), quotes.
Queries: positions, trades, commitment verification.
Settlement: claim preview, resolve.

The ledger is the only holder of market state; handlers translate wire
types to engine calls and engine exceptions to structured errors.

Handlers that take a pool lock are plain `def`: the lock is a blocking
threading primitive, so FastAPI runs them in its threadpool and a wait of up
to WORLDMARKET_LOCK_TIMEOUT never stalls the event loop.
"""

import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation

from fastapi import FastAPI

from worldmarket import __version__
from worldmarket.api_errors import APIError, api_error_handler, translate_engine_error
from worldmarket.api_models import (
    CreatePoolRequest, PoolSummary, PoolDetail, PricesResponse,
    BetFields, BetRequest, QuoteRequest, BetResponse, QuoteResponse,
    PositionEntry, TradeResponse,
    VerifyCommitmentRequest, VerifyCommitmentResponse,
    ClaimRequest, ClaimResponse,
    ResolveRequest, ResolveResponse, PayoutEntry,
    HealthResponse,
)
from worldmarket.errors import MarketError
from worldmarket.ledger import MarketLedger
from worldmarket.lmsr import max_loss
from worldmarket.models import PRICE_MICROS, SHARE_MILLIS, Scale
from worldmarket.outcomes import parse_bet
from worldmarket.settlement import SettlementResolver


logger = logging.getLogger(__name__)

DEFAULT_B = float(os.environ.get("WORLDMARKET_B", "100"))
DEFAULT_EVENTS = int(os.environ.get("WORLDMARKET_EVENTS", "3"))
LOCK_TIMEOUT = float(os.environ.get("WORLDMARKET_LOCK_TIMEOUT", "5"))
REDEMPTION_RATE = float(os.environ.get("WORLDMARKET_REDEMPTION_RATE", "1"))
# empty string disables the startup pool
DEFAULT_POOL = os.environ.get("WORLDMARKET_DEFAULT_POOL", "0")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ledger = MarketLedger(lock_timeout=LOCK_TIMEOUT)
    if DEFAULT_POOL:
        ledger.create_market(pool_id=int(DEFAULT_POOL),
                             n_events=DEFAULT_EVENTS, b=DEFAULT_B)
    app.state.ledger = ledger
    app.state.resolver = SettlementResolver(ledger, REDEMPTION_RATE)
    logger.info("ledger ready: %d pool(s), b=%s, lock timeout %ss",
                len(ledger.pools()), DEFAULT_B, LOCK_TIMEOUT)
    yield


app = FastAPI(title="World Market API", version=__version__, lifespan=lifespan)
app.add_exception_handler(APIError, api_error_handler)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _decimal(value: str, field: str) -> float:
    try:
        return float(Decimal(value))
    except (InvalidOperation, ValueError):
        raise APIError(400, "invalid_amount", f"Invalid {field}: {value}")


def _scale(factor: int) -> Scale:
    try:
        return Scale(factor)
    except MarketError as e:
        raise translate_engine_error(e)


def _budget(req: BetFields):
    """(budget, amount_scale) for the ledger, from either wire form."""
    if req.budget is not None and req.amount is not None:
        raise APIError(400, "invalid_request",
                       "Provide either 'budget' or 'amount', not both")
    if req.budget is not None:
        return _decimal(req.budget, "budget"), None
    if req.amount is not None:
        return req.amount, _scale(req.amount_scale)
    raise APIError(400, "invalid_amount", "One of 'budget' or 'amount' is required")


def _scaled(values, scale: Scale) -> list[int]:
    return [scale.to_units(v) for v in values]


def _summary(snap) -> dict:
    return dict(
        pool_id=snap.pool_id,
        n_events=snap.n_events,
        n_outcomes=len(snap.prices),
        b=str(snap.b),
        prices=[str(p) for p in snap.prices],
        num_trades=snap.num_trades,
        status=snap.status,
        created_at=snap.created_at,
    )


def _detail(snap) -> PoolDetail:
    return PoolDetail(
        **_summary(snap),
        q=[str(v) for v in snap.q],
        marginals=[str(v) for v in snap.marginals],
        max_loss=str(max_loss(snap.b, len(snap.q))),
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/v1/health")
async def health() -> HealthResponse:
    return HealthResponse(status="ok", pools=len(app.state.ledger.pools()))


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------

@app.post("/v1/pools", status_code=201)
def create_pool(req: CreatePoolRequest) -> PoolDetail:
    """Create a pool. Prior, if given, sets the starting world prices."""
    if req.prior is not None and req.prior_scaled is not None:
        raise APIError(400, "invalid_request",
                       "Provide either 'prior' or 'prior_scaled', not both")
    b = _decimal(req.b, "b") if req.b is not None else DEFAULT_B
    prior = None
    if req.prior is not None:
        prior = [_decimal(p, "prior") for p in req.prior]
    elif req.prior_scaled is not None:
        scale = _scale(req.prior_scale)
        try:
            prior = [scale.from_units(p) for p in req.prior_scaled]
        except MarketError as e:
            raise translate_engine_error(e)

    ledger = app.state.ledger
    try:
        market = ledger.create_market(
            pool_id=req.pool_id,
            n_events=req.n_events if req.n_events is not None else DEFAULT_EVENTS,
            b=b, prior=prior)
        snap = ledger.snapshot(market.id)
    except (MarketError, ValueError) as e:
        raise translate_engine_error(e)
    return _detail(snap)


@app.get("/v1/pools")
def list_pools() -> list[PoolSummary]:
    """List open pools with current prices."""
    ledger = app.state.ledger
    result = []
    for pool_id in ledger.pools():
        try:
            snap = ledger.snapshot(pool_id)
        except MarketError:
            # settled between listing and reading
            continue
        result.append(PoolSummary(**_summary(snap)))
    return result


@app.get("/v1/pools/{pool_id}")
def get_pool(pool_id: int) -> PoolDetail:
    """Full pool detail including LMSR quantities and marginals."""
    try:
        snap = app.state.ledger.snapshot(pool_id)
    except MarketError as e:
        raise translate_engine_error(e)
    return _detail(snap)


@app.get("/v1/pools/{pool_id}/prices")
def get_prices(pool_id: int, scale: int = PRICE_MICROS.factor) -> PricesResponse:
    """World prices, also as integers at `scale`, plus event marginals."""
    price_scale = _scale(scale)
    try:
        snap = app.state.ledger.snapshot(pool_id)
    except MarketError as e:
        raise translate_engine_error(e)
    return PricesResponse(
        pool_id=pool_id,
        prices=[str(p) for p in snap.prices],
        prices_scaled=_scaled(snap.prices, price_scale),
        scale=price_scale.factor,
        marginals=[str(m) for m in snap.marginals],
    )


# ---------------------------------------------------------------------------
# Trading
# ---------------------------------------------------------------------------

@app.post("/v1/pools/{pool_id}/bets")
def place_bet(pool_id: int, req: BetRequest) -> BetResponse:
    """Spend a budget on a marginal, slice or corner bet."""
    budget, amount_scale = _budget(req)
    price_scale = _scale(req.price_scale)
    try:
        bet = parse_bet(req.model_dump())
        result = app.state.ledger.apply_trade(
            pool_id, req.user, bet, budget, amount_scale=amount_scale)
    except MarketError as e:
        raise translate_engine_error(e)
    return BetResponse(
        trade_id=result.trade_id,
        shares=str(result.shares),
        shares_scaled=SHARE_MILLIS.to_units(result.shares),
        prices=[str(p) for p in result.prices],
        prices_scaled=_scaled(result.prices, price_scale),
        commitment=result.commitment,
        outcomes=result.outcomes,
    )


@app.post("/v1/pools/{pool_id}/quote")
def quote(pool_id: int, req: QuoteRequest) -> QuoteResponse:
    """Price a bet without placing it."""
    budget, amount_scale = _budget(req)
    price_scale = _scale(req.price_scale)
    try:
        bet = parse_bet(req.model_dump())
        q = app.state.ledger.quote(pool_id, bet, budget,
                                   amount_scale=amount_scale)
    except MarketError as e:
        raise translate_engine_error(e)
    return QuoteResponse(
        budget=str(q.budget),
        shares=str(q.shares),
        shares_scaled=SHARE_MILLIS.to_units(q.shares),
        prices=[str(p) for p in q.prices],
        prices_scaled=_scaled(q.prices, price_scale),
        outcomes=q.outcomes,
    )


# ---------------------------------------------------------------------------
# Positions, trades, commitments
# ---------------------------------------------------------------------------

def _position_entry(user: str, positions: dict[int, float]) -> PositionEntry:
    return PositionEntry(
        user=user,
        positions={o: str(s) for o, s in positions.items()},
        positions_scaled={o: SHARE_MILLIS.to_units(s)
                          for o, s in positions.items()},
    )


@app.get("/v1/pools/{pool_id}/positions")
def get_positions(pool_id: int) -> list[PositionEntry]:
    """All positions in a pool. Empty once the pool is settled."""
    try:
        entries = app.state.ledger.get_all_positions(pool_id)
    except MarketError as e:
        raise translate_engine_error(e)
    return [_position_entry(e.user, e.positions) for e in entries]


@app.get("/v1/pools/{pool_id}/positions/{user}")
def get_user_position(pool_id: int, user: str) -> PositionEntry:
    try:
        positions = app.state.ledger.get_position(pool_id, user)
    except MarketError as e:
        raise translate_engine_error(e)
    return _position_entry(user, positions)


@app.get("/v1/pools/{pool_id}/trades")
def get_trades(pool_id: int) -> list[TradeResponse]:
    try:
        trades = app.state.ledger.get_trades(pool_id)
    except MarketError as e:
        raise translate_engine_error(e)
    return [
        TradeResponse(
            trade_id=t.id,
            pool_id=t.market_id,
            user=t.user,
            kind=t.kind,
            outcomes=t.outcomes,
            budget=str(t.budget),
            shares=str(t.shares),
            commitment=t.commitment,
            created_at=t.created_at,
        )
        for t in trades
    ]


@app.post("/v1/pools/{pool_id}/commitments/verify")
def verify_commitment(pool_id: int,
                            req: VerifyCommitmentRequest,
                            ) -> VerifyCommitmentResponse:
    """Whether `commitment` was issued to `user` in this pool."""
    try:
        valid = app.state.ledger.verify_commitment(
            pool_id, req.user, req.commitment)
    except MarketError as e:
        raise translate_engine_error(e)
    return VerifyCommitmentResponse(pool_id=pool_id, user=req.user, valid=valid)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

@app.post("/v1/pools/{pool_id}/claim")
def claim(pool_id: int, req: ClaimRequest) -> ClaimResponse:
    """Preview what `user` would be paid if `winning_outcome` is true."""
    payout_scale = _scale(req.payout_scale)
    try:
        c = app.state.resolver.claim(
            pool_id, req.user, req.winning_outcome, payout_scale=payout_scale)
    except MarketError as e:
        raise translate_engine_error(e)
    return ClaimResponse(
        user=c.user,
        winning_outcome=c.winning_outcome,
        shares=str(c.shares),
        shares_scaled=SHARE_MILLIS.to_units(c.shares),
        payout=c.payout,
        commitment=c.commitment,
    )


@app.post("/v1/pools/{pool_id}/resolve")
def resolve(pool_id: int, req: ResolveRequest) -> ResolveResponse:
    """Settle the pool. A repeat resolve pays nothing."""
    payout_scale = _scale(req.payout_scale)
    try:
        s = app.state.resolver.resolve(
            pool_id, req.winning_outcome, payout_scale=payout_scale)
    except MarketError as e:
        raise translate_engine_error(e)
    return ResolveResponse(
        success=True,
        pool_id=s.pool_id,
        winning_outcome=s.winning_outcome,
        payouts=[PayoutEntry(user=p.user, amount=p.amount) for p in s.payouts],
        total_payout=s.total,
        scale=payout_scale.factor,
    )
