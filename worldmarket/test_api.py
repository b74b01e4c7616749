"""
API tests. Uses httpx AsyncClient with FastAPI's ASGI transport.

Covers:
- Pool creation, listing, detail and prices
- Full betting lifecycle via HTTP (bet, positions, trades, commitments)
- Claim preview and resolution
- Error envelope and status codes for every engine failure
"""

import asyncio
import math

import pytest
from httpx import ASGITransport, AsyncClient

from worldmarket.api import app
from worldmarket.ledger import MarketLedger
from worldmarket.models import reset_counters
from worldmarket.settlement import SettlementResolver


@pytest.fixture
async def client():
    """Fresh ledger with pool 0 (3 events, b=100) for each test."""
    reset_counters()
    ledger = MarketLedger(lock_timeout=0.05)
    ledger.create_market(pool_id=0, n_events=3, b=100.0)
    app.state.ledger = ledger
    app.state.resolver = SettlementResolver(ledger)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _bet(client, user="alice", pool_id=0, **bet):
    bet.setdefault("bet_type", "corner")
    bet.setdefault("budget", "1")
    resp = await client.post(f"/v1/pools/{pool_id}/bets",
                             json={"user": user, **bet})
    return resp


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/v1/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "pools": 1}


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------

class TestPools:
    async def test_list_pools(self, client):
        resp = await client.get("/v1/pools")
        assert resp.status_code == 200
        [pool] = resp.json()
        assert pool["pool_id"] == 0
        assert pool["n_outcomes"] == 8
        assert pool["prices"] == ["0.125"] * 8
        assert pool["status"] == "open"

    async def test_get_pool(self, client):
        resp = await client.get("/v1/pools/0")
        assert resp.status_code == 200
        data = resp.json()
        assert data["b"] == "100.0"
        assert data["q"] == ["0.0"] * 8
        assert [float(m) for m in data["marginals"]] == pytest.approx([0.5] * 3)
        assert float(data["max_loss"]) == pytest.approx(100.0 * math.log(8))

    async def test_prices(self, client):
        resp = await client.get("/v1/pools/0/prices")
        assert resp.status_code == 200
        data = resp.json()
        assert data["prices_scaled"] == [125_000] * 8
        assert data["scale"] == 1_000_000

        resp = await client.get("/v1/pools/0/prices", params={"scale": 10_000})
        assert resp.json()["prices_scaled"] == [1250] * 8

    async def test_prices_bad_scale(self, client):
        resp = await client.get("/v1/pools/0/prices", params={"scale": 0})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_amount"

    async def test_unknown_pool(self, client):
        resp = await client.get("/v1/pools/7")
        assert resp.status_code == 404
        assert _error_code(resp) == "pool_not_found"

    async def test_create_pool(self, client):
        resp = await client.post("/v1/pools",
                                 json={"pool_id": 5, "n_events": 2, "b": "50"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["pool_id"] == 5
        assert data["n_outcomes"] == 4
        assert data["prices"] == ["0.25"] * 4

        resp = await client.get("/v1/pools")
        assert [p["pool_id"] for p in resp.json()] == [0, 5]

    async def test_create_pool_with_scaled_prior(self, client):
        resp = await client.post("/v1/pools", json={
            "n_events": 2, "prior_scaled": [4000, 3000, 2000, 1000]})
        assert resp.status_code == 201
        prices = [float(p) for p in resp.json()["prices"]]
        assert prices == pytest.approx([0.4, 0.3, 0.2, 0.1])

    async def test_create_pool_errors(self, client):
        resp = await client.post("/v1/pools", json={"pool_id": 0})
        assert resp.status_code == 409
        assert _error_code(resp) == "pool_exists"

        resp = await client.post("/v1/pools", json={"b": "lots"})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_amount"

        resp = await client.post("/v1/pools",
                                 json={"n_events": 2, "prior": ["0.5", "0.5"]})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_amount"

        resp = await client.post("/v1/pools", json={"n_events": 25})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Betting
# ---------------------------------------------------------------------------

class TestBetting:
    async def test_corner_bet(self, client):
        resp = await _bet(client, outcome=3)
        assert resp.status_code == 200
        data = resp.json()
        assert data["trade_id"] == 1
        assert data["outcomes"] == [3]
        assert float(data["shares"]) > 0
        assert data["shares_scaled"] == int(float(data["shares"]) * 1000)
        assert len(data["prices_scaled"]) == 8
        assert data["prices_scaled"][3] > 125_000
        assert sum(float(p) for p in data["prices"]) == pytest.approx(1.0)
        assert len(data["commitment"]) == 64

    async def test_marginal_and_slice_bets(self, client):
        resp = await _bet(client, bet_type="marginal", event=0, yes=True)
        assert resp.json()["outcomes"] == [4, 5, 6, 7]

        resp = await _bet(client, bet_type="slice",
                          conditions=[[0, True], [1, True]])
        assert resp.json()["outcomes"] == [6, 7]

    async def test_world_alias(self, client):
        resp = await _bet(client, world=6)
        assert resp.json()["outcomes"] == [6]

    async def test_scaled_amount_matches_quote(self, client):
        quote = await client.post("/v1/pools/0/quote", json={
            "bet_type": "corner", "outcome": 2, "budget": "2.5"})
        assert quote.status_code == 200

        resp = await client.post("/v1/pools/0/bets", json={
            "user": "alice", "bet_type": "corner", "outcome": 2,
            "amount": 2_500_000})
        assert resp.status_code == 200
        assert resp.json()["shares"] == quote.json()["shares"]
        assert resp.json()["prices"] == quote.json()["prices"]

    async def test_quote_commits_nothing(self, client):
        await client.post("/v1/pools/0/quote", json={
            "bet_type": "corner", "outcome": 2, "budget": "5"})
        resp = await client.get("/v1/pools/0/prices")
        assert resp.json()["prices_scaled"] == [125_000] * 8
        resp = await client.get("/v1/pools/0/trades")
        assert resp.json() == []

    async def test_price_scale(self, client):
        resp = await _bet(client, outcome=0, price_scale=10_000)
        data = resp.json()
        assert data["prices_scaled"] == [int(float(p) * 10_000)
                                         for p in data["prices"]]

    async def test_budget_and_amount_conflict(self, client):
        resp = await _bet(client, outcome=1, amount=1_000_000)
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_request"

    async def test_missing_budget(self, client):
        resp = await client.post("/v1/pools/0/bets", json={
            "user": "alice", "bet_type": "corner", "outcome": 1})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_amount"

    async def test_bet_errors(self, client):
        resp = await _bet(client, outcome=8)
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_outcome"

        resp = await _bet(client, bet_type="straddle")
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_bet"

        resp = await _bet(client, bet_type="slice",
                          conditions=[[0, True], [0, False]])
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_bet"

        resp = await _bet(client, user="", outcome=1)
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_bet"

        resp = await _bet(client, outcome=1, budget="-1")
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_amount"

        resp = await _bet(client, outcome=1, budget="one")
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_amount"

        resp = await _bet(client, pool_id=9, outcome=1)
        assert resp.status_code == 404
        assert _error_code(resp) == "pool_not_found"

        # nothing above touched the pool
        resp = await client.get("/v1/pools/0/trades")
        assert resp.json() == []

    async def test_numeric_instability(self, client):
        await client.post("/v1/pools",
                          json={"pool_id": 1, "n_events": 1, "b": "1"})
        resp = await _bet(client, pool_id=1, outcome=1, budget="1000")
        assert resp.status_code == 422
        assert _error_code(resp) == "numeric_instability"

    async def test_lock_contention(self, client):
        market = app.state.ledger.find(0)
        with market.lock.write():
            resp = await client.get("/v1/pools/0/prices")
        assert resp.status_code == 503
        assert _error_code(resp) == "state_unavailable"
        assert resp.headers["retry-after"] == "1"

    async def test_lock_wait_does_not_block_event_loop(self, client):
        app.state.ledger.lock_timeout = 2.0
        market = app.state.ledger.find(0)
        with market.lock.write():
            pending = asyncio.create_task(client.get("/v1/pools/0/prices"))
            resp = await client.get("/v1/health")
            assert resp.status_code == 200
            assert not pending.done()
        resp = await pending
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Positions, trades, commitments
# ---------------------------------------------------------------------------

class TestQueries:
    async def test_positions(self, client):
        bet = (await _bet(client, outcome=3)).json()
        await _bet(client, user="bob", bet_type="marginal", event=2, yes=False)

        resp = await client.get("/v1/pools/0/positions/alice")
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"] == "alice"
        assert data["positions"] == {"3": bet["shares"]}
        assert data["positions_scaled"] == {"3": bet["shares_scaled"]}

        resp = await client.get("/v1/pools/0/positions")
        assert [e["user"] for e in resp.json()] == ["alice", "bob"]
        assert sorted(resp.json()[1]["positions"]) == ["0", "2", "4", "6"]

    async def test_unknown_user_has_no_position(self, client):
        resp = await client.get("/v1/pools/0/positions/nobody")
        assert resp.status_code == 200
        assert resp.json()["positions"] == {}

    async def test_trades(self, client):
        bet = (await _bet(client, outcome=5, budget="2")).json()
        resp = await client.get("/v1/pools/0/trades")
        [trade] = resp.json()
        assert trade["trade_id"] == bet["trade_id"]
        assert trade["user"] == "alice"
        assert trade["kind"] == "corner"
        assert trade["budget"] == "2.0"
        assert trade["commitment"] == bet["commitment"]

    async def test_verify_commitment(self, client):
        bet = (await _bet(client, outcome=5)).json()
        resp = await client.post("/v1/pools/0/commitments/verify", json={
            "user": "alice", "commitment": bet["commitment"]})
        assert resp.json()["valid"] is True

        resp = await client.post("/v1/pools/0/commitments/verify", json={
            "user": "bob", "commitment": bet["commitment"]})
        assert resp.json()["valid"] is False


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class TestSettlement:
    async def test_claim_preview(self, client):
        bet = (await _bet(client, outcome=6, budget="3")).json()
        resp = await client.post("/v1/pools/0/claim", json={
            "user": "alice", "winning_outcome": 6})
        assert resp.status_code == 200
        data = resp.json()
        assert data["shares"] == bet["shares"]
        assert data["payout"] == int(float(bet["shares"]) * 1_000_000)
        assert data["commitment"] == bet["commitment"]

        # still open
        resp = await client.get("/v1/pools/0")
        assert resp.json()["status"] == "open"

    async def test_resolve(self, client):
        alice = (await _bet(client, bet_type="marginal", event=0, yes=True,
                            budget="10")).json()
        await _bet(client, user="bob", bet_type="marginal", event=0, yes=False,
                   budget="10")

        resp = await client.post("/v1/pools/0/resolve",
                                 json={"winning_outcome": 6})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["scale"] == 1_000_000
        expected = int(float(alice["shares"]) * 1_000_000)
        assert data["payouts"] == [{"user": "alice", "amount": expected}]
        assert data["total_payout"] == expected

    async def test_resolve_twice_pays_once(self, client):
        await _bet(client, outcome=1, budget="5")
        first = await client.post("/v1/pools/0/resolve",
                                  json={"winning_outcome": 1})
        assert first.json()["total_payout"] > 0

        second = await client.post("/v1/pools/0/resolve",
                                   json={"winning_outcome": 1})
        assert second.status_code == 200
        assert second.json()["payouts"] == []
        assert second.json()["total_payout"] == 0

    async def test_settled_pool(self, client):
        await _bet(client, outcome=1, budget="5")
        await client.post("/v1/pools/0/resolve", json={"winning_outcome": 1})

        resp = await client.get("/v1/pools/0/positions")
        assert resp.status_code == 200
        assert resp.json() == []

        resp = await client.get("/v1/pools/0/prices")
        assert resp.status_code == 404

        resp = await _bet(client, outcome=1)
        assert resp.status_code == 404
        assert _error_code(resp) == "pool_not_found"

        resp = await client.post("/v1/pools/0/claim", json={
            "user": "alice", "winning_outcome": 1})
        assert resp.status_code == 404

        resp = await client.get("/v1/health")
        assert resp.json()["pools"] == 0

    async def test_resolve_invalid_outcome(self, client):
        resp = await client.post("/v1/pools/0/resolve",
                                 json={"winning_outcome": 8})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_outcome"

        resp = await client.get("/v1/pools/0")
        assert resp.status_code == 200
