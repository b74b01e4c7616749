"""
Market ledger. Owns every pool's LMSR state, positions, commitments and
trades, and is the only thing that mutates them.

One ledger per process, created at startup and passed by handle to whoever
needs it (API app state, CLI, settlement resolver). No module-level state.

Locking protocol:
  - Each pool has its own RWLock (Market.lock). Pools never wait on each
    other.
  - apply_trade holds the pool's WRITE lock for the whole sequence:
    resolve bet -> size order against current q -> compute new prices ->
    commit q, positions, commitment, trade. Two trades can never both price
    against the same pre-trade q.
  - Queries hold the READ lock and copy out, so callers never see a torn
    quantity vector.
  - The pool registry (markets / settled) has its own mutex, held only for
    dict lookups and inserts. Lock order is pool lock -> registry, never the
    reverse.
  - Lock waits are bounded by lock_timeout; expiry is StateUnavailable.

Everything that can fail (bet resolution, sizing, price computation) runs
before the first mutation, so a rejected trade leaves no trace.
"""

import logging
import math
import threading
from typing import Optional, Sequence

from worldmarket.errors import InvalidAmount, InvalidBet, PoolExists, PoolNotFound
from worldmarket.lmsr import marginal_prices, prices, quantities_from_prices
from worldmarket.locks import DEFAULT_TIMEOUT
from worldmarket.models import (
    Market, PoolSnapshot, PositionEntry, Quote, Scale, Trade, TradeResult,
    next_id, _now,
)
from worldmarket.outcomes import BetSpec, check_events, resolve_outcomes
from worldmarket.sizing import check_budget, size_order


logger = logging.getLogger(__name__)

DEFAULT_B = 100.0
DEFAULT_EVENTS = 3


class MarketLedger:

    def __init__(self, lock_timeout: Optional[float] = DEFAULT_TIMEOUT):
        self.lock_timeout = lock_timeout
        self.markets: dict[int, Market] = {}
        self.settled: set[int] = set()
        self._registry = threading.Lock()

    # ------------------------------------------------------------------
    # Pool lifecycle
    # ------------------------------------------------------------------

    def create_market(self, pool_id: Optional[int] = None,
                      n_events: int = DEFAULT_EVENTS,
                      b: float = DEFAULT_B,
                      prior: Optional[Sequence[float]] = None) -> Market:
        """
        Register a pool with 2^n_events worlds.

        Quantities start at zero (uniform prices) unless `prior` gives one
        probability per world, in which case q = b * ln(prior).
        """
        check_events(n_events)
        if isinstance(b, bool) or not isinstance(b, (int, float)) \
                or not math.isfinite(b) or b <= 0:
            raise InvalidAmount(
                f"liquidity parameter must be finite and positive, got {b!r}")
        b = float(b)

        q = None
        if prior is not None:
            prior = list(prior)
            if len(prior) != 1 << n_events:
                raise InvalidAmount(
                    f"prior has {len(prior)} entries, "
                    f"expected {1 << n_events}")
            q = quantities_from_prices(prior, b)
            prices(q, b)

        with self._registry:
            if pool_id is None:
                pool_id = next_id("market")
                while pool_id in self.markets or pool_id in self.settled:
                    pool_id = next_id("market")
            elif pool_id in self.markets or pool_id in self.settled:
                raise PoolExists(f"pool {pool_id} already exists")
            market = Market.new(n_events, b, q=q, pool_id=pool_id)
            self.markets[market.id] = market

        logger.info("created pool %s: %d events, %d worlds, b=%s",
                    market.id, n_events, market.n_outcomes, b)
        return market

    def find(self, pool_id: int) -> Optional[Market]:
        """The live market for pool_id, or None if unknown or settled."""
        with self._registry:
            return self.markets.get(pool_id)

    def is_settled(self, pool_id: int) -> bool:
        with self._registry:
            return pool_id in self.settled

    def retire(self, pool_id: int) -> None:
        """Drop a settled pool from the registry. Caller holds its write lock."""
        with self._registry:
            self.markets.pop(pool_id, None)
            self.settled.add(pool_id)

    def pools(self) -> list[int]:
        with self._registry:
            return sorted(self.markets)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def apply_trade(self, pool_id: int, user: str, bet: BetSpec,
                    budget, amount_scale: Optional[Scale] = None,
                    ) -> TradeResult:
        """
        Spend `budget` on `bet` for `user`. Atomic.

        With `amount_scale`, budget is an integer amount at that scale
        (e.g. AMOUNT_MICROS: 1_000_000 == 1.0).

        A zero budget buys zero shares; the trade and its commitment are
        still recorded, but no position entries are created.
        """
        if not isinstance(user, str) or not user:
            raise InvalidBet(f"user must be a non-empty string, got {user!r}")
        budget = self._budget(budget, amount_scale)
        market = self._get_market(pool_id)

        with market.lock.write(self.lock_timeout):
            self._check_open(market)
            outcomes, shares, new_q, new_prices = self._price(
                market, bet, budget)

            # --- Commit. Nothing below can fail. ---
            market.q = new_q
            if shares > 0:
                market.add_position(user, outcomes, shares)
            commitment = market.commitments.commit(user, outcomes, shares)
            trade = Trade(
                id=next_id("trade"),
                market_id=market.id,
                user=user,
                kind=bet.kind,
                outcomes=outcomes,
                budget=budget,
                shares=shares,
                commitment=commitment.digest,
                created_at=_now(),
            )
            market.trades.append(trade)

        logger.debug("pool %s trade %s: %s bought %.6f shares on %d worlds "
                     "for %s", market.id, trade.id, user, shares,
                     len(outcomes), budget)
        return TradeResult(
            trade_id=trade.id,
            shares=shares,
            prices=new_prices,
            commitment=commitment.digest,
            outcomes=outcomes,
        )

    def quote(self, pool_id: int, bet: BetSpec, budget,
              amount_scale: Optional[Scale] = None) -> Quote:
        """What apply_trade would return, without committing anything."""
        budget = self._budget(budget, amount_scale)
        market = self._get_market(pool_id)
        with market.lock.read(self.lock_timeout):
            self._check_open(market)
            outcomes, shares, _, new_prices = self._price(market, bet, budget)
        return Quote(shares=shares, prices=new_prices, outcomes=outcomes,
                     budget=budget)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_prices(self, pool_id: int) -> list[float]:
        market = self._get_market(pool_id)
        with market.lock.read(self.lock_timeout):
            self._check_open(market)
            return prices(market.q, market.b)

    def get_marginals(self, pool_id: int) -> list[float]:
        """P(event = yes) for every event in the pool."""
        market = self._get_market(pool_id)
        with market.lock.read(self.lock_timeout):
            self._check_open(market)
            return marginal_prices(prices(market.q, market.b),
                                   market.n_events)

    def snapshot(self, pool_id: int) -> PoolSnapshot:
        market = self._get_market(pool_id)
        with market.lock.read(self.lock_timeout):
            self._check_open(market)
            p = prices(market.q, market.b)
            return PoolSnapshot(
                pool_id=market.id,
                b=market.b,
                n_events=market.n_events,
                q=list(market.q),
                prices=p,
                marginals=marginal_prices(p, market.n_events),
                num_trades=len(market.trades),
                status=market.status,
                created_at=market.created_at,
            )

    def get_position(self, pool_id: int, user: str) -> dict[int, float]:
        """{world: shares} for one user. Empty once the pool is settled."""
        market = self._settled_or_market(pool_id)
        if market is None:
            return {}
        with market.lock.read(self.lock_timeout):
            return market.position(user)

    def get_all_positions(self, pool_id: int) -> list[PositionEntry]:
        market = self._settled_or_market(pool_id)
        if market is None:
            return []
        with market.lock.read(self.lock_timeout):
            return [PositionEntry(user=user, positions=dict(pos))
                    for user, pos in sorted(market.positions.items())]

    def get_trades(self, pool_id: int) -> list[Trade]:
        market = self._settled_or_market(pool_id)
        if market is None:
            return []
        with market.lock.read(self.lock_timeout):
            return list(market.trades)

    def verify_commitment(self, pool_id: int, user: str, digest: str) -> bool:
        market = self._settled_or_market(pool_id)
        if market is None:
            return False
        with market.lock.read(self.lock_timeout):
            return market.commitments.verify(user, digest)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _budget(budget, amount_scale: Optional[Scale]) -> float:
        if amount_scale is not None:
            budget = amount_scale.from_units(budget)
        return check_budget(budget)

    @staticmethod
    def _price(market: Market, bet: BetSpec, budget: float):
        outcomes = resolve_outcomes(bet, market.n_events)
        shares, new_q = size_order(market.q, market.b, outcomes, budget)
        return outcomes, shares, new_q, prices(new_q, market.b)

    def _get_market(self, pool_id: int) -> Market:
        with self._registry:
            market = self.markets.get(pool_id)
            settled = pool_id in self.settled
        if market is None:
            if settled:
                raise PoolNotFound(f"pool {pool_id} is settled")
            raise PoolNotFound(f"pool {pool_id} not found")
        return market

    def _settled_or_market(self, pool_id: int) -> Optional[Market]:
        """None for a settled pool; PoolNotFound for one that never existed."""
        with self._registry:
            if pool_id in self.settled:
                return None
        return self._get_market(pool_id)

    @staticmethod
    def _check_open(market: Market) -> None:
        # settlement may have won the race for the lock
        if market.status != "open":
            raise PoolNotFound(f"pool {market.id} is settled")
