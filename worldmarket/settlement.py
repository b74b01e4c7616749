"""
Settlement. Pays out a pool once its winning world is known, then purges it.

Payout model: every winning share redeems at a flat `redemption_rate`
(default 1.0 per share). Losing shares pay nothing. This deliberately
ignores what the LMSR priced the winning world at; whether a winning share
should be worth more or less than one unit is an open product question, so
the rate is configuration rather than something derived here.

Resolve is atomic and idempotent:
  - under the pool's write lock: compute payouts, purge ALL positions,
    quantities, commitments and trades, mark the pool settled;
  - a second resolve (or one for an unknown pool) returns an empty
    settlement with total 0, and never pays twice.
"""

import logging
import math
from typing import Optional

from worldmarket.errors import InvalidAmount, PoolNotFound
from worldmarket.ledger import MarketLedger
from worldmarket.models import Claim, Payout, Scale, Settlement, _now
from worldmarket.outcomes import corner_outcomes


logger = logging.getLogger(__name__)

DEFAULT_REDEMPTION_RATE = 1.0


class SettlementResolver:

    def __init__(self, ledger: MarketLedger,
                 redemption_rate: float = DEFAULT_REDEMPTION_RATE):
        if isinstance(redemption_rate, bool) \
                or not isinstance(redemption_rate, (int, float)) \
                or not math.isfinite(redemption_rate) or redemption_rate < 0:
            raise InvalidAmount(
                f"redemption rate must be finite and non-negative, "
                f"got {redemption_rate!r}")
        self.ledger = ledger
        self.redemption_rate = float(redemption_rate)

    def _payout(self, shares: float, payout_scale: Optional[Scale]):
        amount = shares * self.redemption_rate
        if payout_scale is not None:
            return payout_scale.to_units(amount)
        return amount

    def resolve(self, pool_id: int, winning_outcome: int,
                payout_scale: Optional[Scale] = None) -> Settlement:
        """
        Settle `pool_id` with `winning_outcome` as the true world.

        Payouts are floats, or integers at `payout_scale` when given.
        Sorted by user.
        """
        empty = Settlement(pool_id=pool_id, winning_outcome=winning_outcome)

        market = self.ledger.find(pool_id)
        if market is None:
            logger.info("pool %s already settled or unknown; nothing to pay",
                        pool_id)
            return empty

        with market.lock.write(self.ledger.lock_timeout):
            if market.status != "open":
                return empty
            corner_outcomes(winning_outcome, market.n_events)

            payouts = []
            for user, pos in sorted(market.positions.items()):
                shares = pos.get(winning_outcome, 0.0)
                if shares > 0:
                    payouts.append(Payout(
                        user=user, amount=self._payout(shares, payout_scale)))
            total = sum((p.amount for p in payouts), 0)

            market.status = "resolved"
            market.resolved_at = _now()
            market.purge()
            self.ledger.retire(pool_id)

        logger.info("settled pool %s on world %s: %d winners, total %s",
                    pool_id, winning_outcome, len(payouts), total)
        return Settlement(pool_id=pool_id, winning_outcome=winning_outcome,
                          payouts=payouts, total=total)

    def claim(self, pool_id: int, user: str, winning_outcome: int,
              payout_scale: Optional[Scale] = None) -> Claim:
        """
        Preview one user's settlement without settling: winning shares,
        payout, and the user's latest commitment as proof of trading.
        """
        market = self.ledger.find(pool_id)
        if market is None:
            raise PoolNotFound(f"pool {pool_id} not found or settled")

        with market.lock.read(self.ledger.lock_timeout):
            if market.status != "open":
                raise PoolNotFound(f"pool {pool_id} is settled")
            corner_outcomes(winning_outcome, market.n_events)
            shares = market.positions.get(user, {}).get(winning_outcome, 0.0)
            commitment = market.commitments.latest(user)

        return Claim(
            user=user,
            winning_outcome=winning_outcome,
            shares=shares,
            payout=self._payout(shares, payout_scale),
            commitment=commitment,
        )
