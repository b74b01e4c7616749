"""
Order sizing. Turns a budget into a share quantity.

Given current quantities q, a set of worlds W and a budget, find `shares`
such that adding `shares` to every world in W costs `budget`:

    C(q + shares * 1_W) - C(q) = budget

C is strictly increasing in every q_i, so the left side is strictly
increasing in `shares` and the root is unique. Bisection:

  1. Bracket: start at budget * UPPER_BOUND_FACTOR, double until the
     spend exceeds the budget (at most MAX_EXPANSIONS times).
  2. Halve the bracket until the residual |spend - budget| is within
     tolerance, for at most `max_iterations` rounds.

If either step runs out, or the bracket collapses to adjacent floats without
meeting the tolerance, NumericInstability is raised. An under-converged
answer is never returned.

Tolerance is relative to the budget, floored at a few ulps of the cost
level: C(q) can be large, and a difference of two large costs cannot
resolve anything finer than that. When that floor would exceed
MAX_RELATIVE_ERROR of the budget (a tiny budget against a large cost level,
e.g. 1e-9 with every q_i near 1e7), the order is refused with
NumericInstability rather than sized to a fraction of its true error.
"""

import math
from typing import Iterable, Sequence

from worldmarket.errors import (
    InvalidAmount, InvalidBet, InvalidOutcome, NumericInstability,
)
from worldmarket.lmsr import basket_cost, cost


UPPER_BOUND_FACTOR = 100.0
MAX_EXPANSIONS = 64
MAX_ITERATIONS = 200
DEFAULT_TOLERANCE = 1e-9
MAX_RELATIVE_ERROR = 1e-6


def check_budget(budget) -> float:
    """Budget as a float. Negative, non-finite or non-numeric is an error."""
    if isinstance(budget, bool) or not isinstance(budget, (int, float)):
        raise InvalidAmount(f"budget must be a number, got {budget!r}")
    budget = float(budget)
    if not math.isfinite(budget):
        raise InvalidAmount(f"budget must be finite, got {budget}")
    if budget < 0:
        raise InvalidAmount(f"budget must be non-negative, got {budget}")
    return budget


def size_order(q: Sequence[float], b: float, outcomes: Iterable[int],
               budget: float, tolerance: float = DEFAULT_TOLERANCE,
               max_iterations: int = MAX_ITERATIONS,
               ) -> tuple[float, list[float]]:
    """
    Shares bought for `budget` on every world in `outcomes`.

    Returns (shares, new_q). A zero budget buys nothing and returns an
    unchanged copy of q. A budget too small to resolve against the current
    cost level raises NumericInstability.
    """
    budget = check_budget(budget)
    outcomes = list(outcomes)
    if not outcomes:
        raise InvalidBet("bet covers no outcomes (conflicting conditions?)")
    if len(set(outcomes)) != len(outcomes):
        raise InvalidBet(f"duplicate outcomes in {outcomes}")
    for i in outcomes:
        if not 0 <= i < len(q):
            raise InvalidOutcome(f"outcome {i} out of range [0, {len(q)})")

    if budget == 0:
        return 0.0, list(q)

    base = cost(q, b)
    floor = 4 * math.ulp(abs(base) + budget)
    if floor > budget * MAX_RELATIVE_ERROR:
        raise NumericInstability(
            f"budget {budget} is below the resolution {floor} of the "
            f"current cost level {base}")
    tol = max(tolerance * budget, floor)

    def spend(shares: float) -> tuple[float, list[float]]:
        return basket_cost(q, b, outcomes, shares)

    lo, hi = 0.0, budget * UPPER_BOUND_FACTOR
    for _ in range(MAX_EXPANSIONS):
        spent, _ = spend(hi)
        if spent >= budget:
            break
        lo, hi = hi, hi * 2
    else:
        raise NumericInstability(
            f"could not bracket budget {budget} (upper bound {hi})")

    for _ in range(max_iterations):
        mid = (lo + hi) / 2
        spent, new_q = spend(mid)
        if abs(spent - budget) <= tol:
            return mid, new_q
        if not lo < mid < hi:
            break
        if spent < budget:
            lo = mid
        else:
            hi = mid

    raise NumericInstability(
        f"order sizing did not converge for budget {budget}: "
        f"bracket [{lo}, {hi}], residual {abs(spent - budget)}")
