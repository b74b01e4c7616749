"""
LMSR (Logarithmic Market Scoring Rule). Pure math, no state.

All functions take a quantity vector indexed by world and return plain
floats. The caller (market ledger) handles state, locking and rounding.

Notation:
    q: list of quantities sold per world, length 2^N
    b: float, liquidity parameter (higher = deeper book, max loss = b * ln(n))

Every exp() is taken after subtracting max(q / b), so large accumulated
quantities cannot overflow. Anything that still comes out non-finite raises
NumericInstability rather than leaking a corrupted price.
"""

import math
from typing import Iterable, Sequence

from worldmarket.errors import InvalidAmount, NumericInstability


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _scaled(q: Sequence[float], b: float) -> list[float]:
    """q / b, validated."""
    if not math.isfinite(b) or b <= 0:
        raise NumericInstability(f"liquidity parameter must be finite and "
                                 f"positive, got {b}")
    if not q:
        raise NumericInstability("empty quantity vector")
    scaled = [v / b for v in q]
    if not all(math.isfinite(x) for x in scaled):
        raise NumericInstability("non-finite quantity in market state")
    return scaled


def _log_sum_exp(xs: list[float]) -> float:
    """ln Σ e^x_i, shifted by max(x) for stability."""
    m = max(xs)
    return m + math.log(sum(math.exp(x - m) for x in xs))


# ---------------------------------------------------------------------------
# Core functions
# ---------------------------------------------------------------------------

def cost(q: Sequence[float], b: float) -> float:
    """
    Cost function: C(q) = b * ln(Σ e^(q_i / b))

    Total collected by the market maker relative to a zero state. Only
    differences matter: a trade costs C(after) - C(before).
    """
    result = b * _log_sum_exp(_scaled(q, b))
    if not math.isfinite(result):
        raise NumericInstability(f"cost function overflowed (b={b})")
    return result


def prices(q: Sequence[float], b: float) -> list[float]:
    """
    Current price (probability) of every world.

    p_i = e^(q_i / b) / Σ e^(q_j / b)

    Softmax over q/b. Sums to 1; each entry strictly inside (0, 1) unless
    there is only one world, whose price is exactly 1.
    """
    scaled = _scaled(q, b)
    m = max(scaled)
    exps = [math.exp(x - m) for x in scaled]
    total = sum(exps)
    result = [e / total for e in exps]
    if len(result) > 1 and not all(0.0 < p < 1.0 for p in result):
        raise NumericInstability(
            "price underflow: quantity spread too wide for liquidity "
            f"b={b}")
    return result


def basket_cost(q: Sequence[float], b: float, outcomes: Iterable[int],
                delta: float) -> tuple[float, list[float]]:
    """
    Cost of adding `delta` shares to EVERY world in `outcomes`.

    Returns (cost, new_q). Marginal and slice bets are baskets; a corner
    bet is a basket of one.
    """
    new_q = list(q)
    for i in outcomes:
        new_q[i] += delta
    return cost(new_q, b) - cost(q, b), new_q


def max_loss(b: float, n: int) -> float:
    """Maximum market maker loss: b * ln(n). The required initial subsidy."""
    return b * math.log(n)


# ---------------------------------------------------------------------------
# Priors and marginals
# ---------------------------------------------------------------------------

def quantities_from_prices(p: Sequence[float], b: float) -> list[float]:
    """
    Inverse of prices(): q_i = b * ln(p_i).

    Any additive constant gives the same prices; this picks the one where
    a world priced at 1 would sit at zero. Prices need not sum exactly to 1
    (rounded inputs), but every one must be positive.
    """
    if not math.isfinite(b) or b <= 0:
        raise NumericInstability(f"liquidity parameter must be finite and "
                                 f"positive, got {b}")
    if not p:
        raise InvalidAmount("empty prior")
    for value in p:
        if not math.isfinite(value) or value <= 0:
            raise InvalidAmount(
                f"prior probabilities must be positive, got {value}")
    return [b * math.log(value) for value in p]


def marginal_prices(p: Sequence[float], n_events: int) -> list[float]:
    """
    P(event = yes) for each event: the sum of world prices whose event bit
    is set. Worlds are MSB-first, so event 0 is the highest bit.
    """
    result = []
    for event in range(n_events):
        shift = n_events - 1 - event
        result.append(sum(v for world, v in enumerate(p)
                          if (world >> shift) & 1))
    return result
