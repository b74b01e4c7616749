"""
Data models for the combinatorial market.

Market side only: each pool is one LMSR market over 2^N worlds, with the
positions, commitments and trades that belong to it. There are no balances
here. Moving money is the caller's job; the core reports shares, prices and
payouts.

Quantities, prices and shares are floats. Callers that speak integers pick an
explicit Scale (see below) at the boundary; nothing in the core assumes one.
"""

import math
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from worldmarket.commitments import CommitmentLog
from worldmarket.errors import InvalidAmount
from worldmarket.locks import RWLock


# ---------------------------------------------------------------------------
# Fixed-point scales
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Scale:
    """
    Fixed-point convention: `units = value * factor`, truncated toward zero.

    Callers have historically mixed several of these (probabilities in basis
    points next to prices in millionths), so a scale is always passed
    explicitly rather than assumed.
    """
    factor: int

    def __post_init__(self):
        if isinstance(self.factor, bool) or not isinstance(self.factor, int) \
                or self.factor <= 0:
            raise InvalidAmount(f"scale factor must be a positive integer, "
                                f"got {self.factor!r}")

    def to_units(self, value: float) -> int:
        if not math.isfinite(value):
            raise InvalidAmount(f"cannot scale non-finite value {value}")
        return int(value * self.factor)

    def from_units(self, units: int) -> float:
        if isinstance(units, bool) or not isinstance(units, int):
            raise InvalidAmount(f"scaled amount must be an integer, got {units!r}")
        return units / self.factor


PROBABILITY_BPS = Scale(10_000)      # world probabilities
PRICE_MICROS = Scale(1_000_000)      # prices in bet responses
SHARE_MILLIS = Scale(1_000)          # share quantities
AMOUNT_MICROS = Scale(1_000_000)     # budgets and payouts (6 dp stablecoin)


# ---------------------------------------------------------------------------
# Sequential IDs
# ---------------------------------------------------------------------------

_counters: dict[str, int] = defaultdict(int)
_counters_lock = threading.Lock()


def next_id(kind: str) -> int:
    """Sequential ID. Kinds: market, trade."""
    with _counters_lock:
        _counters[kind] += 1
        return _counters[kind]


def reset_counters() -> None:
    """Reset all counters. For testing."""
    with _counters_lock:
        _counters.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Market state
# ---------------------------------------------------------------------------

@dataclass
class Trade:
    """One executed bet. The market maker is always the counterparty."""
    id: int
    market_id: int
    user: str
    kind: str               # "marginal", "slice" or "corner"
    outcomes: list[int]
    budget: float
    shares: float           # added to EACH outcome in `outcomes`
    commitment: str
    created_at: str = field(default_factory=_now)


@dataclass
class Market:
    """
    A pool. Owns LMSR state, positions, commitments and trade history.

    q: outstanding shares per world, length 2^n_events
    positions: user -> {world -> shares}; only ever grows until settlement
    lock: guards every field above; see MarketLedger for the protocol
    """
    id: int
    b: float
    n_events: int
    q: list[float]
    positions: dict[str, dict[int, float]] = field(default_factory=dict)
    commitments: CommitmentLog = field(default_factory=CommitmentLog)
    trades: list[Trade] = field(default_factory=list)
    status: str = "open"                       # "open", "resolved"
    created_at: str = field(default_factory=_now)
    resolved_at: Optional[str] = None
    lock: RWLock = field(default_factory=RWLock, repr=False, compare=False)

    @staticmethod
    def new(n_events: int, b: float, q: Optional[list[float]] = None,
            pool_id: Optional[int] = None) -> "Market":
        n_outcomes = 1 << n_events
        return Market(
            id=pool_id if pool_id is not None else next_id("market"),
            b=b,
            n_events=n_events,
            q=list(q) if q is not None else [0.0] * n_outcomes,
        )

    @property
    def n_outcomes(self) -> int:
        return len(self.q)

    def position(self, user: str) -> dict[int, float]:
        return dict(self.positions.get(user, {}))

    def add_position(self, user: str, outcomes: list[int],
                     shares: float) -> None:
        pos = self.positions.setdefault(user, {})
        for outcome in outcomes:
            pos[outcome] = pos.get(outcome, 0.0) + shares

    def purge(self) -> None:
        """Drop everything a settled pool holds."""
        self.q = []
        self.positions = {}
        self.commitments = CommitmentLog()
        self.trades = []


# ---------------------------------------------------------------------------
# Results handed back to callers
# ---------------------------------------------------------------------------

@dataclass
class TradeResult:
    trade_id: int
    shares: float
    prices: list[float]
    commitment: str
    outcomes: list[int]


@dataclass
class Quote:
    shares: float
    prices: list[float]
    outcomes: list[int]
    budget: float


@dataclass
class PoolSnapshot:
    """A consistent read of one pool, taken under its read lock."""
    pool_id: int
    b: float
    n_events: int
    q: list[float]
    prices: list[float]
    marginals: list[float]
    num_trades: int
    status: str
    created_at: str


@dataclass
class PositionEntry:
    user: str
    positions: dict[int, float]


@dataclass
class Payout:
    user: str
    amount: float | int     # int when settled at an explicit scale


@dataclass
class Settlement:
    pool_id: int
    winning_outcome: int
    payouts: list[Payout] = field(default_factory=list)
    total: float | int = 0


@dataclass
class Claim:
    user: str
    winning_outcome: int
    shares: float
    payout: float | int
    commitment: Optional[str]
