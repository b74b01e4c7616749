"""
Outcome indexing. Translates a bet into the set of worlds it pays out in.

A world is an integer in [0, 2^N). Bit N-1-event holds event `event`, so
event 0 is the most significant bit:

    N = 3, world 6 = 0b110  ->  A=yes, B=yes, C=no

Three kinds of bet, a closed set:

    Marginal(event, yes)   one event's truth value; 2^(N-1) worlds
    Slice(conditions)      several (event, yes) pairs; every world that
                           agrees with all of them
    Corner(outcome)        exactly one world

All functions here are pure. Results are sorted ascending.
"""

from dataclasses import dataclass
from typing import ClassVar, Iterable, Union

from worldmarket.errors import InvalidBet, InvalidOutcome


MAX_EVENTS = 20


def _index(value, name: str) -> int:
    # bool is an int subclass; 3.9 or "3" is a typo, not an index
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidBet(f"{name} must be an integer, got {value!r}")
    return value


def _truth(value, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidBet(f"{name} must be true or false, got {value!r}")
    return value


@dataclass(frozen=True)
class Marginal:
    kind: ClassVar[str] = "marginal"
    event: int
    yes: bool

    def __post_init__(self):
        _index(self.event, "event")
        _truth(self.yes, "yes")


@dataclass(frozen=True)
class Slice:
    kind: ClassVar[str] = "slice"
    conditions: tuple[tuple[int, bool], ...] = ()

    def __post_init__(self):
        conditions = []
        for cond in self.conditions:
            if not isinstance(cond, (list, tuple)) or len(cond) != 2:
                raise InvalidBet(
                    f"condition must be an (event, yes) pair, got {cond!r}")
            event, yes = cond
            conditions.append((_index(event, "condition event"),
                               _truth(yes, "condition value")))
        object.__setattr__(self, "conditions", tuple(conditions))


@dataclass(frozen=True)
class Corner:
    kind: ClassVar[str] = "corner"
    outcome: int

    def __post_init__(self):
        _index(self.outcome, "outcome")


BetSpec = Union[Marginal, Slice, Corner]


def check_events(n_events: int) -> None:
    if isinstance(n_events, bool) or not isinstance(n_events, int) \
            or not 0 <= n_events <= MAX_EVENTS:
        raise ValueError(
            f"n_events must be an integer in [0, {MAX_EVENTS}], "
            f"got {n_events!r}")


def _check_event(event: int, n_events: int) -> None:
    if not 0 <= event < n_events:
        raise InvalidBet(f"event {event} out of range for {n_events} events")


def _bit(world: int, event: int, n_events: int) -> bool:
    return (world >> (n_events - 1 - event)) & 1 == 1


# ---------------------------------------------------------------------------
# Per-kind resolution
# ---------------------------------------------------------------------------

def marginal_outcomes(event: int, yes: bool, n_events: int) -> list[int]:
    _check_event(event, n_events)
    return [w for w in range(1 << n_events)
            if _bit(w, event, n_events) == yes]


def slice_outcomes(conditions: Iterable[tuple[int, bool]],
                   n_events: int) -> list[int]:
    """
    Worlds consistent with every condition. No conditions -> all worlds.
    Contradictory conditions (same event, both values) -> [].
    """
    conditions = list(conditions)
    for event, _ in conditions:
        _check_event(event, n_events)
    return [w for w in range(1 << n_events)
            if all(_bit(w, event, n_events) == yes
                   for event, yes in conditions)]


def corner_outcomes(outcome: int, n_events: int) -> list[int]:
    if not 0 <= outcome < (1 << n_events):
        raise InvalidOutcome(
            f"outcome {outcome} out of range [0, {1 << n_events})")
    return [outcome]


def resolve_outcomes(bet: BetSpec, n_events: int) -> list[int]:
    """The worlds `bet` covers in an N-event market."""
    if isinstance(bet, Marginal):
        return marginal_outcomes(bet.event, bet.yes, n_events)
    if isinstance(bet, Slice):
        return slice_outcomes(bet.conditions, n_events)
    if isinstance(bet, Corner):
        return corner_outcomes(bet.outcome, n_events)
    raise InvalidBet(f"unsupported bet spec: {bet!r}")


# ---------------------------------------------------------------------------
# Wire form
# ---------------------------------------------------------------------------

def _required(data: dict, *keys: str):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    raise InvalidBet(f"missing {keys[0]}")


def parse_bet(data: dict) -> BetSpec:
    """
    Build a BetSpec from its wire form:

        {"bet_type": "marginal", "event": 0, "yes": true}
        {"bet_type": "slice", "conditions": [[0, true], [1, false]]}
        {"bet_type": "corner", "outcome": 6}     ("world" also accepted)

    Values are checked, never coerced: "yes": "false" or "outcome": 3.9
    is InvalidBet.
    """
    bet_type = data.get("bet_type")
    if bet_type == "marginal":
        return Marginal(event=_required(data, "event"),
                        yes=_required(data, "yes"))
    if bet_type == "slice":
        conditions = _required(data, "conditions")
        if not isinstance(conditions, (list, tuple)):
            raise InvalidBet(f"conditions must be a list, got {conditions!r}")
        return Slice(conditions)
    if bet_type == "corner":
        return Corner(outcome=_required(data, "outcome", "world"))
    raise InvalidBet(f"invalid bet_type: {bet_type!r}")
