"""
Error taxonomy for the market core.

Every engine failure is one of these. The API layer translates them to
structured JSON errors (see api_errors.translate_engine_error); the CLI
reports str(exc).

    InvalidBet          malformed or unsatisfiable bet spec; also an empty or
                        non-string user, since the bettor is part of the bet
      InvalidOutcome    outcome index outside [0, 2^N)
    InvalidAmount       negative / non-finite budget, bad scale or prior
    StateUnavailable    lock wait timed out (transient, safe to retry)
    NumericInstability  overflow, NaN or a search that failed to converge
    PoolNotFound        unknown or already settled pool
    PoolExists          pool id already registered

Resolving an already settled pool is NOT an error; it returns an empty
settlement.
"""


class MarketError(Exception):
    pass


class InvalidBet(MarketError, ValueError):
    pass


class InvalidOutcome(InvalidBet):
    pass


class InvalidAmount(MarketError, ValueError):
    pass


class StateUnavailable(MarketError):
    pass


class NumericInstability(MarketError, ArithmeticError):
    pass


class PoolNotFound(MarketError, LookupError):
    pass


class PoolExists(MarketError, ValueError):
    pass
