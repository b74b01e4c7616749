#!/usr/bin/env python3
"""
World market CLI. Offline tools over an in-memory ledger, plus the server.

Usage:
    python3 -m worldmarket.cli outcomes N_EVENTS BET_TYPE [bet options]
    python3 -m worldmarket.cli quote N_EVENTS BET_TYPE BUDGET [bet options] [--b B]
    python3 -m worldmarket.cli replay FILE
    python3 -m worldmarket.cli serve [--host HOST] [--port PORT]

Bet options: --event E --yes/--no (marginal), --condition E=yes|no, repeatable
(slice), --outcome W (corner).

Replay file (JSON):
    {"n_events": 3, "b": 100, "prior": [...],
     "bets": [{"user": "alice", "bet_type": "corner", "outcome": 6,
               "budget": "10"}, ...],
     "resolve": 6}

Output: JSON, one line. {"ok": true, ...} or {"ok": false, "error": "..."}
"""

import argparse
import json
import logging
import os
import sys

from worldmarket.ledger import DEFAULT_B, MarketLedger
from worldmarket.models import PRICE_MICROS, SHARE_MILLIS, AMOUNT_MICROS
from worldmarket.outcomes import parse_bet, resolve_outcomes
from worldmarket.settlement import SettlementResolver


LOG_LEVEL = os.environ.get("WORLDMARKET_LOG_LEVEL", "INFO")
HOST = os.environ.get("WORLDMARKET_HOST", "127.0.0.1")
PORT = int(os.environ.get("WORLDMARKET_PORT", "8000"))


def reply(data):
    print(json.dumps(data))


def bet_from_args(args) -> dict:
    """Wire-form bet dict from the shared bet options."""
    data = {"bet_type": args.bet_type}
    if args.event is not None:
        data["event"] = args.event
    if args.yes is not None:
        data["yes"] = args.yes
    if args.condition:
        conditions = []
        for cond in args.condition:
            event, _, value = cond.partition("=")
            if value not in ("yes", "no"):
                raise ValueError(f"condition must look like E=yes or E=no, "
                                 f"got {cond!r}")
            conditions.append((int(event), value == "yes"))
        data["conditions"] = conditions
    if args.outcome is not None:
        data["outcome"] = args.outcome
    return data


def cmd_outcomes(ledger, args):
    bet = parse_bet(bet_from_args(args))
    return {"ok": True, "outcomes": resolve_outcomes(bet, args.n_events)}


def cmd_quote(ledger, args):
    market = ledger.create_market(n_events=args.n_events, b=float(args.b))
    bet = parse_bet(bet_from_args(args))
    q = ledger.quote(market.id, bet, float(args.budget))
    return {"ok": True,
            "outcomes": q.outcomes,
            "shares": str(q.shares),
            "shares_scaled": SHARE_MILLIS.to_units(q.shares),
            "prices": [str(p) for p in q.prices],
            "prices_scaled": [PRICE_MICROS.to_units(p) for p in q.prices]}


def cmd_replay(ledger, args):
    with open(args.file) as f:
        script = json.load(f)

    market = ledger.create_market(
        n_events=script.get("n_events", 3),
        b=float(script.get("b", DEFAULT_B)),
        prior=script.get("prior"))

    trades = []
    for entry in script.get("bets", []):
        bet = parse_bet(entry)
        result = ledger.apply_trade(market.id, entry.get("user"), bet,
                                    float(entry.get("budget", 0)))
        trades.append({"trade_id": result.trade_id,
                       "user": entry.get("user"),
                       "outcomes": result.outcomes,
                       "shares": str(result.shares),
                       "commitment": result.commitment})

    out = {"ok": True,
           "pool_id": market.id,
           "trades": trades,
           "prices": [str(p) for p in ledger.get_prices(market.id)],
           "positions": {e.user: {str(o): str(s) for o, s in e.positions.items()}
                         for e in ledger.get_all_positions(market.id)}}

    if script.get("resolve") is not None:
        resolver = SettlementResolver(
            ledger, float(script.get("redemption_rate", 1.0)))
        settlement = resolver.resolve(market.id, int(script["resolve"]),
                                      payout_scale=AMOUNT_MICROS)
        out["settlement"] = {
            "winning_outcome": settlement.winning_outcome,
            "payouts": {p.user: p.amount for p in settlement.payouts},
            "total": settlement.total,
        }
    return out


def cmd_serve(ledger, args):
    import uvicorn
    uvicorn.run("worldmarket.api:app", host=args.host, port=args.port,
                log_level=LOG_LEVEL.lower())
    return {"ok": True}


def add_bet_options(p):
    p.add_argument("bet_type", choices=["marginal", "slice", "corner"])
    p.add_argument("--event", type=int, default=None)
    p.add_argument("--yes", dest="yes", action="store_true", default=None)
    p.add_argument("--no", dest="yes", action="store_false", default=None)
    p.add_argument("--condition", action="append", default=[],
                   help="E=yes or E=no; repeat for each event in a slice")
    p.add_argument("--outcome", type=int, default=None)


def build_parser():
    parser = argparse.ArgumentParser(description="World market CLI")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("outcomes")
    p.add_argument("n_events", type=int)
    add_bet_options(p)

    p = sub.add_parser("quote")
    p.add_argument("n_events", type=int)
    add_bet_options(p)
    p.add_argument("budget")
    p.add_argument("--b", default=str(DEFAULT_B),
                   help="Liquidity parameter (default 100)")

    p = sub.add_parser("replay")
    p.add_argument("file")

    p = sub.add_parser("serve")
    p.add_argument("--host", default=HOST)
    p.add_argument("--port", type=int, default=PORT)
    return parser


COMMANDS = {
    "outcomes": cmd_outcomes,
    "quote": cmd_quote,
    "replay": cmd_replay,
    "serve": cmd_serve,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        result = COMMANDS[args.command](MarketLedger(), args)
        reply(result)
    except Exception as e:
        reply({"ok": False, "error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
