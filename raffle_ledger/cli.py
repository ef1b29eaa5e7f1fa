"""
Raffle ledger command line

Examples:
  # Create the schema in DATABASE_URL
  python -m raffle_ledger init-db

  # Which raffle would the sweep settle next?
  python -m raffle_ledger scan

  # Inspect a raffle and its emitted records
  python -m raffle_ledger show 1
  python -m raffle_ledger events 1

  # Publishable substitute value for manual resolution
  python -m raffle_ledger proof 1

  # Full lifecycle against in-process assets and oracle
  python -m raffle_ledger demo --database-url sqlite:///demo.db
"""

import argparse
import json
import logging
import sys
import time

from . import config
from .assets import AssetTransferAdapter
from .database import get_engine, setup_ledger_database, verify_ledger_schema
from .events import EventPublisher
from .exceptions import LedgerError
from .ledger import RaffleLedger
from .logging_config import setup_logging
from .oracle import LocalCoordinator
from .provably_fair import generate_substitute_value
from .scheduler import AutomationSweep
from .tokens import InMemoryToken, NativeBank

logger = logging.getLogger(__name__)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _read_only_ledger(engine):
    return RaffleLedger(engine, AssetTransferAdapter(), publisher=EventPublisher(redis_url=''))


def cmd_init_db(args, engine):
    setup_ledger_database(engine)
    status = verify_ledger_schema(engine)
    for table, ok in status.items():
        print(f"   {'✓' if ok else '✗'} {table}")
    return 0 if all(status.values()) else 1


def cmd_scan(args, engine):
    sweep = AutomationSweep(_read_only_ledger(engine))
    needed, raffle_id = sweep.check_upkeep()
    _print_json({'expired_open': sweep.scan(), 'upkeep_needed': needed, 'next_raffle_id': raffle_id})
    return 0


def cmd_show(args, engine):
    ledger = _read_only_ledger(engine)
    raffle = ledger.get_raffle(args.raffle_id)
    raffle['pending_request'] = ledger.pending_request(args.raffle_id)
    raffle['positions'] = ledger.get_positions(args.raffle_id)
    _print_json(raffle)
    return 0


def cmd_events(args, engine):
    _print_json(_read_only_ledger(engine).get_events(args.raffle_id))
    return 0


def cmd_proof(args, engine):
    raffle = _read_only_ledger(engine).get_raffle(args.raffle_id)
    _print_json(generate_substitute_value(raffle, server_seed=args.seed))
    return 0


def cmd_demo(args, engine):
    """Two entrants, one expiry, one oracle delivery"""
    setup_ledger_database(engine)

    offset = [0]
    token = InMemoryToken("PRIZE", {"host": 1000})
    bank = NativeBank({"alice": 10**18, "bob": 10**18})
    assets = AssetTransferAdapter(native_bank=bank, tokens={"PRIZE": token})
    token.approve("host", assets.escrow_address, 1000)

    coordinator = LocalCoordinator()
    ledger = RaffleLedger(engine, assets, coordinator,
                          publisher=EventPublisher(redis_url=''),
                          clock=lambda: time.time() + offset[0])
    sweep = AutomationSweep(ledger)

    price = 10**17
    raffle_id = ledger.create_raffle("host", "PRIZE", 1000, config.NATIVE_CURRENCY, price, 100, 86400)
    ledger.enter(raffle_id, 60, "alice", value=60 * price)
    ledger.enter(raffle_id, 40, "bob", value=40 * price)

    offset[0] = 86400
    outcomes = sweep.run_until_idle()
    for outcome in outcomes:
        if outcome['action'] == 'randomness_requested':
            coordinator.fulfill(outcome['request_id'], [args.value] if args.value is not None else None)

    raffle = ledger.get_raffle(raffle_id)
    print(f"Raffle #{raffle_id}: {raffle['status']}, winner {raffle['winner']}")
    print(f"Prize balances: alice={token.balance_of('alice')} bob={token.balance_of('bob')}")
    return 0


def main(argv=None):
    setup_logging(log_level=config.LOG_LEVEL, log_file=config.LOG_FILE)

    parser = argparse.ArgumentParser(
        prog="raffle_ledger",
        description="Raffle escrow ledger tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--database-url', help='Override DATABASE_URL')

    sub = parser.add_subparsers(dest='command')

    sub.add_parser('init-db', help='Create ledger tables')
    sub.add_parser('scan', help='Show the next raffle the sweep would settle')

    show = sub.add_parser('show', help='Show one raffle')
    show.add_argument('raffle_id', type=int)

    events = sub.add_parser('events', help='List emitted records')
    events.add_argument('raffle_id', type=int, nargs='?')

    proof = sub.add_parser('proof', help='Generate a verifiable substitute random value')
    proof.add_argument('raffle_id', type=int)
    proof.add_argument('--seed', help='Server seed to use instead of a fresh one')

    demo = sub.add_parser('demo', help='Run a full raffle lifecycle in-process')
    demo.add_argument('--value', type=int, help='Random value to deliver (default: random)')

    args = parser.parse_args(argv)

    commands = {
        'init-db': cmd_init_db,
        'scan': cmd_scan,
        'show': cmd_show,
        'events': cmd_events,
        'proof': cmd_proof,
        'demo': cmd_demo,
    }
    if args.command not in commands:
        parser.print_help()
        return 1

    engine = get_engine(args.database_url)
    try:
        return commands[args.command](args, engine)
    except LedgerError as e:
        print(f"❌ {type(e).__name__}: {e}", file=sys.stderr)
        return 2
