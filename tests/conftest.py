"""
Shared fixtures: a fresh SQLite ledger per test, in-process assets and oracle,
and a clock the tests move forward by hand
"""

import os
import sys

import pytest
from sqlalchemy import create_engine

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from raffle_ledger.assets import AssetTransferAdapter
from raffle_ledger.config import ESCROW_ADDRESS, NATIVE_CURRENCY
from raffle_ledger.database import setup_ledger_database
from raffle_ledger.events import EventPublisher
from raffle_ledger.ledger import RaffleLedger
from raffle_ledger.oracle import LocalCoordinator
from raffle_ledger.scheduler import AutomationSweep
from raffle_ledger.tokens import InMemoryToken, NativeBank

DAY = 86400
PRIZE = 1000
PRICE = 10**17  # 0.1 native per entry
START_TIME = 1_700_000_000


class ManualClock:
    def __init__(self, now=START_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    setup_ledger_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def bank():
    return NativeBank({'alice': 100 * 10**18, 'bob': 100 * 10**18, 'carol': 100 * 10**18})


@pytest.fixture
def prize_token():
    token = InMemoryToken('PRIZE', {'host': 10 * PRIZE})
    token.approve('host', ESCROW_ADDRESS, 10 * PRIZE)
    return token


@pytest.fixture
def pay_token():
    token = InMemoryToken('USDC', {'alice': 10**9, 'bob': 10**9})
    token.approve('alice', ESCROW_ADDRESS, 10**9)
    token.approve('bob', ESCROW_ADDRESS, 10**9)
    return token


@pytest.fixture
def assets(bank, prize_token, pay_token):
    return AssetTransferAdapter(native_bank=bank, tokens={'PRIZE': prize_token, 'USDC': pay_token})


@pytest.fixture
def coordinator():
    return LocalCoordinator(address='oracle')


@pytest.fixture
def ledger(engine, assets, coordinator, clock):
    return RaffleLedger(engine, assets, coordinator, publisher=EventPublisher(redis_url=''), clock=clock)


@pytest.fixture
def sweep(ledger):
    return AutomationSweep(ledger, interval=0)


@pytest.fixture
def make_raffle(ledger):
    """Create a raffle with the standard prize, native payment and a one day window"""
    def _make(**overrides):
        params = {
            'host': 'host',
            'prize_asset': 'PRIZE',
            'prize_amount': PRIZE,
            'payment_asset': NATIVE_CURRENCY,
            'price_per_entry': PRICE,
            'max_entries': 100,
            'duration': DAY,
        }
        params.update(overrides)
        return ledger.create_raffle(**params)
    return _make


@pytest.fixture
def alice_and_bob(ledger, make_raffle):
    """Alice buys 60 entries, Bob buys 40; returns the raffle id"""
    raffle_id = make_raffle()
    ledger.enter(raffle_id, 60, 'alice', value=60 * PRICE)
    ledger.enter(raffle_id, 40, 'bob', value=40 * PRICE)
    return raffle_id
