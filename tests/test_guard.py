"""
Test the reentrancy guard
Nested calls from transfer hooks and concurrent calls from other threads
"""

import threading

import pytest

from conftest import DAY, PRICE
from raffle_ledger.config import ESCROW_ADDRESS
from raffle_ledger.exceptions import AssetTransferFailed, RaffleNotOpen, Reentrant
from raffle_ledger.guard import ReentrancyGuard
from raffle_ledger.registry import CANCELLED, COMPLETED


@pytest.fixture
def cancelled_raffle(ledger, make_raffle, clock):
    raffle_id = make_raffle()
    ledger.enter(raffle_id, 5, 'alice', value=5 * PRICE)
    ledger.enter(raffle_id, 2, 'bob', value=2 * PRICE)
    clock.advance(DAY)
    ledger.cancel(raffle_id)
    return raffle_id


def test_refund_hook_cannot_claim_twice(ledger, bank, cancelled_raffle):
    attempts = []

    def greedy(sender, amount):
        try:
            ledger.claim_refund(cancelled_raffle, 'alice')
        except Reentrant as e:
            attempts.append(e)

    bank.on_receive('alice', greedy)
    before = bank.balance_of('alice')

    assert ledger.claim_refund(cancelled_raffle, 'alice') == 5 * PRICE

    assert len(attempts) == 1
    assert bank.balance_of('alice') == before + 5 * PRICE
    assert bank.balance_of(ESCROW_ADDRESS) == 2 * PRICE
    assert not ledger.guard.locked


def test_hook_cannot_reach_other_entry_points(ledger, bank, make_raffle, cancelled_raffle):
    other = make_raffle()
    attempts = []

    def sneaky(sender, amount):
        for call in (lambda: ledger.enter(other, 1, 'alice', value=PRICE),
                     lambda: ledger.cancel(other),
                     lambda: ledger.resolve_by_index(other, 0)):
            try:
                call()
            except Reentrant:
                attempts.append(True)

    bank.on_receive('alice', sneaky)
    ledger.claim_refund(cancelled_raffle, 'alice')

    assert attempts == [True, True, True]
    assert ledger.get_entrants(other) == []


def test_failed_hook_rolls_refund_back(ledger, bank, cancelled_raffle):
    def hostile(sender, amount):
        ledger.claim_refund(cancelled_raffle, 'alice')

    bank.on_receive('alice', hostile)
    before = bank.balance_of('alice')

    with pytest.raises(AssetTransferFailed) as exc_info:
        ledger.claim_refund(cancelled_raffle, 'alice')
    assert isinstance(exc_info.value.__cause__, Reentrant)

    assert bank.balance_of('alice') == before
    assert ledger.entry_count_of(cancelled_raffle, 'alice') == 5
    assert 'refund_claimed' not in [e['event_type'] for e in ledger.get_events(cancelled_raffle)]

    # the guard is free again and a well-behaved claim goes through
    bank.on_receive('alice', lambda sender, amount: None)
    assert ledger.claim_refund(cancelled_raffle, 'alice') == 5 * PRICE


def test_refund_hook_sees_cleared_position(ledger, bank, cancelled_raffle):
    seen = []
    bank.on_receive('alice', lambda sender, amount: seen.append(
        ledger.entry_count_of(cancelled_raffle, 'alice')))

    ledger.claim_refund(cancelled_raffle, 'alice')

    assert seen == [0]


def test_winner_hook_sees_completed_raffle(ledger, prize_token, alice_and_bob, clock):
    seen = []
    prize_token.on_receive('alice', lambda sender, amount: seen.append(ledger.get_raffle(alice_and_bob)))
    clock.advance(DAY)

    assert ledger.resolve_by_index(alice_and_bob, 0) == 'alice'

    assert seen[0]['status'] == COMPLETED
    assert seen[0]['winner'] == 'alice'
    assert [e['event_type'] for e in ledger.get_events(alice_and_bob)][-1] == 'winner_picked'


def test_host_hook_sees_cancelled_raffle(ledger, prize_token, make_raffle, clock):
    raffle_id = make_raffle()
    seen = []
    prize_token.on_receive('host', lambda sender, amount: seen.append(ledger.get_raffle(raffle_id)['status']))
    clock.advance(DAY)

    ledger.cancel(raffle_id)

    assert seen == [CANCELLED]


def test_guard_released_after_error(ledger, make_raffle, clock):
    raffle_id = make_raffle()
    clock.advance(DAY)
    ledger.cancel(raffle_id)

    with pytest.raises(RaffleNotOpen):
        ledger.cancel(raffle_id)
    assert not ledger.guard.locked
    assert make_raffle() == raffle_id + 1


def test_calls_fail_while_guard_held(ledger, alice_and_bob, clock):
    clock.advance(DAY)
    request_id = ledger.process_expired(alice_and_bob)['request_id']

    with ledger.guard.hold('maintenance'):
        with pytest.raises(Reentrant):
            ledger.resolve_by_index(alice_and_bob, 0)
        with pytest.raises(Reentrant):
            ledger.on_randomness_delivered(request_id, [1], caller='oracle')

    assert ledger.pending_request(alice_and_bob) == request_id
    assert ledger.on_randomness_delivered(request_id, [1], caller='oracle') == 'alice'


def test_concurrent_call_fails_fast(ledger, bank, make_raffle):
    raffle_id = make_raffle()
    inside = threading.Event()
    release = threading.Event()
    errors = []

    def slow_deposit(sender, amount):
        inside.set()
        release.wait(timeout=5)

    bank.on_receive(ESCROW_ADDRESS, slow_deposit)

    def buy():
        try:
            ledger.enter(raffle_id, 1, 'alice', value=PRICE)
        except Exception as e:
            errors.append(e)

    worker = threading.Thread(target=buy)
    worker.start()
    assert inside.wait(timeout=5)

    with pytest.raises(Reentrant):
        ledger.enter(raffle_id, 1, 'bob', value=PRICE)

    release.set()
    worker.join(timeout=5)

    assert errors == []
    assert ledger.get_entrants(raffle_id) == ['alice']


def test_guard_hold_is_not_reentrant():
    guard = ReentrancyGuard()

    with guard.hold('outer'):
        assert guard.holder == 'outer'
        with pytest.raises(Reentrant):
            with guard.hold('inner'):
                pass
        assert guard.holder == 'outer'

    assert guard.holder is None
    assert not guard.locked
