"""
Test the oracle delivery webhook
"""

import json

import pytest

from conftest import DAY
from raffle_ledger.webhooks import SIGNATURE_HEADER, create_app, sign_payload, verify_oracle_signature

SECRET = 'test-oracle-secret'


@pytest.fixture
def client(ledger):
    app = create_app(ledger, secret=SECRET)
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def request_id(ledger, alice_and_bob, clock):
    clock.advance(DAY)
    return ledger.process_expired(alice_and_bob)['request_id']


def deliver(client, payload, secret=SECRET, signature=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    headers = {SIGNATURE_HEADER: signature if signature is not None else sign_payload(body, secret)}
    return client.post('/oracle/fulfill', data=body, headers=headers, content_type='application/json')


def test_signed_delivery_picks_winner(client, ledger, alice_and_bob, request_id):
    response = deliver(client, {'request_id': request_id, 'values': [61]})

    assert response.status_code == 200
    assert response.get_json() == {'success': True, 'request_id': request_id, 'winner': 'bob'}
    assert ledger.get_raffle(alice_and_bob)['winner'] == 'bob'


def test_values_may_be_strings(client, request_id):
    # 2**255 + 3 ends in ...71, slot 71 belongs to bob
    response = deliver(client, {'request_id': request_id, 'values': [str(2**255 + 3)]})

    assert response.status_code == 200
    assert response.get_json()['winner'] == 'bob'


def test_bad_signature_rejected(client, ledger, alice_and_bob, request_id):
    response = deliver(client, {'request_id': request_id, 'values': [0]}, secret='wrong')

    assert response.status_code == 401
    assert ledger.get_raffle(alice_and_bob)['status'] == 'open'


def test_missing_signature_rejected(client, request_id):
    response = deliver(client, {'request_id': request_id, 'values': [0]}, signature='')
    assert response.status_code == 401


@pytest.mark.parametrize('payload', [
    b'not json',
    {'values': [1]},
    {'request_id': 'x'},
    {'request_id': 'x', 'values': []},
    {'request_id': 'x', 'values': [-1]},
    {'request_id': 'x', 'values': [True]},
    {'request_id': 'x', 'values': ['abc']},
])
def test_malformed_delivery(client, payload):
    response = deliver(client, payload)
    assert response.status_code == 400
    assert response.get_json()['success'] is False


def test_unknown_request_is_ok(client):
    response = deliver(client, {'request_id': 'never-issued', 'values': [5]})

    assert response.status_code == 200
    assert response.get_json()['winner'] is None


def test_busy_ledger_returns_conflict(client, ledger, alice_and_bob, request_id):
    with ledger.guard.hold('maintenance'):
        response = deliver(client, {'request_id': request_id, 'values': [0]})

    assert response.status_code == 409
    assert response.get_json()['error'] == 'Reentrant'

    # the oracle can retry once the ledger is free
    assert deliver(client, {'request_id': request_id, 'values': [0]}).get_json()['winner'] == 'alice'


def test_health(client):
    response = client.get('/oracle/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'healthy'}


def test_verify_without_secret():
    body = b'{}'
    assert verify_oracle_signature(body, sign_payload(body, 'x'), '') is False
    assert verify_oracle_signature(body, sign_payload(body, 'x').upper(), 'x') is True
