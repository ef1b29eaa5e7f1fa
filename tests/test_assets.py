"""
Test Asset Transfer Adapter
Native and token variants, including tokens that do not follow the usual
return conventions
"""

import pytest

from raffle_ledger.assets import AssetTransferAdapter
from raffle_ledger.config import ESCROW_ADDRESS, NATIVE_CURRENCY
from raffle_ledger.exceptions import AssetTransferFailed
from raffle_ledger.tokens import InMemoryToken, NativeBank, TokenError


class NoReturnToken(InMemoryToken):
    """Moves funds but returns nothing"""

    def transfer(self, sender, recipient, amount):
        super().transfer(sender, recipient, amount)

    def transfer_from(self, spender, owner, recipient, amount):
        super().transfer_from(spender, owner, recipient, amount)


class FalseReturnToken(InMemoryToken):
    """Reports failure with False instead of raising"""

    def transfer(self, sender, recipient, amount):
        return False

    def transfer_from(self, spender, owner, recipient, amount):
        return False


def test_native_pull_and_push():
    bank = NativeBank({'alice': 500})
    adapter = AssetTransferAdapter(native_bank=bank)

    adapter.pull('alice', NATIVE_CURRENCY, 200)
    assert bank.balance_of('alice') == 300
    assert bank.balance_of(ESCROW_ADDRESS) == 200

    adapter.push('bob', NATIVE_CURRENCY, 150)
    assert bank.balance_of('bob') == 150
    assert bank.balance_of(ESCROW_ADDRESS) == 50


def test_token_pull_uses_allowance():
    token = InMemoryToken('PRIZE', {'host': 100})
    adapter = AssetTransferAdapter(tokens={'PRIZE': token})

    with pytest.raises(AssetTransferFailed) as exc_info:
        adapter.pull('host', 'PRIZE', 100)
    assert isinstance(exc_info.value.__cause__, TokenError)
    assert token.balance_of('host') == 100

    token.approve('host', ESCROW_ADDRESS, 100)
    adapter.pull('host', 'PRIZE', 100)
    assert token.balance_of(ESCROW_ADDRESS) == 100
    assert token.allowance('host', ESCROW_ADDRESS) == 0


def test_token_without_return_value_is_accepted():
    token = NoReturnToken('NR', {'host': 100})
    token.approve('host', ESCROW_ADDRESS, 100)
    adapter = AssetTransferAdapter(tokens={'NR': token})

    adapter.pull('host', 'NR', 100)
    adapter.push('winner', 'NR', 40)

    assert token.balance_of('winner') == 40
    assert token.balance_of(ESCROW_ADDRESS) == 60


def test_token_returning_false_fails():
    adapter = AssetTransferAdapter(tokens={'BAD': FalseReturnToken('BAD', {'host': 100})})

    with pytest.raises(AssetTransferFailed):
        adapter.pull('host', 'BAD', 10)
    with pytest.raises(AssetTransferFailed):
        adapter.push('host', 'BAD', 10)


def test_push_more_than_escrow_holds_fails():
    token = InMemoryToken('PRIZE', {ESCROW_ADDRESS: 10})
    adapter = AssetTransferAdapter(tokens={'PRIZE': token})

    with pytest.raises(AssetTransferFailed) as exc_info:
        adapter.push('winner', 'PRIZE', 11)
    assert exc_info.value.amount == 11
    assert token.balance_of(ESCROW_ADDRESS) == 10


def test_unknown_asset_has_no_route():
    adapter = AssetTransferAdapter()

    assert not adapter.supports('MYSTERY')
    assert not adapter.supports(NATIVE_CURRENCY)
    with pytest.raises(AssetTransferFailed):
        adapter.push('bob', 'MYSTERY', 1)
    with pytest.raises(AssetTransferFailed):
        adapter.pull('bob', NATIVE_CURRENCY, 1)


def test_native_sentinel_cannot_be_registered_as_token():
    adapter = AssetTransferAdapter()
    with pytest.raises(ValueError):
        adapter.register_token(NATIVE_CURRENCY, InMemoryToken('X'))


def test_failing_receive_hook_reverses_credit():
    bank = NativeBank({ESCROW_ADDRESS: 100})
    adapter = AssetTransferAdapter(native_bank=bank)

    def refuse(sender, amount):
        raise RuntimeError("not accepting funds")

    bank.on_receive('picky', refuse)

    with pytest.raises(AssetTransferFailed):
        adapter.push('picky', NATIVE_CURRENCY, 30)
    assert bank.balance_of('picky') == 0
    assert bank.balance_of(ESCROW_ADDRESS) == 100
