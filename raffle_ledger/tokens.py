"""
In-Process Asset Backends
Balance books for a fungible token and for native currency, used by the CLI
demo setup and as the reference behaviour the transfer adapter is written against
"""

import logging

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Raised by a backend when a transfer cannot be made (balance or allowance)"""
    pass


class _BalanceBook:
    """Balances plus optional per-account receive hooks"""

    def __init__(self, name, balances=None):
        self.name = name
        self.balances = dict(balances or {})
        self.receive_hooks = {}

    def balance_of(self, account):
        return self.balances.get(account, 0)

    def mint(self, account, amount):
        self.balances[account] = self.balance_of(account) + amount

    def on_receive(self, account, hook):
        """
        Register a callable invoked after `account` is credited

        The hook is called as hook(sender, amount). If it raises, the
        credit is reversed and the error propagates to the sender.
        """
        self.receive_hooks[account] = hook

    def _move(self, sender, recipient, amount):
        if amount < 0:
            raise TokenError(f"{self.name}: negative amount {amount}")
        balance = self.balance_of(sender)
        if balance < amount:
            raise TokenError(f"{self.name}: insufficient balance for {sender} ({balance} < {amount})")

        self.balances[sender] = balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount

        hook = self.receive_hooks.get(recipient)
        if hook is not None:
            try:
                hook(sender, amount)
            except Exception:
                self.balances[recipient] -= amount
                self.balances[sender] += amount
                raise


class NativeBank(_BalanceBook):
    """Native currency balances"""

    def __init__(self, balances=None):
        super().__init__("native", balances)

    def transfer(self, sender, recipient, amount):
        self._move(sender, recipient, amount)


class InMemoryToken(_BalanceBook):
    """
    Standard fungible token: transfer / approve / transfer_from,
    returns True on success and raises TokenError on failure
    """

    def __init__(self, symbol, balances=None):
        super().__init__(symbol, balances)
        self.allowances = {}

    def allowance(self, owner, spender):
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner, spender, amount):
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender, recipient, amount):
        self._move(sender, recipient, amount)
        return True

    def transfer_from(self, spender, owner, recipient, amount):
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise TokenError(f"{self.name}: allowance {allowed} < {amount} for {spender}")
        self._move(owner, recipient, amount)
        self.allowances[(owner, spender)] = allowed - amount
        return True
