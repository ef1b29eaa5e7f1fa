"""
Asset Transfer Adapter
Moves native currency or fungible tokens in and out of escrow behind one
pull/push interface
"""

import logging

from .config import ESCROW_ADDRESS, NATIVE_CURRENCY
from .exceptions import AssetTransferFailed

logger = logging.getLogger(__name__)


class AssetVariant:
    """Capability set every asset kind implements"""

    def pull(self, sender, amount):
        raise NotImplementedError

    def push(self, recipient, amount):
        raise NotImplementedError


class NativeCurrency(AssetVariant):
    """Native currency held in a balance book (e.g. tokens.NativeBank)"""

    def __init__(self, bank, escrow_address=ESCROW_ADDRESS):
        self.bank = bank
        self.escrow_address = escrow_address

    def pull(self, sender, amount):
        # The attached value arrives with the call; move it into escrow
        self.bank.transfer(sender, self.escrow_address, amount)

    def push(self, recipient, amount):
        self.bank.transfer(self.escrow_address, recipient, amount)


class FungibleToken(AssetVariant):
    """
    Token with transfer(sender, recipient, amount) and
    transfer_from(spender, owner, recipient, amount)

    Tokens that return nothing are accepted on completion; an explicit
    False is a failure. Amount conservation is not checked: a token that
    takes a fee in transit leaves escrow short, and the shortfall surfaces
    as a failed payout later.
    """

    def __init__(self, asset_id, token, escrow_address=ESCROW_ADDRESS):
        self.asset_id = asset_id
        self.token = token
        self.escrow_address = escrow_address

    def _check(self, result, amount, action):
        if result is False:
            raise AssetTransferFailed(self.asset_id, amount, f"token returned false on {action}")

    def pull(self, sender, amount):
        result = self.token.transfer_from(self.escrow_address, sender, self.escrow_address, amount)
        self._check(result, amount, "transfer_from")

    def push(self, recipient, amount):
        result = self.token.transfer(self.escrow_address, recipient, amount)
        self._check(result, amount, "transfer")


class AssetTransferAdapter:
    """Dispatches pull/push to the right variant for an asset id"""

    def __init__(self, native_bank=None, tokens=None, escrow_address=ESCROW_ADDRESS):
        self.escrow_address = escrow_address
        self.native = NativeCurrency(native_bank, escrow_address) if native_bank is not None else None
        self.tokens = {}
        for asset_id, token in (tokens or {}).items():
            self.register_token(asset_id, token)

    def register_token(self, asset_id, token):
        if asset_id == NATIVE_CURRENCY:
            raise ValueError("The native currency sentinel cannot be registered as a token")
        self.tokens[asset_id] = FungibleToken(asset_id, token, self.escrow_address)
        logger.debug(f"Registered token {asset_id}")

    @staticmethod
    def is_native(asset):
        return asset == NATIVE_CURRENCY

    def supports(self, asset):
        if self.is_native(asset):
            return self.native is not None
        return asset in self.tokens

    def variant_for(self, asset):
        if self.is_native(asset):
            if self.native is None:
                raise AssetTransferFailed(asset, 0, "native currency is not configured")
            return self.native
        variant = self.tokens.get(asset)
        if variant is None:
            raise AssetTransferFailed(asset, 0, "no transfer route for asset")
        return variant

    def pull(self, sender, asset, amount):
        """
        Move `amount` of `asset` from `sender` into escrow

        Raises:
            AssetTransferFailed: the backend refused or reported failure
        """
        self._run(self.variant_for(asset).pull, sender, asset, amount, "pull")

    def push(self, recipient, asset, amount):
        """
        Move `amount` of `asset` from escrow to `recipient`

        Raises:
            AssetTransferFailed: the backend refused or reported failure
        """
        self._run(self.variant_for(asset).push, recipient, asset, amount, "push")

    def _run(self, action, account, asset, amount, name):
        try:
            action(account, amount)
        except AssetTransferFailed:
            logger.error(f"❌ {name} of {amount} {asset} for {account} failed")
            raise
        except Exception as e:
            logger.error(f"❌ {name} of {amount} {asset} for {account} failed: {e}")
            raise AssetTransferFailed(asset, amount, str(e)) from e
        logger.debug(f"{name} {amount} {asset} <-> {account}")
