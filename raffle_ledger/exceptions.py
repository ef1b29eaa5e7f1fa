"""
Ledger Exceptions
Every failure a ledger operation can raise, one class per violated precondition
"""


class LedgerError(Exception):
    """Base class for all raffle ledger errors"""
    pass


# ============ Argument errors ============

class InvalidParameters(LedgerError):
    """Malformed create/enter/resolve arguments"""
    pass


class RaffleNotFound(LedgerError):
    """No raffle with this id"""
    def __init__(self, raffle_id):
        self.raffle_id = raffle_id
        super().__init__(f"Raffle {raffle_id} not found")


# ============ Lifecycle errors ============

class RaffleNotOpen(LedgerError):
    """Operation requires an OPEN raffle (or one still accepting entries)"""
    def __init__(self, raffle_id, status=None):
        self.raffle_id = raffle_id
        self.status = status
        detail = f" (status: {status})" if status else ""
        super().__init__(f"Raffle {raffle_id} is not open{detail}")


class RaffleNotExpired(LedgerError):
    """Operation requires the raffle deadline to have passed"""
    def __init__(self, raffle_id, expires_at=None):
        self.raffle_id = raffle_id
        self.expires_at = expires_at
        super().__init__(f"Raffle {raffle_id} has not expired yet (expires at {expires_at})")


RaffleNotYetExpired = RaffleNotExpired


# ============ Capacity errors ============

class CapacityExceeded(LedgerError):
    """Purchase would take entries sold past max entries"""
    pass


class CapacityFilled(LedgerError):
    """A raffle that sold out cannot be cancelled, it must draw a winner"""
    pass


# ============ Payment errors ============

class InsufficientPayment(LedgerError):
    """Attached native value does not match the entry cost"""
    def __init__(self, expected, received):
        self.expected = expected
        self.received = received
        super().__init__(f"Expected payment of {expected}, received {received}")


class UnexpectedNativePayment(LedgerError):
    """Native value attached to a call that does not take native currency"""
    pass


class NoRefundAvailable(LedgerError):
    """Raffle is not cancelled or caller holds no refundable entries"""
    pass


class AssetTransferFailed(LedgerError):
    """An escrow pull or payout did not go through"""
    def __init__(self, asset, amount, reason=None):
        self.asset = asset
        self.amount = amount
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Transfer of {amount} {asset} failed{detail}")


# ============ Guard errors ============

class Unauthorized(LedgerError):
    """Caller is not allowed to use this entry point"""
    pass


class Reentrant(LedgerError):
    """Another guarded operation is already executing"""
    pass
