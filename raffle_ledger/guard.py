"""
Reentrancy and access guard

Every fund-moving ledger operation runs inside one shared, non-blocking
lock. A nested call (from a transfer hook) or a concurrent call from another
thread fails immediately with Reentrant instead of waiting.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import threading

from .exceptions import Reentrant, Unauthorized

logger = logging.getLogger(__name__)


class ReentrancyGuard:
    """Busy flag shared across heterogeneous entry points"""

    def __init__(self):
        self._lock = threading.Lock()
        self.holder = None

    @property
    def locked(self):
        return self._lock.locked()

    @contextmanager
    def hold(self, operation):
        """
        Acquire the guard for the duration of `operation`

        Raises:
            Reentrant: the guard is already held
        """
        if not self._lock.acquire(blocking=False):
            logger.warning(f"🚫 Rejected reentrant {operation} (busy with {self.holder})")
            raise Reentrant(f"{operation} rejected: {self.holder} is in progress")
        self.holder = operation
        try:
            yield
        finally:
            self.holder = None
            self._lock.release()


def nonreentrant(func):
    """
    Run a ledger method under the instance's guard

    Usage:
        @nonreentrant
        def claim_refund(self, raffle_id, caller):
            ...
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self.guard.hold(func.__name__):
            return func(self, *args, **kwargs)
    return wrapper


def require_caller(caller, allowed, operation):
    """
    Raises:
        Unauthorized: caller is not the allowed identity
    """
    if caller != allowed:
        logger.warning(f"🚫 Unauthorized {operation} from {caller}")
        raise Unauthorized(f"{operation} may only be called by {allowed}")
