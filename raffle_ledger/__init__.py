"""
Raffle Ledger Package
Escrowed prize raffles with oracle-drawn winners, refunds and a manual fallback
"""

__version__ = "1.0.0"

from .assets import AssetTransferAdapter, FungibleToken, NativeCurrency
from .config import NATIVE_CURRENCY
from .database import setup_ledger_database, verify_ledger_schema
from .events import EventPublisher
from .ledger import RaffleLedger
from .oracle import HttpCoordinator, LocalCoordinator
from .registry import CANCELLED, COMPLETED, OPEN
from .scheduler import AutomationSweep

__all__ = [
    'AssetTransferAdapter',
    'AutomationSweep',
    'CANCELLED',
    'COMPLETED',
    'EventPublisher',
    'FungibleToken',
    'HttpCoordinator',
    'LocalCoordinator',
    'NATIVE_CURRENCY',
    'NativeCurrency',
    'OPEN',
    'RaffleLedger',
    'setup_ledger_database',
    'verify_ledger_schema',
]
