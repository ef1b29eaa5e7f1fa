"""
Raffle Ledger Configuration
All configurable parameters for the raffle escrow ledger
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///raffle_ledger.db")
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Sentinel asset id meaning "native currency" (as opposed to a token id)
NATIVE_CURRENCY = "0x0000000000000000000000000000000000000000"

# Identity the ledger uses when it holds escrowed funds
ESCROW_ADDRESS = os.getenv("ESCROW_ADDRESS", "raffle-ledger-escrow")

# Entry counters are 32-bit on the wire
MAX_ENTRIES_LIMIT = 2**32 - 1

# Randomness oracle
ORACLE_ADDRESS = os.getenv("ORACLE_ADDRESS", "randomness-oracle")
ORACLE_URL = os.getenv("ORACLE_URL", "")
ORACLE_WEBHOOK_SECRET = os.getenv("ORACLE_WEBHOOK_SECRET", "")
ORACLE_REQUEST_TIMEOUT = int(os.getenv("ORACLE_REQUEST_TIMEOUT", "10"))  # seconds
NUM_WORDS = 1  # random values per request

# Automation sweep
SWEEP_INTERVAL = int(os.getenv("SWEEP_INTERVAL", "60"))  # seconds between rounds

# Event publishing
REDIS_URL = os.getenv("REDIS_URL", "")
EVENTS_CHANNEL = os.getenv("EVENTS_CHANNEL", "raffle_ledger:events")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE") or None
