"""
Database Schema Setup for the Raffle Ledger
Creates all tables and indices needed by the registry, entry ledger,
randomness correlation and event log
"""

from sqlalchemy import create_engine, inspect, text
import logging

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

# Amounts are stored as decimal strings so 256-bit values stay exact on every backend
LEDGER_SCHEMA_SQL = """
-- ============================================
-- RAFFLE LEDGER DATABASE SCHEMA
-- ============================================

-- Raffle registry (ids assigned by the ledger, never reused)
CREATE TABLE IF NOT EXISTS raffles (
    id INTEGER PRIMARY KEY,
    host TEXT NOT NULL,
    prize_asset TEXT NOT NULL,
    prize_amount TEXT NOT NULL,
    payment_asset TEXT NOT NULL,
    price_per_entry TEXT NOT NULL,
    max_entries BIGINT NOT NULL,
    entries_sold BIGINT NOT NULL DEFAULT 0,
    expires_at BIGINT NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'open',  -- open, cancelled, completed
    winner TEXT,
    created_at BIGINT NOT NULL
);

-- Ordered entry sequence, one block per purchase
CREATE TABLE IF NOT EXISTS raffle_entry_blocks (
    raffle_id INTEGER NOT NULL REFERENCES raffles(id),
    start_index BIGINT NOT NULL,
    entry_count BIGINT NOT NULL,
    entrant TEXT NOT NULL,
    PRIMARY KEY (raffle_id, start_index)
);

-- Per-entrant entry counts (refund accounting)
CREATE TABLE IF NOT EXISTS raffle_positions (
    raffle_id INTEGER NOT NULL REFERENCES raffles(id),
    entrant TEXT NOT NULL,
    entry_count BIGINT NOT NULL DEFAULT 0,
    PRIMARY KEY (raffle_id, entrant)
);

-- Live randomness requests (deleted on first delivery)
CREATE TABLE IF NOT EXISTS randomness_requests (
    request_id TEXT PRIMARY KEY,
    raffle_id INTEGER NOT NULL REFERENCES raffles(id),
    requested_at BIGINT NOT NULL
);

-- Emitted records (audit trail for external indexers)
CREATE TABLE IF NOT EXISTS raffle_events (
    seq INTEGER PRIMARY KEY,
    raffle_id INTEGER NOT NULL,
    event_type VARCHAR(50) NOT NULL,
    payload TEXT NOT NULL,
    emitted_at BIGINT NOT NULL
);

-- ============================================
-- INDICES FOR PERFORMANCE
-- ============================================

CREATE INDEX IF NOT EXISTS idx_raffles_status_expiry ON raffles(status, expires_at);
CREATE INDEX IF NOT EXISTS idx_randomness_requests_raffle ON randomness_requests(raffle_id);
CREATE INDEX IF NOT EXISTS idx_raffle_events_raffle ON raffle_events(raffle_id);
"""

LEDGER_TABLES = [
    'raffles',
    'raffle_entry_blocks',
    'raffle_positions',
    'randomness_requests',
    'raffle_events',
]


def get_engine(database_url=None, **kwargs):
    """
    Create an engine for the configured database

    Args:
        database_url: Override for DATABASE_URL
        **kwargs: Passed through to create_engine

    Returns:
        Engine: SQLAlchemy engine
    """
    url = database_url or DATABASE_URL
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return create_engine(url, pool_pre_ping=True, **kwargs)


def _split_statements(script):
    """Split the schema script into single statements (SQLite runs one at a time)"""
    statements = []
    current_statement = []

    for line in script.split('\n'):
        stripped = line.strip()
        if not stripped or stripped.startswith('--'):
            continue

        current_statement.append(line)

        if stripped.endswith(';'):
            statements.append('\n'.join(current_statement))
            current_statement = []

    return statements


def setup_ledger_database(engine):
    """
    Create all ledger tables and indices

    Args:
        engine: SQLAlchemy engine instance

    Raises:
        sqlalchemy.exc.SQLAlchemyError: if a statement fails
    """
    logger.info("Setting up raffle ledger database schema...")

    with engine.begin() as conn:
        for statement in _split_statements(LEDGER_SCHEMA_SQL):
            conn.execute(text(statement))

    logger.info("✅ Raffle ledger schema ready")


def verify_ledger_schema(engine):
    """
    Verify that all required tables exist

    Args:
        engine: SQLAlchemy engine instance

    Returns:
        dict: Status of each table (True/False)
    """
    existing = set(inspect(engine).get_table_names())
    status = {table: table in existing for table in LEDGER_TABLES}

    missing = [table for table, ok in status.items() if not ok]
    if missing:
        logger.warning(f"⚠️ Missing ledger tables: {', '.join(missing)}")

    return status
