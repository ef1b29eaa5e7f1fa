"""
Raffle Registry
Authoritative raffle records: configuration, status, entries sold, host
"""

from sqlalchemy import text
import logging

from .exceptions import CapacityExceeded, RaffleNotFound, RaffleNotOpen

logger = logging.getLogger(__name__)

# Raffle states. OPEN is initial; CANCELLED and COMPLETED are terminal.
OPEN = 'open'
CANCELLED = 'cancelled'
COMPLETED = 'completed'

_RAFFLE_COLUMNS = """
    id, host, prize_asset, prize_amount, payment_asset, price_per_entry,
    max_entries, entries_sold, expires_at, status, winner, created_at
"""


def _row_to_raffle(row):
    return {
        'id': row[0],
        'host': row[1],
        'prize_asset': row[2],
        'prize_amount': int(row[3]),
        'payment_asset': row[4],
        'price_per_entry': int(row[5]),
        'max_entries': row[6],
        'entries_sold': row[7],
        'expires_at': row[8],
        'status': row[9],
        'winner': row[10],
        'created_at': row[11],
    }


class RaffleRegistry:
    """Reads and writes raffle rows inside the caller's transaction"""

    def next_id(self, conn):
        """Next raffle id (1 for the first raffle; rows are never deleted)"""
        result = conn.execute(text("SELECT COALESCE(MAX(id), 0) FROM raffles"))
        return result.scalar() + 1

    def insert(self, conn, raffle):
        conn.execute(text("""
            INSERT INTO raffles
                (id, host, prize_asset, prize_amount, payment_asset, price_per_entry,
                 max_entries, entries_sold, expires_at, status, created_at)
            VALUES
                (:id, :host, :prize_asset, :prize_amount, :payment_asset, :price_per_entry,
                 :max_entries, 0, :expires_at, :status, :created_at)
        """), {
            'id': raffle['id'],
            'host': raffle['host'],
            'prize_asset': raffle['prize_asset'],
            'prize_amount': str(raffle['prize_amount']),
            'payment_asset': raffle['payment_asset'],
            'price_per_entry': str(raffle['price_per_entry']),
            'max_entries': raffle['max_entries'],
            'expires_at': raffle['expires_at'],
            'status': OPEN,
            'created_at': raffle['created_at'],
        })

    def find(self, conn, raffle_id):
        result = conn.execute(text(f"""
            SELECT {_RAFFLE_COLUMNS}
            FROM raffles
            WHERE id = :raffle_id
        """), {'raffle_id': raffle_id})
        row = result.fetchone()
        return _row_to_raffle(row) if row else None

    def get(self, conn, raffle_id):
        """
        Raises:
            RaffleNotFound: no such raffle
        """
        raffle = self.find(conn, raffle_id)
        if raffle is None:
            raise RaffleNotFound(raffle_id)
        return raffle

    def count(self, conn):
        return conn.execute(text("SELECT COUNT(*) FROM raffles")).scalar()

    def reserve_entries(self, conn, raffle_id, entry_count, now):
        """
        Claim `entry_count` slots on an OPEN, unexpired raffle with room left

        The check and the increment are one conditional UPDATE, so an earlier
        read in the same operation cannot oversell the raffle.

        Returns:
            int: Index of the first reserved slot

        Raises:
            RaffleNotOpen: closed or expired
            CapacityExceeded: not enough entries left
        """
        result = conn.execute(text("""
            UPDATE raffles
            SET entries_sold = entries_sold + :entry_count
            WHERE id = :raffle_id
              AND status = :open
              AND expires_at > :now
              AND entries_sold + :entry_count <= max_entries
        """), {'raffle_id': raffle_id, 'entry_count': entry_count, 'open': OPEN, 'now': now})
        reserved = result.rowcount == 1

        raffle = self.find(conn, raffle_id)
        if raffle is None:
            raise RaffleNotFound(raffle_id)
        if reserved:
            return raffle['entries_sold'] - entry_count

        if raffle['status'] != OPEN:
            raise RaffleNotOpen(raffle_id, raffle['status'])
        if now >= raffle['expires_at']:
            raise RaffleNotOpen(raffle_id, 'expired')
        raise CapacityExceeded(
            f"Raffle #{raffle_id} has {raffle['max_entries'] - raffle['entries_sold']} entries left, "
            f"requested {entry_count}"
        )

    def close(self, conn, raffle_id, status, winner=None):
        """
        Move an OPEN raffle to a terminal status

        Raises:
            RaffleNotOpen: the raffle already left OPEN
        """
        result = conn.execute(text("""
            UPDATE raffles
            SET status = :status, winner = :winner
            WHERE id = :raffle_id AND status = :open
        """), {'raffle_id': raffle_id, 'status': status, 'winner': winner, 'open': OPEN})

        if result.rowcount != 1:
            raise RaffleNotOpen(raffle_id)

        logger.debug(f"Raffle #{raffle_id} -> {status}")

    def reopen(self, conn, raffle_id, from_status):
        """Put a raffle closed as `from_status` back to OPEN without a winner"""
        result = conn.execute(text("""
            UPDATE raffles
            SET status = :open, winner = NULL
            WHERE id = :raffle_id AND status = :from_status
        """), {'raffle_id': raffle_id, 'open': OPEN, 'from_status': from_status})

        if result.rowcount != 1:
            raise RaffleNotOpen(raffle_id, from_status)

        logger.debug(f"Raffle #{raffle_id} {from_status} -> {OPEN}")

    def first_expired_open(self, conn, now, skip_awaiting_randomness=False):
        """
        Lowest-id OPEN raffle whose expiry has passed

        Args:
            conn: Connection
            now: Current unix time
            skip_awaiting_randomness: Ignore raffles with a live randomness request

        Returns:
            int: Raffle id or None
        """
        query = """
            SELECT r.id FROM raffles r
            WHERE r.status = :open AND r.expires_at <= :now
        """
        if skip_awaiting_randomness:
            query += """
              AND NOT EXISTS (
                  SELECT 1 FROM randomness_requests rr WHERE rr.raffle_id = r.id
              )
            """
        query += " ORDER BY r.id LIMIT 1"

        result = conn.execute(text(query), {'open': OPEN, 'now': now})
        row = result.fetchone()
        return row[0] if row else None
