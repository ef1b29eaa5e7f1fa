"""
Entry Ledger
Ordered entry sequence per raffle plus per-entrant entry counts

Each purchase appends one block of contiguous slots. A buyer of 60 entries
followed by a buyer of 40 occupies indices 0-59 and 60-99.
"""

from sqlalchemy import text
import logging

from .exceptions import InvalidParameters

logger = logging.getLogger(__name__)


class EntryLedger:
    """Entry blocks and positions, read and written inside the caller's transaction"""

    def append(self, conn, raffle_id, entrant, entry_count, start_index):
        """
        Append `entry_count` slots for `entrant` starting at `start_index`
        and add them to the entrant's position
        """
        conn.execute(text("""
            INSERT INTO raffle_entry_blocks (raffle_id, start_index, entry_count, entrant)
            VALUES (:raffle_id, :start_index, :entry_count, :entrant)
        """), {
            'raffle_id': raffle_id,
            'start_index': start_index,
            'entry_count': entry_count,
            'entrant': entrant,
        })

        conn.execute(text("""
            INSERT INTO raffle_positions (raffle_id, entrant, entry_count)
            VALUES (:raffle_id, :entrant, :entry_count)
            ON CONFLICT (raffle_id, entrant)
            DO UPDATE SET entry_count = raffle_positions.entry_count + :entry_count
        """), {
            'raffle_id': raffle_id,
            'entrant': entrant,
            'entry_count': entry_count,
        })

        logger.debug(f"Raffle #{raffle_id}: {entrant} holds slots {start_index}-{start_index + entry_count - 1}")

    def length(self, conn, raffle_id):
        """Number of slots in the sequence"""
        result = conn.execute(text("""
            SELECT COALESCE(SUM(entry_count), 0) FROM raffle_entry_blocks
            WHERE raffle_id = :raffle_id
        """), {'raffle_id': raffle_id})
        return int(result.scalar())

    def entrant_at(self, conn, raffle_id, index):
        """
        Entrant owning slot `index`

        Raises:
            InvalidParameters: index outside the sequence
        """
        if index < 0:
            raise InvalidParameters(f"Entry index {index} is negative")

        result = conn.execute(text("""
            SELECT start_index, entry_count, entrant FROM raffle_entry_blocks
            WHERE raffle_id = :raffle_id AND start_index <= :index
            ORDER BY start_index DESC
            LIMIT 1
        """), {'raffle_id': raffle_id, 'index': index})
        row = result.fetchone()

        if not row or index >= row[0] + row[1]:
            raise InvalidParameters(f"Entry index {index} is out of range for raffle #{raffle_id}")
        return row[2]

    def blocks(self, conn, raffle_id):
        result = conn.execute(text("""
            SELECT start_index, entry_count, entrant FROM raffle_entry_blocks
            WHERE raffle_id = :raffle_id
            ORDER BY start_index
        """), {'raffle_id': raffle_id})

        return [
            {
                'start_index': row[0],
                'end_index': row[0] + row[1] - 1,
                'entry_count': row[1],
                'entrant': row[2],
            }
            for row in result
        ]

    def entrants(self, conn, raffle_id):
        """The full ordered sequence, one element per slot"""
        sequence = []
        for block in self.blocks(conn, raffle_id):
            sequence.extend([block['entrant']] * block['entry_count'])
        return sequence

    def position_of(self, conn, raffle_id, entrant):
        result = conn.execute(text("""
            SELECT entry_count FROM raffle_positions
            WHERE raffle_id = :raffle_id AND entrant = :entrant
        """), {'raffle_id': raffle_id, 'entrant': entrant})
        row = result.fetchone()
        return row[0] if row else 0

    def positions(self, conn, raffle_id):
        result = conn.execute(text("""
            SELECT entrant, entry_count FROM raffle_positions
            WHERE raffle_id = :raffle_id
            ORDER BY entrant
        """), {'raffle_id': raffle_id})
        return {row[0]: row[1] for row in result}

    def clear_position(self, conn, raffle_id, entrant):
        """
        Zero the entrant's position

        Only the count that was read is cleared, so two claims racing on the
        same position cannot both be paid.

        Returns:
            int: The count held before clearing (0 if none)
        """
        count = self.position_of(conn, raffle_id, entrant)
        if not count:
            return 0

        result = conn.execute(text("""
            UPDATE raffle_positions
            SET entry_count = 0
            WHERE raffle_id = :raffle_id AND entrant = :entrant AND entry_count = :entry_count
        """), {'raffle_id': raffle_id, 'entrant': entrant, 'entry_count': count})
        return count if result.rowcount == 1 else 0

    def restore_position(self, conn, raffle_id, entrant, entry_count):
        """Give back a position cleared by clear_position"""
        conn.execute(text("""
            UPDATE raffle_positions
            SET entry_count = :entry_count
            WHERE raffle_id = :raffle_id AND entrant = :entrant AND entry_count = 0
        """), {'raffle_id': raffle_id, 'entrant': entrant, 'entry_count': entry_count})
