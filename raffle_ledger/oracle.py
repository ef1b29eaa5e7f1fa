"""
Randomness Oracle Client
Issues one-value randomness requests for expired raffles and correlates the
asynchronous delivery back to the raffle that asked
"""

import logging
import secrets

import requests
from sqlalchemy import text

from .config import NUM_WORDS, ORACLE_ADDRESS, ORACLE_REQUEST_TIMEOUT, ORACLE_URL

logger = logging.getLogger(__name__)


class LocalCoordinator:
    """
    In-process oracle: hands out request ids and delivers values on demand

    Usage:
        coordinator = LocalCoordinator()
        ledger = RaffleLedger(engine, assets, coordinator)
        ...
        coordinator.fulfill(request_id)          # random 256-bit value
        coordinator.fulfill(request_id, [60])    # chosen value
    """

    def __init__(self, address=ORACLE_ADDRESS):
        self.address = address
        self.consumer = None
        self.pending = {}

    def attach(self, consumer):
        self.consumer = consumer

    def request_random_words(self, num_words, correlation):
        request_id = secrets.token_hex(16)
        self.pending[request_id] = {'num_words': num_words, 'correlation': correlation}
        logger.debug(f"Oracle request {request_id} for {num_words} value(s) ({correlation})")
        return request_id

    def fulfill(self, request_id, values=None):
        """Deliver values for a request to the attached consumer"""
        request = self.pending.pop(request_id, {'num_words': NUM_WORDS})
        if values is None:
            values = [secrets.randbits(256) for _ in range(request['num_words'])]
        return self.consumer.on_randomness_delivered(request_id, values, caller=self.address)


class HttpCoordinator:
    """Requests randomness from a remote oracle over HTTP"""

    def __init__(self, base_url=ORACLE_URL, address=ORACLE_ADDRESS, timeout=ORACLE_REQUEST_TIMEOUT, session=None):
        if not base_url:
            raise ValueError("HttpCoordinator needs an oracle URL (set ORACLE_URL)")
        self.base_url = base_url.rstrip('/')
        self.address = address
        self.timeout = timeout
        self.session = session or requests.Session()

    def request_random_words(self, num_words, correlation):
        """
        POST /requests and return the oracle's request id

        Raises:
            requests.RequestException: the oracle could not be reached or refused
        """
        response = self.session.post(
            f"{self.base_url}/requests",
            json={'num_words': num_words, 'correlation': correlation},
            timeout=self.timeout,
        )
        response.raise_for_status()
        request_id = str(response.json()['request_id'])
        logger.info(f"📡 Oracle accepted request {request_id} ({correlation})")
        return request_id


class RandomnessOracleClient:
    """Request issuing and request_id -> raffle_id correlation"""

    def __init__(self, coordinator):
        self.coordinator = coordinator

    def request(self, conn, raffle_id, now):
        """
        Ask the coordinator for one value and remember which raffle asked

        Returns:
            str: Request id
        """
        if self.coordinator is None:
            raise RuntimeError("No randomness coordinator configured")

        request_id = self.coordinator.request_random_words(NUM_WORDS, f"raffle:{raffle_id}")

        conn.execute(text("""
            INSERT INTO randomness_requests (request_id, raffle_id, requested_at)
            VALUES (:request_id, :raffle_id, :requested_at)
        """), {'request_id': request_id, 'raffle_id': raffle_id, 'requested_at': now})

        return request_id

    def pending_request_for(self, conn, raffle_id):
        result = conn.execute(text("""
            SELECT request_id FROM randomness_requests
            WHERE raffle_id = :raffle_id
            ORDER BY requested_at
            LIMIT 1
        """), {'raffle_id': raffle_id})
        row = result.fetchone()
        return row[0] if row else None

    def consume(self, conn, request_id):
        """
        Look up and delete a correlation

        Only the caller whose DELETE removed the row gets the raffle id back,
        so a delivery racing another for the same request is a no-op.

        Returns:
            int: Raffle id, or None if the request is unknown or already consumed
        """
        result = conn.execute(text("""
            SELECT raffle_id FROM randomness_requests WHERE request_id = :request_id
        """), {'request_id': str(request_id)})
        row = result.fetchone()
        if not row:
            return None

        result = conn.execute(text("""
            DELETE FROM randomness_requests WHERE request_id = :request_id
        """), {'request_id': str(request_id)})
        if result.rowcount != 1:
            logger.info(f"Request {request_id} was consumed concurrently")
            return None
        return row[0]

    def restore(self, conn, request_id, raffle_id, requested_at):
        """Put back a correlation removed by consume"""
        conn.execute(text("""
            INSERT INTO randomness_requests (request_id, raffle_id, requested_at)
            VALUES (:request_id, :raffle_id, :requested_at)
        """), {'request_id': str(request_id), 'raffle_id': raffle_id, 'requested_at': requested_at})


def winner_index(value, entry_count):
    """Slot selected by a random value: value mod number of entries"""
    return value % entry_count
