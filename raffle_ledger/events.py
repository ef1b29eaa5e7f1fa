"""
Ledger Event Publisher
Persists emitted records to raffle_events and publishes them to Redis for
external indexers and dashboards
"""

import json
import logging

import redis
from sqlalchemy import text

from .config import EVENTS_CHANNEL, REDIS_URL

logger = logging.getLogger(__name__)

RAFFLE_CREATED = 'raffle_created'
ENTRY_PURCHASED = 'entry_purchased'
RAFFLE_CANCELLED = 'raffle_cancelled'
WINNER_PICKED = 'winner_picked'
REFUND_CLAIMED = 'refund_claimed'
RANDOMNESS_REQUESTED = 'randomness_requested'


class EventPublisher:
    """Writes events inside the ledger transaction, publishes them after commit"""

    def __init__(self, redis_url=None, client=None, channel=EVENTS_CHANNEL):
        self.channel = channel
        self.client = client
        self.enabled = client is not None

        redis_url = REDIS_URL if redis_url is None else redis_url
        if self.client is None and redis_url:
            if '://' not in redis_url:
                redis_url = f'redis://{redis_url}'
            try:
                self.client = redis.from_url(redis_url, decode_responses=True)
                self.client.ping()
                self.enabled = True
                logger.info("✅ Ledger event publisher connected to Redis")
            except redis.RedisError as e:
                logger.warning(f"⚠️ Redis unavailable, events will only be stored: {e}")
                self.client = None
                self.enabled = False

    def record(self, conn, raffle_id, event_type, data, emitted_at):
        """
        Store an event row in the current transaction

        Returns:
            dict: The event as it will be published
        """
        seq = conn.execute(text("SELECT COALESCE(MAX(seq), 0) + 1 FROM raffle_events")).scalar()
        payload = {'raffle_id': raffle_id, **data}

        conn.execute(text("""
            INSERT INTO raffle_events (seq, raffle_id, event_type, payload, emitted_at)
            VALUES (:seq, :raffle_id, :event_type, :payload, :emitted_at)
        """), {
            'seq': seq,
            'raffle_id': raffle_id,
            'event_type': event_type,
            'payload': json.dumps(payload, default=str),
            'emitted_at': emitted_at,
        })

        return {'seq': seq, 'event_type': event_type, 'data': payload, 'emitted_at': emitted_at}

    def discard(self, conn, seqs):
        """Delete recorded events whose operation was undone before publishing"""
        for seq in seqs:
            conn.execute(text("DELETE FROM raffle_events WHERE seq = :seq"), {'seq': seq})

    def publish(self, event):
        """Publish a committed event (no-op when Redis is not configured)"""
        if not self.enabled:
            return False

        try:
            message = json.dumps({
                'action': event['event_type'],
                'data': event['data'],
            }, default=str)
            self.client.publish(self.channel, message)
            logger.debug(f"📤 Published {event['event_type']} to {self.channel}")
            return True
        except redis.RedisError as e:
            # Already committed to raffle_events; indexers can backfill from there
            logger.error(f"❌ Failed to publish {event['event_type']}: {e}")
            return False

    def history(self, conn, raffle_id=None):
        """Stored events in emission order, optionally for one raffle"""
        query = "SELECT seq, raffle_id, event_type, payload, emitted_at FROM raffle_events"
        params = {}
        if raffle_id is not None:
            query += " WHERE raffle_id = :raffle_id"
            params['raffle_id'] = raffle_id
        query += " ORDER BY seq"

        return [
            {
                'seq': row[0],
                'raffle_id': row[1],
                'event_type': row[2],
                'data': json.loads(row[3]),
                'emitted_at': row[4],
            }
            for row in conn.execute(text(query), params)
        ]
