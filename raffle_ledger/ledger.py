"""
Raffle Ledger
Lifecycle of escrowed raffles: create, enter, expire, draw, cancel, refund

Every fund-moving entry point runs under the shared reentrancy guard. Inbound
pulls happen inside the operation's transaction. The single outbound payout
of a call is made after its state change commits, and a failed payout is
undone by a compensating transaction before the error reaches the caller.
"""

from contextlib import contextmanager
import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from .config import MAX_ENTRIES_LIMIT, ORACLE_ADDRESS
from .entries import EntryLedger
from .events import (
    ENTRY_PURCHASED,
    RAFFLE_CANCELLED,
    RAFFLE_CREATED,
    RANDOMNESS_REQUESTED,
    REFUND_CLAIMED,
    WINNER_PICKED,
    EventPublisher,
)
from .exceptions import (
    AssetTransferFailed,
    CapacityExceeded,
    CapacityFilled,
    InsufficientPayment,
    InvalidParameters,
    LedgerError,
    NoRefundAvailable,
    RaffleNotExpired,
    RaffleNotOpen,
    UnexpectedNativePayment,
)
from .guard import ReentrancyGuard, nonreentrant, require_caller
from .oracle import RandomnessOracleClient, winner_index
from .registry import CANCELLED, COMPLETED, OPEN, RaffleRegistry

logger = logging.getLogger(__name__)


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _require_positive(name, value):
    if not _is_int(value) or value <= 0:
        raise InvalidParameters(f"{name} must be a positive integer, got {value!r}")


def _random_value(value):
    """Oracle value as a non-negative int (decimal strings are accepted)"""
    if isinstance(value, (bool, float)):
        raise InvalidParameters(f"Random value must be an integer, got {value!r}")
    try:
        value = int(value)
    except (TypeError, ValueError) as e:
        raise InvalidParameters(f"Random value must be an integer, got {value!r}") from e
    if value < 0:
        raise InvalidParameters(f"Random value must be non-negative, got {value}")
    return value


class _Unit:
    """Events recorded by one operation and the payout it owes after commit"""

    def __init__(self):
        self.events = []
        self.payout = None
        self.undo = None

    def pay_after_commit(self, recipient, asset, amount, undo):
        """
        Args:
            undo: Callable(conn) reverting the committed state change
        """
        self.payout = (recipient, asset, amount)
        self.undo = undo


class RaffleLedger:
    """Escrow-and-draw raffles over a SQL database"""

    def __init__(self, engine, assets, coordinator=None, oracle_address=None, publisher=None, clock=None):
        """
        Args:
            engine: SQLAlchemy engine (schema from setup_ledger_database)
            assets: AssetTransferAdapter used for every fund movement
            coordinator: Randomness coordinator (LocalCoordinator, HttpCoordinator)
            oracle_address: Identity allowed to deliver randomness
                (defaults to the coordinator's address, then ORACLE_ADDRESS)
            publisher: EventPublisher (defaults to one configured from REDIS_URL)
            clock: Callable returning unix time (defaults to time.time)
        """
        self.engine = engine
        self.assets = assets
        self.registry = RaffleRegistry()
        self.entries = EntryLedger()
        self.oracle = RandomnessOracleClient(coordinator)
        self.oracle_address = oracle_address or getattr(coordinator, 'address', None) or ORACLE_ADDRESS
        self.publisher = publisher or EventPublisher()
        self.clock = clock or time.time
        self.guard = ReentrancyGuard()

        attach = getattr(coordinator, 'attach', None)
        if attach is not None:
            attach(self)

    def now(self):
        return int(self.clock())

    @contextmanager
    def _transaction(self):
        """
        Yield (conn, unit) for one operation

        The state change commits first. A payout scheduled on the unit is
        made after the commit, so a recipient that calls back into the
        ledger reads the settled state. If the payout fails, a second
        transaction undoes the committed change and the error propagates.
        Events are published only once everything went through.
        """
        unit = _Unit()
        with self.engine.begin() as conn:
            yield conn, unit
        if unit.payout is not None:
            self._pay(unit)
        for event in unit.events:
            self.publisher.publish(event)

    def _pay(self, unit):
        recipient, asset, amount = unit.payout
        try:
            self.assets.push(recipient, asset, amount)
        except AssetTransferFailed:
            try:
                with self.engine.begin() as conn:
                    unit.undo(conn)
                    self.publisher.discard(conn, [event['seq'] for event in unit.events])
            except (SQLAlchemyError, LedgerError):
                logger.critical(f"❌ Payout of {amount} {asset} to {recipient} failed and the "
                                f"committed state could not be restored", exc_info=True)
                raise
            logger.warning(f"↩️ Payout of {amount} {asset} to {recipient} failed, state restored")
            raise

    def _emit(self, conn, unit, raffle_id, event_type, **data):
        unit.events.append(self.publisher.record(conn, raffle_id, event_type, data, self.now()))

    # ============ Registry ============

    @nonreentrant
    def create_raffle(self, host, prize_asset, prize_amount, payment_asset, price_per_entry,
                      max_entries, duration, value=0):
        """
        Open a raffle and pull the prize into escrow

        Args:
            host: Identity creating the raffle (prize is pulled from it)
            prize_asset: Token id of the prize
            prize_amount: Prize quantity in base units
            payment_asset: Token id, or NATIVE_CURRENCY for native payments
            price_per_entry: Cost of one entry in base units
            max_entries: Entry cap
            duration: Seconds from now until expiry
            value: Attached native value (must be 0)

        Returns:
            int: New raffle id

        Raises:
            UnexpectedNativePayment: value attached
            InvalidParameters: bad arguments
            AssetTransferFailed: prize could not be pulled (nothing is stored)
        """
        if value:
            raise UnexpectedNativePayment(f"create_raffle does not take native value (got {value})")
        if not prize_asset or self.assets.is_native(prize_asset):
            raise InvalidParameters("Prize must be a token asset")
        _require_positive('prize_amount', prize_amount)
        _require_positive('price_per_entry', price_per_entry)
        _require_positive('max_entries', max_entries)
        _require_positive('duration', duration)
        if max_entries > MAX_ENTRIES_LIMIT:
            raise InvalidParameters(f"max_entries {max_entries} exceeds {MAX_ENTRIES_LIMIT}")
        if not payment_asset or not self.assets.supports(payment_asset):
            raise InvalidParameters(f"Unsupported payment asset {payment_asset!r}")

        now = self.now()
        with self._transaction() as (conn, unit):
            raffle_id = self.registry.next_id(conn)
            expires_at = now + duration

            self.registry.insert(conn, {
                'id': raffle_id,
                'host': host,
                'prize_asset': prize_asset,
                'prize_amount': prize_amount,
                'payment_asset': payment_asset,
                'price_per_entry': price_per_entry,
                'max_entries': max_entries,
                'expires_at': expires_at,
                'created_at': now,
            })
            self._emit(conn, unit, raffle_id, RAFFLE_CREATED,
                       host=host, prize_asset=prize_asset, prize_amount=prize_amount,
                       payment_asset=payment_asset, expires_at=expires_at)

            self.assets.pull(host, prize_asset, prize_amount)

        logger.info(f"✅ Raffle #{raffle_id} created by {host}: {prize_amount} {prize_asset}, "
                    f"{max_entries} entries at {price_per_entry} {payment_asset}")
        return raffle_id

    @nonreentrant
    def cancel(self, raffle_id, caller=None):
        """
        Cancel an expired raffle that did not sell out and return the prize

        Anyone may call. Entrants claim refunds afterwards.

        Raises:
            RaffleNotOpen, RaffleNotExpired, CapacityFilled
        """
        with self._transaction() as (conn, unit):
            raffle = self.registry.get(conn, raffle_id)
            if raffle['status'] != OPEN:
                raise RaffleNotOpen(raffle_id, raffle['status'])
            if self.now() < raffle['expires_at']:
                raise RaffleNotExpired(raffle_id, raffle['expires_at'])
            if raffle['entries_sold'] >= raffle['max_entries']:
                raise CapacityFilled(f"Raffle #{raffle_id} sold out and must draw a winner")

            self._cancel(conn, unit, raffle)

        logger.info(f"🚫 Raffle #{raffle_id} cancelled by {caller or 'anonymous'}")

    def _cancel(self, conn, unit, raffle):
        raffle_id = raffle['id']
        self.registry.close(conn, raffle_id, CANCELLED)
        self._emit(conn, unit, raffle_id, RAFFLE_CANCELLED)
        unit.pay_after_commit(
            raffle['host'], raffle['prize_asset'], raffle['prize_amount'],
            undo=lambda conn: self.registry.reopen(conn, raffle_id, CANCELLED),
        )

    # ============ Entries ============

    @nonreentrant
    def enter(self, raffle_id, entry_count, caller, value=0):
        """
        Buy `entry_count` entries for `caller`

        Native raffles take exactly price * entry_count as attached value;
        token raffles pull the cost from the caller and take no value.

        Raises:
            RaffleNotOpen: not OPEN or past expiry
            InvalidParameters: entry_count not positive
            CapacityExceeded: would pass max entries
            InsufficientPayment: attached value differs from the cost
            UnexpectedNativePayment: value attached to a token raffle
            AssetTransferFailed: payment could not be pulled
        """
        with self._transaction() as (conn, unit):
            raffle = self.registry.get(conn, raffle_id)
            if raffle['status'] != OPEN:
                raise RaffleNotOpen(raffle_id, raffle['status'])
            if self.now() >= raffle['expires_at']:
                raise RaffleNotOpen(raffle_id, 'expired')
            _require_positive('entry_count', entry_count)
            if raffle['entries_sold'] + entry_count > raffle['max_entries']:
                raise CapacityExceeded(
                    f"Raffle #{raffle_id} has {raffle['max_entries'] - raffle['entries_sold']} entries left, "
                    f"requested {entry_count}"
                )

            cost = raffle['price_per_entry'] * entry_count
            if self.assets.is_native(raffle['payment_asset']):
                if value != cost:
                    raise InsufficientPayment(cost, value)
            elif value:
                raise UnexpectedNativePayment(f"Raffle #{raffle_id} is paid in {raffle['payment_asset']}")

            start_index = self.registry.reserve_entries(conn, raffle_id, entry_count, self.now())
            self.assets.pull(caller, raffle['payment_asset'], cost)

            self.entries.append(conn, raffle_id, caller, entry_count, start_index)
            self._emit(conn, unit, raffle_id, ENTRY_PURCHASED, buyer=caller, count=entry_count)

        logger.info(f"🎟️ {caller} bought {entry_count} entries in raffle #{raffle_id}")

    @nonreentrant
    def claim_refund(self, raffle_id, caller):
        """
        Refund a cancelled raffle's entries to `caller`

        Returns:
            int: Amount refunded

        Raises:
            NoRefundAvailable: raffle not cancelled, or nothing left to refund
        """
        with self._transaction() as (conn, unit):
            raffle = self.registry.get(conn, raffle_id)
            if raffle['status'] != CANCELLED:
                raise NoRefundAvailable(f"Raffle #{raffle_id} is {raffle['status']}, not cancelled")

            count = self.entries.clear_position(conn, raffle_id, caller)
            if count == 0:
                raise NoRefundAvailable(f"{caller} has no refundable entries in raffle #{raffle_id}")

            amount = count * raffle['price_per_entry']
            self._emit(conn, unit, raffle_id, REFUND_CLAIMED, claimer=caller, amount=amount)
            unit.pay_after_commit(
                caller, raffle['payment_asset'], amount,
                undo=lambda conn: self.entries.restore_position(conn, raffle_id, caller, count),
            )

        logger.info(f"💸 Refunded {amount} {raffle['payment_asset']} to {caller} (raffle #{raffle_id})")
        return amount

    # ============ Expiry processing ============

    @nonreentrant
    def process_expired(self, raffle_id):
        """
        Settle an expired OPEN raffle: auto-cancel when nobody entered,
        otherwise request randomness (once)

        Returns:
            dict: {'raffle_id', 'action', 'request_id'} where action is
            'cancelled', 'randomness_requested' or 'awaiting_randomness'

        Raises:
            RaffleNotOpen, RaffleNotExpired
        """
        with self._transaction() as (conn, unit):
            raffle = self.registry.get(conn, raffle_id)
            now = self.now()
            if raffle['status'] != OPEN:
                raise RaffleNotOpen(raffle_id, raffle['status'])
            if now < raffle['expires_at']:
                raise RaffleNotExpired(raffle_id, raffle['expires_at'])

            if self.entries.length(conn, raffle_id) == 0:
                self._cancel(conn, unit, raffle)
                outcome = {'raffle_id': raffle_id, 'action': 'cancelled', 'request_id': None}
            else:
                pending = self.oracle.pending_request_for(conn, raffle_id)
                if pending:
                    outcome = {'raffle_id': raffle_id, 'action': 'awaiting_randomness', 'request_id': pending}
                else:
                    request_id = self.oracle.request(conn, raffle_id, now)
                    self._emit(conn, unit, raffle_id, RANDOMNESS_REQUESTED, request_id=request_id)
                    outcome = {'raffle_id': raffle_id, 'action': 'randomness_requested', 'request_id': request_id}

        if outcome['action'] == 'cancelled':
            logger.info(f"🔔 Raffle #{raffle_id} expired with no entries, prize returned to host")
        elif outcome['action'] == 'randomness_requested':
            logger.info(f"🎲 Randomness requested for raffle #{raffle_id} (request {outcome['request_id']})")
        else:
            logger.debug(f"Raffle #{raffle_id} still waiting on request {outcome['request_id']}")
        return outcome

    def on_randomness_delivered(self, request_id, values, caller):
        """
        Oracle callback. Unknown or consumed request ids and raffles that
        already left OPEN are silent no-ops.

        Returns:
            str: Winner identity, or None for a no-op

        Raises:
            Unauthorized: caller is not the oracle
            InvalidParameters: no values delivered, or the first is not a non-negative integer
        """
        require_caller(caller, self.oracle_address, 'on_randomness_delivered')
        if not values:
            raise InvalidParameters("Delivery carried no random values")
        value = _random_value(values[0])

        with self.guard.hold('on_randomness_delivered'):
            with self._transaction() as (conn, unit):
                raffle_id = self.oracle.consume(conn, request_id)
                if raffle_id is None:
                    logger.info(f"Ignoring delivery for unknown or consumed request {request_id}")
                    return None

                raffle = self.registry.get(conn, raffle_id)
                if raffle['status'] != OPEN:
                    logger.info(f"Ignoring delivery for raffle #{raffle_id} ({raffle['status']})")
                    return None

                length = self.entries.length(conn, raffle_id)
                if length == 0:
                    raise InvalidParameters(f"Raffle #{raffle_id} has no entries to draw from")

                return self._finalize(conn, unit, raffle, winner_index(value, length), request_id=request_id)

    # ============ Manual resolution ============

    @nonreentrant
    def resolve_by_index(self, raffle_id, index, caller=None):
        """
        Permissionless fallback: finalize with a given entry index

        Returns:
            str: Winner identity

        Raises:
            RaffleNotOpen, RaffleNotExpired, InvalidParameters
        """
        with self._transaction() as (conn, unit):
            raffle = self._require_resolvable(conn, raffle_id)
            length = self.entries.length(conn, raffle_id)
            if not _is_int(index) or not 0 <= index < length:
                raise InvalidParameters(f"Index {index!r} outside 0..{length - 1} for raffle #{raffle_id}")

            logger.info(f"🛠️ Manual resolution of raffle #{raffle_id} at index {index} by {caller or 'anonymous'}")
            return self._finalize(conn, unit, raffle, index)

    @nonreentrant
    def resolve_by_random_value(self, raffle_id, value, caller=None):
        """
        Permissionless fallback: finalize with a substitute random value

        Returns:
            str: Winner identity

        Raises:
            RaffleNotOpen, RaffleNotExpired, InvalidParameters
        """
        with self._transaction() as (conn, unit):
            raffle = self._require_resolvable(conn, raffle_id)
            length = self.entries.length(conn, raffle_id)
            if length == 0:
                raise InvalidParameters(f"Raffle #{raffle_id} has no entries to draw from")
            if not _is_int(value) or value < 0:
                raise InvalidParameters(f"Random value must be a non-negative integer, got {value!r}")

            index = winner_index(value, length)
            logger.info(f"🛠️ Manual resolution of raffle #{raffle_id} with substitute value "
                        f"(index {index}) by {caller or 'anonymous'}")
            return self._finalize(conn, unit, raffle, index)

    def _require_resolvable(self, conn, raffle_id):
        raffle = self.registry.get(conn, raffle_id)
        if raffle['status'] != OPEN:
            raise RaffleNotOpen(raffle_id, raffle['status'])
        if self.now() < raffle['expires_at']:
            raise RaffleNotExpired(raffle_id, raffle['expires_at'])
        return raffle

    def _finalize(self, conn, unit, raffle, index, request_id=None):
        """
        Complete the raffle and owe the prize to the entrant at `index`

        An undone payout reopens the raffle and, for an oracle delivery,
        puts the consumed request back so the same delivery can be retried.
        """
        raffle_id = raffle['id']
        winner = self.entries.entrant_at(conn, raffle_id, index)

        self.registry.close(conn, raffle_id, COMPLETED, winner=winner)
        self._emit(conn, unit, raffle_id, WINNER_PICKED, winner=winner)

        def undo(conn):
            self.registry.reopen(conn, raffle_id, COMPLETED)
            if request_id is not None:
                self.oracle.restore(conn, request_id, raffle_id, self.now())

        unit.pay_after_commit(winner, raffle['prize_asset'], raffle['prize_amount'], undo=undo)

        logger.info(f"🎉 Raffle #{raffle_id} winner: {winner} (slot {index})")
        return winner

    # ============ Queries ============

    def get_raffle(self, raffle_id):
        """
        Raises:
            RaffleNotFound
        """
        with self.engine.connect() as conn:
            return self.registry.get(conn, raffle_id)

    def raffle_count(self):
        with self.engine.connect() as conn:
            return self.registry.count(conn)

    def get_entrants(self, raffle_id):
        with self.engine.connect() as conn:
            self.registry.get(conn, raffle_id)
            return self.entries.entrants(conn, raffle_id)

    def entry_count_of(self, raffle_id, entrant):
        with self.engine.connect() as conn:
            return self.entries.position_of(conn, raffle_id, entrant)

    def entrant_at(self, raffle_id, index):
        with self.engine.connect() as conn:
            return self.entries.entrant_at(conn, raffle_id, index)

    def get_positions(self, raffle_id):
        """Entry count per entrant (zero after a refund)"""
        with self.engine.connect() as conn:
            return self.entries.positions(conn, raffle_id)

    def pending_request(self, raffle_id):
        with self.engine.connect() as conn:
            return self.oracle.pending_request_for(conn, raffle_id)

    def get_win_probability(self, raffle_id, entrant):
        """
        Entrant's chance of winning at the current entry count

        Returns:
            dict: Win probability info or None if the entrant holds no entries
        """
        with self.engine.connect() as conn:
            raffle = self.registry.get(conn, raffle_id)
            user_entries = self.entries.position_of(conn, raffle_id, entrant)

        if not user_entries or not raffle['entries_sold']:
            return None

        return {
            'user_entries': user_entries,
            'total_entries': raffle['entries_sold'],
            'probability_percent': user_entries / raffle['entries_sold'] * 100,
            'odds': f"{user_entries}/{raffle['entries_sold']}",
        }

    def get_events(self, raffle_id=None):
        with self.engine.connect() as conn:
            return self.publisher.history(conn, raffle_id)
