"""
Automation Sweep
Finds expired raffles and settles them one per round; runnable by anyone or
on a fixed interval
"""

import logging
import threading

from .config import SWEEP_INTERVAL
from .exceptions import LedgerError

logger = logging.getLogger(__name__)


class AutomationSweep:
    """Scans for expired OPEN raffles and drives them to settlement"""

    def __init__(self, ledger, interval=SWEEP_INTERVAL):
        """
        Initialize the sweep

        Args:
            ledger: RaffleLedger to sweep
            interval: Seconds between rounds in run_forever
        """
        self.ledger = ledger
        self.interval = interval
        self._stop = threading.Event()

        logger.info(f"📅 Automation sweep initialized (interval: {interval}s)")

    def scan(self):
        """
        Lowest-id raffle that is OPEN and past expiry

        Read-only; the result is re-validated by process().

        Returns:
            int: Raffle id or None
        """
        with self.ledger.engine.connect() as conn:
            return self.ledger.registry.first_expired_open(conn, self.ledger.now())

    def check_upkeep(self):
        """
        Like scan(), but skips raffles already waiting on the oracle

        Returns:
            tuple: (upkeep_needed, raffle_id)
        """
        with self.ledger.engine.connect() as conn:
            raffle_id = self.ledger.registry.first_expired_open(
                conn, self.ledger.now(), skip_awaiting_randomness=True
            )
        return raffle_id is not None, raffle_id

    def process(self, raffle_id):
        """
        Settle one expired raffle (auto-cancel or randomness request)

        Returns:
            dict: Outcome from RaffleLedger.process_expired
        """
        return self.ledger.process_expired(raffle_id)

    def run_until_idle(self):
        """
        Process rounds until nothing actionable is left

        Returns:
            list: Outcome of each processed round
        """
        outcomes = []
        while True:
            needed, raffle_id = self.check_upkeep()
            if not needed:
                break
            outcomes.append(self.process(raffle_id))

        if outcomes:
            logger.info(f"✅ Sweep processed {len(outcomes)} raffle(s)")
        return outcomes

    def run_forever(self):
        """Run sweep rounds every `interval` seconds until stop() is called"""
        logger.info("✅ Automation sweep loop started")
        while not self._stop.is_set():
            try:
                self.run_until_idle()
            except LedgerError as e:
                # Scan output went stale between check and process; next round re-scans
                logger.warning(f"⚠️ Sweep round rejected: {e}")
            except Exception as e:
                logger.error(f"Error in sweep round: {e}", exc_info=True)
            self._stop.wait(self.interval)
        logger.info("Automation sweep loop stopped")

    def stop(self):
        self._stop.set()
