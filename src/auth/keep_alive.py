"""
Session Heartbeat Module
Keeps online sessions checked and account balances fresh
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional

from crown.error_codes import CrownError, SessionInvalidError
from session.registry import SessionRegistry

logger = logging.getLogger("CrownBot")


class SessionHeartbeat:
    """Periodic balance refresh for every online session"""

    def __init__(self, registry: SessionRegistry, account_store,
                 interval: int = 300,
                 clock: Callable[[], float] = time.time):
        """
        Initialize heartbeat

        Args:
            registry: Session registry
            account_store: Account store the refreshed balance is written to
            interval: Seconds between heartbeat passes
            clock: Time source (seconds)
        """
        self.registry = registry
        self.account_store = account_store
        self.interval = interval
        self.clock = clock
        self.running = False
        self.thread: Optional[threading.Thread] = None
        self._wake = threading.Event()
        self.last_run_time: Optional[float] = None

    def start(self):
        """Start heartbeat thread"""
        if self.running:
            logger.warning("Heartbeat already running")
            return
        self.running = True
        self._wake.clear()
        self.thread = threading.Thread(target=self._loop, daemon=True, name="session-heartbeat")
        self.thread.start()

    def stop(self):
        """Stop heartbeat thread"""
        self.running = False
        self._wake.set()
        if self.thread:
            self.thread.join(timeout=5)
        logger.info("Heartbeat stopped")

    def _loop(self):
        while self.running:
            try:
                self.beat_all()
            except Exception as e:
                logger.error(f"Error in heartbeat loop: {str(e)}")
            self._wake.wait(self.interval)

    def beat_all(self) -> Dict[str, bool]:
        """
        One heartbeat pass over all online sessions

        Returns:
            account id -> whether the session is still online afterwards
        """
        results = {}
        for account_id in self.registry.online_account_ids():
            results[account_id] = self.beat(account_id)
        self.last_run_time = self.clock()
        return results

    def beat(self, account_id: str) -> bool:
        """Refresh one session; returns False if it went offline"""
        session = self.registry.get(account_id)
        if session is None:
            return False
        try:
            client = self.registry.acquire(account_id)
            balance = client.get_balance()
        except SessionInvalidError as e:
            self.registry.invalidate(account_id, f"heartbeat: {e.code}")
            return False
        except CrownError as e:
            logger.warning(f"[{account_id}] Heartbeat failed, session kept: {e}")
            return True

        self.registry.record_heartbeat(account_id, self.clock())
        if balance.balance is not None or balance.credit is not None:
            self.account_store.update_balance(account_id, balance.balance, balance.credit)
        logger.debug(f"[{account_id}] Heartbeat ok (balance {balance.balance}, credit {balance.credit})")
        return True
