"""
Session Registry
Process-wide owner of account sessions, their clients and the per-account login lock
"""
import logging
import threading
import time
from typing import Dict, Any, Optional, Callable, List

from crown.client import AccountClient
from crown.codec import mask_token
from crown.error_codes import SessionInvalidError
from crown.models import Account, Session
from session.snapshot_store import SessionSnapshotStore

logger = logging.getLogger("CrownBot")

SESSION_TTL_SECONDS = 2 * 60 * 60


class _LoginAttempt:
    """In-flight login shared by every caller that asks while it runs"""

    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None


class SessionRegistry:
    """
    Single writer of Session state.

    All network calls for an account go through the one AccountClient kept
    here, so cookie jar and uid are never mutated by two owners.
    """

    def __init__(self, client_factory: Callable[[Account], AccountClient],
                 snapshot_store: Optional[SessionSnapshotStore] = None,
                 ttl_seconds: int = SESSION_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        """
        Initialize session registry

        Args:
            client_factory: Builds the AccountClient for an account
            snapshot_store: Durable snapshot store (None disables persistence)
            ttl_seconds: Fixed session lifetime
            clock: Time source (seconds)
        """
        self.client_factory = client_factory
        self.snapshot_store = snapshot_store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._mutex = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._clients: Dict[str, AccountClient] = {}
        self._login_locks: Dict[str, threading.Lock] = {}
        self._inflight: Dict[str, _LoginAttempt] = {}

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def client_for(self, account: Account) -> AccountClient:
        """The account's single client, created on first use"""
        with self._mutex:
            client = self._clients.get(account.account_id)
            if client is None:
                client = self.client_factory(account)
                self._clients[account.account_id] = client
            else:
                client.account = account
            return client

    def acquire(self, account_id: str) -> AccountClient:
        """
        Client of an online account (no login lock taken)

        Raises:
            SessionInvalidError: If the account has no live session
        """
        account_id = str(account_id)
        if self.get(account_id) is None:
            raise SessionInvalidError("NOT_LOGGED_IN", f"Account {account_id} is offline")
        with self._mutex:
            return self._clients[account_id]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get(self, account_id: str) -> Optional[Session]:
        """Live session for the account; an expired one is invalidated on sight"""
        account_id = str(account_id)
        with self._mutex:
            session = self._sessions.get(account_id)
        if session is None:
            return None
        if session.is_expired(self.clock()):
            logger.info(f"[{account_id}] Session expired after {self.ttl_seconds}s")
            self.invalidate(account_id, "expired")
            return None
        return session

    def is_online(self, account_id: str) -> bool:
        return self.get(account_id) is not None

    def online_account_ids(self) -> List[str]:
        with self._mutex:
            ids = list(self._sessions.keys())
        return [account_id for account_id in ids if self.is_online(account_id)]

    def establish(self, account: Account, client: AccountClient,
                  established_at: Optional[float] = None) -> Session:
        """Record a successful login and persist its snapshot"""
        if not client.uid:
            raise ValueError("Cannot establish a session without a server-issued id")
        session = Session(
            account_id=account.account_id,
            external_user_id=client.uid,
            cookie_header=client.export_cookie_header(),
            established_at=established_at if established_at is not None else self.clock(),
            ttl_seconds=self.ttl_seconds,
        )
        with self._mutex:
            self._sessions[account.account_id] = session
            self._clients[account.account_id] = client
        if self.snapshot_store:
            self.snapshot_store.save(session.to_snapshot())
        logger.info(f"✓ [{account.account_id}] Session established (uid {mask_token(client.uid)})")
        return session

    def invalidate(self, account_id: str, reason: str = "logout"):
        """Drop the session, forget the client's uid and clear the snapshot"""
        account_id = str(account_id)
        with self._mutex:
            session = self._sessions.pop(account_id, None)
            client = self._clients.get(account_id)
        if client is not None:
            client.logout()
        if self.snapshot_store:
            self.snapshot_store.remove(account_id)
        if session is not None:
            logger.warning(f"[{account_id}] Session invalidated: {reason}")

    def record_heartbeat(self, account_id: str, timestamp: Optional[float] = None):
        with self._mutex:
            session = self._sessions.get(str(account_id))
            if session is not None:
                session.last_heartbeat = timestamp if timestamp is not None else self.clock()

    # ------------------------------------------------------------------
    # Login serialisation
    # ------------------------------------------------------------------

    def with_login_lock(self, account_id: str, login_fn: Callable[[], Any]) -> Any:
        """
        Run login_fn under the account's login lock, single-flight.

        A caller arriving while a login for the same account is running does
        not start another one; it waits for and returns the in-flight result
        (or re-raises its error).
        """
        account_id = str(account_id)
        with self._mutex:
            attempt = self._inflight.get(account_id)
            owner = attempt is None
            if owner:
                attempt = _LoginAttempt()
                self._inflight[account_id] = attempt
            lock = self._login_locks.setdefault(account_id, threading.Lock())

        if not owner:
            logger.info(f"[{account_id}] Login already in progress, waiting for its result")
            attempt.done.wait()
            if attempt.error is not None:
                raise attempt.error
            return attempt.result

        with lock:
            try:
                attempt.result = login_fn()
            except BaseException as e:
                attempt.error = e
                raise
            finally:
                with self._mutex:
                    self._inflight.pop(account_id, None)
                attempt.done.set()
        return attempt.result

    def login_in_progress(self, account_id: str) -> bool:
        with self._mutex:
            return str(account_id) in self._inflight

    # ------------------------------------------------------------------
    # Durability
    # ------------------------------------------------------------------

    def rehydrate(self, accounts: Dict[str, Account]) -> int:
        """
        Restore still-valid sessions from the snapshot store

        Snapshots older than the TTL, or for unknown/disabled accounts, are
        cleared instead.

        Returns:
            Number of sessions restored
        """
        if not self.snapshot_store:
            return 0
        restored = 0
        now = self.clock()
        for snapshot in self.snapshot_store.load_all():
            account_id = str(snapshot["accountId"])
            established_at = snapshot["loginTimestampMs"] / 1000.0
            account = accounts.get(account_id)
            age = now - established_at
            # Clock skew (negative age) is treated like expiry
            if account is None or not account.enabled or age >= self.ttl_seconds or age < 0:
                logger.info(f"[{account_id}] Discarding stale session snapshot ({int(age)}s old)")
                self.snapshot_store.remove(account_id)
                continue
            client = self.client_for(account)
            client.restore_session(snapshot["externalUserId"], snapshot["cookieHeaderString"])
            session = Session(account_id, snapshot["externalUserId"], snapshot["cookieHeaderString"],
                              established_at, self.ttl_seconds)
            with self._mutex:
                self._sessions[account_id] = session
            restored += 1
            logger.info(f"✓ [{account_id}] Session rehydrated ({int(age)}s old)")
        return restored

    def status(self) -> Dict[str, Any]:
        with self._mutex:
            sessions = dict(self._sessions)
            in_flight = list(self._inflight.keys())
        return {
            "online": [s.to_dict() for s in sessions.values() if not s.is_expired(self.clock())],
            "logins_in_progress": in_flight,
        }
