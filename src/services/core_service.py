"""
Core Service
Inbound entry points of the core: login, sessions, snapshots and betting
"""
import logging
from typing import Any, Dict, List, Optional

from auth.login_flow import LoginResult, LoginStateMachine
from crown.error_codes import ErrorKind, SessionInvalidError
from crown.models import Account, BetIntent, BetReceipt
from services.bet_pipeline import BetPipeline, failure_receipt
from services.fetch_loop import FetchLoop
from session.registry import SessionRegistry

logger = logging.getLogger("CrownBot")


class CoreService:
    """Facade the surrounding product calls into"""

    def __init__(self, account_store, registry: SessionRegistry, login_flow: LoginStateMachine,
                 bet_pipeline: BetPipeline, fetch_loop: Optional[FetchLoop] = None,
                 bet_ledger=None):
        self.account_store = account_store
        self.registry = registry
        self.login_flow = login_flow
        self.bet_pipeline = bet_pipeline
        self.fetch_loop = fetch_loop
        self.bet_ledger = bet_ledger

    def _account(self, account_id: str) -> Account:
        account = self.account_store.get(account_id)
        if account is None:
            raise KeyError(f"Unknown account: {account_id}")
        return account

    def login(self, account_id: str) -> LoginResult:
        """Run the login state machine for an account"""
        return self.login_flow.login(self._account(account_id))

    def ensure_session(self, account_id: str) -> LoginResult:
        """Reuse the live session, or log in when there is none"""
        return self.login_flow.ensure(self._account(account_id))

    def is_online(self, account_id: str) -> bool:
        return self.registry.is_online(account_id)

    def logout(self, account_id: str):
        self.registry.invalidate(account_id, "logout")

    def fetch_snapshot(self, account_id: str, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Latest market snapshot

        Served from the fetch loop when it runs for this account; otherwise a
        one-off fetch is made with the account's own session.

        Raises:
            SessionInvalidError: the account is offline
        """
        filters = filters or {}
        if self.fetch_loop is not None and self.fetch_loop.account_id == str(account_id):
            published = self.fetch_loop.latest()
            if published.generated_at == 0.0:
                published = self.fetch_loop.tick(filters.get("showtype") or "live") or published
            return published.to_dict(filters)

        client = self.registry.acquire(account_id)
        showtype = filters.get("showtype") or "live"
        try:
            matches = client.get_game_list(showtype, filters.get("gtype") or "ft")
        except SessionInvalidError as e:
            self.registry.invalidate(account_id, f"snapshot: {e.code}")
            raise
        if filters.get("match_ids"):
            wanted = set(str(m) for m in filters["match_ids"])
            matches = [m for m in matches if m.match_id in wanted]
        return {
            "breakdown": {showtype: len(matches)},
            "matchCount": len(matches),
            "matches": [m.to_dict() for m in matches],
        }

    def resolve_and_place_bet(self, account_id: str, intent: BetIntent) -> BetReceipt:
        """Run the bet pipeline and record the receipt in the ledger"""
        if self.account_store.get(account_id) is None:
            receipt = failure_receipt(ErrorKind.VALIDATION, "INVALID_INTENT",
                                      f"Unknown account: {account_id}", stake=intent.stake)
        else:
            receipt = self.bet_pipeline.run(account_id, intent)
        if self.bet_ledger is not None:
            try:
                self.bet_ledger.record(account_id, intent, receipt)
            except (OSError, ValueError) as e:
                logger.error(f"Could not write bet ledger: {e}")
        return receipt

    def online_accounts(self) -> List[str]:
        return self.registry.online_account_ids()

    def status(self) -> Dict[str, Any]:
        return {
            "sessions": self.registry.status(),
            "fetch_loop": self.fetch_loop.stats() if self.fetch_loop else None,
        }
