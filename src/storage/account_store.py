"""
Account Store
JSON-backed account records; the core only updates credentials, passcode and balance
"""
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from crown.models import Account
from utils.file_utils import atomic_write_json

logger = logging.getLogger("CrownBot")


class AccountStore:
    """Reads and writes accounts.json"""

    def __init__(self, file_path: str = "config/accounts.json"):
        """
        Initialize account store

        Args:
            file_path: Path to the accounts JSON file (a list of account objects)
        """
        self.file_path = Path(file_path)
        self._lock = threading.Lock()
        self._accounts: Dict[str, Account] = {}
        self.reload()

    def reload(self):
        with self._lock:
            self._accounts = {}
            if not self.file_path.exists():
                logger.warning(f"Accounts file not found: {self.file_path}")
                return
            with open(self.file_path, "r", encoding="utf-8") as f:
                records = json.load(f)
            for record in records:
                account = Account.from_dict(record)
                self._accounts[account.account_id] = account

    def _flush(self):
        atomic_write_json(self.file_path, [a.to_dict() for a in self._accounts.values()])

    def get(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(str(account_id))

    def list_accounts(self, enabled_only: bool = False) -> List[Account]:
        with self._lock:
            accounts = list(self._accounts.values())
        if enabled_only:
            accounts = [a for a in accounts if a.enabled]
        return accounts

    def as_dict(self) -> Dict[str, Account]:
        with self._lock:
            return dict(self._accounts)

    def add(self, account: Account):
        with self._lock:
            self._accounts[account.account_id] = account
            self._flush()

    def update_credentials(self, account_id: str, username: str, password: str):
        """Rotate login id/password after a verified credential change"""
        with self._lock:
            account = self._accounts[str(account_id)]
            account.username = username
            account.password = password
            account.new_username = None
            account.new_password = None
            self._flush()
        logger.info(f"[{account_id}] Credentials updated (login id {username})")

    def update_passcode(self, account_id: str, passcode: Optional[str]):
        with self._lock:
            self._accounts[str(account_id)].passcode = passcode
            self._flush()
        logger.info(f"[{account_id}] Passcode {'stored' if passcode else 'cleared'}")

    def update_balance(self, account_id: str, balance: Optional[float], credit: Optional[float]):
        with self._lock:
            account = self._accounts[str(account_id)]
            account.balance = balance
            account.credit = credit
            self._flush()
