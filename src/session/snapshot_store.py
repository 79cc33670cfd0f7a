"""
Session Snapshot Store
Durable JSON copy of established sessions so a restart can rehydrate them
"""
import json
import logging
import threading
from pathlib import Path
from typing import Dict, Any, List, Optional

from utils.file_utils import atomic_write_json

logger = logging.getLogger("CrownBot")

SNAPSHOT_KEYS = ("accountId", "externalUserId", "loginTimestampMs", "cookieHeaderString")


class SessionSnapshotStore:
    """
    JSON file of session snapshots keyed by account id

    Each record: {accountId, externalUserId, loginTimestampMs, cookieHeaderString}
    """

    def __init__(self, file_path: str = "data/sessions.json"):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.file_path.exists():
            return {}
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Session snapshot file unreadable, ignoring it: {e}")
            return {}
        if isinstance(records, dict):
            records = list(records.values())
        result = {}
        for record in records or []:
            if isinstance(record, dict) and all(key in record for key in SNAPSHOT_KEYS):
                result[str(record["accountId"])] = record
        return result

    def load_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._read().values())

    def get(self, account_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read().get(str(account_id))

    def save(self, snapshot: Dict[str, Any]):
        missing = [key for key in SNAPSHOT_KEYS if key not in snapshot]
        if missing:
            raise ValueError(f"Session snapshot missing fields: {missing}")
        with self._lock:
            records = self._read()
            records[str(snapshot["accountId"])] = {key: snapshot[key] for key in SNAPSHOT_KEYS}
            atomic_write_json(self.file_path, list(records.values()))

    def remove(self, account_id: str):
        with self._lock:
            records = self._read()
            if records.pop(str(account_id), None) is not None:
                atomic_write_json(self.file_path, list(records.values()))
