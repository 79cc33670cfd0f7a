"""
Bet Ledger Module
Appends every bet receipt to an Excel workbook
"""
import logging
import threading
import pandas as pd
from pathlib import Path
from typing import Any, Dict, List
from datetime import datetime

from crown.models import BetIntent, BetReceipt

logger = logging.getLogger("CrownBot")

LEDGER_COLUMNS = [
    "Recorded_At", "Account_ID", "Match_ID", "Category", "Scope", "Side",
    "Requested_Line", "Expected_Price", "Stake", "Success", "Ticket_ID",
    "Confirmed_Price", "Confirmed_Line", "Wtype", "Line_Mismatch",
    "Error_Kind", "Error_Code", "Error_Detail",
]


def ledger_row(account_id: str, intent: BetIntent, receipt: BetReceipt,
               recorded_at: datetime = None) -> Dict[str, Any]:
    return {
        "Recorded_At": recorded_at or datetime.now(),
        "Account_ID": account_id,
        "Match_ID": intent.target_match_id,
        "Category": intent.category.value,
        "Scope": intent.scope.value,
        "Side": intent.side,
        "Requested_Line": intent.requested_line,
        "Expected_Price": intent.expected_price,
        "Stake": receipt.stake if receipt.stake is not None else intent.stake,
        "Success": receipt.success,
        "Ticket_ID": receipt.ticket_id,
        "Confirmed_Price": receipt.confirmed_price,
        "Confirmed_Line": receipt.confirmed_line,
        "Wtype": receipt.variant.wtype if receipt.variant else None,
        "Line_Mismatch": receipt.line_mismatch,
        "Error_Kind": receipt.error_kind.value if receipt.error_kind else None,
        "Error_Code": receipt.error_code,
        "Error_Detail": receipt.error_detail,
    }


class BetLedger:
    """Excel ledger of bet receipts (one row per pipeline run)"""

    def __init__(self, excel_path: str):
        """
        Initialize bet ledger

        Args:
            excel_path: Path to Excel file
        """
        self.excel_path = Path(excel_path)
        self.excel_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, account_id: str, intent: BetIntent, receipt: BetReceipt):
        """Append one receipt"""
        row = ledger_row(account_id, intent, receipt)
        with self._lock:
            if self.excel_path.exists():
                df = pd.read_excel(self.excel_path)
            else:
                df = pd.DataFrame(columns=LEDGER_COLUMNS)
            df = pd.concat([df, pd.DataFrame([row], columns=LEDGER_COLUMNS)], ignore_index=True)
            df["Recorded_At"] = pd.to_datetime(df["Recorded_At"], errors="coerce")

            with pd.ExcelWriter(self.excel_path, engine="openpyxl") as writer:
                df.to_excel(writer, index=False, sheet_name="Bets")
                writer.sheets["Bets"].column_dimensions["A"].width = 20
        logger.info(f"Bet ledger: {row['Match_ID']} {'ticket ' + str(row['Ticket_ID']) if row['Success'] else row['Error_Code']}")

    def read_all(self) -> List[Dict[str, Any]]:
        if not self.excel_path.exists():
            return []
        with self._lock:
            df = pd.read_excel(self.excel_path)
        df = df.astype(object).where(pd.notna(df), None)
        return df.to_dict("records")
