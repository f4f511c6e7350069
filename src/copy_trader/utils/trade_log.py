from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union
import os

import pandas as pd

COLUMNS = ['timestamp', 'action', 'wallet', 'dex', 'token', 'amount', 'reason', 'signature']

ACTIONS = ('Buy Detected', 'Sell Detected', 'Skipped', 'Bot Buy', 'Bot Sell', 'Error')


class TradeLog:
    """
    Append-only CSV audit trail of what the bot saw and did. Never read back
    by the bot; optionally mirrored to the database.
    """

    def __init__(self, csv_path: str, wallet: str, logger: Any, db_service: Any = None):
        self.csv_path = csv_path
        self.wallet = wallet
        self.logger = logger
        self.db_service = db_service
        self.initialize_csv()

    def initialize_csv(self):
        """Create CSV with headers if it doesn't exist"""
        if not os.path.exists(self.csv_path):
            directory = os.path.dirname(self.csv_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            pd.DataFrame(columns=COLUMNS).to_csv(self.csv_path, index=False)

    def record(self,
               action: str,
               token: str,
               amount: Union[Decimal, float, None] = None,
               reason: str = "",
               dex: Optional[str] = None,
               signature: Optional[str] = None,
               wallet: Optional[str] = None,
               entry_amount: Optional[Decimal] = None,
               entry_fee: Optional[Decimal] = None) -> dict:
        if action not in ACTIONS:
            raise ValueError(f"Unknown trade log action: {action}")

        entry = {
            'timestamp': datetime.now().isoformat(timespec='seconds'),
            'action': action,
            'wallet': wallet or self.wallet,
            'dex': dex or '',
            'token': token,
            'amount': '' if amount is None else str(amount),
            'reason': reason,
            'signature': signature or '',
        }
        try:
            pd.DataFrame([entry], columns=COLUMNS).to_csv(self.csv_path, mode='a', header=False, index=False)
        except OSError as e:
            self.logger.error(f"Failed to write trade log entry {action} for {token}: {str(e)}")

        if self.db_service is not None:
            self._mirror(entry, entry_amount, entry_fee)
        return entry

    def _mirror(self, entry: dict, entry_amount: Optional[Decimal], entry_fee: Optional[Decimal]):
        try:
            self.db_service.save_trade(entry)
            if entry['action'] == 'Bot Sell' and entry_amount is not None:
                self.db_service.save_closed_position(
                    mint=entry['token'],
                    dex=entry['dex'],
                    entry_amount=entry_amount,
                    entry_fee=entry_fee or Decimal(0),
                    proceeds=Decimal(entry['amount'] or 0),
                    exit_signature=entry['signature'] or None,
                )
        except Exception as e:
            self.logger.error(f"Failed to mirror trade log entry to database: {str(e)}")

    def read(self) -> pd.DataFrame:
        """Load the whole log, for offline inspection"""
        return pd.read_csv(self.csv_path, dtype=str, keep_default_na=False)
