from decimal import Decimal
from datetime import datetime
from typing import List, Optional
import logging

from .database import DatabaseConnection
from .models import ClosedPositionRecord, TradeRecord


class DatabaseService:
    def __init__(self, run_id: str, db_url: Optional[str] = None, db: Optional[DatabaseConnection] = None):
        self.db = db or DatabaseConnection(db_url)
        self.logger = logging.getLogger(__name__)
        self.run_id = run_id
        self.db.init_db()

    def save_trade(self, entry: dict) -> int:
        """Save one trade log entry"""
        session = self.db.get_session()
        try:
            amount = entry.get('amount')
            record = TradeRecord(
                timestamp=datetime.fromisoformat(entry['timestamp']),
                action=entry['action'],
                wallet=entry['wallet'],
                dex=entry.get('dex') or None,
                token=entry['token'],
                amount=Decimal(amount) if amount not in (None, '') else None,
                reason=entry.get('reason') or None,
                signature=entry.get('signature') or None,
                run_id=self.run_id
            )
            session.add(record)
            session.commit()
            return record.id
        except Exception as e:
            self.logger.error(f"Error saving trade: {str(e)}")
            session.rollback()
            raise
        finally:
            session.close()

    def save_closed_position(self,
                             mint: str,
                             dex: str,
                             entry_amount: Decimal,
                             entry_fee: Decimal,
                             proceeds: Decimal,
                             exit_signature: Optional[str] = None) -> int:
        session = self.db.get_session()
        try:
            cost = Decimal(entry_amount) + Decimal(entry_fee)
            profit_pct = (Decimal(proceeds) - cost) / cost * 100 if cost else Decimal(0)
            record = ClosedPositionRecord(
                mint=mint,
                dex=dex or None,
                entry_amount=entry_amount,
                entry_fee=entry_fee,
                proceeds=proceeds,
                profit_pct=profit_pct,
                exit_signature=exit_signature,
                closed_at=datetime.now(),
                run_id=self.run_id
            )
            session.add(record)
            session.commit()
            return record.id
        except Exception as e:
            self.logger.error(f"Error saving closed position: {str(e)}")
            session.rollback()
            raise
        finally:
            session.close()

    def get_trades(self, action: Optional[str] = None) -> List[TradeRecord]:
        session = self.db.get_session()
        try:
            query = session.query(TradeRecord).filter(TradeRecord.run_id == self.run_id)
            if action is not None:
                query = query.filter(TradeRecord.action == action)
            return query.order_by(TradeRecord.id).all()
        finally:
            session.close()

    def get_closed_positions(self) -> List[ClosedPositionRecord]:
        session = self.db.get_session()
        try:
            return (
                session.query(ClosedPositionRecord)
                .filter(ClosedPositionRecord.run_id == self.run_id)
                .order_by(ClosedPositionRecord.id)
                .all()
            )
        finally:
            session.close()
