from sqlalchemy import Column, Integer, String, DateTime, Numeric, Index, func
from .database import Base


class TradeRecord(Base):
    """One trade log line"""
    __tablename__ = 'trade_log'

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, nullable=False)
    action = Column(String, nullable=False)     # Buy Detected, Skipped, Bot Buy, Bot Sell, ...
    wallet = Column(String, nullable=False)
    dex = Column(String)
    token = Column(String, nullable=False)
    amount = Column(Numeric)
    reason = Column(String)
    signature = Column(String)
    created_at = Column(DateTime, server_default=func.now())
    run_id = Column(String, nullable=False)

    __table_args__ = (
        Index('ix_trade_log_token_action', 'token', 'action'),
    )


class ClosedPositionRecord(Base):
    __tablename__ = 'closed_positions'

    id = Column(Integer, primary_key=True)
    mint = Column(String, nullable=False)
    dex = Column(String)
    entry_amount = Column(Numeric, nullable=False)   # SOL
    entry_fee = Column(Numeric, nullable=False)      # SOL
    proceeds = Column(Numeric, nullable=False)       # SOL
    profit_pct = Column(Numeric, nullable=False)
    exit_signature = Column(String)
    closed_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    run_id = Column(String, nullable=False)
