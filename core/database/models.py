# Database models owned by the trade orchestrator
from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .connection import Base


class Trade(Base):
    """Executed trade. Append-only: rows are never updated after insert"""
    __tablename__ = "trades"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)    # "buy" or "sell"
    symbol = Column(String, nullable=False)  # e.g. "BTC/KRW"
    amount = Column(Float, nullable=False, default=0.0)
    profit = Column(Float, nullable=False, default=0.0)

    # Execution shape
    execution_mode = Column(String)   # market, limit_ioc, limit_post_only
    order_type = Column(String)
    time_in_force = Column(String)
    request_price = Column(Float)
    average_price = Column(Float)

    # Fill metrics
    requested_amount = Column(Float)
    filled_amount = Column(Float)
    filled_ratio = Column(Float)
    order_status = Column(String)

    # Cost telemetry
    expected_edge_rate = Column(Float)
    estimated_cost_rate = Column(Float)
    spread_rate = Column(Float)
    impact_rate = Column(Float)
    missed_opportunity_cost = Column(Float)

    gate_bypassed_reason = Column(String)
    trigger_reason = Column(String)

    # Recommendation that produced the request, if any
    recommendation = Column(JSONB)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_trades_user_created', 'user_id', 'created_at'),
        Index('idx_trades_symbol', 'symbol'),
    )


class HoldingLedgerEntry(Base):
    """Canonical per-user holdings snapshot, fully replaced on each run"""
    __tablename__ = "holding_ledgers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=False)
    category = Column(String, nullable=False)
    index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('user_id', 'symbol', 'category', name='uq_holding_ledgers_user_symbol_category'),
        Index('idx_holding_ledgers_user_index', 'user_id', 'index'),
    )
