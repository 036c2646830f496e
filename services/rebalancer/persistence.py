import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError

from core.database.connection import DatabaseManager
from core.database.models import HoldingLedgerEntry, Trade
from core.logging import get_database_logger_safe
from core.trading.interfaces import HoldingLedgerStore, TradeStore
from core.trading.models import Category, HoldingItem, HoldingLedgerItem, TradeRecord
from core.utils.exceptions import DatabaseError


class SqlTradeStore(TradeStore):
    """Append-only trade log in PostgreSQL."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_database_logger_safe("trade_store")

    async def save_trade(self, record: TradeRecord) -> TradeRecord:
        saved = record.model_copy(update={
            "id": record.id or str(uuid.uuid4()),
            "created_at": record.created_at or datetime.now(timezone.utc),
        })
        values = saved.model_dump(exclude={"recommendation"})
        values["type"] = saved.type.value
        values["recommendation"] = (
            saved.recommendation.model_dump(mode="json") if saved.recommendation is not None else None
        )

        try:
            async with self.db_manager.get_session() as session:
                session.add(Trade(**values))
                await session.commit()
        except SQLAlchemyError as e:
            self.logger.error("Failed to save trade",
                              user_id=record.user_id,
                              symbol=record.symbol,
                              error=str(e))
            raise DatabaseError("Failed to save trade", operation="insert", table=Trade.__tablename__) from e

        self.logger.debug("Trade saved", trade_id=saved.id, user_id=saved.user_id, symbol=saved.symbol)
        return saved


class SqlHoldingLedgerStore(HoldingLedgerStore):
    """Per-user holdings ledger, replaced wholesale in one transaction."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_database_logger_safe("holding_ledger_store")

    async def fetch_holdings_by_user(self, user_id: str) -> List[HoldingItem]:
        try:
            async with self.db_manager.get_session() as session:
                stmt = select(HoldingLedgerEntry).where(
                    HoldingLedgerEntry.user_id == user_id
                ).order_by(HoldingLedgerEntry.index.asc())
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            self.logger.error("Failed to fetch holdings", user_id=user_id, error=str(e))
            raise DatabaseError("Failed to fetch holdings", operation="select",
                                table=HoldingLedgerEntry.__tablename__) from e

        return [HoldingItem(symbol=row.symbol, category=Category(row.category)) for row in rows]

    async def replace_holdings_for_user(self, user_id: str, items: List[HoldingLedgerItem]) -> None:
        try:
            async with self.db_manager.get_session() as session:
                await session.execute(delete(HoldingLedgerEntry).where(HoldingLedgerEntry.user_id == user_id))
                if items:
                    await session.execute(insert(HoldingLedgerEntry), [
                        {
                            "user_id": user_id,
                            "symbol": item.symbol,
                            "category": item.category.value,
                            "index": item.index,
                        }
                        for item in items
                    ])
                await session.commit()
        except SQLAlchemyError as e:
            self.logger.error("Failed to replace holdings", user_id=user_id, error=str(e))
            raise DatabaseError("Failed to replace holdings", operation="replace",
                                table=HoldingLedgerEntry.__tablename__) from e

        self.logger.info("Holdings ledger replaced", user_id=user_id, count=len(items))
