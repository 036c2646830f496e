from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from core.database.models import Trade
from core.trading.models import Category, HoldingItem, HoldingLedgerItem, OrderSide, TradeRecord
from core.utils.exceptions import DatabaseError
from services.rebalancer.persistence import SqlHoldingLedgerStore, SqlTradeStore
from tests.mocks.rebalance_data import make_recommendation


class TestSqlTradeStore:
    @pytest.mark.asyncio
    async def test_save_trade_assigns_id_and_serializes_recommendation(self, mock_db_manager):
        store = SqlTradeStore(mock_db_manager)
        record = TradeRecord(
            user_id="user-1",
            type=OrderSide.BUY,
            symbol="BTC/KRW",
            amount=10_000.0,
            recommendation=make_recommendation("BTC/KRW"),
        )

        saved = await store.save_trade(record)

        assert saved.id
        assert saved.created_at is not None
        mock_db_manager.session.add.assert_called_once()
        row = mock_db_manager.session.add.call_args.args[0]
        assert isinstance(row, Trade)
        assert row.id == saved.id
        assert row.type == "buy"
        assert row.recommendation["symbol"] == "BTC/KRW"
        assert row.recommendation["category"] == "coin_major"
        mock_db_manager.session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_id_is_kept(self, mock_db_manager):
        store = SqlTradeStore(mock_db_manager)
        record = TradeRecord(id="trade-7", user_id="user-1", type=OrderSide.SELL, symbol="BTC/KRW")

        saved = await store.save_trade(record)

        assert saved.id == "trade-7"
        assert mock_db_manager.session.add.call_args.args[0].recommendation is None

    @pytest.mark.asyncio
    async def test_database_failure_is_wrapped(self, mock_db_manager):
        mock_db_manager.session.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))
        store = SqlTradeStore(mock_db_manager)

        with pytest.raises(DatabaseError) as exc_info:
            await store.save_trade(TradeRecord(user_id="user-1", type=OrderSide.BUY, symbol="BTC/KRW"))
        assert exc_info.value.table == "trades"


class TestSqlHoldingLedgerStore:
    @pytest.mark.asyncio
    async def test_fetch_maps_rows_in_index_order(self, mock_db_manager):
        result = MagicMock()
        result.scalars.return_value.all.return_value = [
            SimpleNamespace(symbol="BTC/KRW", category="coin_major", index=0),
            SimpleNamespace(symbol="SOL/KRW", category="coin_minor", index=1),
        ]
        mock_db_manager.session.execute.return_value = result

        holdings = await SqlHoldingLedgerStore(mock_db_manager).fetch_holdings_by_user("user-1")

        assert holdings == [
            HoldingItem("BTC/KRW", Category.COIN_MAJOR),
            HoldingItem("SOL/KRW", Category.COIN_MINOR),
        ]

    @pytest.mark.asyncio
    async def test_replace_deletes_then_inserts_in_one_commit(self, mock_db_manager):
        items = [
            HoldingLedgerItem("BTC/KRW", Category.COIN_MAJOR, 0),
            HoldingLedgerItem("SOL/KRW", Category.COIN_MINOR, 1),
        ]

        await SqlHoldingLedgerStore(mock_db_manager).replace_holdings_for_user("user-1", items)

        session = mock_db_manager.session
        assert session.execute.await_count == 2
        inserted = session.execute.await_args_list[1].args[1]
        assert inserted == [
            {"user_id": "user-1", "symbol": "BTC/KRW", "category": "coin_major", "index": 0},
            {"user_id": "user-1", "symbol": "SOL/KRW", "category": "coin_minor", "index": 1},
        ]
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_replace_with_no_items_only_deletes(self, mock_db_manager):
        await SqlHoldingLedgerStore(mock_db_manager).replace_holdings_for_user("user-1", [])

        assert mock_db_manager.session.execute.await_count == 1
        mock_db_manager.session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fetch_failure_is_wrapped(self, mock_db_manager):
        mock_db_manager.session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(DatabaseError):
            await SqlHoldingLedgerStore(mock_db_manager).fetch_holdings_by_user("user-1")
