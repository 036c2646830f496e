import pytest

from core.trading.lock import LockGuard
from core.utils.exceptions import LockLostError
from services.rebalancer.snapshot import (
    build_current_weight_map,
    build_execution_snapshot,
    build_orderable_symbol_set,
    build_tradable_market_value_map,
)
from tests.mocks.mock_exchange import MockExchange
from tests.mocks.rebalance_data import make_balances


class TestOrderableSymbolSet:
    @pytest.mark.asyncio
    async def test_checks_each_quote_symbol_once(self):
        exchange = MockExchange(listed_symbols={"BTC/KRW"})

        orderable = await build_orderable_symbol_set(
            ["BTC/KRW", "ETH/KRW", "BTC/KRW", "AAPL/USD"], exchange.is_symbol_exist
        )

        assert orderable == frozenset({"BTC/KRW"})
        assert sorted(exchange.symbol_checks) == ["BTC/KRW", "ETH/KRW"]

    @pytest.mark.asyncio
    async def test_failed_checks_fail_open(self):
        exchange = MockExchange(listed_symbols={"BTC/KRW"})
        exchange.failing_symbol_checks = {"ETH/KRW"}

        orderable = await build_orderable_symbol_set(["BTC/KRW", "ETH/KRW", "XRP/KRW"], exchange.is_symbol_exist)

        assert orderable == frozenset({"BTC/KRW", "ETH/KRW"})

    @pytest.mark.asyncio
    async def test_all_checks_failing_means_unknown(self):
        exchange = MockExchange()
        exchange.failing_symbol_checks = {"BTC/KRW", "ETH/KRW"}

        assert await build_orderable_symbol_set(["BTC/KRW", "ETH/KRW"], exchange.is_symbol_exist) is None

    @pytest.mark.asyncio
    async def test_no_quote_symbols_is_empty_set(self):
        exchange = MockExchange()

        assert await build_orderable_symbol_set(["AAPL/USD"], exchange.is_symbol_exist) == frozenset()
        assert exchange.symbol_checks == []


class TestValueAndWeightMaps:
    def setup_method(self):
        self.balances = make_balances(krw=19_000_000, positions={
            "BTC": (0.5, 40_000_000),
            "ETH": (2.0, 3_000_000),
            "XRP": (0.0, 700),
        })
        self.exchange = MockExchange(balances=self.balances, prices={"BTC/KRW": 50_000_000})

    @pytest.mark.asyncio
    async def test_missing_price_falls_back_to_average_buy_price(self):
        values = await build_tradable_market_value_map(self.balances, self.exchange.get_price)

        assert values == {"BTC/KRW": pytest.approx(25_000_000), "ETH/KRW": pytest.approx(6_000_000)}

    @pytest.mark.asyncio
    async def test_non_orderable_positions_have_no_value(self):
        values = await build_tradable_market_value_map(
            self.balances, self.exchange.get_price, frozenset({"BTC/KRW"})
        )

        assert set(values) == {"BTC/KRW"}

    @pytest.mark.asyncio
    async def test_weights_are_shares_of_total(self):
        weights = await build_current_weight_map(self.balances, 50_000_000, self.exchange.get_price)

        assert weights["BTC/KRW"] == pytest.approx(0.5)
        assert weights["ETH/KRW"] == pytest.approx(0.12)

    @pytest.mark.asyncio
    async def test_non_positive_total_has_no_weights(self):
        assert await build_current_weight_map(self.balances, 0, self.exchange.get_price) == {}

    @pytest.mark.asyncio
    async def test_execution_snapshot(self, guard):
        snapshot = await build_execution_snapshot(self.exchange, self.balances, ["SOL/KRW"], guard)

        assert snapshot.balances is self.balances
        assert snapshot.orderable_symbols == frozenset({"SOL/KRW", "BTC/KRW", "ETH/KRW", "XRP/KRW"})
        assert snapshot.market_price == pytest.approx(50_000_000)
        assert snapshot.current_weights["BTC/KRW"] == pytest.approx(0.5)
        assert snapshot.tradable_market_value_map["ETH/KRW"] == pytest.approx(6_000_000)

    @pytest.mark.asyncio
    async def test_execution_snapshot_stops_when_lock_is_lost(self):
        guard = LockGuard(user_id="user-1")
        guard.mark_lost("token_mismatch")

        with pytest.raises(LockLostError):
            await build_execution_snapshot(self.exchange, self.balances, [], guard)
