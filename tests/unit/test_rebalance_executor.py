import pytest

from core.trading.models import (
    AdjustedOrderResult,
    ExchangeOrder,
    ExecutionMode,
    OrderSide,
)
from core.utils.exceptions import ExchangeAPIError, OrderCancelError, ValidationError
from services.rebalancer.executor import (
    POST_ONLY_CANCEL_FAILED,
    TradeExecutor,
    is_adjusted_order_result,
    normalize_adjusted_order,
    resolve_order_side,
    resolve_primary_order_id,
)
from tests.mocks.rebalance_data import make_recommendation, make_request


def post_only_result(filled_amount, status="open", **fields):
    return AdjustedOrderResult(
        order=ExchangeOrder(id="maker-1,maker-2", symbol="BTC/KRW", side="buy", type="limit", status=status),
        execution_mode=ExecutionMode.LIMIT_POST_ONLY.value,
        order_type="limit",
        time_in_force="po",
        requested_amount=50_000.0,
        filled_amount=filled_amount,
        **fields,
    )


class TestNormalization:
    def test_structured_result_passes_through(self):
        result = post_only_result(0.0)
        assert normalize_adjusted_order(result, make_request("BTC/KRW", 0.1)) is result

    def test_structured_dict_is_validated(self):
        payload = {"order": {"id": "x", "side": "buy"}, "execution_mode": "limit_ioc", "filled_ratio": 0.5}

        assert is_adjusted_order_result(payload)
        adjusted = normalize_adjusted_order(payload, make_request("BTC/KRW", 0.1))

        assert adjusted.execution_mode == "limit_ioc"
        assert adjusted.order.id == "x"
        assert adjusted.filled_ratio == 0.5

    def test_legacy_order_inherits_request_metadata(self):
        request = make_request("BTC/KRW", -0.5, trigger_reason="excluded_staged_exit", expected_edge_rate=0.01)
        adjusted = normalize_adjusted_order({"id": "x", "side": "sell", "cost": 7000}, request)

        assert adjusted.order.cost == 7000
        assert adjusted.execution_mode == ExecutionMode.MARKET.value
        assert adjusted.order_type == ExecutionMode.MARKET.value
        assert adjusted.trigger_reason == "excluded_staged_exit"
        assert adjusted.expected_edge_rate == 0.01

    def test_missing_response_has_no_order(self):
        assert normalize_adjusted_order(None, make_request("BTC/KRW", 0.1)).order is None


@pytest.mark.parametrize("order_id,expected", [
    ("abc", "abc"),
    (" abc , def ", "abc"),
    ("", None),
    (None, None),
])
def test_resolve_primary_order_id(order_id, expected):
    assert resolve_primary_order_id(ExchangeOrder(id=order_id)) == expected


@pytest.mark.parametrize("value,expected", [
    (OrderSide.SELL, OrderSide.SELL),
    ("buy", OrderSide.BUY),
    (" BUY ", OrderSide.BUY),
    ("Bid", OrderSide.BUY),
    ("ASK", OrderSide.SELL),
])
def test_resolve_order_side(value, expected):
    assert resolve_order_side(value) == expected


@pytest.mark.parametrize("value", ["hold", "", None])
def test_resolve_order_side_rejects_unknown(value):
    with pytest.raises(ValidationError):
        resolve_order_side(value)


class TestExecuteTrade:
    @pytest.fixture
    def executor(self, exchange, trade_store):
        return TradeExecutor(exchange, trade_store)

    @pytest.mark.asyncio
    async def test_market_fill_is_saved(self, executor, exchange, trade_store):
        recommendation = make_recommendation("BTC/KRW")
        exchange.profit = 120.0
        request = make_request("BTC/KRW", 0.2, recommendation=recommendation, trigger_reason="included_rebalance")

        trade = await executor.execute_trade("user-1", request)

        assert trade is trade_store.trades[0]
        assert trade.id == "trade-1"
        assert trade.type == OrderSide.BUY
        assert trade.amount == 10_000.0
        assert trade.profit == 120.0
        assert trade.execution_mode == "market"
        assert trade.trigger_reason == "included_rebalance"
        assert trade.recommendation == recommendation

    @pytest.mark.asyncio
    async def test_uppercase_side_from_adapter_is_saved(self, executor, exchange, trade_store):
        exchange.get_order_type = lambda order: "BID"

        trade = await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2))

        assert trade.type == OrderSide.BUY
        assert len(trade_store.trades) == 1

    @pytest.mark.asyncio
    async def test_unknown_side_is_logged_and_not_saved(self, executor, exchange, trade_store):
        exchange.get_order_type = lambda order: "unknown"

        assert await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2)) is None
        assert trade_store.trades == []

    @pytest.mark.asyncio
    async def test_no_order_means_no_trade(self, executor, exchange, trade_store):
        exchange.order_responder = lambda request: None

        assert await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2)) is None
        assert trade_store.trades == []

    @pytest.mark.asyncio
    async def test_exchange_rejection_returns_none(self, executor, exchange, trade_store):
        def reject(request):
            raise ExchangeAPIError("insufficient funds", exchange="mock")

        exchange.order_responder = reject

        assert await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2)) is None
        assert trade_store.trades == []

    @pytest.mark.asyncio
    async def test_zero_fill_market_order_is_not_saved(self, executor, exchange, trade_store):
        exchange.order_responder = lambda request: ExchangeOrder(id="o-1", side="buy", status="closed", cost=0.0)

        assert await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2)) is None
        assert exchange.cancel_calls == []
        assert trade_store.trades == []

    @pytest.mark.asyncio
    async def test_unfilled_post_only_is_cancelled(self, executor, exchange, trade_store):
        exchange.order_responder = lambda request: post_only_result(0.0)

        assert await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2)) is None
        assert exchange.cancel_calls == [("user-1", "maker-1", "BTC/KRW")]
        assert trade_store.trades == []

    @pytest.mark.asyncio
    async def test_failed_cancel_saves_one_diagnostic_trade(self, executor, exchange, trade_store):
        exchange.order_responder = lambda request: post_only_result(0.0, status=None)
        exchange.cancel_error = OrderCancelError("cancel rejected", order_id="maker-1", symbol="BTC/KRW")

        assert await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2)) is None

        [diagnostic] = trade_store.trades
        assert diagnostic.amount == 0.0
        assert diagnostic.order_status == "open"
        assert diagnostic.trigger_reason == POST_ONLY_CANCEL_FAILED
        assert diagnostic.execution_mode == ExecutionMode.LIMIT_POST_ONLY.value

    @pytest.mark.asyncio
    async def test_failed_cancel_keeps_request_trigger(self, executor, exchange, trade_store):
        exchange.order_responder = lambda request: post_only_result(0.0)
        exchange.cancel_error = OrderCancelError("cancel rejected", order_id="maker-1", symbol="BTC/KRW")

        await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2, trigger_reason="included_rebalance"))

        assert trade_store.trades[0].trigger_reason == "included_rebalance"

    @pytest.mark.asyncio
    async def test_partial_post_only_fill_cancels_remainder(self, executor, exchange, trade_store):
        exchange.order_responder = lambda request: post_only_result(20_000.0, expected_edge_rate=0.01)

        trade = await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2))

        assert exchange.cancel_calls == [("user-1", "maker-1", "BTC/KRW")]
        assert trade.amount == 20_000.0
        assert trade.filled_ratio == pytest.approx(0.4)
        assert trade.order_status == "canceled"
        assert trade.missed_opportunity_cost == pytest.approx(300.0)

    @pytest.mark.asyncio
    async def test_partial_fill_stays_open_when_cancel_fails(self, executor, exchange, trade_store):
        exchange.order_responder = lambda request: post_only_result(20_000.0)
        exchange.cancel_error = OrderCancelError("cancel rejected", order_id="maker-1", symbol="BTC/KRW")

        trade = await executor.execute_trade("user-1", make_request("BTC/KRW", 0.2))

        assert trade.order_status == "open"
        assert len(trade_store.trades) == 1
