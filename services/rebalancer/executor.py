"""Single-trade execution: place, resolve fill metrics, persist.

Adapters may answer ``adjust_order`` with a structured
``AdjustedOrderResult`` (or its dict form) or with a bare order. Both are
normalized to one shape before any fill math runs.
"""

from dataclasses import dataclass
from typing import Optional

from core.logging import get_trading_logger_safe
from core.trading.interfaces import ExchangeAdapter, OrderResponse, TradeStore
from core.trading.models import (
    AdjustedOrderResult,
    ExchangeOrder,
    ExecutionMode,
    OrderSide,
    TradeRecord,
    TradeRequest,
)
from core.utils.exceptions import ExchangeError, ValidationError, create_error_context
from core.utils.numeric import EPSILON, clamp, is_finite_number, non_negative_or_none

logger = get_trading_logger_safe("trade_executor")

POST_ONLY_CANCEL_FAILED = "post_only_unfilled_cancel_failed"
OPEN_STATUS = "open"
CANCELED_STATUS = "canceled"


@dataclass(frozen=True)
class FillMetrics:
    requested_amount: Optional[float]
    filled_amount: float
    filled_ratio: Optional[float]
    has_executed_fill: bool


def is_adjusted_order_result(value: object) -> bool:
    if isinstance(value, AdjustedOrderResult):
        return True
    return isinstance(value, dict) and "order" in value and "execution_mode" in value


def normalize_adjusted_order(response: OrderResponse, request: TradeRequest) -> AdjustedOrderResult:
    """Fold structured and legacy adapter responses into one ``AdjustedOrderResult``."""
    if isinstance(response, AdjustedOrderResult):
        return response
    if is_adjusted_order_result(response):
        return AdjustedOrderResult.model_validate(response)

    order = response
    if isinstance(order, dict):
        order = ExchangeOrder.model_validate(order)

    return AdjustedOrderResult(
        order=order,
        execution_mode=request.execution_mode or ExecutionMode.MARKET.value,
        order_type=request.order_type or ExecutionMode.MARKET.value,
        time_in_force=request.time_in_force,
        request_price=request.request_price,
        requested_amount=request.requested_amount,
        expected_edge_rate=request.expected_edge_rate,
        estimated_cost_rate=request.estimated_cost_rate,
        spread_rate=request.spread_rate,
        impact_rate=request.impact_rate,
        gate_bypassed_reason=request.gate_bypassed_reason,
        trigger_reason=request.trigger_reason,
    )


def resolve_primary_order_id(order: ExchangeOrder) -> Optional[str]:
    """First id of a possibly comma-joined id string."""
    if not isinstance(order.id, str) or not order.id.strip():
        return None
    ids = [value.strip() for value in order.id.split(",") if value.strip()]
    return ids[0] if ids else None


_SIDE_ALIASES = {"bid": OrderSide.BUY, "ask": OrderSide.SELL}


def resolve_order_side(value: object) -> OrderSide:
    """Map an adapter's side ("buy", "BUY", "Bid", ...) to ``OrderSide``."""
    if isinstance(value, OrderSide):
        return value
    text = str(value).strip().lower() if value is not None else ""
    if text in _SIDE_ALIASES:
        return _SIDE_ALIASES[text]
    try:
        return OrderSide(text)
    except ValueError:
        raise ValidationError(f"Unknown order side: {value!r}", field="side", value=value,
                              expected_type="buy|sell") from None


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


class TradeExecutor:
    """Places one trade through the exchange adapter and records the result."""

    def __init__(self, exchange: ExchangeAdapter, trade_store: TradeStore):
        self.exchange = exchange
        self.trade_store = trade_store

    async def resolve_fill_metrics(self, adjusted: AdjustedOrderResult, request: TradeRequest,
                                   order: ExchangeOrder) -> FillMetrics:
        requested_amount = _first(adjusted.requested_amount, request.requested_amount)

        filled_amount = non_negative_or_none(adjusted.filled_amount)
        if filled_amount is None:
            filled_amount = non_negative_or_none(await self.exchange.calculate_amount(order))
        if filled_amount is None:
            filled_amount = 0.0

        filled_ratio = non_negative_or_none(adjusted.filled_ratio)
        if filled_ratio is None and requested_amount is not None and requested_amount > 0:
            filled_ratio = clamp(filled_amount / requested_amount, 0.0, 1.0)

        has_executed_fill = (
            filled_amount > EPSILON
            and (filled_ratio is None or filled_ratio > EPSILON)
        )
        return FillMetrics(requested_amount, filled_amount, filled_ratio, has_executed_fill)

    def _build_record(self, user_id: str, request: TradeRequest, adjusted: AdjustedOrderResult,
                      order: ExchangeOrder, side: OrderSide, fill: FillMetrics, **overrides) -> TradeRecord:
        data = dict(
            user_id=user_id,
            type=side,
            symbol=request.symbol,
            amount=fill.filled_amount,
            profit=0.0,
            recommendation=request.recommendation,
            execution_mode=_first(adjusted.execution_mode, request.execution_mode),
            order_type=_first(adjusted.order_type, request.order_type),
            time_in_force=_first(adjusted.time_in_force, request.time_in_force),
            request_price=_first(adjusted.request_price, request.request_price),
            average_price=adjusted.average_price,
            requested_amount=fill.requested_amount,
            filled_amount=fill.filled_amount,
            filled_ratio=fill.filled_ratio,
            order_status=_first(adjusted.order_status, order.status),
            expected_edge_rate=_first(adjusted.expected_edge_rate, request.expected_edge_rate),
            estimated_cost_rate=_first(adjusted.estimated_cost_rate, request.estimated_cost_rate),
            spread_rate=_first(adjusted.spread_rate, request.spread_rate),
            impact_rate=_first(adjusted.impact_rate, request.impact_rate),
            gate_bypassed_reason=_first(adjusted.gate_bypassed_reason, request.gate_bypassed_reason),
            trigger_reason=_first(adjusted.trigger_reason, request.trigger_reason),
        )
        data.update(overrides)
        return TradeRecord(**data)

    async def _cancel(self, user_id: str, order_id: str, symbol: str) -> bool:
        try:
            await self.exchange.cancel_order(user_id, order_id, symbol)
        except Exception as e:
            logger.warning("Post-only order cancel failed",
                           user_id=user_id,
                           symbol=symbol,
                           order_id=order_id,
                           error=str(e))
            return False
        logger.info("Post-only order cancelled", user_id=user_id, symbol=symbol, order_id=order_id)
        return True

    async def execute_trade(self, user_id: str, request: TradeRequest) -> Optional[TradeRecord]:
        """Place ``request`` and persist the resulting trade.

        Returns None when nothing filled. An unfilled post-only order is
        cancelled; if that cancel fails a zero-amount diagnostic trade is
        persisted before returning None.
        """
        logger.info("Trade started", user_id=user_id, symbol=request.symbol, diff=request.diff)

        try:
            response = await self.exchange.adjust_order(user_id, request)
        except ExchangeError as e:
            logger.error("Order placement rejected",
                         user_id=user_id,
                         symbol=request.symbol,
                         **create_error_context(e, "adjust_order"))
            return None

        adjusted = normalize_adjusted_order(response, request)
        order = adjusted.order
        if order is None:
            logger.info("No order placed", user_id=user_id, symbol=request.symbol)
            return None

        try:
            side = resolve_order_side(self.exchange.get_order_type(order))
        except ValidationError as e:
            logger.error("Order side unrecognized, trade not saved",
                         user_id=user_id,
                         symbol=request.symbol,
                         order_id=order.id,
                         **create_error_context(e, "get_order_type"))
            return None

        fill = await self.resolve_fill_metrics(adjusted, request, order)
        is_post_only = adjusted.execution_mode == ExecutionMode.LIMIT_POST_ONLY.value
        order_id = resolve_primary_order_id(order)

        if not fill.has_executed_fill:
            if is_post_only and order_id:
                if not await self._cancel(user_id, order_id, request.symbol):
                    await self.trade_store.save_trade(self._build_record(
                        user_id, request, adjusted, order, side, fill,
                        amount=0.0,
                        order_status=_first(adjusted.order_status, order.status, OPEN_STATUS),
                        missed_opportunity_cost=None,
                        trigger_reason=_first(adjusted.trigger_reason, request.trigger_reason,
                                              POST_ONLY_CANCEL_FAILED),
                    ))
                return None
            logger.info("No executed fill", user_id=user_id, symbol=request.symbol)
            return None

        order_status = _first(adjusted.order_status, order.status)
        if is_post_only and order_id and order_status == OPEN_STATUS:
            # Partially filled maker order: pull the resting remainder
            if await self._cancel(user_id, order_id, request.symbol):
                order_status = CANCELED_STATUS

        profit = await self.exchange.calculate_profit(request.balances, order, fill.filled_amount)
        expected_edge_rate = _first(adjusted.expected_edge_rate, request.expected_edge_rate)
        missed_opportunity_cost = None
        if (fill.requested_amount is not None and fill.requested_amount > 0
                and is_finite_number(expected_edge_rate)
                and is_finite_number(fill.filled_ratio) and fill.filled_ratio < 1):
            missed_opportunity_cost = fill.requested_amount * (1 - fill.filled_ratio) * expected_edge_rate

        logger.info("Trade calculated",
                    user_id=user_id,
                    symbol=request.symbol,
                    side=side.value,
                    amount=fill.filled_amount,
                    profit=profit)

        trade = await self.trade_store.save_trade(self._build_record(
            user_id, request, adjusted, order, side, fill,
            profit=profit,
            order_status=order_status,
            missed_opportunity_cost=missed_opportunity_cost,
        ))
        logger.info("Trade saved", user_id=user_id, symbol=request.symbol, trade_id=trade.id)
        return trade
