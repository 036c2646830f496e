"""Sell-first / buy-second rebalance workflow for one user run."""

import math
from typing import Callable, List, Optional, Sequence

from core.logging import get_logger, get_trading_logger_safe
from core.trading.interfaces import ExchangeAdapter, HoldingLedgerStore, NotifyCollaborator
from core.trading.lock import LockGuard
from core.trading.models import (
    DEFAULT_TRADE_POLICY,
    ExecutionSnapshot,
    TradeExecution,
    TradePolicy,
    TradeRecord,
    TradeRequest,
)
from core.trading.sequential import SequentialTradeExecutor
from core.utils.exceptions import DataUnavailableError, ExchangeError, create_error_context
from services.rebalancer.budget import (
    BudgetEvent,
    resolve_available_krw_balance,
    scale_buy_requests_to_available_krw,
)
from services.rebalancer.executor import TradeExecutor
from services.rebalancer.reconciler import (
    build_merged_holdings,
    collect_executed_buy_holding_items,
    collect_liquidated_holding_items,
)
from services.rebalancer.snapshot import build_execution_snapshot

logger = get_logger(__name__, component="rebalancer")
trading_logger = get_trading_logger_safe("rebalance_orchestrator")

RequestBuilder = Callable[[ExecutionSnapshot], List[TradeRequest]]


def apply_turnover_cap(requests: Sequence[TradeRequest], turnover_cap: float) -> List[TradeRequest]:
    """Keep the first ``max(1, ceil(n * turnover_cap))`` requests."""
    if not requests:
        return []
    limit = max(1, math.ceil(len(requests) * turnover_cap))
    return list(requests[:limit])


def _format_rate(value: Optional[float]) -> str:
    return "-" if value is None else f"{value * 100:.2f}%"


def format_trade_summary(trades: Sequence[TradeRecord]) -> str:
    """One plain-text line per trade."""
    lines = []
    for trade in trades:
        lines.append(
            f"{trade.symbol} {trade.type.value} amount={trade.amount:,.2f} profit={trade.profit:,.2f} "
            f"mode={trade.execution_mode or '-'} status={trade.order_status or '-'} "
            f"filled={_format_rate(trade.filled_ratio)} edge={_format_rate(trade.expected_edge_rate)} "
            f"cost={_format_rate(trade.estimated_cost_rate)} trigger={trade.trigger_reason or '-'}"
        )
    return "Rebalance result\n" + "\n".join(lines)


def _trades(executions: Sequence[TradeExecution]) -> List[TradeRecord]:
    return [execution.trade for execution in executions if execution.trade is not None]


class RebalanceOrchestrator:
    """Runs one rebalance: sells, balance refresh, scaled buys, ledger sync, notify."""

    def __init__(self, exchange: ExchangeAdapter, notifier: NotifyCollaborator,
                 holding_store: HoldingLedgerStore, trade_executor: TradeExecutor,
                 policy: TradePolicy = DEFAULT_TRADE_POLICY):
        self.exchange = exchange
        self.notifier = notifier
        self.holding_store = holding_store
        self.trade_executor = trade_executor
        self.policy = policy
        self.sequential = SequentialTradeExecutor()

    async def _run(self, user_id: str, requests: Sequence[TradeRequest], guard: LockGuard) -> List[TradeExecution]:
        return await self.sequential.run(
            requests,
            lambda request: self.trade_executor.execute_trade(user_id, request),
            guard,
        )

    async def execute_rebalance_trades(
        self,
        user_id: str,
        reference_symbols: Sequence[str],
        initial_snapshot: ExecutionSnapshot,
        turnover_cap: float,
        build_excluded_requests: RequestBuilder,
        build_included_requests: RequestBuilder,
        build_no_trade_trim_requests: RequestBuilder,
        guard: LockGuard,
        additional_sell_requests: Sequence[TradeRequest] = (),
        policy: Optional[TradePolicy] = None,
    ) -> List[TradeRecord]:
        """Execute sells, then budget-scaled buys, and replace the holdings ledger.

        ``guard`` is asserted between every network-bound step; a lost lock
        raises ``LockLostError`` and leaves already persisted trades in place.
        Exchange and notifier clients are released on every exit path.
        """
        policy = policy or self.policy
        try:
            excluded_requests = build_excluded_requests(initial_snapshot)
            included_requests = build_included_requests(initial_snapshot)
            no_trade_trim_requests = build_no_trade_trim_requests(initial_snapshot)
            raw_sell_requests = [
                *additional_sell_requests,
                *excluded_requests,
                *(request for request in included_requests if request.diff < 0),
                *no_trade_trim_requests,
            ]
            sell_requests = apply_turnover_cap(raw_sell_requests, turnover_cap)
            logger.info("Executing sell requests",
                        user_id=user_id,
                        requested=len(raw_sell_requests),
                        capped=len(sell_requests),
                        turnover_cap=turnover_cap)

            sell_executions = await self._run(user_id, sell_requests, guard)
            guard.assert_held()

            # Buys are sized from post-liquidation balances
            refreshed_snapshot = await self._refresh_snapshot(user_id, reference_symbols, guard)
            guard.assert_held()

            buy_executions: List[TradeExecution] = []
            if refreshed_snapshot is not None:
                refreshed_balances = refreshed_snapshot.balances
                buy_requests = [
                    request for request in build_included_requests(refreshed_snapshot) if request.diff > 0
                ]
                scaled_buy_requests = scale_buy_requests_to_available_krw(
                    buy_requests,
                    resolve_available_krw_balance(refreshed_balances),
                    policy.minimum_trade_price,
                    tradable_market_value_map=refreshed_snapshot.tradable_market_value_map,
                    fallback_market_price=refreshed_snapshot.market_price,
                    on_budget_insufficient=lambda event: self._log_budget("Buy budget insufficient", user_id, event),
                    on_budget_scaled=lambda event: self._log_budget("Buy budget scaled", user_id, event),
                )
                capped_buy_requests = apply_turnover_cap(scaled_buy_requests, turnover_cap)
                logger.info("Executing buy requests",
                            user_id=user_id,
                            requested=len(buy_requests),
                            capped=len(capped_buy_requests))

                buy_executions = await self._run(user_id, capped_buy_requests, guard)
                guard.assert_held()
            else:
                logger.warning("Balances unavailable after sells, skipping buys", user_id=user_id)

            existing_holdings = await self.holding_store.fetch_holdings_by_user(user_id)
            guard.assert_held()

            merged = build_merged_holdings(
                existing_holdings,
                collect_liquidated_holding_items(sell_executions, existing_holdings),
                collect_executed_buy_holding_items(buy_executions),
            )
            await self.holding_store.replace_holdings_for_user(user_id, merged)
            guard.assert_held()

            trades = _trades(sell_executions) + _trades(buy_executions)
            if trades:
                await self.notifier.notify(user_id, format_trade_summary(trades))
                guard.assert_held()

            trading_logger.info("Rebalance completed",
                                user_id=user_id,
                                sells=len(_trades(sell_executions)),
                                buys=len(_trades(buy_executions)),
                                holdings=len(merged))
            return trades
        finally:
            self.exchange.clear_clients()
            self.notifier.clear_clients()

    async def _refresh_snapshot(self, user_id: str, reference_symbols: Sequence[str],
                                guard: LockGuard) -> Optional[ExecutionSnapshot]:
        """Post-sell account view, or None when balances or prices cannot be fetched."""
        try:
            balances = await self.exchange.get_balances(user_id)
            guard.assert_held()
            if balances is None:
                return None
            return await build_execution_snapshot(self.exchange, balances, reference_symbols, guard)
        except (DataUnavailableError, ExchangeError) as e:
            logger.error("Balance refresh failed after sells",
                         user_id=user_id,
                         **create_error_context(e, "refresh_balances"))
            return None

    @staticmethod
    def _log_budget(message: str, user_id: str, event: BudgetEvent) -> None:
        logger.info(message,
                    user_id=user_id,
                    available_krw=event.available_krw,
                    total_estimated=event.total_estimated,
                    requested_count=event.requested_count,
                    scale=event.scale)
