# Holding ledger reconciliation from a run's executions
from collections import OrderedDict
from typing import Dict, Iterable, List, Set

from core.trading.models import (
    Category,
    HoldingItem,
    HoldingLedgerItem,
    OrderSide,
    TradeExecution,
)
from core.utils.numeric import EPSILON, is_finite_number


def collect_executed_buy_holding_items(executions: Iterable[TradeExecution]) -> List[HoldingItem]:
    """(symbol, category) pairs bought with a positive fill, one per key."""
    bought: "OrderedDict[str, HoldingItem]" = OrderedDict()
    for execution in executions:
        request, trade = execution.request, execution.trade
        if trade is None or request.recommendation is None or trade.type != OrderSide.BUY:
            continue
        if is_finite_number(trade.filled_amount) and trade.filled_amount <= 0:
            continue
        if is_finite_number(trade.filled_ratio) and trade.filled_ratio <= 0:
            continue

        item = HoldingItem(symbol=request.symbol, category=request.recommendation.category)
        bought[item.key] = item
    return list(bought.values())


def collect_liquidated_holding_items(executions: Iterable[TradeExecution],
                                     existing_holdings: Iterable[HoldingItem] = ()) -> List[HoldingItem]:
    """(symbol, category) pairs sold out in full.

    Requests without a recommendation fall back to every category the symbol
    is currently held under.
    """
    categories_by_symbol: Dict[str, Set[Category]] = {}
    for holding in existing_holdings:
        categories_by_symbol.setdefault(holding.symbol, set()).add(holding.category)

    removed: "OrderedDict[str, HoldingItem]" = OrderedDict()
    for execution in executions:
        request, trade = execution.request, execution.trade
        if trade is None or trade.type != OrderSide.SELL:
            continue
        if request.diff > -1 + EPSILON:
            continue

        if request.recommendation is not None:
            item = HoldingItem(symbol=request.symbol, category=request.recommendation.category)
            removed[item.key] = item
            continue

        for category in sorted(categories_by_symbol.get(request.symbol, ()), key=lambda c: c.value):
            item = HoldingItem(symbol=request.symbol, category=category)
            removed[item.key] = item
    return list(removed.values())


def build_merged_holdings(existing_holdings: Iterable[HoldingItem],
                          liquidated_items: Iterable[HoldingItem],
                          bought_items: Iterable[HoldingItem]) -> List[HoldingLedgerItem]:
    """(existing - liquidated) + bought, deduplicated and re-indexed from 0."""
    removed_keys = {item.key for item in liquidated_items}
    merged: "OrderedDict[str, HoldingItem]" = OrderedDict()

    for item in existing_holdings:
        if item.key not in removed_keys:
            merged.setdefault(item.key, item)

    # A pair both sold out and re-bought in the same run is held again
    for item in bought_items:
        merged.setdefault(item.key, item)

    return [
        HoldingLedgerItem(symbol=item.symbol, category=item.category, index=index)
        for index, item in enumerate(merged.values())
    ]
