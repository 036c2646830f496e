"""
Builders for balances, recommendations and snapshots used across rebalance tests.
"""
from typing import Dict, Iterable, Optional, Tuple

from core.trading.models import (
    Balances,
    BalanceEntry,
    Category,
    ExecutionSnapshot,
    Recommendation,
    TradeRequest,
)


def make_balances(krw: float = 0.0, positions: Optional[Dict[str, Tuple[float, float]]] = None) -> Balances:
    """``positions`` maps a base currency to (balance, avg_buy_price)."""
    info = [BalanceEntry(currency="KRW", unit_currency="KRW", balance=str(krw), avg_buy_price="0")]
    for currency, (balance, avg_buy_price) in (positions or {}).items():
        info.append(BalanceEntry(
            currency=currency,
            unit_currency="KRW",
            balance=str(balance),
            avg_buy_price=str(avg_buy_price),
        ))
    return Balances(info=info, free={"KRW": krw})


def make_recommendation(symbol: str, category: Category = Category.COIN_MAJOR, **fields) -> Recommendation:
    data = {"intensity": 0.5, "confidence": 0.8}
    data.update(fields)
    return Recommendation(symbol=symbol, category=category, **data)


def make_snapshot(balances: Optional[Balances] = None, market_price: float = 1_000_000.0,
                  current_weights: Optional[Dict[str, float]] = None,
                  values: Optional[Dict[str, float]] = None,
                  orderable: Optional[Iterable[str]] = None) -> ExecutionSnapshot:
    """``orderable`` of None means orderability unknown (every KRW symbol passes)."""
    return ExecutionSnapshot(
        balances=balances or make_balances(),
        orderable_symbols=frozenset(orderable) if orderable is not None else None,
        market_price=market_price,
        current_weights=dict(current_weights or {}),
        tradable_market_value_map=dict(values or {}),
    )


def make_request(symbol: str, diff: float, market_price: float = 1_000_000.0, **fields) -> TradeRequest:
    return TradeRequest(symbol=symbol, diff=diff, balances=make_balances(), market_price=market_price, **fields)
