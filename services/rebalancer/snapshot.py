# Execution snapshot: orderable symbols, tradable value and per-symbol weights
import asyncio
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Tuple

from core.logging import get_logger
from core.trading.interfaces import ExchangeAdapter
from core.trading.lock import LockGuard
from core.trading.models import BalanceEntry, Balances, ExecutionSnapshot
from core.utils.numeric import is_finite_number
from services.rebalancer.recommendations import is_krw_symbol, is_orderable_symbol

logger = get_logger(__name__, component="rebalancer")

PriceFetcher = Callable[[str], Awaitable[float]]
SymbolChecker = Callable[[str], Awaitable[bool]]


async def _check_symbol(symbol: str, is_symbol_exist: SymbolChecker) -> Tuple[str, bool, bool]:
    try:
        return symbol, True, bool(await is_symbol_exist(symbol))
    except Exception as e:
        logger.debug("Orderable symbol check failed", symbol=symbol, error=str(e))
        return symbol, False, False


async def build_orderable_symbol_set(symbols: Iterable[str],
                                     is_symbol_exist: SymbolChecker) -> Optional[FrozenSet[str]]:
    """Resolve which quote-currency symbols can be ordered.

    Symbols whose check itself failed are kept (fail open). Returns None
    only when every check failed, meaning orderability is unknown.
    """
    targets = list(dict.fromkeys(symbol for symbol in symbols if is_krw_symbol(symbol)))
    if not targets:
        return frozenset()

    checks = await asyncio.gather(*(_check_symbol(symbol, is_symbol_exist) for symbol in targets))
    checked_count = sum(1 for _, checked, _ in checks if checked)
    if checked_count < 1:
        logger.warning("Orderable symbol check failed for every symbol", symbols=len(targets))
        return None

    if checked_count < len(checks):
        logger.warning("Orderable symbol check partially failed",
                       checked=checked_count,
                       total=len(checks))

    return frozenset(symbol for symbol, checked, exists in checks if not checked or exists)


async def _position_value(entry: BalanceEntry, get_price: PriceFetcher,
                          orderable_symbols: Optional[FrozenSet[str]]) -> Tuple[str, float]:
    symbol = entry.symbol
    if not is_finite_number(entry.balance) or entry.balance <= 0:
        return symbol, 0.0
    if not is_orderable_symbol(symbol, orderable_symbols):
        return symbol, 0.0

    try:
        price = await get_price(symbol)
    except Exception as e:
        # Fall back to the average buy price so sizing stays available
        logger.warning("Price fetch failed, using average buy price", symbol=symbol, error=str(e))
        if not is_finite_number(entry.avg_buy_price) or entry.avg_buy_price <= 0:
            return symbol, 0.0
        return symbol, entry.balance * entry.avg_buy_price
    return symbol, entry.balance * price


async def build_tradable_market_value_map(balances: Balances, get_price: PriceFetcher,
                                          orderable_symbols: Optional[FrozenSet[str]] = None) -> Dict[str, float]:
    values = await asyncio.gather(
        *(_position_value(entry, get_price, orderable_symbols) for entry in balances.positions())
    )
    return {symbol: value for symbol, value in values if value > 0}


async def build_current_weight_map(balances: Balances, total_market_value: float, get_price: PriceFetcher,
                                   orderable_symbols: Optional[FrozenSet[str]] = None) -> Dict[str, float]:
    """Per-symbol share of ``total_market_value``; empty when the total is not positive."""
    if not is_finite_number(total_market_value) or total_market_value <= 0:
        return {}

    value_map = await build_tradable_market_value_map(balances, get_price, orderable_symbols)
    weights = {symbol: value / total_market_value for symbol, value in value_map.items()}
    return {symbol: weight for symbol, weight in weights.items() if weight > 0}


async def build_execution_snapshot(exchange: ExchangeAdapter, balances: Balances,
                                   reference_symbols: Iterable[str], guard: LockGuard) -> ExecutionSnapshot:
    """Build one immutable account view, asserting the lock after every async step."""
    orderable_symbols = await build_orderable_symbol_set(
        [*reference_symbols, *(entry.symbol for entry in balances.positions())],
        exchange.is_symbol_exist,
    )
    guard.assert_held()

    market_price = await exchange.calculate_tradable_market_value(balances, orderable_symbols)
    guard.assert_held()

    current_weights = await build_current_weight_map(balances, market_price, exchange.get_price, orderable_symbols)
    guard.assert_held()

    tradable_market_value_map = await build_tradable_market_value_map(
        balances, exchange.get_price, orderable_symbols
    )
    guard.assert_held()

    logger.debug("Execution snapshot built",
                 user_id=guard.user_id,
                 market_price=market_price,
                 orderable_symbols=None if orderable_symbols is None else len(orderable_symbols),
                 positions=len(tradable_market_value_map))

    return ExecutionSnapshot(
        balances=balances,
        orderable_symbols=orderable_symbols,
        market_price=market_price,
        current_weights=current_weights,
        tradable_market_value_map=tradable_market_value_map,
    )
