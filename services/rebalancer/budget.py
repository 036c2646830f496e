# Buy-side budget scaling against available quote-currency cash
import dataclasses
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence

from core.trading.models import Balances, TradeRequest
from core.utils.numeric import is_finite_number

KRW = "KRW"


@dataclass(frozen=True)
class BudgetEvent:
    available_krw: float
    total_estimated: float
    requested_count: int
    scale: Optional[float] = None


BudgetCallback = Callable[[BudgetEvent], None]


def resolve_available_krw_balance(balances: Balances) -> float:
    """Spendable KRW: the cash account line first, then the ``free`` map."""
    for entry in balances.info:
        if entry.is_cash and entry.currency.upper() == KRW:
            if is_finite_number(entry.balance) and entry.balance > 0:
                return entry.balance
            break

    free = balances.free.get(KRW, 0.0)
    if is_finite_number(free) and free > 0:
        return free
    return 0.0


def estimate_buy_notional(request: TradeRequest,
                          tradable_market_value_map: Optional[Mapping[str, float]] = None,
                          fallback_market_price: Optional[float] = None) -> float:
    if not is_finite_number(request.diff) or request.diff <= 0:
        return 0.0

    base_value = None
    if tradable_market_value_map is not None:
        base_value = tradable_market_value_map.get(request.symbol)
    if base_value is None:
        base_value = fallback_market_price if fallback_market_price is not None else request.market_price
    if not is_finite_number(base_value) or base_value <= 0:
        return 0.0

    estimated = base_value * request.diff
    if not is_finite_number(estimated) or estimated <= 0:
        return 0.0
    return estimated


def scale_buy_requests_to_available_krw(
    buy_requests: Sequence[TradeRequest],
    available_krw: float,
    minimum_trade_price: float,
    tradable_market_value_map: Optional[Mapping[str, float]] = None,
    fallback_market_price: Optional[float] = None,
    on_budget_insufficient: Optional[BudgetCallback] = None,
    on_budget_scaled: Optional[BudgetCallback] = None,
) -> List[TradeRequest]:
    """Shrink buy diffs proportionally so the estimated total fits the cash.

    Requests whose scaled notional falls to or below ``minimum_trade_price``
    are dropped rather than shrunk further. Returns the input unchanged when
    it already fits.
    """
    if not buy_requests:
        return []

    estimates = [
        (request, estimate_buy_notional(request, tradable_market_value_map, fallback_market_price))
        for request in buy_requests
    ]
    total_estimated = sum(estimated for _, estimated in estimates)

    if not is_finite_number(available_krw) or available_krw <= 0 or total_estimated <= 0:
        if on_budget_insufficient is not None:
            on_budget_insufficient(BudgetEvent(available_krw, total_estimated, len(buy_requests)))
        return []

    if total_estimated <= available_krw:
        return list(buy_requests)

    scale = available_krw / total_estimated
    if on_budget_scaled is not None:
        on_budget_scaled(BudgetEvent(available_krw, total_estimated, len(buy_requests), scale))

    scaled: List[TradeRequest] = []
    for request, estimated in estimates:
        scaled_diff = request.diff * scale
        scaled_estimated = estimated * scale
        if not is_finite_number(scaled_diff) or scaled_diff <= 0:
            continue
        if not is_finite_number(scaled_estimated) or scaled_estimated <= minimum_trade_price:
            continue
        scaled.append(dataclasses.replace(request, diff=scaled_diff))

    if not scaled and on_budget_insufficient is not None:
        on_budget_insufficient(BudgetEvent(available_krw, total_estimated, len(buy_requests), scale))
    return scaled
