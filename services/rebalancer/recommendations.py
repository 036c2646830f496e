# Recommendation ingestion, priority ordering and inclusion filters
from collections import OrderedDict
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from core.logging import get_logger
from core.trading.models import (
    Category,
    HoldingItem,
    Recommendation,
    RecommendationAction,
)
from core.utils.exceptions import RecommendationPayloadError
from core.utils.numeric import EPSILON, clamp, clamp01, is_finite_number, to_float

logger = get_logger(__name__, component="rebalancer")

QUOTE_SUFFIX = "/KRW"
MAX_RISK_FLAGS = 10

# Pass-through numeric fields copied verbatim when present and finite
_OPTIONAL_NUMERIC_FIELDS = (
    "decision_confidence",
    "weight",
    "model_target_weight",
    "prev_model_target_weight",
    "buy_score",
    "sell_score",
    "expected_edge_rate",
    "estimated_cost_rate",
    "spread_rate",
    "impact_rate",
)


def is_krw_symbol(symbol: str) -> bool:
    return symbol.endswith(QUOTE_SUFFIX)


def is_orderable_symbol(symbol: str, orderable_symbols: Optional[Iterable[str]] = None) -> bool:
    """Quote-currency symbols are orderable unless a known orderable set excludes them."""
    if not is_krw_symbol(symbol):
        return False
    if orderable_symbols is None:
        return True
    return symbol in orderable_symbols


def normalize_action(action: Any) -> RecommendationAction:
    try:
        return RecommendationAction(action)
    except ValueError:
        return RecommendationAction.HOLD


def normalize_recommendation_payload(
    raw: Any,
    category: Category,
    expected_symbol: Optional[str] = None,
    drop_on_symbol_mismatch: bool = False,
) -> Optional[Recommendation]:
    """Parse one raw model output into a Recommendation.

    This is the only place raw recommendation values are coerced. Returns
    None when the payload names a different symbol and
    ``drop_on_symbol_mismatch`` is set.
    """
    if not isinstance(raw, Mapping):
        raise RecommendationPayloadError(
            "Recommendation payload must be an object",
            field="payload",
            value=raw,
            expected_type="mapping",
        )

    output_symbol = raw.get("symbol").strip() if isinstance(raw.get("symbol"), str) else ""
    symbol = output_symbol
    if expected_symbol is not None:
        if output_symbol != expected_symbol:
            logger.warning("Recommendation symbol mismatch",
                           output_symbol=output_symbol,
                           expected_symbol=expected_symbol,
                           dropped=drop_on_symbol_mismatch)
            if drop_on_symbol_mismatch:
                return None
        symbol = expected_symbol

    if not symbol:
        raise RecommendationPayloadError(
            "Recommendation payload has no symbol",
            field="symbol",
            value=raw.get("symbol"),
            expected_type="str",
        )

    intensity = to_float(raw.get("intensity"))
    confidence = to_float(raw.get("confidence"))
    volatility = to_float(raw.get("expected_volatility_pct"))
    risk_flags = raw.get("risk_flags")
    reason = raw.get("reason")

    data: Dict[str, Any] = {
        "id": raw.get("id"),
        "symbol": symbol,
        "category": category,
        "action": normalize_action(raw.get("action")),
        "intensity": clamp(intensity, -1.0, 1.0) if intensity is not None else 0.0,
        "confidence": clamp01(confidence) if confidence is not None else 0.0,
        "expected_volatility_pct": max(0.0, volatility) if volatility is not None else 0.0,
        "risk_flags": [flag for flag in risk_flags if isinstance(flag, str)][:MAX_RISK_FLAGS]
        if isinstance(risk_flags, list) else [],
        "reason": reason.strip() if isinstance(reason, str) else "",
        "has_stock": bool(raw.get("has_stock", False)),
    }
    for name in _OPTIONAL_NUMERIC_FIELDS:
        value = to_float(raw.get(name))
        if value is not None:
            data[name] = value

    return Recommendation(**data)


def recommendation_score(item: Recommendation) -> float:
    weight = item.weight if item.weight is not None else 0.1
    confidence = item.confidence if item.confidence is not None else 0.7
    return weight * 0.6 + confidence * 0.4


def buy_priority_score(item: Recommendation) -> float:
    if is_finite_number(item.buy_score):
        return clamp01(item.buy_score)
    return clamp01(item.intensity)


def _compare_priority(a: Recommendation, b: Recommendation) -> float:
    # Held assets first to minimize churn; their relative order is preserved
    if a.has_stock and b.has_stock:
        return 0
    if a.has_stock:
        return -1
    if b.has_stock:
        return 1

    buy_score_diff = buy_priority_score(b) - buy_priority_score(a)
    if abs(buy_score_diff) >= EPSILON:
        return buy_score_diff

    intensity_diff = b.intensity - a.intensity
    if abs(intensity_diff) >= EPSILON:
        return intensity_diff

    score_diff = recommendation_score(b) - recommendation_score(a)
    if abs(score_diff) < EPSILON:
        return 0
    return score_diff


def sort_by_priority(items: Iterable[Recommendation]) -> List[Recommendation]:
    return sorted(items, key=cmp_to_key(_compare_priority))


def is_no_trade_recommendation(item: Recommendation, min_allocation_confidence: float) -> bool:
    if item.action in (RecommendationAction.NO_TRADE, RecommendationAction.HOLD):
        return True
    if is_finite_number(item.decision_confidence):
        return item.decision_confidence < min_allocation_confidence
    return False


def is_included_recommendation(item: Recommendation, minimum_trade_intensity: float,
                               min_allocation_confidence: float) -> bool:
    if is_no_trade_recommendation(item, min_allocation_confidence):
        return False
    if is_finite_number(item.model_target_weight):
        return clamp01(item.model_target_weight) > 0
    return item.intensity > minimum_trade_intensity


def _group_by_category(items: Iterable[Recommendation]) -> List[Tuple[Category, List[Recommendation]]]:
    grouped: "OrderedDict[Category, List[Recommendation]]" = OrderedDict()
    for item in items:
        grouped.setdefault(item.category, []).append(item)
    return list(grouped.items())


def _included_for_category(items: Sequence[Recommendation], category: Category,
                           category_slots: Mapping[Category, int], minimum_trade_intensity: float,
                           min_allocation_confidence: float) -> List[Recommendation]:
    included = [
        item for item in sort_by_priority(items)
        if is_included_recommendation(item, minimum_trade_intensity, min_allocation_confidence)
    ]
    return included[:max(0, category_slots.get(category, 0))]


def filter_included_recommendations_by_category(
    items: Iterable[Recommendation],
    category_slots: Mapping[Category, int],
    minimum_trade_intensity: float,
    min_allocation_confidence: float,
) -> List[Recommendation]:
    """Included set: per-category quota first, then one global priority order."""
    filtered: List[Recommendation] = []
    for category, category_items in _group_by_category(items):
        filtered.extend(_included_for_category(
            category_items, category, category_slots, minimum_trade_intensity, min_allocation_confidence
        ))
    return sort_by_priority(filtered)


def filter_excluded_recommendations_by_category(
    items: Iterable[Recommendation],
    category_slots: Mapping[Category, int],
    minimum_trade_intensity: float,
    min_allocation_confidence: float,
) -> List[Recommendation]:
    """Everything that missed its category quota, excluding hold / no-trade items."""
    filtered: List[Recommendation] = []
    for category, category_items in _group_by_category(items):
        included_ids = {id(item) for item in _included_for_category(
            category_items, category, category_slots, minimum_trade_intensity, min_allocation_confidence
        )}
        filtered.extend(
            item for item in sort_by_priority(category_items)
            if id(item) not in included_ids
            and not is_no_trade_recommendation(item, min_allocation_confidence)
        )
    return sort_by_priority(filtered)


def apply_held_asset_flags(items: Iterable[Recommendation],
                           holdings: Iterable[HoldingItem]) -> List[Recommendation]:
    held_keys: Set[str] = {holding.key for holding in holdings}
    return [item.model_copy(update={"has_stock": item.holding_key in held_keys}) for item in items]


def filter_unique_non_blacklisted(items: Iterable[Recommendation],
                                  blacklist: Iterable[str]) -> Tuple[List[Recommendation], List[str]]:
    """Keep the first recommendation per symbol and drop blacklisted symbols.

    Returns the kept items and the symbols that were dropped by the blacklist.
    """
    blacklisted = set(blacklist)
    seen: Set[str] = set()
    kept: List[Recommendation] = []
    dropped: List[str] = []
    for item in items:
        if item.symbol in seen:
            continue
        seen.add(item.symbol)
        if item.symbol in blacklisted:
            dropped.append(item.symbol)
            continue
        kept.append(item)
    return kept, dropped
