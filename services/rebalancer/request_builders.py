"""Trade request builders.

Each builder turns one kind of candidate into gated ``TradeRequest``s
against a single ``ExecutionSnapshot``:

* included: recommendations that won a category slot (buys and trims)
* excluded: holdings that lost their slot (staged exit sells)
* no-trade trim: overweight hold / no_trade positions
* missing inference: held balances with no recommendation at all

Every designed skip is logged with a machine-readable ``reason``.
"""

import math
from typing import Callable, Iterable, List, Optional, Sequence

from core.logging import get_logger
from core.trading.models import (
    DEFAULT_TRADE_POLICY,
    CategoryExposureCaps,
    ExecutionSnapshot,
    ExecutionUrgency,
    Recommendation,
    TradePolicy,
    TradeRequest,
)
from core.utils.numeric import EPSILON, clamp01, is_finite_number
from services.rebalancer.allocation import (
    CategoryAllocation,
    calculate_allocation_band,
    calculate_relative_diff,
    is_sell_amount_sufficient,
    should_reallocate,
)
from services.rebalancer.overlay import (
    passes_expected_edge_gate,
    resolve_estimated_cost_rate,
    resolve_expected_edge_rate,
    resolve_payoff_overlay_sell_diff,
    resolve_staged_exit_diff,
)
from services.rebalancer.recommendations import is_orderable_symbol

logger = get_logger(__name__, component="rebalancer")

INCLUDED_REBALANCE = "included_rebalance"
EXCLUDED_STAGED_EXIT = "excluded_staged_exit"
NO_TRADE_TRIM = "no_trade_trim"
MISSING_FROM_INFERENCE = "missing_from_inference"

TargetWeightResolver = Callable[[Recommendation, float], float]


def _request(snapshot: ExecutionSnapshot, recommendation: Recommendation, diff: float,
             expected_edge_rate: float, estimated_cost_rate: float,
             urgency: ExecutionUrgency, trigger_reason: str) -> TradeRequest:
    return TradeRequest(
        symbol=recommendation.symbol,
        diff=diff,
        balances=snapshot.balances,
        market_price=snapshot.market_price,
        recommendation=recommendation,
        execution_urgency=urgency,
        trigger_reason=trigger_reason,
        expected_edge_rate=expected_edge_rate,
        estimated_cost_rate=estimated_cost_rate,
        spread_rate=recommendation.spread_rate,
        impact_rate=recommendation.impact_rate,
    )


def build_included_trade_requests(
    snapshot: ExecutionSnapshot,
    candidates: Sequence[Recommendation],
    regime_multiplier: float,
    resolve_target_weight: TargetWeightResolver,
    target_slot_count: Optional[int] = None,
    rebalance_band_multiplier: float = 1.0,
    category_exposure_caps: Optional[CategoryExposureCaps] = None,
    policy: TradePolicy = DEFAULT_TRADE_POLICY,
) -> List[TradeRequest]:
    """Size included candidates by conviction within a shared target budget.

    Conviction is the regime-adjusted target weight scaled by confidence.
    The summed base targets, spread over ``target_slot_count`` slots, form
    the budget that convictions divide. Each candidate's category cap is
    reserved provisionally and committed only after every gate passes, so
    a rejected candidate never consumes its category's room.

    Returns requests sorted by diff ascending (sells first).
    """
    if not candidates:
        return []

    rows = []
    for recommendation in candidates:
        base_target_weight = resolve_target_weight(recommendation, regime_multiplier)
        confidence = recommendation.decision_confidence
        if confidence is None:
            confidence = recommendation.confidence if recommendation.confidence is not None else 1.0
        conviction = max(EPSILON, base_target_weight * clamp01(confidence))
        rows.append((recommendation, base_target_weight, conviction))

    total_conviction = sum(conviction for _, _, conviction in rows)
    slot_denominator = max(1, target_slot_count if target_slot_count is not None else len(candidates))
    target_budget = clamp01(sum(base for _, base, _ in rows) / slot_denominator)

    min_band = policy.min_allocation_band * rebalance_band_multiplier
    band_ratio = policy.allocation_band_ratio * rebalance_band_multiplier
    allocation = CategoryAllocation(caps=category_exposure_caps)
    requests: List[TradeRequest] = []

    for recommendation, base_target_weight, conviction in rows:
        symbol = recommendation.symbol
        if not is_orderable_symbol(symbol, snapshot.orderable_symbols):
            logger.info("Included candidate skipped", symbol=symbol, reason="not_orderable")
            continue

        normalized_weight = conviction / total_conviction if total_conviction > 0 else base_target_weight
        reservation = allocation.reserve(recommendation.category, clamp01(normalized_weight * target_budget))
        target_weight = reservation.target_weight
        current_weight = snapshot.current_weights.get(symbol, 0.0)
        delta_weight = target_weight - current_weight

        if not should_reallocate(target_weight, delta_weight, min_band, band_ratio):
            logger.info("Included candidate skipped",
                        symbol=symbol,
                        reason="allocation_band",
                        target_weight=target_weight,
                        current_weight=current_weight,
                        delta_weight=delta_weight,
                        required_band=calculate_allocation_band(target_weight, min_band, band_ratio))
            continue

        expected_edge_rate = resolve_expected_edge_rate(delta_weight, recommendation)
        estimated_cost_rate = resolve_estimated_cost_rate(policy, recommendation)
        if not passes_expected_edge_gate(policy, expected_edge_rate, estimated_cost_rate):
            logger.info("Included candidate skipped",
                        symbol=symbol,
                        reason="cost_gate",
                        delta_weight=delta_weight,
                        expected_edge_rate=expected_edge_rate,
                        estimated_cost_rate=estimated_cost_rate,
                        min_edge=estimated_cost_rate + policy.edge_risk_buffer_rate)
            continue

        diff = calculate_relative_diff(target_weight, current_weight)
        if not math.isfinite(diff) or abs(diff) < EPSILON:
            logger.info("Included candidate skipped", symbol=symbol, reason="invalid_diff", diff=diff)
            continue

        overlay = resolve_payoff_overlay_sell_diff(policy, diff, recommendation)
        adjusted_diff = overlay.diff
        logger.info("Included trade delta",
                    symbol=symbol,
                    target_weight=target_weight,
                    current_weight=current_weight,
                    delta_weight=delta_weight,
                    diff=adjusted_diff)

        if adjusted_diff < 0 and not is_sell_amount_sufficient(
                symbol, adjusted_diff, policy.minimum_trade_price, snapshot.tradable_market_value_map):
            logger.info("Included candidate skipped", symbol=symbol, reason="minimum_sell_amount",
                        diff=adjusted_diff)
            continue

        reservation.commit()
        requests.append(_request(
            snapshot,
            recommendation,
            adjusted_diff,
            expected_edge_rate,
            estimated_cost_rate,
            ExecutionUrgency.URGENT if adjusted_diff < 0 else ExecutionUrgency.NORMAL,
            overlay.trigger_reason or INCLUDED_REBALANCE,
        ))

    return sorted(requests, key=lambda request: request.diff)


def build_excluded_trade_requests(
    snapshot: ExecutionSnapshot,
    candidates: Iterable[Recommendation],
    policy: TradePolicy = DEFAULT_TRADE_POLICY,
) -> List[TradeRequest]:
    """Staged-exit sells for holdings that lost their slot."""
    requests: List[TradeRequest] = []
    for recommendation in candidates:
        symbol = recommendation.symbol
        diff = resolve_staged_exit_diff(policy, recommendation)
        if not is_orderable_symbol(symbol, snapshot.orderable_symbols):
            logger.info("Excluded candidate skipped", symbol=symbol, reason="not_orderable")
            continue
        if not is_sell_amount_sufficient(symbol, diff, policy.minimum_trade_price,
                                         snapshot.tradable_market_value_map):
            logger.info("Excluded candidate skipped", symbol=symbol, reason="minimum_sell_amount", diff=diff)
            continue

        requests.append(_request(
            snapshot,
            recommendation,
            diff,
            resolve_expected_edge_rate(1, recommendation),
            resolve_estimated_cost_rate(policy, recommendation),
            ExecutionUrgency.URGENT,
            EXCLUDED_STAGED_EXIT,
        ))
    return requests


def build_no_trade_trim_requests(
    snapshot: ExecutionSnapshot,
    candidates: Iterable[Recommendation],
    top_k: int,
    regime_multiplier: float,
    rebalance_band_multiplier: float = 1.0,
    category_exposure_caps: Optional[CategoryExposureCaps] = None,
    policy: TradePolicy = DEFAULT_TRADE_POLICY,
) -> List[TradeRequest]:
    """Trim overweight hold / no_trade positions back toward their model target.

    Uses its own category allocation, independent of the included pass.
    """
    normalized_top_k = max(1, top_k)
    min_band = policy.min_allocation_band * rebalance_band_multiplier
    band_ratio = policy.allocation_band_ratio * rebalance_band_multiplier
    allocation = CategoryAllocation(caps=category_exposure_caps)
    requests: List[TradeRequest] = []

    for recommendation in candidates:
        symbol = recommendation.symbol
        if not is_orderable_symbol(symbol, snapshot.orderable_symbols):
            logger.info("No-trade trim skipped", symbol=symbol, reason="not_orderable")
            continue

        if not is_finite_number(recommendation.model_target_weight):
            logger.info("No-trade trim skipped", symbol=symbol, reason="missing_target_weight")
            continue

        uncapped_target_weight = clamp01(
            clamp01(recommendation.model_target_weight) * regime_multiplier
        ) / normalized_top_k
        reservation = allocation.reserve(recommendation.category, uncapped_target_weight)
        target_weight = reservation.target_weight
        current_weight = snapshot.current_weights.get(symbol, 0.0)
        delta_weight = target_weight - current_weight

        if delta_weight >= 0:
            logger.info("No-trade trim skipped",
                        symbol=symbol,
                        reason="not_overweight",
                        target_weight=target_weight,
                        current_weight=current_weight,
                        delta_weight=delta_weight)
            continue

        if not should_reallocate(target_weight, delta_weight, min_band, band_ratio):
            logger.info("No-trade trim skipped",
                        symbol=symbol,
                        reason="allocation_band",
                        target_weight=target_weight,
                        current_weight=current_weight,
                        delta_weight=delta_weight,
                        required_band=calculate_allocation_band(target_weight, min_band, band_ratio))
            continue

        expected_edge_rate = resolve_expected_edge_rate(delta_weight, recommendation)
        estimated_cost_rate = resolve_estimated_cost_rate(policy, recommendation)
        if not passes_expected_edge_gate(policy, expected_edge_rate, estimated_cost_rate):
            logger.info("No-trade trim skipped",
                        symbol=symbol,
                        reason="cost_gate",
                        delta_weight=delta_weight,
                        expected_edge_rate=expected_edge_rate,
                        estimated_cost_rate=estimated_cost_rate,
                        min_edge=estimated_cost_rate + policy.edge_risk_buffer_rate)
            continue

        diff = calculate_relative_diff(target_weight, current_weight)
        if not math.isfinite(diff) or diff >= 0 or abs(diff) < EPSILON:
            logger.info("No-trade trim skipped",
                        symbol=symbol,
                        reason="invalid_diff",
                        target_weight=target_weight,
                        current_weight=current_weight,
                        diff=diff)
            continue

        overlay = resolve_payoff_overlay_sell_diff(policy, diff, recommendation)
        adjusted_diff = overlay.diff
        if not is_sell_amount_sufficient(symbol, adjusted_diff, policy.minimum_trade_price,
                                         snapshot.tradable_market_value_map):
            logger.info("No-trade trim skipped", symbol=symbol, reason="minimum_sell_amount",
                        diff=adjusted_diff)
            continue

        logger.info("No-trade trim",
                    symbol=symbol,
                    target_weight=target_weight,
                    current_weight=current_weight,
                    delta_weight=delta_weight,
                    diff=adjusted_diff)

        reservation.commit()
        requests.append(_request(
            snapshot,
            recommendation,
            adjusted_diff,
            expected_edge_rate,
            estimated_cost_rate,
            ExecutionUrgency.URGENT,
            overlay.trigger_reason or NO_TRADE_TRIM,
        ))

    return sorted(requests, key=lambda request: request.diff)


def build_missing_inference_sell_requests(
    snapshot: ExecutionSnapshot,
    recommendations: Iterable[Recommendation],
    policy: TradePolicy = DEFAULT_TRADE_POLICY,
    trigger_reason: str = MISSING_FROM_INFERENCE,
) -> List[TradeRequest]:
    """Full liquidation of held positions that received no recommendation."""
    recommended_symbols = {recommendation.symbol for recommendation in recommendations}
    diff = policy.staged_exit_full
    requests: List[TradeRequest] = []

    for entry in snapshot.balances.positions():
        symbol = entry.symbol
        if entry.balance <= 0 or symbol in recommended_symbols:
            continue
        if not is_orderable_symbol(symbol, snapshot.orderable_symbols):
            logger.info("Missing-inference sell skipped", symbol=symbol, reason="not_orderable")
            continue
        if not is_sell_amount_sufficient(symbol, diff, policy.minimum_trade_price,
                                         snapshot.tradable_market_value_map):
            logger.info("Missing-inference sell skipped", symbol=symbol, reason="minimum_sell_amount")
            continue

        requests.append(TradeRequest(
            symbol=symbol,
            diff=diff,
            balances=snapshot.balances,
            market_price=snapshot.market_price,
            execution_urgency=ExecutionUrgency.URGENT,
            trigger_reason=trigger_reason,
        ))
    return requests
