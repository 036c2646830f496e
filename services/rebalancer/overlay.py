"""Sell-side overlays and the expected-edge cost gate.

The payoff overlay tightens an already negative diff when the model sees
either a volatility-driven stop-loss or a shrinking target (trailing
take-profit). It never turns a buy into a sell and never loosens a sell.
"""

from dataclasses import dataclass
from typing import Optional

from core.trading.models import Recommendation, RecommendationAction, TradePolicy
from core.utils.numeric import clamp01, is_finite_number

STOP_LOSS_SELL_SCORE = 0.75
STOP_LOSS_MIN_VOLATILITY = 0.03
STOP_LOSS_VOLATILITY_FACTOR = 4
TRAILING_MAX_BUY_SCORE = 0.35
TRAILING_MIN_CONFIDENCE = 0.4
TRAILING_MAX_DROP = 0.8
FULL_EXIT_MIN_CONFIDENCE = 0.6

VOLATILITY_STOP_LOSS = "volatility_stop_loss"
TRAILING_TAKE_PROFIT = "trailing_take_profit"


@dataclass(frozen=True)
class PayoffOverlayResult:
    diff: float
    trigger_reason: Optional[str] = None


def _decision_confidence(recommendation: Recommendation, default: float) -> float:
    if recommendation.decision_confidence is not None:
        return clamp01(recommendation.decision_confidence)
    if recommendation.confidence is not None:
        return clamp01(recommendation.confidence)
    return default


def resolve_payoff_overlay_sell_diff(policy: TradePolicy, diff: float,
                                     recommendation: Optional[Recommendation]) -> PayoffOverlayResult:
    if recommendation is None or diff >= 0:
        return PayoffOverlayResult(diff)

    volatility = recommendation.expected_volatility_pct
    volatility = volatility if is_finite_number(volatility) else 0.0
    confidence = _decision_confidence(recommendation, 0.5)
    sell_score = clamp01(recommendation.sell_score)
    buy_score = clamp01(recommendation.buy_score)
    previous_target = clamp01(recommendation.prev_model_target_weight)
    current_target = clamp01(recommendation.model_target_weight)

    if sell_score >= STOP_LOSS_SELL_SCORE and volatility >= STOP_LOSS_MIN_VOLATILITY:
        floor = max(policy.payoff_overlay_stop_loss_min, -min(1.0, volatility * STOP_LOSS_VOLATILITY_FACTOR))
        return PayoffOverlayResult(min(diff, floor), VOLATILITY_STOP_LOSS)

    if (previous_target > 0 and current_target < previous_target
            and buy_score < TRAILING_MAX_BUY_SCORE and confidence >= TRAILING_MIN_CONFIDENCE):
        floor = max(policy.payoff_overlay_trailing_min, -min(TRAILING_MAX_DROP, previous_target - current_target))
        return PayoffOverlayResult(min(diff, floor), TRAILING_TAKE_PROFIT)

    return PayoffOverlayResult(diff)


def resolve_staged_exit_diff(policy: TradePolicy, recommendation: Optional[Recommendation]) -> float:
    """Sell intensity for a holding that fell out of the included set."""
    if recommendation is None:
        return policy.staged_exit_medium

    confidence = _decision_confidence(recommendation, 0.5)
    if recommendation.action == RecommendationAction.SELL and confidence >= FULL_EXIT_MIN_CONFIDENCE:
        return policy.staged_exit_full
    if recommendation.action in (RecommendationAction.HOLD, RecommendationAction.NO_TRADE):
        return policy.staged_exit_light
    if confidence < policy.min_allocation_confidence:
        return policy.staged_exit_light
    return policy.staged_exit_medium


def resolve_expected_edge_rate(delta_weight: float, recommendation: Optional[Recommendation]) -> float:
    if recommendation is not None and is_finite_number(recommendation.expected_edge_rate):
        return max(0.0, recommendation.expected_edge_rate)
    conviction = _decision_confidence(recommendation, 1.0) if recommendation is not None else 1.0
    return clamp01(abs(delta_weight)) * conviction


def resolve_estimated_cost_rate(policy: TradePolicy, recommendation: Optional[Recommendation]) -> float:
    if recommendation is not None and is_finite_number(recommendation.estimated_cost_rate):
        return max(0.0, recommendation.estimated_cost_rate)
    return policy.estimated_fee_rate + policy.estimated_slippage_rate


def passes_expected_edge_gate(policy: TradePolicy, expected_edge_rate: float, estimated_cost_rate: float) -> bool:
    return expected_edge_rate > estimated_cost_rate + policy.edge_risk_buffer_rate
