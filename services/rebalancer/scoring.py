# Recommendation signal scoring
from dataclasses import dataclass
from typing import Optional

from core.config.settings import SignalSettings
from core.trading.models import (
    DEFAULT_TRADE_POLICY,
    MarketFeatures,
    Recommendation,
    RecommendationAction,
    TradePolicy,
)
from core.utils.numeric import clamp01, is_finite_number

DEFAULT_SIGNAL_SETTINGS = SignalSettings()

# Cost telemetry floors
MIN_SPREAD_RATE = 0.0003
MAX_SPREAD_RATE = 0.003
MIN_IMPACT_RATE = 0.0002
DEFAULT_TREND_PERSISTENCE = 50


@dataclass(frozen=True)
class ModelSignals:
    feature_score: float
    buy_score: float
    sell_score: float
    model_target_weight: float
    action: RecommendationAction


@dataclass(frozen=True)
class TradeCostTelemetry:
    expected_edge_rate: float
    estimated_cost_rate: float
    spread_rate: float
    impact_rate: float


def _percent(value: Optional[float], scale: float) -> float:
    return clamp01((value if is_finite_number(value) else 0) / scale)


def calculate_feature_score(features: Optional[MarketFeatures],
                            settings: SignalSettings = DEFAULT_SIGNAL_SETTINGS) -> float:
    """Weighted market-quality score in [0, 1]; 0 without features."""
    if features is None:
        return 0.0

    confidence = _percent(features.confidence, 100)
    momentum_strength = _percent(features.momentum_strength, 100)
    liquidity_score = _percent(features.liquidity_score, 10)
    volatility = features.volatility if is_finite_number(features.volatility) else settings.volatility_reference
    volatility_score = clamp01(1 - clamp01(volatility / settings.volatility_reference))
    intensity_stability = _percent(features.intensity_stability, 100)

    return clamp01(
        settings.feature_confidence_weight * confidence
        + settings.feature_momentum_weight * momentum_strength
        + settings.feature_liquidity_weight * liquidity_score
        + settings.feature_volatility_weight * volatility_score
        + settings.feature_stability_weight * intensity_stability
    )


def resolve_action(intensity: float, sell_score: float, model_target_weight: float,
                   settings: SignalSettings = DEFAULT_SIGNAL_SETTINGS) -> RecommendationAction:
    if model_target_weight <= 0:
        if intensity <= settings.minimum_trade_intensity or sell_score >= settings.sell_score_threshold:
            return RecommendationAction.SELL
        return RecommendationAction.HOLD
    return RecommendationAction.BUY


def calculate_model_signals(intensity: float, features: Optional[MarketFeatures] = None,
                            settings: SignalSettings = DEFAULT_SIGNAL_SETTINGS) -> ModelSignals:
    """Blend model direction with feature quality into buy/sell scores and a base target weight."""
    ai_buy = clamp01(intensity)
    ai_sell = clamp01(-intensity)
    feature_score = calculate_feature_score(features, settings)
    buy_score = clamp01(settings.ai_signal_weight * ai_buy + settings.feature_signal_weight * feature_score)
    sell_score = clamp01(settings.ai_signal_weight * ai_sell + settings.feature_signal_weight * (1 - feature_score))

    model_target_weight = clamp01(buy_score)
    if intensity <= settings.minimum_trade_intensity or sell_score >= settings.sell_score_threshold:
        model_target_weight = 0.0

    return ModelSignals(
        feature_score=feature_score,
        buy_score=buy_score,
        sell_score=sell_score,
        model_target_weight=model_target_weight,
        action=resolve_action(intensity, sell_score, model_target_weight, settings),
    )


def calculate_regime_adjusted_target_weight(base_target_weight: float, regime_multiplier: float) -> float:
    if not is_finite_number(base_target_weight) or base_target_weight <= 0:
        return 0.0
    multiplier = regime_multiplier if is_finite_number(regime_multiplier) else 1.0
    return clamp01(base_target_weight * multiplier)


def resolve_target_weight(recommendation: Recommendation, regime_multiplier: float,
                          settings: SignalSettings = DEFAULT_SIGNAL_SETTINGS) -> float:
    """Regime-adjusted target weight, scoring the intensity when no model weight was stored."""
    if is_finite_number(recommendation.model_target_weight):
        base_target_weight = clamp01(recommendation.model_target_weight)
    else:
        base_target_weight = calculate_model_signals(recommendation.intensity, None, settings).model_target_weight
    return calculate_regime_adjusted_target_weight(base_target_weight, regime_multiplier)


def derive_trade_cost_telemetry(features: Optional[MarketFeatures], expected_volatility_pct: float,
                                decision_confidence: float,
                                policy: TradePolicy = DEFAULT_TRADE_POLICY) -> TradeCostTelemetry:
    """Estimate spread, market impact and expected edge for a recommendation."""
    liquidity = _percent(features.liquidity_score if features else None, 10)
    volatility = clamp01(expected_volatility_pct)
    trend_persistence = DEFAULT_TREND_PERSISTENCE
    if features is not None and is_finite_number(features.trend_persistence):
        trend_persistence = features.trend_persistence
    normalized_trend = clamp01(trend_persistence / 100)

    spread_rate = max(MIN_SPREAD_RATE, (1 - liquidity) * MAX_SPREAD_RATE)
    impact_rate = max(MIN_IMPACT_RATE, volatility * (1 - liquidity) * 0.5)

    return TradeCostTelemetry(
        expected_edge_rate=clamp01(clamp01(decision_confidence) * max(0.0, normalized_trend - 0.3)),
        estimated_cost_rate=policy.estimated_fee_rate + spread_rate + impact_rate,
        spread_rate=spread_rate,
        impact_rate=impact_rate,
    )
