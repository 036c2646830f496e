# Market regime policy: exposure, band, turnover and category caps
from typing import Awaitable, Callable, Optional

from core.logging import get_logger
from core.trading.models import CategoryExposureCaps, MarketRegimePolicy, MarketRegimeSnapshot
from core.utils.numeric import clamp, is_finite_number

logger = get_logger(__name__, component="rebalancer")

NEUTRAL_MARKET_REGIME_POLICY = MarketRegimePolicy(
    exposure_multiplier=1.0,
    rebalance_band_multiplier=1.0,
    turnover_cap=0.55,
    category_exposure_caps=CategoryExposureCaps(coin_major=0.6, coin_minor=0.45, nasdaq=0.25),
)

# Regime signal thresholds
BTC_DOMINANCE_HIGH = 58
BTC_DOMINANCE_LOW = 48
ALTCOIN_INDEX_HIGH = 75
ALTCOIN_INDEX_LOW = 25

MarketRegimeSnapshotReader = Callable[[], Awaitable[MarketRegimeSnapshot]]


def multiplier_by_fear_greed(index: Optional[float]) -> float:
    """Base exposure multiplier from the fear & greed index (0-100)."""
    if not is_finite_number(index):
        return 1.0
    if index <= 20:
        return 0.95
    if index <= 35:
        return 0.97
    if index >= 80:
        return 0.97
    if index >= 65:
        return 0.99
    return 1.0


def adjustment_by_market_signals(btc_dominance: Optional[float], altcoin_index: Optional[float]) -> float:
    """Exposure adjustment from BTC dominance and the altcoin season index."""
    if not is_finite_number(btc_dominance) or not is_finite_number(altcoin_index):
        return 0.0

    adjustment = 0.0
    if btc_dominance >= BTC_DOMINANCE_HIGH:
        adjustment -= 0.02
    elif btc_dominance <= BTC_DOMINANCE_LOW:
        adjustment += 0.01

    if altcoin_index >= ALTCOIN_INDEX_HIGH:
        adjustment += 0.02
    elif altcoin_index <= ALTCOIN_INDEX_LOW:
        adjustment -= 0.02

    return clamp(adjustment, -0.03, 0.03)


def build_market_regime_policy(snapshot: MarketRegimeSnapshot) -> MarketRegimePolicy:
    """Derive every regime multiplier and cap from one snapshot."""
    base_multiplier = multiplier_by_fear_greed(snapshot.fear_greed_index)
    adjustment = adjustment_by_market_signals(snapshot.btc_dominance, snapshot.altcoin_index)

    btc = snapshot.btc_dominance
    alt = snapshot.altcoin_index
    btc_dominant = is_finite_number(btc) and btc >= BTC_DOMINANCE_HIGH
    alt_weak = is_finite_number(alt) and alt <= ALTCOIN_INDEX_LOW
    alt_strong = is_finite_number(alt) and alt >= ALTCOIN_INDEX_HIGH

    rebalance_band_multiplier = 1.0
    if btc_dominant:
        rebalance_band_multiplier += 0.1
    if alt_weak:
        rebalance_band_multiplier += 0.1
    if alt_strong:
        rebalance_band_multiplier -= 0.08

    turnover_cap = 0.55
    if btc_dominant:
        turnover_cap -= 0.15
    if alt_weak:
        turnover_cap -= 0.1
    if alt_strong:
        turnover_cap += 0.15

    coin_major = 0.6 + (0.12 if btc_dominant else 0) + (0.08 if alt_weak else 0) - (0.1 if alt_strong else 0)
    coin_minor = 0.45 - (0.12 if btc_dominant else 0) - (0.1 if alt_weak else 0) + (0.2 if alt_strong else 0)
    nasdaq = 0.25 - (0.05 if btc_dominant else 0) - (0.03 if alt_weak else 0) + (0.03 if alt_strong else 0)

    return MarketRegimePolicy(
        exposure_multiplier=clamp(base_multiplier + adjustment, 0.75, 1.15),
        rebalance_band_multiplier=clamp(rebalance_band_multiplier, 0.85, 1.5),
        turnover_cap=clamp(turnover_cap, 0.2, 1.0),
        category_exposure_caps=CategoryExposureCaps(
            coin_major=clamp(coin_major, 0.35, 0.85),
            coin_minor=clamp(coin_minor, 0.15, 0.8),
            nasdaq=clamp(nasdaq, 0.1, 0.4),
        ),
    )


async def resolve_market_regime_policy(reader: MarketRegimeSnapshotReader) -> MarketRegimePolicy:
    """Read the regime snapshot and derive a policy. Never raises."""
    try:
        snapshot = await reader()
        policy = build_market_regime_policy(snapshot)
    except Exception as e:
        logger.warning("Market regime unavailable, using neutral policy", error=str(e))
        return NEUTRAL_MARKET_REGIME_POLICY

    logger.info("Market regime policy resolved",
                fear_greed_index=snapshot.fear_greed_index,
                btc_dominance=snapshot.btc_dominance,
                altcoin_index=snapshot.altcoin_index,
                exposure_multiplier=policy.exposure_multiplier,
                rebalance_band_multiplier=policy.rebalance_band_multiplier,
                turnover_cap=policy.turnover_cap)
    return policy


async def resolve_market_regime_multiplier(reader: MarketRegimeSnapshotReader) -> float:
    policy = await resolve_market_regime_policy(reader)
    return policy.exposure_multiplier
