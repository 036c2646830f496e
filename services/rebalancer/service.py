from functools import partial
from typing import List, Sequence

from core.config.settings import Settings
from core.logging import bind_user_context, get_trading_logger_safe
from core.logging.correlation import CorrelationIdManager, create_correlation_context
from core.trading.interfaces import ExchangeAdapter, HoldingLedgerStore, MarketRegimeReader
from core.trading.lock import LockGuard
from core.trading.models import Recommendation, TradeRecord
from services.rebalancer.orchestrator import RebalanceOrchestrator
from services.rebalancer.recommendations import (
    apply_held_asset_flags,
    filter_excluded_recommendations_by_category,
    filter_included_recommendations_by_category,
    filter_unique_non_blacklisted,
    is_no_trade_recommendation,
)
from services.rebalancer.regime import resolve_market_regime_policy
from services.rebalancer.request_builders import (
    build_excluded_trade_requests,
    build_included_trade_requests,
    build_missing_inference_sell_requests,
    build_no_trade_trim_requests,
)
from services.rebalancer.scoring import resolve_target_weight
from services.rebalancer.snapshot import build_execution_snapshot


class RebalanceService:
    """Per-user rebalance entry point called by the outer queue consumer.

    The caller already holds the user's trade lock and passes its guard in.
    """

    def __init__(self, settings: Settings, exchange: ExchangeAdapter, holding_store: HoldingLedgerStore,
                 orchestrator: RebalanceOrchestrator, regime_reader: MarketRegimeReader):
        self.settings = settings
        self.exchange = exchange
        self.holding_store = holding_store
        self.orchestrator = orchestrator
        self.regime_reader = regime_reader
        self.policy = settings.trade_policy.to_policy()
        self.logger = get_trading_logger_safe("rebalance_service")

    def _release_clients(self) -> None:
        self.exchange.clear_clients()
        self.orchestrator.notifier.clear_clients()

    async def rebalance_user(self, user_id: str, recommendations: Sequence[Recommendation],
                             guard: LockGuard, allow_backfill: bool = True) -> List[TradeRecord]:
        """Rebalance one user's portfolio toward ``recommendations``.

        With ``allow_backfill`` off only already-held recommendations may be
        bought into. Returns every trade persisted during the run.
        """
        # New id per run; never reuse one left in this task by an earlier run
        CorrelationIdManager.set_correlation_id(CorrelationIdManager.generate_correlation_id())
        create_correlation_context("rebalancer", "rebalance_user", user_id=user_id)
        logger = bind_user_context(self.logger, user_id)
        guard.assert_held()

        holdings = await self.holding_store.fetch_holdings_by_user(user_id)
        guard.assert_held()

        flagged = apply_held_asset_flags(recommendations, holdings)
        candidates, blacklisted = filter_unique_non_blacklisted(flagged, self.settings.blacklisted_symbols)
        if blacklisted:
            logger.info("Blacklisted recommendations dropped", symbols=blacklisted)

        balances = await self.exchange.get_balances(user_id)
        guard.assert_held()
        if balances is None:
            logger.warning("Balances unavailable, rebalance skipped")
            self._release_clients()
            return []

        category_slots = self.settings.categories.as_slot_map()
        slot_count = sum(category_slots.values())
        if slot_count == 0:
            logger.warning("No category slots configured, rebalance skipped")
            self._release_clients()
            return []

        reference_symbols = [recommendation.symbol for recommendation in candidates]
        snapshot = await build_execution_snapshot(self.exchange, balances, reference_symbols, guard)

        regime = await resolve_market_regime_policy(self.regime_reader)
        guard.assert_held()

        signal = self.settings.signal
        min_confidence = self.policy.min_allocation_confidence
        included = [
            item for item in filter_included_recommendations_by_category(
                candidates, category_slots, signal.minimum_trade_intensity, min_confidence
            )
            if allow_backfill or item.has_stock
        ]
        excluded = filter_excluded_recommendations_by_category(
            candidates, category_slots, signal.minimum_trade_intensity, min_confidence
        )
        no_trade = [
            item for item in candidates
            if item.has_stock and is_no_trade_recommendation(item, min_confidence)
        ]
        logger.info("Rebalance candidates resolved",
                    included=len(included),
                    excluded=len(excluded),
                    no_trade=len(no_trade),
                    slot_count=slot_count,
                    exposure_multiplier=regime.exposure_multiplier,
                    turnover_cap=regime.turnover_cap)

        target_weight = partial(resolve_target_weight, settings=signal)
        # Blacklisted holdings count as recommended so they are never force-sold
        missing_sells = build_missing_inference_sell_requests(snapshot, flagged, policy=self.policy)

        return await self.orchestrator.execute_rebalance_trades(
            user_id=user_id,
            reference_symbols=reference_symbols,
            initial_snapshot=snapshot,
            turnover_cap=regime.turnover_cap,
            build_excluded_requests=lambda s: build_excluded_trade_requests(s, excluded, policy=self.policy),
            build_included_requests=lambda s: build_included_trade_requests(
                s,
                included,
                regime.exposure_multiplier,
                target_weight,
                target_slot_count=slot_count,
                rebalance_band_multiplier=regime.rebalance_band_multiplier,
                category_exposure_caps=regime.category_exposure_caps,
                policy=self.policy,
            ),
            build_no_trade_trim_requests=lambda s: build_no_trade_trim_requests(
                s,
                no_trade,
                slot_count,
                regime.exposure_multiplier,
                rebalance_band_multiplier=regime.rebalance_band_multiplier,
                category_exposure_caps=regime.category_exposure_caps,
                policy=self.policy,
            ),
            guard=guard,
            additional_sell_requests=missing_sells,
            policy=self.policy,
        )
