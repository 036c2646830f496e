from dependency_injector import providers

from app.containers import AppContainer
from core.trading.lock import RedisLockGuard
from services.rebalancer.persistence import SqlHoldingLedgerStore
from services.rebalancer.service import RebalanceService


async def neutral_regime():
    raise ConnectionError("not wired in tests")


def test_container_wires_rebalance_service(test_settings, exchange, notifier):
    container = AppContainer(exchange=exchange, notifier=notifier, regime_reader=neutral_regime)
    container.settings.override(providers.Object(test_settings))

    service = container.rebalance_service()

    assert isinstance(service, RebalanceService)
    assert service.exchange is exchange
    assert service.orchestrator.notifier is notifier
    assert service.orchestrator.trade_executor.exchange is exchange
    assert isinstance(service.holding_store, SqlHoldingLedgerStore)
    assert service.orchestrator.holding_store is service.holding_store
    assert service.policy == container.trade_policy()


def test_lock_guard_factory_uses_settings(test_settings, exchange, notifier):
    container = AppContainer(exchange=exchange, notifier=notifier, regime_reader=neutral_regime)
    container.settings.override(providers.Object(test_settings))

    guard = container.lock_guard(user_id="user-1")

    assert isinstance(guard, RedisLockGuard)
    assert guard.key == "trade-lock:user-1"
    assert guard.ttl_seconds == test_settings.execution.user_trade_lock_duration_seconds
    assert guard is not container.lock_guard(user_id="user-1")
