# Dependency injection container for the trade orchestrator
from dependency_injector import containers, providers
import redis.asyncio as redis

from core.config.settings import Settings
from core.database.connection import DatabaseManager
from core.trading.lock import RedisLockGuard
from services.rebalancer.executor import TradeExecutor
from services.rebalancer.orchestrator import RebalanceOrchestrator
from services.rebalancer.persistence import SqlHoldingLedgerStore, SqlTradeStore
from services.rebalancer.service import RebalanceService


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container.

    The exchange adapter, notifier and market regime reader belong to the
    embedding application and must be supplied with ``override`` or as
    constructor arguments.
    """

    # Configuration
    settings = providers.Singleton(Settings)
    trade_policy = providers.Singleton(lambda s: s.trade_policy.to_policy(), settings)

    # External collaborators
    exchange = providers.Dependency()
    notifier = providers.Dependency()
    regime_reader = providers.Dependency()

    # Database with environment awareness
    db_manager = providers.Singleton(
        DatabaseManager,
        db_url=settings.provided.database.postgres_url,
        environment=settings.provided.environment,
        schema_management=settings.provided.database.schema_management
    )

    # Redis backs the per-user trade lock
    redis_client = providers.Singleton(
        redis.from_url,
        settings.provided.redis.url
    )

    # New guard per run; call with user_id=...
    lock_guard = providers.Factory(
        RedisLockGuard,
        redis_client=redis_client,
        key_prefix=settings.provided.redis.lock_key_prefix,
        ttl_seconds=settings.provided.execution.user_trade_lock_duration_seconds,
    )

    # Persistence
    trade_store = providers.Singleton(SqlTradeStore, db_manager=db_manager)
    holding_store = providers.Singleton(SqlHoldingLedgerStore, db_manager=db_manager)

    # Rebalance core
    trade_executor = providers.Singleton(
        TradeExecutor,
        exchange=exchange,
        trade_store=trade_store,
    )

    rebalance_orchestrator = providers.Singleton(
        RebalanceOrchestrator,
        exchange=exchange,
        notifier=notifier,
        holding_store=holding_store,
        trade_executor=trade_executor,
        policy=trade_policy,
    )

    rebalance_service = providers.Singleton(
        RebalanceService,
        settings=settings,
        exchange=exchange,
        holding_store=holding_store,
        orchestrator=rebalance_orchestrator,
        regime_reader=regime_reader,
    )
