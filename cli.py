# Simple CLI for the Trade Orchestrator
import asyncio
import json
import click

from core.config.settings import Settings
from core.logging import configure_logging
from core.trading.models import MarketFeatures, MarketRegimeSnapshot


def _load_settings() -> Settings:
    settings = Settings()
    configure_logging(settings)
    return settings


@click.group()
def cli():
    """Trade Orchestrator CLI"""
    pass


@cli.command("init-db")
def init_db():
    """Create or verify the trades and holding ledger tables"""
    from core.database.connection import DatabaseManager

    settings = _load_settings()
    click.echo("🗄️  Initializing database...")

    async def _init():
        db_manager = DatabaseManager(
            db_url=settings.database.postgres_url,
            environment=settings.environment,
            schema_management=settings.database.schema_management,
        )
        try:
            await db_manager.init()
        finally:
            await db_manager.shutdown()

    asyncio.run(_init())
    click.echo("✅ Database ready")


@cli.command()
def policy():
    """Print the effective trade policy"""
    settings = _load_settings()
    click.echo(json.dumps(settings.trade_policy.to_policy().model_dump(), indent=2))


@cli.command()
@click.option("--fear-greed", type=float, default=None, help="Fear & greed index (0-100)")
@click.option("--btc-dominance", type=float, default=None, help="BTC dominance in percent")
@click.option("--altcoin-index", type=float, default=None, help="Altcoin season index (0-100)")
def regime(fear_greed, btc_dominance, altcoin_index):
    """Resolve a market regime policy from literal inputs"""
    from services.rebalancer.regime import build_market_regime_policy

    _load_settings()
    snapshot = MarketRegimeSnapshot(
        fear_greed_index=fear_greed,
        btc_dominance=btc_dominance,
        altcoin_index=altcoin_index,
    )
    click.echo(json.dumps(build_market_regime_policy(snapshot).model_dump(), indent=2))


@cli.command()
@click.argument("intensity", type=float)
@click.option("--features", "features_json", default=None, help="Market features as a JSON object")
def score(intensity, features_json):
    """Score a model intensity with optional market features"""
    from services.rebalancer.scoring import calculate_model_signals

    settings = _load_settings()
    features = None
    if features_json:
        try:
            features = MarketFeatures.model_validate(json.loads(features_json))
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--features")

    signals = calculate_model_signals(intensity, features, settings.signal)
    click.echo(json.dumps({
        "feature_score": signals.feature_score,
        "buy_score": signals.buy_score,
        "sell_score": signals.sell_score,
        "model_target_weight": signals.model_target_weight,
        "action": signals.action.value,
    }, indent=2))


if __name__ == "__main__":
    cli()
