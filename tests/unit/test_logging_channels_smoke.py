from core.config.settings import LoggingSettings
from core.logging import LogChannel, bind_user_context, get_logger, get_trading_logger_safe
from core.logging import _redaction_processor
from core.logging.channels import get_channel_for_component, get_channel_level
from core.logging.correlation import CorrelationIdManager, create_correlation_context


def test_components_map_to_channels():
    assert get_channel_for_component("rebalancer") == LogChannel.TRADING
    assert get_channel_for_component("database") == LogChannel.DATABASE
    assert get_channel_for_component("unknown") == LogChannel.APPLICATION


def test_channel_levels_follow_settings():
    settings = LoggingSettings(level="INFO", trading_level="DEBUG", database_level="ERROR")

    assert get_channel_level(LogChannel.TRADING, settings) == "DEBUG"
    assert get_channel_level(LogChannel.DATABASE, settings) == "ERROR"
    assert get_channel_level(LogChannel.ERROR, settings) == "INFO"


def test_redaction_is_recursive_and_case_insensitive():
    redact = _redaction_processor(["api_key", "secret"])

    event = redact(None, "info", {
        "event": "order placed",
        "API_KEY": "k",
        "nested": {"secret": "s", "symbol": "BTC/KRW"},
        "items": [{"Secret": "x"}],
    })

    assert event["API_KEY"] == "[REDACTED]"
    assert event["nested"] == {"secret": "[REDACTED]", "symbol": "BTC/KRW"}
    assert event["items"] == [{"Secret": "[REDACTED]"}]
    assert event["event"] == "order placed"


def test_loggers_can_be_bound_without_configuration():
    logger = bind_user_context(get_trading_logger_safe("test"), "user-1", trigger="schedule")
    logger.info("trading smoke message")
    get_logger(__name__, component="rebalancer").debug("rebalancer smoke message")


def test_correlation_context_carries_run_fields():
    CorrelationIdManager.clear_correlation()
    try:
        correlation_id = create_correlation_context("rebalancer", "rebalance_user", user_id="user-1")

        assert CorrelationIdManager.get_correlation_id() == correlation_id
        context = CorrelationIdManager.get_correlation_context()
        assert context["service"] == "rebalancer"
        assert context["user_id"] == "user-1"
    finally:
        CorrelationIdManager.clear_correlation()
