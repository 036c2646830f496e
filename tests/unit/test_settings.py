import pytest
from pydantic import ValidationError

from core.config.settings import (
    CategorySettings,
    Environment,
    Settings,
    SignalSettings,
    TradePolicySettings,
)
from core.trading.models import DEFAULT_TRADE_POLICY, TradePolicy


def test_defaults(test_settings):
    assert test_settings.environment == Environment.TESTING
    assert test_settings.categories.as_slot_map() == {"coin_major": 2, "coin_minor": 5, "nasdaq": 0}
    assert test_settings.execution.user_trade_lock_duration_seconds == 300
    assert test_settings.blacklisted_symbols == []


def test_trade_policy_settings_build_default_policy():
    policy = TradePolicySettings().to_policy()

    assert isinstance(policy, TradePolicy)
    assert policy == DEFAULT_TRADE_POLICY


def test_blacklist_accepts_comma_separated_string():
    settings = Settings(_env_file=None, blacklisted_symbols="SHIB/KRW, PEPE/KRW,")
    assert settings.blacklisted_symbols == ["SHIB/KRW", "PEPE/KRW"]


def test_nested_settings_from_environment(monkeypatch):
    monkeypatch.setenv("TRADE_POLICY__MINIMUM_TRADE_PRICE", "10000")
    monkeypatch.setenv("CATEGORIES__NASDAQ", "3")

    settings = Settings(_env_file=None)

    assert settings.trade_policy.minimum_trade_price == 10000
    assert settings.categories.nasdaq == 3


@pytest.mark.parametrize("field", ["staged_exit_full", "payoff_overlay_trailing_min"])
def test_sell_diffs_must_be_negative(field):
    with pytest.raises(ValidationError):
        TradePolicySettings(**{field: 0.5})


def test_minimum_trade_price_cannot_be_negative():
    with pytest.raises(ValidationError):
        TradePolicySettings(minimum_trade_price=-1)


def test_slot_counts_cannot_be_negative():
    with pytest.raises(ValidationError):
        CategorySettings(coin_major=-1)


def test_signal_weights_are_unit_interval():
    with pytest.raises(ValidationError):
        SignalSettings(ai_signal_weight=1.5)
    with pytest.raises(ValidationError):
        SignalSettings(volatility_reference=0)
