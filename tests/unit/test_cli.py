import json

import pytest
from click.testing import CliRunner

import cli as cli_module


@pytest.fixture
def runner(monkeypatch):
    # Keep the root logger pointed at pytest's streams
    monkeypatch.setattr(cli_module, "configure_logging", lambda settings: None)
    return CliRunner()


def test_regime_command(runner):
    result = runner.invoke(cli_module.cli, ["regime", "--btc-dominance", "60", "--altcoin-index", "20"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["turnover_cap"] == pytest.approx(0.3)
    assert payload["category_exposure_caps"]["coin_major"] == pytest.approx(0.8)


def test_score_command(runner):
    result = runner.invoke(cli_module.cli, ["score", "0.8"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["buy_score"] == pytest.approx(0.56)
    assert payload["action"] == "buy"


def test_score_rejects_bad_features(runner):
    result = runner.invoke(cli_module.cli, ["score", "0.8", "--features", "{not json"])

    assert result.exit_code == 2
    assert "--features" in result.output


def test_policy_command(runner):
    result = runner.invoke(cli_module.cli, ["policy"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["minimum_trade_price"] == 5000.0
