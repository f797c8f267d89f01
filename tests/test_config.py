import pytest

from conftest import TEST_RECIPIENT, make_env
from core.config import NETWORKS, load_settings
from core.exceptions import ConfigError


def test_defaults():
    settings = load_settings(env=make_env(), config_path=None)

    assert settings.network == "cronos-testnet"
    assert settings.chain_id == 338
    assert settings.rpc_url == "https://evm-t3.cronos.org"
    assert settings.token.address == NETWORKS["cronos-testnet"].usdce_address
    assert settings.settlement_amount == "1000000"
    assert settings.poll_interval_seconds == 30.0
    assert settings.volatility_threshold == 5.0
    assert settings.price_change_threshold == 3.0
    assert settings.monitored_symbols == ["BTC_USDT", "ETH_USDT", "CRO_USDT"]
    assert settings.port == 3000
    settings.validate_required()


def test_mainnet_and_overrides():
    settings = load_settings(env=make_env(
        NETWORK="cronos-mainnet",
        RPC_URL="https://rpc.example",
        POLLING_INTERVAL_MS=1500,
        VOLATILITY_THRESHOLD="2.5",
        PRICE_CHANGE_THRESHOLD="1",
        MONITORED_SYMBOLS="btc_usdt, eth_usdt,",
        SETTLEMENT_AMOUNT="250000",
        PORT=8080,
    ), config_path=None)

    assert settings.chain_id == 25
    assert settings.rpc_url == "https://rpc.example"
    assert settings.token.address == "0xf951eC28187D9E5Ca673Da8FE6757E6f0Be5F77C"
    assert settings.poll_interval_seconds == 1.5
    assert settings.volatility_threshold == 2.5
    assert settings.price_change_threshold == 1.0
    assert settings.monitored_symbols == ["BTC_USDT", "ETH_USDT"]
    assert settings.settlement_amount == "250000"
    assert settings.port == 8080


def test_missing_required_values_are_reported_together():
    settings = load_settings(env={}, config_path=None)

    with pytest.raises(ConfigError) as excinfo:
        settings.validate_required()
    assert "PRIVATE_KEY" in str(excinfo.value)
    assert "SETTLEMENT_RECIPIENT" in str(excinfo.value)


@pytest.mark.parametrize("amount", ["1.5", "-3", "abc", "0"])
def test_settlement_amount_must_be_positive_integer(amount):
    settings = load_settings(env=make_env(SETTLEMENT_AMOUNT=amount), config_path=None)
    with pytest.raises(ConfigError):
        settings.validate_required()


def test_invalid_network():
    with pytest.raises(ConfigError):
        load_settings(env=make_env(NETWORK="ethereum"), config_path=None)


def test_invalid_number():
    with pytest.raises(ConfigError):
        load_settings(env=make_env(VOLATILITY_THRESHOLD="high"), config_path=None)


def test_yaml_file_below_environment(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "monitored_symbols: [SOL_USDT]\n"
        "poll_interval_seconds: 5\n"
        "policy_symbol: SOL_USDT\n"
    )

    settings = load_settings(env=make_env(), config_path=path)
    assert settings.monitored_symbols == ["SOL_USDT"]
    assert settings.poll_interval_seconds == 5
    assert settings.policy_symbol == "SOL_USDT"

    overridden = load_settings(env=make_env(POLLING_INTERVAL_MS=100), config_path=path)
    assert overridden.poll_interval_seconds == 0.1


def test_missing_yaml_file_is_ignored(tmp_path):
    settings = load_settings(env=make_env(), config_path=tmp_path / "absent.yaml")
    assert settings.settlement_recipient == TEST_RECIPIENT


def test_private_key_not_in_repr():
    settings = load_settings(env=make_env(), config_path=None)
    assert "4c0883a6" not in repr(settings)


def test_recipient_must_be_an_address():
    settings = load_settings(env=make_env(SETTLEMENT_RECIPIENT="alice"), config_path=None)
    with pytest.raises(ConfigError):
        settings.validate_required()


@pytest.mark.parametrize("interval_ms", [0, -500])
def test_poll_interval_must_be_positive(interval_ms):
    with pytest.raises(ConfigError):
        load_settings(env=make_env(POLLING_INTERVAL_MS=interval_ms), config_path=None)


def test_poll_interval_from_yaml_must_be_positive(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("poll_interval_seconds: -1\n")

    with pytest.raises(ConfigError):
        load_settings(env=make_env(), config_path=path)
