"""
Runtime configuration for the settlement engine.

Values come from built-in defaults, then an optional config.yaml at the
project root, then environment variables (the entry point loads .env
with python-dotenv before calling load_settings()).
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from eth_utils import is_address
from pydantic import BaseModel, Field, ValidationError

from core.exceptions import ConfigError

BASE_DIR = Path(__file__).resolve().parent.parent.parent
CONFIG_PATH = BASE_DIR / "config.yaml"

DEFAULT_SYMBOLS = ["BTC_USDT", "ETH_USDT", "CRO_USDT"]


class TokenConfig(BaseModel):
    """EIP-712 domain of the settlement token (USDC.e)."""
    address: str
    name: str = "Bridged USDC (Stargate)"
    version: str = "1"
    decimals: int = 6


class NetworkConfig(BaseModel):
    chain_id: int
    rpc_url: str
    usdce_address: str


NETWORKS: Dict[str, NetworkConfig] = {
    "cronos-testnet": NetworkConfig(
        chain_id=338,
        rpc_url="https://evm-t3.cronos.org",
        usdce_address="0xc01efAaF7C5C61bEbFAeb358E1161b537b8bC0e0",
    ),
    "cronos-mainnet": NetworkConfig(
        chain_id=25,
        rpc_url="https://evm.cronos.org",
        usdce_address="0xf951eC28187D9E5Ca673Da8FE6757E6f0Be5F77C",
    ),
}


class Settings(BaseModel):
    network: str = Field("cronos-testnet", description="Facilitator network id")
    chain_id: int
    rpc_url: str
    token: TokenConfig

    facilitator_url: str = "https://facilitator.cronoslabs.org/v2/x402"
    x402_version: int = 1
    market_data_url: str = "https://api.crypto.com/v2"
    request_timeout: float = 10.0

    private_key: Optional[str] = Field(None, repr=False)
    settlement_recipient: Optional[str] = None
    settlement_amount: str = Field("1000000", description="Smallest token units (1 USDC.e)")
    authorization_validity_seconds: int = 3600

    poll_interval_seconds: float = Field(30.0, gt=0, description="Delay between polls")
    monitored_symbols: List[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    policy_symbol: str = "BTC_USDT"
    volatility_threshold: float = 5.0
    price_change_threshold: float = 3.0

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    def validate_required(self) -> None:
        """Raise ConfigError listing every required value that is missing."""
        missing = []
        if not self.private_key:
            missing.append("PRIVATE_KEY")
        if not self.settlement_recipient:
            missing.append("SETTLEMENT_RECIPIENT")
        if missing:
            raise ConfigError(
                "Missing required environment variables: " + ", ".join(missing)
            )
        if not is_address(self.settlement_recipient):
            raise ConfigError(
                f"SETTLEMENT_RECIPIENT is not a valid address: {self.settlement_recipient!r}"
            )
        if not self.settlement_amount.isdigit() or int(self.settlement_amount) <= 0:
            raise ConfigError(
                f"SETTLEMENT_AMOUNT must be a positive integer, got {self.settlement_amount!r}"
            )


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _number(env: Mapping[str, str], key: str, cast):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return None
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{key} is not a valid number: {raw!r}") from e


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = CONFIG_PATH,
) -> Settings:
    """Build Settings from config.yaml and the environment.

    Does not check required values; call Settings.validate_required()
    before starting the engine.
    """
    env = os.environ if env is None else env
    file_cfg = _read_yaml(config_path) if config_path else {}

    network = env.get("NETWORK") or file_cfg.get("network") or "cronos-testnet"
    network_cfg = NETWORKS.get(network)
    if network_cfg is None:
        raise ConfigError(
            f"Invalid network: {network}. Use one of: {', '.join(NETWORKS)}"
        )

    values: Dict[str, Any] = {
        "network": network,
        "chain_id": network_cfg.chain_id,
        "rpc_url": env.get("RPC_URL") or network_cfg.rpc_url,
        "token": TokenConfig(address=network_cfg.usdce_address),
    }
    for key in ("monitored_symbols", "poll_interval_seconds", "policy_symbol",
                "authorization_validity_seconds", "facilitator_url", "market_data_url"):
        if key in file_cfg:
            values[key] = file_cfg[key]

    values["private_key"] = env.get("PRIVATE_KEY") or None
    values["settlement_recipient"] = env.get("SETTLEMENT_RECIPIENT") or None
    if env.get("SETTLEMENT_AMOUNT"):
        values["settlement_amount"] = env["SETTLEMENT_AMOUNT"].strip()

    interval_ms = _number(env, "POLLING_INTERVAL_MS", int)
    if interval_ms is not None:
        values["poll_interval_seconds"] = interval_ms / 1000
    volatility = _number(env, "VOLATILITY_THRESHOLD", float)
    if volatility is not None:
        values["volatility_threshold"] = volatility
    price_change = _number(env, "PRICE_CHANGE_THRESHOLD", float)
    if price_change is not None:
        values["price_change_threshold"] = price_change
    port = _number(env, "PORT", int)
    if port is not None:
        values["port"] = port

    if env.get("MONITORED_SYMBOLS"):
        values["monitored_symbols"] = [
            s.strip().upper() for s in env["MONITORED_SYMBOLS"].split(",") if s.strip()
        ]
    for key, name in (("POLICY_SYMBOL", "policy_symbol"), ("FACILITATOR_URL", "facilitator_url"),
                      ("MARKET_DATA_URL", "market_data_url"), ("HOST", "host"),
                      ("LOG_LEVEL", "log_level"), ("LOG_DIR", "log_dir")):
        if env.get(key):
            values[name] = env[key]

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
