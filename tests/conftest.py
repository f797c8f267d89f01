"""Shared fixtures: settings without real secrets and clients with faked HTTP."""
import pytest

from clients.market_client import MarketDataClient
from clients.x402_client import X402Client
from core.config import load_settings
from core.exceptions import TransportError

# Well-known throwaway key from the eth-account documentation.
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_RECIPIENT = "0x00000000000000000000000000000000000000a1"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def ticker_payload(ask, high=None, low=None, bid=None, volume=None, change=None):
    row = {"i": "X", "a": str(ask), "t": 1700000000000}
    for key, value in (("h", high), ("l", low), ("b", bid), ("v", volume), ("c", change)):
        if value is not None:
            row[key] = str(value)
    return {"code": 0, "result": {"data": [row]}}


class FakeMarketClient(MarketDataClient):
    """Serves canned get-ticker payloads keyed by symbol.

    A value that is an exception instance is raised instead of returned.
    """

    def __init__(self, payloads=None, clock=None):
        super().__init__("http://market.test", clock=clock or FakeClock())
        self.payloads = dict(payloads or {})
        self.calls = []
        self.on_fetch = None

    async def _get_json(self, url, params):
        symbol = params["instrument_name"]
        self.calls.append(symbol)
        if self.on_fetch is not None:
            self.on_fetch(symbol)
        payload = self.payloads.get(symbol)
        if payload is None:
            raise TransportError(f"no data for {symbol}")
        if isinstance(payload, Exception):
            raise payload
        return payload


class FakeX402Client(X402Client):
    """Records facilitator requests and answers from a script."""

    def __init__(self, settings, clock=None, settle_response=None, health=None):
        super().__init__(settings, clock=clock or FakeClock())
        self.settle_response = {"status": "confirmed", "txHash": "0xabc"} if settle_response is None else settle_response
        self.health = {"kinds": [{"network": settings.network}]} if health is None else health
        self.posts = []

    async def _get_json(self, path):
        if isinstance(self.health, Exception):
            raise self.health
        return self.health

    async def _post_json(self, path, body):
        self.posts.append((path, body))
        if isinstance(self.settle_response, Exception):
            raise self.settle_response
        return self.settle_response


def make_env(**overrides):
    env = {
        "PRIVATE_KEY": TEST_PRIVATE_KEY,
        "SETTLEMENT_RECIPIENT": TEST_RECIPIENT,
    }
    env.update({k: str(v) for k, v in overrides.items()})
    return env


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return load_settings(env=make_env(POLLING_INTERVAL_MS=1), config_path=None)
