import aiohttp
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Sequence

from pydantic import ValidationError

from core.exceptions import TransportError
from core.models import MarketSnapshot, TickerQuote

logger = logging.getLogger(__name__)

MARKET_DATA_BASE = "https://api.crypto.com/v2"


class MarketDataClient:
    """Thin wrapper around the public get-ticker endpoint.

    The client keeps no state between polls. The last-seen price per
    symbol lives in a dict owned by the caller and is passed in, so the
    baseline for price_change is explicit.
    """

    def __init__(self, base_url: str = MARKET_DATA_BASE, timeout: float = 10.0,
                 clock: Callable[[], float] = time.time) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._clock = clock

    async def _get_json(self, url: str, params: Dict[str, str]) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    async def get_ticker_price(self, symbol: str) -> Optional[TickerQuote]:
        """
        Fetch the latest quote for a trading pair (e.g. 'BTC_USDT').
        Returns None on any transport or parse failure.
        """
        url = f"{self.base_url}/public/get-ticker"
        try:
            data = await self._get_json(url, {"instrument_name": symbol})
            row = _first_ticker_row(data)
            return TickerQuote.model_validate(row)
        except (aiohttp.ClientError, asyncio.TimeoutError, TransportError,
                ValidationError, ValueError) as e:
            logger.error(f"Error fetching ticker for {symbol}: {e}")
            return None

    @staticmethod
    def calculate_volatility(high: Optional[float], low: Optional[float]) -> float:
        """24h range over midpoint, in percent. Missing high/low means 0."""
        if not high or not low:
            return 0.0
        mid = (high + low) / 2
        if mid == 0:
            return 0.0
        return (high - low) / mid * 100

    @staticmethod
    def calculate_price_change(symbol: str, current_price: float,
                               last_prices: MutableMapping[str, float]) -> float:
        """Percent change vs the last observed price for symbol.

        The first observation seeds the baseline and returns 0. The
        baseline is always moved to current_price.
        """
        last_price = last_prices.get(symbol)
        last_prices[symbol] = current_price
        if not last_price:
            return 0.0
        return (current_price - last_price) / last_price * 100

    async def get_market_data(self, symbol: str,
                              last_prices: MutableMapping[str, float]) -> Optional[MarketSnapshot]:
        ticker = await self.get_ticker_price(symbol)
        if ticker is None:
            return None

        return MarketSnapshot(
            symbol=symbol,
            price=ticker.ask,
            bid=ticker.bid,
            high_24h=ticker.high_24h,
            low_24h=ticker.low_24h,
            volume_24h=ticker.volume_24h,
            change_24h=ticker.change_24h * 100 if ticker.change_24h is not None else None,
            volatility=self.calculate_volatility(ticker.high_24h, ticker.low_24h),
            price_change=self.calculate_price_change(symbol, ticker.ask, last_prices),
            timestamp=int(self._clock()),
        )

    async def get_multiple_market_data(self, symbols: Sequence[str],
                                       last_prices: MutableMapping[str, float]) -> List[MarketSnapshot]:
        """Fetch all symbols concurrently; failed symbols are dropped."""
        results = await asyncio.gather(
            *(self.get_market_data(symbol, last_prices) for symbol in symbols)
        )
        return [r for r in results if r is not None]


def _first_ticker_row(data: Any) -> Dict[str, Any]:
    # API returns {"result": {"data": [ {i, a, b, h, l, v, c, t}, ... ]}}
    if not isinstance(data, dict):
        raise TransportError("ticker response is not a JSON object")
    result = data.get("result")
    rows = result.get("data") if isinstance(result, dict) else None
    if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
        raise TransportError("ticker response has no result.data[0]")
    return rows[0]
