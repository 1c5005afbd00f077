from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from backburner.core.errors import PriceFeedError
from backburner.models.trade import MarketType


_QUOTES = ("USDT", "USDC")

_MOCK_START_PRICES = {
    "BTCUSDT": 95_000.0,
    "ETHUSDT": 3_400.0,
    "SOLUSDT": 180.0,
    "XRPUSDT": 2.2,
    "DOGEUSDT": 0.32,
    "SUIUSDT": 3.9,
}


def to_ccxt_symbol(symbol: str, market_type: MarketType = "spot") -> str:
    """BTCUSDT -> BTC/USDT (spot) or BTC/USDT:USDT (perpetual swap)."""
    raw = symbol.upper().replace("_", "").replace("/", "")
    for quote in _QUOTES:
        if raw.endswith(quote) and len(raw) > len(quote):
            base = raw[: -len(quote)]
            if market_type == "futures":
                return f"{base}/{quote}:{quote}"
            return f"{base}/{quote}"
    raise ValueError(f"Unsupported symbol: {symbol}")


@dataclass
class MexcConnector:
    api_key: str = ""
    api_secret: str = ""
    mock: bool = True
    mock_symbols: List[str] = field(default_factory=lambda: list(_MOCK_START_PRICES))
    seed: int = 1337

    _spot: object = field(default=None, init=False, repr=False)
    _swap: object = field(default=None, init=False, repr=False)
    _rng: random.Random = field(init=False, repr=False)
    _mock_prices: Dict[str, float] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self._rng = random.Random(self.seed)
        for symbol in self.mock_symbols:
            self._mock_prices[symbol] = _MOCK_START_PRICES.get(symbol, self._rng.uniform(0.5, 50.0))

        if not self.mock:
            import ccxt

            params = {"enableRateLimit": True, "apiKey": self.api_key, "secret": self.api_secret}
            self._spot = ccxt.mexc(dict(params))
            self._swap = ccxt.mexc({**params, "options": {"defaultType": "swap"}})

    def get_price(self, symbol: str) -> float:
        """Spot last price; raises PriceFeedError when the exchange has none."""
        if self.mock:
            return self._mock_tick(symbol)

        return self._fetch_last(self._spot, symbol, "spot")

    def get_price_for_market(self, symbol: str, market_type: MarketType) -> Optional[float]:
        """Perpetual price for futures setups with a spot fallback; None when neither is available."""
        if self.mock:
            return self._mock_tick(symbol)

        if market_type == "futures":
            try:
                return self._fetch_last(self._swap, symbol, "futures")
            except PriceFeedError:
                pass

        try:
            return self._fetch_last(self._spot, symbol, "spot")
        except PriceFeedError:
            return None

    async def price_of(self, symbol: str) -> float:
        return await asyncio.to_thread(self.get_price, symbol)

    async def price_for_market(self, symbol: str, market_type: MarketType) -> Optional[float]:
        return await asyncio.to_thread(self.get_price_for_market, symbol, market_type)

    def last_mock_price(self, symbol: str) -> Optional[float]:
        return self._mock_prices.get(symbol)

    def _mock_tick(self, symbol: str) -> float:
        price = self._mock_prices.get(symbol)
        if price is None:
            raise PriceFeedError(symbol, "unknown mock symbol")
        price *= 1.0 + self._rng.uniform(-0.004, 0.004)
        self._mock_prices[symbol] = price
        return float(price)

    def _fetch_last(self, exchange: object, symbol: str, market_type: MarketType) -> float:
        import ccxt

        try:
            ticker = exchange.fetch_ticker(to_ccxt_symbol(symbol, market_type))  # type: ignore[attr-defined]
        except (ccxt.NetworkError, ccxt.ExchangeError, ValueError) as e:
            raise PriceFeedError(symbol, f"{market_type} ticker failed: {e}") from e

        last = ticker.get("last") or ticker.get("close")
        if last is None or float(last) <= 0:
            raise PriceFeedError(symbol, f"{market_type} ticker has no last price")
        return float(last)
