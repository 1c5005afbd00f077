"""Seeded stand-in for the setup detector.

Walks synthetic setups through watching -> triggered/deep_extreme ->
reversing -> played_out over connector prices, and now and then withdraws
one before it completes so downstream ledgers see orphaned positions.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Protocol, Sequence, Tuple

from backburner.core.errors import PriceFeedError
from backburner.models.setup import Setup
from backburner.models.trade import Direction, MarketType, SetupState


SetupEventKind = Literal["new", "updated", "removed"]

_LONG_RSI: Dict[str, float] = {
    "watching": 34.0,
    "triggered": 28.0,
    "deep_extreme": 18.0,
    "reversing": 42.0,
    "played_out": 55.0,
}


class PriceSource(Protocol):
    async def price_of(self, symbol: str) -> float: ...


@dataclass(frozen=True)
class SetupEvent:
    kind: SetupEventKind
    setup: Setup


@dataclass
class _Tracked:
    symbol: str
    timeframe: str
    direction: Direction
    market_type: MarketType
    state: SetupState
    impulse_percent: float


@dataclass
class MockSetupFeed:
    prices: PriceSource
    symbols: Sequence[str]
    timeframes: Sequence[str] = ("5m", "15m", "1h")
    seed: int = 1337
    spawn_probability: float = 0.35
    withdraw_probability: float = 0.04
    spot_probability: float = 0.1

    _rng: random.Random = field(init=False, repr=False)
    _active: Dict[Tuple[str, str, str], _Tracked] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self._rng = random.Random(self.seed)

    def active_count(self) -> int:
        return len(self._active)

    async def poll(self) -> List[SetupEvent]:
        events: List[SetupEvent] = []

        for key, tracked in list(self._active.items()):
            price = await self._price(tracked.symbol)
            if price is None:
                continue

            if tracked.state == "played_out" or self._rng.random() < self.withdraw_probability:
                del self._active[key]
                events.append(SetupEvent("removed", self._setup(tracked, price)))
                continue

            next_state = self._advance(tracked.state)
            if next_state != tracked.state:
                tracked.state = next_state
                events.append(SetupEvent("updated", self._setup(tracked, price)))

        if self._rng.random() < self.spawn_probability:
            spawned = await self._spawn()
            if spawned is not None:
                events.append(spawned)

        return events

    async def _spawn(self) -> Optional[SetupEvent]:
        symbol = self._rng.choice(list(self.symbols))
        timeframe = self._rng.choice(list(self.timeframes))
        direction: Direction = "long" if self._rng.random() < 0.5 else "short"
        key = (symbol, timeframe, direction)
        if key in self._active:
            return None

        price = await self._price(symbol)
        if price is None:
            return None

        tracked = _Tracked(
            symbol=symbol,
            timeframe=timeframe,
            direction=direction,
            market_type="spot" if self._rng.random() < self.spot_probability else "futures",
            state="watching",
            impulse_percent=round(self._rng.uniform(3.0, 15.0), 2),
        )
        self._active[key] = tracked
        return SetupEvent("new", self._setup(tracked, price))

    def _advance(self, state: SetupState) -> SetupState:
        roll = self._rng.random()
        if state == "watching":
            if roll < 0.2:
                return "deep_extreme"
            if roll < 0.6:
                return "triggered"
        elif state in ("triggered", "deep_extreme"):
            if roll < 0.25:
                return "reversing"
        elif state == "reversing":
            if roll < 0.3:
                return "played_out"
        return state

    async def _price(self, symbol: str) -> Optional[float]:
        try:
            return await self.prices.price_of(symbol)
        except PriceFeedError:
            return None

    @staticmethod
    def _setup(tracked: _Tracked, price: float) -> Setup:
        rsi = _LONG_RSI[tracked.state]
        if tracked.direction == "short":
            rsi = 100.0 - rsi
        return Setup(
            symbol=tracked.symbol,
            timeframe=tracked.timeframe,
            direction=tracked.direction,
            market_type=tracked.market_type,
            state=tracked.state,
            current_price=price,
            current_rsi=rsi,
            impulse_percent=tracked.impulse_percent,
        )
