from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from backburner.models.trade import Direction, MarketType, SetupState


ENTRY_STATES = frozenset({"triggered", "deep_extreme"})


def _pick(data: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return default


@dataclass(frozen=True)
class Setup:
    """Directional signal emitted by the setup detector."""

    symbol: str
    timeframe: str
    direction: Direction
    market_type: MarketType
    state: SetupState
    current_price: float
    current_rsi: Optional[float] = None
    impulse_percent: Optional[float] = None

    @property
    def is_entry(self) -> bool:
        return self.state in ENTRY_STATES

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Setup":
        rsi = _pick(data, "current_rsi", "currentRSI")
        impulse = _pick(data, "impulse_percent", "impulsePercentMove", "impulsePercent")
        return cls(
            symbol=str(data["symbol"]),
            timeframe=str(data["timeframe"]),
            direction=str(data["direction"]),  # type: ignore[arg-type]
            market_type=str(_pick(data, "market_type", "marketType", default="futures")),  # type: ignore[arg-type]
            state=str(data["state"]),  # type: ignore[arg-type]
            current_price=float(_pick(data, "current_price", "currentPrice")),
            current_rsi=float(rsi) if rsi is not None else None,
            impulse_percent=float(impulse) if impulse is not None else None,
        )
