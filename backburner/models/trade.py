from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Mapping, Optional

if TYPE_CHECKING:
    from backburner.models.setup import Setup


Direction = Literal["long", "short"]
MarketType = Literal["spot", "futures"]
PositionStatus = Literal["open", "closed_trail_stop", "closed_sl", "closed_played_out"]
SetupState = Literal["watching", "triggered", "deep_extreme", "reversing", "played_out"]

_DATETIME_FIELDS = ("entry_time", "exit_time")


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as written by older snapshots.
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class PositionKey:
    """At most one open position per key in a ledger."""

    symbol: str
    timeframe: str
    direction: Direction
    market_type: MarketType

    @classmethod
    def from_setup(cls, setup: "Setup") -> "PositionKey":
        return cls(
            symbol=setup.symbol,
            timeframe=setup.timeframe,
            direction=setup.direction,
            market_type=setup.market_type,
        )

    def __str__(self) -> str:
        return f"{self.symbol} {self.direction.upper()} {self.timeframe} ({self.market_type})"


@dataclass
class Position:
    id: str
    symbol: str
    direction: Direction
    market_type: MarketType
    timeframe: str

    entry_price: float  # nominal (market) price at entry
    effective_entry_price: float  # fill after slippage; anchors all price-move math
    entry_time: datetime
    margin_used: float
    notional_size: float
    leverage: float
    entry_costs: float

    initial_stop_price: float
    current_stop_price: float
    high_water_mark: float = 0.0  # best ROI% on margin seen so far
    trail_level: int = 0

    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    funding_paid: float = 0.0

    status: PositionStatus = "open"
    orphaned: bool = False

    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_reason: Optional[str] = None
    raw_pnl: Optional[float] = None
    exit_costs: Optional[float] = None
    total_costs: Optional[float] = None
    realized_pnl: Optional[float] = None
    realized_pnl_percent: Optional[float] = None

    @property
    def key(self) -> PositionKey:
        return PositionKey(
            symbol=self.symbol,
            timeframe=self.timeframe,
            direction=self.direction,
            market_type=self.market_type,
        )

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def price_change_fraction(self, price: float) -> float:
        entry = self.effective_entry_price
        if entry <= 0:
            return 0.0
        change = (price - entry) / entry
        return change if self.direction == "long" else -change

    def raw_pnl_at(self, price: float) -> float:
        return self.notional_size * self.price_change_fraction(price)

    def holding_ms(self, now: datetime) -> float:
        return max(0.0, (now - self.entry_time).total_seconds() * 1000.0)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in _DATETIME_FIELDS:
            if data[name] is not None:
                data[name] = data[name].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Position":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for name in _DATETIME_FIELDS:
            if name in kwargs:
                kwargs[name] = _parse_dt(kwargs[name])
        kwargs["trail_level"] = int(kwargs.get("trail_level", 0))
        kwargs["orphaned"] = bool(kwargs.get("orphaned", False))
        return cls(**kwargs)


@dataclass
class LedgerSnapshot:
    balance: float
    peak_balance: float
    open_positions: List[Position] = field(default_factory=list)
    closed_positions: List[Position] = field(default_factory=list)
    saved_at: Optional[datetime] = None
