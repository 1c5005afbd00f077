from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest

from backburner.core.bot_config import TrailingStopConfig
from backburner.core.cost_model import ExecutionCostsCalculator, ExecutionCostsSettings
from backburner.core.position_manager import PositionManager
from backburner.models.setup import Setup


@dataclass
class StubLogger:
    debugs: List[str] = field(default_factory=list)
    infos: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    opened: List[str] = field(default_factory=list)
    trails: List[int] = field(default_factory=list)
    closed: List[str] = field(default_factory=list)
    summaries: List[str] = field(default_factory=list)

    def log_debug(self, message: str) -> None:
        self.debugs.append(message)

    def log_info(self, message: str) -> None:
        self.infos.append(message)

    def log_warning(self, message: str) -> None:
        self.warnings.append(message)

    def log_error(self, message: str) -> None:
        self.errors.append(message)

    def log_trade_opened(self, ledger_id, position) -> None:
        self.opened.append(position.id)

    def log_trail_adjusted(self, ledger_id, position, previous_level, locked_roi) -> None:
        self.trails.append(position.trail_level)

    def log_trade_closed(self, ledger_id, position, balance) -> None:
        self.closed.append(position.id)

    def log_ledger_summary(self, ledger_id, stats, open_positions) -> None:
        self.summaries.append(ledger_id)


class FixedClock:
    def __init__(self, now: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_setup(
    symbol: str = "BTCUSDT",
    price: float = 100.0,
    state: str = "triggered",
    direction: str = "long",
    timeframe: str = "5m",
    market_type: str = "futures",
    rsi: float = 50.0,
) -> Setup:
    return Setup(
        symbol=symbol,
        timeframe=timeframe,
        direction=direction,  # type: ignore[arg-type]
        market_type=market_type,  # type: ignore[arg-type]
        state=state,  # type: ignore[arg-type]
        current_price=price,
        current_rsi=rsi,
    )


def no_costs() -> ExecutionCostsCalculator:
    return ExecutionCostsCalculator(ExecutionCostsSettings(enabled=False))


@pytest.fixture
def logger() -> StubLogger:
    return StubLogger()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def manager_factory(logger: StubLogger, clock: FixedClock) -> Callable[..., PositionManager]:
    def _make(config: TrailingStopConfig = TrailingStopConfig(), costs=None, store=None, ledger_id: str = "test"):
        return PositionManager(
            ledger_id=ledger_id,
            config=config,
            cost_model=costs if costs is not None else no_costs(),
            store=store,
            logger=logger,
            clock=clock,
        )

    return _make
