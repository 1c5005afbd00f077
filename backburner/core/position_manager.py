from __future__ import annotations

import inspect
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union

from backburner.core.bot_config import TrailingStopConfig
from backburner.core.cost_model import (
    CostModel,
    ExecutionCostsCalculator,
    MarketBias,
    Volatility,
    determine_market_bias,
    determine_volatility,
)
from backburner.core.errors import PriceFeedError
from backburner.core.persistence import TradeStore
from backburner.core.risk_manager import RiskManager, roi_percent
from backburner.models.setup import Setup
from backburner.models.stats import TrailingStats
from backburner.models.trade import MarketType, Position, PositionKey, PositionStatus


PriceLookup = Union[Optional[float], Awaitable[Optional[float]]]
ExitSignal = Tuple[PositionStatus, str]

PLAYED_OUT_EXIT: ExitSignal = ("closed_played_out", "Setup Played Out (RSI)")


class Logger(Protocol):
    def log_debug(self, message: str) -> None: ...

    def log_info(self, message: str) -> None: ...

    def log_warning(self, message: str) -> None: ...

    def log_error(self, message: str) -> None: ...

    def log_trade_opened(self, ledger_id: str, position: Position) -> None: ...

    def log_trail_adjusted(self, ledger_id: str, position: Position, previous_level: int, locked_roi: float) -> None: ...

    def log_trade_closed(self, ledger_id: str, position: Position, balance: float) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _pct(value: float, base: float) -> float:
    return value / base * 100.0 if base else 0.0


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class RepriceReport:
    """Outcome of one price-polling pass over a ledger."""

    updated: int = 0
    closed: List[Position] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)  # expected misses, retried next cycle
    failed: List[str] = field(default_factory=list)  # unexpected lookup errors


@dataclass
class PositionManager:
    """Trailing-stop paper ledger.

    Opens leveraged positions from triggered setups, reprices them from setup
    updates or a price feed, ratchets the stop up a ROI ladder and closes them
    once, net of fees, slippage and funding.

    Races between a setup-driven update and a price-poll reprice are settled by
    close_position: it drops the key from the open set before doing anything
    else, so whichever caller arrives second sees a non-open position and does
    nothing.
    """

    ledger_id: str = "default"
    config: TrailingStopConfig = field(default_factory=TrailingStopConfig)
    cost_model: CostModel = field(default_factory=ExecutionCostsCalculator)
    store: Optional[TradeStore] = None
    logger: Optional[Logger] = None
    clock: Callable[[], datetime] = _utcnow

    balance: float = field(init=False)
    peak_balance: float = field(init=False)
    volatility: Volatility = field(default="normal", init=False)
    market_bias: MarketBias = field(default="neutral", init=False)

    _risk: RiskManager = field(init=False, repr=False)
    _positions: Dict[PositionKey, Position] = field(default_factory=dict, init=False, repr=False)
    _closed: List[Position] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self._risk = RiskManager(self.config)
        self.balance = float(self.config.initial_balance)
        self.peak_balance = self.balance

    def update_market_conditions(
        self,
        btc_rsi_4h: Optional[float] = None,
        btc_change_24h: Optional[float] = None,
        rsi: Optional[float] = None,
    ) -> None:
        self.volatility = determine_volatility(rsi)
        self.market_bias = determine_market_bias(btc_rsi_4h, btc_change_24h)

    # ------------------------------------------------------------------ open

    def open_position(self, setup: Setup) -> Optional[Position]:
        if not setup.is_entry:
            return None
        if self.config.require_futures and setup.market_type != "futures":
            return None

        key = PositionKey.from_setup(setup)
        if key in self._positions:
            self._debug(f"[{self.ledger_id}] SKIPPED (duplicate): {key} - position already exists")
            return None
        if len(self._positions) >= self.config.max_open_positions:
            return None

        margin = self.balance * (self.config.position_size_percent / 100.0)
        if margin > self.balance:
            return None
        notional = margin * self.config.leverage

        quote = self.cost_model.entry_cost(
            setup.current_price,
            notional,
            setup.direction,
            determine_volatility(setup.current_rsi),
        )
        stop = self._risk.initial_stop(quote.effective_price, setup.direction)

        position = Position(
            id=f"trail-{key.symbol}-{key.timeframe}-{key.direction}-{key.market_type}-{uuid.uuid4().hex[:12]}",
            symbol=setup.symbol,
            direction=setup.direction,
            market_type=setup.market_type,
            timeframe=setup.timeframe,
            entry_price=setup.current_price,
            effective_entry_price=quote.effective_price,
            entry_time=self.clock(),
            margin_used=margin,
            notional_size=notional,
            leverage=self.config.leverage,
            entry_costs=quote.cost,
            initial_stop_price=stop,
            current_stop_price=stop,
            current_price=setup.current_price,
            unrealized_pnl=-quote.cost,
            unrealized_pnl_percent=_pct(-quote.cost, notional),
        )

        self.balance -= margin + quote.cost
        self._positions[key] = position

        self._persist("log_open", lambda store: store.log_open(self.ledger_id, position, setup))
        if self.logger:
            self.logger.log_trade_opened(self.ledger_id, position)
        return position

    # ---------------------------------------------------------------- update

    def update_position(self, setup: Setup) -> Optional[Position]:
        position = self._positions.get(PositionKey.from_setup(setup))
        if position is None or not position.is_open:
            return None

        exit_signal = self._reprice(position, setup.current_price)
        # Evaluated last: a played-out setup overrides a stop hit in the same update.
        if setup.state == "played_out":
            exit_signal = PLAYED_OUT_EXIT

        if exit_signal is not None:
            self.close_position(position, *exit_signal)
        return position

    def handle_setup_removed(self, setup: Setup) -> Optional[Position]:
        position = self._positions.get(PositionKey.from_setup(setup))
        if position is None or not position.is_open:
            return None

        self._revalue(position, setup.current_price, self.clock())
        position.orphaned = True
        self._info(
            f"[{self.ledger_id}] SETUP REMOVED (keeping position): {position.key} "
            f"uPnL=${position.unrealized_pnl:.2f} level={position.trail_level}"
        )
        return position

    async def update_orphaned_positions(self, price_of: Callable[[str], PriceLookup]) -> RepriceReport:
        """Reprice positions whose setup disappeared, from an independent price feed."""
        return await self._reprice_from_feed(lambda p: price_of(p.symbol), orphaned_only=True)

    async def update_all_position_prices(
        self,
        price_of: Callable[[str, MarketType], PriceLookup],
    ) -> RepriceReport:
        """Reprice every open position from live ticker prices.

        A lookup returning None means the price is temporarily unavailable and
        the position is skipped until the next cycle.
        """
        return await self._reprice_from_feed(lambda p: price_of(p.symbol, p.market_type), orphaned_only=False)

    # ----------------------------------------------------------------- close

    def close_position(self, position: Position, status: PositionStatus, reason: str) -> Optional[Position]:
        key = position.key
        registered = self._positions.get(key) is position
        if registered:
            del self._positions[key]
        if not registered or not position.is_open:
            return None

        now = self.clock()
        raw_pnl = position.raw_pnl_at(position.current_price)
        exit_quote = self.cost_model.exit_cost(
            position.current_price,
            position.notional_size,
            position.direction,
            self.volatility,
        )
        funding = self.cost_model.funding(
            position.notional_size,
            position.direction,
            position.holding_ms(now),
            self.market_bias,
        )

        position.raw_pnl = raw_pnl
        position.exit_costs = exit_quote.cost
        position.funding_paid = funding
        position.total_costs = position.entry_costs + exit_quote.cost + funding
        position.realized_pnl = raw_pnl - position.total_costs
        position.realized_pnl_percent = _pct(position.realized_pnl, position.notional_size)
        position.exit_price = position.current_price
        position.exit_time = now
        position.exit_reason = reason
        position.status = status

        # Entry costs already left the balance at open time.
        self.balance += position.margin_used + raw_pnl - exit_quote.cost - funding
        if self.balance > self.peak_balance:
            self.peak_balance = self.balance

        self._closed.append(position)

        self._persist("log_close", lambda store: store.log_close(self.ledger_id, position))
        if self.logger:
            self.logger.log_trade_closed(self.ledger_id, position, self.balance)
        return position

    # --------------------------------------------------------------- queries

    def get_ledger_id(self) -> str:
        return self.ledger_id

    def get_position(self, key: PositionKey) -> Optional[Position]:
        return self._positions.get(key)

    def get_open_positions(self) -> List[Position]:
        return list(self._positions.values())

    def get_closed_positions(self, limit: int = 50) -> List[Position]:
        if limit <= 0:
            return []
        return list(reversed(self._closed[-limit:]))

    def get_balance(self) -> float:
        return self.balance

    def get_unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self._positions.values())

    def get_config(self) -> TrailingStopConfig:
        return replace(self.config)

    def get_stats(self) -> TrailingStats:
        closed = self._closed
        count = len(closed)

        pnls = [p.realized_pnl or 0.0 for p in closed]
        wins = [x for x in pnls if x > 0]
        losses = [x for x in pnls if x < 0]
        total_wins = sum(wins)
        total_losses = abs(sum(losses))
        realized = sum(pnls)

        if total_losses > 0:
            profit_factor = total_wins / total_losses
        elif total_wins > 0:
            profit_factor = math.inf
        else:
            profit_factor = 0.0

        # Margin in open positions is reserved, not lost.
        reserved = sum(p.margin_used for p in self._positions.values())
        effective_balance = self.balance + reserved
        drawdown = self.peak_balance - effective_balance

        total_costs = sum(p.total_costs or 0.0 for p in closed)
        total_funding = sum(p.funding_paid or 0.0 for p in closed)
        total_raw = sum(p.raw_pnl if p.raw_pnl is not None else (p.realized_pnl or 0.0) for p in closed)
        taker_fee = self.cost_model.fee_structure().taker_fee
        total_fees = sum(p.notional_size for p in closed) * taker_fee * 2

        return TrailingStats(
            total_trades=count,
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=_pct(len(wins), count),
            total_pnl=realized,
            total_pnl_percent=_pct(realized, self.config.initial_balance),
            largest_win=max(wins) if wins else 0.0,
            largest_loss=min(losses) if losses else 0.0,
            average_win=total_wins / len(wins) if wins else 0.0,
            average_loss=total_losses / len(losses) if losses else 0.0,
            profit_factor=profit_factor,
            current_balance=effective_balance,
            peak_balance=self.peak_balance,
            max_drawdown=drawdown,
            max_drawdown_percent=_pct(drawdown, self.peak_balance),
            avg_trail_level=sum(p.trail_level for p in closed) / count if count else 0.0,
            total_fees_paid=total_fees,
            total_slippage_cost=max(0.0, total_costs - total_fees - total_funding),
            total_funding_paid=total_funding,
            total_execution_costs=total_costs,
            costs_as_percent_of_pnl=_pct(total_costs, abs(total_raw)),
            avg_cost_per_trade=total_costs / count if count else 0.0,
        )

    # ------------------------------------------------------------- lifecycle

    def reset(self) -> None:
        self._positions.clear()
        self._closed = []
        self.balance = float(self.config.initial_balance)
        self.peak_balance = self.balance

    def save_state(self) -> None:
        self._persist(
            "save",
            lambda store: store.save(
                self.ledger_id,
                self.get_open_positions(),
                list(self._closed),
                self.balance,
                self.peak_balance,
            ),
        )

    def load_state(self) -> bool:
        if self.store is None:
            return False
        try:
            snapshot = self.store.load(self.ledger_id)
        except Exception as e:
            self._error(f"[{self.ledger_id}] trade store load failed: {type(e).__name__}: {e}")
            return False
        if snapshot is None:
            return False

        self._positions = {p.key: p for p in snapshot.open_positions if p.is_open}
        self._closed = list(snapshot.closed_positions)
        self.balance = float(snapshot.balance)
        self.peak_balance = float(snapshot.peak_balance)

        self._info(
            f"[{self.ledger_id}] Restored state: {len(self._positions)} open, "
            f"{len(self._closed)} closed, balance: ${self.balance:.2f}"
        )
        return True

    # -------------------------------------------------------------- internal

    def _revalue(self, position: Position, price: float, now: datetime) -> float:
        position.current_price = price
        raw_pnl = position.raw_pnl_at(price)

        exit_quote = self.cost_model.exit_cost(price, position.notional_size, position.direction, self.volatility)
        funding = self.cost_model.funding(
            position.notional_size,
            position.direction,
            position.holding_ms(now),
            self.market_bias,
        )
        position.funding_paid = funding
        position.unrealized_pnl = raw_pnl - (position.entry_costs + exit_quote.cost + funding)
        position.unrealized_pnl_percent = _pct(position.unrealized_pnl, position.notional_size)
        return raw_pnl

    def _reprice(self, position: Position, price: float) -> Optional[ExitSignal]:
        raw_pnl = self._revalue(position, price, self.clock())

        # Trailing decisions use pre-cost PnL; costs only affect reported equity.
        roi = roi_percent(raw_pnl, position.margin_used)
        if roi > position.high_water_mark:
            position.high_water_mark = roi
        self._advance_trail(position)

        return self._risk.check_stop(position.direction, price, position.current_stop_price, position.trail_level)

    def _advance_trail(self, position: Position) -> None:
        level = self._risk.target_trail_level(position.high_water_mark)
        if level <= position.trail_level:
            return

        previous = position.trail_level
        stop = self._risk.trail_stop(position.effective_entry_price, position.direction, level, position.leverage)
        if position.direction == "long":
            position.current_stop_price = max(position.current_stop_price, stop)
        else:
            position.current_stop_price = min(position.current_stop_price, stop)
        position.trail_level = level

        if self.logger:
            self.logger.log_trail_adjusted(self.ledger_id, position, previous, self._risk.locked_roi(level))

    async def _reprice_from_feed(
        self,
        lookup: Callable[[Position], PriceLookup],
        *,
        orphaned_only: bool,
    ) -> RepriceReport:
        report = RepriceReport()

        for key, position in list(self._positions.items()):
            if orphaned_only and not position.orphaned:
                continue
            if not position.is_open:
                continue

            try:
                price = await _resolve(lookup(position))
            except PriceFeedError as e:
                report.unavailable.append(position.symbol)
                self._warning(f"[{self.ledger_id}] price unavailable for {key}: {e}")
                continue
            except Exception as e:
                report.failed.append(position.symbol)
                self._error(f"[{self.ledger_id}] price lookup failed for {key}: {type(e).__name__}: {e}")
                continue

            if price is None or not price > 0:
                report.unavailable.append(position.symbol)
                continue

            # Another task may have closed or replaced it while the lookup was pending.
            if not position.is_open or self._positions.get(key) is not position:
                continue

            exit_signal = self._reprice(position, float(price))
            report.updated += 1
            if exit_signal is not None:
                closed = self.close_position(position, *exit_signal)
                if closed is not None:
                    report.closed.append(closed)

        return report

    def _persist(self, action: str, call: Callable[[TradeStore], None]) -> None:
        if self.store is None:
            return
        try:
            call(self.store)
        except Exception as e:
            self._error(f"[{self.ledger_id}] trade store {action} failed: {type(e).__name__}: {e}")

    def _debug(self, message: str) -> None:
        if self.logger:
            self.logger.log_debug(message)

    def _info(self, message: str) -> None:
        if self.logger:
            self.logger.log_info(message)

    def _warning(self, message: str) -> None:
        if self.logger:
            self.logger.log_warning(message)

    def _error(self, message: str) -> None:
        if self.logger:
            self.logger.log_error(message)
