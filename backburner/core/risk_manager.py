from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from backburner.core.bot_config import TrailingStopConfig
from backburner.models.trade import Direction, PositionStatus


def price_at_roi(entry_price: float, direction: Direction, roi_percent: float, leverage: float) -> float:
    """Price at which a position entered at entry_price shows roi_percent return on margin.

    ROI on margin is the price move times leverage, so r% ROI is an r/leverage % price move.
    Negative ROI gives a loss-side price (initial stop).
    """
    move = roi_percent / 100.0 / leverage
    if direction == "long":
        return entry_price * (1.0 + move)
    return entry_price * (1.0 - move)


def roi_percent(raw_pnl: float, margin: float) -> float:
    if margin <= 0:
        return 0.0
    return raw_pnl / margin * 100.0


@dataclass(frozen=True)
class RiskManager:
    config: TrailingStopConfig

    def initial_stop(self, entry_price: float, direction: Direction) -> float:
        return price_at_roi(entry_price, direction, -self.config.initial_stop_loss_percent, self.config.leverage)

    def target_trail_level(self, high_water_mark: float) -> int:
        trigger = self.config.trail_trigger_percent
        step = self.config.trail_step_percent
        if high_water_mark < trigger:
            return 0
        if step <= 0:
            return 1
        return int(math.floor((high_water_mark - trigger) / step)) + 1

    def locked_roi(self, level: int) -> float:
        return self.config.level1_lock_percent + (level - 1) * self.config.trail_step_percent

    def trail_stop(self, entry_price: float, direction: Direction, level: int, leverage: float) -> float:
        return price_at_roi(entry_price, direction, self.locked_roi(level), leverage)

    @staticmethod
    def stop_hit(direction: Direction, price: float, stop_price: float) -> bool:
        if direction == "long":
            return price <= stop_price
        return price >= stop_price

    def check_stop(
        self,
        direction: Direction,
        price: float,
        stop_price: float,
        trail_level: int,
    ) -> Optional[Tuple[PositionStatus, str]]:
        if not self.stop_hit(direction, price, stop_price):
            return None
        if trail_level > 0:
            return "closed_trail_stop", f"Trailing Stop Hit (Level {trail_level})"
        return "closed_sl", "Initial Stop Loss Hit"
