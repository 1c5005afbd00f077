from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class TrailingStats:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # percent
    total_pnl: float
    total_pnl_percent: float  # of initial balance
    largest_win: float
    largest_loss: float
    average_win: float
    average_loss: float  # absolute value
    profit_factor: float
    current_balance: float  # cash + margin reserved in open positions
    peak_balance: float
    max_drawdown: float
    max_drawdown_percent: float
    avg_trail_level: float

    total_fees_paid: float
    total_slippage_cost: float
    total_funding_paid: float
    total_execution_costs: float
    costs_as_percent_of_pnl: float
    avg_cost_per_trade: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
