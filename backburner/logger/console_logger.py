from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from backburner.models.stats import TrailingStats
from backburner.models.trade import Position


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _ts() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _usd(x: float) -> str:
    return f"${x:,.2f}"


def _px(x: float) -> str:
    return f"{x:.5g}"


@dataclass
class ConsoleLogger:
    log_dir: str = "logs"
    log_file: str = "bot.log"
    log_level: str = "info"
    show_header: bool = True

    console: Console = field(default_factory=lambda: Console(), init=False)
    file_logger: logging.Logger = field(default_factory=lambda: logging.getLogger("backburner"), init=False)

    def __post_init__(self) -> None:
        os.makedirs(self.log_dir, exist_ok=True)
        self._level = _LEVELS.get(self.log_level.strip().lower(), logging.INFO)

        self.file_logger.setLevel(self._level)
        self.file_logger.propagate = False
        self.file_logger.handlers.clear()

        fh = logging.FileHandler(os.path.join(self.log_dir, self.log_file), encoding="utf-8")
        fh.setLevel(self._level)
        fh.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        self.file_logger.addHandler(fh)

        if self.show_header:
            self._print_header()

    def _print_header(self) -> None:
        title = Text("BACKBURNER - TRAILING STOP PAPER TRADING", style="bold cyan")
        self.console.print(Panel(title, expand=False, border_style="cyan"))

    def _log(self, message: str, *, level: int = logging.INFO, style: Optional[str] = None) -> None:
        if level < self._level:
            return
        prefix = f"[{_ts()}] "
        if style:
            self.console.print(prefix + message, style=style, markup=False)
        else:
            self.console.print(prefix + message, markup=False)
        self.file_logger.log(level, message)

    def log_debug(self, message: str) -> None:
        self._log(message, level=logging.DEBUG, style="dim")

    def log_info(self, message: str) -> None:
        self._log(message)

    def log_warning(self, message: str) -> None:
        self._log(f"⚠️ {message}", level=logging.WARNING, style="yellow")

    def log_error(self, message: str) -> None:
        self._log(f"❌ {message}", level=logging.ERROR, style="bold red")

    def log_trade_opened(self, ledger_id: str, position: Position) -> None:
        self._log(
            f"✅ OPENED [{ledger_id}] {position.symbol} {position.direction.upper()} {position.timeframe} "
            f"@ {_px(position.effective_entry_price)} (mkt {_px(position.entry_price)}) "
            f"margin={_usd(position.margin_used)} notional={_usd(position.notional_size)} "
            f"SL={_px(position.initial_stop_price)} costs={_usd(position.entry_costs)}",
            style="bold green",
        )

    def log_trail_adjusted(self, ledger_id: str, position: Position, previous_level: int, locked_roi: float) -> None:
        self._log(
            f"📈 TRAIL [{ledger_id}] {position.symbol} level {previous_level} → {position.trail_level} "
            f"SL={_px(position.current_stop_price)} (locking {locked_roi:.1f}% ROI, hwm={position.high_water_mark:.2f}%)",
            style="cyan",
        )

    def log_trade_closed(self, ledger_id: str, position: Position, balance: float) -> None:
        pnl = position.realized_pnl or 0.0
        style = "bold green" if pnl >= 0 else "bold red"
        self._log(
            f"🏁 CLOSED [{ledger_id}] {position.symbol} {position.direction.upper()} - {position.exit_reason} | "
            f"raw={_usd(position.raw_pnl or 0.0)} costs={_usd(position.total_costs or 0.0)} net={_usd(pnl)} "
            f"level={position.trail_level} balance={_usd(balance)}",
            style=style,
        )

    def log_ledger_summary(self, ledger_id: str, stats: TrailingStats, open_positions: int) -> None:
        self._log(
            f"📌 SUMMARY [{ledger_id}] trades={stats.total_trades} wins={stats.winning_trades} "
            f"losses={stats.losing_trades} win_rate={stats.win_rate:.1f}% pnl={_usd(stats.total_pnl)} "
            f"pf={stats.profit_factor:.2f} balance={_usd(stats.current_balance)} open={open_positions}",
            style="bold cyan",
        )
