from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from backburner.connectors.mexc_connector import MexcConnector
from backburner.connectors.mock_setup_feed import MockSetupFeed, SetupEvent
from backburner.core.config import Config
from backburner.core.position_manager import PositionManager, RepriceReport
from backburner.models.setup import Setup
from backburner.models.stats import TrailingStats


class Logger(Protocol):
    def log_error(self, message: str) -> None: ...

    def log_info(self, message: str) -> None: ...

    def log_ledger_summary(self, ledger_id: str, stats: TrailingStats, open_positions: int) -> None: ...


@dataclass
class PaperTradingService:
    """Fans setup events and price polls out to every ledger variant."""

    ledgers: Iterable[PositionManager]
    connector: MexcConnector
    config: Config
    logger: Logger
    setup_feed: Optional[MockSetupFeed] = None

    _ledgers: Dict[str, PositionManager] = field(default_factory=dict, init=False)
    _running: bool = field(default=False, init=False)
    _stop_event: asyncio.Event | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        for ledger in self.ledgers:
            if ledger.ledger_id in self._ledgers:
                raise ValueError(f"Duplicate ledger id: {ledger.ledger_id}")
            self._ledgers[ledger.ledger_id] = ledger

    def get_ledger(self, ledger_id: str) -> Optional[PositionManager]:
        return self._ledgers.get(ledger_id)

    def get_ledgers(self) -> List[PositionManager]:
        return list(self._ledgers.values())

    # ----------------------------------------------------------- setup events

    def on_new_setup(self, setup: Setup) -> int:
        opened = 0
        for ledger in self._ledgers.values():
            if ledger.open_position(setup) is not None:
                opened += 1
        return opened

    def on_setup_updated(self, setup: Setup) -> None:
        for ledger in self._ledgers.values():
            if ledger.update_position(setup) is None and setup.is_entry:
                ledger.open_position(setup)

    def on_setup_removed(self, setup: Setup) -> None:
        for ledger in self._ledgers.values():
            ledger.handle_setup_removed(setup)

    def handle_event(self, event: SetupEvent) -> None:
        if event.kind == "new":
            self.on_new_setup(event.setup)
        elif event.kind == "updated":
            self.on_setup_updated(event.setup)
        elif event.kind == "removed":
            self.on_setup_removed(event.setup)

    def update_market_conditions(
        self,
        btc_rsi_4h: Optional[float] = None,
        btc_change_24h: Optional[float] = None,
        rsi: Optional[float] = None,
    ) -> None:
        for ledger in self._ledgers.values():
            ledger.update_market_conditions(btc_rsi_4h=btc_rsi_4h, btc_change_24h=btc_change_24h, rsi=rsi)

    # ---------------------------------------------------------------- polling

    async def poll_prices(self) -> Dict[str, RepriceReport]:
        reports: Dict[str, RepriceReport] = {}
        for ledger_id, ledger in self._ledgers.items():
            reports[ledger_id] = await ledger.update_all_position_prices(self.connector.price_for_market)
        return reports

    async def poll_setups(self) -> int:
        if self.setup_feed is None:
            return 0
        events = await self.setup_feed.poll()
        for event in events:
            self.handle_event(event)
        return len(events)

    # ------------------------------------------------------------ persistence

    def restore(self) -> int:
        restored = 0
        for ledger in self._ledgers.values():
            if ledger.load_state():
                restored += 1
        return restored

    def save_all(self) -> None:
        for ledger in self._ledgers.values():
            ledger.save_state()

    def log_summaries(self) -> None:
        for ledger_id, ledger in self._ledgers.items():
            self.logger.log_ledger_summary(ledger_id, ledger.get_stats(), len(ledger.get_open_positions()))

    # --------------------------------------------------------------- run loop

    async def start(self) -> None:
        self._running = True
        self._stop_event = asyncio.Event()

        if self.config.restore_state:
            restored = self.restore()
            self.logger.log_info(f"Restored {restored}/{len(self._ledgers)} ledgers from {self.config.data_dir}")

        self.logger.log_info(
            f"Starting paper trading | ledgers={', '.join(self._ledgers)} mock={self.config.mock_mode}"
        )

        tick = min(self.config.setup_poll_interval_seconds, self.config.price_poll_interval_seconds)
        next_setups = next_prices = time.monotonic()
        next_snapshot = next_prices + self.config.snapshot_interval_seconds

        while self._running:
            started = time.monotonic()
            try:
                if started >= next_setups:
                    await self.poll_setups()
                    next_setups = started + self.config.setup_poll_interval_seconds
                if started >= next_prices:
                    await self.poll_prices()
                    next_prices = started + self.config.price_poll_interval_seconds
                if started >= next_snapshot:
                    self.save_all()
                    next_snapshot = started + self.config.snapshot_interval_seconds
            except Exception as e:
                self.logger.log_error(f"paper trading loop error: {type(e).__name__}: {e}")
            elapsed = time.monotonic() - started

            sleep_for = max(0.0, tick - elapsed)

            # Allow stop() to interrupt the sleep.
            try:
                if self._stop_event is not None:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_for)
                else:
                    await asyncio.sleep(sleep_for)
            except asyncio.TimeoutError:
                pass

        self.save_all()
        self.log_summaries()

    def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        self.logger.log_info("Stopping paper trading...")
