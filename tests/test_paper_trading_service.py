import asyncio
from typing import List, Optional

import pytest

from backburner.connectors.mock_setup_feed import SetupEvent
from backburner.core.bot_config import TrailingStopConfig
from backburner.core.config import Config
from backburner.services.paper_trading_service import PaperTradingService

from conftest import make_setup


def make_config(**overrides) -> Config:
    values = dict(
        mexc_api_key="",
        mexc_api_secret="",
        mock_mode=True,
        data_dir="data",
        log_dir="logs",
        log_level="info",
        price_poll_interval_seconds=0.01,
        setup_poll_interval_seconds=0.01,
        snapshot_interval_seconds=0.02,
        restore_state=False,
    )
    values.update(overrides)
    return Config(**values)


class StubConnector:
    def __init__(self, price: Optional[float] = 100.0):
        self.price = price
        self.calls: List[str] = []

    async def price_for_market(self, symbol: str, market_type: str) -> Optional[float]:
        self.calls.append(f"{symbol}:{market_type}")
        return self.price


class CountingStore:
    def __init__(self) -> None:
        self.saves = 0
        self.loads: List[str] = []

    def log_open(self, ledger_id, position, setup) -> None:
        return

    def log_close(self, ledger_id, position) -> None:
        return

    def save(self, ledger_id, open_positions, closed_positions, balance, peak_balance) -> None:
        self.saves += 1

    def load(self, ledger_id):
        self.loads.append(ledger_id)
        return None


class ScriptedFeed:
    def __init__(self, batches: List[List[SetupEvent]]):
        self.batches = list(batches)

    async def poll(self) -> List[SetupEvent]:
        return self.batches.pop(0) if self.batches else []


def _service(manager_factory, logger, connector=None, store=None, feed=None, **cfg):
    ledgers = [
        manager_factory(TrailingStopConfig(leverage=10), store=store, ledger_id="10x"),
        manager_factory(TrailingStopConfig(leverage=20), store=store, ledger_id="20x"),
    ]
    return PaperTradingService(ledgers, connector or StubConnector(), make_config(**cfg), logger, setup_feed=feed)


def test_duplicate_ledger_ids_rejected(manager_factory, logger) -> None:
    ledgers = [manager_factory(ledger_id="x"), manager_factory(ledger_id="x")]
    with pytest.raises(ValueError):
        PaperTradingService(ledgers, StubConnector(), make_config(), logger)


def test_setup_events_fan_out_to_every_ledger(manager_factory, logger) -> None:
    svc = _service(manager_factory, logger)
    l10, l20 = svc.get_ledger("10x"), svc.get_ledger("20x")

    assert svc.on_new_setup(make_setup(state="watching")) == 0
    # A setup that becomes triggered is opened from the update.
    svc.on_setup_updated(make_setup(price=100.0, state="triggered"))
    assert len(l10.get_open_positions()) == 1
    assert len(l20.get_open_positions()) == 1

    # 10x initial stop is 98, 20x is 99.
    svc.on_setup_updated(make_setup(price=98.5, state="reversing"))
    assert len(l10.get_open_positions()) == 1
    assert l20.get_open_positions() == []
    assert l20.get_closed_positions()[0].status == "closed_sl"

    svc.on_setup_removed(make_setup(price=98.5, state="reversing"))
    assert l10.get_open_positions()[0].orphaned


def test_closed_position_is_not_reopened_by_same_update(manager_factory, logger) -> None:
    svc = _service(manager_factory, logger)
    svc.on_new_setup(make_setup(price=100.0))

    svc.on_setup_updated(make_setup(price=90.0, state="deep_extreme"))

    for ledger in svc.get_ledgers():
        assert ledger.get_open_positions() == []
        assert len(ledger.get_closed_positions()) == 1


def test_poll_prices_reprices_all_ledgers(manager_factory, logger) -> None:
    connector = StubConnector(price=103.2)
    svc = _service(manager_factory, logger, connector=connector)
    svc.on_new_setup(make_setup(price=100.0))

    reports = asyncio.run(svc.poll_prices())

    assert set(reports) == {"10x", "20x"}
    assert all(r.updated == 1 for r in reports.values())
    assert connector.calls == ["BTCUSDT:futures", "BTCUSDT:futures"]
    assert svc.get_ledger("20x").get_open_positions()[0].trail_level == 6


def test_market_conditions_forwarded(manager_factory, logger) -> None:
    svc = _service(manager_factory, logger)
    svc.update_market_conditions(btc_rsi_4h=75, rsi=10)
    for ledger in svc.get_ledgers():
        assert ledger.market_bias == "bullish"
        assert ledger.volatility == "extreme"


def test_run_loop_handles_feed_saves_and_summarises(manager_factory, logger) -> None:
    store = CountingStore()
    feed = ScriptedFeed([[SetupEvent("new", make_setup(price=100.0))]])
    svc = _service(manager_factory, logger, store=store, feed=feed, restore_state=True)

    async def scenario():
        task = asyncio.create_task(svc.start())
        await asyncio.sleep(0.1)
        svc.stop()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(scenario())

    assert store.loads == ["10x", "20x"]
    assert all(len(ledger.get_open_positions()) == 1 for ledger in svc.get_ledgers())
    # periodic snapshots plus the final save
    assert store.saves >= 4
    assert logger.summaries == ["10x", "20x"]
    assert logger.errors == []
