import asyncio
from typing import List

import pytest

from backburner.core.bot_config import TrailingStopConfig
from backburner.core.errors import PriceFeedError

from conftest import make_setup


CONFIG = TrailingStopConfig(initial_balance=2000, position_size_percent=1, leverage=10)


def _open_two(pm):
    btc = pm.open_position(make_setup(symbol="BTCUSDT", price=100.0))
    eth = pm.open_position(make_setup(symbol="ETHUSDT", price=100.0))
    return btc, eth


def test_orphaned_reprice_only_touches_orphans(manager_factory) -> None:
    pm = manager_factory(CONFIG)
    btc, eth = _open_two(pm)
    pm.handle_setup_removed(make_setup(symbol="BTCUSDT", price=100.0))

    asked: List[str] = []

    async def price_of(symbol: str) -> float:
        asked.append(symbol)
        return 105.0

    report = asyncio.run(pm.update_orphaned_positions(price_of))

    assert asked == ["BTCUSDT"]
    assert report.updated == 1
    assert btc.current_price == pytest.approx(105.0)
    assert btc.trail_level == 5
    assert eth.current_price == pytest.approx(100.0)


def test_orphaned_reprice_closes_on_stop(manager_factory) -> None:
    pm = manager_factory(CONFIG)
    btc, _ = _open_two(pm)
    pm.handle_setup_removed(make_setup(symbol="BTCUSDT", price=100.0))

    report = asyncio.run(pm.update_orphaned_positions(lambda symbol: 97.0))

    assert report.closed == [btc]
    assert btc.status == "closed_sl"
    assert len(pm.get_open_positions()) == 1


def test_update_all_skips_unavailable_prices(manager_factory) -> None:
    pm = manager_factory(CONFIG)
    btc, eth = _open_two(pm)

    def price_of(symbol: str, market_type: str):
        assert market_type == "futures"
        return 102.0 if symbol == "BTCUSDT" else None

    report = asyncio.run(pm.update_all_position_prices(price_of))

    assert report.updated == 1
    assert report.unavailable == ["ETHUSDT"]
    assert report.failed == []
    assert btc.current_price == pytest.approx(102.0)
    assert eth.current_price == pytest.approx(100.0)


def test_lookup_errors_are_isolated_per_symbol(manager_factory, logger) -> None:
    pm = manager_factory(CONFIG)
    btc, eth = _open_two(pm)
    pm.open_position(make_setup(symbol="SOLUSDT", price=100.0))

    async def price_of(symbol: str, market_type: str) -> float:
        if symbol == "BTCUSDT":
            raise PriceFeedError(symbol, "ticker timeout")
        if symbol == "ETHUSDT":
            raise KeyError("last")
        return 101.0

    report = asyncio.run(pm.update_all_position_prices(price_of))

    assert report.updated == 1
    assert report.unavailable == ["BTCUSDT"]
    assert report.failed == ["ETHUSDT"]
    assert len(logger.warnings) == 1
    assert len(logger.errors) == 1
    assert "KeyError" in logger.errors[0]
    assert btc.is_open and eth.is_open


def test_setup_close_during_pending_lookup_wins(manager_factory) -> None:
    pm = manager_factory(CONFIG)
    pos = pm.open_position(make_setup(price=100.0))

    async def scenario():
        gate = asyncio.Event()

        async def price_of(symbol: str, market_type: str) -> float:
            await gate.wait()
            return 90.0

        task = asyncio.create_task(pm.update_all_position_prices(price_of))
        await asyncio.sleep(0)
        pm.update_position(make_setup(price=101.0, state="played_out"))
        gate.set()
        return await task

    report = asyncio.run(scenario())

    assert report.updated == 0
    assert report.closed == []
    assert pos.status == "closed_played_out"
    assert pos.exit_price == pytest.approx(101.0)
    assert len(pm.get_closed_positions()) == 1


def test_concurrent_reprices_close_once(manager_factory, logger) -> None:
    pm = manager_factory(CONFIG)
    pos = pm.open_position(make_setup(price=100.0))

    async def scenario():
        gate = asyncio.Event()

        async def price_of(symbol: str, market_type: str) -> float:
            await gate.wait()
            return 97.0

        tasks = [asyncio.create_task(pm.update_all_position_prices(price_of)) for _ in range(2)]
        await asyncio.sleep(0)
        gate.set()
        return await asyncio.gather(*tasks)

    reports = asyncio.run(scenario())

    assert sum(len(r.closed) for r in reports) == 1
    assert pos.status == "closed_sl"
    assert logger.closed == [pos.id]
    assert pm.get_balance() == pytest.approx(2000.0 - 6.0)
