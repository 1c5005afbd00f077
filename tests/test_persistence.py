from datetime import date

import pytest

from backburner.core.bot_config import TrailingStopConfig
from backburner.core.persistence import MAX_SNAPSHOT_CLOSED, JsonTradeStore

from conftest import make_setup


CONFIG = TrailingStopConfig(initial_balance=2000, position_size_percent=1, leverage=10)


def _events(store: JsonTradeStore):
    events = []
    for path in sorted(store.trades_dir.glob("*.jsonl")):
        events.extend(store.read_trade_events(date.fromisoformat(path.stem)))
    return events


def test_trade_events_are_appended(tmp_path, manager_factory) -> None:
    store = JsonTradeStore(data_dir=str(tmp_path))
    pm = manager_factory(CONFIG, store=store)

    pos = pm.open_position(make_setup(price=100.0, rsi=27.5))
    pm.update_position(make_setup(price=97.0))

    events = _events(store)
    assert [e["event_type"] for e in events] == ["open", "close"]
    assert events[0]["position_id"] == pos.id
    assert events[0]["ledger_id"] == "test"
    assert events[0]["signal_rsi"] == pytest.approx(27.5)
    assert events[0]["signal_state"] == "triggered"
    assert events[1]["exit_reason"] == "Initial Stop Loss Hit"
    assert events[1]["realized_pnl"] == pytest.approx(-6.0)
    assert events[1]["duration_ms"] == 0.0
    assert store.read_trade_events(date(2000, 1, 1)) == []


def test_snapshot_restores_open_and_closed_positions(tmp_path, manager_factory) -> None:
    store = JsonTradeStore(data_dir=str(tmp_path))
    pm = manager_factory(CONFIG, store=store)

    kept = pm.open_position(make_setup(symbol="BTCUSDT", price=100.0))
    pm.update_position(make_setup(symbol="BTCUSDT", price=103.5))
    pm.handle_setup_removed(make_setup(symbol="BTCUSDT", price=103.5))
    pm.open_position(make_setup(symbol="ETHUSDT", price=100.0))
    pm.update_position(make_setup(symbol="ETHUSDT", price=97.0))
    pm.save_state()

    restored = manager_factory(CONFIG, store=store)
    assert restored.load_state()

    [pos] = restored.get_open_positions()
    assert pos.id == kept.id
    assert pos.orphaned
    assert pos.trail_level == 3
    assert pos.current_stop_price == pytest.approx(kept.current_stop_price)
    assert pos.entry_time == kept.entry_time
    assert restored.get_balance() == pytest.approx(pm.get_balance())
    assert restored.peak_balance == pytest.approx(pm.peak_balance)
    assert [p.status for p in restored.get_closed_positions()] == ["closed_sl"]


def test_snapshot_keeps_recent_closed_only(tmp_path, manager_factory) -> None:
    store = JsonTradeStore(data_dir=str(tmp_path))
    pm = manager_factory(CONFIG.with_overrides(max_open_positions=1000, position_size_percent=0.01), store=store)
    for i in range(MAX_SNAPSHOT_CLOSED + 5):
        pos = pm.open_position(make_setup(symbol=f"C{i}USDT", price=100.0))
        pm.close_position(pos, "closed_played_out", "done")
    pm.save_state()

    snapshot = store.load("test")
    assert len(snapshot.closed_positions) == MAX_SNAPSHOT_CLOSED
    assert snapshot.closed_positions[-1].symbol == f"C{MAX_SNAPSHOT_CLOSED + 4}USDT"


def test_load_missing_or_corrupt_snapshot(tmp_path, logger) -> None:
    store = JsonTradeStore(data_dir=str(tmp_path), logger=logger)
    assert store.load("nope") is None
    assert logger.errors == []

    (store.positions_dir / "bad.json").write_text("{not json", encoding="utf-8")
    assert store.load("bad") is None
    assert len(logger.errors) == 1


def test_store_failures_do_not_break_trading(manager_factory, logger) -> None:
    class BrokenStore:
        def log_open(self, ledger_id, position, setup) -> None:
            raise OSError("disk full")

        def log_close(self, ledger_id, position) -> None:
            raise OSError("disk full")

        def save(self, *args) -> None:
            raise OSError("disk full")

        def load(self, ledger_id):
            raise OSError("disk gone")

    pm = manager_factory(CONFIG, store=BrokenStore())

    pos = pm.open_position(make_setup(price=100.0))
    pm.update_position(make_setup(price=97.0))
    pm.save_state()

    assert pos.status == "closed_sl"
    assert pm.load_state() is False
    assert len(logger.errors) == 4
    assert all("disk" in e for e in logger.errors)
