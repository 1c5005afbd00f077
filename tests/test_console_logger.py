from backburner.core.bot_config import TrailingStopConfig
from backburner.logger.console_logger import ConsoleLogger

from conftest import make_setup


def test_console_logger_filters_and_mirrors_to_file(tmp_path, manager_factory) -> None:
    log = ConsoleLogger(log_dir=str(tmp_path), log_level="info", show_header=False)
    pm = manager_factory(TrailingStopConfig())
    pm.logger = log

    log.log_debug("hidden detail")
    pos = pm.open_position(make_setup(price=100.0))
    pm.update_position(make_setup(price=101.5))
    pm.update_position(make_setup(price=99.0))
    log.log_warning("feed slow")
    log.log_ledger_summary(pm.ledger_id, pm.get_stats(), len(pm.get_open_positions()))

    for handler in log.file_logger.handlers:
        handler.flush()
    text = (tmp_path / "bot.log").read_text(encoding="utf-8")

    assert "hidden detail" not in text
    assert "OPENED [test] BTCUSDT LONG" in text
    assert "TRAIL [test] BTCUSDT level 0 → 1" in text
    assert "CLOSED [test] BTCUSDT LONG - Trailing Stop Hit (Level 1)" in text
    assert "| WARNING |" in text and "feed slow" in text
    assert "SUMMARY [test] trades=1" in text
    assert pos.status == "closed_trail_stop"
