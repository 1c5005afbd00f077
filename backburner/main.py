from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import List


if __package__ is None or __package__ == "":
    # Allow running via: python backburner/main.py
    sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from backburner.connectors.mexc_connector import MexcConnector
from backburner.connectors.mock_setup_feed import MockSetupFeed
from backburner.core.bot_config import select_variants
from backburner.core.config import Config
from backburner.core.cost_model import ExecutionCostsCalculator, ExecutionCostsSettings
from backburner.core.persistence import JsonTradeStore
from backburner.core.position_manager import PositionManager
from backburner.logger.console_logger import ConsoleLogger
from backburner.services.paper_trading_service import PaperTradingService


def build_service(cfg: Config, logger: ConsoleLogger) -> PaperTradingService:
    store = JsonTradeStore(data_dir=cfg.data_dir, logger=logger)
    costs = ExecutionCostsCalculator(ExecutionCostsSettings.from_env())

    ledgers: List[PositionManager] = [
        PositionManager(ledger_id=ledger_id, config=bot_cfg, cost_model=costs, store=store, logger=logger)
        for ledger_id, bot_cfg in select_variants(cfg.bot_variants).items()
    ]

    connector = MexcConnector(
        api_key=cfg.mexc_api_key,
        api_secret=cfg.mexc_api_secret,
        mock=cfg.mock_mode,
        mock_symbols=list(cfg.mock_symbols),
        seed=cfg.mock_seed,
    )
    feed = MockSetupFeed(connector, cfg.mock_symbols, seed=cfg.mock_seed) if cfg.mock_mode else None

    return PaperTradingService(ledgers, connector, cfg, logger, setup_feed=feed)


async def paper_trading_main() -> None:
    cfg = Config.load()
    cfg.validate()

    logger = ConsoleLogger(log_dir=cfg.log_dir, log_level=cfg.log_level)
    service = build_service(cfg, logger)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.stop)
        except NotImplementedError:
            # add_signal_handler is not available on some platforms.
            pass

    await service.start()


def main() -> None:
    asyncio.run(paper_trading_main())


if __name__ == "__main__":
    main()
