from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


def _getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def _getenv_list(name: str, default: Optional[List[str]] = None) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default or [])
    return [x.strip() for x in raw.split(",") if x.strip()]


DEFAULT_MOCK_SYMBOLS = ["BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT", "DOGEUSDT", "SUIUSDT"]


@dataclass(frozen=True)
class Config:
    mexc_api_key: str
    mexc_api_secret: str

    mock_mode: bool
    data_dir: str
    log_dir: str
    log_level: str

    price_poll_interval_seconds: float
    setup_poll_interval_seconds: float
    snapshot_interval_seconds: float
    restore_state: bool

    bot_variants: List[str] = field(default_factory=list)
    mock_symbols: List[str] = field(default_factory=lambda: list(DEFAULT_MOCK_SYMBOLS))
    mock_seed: int = 1337

    @classmethod
    def load(cls, dotenv_path: Optional[str] = None) -> "Config":
        load_dotenv(dotenv_path=dotenv_path)

        return cls(
            mexc_api_key=os.getenv("MEXC_API_KEY", ""),
            mexc_api_secret=os.getenv("MEXC_API_SECRET", ""),
            mock_mode=_getenv_bool("MOCK_MODE", True),
            data_dir=os.getenv("DATA_DIR", "data"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            log_level=os.getenv("LOG_LEVEL", "info"),
            price_poll_interval_seconds=_getenv_float("PRICE_POLL_INTERVAL_SECONDS", 10.0),
            setup_poll_interval_seconds=_getenv_float("SETUP_POLL_INTERVAL_SECONDS", 5.0),
            snapshot_interval_seconds=_getenv_float("SNAPSHOT_INTERVAL_SECONDS", 60.0),
            restore_state=_getenv_bool("RESTORE_STATE", False),
            bot_variants=_getenv_list("BOT_VARIANTS"),
            mock_symbols=_getenv_list("MOCK_SYMBOLS", DEFAULT_MOCK_SYMBOLS),
            mock_seed=_getenv_int("MOCK_SEED", 1337),
        )

    def validate(self) -> None:
        if self.price_poll_interval_seconds <= 0:
            raise ValueError("PRICE_POLL_INTERVAL_SECONDS must be > 0")
        if self.setup_poll_interval_seconds <= 0:
            raise ValueError("SETUP_POLL_INTERVAL_SECONDS must be > 0")
        if self.snapshot_interval_seconds <= 0:
            raise ValueError("SNAPSHOT_INTERVAL_SECONDS must be > 0")
        if self.log_level.strip().lower() not in {"debug", "info", "warning", "error"}:
            raise ValueError("LOG_LEVEL must be one of debug, info, warning, error")
        if self.mock_mode and not self.mock_symbols:
            raise ValueError("MOCK_SYMBOLS must list at least one symbol in mock mode")
