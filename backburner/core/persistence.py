"""Trade log and ledger snapshot storage.

Trade events are appended as JSON lines to ``trades/YYYY-MM-DD.jsonl`` and
never rewritten. Each ledger's state is snapshotted to
``positions/<ledger_id>.json`` so a restart can resume open positions.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from backburner.models.setup import Setup
from backburner.models.trade import LedgerSnapshot, Position


MAX_SNAPSHOT_CLOSED = 100


class Logger(Protocol):
    def log_error(self, message: str) -> None: ...

    def log_info(self, message: str) -> None: ...


class TradeStore(Protocol):
    def log_open(self, ledger_id: str, position: Position, setup: Setup) -> None: ...

    def log_close(self, ledger_id: str, position: Position) -> None: ...

    def save(
        self,
        ledger_id: str,
        open_positions: Sequence[Position],
        closed_positions: Sequence[Position],
        balance: float,
        peak_balance: float,
    ) -> None: ...

    def load(self, ledger_id: str) -> Optional[LedgerSnapshot]: ...


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def _base_event(event_type: str, ledger_id: str, position: Position, now: datetime) -> Dict[str, Any]:
    return {
        "timestamp": now.isoformat(),
        "event_type": event_type,
        "ledger_id": ledger_id,
        "position_id": position.id,
        "symbol": position.symbol,
        "direction": position.direction,
        "timeframe": position.timeframe,
        "market_type": position.market_type,
        "entry_price": position.effective_entry_price,
        "entry_time": _iso(position.entry_time),
        "margin_used": position.margin_used,
        "notional_size": position.notional_size,
        "leverage": position.leverage,
        "stop_loss_price": position.current_stop_price,
    }


@dataclass
class JsonTradeStore:
    data_dir: str = "data"
    logger: Optional[Logger] = None

    def __post_init__(self) -> None:
        self._root = Path(self.data_dir)
        self.trades_dir.mkdir(parents=True, exist_ok=True)
        self.positions_dir.mkdir(parents=True, exist_ok=True)

    @property
    def trades_dir(self) -> Path:
        return self._root / "trades"

    @property
    def positions_dir(self) -> Path:
        return self._root / "positions"

    def log_open(self, ledger_id: str, position: Position, setup: Setup) -> None:
        now = datetime.now(timezone.utc)
        event = _base_event("open", ledger_id, position, now)
        event.update(
            signal_rsi=setup.current_rsi,
            signal_state=setup.state,
            impulse_percent=setup.impulse_percent,
        )
        self._append(now.date(), event)

    def log_close(self, ledger_id: str, position: Position) -> None:
        now = datetime.now(timezone.utc)
        event = _base_event("close", ledger_id, position, now)
        duration_ms = None
        if position.exit_time is not None:
            duration_ms = (position.exit_time - position.entry_time).total_seconds() * 1000.0
        event.update(
            exit_price=position.exit_price,
            exit_time=_iso(position.exit_time),
            exit_reason=position.exit_reason,
            status=position.status,
            realized_pnl=position.realized_pnl,
            realized_pnl_percent=position.realized_pnl_percent,
            duration_ms=duration_ms,
        )
        self._append(now.date(), event)

    def read_trade_events(self, day: date) -> List[Dict[str, Any]]:
        path = self._trade_file(day)
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]

    def save(
        self,
        ledger_id: str,
        open_positions: Sequence[Position],
        closed_positions: Sequence[Position],
        balance: float,
        peak_balance: float,
    ) -> None:
        data = {
            "ledger_id": ledger_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "balance": balance,
            "peak_balance": peak_balance,
            "open_positions": [p.to_dict() for p in open_positions],
            "closed_positions": [p.to_dict() for p in list(closed_positions)[-MAX_SNAPSHOT_CLOSED:]],
        }
        path = self._snapshot_file(ledger_id)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
        os.replace(tmp, path)

    def load(self, ledger_id: str) -> Optional[LedgerSnapshot]:
        path = self._snapshot_file(ledger_id)
        if not path.exists():
            return None

        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            snapshot = LedgerSnapshot(
                balance=float(data["balance"]),
                peak_balance=float(data["peak_balance"]),
                open_positions=[Position.from_dict(p) for p in data.get("open_positions") or []],
                closed_positions=[Position.from_dict(p) for p in data.get("closed_positions") or []],
                saved_at=datetime.fromisoformat(data["saved_at"]) if data.get("saved_at") else None,
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            if self.logger:
                self.logger.log_error(f"Failed to load snapshot for {ledger_id}: {e}")
            return None

        if self.logger:
            self.logger.log_info(
                f"Loaded {len(snapshot.open_positions)} open positions for {ledger_id} (saved at {data.get('saved_at')})"
            )
        return snapshot

    def _trade_file(self, day: date) -> Path:
        return self.trades_dir / f"{day.isoformat()}.jsonl"

    def _snapshot_file(self, ledger_id: str) -> Path:
        return self.positions_dir / f"{ledger_id}.json"

    def _append(self, day: date, event: Dict[str, Any]) -> None:
        with self._trade_file(day).open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(event, ensure_ascii=False) + "\n")
