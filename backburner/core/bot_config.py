from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, Optional


@dataclass(frozen=True)
class TrailingStopConfig:
    """Parameters of one trailing-stop ledger.

    All stop/trail values are ROI percentages on margin, not price moves:
    a 20% ROI stop at 10x leverage sits 2% away from entry.
    """

    initial_balance: float = 2000.0
    position_size_percent: float = 1.0
    leverage: float = 10.0
    initial_stop_loss_percent: float = 20.0
    trail_trigger_percent: float = 10.0
    trail_step_percent: float = 10.0
    level1_lock_percent: float = 0.0  # 0 = level 1 locks breakeven
    max_open_positions: int = 10
    require_futures: bool = True

    def with_overrides(self, **overrides: Any) -> "TrailingStopConfig":
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_TRAILING_CONFIG = TrailingStopConfig()


def _sweep() -> Dict[str, TrailingStopConfig]:
    out: Dict[str, TrailingStopConfig] = {}
    for leverage in (5, 10, 20):
        for trigger in (5, 10, 20):
            for lock in (0, 5):
                ledger_id = f"sweep-{leverage}x-t{trigger}-l{lock}"
                out[ledger_id] = TrailingStopConfig(
                    position_size_percent=10,
                    leverage=leverage,
                    trail_trigger_percent=trigger,
                    level1_lock_percent=lock,
                    max_open_positions=100,
                )
    return out


DEFAULT_VARIANTS: Dict[str, TrailingStopConfig] = {
    "1pct": DEFAULT_TRAILING_CONFIG,
    "10pct10x": TrailingStopConfig(position_size_percent=10, leverage=10, max_open_positions=100),
    "10pct20x": TrailingStopConfig(position_size_percent=10, leverage=20, max_open_positions=100),
    # Later trigger plus a non-zero level 1 lock.
    "wide": TrailingStopConfig(
        position_size_percent=10,
        leverage=20,
        trail_trigger_percent=20,
        level1_lock_percent=10,
        max_open_positions=100,
    ),
    **_sweep(),
}


def select_variants(
    ids: Optional[Iterable[str]] = None,
    variants: Optional[Dict[str, TrailingStopConfig]] = None,
) -> Dict[str, TrailingStopConfig]:
    pool = DEFAULT_VARIANTS if variants is None else variants
    wanted = [i.strip() for i in (ids or []) if i and i.strip()]
    if not wanted:
        return dict(pool)

    unknown = [i for i in wanted if i not in pool]
    if unknown:
        raise ValueError(f"Unknown bot variants: {', '.join(unknown)}")
    return {i: pool[i] for i in wanted}
