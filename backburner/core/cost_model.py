"""Execution cost model: exchange fees, slippage and perpetual funding.

Defaults follow MEXC perpetual futures retail rates. Slippage always works
against the trader; funding is positive when the trader pays.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Protocol

from backburner.core.config import _getenv_bool, _getenv_float
from backburner.models.trade import Direction


Volatility = Literal["low", "normal", "high", "extreme"]
MarketBias = Literal["bullish", "bearish", "neutral"]

_HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class FeeStructure:
    maker_fee: float = 0.0002
    taker_fee: float = 0.0004


@dataclass(frozen=True)
class SlippageSettings:
    base_bps: float = 2.0
    volatility_multiplier: float = 1.5
    size_impact_bps_per_10k: float = 0.5
    min_bps: float = 1.0
    max_bps: float = 20.0


@dataclass(frozen=True)
class FundingSettings:
    default_rate_percent: float = 0.01  # per interval, neutral market
    extreme_rate_percent: float = 0.1  # per interval, trending market
    interval_hours: float = 8.0


@dataclass(frozen=True)
class ExecutionCostsSettings:
    fees: FeeStructure = field(default_factory=FeeStructure)
    slippage: SlippageSettings = field(default_factory=SlippageSettings)
    funding: FundingSettings = field(default_factory=FundingSettings)
    enabled: bool = True

    @classmethod
    def from_env(cls) -> "ExecutionCostsSettings":
        return cls(
            fees=FeeStructure(
                maker_fee=_getenv_float("COST_MAKER_FEE", 0.0002),
                taker_fee=_getenv_float("COST_TAKER_FEE", 0.0004),
            ),
            slippage=SlippageSettings(
                base_bps=_getenv_float("COST_SLIPPAGE_BASE_BPS", 2.0),
                min_bps=_getenv_float("COST_SLIPPAGE_MIN_BPS", 1.0),
                max_bps=_getenv_float("COST_SLIPPAGE_MAX_BPS", 20.0),
            ),
            funding=FundingSettings(
                default_rate_percent=_getenv_float("COST_FUNDING_DEFAULT_PERCENT", 0.01),
                extreme_rate_percent=_getenv_float("COST_FUNDING_EXTREME_PERCENT", 0.1),
            ),
            enabled=_getenv_bool("COST_MODEL_ENABLED", True),
        )


@dataclass(frozen=True)
class CostQuote:
    effective_price: float
    cost: float


class CostModel(Protocol):
    def entry_cost(self, price: float, notional: float, direction: Direction, volatility: Volatility) -> CostQuote: ...

    def exit_cost(self, price: float, notional: float, direction: Direction, volatility: Volatility) -> CostQuote: ...

    def funding(self, notional: float, direction: Direction, holding_ms: float, market_bias: MarketBias) -> float: ...

    def fee_structure(self) -> FeeStructure: ...


@dataclass
class ExecutionCostsCalculator:
    settings: ExecutionCostsSettings = field(default_factory=ExecutionCostsSettings)

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def slippage_bps(self, notional: float, volatility: Volatility = "normal") -> float:
        if not self.enabled:
            return 0.0

        s = self.settings.slippage
        bps = s.base_bps
        if volatility == "low":
            bps *= 0.5
        elif volatility == "high":
            bps *= s.volatility_multiplier
        elif volatility == "extreme":
            bps *= s.volatility_multiplier * 1.5

        bps += (notional / 10_000.0) * s.size_impact_bps_per_10k
        return min(s.max_bps, max(s.min_bps, bps))

    def fee(self, notional: float, is_maker: bool = False) -> float:
        if not self.enabled:
            return 0.0
        fees = self.settings.fees
        return notional * (fees.maker_fee if is_maker else fees.taker_fee)

    def entry_cost(
        self,
        price: float,
        notional: float,
        direction: Direction,
        volatility: Volatility = "normal",
    ) -> CostQuote:
        if not self.enabled:
            return CostQuote(effective_price=price, cost=0.0)

        rate = self.slippage_bps(notional, volatility) / 10_000.0
        # Buying in fills higher, selling in fills lower.
        effective = price * (1 + rate) if direction == "long" else price * (1 - rate)
        return CostQuote(effective_price=effective, cost=self.fee(notional) + self._slippage_cost(price, effective, notional))

    def exit_cost(
        self,
        price: float,
        notional: float,
        direction: Direction,
        volatility: Volatility = "normal",
    ) -> CostQuote:
        if not self.enabled:
            return CostQuote(effective_price=price, cost=0.0)

        rate = self.slippage_bps(notional, volatility) / 10_000.0
        effective = price * (1 - rate) if direction == "long" else price * (1 + rate)
        return CostQuote(effective_price=effective, cost=self.fee(notional) + self._slippage_cost(price, effective, notional))

    def funding(
        self,
        notional: float,
        direction: Direction,
        holding_ms: float,
        market_bias: MarketBias = "neutral",
    ) -> float:
        if not self.enabled:
            return 0.0

        f = self.settings.funding
        periods = holding_ms / (f.interval_hours * _HOUR_MS)
        if periods < 0.1:
            return 0.0

        if market_bias == "bullish":
            rate, longs_pay = f.extreme_rate_percent / 100.0, True
        elif market_bias == "bearish":
            rate, longs_pay = f.extreme_rate_percent / 100.0, False
        else:
            rate, longs_pay = f.default_rate_percent / 100.0, True

        total = notional * rate * periods
        pays = (direction == "long") == longs_pay
        return total if pays else -total

    def fee_structure(self) -> FeeStructure:
        if not self.enabled:
            return FeeStructure(maker_fee=0.0, taker_fee=0.0)
        return self.settings.fees

    def round_trip_cost_percent(self, notional: float, holding_hours: float = 24.0) -> float:
        """Rough fees + slippage + neutral funding for a full round trip, in % of notional."""
        if not self.enabled:
            return 0.0
        fees_pct = self.settings.fees.taker_fee * 2 * 100
        slippage_pct = self.slippage_bps(notional, "normal") / 100 * 2
        f = self.settings.funding
        funding_pct = f.default_rate_percent * (holding_hours / f.interval_hours)
        return fees_pct + slippage_pct + funding_pct

    @staticmethod
    def _slippage_cost(price: float, effective: float, notional: float) -> float:
        if price <= 0:
            return 0.0
        return abs(effective - price) * (notional / price)


def determine_volatility(rsi: Optional[float] = None, price_change_percent: Optional[float] = None) -> Volatility:
    if price_change_percent is not None:
        if abs(price_change_percent) > 5:
            return "extreme"
        if abs(price_change_percent) > 2:
            return "high"

    if rsi is not None:
        if rsi < 15 or rsi > 85:
            return "extreme"
        if rsi < 25 or rsi > 75:
            return "high"
        if 40 < rsi < 60:
            return "low"

    return "normal"


def determine_market_bias(btc_rsi_4h: Optional[float] = None, btc_change_24h: Optional[float] = None) -> MarketBias:
    score = 0

    if btc_rsi_4h is not None:
        score += (btc_rsi_4h > 60) + (btc_rsi_4h > 70)
        score -= (btc_rsi_4h < 40) + (btc_rsi_4h < 30)

    if btc_change_24h is not None:
        score += (btc_change_24h > 2) + (btc_change_24h > 5)
        score -= (btc_change_24h < -2) + (btc_change_24h < -5)

    if score >= 2:
        return "bullish"
    if score <= -2:
        return "bearish"
    return "neutral"
