from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from lpbook.domain.entities.market import (
    NearestInitializedTicks,
    RangeRecommendation,
    TickChange,
    TickDwellStats,
    TickRangeSnapshot,
    TrendSignal,
    VolatilitySignal,
)
from lpbook.domain.entities.position import LifecycleAction


AdviceAction = Literal["REBUILD", "WITHDRAW", "KEEP", "NEUTRAL_HOLD"]


@dataclass(frozen=True)
class LifecycleRecord:
    timestamp: datetime
    position_id: str
    action: LifecycleAction
    reason: str
    tick: int
    price: float
    lower: int
    upper: int
    distance: int
    entry_price: float
    amount_usd: float
    current_value: float
    fees_earned: float
    impermanent_loss_pct: float
    total_return_pct: float
    time_held_minutes: int
    rebalance_count: int
    confidence: float | None = None

    @property
    def range_label(self) -> str:
        return f"[{self.lower}, {self.upper}]"


@dataclass(frozen=True)
class RangeAdvice:
    """Advice for an externally held range that the book does not manage."""

    lower: int
    upper: int
    action: AdviceAction
    reason: str
    distance: int


@dataclass(frozen=True)
class OpenDecision:
    opened: bool
    reason: str
    amount_usd: float = 0.0
    confidence: float | None = None
    position_id: str | None = None


@dataclass(frozen=True)
class CycleResult:
    timestamp: datetime
    tick: int
    price: float
    recommendation: RangeRecommendation
    tick_range: TickRangeSnapshot
    nearest_ticks: NearestInitializedTicks | None
    trend: TrendSignal
    volatility: VolatilitySignal
    open_decision: OpenDecision
    records: list[LifecycleRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    tick_change: TickChange | None = None
    tick_dwell: TickDwellStats | None = None
    advice: RangeAdvice | None = None
