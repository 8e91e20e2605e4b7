from __future__ import annotations

from dataclasses import dataclass

from lpbook.domain.entities.lifecycle import RangeAdvice
from lpbook.domain.entities.market import (
    RangeRecommendation,
    TickRangeSnapshot,
    TrendSignal,
    VolatilitySignal,
)


@dataclass(frozen=True)
class RecommendRangeInput:
    tick: int
    tick_spacing: int
    token0_decimals: int
    token1_decimals: int
    sigma: float | None = None
    twap_short_tick: int | None = None
    twap_long_tick: int | None = None
    position_lower: int | None = None
    position_upper: int | None = None


@dataclass(frozen=True)
class RecommendRangeOutput:
    recommendation: RangeRecommendation
    tick_range: TickRangeSnapshot
    trend: TrendSignal
    volatility: VolatilitySignal
    price_lower: float
    price_upper: float
    advice: RangeAdvice | None = None
