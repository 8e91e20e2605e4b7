from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal


RiskZone = Literal["danger", "warning", "safe", "optimal"]
LpRecommendation = Literal["avoid", "caution", "add", "excellent"]
TrendDirection = Literal["bullish", "bearish", "neutral", "unknown"]
TrendRecommendation = Literal["favorable", "caution", "avoid"]
VolatilityRegime = Literal["low", "medium", "high", "extreme"]
AprConfidence = Literal["low", "medium", "high"]
TickDirection = Literal["up", "down"]


@dataclass(frozen=True)
class MarketSnapshot:
    timestamp: datetime
    tick: int
    sqrt_price_x96: int
    liquidity: int
    fee_tier: int
    tick_spacing: int
    token0_decimals: int
    token1_decimals: int
    twap_short_tick: int | None = None
    twap_long_tick: int | None = None
    block_number: int | None = None
    observation_cardinality: int | None = None


@dataclass(frozen=True)
class NearestInitializedTicks:
    active_tick: int
    left_tick: int | None
    right_tick: int | None

    @property
    def distance_left(self) -> int | None:
        return self.active_tick - self.left_tick if self.left_tick is not None else None

    @property
    def distance_right(self) -> int | None:
        return self.right_tick - self.active_tick if self.right_tick is not None else None

    @property
    def distance_min(self) -> int | None:
        distances = [d for d in (self.distance_left, self.distance_right) if d is not None]
        return min(distances) if distances else None


@dataclass(frozen=True)
class TickRangeSnapshot:
    tick: int
    tick_spacing: int
    bucket: int
    bucket_lower: int
    bucket_upper: int
    price_at_lower: float
    price_at_upper: float
    dist_lower_pct: float
    dist_upper_pct: float
    nearest_side: Literal["lower", "upper"]
    nearest_pct: float
    risk_zone: RiskZone
    recommendation: LpRecommendation
    description: str


@dataclass(frozen=True)
class RangeRecommendation:
    center_tick: int
    lower: int
    upper: int
    width: int
    buffer: int
    danger: int
    sigma: float


@dataclass(frozen=True)
class TrendSignal:
    direction: TrendDirection
    strength: float
    divergence_ticks: int | None
    threshold_ticks: int
    recommendation: TrendRecommendation


@dataclass(frozen=True)
class VolatilitySignal:
    sigma: float
    regime: VolatilityRegime


@dataclass(frozen=True)
class AprEstimate:
    fee_apr_pct: float
    projected_apr_pct: float
    volume_to_tvl_ratio: float
    confidence: AprConfidence


@dataclass(frozen=True)
class TickChange:
    timestamp: datetime
    from_tick: int
    to_tick: int
    direction: TickDirection
    ticks_changed: int
    price_change_pct: float
    seconds_at_previous_tick: float | None


@dataclass(frozen=True)
class TickDwellStats:
    """How long the price stayed on a tick before moving, over recent changes."""

    samples: int
    average_seconds: float | None
    min_seconds: float | None
    max_seconds: float | None
    current_tick: int | None
    seconds_at_current_tick: float | None


@dataclass(frozen=True)
class SwapEvent:
    block_number: int
    transaction_hash: str | None
    log_index: int | None
    amount0: int
    amount1: int
    sqrt_price_x96: int
    liquidity: int
    tick: int
