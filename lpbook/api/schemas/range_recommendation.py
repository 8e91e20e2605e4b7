from __future__ import annotations

from pydantic import BaseModel, Field


class RangeRecommendationRequest(BaseModel):
    tick: int = Field(..., description="Current pool tick.")
    tick_spacing: int = Field(..., description="Pool tick spacing.")
    token0_decimals: int = Field(18, ge=0, le=36)
    token1_decimals: int = Field(18, ge=0, le=36)
    sigma: float | None = Field(None, description="Log-volatility over the horizon; derived from TWAPs when omitted.")
    twap_short_tick: int | None = Field(None, description="Short-window TWAP tick.")
    twap_long_tick: int | None = Field(None, description="Long-window TWAP tick; centres the range when given.")
    position_lower: int | None = Field(None, description="Lower tick of a range you already hold; enables advice.")
    position_upper: int | None = Field(None, description="Upper tick of a range you already hold.")


class TickRangeResponse(BaseModel):
    bucket_lower: int
    bucket_upper: int
    dist_lower_pct: float
    dist_upper_pct: float
    nearest_side: str
    risk_zone: str
    recommendation: str
    description: str


class RangeAdviceResponse(BaseModel):
    lower: int
    upper: int
    action: str = Field(..., description="REBUILD, WITHDRAW, KEEP or NEUTRAL_HOLD.")
    reason: str
    distance: int = Field(..., description="Ticks to the nearer bound, -1 when outside.")


class RangeRecommendationResponse(BaseModel):
    center_tick: int
    lower: int
    upper: int
    width: int
    buffer: int
    danger: int
    sigma: float
    price_lower: float
    price_upper: float
    trend: str
    trend_recommendation: str
    volatility_regime: str
    tick_range: TickRangeResponse
    advice: RangeAdviceResponse | None = None
