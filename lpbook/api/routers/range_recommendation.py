from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from lpbook.api.deps import get_recommend_range_use_case
from lpbook.api.schemas.range_recommendation import (
    RangeAdviceResponse,
    RangeRecommendationRequest,
    RangeRecommendationResponse,
    TickRangeResponse,
)
from lpbook.application.dto.range_recommendation import RecommendRangeInput
from lpbook.application.use_cases.recommend_range import RecommendRangeUseCase
from lpbook.domain.exceptions import RangeInputError

router = APIRouter()


@router.post("/v1/range/recommend", response_model=RangeRecommendationResponse)
def recommend_range(
    req: RangeRecommendationRequest,
    use_case: RecommendRangeUseCase = Depends(get_recommend_range_use_case),
):
    try:
        result = use_case.execute(
            RecommendRangeInput(
                tick=req.tick,
                tick_spacing=req.tick_spacing,
                token0_decimals=req.token0_decimals,
                token1_decimals=req.token1_decimals,
                sigma=req.sigma,
                twap_short_tick=req.twap_short_tick,
                twap_long_tick=req.twap_long_tick,
                position_lower=req.position_lower,
                position_upper=req.position_upper,
            )
        )
    except RangeInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    recommendation = result.recommendation
    tick_range = result.tick_range
    advice = None
    if result.advice is not None:
        advice = RangeAdviceResponse(
            lower=result.advice.lower,
            upper=result.advice.upper,
            action=result.advice.action,
            reason=result.advice.reason,
            distance=result.advice.distance,
        )
    return RangeRecommendationResponse(
        center_tick=recommendation.center_tick,
        lower=recommendation.lower,
        upper=recommendation.upper,
        width=recommendation.width,
        buffer=recommendation.buffer,
        danger=recommendation.danger,
        sigma=recommendation.sigma,
        price_lower=result.price_lower,
        price_upper=result.price_upper,
        trend=result.trend.direction,
        trend_recommendation=result.trend.recommendation,
        volatility_regime=result.volatility.regime,
        tick_range=TickRangeResponse(
            bucket_lower=tick_range.bucket_lower,
            bucket_upper=tick_range.bucket_upper,
            dist_lower_pct=tick_range.dist_lower_pct,
            dist_upper_pct=tick_range.dist_upper_pct,
            nearest_side=tick_range.nearest_side,
            risk_zone=tick_range.risk_zone,
            recommendation=tick_range.recommendation,
            description=tick_range.description,
        ),
        advice=advice,
    )
