from __future__ import annotations

import math

from lpbook.domain.entities.market import TrendSignal, VolatilitySignal
from lpbook.domain.entities.policy import LifecyclePolicy


VOLATILITY_CONFIDENCE_WEIGHT = {
    "low": 1.0,
    "medium": 0.85,
    "high": 0.6,
    "extreme": 0.0,
}


def trend_threshold_ticks(*, width: int, tick_spacing: int, fraction: float) -> int:
    return max(tick_spacing, math.floor(fraction * width))


def classify_trend(
    *,
    twap_short_tick: int | None,
    twap_long_tick: int | None,
    width: int,
    tick_spacing: int,
    policy: LifecyclePolicy,
) -> TrendSignal:
    """Trend from the short-vs-long TWAP divergence.

    Strength is the divergence over twice the threshold, capped at 1. A sideways
    market is favorable for providing liquidity; a strong directional move is not.
    """
    threshold = trend_threshold_ticks(
        width=width,
        tick_spacing=tick_spacing,
        fraction=policy.trend_threshold_fraction,
    )
    if twap_short_tick is None or twap_long_tick is None:
        return TrendSignal(
            direction="unknown",
            strength=0.0,
            divergence_ticks=None,
            threshold_ticks=threshold,
            recommendation="caution",
        )

    divergence = twap_short_tick - twap_long_tick
    strength = min(1.0, abs(divergence) / (2 * threshold))
    if abs(divergence) < threshold:
        direction = "neutral"
    elif divergence > 0:
        direction = "bullish"
    else:
        direction = "bearish"

    if direction == "neutral":
        recommendation = "favorable"
    elif strength >= policy.trend_avoid_strength:
        recommendation = "avoid"
    else:
        recommendation = "caution"

    return TrendSignal(
        direction=direction,
        strength=strength,
        divergence_ticks=divergence,
        threshold_ticks=threshold,
        recommendation=recommendation,
    )


def classify_volatility(sigma: float, policy: LifecyclePolicy) -> VolatilitySignal:
    if sigma < policy.volatility_low_sigma:
        regime = "low"
    elif sigma < policy.volatility_medium_sigma:
        regime = "medium"
    elif sigma < policy.volatility_extreme_sigma:
        regime = "high"
    else:
        regime = "extreme"
    return VolatilitySignal(sigma=sigma, regime=regime)


def entry_confidence(trend: TrendSignal, volatility: VolatilitySignal) -> float:
    trend_score = 1.0 - trend.strength
    if trend.direction == "unknown":
        trend_score = 0.5
    return round(trend_score * VOLATILITY_CONFIDENCE_WEIGHT[volatility.regime], 4)
