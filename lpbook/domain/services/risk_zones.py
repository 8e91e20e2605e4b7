from __future__ import annotations

from lpbook.domain.entities.market import TickRangeSnapshot
from lpbook.domain.entities.policy import RiskThresholds
from lpbook.domain.services.univ3_math import round_down_to_spacing, tick_to_price


def analyze_tick_range(
    *,
    tick: int,
    tick_spacing: int,
    token0_decimals: int,
    token1_decimals: int,
    thresholds: RiskThresholds | None = None,
) -> TickRangeSnapshot:
    """Locate ``tick`` inside its spacing bucket and grade how close it is to an edge."""
    thresholds = thresholds or RiskThresholds()
    if not thresholds.danger <= thresholds.warning <= thresholds.safe:
        raise ValueError("risk thresholds must satisfy danger <= warning <= safe.")

    bucket_lower = round_down_to_spacing(tick, tick_spacing)
    bucket_upper = bucket_lower + tick_spacing
    dist_lower_pct = (tick - bucket_lower) / tick_spacing
    dist_upper_pct = (bucket_upper - tick) / tick_spacing
    nearest_side = "lower" if dist_lower_pct < dist_upper_pct else "upper"
    nearest_pct = min(dist_lower_pct, dist_upper_pct)

    if nearest_pct <= thresholds.danger:
        risk_zone, recommendation = "danger", "avoid"
        description = f"very close to {nearest_side} edge ({nearest_pct:.1%}); may leave the bucket any moment"
    elif nearest_pct <= thresholds.warning:
        risk_zone, recommendation = "warning", "caution"
        description = f"close to {nearest_side} edge ({nearest_pct:.1%}); watch closely"
    elif nearest_pct <= thresholds.safe:
        risk_zone, recommendation = "safe", "add"
        description = f"safe position, {nearest_pct:.1%} from {nearest_side} edge"
    else:
        risk_zone, recommendation = "optimal", "excellent"
        description = f"optimal position, {nearest_pct:.1%} from {nearest_side} edge"

    return TickRangeSnapshot(
        tick=tick,
        tick_spacing=tick_spacing,
        bucket=bucket_lower // tick_spacing,
        bucket_lower=bucket_lower,
        bucket_upper=bucket_upper,
        price_at_lower=tick_to_price(bucket_lower, token0_decimals, token1_decimals),
        price_at_upper=tick_to_price(bucket_upper, token0_decimals, token1_decimals),
        dist_lower_pct=dist_lower_pct,
        dist_upper_pct=dist_upper_pct,
        nearest_side=nearest_side,
        nearest_pct=nearest_pct,
        risk_zone=risk_zone,
        recommendation=recommendation,
        description=description,
    )
