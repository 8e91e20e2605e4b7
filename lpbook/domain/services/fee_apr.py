from __future__ import annotations

from lpbook.domain.entities.market import AprEstimate


HOURS_PER_YEAR = 24.0 * 365.0
HIGH_ACTIVITY_TURNOVER = 0.1
MEDIUM_ACTIVITY_TURNOVER = 0.01


def annualized_fee_apr_pct(fees: float, capital_hours: float) -> float:
    """Fees per unit of capital-time, scaled to a year, in percent.

    ``capital_hours`` is capital multiplied by the hours it was deployed.
    """
    if capital_hours <= 0 or fees <= 0:
        return 0.0
    return fees / capital_hours * HOURS_PER_YEAR * 100.0


def estimate_pool_apr(
    *,
    volume_24h: float,
    fees_24h: float,
    total_value_locked: float,
    fee_rate: float,
) -> AprEstimate:
    """Pool-wide APR from one day of volume and fees.

    ``fee_apr_pct`` uses the observed fees, ``projected_apr_pct`` the fees implied by
    volume at ``fee_rate``. Confidence follows the day's turnover (volume / TVL).
    """
    if total_value_locked <= 0:
        return AprEstimate(
            fee_apr_pct=0.0,
            projected_apr_pct=0.0,
            volume_to_tvl_ratio=0.0,
            confidence="low",
        )

    turnover = max(0.0, volume_24h) / total_value_locked
    fee_apr = max(0.0, fees_24h) / total_value_locked * 365.0 * 100.0
    projected = turnover * max(0.0, fee_rate) * 365.0 * 100.0

    if volume_24h <= 0 or fees_24h <= 0:
        confidence = "low"
    elif turnover > HIGH_ACTIVITY_TURNOVER:
        confidence = "high"
    elif turnover > MEDIUM_ACTIVITY_TURNOVER:
        confidence = "medium"
    else:
        confidence = "low"

    return AprEstimate(
        fee_apr_pct=fee_apr,
        projected_apr_pct=projected,
        volume_to_tvl_ratio=turnover,
        confidence=confidence,
    )
