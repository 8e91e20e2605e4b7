from __future__ import annotations

from lpbook.application.dto.range_recommendation import RecommendRangeInput, RecommendRangeOutput
from lpbook.domain.entities.policy import LifecyclePolicy
from lpbook.domain.exceptions import RangeInputError
from lpbook.domain.services.lifecycle_rules import advise_range
from lpbook.domain.services.market_signals import classify_trend, classify_volatility
from lpbook.domain.services.range_sizing import recommend_range, sigma_from_twap
from lpbook.domain.services.risk_zones import analyze_tick_range
from lpbook.domain.services.univ3_math import MAX_TICK, MIN_TICK, tick_to_price


class RecommendRangeUseCase:
    """Stateless range recommendation for an arbitrary tick; never touches the ledger."""

    def __init__(self, *, policy: LifecyclePolicy):
        self._policy = policy

    def execute(self, command: RecommendRangeInput) -> RecommendRangeOutput:
        if command.tick_spacing <= 0:
            raise RangeInputError("tick_spacing must be a positive integer.")
        if not MIN_TICK <= command.tick <= MAX_TICK:
            raise RangeInputError(f"tick must be within [{MIN_TICK}, {MAX_TICK}].")
        if command.sigma is not None and command.sigma < 0:
            raise RangeInputError("sigma must be >= 0.")
        if (command.twap_short_tick is None) != (command.twap_long_tick is None):
            raise RangeInputError("twap_short_tick and twap_long_tick must be provided together.")
        if (command.position_lower is None) != (command.position_upper is None):
            raise RangeInputError("position_lower and position_upper must be provided together.")
        if command.position_lower is not None and command.position_lower >= command.position_upper:
            raise RangeInputError("position_lower must be below position_upper.")

        sigma = command.sigma
        if sigma is None:
            sigma = sigma_from_twap(command.twap_short_tick, command.twap_long_tick)
        if sigma is None:
            raise RangeInputError("Provide sigma or both TWAP ticks.")

        center_tick = command.twap_long_tick if command.twap_long_tick is not None else command.tick
        recommendation = recommend_range(
            center_tick=center_tick,
            tick_spacing=command.tick_spacing,
            sigma=sigma,
            policy=self._policy.range,
        )
        tick_range = analyze_tick_range(
            tick=command.tick,
            tick_spacing=command.tick_spacing,
            token0_decimals=command.token0_decimals,
            token1_decimals=command.token1_decimals,
            thresholds=self._policy.risk,
        )
        trend = classify_trend(
            twap_short_tick=command.twap_short_tick,
            twap_long_tick=command.twap_long_tick,
            width=recommendation.width,
            tick_spacing=command.tick_spacing,
            policy=self._policy,
        )
        advice = None
        if command.position_lower is not None:
            advice = advise_range(
                tick=command.tick,
                lower=command.position_lower,
                upper=command.position_upper,
                buffer=recommendation.buffer,
                danger=recommendation.danger,
            )
        return RecommendRangeOutput(
            recommendation=recommendation,
            tick_range=tick_range,
            trend=trend,
            volatility=classify_volatility(sigma, self._policy),
            price_lower=tick_to_price(
                recommendation.lower, command.token0_decimals, command.token1_decimals
            ),
            price_upper=tick_to_price(
                recommendation.upper, command.token0_decimals, command.token1_decimals
            ),
            advice=advice,
        )
