from __future__ import annotations

import math

from lpbook.domain.entities.market import RangeRecommendation
from lpbook.domain.entities.policy import RangePolicy
from lpbook.domain.services.univ3_math import LOG_BASE, align_tick_ceil, round_down_to_spacing


def width_from_sigma(
    sigma: float,
    horizon_hours: float,
    z_confidence: float,
    tick_spacing: int,
    *,
    min_width_multiple: int = 6,
    max_width_multiple: int = 200,
) -> int:
    """Range width in ticks covering ``z`` standard deviations over the horizon.

    ``sigma`` is a daily log-price volatility. The result is a multiple of the
    spacing inside ``[min, max] * spacing``; a zero sigma gives the minimum.
    """
    if tick_spacing <= 0:
        raise ValueError("tick_spacing must be positive.")
    if min_width_multiple <= 0 or max_width_multiple < min_width_multiple:
        raise ValueError("width multiples must satisfy 0 < min <= max.")
    days = max(1e-9, horizon_hours / 24.0)
    half_width = z_confidence * max(0.0, sigma) * math.sqrt(days) / LOG_BASE
    width = math.ceil(2 * half_width)
    width = align_tick_ceil(width, tick_spacing)
    lowest = min_width_multiple * tick_spacing
    highest = max_width_multiple * tick_spacing
    return min(max(width, lowest), highest)


def buffer_ticks(width: int, tick_spacing: int, *, fraction: float = 0.10, min_multiple: int = 2) -> int:
    return _fraction_of_width(width, tick_spacing, fraction, min_multiple)


def danger_ticks(width: int, tick_spacing: int, *, fraction: float = 0.05, min_multiple: int = 1) -> int:
    return _fraction_of_width(width, tick_spacing, fraction, min_multiple)


def sigma_from_twap(twap_short_tick: int | None, twap_long_tick: int | None) -> float | None:
    """Log-volatility proxy from the drift between two TWAP windows."""
    if twap_short_tick is None or twap_long_tick is None:
        return None
    return abs(twap_short_tick - twap_long_tick) * LOG_BASE


def recommend_range(
    *,
    center_tick: int,
    tick_spacing: int,
    sigma: float,
    policy: RangePolicy,
) -> RangeRecommendation:
    width = width_from_sigma(
        sigma,
        policy.horizon_hours,
        policy.z_confidence,
        tick_spacing,
        min_width_multiple=policy.min_width_multiple,
        max_width_multiple=policy.max_width_multiple,
    )
    lower = round_down_to_spacing(center_tick - width // 2, tick_spacing)
    return RangeRecommendation(
        center_tick=center_tick,
        lower=lower,
        upper=lower + width,
        width=width,
        buffer=buffer_ticks(
            width,
            tick_spacing,
            fraction=policy.buffer_fraction,
            min_multiple=policy.buffer_min_multiple,
        ),
        danger=danger_ticks(
            width,
            tick_spacing,
            fraction=policy.danger_fraction,
            min_multiple=policy.danger_min_multiple,
        ),
        sigma=sigma,
    )


def _fraction_of_width(width: int, tick_spacing: int, fraction: float, min_multiple: int) -> int:
    raw = round_down_to_spacing(math.floor(fraction * width), tick_spacing)
    return max(min_multiple * tick_spacing, raw)
