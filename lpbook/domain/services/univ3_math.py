from __future__ import annotations

import math


TICK_BASE = 1.0001
LOG_BASE = math.log(TICK_BASE)
Q96 = 2**96
Q192 = 2**192
MIN_TICK = -887272
MAX_TICK = 887272
# log round-off, in ticks, tolerated before flooring or ceiling
TICK_EPSILON = 1e-8


def tick_to_price(tick: int | float, token0_decimals: int, token1_decimals: int) -> float:
    """Price of token0 in token1 at ``tick``.

    Float math: precision degrades near the extreme ticks, which is accepted.
    """
    decimal_adjust = 10.0 ** (token0_decimals - token1_decimals)
    return math.exp(float(tick) * LOG_BASE) * decimal_adjust


def price_to_tick_floor(price: float, token0_decimals: int, token1_decimals: int) -> int:
    return math.floor(_price_to_tick_value(price, token0_decimals, token1_decimals) + TICK_EPSILON)


def price_to_tick_ceil(price: float, token0_decimals: int, token1_decimals: int) -> int:
    return math.ceil(_price_to_tick_value(price, token0_decimals, token1_decimals) - TICK_EPSILON)


def tick_to_sqrt_price(tick: int | float) -> float:
    return math.exp(float(tick) * LOG_BASE / 2.0)


def tick_to_sqrt_price_x96(tick: int | float) -> int:
    return int(round(tick_to_sqrt_price(tick) * Q96))


def sqrt_price_x96_to_price(
    sqrt_price_x96: int,
    token0_decimals: int,
    token1_decimals: int,
) -> float:
    if sqrt_price_x96 <= 0:
        raise ValueError("Invalid sqrt_price_x96.")
    raw_price = (sqrt_price_x96 * sqrt_price_x96) / Q192
    return raw_price * 10.0 ** (token0_decimals - token1_decimals)


def sqrt_price_x96_to_tick(sqrt_price_x96: int) -> int:
    if sqrt_price_x96 <= 0:
        raise ValueError("Invalid sqrt_price_x96.")
    sqrt_price = sqrt_price_x96 / Q96
    return math.floor(2.0 * math.log(sqrt_price) / LOG_BASE + TICK_EPSILON)


def round_down_to_spacing(tick: int, tick_spacing: int) -> int:
    """Floor ``tick`` to a multiple of ``tick_spacing``, negative ticks included."""
    if tick_spacing <= 0:
        raise ValueError("tick_spacing must be positive.")
    aligned = int(tick / tick_spacing) * tick_spacing
    if tick < 0 and tick % tick_spacing != 0:
        aligned -= tick_spacing
    return aligned


def align_tick_ceil(tick: int, tick_spacing: int) -> int:
    if tick_spacing <= 0:
        raise ValueError("tick_spacing must be positive.")
    return -round_down_to_spacing(-tick, tick_spacing)


def _price_to_tick_value(price: float, token0_decimals: int, token1_decimals: int) -> float:
    if price <= 0:
        raise ValueError("price must be positive.")
    decimal_adjust = 10.0 ** (token0_decimals - token1_decimals)
    raw_price = price / decimal_adjust
    if raw_price <= 0:
        raise ValueError("price produced invalid raw value.")
    return math.log(raw_price) / LOG_BASE
