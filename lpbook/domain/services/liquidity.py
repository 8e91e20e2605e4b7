from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from lpbook.domain.entities.policy import LifecyclePolicy
from lpbook.domain.entities.position import OUT_OF_RANGE, Position
from lpbook.domain.services.univ3_math import tick_to_price


@dataclass(frozen=True)
class PositionAmounts:
    liquidity: float
    token0_amount: float
    token1_amount: float


def amounts_for_liquidity(
    *,
    liquidity: float,
    price: float,
    price_lower: float,
    price_upper: float,
) -> tuple[float, float]:
    """Token amounts held by ``liquidity`` units at ``price``.

    Below the range everything sits in token0, above it everything sits in token1.
    """
    sp = math.sqrt(price)
    sa = math.sqrt(price_lower)
    sb = math.sqrt(price_upper)

    if sp <= sa:
        return liquidity * (1.0 / sa - 1.0 / sb), 0.0
    if sp >= sb:
        return 0.0, liquidity * (sb - sa)
    return liquidity * (1.0 / sp - 1.0 / sb), liquidity * (sp - sa)


def position_value(
    *,
    liquidity: float,
    price: float,
    price_lower: float,
    price_upper: float,
) -> float:
    """Value in token1 units."""
    amount0, amount1 = amounts_for_liquidity(
        liquidity=liquidity,
        price=price,
        price_lower=price_lower,
        price_upper=price_upper,
    )
    return amount0 * price + amount1


def liquidity_for_deposit(
    *,
    amount_usd: float,
    price: float,
    tick_lower: int,
    tick_upper: int,
    token0_decimals: int,
    token1_decimals: int,
) -> PositionAmounts:
    if amount_usd <= 0 or price <= 0:
        return PositionAmounts(liquidity=0.0, token0_amount=0.0, token1_amount=0.0)
    if tick_lower >= tick_upper:
        return PositionAmounts(liquidity=0.0, token0_amount=0.0, token1_amount=0.0)

    price_lower = tick_to_price(tick_lower, token0_decimals, token1_decimals)
    price_upper = tick_to_price(tick_upper, token0_decimals, token1_decimals)
    unit_value = position_value(
        liquidity=1.0,
        price=price,
        price_lower=price_lower,
        price_upper=price_upper,
    )
    if unit_value <= 0:
        return PositionAmounts(liquidity=0.0, token0_amount=0.0, token1_amount=0.0)

    liquidity = amount_usd / unit_value
    amount0, amount1 = amounts_for_liquidity(
        liquidity=liquidity,
        price=price,
        price_lower=price_lower,
        price_upper=price_upper,
    )
    return PositionAmounts(liquidity=liquidity, token0_amount=amount0, token1_amount=amount1)


def current_position_value(
    position: Position,
    *,
    price: float,
    token0_decimals: int,
    token1_decimals: int,
) -> float:
    return position_value(
        liquidity=position.liquidity,
        price=price,
        price_lower=tick_to_price(position.lower, token0_decimals, token1_decimals),
        price_upper=tick_to_price(position.upper, token0_decimals, token1_decimals),
    )


def impermanent_loss_pct(entry_price: float, current_price: float) -> float:
    if entry_price <= 0 or current_price <= 0:
        return 0.0
    ratio = current_price / entry_price
    return abs(2.0 * math.sqrt(ratio) / (1.0 + ratio) - 1.0) * 100.0


def total_return_pct(*, current_value: float, fees_earned: float, amount_usd: float) -> float:
    if amount_usd <= 0:
        return 0.0
    return (current_value + fees_earned - amount_usd) / amount_usd * 100.0


def position_distance(tick: int, position: Position) -> int:
    if tick < position.lower or tick > position.upper:
        return OUT_OF_RANGE
    return min(tick - position.lower, position.upper - tick)


def accrue_fees(
    position: Position,
    *,
    tick: int,
    price: float,
    pool_liquidity: float,
    fee_tier: int,
    token0_decimals: int,
    token1_decimals: int,
    now: datetime,
    policy: LifecyclePolicy,
) -> float:
    """Fees after accruing the time elapsed since the last update.

    Nothing accrues while the tick is outside the position bounds.
    """
    since = position.last_update_at or position.entered_at
    elapsed_hours = (now - since).total_seconds() / 3600.0
    if elapsed_hours <= 0 or position.entry_price <= 0:
        return position.fees_earned
    if position_distance(tick, position) == OUT_OF_RANGE:
        return position.fees_earned

    fee_rate = fee_tier / 1_000_000
    share = 0.0
    if pool_liquidity > 0:
        share = raw_liquidity(position.liquidity, token0_decimals, token1_decimals) / pool_liquidity
    share = min(share * policy.fee_share_boost, 1.0)
    price_move = abs(price - position.entry_price) / position.entry_price
    volatility_multiplier = 1.0 + policy.fee_volatility_weight * price_move
    daily_volume = position.amount_usd * policy.base_daily_turnover * volatility_multiplier
    accrued = daily_volume * (elapsed_hours / 24.0) * fee_rate * share
    return position.fees_earned + max(0.0, accrued)


def raw_liquidity(liquidity: float, token0_decimals: int, token1_decimals: int) -> float:
    """Convert liquidity measured in human token units to the pool's raw units."""
    return liquidity * 10.0 ** ((token0_decimals + token1_decimals) / 2.0)
