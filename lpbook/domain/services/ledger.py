from __future__ import annotations

import uuid
from datetime import datetime

from lpbook.domain.entities.portfolio import PortfolioState
from lpbook.domain.entities.position import Position, PositionStatus
from lpbook.domain.exceptions import CapitalExceededError, InvalidPositionError
from lpbook.domain.services.liquidity import PositionAmounts


CAPITAL_EPSILON = 1e-6


def new_position_id(now: datetime) -> str:
    return f"pos_{int(now.timestamp())}_{uuid.uuid4().hex[:9]}"


def validate_bounds(lower: int, upper: int, tick_spacing: int) -> None:
    if tick_spacing <= 0:
        raise InvalidPositionError("tick_spacing must be positive.")
    if lower >= upper:
        raise InvalidPositionError(f"lower ({lower}) must be below upper ({upper}).")
    if lower % tick_spacing != 0 or upper % tick_spacing != 0:
        raise InvalidPositionError(
            f"bounds [{lower}, {upper}] must be multiples of tick spacing {tick_spacing}."
        )


def open_position(
    state: PortfolioState,
    *,
    lower: int,
    upper: int,
    tick_spacing: int,
    entry_tick: int,
    entry_price: float,
    amount_usd: float,
    amounts: PositionAmounts,
    now: datetime,
    transaction_cost_usd: float,
) -> Position:
    """Append a new active position, or raise without touching the ledger."""
    validate_bounds(lower, upper, tick_spacing)
    if amount_usd <= 0 or amounts.liquidity <= 0:
        raise InvalidPositionError("position must commit a positive amount and liquidity.")
    if len(state.active_positions()) >= state.max_positions:
        raise CapitalExceededError(f"max positions reached ({state.max_positions}).")
    if amount_usd > state.max_usd_per_position + CAPITAL_EPSILON:
        raise CapitalExceededError(
            f"amount {amount_usd:.2f} exceeds max per position {state.max_usd_per_position:.2f}."
        )
    if state.committed_usd() + amount_usd > state.total_usd_limit + CAPITAL_EPSILON:
        raise CapitalExceededError(
            f"amount {amount_usd:.2f} exceeds available capital {state.available_usd():.2f}."
        )

    position = Position(
        id=new_position_id(now),
        lower=lower,
        upper=upper,
        entered_at=now,
        entry_tick=entry_tick,
        entry_price=entry_price,
        amount_usd=amount_usd,
        liquidity=amounts.liquidity,
        token0_amount=amounts.token0_amount,
        token1_amount=amounts.token1_amount,
        current_value=amount_usd,
        last_update_at=now,
    )
    state.positions.append(position)
    state.total_gas_spent += transaction_cost_usd
    refresh_invested(state)
    if state.started_at is None:
        state.started_at = now
    return position


def close_position(
    state: PortfolioState,
    position: Position,
    *,
    reason: str,
    now: datetime,
    transaction_cost_usd: float,
) -> None:
    if not position.is_active:
        raise InvalidPositionError(f"position {position.id} is already closed.")
    position.status = PositionStatus.CLOSED
    position.closed_at = now
    position.exit_reason = reason
    position.last_update_at = now
    position.edge_since = None
    state.total_trades += 1
    if position.exit_value > position.amount_usd:
        state.successful_trades += 1
    state.total_gas_spent += transaction_cost_usd
    refresh_invested(state)


def rebalance_position(
    state: PortfolioState,
    position: Position,
    *,
    lower: int,
    upper: int,
    tick_spacing: int,
    entry_tick: int,
    entry_price: float,
    amount_usd: float,
    amounts: PositionAmounts,
    now: datetime,
    transaction_cost_usd: float,
) -> None:
    """Recentre an active position; raise without touching it when invalid."""
    if not position.is_active:
        raise InvalidPositionError(f"position {position.id} is closed and cannot be rebalanced.")
    validate_bounds(lower, upper, tick_spacing)
    if amount_usd <= 0 or amounts.liquidity <= 0:
        raise InvalidPositionError("rebalance must keep a positive amount and liquidity.")
    if amount_usd > state.max_usd_per_position + CAPITAL_EPSILON:
        raise InvalidPositionError(
            f"amount {amount_usd:.2f} exceeds max per position {state.max_usd_per_position:.2f}."
        )
    others = state.committed_usd() - position.amount_usd
    if others + amount_usd > state.total_usd_limit + CAPITAL_EPSILON:
        raise InvalidPositionError(
            f"amount {amount_usd:.2f} exceeds total capital limit {state.total_usd_limit:.2f}."
        )

    position.lower = lower
    position.upper = upper
    position.entry_tick = entry_tick
    position.entry_price = entry_price
    position.amount_usd = amount_usd
    position.liquidity = amounts.liquidity
    position.token0_amount = amounts.token0_amount
    position.token1_amount = amounts.token1_amount
    position.realized_fees += position.fees_earned
    position.fees_earned = 0.0
    position.current_value = amount_usd
    position.impermanent_loss_pct = 0.0
    position.total_return_pct = 0.0
    position.rebalance_count += 1
    position.last_rebalance_at = now
    position.last_update_at = now
    position.edge_since = None
    state.total_gas_spent += transaction_cost_usd
    refresh_invested(state)


def rebalance_headroom(state: PortfolioState, position: Position) -> float:
    others = state.committed_usd() - position.amount_usd
    return max(0.0, min(state.max_usd_per_position, state.total_usd_limit - others))


def refresh_invested(state: PortfolioState) -> None:
    state.total_usd_invested = state.committed_usd()
