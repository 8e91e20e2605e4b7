from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from lpbook.domain.entities.lifecycle import RangeAdvice
from lpbook.domain.entities.policy import LifecyclePolicy
from lpbook.domain.entities.position import OUT_OF_RANGE, LifecycleAction, Position


@dataclass(frozen=True)
class PositionMetrics:
    distance: int
    fees_earned: float
    current_value: float
    impermanent_loss_pct: float
    total_return_pct: float


@dataclass(frozen=True)
class PositionDecision:
    action: LifecycleAction
    reason: str


def edge_since_after(
    position: Position,
    *,
    distance: int,
    danger: int,
    now: datetime,
) -> datetime | None:
    """Start of the current stay inside the danger band, or None outside it."""
    if distance == OUT_OF_RANGE or distance >= danger:
        return None
    return position.edge_since or now


def _hours_between(start: datetime | None, end: datetime) -> float | None:
    if start is None:
        return None
    return (end - start).total_seconds() / 3600.0


def close_reason(
    position: Position,
    metrics: PositionMetrics,
    *,
    danger: int,
    edge_since: datetime | None,
    now: datetime,
    policy: LifecyclePolicy,
) -> str | None:
    if metrics.distance == OUT_OF_RANGE:
        return "out_of_range: price left the position range"

    dwell = _hours_between(edge_since, now)
    if metrics.distance < danger and dwell is not None and dwell >= policy.min_danger_dwell_hours:
        return (
            f"near_edge: distance {metrics.distance} < danger {danger} "
            f"for {dwell:.2f}h"
        )
    if metrics.total_return_pct <= policy.stop_loss_pct:
        return f"stop_loss: return {metrics.total_return_pct:.1f}% <= {policy.stop_loss_pct:.1f}%"
    if metrics.total_return_pct >= policy.take_profit_pct:
        return f"take_profit: return {metrics.total_return_pct:.1f}% >= {policy.take_profit_pct:.1f}%"
    if metrics.impermanent_loss_pct > policy.max_impermanent_loss_pct:
        return (
            f"impermanent_loss: {metrics.impermanent_loss_pct:.1f}% > "
            f"{policy.max_impermanent_loss_pct:.1f}%"
        )

    held = position.hours_held(now)
    if (
        policy.max_hold_hours_without_rebalance is not None
        and position.rebalance_count == 0
        and held > policy.max_hold_hours_without_rebalance
    ):
        return f"max_hold: held {held:.1f}h without rebalance"
    if (
        policy.stale_loss_pct is not None
        and metrics.total_return_pct <= policy.stale_loss_pct
        and held > policy.stale_loss_hours
    ):
        return f"stale_loss: return {metrics.total_return_pct:.1f}% after {held:.1f}h"
    return None


def rebalance_reason(
    position: Position,
    metrics: PositionMetrics,
    *,
    buffer: int,
    price: float,
    now: datetime,
    policy: LifecyclePolicy,
) -> str | None:
    since_rebalance = _hours_between(position.last_rebalance_at, now)
    if since_rebalance is not None and since_rebalance < policy.rebalance_cooldown_hours:
        return None

    if metrics.distance < buffer / 2:
        return f"approaching_edge: distance {metrics.distance} < buffer/2 ({buffer / 2:g})"

    price_move_pct = 0.0
    if position.entry_price > 0:
        price_move_pct = abs(price - position.entry_price) / position.entry_price * 100.0
    since_entry = _hours_between(position.last_rebalance_at or position.entered_at, now) or 0.0
    if (
        since_entry >= policy.price_move_min_hold_hours
        and price_move_pct > policy.rebalance_price_move_pct
        and metrics.total_return_pct > 0
    ):
        return f"price_move: {price_move_pct:.1f}% move while profitable"
    return None


def decide(
    position: Position,
    metrics: PositionMetrics,
    *,
    buffer: int,
    danger: int,
    edge_since: datetime | None,
    price: float,
    now: datetime,
    policy: LifecyclePolicy,
) -> PositionDecision:
    """Apply the transition rules in priority order: close, rebalance, hold, monitor."""
    reason = close_reason(
        position,
        metrics,
        danger=danger,
        edge_since=edge_since,
        now=now,
        policy=policy,
    )
    if reason is not None:
        return PositionDecision(action=LifecycleAction.CLOSE, reason=reason)

    reason = rebalance_reason(
        position,
        metrics,
        buffer=buffer,
        price=price,
        now=now,
        policy=policy,
    )
    if reason is not None:
        return PositionDecision(action=LifecycleAction.REBALANCE, reason=reason)

    if metrics.distance >= buffer:
        return PositionDecision(
            action=LifecycleAction.HOLD,
            reason=f"safe: distance {metrics.distance} >= buffer {buffer}",
        )
    return PositionDecision(
        action=LifecycleAction.MONITOR,
        reason=f"neutral: distance {metrics.distance} between danger {danger} and buffer {buffer}",
    )


def advise_range(
    *,
    tick: int,
    lower: int,
    upper: int,
    buffer: int,
    danger: int,
) -> RangeAdvice:
    """Advice for a range held outside the book, using the cycle's buffer and danger."""
    if lower >= upper:
        raise ValueError("lower must be below upper.")
    if tick < lower or tick > upper:
        return RangeAdvice(
            lower=lower,
            upper=upper,
            action="REBUILD",
            reason="out_of_range: rebuild around the recommended centre",
            distance=OUT_OF_RANGE,
        )

    distance = min(tick - lower, upper - tick)
    if distance < danger:
        action, reason = "WITHDRAW", f"near_edge: distance {distance} < danger {danger}; withdraw if fees do not cover gas"
    elif distance >= buffer:
        action, reason = "KEEP", f"safe: distance {distance} >= buffer {buffer}"
    else:
        action, reason = "NEUTRAL_HOLD", f"neutral: distance {distance} between danger {danger} and buffer {buffer}"
    return RangeAdvice(lower=lower, upper=upper, action=action, reason=reason, distance=distance)
