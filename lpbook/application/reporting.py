from __future__ import annotations

from lpbook.domain.entities.lifecycle import CycleResult, LifecycleRecord
from lpbook.domain.entities.portfolio import PortfolioState


def format_record(record: LifecycleRecord) -> str:
    line = (
        f"{record.timestamp.isoformat()} {record.action.value:<9} {record.position_id} "
        f"range={record.range_label} tick={record.tick} price={record.price:.6g} "
        f"value={record.current_value:.2f} fees={record.fees_earned:.2f} "
        f"il={record.impermanent_loss_pct:.2f}% return={record.total_return_pct:.2f}% "
        f"held={record.time_held_minutes}m reason={record.reason}"
    )
    if record.confidence is not None:
        line += f" confidence={record.confidence:.0%}"
    return line


def format_cycle_summary(result: CycleResult, state: PortfolioState) -> str:
    recommendation = result.recommendation
    lines = [
        f"cycle {result.timestamp.isoformat()} tick={result.tick} price={result.price:.6g}",
        (
            f"  range [{recommendation.lower}, {recommendation.upper}] width={recommendation.width} "
            f"buffer={recommendation.buffer} danger={recommendation.danger} sigma={recommendation.sigma:.5f}"
        ),
        (
            f"  bucket [{result.tick_range.bucket_lower}, {result.tick_range.bucket_upper}) "
            f"zone={result.tick_range.risk_zone} nearest={result.tick_range.nearest_side} "
            f"({result.tick_range.nearest_pct:.1%})"
        ),
        (
            f"  trend={result.trend.direction} ({result.trend.recommendation}) "
            f"volatility={result.volatility.regime}"
        ),
    ]
    nearest = result.nearest_ticks
    if nearest is not None:
        lines.append(
            f"  initialized ticks left={nearest.left_tick} right={nearest.right_tick} "
            f"min_distance={nearest.distance_min}"
        )
    change = result.tick_change
    if change is not None:
        lines.append(
            f"  tick moved {change.direction} {change.from_tick} -> {change.to_tick} "
            f"({change.ticks_changed} ticks, {change.price_change_pct:+.4f}%) "
            f"after {_seconds(change.seconds_at_previous_tick)}"
        )
    dwell = result.tick_dwell
    if dwell is not None and dwell.samples:
        lines.append(
            f"  tick dwell avg={_seconds(dwell.average_seconds)} min={_seconds(dwell.min_seconds)} "
            f"max={_seconds(dwell.max_seconds)} samples={dwell.samples}"
        )
    if result.advice is not None:
        advice = result.advice
        lines.append(
            f"  your range [{advice.lower}, {advice.upper}] -> {advice.action}: {advice.reason}"
        )
    lines.append(f"  open: {result.open_decision.reason}")
    lines.extend(f"  {format_record(record)}" for record in result.records)
    lines.extend(f"  warning: {warning}" for warning in result.warnings)
    lines.append(
        f"  portfolio active={len(state.active_positions())}/{state.max_positions} "
        f"invested={state.total_usd_invested:.2f}/{state.total_usd_limit:.2f} "
        f"fees={state.total_fees_earned:.2f} return={state.total_return:.2f}% "
        f"win_rate={state.win_rate:.0%} drawdown={state.max_drawdown:.2f}% gas={state.total_gas_spent:.2f} "
        f"fee_apr={state.fee_apr:.2f}%"
    )
    return "\n".join(lines)


def _seconds(value: float | None) -> str:
    if value is None:
        return "n/a"
    if value >= 3600:
        return f"{value / 3600:.1f}h"
    if value >= 60:
        return f"{value / 60:.1f}m"
    return f"{value:.0f}s"
