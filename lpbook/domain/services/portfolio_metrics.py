from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from lpbook.domain.entities.portfolio import PortfolioState
from lpbook.domain.services.fee_apr import annualized_fee_apr_pct


MIN_ELAPSED_DAYS = 1.0 / 24.0


@dataclass(frozen=True)
class PortfolioMetrics:
    total_usd_invested: float
    total_fees_earned: float
    total_impermanent_loss: float
    total_return: float
    win_rate: float
    average_position_duration: float
    max_drawdown: float
    sharpe_ratio: float
    peak_equity: float
    fee_apr: float


def compute_portfolio_metrics(state: PortfolioState, *, now: datetime) -> PortfolioMetrics:
    """Aggregate metrics over every position ever opened.

    ``win_rate`` is a fraction in [0, 1]; durations are hours; returns and drawdown
    are percentages. Equity for the drawdown is the capital limit plus unrealized and
    realized PnL. ``fee_apr`` annualizes fees over capital-hours deployed.
    """
    positions = state.positions
    active = state.active_positions()
    closed = state.closed_positions()

    total_fees = sum(p.fees_earned + p.realized_fees for p in positions)
    total_il = sum(p.impermanent_loss_pct for p in positions)

    deployed = sum(p.amount_usd for p in positions)
    active_value = sum(p.current_value for p in active)
    realized_value = sum(p.exit_value for p in closed)
    pnl = active_value + realized_value - deployed
    total_return = pnl / deployed * 100.0 if deployed > 0 else 0.0

    winners = sum(1 for p in closed if p.exit_value > p.amount_usd)
    win_rate = winners / len(closed) if closed else 0.0

    average_duration = (
        sum(p.hours_held(now) for p in positions) / len(positions) if positions else 0.0
    )

    equity = state.total_usd_limit + pnl
    peak = max(state.peak_equity, equity)
    drawdown = (peak - equity) / peak * 100.0 if peak > 0 else 0.0
    max_drawdown = max(state.max_drawdown, drawdown)

    sharpe = 0.0
    mean_il = total_il / len(positions) if positions else 0.0
    if mean_il > 0:
        started = state.started_at or now
        days = max((now - started).total_seconds() / 86400.0, MIN_ELAPSED_DAYS)
        sharpe = (total_return / days) / math.sqrt(mean_il)

    capital_hours = sum(p.amount_usd * p.hours_held(now) for p in positions)
    fee_apr = annualized_fee_apr_pct(total_fees, capital_hours)

    return PortfolioMetrics(
        total_usd_invested=sum(p.amount_usd for p in active),
        total_fees_earned=total_fees,
        total_impermanent_loss=total_il,
        total_return=total_return,
        win_rate=win_rate,
        average_position_duration=average_duration,
        max_drawdown=max_drawdown,
        sharpe_ratio=sharpe,
        peak_equity=peak,
        fee_apr=fee_apr,
    )


def apply_portfolio_metrics(state: PortfolioState, *, now: datetime) -> PortfolioMetrics:
    metrics = compute_portfolio_metrics(state, now=now)
    state.total_usd_invested = metrics.total_usd_invested
    state.total_fees_earned = metrics.total_fees_earned
    state.total_impermanent_loss = metrics.total_impermanent_loss
    state.total_return = metrics.total_return
    state.win_rate = metrics.win_rate
    state.average_position_duration = metrics.average_position_duration
    state.max_drawdown = metrics.max_drawdown
    state.sharpe_ratio = metrics.sharpe_ratio
    state.peak_equity = metrics.peak_equity
    state.fee_apr = metrics.fee_apr
    state.last_update_at = now
    return metrics
