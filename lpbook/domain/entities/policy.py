from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RiskThresholds:
    """Bucket-edge cutoffs, as a fraction of tick spacing."""

    danger: float = 0.10
    warning: float = 0.20
    safe: float = 0.35


@dataclass(frozen=True)
class RangePolicy:
    horizon_hours: float = 24.0
    z_confidence: float = 1.28
    min_width_multiple: int = 6
    max_width_multiple: int = 200
    buffer_fraction: float = 0.10
    buffer_min_multiple: int = 2
    danger_fraction: float = 0.05
    danger_min_multiple: int = 1


@dataclass(frozen=True)
class LifecyclePolicy:
    """Every tunable of the lifecycle rules.

    Historical variants of these rules disagree on most numbers (stop-loss at -20%
    or -25%, cooldown of 4h or 24h, ...). Defaults below are one consistent set;
    every field is overridable from configuration.
    """

    range: RangePolicy = field(default_factory=RangePolicy)
    risk: RiskThresholds = field(default_factory=RiskThresholds)

    # sigma fallback when the oracle is unavailable and nothing was seen yet
    default_sigma: float = 0.0

    # close rules
    min_danger_dwell_hours: float = 0.5
    stop_loss_pct: float = -25.0
    take_profit_pct: float = 40.0
    max_impermanent_loss_pct: float = 15.0
    max_hold_hours_without_rebalance: float | None = 72.0
    stale_loss_pct: float | None = -10.0
    stale_loss_hours: float = 24.0

    # rebalance rules
    rebalance_cooldown_hours: float = 4.0
    rebalance_price_move_pct: float = 10.0
    price_move_min_hold_hours: float = 12.0
    rebalance_capital_floor: float = 0.8

    # fee accrual model
    base_daily_turnover: float = 0.1
    fee_volatility_weight: float = 2.0
    fee_share_boost: float = 10.0

    # simulated cost per open/close/rebalance
    transaction_cost_usd: float = 5.0

    # new-position gate
    min_ticket_usd: float = 500.0
    base_position_usd: float | None = None
    trend_threshold_fraction: float = 0.2
    trend_avoid_strength: float = 0.8
    volatility_low_sigma: float = 0.005
    volatility_medium_sigma: float = 0.02
    volatility_extreme_sigma: float = 0.05
    medium_volatility_size_factor: float = 0.8
    high_volatility_size_factor: float = 0.5
    few_slots_threshold: int = 1
    few_slots_size_factor: float = 0.5
    # skip entries while the spot tick sits in the danger zone of its bucket
    avoid_bucket_edge_entry: bool = False
