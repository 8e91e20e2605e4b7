from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


OUT_OF_RANGE = -1


class PositionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class LifecycleAction(str, Enum):
    ADD = "ADD"
    HOLD = "HOLD"
    MONITOR = "MONITOR"
    REBALANCE = "REBALANCE"
    CLOSE = "CLOSE"


@dataclass
class Position:
    id: str
    lower: int
    upper: int
    entered_at: datetime
    entry_tick: int
    entry_price: float
    amount_usd: float
    liquidity: float
    token0_amount: float
    token1_amount: float
    status: PositionStatus = PositionStatus.ACTIVE
    fees_earned: float = 0.0
    realized_fees: float = 0.0
    current_value: float = 0.0
    impermanent_loss_pct: float = 0.0
    total_return_pct: float = 0.0
    fee_apr_pct: float = 0.0
    rebalance_count: int = 0
    last_rebalance_at: datetime | None = None
    last_update_at: datetime | None = None
    edge_since: datetime | None = None
    closed_at: datetime | None = None
    exit_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is PositionStatus.ACTIVE

    @property
    def exit_value(self) -> float:
        return self.current_value + self.fees_earned

    def hours_held(self, now: datetime) -> float:
        end = self.closed_at if self.closed_at is not None else now
        return max(0.0, (end - self.entered_at).total_seconds() / 3600.0)

    def overlaps(self, lower: int, upper: int) -> bool:
        return lower < self.upper and self.lower < upper
