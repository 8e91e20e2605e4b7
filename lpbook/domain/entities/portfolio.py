from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from lpbook.domain.entities.position import Position


@dataclass(frozen=True)
class CapitalPolicy:
    max_positions: int = 5
    max_usd_per_position: float = 10_000.0
    total_usd_limit: float = 50_000.0


@dataclass
class PortfolioState:
    max_positions: int
    max_usd_per_position: float
    total_usd_limit: float
    positions: list[Position] = field(default_factory=list)
    total_usd_invested: float = 0.0
    total_fees_earned: float = 0.0
    total_impermanent_loss: float = 0.0
    total_return: float = 0.0
    win_rate: float = 0.0
    average_position_duration: float = 0.0
    total_gas_spent: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    fee_apr: float = 0.0
    total_trades: int = 0
    successful_trades: int = 0
    peak_equity: float = 0.0
    started_at: datetime | None = None
    last_update_at: datetime | None = None

    @classmethod
    def empty(cls, policy: CapitalPolicy) -> "PortfolioState":
        return cls(
            max_positions=policy.max_positions,
            max_usd_per_position=policy.max_usd_per_position,
            total_usd_limit=policy.total_usd_limit,
        )

    def active_positions(self) -> list[Position]:
        return [position for position in self.positions if position.is_active]

    def closed_positions(self) -> list[Position]:
        return [position for position in self.positions if not position.is_active]

    def committed_usd(self) -> float:
        return sum(position.amount_usd for position in self.active_positions())

    def available_usd(self) -> float:
        return max(0.0, self.total_usd_limit - self.committed_usd())

    def find(self, position_id: str) -> Position | None:
        for position in self.positions:
            if position.id == position_id:
                return position
        return None
