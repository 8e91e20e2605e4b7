from __future__ import annotations

from pydantic import BaseModel, Field


class LifecycleRecordResponse(BaseModel):
    timestamp: str
    position_id: str
    action: str = Field(..., description="ADD, HOLD, MONITOR, REBALANCE or CLOSE.")
    reason: str
    tick: int
    price: float
    lower: int
    upper: int
    distance: int = Field(..., description="Ticks to the nearest bound, -1 when out of range.")
    entry_price: float
    amount_usd: float
    current_value: float
    fees_earned: float
    impermanent_loss_pct: float
    total_return_pct: float
    time_held_minutes: int
    rebalance_count: int
    confidence: float | None = None
