from __future__ import annotations

from pydantic import BaseModel, Field


class PositionResponse(BaseModel):
    id: str
    status: str = Field(..., description="active or closed.")
    lower: int = Field(..., description="Lower tick bound (multiple of tick spacing).")
    upper: int = Field(..., description="Upper tick bound (multiple of tick spacing).")
    entered_at: str
    entry_tick: int
    entry_price: float = Field(..., description="Price at entry, token1 per token0.")
    amount_usd: float = Field(..., description="Capital committed, in quote units.")
    liquidity: float
    current_value: float
    fees_earned: float = Field(..., description="Fees accrued since the last rebalance.")
    realized_fees: float = Field(..., description="Fees harvested by earlier rebalances.")
    impermanent_loss_pct: float
    total_return_pct: float
    fee_apr_pct: float = Field(..., description="Fees annualized over the capital-hours held, percent.")
    rebalance_count: int
    last_rebalance_at: str | None = None
    closed_at: str | None = None
    exit_reason: str | None = None


class PortfolioResponse(BaseModel):
    max_positions: int
    max_usd_per_position: float
    total_usd_limit: float
    active_positions: int
    closed_positions: int
    total_usd_invested: float
    available_usd: float
    total_fees_earned: float
    total_impermanent_loss: float = Field(..., description="Sum of position IL percentages.")
    total_return: float = Field(..., description="Portfolio return, percent.")
    win_rate: float = Field(..., description="Fraction of closed positions that exited above cost.")
    average_position_duration: float = Field(..., description="Mean holding time, hours.")
    total_gas_spent: float
    max_drawdown: float = Field(..., description="Largest peak-to-trough equity drop, percent.")
    sharpe_ratio: float
    fee_apr: float = Field(..., description="Portfolio fees annualized over capital-hours deployed, percent.")
    total_trades: int
    successful_trades: int
    started_at: str | None = None
    last_update_at: str | None = None
