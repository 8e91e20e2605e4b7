from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from lpbook.api.deps import get_list_positions_use_case, get_portfolio_use_case
from lpbook.api.schemas.portfolio import PortfolioResponse, PositionResponse
from lpbook.application.dto.positions import ListPositionsInput
from lpbook.application.use_cases.get_portfolio import GetPortfolioUseCase
from lpbook.application.use_cases.list_positions import ListPositionsUseCase
from lpbook.domain.entities.position import Position, PositionStatus
from lpbook.domain.exceptions import PersistenceFailureError

router = APIRouter()


def _iso_or_none(value) -> str | None:
    return value.isoformat() if value is not None else None


def _to_position_response(position: Position) -> PositionResponse:
    return PositionResponse(
        id=position.id,
        status=position.status.value,
        lower=position.lower,
        upper=position.upper,
        entered_at=position.entered_at.isoformat(),
        entry_tick=position.entry_tick,
        entry_price=position.entry_price,
        amount_usd=position.amount_usd,
        liquidity=position.liquidity,
        current_value=position.current_value,
        fees_earned=position.fees_earned,
        realized_fees=position.realized_fees,
        impermanent_loss_pct=position.impermanent_loss_pct,
        total_return_pct=position.total_return_pct,
        fee_apr_pct=position.fee_apr_pct,
        rebalance_count=position.rebalance_count,
        last_rebalance_at=_iso_or_none(position.last_rebalance_at),
        closed_at=_iso_or_none(position.closed_at),
        exit_reason=position.exit_reason,
    )


@router.get("/v1/portfolio", response_model=PortfolioResponse)
def get_portfolio(
    use_case: GetPortfolioUseCase = Depends(get_portfolio_use_case),
):
    try:
        state = use_case.execute()
    except PersistenceFailureError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return PortfolioResponse(
        max_positions=state.max_positions,
        max_usd_per_position=state.max_usd_per_position,
        total_usd_limit=state.total_usd_limit,
        active_positions=len(state.active_positions()),
        closed_positions=len(state.closed_positions()),
        total_usd_invested=state.total_usd_invested,
        available_usd=state.available_usd(),
        total_fees_earned=state.total_fees_earned,
        total_impermanent_loss=state.total_impermanent_loss,
        total_return=state.total_return,
        win_rate=state.win_rate,
        average_position_duration=state.average_position_duration,
        total_gas_spent=state.total_gas_spent,
        max_drawdown=state.max_drawdown,
        sharpe_ratio=state.sharpe_ratio,
        fee_apr=state.fee_apr,
        total_trades=state.total_trades,
        successful_trades=state.successful_trades,
        started_at=_iso_or_none(state.started_at),
        last_update_at=_iso_or_none(state.last_update_at),
    )


@router.get("/v1/positions", response_model=list[PositionResponse])
def list_positions(
    status: PositionStatus | None = None,
    use_case: ListPositionsUseCase = Depends(get_list_positions_use_case),
):
    try:
        positions = use_case.execute(ListPositionsInput(status=status))
    except PersistenceFailureError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return [_to_position_response(position) for position in positions]
