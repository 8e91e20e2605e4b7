from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from lpbook.api.deps import get_list_lifecycle_records_use_case
from lpbook.api.schemas.lifecycle_records import LifecycleRecordResponse
from lpbook.application.dto.positions import ListLifecycleRecordsInput
from lpbook.application.use_cases.list_lifecycle_records import ListLifecycleRecordsUseCase

router = APIRouter()


@router.get("/v1/lifecycle-records", response_model=list[LifecycleRecordResponse])
def list_lifecycle_records(
    limit: int = Query(50, ge=1, le=500),
    position_id: str | None = None,
    use_case: ListLifecycleRecordsUseCase = Depends(get_list_lifecycle_records_use_case),
):
    records = use_case.execute(ListLifecycleRecordsInput(limit=limit, position_id=position_id))
    return [
        LifecycleRecordResponse(
            timestamp=record.timestamp.isoformat(),
            position_id=record.position_id,
            action=record.action.value,
            reason=record.reason,
            tick=record.tick,
            price=record.price,
            lower=record.lower,
            upper=record.upper,
            distance=record.distance,
            entry_price=record.entry_price,
            amount_usd=record.amount_usd,
            current_value=record.current_value,
            fees_earned=record.fees_earned,
            impermanent_loss_pct=record.impermanent_loss_pct,
            total_return_pct=record.total_return_pct,
            time_held_minutes=record.time_held_minutes,
            rebalance_count=record.rebalance_count,
            confidence=record.confidence,
        )
        for record in records
    ]
