from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from lpbook.domain.entities.lifecycle import LifecycleRecord
from lpbook.domain.entities.position import LifecycleAction


def _aware(value: datetime) -> datetime:
    # SQLite drops the offset; rows are always written in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def map_record_to_row(record: LifecycleRecord) -> dict[str, Any]:
    timestamp = record.timestamp
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    return {
        "timestamp": timestamp,
        "position_id": record.position_id,
        "action": record.action.value,
        "reason": record.reason,
        "tick": record.tick,
        "price": record.price,
        "lower": record.lower,
        "upper": record.upper,
        "distance": record.distance,
        "entry_price": record.entry_price,
        "amount_usd": record.amount_usd,
        "current_value": record.current_value,
        "fees_earned": record.fees_earned,
        "impermanent_loss_pct": record.impermanent_loss_pct,
        "total_return_pct": record.total_return_pct,
        "time_held_minutes": record.time_held_minutes,
        "rebalance_count": record.rebalance_count,
        "confidence": record.confidence,
    }


def map_row_to_record(row: Mapping[str, Any]) -> LifecycleRecord:
    return LifecycleRecord(
        timestamp=_aware(row["timestamp"]),
        position_id=row["position_id"],
        action=LifecycleAction(row["action"]),
        reason=row["reason"],
        tick=int(row["tick"]),
        price=float(row["price"]),
        lower=int(row["lower"]),
        upper=int(row["upper"]),
        distance=int(row["distance"]),
        entry_price=float(row["entry_price"]),
        amount_usd=float(row["amount_usd"]),
        current_value=float(row["current_value"]),
        fees_earned=float(row["fees_earned"]),
        impermanent_loss_pct=float(row["impermanent_loss_pct"]),
        total_return_pct=float(row["total_return_pct"]),
        time_held_minutes=int(row["time_held_minutes"]),
        rebalance_count=int(row["rebalance_count"]),
        confidence=float(row["confidence"]) if row["confidence"] is not None else None,
    )
