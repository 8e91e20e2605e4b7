from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, fields
from datetime import datetime
from typing import Any

from lpbook.domain.entities.portfolio import PortfolioState
from lpbook.domain.entities.position import Position, PositionStatus


SCHEMA_VERSION = 1

POSITION_DATETIME_FIELDS = (
    "entered_at",
    "last_rebalance_at",
    "last_update_at",
    "edge_since",
    "closed_at",
)
STATE_DATETIME_FIELDS = ("started_at", "last_update_at")


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def map_position_to_dict(position: Position) -> dict[str, Any]:
    data = asdict(position)
    data["status"] = position.status.value
    for name in POSITION_DATETIME_FIELDS:
        data[name] = _dt_to_str(getattr(position, name))
    return data


def map_dict_to_position(data: Mapping[str, Any]) -> Position:
    known = {field.name for field in fields(Position)}
    values = {key: value for key, value in data.items() if key in known}
    for name in POSITION_DATETIME_FIELDS:
        values[name] = _str_to_dt(values.get(name))
    values["status"] = PositionStatus(values.get("status", PositionStatus.ACTIVE.value))
    return Position(**values)


def map_state_to_dict(state: PortfolioState) -> dict[str, Any]:
    data = {
        field.name: getattr(state, field.name)
        for field in fields(PortfolioState)
        if field.name != "positions"
    }
    for name in STATE_DATETIME_FIELDS:
        data[name] = _dt_to_str(getattr(state, name))
    data["positions"] = [map_position_to_dict(position) for position in state.positions]
    data["schema_version"] = SCHEMA_VERSION
    return data


def map_dict_to_state(data: Mapping[str, Any]) -> PortfolioState:
    known = {field.name for field in fields(PortfolioState)}
    values = {key: value for key, value in data.items() if key in known}
    for name in STATE_DATETIME_FIELDS:
        values[name] = _str_to_dt(values.get(name))
    values["positions"] = [map_dict_to_position(row) for row in data.get("positions") or []]
    return PortfolioState(**values)
