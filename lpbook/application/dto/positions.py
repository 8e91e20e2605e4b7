from __future__ import annotations

from dataclasses import dataclass

from lpbook.domain.entities.position import PositionStatus


@dataclass(frozen=True)
class ListPositionsInput:
    status: PositionStatus | None = None


@dataclass(frozen=True)
class ListLifecycleRecordsInput:
    limit: int = 50
    position_id: str | None = None
