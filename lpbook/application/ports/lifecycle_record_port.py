from __future__ import annotations

from typing import Protocol

from lpbook.domain.entities.lifecycle import LifecycleRecord


class LifecycleRecordPort(Protocol):
    def append(self, records: list[LifecycleRecord]) -> None:
        ...

    def list_recent(
        self,
        *,
        limit: int,
        position_id: str | None = None,
    ) -> list[LifecycleRecord]:
        ...
