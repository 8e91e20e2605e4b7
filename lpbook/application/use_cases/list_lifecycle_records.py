from __future__ import annotations

from lpbook.application.dto.positions import ListLifecycleRecordsInput
from lpbook.application.ports.lifecycle_record_port import LifecycleRecordPort
from lpbook.domain.entities.lifecycle import LifecycleRecord


class ListLifecycleRecordsUseCase:
    def __init__(self, *, record_port: LifecycleRecordPort):
        self._record_port = record_port

    def execute(self, command: ListLifecycleRecordsInput) -> list[LifecycleRecord]:
        return self._record_port.list_recent(
            limit=command.limit,
            position_id=command.position_id,
        )
