from __future__ import annotations

from lpbook.application.dto.positions import ListPositionsInput
from lpbook.application.ports.ledger_store_port import LedgerStorePort
from lpbook.domain.entities.position import Position


class ListPositionsUseCase:
    def __init__(self, *, ledger_store: LedgerStorePort):
        self._ledger_store = ledger_store

    def execute(self, command: ListPositionsInput) -> list[Position]:
        state = self._ledger_store.load()
        if state is None:
            return []
        positions = state.positions
        if command.status is not None:
            positions = [position for position in positions if position.status is command.status]
        return sorted(positions, key=lambda position: position.entered_at, reverse=True)
