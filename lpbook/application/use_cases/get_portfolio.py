from __future__ import annotations

from lpbook.application.ports.ledger_store_port import LedgerStorePort
from lpbook.domain.entities.portfolio import CapitalPolicy, PortfolioState


class GetPortfolioUseCase:
    def __init__(self, *, ledger_store: LedgerStorePort, capital_policy: CapitalPolicy):
        self._ledger_store = ledger_store
        self._capital_policy = capital_policy

    def execute(self) -> PortfolioState:
        state = self._ledger_store.load()
        if state is None:
            return PortfolioState.empty(self._capital_policy)
        return state
