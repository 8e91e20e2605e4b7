from __future__ import annotations

from typing import Protocol

from lpbook.domain.entities.portfolio import PortfolioState


class LedgerStorePort(Protocol):
    def load(self) -> PortfolioState | None:
        ...

    def save(self, state: PortfolioState) -> None:
        ...
