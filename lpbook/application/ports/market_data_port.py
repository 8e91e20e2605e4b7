from __future__ import annotations

from typing import Protocol

from lpbook.domain.entities.market import MarketSnapshot, SwapEvent


class MarketDataPort(Protocol):
    def get_snapshot(self) -> MarketSnapshot:
        ...

    def bitmap_word(self, index: int) -> int:
        ...


class MarketEventPort(Protocol):
    def poll_swaps(self) -> list[SwapEvent]:
        """Swaps mined since the previous poll; the first poll only sets the cursor."""
        ...
