from __future__ import annotations

from datetime import datetime

from lpbook.domain.entities.market import TickChange, TickDwellStats


class TickTracker:
    """Remembers the last observed tick and how long the price stayed on each one.

    Dwell samples are bounded: once ``max_samples`` is exceeded only the newest
    ``keep_samples`` are kept.
    """

    def __init__(self, *, max_samples: int = 100, keep_samples: int = 50):
        if keep_samples <= 0 or keep_samples > max_samples:
            raise ValueError("keep_samples must be in (0, max_samples].")
        self._max_samples = max_samples
        self._keep_samples = keep_samples
        self._tick: int | None = None
        self._price: float | None = None
        self._since: datetime | None = None
        self._dwell_seconds: list[float] = []

    @property
    def current_tick(self) -> int | None:
        return self._tick

    def observe(self, *, tick: int, price: float, at: datetime) -> TickChange | None:
        if self._tick is None:
            self._tick, self._price, self._since = tick, price, at
            return None
        if tick == self._tick:
            return None

        dwell = None
        if self._since is not None:
            dwell = max(0.0, (at - self._since).total_seconds())
            if dwell > 0:
                self._dwell_seconds.append(dwell)
                if len(self._dwell_seconds) > self._max_samples:
                    self._dwell_seconds = self._dwell_seconds[-self._keep_samples:]

        previous_price = self._price or price
        change = TickChange(
            timestamp=at,
            from_tick=self._tick,
            to_tick=tick,
            direction="up" if tick > self._tick else "down",
            ticks_changed=abs(tick - self._tick),
            price_change_pct=(price - previous_price) / previous_price * 100.0,
            seconds_at_previous_tick=dwell,
        )
        self._tick, self._price, self._since = tick, price, at
        return change

    def stats(self, now: datetime) -> TickDwellStats:
        samples = self._dwell_seconds
        current = None
        if self._since is not None:
            current = max(0.0, (now - self._since).total_seconds())
        return TickDwellStats(
            samples=len(samples),
            average_seconds=sum(samples) / len(samples) if samples else None,
            min_seconds=min(samples) if samples else None,
            max_seconds=max(samples) if samples else None,
            current_tick=self._tick,
            seconds_at_current_tick=current,
        )
