from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from lpbook.application.ports.market_data_port import MarketEventPort
from lpbook.domain.exceptions import DataUnavailableError


logger = logging.getLogger(__name__)


class SwapEventWatcher:
    """Polls the pool for swaps and turns each non-empty batch into one trigger.

    Poll failures are logged and retried on the next interval; the timer keeps the
    evaluation going meanwhile.
    """

    def __init__(
        self,
        *,
        events: MarketEventPort,
        notify: Callable[[str], bool],
        poll_seconds: float,
        name: str = "lpbook-swap-watcher",
    ):
        if poll_seconds <= 0:
            raise ValueError("poll_seconds must be positive.")
        self._events = events
        self._notify = notify
        self._poll_seconds = poll_seconds
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._triggers = 0

    @property
    def triggers_sent(self) -> int:
        return self._triggers

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("swap_event_watcher: started poll_seconds=%s", self._poll_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("swap_event_watcher: stopped triggers=%s", self._triggers)

    def poll_once(self) -> bool:
        """Poll once; returns True when a trigger was delivered."""
        try:
            swaps = self._events.poll_swaps()
        except DataUnavailableError as exc:
            logger.warning("swap_event_watcher: poll_failed error=%s", exc)
            return False
        if not swaps:
            return False

        last = swaps[-1]
        reason = f"swap block={last.block_number} tick={last.tick} count={len(swaps)}"
        delivered = self._notify(reason)
        if delivered:
            self._triggers += 1
        return delivered

    def _run(self) -> None:
        self.poll_once()
        while not self._stop_event.wait(self._poll_seconds):
            self.poll_once()
