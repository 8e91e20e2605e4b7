from __future__ import annotations

import logging
import threading
from collections.abc import Callable


logger = logging.getLogger(__name__)


class EvaluationWorker:
    """Runs evaluation cycles one at a time on a background thread.

    Triggers arriving while a cycle is running collapse into a single pending
    trigger; the most recent reason wins.
    """

    def __init__(
        self,
        *,
        cycle: Callable[[str], object],
        interval_seconds: float | None = None,
        on_stop: Callable[[], None] | None = None,
        name: str = "lpbook-evaluation",
    ):
        self._cycle = cycle
        self._interval = interval_seconds if interval_seconds and interval_seconds > 0 else None
        self._on_stop = on_stop
        self._name = name
        self._condition = threading.Condition()
        self._stop_event = threading.Event()
        self._pending: str | None = None
        self._accepting = False
        self._stopping = False
        self._busy = False
        self._completed = 0
        self._coalesced = 0
        self._thread: threading.Thread | None = None
        self._timer: threading.Thread | None = None

    @property
    def completed_cycles(self) -> int:
        with self._condition:
            return self._completed

    @property
    def coalesced_triggers(self) -> int:
        with self._condition:
            return self._coalesced

    def start(self) -> None:
        with self._condition:
            if self._thread is not None and self._thread.is_alive():
                return
            self._accepting = True
            self._stopping = False
        self._stop_event.clear()

        self._thread = threading.Thread(target=self._consume, name=self._name, daemon=True)
        self._thread.start()
        if self._interval is not None:
            self._timer = threading.Thread(
                target=self._tick,
                name=f"{self._name}-timer",
                daemon=True,
            )
            self._timer.start()
        logger.info("evaluation_worker: started interval_seconds=%s", self._interval)

    def notify(self, reason: str = "event") -> bool:
        with self._condition:
            if not self._accepting:
                return False
            if self._pending is not None:
                self._coalesced += 1
                logger.debug(
                    "evaluation_worker: trigger_coalesced previous=%s reason=%s",
                    self._pending,
                    reason,
                )
            self._pending = reason
            self._condition.notify_all()
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no cycle is running or pending."""
        with self._condition:
            return self._condition.wait_for(
                lambda: self._pending is None and not self._busy,
                timeout=timeout,
            )

    def stop(self, timeout: float | None = None) -> None:
        """Stop accepting triggers, let the running cycle finish, then run ``on_stop``."""
        with self._condition:
            self._accepting = False
            self._stopping = True
            if self._pending is not None:
                logger.info("evaluation_worker: pending_dropped reason=%s", self._pending)
            self._pending = None
            self._condition.notify_all()
        self._stop_event.set()

        if self._timer is not None:
            self._timer.join(timeout)
            self._timer = None
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

        if self._on_stop is not None:
            self._on_stop()
        logger.info("evaluation_worker: stopped completed=%s", self._completed)

    def _tick(self) -> None:
        self.notify("timer")
        while not self._stop_event.wait(self._interval):
            self.notify("timer")

    def _consume(self) -> None:
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._pending is not None or self._stopping)
                if self._pending is None:
                    return
                reason = self._pending
                self._pending = None
                self._busy = True

            try:
                self._cycle(reason)
            except Exception:
                logger.exception("evaluation_worker: cycle_failed trigger=%s", reason)
            finally:
                with self._condition:
                    self._busy = False
                    self._completed += 1
                    self._condition.notify_all()
