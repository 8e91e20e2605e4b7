from __future__ import annotations

import threading

import pytest

from lpbook.application.event_watcher import SwapEventWatcher
from lpbook.application.worker import EvaluationWorker
from lpbook.domain.entities.market import SwapEvent
from lpbook.domain.exceptions import DataUnavailableError


def _swap(block: int, tick: int) -> SwapEvent:
    return SwapEvent(
        block_number=block,
        transaction_hash=None,
        log_index=0,
        amount0=-1,
        amount1=1,
        sqrt_price_x96=2**96,
        liquidity=10**21,
        tick=tick,
    )


class ScriptedSwaps:
    def __init__(self, batches: list):
        self.batches = list(batches)
        self.polls = 0

    def poll_swaps(self) -> list[SwapEvent]:
        self.polls += 1
        batch = self.batches.pop(0) if self.batches else []
        if isinstance(batch, Exception):
            raise batch
        return batch


def test_swap_batch_becomes_one_trigger():
    reasons: list[str] = []
    watcher = SwapEventWatcher(
        events=ScriptedSwaps([[_swap(10, -5), _swap(11, 12)]]),
        notify=lambda reason: reasons.append(reason) or True,
        poll_seconds=1,
    )

    assert watcher.poll_once() is True
    assert reasons == ["swap block=11 tick=12 count=2"]
    assert watcher.triggers_sent == 1


def test_quiet_pool_sends_nothing():
    reasons: list[str] = []
    watcher = SwapEventWatcher(
        events=ScriptedSwaps([[]]),
        notify=lambda reason: reasons.append(reason) or True,
        poll_seconds=1,
    )

    assert watcher.poll_once() is False
    assert reasons == []


def test_poll_failure_is_logged_and_retried(caplog: pytest.LogCaptureFixture):
    source = ScriptedSwaps([DataUnavailableError("rpc down"), [_swap(12, 1)]])
    reasons: list[str] = []
    watcher = SwapEventWatcher(
        events=source,
        notify=lambda reason: reasons.append(reason) or True,
        poll_seconds=1,
    )

    assert watcher.poll_once() is False
    assert "poll_failed" in caplog.text
    assert watcher.poll_once() is True
    assert source.polls == 2


def test_rejected_trigger_is_not_counted():
    watcher = SwapEventWatcher(
        events=ScriptedSwaps([[_swap(10, 0)]]),
        notify=lambda _reason: False,
        poll_seconds=1,
    )

    assert watcher.poll_once() is False
    assert watcher.triggers_sent == 0


def test_non_positive_interval_is_rejected():
    with pytest.raises(ValueError):
        SwapEventWatcher(events=ScriptedSwaps([]), notify=lambda _reason: True, poll_seconds=0)


def test_background_watcher_drives_the_worker():
    ran = threading.Event()
    reasons: list[str] = []

    def cycle(reason: str) -> None:
        reasons.append(reason)
        ran.set()

    worker = EvaluationWorker(cycle=cycle)
    worker.start()
    watcher = SwapEventWatcher(
        events=ScriptedSwaps([[_swap(20, 42)]]),
        notify=worker.notify,
        poll_seconds=0.05,
    )
    watcher.start()
    try:
        assert ran.wait(5)
    finally:
        watcher.stop(timeout=5)
        worker.stop(timeout=5)

    assert reasons == ["swap block=20 tick=42 count=1"]
    assert watcher.triggers_sent == 1
