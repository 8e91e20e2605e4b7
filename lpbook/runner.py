from __future__ import annotations

import logging
import signal
import threading

from lpbook.application.event_watcher import SwapEventWatcher
from lpbook.application.reporting import format_cycle_summary
from lpbook.application.use_cases.evaluate_cycle import EvaluateCycleUseCase
from lpbook.application.worker import EvaluationWorker
from lpbook.infrastructure.clients.univ3_pool_rpc_client import (
    Univ3PoolRpcClient,
    Univ3PoolRpcClientSettings,
)
from lpbook.infrastructure.db.engine import get_engine
from lpbook.infrastructure.db.repositories.lifecycle_record_repository import (
    SqlLifecycleRecordRepository,
)
from lpbook.infrastructure.storage.json_ledger_store import JsonLedgerStore
from lpbook.shared.config import Settings, get_settings


logger = logging.getLogger("lpbook.runner")


def build_market_client(settings: Settings) -> Univ3PoolRpcClient:
    if not settings.rpc_url or not settings.pool_address:
        raise SystemExit("RPC_URL and POOL_ADDRESS are required.")
    return Univ3PoolRpcClient(
        Univ3PoolRpcClientSettings(
            rpc_url=settings.rpc_url,
            pool_address=settings.pool_address,
            timeout_seconds=settings.rpc_timeout_seconds,
            max_retries=settings.rpc_max_retries,
            min_interval_ms=settings.rpc_min_interval_ms,
            twap_short_seconds=settings.twap_short_seconds,
            twap_long_seconds=settings.twap_long_seconds,
            token0_decimals=settings.token0_decimals,
            token1_decimals=settings.token1_decimals,
            max_log_blocks=settings.max_log_blocks,
        )
    )


def build_engine(settings: Settings) -> EvaluateCycleUseCase:
    if (settings.watched_lower is None) != (settings.watched_upper is None):
        raise SystemExit("POSITION_LOWER and POSITION_UPPER must be set together.")
    watched = settings.watched_range
    if watched is not None and watched[0] >= watched[1]:
        raise SystemExit("POSITION_LOWER must be below POSITION_UPPER.")
    return EvaluateCycleUseCase(
        ledger_store=JsonLedgerStore(settings.ledger_path),
        record_port=SqlLifecycleRecordRepository(get_engine(settings.records_dsn)),
        policy=settings.policy,
        capital_policy=settings.capital,
        search_words=settings.search_words,
        watched_range=watched,
    )


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    client = build_market_client(settings)
    engine = build_engine(settings)

    def run_cycle(reason: str) -> None:
        snapshot = client.get_snapshot()
        result = engine.execute(snapshot, word_at=client.bitmap_word)
        logger.info(
            "runner: cycle_done trigger=%s\n%s",
            reason,
            format_cycle_summary(result, engine.snapshot_state()),
        )

    if settings.interval_seconds <= 0:
        run_cycle("once")
        engine.flush()
        return

    worker = EvaluationWorker(
        cycle=run_cycle,
        interval_seconds=settings.interval_seconds,
        on_stop=engine.flush,
    )
    watcher = None
    if settings.swap_poll_seconds > 0:
        watcher = SwapEventWatcher(
            events=client,
            notify=worker.notify,
            poll_seconds=settings.swap_poll_seconds,
        )
    shutdown = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("runner: shutdown_requested signal=%s", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info(
        "runner: started pool=%s interval_seconds=%s swap_poll_seconds=%s ledger=%s records=%s",
        settings.pool_address,
        settings.interval_seconds,
        settings.swap_poll_seconds,
        settings.ledger_path,
        settings.records_dsn,
    )
    worker.start()
    if watcher is not None:
        watcher.start()
    try:
        while not shutdown.wait(1.0):
            pass
    finally:
        if watcher is not None:
            watcher.stop()
        worker.stop()


if __name__ == "__main__":
    main()
