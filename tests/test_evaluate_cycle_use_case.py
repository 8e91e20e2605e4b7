from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import pytest

from lpbook.application.use_cases import evaluate_cycle
from lpbook.application.use_cases.evaluate_cycle import EvaluateCycleUseCase
from lpbook.domain.entities.market import MarketSnapshot
from lpbook.domain.entities.policy import LifecyclePolicy
from lpbook.domain.entities.portfolio import CapitalPolicy, PortfolioState
from lpbook.domain.entities.position import LifecycleAction, Position, PositionStatus
from lpbook.domain.exceptions import (
    DataUnavailableError,
    LedgerHaltedError,
    PersistenceFailureError,
)
from lpbook.domain.services.liquidity import liquidity_for_deposit
from lpbook.domain.services.univ3_math import tick_to_price, tick_to_sqrt_price_x96


T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
SPACING = 60


class FakeLedgerStore:
    def __init__(self, state: PortfolioState | None = None):
        self.saved = copy.deepcopy(state)
        self.save_calls = 0
        self.fail_remaining = 0

    def load(self) -> PortfolioState | None:
        return copy.deepcopy(self.saved)

    def save(self, state: PortfolioState) -> None:
        self.save_calls += 1
        if self.fail_remaining > 0:
            self.fail_remaining -= 1
            raise PersistenceFailureError("disk full")
        self.saved = copy.deepcopy(state)


class FakeRecordPort:
    def __init__(self):
        self.records = []
        self.fail_remaining = 0

    def append(self, records) -> None:
        if self.fail_remaining > 0:
            self.fail_remaining -= 1
            raise PersistenceFailureError("database locked")
        self.records.extend(records)

    def list_recent(self, *, limit: int, position_id: str | None = None):
        rows = [r for r in self.records if position_id is None or r.position_id == position_id]
        return list(reversed(rows))[:limit]


def _snapshot(
    tick: int,
    *,
    at: datetime = T0,
    twap_short: int | None = None,
    twap_long: int | None = None,
) -> MarketSnapshot:
    return MarketSnapshot(
        timestamp=at,
        tick=tick,
        sqrt_price_x96=tick_to_sqrt_price_x96(tick),
        liquidity=10**22,
        fee_tier=3000,
        tick_spacing=SPACING,
        token0_decimals=18,
        token1_decimals=18,
        twap_short_tick=twap_short,
        twap_long_tick=twap_long,
    )


def _seed_position(
    position_id: str,
    *,
    lower: int = -180,
    upper: int = 180,
    amount: float = 10_000.0,
    entered_at: datetime = T0 - timedelta(hours=5),
    **overrides,
) -> Position:
    amounts = liquidity_for_deposit(
        amount_usd=amount,
        price=1.0,
        tick_lower=lower,
        tick_upper=upper,
        token0_decimals=18,
        token1_decimals=18,
    )
    payload = {
        "id": position_id,
        "lower": lower,
        "upper": upper,
        "entered_at": entered_at,
        "entry_tick": 0,
        "entry_price": 1.0,
        "amount_usd": amount,
        "liquidity": amounts.liquidity,
        "token0_amount": amounts.token0_amount,
        "token1_amount": amounts.token1_amount,
        "current_value": amount,
        "last_update_at": entered_at,
    }
    payload.update(overrides)
    return Position(**payload)


def _seeded_state(*positions: Position, capital: CapitalPolicy | None = None) -> PortfolioState:
    state = PortfolioState.empty(capital or CapitalPolicy())
    state.positions = list(positions)
    state.total_usd_invested = state.committed_usd()
    state.started_at = T0 - timedelta(days=1)
    return state


def _engine(
    state: PortfolioState | None = None,
    *,
    capital: CapitalPolicy | None = None,
    policy: LifecyclePolicy | None = None,
    watched_range: tuple[int, int] | None = None,
):
    store = FakeLedgerStore(state)
    records = FakeRecordPort()
    engine = EvaluateCycleUseCase(
        ledger_store=store,
        record_port=records,
        policy=policy or LifecyclePolicy(),
        capital_policy=capital or CapitalPolicy(),
        search_words=2,
        watched_range=watched_range,
    )
    return engine, store, records


def test_opens_position_on_empty_ledger_with_neutral_market():
    engine, store, records = _engine()

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert result.open_decision.opened is True
    assert result.open_decision.amount_usd == 10_000.0
    assert result.open_decision.confidence == 1.0
    assert [r.action for r in result.records] == [LifecycleAction.ADD]
    assert (result.records[0].lower, result.records[0].upper) == (-180, 180)

    state = engine.snapshot_state()
    assert len(state.active_positions()) == 1
    assert state.total_usd_invested == 10_000.0
    assert store.saved == state
    assert records.records == result.records


def test_out_of_range_position_is_closed():
    state = _seeded_state(_seed_position("pos_a"))
    engine, store, _records = _engine(state)

    result = engine.execute(_snapshot(300, twap_short=300, twap_long=300))

    close = result.records[0]
    assert close.position_id == "pos_a"
    assert close.action is LifecycleAction.CLOSE
    assert close.reason.startswith("out_of_range")
    assert close.distance == -1
    closed = store.saved.find("pos_a")
    assert closed.status is PositionStatus.CLOSED
    assert store.saved.total_trades == 1


def test_capital_gate_dominates_perfect_trend():
    capital = CapitalPolicy(max_positions=5, max_usd_per_position=10_000.0, total_usd_limit=10_000.0)
    state = _seeded_state(_seed_position("pos_full"), capital=capital)
    engine, _store, _records = _engine(state, capital=capital)

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert result.trend.recommendation == "favorable"
    assert result.open_decision.opened is False
    assert result.open_decision.reason.startswith("insufficient_capital")
    assert [r.action for r in result.records] == [LifecycleAction.HOLD]
    assert len(engine.snapshot_state().active_positions()) == 1


def test_extreme_volatility_blocks_new_positions():
    engine, _store, records = _engine()

    result = engine.execute(_snapshot(0, twap_short=1000, twap_long=0))

    assert result.volatility.regime == "extreme"
    assert result.open_decision.opened is False
    assert records.records == []


def test_overlapping_candidate_is_rejected():
    state = _seeded_state(_seed_position("pos_a"))
    engine, _store, _records = _engine(state)

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert result.open_decision.opened is False
    assert result.open_decision.reason.startswith("overlap")


def test_approaching_edge_rebalances_around_current_tick():
    state = _seeded_state(_seed_position("pos_a"))
    engine, store, _records = _engine(state)

    result = engine.execute(_snapshot(150, twap_short=150, twap_long=150))

    rebalance = result.records[0]
    assert rebalance.action is LifecycleAction.REBALANCE
    assert rebalance.reason.startswith("approaching_edge")
    assert "moved to [-60, 300]" in rebalance.reason
    assert (rebalance.lower, rebalance.upper) == (-180, 180)
    assert rebalance.distance == 30
    assert rebalance.rebalance_count == 0

    position = store.saved.find("pos_a")
    assert (position.lower, position.upper) == (-60, 300)
    assert position.rebalance_count == 1
    assert position.entry_tick == 150
    assert position.amount_usd <= store.saved.max_usd_per_position
    assert store.saved.total_gas_spent == pytest.approx(5.0)
    assert result.open_decision.reason.startswith("overlap")


def test_danger_dwell_closes_position():
    position = _seed_position("pos_a", edge_since=T0 - timedelta(hours=1))
    engine, _store, _records = _engine(_seeded_state(position))

    result = engine.execute(_snapshot(150, twap_short=150, twap_long=150))

    assert result.records[0].action is LifecycleAction.CLOSE
    assert result.records[0].reason.startswith("near_edge")


def test_invariants_hold_across_many_cycles():
    capital = CapitalPolicy(max_positions=3, max_usd_per_position=4_000.0, total_usd_limit=9_000.0)
    engine, store, records = _engine(capital=capital)
    closed_ids: set[str] = set()

    ticks = [0, 90, 400, 420, -500, -520, 0, 30, 1_000, 1_020, 1_010]
    for hour, tick in enumerate(ticks):
        engine.execute(
            _snapshot(tick, at=T0 + timedelta(hours=hour), twap_short=tick, twap_long=tick)
        )
        state = engine.snapshot_state()
        active = state.active_positions()

        assert len(active) <= state.max_positions
        assert sum(p.amount_usd for p in active) <= state.total_usd_limit + 1e-6
        assert state.total_usd_invested == pytest.approx(sum(p.amount_usd for p in active))
        for position in state.positions:
            assert position.lower < position.upper
            assert position.lower % SPACING == 0
            assert position.upper % SPACING == 0
            assert position.amount_usd <= state.max_usd_per_position + 1e-6
        for position_id in closed_ids:
            assert state.find(position_id).status is PositionStatus.CLOSED
        closed_ids.update(p.id for p in state.closed_positions())

    assert store.saved == engine.snapshot_state()
    assert len(records.records) >= len(ticks)


def test_failed_position_is_isolated(monkeypatch: pytest.MonkeyPatch):
    state = _seeded_state(
        _seed_position("pos_bad", lower=-600, upper=-240),
        _seed_position("pos_good", lower=-180, upper=180),
    )
    engine, store, _records = _engine(state)
    real_accrue = evaluate_cycle.accrue_fees

    def flaky_accrue(position, **kwargs):
        if position.id == "pos_bad":
            raise ZeroDivisionError("broken position")
        return real_accrue(position, **kwargs)

    monkeypatch.setattr(evaluate_cycle, "accrue_fees", flaky_accrue)

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert [r.position_id for r in result.records if r.action is not LifecycleAction.ADD] == ["pos_good"]
    bad = store.saved.find("pos_bad")
    assert bad.status is PositionStatus.ACTIVE
    assert bad.last_update_at == T0 - timedelta(hours=5)


def test_missing_twap_reuses_last_sigma_and_warns():
    engine, _store, _records = _engine()

    first = engine.execute(_snapshot(0, twap_short=100, twap_long=0))
    second = engine.execute(_snapshot(0, at=T0 + timedelta(minutes=1)))

    assert second.recommendation.sigma == first.recommendation.sigma
    assert second.trend.direction == "unknown"
    assert any("TWAP unavailable" in warning for warning in second.warnings)


def test_missing_twap_without_history_uses_default_sigma():
    engine, _store, _records = _engine(policy=LifecyclePolicy(default_sigma=0.01))

    result = engine.execute(_snapshot(0))

    assert result.recommendation.sigma == 0.01
    assert result.warnings


def test_bitmap_failure_degrades_to_no_boundaries():
    engine, _store, _records = _engine()

    def failing_word(_index: int) -> int:
        raise DataUnavailableError("rpc timeout")

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0), word_at=failing_word)

    assert result.nearest_ticks is None
    assert any("bitmap" in warning.lower() for warning in result.warnings)
    assert result.open_decision.opened is True


def test_bitmap_scan_reports_nearest_ticks():
    engine, _store, _records = _engine()
    words = {0: 1 << 3, -1: 1 << 250}

    result = engine.execute(
        _snapshot(0, twap_short=0, twap_long=0),
        word_at=lambda index: words.get(index, 0),
    )

    assert result.nearest_ticks.right_tick == 180
    assert result.nearest_ticks.left_tick == -360


def test_ledger_write_failure_halts_until_store_recovers():
    engine, store, records = _engine()
    store.fail_remaining = 2

    with pytest.raises(PersistenceFailureError):
        engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert engine.halted is True
    assert engine.snapshot_state().positions == []
    assert records.records == []

    store.fail_remaining = 2
    with pytest.raises(LedgerHaltedError):
        engine.execute(_snapshot(0, at=T0 + timedelta(minutes=1), twap_short=0, twap_long=0))

    result = engine.execute(_snapshot(0, at=T0 + timedelta(minutes=2), twap_short=0, twap_long=0))
    assert engine.halted is False
    assert result.open_decision.opened is True
    assert len(store.saved.positions) == 1


def test_single_ledger_failure_is_retried():
    engine, store, _records = _engine()
    store.fail_remaining = 1

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert result.open_decision.opened is True
    assert engine.halted is False
    assert len(store.saved.positions) == 1


def test_record_write_failure_buffers_and_flushes_on_resume():
    engine, store, records = _engine()
    records.fail_remaining = 2

    with pytest.raises(PersistenceFailureError):
        engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert engine.halted is True
    assert len(store.saved.positions) == 1
    assert records.records == []

    engine.execute(_snapshot(0, at=T0 + timedelta(hours=1), twap_short=0, twap_long=0))

    assert engine.halted is False
    assert records.records[0].action is LifecycleAction.ADD
    assert records.records[1].action is LifecycleAction.HOLD


def test_existing_ledger_is_resumed_verbatim():
    state = _seeded_state(_seed_position("pos_a"))
    engine, _store, _records = _engine(state, capital=CapitalPolicy(max_positions=1))

    resumed = engine.snapshot_state()
    assert resumed == state
    assert resumed.max_positions == 5


def test_flush_writes_current_state():
    engine, store, _records = _engine()
    engine.execute(_snapshot(0, twap_short=0, twap_long=0))
    calls = store.save_calls

    engine.flush()

    assert store.save_calls == calls + 1
    assert store.saved == engine.snapshot_state()


def test_recorded_price_matches_tick():
    engine, _store, _records = _engine()
    result = engine.execute(_snapshot(600, twap_short=600, twap_long=600))
    assert result.price == pytest.approx(tick_to_price(600, 18, 18), rel=1e-9)


def test_candidate_that_excludes_spot_tick_is_not_opened():
    engine, store, records = _engine()

    result = engine.execute(_snapshot(1000, twap_short=0, twap_long=0))

    assert (result.recommendation.lower, result.recommendation.upper) == (-180, 180)
    assert result.open_decision.opened is False
    assert result.open_decision.reason.startswith("spot_outside_range")
    assert records.records == []
    assert store.saved.positions == []

    later = engine.execute(_snapshot(1000, at=T0 + timedelta(minutes=1), twap_short=0, twap_long=0))

    assert later.records == []
    assert store.saved.total_trades == 0
    assert store.saved.total_gas_spent == 0


def test_spot_tick_near_candidate_edge_is_not_opened():
    engine, _store, records = _engine()

    result = engine.execute(_snapshot(150, twap_short=0, twap_long=0))

    assert result.open_decision.opened is False
    assert result.open_decision.reason.startswith("spot_near_edge")
    assert records.records == []


def test_position_opened_off_centre_is_held_next_cycle():
    engine, _store, _records = _engine()

    opened = engine.execute(_snapshot(60, twap_short=0, twap_long=0))
    later = engine.execute(_snapshot(60, at=T0 + timedelta(minutes=1), twap_short=0, twap_long=0))

    assert opened.open_decision.opened is True
    assert [r.action for r in later.records] == [LifecycleAction.HOLD]


def test_failure_after_close_restores_ledger_counters(monkeypatch: pytest.MonkeyPatch):
    state = _seeded_state(_seed_position("pos_a"))
    engine, store, _records = _engine(state)
    real_close = evaluate_cycle.close_position

    def close_then_fail(state, position, **kwargs):
        real_close(state, position, **kwargs)
        raise RuntimeError("failed after close")

    monkeypatch.setattr(evaluate_cycle, "close_position", close_then_fail)

    result = engine.execute(_snapshot(300, twap_short=300, twap_long=300))

    assert result.records == []
    saved = store.saved
    assert saved.find("pos_a").status is PositionStatus.ACTIVE
    assert saved.total_trades == 0
    assert saved.total_gas_spent == 0
    assert saved.total_usd_invested == pytest.approx(10_000.0)


def test_bucket_edge_gate_blocks_entry_when_enabled():
    engine, _store, records = _engine(policy=LifecyclePolicy(avoid_bucket_edge_entry=True))

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert result.tick_range.recommendation == "avoid"
    assert result.open_decision.opened is False
    assert result.open_decision.reason.startswith("bucket_edge")
    assert records.records == []


def test_bucket_edge_is_ignored_by_default():
    engine, _store, _records = _engine()

    result = engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    assert result.tick_range.recommendation == "avoid"
    assert result.open_decision.opened is True


@pytest.mark.parametrize(
    ("tick", "action"),
    [(0, "KEEP"), (90, "NEUTRAL_HOLD"), (150, "WITHDRAW"), (300, "REBUILD")],
)
def test_watched_range_gets_advice(tick: int, action: str):
    engine, _store, _records = _engine(watched_range=(-180, 180))

    result = engine.execute(_snapshot(tick, twap_short=tick, twap_long=tick))

    assert result.advice is not None
    assert result.advice.action == action
    assert (result.advice.lower, result.advice.upper) == (-180, 180)


def test_no_advice_without_watched_range():
    engine, _store, _records = _engine()
    assert engine.execute(_snapshot(0, twap_short=0, twap_long=0)).advice is None


def test_inverted_watched_range_is_rejected():
    with pytest.raises(ValueError):
        _engine(watched_range=(180, -180))


def test_tick_changes_are_tracked_across_cycles():
    engine, _store, _records = _engine()

    first = engine.execute(_snapshot(0, twap_short=0, twap_long=0))
    second = engine.execute(_snapshot(60, at=T0 + timedelta(minutes=10), twap_short=0, twap_long=0))

    assert first.tick_change is None
    change = second.tick_change
    assert change.from_tick == 0
    assert change.to_tick == 60
    assert change.direction == "up"
    assert change.ticks_changed == 60
    assert change.seconds_at_previous_tick == 600
    assert change.price_change_pct > 0
    assert second.tick_dwell.samples == 1
    assert second.tick_dwell.current_tick == 60


def test_held_position_reports_fee_apr():
    state = _seeded_state(_seed_position("pos_a"))
    engine, store, _records = _engine(state)

    engine.execute(_snapshot(0, twap_short=0, twap_long=0))

    position = store.saved.find("pos_a")
    assert position.fees_earned > 0
    assert position.fee_apr_pct > 0
    assert store.saved.fee_apr > 0
