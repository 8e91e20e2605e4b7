from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from lpbook.application.ports.ledger_store_port import LedgerStorePort
from lpbook.application.ports.lifecycle_record_port import LifecycleRecordPort
from lpbook.domain.entities.lifecycle import CycleResult, LifecycleRecord, OpenDecision, RangeAdvice
from lpbook.domain.entities.market import (
    MarketSnapshot,
    NearestInitializedTicks,
    RangeRecommendation,
    TickRangeSnapshot,
    TrendSignal,
    VolatilitySignal,
)
from lpbook.domain.entities.policy import LifecyclePolicy
from lpbook.domain.entities.portfolio import CapitalPolicy, PortfolioState
from lpbook.domain.entities.position import OUT_OF_RANGE, LifecycleAction, Position
from lpbook.domain.exceptions import (
    CapitalExceededError,
    DataUnavailableError,
    InvalidPositionError,
    LedgerHaltedError,
    PersistenceFailureError,
)
from lpbook.domain.services.fee_apr import annualized_fee_apr_pct
from lpbook.domain.services.ledger import (
    close_position,
    open_position,
    rebalance_headroom,
    rebalance_position,
)
from lpbook.domain.services.lifecycle_rules import (
    PositionDecision,
    PositionMetrics,
    advise_range,
    decide,
    edge_since_after,
)
from lpbook.domain.services.liquidity import (
    accrue_fees,
    current_position_value,
    impermanent_loss_pct,
    liquidity_for_deposit,
    position_distance,
    total_return_pct,
)
from lpbook.domain.services.market_signals import (
    classify_trend,
    classify_volatility,
    entry_confidence,
)
from lpbook.domain.services.portfolio_metrics import apply_portfolio_metrics
from lpbook.domain.services.range_sizing import recommend_range, sigma_from_twap
from lpbook.domain.services.risk_zones import analyze_tick_range
from lpbook.domain.services.tick_bitmap import find_nearest_initialized_ticks
from lpbook.domain.services.tick_history import TickTracker
from lpbook.domain.services.univ3_math import round_down_to_spacing, sqrt_price_x96_to_price


WRITE_ATTEMPTS = 2
logger = logging.getLogger(__name__)


class EvaluateCycleUseCase:
    """Lifecycle engine: owns the ledger and runs one evaluation per market snapshot.

    ``execute`` works on a copy of the ledger and only swaps it in after the durable
    write succeeded. A ledger write that fails twice halts every later cycle until
    the store accepts a write again.
    """

    def __init__(
        self,
        *,
        ledger_store: LedgerStorePort,
        record_port: LifecycleRecordPort,
        policy: LifecyclePolicy,
        capital_policy: CapitalPolicy,
        search_words: int = 8,
        watched_range: tuple[int, int] | None = None,
    ):
        if watched_range is not None and watched_range[0] >= watched_range[1]:
            raise ValueError("watched_range lower must be below upper.")
        self._ledger_store = ledger_store
        self._record_port = record_port
        self._policy = policy
        self._search_words = max(0, search_words)
        self._watched_range = watched_range
        self._last_sigma: float | None = None
        self._halted = False
        self._pending_records: list[LifecycleRecord] = []
        self._tick_tracker = TickTracker()

        loaded = ledger_store.load()
        if loaded is None:
            logger.info(
                "evaluate_cycle: ledger_initialized max_positions=%s max_usd_per_position=%s total_usd_limit=%s",
                capital_policy.max_positions,
                capital_policy.max_usd_per_position,
                capital_policy.total_usd_limit,
            )
            loaded = PortfolioState.empty(capital_policy)
        else:
            logger.info(
                "evaluate_cycle: ledger_loaded positions=%s active=%s",
                len(loaded.positions),
                len(loaded.active_positions()),
            )
        self._state = loaded

    @property
    def halted(self) -> bool:
        return self._halted

    def snapshot_state(self) -> PortfolioState:
        return copy.deepcopy(self._state)

    def execute(
        self,
        snapshot: MarketSnapshot,
        word_at: Callable[[int], int] | None = None,
    ) -> CycleResult:
        self._ensure_writable()

        now = snapshot.timestamp
        price = sqrt_price_x96_to_price(
            snapshot.sqrt_price_x96,
            snapshot.token0_decimals,
            snapshot.token1_decimals,
        )
        warnings: list[str] = []
        sigma = self._resolve_sigma(snapshot, warnings)
        center_tick = snapshot.twap_long_tick if snapshot.twap_long_tick is not None else snapshot.tick
        recommendation = recommend_range(
            center_tick=center_tick,
            tick_spacing=snapshot.tick_spacing,
            sigma=sigma,
            policy=self._policy.range,
        )
        tick_range = analyze_tick_range(
            tick=snapshot.tick,
            tick_spacing=snapshot.tick_spacing,
            token0_decimals=snapshot.token0_decimals,
            token1_decimals=snapshot.token1_decimals,
            thresholds=self._policy.risk,
        )
        nearest_ticks = self._scan_boundaries(snapshot, word_at, warnings)
        trend = classify_trend(
            twap_short_tick=snapshot.twap_short_tick,
            twap_long_tick=snapshot.twap_long_tick,
            width=recommendation.width,
            tick_spacing=snapshot.tick_spacing,
            policy=self._policy,
        )
        volatility = classify_volatility(sigma, self._policy)

        working = copy.deepcopy(self._state)
        records: list[LifecycleRecord] = []
        for index in range(len(working.positions)):
            position = working.positions[index]
            if not position.is_active:
                continue
            # a failure rolls back the position and the ledger counters it touched
            checkpoint = copy.deepcopy(working)
            try:
                records.append(
                    self._process_position(working, position, snapshot, price, recommendation)
                )
            except Exception:
                logger.exception(
                    "evaluate_cycle: position_failed position_id=%s tick=%s",
                    position.id,
                    snapshot.tick,
                )
                working = checkpoint

        open_decision, add_record = self._evaluate_open(
            working,
            snapshot=snapshot,
            price=price,
            recommendation=recommendation,
            tick_range=tick_range,
            trend=trend,
            volatility=volatility,
        )
        if add_record is not None:
            records.append(add_record)

        advice = self._advise(snapshot.tick, recommendation)
        metrics = apply_portfolio_metrics(working, now=now)
        self._commit(working, records)
        tick_change = self._tick_tracker.observe(tick=snapshot.tick, price=price, at=now)
        logger.info(
            "evaluate_cycle: done tick=%s price=%s active=%s invested=%s records=%s total_return=%s fee_apr=%s",
            snapshot.tick,
            price,
            len(working.active_positions()),
            metrics.total_usd_invested,
            len(records),
            metrics.total_return,
            metrics.fee_apr,
        )

        return CycleResult(
            timestamp=now,
            tick=snapshot.tick,
            price=price,
            recommendation=recommendation,
            tick_range=tick_range,
            nearest_ticks=nearest_ticks,
            trend=trend,
            volatility=volatility,
            open_decision=open_decision,
            records=records,
            warnings=warnings,
            tick_change=tick_change,
            tick_dwell=self._tick_tracker.stats(now),
            advice=advice,
        )

    def flush(self) -> None:
        """Final durable write of the ledger and any buffered records."""
        self._write_with_retry(lambda: self._ledger_store.save(self._state), "ledger")
        self._flush_records()
        self._halted = False

    def _resolve_sigma(self, snapshot: MarketSnapshot, warnings: list[str]) -> float:
        sigma = sigma_from_twap(snapshot.twap_short_tick, snapshot.twap_long_tick)
        if sigma is not None:
            self._last_sigma = sigma
            return sigma

        if self._last_sigma is not None:
            warnings.append("TWAP unavailable; reused last known sigma.")
            fallback = self._last_sigma
        else:
            warnings.append("TWAP unavailable; used default sigma.")
            fallback = self._policy.default_sigma
        logger.warning("evaluate_cycle: twap_unavailable fallback_sigma=%s", fallback)
        return fallback

    def _scan_boundaries(
        self,
        snapshot: MarketSnapshot,
        word_at: Callable[[int], int] | None,
        warnings: list[str],
    ) -> NearestInitializedTicks | None:
        if word_at is None:
            return None
        try:
            return find_nearest_initialized_ticks(
                active_tick=snapshot.tick,
                tick_spacing=snapshot.tick_spacing,
                word_at=word_at,
                search_words=self._search_words,
            )
        except DataUnavailableError as exc:
            warnings.append("Tick bitmap unavailable; nearest initialized ticks skipped.")
            logger.warning("evaluate_cycle: bitmap_unavailable tick=%s error=%s", snapshot.tick, exc)
            return None

    def _advise(self, tick: int, recommendation: RangeRecommendation) -> RangeAdvice | None:
        if self._watched_range is None:
            return None
        lower, upper = self._watched_range
        advice = advise_range(
            tick=tick,
            lower=lower,
            upper=upper,
            buffer=recommendation.buffer,
            danger=recommendation.danger,
        )
        logger.info(
            "evaluate_cycle: advice range=[%s, %s] action=%s reason=%s",
            lower,
            upper,
            advice.action,
            advice.reason,
        )
        return advice

    def _process_position(
        self,
        state: PortfolioState,
        position: Position,
        snapshot: MarketSnapshot,
        price: float,
        recommendation: RangeRecommendation,
    ) -> LifecycleRecord:
        now = snapshot.timestamp
        distance = position_distance(snapshot.tick, position)
        fees = accrue_fees(
            position,
            tick=snapshot.tick,
            price=price,
            pool_liquidity=float(snapshot.liquidity),
            fee_tier=snapshot.fee_tier,
            token0_decimals=snapshot.token0_decimals,
            token1_decimals=snapshot.token1_decimals,
            now=now,
            policy=self._policy,
        )
        value = current_position_value(
            position,
            price=price,
            token0_decimals=snapshot.token0_decimals,
            token1_decimals=snapshot.token1_decimals,
        )
        metrics = PositionMetrics(
            distance=distance,
            fees_earned=fees,
            current_value=value,
            impermanent_loss_pct=impermanent_loss_pct(position.entry_price, price),
            total_return_pct=total_return_pct(
                current_value=value,
                fees_earned=fees,
                amount_usd=position.amount_usd,
            ),
        )
        edge_since = edge_since_after(
            position,
            distance=distance,
            danger=recommendation.danger,
            now=now,
        )
        decision = decide(
            position,
            metrics,
            buffer=recommendation.buffer,
            danger=recommendation.danger,
            edge_since=edge_since,
            price=price,
            now=now,
            policy=self._policy,
        )

        position.fees_earned = metrics.fees_earned
        position.current_value = metrics.current_value
        position.impermanent_loss_pct = metrics.impermanent_loss_pct
        position.total_return_pct = metrics.total_return_pct
        position.fee_apr_pct = annualized_fee_apr_pct(
            metrics.fees_earned + position.realized_fees,
            position.amount_usd * position.hours_held(now),
        )
        position.last_update_at = now
        position.edge_since = edge_since

        # the record describes the position as evaluated, before any close or rebalance
        record = _build_record(
            position,
            action=decision.action,
            reason=decision.reason,
            tick=snapshot.tick,
            price=price,
            metrics=metrics,
            now=now,
        )

        if decision.action is LifecycleAction.CLOSE:
            close_position(
                state,
                position,
                reason=decision.reason,
                now=now,
                transaction_cost_usd=self._policy.transaction_cost_usd,
            )
        elif decision.action is LifecycleAction.REBALANCE:
            try:
                self._rebalance(state, position, snapshot, price, recommendation, metrics)
            except InvalidPositionError as exc:
                logger.warning(
                    "evaluate_cycle: rebalance_rejected position_id=%s detail=%s",
                    position.id,
                    exc,
                )
                decision = PositionDecision(
                    action=LifecycleAction.MONITOR,
                    reason=f"rebalance_rejected: {exc}",
                )
            else:
                decision = PositionDecision(
                    action=decision.action,
                    reason=(
                        f"{decision.reason}; moved to [{position.lower}, {position.upper}] "
                        f"amount {position.amount_usd:.2f}"
                    ),
                )
            record = replace(record, action=decision.action, reason=decision.reason)

        logger.info(
            "evaluate_cycle: decision position_id=%s action=%s reason=%s distance=%s return_pct=%.2f",
            position.id,
            decision.action.value,
            decision.reason,
            distance,
            metrics.total_return_pct,
        )
        return record

    def _rebalance(
        self,
        state: PortfolioState,
        position: Position,
        snapshot: MarketSnapshot,
        price: float,
        recommendation: RangeRecommendation,
        metrics: PositionMetrics,
    ) -> None:
        width = recommendation.width
        lower = round_down_to_spacing(snapshot.tick - width // 2, snapshot.tick_spacing)
        upper = lower + width
        target = max(
            metrics.current_value + metrics.fees_earned,
            self._policy.rebalance_capital_floor * position.amount_usd,
        )
        amount = min(target, rebalance_headroom(state, position))
        amounts = liquidity_for_deposit(
            amount_usd=amount,
            price=price,
            tick_lower=lower,
            tick_upper=upper,
            token0_decimals=snapshot.token0_decimals,
            token1_decimals=snapshot.token1_decimals,
        )
        rebalance_position(
            state,
            position,
            lower=lower,
            upper=upper,
            tick_spacing=snapshot.tick_spacing,
            entry_tick=snapshot.tick,
            entry_price=price,
            amount_usd=amount,
            amounts=amounts,
            now=snapshot.timestamp,
            transaction_cost_usd=self._policy.transaction_cost_usd,
        )

    def _evaluate_open(
        self,
        state: PortfolioState,
        *,
        snapshot: MarketSnapshot,
        price: float,
        recommendation: RangeRecommendation,
        tick_range: TickRangeSnapshot,
        trend: TrendSignal,
        volatility: VolatilitySignal,
    ) -> tuple[OpenDecision, LifecycleRecord | None]:
        policy = self._policy
        active = state.active_positions()
        if len(active) >= state.max_positions:
            return _skip(f"max_positions: {len(active)}/{state.max_positions} active"), None

        available = state.available_usd()
        if available < policy.min_ticket_usd:
            return _skip(
                f"insufficient_capital: available {available:.2f} < min ticket {policy.min_ticket_usd:.2f}"
            ), None
        if volatility.regime == "extreme":
            return _skip(f"extreme_volatility: sigma {volatility.sigma:.5f}"), None
        if trend.recommendation == "avoid":
            return _skip(
                f"trend_avoid: {trend.direction} strength {trend.strength:.2f}"
            ), None
        if policy.avoid_bucket_edge_entry and tick_range.recommendation == "avoid":
            return _skip(
                f"bucket_edge: tick {snapshot.tick} is {tick_range.nearest_pct:.0%} of spacing "
                f"from the {tick_range.nearest_side} bucket edge"
            ), None

        # the candidate is centred on the long TWAP, so the spot tick can sit outside it
        lower, upper = recommendation.lower, recommendation.upper
        spot_distance = _distance_within(snapshot.tick, lower, upper)
        if spot_distance == OUT_OF_RANGE:
            return _skip(
                f"spot_outside_range: tick {snapshot.tick} outside candidate [{lower}, {upper}]"
            ), None
        if spot_distance < recommendation.buffer / 2:
            return _skip(
                f"spot_near_edge: tick {snapshot.tick} is {spot_distance} from candidate "
                f"[{lower}, {upper}] edge < buffer/2 ({recommendation.buffer / 2:g})"
            ), None

        for position in active:
            if position.overlaps(lower, upper):
                return _skip(
                    f"overlap: candidate [{lower}, {upper}] overlaps {position.id} "
                    f"[{position.lower}, {position.upper}]"
                ), None

        size = policy.base_position_usd or state.max_usd_per_position
        if volatility.regime == "high":
            size *= policy.high_volatility_size_factor
        elif volatility.regime == "medium":
            size *= policy.medium_volatility_size_factor
        remaining_slots = state.max_positions - len(active)
        if remaining_slots <= policy.few_slots_threshold:
            size *= policy.few_slots_size_factor
        amount = min(size, available, state.max_usd_per_position)
        if amount < policy.min_ticket_usd:
            return _skip(
                f"size_below_min_ticket: {amount:.2f} < {policy.min_ticket_usd:.2f}"
            ), None

        amounts = liquidity_for_deposit(
            amount_usd=amount,
            price=price,
            tick_lower=lower,
            tick_upper=upper,
            token0_decimals=snapshot.token0_decimals,
            token1_decimals=snapshot.token1_decimals,
        )
        try:
            position = open_position(
                state,
                lower=lower,
                upper=upper,
                tick_spacing=snapshot.tick_spacing,
                entry_tick=snapshot.tick,
                entry_price=price,
                amount_usd=amount,
                amounts=amounts,
                now=snapshot.timestamp,
                transaction_cost_usd=policy.transaction_cost_usd,
            )
        except (CapitalExceededError, InvalidPositionError) as exc:
            logger.warning("evaluate_cycle: open_rejected amount=%s detail=%s", amount, exc)
            return _skip(f"rejected: {exc}"), None

        confidence = entry_confidence(trend, volatility)
        reason = (
            f"open: trend {trend.direction} ({trend.strength:.2f}), "
            f"volatility {volatility.regime}, confidence {confidence:.0%}"
        )
        logger.info(
            "evaluate_cycle: position_opened position_id=%s range=[%s, %s] amount=%s confidence=%s",
            position.id,
            lower,
            upper,
            amount,
            confidence,
        )
        metrics = PositionMetrics(
            distance=position_distance(snapshot.tick, position),
            fees_earned=0.0,
            current_value=amount,
            impermanent_loss_pct=0.0,
            total_return_pct=0.0,
        )
        record = _build_record(
            position,
            action=LifecycleAction.ADD,
            reason=reason,
            tick=snapshot.tick,
            price=price,
            metrics=metrics,
            now=snapshot.timestamp,
            confidence=confidence,
        )
        decision = OpenDecision(
            opened=True,
            reason=reason,
            amount_usd=amount,
            confidence=confidence,
            position_id=position.id,
        )
        return decision, record

    def _ensure_writable(self) -> None:
        if not self._halted:
            return
        try:
            self.flush()
        except PersistenceFailureError as exc:
            raise LedgerHaltedError(
                "Ledger store is not writable; evaluation halted."
            ) from exc
        logger.info("evaluate_cycle: resumed pending_records=%s", len(self._pending_records))

    def _commit(self, working: PortfolioState, records: list[LifecycleRecord]) -> None:
        try:
            self._write_with_retry(lambda: self._ledger_store.save(working), "ledger")
        except PersistenceFailureError:
            self._halted = True
            logger.error("evaluate_cycle: halted reason=ledger_write_failed")
            raise
        self._state = working
        self._pending_records.extend(records)
        try:
            self._flush_records()
        except PersistenceFailureError:
            self._halted = True
            logger.error(
                "evaluate_cycle: halted reason=record_write_failed pending_records=%s",
                len(self._pending_records),
            )
            raise

    def _flush_records(self) -> None:
        if not self._pending_records:
            return
        pending = list(self._pending_records)
        self._write_with_retry(lambda: self._record_port.append(pending), "records")
        self._pending_records.clear()

    def _write_with_retry(self, write: Callable[[], None], target: str) -> None:
        last_exc: PersistenceFailureError | None = None
        for attempt in range(1, WRITE_ATTEMPTS + 1):
            try:
                write()
                return
            except PersistenceFailureError as exc:
                last_exc = exc
                logger.warning(
                    "evaluate_cycle: write_failed target=%s attempt=%s/%s error=%s",
                    target,
                    attempt,
                    WRITE_ATTEMPTS,
                    exc,
                )
        raise PersistenceFailureError(f"{target} write failed after retry: {last_exc}") from last_exc


def _distance_within(tick: int, lower: int, upper: int) -> int:
    if tick < lower or tick > upper:
        return OUT_OF_RANGE
    return min(tick - lower, upper - tick)


def _skip(reason: str) -> OpenDecision:
    logger.info("evaluate_cycle: open_skipped reason=%s", reason)
    return OpenDecision(opened=False, reason=reason)


def _build_record(
    position: Position,
    *,
    action: LifecycleAction,
    reason: str,
    tick: int,
    price: float,
    metrics: PositionMetrics,
    now: datetime,
    confidence: float | None = None,
) -> LifecycleRecord:
    return LifecycleRecord(
        timestamp=now,
        position_id=position.id,
        action=action,
        reason=reason,
        tick=tick,
        price=price,
        lower=position.lower,
        upper=position.upper,
        distance=metrics.distance,
        entry_price=position.entry_price,
        amount_usd=position.amount_usd,
        current_value=metrics.current_value,
        fees_earned=metrics.fees_earned,
        impermanent_loss_pct=metrics.impermanent_loss_pct,
        total_return_pct=metrics.total_return_pct,
        time_held_minutes=int(round(position.hours_held(now) * 60)),
        rebalance_count=position.rebalance_count,
        confidence=confidence,
    )
