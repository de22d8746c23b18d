"""
Refresh scheduler for periodic re-evaluation.

State machine:

    IDLE ──trigger──► EVALUATING ──done──► IDLE     (auto-refresh on)
    DORMANT ─trigger─► EVALUATING ──done──► DORMANT (auto-refresh off)

Triggers that arrive while a cycle is EVALUATING are ignored rather than
queued, so at most one evaluation is ever in flight. Evaluation runs in a
worker thread so the event loop stays responsive, and on-demand callers get a
StaleDataError (with the last good snapshot) instead of waiting forever.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from riskwatch.core.config import SchedulerConfig, config
from riskwatch.core.exceptions import InvalidConfigurationError, StaleDataError

from .schema import HealthSnapshot

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    DORMANT = "dormant"


@dataclass
class SchedulerStats:
    cycles_completed: int = 0
    triggers_coalesced: int = 0
    timeouts: int = 0
    failures: int = 0
    last_run_at: Optional[datetime] = None


class RefreshScheduler:
    """
    Coalescing refresh scheduler around an engine's ``evaluate``.

    Usage:
        scheduler = RefreshScheduler(engine)
        await scheduler.start()
        snapshot = await scheduler.trigger()   # on demand
        scheduler.set_auto_refresh(False)      # only on-demand from now on
        await scheduler.stop()
    """

    def __init__(
        self,
        engine: Any,
        settings: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._engine = engine
        self._settings = settings or config.engine.scheduler
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._auto_refresh = self._settings.auto_refresh
        self._interval_ms = self._settings.interval_ms
        self._state = SchedulerState.IDLE if self._auto_refresh else SchedulerState.DORMANT

        self._inflight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._running = False

        self._last_snapshot: Optional[HealthSnapshot] = getattr(engine, "latest_snapshot", None)
        self._stats = SchedulerStats()

        logger.info(
            "RefreshScheduler initialized: auto_refresh=%s, interval=%dms, timeout=%dms",
            self._auto_refresh,
            self._interval_ms,
            self._settings.evaluation_timeout_ms,
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def auto_refresh(self) -> bool:
        return self._auto_refresh

    @property
    def interval_seconds(self) -> float:
        return self._interval_ms / 1000.0

    @property
    def last_snapshot(self) -> Optional[HealthSnapshot]:
        return self._last_snapshot

    def _resting_state(self) -> SchedulerState:
        return SchedulerState.IDLE if self._auto_refresh else SchedulerState.DORMANT

    def set_auto_refresh(self, enabled: bool, interval_ms: Optional[int] = None) -> None:
        """
        Enable or disable periodic evaluation, optionally changing the interval.

        Disabling moves the scheduler to DORMANT, from which only explicit
        ``trigger`` calls evaluate. Must be called from the event loop thread
        once the scheduler is started.
        """
        if interval_ms is not None:
            if interval_ms <= 0:
                raise InvalidConfigurationError(f"interval_ms must be positive, got {interval_ms}")
            self._interval_ms = int(interval_ms)

        self._auto_refresh = bool(enabled)
        if self._state != SchedulerState.EVALUATING:
            self._state = self._resting_state()

        if self._wake is not None:
            self._wake.set()

        logger.info(
            "Auto-refresh %s (interval=%dms)", "enabled" if enabled else "disabled", self._interval_ms
        )

    async def trigger(self, timeout: Optional[float] = None) -> Optional[HealthSnapshot]:
        """
        Request an evaluation now.

        Returns:
            The new snapshot, or None when a cycle was already in flight and
            this trigger was coalesced into it

        Raises:
            StaleDataError: If the cycle does not finish within ``timeout``
                seconds (default from config); the cycle keeps running and the
                scheduler stays EVALUATING until it completes
        """
        if self._state == SchedulerState.EVALUATING:
            self._stats.triggers_coalesced += 1
            logger.debug("Evaluation already in flight; trigger ignored")
            return None

        self._state = SchedulerState.EVALUATING
        task = asyncio.ensure_future(self._run_cycle())
        task.add_done_callback(self._consume_result)
        self._inflight = task
        return await self._await_cycle(task, timeout)

    async def join(self, timeout: Optional[float] = None) -> Optional[HealthSnapshot]:
        """
        Wait for the in-flight cycle, if any, without starting a new one.
        """
        task = self._inflight
        if task is None:
            return self._last_snapshot
        return await self._await_cycle(task, timeout)

    async def _await_cycle(
        self, task: "asyncio.Future[HealthSnapshot]", timeout: Optional[float]
    ) -> HealthSnapshot:
        if timeout is None:
            timeout = self._settings.evaluation_timeout_ms / 1000.0
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            self._stats.timeouts += 1
            logger.warning("Evaluation did not finish within %.3fs; serving last snapshot", timeout)
            raise StaleDataError(
                f"Evaluation did not finish within {timeout:.3f}s", self._last_snapshot
            ) from None

    async def _run_cycle(self) -> HealthSnapshot:
        try:
            snapshot = await asyncio.to_thread(self._engine.evaluate)
            self._last_snapshot = snapshot
            self._stats.cycles_completed += 1
            self._stats.last_run_at = self._clock()
            return snapshot
        except Exception as exc:
            self._stats.failures += 1
            logger.exception("Evaluation cycle failed: %s", exc)
            raise
        finally:
            self._inflight = None
            self._state = self._resting_state()

    @staticmethod
    def _consume_result(task: "asyncio.Future[HealthSnapshot]") -> None:
        # Failures are already logged in _run_cycle; retrieving the exception
        # keeps abandoned (timed-out) cycles from warning at garbage collection.
        if not task.cancelled():
            task.exception()

    def current_snapshot(self) -> HealthSnapshot:
        """
        Latest snapshot, provided it is fresh.

        Raises:
            StaleDataError: If no snapshot exists yet or the latest one is
                older than ``stale_factor`` times the refresh interval
        """
        snapshot = self._last_snapshot
        if snapshot is None:
            raise StaleDataError("No snapshot has been generated yet", None)

        age = (self._clock() - snapshot.generated_at).total_seconds()
        max_age = self._settings.stale_factor * self.interval_seconds
        if age > max_age:
            raise StaleDataError(
                f"Latest snapshot is {age:.1f}s old (limit {max_age:.1f}s)", snapshot
            )
        return snapshot

    async def start(self, evaluate_now: bool = True) -> None:
        """Start the periodic loop in the background."""
        if self._running:
            return

        self._running = True
        self._wake = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info("RefreshScheduler started")

        if evaluate_now:
            try:
                await self.trigger()
            except StaleDataError as exc:
                logger.warning("Initial evaluation timed out: %s", exc)

    async def stop(self) -> None:
        """Stop the periodic loop and wait for any in-flight cycle."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        inflight = self._inflight
        if inflight is not None:
            try:
                await inflight
            except Exception as exc:
                logger.warning("In-flight cycle failed during shutdown: %s", exc)
        logger.info("RefreshScheduler stopped")

    async def _sleep_interval(self) -> bool:
        """Sleep one interval; returns True when woken early by a settings change."""
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run_loop(self) -> None:
        while self._running:
            try:
                woken = await self._sleep_interval()
                if woken or not self._auto_refresh:
                    continue
                await self.trigger()
            except asyncio.CancelledError:
                break
            except StaleDataError as exc:
                logger.warning("Scheduled evaluation is stale: %s", exc)
            except Exception as exc:
                logger.exception("Scheduled evaluation failed: %s", exc)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "running": self._running,
            "auto_refresh": self._auto_refresh,
            "interval_ms": self._interval_ms,
            "cycles_completed": self._stats.cycles_completed,
            "triggers_coalesced": self._stats.triggers_coalesced,
            "timeouts": self._stats.timeouts,
            "failures": self._stats.failures,
            "last_run_at": self._stats.last_run_at.isoformat() if self._stats.last_run_at else None,
        }
