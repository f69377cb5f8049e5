"""
Route Scoring - Scheduler.

============================================================
PURPOSE
============================================================
Drives aggregation passes on a fixed interval.

    STOPPED --start()--> RUNNING --stop()--> STOPPED

- start() runs one pass immediately, then one per interval
- stop() prevents future passes and drains the in-flight one;
  a dispatched write is never cancelled
- Any exception inside a pass is logged with its stack trace and
  counted; the scheduler stays RUNNING and retries next tick

The scheduler is an explicit object owned by the application
lifespan; there is no module-level instance.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .clock import ClockProtocol, SystemClock
from .config import SchedulerConfig
from .engine import ScoringEngine
from .exceptions import SchedulerFault
from .types import PassResult, SchedulerState, SerializableMixin


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerStatus(SerializableMixin):
    state: SchedulerState
    interval_seconds: float
    passes_started: int
    passes_completed: int
    passes_failed: int
    pass_in_progress: bool
    last_pass_at: Optional[datetime]
    last_result: Optional[PassResult]
    last_error: Optional[str]


class ScoringScheduler:
    """Periodic driver for ScoringEngine.run_pass()."""

    def __init__(
        self,
        engine: ScoringEngine,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._engine = engine
        self._config = config or SchedulerConfig()
        self._clock = clock or SystemClock()

        self._state = SchedulerState.STOPPED
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        self._passes_started = 0
        self._passes_completed = 0
        self._passes_failed = 0
        self._last_pass_at: Optional[datetime] = None
        self._last_result: Optional[PassResult] = None
        self._last_error: Optional[str] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def start(self) -> None:
        """Start the pass loop. No-op when already running."""
        if self._state == SchedulerState.RUNNING:
            return

        self._state = SchedulerState.RUNNING
        # One event per loop; a restart during a drain gets a fresh one
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(self._stop_event))
        logger.info(f"Scoring scheduler started (interval={self._config.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop scheduling and wait for the in-flight pass to finish."""
        if self._state == SchedulerState.STOPPED:
            return

        self._state = SchedulerState.STOPPED
        task, stop_event = self._task, self._stop_event
        self._task = None
        self._stop_event = None
        if stop_event is not None:
            stop_event.set()
        if task is not None:
            await task
        logger.info("Scoring scheduler stopped")

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        if self._config.run_on_start:
            await self._execute_pass()

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._config.interval_seconds)
            except asyncio.TimeoutError:
                await self._execute_pass()

    # =========================================================
    # PASSES
    # =========================================================

    async def trigger_pass(self) -> PassResult:
        """
        Run a manual pass, serialised with scheduled passes.

        Raises:
            SchedulerFault: If the pass fails
        """
        return await self._execute_pass(raise_on_fault=True)

    async def _execute_pass(self, raise_on_fault: bool = False) -> Optional[PassResult]:
        self._passes_started += 1
        pass_number = self._passes_started
        try:
            result = await self._engine.run_pass()
        except Exception as e:
            fault = SchedulerFault(pass_number, e)
            self._passes_failed += 1
            self._last_pass_at = self._clock.now()
            self._last_error = fault.message
            logger.exception(f"Scoring pass #{pass_number} failed; retrying next tick")
            if raise_on_fault:
                raise fault from e
            return None

        self._passes_completed += 1
        self._last_pass_at = result.finished_at or self._clock.now()
        self._last_result = result
        self._last_error = None
        return result

    # =========================================================
    # DIAGNOSTICS
    # =========================================================

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            state=self._state,
            interval_seconds=self._config.interval_seconds,
            passes_started=self._passes_started,
            passes_completed=self._passes_completed,
            passes_failed=self._passes_failed,
            pass_in_progress=self._engine.is_pass_running,
            last_pass_at=self._last_pass_at,
            last_result=self._last_result,
            last_error=self._last_error,
        )
