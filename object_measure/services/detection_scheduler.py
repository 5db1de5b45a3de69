"""Scheduling policies for the capture/detect/render cycle.

Three policies share one interface:

* ``IntervalScheduler``: wall-clock timer; a tick is dropped while the
  previous cycle is still running.
* ``ContinuousScheduler``: the next cycle is chained after the current one
  completes, paced at the display refresh rate.
* ``SingleShotScheduler``: one cycle per explicit ``trigger``; never re-arms.

Every ``start`` issues a fresh ``LivenessToken`` and cancels the previous
one. A cycle must check ``token.alive`` after each await and drop its result
when the token is dead.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..core.constants import DEFAULT_INTERVAL_MS, DEFAULT_REFRESH_RATE_HZ
from ..core.entities import CycleResult
from ..core.exceptions import DetectionCycleError, DetectionError

logger = logging.getLogger(__name__)


class SchedulePolicy(str, Enum):
    INTERVAL = "interval"
    CONTINUOUS = "continuous"
    SINGLE_SHOT = "single_shot"

    @property
    def is_continuous(self) -> bool:
        return self is not SchedulePolicy.SINGLE_SHOT


class LivenessToken:
    """Cancellation marker checked before applying an asynchronous result."""

    __slots__ = ("generation", "_alive")

    def __init__(self, generation: int):
        self.generation = generation
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def cancel(self) -> None:
        self._alive = False

    def __repr__(self) -> str:
        return f"LivenessToken(generation={self.generation}, alive={self._alive})"


Cycle = Callable[[LivenessToken], Awaitable[CycleResult]]
ErrorHandler = Callable[[DetectionCycleError], None]


class DetectionScheduler(ABC):
    """Base class: owns the schedule handle, the liveness token and cycle stats."""

    policy: SchedulePolicy

    def __init__(self, on_error: Optional[ErrorHandler] = None):
        self.on_error = on_error
        self._generation = 0
        self._token: Optional[LivenessToken] = None
        self._handle: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None

        self._cycles_started = 0
        self._cycles_completed = 0
        self._cycles_skipped = 0
        self._in_flight = 0
        self._max_in_flight = 0

    def start(self, cycle: Cycle) -> LivenessToken:
        """Start (or restart) the schedule. Any previous schedule is cancelled first."""
        self.stop()
        self._generation += 1
        token = LivenessToken(self._generation)
        self._token = token
        self._handle = self._arm(cycle, token)
        if self._handle is not None:
            self._handle.add_done_callback(self._log_task_failure)
        logger.info(f"{self.policy.value} scheduler started (generation {token.generation})")
        return token

    @abstractmethod
    def _arm(self, cycle: Cycle, token: LivenessToken) -> Optional[asyncio.Task]:
        """Create the schedule handle for a new token."""

    def stop(self) -> None:
        """Cancel the schedule. No cycle result is applied after this returns."""
        token = self._token
        if token is not None:
            token.cancel()
        for task in (self._handle, self._cycle_task):
            if task is not None and not task.done():
                task.cancel()
        was_running = token is not None
        self._token = None
        self._handle = None
        self._cycle_task = None
        if was_running:
            logger.info(f"{self.policy.value} scheduler stopped (generation {token.generation})")

    async def _run_cycle(self, cycle: Cycle, token: LivenessToken) -> Optional[CycleResult]:
        """Run one cycle; a DetectionCycleError is reported, never raised."""
        if not token.alive:
            return None

        self._cycles_started += 1
        self._in_flight += 1
        self._max_in_flight = max(self._max_in_flight, self._in_flight)
        try:
            result = await cycle(token)
        except DetectionCycleError as e:
            if token.alive:
                logger.warning(f"Detection cycle failed: {e}")
                if self.on_error is not None:
                    self.on_error(e)
            return None
        finally:
            self._in_flight -= 1

        if token.alive:
            self._cycles_completed += 1
        return result

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self.policy.value} scheduler task failed: {exc!r}", exc_info=exc)

    @property
    def is_running(self) -> bool:
        return self._token is not None and self._token.alive

    @property
    def token(self) -> Optional[LivenessToken]:
        return self._token

    @property
    def live_handles(self) -> int:
        """Number of live schedule handles; never more than one."""
        return int(self._handle is not None and not self._handle.done())

    @property
    def cycles_started(self) -> int:
        return self._cycles_started

    @property
    def cycles_completed(self) -> int:
        return self._cycles_completed

    @property
    def cycles_skipped(self) -> int:
        return self._cycles_skipped

    @property
    def max_concurrent_cycles(self) -> int:
        return self._max_in_flight


class IntervalScheduler(DetectionScheduler):
    """Runs a cycle every ``interval_ms``, dropping ticks while a cycle is busy."""

    policy = SchedulePolicy.INTERVAL

    def __init__(self, interval_ms: int = DEFAULT_INTERVAL_MS, on_error: Optional[ErrorHandler] = None):
        super().__init__(on_error)
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.interval_ms = interval_ms

    def _arm(self, cycle: Cycle, token: LivenessToken) -> asyncio.Task:
        return asyncio.create_task(self._tick_loop(cycle, token), name=f"interval-{token.generation}")

    async def _tick_loop(self, cycle: Cycle, token: LivenessToken) -> None:
        loop = asyncio.get_running_loop()
        period = self.interval_ms / 1000.0
        next_tick = loop.time()

        while token.alive:
            if self._cycle_task is not None and not self._cycle_task.done():
                self._cycles_skipped += 1
                logger.debug("Previous cycle still running, dropping tick")
            else:
                self._cycle_task = asyncio.create_task(self._run_cycle(cycle, token))
                self._cycle_task.add_done_callback(self._log_task_failure)

            next_tick += period
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind; resynchronize instead of firing a burst of ticks
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)


class ContinuousScheduler(DetectionScheduler):
    """Chains cycles back to back, at most one per display refresh."""

    policy = SchedulePolicy.CONTINUOUS

    def __init__(self, refresh_rate_hz: int = DEFAULT_REFRESH_RATE_HZ, on_error: Optional[ErrorHandler] = None):
        super().__init__(on_error)
        if refresh_rate_hz <= 0:
            raise ValueError("refresh_rate_hz must be positive")
        self.refresh_rate_hz = refresh_rate_hz

    def _arm(self, cycle: Cycle, token: LivenessToken) -> asyncio.Task:
        return asyncio.create_task(self._chain_loop(cycle, token), name=f"continuous-{token.generation}")

    async def _chain_loop(self, cycle: Cycle, token: LivenessToken) -> None:
        loop = asyncio.get_running_loop()
        frame_period = 1.0 / self.refresh_rate_hz

        while token.alive:
            started = loop.time()
            await self._run_cycle(cycle, token)
            # Wait for the next refresh slot; always yield at least once
            await asyncio.sleep(max(0.0, frame_period - (loop.time() - started)))


class SingleShotScheduler(DetectionScheduler):
    """Runs exactly one cycle per ``trigger`` and then goes idle."""

    policy = SchedulePolicy.SINGLE_SHOT

    def __init__(self, on_error: Optional[ErrorHandler] = None):
        super().__init__(on_error)
        self._cycle: Optional[Cycle] = None

    def _arm(self, cycle: Cycle, token: LivenessToken) -> None:
        self._cycle = cycle
        return None

    def stop(self) -> None:
        super().stop()
        self._cycle = None

    @property
    def is_armed(self) -> bool:
        return self._cycle is not None and self.is_running

    async def trigger(self) -> Optional[CycleResult]:
        """Execute the armed cycle once.

        Returns:
            The cycle result, or None when the cycle failed or was cancelled by ``stop``

        Raises:
            DetectionError: If the scheduler is not armed
        """
        if not self.is_armed:
            raise DetectionError("Single-shot scheduler is not armed")

        cycle, token = self._cycle, self._token
        task = asyncio.create_task(self._run_cycle(cycle, token), name=f"single-shot-{token.generation}")
        self._handle = task
        await asyncio.wait({task})

        # Terminal: the result has been applied by the cycle; go idle without re-arming
        if self._token is token:
            token.cancel()
            self._token = None
            self._cycle = None
            self._handle = None
            logger.info(f"single_shot cycle finished (generation {token.generation})")

        if task.cancelled():
            return None
        return task.result()


def create_scheduler(policy, config=None, on_error: Optional[ErrorHandler] = None) -> DetectionScheduler:
    """Build the scheduler for a policy name or ``SchedulePolicy`` value."""
    policy = SchedulePolicy(policy)
    get = config.get if config is not None else (lambda key, default=None: default)

    if policy is SchedulePolicy.INTERVAL:
        return IntervalScheduler(interval_ms=get("interval_ms", DEFAULT_INTERVAL_MS), on_error=on_error)
    if policy is SchedulePolicy.CONTINUOUS:
        return ContinuousScheduler(refresh_rate_hz=get("refresh_rate_hz", DEFAULT_REFRESH_RATE_HZ), on_error=on_error)
    return SingleShotScheduler(on_error=on_error)
