"""Monitoring scheduler — periodic concurrent check rounds and shutdown.

One baseline round gates everything: if any target is down before we
start, there is no downtime to measure and the run is refused. After
that, rounds fire on a fixed-start schedule (tick k is due at
``start + k * interval``), one check per target per round, with at most
one round in flight. A stop event ends the run; an in-flight round is
allowed to finish (each check is timeout bounded) and its outcomes count.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from downtime_bench.health.engine import CheckOutcome, Clock, execute_check, utcnow
from downtime_bench.health.report import Report, build_report
from downtime_bench.health.tracker import FailureTracker
from downtime_bench.targets.registry import ConfigurationError, Target

logger = logging.getLogger(__name__)

Checker = Callable[[Target, float], Awaitable[CheckOutcome]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class BaselineCheckError(Exception):
    """Raised when one or more targets are down before monitoring starts."""

    def __init__(
        self,
        failed: list[tuple[Target, CheckOutcome]],
        outcomes: list[CheckOutcome] | None = None,
    ) -> None:
        self.failed = failed
        self.outcomes = outcomes or [o for _, o in failed]
        names = ", ".join(f"{t.name} ({t.kind.value})" for t, _ in failed)
        super().__init__(f"{len(failed)} target(s) failed the initial health check: {names}")


class MonitorScheduler:
    """Drives check rounds for a fixed target list and builds the final report.

    Lifecycle:
        scheduler = MonitorScheduler(targets, check_interval=1, check_timeout=5)
        stop = asyncio.Event()
        report = await scheduler.run(stop)   # set `stop` to finish
    """

    def __init__(
        self,
        targets: Sequence[Target],
        check_interval: float,
        check_timeout: float,
        checker: Checker | None = None,
        clock: Clock = utcnow,
        on_round: Callable[[int, list[CheckOutcome]], Any] | None = None,
    ) -> None:
        _validate_engine_input(targets, check_interval, check_timeout)
        self.targets = list(targets)
        self.check_interval = float(check_interval)
        self.check_timeout = float(check_timeout)
        self.on_round = on_round  # status display callback
        self._clock = clock
        self._checker: Checker = checker or (
            lambda target, timeout: execute_check(target, timeout, clock=self._clock)
        )
        self.trackers = [FailureTracker(t) for t in self.targets]
        self.state = SchedulerState.IDLE
        self.rounds_completed = 0
        self.shutdown_at: datetime | None = None

    # -- public API ------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> Report:
        """Baseline check, then monitor until ``stop_event`` is set."""
        await self.verify_baseline()
        return await self.monitor(stop_event)

    async def verify_baseline(self) -> list[CheckOutcome]:
        """Check every target once. Raises BaselineCheckError if any is down."""
        outcomes = list(
            await asyncio.gather(*(self._checker(t, self.check_timeout) for t in self.targets))
        )
        failed = [(t, o) for t, o in zip(self.targets, outcomes) if not o.healthy]
        if failed:
            for t, o in failed:
                logger.error("Initial check failed for %s (%s): %s", t.name, t.kind.value, o.message)
            raise BaselineCheckError(failed, outcomes)
        logger.info("Initial check passed for all %d targets", len(self.targets))
        return outcomes

    async def monitor(self, stop_event: asyncio.Event) -> Report:
        """Run rounds until ``stop_event`` is set, then finalize and report."""
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler already used (state={self.state.value})")

        loop = asyncio.get_running_loop()
        self.state = SchedulerState.RUNNING
        start = loop.time()
        tick = 1
        logger.info(
            "Monitoring %d targets (interval=%ss, timeout=%ss)",
            len(self.targets), self.check_interval, self.check_timeout,
        )

        while not stop_event.is_set():
            delay = start + tick * self.check_interval - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass

            await self._round_until_done(stop_event)
            if stop_event.is_set():
                break

            # Re-anchor: an overrun round gets one immediate follow-up,
            # slots missed in between are dropped
            elapsed = loop.time() - start
            tick = max(tick + 1, int(elapsed // self.check_interval))

        return self._finish()

    # -- internals -------------------------------------------------------------

    async def _round_until_done(self, stop_event: asyncio.Event) -> None:
        round_task = asyncio.create_task(self._run_round(), name=f"round-{self.rounds_completed + 1}")
        stop_task = asyncio.create_task(stop_event.wait(), name="stop-watch")
        try:
            done, _ = await asyncio.wait({round_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if round_task not in done:
                self._begin_shutdown()
                logger.info("Waiting for in-flight checks to finish (max %ss)", self.check_timeout)
            await round_task
        finally:
            stop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stop_task

    async def _run_round(self) -> list[CheckOutcome]:
        """One concurrent check per target; outcomes applied as they complete."""

        async def check_and_apply(tracker: FailureTracker) -> CheckOutcome:
            outcome = await self._checker(tracker.target, self.check_timeout)
            tracker.observe(outcome)
            return outcome

        outcomes = list(await asyncio.gather(*(check_and_apply(t) for t in self.trackers)))
        self.rounds_completed += 1

        if self.on_round:
            try:
                self.on_round(self.rounds_completed, outcomes)
            except Exception:
                logger.exception("Round callback error")

        return outcomes

    def _begin_shutdown(self) -> None:
        if self.state is SchedulerState.RUNNING:
            self.state = SchedulerState.SHUTTING_DOWN
            logger.info("Shutdown requested")

    def _finish(self) -> Report:
        self._begin_shutdown()
        self.shutdown_at = self._clock()
        for tracker in self.trackers:
            tracker.close_if_open(self.shutdown_at)
        self.state = SchedulerState.STOPPED
        logger.info("Monitoring stopped after %d rounds", self.rounds_completed)
        return build_report([t.state for t in self.trackers], self.shutdown_at)


def _validate_engine_input(
    targets: Sequence[Target], check_interval: float, check_timeout: float,
) -> None:
    if not targets:
        raise ConfigurationError("At least one target is required")
    seen: set[str] = set()
    for t in targets:
        if not isinstance(t, Target):
            raise ConfigurationError(f"Expected a Target, got {type(t).__name__}")
        if t.name in seen:
            raise ConfigurationError(f"Duplicate target name '{t.name}'")
        seen.add(t.name)
    if check_interval <= 0:
        raise ConfigurationError("check_interval must be > 0")
    if check_timeout <= 0:
        raise ConfigurationError("check_timeout must be > 0")
