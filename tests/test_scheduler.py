"""Tests for the monitoring scheduler — baseline gating, rounds, shutdown."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from downtime_bench.health.engine import CHECK_RUNNERS, CheckOutcome
from downtime_bench.health.report import Report
from downtime_bench.health.scheduler import (
    BaselineCheckError,
    MonitorScheduler,
    SchedulerState,
)
from downtime_bench.targets.registry import ConfigurationError, Target, TargetKind

from conftest import T0


class ScriptedChecker:
    """Fake checker: per-target list of outcomes, index 0 is the baseline.

    The last entry repeats once a script runs out. Records call counts,
    per-target concurrency and (start, end) spans on the loop clock.
    """

    def __init__(
        self,
        scripts: dict[str, list[bool]],
        clock: Callable[[], datetime],
        delay: float = 0.0,
        on_call: Callable[[str, int], None] | None = None,
    ) -> None:
        self.scripts = scripts
        self.clock = clock
        self.delay = delay
        self.on_call = on_call
        self.calls: dict[str, int] = defaultdict(int)
        self.in_flight: dict[str, int] = defaultdict(int)
        self.max_in_flight: dict[str, int] = defaultdict(int)
        self.spans: list[tuple[str, float, float]] = []

    async def __call__(self, target: Target, timeout: float) -> CheckOutcome:
        loop = asyncio.get_running_loop()
        n = self.calls[target.name]
        self.calls[target.name] += 1
        script = self.scripts.get(target.name, [True])
        healthy = script[n] if n < len(script) else script[-1]

        self.in_flight[target.name] += 1
        self.max_in_flight[target.name] = max(self.max_in_flight[target.name], self.in_flight[target.name])
        started = loop.time()
        if self.on_call:
            self.on_call(target.name, n)
        await asyncio.sleep(self.delay)
        self.in_flight[target.name] -= 1
        self.spans.append((target.name, started, loop.time()))

        return CheckOutcome(target=target.name, healthy=healthy, observed_at=self.clock())


@pytest.fixture
def targets() -> list[Target]:
    return [
        Target(name="api", kind=TargetKind.HTTP, url="http://localhost:8008/health"),
        Target(name="db", kind=TargetKind.TCP, host="127.0.0.1", port=5432),
    ]


def _run(scheduler: MonitorScheduler, stop_after: int) -> Report:
    """Run baseline + monitoring, stopping once ``stop_after`` rounds completed."""

    async def go() -> Report:
        stop = asyncio.Event()
        user_cb = scheduler.on_round

        def on_round(n: int, outcomes: list[CheckOutcome]) -> None:
            if n >= stop_after:
                stop.set()
            if user_cb:
                user_cb(n, outcomes)

        scheduler.on_round = on_round
        return await scheduler.run(stop)

    return asyncio.run(go())


# ── Construction ─────────────────────────────────────────────────────────────


class TestValidation:
    def test_requires_targets(self) -> None:
        with pytest.raises(ConfigurationError, match="At least one target"):
            MonitorScheduler([], check_interval=1, check_timeout=1)

    def test_rejects_duplicate_names(self, targets: list[Target]) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate target name 'api'"):
            MonitorScheduler([targets[0], targets[0]], check_interval=1, check_timeout=1)

    def test_rejects_non_targets(self) -> None:
        with pytest.raises(ConfigurationError, match="Expected a Target"):
            MonitorScheduler([{"name": "api"}], check_interval=1, check_timeout=1)  # type: ignore[list-item]

    @pytest.mark.parametrize("interval,timeout", [(0, 1), (-1, 1), (1, 0)])
    def test_rejects_non_positive_durations(self, targets: list[Target], interval: float, timeout: float) -> None:
        with pytest.raises(ConfigurationError):
            MonitorScheduler(targets, check_interval=interval, check_timeout=timeout)

    def test_timeout_may_exceed_interval(self, targets: list[Target]) -> None:
        s = MonitorScheduler(targets, check_interval=1, check_timeout=5)
        assert s.state is SchedulerState.IDLE


# ── Baseline ─────────────────────────────────────────────────────────────────


class TestBaseline:
    def test_baseline_failure_gates_monitoring(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({"api": [False], "db": [True]}, fake_clock)
        scheduler = MonitorScheduler(targets, 0.01, 0.01, checker=checker, clock=fake_clock)

        with pytest.raises(BaselineCheckError) as exc:
            _run(scheduler, stop_after=1)

        assert [t.name for t, _ in exc.value.failed] == ["api"]
        assert "api (http)" in str(exc.value)
        assert {o.target for o in exc.value.outcomes} == {"api", "db"}
        assert scheduler.rounds_completed == 0
        assert scheduler.state is SchedulerState.IDLE
        assert dict(checker.calls) == {"api": 1, "db": 1}

    def test_baseline_does_not_touch_trackers(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({}, fake_clock)
        scheduler = MonitorScheduler(targets, 0.01, 0.01, checker=checker, clock=fake_clock)
        outcomes = asyncio.run(scheduler.verify_baseline())
        assert [o.target for o in outcomes] == ["api", "db"]
        assert all(o.healthy for o in outcomes)
        assert all(t.state.windows == [] for t in scheduler.trackers)


# ── Monitoring rounds ────────────────────────────────────────────────────────


class TestMonitoring:
    def test_all_healthy_produces_empty_report(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({}, fake_clock)
        scheduler = MonitorScheduler(targets, 0.01, 0.01, checker=checker, clock=fake_clock)

        report = _run(scheduler, stop_after=3)

        assert report.is_empty
        assert scheduler.rounds_completed == 3
        assert scheduler.state is SchedulerState.STOPPED
        assert dict(checker.calls) == {"api": 4, "db": 4}  # baseline + 3 rounds

    def test_failure_window_recorded(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({"api": [True, False, False, True], "db": [True]}, fake_clock)
        scheduler = MonitorScheduler(targets, 0.01, 0.01, checker=checker, clock=fake_clock)

        report = _run(scheduler, stop_after=4)

        assert [t.name for t in report.targets] == ["api"]
        entry = report.targets[0]
        assert entry.failure_count == 1
        assert entry.windows[0].incomplete is False
        assert entry.total_downtime > timedelta(0)

    def test_open_window_closed_at_shutdown(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({"db": [True, False]}, fake_clock)
        scheduler = MonitorScheduler(targets, 0.01, 0.01, checker=checker, clock=fake_clock)

        report = _run(scheduler, stop_after=2)

        w = report.targets[0].windows[0]
        assert report.targets[0].name == "db"
        assert w.incomplete is True
        assert w.ended_at == scheduler.shutdown_at == report.shutdown_at
        assert not scheduler.trackers[1].is_failing

    def test_round_callback_errors_are_contained(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({}, fake_clock)
        seen: list[int] = []

        def broken(n: int, outcomes: list[CheckOutcome]) -> None:
            seen.append(n)
            raise RuntimeError("display exploded")

        scheduler = MonitorScheduler(targets, 0.01, 0.01, checker=checker, clock=fake_clock, on_round=broken)
        report = _run(scheduler, stop_after=2)
        assert scheduler.rounds_completed == 2
        assert seen == [1, 2]
        assert report.is_empty

    def test_stop_before_first_tick(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({}, fake_clock)
        scheduler = MonitorScheduler(targets, 10, 1, checker=checker, clock=fake_clock)

        async def go() -> Report:
            stop = asyncio.Event()
            stop.set()
            return await scheduler.monitor(stop)

        report = asyncio.run(go())
        assert report.is_empty
        assert scheduler.rounds_completed == 0
        assert scheduler.state is SchedulerState.STOPPED

    def test_scheduler_is_single_use(self, targets: list[Target], fake_clock) -> None:
        scheduler = MonitorScheduler(targets, 10, 1, checker=ScriptedChecker({}, fake_clock), clock=fake_clock)

        async def go() -> None:
            stop = asyncio.Event()
            stop.set()
            await scheduler.monitor(stop)
            await scheduler.monitor(stop)

        with pytest.raises(RuntimeError, match="already used"):
            asyncio.run(go())

    def test_default_checker_uses_engine_and_clock(self, targets: list[Target], fake_clock) -> None:
        async def up(target: Target, timeout: float) -> tuple[bool, str]:
            return True, "ok"

        with patch.dict(CHECK_RUNNERS, {TargetKind.HTTP: up, TargetKind.TCP: up}):
            scheduler = MonitorScheduler(targets, 0.01, 0.5, clock=fake_clock)
            outcomes = asyncio.run(scheduler.verify_baseline())

        assert [o.observed_at for o in outcomes] == [T0, T0 + timedelta(seconds=1)]


# ── Shutdown handshake ───────────────────────────────────────────────────────


class TestShutdown:
    def test_in_flight_round_finishes_and_counts(self, targets: list[Target], fake_clock) -> None:
        states_seen: list[SchedulerState] = []

        async def go() -> tuple[Report, ScriptedChecker, MonitorScheduler]:
            stop = asyncio.Event()

            def on_call(name: str, n: int) -> None:
                # first monitored check of "db": request shutdown mid-round
                if name == "db" and n == 1:
                    stop.set()

            checker = ScriptedChecker({"db": [True, False]}, fake_clock, delay=0.05, on_call=on_call)
            scheduler = MonitorScheduler(
                targets, 0.01, 1.0, checker=checker, clock=fake_clock,
                on_round=lambda n, _: states_seen.append(scheduler.state),
            )
            return await scheduler.run(stop), checker, scheduler

        report, checker, scheduler = asyncio.run(go())

        assert states_seen == [SchedulerState.SHUTTING_DOWN]
        assert scheduler.rounds_completed == 1
        assert dict(checker.calls) == {"api": 2, "db": 2}  # no round after the stop
        assert scheduler.state is SchedulerState.STOPPED
        # the in-flight failure was applied, then closed at shutdown
        assert [t.name for t in report.targets] == ["db"]
        assert report.targets[0].windows[0].incomplete is True

    def test_round_leaves_no_pending_tasks(self, targets: list[Target], fake_clock) -> None:
        checker = ScriptedChecker({}, fake_clock)
        scheduler = MonitorScheduler(targets, 0.01, 0.01, checker=checker, clock=fake_clock)

        async def go() -> set[asyncio.Task]:
            await scheduler._round_until_done(asyncio.Event())
            return asyncio.all_tasks() - {asyncio.current_task()}

        assert asyncio.run(go()) == set()
        assert scheduler.rounds_completed == 1


# ── Cadence ──────────────────────────────────────────────────────────────────


class TestCadence:
    def test_rounds_never_overlap_when_checks_overrun(self, targets: list[Target], fake_clock) -> None:
        # timeout 0.05, checks take 0.07, interval 0.02 (every round overruns)
        checker = ScriptedChecker({}, fake_clock, delay=0.07)
        scheduler = MonitorScheduler(targets, 0.02, 0.05, checker=checker, clock=fake_clock)

        _run(scheduler, stop_after=4)

        assert max(checker.max_in_flight.values()) == 1
        api_spans = sorted((s, e) for name, s, e in checker.spans if name == "api")
        assert len(api_spans) == 5
        for (_, prev_end), (next_start, _) in zip(api_spans, api_spans[1:]):
            assert next_start >= prev_end
        # overdue rounds start right away instead of waiting another period
        for (_, prev_end), (next_start, _) in zip(api_spans[1:], api_spans[2:]):
            assert next_start - prev_end < 0.02

    def test_ticks_anchored_to_start(self, targets: list[Target], fake_clock) -> None:
        # 0.03s checks inside a 0.06s period: fixed-gap scheduling would
        # space round starts ~0.09s apart, fixed-start keeps them at ~0.06s
        checker = ScriptedChecker({}, fake_clock, delay=0.03)
        scheduler = MonitorScheduler(targets, 0.06, 0.05, checker=checker, clock=fake_clock)

        _run(scheduler, stop_after=5)

        starts = sorted(s for name, s, _ in checker.spans if name == "api")[1:]  # skip baseline
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert len(gaps) == 4
        assert sum(gaps) / len(gaps) < 0.08
        assert min(gaps) > 0.03

    def test_outcome_stamped_at_completion(self, targets: list[Target]) -> None:
        issued: list[float] = []
        calls = 0

        async def slow_fail(target: Target, timeout: float) -> tuple[bool, str]:
            nonlocal calls
            calls += 1
            if calls == 1:
                return True, "ok"  # baseline
            issued.append(time.monotonic())
            await asyncio.sleep(0.07)
            return False, "Timed out after 0.05s"

        def mono_clock() -> datetime:
            return T0 + timedelta(seconds=time.monotonic())

        single = [targets[1]]
        with patch.dict(CHECK_RUNNERS, {TargetKind.TCP: slow_fail}):
            scheduler = MonitorScheduler(single, 0.02, 0.05, clock=mono_clock)
            report = _run(scheduler, stop_after=1)

        started_at = report.targets[0].windows[0].started_at
        assert started_at >= T0 + timedelta(seconds=issued[0] + 0.065)
