"""Downtime report — a sorted, totalled snapshot of all failure windows."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from downtime_bench.health.tracker import TargetState
from downtime_bench.targets.registry import TargetKind

NO_FAILURES = "no failures observed"


@dataclass(frozen=True)
class WindowReport:
    started_at: datetime
    ended_at: datetime
    duration: timedelta
    incomplete: bool = False


@dataclass(frozen=True)
class TargetReport:
    name: str
    kind: TargetKind
    windows: tuple[WindowReport, ...]
    total_downtime: timedelta

    @property
    def first_failure_at(self) -> datetime:
        return self.windows[0].started_at

    @property
    def failure_count(self) -> int:
        return len(self.windows)


@dataclass(frozen=True)
class Report:
    shutdown_at: datetime
    targets: tuple[TargetReport, ...] = field(default_factory=tuple)
    total_downtime: timedelta = timedelta(0)
    first_failure_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.targets

    @property
    def header(self) -> str:
        if self.first_failure_at is None:
            return NO_FAILURES
        return self.first_failure_at.isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "shutdown_at": self.shutdown_at.isoformat(),
            "first_failure_at": self.first_failure_at.isoformat() if self.first_failure_at else None,
            "total_downtime_seconds": self.total_downtime.total_seconds(),
            "targets": [
                {
                    "name": t.name,
                    "type": t.kind.value,
                    "failure_count": t.failure_count,
                    "total_downtime_seconds": t.total_downtime.total_seconds(),
                    "windows": [
                        {
                            "started_at": w.started_at.isoformat(),
                            "ended_at": w.ended_at.isoformat(),
                            "duration_seconds": w.duration.total_seconds(),
                            "incomplete": w.incomplete,
                        }
                        for w in t.windows
                    ],
                }
                for t in self.targets
            ],
        }


def build_report(states: Iterable[TargetState], shutdown_time: datetime) -> Report:
    """Aggregate finalized target states into a Report.

    Only targets with at least one window are listed, ordered by their
    first failure (ties by name). A window still open is measured up to
    ``shutdown_time`` and reported as incomplete.
    """
    entries: list[TargetReport] = []

    for state in states:
        if not state.windows:
            continue

        windows = []
        for w in state.windows:
            end = w.ended_at if w.ended_at is not None else shutdown_time
            windows.append(
                WindowReport(
                    started_at=w.started_at,
                    ended_at=end,
                    duration=end - w.started_at,
                    incomplete=w.incomplete or w.ended_at is None,
                )
            )

        entries.append(
            TargetReport(
                name=state.target.name,
                kind=state.target.kind,
                windows=tuple(windows),
                total_downtime=sum((w.duration for w in windows), timedelta(0)),
            )
        )

    entries.sort(key=lambda e: (e.first_failure_at, e.name))

    return Report(
        shutdown_at=shutdown_time,
        targets=tuple(entries),
        total_downtime=sum((e.total_downtime for e in entries), timedelta(0)),
        first_failure_at=min((e.first_failure_at for e in entries), default=None),
    )
