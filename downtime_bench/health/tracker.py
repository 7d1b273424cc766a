"""Failure tracking — per-target state machine over check outcomes.

healthy --down--> failing   opens a FailureWindow at the outcome time
failing --up----> healthy   closes it at the outcome time
anything else is a no-op. Whatever is still open at shutdown is closed
with the shutdown time and flagged incomplete.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from downtime_bench.health.engine import CheckOutcome
from downtime_bench.targets.registry import Target

logger = logging.getLogger(__name__)


class Health(str, Enum):
    HEALTHY = "healthy"
    FAILING = "failing"


@dataclass
class FailureWindow:
    """One continuous unhealthy period of one target."""

    started_at: datetime
    ended_at: datetime | None = None
    incomplete: bool = False  # closed by shutdown, not by a recovery

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def duration(self) -> timedelta | None:
        """``ended_at - started_at``, or None while the window is ongoing."""
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at


@dataclass
class TargetState:
    target: Target
    current: Health = Health.HEALTHY
    windows: list[FailureWindow] = field(default_factory=list)

    @property
    def open_window(self) -> FailureWindow | None:
        if self.windows and self.windows[-1].is_open:
            return self.windows[-1]
        return None


class FailureTracker:
    """Owns one TargetState and applies outcomes to it in delivery order.

    The scheduler never applies two outcomes for the same target
    concurrently or out of order; the tracker relies on that.
    """

    def __init__(self, target: Target) -> None:
        self.state = TargetState(target=target)

    @property
    def target(self) -> Target:
        return self.state.target

    @property
    def is_failing(self) -> bool:
        return self.state.current is Health.FAILING

    def observe(self, outcome: CheckOutcome) -> None:
        state = self.state
        if outcome.healthy:
            if state.current is Health.FAILING:
                window = state.windows[-1]
                window.ended_at = outcome.observed_at
                state.current = Health.HEALTHY
                logger.info(
                    "%s recovered after %.1fs", state.target.name,
                    window.duration.total_seconds(),
                )
        elif state.current is Health.HEALTHY:
            state.windows.append(FailureWindow(started_at=outcome.observed_at))
            state.current = Health.FAILING
            logger.warning("%s went down: %s", state.target.name, outcome.message or "unhealthy")

    def close_if_open(self, at: datetime) -> None:
        """Close a still-open window at shutdown time ``at`` and mark it incomplete."""
        if self.state.current is not Health.FAILING:
            return
        window = self.state.windows[-1]
        window.ended_at = at
        window.incomplete = True
        self.state.current = Health.HEALTHY
        logger.info("%s still down at shutdown (%.1fs so far)", self.target.name, window.duration.total_seconds())
