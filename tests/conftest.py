"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from downtime_bench.health.engine import CheckOutcome
from downtime_bench.targets.registry import Target, TargetKind

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """T0 + ``seconds``."""
    return T0 + timedelta(seconds=seconds)


def outcome(name: str, healthy: bool, seconds: float) -> CheckOutcome:
    return CheckOutcome(target=name, healthy=healthy, observed_at=at(seconds))


@pytest.fixture
def http_target() -> Target:
    return Target(name="api", kind=TargetKind.HTTP, url="http://localhost:8008/health")


@pytest.fixture
def tcp_target() -> Target:
    return Target(name="db", kind=TargetKind.TCP, host="127.0.0.1", port=5432)


@pytest.fixture
def fake_clock() -> Callable[[], datetime]:
    """A clock that advances one second per call, starting at T0."""
    ticks = iter(range(10_000))
    return lambda: at(next(ticks))
