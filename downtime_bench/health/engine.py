"""Check engine — async reachability probes for http and tcp targets.

Every probe is capped by a timeout and collapses all failure modes
(DNS, refused connection, TLS, timeout, bad status) into ``healthy=False``.
Nothing here raises to the caller; the scheduler only cares whether a
target answered, not why it didn't.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from downtime_bench.config import settings
from downtime_bench.targets.registry import Target, TargetKind

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Models ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckOutcome:
    """Result of one check of one target, stamped when the check completed."""

    target: str
    healthy: bool
    observed_at: datetime
    latency_ms: float = 0.0
    message: str = ""


# ── Check runners ────────────────────────────────────────────────────────────


async def run_http_check(
    url: str,
    timeout: float,
    user_agent: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[bool, str]:
    """HTTP(S) GET. Healthy iff a 2xx/3xx response arrives within ``timeout``."""
    headers = {"User-Agent": user_agent or settings.user_agent}
    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            verify=True,
            headers=headers,
            transport=transport,
        ) as client:
            # httpx timeouts are per phase; wait_for caps the whole request
            resp = await asyncio.wait_for(client.get(url), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return False, f"Timed out after {timeout:g}s"
    except httpx.ConnectError as e:
        return False, f"Connection error: {e}"
    except Exception as e:
        return False, f"Error: {type(e).__name__}: {e}"

    if 200 <= resp.status_code < 400:
        return True, f"{resp.status_code} {resp.reason_phrase}".strip()
    return False, f"Unhealthy status {resp.status_code}"


async def run_tcp_check(host: str, port: int, timeout: float) -> tuple[bool, str]:
    """Raw TCP connect, handshake only, no data exchanged."""
    # "[::1]" -> "::1"; getaddrinfo wants the bare literal
    connect_host = host[1:-1] if host.startswith("[") and host.endswith("]") else host
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(connect_host, port), timeout,
        )
    except asyncio.TimeoutError:
        return False, f"Timed out after {timeout:g}s"
    except Exception as e:
        return False, f"TCP connect failed: {type(e).__name__}: {e}"

    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True, f"Port {port} open"


# Dispatcher
CHECK_RUNNERS: dict[TargetKind, Callable[[Target, float], Awaitable[tuple[bool, str]]]] = {
    TargetKind.HTTP: lambda t, timeout: run_http_check(t.url, timeout),
    TargetKind.TCP: lambda t, timeout: run_tcp_check(t.host, t.port, timeout),
}


async def execute_check(target: Target, timeout: float, clock: Clock = utcnow) -> CheckOutcome:
    """Run one check for ``target`` and stamp the outcome on completion."""
    runner = CHECK_RUNNERS[target.kind]
    t0 = time.perf_counter()
    try:
        healthy, message = await runner(target, timeout)
    except Exception as e:
        # Runners already normalize their errors; this guards new kinds
        healthy, message = False, f"Error: {type(e).__name__}: {e}"
    latency = (time.perf_counter() - t0) * 1000

    outcome = CheckOutcome(
        target=target.name,
        healthy=healthy,
        observed_at=clock(),
        latency_ms=round(latency, 1),
        message=message,
    )
    logger.debug(
        "Check %s (%s): %s in %.0fms (%s)",
        target.name, target.kind.value, "up" if healthy else "down", latency, message,
    )
    return outcome


async def check_target(target: Target, timeout: float) -> bool:
    """Binary reachability of ``target`` within ``timeout`` seconds."""
    return (await execute_check(target, timeout)).healthy
