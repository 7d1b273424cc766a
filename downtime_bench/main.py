"""Entry point for downtime-bench — `downtime-bench` console script."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Sequence

from rich.console import Console
from rich.markup import escape

from downtime_bench.config import settings
from downtime_bench.display import (
    print_baseline,
    print_loaded,
    print_report,
    print_status_block,
)
from downtime_bench.health.engine import CheckOutcome
from downtime_bench.health.scheduler import BaselineCheckError, MonitorScheduler
from downtime_bench.targets.registry import ConfigurationError, Target, load_targets

console = Console()
err_console = Console(stderr=True)

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _install_stop_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    """Route Ctrl+C / SIGTERM into the stop event."""
    for sig in _STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))


def _remove_stop_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in _STOP_SIGNALS:
        try:
            loop.remove_signal_handler(sig)
        except NotImplementedError:
            signal.signal(sig, signal.SIG_DFL)


async def run_benchmark(targets: Sequence[Target], check_interval: float, check_timeout: float) -> int:
    """Baseline, monitor until interrupted, print the report. Returns the exit code."""
    scheduler = MonitorScheduler(
        targets,
        check_interval=check_interval,
        check_timeout=check_timeout,
        on_round=lambda _n, outcomes: print_status_block(console, targets, outcomes),
    )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    _install_stop_handlers(loop, stop)
    try:
        console.print()
        console.print("[yellow]Running initial health check...[/yellow]")
        try:
            outcomes = await _baseline_or_stop(scheduler, stop)
        except BaselineCheckError as e:
            print_baseline(console, targets, e.outcomes)
            err_console.print()
            err_console.print(
                "[red]Error: Some targets failed the initial health check. "
                "Fix them before benchmarking.[/red]"
            )
            return 1
        if outcomes is None:
            err_console.print("[red]Interrupted during the initial health check.[/red]")
            return 1

        print_baseline(console, targets, outcomes)
        console.print()
        console.print(
            f"[bold green]✅ All targets healthy. Starting monitoring "
            f"(interval: {check_interval:g}s, timeout: {check_timeout:g}s)[/bold green]"
        )
        console.print()

        report = await scheduler.monitor(stop)
    finally:
        _remove_stop_handlers(loop)

    print_report(console, report, targets)
    return 0


async def _baseline_or_stop(scheduler: MonitorScheduler, stop: asyncio.Event) -> list[CheckOutcome] | None:
    """Run the baseline round unless ``stop`` fires first (then None)."""
    baseline = asyncio.create_task(scheduler.verify_baseline(), name="baseline")
    stop_task = asyncio.create_task(stop.wait(), name="stop-watch")
    try:
        await asyncio.wait({baseline, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (baseline, stop_task):
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
    if baseline.cancelled():
        return None
    return baseline.result()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="downtime-bench",
        description="Measure service downtime during maintenance windows",
    )
    parser.add_argument(
        "--target-urls", default=settings.targets_file, metavar="PATH",
        help="Path to the YAML targets file (default: %(default)s)",
    )
    parser.add_argument(
        "--check-interval", type=float, default=settings.check_interval, metavar="SECONDS",
        help="Seconds between checks (default: %(default)s)",
    )
    parser.add_argument(
        "--timeout", type=float, default=settings.check_timeout, metavar="SECONDS",
        help="Per-check timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level", default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper,
        help="Log level (default: %(default)s)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    try:
        if args.check_interval <= 0 or args.timeout <= 0:
            raise ConfigurationError("--check-interval and --timeout must be greater than 0")
        targets = load_targets(args.target_urls)
    except ConfigurationError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]", highlight=False)
        sys.exit(1)

    print_loaded(console, targets, args.target_urls)
    sys.exit(asyncio.run(run_benchmark(targets, args.check_interval, args.timeout)))


if __name__ == "__main__":
    main()
