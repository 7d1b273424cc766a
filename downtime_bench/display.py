"""Terminal rendering — status blocks and the final downtime report."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from rich.console import Console
from rich.markup import escape

from downtime_bench.health.engine import CheckOutcome
from downtime_bench.health.report import Report
from downtime_bench.targets.registry import Target

TIME_FORMAT = "%H:%M:%S"


def format_clock(ts: datetime) -> str:
    """Wall-clock time in the local timezone."""
    return ts.astimezone().strftime(TIME_FORMAT)


def format_duration(d: timedelta) -> str:
    seconds = d.total_seconds()
    if seconds < 10:
        return f"{seconds:.1f}s"
    return f"{seconds:.0f}s"


def print_loaded(console: Console, targets: Sequence[Target], source: str) -> None:
    console.print(f"[bold]Loaded {len(targets)} target(s) from '{escape(source)}'[/bold]")


def print_baseline(
    console: Console, targets: Sequence[Target], outcomes: Sequence[CheckOutcome],
) -> None:
    """One line per target with the initial check result."""
    by_name = {o.target: o for o in outcomes}
    for t in targets:
        o = by_name.get(t.name)
        if o is not None and o.healthy:
            console.print(f"  {t.icon} \\[{t.kind.value}] {escape(t.name)} [green]✓ healthy[/green]")
        else:
            reason = f" [dim]({escape(o.message)})[/dim]" if o is not None and o.message else ""
            console.print(f"  {t.icon} \\[{t.kind.value}] {escape(t.name)} [red]✗ FAILED[/red]{reason}")


def print_status_block(
    console: Console, targets: Sequence[Target], outcomes: Sequence[CheckOutcome],
) -> None:
    """Status of every target after one monitoring round."""
    now = max((o.observed_at for o in outcomes), default=None)
    stamp = format_clock(now) if now else datetime.now().strftime(TIME_FORMAT)
    console.print(f"─── \\[{stamp}] ───")
    by_name = {o.target: o for o in outcomes}
    for t in targets:
        o = by_name.get(t.name)
        mark = "[green]✓[/green]" if o is not None and o.healthy else "[red]✗[/red]"
        console.print(f"  {mark} {t.icon} {escape(t.name)}")
    console.print("[yellow]⏳ Monitoring... Press Ctrl+C to stop and see results.[/yellow]")


def print_report(console: Console, report: Report, targets: Sequence[Target]) -> None:
    icons = {t.name: t.icon for t in targets}

    console.print()
    console.print("[bold]📊 Downtime Benchmarking Results[/bold]")
    console.print("═══════════════════════════════")
    console.print()

    if report.is_empty:
        console.print("[bold green]✅ No downtime detected! All targets remained healthy.[/bold green]")
        console.print()
        return

    console.print(f"[red]🔴 Failures started at: {format_clock(report.first_failure_at)}[/red]")
    console.print()
    console.print("[bold]📋 Details (sorted by time of first failure):[/bold]")
    console.print()

    for entry in report.targets:
        console.print(f"  {icons.get(entry.name, '')} [bold]{escape(entry.name)}[/bold]")
        console.print(
            f"     [red]Total downtime: {format_duration(entry.total_downtime)} "
            f"| {entry.failure_count} failure(s)[/red]"
        )
        for i, w in enumerate(entry.windows):
            connector = "└──" if i == entry.failure_count - 1 else "├──"
            suffix = " (ongoing at shutdown)" if w.incomplete else ""
            console.print(
                f"     {connector} [red]{format_duration(w.duration):<5} @ "
                f"{format_clock(w.started_at)}{suffix}[/red]"
            )
        console.print()

    console.print("───────────────────────────────")
    console.print(f"[bold red]⏱️  Total downtime: {format_duration(report.total_downtime)}[/bold red]")
    console.print()
