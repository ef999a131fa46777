#!/usr/bin/env python3
"""
Demo script for the workmesh coordination service.

This walks through the core functionality of the system:
1. Fit-scored assignment of work to registered workers
2. Dependency gating between work items
3. Liveness timeouts and automatic requeue
4. Async workers pulling work from the coordinator
5. Log queries, aggregates and export

Usage:
    python3 demo.py                 # Run every demo
    python3 demo.py --assignment    # Run a single demo
"""
import asyncio
import sys
from datetime import datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from workmesh import CoordinationManager, FunctionWorker, Outcome, Requirements, Settings, WorkItem, WorkerProfile
from workmesh.coordination import Capabilities, Dependency
from workmesh.logs import LogFilter


console = Console()


class ManualClock:
    """Clock the demo can move forward."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def worker(worker_id: str, *domains: str, expertise: str = "intermediate") -> WorkerProfile:
    return WorkerProfile(worker_id=worker_id,
                         capabilities=Capabilities(domains=frozenset(domains), expertise=expertise))


def show_items(coord: CoordinationManager, title: str) -> None:
    table = Table(title=title)
    table.add_column("Item", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Worker", style="magenta")
    table.add_column("Reason", style="yellow")
    for item in sorted(coord.list_work(), key=lambda i: i.item_id):
        table.add_row(item.item_id, item.status.value, item.assignment.worker_id or "-",
                      item.status_reason or "-")
    console.print(table)


def demo_assignment():
    """Register workers and watch items get matched by fit score."""
    console.print(Panel("[bold cyan]Demo 1: Fit-Scored Assignment[/bold cyan]"))

    coord = CoordinationManager(Settings(auto_assign=False))
    coord.register_worker(worker("routing-1", "transport", expertise="expert"))
    coord.register_worker(worker("billing-1", "payments", expertise="advanced"))
    console.print("[green]✓[/green] Registered 2 workers")

    coord.submit_work(WorkItem("route-plan", requirements=Requirements(
        domains={"transport"}, expertise="expert")))
    coord.submit_work(WorkItem("invoice-run", requirements=Requirements(
        domains={"payments"}, complexity="high")))

    results = coord.assign_pending()
    for result in results:
        console.print(f"[blue]→[/blue] {result.item_id} assigned to {result.worker_id} "
                      f"(fit {result.fit_score:.2f})")
    console.print(f"[green]✓[/green] {sum(r.assigned for r in results)} items assigned in one pass")
    coord.shutdown()


def demo_dependencies():
    """An item waits until its prerequisite completes."""
    console.print(Panel("[bold cyan]Demo 2: Dependency Gating[/bold cyan]"))

    coord = CoordinationManager()
    coord.register_worker(worker("builder", "build", expertise="advanced"))
    coord.submit_work(WorkItem("compile", requirements=Requirements(domains={"build"})))
    coord.submit_work(WorkItem("package", requirements=Requirements(domains={"build"}),
                               dependencies=[Dependency.on("compile")]))
    show_items(coord, "Before compile finishes")

    coord.report_progress("builder", "compile", 0.5)
    coord.report_outcome("builder", "compile", Outcome.completed(quality_score=0.9))
    show_items(coord, "After compile finishes")
    coord.shutdown()


def demo_liveness():
    """A silent worker times out and its work moves to another worker."""
    console.print(Panel("[bold cyan]Demo 3: Liveness Timeout[/bold cyan]"))

    clock = ManualClock()
    coord = CoordinationManager(Settings(liveness_timeout=120), clock=clock)
    coord.register_worker(worker("primary", "search", expertise="expert"))
    coord.submit_work(WorkItem("reindex", requirements=Requirements(domains={"search"})))
    coord.register_worker(worker("standby", "search", expertise="expert"))
    show_items(coord, "Assigned")

    clock.advance(seconds=90)
    coord.heartbeat("standby")
    clock.advance(seconds=60)
    timed_out = coord.check_liveness()
    console.print(f"[yellow]Timed out:[/yellow] {', '.join(timed_out)}")
    show_items(coord, "After liveness check")
    coord.shutdown()


def demo_async_workers():
    """Async workers poll for assignments and report outcomes."""
    console.print(Panel("[bold cyan]Demo 4: Async Workers[/bold cyan]"))

    coord = CoordinationManager()

    async def resize(item: WorkItem) -> Outcome:
        await asyncio.sleep(0.05)
        return Outcome.completed(quality_score=0.95)

    async def run():
        workers = [
            FunctionWorker(worker(f"imaging-{i}", "imaging"), coord, resize, poll_interval=0.01)
            for i in range(2)
        ]
        runners = [asyncio.ensure_future(w.run()) for w in workers]
        for i in range(6):
            coord.submit_work(WorkItem(f"thumb-{i}", requirements=Requirements(
                domains={"imaging"}, complexity="low")))
        while any(not item.status.terminal for item in coord.list_work()):
            await asyncio.sleep(0.02)
        for w in workers:
            w.stop()
        await asyncio.gather(*runners)
        return workers

    workers = asyncio.run(run())
    for w in workers:
        console.print(f"[green]✓[/green] {w.worker_id} completed {w.completed} items")
    coord.shutdown()


def demo_logs():
    """Structured log queries and aggregates."""
    console.print(Panel("[bold cyan]Demo 5: Log Queries[/bold cyan]"))

    coord = CoordinationManager()
    coord.register_worker(worker("etl-1", "data"))
    coord.submit_work(WorkItem("nightly", requirements=Requirements(domains={"data"})))
    coord.report_progress("etl-1", "nightly", 0.1)
    coord.report_outcome("etl-1", "nightly", Outcome.completed())
    coord.flush_logs()

    page = coord.query_logs(LogFilter(correlation_id="nightly"))
    table = Table(title=f"Entries for 'nightly' ({page.total})")
    table.add_column("Component", style="cyan")
    table.add_column("Operation", style="magenta")
    table.add_column("Level")
    for entry in reversed(page.entries):
        table.add_row(entry.component, entry.operation, entry.level.name)
    console.print(table)

    aggregate = coord.log_aggregates()
    console.print(f"Completion rate: {aggregate.completion_rate:.0%}, "
                  f"error rate: {aggregate.error_rate:.0%}")
    coord.shutdown()


DEMOS = {
    "--assignment": demo_assignment,
    "--dependencies": demo_dependencies,
    "--liveness": demo_liveness,
    "--workers": demo_async_workers,
    "--logs": demo_logs,
}


def main():
    """Main demo runner."""
    console.print("[bold cyan]═══════════════════════════════════════════════════════[/bold cyan]")
    console.print("[bold cyan]        workmesh - Task Coordination Demo              [/bold cyan]")
    console.print("[bold cyan]═══════════════════════════════════════════════════════[/bold cyan]\n")

    if len(sys.argv) > 1:
        demo = DEMOS.get(sys.argv[1])
        if demo is None:
            console.print(f"[red]Unknown argument: {sys.argv[1]}[/red]")
            console.print(f"Usage: python3 demo.py [{'|'.join(DEMOS)}]")
            return
        demo()
        return

    try:
        for demo in DEMOS.values():
            demo()
            console.print("\n" + "=" * 60 + "\n")
        console.print(Panel("[bold green]✓ All demos finished[/bold green]\n\n"
                            "Next: run `workmesh` for the interactive shell.",
                            title="Demo Complete"))
    except KeyboardInterrupt:
        console.print("\n[yellow]Demo interrupted[/yellow]")


if __name__ == "__main__":
    main()
