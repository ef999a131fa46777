"""
Interactive coordinator shell.
"""
import asyncio
import shlex
from datetime import timedelta
from typing import List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import InMemoryHistory
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import Settings
from .coordination import (
    Capabilities,
    CoordinationManager,
    Dependency,
    Outcome,
    Requirements,
    WorkItem,
    WorkStatus,
    WorkerProfile,
)
from .errors import CoordinationError
from .logs import LogFilter, configure_logging


console = Console()

HELP = [
    ("workers", "Show registered workers"),
    ("register <id> <domains> [expertise] [specializations]", "Register a worker (comma-separated lists)"),
    ("deregister <id>", "Remove a worker"),
    ("heartbeat <id>", "Send a heartbeat for a worker"),
    ("submit <id> <priority> <complexity> <domains> [after]", "Submit a work item (after = prerequisite ids)"),
    ("items [status]", "Show work items"),
    ("progress <worker> <item> <fraction>", "Report progress"),
    ("done <worker> <item> [quality]", "Report a successful outcome"),
    ("fail <worker> <item> [detail]", "Report a failed outcome"),
    ("cancel <item>", "Cancel a work item"),
    ("requeue <item>", "Return an active item to the queue"),
    ("assign", "Run an assignment pass"),
    ("liveness", "Run a liveness check"),
    ("logs [component] [min_level]", "Show recent log entries"),
    ("report [worker] [minutes]", "Performance report"),
    ("bottlenecks", "Workers running slower than estimated"),
    ("pairings <worker> [domains]", "Recommended collaborators"),
    ("flush", "Flush buffered log entries"),
    ("retention", "Run a retention sweep"),
    ("export <batch key> [json|csv]", "Print an exported log batch"),
    ("quit", "Shut down"),
]


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class Shell:
    """
    Command interpreter over a CoordinationManager.
    ``handle`` runs one command line and returns False when the shell should exit.
    """

    def __init__(self, manager: CoordinationManager, output: Optional[Console] = None):
        self.manager = manager
        self.console = output or console
        self.running = False
        self._commands = {
            "help": self.cmd_help,
            "workers": self.cmd_workers,
            "register": self.cmd_register,
            "deregister": self.cmd_deregister,
            "heartbeat": self.cmd_heartbeat,
            "submit": self.cmd_submit,
            "items": self.cmd_items,
            "progress": self.cmd_progress,
            "done": self.cmd_done,
            "fail": self.cmd_fail,
            "cancel": self.cmd_cancel,
            "requeue": self.cmd_requeue,
            "assign": self.cmd_assign,
            "liveness": self.cmd_liveness,
            "logs": self.cmd_logs,
            "report": self.cmd_report,
            "bottlenecks": self.cmd_bottlenecks,
            "pairings": self.cmd_pairings,
            "flush": self.cmd_flush,
            "retention": self.cmd_retention,
            "export": self.cmd_export,
        }

    def handle(self, line: str) -> bool:
        """Run one command line. Returns False on quit."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            self.console.print(f"[red]Error: {escape(str(e))}[/red]")
            return True
        if not parts:
            return True

        command, args = parts[0].lower(), parts[1:]
        if command in ("quit", "exit"):
            return False
        handler = self._commands.get(command)
        if handler is None:
            self.console.print(f"[red]Unknown command: {command}[/red] (try 'help')")
            return True
        try:
            handler(args)
        except (CoordinationError, ValueError, KeyError, IndexError) as e:
            self.console.print(f"[red]Error: {escape(str(e))}[/red]")
        return True

    # -- commands ---------------------------------------------------------

    def cmd_help(self, args):
        table = Table(title="Commands")
        table.add_column("Command", style="cyan")
        table.add_column("Description")
        for usage, description in HELP:
            table.add_row(usage, description)
        self.console.print(table)

    def cmd_workers(self, args):
        table = Table(title="Workers")
        table.add_column("Worker ID", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Workload", justify="right")
        table.add_column("Domains", style="magenta")
        table.add_column("Expertise")
        table.add_column("Success", justify="right")
        for profile in sorted(self.manager.list_workers(), key=lambda p: p.worker_id):
            table.add_row(
                profile.worker_id,
                profile.status.value,
                f"{profile.workload:.2f}",
                ", ".join(sorted(profile.capabilities.domains)) or "-",
                profile.capabilities.expertise.name.lower(),
                f"{profile.performance.success_rate:.0%}",
            )
        self.console.print(table)

    def cmd_register(self, args):
        worker_id, domains = args[0], _split(args[1] if len(args) > 1 else "")
        capabilities = Capabilities(
            domains=frozenset(domains),
            expertise=args[2] if len(args) > 2 else "intermediate",
            specializations=frozenset(_split(args[3] if len(args) > 3 else "")),
        )
        self.manager.register_worker(WorkerProfile(worker_id=worker_id, capabilities=capabilities))
        self.console.print(f"[green]✓[/green] Registered {worker_id}")

    def cmd_deregister(self, args):
        self.manager.deregister_worker(args[0])
        self.console.print(f"[green]✓[/green] Deregistered {args[0]}")

    def cmd_heartbeat(self, args):
        status = self.manager.heartbeat(args[0])
        self.console.print(f"{args[0]}: {status.value}")

    def cmd_submit(self, args):
        item_id, priority, complexity = args[0], int(args[1]), args[2]
        domains = _split(args[3] if len(args) > 3 else "")
        after = _split(args[4] if len(args) > 4 else "")
        item = WorkItem(
            item_id=item_id,
            priority=priority,
            requirements=Requirements(domains=frozenset(domains), complexity=complexity),
            dependencies=[Dependency.on(dep) for dep in after],
        )
        self.manager.submit_work(item)
        item = self.manager.get_work(item_id)
        if item.assignment.worker_id:
            self.console.print(f"[blue]→[/blue] {item_id} assigned to {item.assignment.worker_id}")
        else:
            self.console.print(f"[yellow]•[/yellow] {item_id} pending ({item.status_reason or 'queued'})")

    def cmd_items(self, args):
        status = WorkStatus(args[0]) if args else None
        table = Table(title="Work Items")
        table.add_column("Item ID", style="cyan")
        table.add_column("Priority", justify="right")
        table.add_column("Status", style="green")
        table.add_column("Worker", style="magenta")
        table.add_column("Progress", justify="right")
        table.add_column("Reason", style="yellow")
        items = sorted(self.manager.list_work(status), key=lambda i: (-i.priority, i.item_id))
        for item in items:
            table.add_row(
                item.item_id,
                str(item.priority),
                item.status.value,
                item.assignment.worker_id or "-",
                f"{item.assignment.progress:.0%}",
                item.status_reason or "-",
            )
        self.console.print(table)

    def cmd_progress(self, args):
        self.manager.report_progress(args[0], args[1], float(args[2]))

    def cmd_done(self, args):
        quality = float(args[2]) if len(args) > 2 else None
        self.manager.report_outcome(args[0], args[1], Outcome.completed(quality_score=quality))
        self.console.print(f"[green]✓[/green] {args[1]} completed")

    def cmd_fail(self, args):
        detail = " ".join(args[2:]) or "reported_failure"
        self.manager.report_outcome(args[0], args[1], Outcome.failed(detail=detail))
        self.console.print(f"[red]✗[/red] {args[1]} failed")

    def cmd_cancel(self, args):
        self.manager.cancel_work(args[0])
        self.console.print(f"[yellow]Cancelled {args[0]}[/yellow]")

    def cmd_requeue(self, args):
        self.manager.requeue_work(args[0])
        self.console.print(f"[yellow]Requeued {args[0]}[/yellow]")

    def cmd_assign(self, args):
        results = self.manager.assign_pending()
        assigned = [r for r in results if r.assigned]
        for result in assigned:
            self.console.print(f"[blue]→[/blue] {result.item_id} assigned to {result.worker_id}")
        self.console.print(f"{len(assigned)}/{len(results)} ready items assigned")

    def cmd_liveness(self, args):
        timed_out = self.manager.check_liveness()
        self.console.print(f"Timed out: {', '.join(timed_out) or 'none'}")

    def cmd_logs(self, args):
        log_filter = LogFilter(
            component=args[0] if args and args[0] != "*" else None,
            min_level=args[1] if len(args) > 1 else None,
            page_size=20,
        )
        page = self.manager.query_logs(log_filter)
        table = Table(title=f"Logs ({page.total} matching)")
        table.add_column("Time", style="dim")
        table.add_column("Level")
        table.add_column("Component", style="cyan")
        table.add_column("Operation", style="magenta")
        table.add_column("Message")
        for entry in page.entries:
            table.add_row(entry.timestamp.strftime("%H:%M:%S"), entry.level.name,
                          entry.component, entry.operation, entry.message[:60])
        self.console.print(table)

    def cmd_report(self, args):
        worker_id = args[0] if args and args[0] != "*" else None
        window = timedelta(minutes=float(args[1])) if len(args) > 1 else None
        snapshot = self.manager.get_performance_report(worker_id, window)
        lines = [
            f"Completed: {snapshot.completed}",
            f"Failed: {snapshot.failed}",
            f"Completion rate: {snapshot.completion_rate:.0%}",
            f"Error rate: {snapshot.error_rate:.0%}",
        ]
        if snapshot.avg_response_time is not None:
            lines.append(f"Avg response: {snapshot.avg_response_time:.2f}s")
        if snapshot.ema_completion_time is not None:
            lines.append(f"EMA completion: {snapshot.ema_completion_time:.2f}s")
        self.console.print(Panel("\n".join(lines), title=f"Performance: {worker_id or 'all workers'}"))

    def cmd_bottlenecks(self, args):
        flagged = self.manager.bottlenecks()
        if not flagged:
            self.console.print("No bottlenecks")
        for report in flagged:
            self.console.print(f"[yellow]{report.worker_id}[/yellow] ratio {report.duration_ratio:.2f} "
                               f"over {report.samples} items")

    def cmd_pairings(self, args):
        domains = _split(args[1] if len(args) > 1 else "")
        table = Table(title=f"Pairings for {args[0]}")
        table.add_column("Partner", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Together", justify="right")
        for rec in self.manager.recommend_pairings(args[0], domains):
            table.add_row(rec.partner_id, f"{rec.score:.2f}", f"{rec.success_rate:.0%}",
                          str(rec.collaborations))
        self.console.print(table)

    def cmd_flush(self, args):
        written = self.manager.flush_logs()
        self.console.print(f"Flushed {written} entries")

    def cmd_retention(self, args):
        report = self.manager.run_retention()
        self.console.print(f"Scanned {report.scanned}, deleted {len(report.deleted)}, "
                           f"protected {report.protected}")

    def cmd_export(self, args):
        fmt = args[1] if len(args) > 1 else "json"
        self.console.print(self.manager.export_batch(args[0], fmt), markup=False)

    # -- loop -------------------------------------------------------------

    async def run(self):
        """Read commands until quit."""
        self.running = True
        self.console.print("[bold cyan]workmesh coordinator[/bold cyan]")
        self.console.print("Type 'help' for commands\n")

        words = list(self._commands) + ["quit"]
        session = PromptSession(history=InMemoryHistory(), completer=WordCompleter(words))
        while self.running:
            try:
                line = await session.prompt_async("workmesh> ")
            except KeyboardInterrupt:
                self.console.print("[yellow]Interrupted. Type 'quit' to exit.[/yellow]")
                continue
            except EOFError:
                break
            self.running = self.handle(line)


def main():
    """Main entry point."""
    settings = Settings()
    configure_logging(settings.log_level, settings.log_file)

    manager = CoordinationManager(settings)
    if settings.data_dir:
        counts = manager.restore()
        console.print(f"Restored {counts['workers']} workers and {counts['work_items']} items")
    manager.start()
    try:
        asyncio.run(Shell(manager).run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
    finally:
        remaining = manager.shutdown()
        if remaining:
            console.print(f"[red]{remaining} log entries could not be written[/red]")
        console.print("[green]✓[/green] Shutdown complete")


if __name__ == "__main__":
    main()
