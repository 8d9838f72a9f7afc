from collections.abc import Mapping
from dataclasses import dataclass

from rich.console import Console
from rich.table import Table

from baton.base_types import FailureReason, TaskGraph, TaskRecord, TaskState


@dataclass(frozen=True)
class TaskOutcome:
    name: str
    state: TaskState
    optional: bool
    attempts: int
    failure: FailureReason | None = None
    exit_code: int | None = None
    last_job_id: str | None = None


@dataclass(frozen=True)
class RunSummary:
    """Where every task of a run ended up."""

    run_id: str
    outcomes: tuple[TaskOutcome, ...]
    duration_seconds: float = 0.0
    cancelled: bool = False

    def _failed(self, optional: bool) -> list[TaskOutcome]:
        return [
            outcome
            for outcome in self.outcomes
            if outcome.state is TaskState.FAILED
            and outcome.optional is optional
            and outcome.failure not in (FailureReason.SKIPPED, FailureReason.CANCELLED)
        ]

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state is TaskState.SUCCEEDED)

    @property
    def failed(self) -> int:
        """Required tasks that failed in their own right."""
        return len(self._failed(optional=False))

    @property
    def ignored(self) -> int:
        """Optional tasks that failed; their dependents still ran."""
        return len(self._failed(optional=True))

    @property
    def skipped(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.failure is FailureReason.SKIPPED)

    @property
    def cancelled_tasks(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.failure is FailureReason.CANCELLED)

    @property
    def unfinished(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state not in (TaskState.SUCCEEDED, TaskState.FAILED))

    @property
    def exit_code(self) -> int:
        """0 only when no required task failed, was skipped, was cancelled or
        is unfinished."""

        for outcome in self.outcomes:
            if outcome.optional:
                continue
            if outcome.state is not TaskState.SUCCEEDED:
                return 1
        return 0


def summarise(
    run_id: str,
    records: Mapping[str, TaskRecord],
    graph: TaskGraph | None = None,
    duration_seconds: float = 0.0,
    cancelled: bool = False,
) -> RunSummary:
    """Summarise task records, in graph order when the graph is known. Without
    the graph (e.g. `baton status`), every task is taken to be required."""

    if graph is not None:
        entries = [(task.name, task.optional) for task in graph]
    else:
        entries = [(name, False) for name in sorted(records)]

    outcomes = []
    for name, optional in entries:
        record = records.get(name, TaskRecord(name=name))
        outcomes.append(
            TaskOutcome(
                name=name,
                state=record.state,
                optional=optional,
                attempts=record.attempt,
                failure=record.failure,
                exit_code=record.exit_code,
                last_job_id=record.handles[-1].job_id if record.handles else None,
            )
        )

    return RunSummary(run_id=run_id, outcomes=tuple(outcomes), duration_seconds=duration_seconds, cancelled=cancelled)


STATE_STYLES = {
    TaskState.SUCCEEDED: "green",
    TaskState.FAILED: "red",
    TaskState.RETRYING: "yellow",
    TaskState.RUNNING: "cyan",
    TaskState.SUBMITTED: "cyan",
}


def render_summary(summary: RunSummary, console: Console | None = None) -> None:
    """Print the summary as a table, one row per task."""

    console = console or Console()

    table = Table(title=f"Run {summary.run_id}")
    table.add_column("Task")
    table.add_column("State")
    table.add_column("Attempts", justify="right")
    table.add_column("Exit", justify="right")
    table.add_column("Reason")
    table.add_column("Last job")

    for outcome in summary.outcomes:
        style = STATE_STYLES.get(outcome.state, "")
        if outcome.state is TaskState.FAILED and outcome.optional:
            style = "yellow"

        name = outcome.name + (" (optional)" if outcome.optional else "")
        table.add_row(
            name,
            f"[{style}]{outcome.state.value}[/]" if style else outcome.state.value,
            str(outcome.attempts),
            "" if outcome.exit_code is None else str(outcome.exit_code),
            outcome.failure.value if outcome.failure else "",
            outcome.last_job_id or "",
        )

    console.print(table)
    console.print(
        f"{summary.succeeded} succeeded, {summary.failed} failed, {summary.skipped} skipped, "
        f"{summary.ignored} ignored, {summary.cancelled_tasks} cancelled"
        + (f" in {summary.duration_seconds:.0f}s" if summary.duration_seconds else "")
    )
