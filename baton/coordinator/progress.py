from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import psutil
from rich.bar import Bar
from rich.progress import (
    Progress,
    ProgressColumn,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.text import Text

from baton.base_types import Task, TaskGraph, TaskState
from baton.events import (
    BatonEvent,
    RunCancelledEvent,
    RunCompleteEvent,
    RunStartedEvent,
    TaskFailedEvent,
    TaskRetryingEvent,
    TaskRunningEvent,
    TaskSkippedEvent,
    TaskSubmittedEvent,
    TaskSucceededEvent,
)

STATS_PREFIX = "Baton |"
UNLABELLED = "unlabelled"


def format_label_blue(label: str) -> str:
    """Wrap a label in blue Rich markup without affecting width."""
    return f"[blue]{label}[/]"


def group_of(task: Task) -> str:
    """Tasks are grouped under their first label."""
    return task.labels[0] if task.labels else UNLABELLED


class ProgressMonitor(Protocol):
    """Protocol for progress monitors to support dependency injection."""

    def handle_event(self, event: BatonEvent) -> None:
        """Handle run events and update progress tracking."""
        ...

    def __enter__(self) -> "ProgressMonitor":
        ...

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object | None) -> bool | None:
        ...


class NoOpProgressMonitor:
    """A progress monitor that does nothing. Use to disable progress output."""

    def handle_event(self, event: BatonEvent) -> None:
        pass

    def __enter__(self) -> "NoOpProgressMonitor":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object | None) -> bool | None:
        return None


@dataclass
class LabelStats:
    """Task counts for one label."""

    total: int = 0
    queued: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    retries: int = 0
    task_id: TaskID | None = None
    durations: list[float] = field(default_factory=list)

    @property
    def finished(self) -> int:
        return self.succeeded + self.failed + self.skipped


class StatusBarColumn(ProgressColumn):
    """Progress bar coloured by task.fields['status']: running, success or failed."""

    def __init__(
        self,
        width: int | None = 30,
        running_complete_style: str = "cyan",
        success_complete_style: str = "green",
        failed_complete_style: str = "red",
        back_style: str = "grey37",
    ) -> None:
        super().__init__()
        self.width = width
        self.styles = {
            "running": running_complete_style,
            "success": success_complete_style,
            "failed": failed_complete_style,
        }
        self.back_style = back_style

    def render(self, task) -> Text:
        if task.description and task.description.startswith(STATS_PREFIX):
            return Text("")

        return Bar(
            size=task.total or 1,
            begin=0,
            end=task.completed,
            width=self.width,
            color=self.styles.get(task.fields.get("status", "running"), self.styles["running"]),
            bgcolor=self.back_style,
        )


class HideableTextColumn(TextColumn):
    """Text column hidden on the coordinator stats line."""

    def render(self, task) -> Text:
        if task.description and task.description.startswith(STATS_PREFIX):
            return Text("")
        return super().render(task)


class HideableSpinnerColumn(SpinnerColumn):
    def render(self, task) -> Text:
        if task.description and task.description.startswith(STATS_PREFIX):
            return Text("")
        return super().render(task)


class BatonProgressMonitor:
    """Per-label progress bars, plus a line showing the coordinator's own
    CPU and memory use."""

    def __init__(self, graph: TaskGraph):
        self.progress = Progress(
            HideableSpinnerColumn(),
            TextColumn("{task.description}"),
            StatusBarColumn(width=30),
            HideableTextColumn("[progress.percentage]{task.completed}/{task.total}"),
        )
        self.graph = graph
        self.task_groups = {task.name: group_of(task) for task in graph}
        self.label_stats: dict[str, LabelStats] = {}
        for group in self.task_groups.values():
            self.label_stats.setdefault(group, LabelStats()).total += 1

        # Where each task with a job in the scheduler is: "queued" or "running"
        self.live_phase: dict[str, str] = {}

        self.stats_task_id: TaskID | None = None
        self.run_task_id: TaskID | None = None
        self.process = psutil.Process()

    def __enter__(self):
        self.progress.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return self.progress.__exit__(exc_type, exc_val, exc_tb)

    def _stats(self, event: BatonEvent) -> LabelStats | None:
        group = self.task_groups.get(getattr(event, "task_name", ""))
        return self.label_stats.get(group) if group is not None else None

    def handle_event(self, event: BatonEvent) -> None:
        """Handle run events and update progress bars."""

        stats = self._stats(event)

        match event:
            case RunStartedEvent():
                self.stats_task_id = self.progress.add_task(f"{STATS_PREFIX} starting", total=1, status="running")
                self.run_task_id = self.progress.add_task("Run", total=len(self.task_groups), status="running")
                for label, label_stats in sorted(self.label_stats.items()):
                    label_stats.task_id = self.progress.add_task(
                        f"  {format_label_blue(label)}: starting", total=label_stats.total, status="running"
                    )
                # Tasks finished by an earlier coordinator
                for task in self.graph:
                    if task.state is TaskState.SUCCEEDED:
                        self.label_stats[self.task_groups[task.name]].succeeded += 1
                if event.succeeded_count:
                    self.progress.update(self.run_task_id, description=f"Run ({event.succeeded_count} resumed)")

            case TaskSubmittedEvent() if stats is not None:
                stats.queued += 1
                self.live_phase[event.task_name] = "queued"

            case TaskRunningEvent() if stats is not None:
                phase = self.live_phase.get(event.task_name)
                if phase == "queued":
                    stats.queued -= 1
                # Jobs resumed from an earlier coordinator were never seen queued
                if phase != "running":
                    stats.running += 1
                self.live_phase[event.task_name] = "running"

            case TaskSucceededEvent() if stats is not None:
                self._leave_scheduler(event.task_name, stats)
                stats.succeeded += 1
                stats.durations.append(event.duration_seconds)

            case TaskRetryingEvent() if stats is not None:
                self._leave_scheduler(event.task_name, stats)
                stats.retries += 1

            case TaskFailedEvent() if stats is not None:
                self._leave_scheduler(event.task_name, stats)
                stats.failed += 1

            case TaskSkippedEvent() if stats is not None:
                stats.skipped += 1

            case RunCompleteEvent() | RunCancelledEvent():
                self._finalise()
                self._update_system_stats()
                return

        self._refresh()
        self._update_system_stats()

    def _leave_scheduler(self, task_name: str, stats: LabelStats) -> None:
        """Tasks failed at submission, or out of attempts after a retry, never
        had a job to leave."""

        match self.live_phase.pop(task_name, None):
            case "running":
                stats.running -= 1
            case "queued":
                stats.queued -= 1

    def _refresh(self) -> None:
        for label, stats in self.label_stats.items():
            if stats.task_id is None:
                continue

            parts = []
            if stats.queued:
                parts.append(f"{stats.queued} queued")
            if stats.running:
                parts.append(f"{stats.running} running")
            if stats.finished:
                done = f"{stats.succeeded} succeeded"
                if stats.failed:
                    done += f", {stats.failed} failed"
                if stats.skipped:
                    done += f", {stats.skipped} skipped"
                parts.append(done)
            if stats.retries:
                parts.append(f"{stats.retries} retries")

            description = f"  {format_label_blue(label)}: {', '.join(parts) or 'waiting'}"
            if stats.durations:
                description += f" μ{sum(stats.durations) / len(stats.durations):.0f}s"

            if stats.failed:
                status = "failed"
            elif stats.finished >= stats.total:
                status = "success"
            else:
                status = "running"

            self.progress.update(stats.task_id, description=description, completed=stats.finished, status=status)

        if self.run_task_id is not None:
            finished = sum(stats.finished for stats in self.label_stats.values())
            failed = sum(stats.failed for stats in self.label_stats.values())
            self.progress.update(
                self.run_task_id, completed=finished, status="failed" if failed else "running"
            )

    def _update_system_stats(self) -> None:
        if self.stats_task_id is None:
            return

        cpu = self.process.cpu_percent(interval=None)
        rss_mb = self.process.memory_info().rss / (1024 * 1024)
        live = sum(stats.queued + stats.running for stats in self.label_stats.values())
        self.progress.update(
            self.stats_task_id,
            description=f"{STATS_PREFIX} {live} jobs live | cpu {cpu:.0f}% rss {rss_mb:.0f}MB",
        )

    def _finalise(self) -> None:
        self._refresh()

        succeeded = sum(stats.succeeded for stats in self.label_stats.values())
        failed = sum(stats.failed for stats in self.label_stats.values())
        skipped = sum(stats.skipped for stats in self.label_stats.values())

        if self.run_task_id is not None:
            self.progress.update(
                self.run_task_id,
                status="failed" if failed or skipped else "success",
                description=f"✓ Run finished: {succeeded} succeeded, {failed} failed, {skipped} skipped",
            )

        for label, stats in self.label_stats.items():
            if stats.task_id is not None:
                self.progress.update(
                    stats.task_id,
                    status="failed" if stats.failed else "success",
                    description=(
                        f"  ✓ {format_label_blue(label)}: {stats.succeeded} succeeded, "
                        f"{stats.failed} failed, {stats.skipped} skipped"
                    ),
                )
