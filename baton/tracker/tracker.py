"""The execution tracker: owns every task's state for one run.

Each `tick` polls live jobs, restarts retrying tasks, promotes pending ones,
submits whatever is ready, then skips tasks a failed dependency strands.
Only scheduler I/O runs on worker threads; all transitions are applied on
the calling thread.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from baton.base_types import (
    LIVE_TASK_STATES,
    TERMINAL_TASK_STATES,
    JobHandle,
    JobStatus,
    RetryPolicy,
    RunManifest,
    RunMetadata,
    SchedulerClient,
    Task,
    TaskGraph,
    TaskRecord,
    TaskState,
)
from baton.constants import DEFAULT_POLL_WORKERS, DEFAULT_QUEUE_SIZE, DEFAULT_STATUS_GRACE_SECONDS
from baton.events import BatonEvent, RunCancelledEvent, RunStartedEvent
from baton.graph.ready import blocked_by_failure, ready_tasks
from baton.manifest.restore import plan_resume
from baton.policy.layers import PolicyLayers
from baton.policy.resolve import resolve_retry
from baton.tracker.state_machine import TaskStateMachine
from baton.tracker.state_machine.states import StateChange
from baton.tracker.state_machine.utils import now
from baton.utils.hash import graph_fingerprint
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


class TrackerState:
    """Mutable state shared by the transition handlers."""

    def __init__(
        self,
        graph: TaskGraph,
        scheduler: SchedulerClient,
        manifest: RunManifest,
        policy: PolicyLayers,
        status_grace_seconds: float,
        queue_size: int,
        outdir: str | None,
    ):
        self.graph = graph
        self.scheduler = scheduler
        self.manifest = manifest
        self.policy = policy
        self.status_grace = timedelta(seconds=status_grace_seconds)
        self.queue_size = queue_size
        self.outdir = outdir

        self.records: dict[str, TaskRecord] = {task.name: TaskRecord(name=task.name) for task in graph}
        # Events raised by handlers, not yet written to the manifest
        self.events: list[BatonEvent] = []
        self._retry_policies: dict[str, RetryPolicy] = {}

    def retry_policy(self, task: Task) -> RetryPolicy:
        if task.name not in self._retry_policies:
            self._retry_policies[task.name] = resolve_retry(task, self.policy)
        return self._retry_policies[task.name]

    def live_count(self) -> int:
        return sum(1 for record in self.records.values() if record.live_handle is not None)

    def query_status(self, handle: JobHandle) -> JobStatus:
        """Ask the scheduler about a job. A query that raises is reported as
        UNKNOWN, so the grace period applies rather than the run crashing.
        Safe to call from the polling threads."""

        try:
            return self.scheduler.query_status(handle)
        except Exception as err:
            log.warning(f"Status query for job {handle.job_id} ({handle.task_name}) failed: {err}")
            return JobStatus.unknown(reason=f"status query failed: {err}")

    def cancel_job(self, handle: JobHandle) -> None:
        """Best-effort cancel; the scheduler clients log their own failures."""

        log.info(f"Cancelling job {handle.job_id} ({handle.task_name} attempt {handle.attempt})")
        self.scheduler.cancel(handle)


class ExecutionTracker:
    """Drives every task of a graph from PENDING to a terminal state."""

    def __init__(
        self,
        graph: TaskGraph,
        scheduler: SchedulerClient,
        manifest: RunManifest,
        policy: PolicyLayers,
        run_id: str,
        status_grace_seconds: float = DEFAULT_STATUS_GRACE_SECONDS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        poll_workers: int = DEFAULT_POLL_WORKERS,
        outdir: str | None = None,
    ):
        self.run_id = run_id
        self.poll_workers = max(1, poll_workers)
        self.state = TrackerState(graph, scheduler, manifest, policy, status_grace_seconds, queue_size, outdir)

    @property
    def graph(self) -> TaskGraph:
        return self.state.graph

    @property
    def records(self) -> dict[str, TaskRecord]:
        return self.state.records

    def start(self, resume: bool = False) -> list[BatonEvent]:
        """Load (or reset) the manifest and persist the run's starting records.

        On resume, succeeded tasks are kept and live jobs are polled rather
        than resubmitted; stale jobs of tasks that start over are cancelled.

        @param resume: Continue from the records already in the manifest
        @return: The events raised while starting
        @raises ManifestCorruptError: The manifest cannot be read
        """

        manifest = self.state.manifest
        manifest.init()

        if resume:
            stored = manifest.load()
            previous = manifest.metadata()
        else:
            manifest.reset()
            stored = {}
            previous = None

        plan = plan_resume(self.graph, stored)
        for handle in plan.stale_handles:
            self.state.cancel_job(handle)

        for task in self.graph:
            record = plan.records[task.name]
            manifest.save(record)
            self.state.records[task.name] = record
            task.state = record.state
            task.attempt = record.attempt
            task.failure = record.failure
            task.exit_code = record.exit_code

        manifest.set_metadata(
            RunMetadata(
                run_id=self.run_id,
                graph_name=self.graph.name,
                graph_fingerprint=graph_fingerprint(task.definition() for task in self.graph),
                started_at=previous.started_at if previous is not None else now(),
            )
        )

        self.state.events.append(
            RunStartedEvent(
                run_id=self.run_id,
                task_count=len(self.graph),
                resumed=resume and bool(stored),
                succeeded_count=len(plan.succeeded),
            )
        )
        return self._flush_events()

    def tick(self) -> list[BatonEvent]:
        """Advance every task as far as it can go right now.

        @return: The events raised during this tick
        """

        changes: list[StateChange | None] = []

        for task, status in self._poll_live():
            if task.state in LIVE_TASK_STATES:
                changes.append(TaskStateMachine.poll(self.state, task, status))

        for task in self.graph:
            if task.state is TaskState.RETRYING:
                changes.append(TaskStateMachine.retry(self.state, task))

        ready = ready_tasks(self.graph, self.state.records)
        for task in self.graph:
            if task in ready:
                changes.append(TaskStateMachine.promote(self.state, task))

        for task in self.graph:
            if task.state is TaskState.READY:
                changes.append(TaskStateMachine.submit(self.state, task))

        # Last, so failures from this tick propagate; topological order lets
        # a skip cascade down the graph
        for task in self.graph:
            if task.state is not TaskState.PENDING:
                continue
            failed_dependency = blocked_by_failure(self.graph, task)
            if failed_dependency is not None:
                changes.append(TaskStateMachine.skip(self.state, task, failed_dependency))

        log.debug(f"Tick made {sum(1 for change in changes if change is not None)} transitions")
        return self._flush_events()

    def _poll_live(self) -> list[tuple[Task, JobStatus]]:
        live = [
            (task, handle)
            for task in self.graph
            if (handle := self.state.records[task.name].live_handle) is not None and task.state in LIVE_TASK_STATES
        ]
        if not live:
            return []

        with ThreadPoolExecutor(max_workers=min(self.poll_workers, len(live))) as executor:
            futures = [(task, executor.submit(self.state.query_status, handle)) for task, handle in live]

        return [(task, future.result()) for task, future in futures]

    def done(self) -> bool:
        return all(task.state in TERMINAL_TASK_STATES for task in self.graph)

    def cancel(self) -> list[BatonEvent]:
        """Fail every unfinished task as cancelled, cancelling live jobs."""

        cancelled = []
        for task in self.graph:
            if task.state not in TERMINAL_TASK_STATES:
                TaskStateMachine.cancel(self.state, task)
                cancelled.append(task.name)

        self.state.events.append(RunCancelledEvent(run_id=self.run_id, cancelled_tasks=cancelled))
        return self._flush_events()

    def record_event(self, event: BatonEvent) -> list[BatonEvent]:
        self.state.events.append(event)
        return self._flush_events()

    def _flush_events(self) -> list[BatonEvent]:
        events, self.state.events = self.state.events, []
        for event in events:
            self.state.manifest.save_event(event)
        return events
