"""Pytest configuration and fixtures"""

from collections import defaultdict
from datetime import UTC, datetime
import threading

import pytest

from baton.base_types import (
    JobHandle,
    JobStatus,
    JobStatusKind,
    ResourceOverride,
    ResourceRequest,
    SchedulerClient,
    Task,
    TaskGraph,
)
from baton.graph import load_graph
from baton.manifest import MemoryRunManifest
from baton.policy import LayerKind, PolicyLayer, PolicyLayers
from baton.tracker import ExecutionTracker


class ScriptedScheduler(SchedulerClient):
    """An in-memory scheduler driven by per-task scripts.

    `submit_errors[task]` lists what successive submissions of a task do:
    None succeeds, an exception is raised. `statuses[task]` lists what
    successive status queries of a task's jobs return, or raise. Once a
    script runs out, submissions succeed and jobs complete with exit code 0.
    """

    def __init__(self):
        self.submit_errors: dict[str, list[Exception | None]] = defaultdict(list)
        self.statuses: dict[str, list[JobStatus | Exception]] = defaultdict(list)

        self.submissions: list[tuple[str, int, ResourceRequest]] = []
        self.cancelled: list[str] = []
        self.queries: list[str] = []
        self.live: dict[str, JobHandle] = {}
        self.max_live = 0
        # Times a task had a second live job
        self.double_submissions: list[str] = []

        self._next_id = 1000
        self._lock = threading.Lock()

    def submit(self, task: Task, request: ResourceRequest) -> JobHandle:
        with self._lock:
            script = self.submit_errors[task.name]
            outcome = script.pop(0) if script else None
            if outcome is not None:
                raise outcome

            if any(handle.task_name == task.name for handle in self.live.values()):
                self.double_submissions.append(task.name)

            self._next_id += 1
            handle = JobHandle(
                job_id=str(self._next_id),
                task_name=task.name,
                attempt=task.attempt,
                submitted_at=datetime.now(tz=UTC),
            )
            self.submissions.append((task.name, task.attempt, request))
            self.live[handle.job_id] = handle
            self.max_live = max(self.max_live, len(self.live))
            return handle

    def query_status(self, handle: JobHandle) -> JobStatus:
        with self._lock:
            self.queries.append(handle.job_id)
            script = self.statuses[handle.task_name]
            status = script.pop(0) if script else JobStatus.completed(0)
            if isinstance(status, Exception):
                raise status
            if status.kind is JobStatusKind.COMPLETED:
                self.live.pop(handle.job_id, None)
            return status

    def cancel(self, handle: JobHandle) -> None:
        with self._lock:
            self.cancelled.append(handle.job_id)
            self.live.pop(handle.job_id, None)

    def attempts_of(self, task_name: str) -> list[int]:
        return [attempt for name, attempt, _ in self.submissions if name == task_name]


def default_policy(**defaults) -> PolicyLayers:
    """A single default layer; cpus, memory and time are always set."""

    override = ResourceOverride(
        cpus=defaults.pop("cpus", 1),
        memory_mb=defaults.pop("memory_mb", 1024),
        walltime_seconds=defaults.pop("walltime_seconds", 3600),
        **defaults,
    )
    return PolicyLayers(layers=(PolicyLayer(LayerKind.DEFAULT, override),))


@pytest.fixture
def make_policy():
    return default_policy


@pytest.fixture
def scheduler():
    return ScriptedScheduler()


@pytest.fixture
def make_scheduler():
    """For tests that need a second scheduler, e.g. after a coordinator restart."""
    return ScriptedScheduler


@pytest.fixture
def manifest():
    return MemoryRunManifest()


@pytest.fixture
def make_tracker(scheduler, manifest):
    """Build a tracker over a graph, with a scripted scheduler and an
    in-memory manifest unless others are given."""

    def build(graph_source, policy=None, **kwargs):
        graph = graph_source if isinstance(graph_source, TaskGraph) else load_graph(graph_source)
        return ExecutionTracker(
            graph,
            kwargs.pop("scheduler", scheduler),
            kwargs.pop("manifest", manifest),
            policy or default_policy(),
            kwargs.pop("run_id", "test-run"),
            **kwargs,
        )

    return build


@pytest.fixture
def drive():
    """Tick a tracker until it is done; fails if it never finishes."""

    def run(tracker, max_ticks=100):
        events = []
        for _ in range(max_ticks):
            events.extend(tracker.tick())
            if tracker.done():
                return events
        raise AssertionError(f"Tracker not done after {max_ticks} ticks")

    return run


@pytest.fixture
def chain_graph():
    return {
        "name": "chain",
        "tasks": [
            {"name": "a", "command": "echo a"},
            {"name": "b", "command": "echo b", "depends_on": ["a"]},
            {"name": "c", "command": "echo c", "depends_on": ["b"]},
        ],
    }
