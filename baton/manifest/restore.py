"""Decide what a resumed run keeps from an earlier coordinator's manifest."""

from collections.abc import Mapping
from dataclasses import dataclass, replace

from baton.base_types import JobHandle, TaskGraph, TaskRecord, TaskState
from baton.graph.ready import descendants
from baton.utils.hash import task_fingerprint
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ResumePlan:
    # One record per task in the graph
    records: dict[str, TaskRecord]
    # Live jobs of tasks that must start over; cancel before resubmitting
    stale_handles: tuple[JobHandle, ...]
    # Tasks kept as SUCCEEDED
    succeeded: frozenset[str]


def plan_resume(graph: TaskGraph, stored: Mapping[str, TaskRecord]) -> ResumePlan:
    """Work out the starting record of every task in a resumed run.

    - SUCCEEDED tasks stay succeeded and are never submitted again
    - tasks whose definition changed since the manifest was written, and
      everything downstream of them, start over
    - FAILED tasks (including skipped and cancelled ones) start over
    - SUBMITTED and RUNNING tasks keep their live job, and are polled
    - READY and RETRYING tasks keep their state and attempt count
    """

    fingerprints = {task.name: task_fingerprint(task.definition()) for task in graph}

    changed = {
        name
        for name, record in stored.items()
        if name in graph.tasks and record.fingerprint is not None and record.fingerprint != fingerprints[name]
    }
    invalidated = changed | descendants(graph, changed)
    if changed:
        log.info(f"Task definitions changed since the last run: {', '.join(sorted(changed))}")

    records: dict[str, TaskRecord] = {}
    stale: list[JobHandle] = []

    for task in graph:
        fresh = TaskRecord(name=task.name, fingerprint=fingerprints[task.name])
        record = stored.get(task.name)

        if record is None:
            records[task.name] = fresh
            continue

        if task.name in invalidated or record.state is TaskState.FAILED:
            if record.live_handle is not None:
                stale.append(record.live_handle)
            records[task.name] = replace(fresh, handles=record.handles)
            continue

        records[task.name] = replace(record, fingerprint=fingerprints[task.name])

    succeeded = frozenset(name for name, record in records.items() if record.state is TaskState.SUCCEEDED)
    return ResumePlan(records=records, stale_handles=tuple(stale), succeeded=succeeded)
