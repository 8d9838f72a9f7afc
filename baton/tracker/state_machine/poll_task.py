from baton.base_types import JobStatus, JobStatusKind, Task, TaskState
from baton.events import TaskRunningEvent
from baton.tracker.state_machine.handle_completed import handle_completed
from baton.tracker.state_machine.handle_unknown import handle_unknown
from baton.tracker.state_machine.states import RunningStateChange, StateChange, UnchangedStateChange
from baton.tracker.state_machine.utils import commit


def poll_task(state, task: Task, status: JobStatus) -> StateChange | None:
    """Apply a freshly queried job status to a submitted or running task."""

    match status.kind:
        case JobStatusKind.COMPLETED:
            return handle_completed(state, task, status)

        case JobStatusKind.UNKNOWN:
            return handle_unknown(state, task, status, poll=poll_task)

        case JobStatusKind.RUNNING if task.state is TaskState.SUBMITTED:
            record = commit(state, task, state=TaskState.RUNNING, unknown_since=None)
            assert record.live_handle is not None
            state.events.append(
                TaskRunningEvent(task_name=task.name, attempt=task.attempt, job_id=record.live_handle.job_id)
            )
            return RunningStateChange(task.name, {"message": f"Job {record.live_handle.job_id} running"})

    # Pending, or still running; only a lapse in status reporting needs clearing
    if state.records[task.name].unknown_since is not None:
        commit(state, task, unknown_since=None)
        return UnchangedStateChange(task.name, {"message": "Job status recovered", "state": task.state})

    return None
