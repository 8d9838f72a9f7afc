from baton.base_types import FailureReason, Task, TaskState
from baton.tracker.state_machine.states import FailedStateChange
from baton.tracker.state_machine.utils import commit


def cancel_task(state, task: Task) -> FailedStateChange:
    """The run is being cancelled; cancel the task's job, if it has one, and
    fail the task."""

    handle = state.records[task.name].live_handle
    if handle is not None:
        state.cancel_job(handle)

    commit(
        state,
        task,
        state=TaskState.FAILED,
        failure=FailureReason.CANCELLED,
        live_handle=None,
        unknown_since=None,
        retry_at=None,
    )

    message = f"Cancelled job {handle.job_id}" if handle is not None else "Cancelled before submission"
    return FailedStateChange(task.name, {"message": message})
