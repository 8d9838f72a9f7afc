from baton.base_types import FailureReason, JobStatus, Task, TaskState
from baton.events import TaskFailedEvent, TaskSucceededEvent
from baton.scheduler.workdir import publish_outputs
from baton.tracker.state_machine.states import FailedStateChange, StateChange, SucceededStateChange
from baton.tracker.state_machine.utils import commit, now, retry_or_fail
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


def handle_completed(state, task: Task, status: JobStatus) -> StateChange:
    """The task's job left the scheduler. Release its handle; exit code zero
    succeeds, anything else is retried if the retry policy allows it."""

    handle = state.records[task.name].live_handle
    assert handle is not None

    exit_code = status.exit_code if status.exit_code is not None else 1

    if exit_code == 0:
        commit(state, task, state=TaskState.SUCCEEDED, exit_code=0, live_handle=None, unknown_since=None, failure=None)

        if task.publish and state.outdir is not None and handle.workdir is not None:
            try:
                publish_outputs(task, handle.workdir, state.outdir)
            except OSError as err:
                log.warning(f"Could not publish outputs of {task.name}: {err}")

        duration = (now() - handle.submitted_at).total_seconds()
        state.events.append(
            TaskSucceededEvent(task_name=task.name, attempt=task.attempt, job_id=handle.job_id, duration_seconds=duration)
        )
        return SucceededStateChange(task.name, {"message": f"Job {handle.job_id} exited 0"})

    message = f"Job {handle.job_id} exited {exit_code}"
    if status.reason:
        message += f" ({status.reason})"

    if not state.retry_policy(task).retryable_exit(exit_code):
        commit(
            state,
            task,
            state=TaskState.FAILED,
            failure=FailureReason.EXIT_CODE,
            exit_code=exit_code,
            live_handle=None,
            unknown_since=None,
        )
        state.events.append(
            TaskFailedEvent(
                task_name=task.name,
                attempt=task.attempt,
                reason=FailureReason.EXIT_CODE.value,
                message=message,
                optional=task.optional,
            )
        )
        return FailedStateChange(task.name, {"message": f"{message}; exit code is not retried"})

    return retry_or_fail(
        state, task, FailureReason.EXIT_CODE, message, exit_code=exit_code, live_handle=None, unknown_since=None
    )
