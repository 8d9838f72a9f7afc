from baton.base_types import FailureReason, Task, TaskState
from baton.events import TaskFailedEvent, TaskSubmittedEvent
from baton.exception import PolicyError, RejectedSubmissionError, TransientSubmissionError
from baton.policy.resolve import resolve
from baton.tracker.state_machine.states import FailedStateChange, StateChange, SubmittedStateChange
from baton.tracker.state_machine.utils import backoff_until, commit, now, retry_or_fail
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


def submit_task(state, task: Task) -> StateChange | None:
    """Submit a ready task's current attempt to the scheduler.

    Nothing is submitted while the task still has a live job, while it is
    backing off, or while the scheduler already holds `queue_size` jobs.
    """

    record = state.records[task.name]

    if record.live_handle is not None:
        # Never two live jobs for one task
        log.error(f"{task.name} is ready but job {record.live_handle.job_id} is still live; not submitting")
        return None

    if record.retry_at is not None and now() < record.retry_at:
        return None

    if state.live_count() >= state.queue_size:
        return None

    try:
        request = resolve(task, task.attempt, state.policy)
    except PolicyError as err:
        return _reject(state, task, str(err))

    try:
        handle = state.scheduler.submit(task, request)
    except TransientSubmissionError as err:
        return retry_or_fail(
            state,
            task,
            FailureReason.TRANSIENT,
            f"Transient submission error: {err}",
            retry_at=backoff_until(state.retry_policy(task).backoff_seconds, task.attempt),
        )
    except RejectedSubmissionError as err:
        return _reject(state, task, str(err))

    commit(
        state,
        task,
        state=TaskState.SUBMITTED,
        live_handle=handle,
        handles=(*record.handles, handle),
        unknown_since=None,
        retry_at=None,
    )
    state.events.append(TaskSubmittedEvent(task_name=task.name, attempt=task.attempt, job_id=handle.job_id))

    return SubmittedStateChange(
        task.name,
        {"message": f"Job {handle.job_id}: {request.cpus} cpus, {request.memory_mb} MB, {request.walltime_seconds}s"},
    )


def _reject(state, task: Task, message: str) -> FailedStateChange:
    commit(state, task, state=TaskState.FAILED, failure=FailureReason.REJECTED, retry_at=None)
    state.events.append(
        TaskFailedEvent(
            task_name=task.name,
            attempt=task.attempt,
            reason=FailureReason.REJECTED.value,
            message=message,
            optional=task.optional,
        )
    )
    return FailedStateChange(task.name, {"message": f"Submission rejected: {message}"})
