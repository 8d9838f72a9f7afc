from baton.base_types import FailureReason, Task, TaskState
from baton.events import TaskFailedEvent, TaskReadyEvent
from baton.tracker.state_machine.states import FailedStateChange, ReadyStateChange
from baton.tracker.state_machine.utils import commit


def retry_task(state, task: Task) -> ReadyStateChange | FailedStateChange:
    """Start the next attempt of a retrying task. A resumed run may have
    lowered `max_attempts` since the task started retrying, so the budget is
    checked again here."""

    failure = task.failure or FailureReason.EXIT_CODE
    max_attempts = state.retry_policy(task).attempts_for(failure)

    if task.attempt >= max_attempts:
        commit(state, task, state=TaskState.FAILED, failure=failure, retry_at=None)
        message = f"No attempts left after {task.attempt} ({failure.value})"
        state.events.append(
            TaskFailedEvent(
                task_name=task.name, attempt=task.attempt, reason=failure.value, message=message, optional=task.optional
            )
        )
        return FailedStateChange(task.name, {"message": message})

    attempt = task.attempt + 1
    # retry_at survives, so submission still waits out any backoff
    commit(state, task, state=TaskState.READY, attempt=attempt, failure=None)
    state.events.append(TaskReadyEvent(task_name=task.name, attempt=attempt, labels=list(task.labels)))

    return ReadyStateChange(task.name, {"message": f"Attempt {attempt} of {max_attempts} after {failure.value}"})
