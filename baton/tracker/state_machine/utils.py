from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from baton.base_types import FailureReason, Task, TaskRecord, TaskState
from baton.constants import MAX_BACKOFF_SECONDS
from baton.events import TaskFailedEvent, TaskRetryingEvent
from baton.tracker.state_machine.states import FailedStateChange, RetryingStateChange, StateChange


def now() -> datetime:
    return datetime.now(tz=UTC)


def commit(state, task: Task, /, **changes: Any) -> TaskRecord:
    """Apply changes to a task's record, persist it, then mirror it onto the
    task. Every transition goes through here, so the manifest is always at
    least as new as the in-memory state."""

    record = replace(state.records[task.name], **changes, updated_at=now())
    state.manifest.save(record)

    state.records[task.name] = record
    task.state = record.state
    task.attempt = record.attempt
    task.failure = record.failure
    task.exit_code = record.exit_code

    return record


def backoff_until(backoff_seconds: float, attempt: int) -> datetime | None:
    """When the next attempt may be submitted, backing off exponentially."""

    if backoff_seconds <= 0:
        return None

    delay = min(MAX_BACKOFF_SECONDS, backoff_seconds * (2 ** max(0, attempt - 1)))
    return now() + timedelta(seconds=delay)


def retry_or_fail(state, task: Task, reason: FailureReason, message: str, **changes: Any) -> StateChange:
    """End the current attempt. The task is retried while its retry policy
    has attempts left, and fails with `reason` once they are used up."""

    max_attempts = state.retry_policy(task).attempts_for(reason)

    if task.attempt < max_attempts:
        commit(state, task, state=TaskState.RETRYING, failure=reason, **changes)
        state.events.append(
            TaskRetryingEvent(task_name=task.name, attempt=task.attempt, reason=reason.value, message=message)
        )
        return RetryingStateChange(task.name, {"message": message})

    commit(state, task, state=TaskState.FAILED, failure=reason, **changes)
    state.events.append(
        TaskFailedEvent(
            task_name=task.name, attempt=task.attempt, reason=reason.value, message=message, optional=task.optional
        )
    )
    return FailedStateChange(
        task.name, {"message": f"{message}; giving up after {task.attempt} of {max_attempts} attempts"}
    )
