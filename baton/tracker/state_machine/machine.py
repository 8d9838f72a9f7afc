from baton.base_types import JobStatus, Task
from baton.constants import GREEN, RESET
from baton.tracker.state_machine.cancel_task import cancel_task
from baton.tracker.state_machine.poll_task import poll_task
from baton.tracker.state_machine.promote_task import promote_task
from baton.tracker.state_machine.retry_task import retry_task
from baton.tracker.state_machine.skip_task import skip_task
from baton.tracker.state_machine.states import (
    FailedStateChange,
    ReadyStateChange,
    StateChange,
)
from baton.tracker.state_machine.submit_task import submit_task
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


def log_call(fn):
    """Decorator to log the transitions a handler makes."""

    def wrapper(*args, **kwargs):
        result = fn(*args, **kwargs)

        if isinstance(result, StateChange):
            message = f"{GREEN}{result.task_name} {fn.__name__} → {result.state.value} | "
            message += result.data.get("message", "")
            message += RESET
            log.info(message)

        return result

    return wrapper


class TaskStateMachine:
    """The transitions a task can make, one handler each. Handlers return the
    change they made, or None when the task was left as it was."""

    @classmethod
    @log_call
    def promote(cls, state, task: Task) -> ReadyStateChange:
        """A pending task's dependencies are satisfied; it is ready for its first attempt."""

        return promote_task(state, task)

    @classmethod
    @log_call
    def skip(cls, state, task: Task, failed_dependency: Task) -> FailedStateChange:
        """A required dependency failed; the pending task will never run."""

        return skip_task(state, task, failed_dependency)

    @classmethod
    @log_call
    def submit(cls, state, task: Task) -> StateChange | None:
        """Hand a ready task to the scheduler, unless it is backing off or the
        queue is full."""

        return submit_task(state, task)

    @classmethod
    @log_call
    def poll(cls, state, task: Task, status: JobStatus) -> StateChange | None:
        """Apply the latest job status of a submitted or running task."""

        return poll_task(state, task, status)

    @classmethod
    @log_call
    def retry(cls, state, task: Task) -> ReadyStateChange | FailedStateChange:
        """Start another attempt of a retrying task."""

        return retry_task(state, task)

    @classmethod
    @log_call
    def cancel(cls, state, task: Task) -> FailedStateChange:
        """Cancel a task as part of cancelling the run."""

        return cancel_task(state, task)
