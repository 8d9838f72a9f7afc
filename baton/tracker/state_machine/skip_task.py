from baton.base_types import FailureReason, Task, TaskState
from baton.events import TaskSkippedEvent
from baton.tracker.state_machine.states import FailedStateChange
from baton.tracker.state_machine.utils import commit


def skip_task(state, task: Task, failed_dependency: Task) -> FailedStateChange:
    """A required dependency failed for good, so the task can never run. It
    fails as skipped, without being submitted."""

    commit(state, task, state=TaskState.FAILED, failure=FailureReason.SKIPPED, retry_at=None)
    state.events.append(TaskSkippedEvent(task_name=task.name, failed_dependency=failed_dependency.name))

    return FailedStateChange(task.name, {"message": f"Required dependency '{failed_dependency.name}' failed"})
