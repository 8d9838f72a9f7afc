from baton.base_types import Task, TaskState
from baton.events import TaskReadyEvent
from baton.tracker.state_machine.states import ReadyStateChange
from baton.tracker.state_machine.utils import commit


def promote_task(state, task: Task) -> ReadyStateChange:
    """A pending task whose dependencies are satisfied becomes ready for its
    first attempt."""

    attempt = task.attempt + 1
    commit(state, task, state=TaskState.READY, attempt=attempt, failure=None)
    state.events.append(TaskReadyEvent(task_name=task.name, attempt=attempt, labels=list(task.labels)))

    return ReadyStateChange(task.name, {"message": "Dependencies satisfied"})
