from dataclasses import dataclass, field

from baton.base_types import TaskState


@dataclass
class StateChange:
    """Represents a task transition in the execution tracker. Subclasses are
    named after the state the task moved into."""

    task_name: str
    data: dict
    state: TaskState = field(default=TaskState.PENDING, init=False)


@dataclass
class ReadyStateChange(StateChange):
    state: TaskState = field(default=TaskState.READY, init=False)


@dataclass
class SubmittedStateChange(StateChange):
    state: TaskState = field(default=TaskState.SUBMITTED, init=False)


@dataclass
class RunningStateChange(StateChange):
    state: TaskState = field(default=TaskState.RUNNING, init=False)


@dataclass
class SucceededStateChange(StateChange):
    state: TaskState = field(default=TaskState.SUCCEEDED, init=False)


@dataclass
class RetryingStateChange(StateChange):
    state: TaskState = field(default=TaskState.RETRYING, init=False)


@dataclass
class FailedStateChange(StateChange):
    state: TaskState = field(default=TaskState.FAILED, init=False)


@dataclass
class UnchangedStateChange(StateChange):
    """The task's state is as before; only its record changed (e.g. its
    job's status went missing)."""

    def __post_init__(self) -> None:
        self.state = self.data["state"]
