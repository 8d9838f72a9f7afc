"""Events

Runs should be observable. The execution tracker yields an event for every task transition; the coordinator hands them to the progress monitor and the run manifest's event log.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any


class BatonEvent(ABC):
    """Base class for all Baton events"""

    @abstractmethod
    def save(self) -> Mapping[str, Any]:
        """Serialize the event to a dictionary.

        @return: The serialized event data
        """
        raise NotImplementedError

    @classmethod
    @abstractmethod
    def load(cls, data: Mapping[str, Any]) -> BatonEvent:
        """Deserialize the event from a dictionary.

        @param data: The serialized event data
        @return: The deserialized event
        """
        raise NotImplementedError


class DataclassEvent(BatonEvent):
    """Events whose fields are all JSON-friendly save and load themselves."""

    def save(self) -> Mapping[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def load(cls, data: Mapping[str, Any]) -> BatonEvent:
        names = {item.name for item in fields(cls)}  # type: ignore[arg-type]
        return cls(**{key: value for key, value in data.items() if key in names})


@dataclass
class RunStartedEvent(DataclassEvent):
    """Indicates that the coordinator has started (or resumed) a run"""

    run_id: str
    task_count: int
    resumed: bool = False
    # Tasks already succeeded in a previous coordinator
    succeeded_count: int = 0


@dataclass
class RunCompleteEvent(DataclassEvent):
    """Indicates that every task has reached a terminal state"""

    run_id: str
    duration_seconds: float
    succeeded: int
    failed: int
    skipped: int


@dataclass
class RunCancelledEvent(DataclassEvent):
    """Indicates that the run was cancelled"""

    run_id: str
    cancelled_tasks: list[str]


@dataclass
class TaskReadyEvent(DataclassEvent):
    """A task's dependencies are satisfied"""

    task_name: str
    attempt: int
    labels: list[str]


@dataclass
class TaskSubmittedEvent(DataclassEvent):
    """A task attempt was accepted by the scheduler"""

    task_name: str
    attempt: int
    job_id: str


@dataclass
class TaskRunningEvent(DataclassEvent):
    """The scheduler reports a task's job as running"""

    task_name: str
    attempt: int
    job_id: str


@dataclass
class TaskSucceededEvent(DataclassEvent):
    """A task's job exited with code zero"""

    task_name: str
    attempt: int
    job_id: str
    duration_seconds: float


@dataclass
class TaskRetryingEvent(DataclassEvent):
    """A task attempt failed, and the task will be tried again"""

    task_name: str
    attempt: int
    reason: str
    message: str


@dataclass
class TaskFailedEvent(DataclassEvent):
    """A task has failed terminally"""

    task_name: str
    attempt: int
    reason: str
    message: str
    optional: bool = False


@dataclass
class TaskSkippedEvent(DataclassEvent):
    """A task will never run, since a required upstream task failed"""

    task_name: str
    failed_dependency: str


EVENT_TYPES: dict[str, type[BatonEvent]] = {
    event_type.__name__: event_type
    for event_type in [
        RunStartedEvent,
        RunCompleteEvent,
        RunCancelledEvent,
        TaskReadyEvent,
        TaskSubmittedEvent,
        TaskRunningEvent,
        TaskSucceededEvent,
        TaskRetryingEvent,
        TaskFailedEvent,
        TaskSkippedEvent,
    ]
}


def serialise_event(event: BatonEvent) -> dict[str, Any]:
    """Serialise an event, tagged with its type."""

    return {"type": type(event).__name__, "data": dict(event.save())}


def deserialise_event(data: Mapping[str, Any]) -> BatonEvent:
    """Rebuild an event from `serialise_event` output."""

    event_type = EVENT_TYPES.get(data["type"])
    if event_type is None:
        raise KeyError(f"Unknown event type '{data['type']}'")

    return event_type.load(data["data"])
