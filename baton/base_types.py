"""Core type definitions used throughout Baton."""

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from baton.constants import MIN_TRANSIENT_ATTEMPTS

if TYPE_CHECKING:
    from baton.events import BatonEvent

# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++ Task ++++++++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++


class TaskState(str, Enum):
    """Track the state tasks can be in"""

    # Waiting on upstream tasks
    PENDING = "pending"

    # Dependencies satisfied; may be submitted
    READY = "ready"

    # Handed to the scheduler, not yet running
    SUBMITTED = "submitted"

    # Scheduler reports the job as running
    RUNNING = "running"

    # Exited with code zero
    SUCCEEDED = "succeeded"

    # Terminal failure; see FailureReason
    FAILED = "failed"

    # Previous attempt failed; waiting for a new attempt
    RETRYING = "retrying"


TERMINAL_TASK_STATES = frozenset({TaskState.SUCCEEDED, TaskState.FAILED})

LIVE_TASK_STATES = frozenset({TaskState.SUBMITTED, TaskState.RUNNING})


class FailureReason(str, Enum):
    """Why a task ended up FAILED."""

    EXIT_CODE = "exit_code"
    REJECTED = "rejected"
    TRANSIENT = "transient"
    STATUS_LOST = "status_lost"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class TaskRequirement(str, Enum):
    """Does a task's failure fail its dependents?"""

    # Dependents are skipped when this task fails
    REQUIRED = "required"

    # Dependents run as though this task succeeded; no output contract
    OPTIONAL = "optional"


@dataclass(frozen=True)
class ResourceHints:
    """Resources a task declares for itself in the graph."""

    cpus: int | None = None
    memory_mb: int | None = None
    walltime_seconds: int | None = None
    container: str | None = None


@dataclass(frozen=True)
class ResourceOverride:
    """A partial resource policy. Unset (None) fields inherit from the
    previous layer."""

    cpus: int | None = None
    memory_mb: int | None = None
    walltime_seconds: int | None = None
    partitions: tuple[str, ...] | None = None
    directives: tuple[str, ...] | None = None
    account: str | None = None
    qos: str | None = None

    # retry policy
    max_attempts: int | None = None
    backoff_seconds: float | None = None
    retry_on_exit_codes: tuple[int, ...] | None = None

    # per-attempt escalation factors
    escalate_memory: float | None = None
    escalate_walltime: float | None = None


@dataclass(eq=False)
class Task:
    """One unit of pipeline work, submitted as its own scheduler job."""

    name: str
    command: str
    labels: tuple[str, ...] = ()
    hints: ResourceHints = field(default_factory=ResourceHints)
    depends_on: tuple[str, ...] = ()
    requirement: TaskRequirement = TaskRequirement.REQUIRED
    overrides: ResourceOverride = field(default_factory=ResourceOverride)
    publish: tuple[str, ...] = ()

    # Mutated by the execution tracker only
    state: TaskState = TaskState.PENDING
    attempt: int = 0
    failure: FailureReason | None = None
    exit_code: int | None = None

    @property
    def optional(self) -> bool:
        return self.requirement is TaskRequirement.OPTIONAL

    def definition(self) -> Mapping[str, Any]:
        """The fields that define what this task does. Used to fingerprint
        tasks, so resumed runs can spot edited tasks."""

        return {
            "name": self.name,
            "command": self.command,
            "labels": list(self.labels),
            "hints": {
                "cpus": self.hints.cpus,
                "memory_mb": self.hints.memory_mb,
                "walltime_seconds": self.hints.walltime_seconds,
                "container": self.hints.container,
            },
            "depends_on": sorted(self.depends_on),
            "requirement": self.requirement.value,
            "overrides": {
                key: list(value) if isinstance(value, tuple) else value
                for key, value in vars(self.overrides).items()
                if value is not None
            },
        }


# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++ Task Graph ++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++


@dataclass
class TaskGraph:
    """Tasks plus dependency edges. Always acyclic, and every dependency
    names a task in the graph; `load_graph` guarantees both."""

    name: str
    tasks: dict[str, Task]
    # Dependencies before dependents
    order: tuple[str, ...]

    def __getitem__(self, name: str) -> Task:
        return self.tasks[name]

    def __iter__(self) -> Iterator[Task]:
        for name in self.order:
            yield self.tasks[name]

    def __len__(self) -> int:
        return len(self.tasks)

    def dependents(self, name: str) -> list[Task]:
        """Tasks that directly depend on the named task."""

        return [task for task in self if name in task.depends_on]


# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++ Resources +++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++


@dataclass(frozen=True)
class ResourceRequest:
    """A concrete scheduler request for one attempt of one task."""

    cpus: int
    memory_mb: int
    walltime_seconds: int
    partitions: tuple[str, ...] = ()
    directives: tuple[str, ...] = ()
    account: str | None = None
    qos: str | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """How often, and on which failures, a task is retried."""

    max_attempts: int = 1
    backoff_seconds: float = 0.0
    # None retries every nonzero exit code
    retry_on_exit_codes: tuple[int, ...] | None = None

    def retryable_exit(self, exit_code: int) -> bool:
        if self.retry_on_exit_codes is None:
            return True
        return exit_code in self.retry_on_exit_codes

    def attempts_for(self, failure: FailureReason | None) -> int:
        """The attempt budget after a failure. Transient submission errors
        always get at least MIN_TRANSIENT_ATTEMPTS."""

        if failure is FailureReason.TRANSIENT:
            return max(self.max_attempts, MIN_TRANSIENT_ATTEMPTS)
        return self.max_attempts


# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++ Scheduler +++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++


@dataclass(frozen=True)
class JobHandle:
    """A single submission of a single task attempt."""

    job_id: str
    task_name: str
    attempt: int
    submitted_at: datetime
    workdir: str | None = None

    def save(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "task_name": self.task_name,
            "attempt": self.attempt,
            "submitted_at": self.submitted_at.isoformat(),
            "workdir": self.workdir,
        }

    @classmethod
    def load(cls, data: Mapping[str, Any]) -> "JobHandle":
        return cls(
            job_id=data["job_id"],
            task_name=data["task_name"],
            attempt=data["attempt"],
            submitted_at=datetime.fromisoformat(data["submitted_at"]),
            workdir=data.get("workdir"),
        )


class JobStatusKind(str, Enum):
    """What the scheduler can tell us about a job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"

    # The scheduler could not report on the job. Never equivalent to
    # COMPLETED or failed.
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class JobStatus:
    kind: JobStatusKind
    exit_code: int | None = None
    # The scheduler's own word for the state, e.g. OUT_OF_MEMORY
    reason: str | None = None

    @classmethod
    def pending(cls, reason: str | None = None) -> "JobStatus":
        return cls(JobStatusKind.PENDING, reason=reason)

    @classmethod
    def running(cls, reason: str | None = None) -> "JobStatus":
        return cls(JobStatusKind.RUNNING, reason=reason)

    @classmethod
    def completed(cls, exit_code: int, reason: str | None = None) -> "JobStatus":
        return cls(JobStatusKind.COMPLETED, exit_code=exit_code, reason=reason)

    @classmethod
    def unknown(cls, reason: str | None = None) -> "JobStatus":
        return cls(JobStatusKind.UNKNOWN, reason=reason)


class SchedulerClient(ABC):
    """Turns resource requests into scheduler jobs. Implementations are
    interchangeable; the tracker does not care whether status arrives by
    polling or push."""

    @abstractmethod
    def submit(self, task: Task, request: ResourceRequest) -> JobHandle:
        """Submit one attempt of a task. Must not wait for the job to finish.

        @param task: The task to submit; its `attempt` is the attempt number
        @param request: The resolved resource request for this attempt
        @return: A handle on the submitted job
        @raises TransientSubmissionError: The scheduler is temporarily unavailable
        @raises RejectedSubmissionError: The request can never succeed
        """

        raise NotImplementedError

    @abstractmethod
    def query_status(self, handle: JobHandle) -> JobStatus:
        """Report a job's status. Returns UNKNOWN, never a guess, when the
        scheduler has no information."""

        raise NotImplementedError

    @abstractmethod
    def cancel(self, handle: JobHandle) -> None:
        """Cancel a job, best-effort."""

        raise NotImplementedError


# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++
# ++++++++++++++++++++++ Run Manifest ++++++++++++++++++++++++++++++
# ++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++


@dataclass(frozen=True)
class TaskRecord:
    """The persisted state of a single task."""

    name: str
    state: TaskState = TaskState.PENDING
    attempt: int = 0
    failure: FailureReason | None = None
    exit_code: int | None = None

    # Every submission ever made for this task, oldest first
    handles: tuple[JobHandle, ...] = ()
    # The handle of the job currently in the scheduler, if any
    live_handle: JobHandle | None = None

    # When the scheduler first failed to report on the live job
    unknown_since: datetime | None = None
    # Do not resubmit before this time (backoff)
    retry_at: datetime | None = None

    fingerprint: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RunMetadata:
    """Run-level information held alongside task records."""

    run_id: str
    graph_name: str
    graph_fingerprint: str
    started_at: datetime
    finished: bool = False


class RunManifest(ABC):
    """Keeps track of the state of every task in a run, so runs can resume.
    All writes go through the execution tracker."""

    @abstractmethod
    def init(self) -> None:
        """Open the manifest and create any storage it needs."""

        raise NotImplementedError

    @abstractmethod
    def exists(self) -> bool:
        """Does this manifest already hold a run?"""

        raise NotImplementedError

    @abstractmethod
    def metadata(self) -> RunMetadata | None:
        raise NotImplementedError

    @abstractmethod
    def set_metadata(self, metadata: RunMetadata) -> None:
        raise NotImplementedError

    @abstractmethod
    def load(self) -> dict[str, TaskRecord]:
        """Load every task record, keyed by task name.

        @raises ManifestCorruptError: A record cannot be decoded
        """

        raise NotImplementedError

    @abstractmethod
    def save(self, record: TaskRecord) -> None:
        """Persist a task record atomically. A crash mid-write must leave the
        previous record intact."""

        raise NotImplementedError

    @abstractmethod
    def save_event(self, event: "BatonEvent") -> None:
        """Append an event to the run's event log."""

        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        """Discard all records, events and metadata."""

        raise NotImplementedError
