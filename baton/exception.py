"""Exceptions used throughout Baton."""


class BatonError(Exception):
    """Base exception for Baton-related errors."""


class ConfigError(BatonError):
    """The run configuration is malformed, or names an unknown profile."""


class PolicyError(BatonError):
    """A resource policy cannot produce a complete resource request."""


# ++++++++++++++++++++++ Graph errors ++++++++++++++++++++++


class GraphError(BatonError):
    """A task graph is structurally invalid. Always fatal, and always raised
    before anything is submitted."""


class GraphParseError(GraphError):
    """The task graph source cannot be read or understood."""


class UnknownDependencyError(GraphError):
    """A task depends on a task that is not in the graph."""

    def __init__(self, task_name: str, dependency: str) -> None:
        super().__init__(f"Task '{task_name}' depends on unknown task '{dependency}'")
        self.task_name = task_name
        self.dependency = dependency


class CyclicDependencyError(GraphError):
    """The task graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Task graph contains a cycle: {' -> '.join(cycle)}")
        self.cycle = cycle


# ++++++++++++++++++++++ Submission errors ++++++++++++++++++++++


class SubmissionError(BatonError):
    """The scheduler did not accept a job."""

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class TransientSubmissionError(SubmissionError):
    """The scheduler is temporarily unavailable, or its queue is full. Worth
    retrying after a backoff."""


class RejectedSubmissionError(SubmissionError):
    """The scheduler will never accept this request. Not retried."""


# ++++++++++++++++++++++ Manifest errors ++++++++++++++++++++++


class ManifestCorruptError(BatonError):
    """The run manifest cannot be read back. Fatal to the run."""
