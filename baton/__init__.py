from baton.base_types import ResourceRequest, RetryPolicy, SchedulerClient, Task, TaskGraph, TaskState
from baton.graph import load_graph
from baton.policy import resolve

__version__ = "0.1.0"

__all__ = [
    "ResourceRequest",
    "RetryPolicy",
    "SchedulerClient",
    "Task",
    "TaskGraph",
    "TaskState",
    "load_graph",
    "resolve",
]
