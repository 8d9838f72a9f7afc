from collections.abc import Iterable, Mapping

from baton.base_types import Task, TaskGraph, TaskRecord, TaskState


def ready_tasks(graph: TaskGraph, manifest: Mapping[str, TaskRecord] | None = None) -> set[Task]:
    """Tasks still PENDING whose dependencies are all satisfied.

    @param graph: The task graph
    @param manifest: Task records to read states from; defaults to the
        states held on the tasks themselves
    """

    def state_of(task: Task) -> TaskState:
        if manifest is not None and task.name in manifest:
            return manifest[task.name].state
        return task.state

    def satisfied(name: str) -> bool:
        # Failed optional tasks count as an accepted skip
        dependency = graph[name]
        state = state_of(dependency)
        if state is TaskState.SUCCEEDED:
            return True
        return state is TaskState.FAILED and dependency.optional

    return {
        task
        for task in graph
        if state_of(task) is TaskState.PENDING and all(satisfied(name) for name in task.depends_on)
    }


def blocked_by_failure(graph: TaskGraph, task: Task) -> Task | None:
    """The first required dependency that has terminally failed, if any. Its
    dependents can never run."""

    for name in task.depends_on:
        dependency = graph[name]
        if dependency.state is TaskState.FAILED and not dependency.optional:
            return dependency
    return None


def descendants(graph: TaskGraph, names: Iterable[str]) -> set[str]:
    """Every task that transitively depends on any of the named tasks."""

    found: set[str] = set()
    frontier = list(names)

    while frontier:
        name = frontier.pop()
        for dependent in graph.dependents(name):
            if dependent.name not in found:
                found.add(dependent.name)
                frontier.append(dependent.name)

    return found
