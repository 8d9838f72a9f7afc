"""Load declarative task graphs.

A graph source is YAML (a file path, or text) or an already-parsed mapping:

    name: rnaseq
    tasks:
      - name: fastqc
        label: process_low
        command: fastqc reads.fq.gz
        cpus: 2
        memory: 4 GB
        time: 1h
        container: quay.io/biocontainers/fastqc:0.12.1
      - name: multiqc
        command: multiqc .
        depends_on: [fastqc]
        optional: true
        resources: {memory: 8 GB}
        publish: ["*.html"]
"""

from collections.abc import Mapping
from graphlib import CycleError, TopologicalSorter
import os
import pathlib
from typing import Any, TypeAlias

import yaml

from baton.base_types import ResourceHints, ResourceOverride, Task, TaskGraph, TaskRequirement
from baton.exception import CyclicDependencyError, GraphParseError, UnknownDependencyError
from baton.utils.logging_config import get_logger
from baton.utils.units import parse_duration_seconds, parse_memory_mb

log = get_logger(__name__)

TASK_FIELDS = frozenset(
    {
        "name",
        "command",
        "label",
        "labels",
        "cpus",
        "memory",
        "time",
        "container",
        "depends_on",
        "optional",
        "resources",
        "publish",
    }
)

GraphSource: TypeAlias = str | pathlib.Path | Mapping[str, Any]


def read_source(source: GraphSource) -> Mapping[str, Any]:
    """Read a graph source into a mapping, without validating it."""

    if isinstance(source, Mapping):
        return source

    if isinstance(source, pathlib.Path) or _looks_like_path(source):
        path = pathlib.Path(source)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as err:
            raise GraphParseError(f"Cannot read task graph {path}: {err}") from err
    else:
        text = source

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise GraphParseError(f"Task graph is not valid YAML: {err}") from err

    if not isinstance(data, Mapping):
        raise GraphParseError("Task graph must be a mapping with a 'tasks' list")

    return data


def _looks_like_path(source: str) -> bool:
    if "\n" in source:
        return False
    return source.endswith((".yaml", ".yml")) or os.path.isfile(source)


def load_graph(source: GraphSource) -> TaskGraph:
    """Parse and validate a task graph.

    @param source: A YAML file path, YAML text, or a parsed mapping
    @return: The validated task graph
    @raises GraphParseError: The source is unreadable or malformed
    @raises UnknownDependencyError: A task depends on a missing task
    @raises CyclicDependencyError: The dependencies form a cycle
    """

    data = read_source(source)

    raw_tasks = data.get("tasks")
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise GraphParseError("Task graph must contain a non-empty 'tasks' list")

    tasks: dict[str, Task] = {}
    for idx, raw_task in enumerate(raw_tasks):
        task = parse_task(raw_task, idx)
        if task.name in tasks:
            raise GraphParseError(f"Task '{task.name}' is defined more than once")
        tasks[task.name] = task

    for task in tasks.values():
        for dependency in task.depends_on:
            if dependency not in tasks:
                raise UnknownDependencyError(task.name, dependency)

    order = topological_order(tasks)
    name = data.get("name") or "pipeline"

    log.debug(f"Loaded task graph '{name}' with {len(tasks)} tasks")
    return TaskGraph(name=str(name), tasks=tasks, order=order)


def topological_order(tasks: Mapping[str, Task]) -> tuple[str, ...]:
    """Order tasks so dependencies precede dependents.

    @raises CyclicDependencyError: The dependencies form a cycle
    """

    sorter = TopologicalSorter({name: task.depends_on for name, task in tasks.items()})
    try:
        return tuple(sorter.static_order())
    except CycleError as err:
        # graphlib reports the cycle as [a, b, ..., a], walking dependents backwards
        cycle = list(reversed(err.args[1]))
        raise CyclicDependencyError(cycle) from err


def parse_task(raw: Any, idx: int) -> Task:
    """Parse one entry of the 'tasks' list."""

    if not isinstance(raw, Mapping):
        raise GraphParseError(f"Task #{idx} must be a mapping")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise GraphParseError(f"Task #{idx} has no name")

    unknown = set(raw) - TASK_FIELDS
    if unknown:
        raise GraphParseError(f"Task '{name}' has unknown fields: {', '.join(sorted(unknown))}")

    command = raw.get("command")
    if not isinstance(command, str) or not command.strip():
        raise GraphParseError(f"Task '{name}' has no command")

    try:
        hints = ResourceHints(
            cpus=_optional_int(raw.get("cpus"), "cpus"),
            memory_mb=parse_memory_mb(raw["memory"]) if raw.get("memory") is not None else None,
            walltime_seconds=parse_duration_seconds(raw["time"]) if raw.get("time") is not None else None,
            container=_optional_str(raw.get("container"), "container"),
        )
        overrides = parse_override(raw.get("resources") or {})
    except (TypeError, ValueError) as err:
        raise GraphParseError(f"Task '{name}': {err}") from err

    optional = raw.get("optional", False)
    if not isinstance(optional, bool):
        raise GraphParseError(f"Task '{name}': 'optional' must be true or false")

    return Task(
        name=name,
        command=command,
        labels=_string_list(raw, "labels", name) or _string_list(raw, "label", name),
        hints=hints,
        depends_on=_string_list(raw, "depends_on", name),
        requirement=TaskRequirement.OPTIONAL if optional else TaskRequirement.REQUIRED,
        overrides=overrides,
        publish=_string_list(raw, "publish", name),
    )


def parse_override(raw: Mapping[str, Any]) -> ResourceOverride:
    """Parse a partial resource policy, as written in config and graph files.

    @raises ValueError: A value has the wrong type or unit
    """

    if not isinstance(raw, Mapping):
        raise TypeError("resource overrides must be a mapping")

    escalate = raw.get("escalate") or {}
    if not isinstance(escalate, Mapping):
        raise TypeError("'escalate' must be a mapping")

    partitions = raw.get("partitions", raw.get("queue"))
    directives = raw.get("directives", raw.get("cluster_options"))
    exit_codes = raw.get("retry_on_exit_codes")

    return ResourceOverride(
        cpus=_optional_int(raw.get("cpus"), "cpus"),
        memory_mb=parse_memory_mb(raw["memory"]) if raw.get("memory") is not None else None,
        walltime_seconds=parse_duration_seconds(raw["time"]) if raw.get("time") is not None else None,
        partitions=_as_tuple(partitions, "partitions", split=","),
        directives=_as_tuple(directives, "directives", split=None),
        account=_optional_str(raw.get("account"), "account"),
        qos=_optional_str(raw.get("qos"), "qos"),
        max_attempts=_optional_int(raw.get("max_attempts"), "max_attempts"),
        backoff_seconds=float(parse_duration_seconds(raw["backoff"])) if raw.get("backoff") is not None else None,
        retry_on_exit_codes=tuple(int(code) for code in exit_codes) if exit_codes is not None else None,
        escalate_memory=float(escalate["memory"]) if escalate.get("memory") is not None else None,
        escalate_walltime=float(escalate["time"]) if escalate.get("time") is not None else None,
    )


def _optional_int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"'{field_name}' must be a positive integer, got {value!r}")
    return value


def _optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"'{field_name}' must be a string, got {value!r}")
    return value


def _as_tuple(value: Any, field_name: str, split: str | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(split) if split else [value]
        return tuple(item.strip() for item in items if item.strip())
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    raise TypeError(f"'{field_name}' must be a string or a list of strings")


def _string_list(raw: Mapping[str, Any], key: str, task_name: str) -> tuple[str, ...]:
    value = raw.get(key)
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    raise GraphParseError(f"Task '{task_name}': '{key}' must be a string or a list of strings")
