"""Resolve tasks into concrete resource requests.

Overrides are applied in increasing specificity, the last applied layer
winning per field:

1. global defaults
2. resources the task declares for itself
3. label layers, in the order of the task's labels
4. the exact-name layer
5. the task's own `resources` override
6. per-attempt escalation, then limits

Resolution reads nothing but its arguments, so the same task, attempt and
layers always produce the same request.
"""

from baton.base_types import ResourceOverride, ResourceRequest, RetryPolicy, Task
from baton.exception import PolicyError
from baton.policy.layers import PolicyLayers, merge_override


def effective_override(task: Task, layers: PolicyLayers) -> ResourceOverride:
    """Merge every layer that applies to a task, without escalation."""

    hints = ResourceOverride(
        cpus=task.hints.cpus,
        memory_mb=task.hints.memory_mb,
        walltime_seconds=task.hints.walltime_seconds,
    )

    ordered = [*layers.defaults(), hints]
    for label in task.labels:
        ordered.extend(layers.for_label(label))
    ordered.extend(layers.for_name(task.name))
    ordered.append(task.overrides)

    merged = ResourceOverride()
    for override in ordered:
        merged = merge_override(merged, override)
    return merged


def escalate(value: int, factor: float | None, attempt: int) -> int:
    """Scale a resource for a retry; factor 1.0 doubles it on attempt 2,
    triples it on attempt 3, and so on."""

    if not factor or attempt <= 1:
        return value
    return int(round(value * (1 + factor * (attempt - 1))))


def _cap(value: int, limit: int | None) -> int:
    return min(value, limit) if limit is not None else value


def resolve(task: Task, attempt: int, layers: PolicyLayers) -> ResourceRequest:
    """Produce the resource request for one attempt of a task.

    @param task: The task to resolve
    @param attempt: The attempt number, starting at 1
    @param layers: The layered resource policy
    @return: The concrete resource request
    @raises PolicyError: cpus, memory or walltime are not set by any layer
    """

    if attempt < 1:
        raise PolicyError(f"Attempt numbers start at 1, got {attempt} for task '{task.name}'")

    merged = effective_override(task, layers)

    missing = [
        name
        for name, value in [
            ("cpus", merged.cpus),
            ("memory", merged.memory_mb),
            ("time", merged.walltime_seconds),
        ]
        if value is None
    ]
    if missing:
        raise PolicyError(f"No {', '.join(missing)} configured for task '{task.name}'")

    assert merged.cpus is not None and merged.memory_mb is not None and merged.walltime_seconds is not None

    limits = layers.limits
    return ResourceRequest(
        cpus=_cap(merged.cpus, limits.cpus),
        memory_mb=_cap(escalate(merged.memory_mb, merged.escalate_memory, attempt), limits.memory_mb),
        walltime_seconds=_cap(
            escalate(merged.walltime_seconds, merged.escalate_walltime, attempt), limits.walltime_seconds
        ),
        partitions=merged.partitions or (),
        directives=merged.directives or (),
        account=merged.account,
        qos=merged.qos,
    )


def resolve_retry(task: Task, layers: PolicyLayers) -> RetryPolicy:
    """Produce the retry policy for a task, through the same layers."""

    merged = effective_override(task, layers)
    max_attempts = merged.max_attempts if merged.max_attempts is not None else 1

    return RetryPolicy(
        max_attempts=max(1, max_attempts),
        backoff_seconds=merged.backoff_seconds or 0.0,
        retry_on_exit_codes=merged.retry_on_exit_codes,
    )
