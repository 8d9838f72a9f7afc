"""Tests for resolving tasks into resource requests through policy layers."""

import pytest

from baton.base_types import FailureReason, ResourceHints, ResourceOverride, RetryPolicy, Task
from baton.exception import PolicyError
from baton.policy import LayerKind, PolicyLayer, PolicyLayers, ResourceLimits, resolve, resolve_retry
from baton.policy.resolve import escalate

DEFAULTS = ResourceOverride(cpus=1, memory_mb=6144, walltime_seconds=4 * 3600, max_attempts=3)


def layers(*extra: PolicyLayer, limits: ResourceLimits | None = None) -> PolicyLayers:
    return PolicyLayers(
        layers=(PolicyLayer(LayerKind.DEFAULT, DEFAULTS), *extra),
        limits=limits or ResourceLimits(),
    )


def test_defaults_apply_to_unlabelled_tasks():
    request = resolve(Task(name="a", command="true"), 1, layers())

    assert request.cpus == 1
    assert request.memory_mb == 6144
    assert request.walltime_seconds == 4 * 3600


def test_layers_apply_in_order_of_specificity():
    policy = layers(
        PolicyLayer(LayerKind.NAME, ResourceOverride(memory_mb=2048), selector="align"),
        PolicyLayer(LayerKind.LABEL, ResourceOverride(cpus=12, memory_mb=73728), selector="process_high"),
    )
    task = Task(
        name="align",
        command="bwa mem",
        labels=("process_high",),
        hints=ResourceHints(cpus=4, walltime_seconds=600),
    )

    request = resolve(task, 1, policy)

    # label beats the task's hints; name beats the label, whatever the declaration order
    assert request.cpus == 12
    assert request.memory_mb == 2048
    assert request.walltime_seconds == 600


def test_task_resources_override_every_layer():
    policy = layers(PolicyLayer(LayerKind.NAME, ResourceOverride(cpus=8), selector="a"))
    task = Task(name="a", command="true", overrides=ResourceOverride(cpus=2, partitions=("gpu",)))

    request = resolve(task, 1, policy)

    assert request.cpus == 2
    assert request.partitions == ("gpu",)


def test_later_labels_win():
    policy = layers(
        PolicyLayer(LayerKind.LABEL, ResourceOverride(cpus=2), selector="low"),
        PolicyLayer(LayerKind.LABEL, ResourceOverride(cpus=6), selector="medium"),
    )

    assert resolve(Task(name="a", command="x", labels=("low", "medium")), 1, policy).cpus == 6
    assert resolve(Task(name="a", command="x", labels=("medium", "low")), 1, policy).cpus == 2


def test_resolution_is_deterministic():
    policy = layers(PolicyLayer(LayerKind.LABEL, ResourceOverride(escalate_memory=1.0), selector="big"))
    task = Task(name="a", command="x", labels=("big",))

    for attempt in (1, 2, 3):
        assert resolve(task, attempt, policy) == resolve(task, attempt, policy)


def test_escalation_scales_with_attempts():
    policy = layers(
        PolicyLayer(LayerKind.DEFAULT, ResourceOverride(escalate_memory=1.0, escalate_walltime=0.5)),
    )
    task = Task(name="a", command="x")

    memory = [resolve(task, attempt, policy).memory_mb for attempt in (1, 2, 3)]
    walltime = [resolve(task, attempt, policy).walltime_seconds for attempt in (1, 2, 3)]

    assert memory == [6144, 12288, 18432]
    assert walltime == [4 * 3600, 6 * 3600, 8 * 3600]


def test_limits_cap_escalation():
    policy = layers(
        PolicyLayer(LayerKind.DEFAULT, ResourceOverride(cpus=32, escalate_memory=1.0)),
        limits=ResourceLimits(cpus=16, memory_mb=8192),
    )

    request = resolve(Task(name="a", command="x"), 3, policy)

    assert request.cpus == 16
    assert request.memory_mb == 8192


def test_missing_resources_raise():
    with pytest.raises(PolicyError):
        resolve(Task(name="a", command="x"), 1, PolicyLayers())


def test_attempts_start_at_one():
    with pytest.raises(PolicyError):
        resolve(Task(name="a", command="x"), 0, layers())


def test_escalate():
    assert escalate(100, None, 3) == 100
    assert escalate(100, 1.0, 1) == 100
    assert escalate(100, 1.0, 2) == 200
    assert escalate(100, 0.5, 3) == 200


def test_resolve_retry():
    policy = layers(
        PolicyLayer(
            LayerKind.LABEL,
            ResourceOverride(max_attempts=5, backoff_seconds=30, retry_on_exit_codes=(137,)),
            selector="flaky",
        )
    )

    default = resolve_retry(Task(name="a", command="x"), policy)
    assert default.max_attempts == 3
    assert default.backoff_seconds == 0.0
    assert default.retryable_exit(1)

    flaky = resolve_retry(Task(name="b", command="x", labels=("flaky",)), policy)
    assert flaky.max_attempts == 5
    assert flaky.backoff_seconds == 30
    assert flaky.retryable_exit(137)
    assert not flaky.retryable_exit(1)

    assert resolve_retry(Task(name="c", command="x"), PolicyLayers()).max_attempts == 1


def test_transient_errors_get_a_minimum_attempt_budget():
    assert RetryPolicy().attempts_for(FailureReason.EXIT_CODE) == 1
    assert RetryPolicy().attempts_for(FailureReason.TRANSIENT) == 3
    assert RetryPolicy(max_attempts=5).attempts_for(FailureReason.TRANSIENT) == 5
    assert RetryPolicy(max_attempts=2).attempts_for(FailureReason.STATUS_LOST) == 2
