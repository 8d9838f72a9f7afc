"""Run configuration.

One YAML file holds the layered resource policy, the executor settings and
the coordinator job's own resources. Named profiles are deep-merged over the
base configuration in the order they are selected:

    process:
      cpus: 1
      memory: 6 GB
      time: 4h
      max_attempts: 3
      escalate: {memory: 1.0, time: 1.0}
      with_label:
        process_high: {cpus: 12, memory: 72 GB, time: 16h}
      with_name:
        multiqc: {memory: 2 GB}
    limits: {cpus: 16, memory: 128 GB, time: 240h}
    executor:
      name: slurm
      queue: [short, long]
      account: lab
      poll_interval: 30s
    profiles:
      test:
        process: {time: 10m}
      singularity:
        container: {runtime: singularity}
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import os
import pathlib
from typing import Any

import yaml

from baton.constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_WORKERS,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_STATUS_GRACE_SECONDS,
    DEFAULT_SUBMIT_TIMEOUT_SECONDS,
)
from baton.exception import ConfigError
from baton.graph.load import parse_override
from baton.policy.layers import LayerKind, PolicyLayer, PolicyLayers, ResourceLimits
from baton.utils.logging_config import get_logger
from baton.utils.units import parse_duration_seconds, parse_memory_mb

log = get_logger(__name__)

EXECUTORS = frozenset({"slurm", "local"})
CONTAINER_RUNTIMES = frozenset({"singularity", "apptainer", "docker"})


@dataclass(frozen=True)
class ExecutorConfig:
    """Which scheduler tasks are sent to, and how the coordinator talks to it."""

    name: str = "slurm"
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    # How long a job may stay UNKNOWN before it is given up on
    status_grace_seconds: float = DEFAULT_STATUS_GRACE_SECONDS
    submit_timeout_seconds: float = DEFAULT_SUBMIT_TIMEOUT_SECONDS
    # Upper bound on jobs in the scheduler at once
    queue_size: int = DEFAULT_QUEUE_SIZE
    # Threads used to poll job status
    poll_workers: int = DEFAULT_POLL_WORKERS


@dataclass(frozen=True)
class ContainerConfig:
    runtime: str | None = None
    options: str = ""


@dataclass(frozen=True)
class CoordinatorConfig:
    """Resources and environment for the long-lived coordinator job."""

    job_name: str = "baton-coordinator"
    cpus: int = 2
    memory_mb: int = 4096
    walltime_seconds: int = 24 * 3600
    output: str = "logs/slurm-%j.out"
    error: str = "logs/slurm-%j.err"
    partition: str | None = None
    account: str | None = None
    qos: str | None = None
    # Shell lines run before the coordinator starts, e.g. conda activation
    setup: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunConfig:
    policy: PolicyLayers = field(default_factory=PolicyLayers)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    container: ContainerConfig = field(default_factory=ContainerConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    profiles: tuple[str, ...] = ()


def deep_merge(base: Mapping[str, Any], top: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge mappings; values in `top` win, except that nested
    mappings are merged rather than replaced."""

    merged = dict(base)
    for key, value in top.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def select_profiles(data: Mapping[str, Any], profiles: Sequence[str]) -> dict[str, Any]:
    """Apply named profiles over the base configuration, in order.

    @raises ConfigError: A profile is not defined
    """

    available = data.get("profiles") or {}
    if not isinstance(available, Mapping):
        raise ConfigError("'profiles' must be a mapping of profile name to configuration")

    merged = {key: value for key, value in data.items() if key != "profiles"}
    for profile in profiles:
        if profile not in available:
            known = ", ".join(sorted(available)) or "none"
            raise ConfigError(f"Unknown profile '{profile}' (available: {known})")
        merged = deep_merge(merged, available[profile] or {})

    return merged


def parse_profiles(value: str | Sequence[str] | None) -> tuple[str, ...]:
    """Split a comma-separated profile selection, e.g. 'singularity,test,slurm'."""

    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(item.strip() for item in value if item.strip())


def load_config(path: str | pathlib.Path | None = None, profiles: Sequence[str] = ()) -> RunConfig:
    """Load the run configuration, applying the selected profiles.

    A missing file at the default location yields the built-in defaults; a
    missing file that was asked for explicitly is an error.

    @raises ConfigError: The file is unreadable or malformed
    """

    explicit = path is not None or "BATON_CONFIG" in os.environ
    config_path = pathlib.Path(path or os.environ.get("BATON_CONFIG", DEFAULT_CONFIG_FILE))

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file {config_path} does not exist")
        log.info(f"No config file at {config_path}; using defaults")
        data: Mapping[str, Any] = {}
    else:
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as err:
            raise ConfigError(f"Cannot read config file {config_path}: {err}") from err

    return parse_config(data, profiles)


def parse_config(data: Mapping[str, Any], profiles: Sequence[str] = ()) -> RunConfig:
    """Build a run configuration from parsed YAML.

    @raises ConfigError: A section is malformed
    """

    if not isinstance(data, Mapping):
        raise ConfigError("Configuration must be a mapping")

    merged = select_profiles(data, profiles)

    try:
        return RunConfig(
            policy=parse_policy(merged.get("process") or {}, merged.get("executor") or {}, merged.get("limits") or {}),
            executor=parse_executor(merged.get("executor") or {}),
            container=parse_container(merged.get("container") or {}),
            coordinator=parse_coordinator(merged.get("coordinator") or {}),
            profiles=tuple(profiles),
        )
    except (TypeError, ValueError, KeyError) as err:
        raise ConfigError(f"Invalid configuration: {err}") from err


def parse_policy(
    process: Mapping[str, Any], executor: Mapping[str, Any], limits: Mapping[str, Any]
) -> PolicyLayers:
    """Turn the `process` section into ordered policy layers.

    Cluster-wide submission options on the executor (queue, account, QOS,
    cluster options) form the first default layer; `process` defaults follow,
    then each `with_label` and `with_name` entry.
    """

    if not isinstance(process, Mapping):
        raise TypeError("'process' must be a mapping")

    cluster_wide = {key: executor[key] for key in ("queue", "account", "qos", "cluster_options") if key in executor}

    defaults = {key: value for key, value in process.items() if key not in ("with_label", "with_name")}
    layers = [
        PolicyLayer(LayerKind.DEFAULT, parse_override(cluster_wide)),
        PolicyLayer(LayerKind.DEFAULT, parse_override(defaults)),
    ]

    for label, raw in (process.get("with_label") or {}).items():
        layers.append(PolicyLayer(LayerKind.LABEL, parse_override(raw or {}), selector=str(label)))

    for name, raw in (process.get("with_name") or {}).items():
        layers.append(PolicyLayer(LayerKind.NAME, parse_override(raw or {}), selector=str(name)))

    return PolicyLayers(layers=tuple(layers), limits=parse_limits(limits))


def parse_limits(raw: Mapping[str, Any]) -> ResourceLimits:
    return ResourceLimits(
        cpus=int(raw["cpus"]) if raw.get("cpus") is not None else None,
        memory_mb=parse_memory_mb(raw["memory"]) if raw.get("memory") is not None else None,
        walltime_seconds=parse_duration_seconds(raw["time"]) if raw.get("time") is not None else None,
    )


def parse_executor(raw: Mapping[str, Any]) -> ExecutorConfig:
    name = raw.get("name", "slurm")
    if name not in EXECUTORS:
        raise ValueError(f"unknown executor '{name}' (expected one of {', '.join(sorted(EXECUTORS))})")

    defaults = ExecutorConfig()
    return ExecutorConfig(
        name=name,
        poll_interval_seconds=float(parse_duration_seconds(raw.get("poll_interval", defaults.poll_interval_seconds))),
        status_grace_seconds=float(parse_duration_seconds(raw.get("status_grace", defaults.status_grace_seconds))),
        submit_timeout_seconds=float(
            parse_duration_seconds(raw.get("submit_timeout", defaults.submit_timeout_seconds))
        ),
        queue_size=_at_least_one(raw.get("queue_size", defaults.queue_size), "queue_size"),
        poll_workers=_at_least_one(raw.get("poll_workers", defaults.poll_workers), "poll_workers"),
    )


def _at_least_one(value: Any, name: str) -> int:
    # Zero would leave ready tasks waiting forever
    number = int(value)
    if number < 1:
        raise ValueError(f"executor.{name} must be at least 1, got {value!r}")
    return number


def parse_container(raw: Mapping[str, Any]) -> ContainerConfig:
    runtime = raw.get("runtime")
    if runtime is not None and runtime not in CONTAINER_RUNTIMES:
        raise ValueError(f"unknown container runtime '{runtime}'")
    return ContainerConfig(runtime=runtime, options=str(raw.get("options", "")))


def parse_coordinator(raw: Mapping[str, Any]) -> CoordinatorConfig:
    defaults = CoordinatorConfig()
    setup = raw.get("setup") or ()
    if isinstance(setup, str):
        setup = setup.splitlines()

    return CoordinatorConfig(
        job_name=str(raw.get("job_name", defaults.job_name)),
        cpus=int(raw.get("cpus", defaults.cpus)),
        memory_mb=parse_memory_mb(raw.get("memory", defaults.memory_mb)),
        walltime_seconds=parse_duration_seconds(raw.get("time", defaults.walltime_seconds)),
        output=str(raw.get("output", defaults.output)),
        error=str(raw.get("error", defaults.error)),
        partition=raw.get("partition"),
        account=raw.get("account"),
        qos=raw.get("qos"),
        setup=tuple(str(line) for line in setup),
    )
