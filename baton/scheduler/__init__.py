import pathlib

from baton.base_types import SchedulerClient
from baton.config import RunConfig
from baton.scheduler.local import LocalClient
from baton.scheduler.slurm import SlurmClient


def scheduler_for(config: RunConfig, workdir: str | pathlib.Path, outdir: str | None = None) -> SchedulerClient:
    """Build the scheduler client the configured executor names."""

    if config.executor.name == "local":
        return LocalClient(workdir, outdir=outdir, container=config.container)

    return SlurmClient(
        workdir,
        outdir=outdir,
        container=config.container,
        submit_timeout=config.executor.submit_timeout_seconds,
    )


__all__ = ["LocalClient", "SlurmClient", "scheduler_for"]
