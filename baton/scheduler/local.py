"""Run task jobs as detached processes on the coordinator's own host.

Used for development and small runs. Resource requests are not enforced.
"""

from datetime import UTC, datetime
import errno
import pathlib
import subprocess

import psutil

from baton.base_types import JobHandle, JobStatus, ResourceRequest, SchedulerClient, Task
from baton.config import ContainerConfig
from baton.constants import COMMAND_WRAPPER
from baton.exception import RejectedSubmissionError, TransientSubmissionError
from baton.scheduler.workdir import prepare_workdir, read_exitcode
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


class LocalClient(SchedulerClient):
    """Job ids are process ids. Processes started by a previous coordinator
    are still tracked through psutil and the exit code file."""

    def __init__(
        self,
        workdir: str | pathlib.Path,
        outdir: str | None = None,
        container: ContainerConfig | None = None,
    ) -> None:
        self.workdir = pathlib.Path(workdir)
        self.outdir = outdir
        self.container = container or ContainerConfig()
        self._processes: dict[str, subprocess.Popen] = {}

    def submit(self, task: Task, request: ResourceRequest) -> JobHandle:
        try:
            workdir = prepare_workdir(self.workdir, task, task.attempt, self.container, self.outdir)
        except OSError as err:
            raise TransientSubmissionError(f"Cannot prepare working directory for {task.name}: {err}") from err

        log.debug(f"Starting {task.name} attempt {task.attempt} locally ({request.cpus} cpus requested)")

        try:
            proc = subprocess.Popen(
                ["/bin/bash", str(workdir / COMMAND_WRAPPER)],
                cwd=workdir,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as err:
            if err.errno in (errno.EAGAIN, errno.ENOMEM):
                raise TransientSubmissionError(f"Cannot start {task.name}: {err}") from err
            raise RejectedSubmissionError(f"Cannot start {task.name}: {err}") from err

        job_id = str(proc.pid)
        self._processes[job_id] = proc

        return JobHandle(
            job_id=job_id,
            task_name=task.name,
            attempt=task.attempt,
            submitted_at=datetime.now(tz=UTC),
            workdir=str(workdir),
        )

    def query_status(self, handle: JobHandle) -> JobStatus:
        proc = self._processes.get(handle.job_id)

        if proc is not None:
            returncode = proc.poll()
            if returncode is None:
                return JobStatus.running()
            del self._processes[handle.job_id]
            recorded = read_exitcode(handle.workdir)
            if recorded is not None:
                return JobStatus.completed(recorded)
            # Killed by a signal before the wrapper could record anything
            return JobStatus.completed(128 - returncode if returncode < 0 else returncode, reason="no exitcode file")

        # Started by an earlier coordinator
        recorded = read_exitcode(handle.workdir)
        if recorded is not None:
            return JobStatus.completed(recorded, reason="exitcode file")

        if _alive(int(handle.job_id)):
            return JobStatus.running(reason="pid alive")

        return JobStatus.unknown(reason="process gone without an exit code")

    def cancel(self, handle: JobHandle) -> None:
        """Terminate the job's wrapper and everything it started. The process
        is reaped by the next status query."""

        try:
            parent = psutil.Process(int(handle.job_id))
            processes = [*parent.children(recursive=True), parent]
        except psutil.Error as err:
            log.warning(f"Could not cancel local job {handle.job_id} for {handle.task_name}: {err}")
            return

        for process in processes:
            try:
                process.terminate()
            except psutil.NoSuchProcess:
                # Already exited
                continue


def _alive(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False
