"""Submit and track task jobs on Slurm through its command-line tools.

Submission goes through `sbatch --parsable`; status through `squeue` while a
job is queued or running, then `sacct` once it has left the queue, then the
exit code file the task wrapper writes. When none of these know about a job,
the status is UNKNOWN.
"""

from datetime import UTC, datetime
import pathlib
import re
import shlex
import subprocess

from baton.base_types import JobHandle, JobStatus, ResourceRequest, SchedulerClient, Task
from baton.config import ContainerConfig
from baton.constants import COMMAND_WRAPPER, DEFAULT_SUBMIT_TIMEOUT_SECONDS
from baton.exception import RejectedSubmissionError, TransientSubmissionError
from baton.scheduler.workdir import prepare_workdir, read_exitcode, safe_name
from baton.utils.logging_config import get_logger
from baton.utils.units import format_walltime

log = get_logger(__name__)

# sbatch errors worth retrying: the controller is busy or unreachable, or a
# submit limit is reached and will clear as jobs finish
TRANSIENT_ERROR_RE = re.compile(
    r"socket timed out|unable to contact slurm controller|resource temporarily unavailable|"
    r"slurm_persist_conn|connection refused|try again|temporarily|"
    r"maxsubmitjob|submit ?limit|job violates accounting/qos policy \(job submit limit",
    re.IGNORECASE,
)

JOB_ID_RE = re.compile(r"^(\d+)(?:;.*)?$")

PENDING_STATES = frozenset(
    {"PENDING", "CONFIGURING", "REQUEUED", "REQUEUE_FED", "REQUEUE_HOLD", "RESIZING", "SUSPENDED", "STOPPED"}
)
RUNNING_STATES = frozenset({"RUNNING", "COMPLETING", "SIGNALING", "STAGE_OUT"})

# Exit codes used when Slurm ends a job without reporting one
FALLBACK_EXIT_CODES = {
    "OUT_OF_MEMORY": 137,
    "TIMEOUT": 140,
    "DEADLINE": 140,
}


def build_sbatch_args(task: Task, request: ResourceRequest, workdir: pathlib.Path) -> list[str]:
    """Build the sbatch command line for one task attempt.

    All directives are passed on the command line, so the wrapper script
    carries no #SBATCH headers that could conflict.
    """

    args = ["sbatch", "--parsable"]
    args.extend(["--job-name", f"baton-{safe_name(task.name)}"])
    args.extend(["--chdir", str(workdir)])
    args.extend(["--output", str(workdir / "slurm-%j.out")])
    args.extend(["--error", str(workdir / "slurm-%j.err")])
    args.extend(["--cpus-per-task", str(request.cpus)])
    args.extend(["--mem", f"{request.memory_mb}M"])
    args.extend(["--time", format_walltime(request.walltime_seconds)])

    if request.partitions:
        args.extend(["--partition", ",".join(request.partitions)])
    if request.account:
        args.extend(["--account", request.account])
    if request.qos:
        args.extend(["--qos", request.qos])

    for directive in request.directives:
        args.extend(shlex.split(directive))

    args.append(str(workdir / COMMAND_WRAPPER))
    return args


def parse_job_id(stdout: str) -> str | None:
    """Extract the job id from `sbatch --parsable` output ("123" or "123;cluster")."""

    for line in stdout.strip().splitlines():
        match = JOB_ID_RE.match(line.strip())
        if match:
            return match.group(1)
    return None


def exit_code_from_sacct(state: str, exit_field: str) -> int:
    """Turn sacct's State and ExitCode ("code:signal") into one exit code."""

    code, _, signal = exit_field.partition(":")
    exit_code = int(code) if code.isdigit() else 0
    signal_number = int(signal) if signal.isdigit() else 0

    if state == "COMPLETED":
        return exit_code
    if exit_code:
        return exit_code
    if signal_number:
        return 128 + signal_number
    return FALLBACK_EXIT_CODES.get(state, 1)


def status_from_state(state: str, exit_field: str = "") -> JobStatus | None:
    """Map a Slurm state word to a job status; None for words we do not know."""

    # sacct reports e.g. "CANCELLED by 1234"
    word = state.split()[0].rstrip("+") if state.strip() else ""

    if word in PENDING_STATES:
        return JobStatus.pending(reason=word)
    if word in RUNNING_STATES:
        return JobStatus.running(reason=word)
    if word in {
        "COMPLETED",
        "FAILED",
        "CANCELLED",
        "TIMEOUT",
        "OUT_OF_MEMORY",
        "NODE_FAIL",
        "PREEMPTED",
        "BOOT_FAIL",
        "DEADLINE",
    }:
        return JobStatus.completed(exit_code_from_sacct(word, exit_field), reason=word)
    return None


class SlurmClient(SchedulerClient):
    """Stateless adapter between task attempts and Slurm jobs."""

    def __init__(
        self,
        workdir: str | pathlib.Path,
        outdir: str | None = None,
        container: ContainerConfig | None = None,
        submit_timeout: float = DEFAULT_SUBMIT_TIMEOUT_SECONDS,
    ) -> None:
        self.workdir = pathlib.Path(workdir)
        self.outdir = outdir
        self.container = container or ContainerConfig()
        self.submit_timeout = submit_timeout

    def _run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(args, capture_output=True, text=True, timeout=self.submit_timeout, check=False)

    def submit(self, task: Task, request: ResourceRequest) -> JobHandle:
        try:
            workdir = prepare_workdir(self.workdir, task, task.attempt, self.container, self.outdir)
        except OSError as err:
            raise TransientSubmissionError(f"Cannot prepare working directory for {task.name}: {err}") from err

        args = build_sbatch_args(task, request, workdir)

        log.debug(f"Submitting {task.name} attempt {task.attempt}: {shlex.join(args)}")

        try:
            result = self._run(args)
        except subprocess.TimeoutExpired as err:
            raise TransientSubmissionError(f"sbatch timed out after {self.submit_timeout}s") from err
        except FileNotFoundError as err:
            raise RejectedSubmissionError("sbatch is not installed or not on PATH") from err
        except OSError as err:
            raise TransientSubmissionError(f"Could not run sbatch: {err}") from err

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if TRANSIENT_ERROR_RE.search(stderr):
                raise TransientSubmissionError(f"sbatch failed: {stderr}", detail=stderr)
            raise RejectedSubmissionError(f"sbatch rejected the job: {stderr}", detail=stderr)

        job_id = parse_job_id(result.stdout)
        if job_id is None:
            raise RejectedSubmissionError(f"Cannot parse a job id from sbatch output {result.stdout!r}")

        return JobHandle(
            job_id=job_id,
            task_name=task.name,
            attempt=task.attempt,
            submitted_at=datetime.now(tz=UTC),
            workdir=str(workdir),
        )

    def query_status(self, handle: JobHandle) -> JobStatus:
        queued = self._query_squeue(handle.job_id)
        if queued is not None:
            return queued

        accounted = self._query_sacct(handle.job_id)
        if accounted is not None:
            return accounted

        exit_code = read_exitcode(handle.workdir)
        if exit_code is not None:
            return JobStatus.completed(exit_code, reason="exitcode file")

        return JobStatus.unknown(reason="not reported by squeue or sacct")

    def _query_squeue(self, job_id: str) -> JobStatus | None:
        try:
            result = self._run(["squeue", "--noheader", "--jobs", job_id, "--format", "%T"])
        except (OSError, subprocess.TimeoutExpired) as err:
            log.warning(f"squeue failed for job {job_id}: {err}")
            return None

        if result.returncode != 0 or not result.stdout.strip():
            # Finished jobs drop out of squeue; sacct still knows them
            return None

        return status_from_state(result.stdout.strip().splitlines()[0])

    def _query_sacct(self, job_id: str) -> JobStatus | None:
        try:
            result = self._run(
                ["sacct", "--noheader", "--parsable2", "--allocations", "--jobs", job_id, "--format", "State,ExitCode"]
            )
        except (OSError, subprocess.TimeoutExpired) as err:
            log.warning(f"sacct failed for job {job_id}: {err}")
            return None

        if result.returncode != 0:
            return None

        for line in result.stdout.strip().splitlines():
            state, _, exit_field = line.partition("|")
            status = status_from_state(state, exit_field)
            if status is not None:
                return status
        return None

    def cancel(self, handle: JobHandle) -> None:
        try:
            result = self._run(["scancel", handle.job_id])
        except (OSError, subprocess.TimeoutExpired) as err:
            log.warning(f"Could not cancel job {handle.job_id} for {handle.task_name}: {err}")
            return

        if result.returncode != 0:
            log.warning(f"scancel {handle.job_id} failed: {result.stderr.strip()}")
