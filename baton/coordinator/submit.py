"""Submit the coordinator itself as a long-running Slurm job.

The rendered script carries the coordinator's own resources as #SBATCH
directives, runs any setup lines (e.g. conda activation), then runs
`baton run` and reports its exit code.
"""

from collections.abc import Sequence
import pathlib
import shlex
import subprocess

from baton.config import CoordinatorConfig
from baton.constants import DEFAULT_SUBMIT_TIMEOUT_SECONDS
from baton.exception import RejectedSubmissionError, TransientSubmissionError
from baton.scheduler.slurm import TRANSIENT_ERROR_RE, parse_job_id
from baton.utils.logging_config import get_logger
from baton.utils.units import format_walltime

log = get_logger(__name__)


def render_coordinator_script(config: CoordinatorConfig, command: Sequence[str]) -> str:
    """Render the sbatch script that runs `command` as the coordinator job."""

    directives = [
        f"--job-name={config.job_name}",
        f"--cpus-per-task={config.cpus}",
        f"--mem={config.memory_mb}M",
        f"--time={format_walltime(config.walltime_seconds)}",
        f"-o {config.output}",
        f"-e {config.error}",
    ]
    if config.partition:
        directives.append(f"--partition={config.partition}")
    if config.account:
        directives.append(f"--account={config.account}")
    if config.qos:
        directives.append(f"--qos={config.qos}")

    lines = ["#!/bin/bash", ""]
    lines.extend(f"#SBATCH {directive}" for directive in directives)
    lines.append("")

    if config.setup:
        lines.extend(config.setup)
        lines.append("")

    lines.extend(
        [
            'echo "Current working directory: $(pwd)"',
            'echo "Starting run at: $(date)"',
            "",
            shlex.join(command),
            "status=$?",
            "",
            'echo "Job finished with exit code ${status} at: $(date)"',
            "exit ${status}",
            "",
        ]
    )
    return "\n".join(lines)


def write_coordinator_script(path: pathlib.Path, config: CoordinatorConfig, command: Sequence[str]) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_coordinator_script(config, command), encoding="utf-8")
    path.chmod(0o755)
    return path


def submit_coordinator(
    script: pathlib.Path, config: CoordinatorConfig, timeout: float = DEFAULT_SUBMIT_TIMEOUT_SECONDS
) -> str:
    """Submit the coordinator script with sbatch and return its job id.

    @raises TransientSubmissionError: sbatch failed in a way worth retrying
    @raises RejectedSubmissionError: sbatch refused the job
    """

    # sbatch does not create the directories of its log files
    for log_path in (config.output, config.error):
        pathlib.Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        result = subprocess.run(
            ["sbatch", "--parsable", str(script)], capture_output=True, text=True, timeout=timeout, check=False
        )
    except subprocess.TimeoutExpired as err:
        raise TransientSubmissionError(f"sbatch timed out after {timeout}s") from err
    except FileNotFoundError as err:
        raise RejectedSubmissionError("sbatch is not installed or not on PATH") from err

    if result.returncode != 0:
        stderr = result.stderr.strip()
        if TRANSIENT_ERROR_RE.search(stderr):
            raise TransientSubmissionError(f"sbatch failed: {stderr}", detail=stderr)
        raise RejectedSubmissionError(f"sbatch rejected the coordinator job: {stderr}", detail=stderr)

    job_id = parse_job_id(result.stdout)
    if job_id is None:
        raise RejectedSubmissionError(f"Cannot parse a job id from sbatch output {result.stdout!r}")

    log.info(f"Submitted coordinator job {job_id} from {script}")
    return job_id
