"""Tests for the Slurm submission client, with sbatch, squeue, sacct and
scancel mocked out."""

import pathlib
import subprocess
import tempfile
from unittest.mock import patch

import pytest

from baton.base_types import JobHandle, JobStatusKind, ResourceRequest, Task
from baton.exception import RejectedSubmissionError, TransientSubmissionError
from baton.scheduler import SlurmClient
from baton.scheduler.slurm import build_sbatch_args, exit_code_from_sacct, parse_job_id, status_from_state

REQUEST = ResourceRequest(
    cpus=4,
    memory_mb=8192,
    walltime_seconds=5400,
    partitions=("short", "long"),
    directives=("--gres=gpu:1 --constraint=a100",),
    account="lab",
)


def completed(args, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


def make_task(attempt=1):
    task = Task(name="align sample/1", command="bwa mem ref.fa reads.fq > out.sam")
    task.attempt = attempt
    return task


def test_build_sbatch_args():
    workdir = pathlib.Path("/work/align_sample_1/attempt-1")
    args = build_sbatch_args(make_task(), REQUEST, workdir)

    assert args[:2] == ["sbatch", "--parsable"]
    assert args[args.index("--job-name") + 1] == "baton-align_sample_1"
    assert args[args.index("--cpus-per-task") + 1] == "4"
    assert args[args.index("--mem") + 1] == "8192M"
    assert args[args.index("--time") + 1] == "01:30:00"
    assert args[args.index("--partition") + 1] == "short,long"
    assert args[args.index("--account") + 1] == "lab"
    assert "--qos" not in args
    assert "--gres=gpu:1" in args
    assert "--constraint=a100" in args
    assert args[-1] == str(workdir / ".command.run")


def test_parse_job_id():
    assert parse_job_id("12345\n") == "12345"
    assert parse_job_id("12345;cluster-a\n") == "12345"
    assert parse_job_id("Submitted batch job 12345") is None


@pytest.mark.parametrize(
    ("state", "exit_field", "kind", "exit_code"),
    [
        ("PENDING", "", JobStatusKind.PENDING, None),
        ("RUNNING", "", JobStatusKind.RUNNING, None),
        ("COMPLETED", "0:0", JobStatusKind.COMPLETED, 0),
        ("FAILED", "3:0", JobStatusKind.COMPLETED, 3),
        ("OUT_OF_MEMORY", "0:9", JobStatusKind.COMPLETED, 137),
        ("TIMEOUT", "0:0", JobStatusKind.COMPLETED, 140),
        ("CANCELLED by 1234", "0:15", JobStatusKind.COMPLETED, 143),
    ],
)
def test_status_from_state(state, exit_field, kind, exit_code):
    status = status_from_state(state, exit_field)

    assert status is not None
    assert status.kind is kind
    assert status.exit_code == exit_code


def test_unrecognised_state():
    assert status_from_state("SOMETHING_NEW") is None
    assert status_from_state("") is None


def test_exit_code_from_sacct_out_of_memory_without_code():
    assert exit_code_from_sacct("OUT_OF_MEMORY", "0:0") == 137


def test_submit_writes_workdir_and_returns_handle():
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = SlurmClient(tmp_dir)

        with patch("baton.scheduler.slurm.subprocess.run", return_value=completed([], stdout="4242\n")) as run:
            handle = client.submit(make_task(), REQUEST)

        assert handle.job_id == "4242"
        assert handle.attempt == 1
        assert handle.task_name == "align sample/1"

        workdir = pathlib.Path(handle.workdir)
        assert (workdir / ".command.sh").read_text() == "bwa mem ref.fa reads.fq > out.sam\n"
        assert (workdir / ".command.run").exists()
        assert run.call_args.args[0][0] == "sbatch"


@pytest.mark.parametrize(
    "stderr",
    [
        "sbatch: error: Batch job submission failed: Socket timed out on send/recv operation",
        "sbatch: error: Unable to contact slurm controller (connect failure)",
        "sbatch: error: QOSMaxSubmitJobPerUserLimit",
    ],
)
def test_transient_sbatch_errors(stderr):
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = SlurmClient(tmp_dir)

        with patch("baton.scheduler.slurm.subprocess.run", return_value=completed([], 1, stderr=stderr)):
            with pytest.raises(TransientSubmissionError):
                client.submit(make_task(), REQUEST)


def test_rejected_sbatch_errors():
    stderr = "sbatch: error: invalid partition specified: gpu"

    with tempfile.TemporaryDirectory() as tmp_dir:
        client = SlurmClient(tmp_dir)

        with patch("baton.scheduler.slurm.subprocess.run", return_value=completed([], 1, stderr=stderr)):
            with pytest.raises(RejectedSubmissionError) as err:
                client.submit(make_task(), REQUEST)

    assert err.value.detail == stderr


def test_sbatch_timeout_is_transient():
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = SlurmClient(tmp_dir, submit_timeout=5)

        with patch("baton.scheduler.slurm.subprocess.run", side_effect=subprocess.TimeoutExpired("sbatch", 5)):
            with pytest.raises(TransientSubmissionError):
                client.submit(make_task(), REQUEST)


def test_missing_sbatch_is_rejected():
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = SlurmClient(tmp_dir)

        with patch("baton.scheduler.slurm.subprocess.run", side_effect=FileNotFoundError("sbatch")):
            with pytest.raises(RejectedSubmissionError):
                client.submit(make_task(), REQUEST)


def test_unparsable_job_id_is_rejected():
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = SlurmClient(tmp_dir)

        with patch("baton.scheduler.slurm.subprocess.run", return_value=completed([], stdout="ok\n")):
            with pytest.raises(RejectedSubmissionError):
                client.submit(make_task(), REQUEST)


def fake_slurm(squeue="", sacct=""):
    """A subprocess.run replacement answering squeue and sacct queries."""

    def run(args, **kwargs):
        if args[0] == "squeue":
            return completed(args, stdout=squeue)
        if args[0] == "sacct":
            return completed(args, stdout=sacct)
        return completed(args)

    return run


def handle(workdir=None):
    return JobHandle(job_id="77", task_name="a", attempt=1, submitted_at=None, workdir=workdir)  # type: ignore[arg-type]


def test_query_status_from_squeue():
    client = SlurmClient("/tmp")

    with patch("baton.scheduler.slurm.subprocess.run", side_effect=fake_slurm(squeue="RUNNING\n")):
        assert client.query_status(handle()).kind is JobStatusKind.RUNNING


def test_query_status_falls_back_to_sacct():
    client = SlurmClient("/tmp")
    sacct = "FAILED|2:0\n"

    with patch("baton.scheduler.slurm.subprocess.run", side_effect=fake_slurm(sacct=sacct)):
        status = client.query_status(handle())

    assert status.kind is JobStatusKind.COMPLETED
    assert status.exit_code == 2


def test_query_status_falls_back_to_exitcode_file():
    with tempfile.TemporaryDirectory() as tmp_dir:
        (pathlib.Path(tmp_dir) / ".exitcode").write_text("0\n")
        client = SlurmClient(tmp_dir)

        with patch("baton.scheduler.slurm.subprocess.run", side_effect=fake_slurm()):
            status = client.query_status(handle(tmp_dir))

    assert status.kind is JobStatusKind.COMPLETED
    assert status.exit_code == 0


def test_query_status_unknown():
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = SlurmClient(tmp_dir)

        with patch("baton.scheduler.slurm.subprocess.run", side_effect=fake_slurm()):
            status = client.query_status(handle(tmp_dir))

    assert status.kind is JobStatusKind.UNKNOWN


def test_cancel_failure_is_logged_not_raised(caplog):
    client = SlurmClient("/tmp")

    with patch(
        "baton.scheduler.slurm.subprocess.run", return_value=completed([], 1, stderr="scancel: error: Invalid job id")
    ):
        client.cancel(handle())

    assert "scancel 77 failed" in caplog.text
