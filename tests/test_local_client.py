"""Tests for the local process scheduler, running real bash processes."""

import pathlib
import tempfile
import time

from baton.base_types import JobStatusKind, ResourceRequest, Task
from baton.scheduler import LocalClient

REQUEST = ResourceRequest(cpus=1, memory_mb=128, walltime_seconds=60)


def wait_for_completion(client, handle, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = client.query_status(handle)
        if status.kind is JobStatusKind.COMPLETED:
            return status
        time.sleep(0.05)
    raise AssertionError(f"Job {handle.job_id} did not finish within {timeout}s")


def make_task(command: str) -> Task:
    task = Task(name="local", command=command)
    task.attempt = 1
    return task


def test_local_job_reports_exit_code():
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = LocalClient(tmp_dir)
        handle = client.submit(make_task("echo hello; exit 3"), REQUEST)

        status = wait_for_completion(client, handle)

        assert status.exit_code == 3
        assert (pathlib.Path(handle.workdir) / ".command.out").read_text() == "hello\n"
        assert (pathlib.Path(handle.workdir) / ".exitcode").read_text().strip() == "3"


def test_job_from_an_earlier_coordinator():
    """A new client instance tracks a finished job through its exit code file."""

    with tempfile.TemporaryDirectory() as tmp_dir:
        first = LocalClient(tmp_dir)
        handle = first.submit(make_task("true"), REQUEST)
        wait_for_completion(first, handle)

        second = LocalClient(tmp_dir)
        status = second.query_status(handle)

        assert status.kind is JobStatusKind.COMPLETED
        assert status.exit_code == 0


def test_cancel_stops_a_running_job():
    with tempfile.TemporaryDirectory() as tmp_dir:
        client = LocalClient(tmp_dir)
        handle = client.submit(make_task("sleep 30"), REQUEST)

        assert client.query_status(handle).kind is JobStatusKind.RUNNING

        client.cancel(handle)
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            status = client.query_status(handle)
            if status.kind is not JobStatusKind.RUNNING:
                break
            time.sleep(0.05)

        assert status.kind is not JobStatusKind.RUNNING
