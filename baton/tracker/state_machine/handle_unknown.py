from collections.abc import Callable

from baton.base_types import FailureReason, JobStatus, JobStatusKind, Task
from baton.tracker.state_machine.states import StateChange, UnchangedStateChange
from baton.tracker.state_machine.utils import commit, now, retry_or_fail
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


def handle_unknown(
    state, task: Task, status: JobStatus, poll: Callable[..., StateChange | None]
) -> StateChange | None:
    """The scheduler cannot report on the task's job. Give it a grace period;
    once that lapses, check once more, then cancel the job and treat the
    attempt as lost. An unknown job is never assumed to have succeeded."""

    record = state.records[task.name]
    handle = record.live_handle
    assert handle is not None

    if record.unknown_since is None:
        commit(state, task, unknown_since=now())
        return UnchangedStateChange(
            task.name, {"message": f"Status of job {handle.job_id} unknown ({status.reason})", "state": task.state}
        )

    if now() - record.unknown_since < state.status_grace:
        return None

    recheck = state.query_status(handle)
    if recheck.kind is not JobStatusKind.UNKNOWN:
        log.info(f"Job {handle.job_id} for {task.name} reported {recheck.kind.value} on re-check")
        return poll(state, task, recheck)

    # The job must be gone before another attempt starts
    state.cancel_job(handle)

    grace = state.status_grace.total_seconds()
    return retry_or_fail(
        state,
        task,
        FailureReason.STATUS_LOST,
        f"Status of job {handle.job_id} unknown for longer than {grace:.0f}s",
        live_handle=None,
        unknown_since=None,
    )
