"""The coordinator: one long-lived process that ticks the execution tracker
until every task is terminal, or until it is asked to stop."""

from dataclasses import replace
import signal
import threading
import time

from baton.base_types import FailureReason, RunManifest, TaskState
from baton.constants import DEFAULT_POLL_INTERVAL_SECONDS
from baton.coordinator.progress import NoOpProgressMonitor, ProgressMonitor
from baton.coordinator.summary import RunSummary, summarise
from baton.events import BatonEvent, RunCompleteEvent
from baton.tracker import ExecutionTracker
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


def should_resume(manifest: RunManifest, resume: bool) -> bool:
    """Decide whether a run continues from the manifest's records.

    With `resume`, any existing manifest is continued. Without it, a manifest
    whose run never finished (its coordinator died) is continued, and a
    finished one is discarded for a fresh run.
    """

    metadata = manifest.metadata()
    if metadata is None:
        return False
    if resume:
        return True
    if not metadata.finished:
        log.warning(f"Run {metadata.run_id} did not finish; resuming it")
        return True
    return False


class Coordinator:
    def __init__(
        self,
        tracker: ExecutionTracker,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        monitor: ProgressMonitor | None = None,
    ):
        self.tracker = tracker
        self.poll_interval = poll_interval
        self.monitor = monitor or NoOpProgressMonitor()
        self._stop = threading.Event()
        self._cancel_requested = False

    def request_cancel(self) -> None:
        """Ask the run to stop; it cancels its live jobs at the next wakeup."""

        self._cancel_requested = True
        self._stop.set()

    def _handle_signal(self, signum, _frame) -> None:
        log.warning(f"Received {signal.Signals(signum).name}; cancelling the run")
        self.request_cancel()

    def _publish(self, events: list[BatonEvent]) -> None:
        for event in events:
            self.monitor.handle_event(event)

    def run(self, resume: bool = False) -> RunSummary:
        """Run the graph to completion (or cancellation).

        @param resume: Continue from the records already in the manifest
        @return: The outcome of every task
        @raises ManifestCorruptError: The manifest cannot be read
        """

        previous_handlers = {}
        if threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGINT, signal.SIGTERM):
                previous_handlers[signum] = signal.signal(signum, self._handle_signal)

        started = time.monotonic()
        try:
            with self.monitor:
                self._publish(self.tracker.start(resume=resume))
                cancelled = self._loop()
                duration = time.monotonic() - started
                summary = summarise(
                    self.tracker.run_id, self.tracker.records, self.tracker.graph, duration, cancelled=cancelled
                )
                if not cancelled:
                    self._publish(
                        self.tracker.record_event(
                            RunCompleteEvent(
                                run_id=self.tracker.run_id,
                                duration_seconds=duration,
                                succeeded=summary.succeeded,
                                failed=summary.failed,
                                skipped=summary.skipped,
                            )
                        )
                    )
                    self._mark_finished()
        finally:
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)

        return summary

    def _loop(self) -> bool:
        """Tick until done. Returns whether the run was cancelled."""

        while True:
            if self._cancel_requested:
                self._publish(self.tracker.cancel())
                return True

            self._publish(self.tracker.tick())
            if self.tracker.done():
                return False

            self._stop.wait(self.poll_interval)

    def _mark_finished(self) -> None:
        manifest = self.tracker.state.manifest
        metadata = manifest.metadata()
        if metadata is not None:
            manifest.set_metadata(replace(metadata, finished=True))

        failed = [
            name
            for name, record in self.tracker.records.items()
            if record.state is TaskState.FAILED and record.failure is not FailureReason.SKIPPED
        ]
        if failed:
            log.warning(f"Run {self.tracker.run_id} finished with failed tasks: {', '.join(failed)}")
        else:
            log.info(f"Run {self.tracker.run_id} finished")
