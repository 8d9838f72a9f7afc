from baton.base_types import RunManifest, RunMetadata, TaskRecord
from baton.events import BatonEvent


class MemoryRunManifest(RunManifest):
    """Keeps the manifest in memory. Nothing survives the process; useful for
    tests and throwaway runs."""

    def __init__(self) -> None:
        self.records: dict[str, TaskRecord] = {}
        self.events: list[BatonEvent] = []
        self._metadata: RunMetadata | None = None
        # Every record saved, in order
        self.history: list[TaskRecord] = []

    def init(self) -> None:
        pass

    def exists(self) -> bool:
        return self._metadata is not None

    def metadata(self) -> RunMetadata | None:
        return self._metadata

    def set_metadata(self, metadata: RunMetadata) -> None:
        self._metadata = metadata

    def load(self) -> dict[str, TaskRecord]:
        return dict(self.records)

    def save(self, record: TaskRecord) -> None:
        self.records[record.name] = record
        self.history.append(record)

    def save_event(self, event: BatonEvent) -> None:
        self.events.append(event)

    def reset(self) -> None:
        self.records.clear()
        self.events.clear()
        self.history.clear()
        self._metadata = None
