"""Tests for the memory and SQLite run manifests."""

from datetime import UTC, datetime
import pathlib
import sqlite3
import tempfile

import pytest

from baton.base_types import FailureReason, JobHandle, RunMetadata, TaskRecord, TaskState
from baton.events import TaskSubmittedEvent, deserialise_event
from baton.exception import ManifestCorruptError
from baton.manifest import MemoryRunManifest, SQLiteRunManifest

HANDLE = JobHandle(
    job_id="123",
    task_name="align",
    attempt=2,
    submitted_at=datetime(2026, 1, 1, 12, 0, tzinfo=UTC),
    workdir="/work/align/attempt-2",
)

RECORD = TaskRecord(
    name="align",
    state=TaskState.RUNNING,
    attempt=2,
    failure=None,
    exit_code=None,
    handles=(HANDLE,),
    live_handle=HANDLE,
    unknown_since=datetime(2026, 1, 1, 12, 5, tzinfo=UTC),
    fingerprint="abc123",
    updated_at=datetime(2026, 1, 1, 12, 5, tzinfo=UTC),
)

METADATA = RunMetadata(
    run_id="brave-otter-x1y2z3",
    graph_name="rnaseq",
    graph_fingerprint="f00",
    started_at=datetime(2026, 1, 1, 11, 0, tzinfo=UTC),
)


def temp_db() -> str:
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        return tmp.name


def test_sqlite_manifest_lifecycle():
    manifest = SQLiteRunManifest(temp_db())
    manifest.init()

    assert not manifest.exists()
    assert manifest.load() == {}

    manifest.set_metadata(METADATA)
    manifest.save(RECORD)

    assert manifest.exists()
    assert manifest.metadata() == METADATA
    assert manifest.load() == {"align": RECORD}

    failed = TaskRecord(name="align", state=TaskState.FAILED, attempt=3, failure=FailureReason.EXIT_CODE, exit_code=1)
    manifest.save(failed)
    assert manifest.load() == {"align": failed}

    manifest.reset()
    assert manifest.load() == {}
    assert manifest.metadata() is None
    manifest.close()


def test_sqlite_manifest_survives_reopening():
    path = temp_db()

    first = SQLiteRunManifest(path)
    first.init()
    first.set_metadata(METADATA)
    first.save(RECORD)
    first.close()

    second = SQLiteRunManifest(path)
    second.init()
    assert second.load()["align"] == RECORD
    assert second.metadata().run_id == METADATA.run_id
    second.close()


def test_sqlite_manifest_creates_parent_directories():
    with tempfile.TemporaryDirectory() as tmp_dir:
        manifest = SQLiteRunManifest(pathlib.Path(tmp_dir) / "results" / ".baton" / "manifest.db")
        manifest.init()
        manifest.save(RECORD)
        manifest.close()


def test_sqlite_manifest_events():
    manifest = SQLiteRunManifest(temp_db())
    manifest.init()
    manifest.save_event(TaskSubmittedEvent(task_name="align", attempt=1, job_id="123"))

    events = manifest.events()
    assert len(events) == 1
    assert deserialise_event(events[0]) == TaskSubmittedEvent(task_name="align", attempt=1, job_id="123")
    manifest.close()


def test_not_a_database_is_corrupt():
    path = temp_db()
    pathlib.Path(path).write_bytes(b"this is not sqlite" * 100)

    with pytest.raises(ManifestCorruptError):
        SQLiteRunManifest(path).init()


def test_undecodable_record_is_corrupt():
    path = temp_db()
    manifest = SQLiteRunManifest(path)
    manifest.init()
    manifest.save(RECORD)
    manifest.close()

    conn = sqlite3.connect(path)
    conn.execute("update tasks set state = 'exploded'")
    conn.commit()
    conn.close()

    reopened = SQLiteRunManifest(path)
    reopened.init()
    with pytest.raises(ManifestCorruptError):
        reopened.load()
    reopened.close()


def test_memory_manifest():
    manifest = MemoryRunManifest()
    manifest.init()
    manifest.set_metadata(METADATA)
    manifest.save(RECORD)

    assert manifest.exists()
    assert manifest.load() == {"align": RECORD}
    assert manifest.history == [RECORD]

    manifest.reset()
    assert not manifest.exists()
    assert manifest.load() == {}
