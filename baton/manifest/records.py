"""Convert task records to and from their stored form."""

from collections.abc import Mapping
from datetime import datetime
import json
from typing import Any

from baton.base_types import FailureReason, JobHandle, TaskRecord, TaskState
from baton.exception import ManifestCorruptError


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def record_to_row(record: TaskRecord) -> dict[str, Any]:
    return {
        "name": record.name,
        "state": record.state.value,
        "attempt": record.attempt,
        "failure": record.failure.value if record.failure else None,
        "exit_code": record.exit_code,
        "handles": json.dumps([handle.save() for handle in record.handles]),
        "live_handle": json.dumps(record.live_handle.save()) if record.live_handle else None,
        "unknown_since": _iso(record.unknown_since),
        "retry_at": _iso(record.retry_at),
        "fingerprint": record.fingerprint,
        "updated_at": _iso(record.updated_at),
    }


def record_from_row(row: Mapping[str, Any]) -> TaskRecord:
    """Rebuild a record.

    @raises ManifestCorruptError: The row holds values that cannot be decoded
    """

    try:
        return TaskRecord(
            name=row["name"],
            state=TaskState(row["state"]),
            attempt=int(row["attempt"]),
            failure=FailureReason(row["failure"]) if row["failure"] else None,
            exit_code=row["exit_code"],
            handles=tuple(JobHandle.load(item) for item in json.loads(row["handles"])),
            live_handle=JobHandle.load(json.loads(row["live_handle"])) if row["live_handle"] else None,
            unknown_since=_from_iso(row["unknown_since"]),
            retry_at=_from_iso(row["retry_at"]),
            fingerprint=row["fingerprint"],
            updated_at=_from_iso(row["updated_at"]),
        )
    except (KeyError, TypeError, ValueError) as err:
        raise ManifestCorruptError(f"Cannot decode manifest record for {row.get('name')!r}: {err}") from err
