from datetime import UTC, datetime
import json
import pathlib
import sqlite3

from baton.base_types import RunManifest, RunMetadata, TaskRecord
from baton.events import BatonEvent, serialise_event
from baton.exception import ManifestCorruptError
from baton.manifest.records import record_from_row, record_to_row
from baton.manifest.sqlite.tables import EVENTS_TABLE_SCHEMA, RUN_TABLE_SCHEMA, TASKS_INDEX, TASKS_TABLE_SCHEMA
from baton.utils.logging_config import get_logger

log = get_logger(__name__)


class SQLiteRunManifest(RunManifest):
    """Persists the manifest to a SQLite database. Every write is its own
    transaction, so a coordinator killed mid-write leaves the previous
    record in place rather than a truncated one."""

    conn: sqlite3.Connection

    def __init__(self, db_path: str | pathlib.Path):
        self._db_path = str(db_path)

    def _create_connection(self) -> sqlite3.Connection:
        """Create and configure a new database connection."""

        log.debug(f"Creating new database connection to {self._db_path}")
        # Use isolation_level=None for manual transaction control
        conn = sqlite3.connect(self._db_path, timeout=5, isolation_level=None)
        conn.row_factory = sqlite3.Row

        # WAL-mode so a crash mid-commit rolls back cleanly
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        conn.execute("PRAGMA synchronous=FULL;")

        return conn

    def init(self) -> None:
        """Establish a database connection and create tables."""

        if getattr(self, "conn", None) is not None:
            return

        pathlib.Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = self._create_connection()
            self.conn.execute("begin;")
            for schema in [RUN_TABLE_SCHEMA, TASKS_TABLE_SCHEMA, EVENTS_TABLE_SCHEMA, TASKS_INDEX]:
                self.conn.execute(schema)
            self.conn.execute("commit;")
        except sqlite3.DatabaseError as err:
            raise ManifestCorruptError(f"Cannot open run manifest {self._db_path}: {err}") from err

        log.debug(f"Run manifest ready at {self._db_path}")

    def exists(self) -> bool:
        return self.metadata() is not None

    def metadata(self) -> RunMetadata | None:
        try:
            row = self.conn.execute(
                "select run_id, graph_name, graph_fingerprint, started_at, finished from run where id = 1"
            ).fetchone()
        except sqlite3.DatabaseError as err:
            raise ManifestCorruptError(f"Cannot read run metadata: {err}") from err

        if row is None:
            return None

        try:
            return RunMetadata(
                run_id=row["run_id"],
                graph_name=row["graph_name"],
                graph_fingerprint=row["graph_fingerprint"],
                started_at=datetime.fromisoformat(row["started_at"]),
                finished=bool(row["finished"]),
            )
        except ValueError as err:
            raise ManifestCorruptError(f"Cannot decode run metadata: {err}") from err

    def set_metadata(self, metadata: RunMetadata) -> None:
        self.conn.execute("begin immediate;")
        try:
            self.conn.execute(
                """
                insert or replace into run (id, run_id, graph_name, graph_fingerprint, started_at, finished)
                values (1, ?, ?, ?, ?, ?)
                """,
                (
                    metadata.run_id,
                    metadata.graph_name,
                    metadata.graph_fingerprint,
                    metadata.started_at.isoformat(),
                    int(metadata.finished),
                ),
            )
        except BaseException:
            self.conn.execute("rollback;")
            raise
        self.conn.execute("commit;")

    def load(self) -> dict[str, TaskRecord]:
        try:
            rows = self.conn.execute("select * from tasks").fetchall()
        except sqlite3.DatabaseError as err:
            raise ManifestCorruptError(f"Cannot read task records: {err}") from err

        return {row["name"]: record_from_row(dict(row)) for row in rows}

    def save(self, record: TaskRecord) -> None:
        row = record_to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)

        self.conn.execute("begin immediate;")
        try:
            self.conn.execute(
                f"insert or replace into tasks ({columns}) values ({placeholders})",  # noqa: S608
                tuple(row.values()),
            )
        except BaseException:
            self.conn.execute("rollback;")
            raise
        self.conn.execute("commit;")

    def save_event(self, event: BatonEvent) -> None:
        """Store an event in the events table."""

        serialised = serialise_event(event)
        created_at = datetime.now(tz=UTC).isoformat()

        self.conn.execute(
            """
            insert into events (task_name, event_type, event_blob, created_at)
            values (?, ?, ?, ?)
            """,
            (serialised["data"].get("task_name"), serialised["type"], json.dumps(serialised["data"]), created_at),
        )

    def events(self) -> list[dict]:
        """Every stored event, oldest first, as serialised dictionaries."""

        rows = self.conn.execute("select event_type, event_blob from events order by event_id").fetchall()
        return [{"type": row["event_type"], "data": json.loads(row["event_blob"])} for row in rows]

    def reset(self) -> None:
        log.debug(f"Clearing run manifest {self._db_path}")

        self.conn.execute("begin immediate;")
        for table in ("tasks", "events", "run"):
            self.conn.execute(f"delete from {table};")  # noqa: S608
        self.conn.execute("commit;")

    def close(self) -> None:
        self.conn.close()
        del self.conn
