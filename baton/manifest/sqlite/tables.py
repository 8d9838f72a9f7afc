RUN_TABLE_SCHEMA = """
create table if not exists run (
    id                        integer primary key check (id = 1),
    run_id                    text not null,
    graph_name                text not null,
    graph_fingerprint         text not null,
    started_at                text not null,
    finished                  integer not null default 0
);
"""

TASKS_TABLE_SCHEMA = """
create table if not exists tasks (
    name                      text primary key,
    state                     text not null,
    attempt                   integer not null,
    failure                   text,
    exit_code                 integer,
    handles                   text not null,
    live_handle               text,
    unknown_since             text,
    retry_at                  text,
    fingerprint               text,
    updated_at                text
);
"""

EVENTS_TABLE_SCHEMA = """
create table if not exists events (
    event_id                  integer primary key autoincrement,
    task_name                 text,
    event_type                text not null,
    event_blob                text not null,
    created_at                text
);
"""

TASKS_INDEX = """
CREATE INDEX IF NOT EXISTS idx_tasks_state ON tasks(state);
"""
