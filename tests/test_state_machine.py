"""Tests for the transition handlers, and for log level selection."""

import logging

from baton.base_types import TaskState
from baton.tracker.state_machine import TaskStateMachine
from baton.tracker.state_machine.utils import commit
from baton.utils.logging_config import resolve_log_level


def test_transitions_are_logged(make_tracker, manifest, chain_graph, caplog):
    tracker = make_tracker(chain_graph)
    tracker.start()
    task = tracker.graph["a"]

    with caplog.at_level(logging.INFO, logger="baton.tracker.state_machine.machine"):
        change = TaskStateMachine.promote(tracker.state, task)

    assert change.state is TaskState.READY
    assert "a promote → ready | Dependencies satisfied" in caplog.text
    assert manifest.load()["a"].state is TaskState.READY
    assert manifest.load()["a"].attempt == 1


def test_unchanged_tasks_are_not_logged(make_tracker, chain_graph, caplog):
    tracker = make_tracker(chain_graph, queue_size=0)
    tracker.start()
    task = tracker.graph["a"]
    TaskStateMachine.promote(tracker.state, task)

    with caplog.at_level(logging.INFO, logger="baton.tracker.state_machine.machine"):
        # The queue is full, so nothing is submitted
        assert TaskStateMachine.submit(tracker.state, task) is None

    assert caplog.text == ""


def test_resolve_log_level(monkeypatch):
    monkeypatch.delenv("BATON_LOG_LEVEL", raising=False)
    assert resolve_log_level() == logging.WARNING
    assert resolve_log_level("debug") == logging.DEBUG

    monkeypatch.setenv("BATON_LOG_LEVEL", "info")
    assert resolve_log_level() == logging.INFO
    assert resolve_log_level("error") == logging.ERROR
    assert resolve_log_level("chatty") == logging.WARNING


def test_commit_takes_a_state_change(make_tracker, manifest, chain_graph):
    """A record's `state` field can be changed alongside the tracker state argument."""

    tracker = make_tracker(chain_graph)
    tracker.start()
    task = tracker.graph["b"]

    record = commit(tracker.state, task, state=TaskState.READY, attempt=1)

    assert record.state is TaskState.READY
    assert task.state is TaskState.READY
    assert task.attempt == 1
    assert manifest.load()["b"] == record
