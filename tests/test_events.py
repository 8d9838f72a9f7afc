import pytest

from baton.events import (
    EVENT_TYPES,
    RunCompleteEvent,
    RunStartedEvent,
    TaskFailedEvent,
    TaskReadyEvent,
    deserialise_event,
    serialise_event,
)


@pytest.mark.parametrize(
    "event",
    [
        RunStartedEvent(run_id="brave-otter-x1y2z3", task_count=3, resumed=True, succeeded_count=1),
        RunCompleteEvent(run_id="brave-otter-x1y2z3", duration_seconds=12.5, succeeded=2, failed=1, skipped=0),
        TaskReadyEvent(task_name="align", attempt=2, labels=["process_high"]),
        TaskFailedEvent(task_name="align", attempt=3, reason="exit_code", message="exited 1", optional=True),
    ],
)
def test_events_serialise(event):
    serialised = serialise_event(event)

    assert serialised["type"] == type(event).__name__
    assert deserialise_event(serialised) == event


def test_every_event_type_is_registered():
    assert len(EVENT_TYPES) == 10


def test_unknown_event_type():
    with pytest.raises(KeyError):
        deserialise_event({"type": "NoSuchEvent", "data": {}})
