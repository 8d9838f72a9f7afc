from baton.tracker.tracker import ExecutionTracker, TrackerState

__all__ = ["ExecutionTracker", "TrackerState"]
