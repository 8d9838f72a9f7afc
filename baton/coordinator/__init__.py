from baton.coordinator.loop import Coordinator, should_resume
from baton.coordinator.progress import BatonProgressMonitor, NoOpProgressMonitor
from baton.coordinator.summary import RunSummary, render_summary, summarise

__all__ = [
    "BatonProgressMonitor",
    "Coordinator",
    "NoOpProgressMonitor",
    "RunSummary",
    "render_summary",
    "should_resume",
    "summarise",
]
