from baton.manifest.memory import MemoryRunManifest
from baton.manifest.restore import ResumePlan, plan_resume
from baton.manifest.sqlite import SQLiteRunManifest

__all__ = ["MemoryRunManifest", "ResumePlan", "SQLiteRunManifest", "plan_resume"]
