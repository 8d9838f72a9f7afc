from baton.manifest.sqlite.manifest import SQLiteRunManifest

__all__ = ["SQLiteRunManifest"]
