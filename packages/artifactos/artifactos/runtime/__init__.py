"""ArtifactOS runtime — write-event log."""

from artifactos.runtime.event_log import EventLog, SQLiteEventLog

__all__ = ["EventLog", "SQLiteEventLog"]
