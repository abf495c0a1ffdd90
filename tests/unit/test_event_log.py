"""Tests for the write-event log — append, query, ordering, persistence."""

import logging
import threading

from artifactos.runtime.event_log import SQLiteEventLog, record_event
from artifactos.schemas.events import (
    ArtifactCreated,
    ArtifactDeleted,
    BlobReclaimed,
    EventType,
    VersionAppended,
)

from tests.conftest import UnwritableEventLog


class TestSQLiteEventLogInMemory:
    def test_append_assigns_sequence(self) -> None:
        log = SQLiteEventLog()
        first = log.append(ArtifactCreated(artifact_id="a1", payload={"version": 1}))
        second = log.append(VersionAppended(artifact_id="a1", payload={"version": 2}))

        assert (first.seq, second.seq) == (1, 2)
        assert log.last_seq() == 2

    def test_query_by_artifact(self) -> None:
        log = SQLiteEventLog()
        log.append(ArtifactCreated(artifact_id="a1"))
        log.append(ArtifactCreated(artifact_id="a2"))
        log.append(ArtifactDeleted(artifact_id="a1"))

        events = log.query_by_artifact("a1")
        assert [e.event_type for e in events] == [
            EventType.ARTIFACT_CREATED,
            EventType.ARTIFACT_DELETED,
        ]

    def test_query_after(self) -> None:
        log = SQLiteEventLog()
        for i in range(5):
            log.append(ArtifactCreated(artifact_id=f"a{i}"))

        assert [e.seq for e in log.query_after(2)] == [3, 4, 5]
        assert [e.seq for e in log.query_after(0, limit=2)] == [1, 2]
        assert log.query_after(5) == []

    def test_query_by_type(self) -> None:
        log = SQLiteEventLog()
        log.append(ArtifactCreated(artifact_id="a1"))
        log.append(BlobReclaimed(payload={"blob_id": "b1"}))

        reclaimed = log.query_by_type(EventType.BLOB_RECLAIMED)
        assert len(reclaimed) == 1
        assert reclaimed[0].payload == {"blob_id": "b1"}
        assert reclaimed[0].artifact_id is None

    def test_empty_log(self) -> None:
        log = SQLiteEventLog()
        assert log.last_seq() == 0
        assert log.query_after() == []


class TestSQLiteEventLogFile:
    def test_persists_across_reopen(self, tmp_path) -> None:
        path = tmp_path / "events.db"
        log = SQLiteEventLog(path)
        log.append(ArtifactCreated(artifact_id="a1"))
        log.close()

        reopened = SQLiteEventLog(path)
        assert [e.artifact_id for e in reopened.query_after()] == ["a1"]
        reopened.close()

    def test_concurrent_appends(self, tmp_path) -> None:
        log = SQLiteEventLog(tmp_path / "events.db")

        def writer(n: int) -> None:
            for i in range(20):
                log.append(ArtifactCreated(artifact_id=f"w{n}-{i}"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        seqs = [e.seq for e in log.query_after()]
        assert seqs == list(range(1, 81))
        log.close()


class TestRecordEvent:
    def test_appends_when_log_is_set(self) -> None:
        log = SQLiteEventLog()
        stored = record_event(log, ArtifactCreated(artifact_id="a1"))
        assert stored is not None and stored.seq == 1
        log.close()

    def test_no_log_is_a_noop(self) -> None:
        assert record_event(None, ArtifactCreated(artifact_id="a1")) is None

    def test_failed_append_is_logged_not_raised(self, caplog) -> None:
        log = UnwritableEventLog()
        with caplog.at_level(logging.ERROR, logger="artifactos.runtime.event_log"):
            assert record_event(log, ArtifactDeleted(artifact_id="a1")) is None
        assert "Could not record ArtifactDeleted event for a1" in caplog.text
        assert log.append_calls == 1
        log.close()
