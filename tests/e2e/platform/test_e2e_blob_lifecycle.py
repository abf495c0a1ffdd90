"""End-to-end: shared content across artifacts survives deletion until unreferenced."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from artifactos.core.config import EngineConfig
from artifactos.integrity.hashing import sha256_hash
from artifactos.runtime.engine import ArtifactEngine
from artifactos.schemas.events import EventType

from artifactplatform.server import create_app
from artifactplatform.settings import SettingsManager

from tests.conftest import assert_event_sequence, create_via_api, make_meta, text


@pytest.mark.e2e
class TestSharedBlobLifecycle:
    def test_engine_scenario(self, engine_file: ArtifactEngine) -> None:
        chain, blobs = engine_file.chain, engine_file.blobs

        x, _ = chain.create_artifact(make_meta(), text("hello"))
        b1 = chain.get_current(x).blob_id
        assert blobs.get(b1).ref_count == 1

        chain.append_version(x, text("world"))
        b2 = chain.get_current(x).blob_id
        record = chain.get_artifact(x)
        assert (record.version_count, record.current_version) == (2, 2)
        assert blobs.get(b2).ref_count == 1

        y, _ = chain.create_artifact(make_meta(), text("hello"))
        assert chain.get_current(y).blob_id == b1
        assert blobs.get(b1).ref_count == 2

        assert chain.delete_artifact(x) == [b2]
        assert blobs.get(b1).ref_count == 1
        assert blobs.get(b2).ref_count == 0

        report = engine_file.sweeper.run_once()
        assert report.reclaimed_blobs == [b2]
        assert blobs.find_by_hash(sha256_hash(b"world")) is None
        assert blobs.read(b1) == b"hello"
        assert chain.read_content(chain.get_current(y)) == b"hello"

        assert_event_sequence(engine_file.events.query_after(), [
            EventType.ARTIFACT_CREATED,
            EventType.VERSION_APPENDED,
            EventType.ARTIFACT_CREATED,
            EventType.ARTIFACT_DELETED,
            EventType.BLOB_RECLAIMED,
        ])

    def test_over_http(self, tmp_path) -> None:
        engine = ArtifactEngine(EngineConfig(
            database_path=str(tmp_path / "data" / "artifacts.db"),
            object_store_dir=str(tmp_path / "objects"),
            put_backoff_seconds=0.0,
        ))
        app = create_app(engine=engine, settings_manager=SettingsManager(str(tmp_path)),
                         start_sweeper=False)

        with TestClient(app) as client:
            x = create_via_api(client, "hello")["artifact_id"]
            client.post(f"/artifacts/{x}/versions", json={"content": {"data": "world"}})
            y = create_via_api(client, "hello")["artifact_id"]

            deleted = client.delete(f"/artifacts/{x}").json()
            assert len(deleted["collectible_blobs"]) == 1

            report = client.post("/admin/sweep").json()
            assert report["reclaimed_blobs"] == deleted["collectible_blobs"]

            assert client.get(f"/artifacts/{y}/versions/1/content").content == b"hello"
            usage = client.get("/tenants/tenant-a/usage").json()
            assert usage["artifact_count"] == 1
            assert usage["stored_bytes"] == 5

        assert sorted(p.name for p in (tmp_path / "objects").rglob("*") if p.is_file()) == [
            sha256_hash(b"hello")
        ]
