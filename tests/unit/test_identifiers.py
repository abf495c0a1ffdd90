"""Tests for core identifier types and generation."""

from artifactos.core.identifiers import (
    ArtifactId,
    BlobId,
    HandoffId,
    RelationshipId,
    VersionId,
    generate_artifact_id,
    generate_blob_id,
    generate_handoff_id,
    generate_id,
    generate_relationship_id,
    generate_version_id,
)


class TestGenerateId:
    def test_returns_string(self) -> None:
        assert isinstance(generate_id(), str)

    def test_unique_ids(self) -> None:
        ids = {generate_id() for _ in range(100)}
        assert len(ids) == 100

    def test_uuid4_format(self) -> None:
        id_ = generate_id()
        parts = id_.split("-")
        assert len(parts) == 5
        assert len(id_) == 36


class TestTypedIdGenerators:
    def test_typed_ids_are_strings(self) -> None:
        for new_type in (ArtifactId, VersionId, BlobId, RelationshipId, HandoffId):
            assert new_type.__supertype__ is str

    def test_generators(self) -> None:
        for generate in (
            generate_artifact_id,
            generate_version_id,
            generate_blob_id,
            generate_relationship_id,
            generate_handoff_id,
        ):
            value = generate()
            assert isinstance(value, str)
            assert len(value) == 36
