"""FastAPI server for the ArtifactOS Platform."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Response, WebSocket, WebSocketDisconnect

from artifactos.core.errors import (
    ArtifactOSError,
    ConflictError,
    NotFoundError,
    RequestValidationError,
    StorageError,
)
from artifactos.retention.sweeper import SweepReport
from artifactos.runtime.engine import ArtifactEngine
from artifactos.schemas.artifact import (
    ArtifactCreate,
    ArtifactFilter,
    ArtifactRecord,
    ArtifactStatus,
    UsageCounters,
    VersionRecord,
)
from artifactos.schemas.handoff import Handoff, HandoffCreate, HandoffState
from artifactos.schemas.lineage import Direction, Relationship

from artifactplatform.api_schemas import (
    AppendVersionRequest,
    AppendVersionResponse,
    ArtifactDetailResponse,
    CompleteHandoffRequest,
    CreateArtifactRequest,
    CreateArtifactResponse,
    CreateRelationshipRequest,
    EventResponse,
    HandoffCreatedResponse,
    LineageResponse,
    RelationshipCreatedResponse,
    UpdateArtifactRequest,
)
from artifactplatform.event_stream import EventStreamer, event_to_dict
from artifactplatform.settings import SettingsManager

logger = logging.getLogger(__name__)


def _http_error(exc: ArtifactOSError) -> HTTPException:
    """Map an engine error onto the matching HTTP status."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, RequestValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, StorageError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def create_app(
    *,
    engine: ArtifactEngine | None = None,
    settings_manager: SettingsManager | None = None,
    start_sweeper: bool | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Pre-built engine (tests pass an in-memory one). If None, one
            is built from the persisted platform settings.
        settings_manager: Settings manager instance (uses default if None).
        start_sweeper: Run the retention sweeper while the app is up.
            Defaults to the ``sweeper_enabled`` setting.
    """
    sm = settings_manager or SettingsManager()
    settings = sm.load()
    engine = engine or ArtifactEngine(settings.to_engine_config())
    run_sweeper = settings.sweeper_enabled if start_sweeper is None else start_sweeper

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if run_sweeper:
            engine.sweeper.start()
        try:
            yield
        finally:
            engine.close()

    app = FastAPI(title="ArtifactOS Platform", version="0.1.0", lifespan=lifespan)

    # Store on app state for endpoint access
    app.state.engine = engine
    app.state.streamer = EventStreamer()
    app.state.settings_manager = sm
    app.state.settings = settings

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # ── Artifact Endpoints ────────────────────────────────────────────

    @app.post("/artifacts", response_model=CreateArtifactResponse, status_code=201)
    def create_artifact(request: CreateArtifactRequest) -> dict[str, Any]:
        """Create an artifact and its first version."""
        meta = ArtifactCreate(
            tenant_id=request.tenant_id,
            owner_id=request.owner_id,
            external_id=request.external_id,
            artifact_type=request.artifact_type,
            title=request.title,
            summary=request.summary,
            provenance=request.provenance,
            retention_class=request.lifecycle.retention_class,
            visibility=request.lifecycle.visibility,
            status=request.lifecycle.status,
            expires_at=request.lifecycle.expires_at,
            tags=request.tags,
            created_by=request.created_by,
        )
        try:
            artifact_id, version_id = engine.chain.create_artifact(
                meta, request.content.to_content()
            )
            artifact = engine.chain.get_artifact(artifact_id)
        except ArtifactOSError as e:
            raise _http_error(e)
        return {
            "artifact_id": artifact_id,
            "version_id": version_id,
            "version": artifact.current_version,
            "url": engine.artifact_url(artifact_id),
            "created_at": artifact.created_at,
            "expires_at": artifact.expires_at,
        }

    @app.get("/artifacts", response_model=list[ArtifactRecord])
    def list_artifacts(
        tenant_id: str | None = None,
        session_id: str | None = None,
        task_id: str | None = None,
        agent: str | None = None,
        artifact_type: str | None = Query(default=None, alias="type"),
        status: ArtifactStatus | None = None,
        tag: str | None = None,
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
    ) -> list[ArtifactRecord]:
        """List artifacts, newest first. ``agent`` filters on the producer id."""
        criteria = ArtifactFilter(
            tenant_id=tenant_id,
            session_id=session_id,
            task_id=task_id,
            producer_id=agent,
            artifact_type=artifact_type,
            status=status,
            tag=tag,
            limit=limit,
            offset=offset,
        )
        try:
            return engine.chain.list_artifacts(criteria)
        except ArtifactOSError as e:
            raise _http_error(e)

    @app.get("/artifacts/{artifact_id}", response_model=ArtifactDetailResponse)
    def get_artifact(artifact_id: str) -> dict[str, Any]:
        """Artifact metadata plus the resolved current version and blob location."""
        try:
            artifact = engine.chain.get_artifact(artifact_id)
            current = engine.chain.get_current(artifact_id) if artifact.version_count else None
            location = engine.chain.blob_location(current) if current else None
        except ArtifactOSError as e:
            raise _http_error(e)
        return {
            "artifact": artifact,
            "url": engine.artifact_url(artifact_id),
            "current_version": current,
            "blob_location": location,
        }

    @app.patch("/artifacts/{artifact_id}", response_model=ArtifactRecord)
    def update_artifact(artifact_id: str, request: UpdateArtifactRequest) -> ArtifactRecord:
        """Metadata-only update. Never creates a version."""
        updates = request.model_dump(exclude_unset=True)
        if not updates:
            raise HTTPException(status_code=422, detail="No fields to update")
        try:
            return engine.chain.update_metadata(artifact_id, **updates)
        except ArtifactOSError as e:
            raise _http_error(e)

    @app.delete("/artifacts/{artifact_id}")
    def delete_artifact(artifact_id: str) -> dict[str, Any]:
        try:
            collectible = engine.chain.delete_artifact(artifact_id)
        except ArtifactOSError as e:
            raise _http_error(e)
        return {"artifact_id": artifact_id, "deleted": True, "collectible_blobs": collectible}

    # ── Version Endpoints ─────────────────────────────────────────────

    @app.post(
        "/artifacts/{artifact_id}/versions",
        response_model=AppendVersionResponse,
        status_code=201,
    )
    def append_version(artifact_id: str, request: AppendVersionRequest) -> dict[str, Any]:
        try:
            version_id = engine.chain.append_version(
                artifact_id,
                request.content.to_content(),
                request.change_summary,
                created_by=request.created_by,
            )
            version = engine.chain.get_version_by_id(version_id)
        except ArtifactOSError as e:
            raise _http_error(e)
        return {
            "artifact_id": artifact_id,
            "version_id": version_id,
            "version": version.number,
            "blob_id": version.blob_id,
            "sha256": version.sha256,
        }

    @app.get("/artifacts/{artifact_id}/versions", response_model=list[VersionRecord])
    def list_versions(artifact_id: str) -> list[VersionRecord]:
        try:
            return engine.chain.list_versions(artifact_id)
        except ArtifactOSError as e:
            raise _http_error(e)

    @app.get("/artifacts/{artifact_id}/versions/{number}", response_model=VersionRecord)
    def get_version(artifact_id: str, number: int) -> VersionRecord:
        try:
            return engine.chain.get_version(artifact_id, number)
        except ArtifactOSError as e:
            raise _http_error(e)

    @app.get("/artifacts/{artifact_id}/versions/{number}/content")
    def get_version_content(artifact_id: str, number: int) -> Response:
        """Raw bytes of one version, served with its media type."""
        try:
            version = engine.chain.get_version(artifact_id, number)
            data = engine.chain.read_content(version)
        except ArtifactOSError as e:
            raise _http_error(e)
        return Response(content=data, media_type=version.media_type)

    # ── Lineage Endpoints ─────────────────────────────────────────────

    @app.get("/artifacts/{artifact_id}/lineage", response_model=LineageResponse)
    def get_lineage(
        artifact_id: str,
        direction: Direction = Direction.ANCESTORS,
        depth: int | None = Query(default=None, ge=1),
    ) -> dict[str, Any]:
        try:
            nodes = list(engine.lineage.traverse(artifact_id, direction, depth))
        except ArtifactOSError as e:
            raise _http_error(e)
        return {
            "artifact_id": artifact_id,
            "direction": direction,
            "depth": depth or engine.config.lineage_max_depth,
            "nodes": nodes,
        }

    @app.get("/artifacts/{artifact_id}/relationships", response_model=list[Relationship])
    def list_relationships(artifact_id: str) -> list[Relationship]:
        if not engine.chain.exists(artifact_id):
            raise HTTPException(status_code=404, detail=f"Artifact '{artifact_id}' not found")
        return engine.lineage.relationships_of(artifact_id)

    @app.post("/relationships", response_model=RelationshipCreatedResponse, status_code=201)
    def create_relationship(request: CreateRelationshipRequest) -> dict[str, str]:
        try:
            relationship_id = engine.lineage.link(
                request.parent_id,
                request.child_id,
                request.type,
                request.context,
                parent_version=request.parent_version,
                child_version=request.child_version,
            )
        except ArtifactOSError as e:
            raise _http_error(e)
        return {"relationship_id": relationship_id}

    @app.delete("/relationships/{relationship_id}", status_code=204)
    def delete_relationship(relationship_id: str) -> None:
        try:
            engine.lineage.unlink(relationship_id)
        except ArtifactOSError as e:
            raise _http_error(e)

    # ── Handoff Endpoints ─────────────────────────────────────────────

    @app.post("/handoffs", response_model=HandoffCreatedResponse, status_code=201)
    def create_handoff(request: HandoffCreate) -> dict[str, str]:
        try:
            handoff_id = engine.handoffs.create(request)
        except ArtifactOSError as e:
            raise _http_error(e)
        return {"handoff_id": handoff_id, "state": HandoffState.PENDING.value}

    @app.get("/handoffs", response_model=list[Handoff])
    def list_handoffs(
        target: str | None = None,
        status: HandoffState | None = None,
        artifact_id: str | None = None,
    ) -> list[Handoff]:
        return engine.handoffs.list(target=target, state=status, artifact_id=artifact_id)

    @app.get("/handoffs/{handoff_id}", response_model=Handoff)
    def get_handoff(handoff_id: str) -> Handoff:
        try:
            return engine.handoffs.get(handoff_id)
        except ArtifactOSError as e:
            raise _http_error(e)

    @app.post("/handoffs/{handoff_id}/accept", response_model=Handoff)
    def accept_handoff(handoff_id: str) -> Handoff:
        try:
            return engine.handoffs.accept(handoff_id)
        except ArtifactOSError as e:
            raise _http_error(e)

    @app.post("/handoffs/{handoff_id}/complete", response_model=Handoff)
    def complete_handoff(handoff_id: str, request: CompleteHandoffRequest) -> Handoff:
        try:
            return engine.handoffs.complete(handoff_id, request.response_artifact_id)
        except ArtifactOSError as e:
            raise _http_error(e)

    @app.post("/handoffs/{handoff_id}/cancel", response_model=Handoff)
    def cancel_handoff(handoff_id: str) -> Handoff:
        try:
            return engine.handoffs.cancel(handoff_id)
        except ArtifactOSError as e:
            raise _http_error(e)

    # ── Usage & Administration ────────────────────────────────────────

    @app.get("/tenants/{tenant_id}/usage", response_model=UsageCounters)
    def get_usage(tenant_id: str) -> UsageCounters:
        return engine.chain.usage(tenant_id)

    @app.post("/admin/sweep", response_model=SweepReport)
    def run_sweep() -> SweepReport:
        """Run one retention sweep now and return its report."""
        return engine.sweeper.run_once()

    # ── Events ────────────────────────────────────────────────────────

    @app.get("/events", response_model=list[EventResponse])
    def get_events(after_seq: int = Query(default=0, ge=0), limit: int = 500) -> list[dict[str, Any]]:
        return [event_to_dict(e) for e in engine.events.query_after(after_seq, limit=limit)]

    @app.websocket("/ws/events")
    async def ws_events(websocket: WebSocket, after_seq: int = 0) -> None:
        await websocket.accept()
        try:
            await app.state.streamer.stream(websocket, engine.events, after_seq)
        except WebSocketDisconnect:
            return
        await websocket.close()

    return app
