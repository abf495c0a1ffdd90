"""Tests for the handoff coordinator — state machine, expiry, races."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from artifactos.core.errors import InvalidTransitionError, NotFoundError
from artifactos.handoff.coordinator import HandoffCoordinator
from artifactos.runtime.engine import ArtifactEngine
from artifactos.schemas.events import EventType
from artifactos.schemas.handoff import HandoffCreate, HandoffPriority, HandoffState

from tests.conftest import UnwritableEventLog, assert_has_event, make_meta, text


@pytest.fixture()
def artifact(engine: ArtifactEngine) -> str:
    artifact_id, _ = engine.chain.create_artifact(make_meta(), text("draft"))
    return artifact_id


@pytest.fixture()
def response(engine: ArtifactEngine) -> str:
    artifact_id, _ = engine.chain.create_artifact(make_meta(), text("review notes"))
    return artifact_id


def _handoff(engine: ArtifactEngine, artifact_id: str, **overrides) -> str:
    fields = {"artifact_id": artifact_id, "target": "reviewer"}
    fields.update(overrides)
    return engine.handoffs.create(HandoffCreate(**fields))


class TestCreate:
    def test_starts_pending(self, engine: ArtifactEngine, artifact: str) -> None:
        handoff_id = _handoff(engine, artifact, priority=HandoffPriority.HIGH,
                              context={"note": "please check"})
        handoff = engine.handoffs.get(handoff_id)
        assert handoff.state == HandoffState.PENDING
        assert handoff.priority == HandoffPriority.HIGH
        assert handoff.context == {"note": "please check"}
        assert_has_event(engine.events.query_by_artifact(artifact), EventType.HANDOFF_CREATED,
                         handoff_id=handoff_id)

    def test_missing_artifact(self, engine: ArtifactEngine) -> None:
        with pytest.raises(NotFoundError):
            _handoff(engine, "missing")

    def test_missing_pinned_version(self, engine: ArtifactEngine, artifact: str) -> None:
        with pytest.raises(NotFoundError):
            _handoff(engine, artifact, version=3)

    def test_get_missing(self, engine: ArtifactEngine) -> None:
        with pytest.raises(NotFoundError):
            engine.handoffs.get("missing")


class TestTransitions:
    def test_accept_then_complete(self, engine: ArtifactEngine, artifact: str, response: str) -> None:
        handoff_id = _handoff(engine, artifact)
        assert engine.handoffs.accept(handoff_id).state == HandoffState.ACCEPTED

        done = engine.handoffs.complete(handoff_id, response)
        assert done.state == HandoffState.COMPLETED
        assert done.response_artifact_id == response

    def test_complete_directly_from_pending(self, engine: ArtifactEngine, artifact: str,
                                            response: str) -> None:
        handoff_id = _handoff(engine, artifact)
        assert engine.handoffs.complete(handoff_id, response).state == HandoffState.COMPLETED

    @pytest.mark.parametrize("accept_first", [False, True])
    def test_cancel(self, engine: ArtifactEngine, artifact: str, accept_first: bool) -> None:
        handoff_id = _handoff(engine, artifact)
        if accept_first:
            engine.handoffs.accept(handoff_id)
        assert engine.handoffs.cancel(handoff_id).state == HandoffState.CANCELLED

    def test_accept_only_from_pending(self, engine: ArtifactEngine, artifact: str) -> None:
        handoff_id = _handoff(engine, artifact)
        engine.handoffs.accept(handoff_id)
        with pytest.raises(InvalidTransitionError):
            engine.handoffs.accept(handoff_id)

    def test_terminal_states_reject_everything(self, engine: ArtifactEngine, artifact: str,
                                               response: str) -> None:
        handoff_id = _handoff(engine, artifact)
        engine.handoffs.cancel(handoff_id)
        with pytest.raises(InvalidTransitionError):
            engine.handoffs.accept(handoff_id)
        with pytest.raises(InvalidTransitionError):
            engine.handoffs.complete(handoff_id, response)
        with pytest.raises(InvalidTransitionError):
            engine.handoffs.cancel(handoff_id)
        assert engine.handoffs.get(handoff_id).state == HandoffState.CANCELLED

    def test_terminal_state_is_named_in_error(self, engine: ArtifactEngine, artifact: str) -> None:
        handoff_id = _handoff(engine, artifact)
        engine.handoffs.cancel(handoff_id)
        with pytest.raises(InvalidTransitionError, match="already cancelled"):
            engine.handoffs.accept(handoff_id)

    def test_non_terminal_state_names_both_ends(self, engine: ArtifactEngine, artifact: str) -> None:
        handoff_id = _handoff(engine, artifact)
        engine.handoffs.accept(handoff_id)
        with pytest.raises(InvalidTransitionError, match="from accepted to accepted"):
            engine.handoffs.accept(handoff_id)

    def test_event_log_failure_does_not_fail_transition(self, engine: ArtifactEngine,
                                                        artifact: str, clock) -> None:
        broken = UnwritableEventLog()
        coordinator = HandoffCoordinator(engine.db, event_log=broken, clock=clock)

        handoff_id = coordinator.create(HandoffCreate(artifact_id=artifact, target="qa"))
        assert coordinator.accept(handoff_id).state == HandoffState.ACCEPTED
        assert coordinator.get(handoff_id).state == HandoffState.ACCEPTED
        assert broken.append_calls == 2
        broken.close()

    def test_deleting_response_artifact_keeps_completed_handoff(
        self, engine: ArtifactEngine, artifact: str, response: str
    ) -> None:
        handoff_id = _handoff(engine, artifact, expects_response=True)
        engine.handoffs.complete(handoff_id, response)

        engine.chain.delete_artifact(response)

        handoff = engine.handoffs.get(handoff_id)
        assert handoff.state == HandoffState.COMPLETED
        assert handoff.response_artifact_id is None
        assert handoff.artifact_id == artifact
        assert [h.id for h in engine.handoffs.list(artifact_id=artifact)] == [handoff_id]

    def test_complete_requires_existing_response(self, engine: ArtifactEngine, artifact: str) -> None:
        handoff_id = _handoff(engine, artifact)
        with pytest.raises(NotFoundError):
            engine.handoffs.complete(handoff_id, "missing")
        assert engine.handoffs.get(handoff_id).state == HandoffState.PENDING

    def test_transition_missing_handoff(self, engine: ArtifactEngine) -> None:
        with pytest.raises(NotFoundError):
            engine.handoffs.accept("missing")

    def test_transitions_are_logged(self, engine: ArtifactEngine, artifact: str) -> None:
        handoff_id = _handoff(engine, artifact)
        engine.handoffs.accept(handoff_id)
        assert_has_event(engine.events.query_by_type(EventType.HANDOFF_TRANSITIONED),
                         EventType.HANDOFF_TRANSITIONED, handoff_id=handoff_id, state="accepted")


class TestExpiry:
    def test_overdue_pending_expires(self, engine: ArtifactEngine, artifact: str, response: str,
                                     clock) -> None:
        handoff_id = _handoff(engine, artifact, deadline=clock.now + timedelta(minutes=5))
        assert engine.handoffs.expire_overdue() == []

        clock.advance(minutes=6)
        assert engine.handoffs.expire_overdue() == [handoff_id]
        assert engine.handoffs.get(handoff_id).state == HandoffState.EXPIRED

        with pytest.raises(InvalidTransitionError):
            engine.handoffs.accept(handoff_id)
        with pytest.raises(InvalidTransitionError):
            engine.handoffs.complete(handoff_id, response)

    def test_only_pending_expire(self, engine: ArtifactEngine, artifact: str, clock) -> None:
        accepted = _handoff(engine, artifact, deadline=clock.now + timedelta(minutes=1))
        engine.handoffs.accept(accepted)
        clock.advance(minutes=2)
        assert engine.handoffs.expire_overdue() == []
        assert engine.handoffs.get(accepted).state == HandoffState.ACCEPTED

    def test_no_deadline_or_no_response_never_expires(self, engine: ArtifactEngine, artifact: str,
                                                      clock) -> None:
        no_deadline = _handoff(engine, artifact)
        fire_and_forget = _handoff(engine, artifact, expects_response=False,
                                   deadline=clock.now + timedelta(seconds=1))
        clock.advance(days=30)
        assert engine.handoffs.expire_overdue() == []
        assert engine.handoffs.get(no_deadline).state == HandoffState.PENDING
        assert engine.handoffs.get(fire_and_forget).state == HandoffState.PENDING

    def test_complete_before_scan_wins(self, engine: ArtifactEngine, artifact: str, response: str,
                                       clock) -> None:
        handoff_id = _handoff(engine, artifact, deadline=clock.now + timedelta(minutes=1))
        clock.advance(minutes=2)
        engine.handoffs.complete(handoff_id, response)

        assert engine.handoffs.expire_overdue() == []
        assert engine.handoffs.get(handoff_id).state == HandoffState.COMPLETED

    def test_race_between_complete_and_expiry(self, engine_file: ArtifactEngine, clock) -> None:
        artifact, _ = engine_file.chain.create_artifact(make_meta(), text("a"))
        reply, _ = engine_file.chain.create_artifact(make_meta(), text("b"))
        handoff_ids = [
            engine_file.handoffs.create(HandoffCreate(
                artifact_id=artifact, target="reviewer",
                deadline=clock.now + timedelta(seconds=1),
            ))
            for _ in range(20)
        ]
        clock.advance(seconds=2)

        completed: list[str] = []
        rejected: list[str] = []
        expired: list[str] = []
        barrier = threading.Barrier(2)

        def complete_all() -> None:
            barrier.wait()
            for handoff_id in handoff_ids:
                try:
                    engine_file.handoffs.complete(handoff_id, reply)
                    completed.append(handoff_id)
                except InvalidTransitionError:
                    rejected.append(handoff_id)

        def expire() -> None:
            barrier.wait()
            expired.extend(engine_file.handoffs.expire_overdue())

        threads = [threading.Thread(target=complete_all), threading.Thread(target=expire)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Every handoff resolved exactly once; losers were rejected, not dropped.
        assert sorted(completed + expired) == sorted(handoff_ids)
        assert sorted(rejected) == sorted(expired)
        for handoff_id in handoff_ids:
            state = engine_file.handoffs.get(handoff_id).state
            expected = HandoffState.COMPLETED if handoff_id in completed else HandoffState.EXPIRED
            assert state == expected


class TestList:
    def test_filters_and_priority_order(self, engine: ArtifactEngine, artifact: str) -> None:
        low = _handoff(engine, artifact, target="qa", priority=HandoffPriority.LOW)
        urgent = _handoff(engine, artifact, target="qa", priority=HandoffPriority.URGENT)
        other = _handoff(engine, artifact, target="legal")
        engine.handoffs.accept(other)

        assert [h.id for h in engine.handoffs.list(target="qa")] == [urgent, low]
        assert [h.id for h in engine.handoffs.list(state="accepted")] == [other]
        assert len(engine.handoffs.list(artifact_id=artifact)) == 3
