# -*- coding: utf-8 -*-
"""
Unit Tests for Learning Session Manager

Test coverage:
- Outcome resolution
- Session start / end lifecycle
- Interaction and conversion signals
- Persistence hand-off (sync and async)
- Session lifecycle driven by tier transitions
"""

import asyncio
import pytest
from unittest.mock import Mock

from presence.exceptions import PersistenceError
from presence.perception.core.enums import Intent, SessionOutcome, ZoneTier
from presence.perception.core.types import HeadPose, TrajectorySample, Velocity2D
from presence.engagement.lifecycle import SessionLifecycle
from presence.engagement.sessions import (
    LearningSessionManager,
    SessionStartParams,
    resolve_outcome,
)
from presence.engagement.zones import TierTransition
from presence.utils.config import SessionConfig, ZoneConfig

from tests.unit.test_zones import make_person


def params(person_id="person-1", action=ZoneTier.WALKUP, **kwargs):
    defaults = dict(
        person_id=person_id,
        proximity_level=45,
        intent=Intent.APPROACHING,
        confidence=70,
        baseline=20,
        threshold=30,
        triggered_action=action,
        is_looking_at_kiosk=True,
        head_pose=HeadPose(yaw=3, pitch=-2, roll=1),
        distance_score=45,
        trajectory=(TrajectorySample(0.5, 0.5, 0.0, 20),),
        velocity=Velocity2D(0.1, 0.0)
    )
    defaults.update(kwargs)
    return SessionStartParams(**defaults)


class TestResolveOutcome:
    """Test the pure outcome resolution rules."""

    def test_long_engagement_promotes_abandoned(self):
        """Test 2500 ms of interaction promotes abandoned to engaged."""
        assert resolve_outcome(SessionOutcome.ABANDONED, False, 2500) == SessionOutcome.ENGAGED

    @pytest.mark.parametrize("explicit", list(SessionOutcome))
    @pytest.mark.parametrize("duration", [0, 1000, 2500, 60000])
    def test_conversion_always_wins(self, explicit, duration):
        """Test converted sessions always resolve to converted."""
        assert resolve_outcome(explicit, True, duration) == SessionOutcome.CONVERTED

    def test_short_engagement_keeps_explicit(self):
        """Test 2000 ms is not enough for promotion."""
        assert resolve_outcome(SessionOutcome.ABANDONED, False, 2000) == SessionOutcome.ABANDONED

    def test_engaged_is_kept(self):
        """Test explicit engaged is never demoted."""
        assert resolve_outcome(SessionOutcome.ENGAGED, False, 0) == SessionOutcome.ENGAGED


class TestSessionLifecycle:
    """Test start and end of sessions."""

    def test_start_captures_fields(self, session_manager):
        """Test start copies the captured-at-start fields."""
        session = session_manager.start(params(), now_ms=0.0)

        assert session.person_id == "person-1"
        assert session.tenant_id == "default"
        assert session.triggered_action == ZoneTier.WALKUP
        assert session.proximity_level == 45
        assert 0 <= session.day_of_week <= 6
        assert 0 <= session.hour_of_day <= 23
        assert session_manager.has_active("person-1")

    def test_end_returns_record(self, session_manager, memory_store):
        """Test end computes durations and persists the record."""
        session_manager.start(params(), now_ms=0.0)
        record = session_manager.end("person-1", SessionOutcome.ABANDONED, now_ms=4000.0)

        assert record.outcome == SessionOutcome.ABANDONED
        assert record.total_duration_ms == 4000.0
        assert record.engaged_duration_ms == 0.0
        assert not session_manager.has_active("person-1")
        assert len(memory_store.records) == 1
        assert memory_store.records[0]["outcome"] == "abandoned"

    def test_end_without_session(self, session_manager):
        """Test ending an unknown person is a no-op."""
        assert session_manager.end("nobody") is None

    def test_restart_ends_previous_as_abandoned(self, session_manager, memory_store):
        """Test starting twice ends the first session."""
        session_manager.start(params(action=ZoneTier.AMBIENT), now_ms=0.0)
        session_manager.start(params(action=ZoneTier.WALKUP), now_ms=500.0)

        assert memory_store.records[0]["triggered_action"] == "ambient"
        assert memory_store.records[0]["outcome"] == "abandoned"
        assert session_manager.get_active("person-1").triggered_action == ZoneTier.WALKUP

    def test_restart_with_interaction_is_engaged(self, session_manager, memory_store):
        """Test an interacted session ends as engaged on restart."""
        session_manager.start(params(), now_ms=0.0)
        session_manager.record_interaction("person-1", now_ms=100.0)
        session_manager.start(params(action=ZoneTier.STARE), now_ms=500.0)

        assert memory_store.records[0]["outcome"] == "engaged"

    def test_end_all(self, session_manager):
        """Test end_all closes every active session."""
        session_manager.start(params("person-1"), now_ms=0.0)
        session_manager.start(params("person-2"), now_ms=0.0)

        records = session_manager.end_all(now_ms=1000.0)

        assert {r.person_id for r in records} == {"person-1", "person-2"}
        assert session_manager.active_count == 0

    def test_disabled_manager_is_noop(self, memory_store):
        """Test learning disabled starts no sessions."""
        manager = LearningSessionManager(SessionConfig(enabled=False), store=memory_store)

        assert manager.start(params()) is None
        assert manager.end("person-1") is None
        assert memory_store.records == []


class TestEngagementSignals:
    """Test interaction and conversion signals."""

    def test_interaction_duration(self, session_manager):
        """Test engaged duration spans first to last interaction."""
        session_manager.start(params(), now_ms=0.0)
        session_manager.record_interaction("person-1", now_ms=1000.0)
        session_manager.record_interaction("person-1", now_ms=3500.0)
        record = session_manager.end("person-1", SessionOutcome.ABANDONED, now_ms=5000.0)

        assert record.engaged_duration_ms == 2500.0
        assert record.outcome == SessionOutcome.ENGAGED

    def test_open_interaction_runs_until_end(self, session_manager):
        """Test a single interaction counts until the session ends."""
        session_manager.start(params(), now_ms=0.0)
        session = session_manager.get_active("person-1")
        session.first_interaction_ms = 1000.0

        record = session_manager.end("person-1", now_ms=4000.0)
        assert record.engaged_duration_ms == 3000.0

    def test_conversion(self, session_manager):
        """Test conversion implies interaction and wins."""
        session_manager.start(params(), now_ms=0.0)
        assert session_manager.record_conversion("person-1", now_ms=100.0) is True

        record = session_manager.end("person-1", SessionOutcome.ABANDONED, now_ms=200.0)
        assert record.converted is True
        assert record.outcome == SessionOutcome.CONVERTED
        assert record.first_interaction_ms == 100.0

    def test_signal_without_person_uses_latest_session(self, session_manager):
        """Test a person-less signal targets the most recent session."""
        session_manager.start(params("person-1"), now_ms=0.0)
        session_manager.start(params("person-2"), now_ms=500.0)

        assert session_manager.record_interaction(now_ms=600.0) is True
        assert session_manager.get_active("person-2").has_interaction
        assert not session_manager.get_active("person-1").has_interaction

    def test_signal_without_sessions(self, session_manager):
        """Test signals without an active session report False."""
        assert session_manager.record_interaction() is False
        assert session_manager.record_conversion("person-9") is False

    def test_update_engagement(self, session_manager):
        """Test gaze data can be refreshed during a session."""
        session_manager.start(params(), now_ms=0.0)
        session_manager.update_engagement("person-1", is_looking_at_kiosk=False, head_pose=HeadPose(yaw=40))

        record = session_manager.end("person-1", now_ms=100.0)
        assert record.is_looking_at_kiosk is False
        assert record.to_dict()["head_pose_yaw"] == 40

    def test_session_status(self, session_manager, clock):
        """Test status reports duration and engagement."""
        session_manager.start(params(), now_ms=clock())
        clock.advance(1500)

        status = session_manager.get_session_status("person-1")
        assert status["active"] is True
        assert status["duration_ms"] == 1500
        assert status["triggered_action"] == "walkup"
        assert session_manager.get_session_status("person-2") == {"active": False, "person_id": "person-2"}
        assert len(session_manager.get_session_status()) == 1


class TestPersistence:
    """Test best-effort persistence."""

    def test_record_format(self, session_manager, memory_store):
        """Test the persisted record carries every field."""
        session_manager.start(params(), now_ms=0.0)
        session_manager.end("person-1", now_ms=1000.0, feedback_was_correct=True)

        row = memory_store.records[0]
        for key in (
            "id", "person_id", "tenant_id", "proximity_level", "intent", "confidence",
            "baseline", "threshold", "hour_of_day", "day_of_week", "triggered_action",
            "outcome", "engaged_duration_ms", "converted", "total_duration_ms",
            "feedback_was_correct", "head_pose_yaw", "trajectory_data", "velocity_x",
        ):
            assert key in row
        assert row["intent"] == "approaching"
        assert row["head_pose_pitch"] == -2
        assert row["trajectory_data"][0]["distance_score"] == 20
        assert row["feedback_was_correct"] is True

    def test_store_failure_is_logged_not_raised(self, clock):
        """Test a failing store never breaks session handling."""
        store = Mock()
        store.save.side_effect = PersistenceError("disk full", store_type="mock")
        manager = LearningSessionManager(SessionConfig(), store=store, clock=clock)

        manager.start(params(), now_ms=0.0)
        record = manager.end("person-1", now_ms=100.0)

        assert record is not None
        assert manager.get_statistics()["writes_failed"] == 1

    @pytest.mark.asyncio
    async def test_async_write(self, session_manager, memory_store):
        """Test writes run in the background inside an event loop."""
        session_manager.start(params(), now_ms=0.0)
        session_manager.end("person-1", now_ms=100.0)

        await session_manager.flush()

        assert len(memory_store.records) == 1
        assert session_manager.get_statistics()["writes_succeeded"] == 1

    @pytest.mark.asyncio
    async def test_async_write_failure(self, clock):
        """Test background write failures are counted."""
        store = Mock()
        store.save.side_effect = PersistenceError("disk full", store_type="mock")
        manager = LearningSessionManager(SessionConfig(), store=store, clock=clock)

        manager.start(params(), now_ms=0.0)
        manager.end("person-1", now_ms=100.0)
        await manager.flush()

        assert manager.get_statistics()["writes_failed"] == 1

    def test_listener_receives_records(self, session_manager):
        """Test listeners are notified of finished sessions."""
        received = []
        session_manager.add_listener(received.append)

        session_manager.start(params(), now_ms=0.0)
        session_manager.end("person-1", now_ms=100.0)

        assert [r.person_id for r in received] == ["person-1"]


class TestTierDrivenSessions:
    """Test sessions follow tier transitions."""

    @pytest.fixture
    def lifecycle(self, session_manager):
        return SessionLifecycle(session_manager, ZoneConfig(ambient_threshold=10, walkup_threshold=30))

    def _transition(self, previous, current, t, evicted=False, **person_kwargs):
        person = make_person(**person_kwargs).snapshot()
        return TierTransition(
            person_id=person.id,
            previous=previous,
            current=current,
            person=person,
            timestamp_ms=t,
            evicted=evicted
        )

    def test_ambient_then_walkup(self, lifecycle, session_manager, memory_store):
        """Test walkup entry abandons the ambient session."""
        lifecycle.apply([self._transition(ZoneTier.NONE, ZoneTier.AMBIENT, 0.0, distance=20)])
        session = session_manager.get_active("person-1")
        assert session.triggered_action == ZoneTier.AMBIENT
        assert session.threshold == 10

        ended = lifecycle.apply([self._transition(ZoneTier.AMBIENT, ZoneTier.WALKUP, 500.0, distance=35)])

        assert [r.outcome for r in ended] == [SessionOutcome.ABANDONED]
        assert memory_store.records[0]["triggered_action"] == "ambient"
        assert session_manager.get_active("person-1").triggered_action == ZoneTier.WALKUP

    def test_walkup_then_stare_is_engaged(self, lifecycle, session_manager):
        """Test stare entry ends the walkup session as engaged."""
        lifecycle.apply([self._transition(ZoneTier.NONE, ZoneTier.WALKUP, 0.0, distance=35)])
        ended = lifecycle.apply([self._transition(ZoneTier.WALKUP, ZoneTier.STARE, 2000.0, distance=70)])

        assert ended[0].outcome == SessionOutcome.ENGAGED
        assert session_manager.get_active("person-1").triggered_action == ZoneTier.STARE

    def test_downward_keeps_session(self, lifecycle, session_manager):
        """Test falling to a lower non-empty tier keeps the session."""
        lifecycle.apply([self._transition(ZoneTier.NONE, ZoneTier.WALKUP, 0.0, distance=35)])
        ended = lifecycle.apply([self._transition(ZoneTier.WALKUP, ZoneTier.AMBIENT, 500.0, distance=15)])

        assert ended == []
        assert session_manager.get_active("person-1").triggered_action == ZoneTier.WALKUP

    def test_drop_to_none_abandons(self, lifecycle, session_manager):
        """Test leaving every tier ends the session as abandoned."""
        lifecycle.apply([self._transition(ZoneTier.NONE, ZoneTier.AMBIENT, 0.0, distance=20)])
        ended = lifecycle.apply([self._transition(ZoneTier.AMBIENT, ZoneTier.NONE, 500.0, distance=2)])

        assert ended[0].outcome == SessionOutcome.ABANDONED
        assert session_manager.active_count == 0

    def test_eviction_abandons(self, lifecycle, session_manager):
        """Test an evicted person's session ends as abandoned."""
        lifecycle.apply([self._transition(ZoneTier.NONE, ZoneTier.WALKUP, 0.0, distance=35)])
        ended = lifecycle.apply([
            self._transition(ZoneTier.WALKUP, ZoneTier.NONE, 8000.0, evicted=True, distance=35)
        ])

        assert ended[0].outcome == SessionOutcome.ABANDONED
        assert session_manager.active_count == 0

    def test_eviction_keeps_conversion(self, lifecycle, session_manager):
        """Test resolution rules still apply to evicted sessions."""
        lifecycle.apply([self._transition(ZoneTier.NONE, ZoneTier.WALKUP, 0.0, distance=35)])
        session_manager.record_conversion("person-1", now_ms=100.0)
        ended = lifecycle.apply([
            self._transition(ZoneTier.WALKUP, ZoneTier.NONE, 8000.0, evicted=True, distance=35)
        ])

        assert ended[0].outcome == SessionOutcome.CONVERTED
