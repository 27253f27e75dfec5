# -*- coding: utf-8 -*-
"""
Unit Tests for Presence Filter

Test coverage:
- Each environmental filter condition
- Passing-lane and acceleration dead zone
- Multi-signal intent validation
- Disabled filters admit everyone
"""

from collections import deque

import pytest

from presence.perception.core.enums import Intent
from presence.perception.core.types import TrackedPerson, TrajectorySample, Velocity2D
from presence.perception.filters import PresenceFilter
from presence.utils.config import FilterConfig

from tests.builders import make_pose


def settled_person(**overrides):
    """A person that passes every filter at t=2000ms."""
    person = TrackedPerson(
        id="person-1",
        center=(0.5, 0.5),
        first_seen_ms=0.0,
        last_seen_ms=2000.0,
        distance_score=40,
        confidence=90,
        pose=make_pose(0.5, 0.5, 40)
    )
    for name, value in overrides.items():
        setattr(person, name, value)
    return person


@pytest.fixture
def presence_filter():
    return PresenceFilter(FilterConfig(enabled=True))


class TestEnvironmentalFilters:
    """Test the per-person admission conditions."""

    def test_settled_person_is_admitted(self, presence_filter):
        """Test a steady, visible, central person passes."""
        person = settled_person()

        assert presence_filter.rejections(person, 2000.0) == []
        assert presence_filter.admits(person, 2000.0) is True

    @pytest.mark.parametrize("overrides,reason", [
        ({"confidence": 70}, "low_confidence"),
        ({"velocity": Velocity2D(dx=0.8, dy=0.0)}, "too_fast"),
        ({"center": (0.5, 0.95)}, "near_edge"),
        ({"pose": make_pose(0.5, 0.5, 40, visibility=0.5)}, "low_visibility"),
        ({"pose": None}, "low_visibility"),
        ({"first_seen_ms": 1500.0}, "too_brief"),
        ({"center": (0.15, 0.5)}, "passing_lane"),
    ])
    def test_rejection_reasons(self, presence_filter, overrides, reason):
        """Test each failing condition is reported."""
        person = settled_person(**overrides)

        assert reason in presence_filter.rejections(person, 2000.0)
        assert presence_filter.admits(person, 2000.0) is False

    def test_disabled_filter_admits_everyone(self):
        """Test the default configuration lets every person through."""
        person = settled_person(confidence=0, center=(0.05, 0.05))
        assert PresenceFilter(FilterConfig()).admits(person, 0.0) is True


class TestDeadZone:
    """Test the acceleration check on the trajectory."""

    def trajectory(self, step):
        return deque(
            TrajectorySample(x=0.3 + step * i, y=0.5, timestamp_ms=i * 500.0, distance_score=40)
            for i in range(6)
        )

    def test_accelerating_person(self, presence_filter):
        """Test a current speed well above the trajectory average is flagged."""
        # Average speed 0.02 per second, current 0.1
        person = settled_person(trajectory=self.trajectory(0.01), velocity=Velocity2D(dx=0.1, dy=0.0))

        assert presence_filter.is_accelerating(person) is True
        assert "accelerating" in presence_filter.rejections(person, 2000.0)

    def test_steady_walker(self, presence_filter):
        """Test a constant speed is not flagged."""
        person = settled_person(trajectory=self.trajectory(0.01), velocity=Velocity2D(dx=0.02, dy=0.0))
        assert presence_filter.is_accelerating(person) is False

    def test_short_trajectory(self, presence_filter):
        """Test five samples or fewer are never flagged."""
        person = settled_person(velocity=Velocity2D(dx=0.5, dy=0.0))
        person.trajectory.extend(list(self.trajectory(0.01))[:5])
        assert presence_filter.is_accelerating(person) is False


class TestIntentValidation:
    """Test the multi-signal walkup check."""

    def test_signal_count(self):
        """Test every agreeing signal is counted."""
        presence_filter = PresenceFilter(FilterConfig(validate_intent=True))
        person = settled_person(
            velocity=Velocity2D(dx=0.1, dy=0.0),
            is_looking_at_kiosk=True,
            gaze_confidence=0.8,
            intent=Intent.APPROACHING
        )

        assert presence_filter.intent_signals(person, 30) == 4
        assert presence_filter.intent_signals(person, 40) == 3
        assert presence_filter.validates_walkup(person, 40) is True

    def test_too_few_signals(self):
        """Test two signals are not enough by default."""
        presence_filter = PresenceFilter(FilterConfig(validate_intent=True))
        person = settled_person(intent=Intent.APPROACHING)

        assert presence_filter.intent_signals(person, 30) == 2
        assert presence_filter.validates_walkup(person, 30) is False

    def test_validation_off_by_default(self):
        """Test walkup is not gated unless validation is switched on."""
        person = settled_person()
        assert PresenceFilter(FilterConfig()).validates_walkup(person, 30) is True
