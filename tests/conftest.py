# -*- coding: utf-8 -*-
"""
Shared pytest fixtures for all test types

Fixtures build real landmark structures (MediaPipe pose / face-mesh
topology) so tests exercise the real data flow; only the camera and the
persistence backend are replaced.
"""

import pytest

from presence.perception.gaze import GazeEstimator
from presence.perception.motion import MotionEstimator
from presence.perception.tracker import IdentityTracker
from presence.engagement.sessions import LearningSessionManager
from presence.engagement.store import MemorySessionStore
from presence.utils.config import (
    EngineConfig,
    GazeConfig,
    MotionConfig,
    SessionConfig,
    TrackerConfig,
    ZoneConfig,
)

from tests.builders import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def motion():
    return MotionEstimator(MotionConfig())


@pytest.fixture
def gaze():
    return GazeEstimator(GazeConfig())


@pytest.fixture
def tracker(motion, gaze):
    return IdentityTracker(TrackerConfig(), motion, gaze)


@pytest.fixture
def zone_config():
    """Thresholds with a short dwell so stare scenarios stay small."""
    return ZoneConfig(
        ambient_threshold=10,
        walkup_threshold=30,
        stare_threshold=60,
        stare_duration_ms=1000
    )


@pytest.fixture
def memory_store():
    return MemorySessionStore()


@pytest.fixture
def session_manager(memory_store, clock):
    return LearningSessionManager(SessionConfig(), store=memory_store, clock=clock)


@pytest.fixture
def engine_config(zone_config):
    config = EngineConfig(zones=zone_config)
    config.detection_interval_ms = 10
    return config
