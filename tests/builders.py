# -*- coding: utf-8 -*-
"""
Landmark and clock builders shared by unit and integration tests
"""

from typing import Optional

from presence.perception.core.types import FaceDetection, FrameBatch, Landmark, PoseDetection
from presence.perception.gaze import LEFT_EYE_OUTER, NOSE_TIP, RIGHT_EYE_OUTER
from presence.perception.motion import LEFT_SHOULDER, RIGHT_SHOULDER


POSE_LANDMARK_COUNT = 33
FACE_LANDMARK_COUNT = 468


def make_pose(cx: float, cy: float, score: int, visibility: float = 1.0) -> PoseDetection:
    """
    Build a pose whose shoulders are centered on (cx, cy) and whose
    shoulder spread yields the given distance score (scale 200).
    """
    half_width = score / 200.0 / 2.0
    landmarks = [None] * POSE_LANDMARK_COUNT
    landmarks[LEFT_SHOULDER] = Landmark(cx - half_width, cy, visibility=visibility)
    landmarks[RIGHT_SHOULDER] = Landmark(cx + half_width, cy, visibility=visibility)
    return PoseDetection(landmarks=tuple(landmarks))


def make_face(cx: float, cy: float, yaw_offset: float = 0.0) -> FaceDetection:
    """
    Build a face whose nose tip sits at (cx + yaw_offset, cy).

    Eyes are 0.06 apart, so a yaw_offset of 0.03 gives yaw 45 (looking away).
    """
    landmarks = [None] * FACE_LANDMARK_COUNT
    landmarks[NOSE_TIP] = Landmark(cx + yaw_offset, cy)
    landmarks[LEFT_EYE_OUTER] = Landmark(cx - 0.03, cy - 0.02)
    landmarks[RIGHT_EYE_OUTER] = Landmark(cx + 0.03, cy - 0.02)
    return FaceDetection(landmarks=tuple(landmarks))


def make_frame(
    people=(),
    timestamp_ms: Optional[float] = None
) -> FrameBatch:
    """
    Build a frame from (cx, cy, score, looking) tuples.

    looking=None means no face is detected for that person.
    """
    poses = []
    faces = []
    for cx, cy, score, looking in people:
        poses.append(make_pose(cx, cy, score))
        if looking is not None:
            faces.append(make_face(cx, cy, 0.0 if looking else 0.03))
    return FrameBatch(poses=tuple(poses), faces=tuple(faces), timestamp_ms=timestamp_ms)


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now

