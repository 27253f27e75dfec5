"""
感知层核心模块

提供统一的数据类型和枚举定义。
"""

from presence.perception.core.types import (
    Landmark,
    PoseDetection,
    FaceDetection,
    FrameBatch,
    HeadPose,
    Velocity2D,
    TrajectorySample,
    TrackedPerson,
    PersonSnapshot,
    TRAJECTORY_CAPACITY
)

from presence.perception.core.enums import (
    Intent,
    ZoneTier,
    SessionOutcome,
    DisengagementReason
)

__all__ = [
    "Landmark",
    "PoseDetection",
    "FaceDetection",
    "FrameBatch",
    "HeadPose",
    "Velocity2D",
    "TrajectorySample",
    "TrackedPerson",
    "PersonSnapshot",
    "TRAJECTORY_CAPACITY",
    "Intent",
    "ZoneTier",
    "SessionOutcome",
    "DisengagementReason",
]
