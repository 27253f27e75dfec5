"""感知模块：身份追踪、运动与视线估计、环境过滤、关键点数据源"""
from presence.perception.tracker import IdentityTracker, TrackerUpdate
from presence.perception.motion import MotionEstimator
from presence.perception.gaze import GazeEstimator
from presence.perception.filters import PresenceFilter
from presence.perception.sources import LandmarkSource, ReplayLandmarkSource

__all__ = [
    "IdentityTracker",
    "TrackerUpdate",
    "MotionEstimator",
    "GazeEstimator",
    "PresenceFilter",
    "LandmarkSource",
    "ReplayLandmarkSource",
]
